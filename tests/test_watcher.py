"""Tests for watchdog event translation and delivery."""

import asyncio
from pathlib import Path

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from loom_sync.models import ChangeEvent, ChangeKind
from loom_sync.watcher import VaultEventHandler, VaultWatcher


@pytest.fixture
def handler(tmp_path: Path) -> VaultEventHandler:
    return VaultEventHandler(VaultWatcher(tmp_path))


def test_file_events_become_relative_changes(
    handler: VaultEventHandler, tmp_path: Path
) -> None:
    note = str(tmp_path / "daily" / "note.md")

    created = handler.to_change(FileCreatedEvent(note))
    modified = handler.to_change(FileModifiedEvent(note))
    deleted = handler.to_change(FileDeletedEvent(note))

    assert created == ChangeEvent("daily/note.md", ChangeKind.CREATED, created.observed_at)
    assert modified is not None and modified.kind == ChangeKind.MODIFIED
    assert deleted is not None and deleted.kind == ChangeKind.DELETED


def test_move_becomes_rename(handler: VaultEventHandler, tmp_path: Path) -> None:
    change = handler.to_change(
        FileMovedEvent(str(tmp_path / "old.md"), str(tmp_path / "new.md"))
    )

    assert change is not None
    assert change.kind == ChangeKind.RENAMED
    assert change.path == "new.md"
    assert change.old_path == "old.md"


def test_moves_across_the_vault_boundary(
    handler: VaultEventHandler, tmp_path: Path
) -> None:
    outside = str(tmp_path.parent / "elsewhere.md")

    moved_out = handler.to_change(FileMovedEvent(str(tmp_path / "note.md"), outside))
    moved_in = handler.to_change(FileMovedEvent(outside, str(tmp_path / "note.md")))

    assert moved_out is not None and moved_out.kind == ChangeKind.DELETED
    assert moved_in is not None and moved_in.kind == ChangeKind.CREATED


def test_irrelevant_events_are_ignored(
    handler: VaultEventHandler, tmp_path: Path
) -> None:
    assert handler.to_change(DirCreatedEvent(str(tmp_path / "folder"))) is None
    assert handler.to_change(FileClosedEvent(str(tmp_path / "note.md"))) is None


@pytest.mark.asyncio
async def test_watcher_delivers_on_the_loop(tmp_path: Path) -> None:
    received: list[ChangeEvent] = []
    watcher = VaultWatcher(tmp_path)
    watcher.start(received.append)
    assert watcher.is_running

    try:
        (tmp_path / "note.md").write_text("hello")
        for _ in range(100):
            if any(c.path == "note.md" for c in received):
                break
            await asyncio.sleep(0.05)
    finally:
        watcher.stop()

    assert not watcher.is_running
    assert any(
        c.path == "note.md" and c.kind == ChangeKind.CREATED for c in received
    )


@pytest.mark.asyncio
async def test_dispatch_after_stop_is_dropped(tmp_path: Path) -> None:
    received: list[ChangeEvent] = []
    watcher = VaultWatcher(tmp_path)
    watcher.start(received.append)
    watcher.stop()

    watcher.dispatch(ChangeEvent("late.md", ChangeKind.CREATED))
    await asyncio.sleep(0.05)

    assert received == []


@pytest.mark.asyncio
async def test_start_requires_existing_vault(tmp_path: Path) -> None:
    watcher = VaultWatcher(tmp_path / "missing")
    with pytest.raises(FileNotFoundError):
        watcher.start(lambda change: None)
