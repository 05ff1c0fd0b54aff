"""Tests for debounced change aggregation."""

import asyncio

import pytest
from hypothesis import given
from hypothesis import strategies as st

from loom_sync.aggregator import ChangeAggregator, build_operation, sanitize_filename
from loom_sync.config import Config
from loom_sync.models import ChangeEvent, ChangeKind, SyncOperation

TEMPLATE = "{action}: {filename}"


@pytest.fixture
def config() -> Config:
    conf = Config()
    conf.sync.debounce_delay = 100
    return conf


@pytest.fixture
def emitted() -> list[SyncOperation]:
    return []


@pytest.fixture
def aggregator(config: Config, emitted: list[SyncOperation]) -> ChangeAggregator:
    return ChangeAggregator(config, emitted.append)


def test_single_created_event_message() -> None:
    op = build_operation([ChangeEvent("daily/note.md", ChangeKind.CREATED)], TEMPLATE)
    assert op.message == "Created: note.md"
    assert op.paths == ("daily/note.md",)


def test_single_deleted_event_stages_whole_tree() -> None:
    op = build_operation([ChangeEvent("old.md", ChangeKind.DELETED)], TEMPLATE)
    assert op.message == "Deleted: old.md"
    assert op.paths is None


def test_single_renamed_event_stages_both_sides() -> None:
    event = ChangeEvent("new.md", ChangeKind.RENAMED, old_path="old.md")
    op = build_operation([event], TEMPLATE)
    assert op.message == "Renamed: new.md"
    assert op.paths == ("old.md", "new.md")


def test_multi_event_messages() -> None:
    same = [ChangeEvent(f"{n}.md", ChangeKind.DELETED) for n in "abc"]
    assert build_operation(same, TEMPLATE).message == "Deleted: 3 files"

    mixed = [
        ChangeEvent("a.md", ChangeKind.CREATED),
        ChangeEvent("b.md", ChangeKind.DELETED),
    ]
    op = build_operation(mixed, TEMPLATE)
    assert op.message == "Updated: 2 files"
    assert op.paths is None


def test_sanitize_filename() -> None:
    assert sanitize_filename('what?<is>"this"*.md') == "what__is__this__.md"


@given(
    names=st.lists(
        st.sampled_from(["a.md", "b.md", "c.md", "d.md"]), min_size=1, max_size=20
    )
)
def test_operation_covers_each_path_once(names: list[str]) -> None:
    """Property: a collapsed burst mentions each distinct path exactly once."""
    unique = list(dict.fromkeys(names))
    events = [ChangeEvent(name, ChangeKind.MODIFIED) for name in unique]
    op = build_operation(events, TEMPLATE)
    assert [e.path for e in op.changes] == unique
    if len(unique) > 1:
        assert op.message == f"Updated: {len(unique)} files"


@pytest.mark.asyncio
async def test_burst_produces_one_operation(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    """Verifies that events inside one quiet window become a single operation."""
    aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))
    await asyncio.sleep(0.03)
    aggregator.submit(ChangeEvent("note.md", ChangeKind.MODIFIED))
    await asyncio.sleep(0.03)
    aggregator.submit(ChangeEvent("todo.md", ChangeKind.MODIFIED))

    assert emitted == []
    await asyncio.sleep(0.25)

    assert len(emitted) == 1
    assert emitted[0].message == "Updated: 2 files"
    assert aggregator.pending_count == 0
    assert not aggregator.has_pending_flush


@pytest.mark.asyncio
async def test_last_action_wins_per_path(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    aggregator.submit(ChangeEvent("note.md", ChangeKind.MODIFIED))
    aggregator.submit(ChangeEvent("note.md", ChangeKind.DELETED))
    await asyncio.sleep(0.25)

    assert len(emitted) == 1
    assert emitted[0].message == "Deleted: note.md"


@pytest.mark.asyncio
async def test_writes_to_a_new_file_stay_a_creation(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))
    aggregator.submit(ChangeEvent("note.md", ChangeKind.MODIFIED))
    aggregator.submit(ChangeEvent("b.md", ChangeKind.RENAMED, old_path="a.md"))
    aggregator.submit(ChangeEvent("b.md", ChangeKind.MODIFIED))
    op = aggregator.flush_now()

    assert op is not None
    kinds = {event.path: event.kind for event in op.changes}
    assert kinds == {"note.md": ChangeKind.CREATED, "b.md": ChangeKind.RENAMED}
    assert op.changes[1].old_path == "a.md"


@pytest.mark.asyncio
async def test_each_event_restarts_the_window(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    for _ in range(4):
        aggregator.submit(ChangeEvent("note.md", ChangeKind.MODIFIED))
        await asyncio.sleep(0.04)
        assert emitted == []

    await asyncio.sleep(0.2)
    assert len(emitted) == 1


@pytest.mark.asyncio
async def test_separate_bursts_produce_separate_operations(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    aggregator.submit(ChangeEvent("a.md", ChangeKind.CREATED))
    await asyncio.sleep(0.25)
    aggregator.submit(ChangeEvent("b.md", ChangeKind.CREATED))
    await asyncio.sleep(0.25)

    assert [op.message for op in emitted] == ["Created: a.md", "Created: b.md"]


@pytest.mark.asyncio
async def test_excluded_events_are_dropped(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    assert aggregator.submit(ChangeEvent("scratch.tmp", ChangeKind.CREATED)) is False
    assert aggregator.submit(ChangeEvent(".git/index", ChangeKind.MODIFIED)) is False
    assert not aggregator.has_pending_flush

    await asyncio.sleep(0.2)
    assert emitted == []


@pytest.mark.asyncio
async def test_stop_discards_pending(
    aggregator: ChangeAggregator, emitted: list[SyncOperation]
) -> None:
    aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))
    aggregator.stop()

    await asyncio.sleep(0.2)
    assert emitted == []
    assert aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED)) is False

    aggregator.start()
    assert aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED)) is True


@pytest.mark.asyncio
async def test_flush_now(aggregator: ChangeAggregator, emitted: list[SyncOperation]) -> None:
    assert aggregator.flush_now() is None

    aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))
    op = aggregator.flush_now()

    assert op is not None and emitted == [op]
    await asyncio.sleep(0.2)
    assert len(emitted) == 1


@pytest.mark.asyncio
async def test_settings_update_changes_template(
    aggregator: ChangeAggregator, emitted: list[SyncOperation], config: Config
) -> None:
    new = config.copy()
    new.sync.commit_message_template = "vault: {action} {filename}"
    aggregator.update_settings(new)

    aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))
    aggregator.flush_now()

    assert emitted[0].message == "vault: Created note.md"


@pytest.mark.asyncio
async def test_failing_sink_is_logged(config: Config, caplog: pytest.LogCaptureFixture) -> None:
    def sink(op: SyncOperation) -> None:
        raise RuntimeError("queue gone")

    aggregator = ChangeAggregator(config, sink)
    aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))

    assert aggregator.flush_now() is not None
    assert "Failed to hand off" in caplog.text
