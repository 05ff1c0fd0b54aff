"""Filesystem monitoring for a vault using watchdog.

The observer runs in its own thread. Events are converted to `ChangeEvent`
values there and handed to the event loop with `call_soon_threadsafe`, so the
callback always runs on the loop thread.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .constants import APP_NAME
from .models import ChangeEvent, ChangeKind

logger = logging.getLogger(APP_NAME)

ChangeCallback = Callable[[ChangeEvent], object]


class VaultEventHandler(FileSystemEventHandler):
    """Translates raw watchdog events into vault-relative change events."""

    def __init__(self, watcher: "VaultWatcher") -> None:
        self.watcher = watcher

    def _relative(self, raw: str | bytes) -> str | None:
        if isinstance(raw, bytes):
            raw = raw.decode()
        try:
            return Path(raw).resolve().relative_to(self.watcher.root).as_posix()
        except ValueError:
            # Outside the vault (e.g. moved out of it).
            return None

    def to_change(self, event: FileSystemEvent) -> ChangeEvent | None:
        """Maps a watchdog event to a ChangeEvent, or None if irrelevant."""
        if event.is_directory:
            return None

        if isinstance(event, FileMovedEvent):
            old_path = self._relative(event.src_path)
            new_path = self._relative(event.dest_path)
            if new_path is None:
                if old_path is None:
                    return None
                return ChangeEvent(path=old_path, kind=ChangeKind.DELETED)
            if old_path is None:
                return ChangeEvent(path=new_path, kind=ChangeKind.CREATED)
            return ChangeEvent(path=new_path, kind=ChangeKind.RENAMED, old_path=old_path)

        if isinstance(event, FileCreatedEvent):
            kind = ChangeKind.CREATED
        elif isinstance(event, FileModifiedEvent):
            kind = ChangeKind.MODIFIED
        elif isinstance(event, FileDeletedEvent):
            kind = ChangeKind.DELETED
        else:
            return None

        path = self._relative(event.src_path)
        if path is None or path == ".":
            return None
        return ChangeEvent(path=path, kind=kind)

    def on_any_event(self, event: FileSystemEvent) -> None:
        change = self.to_change(event)
        if change is not None:
            self.watcher.dispatch(change)


class VaultWatcher:
    """Watches a vault directory tree and reports file changes.

    Attributes:
        root (Path): The resolved vault root.
    """

    def __init__(self, root: Path) -> None:
        self.root = root.resolve()
        self._observer: Observer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._callback: ChangeCallback | None = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self, callback: ChangeCallback) -> None:
        """Begins watching; `callback` is invoked on the running event loop.

        Raises:
            FileNotFoundError: If the vault root does not exist.
        """
        if self._observer is not None:
            return
        if not self.root.is_dir():
            raise FileNotFoundError(f"Vault not found: {self.root}")

        self._loop = asyncio.get_running_loop()
        self._callback = callback

        observer = Observer()
        observer.schedule(VaultEventHandler(self), str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info(f"WATCHING {self.root}")

    def dispatch(self, change: ChangeEvent) -> None:
        """Hands a change to the loop thread. Safe to call from any thread."""
        loop, callback = self._loop, self._callback
        if loop is None or callback is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._deliver, change)

    def _deliver(self, change: ChangeEvent) -> None:
        # The watcher may have stopped between scheduling and delivery.
        if self._callback is None:
            return
        try:
            self._callback(change)
        except Exception:
            logger.exception(f"Change handler failed for {change.path}")

    def stop(self) -> None:
        """Stops the observer thread; pending deliveries are dropped."""
        observer = self._observer
        self._observer = None
        self._callback = None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)
            logger.info(f"STOPPED watching {self.root}")
