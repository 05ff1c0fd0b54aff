"""Debounced batching of accepted change events into sync operations.

Behavior:
    Editors emit several events per save. Rather than committing each one,
    every accepted event restarts a single global timer. When the timer
    expires with no further event, everything collected since the last flush
    becomes exactly one SyncOperation.

    note.md created   t=0ms    } collected
    note.md modified  t=40ms   } collected (still a creation)
    todo.md deleted   t=300ms  } collected
    -> one operation at t=800ms: "Updated: 2 files"

    Per path the last action wins, except that modifying a file created or
    renamed earlier in the same window keeps the earlier action.
"""

import asyncio
import logging
import re
from collections.abc import Callable
from dataclasses import replace
from pathlib import PurePosixPath

from .config import Config
from .constants import APP_NAME
from .filters import normalize_path, should_sync
from .models import ChangeEvent, ChangeKind, SyncOperation, SyncTrigger

logger = logging.getLogger(APP_NAME)

OperationSink = Callable[[SyncOperation], object]


def sanitize_filename(filename: str) -> str:
    """Replaces characters that are awkward in commit messages."""
    return re.sub(r'[<>:"|?*]', "_", filename)


def render_message(template: str, action: str, filename: str) -> str:
    """Fills the {action} and {filename} placeholders of a commit template."""
    return template.replace("{action}", action).replace("{filename}", filename)


def build_operation(events: list[ChangeEvent], template: str) -> SyncOperation:
    """Collapses a burst of events into a single operation.

    Args:
        events (list[ChangeEvent]): Events in arrival order, already collapsed
            per path (one event per path).
        template (str): Commit message template.

    Returns:
        SyncOperation: The operation covering the whole burst.
    """
    if len(events) == 1:
        event = events[0]
        filename = sanitize_filename(PurePosixPath(event.path).name)
        message = render_message(template, event.kind.display_name, filename)
        if event.kind == ChangeKind.DELETED:
            paths = None
        elif event.kind == ChangeKind.RENAMED and event.old_path:
            paths = (event.old_path, event.path)
        else:
            paths = (event.path,)
        return SyncOperation(
            trigger=SyncTrigger.CHANGE, message=message, changes=(event,), paths=paths
        )

    kinds = {event.kind for event in events}
    action = kinds.pop().display_name if len(kinds) == 1 else "Updated"
    message = render_message(template, action, f"{len(events)} files")
    return SyncOperation(
        trigger=SyncTrigger.CHANGE, message=message, changes=tuple(events), paths=None
    )


class ChangeAggregator:
    """Collects accepted change events and emits one operation per quiet window.

    At most one flush is scheduled at any time; scheduling replaces the prior
    one. Stopping cancels the pending flush and discards unflushed events.
    """

    def __init__(
        self,
        config: Config,
        sink: OperationSink,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Args:
            config (Config): Settings providing the delay, patterns and template.
            sink (Callable): Receives each emitted SyncOperation.
            loop (Optional[AbstractEventLoop]): Loop for the timer. Defaults
                to the running loop at the time of the first event.
        """
        self._config = config
        self._sink = sink
        self._loop = loop
        self._pending: dict[str, ChangeEvent] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._active = True

    def update_settings(self, config: Config) -> None:
        self._config = config

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def has_pending_flush(self) -> bool:
        return self._timer is not None

    def submit(self, event: ChangeEvent) -> bool:
        """Filters an event and, if accepted, restarts the debounce window.

        Must be called from the event loop thread.

        Returns:
            bool: True if the event was accepted.
        """
        if not self._active:
            return False

        path = normalize_path(event.path)
        if not should_sync(path, self._config.sync.exclude_patterns):
            logger.debug(f"IGNORED {event.kind.value}: {path}")
            return False

        # Re-insert so dict order reflects the latest activity per path.
        previous = self._pending.pop(path, None)
        if (
            previous is not None
            and event.kind == ChangeKind.MODIFIED
            and previous.kind in (ChangeKind.CREATED, ChangeKind.RENAMED)
        ):
            # Writing a file that is new in this window is still a creation.
            event = replace(event, kind=previous.kind, old_path=previous.old_path)
        self._pending[path] = event
        self._schedule()
        return True

    def _schedule(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

        loop = self._loop or asyncio.get_running_loop()
        delay = self._config.sync.debounce_delay / 1000
        self._timer = loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush_now()

    def flush_now(self) -> SyncOperation | None:
        """Emits the pending burst immediately, cancelling the timer.

        Returns:
            Optional[SyncOperation]: The emitted operation, or None if nothing was pending.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if not self._pending:
            return None

        events = [
            ChangeEvent(
                path=path,
                kind=event.kind,
                observed_at=event.observed_at,
                old_path=event.old_path,
            )
            for path, event in self._pending.items()
        ]
        self._pending.clear()

        operation = build_operation(events, self._config.sync.commit_message_template)
        logger.debug(f"BATCH {len(events)} change(s) -> {operation.message}")
        try:
            self._sink(operation)
        except Exception:
            logger.exception(f"Failed to hand off {operation.describe()}")
        return operation

    def start(self) -> None:
        self._active = True

    def stop(self) -> None:
        """Cancels the pending flush; unflushed events are dropped."""
        self._active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending:
            logger.info(f"STOPPED: Discarded {len(self._pending)} unflushed change(s).")
        self._pending.clear()
