import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class SyncState(Enum):
    """Coarse state of the sync engine.

    `ERROR` and `OFFLINE` are sticky: only a successful initialize, manual
    sync or connectivity check clears them.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    OFFLINE = "offline"

    @property
    def is_sticky(self) -> bool:
        return self in (SyncState.ERROR, SyncState.OFFLINE)


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the sync engine's state.

    Attributes:
        state (SyncState): The current state.
        message (str | None): Human-readable detail for the transition.
        last_sync (datetime | None): When the last successful sync finished.
    """

    state: SyncState = SyncState.IDLE
    message: str | None = None
    last_sync: datetime | None = None


StatusCallback = Callable[[SyncState, str | None], None]


class StatusBroadcaster:
    """Synchronous publish/subscribe registry for status transitions.

    Subscribers are called in registration order, once per announcement,
    using the registry as it stood when `announce` was called.
    """

    def __init__(self) -> None:
        self._subscribers: list[StatusCallback] = []

    def subscribe(self, callback: StatusCallback) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: StatusCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def announce(self, status: SyncStatus) -> None:
        """Delivers a transition to every current subscriber.

        A failing subscriber is logged and skipped; it never prevents delivery
        to the others or propagates into the sync engine.
        """
        for callback in list(self._subscribers):
            try:
                callback(status.state, status.message)
            except Exception:
                logger.exception(f"Status subscriber {callback!r} failed")

    def __len__(self) -> int:
        return len(self._subscribers)
