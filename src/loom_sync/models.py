"""Value types flowing from the filesystem watcher to the sync coordinator."""

import time
from dataclasses import dataclass, field
from enum import Enum


class ChangeKind(Enum):
    """Kinds of filesystem change reported by the watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"

    @property
    def display_name(self) -> str:
        """The verb used in commit messages (e.g. 'Created')."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ChangeKind.CREATED: "Created",
    ChangeKind.MODIFIED: "Updated",
    ChangeKind.DELETED: "Deleted",
    ChangeKind.RENAMED: "Renamed",
}


class SyncTrigger(Enum):
    """What caused a sync operation to exist."""

    CHANGE = "change"
    MANUAL = "manual"
    PULL = "pull"
    PUSH = "push"


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem change inside the vault.

    Attributes:
        path (str): Vault-relative POSIX path of the affected file.
        kind (ChangeKind): What happened to the file.
        observed_at (float): Unix timestamp at which the watcher saw the change.
        old_path (str | None): Previous path, set only for renames.
    """

    path: str
    kind: ChangeKind
    observed_at: float = field(default_factory=time.time)
    old_path: str | None = None


@dataclass
class SyncOperation:
    """A unit of work owned by the coordinator queue.

    Attributes:
        trigger (SyncTrigger): Origin of the operation.
        message (str): The commit message to use.
        changes (tuple[ChangeEvent, ...]): Collapsed events the operation covers.
        paths (tuple[str, ...] | None): Paths to stage, or None to stage the whole tree.
        enqueued_at (float): Unix timestamp of creation.
        retries (int): Number of failed processings so far.
    """

    trigger: SyncTrigger
    message: str
    changes: tuple[ChangeEvent, ...] = ()
    paths: tuple[str, ...] | None = None
    enqueued_at: float = field(default_factory=time.time)
    retries: int = 0

    def describe(self) -> str:
        """Short human-readable summary used in log lines."""
        if self.paths is None:
            scope = "whole tree"
        else:
            scope = ", ".join(self.paths)
        return f"{self.trigger.value} '{self.message}' ({scope})"
