"""Loom Sync: Automated git synchronization for plain-text notes vaults.

This package provides the command-line interface, the watch daemon, and the
sync engine that turns bursts of file edits into debounced, serialized and
retried git commits, optionally pushed to a remote.
"""

from . import (
    aggregator,
    cli,
    config,
    constants,
    coordinator,
    daemon,
    filters,
    gateway,
    git_wrapper,
    models,
    retry,
    status,
    system,
    vault,
    watcher,
)

__all__ = [
    "aggregator",
    "cli",
    "config",
    "constants",
    "coordinator",
    "daemon",
    "filters",
    "gateway",
    "git_wrapper",
    "models",
    "retry",
    "status",
    "system",
    "vault",
    "watcher",
]
