import os
from pathlib import Path

"""Global constants and configuration path definitions for Loom Sync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the default filtering rules used across the
application.
"""

# --- Identity ---
APP_NAME = "loom-sync"
"""str: The human-readable application name (also the logger name)."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "loom-sync"
"""Path: The directory for runtime state data (logs, pid file)."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/loom-sync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The global configuration file path."""

LOCAL_CONFIG_NAME = "loom.toml"
"""str: Name of the per-vault configuration file, looked up at the vault root."""

PAUSE_MARKER = Path(".git") / "loom_paused"
"""Path: Vault-relative marker file that suspends auto-sync while present."""

# --- Filtering ---
VCS_METADATA_DIRS = frozenset({".git", ".hg", ".svn"})
"""frozenset[str]: Directory names whose contents are never synced."""

TRANSIENT_SUFFIXES = (".tmp", "~", ".swp", ".swo", ".bak")
"""tuple[str, ...]: Editor and OS temporary file suffixes that are never synced."""

TRANSIENT_NAMES = frozenset({".DS_Store", "Thumbs.db", "desktop.ini"})
"""frozenset[str]: OS metadata file names that are never synced."""

DEFAULT_EXCLUDE_PATTERNS = [
    ".obsidian/workspace.json",
    ".obsidian/workspace-mobile.json",
    ".obsidian/cache*",
    "*.tmp",
    "*~",
    ".DS_Store",
    "Thumbs.db",
]
"""list[str]: Default exclusion globs applied to every vault."""

DEFAULT_GITIGNORE = [
    "# Vault workspace files",
    ".obsidian/workspace.json",
    ".obsidian/workspace-mobile.json",
    ".obsidian/cache/",
    "",
    "# Temporary files",
    "*.tmp",
    "*~",
    "*.swp",
    "",
    "# System files",
    ".DS_Store",
    "Thumbs.db",
]
"""list[str]: Lines written to .gitignore when a vault repository is created."""

# --- Sync ---
DEBOUNCE_MIN_MS = 100
DEBOUNCE_MAX_MS = 5000

INITIAL_COMMIT_MESSAGE = "Initial commit from Loom Sync"
MANUAL_SYNC_MESSAGE = "Manual sync from Loom Sync"
