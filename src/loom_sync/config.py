import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, ClassVar

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEBOUNCE_MAX_MS,
    DEBOUNCE_MIN_MS,
    DEFAULT_EXCLUDE_PATTERNS,
    LOCAL_CONFIG_NAME,
)

logger = logging.getLogger(APP_NAME)

AUTH_METHODS = ("ssh", "https")
VERBOSITY_LEVELS = ("all", "errors", "none")


class ConfigurationError(Exception):
    """Raised when an operation needs a setting that is not configured."""


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_millis(value: int | str) -> int:
    """Converts human-readable durations (e.g., '500ms', '1.5s') to milliseconds.

    Bare integers are taken as milliseconds.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration format '{value}'")
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*(ms|s|sec)?$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid duration format '{value}'")
    num, unit = float(match.group(1)), match.group(2) or "ms"
    multiplier = {"ms": 1, "s": 1000, "sec": 1000}
    return int(num * multiplier[unit])


def clamp_debounce(value: int) -> int:
    """Bounds a debounce delay to the supported window, warning when it moves."""
    bounded = max(DEBOUNCE_MIN_MS, min(DEBOUNCE_MAX_MS, value))
    if bounded != value:
        logger.warning(
            f"debounce_delay {value}ms is outside "
            f"{DEBOUNCE_MIN_MS}-{DEBOUNCE_MAX_MS}ms. Using {bounded}ms."
        )
    return bounded


@dataclass
class RemoteConfig:
    """Remote repository settings.

    Instances are treated as immutable snapshots: the coordinator captures one
    when an operation starts, so a settings change never redirects a push that
    is already in flight.

    Attributes:
        url (str): Remote URL. Empty means no remote is configured.
        branch (str): The branch to commit on and push to.
        name (str): The git remote name.
        auth_method (str): Credential mode, 'ssh' or 'https'.
    """

    url: str = ""
    branch: str = "main"
    name: str = "origin"
    auth_method: str = "https"

    @property
    def configured(self) -> bool:
        return bool(self.url.strip())


@dataclass
class SyncConfig:
    """Change-to-commit behaviour.

    Attributes:
        auto_sync (bool): Whether filesystem changes are committed automatically.
        auto_push (bool): Whether each drain of the queue ends with a push.
        commit_message_template (str): Template using {action} and {filename}.
        debounce_delay (int): Quiet window in milliseconds before a burst is committed.
        exclude_patterns (list[str]): Glob patterns of vault paths never synced.
        retry_attempts (int): Gateway attempts per processing of an operation.
        retry_base_delay (float): First backoff delay in seconds (doubles per attempt).
        max_requeues (int): Total processings of an operation before it is dropped.
    """

    auto_sync: bool = True
    auto_push: bool = False
    commit_message_template: str = "{action}: {filename}"
    debounce_delay: int = 500
    exclude_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS)
    )
    retry_attempts: int = 2
    retry_base_delay: float = 1.0
    max_requeues: int = 3


@dataclass
class CommitterConfig:
    """Identity used for commits made by the sync engine.

    Attributes:
        name (str): Committer name. Empty defers to git's own configuration.
        email (str): Committer email. Empty defers to git's own configuration.
    """

    name: str = ""
    email: str = ""


@dataclass
class NotificationsConfig:
    """Desktop notification settings.

    Attributes:
        verbosity (str): 'all', 'errors' or 'none'.
    """

    verbosity: str = "all"


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        remote (RemoteConfig): Remote repository settings.
        sync (SyncConfig): Change batching and retry settings.
        committer (CommitterConfig): Commit identity.
        notifications (NotificationsConfig): Notification settings.
        limits (LimitsConfig): Resource limits.
    """

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    committer: CommitterConfig = field(default_factory=CommitterConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: ClassVar["Config | None"] = None

    @classmethod
    def load(cls, vault_path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and vault sources.

        Args:
            vault_path (Path | None): The vault root to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        instance = cls._global_cache.copy()

        # 2. Load Vault Config (if applicable)
        if vault_path:
            local_toml = vault_path / LOCAL_CONFIG_NAME
            if local_toml.exists():
                instance._merge_from_file(local_toml)

        return instance

    @classmethod
    def clear_cache(cls) -> None:
        """Forces the next `load` to re-read the global configuration file."""
        cls._global_cache = None

    def copy(self) -> "Config":
        """Returns a copy whose sections can be mutated independently."""
        return Config(
            remote=replace(self.remote),
            sync=replace(
                self.sync, exclude_patterns=list(self.sync.exclude_patterns)
            ),
            committer=replace(self.committer),
            notifications=replace(self.notifications),
            limits=replace(self.limits),
        )

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            if "remote" in data:
                self.remote = self._update_dataclass(
                    "remote", self.remote, data["remote"]
                )
            if "committer" in data:
                self.committer = self._update_dataclass(
                    "committer", self.committer, data["committer"]
                )
            if "notifications" in data:
                self.notifications = self._update_dataclass(
                    "notifications", self.notifications, data["notifications"]
                )
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )
            if "sync" in data:
                # Extract the pattern list so it extends rather than replaces.
                new_patterns = data["sync"].pop("exclude_patterns", [])
                if not isinstance(new_patterns, list) or not all(
                    isinstance(p, str) for p in new_patterns
                ):
                    logger.warning(
                        "Config error in [sync].exclude_patterns: "
                        "Expected a list of strings. Ignoring."
                    )
                    new_patterns = []
                self.sync = self._update_dataclass("sync", self.sync, data["sync"])
                if new_patterns:
                    self.sync.exclude_patterns = list(
                        dict.fromkeys([*self.sync.exclude_patterns, *new_patterns])
                    )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "debounce_delay":
                    filtered_updates[k] = clamp_debounce(parse_millis(v))
                elif k == "auth_method" and v not in AUTH_METHODS:
                    raise ValueError(f"Expected one of {', '.join(AUTH_METHODS)}")
                elif k == "verbosity" and v not in VERBOSITY_LEVELS:
                    raise ValueError(f"Expected one of {', '.join(VERBOSITY_LEVELS)}")
                elif k in ("retry_attempts", "max_requeues") and (
                    not isinstance(v, int) or v < 1
                ):
                    raise ValueError("Expected a positive integer")
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
