import logging
import subprocess
import sys

from .constants import APP_NAME
from .status import SyncState

logger = logging.getLogger(APP_NAME)

NOTIFICATION_TITLE = "Loom Sync"

# Idle transitions worth announcing: results of user-requested operations.
REPORTED_RESULTS = frozenset(
    {"Manual sync completed", "No changes to sync", "Pull completed", "Push completed"}
)


class SystemStrategy:
    """Base class defining the interface for system-level interactions."""

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        pass


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{title}"'
        try:
            subprocess.Popen(
                ["osascript", "-e", script],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Notification failed: {e}")


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.Popen(
                ["notify-send", title, message],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError:
            logger.debug("notify-send not available; notification skipped.")


def get_system() -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy, or the base
        SystemStrategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()


class DesktopNotifier:
    """Status subscriber that turns transitions into desktop notifications.

    Verbosity:
        all: errors, offline, and the results of manual sync, pull and push.
        errors: errors and offline only.
        none: nothing.
    """

    def __init__(self, verbosity: str = "all", system: SystemStrategy | None = None):
        self.verbosity = verbosity
        self.system = system or get_system()

    def should_notify(self, state: SyncState, message: str | None) -> bool:
        if self.verbosity == "none":
            return False
        if state.is_sticky:
            return True
        return (
            self.verbosity == "all"
            and state == SyncState.IDLE
            and message in REPORTED_RESULTS
        )

    def __call__(self, state: SyncState, message: str | None) -> None:
        if not self.should_notify(state, message):
            return
        title = NOTIFICATION_TITLE
        if state.is_sticky:
            title = f"{NOTIFICATION_TITLE} ({state.value})"
        self.system.notify(title, message or state.value)
