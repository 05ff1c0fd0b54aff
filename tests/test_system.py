import subprocess
from unittest.mock import MagicMock

import pytest

from loom_sync import system
from loom_sync.status import SyncState


def test_get_system_by_platform(mocker: MagicMock) -> None:
    """Verifies that the factory picks the strategy for the running OS.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mocker.patch("sys.platform", "darwin")
    assert isinstance(system.get_system(), system.MacOSStrategy)

    mocker.patch("sys.platform", "linux")
    assert isinstance(system.get_system(), system.LinuxStrategy)

    mocker.patch("sys.platform", "win32")
    assert type(system.get_system()) is system.SystemStrategy


def test_macos_notify_escapes_quotes(mocker: MagicMock) -> None:
    """Verifies that double quotes cannot break the AppleScript string."""
    mock_popen = mocker.patch("subprocess.Popen")

    system.MacOSStrategy().notify("Loom Sync", 'Sync failed: "main" rejected')

    args = mock_popen.call_args[0][0]
    assert args[:2] == ["osascript", "-e"]
    assert "'main'" in args[2]
    assert '"main"' not in args[2]


def test_linux_notify_without_notify_send(mocker: MagicMock) -> None:
    """Verifies that a missing notify-send binary is tolerated."""
    mocker.patch("subprocess.Popen", side_effect=FileNotFoundError)
    system.LinuxStrategy().notify("Loom Sync", "hello")


def test_linux_notify_invokes_notify_send(mocker: MagicMock) -> None:
    mock_popen = mocker.patch("subprocess.Popen")
    system.LinuxStrategy().notify("Loom Sync", "hello")
    mock_popen.assert_called_once_with(
        ["notify-send", "Loom Sync", "hello"],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )


@pytest.mark.parametrize(
    "verbosity, state, message, expected",
    [
        ("all", SyncState.IDLE, "Sync completed", False),
        ("all", SyncState.IDLE, "Manual sync completed", True),
        ("all", SyncState.IDLE, "Pull completed", True),
        ("all", SyncState.IDLE, "Ready to sync", False),
        ("all", SyncState.IDLE, None, False),
        ("all", SyncState.SYNCING, "Processing file changes", False),
        ("all", SyncState.ERROR, "Sync failed", True),
        ("errors", SyncState.IDLE, "Push completed", False),
        ("errors", SyncState.OFFLINE, "Cannot connect", True),
        ("none", SyncState.ERROR, "Sync failed", False),
    ],
)
def test_notifier_verbosity(
    verbosity: str, state: SyncState, message: str | None, expected: bool
) -> None:
    strategy = MagicMock(spec=system.SystemStrategy)
    notifier = system.DesktopNotifier(verbosity, strategy)

    notifier(state, message)

    assert strategy.notify.called is expected


def test_notifier_titles_sticky_states() -> None:
    strategy = MagicMock(spec=system.SystemStrategy)
    notifier = system.DesktopNotifier("all", strategy)

    notifier(SyncState.OFFLINE, "Cannot connect to remote repository")

    strategy.notify.assert_called_once_with(
        "Loom Sync (offline)", "Cannot connect to remote repository"
    )
