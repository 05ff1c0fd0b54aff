import asyncio
import atexit
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config
from .constants import APP_NAME, LOG_FILE, PAUSE_MARKER, PID_FILE, STATE_DIR
from .system import DesktopNotifier
from .vault import VaultSync

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

PAUSE_POLL_INTERVAL = 1.0


def setup_logging(interactive: bool, max_log_size: int = 5 * 1024 * 1024) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to file/stderr
                            with rotation enabled.
        max_log_size (int): Bytes before the log file is rotated.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Re-running (e.g. in tests) must not stack duplicate handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        # In daemon mode, rotate logs to file.
        try:
            STATE_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE,
                maxBytes=max_log_size,
                backupCount=5,
            )
        except OSError as e:
            logger.warning(f"File logging disabled: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def write_pid_file() -> None:
    """Records the daemon PID and removes it again at exit."""
    try:
        STATE_DIR.mkdir(parents=True, exist_ok=True)
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        # Ensure cleanup on exit.
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


def read_pid() -> int | None:
    """Returns the PID of a running daemon, or None."""
    if not PID_FILE.exists():
        return None
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
    except (ValueError, OSError):
        return None
    return pid


def is_paused(vault_path: Path) -> bool:
    return (vault_path / PAUSE_MARKER).exists()


class Daemon:
    """Foreground watch loop for one vault.

    Stops on SIGINT/SIGTERM, reloads configuration on SIGHUP, and honours the
    pause marker by suspending auto-sync while it exists.
    """

    def __init__(self, vault_path: Path, vault: VaultSync | None = None):
        self.vault_path = vault_path
        if vault is None:
            config = Config.load(vault_path)
            notifier = DesktopNotifier(config.notifications.verbosity)
            vault = VaultSync(vault_path, config, notifier=notifier)
        self.vault = vault
        self.wanted_auto_sync = self.vault.config.sync.auto_sync
        self.paused = False
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        logger.info("Shutdown requested.")
        self._stop.set()

    async def reload(self) -> None:
        """Re-reads global and vault configuration and applies it."""
        Config.clear_cache()
        config = Config.load(self.vault_path)
        self.wanted_auto_sync = config.sync.auto_sync
        if self.paused:
            config.sync.auto_sync = False
        await self.vault.update_settings(config)
        logger.info("RELOADED configuration.")

    async def check_pause(self) -> None:
        """Applies a change of the pause marker to auto-sync."""
        paused = is_paused(self.vault_path)
        if paused == self.paused:
            return
        self.paused = paused
        if paused:
            logger.info(f"PAUSED {self.vault_path.name}: auto-sync suspended.")
            await self.vault.set_auto_sync(False)
        else:
            logger.info(f"RESUMED {self.vault_path.name}.")
            await self.vault.set_auto_sync(self.wanted_auto_sync)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            loop.add_signal_handler(signal.SIGINT, self.request_stop)
            loop.add_signal_handler(signal.SIGTERM, self.request_stop)
            if hasattr(signal, "SIGHUP"):
                loop.add_signal_handler(
                    signal.SIGHUP, lambda: loop.create_task(self.reload())
                )
        except (NotImplementedError, RuntimeError) as e:
            # Not supported on this platform (e.g. Windows).
            logger.debug(f"Signal handlers unavailable: {e}")

    async def run(self) -> None:
        """Runs until a stop is requested."""
        loop = asyncio.get_running_loop()
        self._install_signal_handlers(loop)

        self.paused = is_paused(self.vault_path)
        if self.paused:
            self.vault.config.sync.auto_sync = False
            logger.info(f"PAUSED {self.vault_path.name}: auto-sync suspended.")

        ready = await self.vault.start()
        if not ready:
            status = self.vault.status
            logger.warning(f"Not ready to sync: {status.message}")

        try:
            while not self._stop.is_set():
                try:
                    await asyncio.wait_for(self._stop.wait(), PAUSE_POLL_INTERVAL)
                except asyncio.TimeoutError:
                    await self.check_pause()
        finally:
            await self.vault.stop()
            logger.info(f"STOPPED {self.vault_path.name}.")


def main(vault_path: Path | None = None, interactive: bool = False) -> None:
    """Entry point of the watch daemon.

    Args:
        vault_path (Path | None): The vault to watch. Defaults to the cwd.
        interactive (bool): Log to stdout instead of the rotating log file.
    """
    path = (vault_path or Path.cwd()).resolve()
    config = Config.load(path)
    setup_logging(interactive, config.limits.max_log_size)

    if not interactive:
        write_pid_file()

    try:
        asyncio.run(Daemon(path).run())
    except Exception:
        logger.exception(f"DAEMON ERROR {path.name}")
        raise


if __name__ == "__main__":
    main()
