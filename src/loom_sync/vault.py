"""Composition root tying the sync components together for one vault.

    watcher -> aggregator -> coordinator -> gateway -> git
                                  |
                                  +-> status broadcaster -> subscribers
"""

import logging
from pathlib import Path

from .aggregator import ChangeAggregator
from .config import Config
from .constants import APP_NAME
from .coordinator import SyncCoordinator, SyncResult
from .gateway import GitGateway
from .git_wrapper import CommitInfo
from .models import ChangeEvent
from .status import StatusBroadcaster, StatusCallback, SyncStatus
from .system import DesktopNotifier
from .watcher import VaultWatcher

logger = logging.getLogger(APP_NAME)


class VaultSync:
    """Operational surface for syncing one vault directory with git.

    Attributes:
        path (Path): The vault root.
        config (Config): The settings currently in effect.
        gateway (GitGateway): Version-control backend.
        aggregator (ChangeAggregator): Debounces watcher events.
        coordinator (SyncCoordinator): Owns the queue and the status.
        watcher (VaultWatcher): Filesystem monitor.
    """

    def __init__(
        self,
        path: Path,
        config: Config | None = None,
        gateway: GitGateway | None = None,
        watcher: VaultWatcher | None = None,
        notifier: DesktopNotifier | None = None,
    ) -> None:
        self.path = path
        self.config = config or Config.load(path)
        self.gateway = gateway or GitGateway(path, self.config)
        self.coordinator = SyncCoordinator(self.gateway, self.config, StatusBroadcaster())
        self.aggregator = ChangeAggregator(self.config, self.coordinator.enqueue)
        self.watcher = watcher or VaultWatcher(path)
        self.notifier = notifier
        if notifier is not None:
            self.coordinator.subscribe(notifier)

    # --- Observation ---

    @property
    def status(self) -> SyncStatus:
        return self.coordinator.status

    @property
    def is_watching(self) -> bool:
        return self.watcher.is_running

    def subscribe(self, callback: StatusCallback) -> None:
        self.coordinator.subscribe(callback)

    def unsubscribe(self, callback: StatusCallback) -> None:
        self.coordinator.unsubscribe(callback)

    async def history(self, limit: int = 10) -> list[CommitInfo]:
        return await self.gateway.log(limit)

    # --- Lifecycle ---

    async def start(self) -> bool:
        """Initializes the coordinator and starts watching if auto-sync is on.

        Returns:
            bool: True if the vault is ready to sync.
        """
        ready = await self.coordinator.initialize()
        if self.config.sync.auto_sync:
            await self._start_watching()
        return ready

    async def stop(self) -> None:
        """Stops watching and waits for an in-flight drain to finish.

        Changes still inside the debounce window are discarded.
        """
        self.watcher.stop()
        self.aggregator.stop()
        await self.coordinator.wait_idle()

    async def _start_watching(self) -> None:
        if self.watcher.is_running:
            return
        if not await self.gateway.is_initialized():
            logger.warning(
                f"Auto-sync not started for {self.path.name}: "
                "initialize the repository first."
            )
            return
        self.aggregator.start()
        self.watcher.start(self._on_change)

    def _stop_watching(self) -> None:
        self.watcher.stop()
        self.aggregator.stop()

    def _on_change(self, event: ChangeEvent) -> None:
        self.aggregator.submit(event)

    # --- Operations ---

    async def initialize_repository(self) -> bool:
        """Creates the vault repository and begins watching if enabled."""
        ready = await self.coordinator.initialize_repository()
        if self.config.sync.auto_sync:
            await self._start_watching()
        return ready

    async def manual_sync(self) -> SyncResult:
        return await self.coordinator.perform_manual_sync()

    async def push(self) -> None:
        await self.coordinator.push()

    async def pull(self) -> None:
        await self.coordinator.pull()

    async def set_auto_sync(self, enabled: bool) -> None:
        """Turns automatic syncing of filesystem changes on or off."""
        self.config.sync.auto_sync = enabled
        if enabled:
            await self._start_watching()
            logger.info(f"Auto-sync enabled for {self.path.name}.")
        else:
            self._stop_watching()
            logger.info(f"Auto-sync disabled for {self.path.name}.")

    async def toggle_auto_sync(self) -> bool:
        """Flips auto-sync and returns the new setting."""
        await self.set_auto_sync(not self.config.sync.auto_sync)
        return self.config.sync.auto_sync

    async def update_settings(self, config: Config) -> None:
        """Applies new settings to every component.

        Operations already being processed keep the settings they started with.
        """
        self.config = config
        self.gateway.update_settings(config)
        self.aggregator.update_settings(config)
        self.coordinator.update_settings(config)
        if self.notifier is not None:
            self.notifier.verbosity = config.notifications.verbosity
        await self.set_auto_sync(config.sync.auto_sync)
