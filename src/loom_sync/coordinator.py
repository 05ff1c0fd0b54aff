import asyncio
import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime

from .config import Config, ConfigurationError, RemoteConfig
from .constants import APP_NAME, MANUAL_SYNC_MESSAGE
from .gateway import VersionControlGateway
from .git_wrapper import NotARepositoryError
from .models import SyncOperation
from .retry import RetryExhausted, RetryPolicy, retry_async
from .status import StatusBroadcaster, StatusCallback, SyncState, SyncStatus

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a directly invoked sync.

    Attributes:
        success (bool): Whether the request completed without error.
        message (str): Human-readable summary, mirrored in the status feed.
        committed (bool): Whether a new commit was created.
    """

    success: bool
    message: str
    committed: bool = False


class SyncCoordinator:
    """Serializes version-control work for one vault and tracks its status.

    Change operations are queued FIFO and processed by a single drain task.
    Each processing is retried with backoff; an operation that still fails is
    re-queued at the front until its requeue budget runs out, after which it
    is dropped and the coordinator enters the sticky `error` state.

    Manual sync, pull and push are awaited by their caller and share the same
    gateway lock as the drain, so git commands never overlap.
    """

    def __init__(
        self,
        gateway: VersionControlGateway,
        config: Config,
        broadcaster: StatusBroadcaster | None = None,
    ) -> None:
        self._gateway = gateway
        self._config = config
        self._broadcaster = broadcaster or StatusBroadcaster()
        self._status = SyncStatus()
        self._queue: deque[SyncOperation] = deque()
        self._draining = False
        self._drain_task: asyncio.Task | None = None
        self._drain_failed = False
        self._direct_ops = 0
        self._gateway_lock = asyncio.Lock()

    # --- Settings & observation ---

    def update_settings(self, config: Config) -> None:
        """Applies new settings to operations that start after this call."""
        self._config = config

    def subscribe(self, callback: StatusCallback) -> None:
        self._broadcaster.subscribe(callback)

    def unsubscribe(self, callback: StatusCallback) -> None:
        self._broadcaster.unsubscribe(callback)

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def state(self) -> SyncState:
        return self._status.state

    @property
    def last_sync(self) -> datetime | None:
        return self._status.last_sync

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def is_online(self) -> bool:
        return not self._status.state.is_sticky

    def _set_status(
        self, state: SyncState, message: str | None = None, synced: bool = False
    ) -> None:
        """Records a transition and announces it before returning."""
        last_sync = datetime.now() if synced else self._status.last_sync
        self._status = SyncStatus(state=state, message=message, last_sync=last_sync)
        logger.debug(f"STATUS {state.value}: {message or ''}")
        self._broadcaster.announce(self._status)

    def _remote_snapshot(self) -> RemoteConfig:
        return replace(self._config.remote)

    def _retry_policy(self) -> RetryPolicy:
        sync = self._config.sync
        return RetryPolicy(attempts=sync.retry_attempts, base_delay=sync.retry_base_delay)

    # --- Lifecycle ---

    async def _probe(self) -> tuple[SyncState, str]:
        if not await self._gateway.is_initialized():
            return SyncState.OFFLINE, "Git repository not initialized"

        remote = self._remote_snapshot()
        if remote.configured and not await self._gateway.test_connection(remote):
            return SyncState.OFFLINE, "Cannot connect to remote repository"

        return SyncState.IDLE, "Ready to sync"

    async def initialize(self) -> bool:
        """Verifies the repository and remote, settling on `idle` or `offline`.

        Never retried automatically; call again after fixing the cause.

        Returns:
            bool: True if the coordinator is ready to sync.
        """
        try:
            state, message = await self._probe()
        except Exception as e:
            logger.error(f"INIT ERROR: {e}")
            self._set_status(SyncState.ERROR, f"Initialization failed: {e}")
            return False

        self._set_status(state, message)
        return state == SyncState.IDLE

    async def initialize_repository(self) -> bool:
        """Creates the repository (idempotent) and re-runs `initialize`.

        Raises:
            GitError: If repository creation fails, after moving to `error`.
        """
        try:
            await self._gateway.init(self._config)
        except Exception as e:
            logger.error(f"INIT ERROR: {e}")
            self._set_status(SyncState.ERROR, str(e))
            raise

        return await self.initialize()

    async def check_connection(self) -> bool:
        """Re-probes the repository and remote; success clears a sticky status."""
        try:
            state, message = await self._probe()
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            state, message = SyncState.OFFLINE, f"Connectivity check failed: {e}"

        self._set_status(state, message)
        return state == SyncState.IDLE

    async def wait_idle(self) -> None:
        """Waits until no drain is running."""
        while self._drain_task is not None and not self._drain_task.done():
            await self._drain_task

    # --- Queue ---

    def enqueue(self, operation: SyncOperation) -> bool:
        """Appends an operation and starts draining if idle. Never blocks.

        Operations are refused while the status is sticky (`error` or
        `offline`) until a corrective action clears it.

        Returns:
            bool: True if the operation was queued.
        """
        if self._status.state.is_sticky:
            logger.warning(
                f"SKIPPED {operation.describe()}: sync is {self._status.state.value}."
            )
            return False

        self._queue.append(operation)
        if not self._draining:
            self._draining = True
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())
        return True

    async def _drain(self) -> None:
        self._drain_failed = False
        self._set_status(SyncState.SYNCING, "Processing file changes")
        try:
            while self._queue:
                while self._queue:
                    operation = self._queue.popleft()
                    await self._process(operation)
                await self._push_after_drain()
        except Exception as e:
            logger.exception("DRAIN ERROR")
            self._drain_failed = True
            self._set_status(SyncState.ERROR, f"Sync failed: {e}")
        finally:
            self._draining = False

        # Cleared before announcing so a subscriber's enqueue starts a new drain.
        if (
            not self._drain_failed
            and not self._direct_ops
            and not self._status.state.is_sticky
        ):
            self._set_status(SyncState.IDLE, "Sync completed", synced=True)

    async def _process(self, operation: SyncOperation) -> None:
        """Commits one operation; failures are absorbed into the retry budget."""
        policy = self._retry_policy()
        max_requeues = self._config.sync.max_requeues
        paths = list(operation.paths) if operation.paths is not None else None

        try:
            async with self._gateway_lock:
                committed = await retry_async(
                    lambda: self._gateway.commit(operation.message, paths),
                    policy,
                    description=operation.describe(),
                    fatal=(NotARepositoryError,),
                )
        except NotARepositoryError as e:
            logger.error(f"DROPPED {operation.describe()}: {e}")
            self._drain_failed = True
            self._set_status(SyncState.OFFLINE, "Git repository not initialized")
            return
        except RetryExhausted as e:
            operation.retries += 1
            if operation.retries < max_requeues:
                logger.warning(
                    f"REQUEUE {operation.describe()}: processing "
                    f"{operation.retries}/{max_requeues} failed: {e.last_error}"
                )
                self._queue.appendleft(operation)
            else:
                logger.error(
                    f"DROPPED {operation.describe()}: failed after "
                    f"{operation.retries * policy.attempts} attempts: {e.last_error}"
                )
                self._drain_failed = True
                self._set_status(SyncState.ERROR, f"Sync failed: {e.last_error}")
            return

        if committed:
            logger.info(f"COMMITTED {operation.message}")
        else:
            logger.info(f"NO CHANGES {operation.describe()}: nothing to commit.")

    async def _push_after_drain(self) -> None:
        """Best-effort push at the end of a drain; failures are only logged."""
        config = self._config
        remote = self._remote_snapshot()
        if not (config.sync.auto_push and remote.configured):
            return

        try:
            async with self._gateway_lock:
                await self._gateway.push(remote)
            logger.info(f"PUSHED to {remote.name}/{remote.branch}.")
        except Exception as e:
            logger.warning(f"Auto-push failed: {e}")

    # --- Direct operations ---


    def _finish_direct(
        self, previous: SyncStatus, message: str, clears_sticky: bool = False
    ) -> None:
        """Settles the status after a direct operation succeeds.

        A sticky status raised while the operation ran is kept, and so is one
        that held before it unless the operation is allowed to clear it. While
        a drain is still running the status stays `syncing`.
        """
        if self._status.state.is_sticky:
            return
        if previous.state.is_sticky and not clears_sticky:
            self._set_status(previous.state, previous.message)
        elif self._draining:
            self._set_status(SyncState.SYNCING, "Processing file changes", synced=True)
        else:
            self._set_status(SyncState.IDLE, message, synced=True)

    async def perform_manual_sync(self) -> SyncResult:
        """Commits everything outstanding and pushes if configured.

        Returns:
            SyncResult: Never raises for gateway failures; they are reported
            in the result and the status feed.
        """
        if self._status.state == SyncState.SYNCING:
            logger.info("Manual sync skipped: sync already in progress.")
            return SyncResult(False, "Sync already in progress")

        config = self._config
        remote = self._remote_snapshot()
        previous = self._status
        self._direct_ops += 1
        try:
            self._set_status(SyncState.SYNCING, "Manual sync started")
            try:
                async with self._gateway_lock:
                    repo_status = await self._gateway.status()
                    if repo_status.clean:
                        self._finish_direct(
                            previous, "No changes to sync", clears_sticky=True
                        )
                        return SyncResult(True, "No changes to sync")

                    committed = await self._gateway.commit(MANUAL_SYNC_MESSAGE)
                    if config.sync.auto_push and remote.configured:
                        await self._gateway.push(remote)
            except Exception as e:
                message = f"Manual sync failed: {e}"
                logger.error(message)
                self._set_status(SyncState.ERROR, message)
                return SyncResult(False, message)

            self._finish_direct(previous, "Manual sync completed", clears_sticky=True)
            return SyncResult(True, "Manual sync completed", committed=committed)
        finally:
            self._direct_ops -= 1

    def _require_remote(self) -> RemoteConfig:
        remote = self._remote_snapshot()
        if not remote.configured:
            raise ConfigurationError("No remote repository configured")
        return remote

    async def pull(self) -> None:
        """Pulls from the configured remote.

        Raises:
            ConfigurationError: If no remote is configured (status unchanged).
            Exception: Any gateway failure, after moving to `error`.
        """
        remote = self._require_remote()
        previous = self._status
        self._direct_ops += 1
        try:
            self._set_status(SyncState.SYNCING, "Pulling from remote")
            try:
                async with self._gateway_lock:
                    await self._gateway.pull(remote)
            except Exception as e:
                logger.error(f"PULL ERROR from {remote.name}/{remote.branch}: {e}")
                self._set_status(SyncState.ERROR, f"Pull failed: {e}")
                raise

            logger.info(f"PULLED from {remote.name}/{remote.branch}.")
            self._finish_direct(previous, "Pull completed")
        finally:
            self._direct_ops -= 1

    async def push(self) -> None:
        """Pushes to the configured remote.

        Raises:
            ConfigurationError: If no remote is configured (status unchanged).
            Exception: Any gateway failure, after moving to `error`.
        """
        remote = self._require_remote()
        previous = self._status
        self._direct_ops += 1
        try:
            self._set_status(SyncState.SYNCING, "Pushing to remote")
            try:
                async with self._gateway_lock:
                    await self._gateway.push(remote)
            except Exception as e:
                logger.error(f"PUSH ERROR to {remote.name}/{remote.branch}: {e}")
                self._set_status(SyncState.ERROR, f"Push failed: {e}")
                raise

            logger.info(f"PUSHED to {remote.name}/{remote.branch}.")
            self._finish_direct(previous, "Push completed")
        finally:
            self._direct_ops -= 1
