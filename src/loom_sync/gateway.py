"""The narrow, awaitable interface the sync engine uses to reach git.

`VersionControlGateway` is the contract the coordinator depends on; tests
substitute their own implementation. `GitGateway` satisfies it by running the
blocking `GitRepo` commands in a worker thread so every call is an await
point on the event loop.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from .config import Config, RemoteConfig
from .constants import APP_NAME, DEFAULT_GITIGNORE, INITIAL_COMMIT_MESSAGE
from .git_wrapper import CommitInfo, GitError, GitRepo, RemoteError, RepoStatus

logger = logging.getLogger(APP_NAME)


@runtime_checkable
class VersionControlGateway(Protocol):
    """Operations the coordinator needs from a version-control backend.

    Each call either returns its documented value or raises: `RemoteError`
    for network/authentication failures, `GitError` for local ones.
    `commit` returning False means nothing was staged, which is not an error.
    """

    async def is_initialized(self) -> bool: ...

    async def init(self, config: Config) -> None: ...

    async def add_remote(self, name: str, url: str) -> None: ...

    async def commit(self, message: str, paths: list[str] | None = None) -> bool: ...

    async def push(self, remote: RemoteConfig) -> None: ...

    async def pull(self, remote: RemoteConfig) -> None: ...

    async def status(self) -> RepoStatus: ...

    async def log(self, limit: int = 10) -> list[CommitInfo]: ...

    async def current_branch(self) -> str: ...

    async def list_branches(self) -> list[str]: ...

    async def test_connection(self, remote: RemoteConfig) -> bool: ...

    async def conflicts(self) -> list[str]: ...


def remote_env(remote: RemoteConfig) -> dict[str, str]:
    """Builds a subprocess environment that never blocks on credential prompts.

    Args:
        remote (RemoteConfig): The remote whose credential mode applies.

    Returns:
        dict[str, str]: A copy of the process environment with overrides.
    """
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    if remote.auth_method == "ssh":
        env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"
    return env


class GitGateway:
    """Async gateway over the git command-line tool for one vault.

    Attributes:
        repo (GitRepo): The blocking wrapper doing the actual work.
    """

    def __init__(self, vault_path: Path, config: Config, repo: GitRepo | None = None):
        self.repo = repo or GitRepo(vault_path)
        self._config = config

    def update_settings(self, config: Config) -> None:
        self._config = config

    async def is_initialized(self) -> bool:
        return self.repo.is_initialized()

    async def init(self, config: Config) -> None:
        """Creates the vault repository and makes the initial commit.

        Applies the committer identity, writes a default .gitignore when none
        exists, and registers the configured remote.

        Raises:
            GitError: If any step fails; the message names the failing step.
        """
        try:
            await asyncio.to_thread(self._init_blocking, config)
        except GitError as e:
            raise GitError(f"Failed to initialize repository: {e}", e.stderr) from e

    def _init_blocking(self, config: Config) -> None:
        repo = self.repo
        if not repo.is_initialized():
            repo.init(config.remote.branch)

        if config.committer.name:
            repo.set_config("user.name", config.committer.name)
        if config.committer.email:
            repo.set_config("user.email", config.committer.email)

        gitignore = repo.path / ".gitignore"
        if not gitignore.exists():
            lines = [*DEFAULT_GITIGNORE, "", "# User-defined patterns"]
            lines.extend(config.sync.exclude_patterns)
            gitignore.write_text("\n".join(lines) + "\n")

        if config.remote.configured:
            repo.add_remote(config.remote.name, config.remote.url)

        if repo.rev_parse("HEAD") is None:
            repo.stage()
            repo.commit(
                INITIAL_COMMIT_MESSAGE,
                config.committer.name,
                config.committer.email,
                allow_empty=True,
            )
        logger.info(f"INIT {repo.path.name}: Repository ready on '{config.remote.branch}'.")

    async def add_remote(self, name: str, url: str) -> None:
        await asyncio.to_thread(self.repo.add_remote, name, url)

    async def commit(self, message: str, paths: list[str] | None = None) -> bool:
        """Stages `paths` (or everything) and commits.

        Returns:
            bool: True if a commit was created, False if nothing was staged.
        """
        self.repo.require_initialized()
        committer = self._config.committer
        return await asyncio.to_thread(
            self._commit_blocking, message, paths, committer.name, committer.email
        )

    def _commit_blocking(
        self, message: str, paths: list[str] | None, name: str, email: str
    ) -> bool:
        self.repo.stage(paths)
        if not self.repo.staged_files():
            return False
        self.repo.commit(message, name, email)
        return True

    async def push(self, remote: RemoteConfig) -> None:
        self.repo.require_initialized()
        await asyncio.to_thread(
            self.repo.push, remote.name, remote.branch, remote_env(remote)
        )

    async def pull(self, remote: RemoteConfig) -> None:
        self.repo.require_initialized()
        await asyncio.to_thread(
            self.repo.pull, remote.name, remote.branch, remote_env(remote)
        )

    async def status(self) -> RepoStatus:
        self.repo.require_initialized()
        return await asyncio.to_thread(self.repo.status)

    async def log(self, limit: int = 10) -> list[CommitInfo]:
        """Returns the most recent commits, newest first; empty if unavailable."""
        try:
            return await asyncio.to_thread(self.repo.log, limit)
        except GitError as e:
            logger.debug(f"History unavailable for {self.repo.path.name}: {e}")
            return []

    async def current_branch(self) -> str:
        try:
            branch = await asyncio.to_thread(self.repo.current_branch)
        except GitError as e:
            logger.debug(f"Could not read current branch: {e}")
            branch = ""
        return branch or self._config.remote.branch

    async def list_branches(self) -> list[str]:
        try:
            return await asyncio.to_thread(self.repo.list_branches)
        except GitError as e:
            logger.debug(f"Could not list branches: {e}")
            return []

    async def test_connection(self, remote: RemoteConfig) -> bool:
        """Checks whether the remote answers `git ls-remote`."""
        if not remote.configured:
            return False
        try:
            await asyncio.to_thread(
                self.repo.ls_remote, remote.url, remote_env(remote)
            )
            return True
        except RemoteError as e:
            logger.info(f"OFFLINE {self.repo.path.name}: {e}")
            return False

    async def conflicts(self) -> list[str]:
        return await asyncio.to_thread(self.repo.conflicted_files)
