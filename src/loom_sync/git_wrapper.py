import logging
import subprocess
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"
_CONFLICT_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}
_AUTH_MARKERS = (
    "authentication failed",
    "permission denied",
    "could not read username",
    "could not read password",
    "host key verification failed",
)


class GitError(RuntimeError):
    """A git command failed for a local reason (bad state, bad arguments).

    Attributes:
        stderr (str): The captured standard error of the failed command.
    """

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class NotARepositoryError(GitError):
    """The vault has not been initialized as a git repository."""


class RemoteError(GitError):
    """A command talking to a remote failed (network, authentication, rejection)."""

    @property
    def is_auth_failure(self) -> bool:
        text = self.stderr.lower()
        return any(marker in text for marker in _AUTH_MARKERS)


class MergeConflictError(GitError):
    """A pull stopped with unmerged paths.

    Attributes:
        paths (list[str]): The conflicted files.
    """

    def __init__(self, paths: list[str], stderr: str = ""):
        super().__init__(f"Merge conflict in {len(paths)} file(s): {', '.join(paths)}", stderr)
        self.paths = paths


@dataclass
class RepoStatus:
    """Working tree state as reported by `git status`."""

    staged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    conflicted: list[str] = field(default_factory=list)
    clean: bool = True


@dataclass(frozen=True)
class CommitInfo:
    """One entry of the commit history."""

    hash: str
    author: str
    email: str
    date: datetime
    message: str


def parse_porcelain(lines: list[str]) -> RepoStatus:
    """Builds a RepoStatus from `git status --porcelain` (v1) lines."""
    status = RepoStatus(clean=not lines)
    for line in lines:
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        path = path.strip('"')

        if code == "??":
            status.untracked.append(path)
            continue
        if code in _CONFLICT_CODES:
            status.conflicted.append(path)
            continue

        index, worktree = code[0], code[1]
        if index in "MARC":
            status.staged.append(path)
        if worktree == "M":
            status.modified.append(path)
        if index == "D" or worktree == "D":
            status.deleted.append(path)
            if index == "D":
                status.staged.append(path)
    return status


class GitRepo:
    """A wrapper around the Git command-line interface for a vault.

    This class provides methods to execute the Git operations the sync engine
    needs using `subprocess`, abstracting away command construction and output
    handling. Every method is blocking; the async gateway runs them off the
    event loop.

    Attributes:
        path (Path): The file system path to the vault root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the vault root directory. It does not
                         need to be a repository yet (see `init`).
        """
        self.path = path

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        timeout: float | None = None,
        strip: bool = True,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to capture and return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment for the subprocess.
                                            Defaults to None (inherit).
            timeout (Optional[float], optional): Seconds before the command is
                                                 killed. Defaults to None.
            strip (bool, optional): Whether to strip surrounding whitespace.
                                    Defaults to True.

        Returns:
            str:    The stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            GitError: If the git command returns a non-zero exit code or times out.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=env,
                timeout=timeout,
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr or ""
            raise GitError(f"Git error: {stderr.strip() or e}", stderr) from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"Git error: '{' '.join(args)}' timed out") from e

        if not capture:
            return ""
        return res.stdout.strip() if strip else res.stdout.rstrip("\n")

    def is_initialized(self) -> bool:
        """Returns True if the vault root holds a .git directory."""
        return (self.path / ".git").exists()

    def require_initialized(self) -> None:
        """Raises NotARepositoryError unless the vault is a git repository."""
        if not self.is_initialized():
            raise NotARepositoryError(f"Not a git repository: {self.path}")

    def init(self, branch: str) -> None:
        """Creates the repository with `branch` as the unborn initial branch.

        Args:
            branch (str): Name of the initial branch.
        """
        self.path.mkdir(parents=True, exist_ok=True)
        self._run(["init", "--quiet"], capture=False)
        self._run(["symbolic-ref", "HEAD", f"refs/heads/{branch}"], capture=False)

    def set_config(self, key: str, value: str) -> None:
        """Sets a repository-local git configuration value."""
        self._run(["config", key, value], capture=False)

    def remote_url(self, name: str) -> str | None:
        """Returns the URL of the named remote, or None if it does not exist."""
        try:
            return self._run(["remote", "get-url", name]) or None
        except GitError:
            return None

    def add_remote(self, name: str, url: str) -> None:
        """Points the named remote at `url`, replacing any existing definition.

        Args:
            name (str): The remote name (e.g., 'origin').
            url (str): The remote URL.
        """
        if self.remote_url(name) is not None:
            self._run(["remote", "remove", name], capture=False)
        self._run(["remote", "add", name, url], capture=False)

    def stage(self, paths: list[str] | None = None) -> None:
        """Stages changes for the given paths, or the whole tree.

        Paths that no longer exist on disk are removed from the index instead,
        which covers deletions and the source side of renames.

        Args:
            paths (Optional[list[str]]): Vault-relative paths. None stages everything.
        """
        if not paths:
            self._run(["add", "-A"], capture=False)
            return

        present = [p for p in paths if (self.path / p).exists()]
        missing = [p for p in paths if p not in present]
        if present:
            self._run(["add", "-A", "--", *present], capture=False)
        if missing:
            self._run(
                ["rm", "--cached", "--ignore-unmatch", "--quiet", "-r", "--", *missing],
                capture=False,
            )

    def staged_files(self) -> list[str]:
        """Lists paths whose index state differs from HEAD."""
        output = self._run(["diff", "--cached", "--name-only"])
        return output.splitlines() if output else []

    def commit(
        self,
        message: str,
        author_name: str = "",
        author_email: str = "",
        allow_empty: bool = False,
    ) -> None:
        """Creates a new commit from the index with the provided message.

        Args:
            message (str): The commit message.
            author_name (str, optional): Overrides user.name for this commit.
            author_email (str, optional): Overrides user.email for this commit.
            allow_empty (bool, optional): Commit even if nothing is staged.
        """
        cmd = []
        if author_name:
            cmd.extend(["-c", f"user.name={author_name}"])
        if author_email:
            cmd.extend(["-c", f"user.email={author_email}"])
        cmd.extend(["commit", "--quiet", "-m", message])
        if allow_empty:
            cmd.append("--allow-empty")
        self._run(cmd, capture=False)

    def push(self, remote: str, branch: str, env: dict | None = None) -> None:
        """Pushes `branch` to `remote`, setting it as upstream.

        Raises:
            RemoteError: If the push is rejected or the remote is unreachable.
        """
        try:
            self._run(["push", "--quiet", "-u", remote, branch], env=env)
        except GitError as e:
            raise RemoteError(f"Push failed: {e}", e.stderr) from e

    def pull(self, remote: str, branch: str, env: dict | None = None) -> None:
        """Merges `branch` from `remote` into the current branch.

        Raises:
            MergeConflictError: If the merge stopped with conflicted paths.
            RemoteError: If the fetch or merge failed for any other reason.
        """
        try:
            self._run(["pull", "--no-rebase", "--no-edit", remote, branch], env=env)
        except GitError as e:
            if conflicts := self.conflicted_files():
                raise MergeConflictError(conflicts, e.stderr) from e
            raise RemoteError(f"Pull failed: {e}", e.stderr) from e

    def status_porcelain(self, path: str | None = None) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Args:
            path (Optional[str], optional): A specific path to check status for.
                                            Defaults to None.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.
        """
        cmd = ["status", "--porcelain", "--untracked-files=all"]
        if path:
            cmd.extend(["--", path])
        output = self._run(cmd, strip=False)
        return output.splitlines() if output else []

    def status(self) -> RepoStatus:
        """Summarises the working tree into staged/modified/untracked/deleted lists."""
        return parse_porcelain(self.status_porcelain())

    def conflicted_files(self) -> list[str]:
        """Lists paths with unresolved merge conflicts."""
        try:
            output = self._run(["diff", "--name-only", "--diff-filter=U"])
        except GitError as e:
            logger.debug(f"Conflict check failed: {e}")
            return []
        return output.splitlines() if output else []

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'main').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", rev])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def log(self, limit: int = 10) -> list[CommitInfo]:
        """Returns up to `limit` commits reachable from HEAD, newest first.

        An unborn branch (no commits yet) yields an empty list.
        """
        if limit <= 0 or self.rev_parse("HEAD") is None:
            return []

        fmt = _FIELD_SEP.join(["%H", "%an", "%ae", "%aI", "%s"]) + _RECORD_SEP
        output = self._run(["log", f"--max-count={limit}", f"--format={fmt}"])

        commits = []
        for record in output.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            sha, author, email, date, subject = record.split(_FIELD_SEP, 4)
            commits.append(
                CommitInfo(
                    hash=sha,
                    author=author,
                    email=email,
                    date=datetime.fromisoformat(date),
                    message=subject,
                )
            )
        return commits

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch.

        Returns:
            str: The name of the current branch (empty when HEAD is detached).
        """
        return self._run(["branch", "--show-current"])

    def list_branches(self) -> list[str]:
        """Lists local and remote-tracking branches, excluding symbolic HEAD refs."""
        output = self._run(["branch", "-a", "--format=%(refname:short)"])
        return [
            b for b in output.splitlines() if b and not b.endswith("/HEAD") and b != "HEAD"
        ]

    def ls_remote(self, url: str, env: dict | None = None, timeout: float = 10.0) -> None:
        """Queries the remote's heads without fetching objects.

        Raises:
            RemoteError: If the remote cannot be reached or refuses access.
        """
        try:
            self._run(["ls-remote", "--heads", url], env=env, timeout=timeout)
        except GitError as e:
            raise RemoteError(f"Remote unreachable: {e}", e.stderr) from e
