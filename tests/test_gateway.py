"""End-to-end tests against a real git binary in a temporary directory."""

import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest

from loom_sync.config import Config, ConfigurationError
from loom_sync.constants import INITIAL_COMMIT_MESSAGE
from loom_sync.gateway import GitGateway, remote_env
from loom_sync.git_wrapper import GitRepo, NotARepositoryError
from loom_sync.models import ChangeEvent, ChangeKind
from loom_sync.status import SyncState
from loom_sync.vault import VaultSync

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def config() -> Config:
    conf = Config()
    conf.committer.name = "Loom Test"
    conf.committer.email = "loom@example.com"
    conf.sync.debounce_delay = 100
    conf.sync.retry_base_delay = 0.0
    return conf


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    remote = tmp_path / "remote.git"
    subprocess.run(
        ["git", "init", "--bare", "--quiet", str(remote)], check=True, capture_output=True
    )
    return remote


def commit_messages(path: Path, ref: str = "HEAD") -> list[str]:
    out = subprocess.run(
        ["git", "log", "--format=%s", ref],
        cwd=path,
        capture_output=True,
        text=True,
        check=True,
    )
    return out.stdout.splitlines()


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Polls `predicate` until it holds or the timeout expires."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.05)


def test_remote_env_disables_prompts(config: Config) -> None:
    env = remote_env(config.remote)
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert "GIT_SSH_COMMAND" not in env

    config.remote.auth_method = "ssh"
    assert "BatchMode=yes" in remote_env(config.remote)["GIT_SSH_COMMAND"]


@pytest.mark.asyncio
async def test_init_creates_repository(vault: Path, config: Config) -> None:
    gateway = GitGateway(vault, config)
    assert await gateway.is_initialized() is False

    await gateway.init(config)
    await gateway.init(config)  # Idempotent

    assert await gateway.is_initialized() is True
    assert await gateway.current_branch() == "main"
    assert (vault / ".gitignore").exists()
    assert commit_messages(vault) == [INITIAL_COMMIT_MESSAGE]


@pytest.mark.asyncio
async def test_commit_stages_only_given_paths(vault: Path, config: Config) -> None:
    gateway = GitGateway(vault, config)
    await gateway.init(config)
    (vault / "a.md").write_text("a")
    (vault / "b.md").write_text("b")

    assert await gateway.commit("Created: a.md", ["a.md"]) is True

    status = await gateway.status()
    assert status.untracked == ["b.md"]
    assert await gateway.commit("Created: a.md", ["a.md"]) is False


@pytest.mark.asyncio
async def test_commit_deletion_and_rename(vault: Path, config: Config) -> None:
    gateway = GitGateway(vault, config)
    await gateway.init(config)
    (vault / "old.md").write_text("text")
    await gateway.commit("Created: old.md", ["old.md"])

    (vault / "old.md").rename(vault / "new.md")
    assert await gateway.commit("Renamed: new.md", ["old.md", "new.md"]) is True
    assert (await gateway.status()).clean

    (vault / "new.md").unlink()
    assert await gateway.commit("Deleted: new.md", None) is True
    assert (await gateway.status()).clean


@pytest.mark.asyncio
async def test_commit_without_repository(vault: Path, config: Config) -> None:
    gateway = GitGateway(vault, config)
    with pytest.raises(NotARepositoryError):
        await gateway.commit("Created: note.md", ["note.md"])


@pytest.mark.asyncio
async def test_history_and_connection(
    vault: Path, config: Config, bare_remote: Path
) -> None:
    config.remote.url = str(bare_remote)
    gateway = GitGateway(vault, config)
    assert await gateway.log() == []

    await gateway.init(config)

    history = await gateway.log(5)
    assert [c.message for c in history] == [INITIAL_COMMIT_MESSAGE]
    assert history[0].author == "Loom Test"
    assert await gateway.test_connection(config.remote) is True

    missing = config.copy()
    missing.remote.url = str(vault.parent / "nowhere.git")
    assert await gateway.test_connection(missing.remote) is False


@pytest.mark.asyncio
async def test_push_and_pull_round_trip(
    tmp_path: Path, vault: Path, config: Config, bare_remote: Path
) -> None:
    config.remote.url = str(bare_remote)
    gateway = GitGateway(vault, config)
    await gateway.init(config)
    await gateway.push(config.remote)

    # A second clone adds a note and pushes it.
    other = tmp_path / "other"
    subprocess.run(
        ["git", "clone", "--quiet", "-b", "main", str(bare_remote), str(other)],
        check=True,
        capture_output=True,
    )
    other_repo = GitRepo(other)
    (other / "remote.md").write_text("from elsewhere")
    other_repo.stage()
    other_repo.commit("Created: remote.md", "Other", "other@example.com")
    other_repo.push("origin", "main")

    await gateway.pull(config.remote)

    assert (vault / "remote.md").read_text() == "from elsewhere"
    assert await gateway.conflicts() == []
    assert "origin/main" in await gateway.list_branches()


@pytest.mark.asyncio
async def test_vault_syncs_created_note(vault: Path, config: Config) -> None:
    """Creating a note produces exactly one commit named after it."""
    sync = VaultSync(vault, config)
    assert await sync.initialize_repository() is True
    before = len(commit_messages(vault))

    try:
        assert sync.is_watching
        (vault / "note.md").write_text("# Hello")
        await wait_for(lambda: len(commit_messages(vault)) > before)
        await asyncio.sleep(0.3)
        await sync.coordinator.wait_idle()
    finally:
        await sync.stop()

    messages = commit_messages(vault)
    assert len(messages) == before + 1
    assert messages[0] == "Created: note.md"
    assert sync.status.state == SyncState.IDLE


@pytest.mark.asyncio
async def test_vault_auto_push(vault: Path, config: Config, bare_remote: Path) -> None:
    config.remote.url = str(bare_remote)
    config.sync.auto_push = True
    config.sync.auto_sync = False
    sync = VaultSync(vault, config)
    await sync.initialize_repository()

    try:
        sync.aggregator.submit(ChangeEvent("note.md", ChangeKind.CREATED))
        (vault / "note.md").write_text("# Hello")
        sync.aggregator.flush_now()
        await sync.coordinator.wait_idle()
    finally:
        await sync.stop()

    assert commit_messages(bare_remote, "main")[0] == "Created: note.md"


@pytest.mark.asyncio
async def test_vault_ignores_excluded_files(vault: Path, config: Config) -> None:
    sync = VaultSync(vault, config)
    await sync.initialize_repository()
    before = commit_messages(vault)

    try:
        (vault / "scratch.tmp").write_text("temp")
        await asyncio.sleep(0.5)
        assert sync.aggregator.pending_count == 0
        assert not sync.coordinator.is_draining
    finally:
        await sync.stop()

    assert commit_messages(vault) == before


@pytest.mark.asyncio
async def test_vault_without_remote(vault: Path, config: Config) -> None:
    sync = VaultSync(vault, config)
    await sync.initialize_repository()
    seen: list[SyncState] = []
    sync.subscribe(lambda state, message: seen.append(state))

    try:
        with pytest.raises(ConfigurationError):
            await sync.push()
        with pytest.raises(ConfigurationError):
            await sync.pull()
    finally:
        await sync.stop()

    assert SyncState.SYNCING not in seen


@pytest.mark.asyncio
async def test_manual_sync_twice_on_clean_tree(vault: Path, config: Config) -> None:
    config.sync.auto_sync = False
    sync = VaultSync(vault, config)
    await sync.initialize_repository()
    assert not sync.is_watching
    before = commit_messages(vault)

    first = await sync.manual_sync()
    second = await sync.manual_sync()

    assert first.message == second.message == "No changes to sync"
    assert commit_messages(vault) == before

    (vault / "note.md").write_text("text")
    result = await sync.manual_sync()
    assert result.committed
    assert commit_messages(vault)[0] == "Manual sync from Loom Sync"
    await sync.stop()
