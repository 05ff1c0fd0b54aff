import argparse
import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon
from .config import CONFIG_FILE, Config, ConfigurationError
from .constants import APP_NAME, LOCAL_CONFIG_NAME, PAUSE_MARKER
from .git_wrapper import GitError
from .status import SyncState
from .vault import VaultSync

logger = logging.getLogger(APP_NAME)
console = Console()

STATE_STYLES = {
    SyncState.IDLE: "bold green",
    SyncState.SYNCING: "bold blue",
    SyncState.ERROR: "bold red",
    SyncState.OFFLINE: "bold yellow",
}


def _require_repo(vault: VaultSync) -> None:
    """Exits with a hint unless the vault is already a git repository."""
    if not vault.gateway.repo.is_initialized():
        console.print(
            "[bold red]Not a git repository.[/bold red] "
            "Run [bold cyan]loom-sync init[/bold cyan] first."
        )
        sys.exit(1)


def init_vault(path: Path, remote: str | None = None) -> None:
    """Creates the vault repository, optionally pointing it at a remote.

    Args:
        path (Path): The vault root.
        remote (str | None): Remote URL overriding the configured one.
    """
    config = Config.load(path)
    if remote:
        config.remote.url = remote

    vault = VaultSync(path, config)
    try:
        with console.status("Initializing repository...", spinner="dots"):
            ready = asyncio.run(vault.coordinator.initialize_repository())
    except GitError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    console.print(f"[bold green]SUCCESS:[/bold green] Repository ready in {path}.")
    if not ready:
        console.print(f"[yellow]WARNING:[/yellow] {vault.status.message}")


def run_sync(path: Path) -> None:
    """Commits all outstanding changes (and pushes when auto_push is on)."""
    vault = VaultSync(path)
    _require_repo(vault)

    with console.status("Syncing vault...", spinner="dots"):
        result = asyncio.run(vault.manual_sync())

    if result.success:
        console.print(f"[bold green]✔ {result.message}.[/bold green]")
    else:
        console.print(f"[bold red]✘ {result.message}[/bold red]")
        sys.exit(1)


def run_remote(path: Path, direction: str) -> None:
    """Pushes to or pulls from the configured remote.

    Args:
        path (Path): The vault root.
        direction (str): 'push' or 'pull'.
    """
    vault = VaultSync(path)
    _require_repo(vault)

    action = vault.push if direction == "push" else vault.pull
    label = "Pushing to" if direction == "push" else "Pulling from"
    try:
        with console.status(f"{label} remote...", spinner="dots"):
            asyncio.run(action())
    except ConfigurationError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}.")
        console.print(f"   Set [cyan]remote.url[/cyan] in {LOCAL_CONFIG_NAME}.")
        sys.exit(1)
    except GitError as e:
        console.print(f"[bold red]{direction.upper()} ERROR:[/bold red] {e}")
        sys.exit(1)

    console.print(f"[bold green]✔ {vault.status.message}.[/bold green]")


def show_status(path: Path, check_remote: bool = False) -> None:
    """Displays the daemon state and the vault repository summary."""
    pid = daemon.read_pid()
    daemon_content = Text()
    daemon_content.append("Daemon: ", style="bold")
    if pid:
        daemon_content.append(f"Running (pid {pid})", style="bold green")
    else:
        daemon_content.append("Stopped", style="bold red")
    console.print(Panel(daemon_content, title="System Status", expand=False))

    vault = VaultSync(path)
    if not vault.gateway.repo.is_initialized():
        console.print(
            Panel(
                "This vault is not a git repository yet.\n"
                "Run [bold cyan]loom-sync init[/bold cyan] to enable syncing.",
                title="Vault Status",
                expand=False,
                border_style="yellow",
            )
        )
        return

    async def gather():
        if check_remote:
            await vault.coordinator.check_connection()
        branch = await vault.gateway.current_branch()
        repo_status = await vault.gateway.status()
        history = await vault.history(1)
        return branch, repo_status, history

    branch, repo_status, history = asyncio.run(gather())
    config = vault.config

    content = Text()
    if check_remote:
        state = vault.status.state
        content.append("State:       ")
        content.append(f"{state.value}\n", style=STATE_STYLES[state])
    content.append(f"Branch:      {branch}\n")
    content.append(
        f"Remote:      {config.remote.url or 'not configured'}\n", style="dim"
    )
    if history:
        last = history[0]
        content.append(
            f"Last Commit: {last.date.strftime('%Y-%m-%d %H:%M')} {last.message}\n"
        )
    else:
        content.append("Last Commit: Never\n")

    pending = len(
        {
            *repo_status.staged,
            *repo_status.modified,
            *repo_status.untracked,
            *repo_status.deleted,
        }
    )
    content.append(f"Pending:     {pending} files changed\n")
    if repo_status.conflicted:
        content.append(
            f"Conflicts:   {', '.join(repo_status.conflicted)}\n", style="bold red"
        )

    if daemon.is_paused(path):
        content.append("Mode:        PAUSED", style="bold yellow")
    elif config.sync.auto_sync:
        content.append("Mode:        Auto-sync", style="green")
    else:
        content.append("Mode:        Manual", style="dim")

    console.print(Panel(content, title="Vault Status", expand=False))


def show_log(path: Path, limit: int = 10) -> None:
    """Prints the most recent commits as a table."""
    vault = VaultSync(path)
    _require_repo(vault)

    commits = asyncio.run(vault.history(limit))
    if not commits:
        console.print("[dim]No commits yet.[/dim]")
        return

    table = Table(title=f"Recent Commits ({path.name})")
    table.add_column("Hash", style="yellow")
    table.add_column("Date", style="cyan")
    table.add_column("Author", style="dim")
    table.add_column("Message")
    for commit in commits:
        table.add_row(
            commit.hash[:7],
            commit.date.strftime("%Y-%m-%d %H:%M"),
            commit.author,
            commit.message,
        )
    console.print(table)


def set_pause_state(path: Path, paused: bool) -> None:
    """Toggles auto-sync for the vault through the pause marker.

    Args:
        path (Path): The vault root.
        paused (bool): True to pause auto-sync, False to resume it.
    """
    if not (path / ".git").exists():
        console.print("[bold red]Not a git repository.[/bold red]")
        sys.exit(1)

    pause_file = path / PAUSE_MARKER
    if paused:
        pause_file.touch()
        console.print("Loom paused. Auto-sync suspended for this vault.", style="bold yellow")
    else:
        pause_file.unlink(missing_ok=True)
        console.print("Loom resumed. Auto-sync active.", style="bold green")


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# Loom Sync Configuration\n\n"
                "[remote]\n"
                '# url = "git@github.com:me/vault.git"\n'
                '# branch = "main"\n\n'
                "[sync]\n"
                '# debounce_delay = "500ms"\n'
                "# auto_push = false\n"
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


CONFIG_REFERENCE = [
    ("remote", "url", "str", '""', "Remote repository URL. Empty disables push/pull."),
    ("", "branch", "str", '"main"', "Branch to commit on and push to."),
    ("", "name", "str", '"origin"', "Git remote name."),
    ("", "auth_method", "str", '"https"', "Credential mode: 'ssh' or 'https'."),
    ("sync", "auto_sync", "bool", "true", "Commit filesystem changes automatically."),
    ("", "auto_push", "bool", "false", "Push after each batch of commits."),
    (
        "",
        "commit_message_template",
        "str",
        '"{action}: {filename}"',
        "Commit message template.",
    ),
    (
        "",
        "debounce_delay",
        "int | str",
        '"500ms"',
        "Quiet window before committing (100ms to 5s).",
    ),
    ("", "exclude_patterns", "list", "[...]", "Extra globs never synced (appended)."),
    ("", "retry_attempts", "int", "2", "Git attempts per processing of a change."),
    ("", "retry_base_delay", "float", "1.0", "First retry delay in seconds (doubles)."),
    ("", "max_requeues", "int", "3", "Processings before a failing change is dropped."),
    ("committer", "name", "str", '""', "Commit author name (defaults to git's)."),
    ("", "email", "str", '""', "Commit author email (defaults to git's)."),
    (
        "notifications",
        "verbosity",
        "str",
        '"all"',
        "Desktop notifications: 'all', 'errors' or 'none'.",
    ),
    (
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    ),
]


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="Loom Sync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    for row in CONFIG_REFERENCE:
        table.add_row(*row)

    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME, description="Keep a notes vault synced with git."
    )
    parser.add_argument(
        "--vault",
        "-C",
        type=Path,
        default=None,
        help="Vault directory (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init", help="Create the vault repository")
    init_parser.add_argument("--remote", help="Remote URL to register as origin")

    watch_parser = subparsers.add_parser("watch", help="Watch the vault and sync changes")
    watch_parser.add_argument(
        "--stdout", action="store_true", help="Log to stdout instead of the log file"
    )

    subparsers.add_parser("sync", help="Commit all pending changes now")
    subparsers.add_parser("push", help="Push to the configured remote")
    subparsers.add_parser("pull", help="Pull from the configured remote")

    status_parser = subparsers.add_parser("status", help="Show daemon and vault status")
    status_parser.add_argument(
        "--check", action="store_true", help="Also test the remote connection"
    )

    log_parser = subparsers.add_parser("log", help="Show recent commits")
    log_parser.add_argument(
        "-n", type=int, default=10, dest="limit", help="Number of commits (default: 10)"
    )

    subparsers.add_parser("pause", help="Suspend auto-sync for this vault")
    subparsers.add_parser("resume", help="Resume auto-sync for this vault")

    config_parser = subparsers.add_parser(
        "config", help="Open global config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the Loom Sync CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)
    path = (args.vault or Path.cwd()).resolve()

    if args.command == "init":
        init_vault(path, args.remote)
    elif args.command == "watch":
        daemon.main(path, interactive=args.stdout)
    elif args.command == "sync":
        run_sync(path)
    elif args.command in ("push", "pull"):
        run_remote(path, args.command)
    elif args.command == "status":
        show_status(path, args.check)
    elif args.command == "log":
        show_log(path, args.limit)
    elif args.command == "pause":
        set_pause_state(path, True)
    elif args.command == "resume":
        set_pause_state(path, False)
    elif args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
