"""Command-line interface for dotfilesctl."""

from __future__ import annotations

import getpass
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import DEFAULT_CONFIG_FILENAME, REPO_ROOT_ENV, Config, ConfigError, load_config, render_default_config
from .errors import ConfirmationDeclined, DotfilesError
from .manager import DotfilesManager
from .models import DeployResult, InstallResult, LinkState, RemovalResult, StatusReport
from .users import list_real_users

app = typer.Typer(help="Symlink dotfiles from a repository into home directories, with snapshot backups")
console = Console()
err_console = Console(stderr=True)


@dataclass
class CliOptions:
    repo: Path | None = None
    config: Path | None = None


def _info(message: str) -> None:
    console.print(f"[blue]-->[/blue] {escape(message)}")


def _success(message: str) -> None:
    console.print(f"[green]{escape('[OK]')}[/green] {escape(message)}")


def _warn(message: str) -> None:
    err_console.print(f"[yellow]{escape('[! ]')}[/yellow] {escape(message)}")


def _error(message: str) -> None:
    err_console.print(f"[red]{escape('[ERR]')}[/red] {escape(message)}")


def _load_config(options: CliOptions) -> Config:
    return load_config(options.config, repo_root=options.repo)


def _load_manager(options: CliOptions) -> DotfilesManager:
    return DotfilesManager(_load_config(options))


def _default_user() -> str:
    return getpass.getuser()


def _warn_if_unprivileged(user: str | None) -> None:
    if os.geteuid() == 0 or user == _default_user():
        return
    target = f"'{user}'" if user else "every real user"
    _warn(f"Root privileges recommended to manage {target}: sudo dotfilesctl ...")


def _drain_warnings(manager: DotfilesManager) -> None:
    for message in manager.pull_warnings():
        _warn(message)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, ConfirmationDeclined):
        _info(str(exc))
        raise typer.Exit(code=0)
    if isinstance(exc, PermissionError):
        _error("Permission denied. Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        _error(str(exc))
        if "does not exist" in str(exc):
            _warn("Use 'dotfilesctl init' to create a configuration file.")
        raise typer.Exit(code=1)
    if isinstance(exc, DotfilesError):
        _error(str(exc))
        if "Managed directory" in str(exc):
            _warn(f"Point --repo (or ${REPO_ROOT_ENV}) at your dotfiles repository.")
        raise typer.Exit(code=1)
    raise exc


def _human_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    value = size / 1024
    for unit in ("K", "M"):
        if value < 1024:
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}G"


def _format_deploy(user: str, result: DeployResult) -> None:
    for moved in result.displaced:
        _warn(f"Backup: {moved.name}")
    for failure in result.failures:
        _error(failure)
    if result.ok:
        _success(f"{result.linked} link(s) created for {user}")
    else:
        _error(f"{result.linked} link(s) created for {user}, {len(result.failures)} failed")


def _format_install(result: InstallResult) -> None:
    if result.snapshot is not None:
        size = _human_size(result.snapshot.archive_path.stat().st_size)
        _success(f"Backup created: {result.snapshot.archive_path} ({size})")
    if result.rotated:
        _info(f"Removed {result.rotated} old snapshot(s) for {result.user}")
    _format_deploy(result.user, result.deploy)


def _format_removal(user: str, result: RemovalResult) -> None:
    for failure in result.failures:
        _error(failure)
    if result.ok:
        _success(f"Removed {result.removed} link(s) for {user}")
    else:
        _error(f"Removed {result.removed} link(s) for {user}, {len(result.failures)} failed")
    if result.backups_removed:
        _info(f"Removed {result.backups_removed} backup file(s)")


def _format_status(report: StatusReport) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Entry", no_wrap=True)
    table.add_column("State", no_wrap=True)
    table.add_column("Details", overflow="fold")

    status_styles = {
        LinkState.CORRECT: "green",
        LinkState.INCORRECT: "red",
        LinkState.BLOCKED: "red",
        LinkState.MISSING: "yellow",
    }

    for entry in report.entries:
        style = status_styles.get(entry.state, "white")
        table.add_row(
            escape(entry.relative_name),
            f"[{style}]{entry.state.value}[/{style}]",
            escape(entry.details or ""),
        )

    console.print(table)


def _confirmation(assume_yes: bool) -> Callable[[str], bool]:
    if assume_yes:
        return lambda _prompt: True
    return lambda prompt: typer.confirm(prompt, default=False)


@app.callback()
def main(
    ctx: typer.Context,
    repo: Path | None = typer.Option(
        None,
        "--repo",
        "-r",
        envvar=REPO_ROOT_ENV,
        help="Dotfiles repository root",
        file_okay=False,
    ),
    config: Path | None = typer.Option(None, "--config", "-c", help=f"Path to {DEFAULT_CONFIG_FILENAME}"),
) -> None:
    """Manage symlinked dotfiles for one or all users."""

    ctx.obj = CliOptions(repo=repo, config=config)


@app.command()
def init(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", help="Overwrite existing config if present"),
) -> None:
    """Write a starter configuration and create the managed and backup directories."""

    try:
        config = _load_config(CliOptions(repo=ctx.obj.repo))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)

    config_path = config.repo_root / DEFAULT_CONFIG_FILENAME
    if config_path.exists() and not force:
        _error(f"Configuration already exists: {config_path}. Use --force to overwrite.")
        raise typer.Exit(code=1)

    try:
        config.repo_root.mkdir(parents=True, exist_ok=True)
        config_path.write_text(render_default_config())
        _success(f"Created '{config_path}'.")
        for directory in (config.managed_dir, config.backup_root):
            directory.mkdir(parents=True, exist_ok=True)
            _success(f"Ensured directory '{directory}'.")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def install(
    ctx: typer.Context,
    user: str | None = typer.Argument(None, help="User to install for (defaults to the current user)"),
    all_users: bool = typer.Option(False, "--all", help="Install for every real user"),
    backup: bool = typer.Option(True, "--backup/--no-backup", help="Snapshot existing dotfiles first"),
) -> None:
    """Back up existing dotfiles, then link the managed entries into a home directory."""

    if all_users and user:
        _error("Pass either a user name or --all, not both.")
        raise typer.Exit(code=2)

    try:
        manager = _load_manager(ctx.obj)
        if all_users:
            _warn_if_unprivileged(None)
            _info("Installing for all real users...")
            batch = manager.install_all(backup=backup)
            for result in batch.installed:
                _format_install(result)
            for name, reason in batch.failed.items():
                _error(f"{name}: {reason}")
            ok = batch.ok
        else:
            target = user or _default_user()
            _warn_if_unprivileged(target)
            _info(f"Installing dotfiles for {target}...")
            result = manager.install(target, backup=backup)
            _format_install(result)
            ok = result.deploy.ok
        _drain_warnings(manager)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)

    if not ok:
        raise typer.Exit(code=1)


@app.command()
def status(
    ctx: typer.Context,
    user: str | None = typer.Argument(None, help="User to check (defaults to the current user)"),
) -> None:
    """Show whether each managed entry is correctly linked."""

    try:
        manager = _load_manager(ctx.obj)
        account = manager.account(user or _default_user())
        report = manager.status(account.home)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)

    _format_status(report)
    if report.has_problems:
        _warn(f"{report.correct} correct, {report.problems} problem(s). Run 'dotfilesctl install' to relink.")
        raise typer.Exit(code=1)
    _success(f"All {report.correct} managed entries are linked.")


@app.command()
def reinstall(
    ctx: typer.Context,
    user: str | None = typer.Argument(None, help="User to reinstall for (defaults to the current user)"),
) -> None:
    """Remove the managed links and create them again."""

    try:
        manager = _load_manager(ctx.obj)
        account = manager.account(user or _default_user())
        removal, result = manager.reinstall(account.home, owner=account)
        _format_removal(account.name, removal)
        _format_deploy(account.name, result)
        _drain_warnings(manager)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)

    if not (removal.ok and result.ok):
        raise typer.Exit(code=1)


@app.command()
def clean(
    ctx: typer.Context,
    user: str | None = typer.Argument(None, help="User to clean (defaults to the current user)"),
    backup: bool = typer.Option(False, "--backup", help="Also delete <name>.bak_* files"),
) -> None:
    """Remove managed symlinks without relinking."""

    try:
        manager = _load_manager(ctx.obj)
        account = manager.account(user or _default_user())
        removal = manager.remove_links(account.home, also_remove_backups=backup)
        _format_removal(account.name, removal)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)

    if not removal.ok:
        raise typer.Exit(code=1)


@app.command("backup")
def backup_command(
    ctx: typer.Context,
    user: str | None = typer.Argument(None, help="User to back up (defaults to the current user)"),
) -> None:
    """Snapshot existing dotfiles and apply the retention policy."""

    try:
        manager = _load_manager(ctx.obj)
        account = manager.account(user or _default_user())
        _info(f"Creating backup for {account.name}...")
        snapshot = manager.snapshot(account)
        if snapshot is not None:
            size = _human_size(snapshot.archive_path.stat().st_size)
            _success(f"Backup created: {snapshot.archive_path} ({size})")
        rotated = manager.rotate(account.name)
        if rotated:
            _info(f"Removed {rotated} old snapshot(s) for {account.name}")
        _drain_warnings(manager)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def snapshots(
    ctx: typer.Context,
    user: str | None = typer.Argument(None, help="User whose snapshots to list (defaults to the current user)"),
) -> None:
    """List retained snapshots, oldest first."""

    try:
        manager = _load_manager(ctx.obj)
        name = user or _default_user()
        found = manager.snapshots.list_snapshots(name)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)

    if not found:
        _info(f"No snapshots found for {name}")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Snapshot")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    for snapshot in found:
        table.add_row(
            snapshot.name,
            snapshot.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            _human_size(snapshot.archive_path.stat().st_size),
        )
    console.print(table)


@app.command()
def restore(
    ctx: typer.Context,
    snapshot: str = typer.Argument(..., help="Snapshot file name, or 'latest'"),
    user: str | None = typer.Argument(None, help="User to restore for (defaults to the current user)"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
) -> None:
    """Extract a snapshot into a home directory, renaming files it would overwrite."""

    try:
        manager = _load_manager(ctx.obj)
        account = manager.account(user or _default_user())
        result = manager.restore(account, snapshot, confirm=_confirmation(yes))
        for renamed in result.renamed:
            _warn(f"Existing file kept as {renamed.name}")
        for skipped in result.skipped:
            _warn(f"Skipped unsafe archive member '{skipped}'")
        _success(f"Restored {len(result.restored)} item(s) from {result.snapshot.name}")
        _drain_warnings(manager)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def users() -> None:
    """List the accounts that ``install --all`` would process."""

    for name in list_real_users():
        console.print(escape(name))


@app.command()
def version(ctx: typer.Context) -> None:
    """Print the framework version."""

    try:
        config = _load_config(ctx.obj)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
    console.print(f"dotfilesctl {config.version} (repo: {escape(str(config.repo_root))})")


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
