"""Command-line interface for dotstate."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .config import ConfigError, default_config_path, load_or_create_config
from .doctor import Doctor, DoctorReport, ValidationStatus
from .exceptions import DotstateError, MoveConflictError
from .manager import DotstateManager
from .models import Operation, OperationStatus, OperationSummary

app = typer.Typer(help="Profile-based dotfile manager backed by a git repository")
profile_app = typer.Typer(help="Create, delete and switch profiles")
app.add_typer(profile_app, name="profile")

console = Console()
err_console = Console(stderr=True)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to the dotstate config.toml")

_STATUS_STYLES = {
    OperationStatus.SUCCESS: "green",
    OperationStatus.SKIPPED: "yellow",
    OperationStatus.FAILED: "red",
}

_DOCTOR_STYLES = {
    ValidationStatus.PASS: "green",
    ValidationStatus.WARNING: "yellow",
    ValidationStatus.ERROR: "red",
}


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Manage dotfiles as profiles of symlinks into a git repository."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_manager(config: Path | None) -> DotstateManager:
    config_path = config if config is not None else default_config_path()
    config_obj = load_or_create_config(config_path)
    return DotstateManager(config_obj, config_path=config_path)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Re-run the command with elevated privileges (e.g. `sudo`).")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        console.print(f"[red]{exc}[/red]")
        console.print("[yellow]Check the configuration file or point to another one with --config.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, MoveConflictError):
        console.print(f"[red]{exc}[/red]")
        if exc.validation.requires_confirmation:
            console.print("[yellow]Re-run with --force to discard the other profiles' versions.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, DotstateError):
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    raise exc


def _format_operations(operations: Iterable[Operation]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Target", overflow="fold")
    table.add_column("Status")
    table.add_column("Details", overflow="fold")

    for operation in operations:
        style = _STATUS_STYLES[operation.status]
        table.add_row(
            str(operation.target),
            f"[{style}]{operation.status.value}[/{style}]",
            operation.detail or "",
        )

    console.print(table)


def _report_operations(operations: list[Operation]) -> None:
    """Print the operations and exit non-zero when any of them failed."""

    if operations:
        _format_operations(operations)
    summary = OperationSummary.from_operations(operations)
    console.print(f"{summary.succeeded} succeeded, {summary.skipped} skipped, {summary.failed} failed")
    if summary.failed:
        raise typer.Exit(code=1)


def _format_doctor(report: DoctorReport, *, verbose: bool) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Category")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Message", overflow="fold")

    for result in report.results:
        style = _DOCTOR_STYLES[result.status]
        message = result.message
        if result.fix_action and result.status is not ValidationStatus.PASS:
            message = f"{message} [dim](fix: {result.fix_action})[/dim]"
        if verbose and result.details:
            message = f"{message}\n{result.details}"
        table.add_row(
            result.category.value,
            result.check_name,
            f"[{style}]{result.status.value}[/{style}]",
            message,
        )

    console.print(table)

    for outcome in report.fixes:
        colour = "green" if outcome.success else "red"
        console.print(f"[{colour}]{outcome.action}:[/{colour}] {outcome.message}")

    summary = report.summary
    console.print(
        f"{summary.total} checks: {summary.passed} passed, {summary.warnings} warnings, "
        f"{summary.errors} errors, {summary.fixable} fixable, {summary.fixed} fixed "
        f"({summary.duration_ms:.0f} ms)"
    )


@app.command()
def activate(
    profile: str | None = typer.Argument(None, help="Profile to activate (defaults to the selected one)"),
    config: Path | None = ConfigOption,
) -> None:
    """Symlink the profile's files and the common files into the home directory."""

    try:
        manager = _load_manager(config)
        _report_operations(manager.activate(profile))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def deactivate(
    restore: bool = typer.Option(True, "--restore/--no-restore", help="Put backed up or repository files back"),
    config: Path | None = ConfigOption,
) -> None:
    """Remove the active profile's symlinks."""

    try:
        manager = _load_manager(config)
        _report_operations(manager.deactivate(restore=restore))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def doctor(
    fix: bool = typer.Option(False, "--fix", help="Apply the suggested fixes"),
    verbose: bool = typer.Option(False, "--verbose", help="Show per-file details"),
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
    config: Path | None = ConfigOption,
) -> None:
    """Run health checks and exit with non-zero status if errors are found."""

    try:
        config_path = config if config is not None else default_config_path()
        config_obj = load_or_create_config(config_path)
        report = Doctor(config_obj, config_path=config_path, fix=fix, verbose=verbose).run()
        if json_output:
            typer.echo(report.model_dump_json(indent=2))
        else:
            _format_doctor(report, verbose=verbose)
        if report.has_errors:
            raise typer.Exit(code=1)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("list")
def list_files(config: Path | None = ConfigOption) -> None:
    """Show the files synced by the selected profile and by common."""

    try:
        manager = _load_manager(config)
        active = manager.config.active_profile

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Scope")
        table.add_column("Path")
        table.add_column("Linked")

        rows: list[tuple[str, str]] = []
        if active and manager.manifest.has_profile(active):
            rows.extend((active, relative) for relative in manager.manifest.require_profile(active).synced_files)
        rows.extend(("common", relative) for relative in manager.manifest.get_common_files())

        ledger = manager.symlinks.ledger
        for scope, relative in rows:
            linked = (manager.home / relative) in ledger
            table.add_row(scope, relative, "[green]yes[/green]" if linked else "[yellow]no[/yellow]")

        if not rows:
            console.print("[yellow]No files are synced yet. Use 'dotstate add <path>'.[/yellow]")
            return
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def add(
    path: Path = typer.Argument(..., help="File or directory in the home directory"),
    common: bool = typer.Option(False, "--common", help="Store it as a common file shared by every profile"),
    config: Path | None = ConfigOption,
) -> None:
    """Move a file into the repository and replace it with a symlink."""

    try:
        manager = _load_manager(config)
        _report_operations([manager.add_file(path, common=common)])
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def remove(
    path: str = typer.Argument(..., help="Synced path, relative to the home directory"),
    common: bool = typer.Option(False, "--common", help="Remove it from the common files"),
    config: Path | None = ConfigOption,
) -> None:
    """Stop syncing a file and move it back into the home directory."""

    try:
        manager = _load_manager(config)
        if manager.remove_file(path, common=common):
            console.print(f"[green]Stopped syncing '{path}'.[/green]")
        else:
            console.print(f"[yellow]'{path}' is not synced.[/yellow]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def sync(
    message: str | None = typer.Option(None, "--message", "-m", help="Commit message"),
    config: Path | None = ConfigOption,
) -> None:
    """Commit local changes, pull with rebase and push."""

    try:
        manager = _load_manager(config)
        result = manager.sync(message)
        committed = "committed local changes" if result.committed else "nothing to commit"
        console.print(f"[green]Synced:[/green] {committed}, pulled {result.pulled} commit(s).")
        if result.operations:
            _report_operations(result.operations)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command("move-to-common")
def move_to_common(
    profile: str = typer.Argument(..., help="Profile currently owning the file"),
    path: str = typer.Argument(..., help="Synced path, relative to the home directory"),
    force: bool = typer.Option(False, "--force", help="Discard differing versions in other profiles"),
    config: Path | None = ConfigOption,
) -> None:
    """Move a profile's file into the common files."""

    try:
        manager = _load_manager(config)
        validation = manager.move_to_common(profile, path, force=force)
        for conflict in validation.conflicts:
            console.print(f"[yellow]{conflict.describe()}[/yellow]")
        console.print(f"[green]Moved '{path}' to common.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@profile_app.command("list")
def profile_list(config: Path | None = ConfigOption) -> None:
    """List profiles."""

    try:
        manager = _load_manager(config)
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Profile")
        table.add_column("Files")
        table.add_column("Description", overflow="fold")

        for item in manager.list_profiles():
            name = item.name
            if name == manager.config.active_profile:
                name = f"[green]{name} (active)[/green]" if manager.config.profile_activated else f"{name} (selected)"
            table.add_row(name, str(len(item.synced_files)), item.description or "")
        console.print(table)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@profile_app.command("create")
def profile_create(
    name: str = typer.Argument(..., help="Profile name"),
    description: str | None = typer.Option(None, "--description", "-d", help="Short description"),
    copy_from: str | None = typer.Option(None, "--copy-from", help="Seed the profile with another profile's files"),
    config: Path | None = ConfigOption,
) -> None:
    """Create a profile."""

    try:
        manager = _load_manager(config)
        manager.create_profile(name, description, copy_from=copy_from)
        console.print(f"[green]Created profile '{name}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@profile_app.command("delete")
def profile_delete(
    name: str = typer.Argument(..., help="Profile name"),
    config: Path | None = ConfigOption,
) -> None:
    """Delete a profile and its stored files."""

    try:
        manager = _load_manager(config)
        manager.delete_profile(name)
        console.print(f"[green]Deleted profile '{name}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@profile_app.command("switch")
def profile_switch(
    name: str = typer.Argument(..., help="Profile name"),
    config: Path | None = ConfigOption,
) -> None:
    """Select a profile, swapping symlinks over when one is active."""

    try:
        manager = _load_manager(config)
        operations = manager.switch_profile(name)
        console.print(f"[green]Switched to profile '{name}'.[/green]")
        if operations:
            _report_operations(operations)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
