"""CLI command for removing an installation.

Usage:
    kitdeploy uninstall              # Show the plan and ask before removing
    kitdeploy uninstall --dry-run    # Show the plan only
    kitdeploy uninstall --force      # Remove without prompting
    kitdeploy uninstall --no-backup  # Do not keep copies of removed files
"""

from __future__ import annotations

import typer
from rich.table import Table

from kitdeploy.cli.exit_codes import ExitCode
from kitdeploy.cli.helpers import console, reported_errors, resolve_scope, settings_or_exit
from kitdeploy.uninstall import RemovalPlan, UninstallEngine


def _render_plan(plan: RemovalPlan) -> None:
    table = Table(title=f"Uninstall plan ({plan.mode})", show_lines=False)
    table.add_column("Path")
    table.add_column("Action")
    for item in plan.files:
        table.add_row(item.relative_path, "remove")
    for rel in plan.missing:
        table.add_row(rel, "[dim]already gone[/dim]")
    for skipped in plan.skipped:
        table.add_row(skipped.relative_path, f"[yellow]skipped: {skipped.reason}[/yellow]")
    for rejected in plan.rejected:
        table.add_row(rejected.relative_path, f"[red]rejected: {rejected.reason}[/red]")
    console.print(table)
    console.print(f"{len(plan.files)} file(s), {plan.total_bytes} bytes")


def uninstall(
    local: bool = typer.Option(False, "--local/--global", help="Uninstall from ./.opencode instead of the user-wide root"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be removed without removing it"),
    force: bool = typer.Option(False, "--force", help="Skip confirmation prompt"),
    no_backup: bool = typer.Option(False, "--no-backup", help="Do not back up files before removing them"),
) -> None:
    """Remove installed files, leaving anything the installer does not own."""
    root = resolve_scope(local, settings_or_exit())
    engine = UninstallEngine()
    plan = engine.plan(root.path)

    if plan.is_empty:
        console.print(f"[green]Nothing to uninstall[/green] in {root.path}")
        return

    _render_plan(plan)

    if dry_run:
        console.print("[bold]Dry run -- no changes made[/bold]")
        return

    if not force:
        confirmed = typer.confirm(f"Remove {len(plan.files)} file(s) from {root.path}?")
        if not confirmed:
            raise typer.Abort()

    with reported_errors():
        report = engine.execute(root.path, plan, confirmation=plan.confirmation_token, skip_backup=no_backup)

    console.print(f"[green]Removed {len(report.removed)} file(s)[/green]")
    if report.directories_preserved:
        console.print(f"  Kept {len(report.directories_preserved)} director(ies) holding other files")
    if report.backup is not None:
        console.print(f"  Backup: {report.backup.path}")
    if not report.success:
        for rel, error in report.failed:
            console.print(f"  [red]failed[/red] {rel}: {error}")
        raise typer.Exit(int(ExitCode.FAILURE))
