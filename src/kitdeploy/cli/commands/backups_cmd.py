"""Backup set maintenance commands."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import typer
from rich.table import Table

from kitdeploy.backup import BackupVault
from kitdeploy.cli.exit_codes import ExitCode
from kitdeploy.cli.helpers import console, resolve_scope, settings_or_exit

app = typer.Typer(help="Backup set maintenance")


@app.command("list")
def list_backups(
    local: bool = typer.Option(False, "--local/--global", help="Use ./.opencode instead of the user-wide root"),
) -> None:
    """List backup sets, newest first."""
    root = resolve_scope(local, settings_or_exit())
    sets = BackupVault(root.path).list_sets()
    if not sets:
        console.print(f"No backups in {root.path}")
        return

    table = Table(show_header=True)
    table.add_column("Name")
    table.add_column("Created")
    table.add_column("Reason")
    table.add_column("Files", justify="right")
    for backup in sets:
        table.add_row(
            backup.name,
            backup.created.isoformat(timespec="seconds"),
            backup.reason or str(backup.origin_structure or ""),
            str(len(backup.entries)),
        )
    console.print(table)


@app.command("prune")
def prune_backups(
    local: bool = typer.Option(False, "--local/--global", help="Use ./.opencode instead of the user-wide root"),
    older_than_days: Optional[int] = typer.Option(
        None, "--older-than-days", min=0, help="Age threshold (defaults to backups.retention_days)"
    ),
) -> None:
    """Delete backup sets older than the retention period."""
    settings = settings_or_exit()
    root = resolve_scope(local, settings)
    days = older_than_days if older_than_days is not None else settings.backup_retention_days
    result = BackupVault(root.path).prune(older_than=timedelta(days=days))

    console.print(f"Removed {len(result.removed)} backup set(s), kept {len(result.kept)}")
    if result.errors:
        for error in result.errors:
            console.print(f"  [red]{error}[/red]")
        raise typer.Exit(int(ExitCode.FAILURE))
