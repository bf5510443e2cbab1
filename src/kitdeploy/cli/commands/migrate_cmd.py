"""CLI command for migrating a root from the legacy command layout.

Usage:
    kitdeploy migrate              # Migrate with confirmation
    kitdeploy migrate --dry-run    # Preview changes without modifying
    kitdeploy migrate --force      # Skip confirmation prompt
"""

from __future__ import annotations

import typer

from kitdeploy.cli.helpers import console, reported_errors, resolve_scope, settings_or_exit
from kitdeploy.migrate import MigrationEngine


def migrate(
    local: bool = typer.Option(False, "--local/--global", help="Migrate ./.opencode instead of the user-wide root"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without modifying the filesystem"),
    force: bool = typer.Option(False, "--force", help="Skip confirmation prompt"),
) -> None:
    """Move command/gsd/ to commands/gsd/ with backup and rollback.

    A backup of both command subtrees and the manifest is taken first. If
    anything goes wrong the root is restored exactly as it was.
    """
    root = resolve_scope(local, settings_or_exit())
    engine = MigrationEngine()
    plan = engine.plan(root.path)

    if not plan.would_migrate:
        console.print(f"[green]Nothing to migrate[/green] (layout: {plan.state})")
        return

    console.print(f"[bold]Layout:[/bold] {plan.state}")
    for action in plan.actions:
        console.print(f"  - {action}")
    console.print(f"  {len(plan.files_to_migrate)} files, {plan.estimated_bytes} bytes")

    if dry_run:
        console.print("[bold]Dry run -- no changes made[/bold]")
        return

    if not force:
        confirmed = typer.confirm(f"Migrate {root.path}?")
        if not confirmed:
            raise typer.Abort()

    with reported_errors():
        result = engine.migrate(root.path)

    if result.migrated:
        console.print(f"[green]Migration complete.[/green] {result.files_migrated} files moved.")
        if result.backup is not None:
            console.print(f"  Backup: {result.backup.path}")
    else:
        console.print(f"[yellow]Not migrated:[/yellow] {result.reason}")
