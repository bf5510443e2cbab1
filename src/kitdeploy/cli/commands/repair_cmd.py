"""CLI command for detecting and repairing drift in an installed root."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from kitdeploy.cli.exit_codes import ExitCode
from kitdeploy.cli.helpers import (
    console,
    progress_reporter,
    reported_errors,
    resolve_bundle,
    resolve_scope,
    settings_or_exit,
)
from kitdeploy.repair import RepairEngine


def repair(
    local: bool = typer.Option(False, "--local/--global", help="Repair ./.opencode instead of the user-wide root"),
    bundle: Optional[Path] = typer.Option(None, "--bundle", "-b", help="Asset bundle directory"),
    dry_run: bool = typer.Option(False, "--dry-run", help="List issues without fixing them"),
) -> None:
    """Restore missing files, replace corrupted ones and fix unreplaced paths."""
    settings = settings_or_exit()
    root = resolve_scope(local, settings)
    engine = RepairEngine(resolve_bundle(bundle, settings))

    with reported_errors():
        issues = engine.detect_issues(root)

    if issues.is_empty:
        console.print("[green]No issues found.[/green]")
        return

    console.print(f"[bold]{issues.total} issue(s) found:[/bold]")
    for line in issues.summary_lines():
        console.print(f"  {line}")

    if dry_run:
        console.print("[bold]Dry run -- no changes made[/bold]")
        raise typer.Exit(int(ExitCode.FAILURE))

    with progress_reporter("Repairing...") as on_progress:
        report = engine.repair(root, issues, on_progress)

    stats = report.stats
    console.print(f"Repaired {stats.succeeded}/{stats.total} item(s)")
    if report.backup is not None:
        console.print(f"  Backup: {report.backup.path}")
    if not report.success:
        for failure in report.failures():
            console.print(f"  [red]failed[/red] {failure.relative_path}: {failure.error}")
        if report.manifest_error:
            console.print(f"  [red]manifest not updated[/red]: {report.manifest_error}")
        raise typer.Exit(int(ExitCode.FAILURE))
