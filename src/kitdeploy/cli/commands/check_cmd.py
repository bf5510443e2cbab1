"""CLI command reporting the health of an installation root."""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from kitdeploy.cli.exit_codes import ExitCode
from kitdeploy.cli.helpers import console, resolve_scope, settings_or_exit
from kitdeploy.health import CheckOutcome, run_health_checks
from kitdeploy.probe import describe

_OUTCOME_STYLE = {
    CheckOutcome.PASSED: "[green]ok[/green]",
    CheckOutcome.FAILED: "[red]fail[/red]",
    CheckOutcome.UNAVAILABLE: "[yellow]n/a[/yellow]",
}


def check(
    local: bool = typer.Option(False, "--local/--global", help="Check ./.opencode instead of the user-wide root"),
    expected_version: Optional[str] = typer.Option(None, "--expect-version", help="Version the installation should report"),
) -> None:
    """Report layout, manifest, version and integrity of an installation."""
    root = resolve_scope(local, settings_or_exit())
    details = describe(root.path)
    console.print(f"[bold]Root:[/bold] {root.path} ({root.scope})")
    console.print(f"[bold]Layout:[/bold] {details.state} (next: {details.recommended_action})")

    report = run_health_checks(root.path, expected_version=expected_version)
    table = Table(show_header=True)
    table.add_column("Check")
    table.add_column("Result")
    table.add_column("Detail")
    for item in report.checks:
        table.add_row(item.name, _OUTCOME_STYLE[item.outcome], item.message)
    console.print(table)

    if not report.passed:
        raise typer.Exit(int(ExitCode.FAILURE))
