"""Shared console, option parsing and error reporting for CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from kitdeploy.cli.exit_codes import exit_code_for
from kitdeploy.config import InstallerSettings, load_settings
from kitdeploy.errors import KitDeployError, SourceMissing
from kitdeploy.paths import InstallationRoot, Scope, expand_path, resolve_root
from kitdeploy.progress import ProgressCallback, ProgressEvent

console = Console()


def report_error(error: KitDeployError) -> NoReturn:
    """Print *error* and exit with its mapped code."""
    console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(int(exit_code_for(error)))


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn typed engine failures into a printed message and exit code."""
    try:
        yield
    except KitDeployError as error:
        report_error(error)


def settings_or_exit() -> InstallerSettings:
    try:
        return load_settings()
    except KitDeployError as error:
        report_error(error)


def resolve_scope(local: bool, settings: InstallerSettings) -> InstallationRoot:
    scope = Scope.LOCAL if local else Scope.GLOBAL
    return resolve_root(scope, settings=settings)


def resolve_bundle(bundle: Path | None, settings: InstallerSettings) -> Path:
    """Pick the bundle directory from ``--bundle`` or the settings."""
    chosen = bundle or settings.bundle_root
    if chosen is None:
        console.print("[red]No bundle given.[/red] Pass --bundle or set KITDEPLOY_BUNDLE_ROOT.")
        raise typer.Exit(1)
    path = expand_path(chosen)
    if not path.is_dir():
        report_error(SourceMissing(path, "locate bundle"))
    return path


@contextmanager
def progress_reporter(description: str) -> Iterator[ProgressCallback]:
    """Yield a callback that drives a rich progress bar."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description, total=None)

        def on_progress(event: ProgressEvent) -> None:
            progress.update(
                task,
                total=event.total,
                completed=event.index,
                description=f"{event.operation} {event.item}",
            )

        yield on_progress
