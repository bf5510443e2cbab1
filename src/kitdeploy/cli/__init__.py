"""Command line entry point for kitdeploy."""

from __future__ import annotations

import logging
import sys

import typer

from kitdeploy.cli.commands import backups_app, check, install, migrate, repair, uninstall

app = typer.Typer(
    name="kitdeploy",
    help="Install, migrate, repair and uninstall versioned asset bundles",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """Configure logging for the whole invocation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
        force=True,
    )


app.command()(install)
app.command()(migrate)
app.command()(repair)
app.command()(uninstall)
app.command()(check)
app.add_typer(backups_app, name="backups")


def main() -> None:
    app()


__all__ = ["app", "main"]
