"""CLI command for installing the asset bundle.

Usage:
    kitdeploy install                       # Install into the user-wide root
    kitdeploy install --local               # Install into ./.opencode
    kitdeploy install --bundle ./dist       # Use a specific bundle
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from kitdeploy.cli.helpers import (
    console,
    progress_reporter,
    reported_errors,
    resolve_bundle,
    resolve_scope,
    settings_or_exit,
)
from kitdeploy.install import InstallEngine


def install(
    local: bool = typer.Option(False, "--local/--global", help="Install into ./.opencode instead of the user-wide root"),
    bundle: Optional[Path] = typer.Option(None, "--bundle", "-b", help="Asset bundle directory"),
) -> None:
    """Install the asset bundle into an empty root.

    Content is staged beside the target and published in one step, so an
    interrupted or failed install leaves nothing behind.
    """
    settings = settings_or_exit()
    root = resolve_scope(local, settings)
    bundle_root = resolve_bundle(bundle, settings)

    with reported_errors(), progress_reporter("Installing...") as on_progress:
        result = InstallEngine(progress=on_progress).install(bundle_root, root)

    console.print(
        f"[green]Installed {result.files_copied} files[/green] "
        f"({result.directories_created} directories) into {root.path}"
    )
    console.print(f"  Manifest: {result.manifest_path}")
