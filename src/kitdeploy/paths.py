"""Installation scope resolution.

Maps a scope (global or local) to the absolute root directory assets are
installed into and the symbolic prefix that placeholder tokens are rewritten
to inside that root.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from kitdeploy.config import InstallerSettings, load_settings
from kitdeploy.layout import VERSION_RELPATH, StructureState
from kitdeploy.probe import detect

LOCAL_DIRNAME = ".opencode"
LOCAL_PREFIX = f"./{LOCAL_DIRNAME}"


class Scope(StrEnum):
    GLOBAL = "global"
    LOCAL = "local"


@dataclass(frozen=True, slots=True)
class InstallationRoot:
    """A resolved installation target."""

    scope: Scope
    path: Path
    symbolic_prefix: str

    @property
    def replacement(self) -> str:
        """Text substituted for every placeholder token."""
        return f"{self.symbolic_prefix.rstrip('/')}/"


def _is_windows() -> bool:
    """Return True when running on Windows."""
    return os.name == "nt"


def expand_path(raw: str | Path) -> Path:
    """Expand ``~`` and make *raw* absolute.

    Raises:
        ValueError: If the path contains a NUL byte.
    """
    text = str(raw)
    if "\x00" in text:
        raise ValueError(f"Path contains a null byte: {text!r}")
    return Path(text).expanduser().absolute()


def is_within(child: Path, parent: Path) -> bool:
    """True when *child* resolves to *parent* or somewhere beneath it."""
    try:
        child.resolve().relative_to(parent.resolve())
    except ValueError:
        return False
    return True


def get_global_root(settings: InstallerSettings | None = None) -> Path:
    """Return the user-wide installation root.

    Resolution order:
    1. KITDEPLOY_GLOBAL_ROOT environment variable / ``global_root`` setting
    2. %APPDATA%\\opencode\\ on Windows (via platformdirs)
    3. ~/.config/opencode on macOS/Linux
    """
    settings = settings if settings is not None else load_settings()
    if settings.global_root is not None:
        return expand_path(settings.global_root)

    if _is_windows():
        from platformdirs import user_config_dir

        return Path(user_config_dir("opencode", appauthor=False, roaming=True))

    return Path.home() / ".config" / "opencode"


def resolve_root(
    scope: Scope | str,
    *,
    cwd: Path | None = None,
    settings: InstallerSettings | None = None,
) -> InstallationRoot:
    """Resolve *scope* to an :class:`InstallationRoot`.

    The global scope rewrites tokens to the absolute root path; the local
    scope rewrites them to ``./.opencode`` so the project stays relocatable.
    """
    scope = Scope(scope)
    match scope:
        case Scope.GLOBAL:
            path = get_global_root(settings)
            return InstallationRoot(scope, path, path.as_posix())
        case Scope.LOCAL:
            base = expand_path(cwd) if cwd is not None else Path.cwd()
            return InstallationRoot(scope, base / LOCAL_DIRNAME, LOCAL_PREFIX)


def is_installed(root: Path) -> bool:
    """True when *root* holds a version marker or any known command layout."""
    if (root / VERSION_RELPATH).is_file():
        return True
    return detect(root) is not StructureState.NONE
