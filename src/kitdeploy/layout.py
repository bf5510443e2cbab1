"""On-disk layout of an installation root.

Everything the engines agree on about where assets live: the namespace
subtrees copied from a bundle, the legacy and current command subtrees,
the manifest and version-marker locations, and the naming convention that
decides which paths the installer owns.
"""

from __future__ import annotations

import re
from enum import StrEnum
from pathlib import Path, PurePosixPath

# Token embedded in bundled text assets; rewritten to the root's prefix.
PLACEHOLDER_TOKEN = "@gsd-opencode/"

# Top-level subtrees copied from a bundle into a root, in copy order.
NAMESPACE_SUBTREES: tuple[str, ...] = (
    "agents",
    "commands",
    "get-shit-done",
    "skills",
)

# Older bundles ship the command subtree under its legacy name.
BUNDLE_SOURCE_ALIASES: dict[str, str] = {
    "commands": "command",
}

# Subtrees a healthy root must contain.
REQUIRED_SUBTREES: tuple[str, ...] = (
    "agents",
    "commands",
    "get-shit-done",
)

LEGACY_COMMAND_SUBTREE = "command/gsd"
CURRENT_COMMAND_SUBTREE = "commands/gsd"

OWNED_DIR = "get-shit-done"
MANIFEST_RELPATH = f"{OWNED_DIR}/INSTALLED_FILES.json"
VERSION_RELPATH = f"{OWNED_DIR}/VERSION"
BUNDLE_VERSION_FILE = "VERSION"

BACKUPS_DIRNAME = ".backups"

TEXT_ASSET_SUFFIXES: frozenset[str] = frozenset({".md"})

OWNED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^agents/gsd-"),
    re.compile(r"^command/gsd/"),
    re.compile(r"^commands/gsd/"),
    re.compile(r"^skills/gsd-"),
    re.compile(r"^get-shit-done/"),
)

# Files re-scanned for unreplaced tokens when looking for path drift.
DRIFT_SAMPLE: tuple[str, ...] = (
    "agents/gsd-executor.md",
    "commands/gsd/help.md",
    "get-shit-done/templates/summary.md",
)


class StructureState(StrEnum):
    """Layout of the command subtree inside a root."""

    NONE = "none"
    LEGACY = "legacy"
    CURRENT = "current"
    MIXED = "mixed"


def normalize_relative(path: str | Path) -> str:
    """Return *path* as a forward-slash relative path string."""
    parts = Path(path).parts
    return PurePosixPath(*parts).as_posix() if parts else ""


def is_safe_relative(relative_path: str) -> bool:
    """True when *relative_path* is relative and never climbs out of its root."""
    if not relative_path or "\\" in relative_path or "\x00" in relative_path:
        return False
    pure = PurePosixPath(relative_path)
    if pure.is_absolute() or re.match(r"^[A-Za-z]:", relative_path):
        return False
    return ".." not in pure.parts


def is_namespace_owned(relative_path: str) -> bool:
    """True when the installer owns *relative_path* by naming convention."""
    if not is_safe_relative(relative_path):
        return False
    return any(pattern.match(relative_path) for pattern in OWNED_PATTERNS)


def bundle_source_dir(bundle_root: Path, subtree: str) -> Path | None:
    """Locate *subtree* inside a bundle, honouring legacy source names."""
    direct = bundle_root / subtree
    if direct.is_dir():
        return direct
    alias = BUNDLE_SOURCE_ALIASES.get(subtree)
    if alias is not None and (bundle_root / alias).is_dir():
        return bundle_root / alias
    return None


def bundle_source_file(bundle_root: Path, relative_path: str) -> Path | None:
    """Locate the bundle file that an installed *relative_path* was copied from."""
    parts = PurePosixPath(relative_path).parts
    if not parts:
        return None
    if relative_path == VERSION_RELPATH:
        candidate = bundle_root / BUNDLE_VERSION_FILE
        return candidate if candidate.is_file() else None
    source_dir = bundle_source_dir(bundle_root, parts[0])
    if source_dir is None:
        return None
    candidate = source_dir.joinpath(*parts[1:])
    return candidate if candidate.is_file() else None


def is_text_asset(path: Path) -> bool:
    return path.suffix.lower() in TEXT_ASSET_SUFFIXES
