"""Small filesystem helpers shared by the engines."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Atomically replace *path* with *content* (temp file + rename).

    The temp file lives in the same directory so ``os.replace`` never
    crosses a filesystem boundary.

    Raises:
        OSError: If the write fails. The temp file is removed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def atomic_copy(source: Path, target: Path) -> None:
    """Copy *source* over *target* so readers never see a partial file."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    os.close(fd)
    try:
        shutil.copy2(source, tmp_path)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def iter_files(root: Path) -> list[Path]:
    """All regular files beneath *root*, sorted for deterministic order."""
    return sorted(p for p in root.rglob("*") if p.is_file() and not p.is_symlink())


def remove_tree(path: Path) -> None:
    """Remove *path* whether it is a directory, file or symlink."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def prune_empty_dirs(candidates: Iterable[Path], stop_at: Path) -> tuple[list[Path], list[Path]]:
    """Remove empty directories deepest-first.

    Each candidate and its ancestors up to (not including) *stop_at* are
    considered. Directories that still hold anything are preserved.

    Returns:
        ``(removed, preserved)`` lists of directories.
    """
    seen: set[Path] = set()
    for candidate in candidates:
        current = candidate
        while current != stop_at and stop_at in current.parents:
            seen.add(current)
            current = current.parent

    removed: list[Path] = []
    preserved: list[Path] = []
    # Walk deepest-first so child dirs are removed before parents
    for dirpath in sorted(seen, key=lambda p: (len(p.parts), p.as_posix()), reverse=True):
        if not dirpath.is_dir() or dirpath.is_symlink():
            continue
        if any(dirpath.iterdir()):
            preserved.append(dirpath)
            continue
        dirpath.rmdir()
        removed.append(dirpath)
        logger.debug("Removed empty directory %s", dirpath)
    return removed, preserved
