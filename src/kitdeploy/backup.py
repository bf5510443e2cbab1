"""Timestamped, restorable snapshots of files inside a root.

Each :class:`BackupSet` lives in its own ``<root>/.backups/backup-<ms>/``
directory, mirrors the relative paths of the files it saved, and carries a
``metadata.json`` describing why it was taken. Directories are never reused:
when two sets are requested within the same millisecond the later one takes
the next free timestamp.

Retention is the caller's decision; :meth:`BackupVault.prune` only runs when
asked to.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path

from kitdeploy.errors import FilesystemFailure
from kitdeploy.fsutil import atomic_write_text
from kitdeploy.layout import BACKUPS_DIRNAME, StructureState, is_safe_relative

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup-"
METADATA_FILENAME = "metadata.json"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class BackupEntry:
    relative_path: str
    saved_copy: Path


@dataclass(slots=True)
class BackupSet:
    """One snapshot taken before a destructive step."""

    timestamp: int
    origin_root: Path
    path: Path
    reason: str | None = None
    origin_structure: StructureState | None = None
    entries: list[BackupEntry] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def created(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "created": self.created.isoformat(),
            "originRoot": str(self.origin_root),
            "originStructure": str(self.origin_structure) if self.origin_structure else None,
            "reason": self.reason,
            "entries": [
                {"relativePath": entry.relative_path, "savedCopyPath": str(entry.saved_copy)}
                for entry in self.entries
            ],
            "directories": list(self.directories),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object], path: Path) -> "BackupSet":
        structure = data.get("originStructure")
        entries = [
            BackupEntry(str(item["relativePath"]), Path(str(item["savedCopyPath"])))
            for item in data.get("entries") or []  # type: ignore[union-attr]
        ]
        return cls(
            timestamp=int(data["timestamp"]),  # type: ignore[arg-type]
            origin_root=Path(str(data["originRoot"])),
            path=path,
            reason=data.get("reason"),  # type: ignore[arg-type]
            origin_structure=StructureState(structure) if structure else None,
            entries=entries,
            directories=[str(d) for d in data.get("directories") or []],  # type: ignore[union-attr]
        )


@dataclass
class PruneResult:
    removed: list[Path] = field(default_factory=list)
    kept: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class BackupVault:
    """Creates, restores and prunes backup sets for one root."""

    def __init__(self, root: Path, *, clock: Callable[[], int] | None = None) -> None:
        self.root = root
        self.backups_dir = root / BACKUPS_DIRNAME
        self._clock = clock or _now_ms

    def create(
        self,
        *,
        reason: str | None = None,
        origin_structure: StructureState | None = None,
    ) -> BackupSet:
        """Allocate a new, never-before-used backup directory."""
        timestamp = self._clock()
        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            while True:
                path = self.backups_dir / f"{BACKUP_PREFIX}{timestamp}"
                try:
                    path.mkdir()
                    break
                except FileExistsError:
                    timestamp += 1
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="create backup", path=self.backups_dir) from exc

        backup_set = BackupSet(
            timestamp=timestamp,
            origin_root=self.root,
            path=path,
            reason=reason,
            origin_structure=origin_structure,
        )
        self._write_metadata(backup_set)
        logger.info("Created backup set %s (%s)", path, reason or origin_structure)
        return backup_set

    def save_file(self, backup_set: BackupSet, relative_path: str) -> BackupEntry:
        """Copy ``root / relative_path`` into *backup_set*.

        Raises:
            FilesystemFailure: If the copy fails.
        """
        if not is_safe_relative(relative_path):
            raise FilesystemFailure(
                f"Refusing to back up unsafe path {relative_path!r}",
                path=relative_path,
                operation="backup file",
            )
        entry = self._copy_entry(backup_set, relative_path)
        self._write_metadata(backup_set)
        return entry

    def save_tree(self, backup_set: BackupSet, relative_dir: str) -> list[BackupEntry]:
        """Back up every file and directory under ``root / relative_dir``.

        A missing directory is not an error; nothing is recorded for it.
        """
        base = self.root / relative_dir
        if not base.is_dir():
            return []
        backup_set.directories.append(relative_dir)
        entries: list[BackupEntry] = []
        for path in sorted(base.rglob("*")):
            rel = path.relative_to(self.root).as_posix()
            if path.is_dir() and not path.is_symlink():
                backup_set.directories.append(rel)
            elif path.is_file():
                entries.append(self._copy_entry(backup_set, rel))
        self._write_metadata(backup_set)
        return entries

    def record_directory(self, backup_set: BackupSet, relative_dir: str) -> None:
        """Remember that *relative_dir* existed so restore recreates it."""
        if relative_dir not in backup_set.directories:
            backup_set.directories.append(relative_dir)
            self._write_metadata(backup_set)

    def restore(self, backup_set: BackupSet) -> list[Path]:
        """Copy every saved entry back to its original location.

        Recorded directories are recreated even when they held no files.

        Raises:
            FilesystemFailure: If any restore step fails.
        """
        restored: list[Path] = []
        try:
            for rel in backup_set.directories:
                (self.root / rel).mkdir(parents=True, exist_ok=True)
            for entry in backup_set.entries:
                target = self.root / entry.relative_path
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(entry.saved_copy, target)
                restored.append(target)
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="restore backup", path=backup_set.path) from exc
        logger.info("Restored %d files from %s", len(restored), backup_set.path)
        return restored

    def load(self, path: Path) -> BackupSet:
        metadata = path / METADATA_FILENAME
        try:
            data = json.loads(metadata.read_text(encoding="utf-8"))
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="read backup metadata", path=metadata) from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise FilesystemFailure(
                f"Failed to read backup metadata: invalid JSON ({metadata})",
                path=metadata,
                operation="read backup metadata",
            ) from exc
        return BackupSet.from_dict(data, path)

    def list_sets(self) -> list[BackupSet]:
        """All readable backup sets, newest first."""
        if not self.backups_dir.is_dir():
            return []
        sets: list[BackupSet] = []
        for path in self.backups_dir.iterdir():
            if not path.is_dir() or not path.name.startswith(BACKUP_PREFIX):
                continue
            try:
                sets.append(self.load(path))
            except (FilesystemFailure, KeyError, ValueError) as exc:
                logger.warning("Skipping unreadable backup set %s: %s", path, exc)
        return sorted(sets, key=lambda s: s.timestamp, reverse=True)

    def prune(self, *, older_than: timedelta, now: datetime | None = None) -> PruneResult:
        """Delete backup sets whose timestamp is older than *older_than*.

        The age is taken from the directory name, so sets with damaged
        metadata are still eligible.
        """
        result = PruneResult()
        if not self.backups_dir.is_dir():
            return result
        now = now or datetime.now(timezone.utc)
        cutoff_ms = int((now - older_than).timestamp() * 1000)

        for path in sorted(self.backups_dir.iterdir()):
            if not path.is_dir() or not path.name.startswith(BACKUP_PREFIX):
                continue
            try:
                timestamp = int(path.name[len(BACKUP_PREFIX):])
            except ValueError:
                continue
            if timestamp >= cutoff_ms:
                result.kept.append(path)
                continue
            try:
                shutil.rmtree(path)
                result.removed.append(path)
                logger.info("Pruned backup set %s", path)
            except OSError as exc:
                result.errors.append(f"{path}: {exc}")
                logger.warning("Failed to prune backup set %s: %s", path, exc)
        return result

    def _write_metadata(self, backup_set: BackupSet) -> None:
        target = backup_set.path / METADATA_FILENAME
        try:
            atomic_write_text(target, json.dumps(backup_set.to_dict(), indent=2) + "\n")
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="write backup metadata", path=target) from exc

    def _copy_entry(self, backup_set: BackupSet, relative_path: str) -> BackupEntry:
        source = self.root / relative_path
        saved = backup_set.path / relative_path
        try:
            saved.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, saved)
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="backup file", path=source) from exc

        entry = BackupEntry(relative_path, saved)
        backup_set.entries.append(entry)
        logger.debug("Backed up %s -> %s", source, saved)
        return entry
