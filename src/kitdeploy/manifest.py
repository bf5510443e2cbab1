"""Installed-file manifest for one installation root.

The manifest is a JSON array of :class:`InstalledFileRecord` stored at
``get-shit-done/INSTALLED_FILES.json``. It is always rewritten wholesale and
atomically; individual records are immutable.

Key concepts:
- InstalledFileRecord: one installed file (absolute/relative path, size, digest)
- ManifestSnapshot: closed result of inspecting a manifest (loaded, absent, unreadable)
- ManifestStore: load/save for a single root
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kitdeploy.errors import FilesystemFailure, ManifestError
from kitdeploy.fsutil import atomic_write_text
from kitdeploy.hasher import hash_file
from kitdeploy.layout import MANIFEST_RELPATH, is_namespace_owned

logger = logging.getLogger(__name__)


class InstalledFileRecord(BaseModel):
    """One file placed into a root by the installer.

    Attributes:
        absolute_path: Location on disk at the time the record was written
        relative_path: Root-relative, forward-slash path (unique per root)
        size_bytes: File size in bytes
        digest: ``sha256:<hex>`` content digest, if known
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    absolute_path: str = Field(..., alias="absolutePath", min_length=1)
    relative_path: str = Field(..., alias="relativePath", min_length=1)
    size_bytes: int = Field(..., alias="sizeBytes", ge=0)
    digest: str | None = Field(default=None)

    @field_validator("relative_path")
    @classmethod
    def _forward_slashes(cls, value: str) -> str:
        return value.replace("\\", "/")

    @classmethod
    def for_file(cls, root: Path, relative_path: str) -> "InstalledFileRecord":
        """Build a fresh record by stat-ing and hashing ``root / relative_path``."""
        path = root / relative_path
        return cls(
            absolute_path=str(path),
            relative_path=relative_path,
            size_bytes=path.stat().st_size,
            digest=hash_file(path),
        )

    def rebased(self, new_root: Path) -> "InstalledFileRecord":
        return self.model_copy(update={"absolute_path": str(new_root / self.relative_path)})

    def with_relative_path(self, root: Path, relative_path: str) -> "InstalledFileRecord":
        return self.model_copy(
            update={"relative_path": relative_path, "absolute_path": str(root / relative_path)}
        )


class ManifestStatus(StrEnum):
    LOADED = "loaded"
    ABSENT = "absent"
    UNREADABLE = "unreadable"


@dataclass(frozen=True, slots=True)
class ManifestSnapshot:
    """Result of inspecting a root's manifest without raising."""

    status: ManifestStatus
    records: tuple[InstalledFileRecord, ...] = ()
    error: str | None = None

    @property
    def loaded(self) -> bool:
        return self.status is ManifestStatus.LOADED


def rebase_records(records: Iterable[InstalledFileRecord], new_root: Path) -> list[InstalledFileRecord]:
    """Point every record's absolute path at *new_root*."""
    return [record.rebased(new_root) for record in records]


def dedupe_records(records: Iterable[InstalledFileRecord]) -> list[InstalledFileRecord]:
    """Keep one record per relative path; later records replace earlier ones in place."""
    by_path: dict[str, InstalledFileRecord] = {}
    for record in records:
        by_path[record.relative_path] = record
    return list(by_path.values())


class ManifestStore:
    """Load and persist the manifest of a single root.

    ``stored_under`` keeps the file beneath another directory, such as a
    staging tree that is about to become *root*. Records are still checked
    against *root*.
    """

    def __init__(self, root: Path, *, stored_under: Path | None = None) -> None:
        self.root = root
        self.path = (stored_under or root) / MANIFEST_RELPATH

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> list[InstalledFileRecord] | None:
        """Return the manifest records, or ``None`` when no manifest exists.

        Raises:
            ManifestError: If the file exists but is unreadable or malformed.
        """
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise ManifestError(f"Cannot read manifest {self.path}: {exc}", path=self.path, operation="load manifest") from exc
        except json.JSONDecodeError as exc:
            raise ManifestError(
                f"Invalid JSON in manifest {self.path} at line {exc.lineno}: {exc.msg}",
                path=self.path,
                operation="load manifest",
            ) from exc

        if not isinstance(payload, list):
            raise ManifestError(
                f"Manifest {self.path} must be a JSON array, got {type(payload).__name__}",
                path=self.path,
                operation="load manifest",
            )
        try:
            return [InstalledFileRecord.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise ManifestError(f"Invalid record in manifest {self.path}: {exc}", path=self.path, operation="load manifest") from exc

    def query(self) -> ManifestSnapshot:
        """Inspect the manifest, folding every outcome into a :class:`ManifestSnapshot`."""
        try:
            records = self.load()
        except ManifestError as exc:
            logger.warning("%s", exc)
            return ManifestSnapshot(ManifestStatus.UNREADABLE, error=str(exc))
        if records is None:
            return ManifestSnapshot(ManifestStatus.ABSENT)
        return ManifestSnapshot(ManifestStatus.LOADED, tuple(records))

    def save(self, records: Iterable[InstalledFileRecord]) -> Path:
        """Atomically replace the manifest with *records*.

        Records are de-duplicated by relative path. Every record must be
        namespace-owned and point inside this root.

        Raises:
            ManifestError: If a record violates the ownership rules.
            FilesystemFailure: If the write fails.
        """
        unique = dedupe_records(records)
        root = self.root.absolute()
        for record in unique:
            if not is_namespace_owned(record.relative_path):
                raise ManifestError(
                    f"Refusing to record path outside the installer namespace: {record.relative_path}",
                    path=self.path,
                    operation="save manifest",
                )
            absolute = Path(record.absolute_path).absolute()
            if absolute != root / record.relative_path:
                raise ManifestError(
                    f"Record {record.relative_path} points outside {root}: {absolute}",
                    path=self.path,
                    operation="save manifest",
                )

        payload = [record.model_dump(by_alias=True) for record in unique]
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n")
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="write manifest", path=self.path) from exc
        logger.debug("Wrote manifest with %d records to %s", len(payload), self.path)
        return self.path

    def delete(self) -> bool:
        """Remove the manifest file. Returns whether one existed."""
        if not self.path.exists():
            return False
        try:
            self.path.unlink()
        except OSError as exc:
            raise FilesystemFailure.from_os_error(exc, operation="remove manifest", path=self.path) from exc
        return True
