"""Namespace-safe removal of an installation.

Removal is split into a pure :meth:`UninstallEngine.plan` and an
:meth:`UninstallEngine.execute` that only acts on a plan the caller has
confirmed. The manifest decides what gets removed; without a readable
manifest the engine falls back to the naming convention and skips anything
it cannot attribute with certainty. Files outside the installer namespace
are never touched, and directories that still hold foreign files survive.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from kitdeploy.backup import BackupSet, BackupVault
from kitdeploy.errors import KitDeployError, PreconditionFailure
from kitdeploy.fsutil import prune_empty_dirs
from kitdeploy.layout import (
    CURRENT_COMMAND_SUBTREE,
    LEGACY_COMMAND_SUBTREE,
    MANIFEST_RELPATH,
    OWNED_DIR,
    is_namespace_owned,
    normalize_relative,
)
from kitdeploy.manifest import ManifestStore
from kitdeploy.paths import is_within

logger = logging.getLogger(__name__)

# Directories scanned when no manifest is available.
FALLBACK_SCAN_DIRS: tuple[str, ...] = (
    "agents",
    "skills",
    LEGACY_COMMAND_SUBTREE,
    CURRENT_COMMAND_SUBTREE,
    OWNED_DIR,
)

SKIP_AMBIGUOUS = "ambiguous"
REJECT_NOT_OWNED = "outside installer namespace"
REJECT_ESCAPES_ROOT = "resolves outside the root"
REJECT_NOT_FILE = "not a regular file"


class RemovalMode(StrEnum):
    MANIFEST = "manifest"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class PlannedRemoval:
    relative_path: str
    path: Path
    size_bytes: int


@dataclass(frozen=True, slots=True)
class SkippedPath:
    relative_path: str
    reason: str


@dataclass(frozen=True, slots=True)
class RemovalPlan:
    """Everything :meth:`UninstallEngine.execute` will do, decided up front."""

    root: Path
    mode: RemovalMode
    files: tuple[PlannedRemoval, ...] = ()
    missing: tuple[str, ...] = ()
    skipped: tuple[SkippedPath, ...] = ()
    rejected: tuple[SkippedPath, ...] = ()
    directories: tuple[Path, ...] = ()
    manifest_path: Path | None = None

    @property
    def total_bytes(self) -> int:
        return sum(item.size_bytes for item in self.files)

    @property
    def is_empty(self) -> bool:
        return not self.files and self.manifest_path is None

    @property
    def confirmation_token(self) -> str:
        """Short digest of the plan; ``execute`` requires it back."""
        lines = [str(self.root), str(self.mode)]
        lines += [item.relative_path for item in self.files]
        lines.append(str(self.manifest_path or ""))
        return hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()[:12]


@dataclass
class RemovalReport:
    plan: RemovalPlan
    removed: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    directories_removed: list[Path] = field(default_factory=list)
    directories_preserved: list[Path] = field(default_factory=list)
    backup: BackupSet | None = None
    manifest_removed: bool = False

    @property
    def success(self) -> bool:
        return not self.failed


class UninstallEngine:
    """Plans and performs removal of installed files from one root."""

    def __init__(self, *, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock

    def plan(self, root: Path) -> RemovalPlan:
        """Decide what an uninstall of *root* would remove. Never mutates anything."""
        snapshot = ManifestStore(root).query()
        if snapshot.loaded:
            return self._plan_from_manifest(root, [r.relative_path for r in snapshot.records])
        logger.info("No readable manifest in %s (%s); scanning by naming convention", root, snapshot.status)
        return self._plan_from_scan(root)

    @staticmethod
    def _plan_from_manifest(root: Path, relative_paths: list[str]) -> RemovalPlan:
        files: dict[str, PlannedRemoval] = {}
        missing: list[str] = []
        rejected: list[SkippedPath] = []
        for raw in relative_paths:
            rel = normalize_relative(raw)
            if not is_namespace_owned(rel):
                rejected.append(SkippedPath(raw, REJECT_NOT_OWNED))
                continue
            path = root / rel
            if not is_within(path, root):
                rejected.append(SkippedPath(rel, REJECT_ESCAPES_ROOT))
            elif not path.exists() and not path.is_symlink():
                missing.append(rel)
            elif path.is_symlink() or not path.is_file():
                rejected.append(SkippedPath(rel, REJECT_NOT_FILE))
            else:
                files[rel] = PlannedRemoval(rel, path, path.stat().st_size)

        planned = tuple(sorted(files.values(), key=lambda item: item.relative_path))
        return RemovalPlan(
            root=root,
            mode=RemovalMode.MANIFEST,
            files=planned,
            missing=tuple(sorted(set(missing))),
            rejected=tuple(rejected),
            directories=_candidate_dirs(root, planned),
            manifest_path=root / MANIFEST_RELPATH,
        )

    @staticmethod
    def _plan_from_scan(root: Path) -> RemovalPlan:
        files: dict[str, PlannedRemoval] = {}
        skipped: dict[str, SkippedPath] = {}
        for scan_dir in FALLBACK_SCAN_DIRS:
            base = root / scan_dir
            if not base.is_dir() or base.is_symlink():
                continue
            for path in sorted(base.rglob("*")):
                rel = path.relative_to(root).as_posix()
                if not is_namespace_owned(rel) or rel in files or rel in skipped:
                    continue
                if path.is_symlink() or not (path.is_file() or path.is_dir()):
                    skipped[rel] = SkippedPath(rel, SKIP_AMBIGUOUS)
                elif path.is_dir():
                    continue
                elif not is_within(path, root):
                    skipped[rel] = SkippedPath(rel, SKIP_AMBIGUOUS)
                else:
                    files[rel] = PlannedRemoval(rel, path, path.stat().st_size)

        planned = tuple(sorted(files.values(), key=lambda item: item.relative_path))
        return RemovalPlan(
            root=root,
            mode=RemovalMode.FALLBACK,
            files=planned,
            skipped=tuple(sorted(skipped.values(), key=lambda item: item.relative_path)),
            directories=_candidate_dirs(root, planned),
        )

    def execute(
        self,
        root: Path,
        plan: RemovalPlan,
        *,
        confirmation: str | None,
        skip_backup: bool = False,
    ) -> RemovalReport:
        """Carry out *plan*.

        Args:
            root: Root the plan was made for.
            plan: Result of :meth:`plan`.
            confirmation: Must equal ``plan.confirmation_token``.
            skip_backup: Delete without saving copies first.

        Raises:
            PreconditionFailure: If the confirmation does not match the plan.
        """
        if plan.root != root:
            raise PreconditionFailure(
                PreconditionFailure.CONFIRMATION_REQUIRED,
                f"Plan was made for {plan.root}, not {root}",
                path=root,
                operation="uninstall",
            )
        if confirmation != plan.confirmation_token:
            raise PreconditionFailure(
                PreconditionFailure.CONFIRMATION_REQUIRED,
                "Uninstall requires the plan's confirmation token",
                path=root,
                operation="uninstall",
            )

        report = RemovalReport(plan=plan)
        vault = BackupVault(root, clock=self._clock)
        manifest_present = plan.manifest_path is not None and plan.manifest_path.is_file()
        if not skip_backup and (plan.files or manifest_present):
            report.backup = vault.create(reason="uninstall")

        for item in plan.files:
            try:
                if report.backup is not None:
                    vault.save_file(report.backup, item.relative_path)
                item.path.unlink()
            except (OSError, KitDeployError) as exc:
                logger.error("Failed to remove %s: %s", item.path, exc)
                report.failed.append((item.relative_path, str(exc)))
                continue
            report.removed.append(item.relative_path)
            logger.debug("Removed %s", item.path)

        if manifest_present and not report.failed:
            try:
                if report.backup is not None:
                    vault.save_file(report.backup, MANIFEST_RELPATH)
                report.manifest_removed = ManifestStore(root).delete()
            except KitDeployError as exc:
                logger.error("Failed to remove manifest %s: %s", plan.manifest_path, exc)
                report.failed.append((MANIFEST_RELPATH, str(exc)))
        elif manifest_present:
            logger.warning("Keeping manifest %s because some files could not be removed", plan.manifest_path)

        try:
            removed_dirs, preserved_dirs = prune_empty_dirs(plan.directories, stop_at=root)
        except OSError as exc:
            logger.error("Failed to clean up directories in %s: %s", root, exc)
            report.failed.append((str(root), str(exc)))
        else:
            report.directories_removed = removed_dirs
            report.directories_preserved = preserved_dirs

        logger.info(
            "Uninstalled %d file(s) from %s (%d failed, %d directories removed)",
            len(report.removed),
            root,
            len(report.failed),
            len(report.directories_removed),
        )
        return report


def _candidate_dirs(root: Path, files: tuple[PlannedRemoval, ...]) -> tuple[Path, ...]:
    dirs = {item.path.parent for item in files}
    dirs.add(root / OWNED_DIR)
    return tuple(sorted(d for d in dirs if d != root))
