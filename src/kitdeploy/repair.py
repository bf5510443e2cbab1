"""Detection and repair of drift in an installed root.

Detection is read-only and builds on :mod:`kitdeploy.health`. Repair runs in
two phases: missing content is recreated first, then corrupted and drifted
files are backed up and overwritten. Items are repaired independently; a
failed item is reported and the rest carry on.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from kitdeploy.backup import BackupSet, BackupVault
from kitdeploy.errors import KitDeployError, PreconditionFailure, SourceMissing
from kitdeploy.health import CheckKind, run_health_checks
from kitdeploy.install import bundle_files
from kitdeploy.layout import (
    DRIFT_SAMPLE,
    MANIFEST_RELPATH,
    NAMESPACE_SUBTREES,
    StructureState,
    bundle_source_dir,
    bundle_source_file,
)
from kitdeploy.manifest import InstalledFileRecord, ManifestStatus, ManifestStore
from kitdeploy.paths import InstallationRoot, is_installed
from kitdeploy.probe import detect
from kitdeploy.progress import ProgressCallback, ProgressEvent
from kitdeploy.rewrite import copy_asset, count_placeholders, rewrite_in_place

logger = logging.getLogger(__name__)


class ItemKind(StrEnum):
    FILE = "file"
    DIRECTORY = "directory"
    MANIFEST = "manifest"


class IssueCategory(StrEnum):
    MISSING = "missing"
    CORRUPTED = "corrupted"
    PATH_DRIFT = "path_drift"


@dataclass(frozen=True, slots=True)
class MissingItem:
    path: Path
    relative_path: str
    kind: ItemKind


@dataclass(frozen=True, slots=True)
class CorruptedItem:
    path: Path
    relative_path: str
    reason: str


@dataclass(frozen=True, slots=True)
class DriftItem:
    path: Path
    relative_path: str
    current_content: str


@dataclass(frozen=True, slots=True)
class IssueSet:
    """Everything wrong with a root, grouped by how it gets fixed."""

    missing: tuple[MissingItem, ...] = ()
    corrupted: tuple[CorruptedItem, ...] = ()
    path_drift: tuple[DriftItem, ...] = ()

    @property
    def total(self) -> int:
        return len(self.missing) + len(self.corrupted) + len(self.path_drift)

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def summary_lines(self) -> list[str]:
        lines = [f"missing {item.kind}: {item.relative_path}" for item in self.missing]
        lines += [f"corrupted: {item.relative_path} ({item.reason})" for item in self.corrupted]
        lines += [f"path drift: {item.relative_path}" for item in self.path_drift]
        return lines


@dataclass(frozen=True, slots=True)
class ItemResult:
    category: IssueCategory
    relative_path: str
    success: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RepairStats:
    total: int
    succeeded: int
    failed: int
    by_category: dict[IssueCategory, dict[str, int]]


@dataclass
class RepairReport:
    results: list[ItemResult] = field(default_factory=list)
    backup: BackupSet | None = None
    manifest_error: str | None = None

    @property
    def stats(self) -> RepairStats:
        succeeded: Counter[IssueCategory] = Counter()
        failed: Counter[IssueCategory] = Counter()
        for result in self.results:
            (succeeded if result.success else failed)[result.category] += 1
        return RepairStats(
            total=len(self.results),
            succeeded=sum(succeeded.values()),
            failed=sum(failed.values()),
            by_category={
                category: {
                    "total": succeeded[category] + failed[category],
                    "succeeded": succeeded[category],
                    "failed": failed[category],
                }
                for category in IssueCategory
            },
        )

    @property
    def success(self) -> bool:
        return self.manifest_error is None and all(result.success for result in self.results)

    def failures(self) -> list[ItemResult]:
        return [result for result in self.results if not result.success]


class RepairEngine:
    """Detects and heals drift in a root using the bundle it was installed from."""

    def __init__(
        self,
        bundle_root: Path,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.bundle_root = bundle_root
        self._clock = clock

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_issues(self, root: InstallationRoot) -> IssueSet:
        """Inspect *root* and return every issue found. Never mutates anything.

        Raises:
            PreconditionFailure: If the root is not installed or still uses
                the legacy layout.
        """
        path = root.path
        self._check_layout(path)

        required = [s for s in NAMESPACE_SUBTREES if bundle_source_dir(self.bundle_root, s) is not None]
        report = run_health_checks(path, required_dirs=required or None)

        missing: list[MissingItem] = []
        missing_dirs: list[str] = []
        for check in report.failures(CheckKind.DIRECTORY):
            missing_dirs.append(check.relative_path or "")
            missing.append(MissingItem(path / check.relative_path, check.relative_path, ItemKind.DIRECTORY))
        for check in report.failures(CheckKind.FILE):
            rel = check.relative_path or ""
            if any(rel.startswith(f"{d}/") for d in missing_dirs):
                continue
            missing.append(MissingItem(path / rel, rel, ItemKind.FILE))
        if report.manifest.status is ManifestStatus.ABSENT:
            missing.append(MissingItem(path / MANIFEST_RELPATH, MANIFEST_RELPATH, ItemKind.MANIFEST))

        corrupted = [
            CorruptedItem(path / check.relative_path, check.relative_path, check.message)
            for check in report.failures(CheckKind.INTEGRITY)
            if check.relative_path
        ]
        corrupted_paths = {item.relative_path for item in corrupted}

        drift: list[DriftItem] = []
        for rel in DRIFT_SAMPLE:
            if rel in corrupted_paths:
                continue
            candidate = path / rel
            if not candidate.is_file():
                continue
            try:
                content = candidate.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug("Skipping drift scan of %s: %s", candidate, exc)
                continue
            if count_placeholders(content):
                drift.append(DriftItem(candidate, rel, content))

        issues = IssueSet(tuple(missing), tuple(corrupted), tuple(drift))
        logger.info("Found %d issue(s) in %s", issues.total, path)
        return issues

    @staticmethod
    def _check_layout(path: Path) -> None:
        state = detect(path)
        match state:
            case StructureState.CURRENT:
                return
            case StructureState.NONE:
                # A deleted command subtree is drift, not a missing install.
                if is_installed(path) or ManifestStore(path).exists():
                    logger.info("No command subtree in %s; treating it as missing content", path)
                    return
                raise PreconditionFailure(
                    PreconditionFailure.NOT_INSTALLED,
                    f"Nothing installed at {path}; run install first",
                    path=path,
                    operation="repair",
                )
            case StructureState.LEGACY | StructureState.MIXED:
                raise PreconditionFailure(
                    PreconditionFailure.LEGACY_LAYOUT_PRESENT,
                    f"{path} uses the {state} layout; run migrate first",
                    path=path,
                    operation="repair",
                )

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def repair(
        self,
        root: InstallationRoot,
        issues: IssueSet,
        progress: ProgressCallback | None = None,
    ) -> RepairReport:
        """Fix *issues* in *root*, missing content first, destructive fixes second."""
        path = root.path
        report = RepairReport()
        vault = BackupVault(path, clock=self._clock)
        snapshot = ManifestStore(path).query()
        touched: list[str] = []
        step = 0

        def announce(operation: str, rel: str) -> None:
            nonlocal step
            step += 1
            if progress is not None:
                progress(ProgressEvent(step, issues.total, operation, rel))

        # Phase 1: recreate what is missing (nothing to back up)
        manifest_items = [item for item in issues.missing if item.kind is ItemKind.MANIFEST]
        for item in issues.missing:
            if item.kind is ItemKind.MANIFEST:
                continue
            announce("installing", item.relative_path)
            try:
                touched.extend(self._restore_missing(path, item, root.replacement))
            except (OSError, KitDeployError) as exc:
                self._record_failure(report, IssueCategory.MISSING, item.relative_path, exc)
                continue
            report.results.append(ItemResult(IssueCategory.MISSING, item.relative_path, True))

        # Phase 2: destructive fixes, each preceded by a backup
        for item in issues.corrupted:
            announce("replacing", item.relative_path)
            try:
                source = bundle_source_file(self.bundle_root, item.relative_path)
                if source is None:
                    raise SourceMissing(self.bundle_root / item.relative_path, "repair corrupted file")
                self._backup(vault, report, item.relative_path)
                copy_asset(source, item.path, root.replacement, atomic=True)
            except (OSError, KitDeployError) as exc:
                self._record_failure(report, IssueCategory.CORRUPTED, item.relative_path, exc)
                continue
            touched.append(item.relative_path)
            report.results.append(ItemResult(IssueCategory.CORRUPTED, item.relative_path, True))

        for item in issues.path_drift:
            announce("updating-paths", item.relative_path)
            try:
                self._backup(vault, report, item.relative_path)
                rewrite_in_place(item.path, root.replacement)
            except (OSError, KitDeployError) as exc:
                self._record_failure(report, IssueCategory.PATH_DRIFT, item.relative_path, exc)
                continue
            touched.append(item.relative_path)
            report.results.append(ItemResult(IssueCategory.PATH_DRIFT, item.relative_path, True))

        # The manifest goes last so it records the repaired content.
        if snapshot.status is ManifestStatus.ABSENT and (manifest_items or touched):
            for item in manifest_items:
                announce("recording", item.relative_path)
            self._rebuild_manifest(path, report, recorded=bool(manifest_items))
        elif touched:
            self._refresh_manifest(path, snapshot.records if snapshot.loaded else None, touched, report)

        stats = report.stats
        logger.info("Repair of %s: %d succeeded, %d failed", path, stats.succeeded, stats.failed)
        return report

    def _restore_missing(self, path: Path, item: MissingItem, replacement: str) -> list[str]:
        if item.kind is ItemKind.FILE:
            source = bundle_source_file(self.bundle_root, item.relative_path)
            if source is None:
                raise SourceMissing(self.bundle_root / item.relative_path, "restore missing file")
            copy_asset(source, item.path, replacement, atomic=True)
            return [item.relative_path]

        if bundle_source_dir(self.bundle_root, item.relative_path) is None:
            raise SourceMissing(self.bundle_root / item.relative_path, "restore missing directory")
        prefix = f"{item.relative_path}/"
        written = []
        item.path.mkdir(parents=True, exist_ok=True)
        for source, rel in bundle_files(self.bundle_root):
            if rel.startswith(prefix):
                copy_asset(source, path / rel, replacement, atomic=True)
                written.append(rel)
        return written

    def _backup(self, vault: BackupVault, report: RepairReport, relative_path: str) -> None:
        if report.backup is None:
            report.backup = vault.create(reason="repair")
        vault.save_file(report.backup, relative_path)

    @staticmethod
    def _record_failure(report: RepairReport, category: IssueCategory, rel: str, exc: Exception) -> None:
        logger.error("Failed to repair %s (%s): %s", rel, category, exc)
        report.results.append(ItemResult(category, rel, False, str(exc)))

    def _rebuild_manifest(self, path: Path, report: RepairReport, *, recorded: bool) -> None:
        """Write a new manifest covering every bundle file now present in *path*."""
        try:
            records = [
                InstalledFileRecord.for_file(path, rel)
                for _, rel in bundle_files(self.bundle_root)
                if (path / rel).is_file()
            ]
            ManifestStore(path).save(records)
        except (OSError, KitDeployError) as exc:
            if recorded:
                self._record_failure(report, IssueCategory.MISSING, MANIFEST_RELPATH, exc)
            else:
                logger.error("Failed to write manifest in %s: %s", path, exc)
                report.manifest_error = str(exc)
            return
        logger.info("Rebuilt manifest in %s with %d records", path, len(records))
        if recorded:
            report.results.append(ItemResult(IssueCategory.MISSING, MANIFEST_RELPATH, True))

    @staticmethod
    def _refresh_manifest(
        path: Path,
        records: tuple[InstalledFileRecord, ...] | None,
        touched: list[str],
        report: RepairReport,
    ) -> None:
        if records is None:
            logger.info("No readable manifest in %s; not recording repaired files", path)
            return
        by_path = {record.relative_path: record.rebased(path) for record in records}
        try:
            for rel in touched:
                by_path[rel] = InstalledFileRecord.for_file(path, rel)
            ManifestStore(path).save(by_path.values())
        except (OSError, KitDeployError) as exc:
            logger.error("Failed to update manifest in %s: %s", path, exc)
            report.manifest_error = str(exc)
