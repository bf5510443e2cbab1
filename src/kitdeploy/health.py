"""Health checks for an installation root.

Provides reusable check functions that detect:
- Missing required namespace directories
- Manifest entries whose file no longer exists
- Version marker mismatch with the expected bundle version
- Files whose content no longer matches the recorded digest

Every check yields a :class:`HealthCheck` with a closed outcome, so callers
never need to catch exceptions to learn that something could not be
inspected.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path, PurePosixPath

from kitdeploy.hasher import hash_file
from kitdeploy.layout import REQUIRED_SUBTREES, VERSION_RELPATH
from kitdeploy.manifest import InstalledFileRecord, ManifestSnapshot, ManifestStore

logger = logging.getLogger(__name__)


class CheckOutcome(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    UNAVAILABLE = "unavailable"


class CheckKind(StrEnum):
    DIRECTORY = "directory"
    FILE = "file"
    VERSION = "version"
    INTEGRITY = "integrity"
    MANIFEST = "manifest"


@dataclass(frozen=True, slots=True)
class HealthCheck:
    """Result of a single health check."""

    name: str
    outcome: CheckOutcome
    message: str
    severity: str  # "error", "warning", "info"
    kind: CheckKind
    path: Path | None = None
    relative_path: str | None = None

    @property
    def passed(self) -> bool:
        return self.outcome is CheckOutcome.PASSED


@dataclass
class HealthReport:
    root: Path
    manifest: ManifestSnapshot
    checks: list[HealthCheck] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(c.outcome is CheckOutcome.FAILED for c in self.checks)

    def failures(self, kind: CheckKind | None = None) -> list[HealthCheck]:
        return [
            c
            for c in self.checks
            if c.outcome is CheckOutcome.FAILED and (kind is None or c.kind is kind)
        ]


def required_directories(records: Iterable[InstalledFileRecord]) -> list[str]:
    """Top-level directories a root must contain, derived from its manifest."""
    tops = sorted({PurePosixPath(r.relative_path).parts[0] for r in records if "/" in r.relative_path})
    return tops or list(REQUIRED_SUBTREES)


def check_directories(root: Path, directories: Iterable[str]) -> list[HealthCheck]:
    checks = []
    for rel in directories:
        path = root / rel
        if path.is_dir():
            checks.append(HealthCheck(f"dir:{rel}", CheckOutcome.PASSED, f"{rel}/ present", "info", CheckKind.DIRECTORY, path, rel))
        else:
            checks.append(HealthCheck(f"dir:{rel}", CheckOutcome.FAILED, f"Missing directory: {rel}/", "error", CheckKind.DIRECTORY, path, rel))
    return checks


def check_files(root: Path, records: Iterable[InstalledFileRecord]) -> list[HealthCheck]:
    """Report manifest entries whose file is gone (passing entries are omitted)."""
    checks = []
    for record in records:
        path = root / record.relative_path
        if not path.is_file():
            checks.append(
                HealthCheck(
                    f"file:{record.relative_path}",
                    CheckOutcome.FAILED,
                    f"Missing file: {record.relative_path}",
                    "error",
                    CheckKind.FILE,
                    path,
                    record.relative_path,
                )
            )
    return checks


def check_version(root: Path, expected: str | None) -> HealthCheck:
    """Compare the installed version marker with *expected*."""
    version_file = root / VERSION_RELPATH
    if not version_file.is_file():
        return HealthCheck(
            "version", CheckOutcome.UNAVAILABLE, "No version marker installed", "warning", CheckKind.VERSION, version_file, VERSION_RELPATH
        )
    try:
        installed = version_file.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as exc:
        return HealthCheck(
            "version", CheckOutcome.UNAVAILABLE, f"Cannot read version marker: {exc}", "warning", CheckKind.VERSION, version_file, VERSION_RELPATH
        )
    if expected is None or installed == expected:
        return HealthCheck("version", CheckOutcome.PASSED, f"Version: {installed}", "info", CheckKind.VERSION, version_file, VERSION_RELPATH)
    return HealthCheck(
        "version",
        CheckOutcome.FAILED,
        f"Version mismatch: installed={installed}, expected={expected}",
        "warning",
        CheckKind.VERSION,
        version_file,
        VERSION_RELPATH,
    )


def check_integrity(root: Path, records: Iterable[InstalledFileRecord]) -> list[HealthCheck]:
    """Re-hash every present file that has a recorded digest.

    Unreadable files fail the check: they cannot serve their purpose either.
    Missing files are left to :func:`check_files`.
    """
    checks = []
    for record in records:
        path = root / record.relative_path
        if not record.digest or not path.is_file():
            continue
        try:
            actual = hash_file(path)
        except OSError as exc:
            checks.append(
                HealthCheck(
                    f"integrity:{record.relative_path}",
                    CheckOutcome.FAILED,
                    f"Unreadable: {exc}",
                    "error",
                    CheckKind.INTEGRITY,
                    path,
                    record.relative_path,
                )
            )
            continue
        if actual != record.digest:
            checks.append(
                HealthCheck(
                    f"integrity:{record.relative_path}",
                    CheckOutcome.FAILED,
                    f"Digest mismatch: expected {record.digest}, found {actual}",
                    "error",
                    CheckKind.INTEGRITY,
                    path,
                    record.relative_path,
                )
            )
    return checks


def run_health_checks(
    root: Path,
    *,
    expected_version: str | None = None,
    required_dirs: Iterable[str] | None = None,
) -> HealthReport:
    """Run every check against *root* and collect the results."""
    snapshot = ManifestStore(root).query()
    report = HealthReport(root=root, manifest=snapshot)

    if snapshot.loaded:
        report.checks.append(
            HealthCheck("manifest", CheckOutcome.PASSED, f"{len(snapshot.records)} files recorded", "info", CheckKind.MANIFEST)
        )
    else:
        report.checks.append(
            HealthCheck(
                "manifest",
                CheckOutcome.UNAVAILABLE,
                snapshot.error or "No manifest found",
                "warning",
                CheckKind.MANIFEST,
                ManifestStore(root).path,
            )
        )

    directories = list(required_dirs) if required_dirs is not None else required_directories(snapshot.records)
    report.checks.extend(check_directories(root, directories))
    report.checks.extend(check_files(root, snapshot.records))
    report.checks.append(check_version(root, expected_version))
    report.checks.extend(check_integrity(root, snapshot.records))

    logger.debug(
        "Health of %s: %d checks, %d failed",
        root,
        len(report.checks),
        len(report.failures()),
    )
    return report
