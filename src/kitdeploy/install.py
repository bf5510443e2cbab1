"""Atomic installation of an asset bundle into an empty root.

Content is copied into a staging directory beside the target, placeholder
tokens are rewritten on the way, a manifest is written, and the finished
tree is published in one step. Any failure before publish completes leaves
the target exactly as it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from kitdeploy.errors import (
    FilesystemFailure,
    PreconditionFailure,
    SourceMissing,
)
from kitdeploy.fsutil import iter_files
from kitdeploy.layout import (
    BUNDLE_VERSION_FILE,
    MANIFEST_RELPATH,
    NAMESPACE_SUBTREES,
    VERSION_RELPATH,
    StructureState,
    bundle_source_dir,
    is_namespace_owned,
)
from kitdeploy.manifest import InstalledFileRecord, ManifestStore, rebase_records
from kitdeploy.paths import InstallationRoot
from kitdeploy.probe import detect
from kitdeploy.progress import ProgressCallback, ProgressEvent
from kitdeploy.rewrite import copy_asset
from kitdeploy.staging import InterruptGuard, PublishMode, StagingRegistry, publish

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InstallResult:
    files_copied: int
    directories_created: int
    manifest_path: Path
    publish_mode: PublishMode
    files_rewritten: int = 0


def bundle_files(bundle_root: Path) -> list[tuple[Path, str]]:
    """List ``(source, installed relative path)`` pairs for a bundle.

    Only whitelisted namespace subtrees are included, plus the bundle's
    version marker when it ships one.
    """
    pairs: list[tuple[Path, str]] = []
    for subtree in NAMESPACE_SUBTREES:
        source_dir = bundle_source_dir(bundle_root, subtree)
        if source_dir is None:
            continue
        for source in iter_files(source_dir):
            installed = f"{subtree}/{source.relative_to(source_dir).as_posix()}"
            if not is_namespace_owned(installed):
                logger.warning("Skipping %s: outside the installer namespace", source)
                continue
            pairs.append((source, installed))

    version_file = bundle_root / BUNDLE_VERSION_FILE
    if version_file.is_file():
        pairs.append((version_file, VERSION_RELPATH))
    return pairs


def stage_bundle(
    bundle_root: Path,
    staging: Path,
    replacement: str,
    progress: ProgressCallback | None = None,
) -> tuple[list[InstalledFileRecord], int]:
    """Copy a bundle into *staging*, rewriting tokens.

    Returns:
        ``(records, rewritten_count)`` with records rooted at *staging*.
    """
    pairs = bundle_files(bundle_root)
    records: list[InstalledFileRecord] = []
    rewritten = 0
    for index, (source, rel) in enumerate(pairs, start=1):
        if progress is not None:
            progress(ProgressEvent(index, len(pairs), "installing", rel))
        if copy_asset(source, staging / rel, replacement):
            rewritten += 1
        records.append(InstalledFileRecord.for_file(staging, rel))
    return records, rewritten


class InstallEngine:
    """Installs a bundle into a root that holds no command layout yet."""

    def __init__(
        self,
        *,
        staging: StagingRegistry | None = None,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.staging = staging or StagingRegistry()
        self._progress = progress

    def install(self, bundle_root: Path, root: InstallationRoot) -> InstallResult:
        """Install *bundle_root* into *root*.

        Raises:
            SourceMissing: If the bundle directory does not exist.
            PreconditionFailure: If the root already has a command layout.
            FilesystemFailure: If copying or publishing fails.
        """
        if not bundle_root.is_dir():
            raise SourceMissing(bundle_root, "install")

        target = root.path
        self._check_precondition(target)

        with InterruptGuard(self.staging) as guard:
            try:
                staging = self.staging.allocate(target)
                records, rewritten = stage_bundle(bundle_root, staging, root.replacement, self._progress)
                # Recorded against the final root so publish carries correct paths.
                ManifestStore(target, stored_under=staging).save(rebase_records(records, target))
                directories = sum(1 for p in staging.rglob("*") if p.is_dir())

                owned = {record.relative_path for record in records} | {MANIFEST_RELPATH}
                with guard.deferred():
                    mode = publish(staging, target, owned)
                    self.staging.release(staging)
                manifest_path = ManifestStore(target).path
            except OSError as exc:
                self.staging.cleanup()
                raise FilesystemFailure.from_os_error(exc, operation="install", path=target) from exc
            except BaseException:
                self.staging.cleanup()
                raise

        logger.info("Installed %d files into %s (%s)", len(records), target, mode)
        return InstallResult(
            files_copied=len(records),
            directories_created=directories,
            manifest_path=manifest_path,
            publish_mode=mode,
            files_rewritten=rewritten,
        )

    @staticmethod
    def _check_precondition(target: Path) -> None:
        state = detect(target)
        match state:
            case StructureState.NONE:
                return
            case StructureState.CURRENT:
                raise PreconditionFailure(
                    PreconditionFailure.ALREADY_INSTALLED,
                    f"{target} already has an installation; run repair instead",
                    path=target,
                    operation="install",
                )
            case StructureState.LEGACY | StructureState.MIXED:
                raise PreconditionFailure(
                    PreconditionFailure.LEGACY_LAYOUT_PRESENT,
                    f"{target} has a legacy command layout ({state}); run migrate first",
                    path=target,
                    operation="install",
                )
