"""Migration from the legacy command layout to the current one.

The migration runs as a small state machine::

    DETECT -> BACKUP -> TRANSFORM -> VERIFY -> DONE
                 \\          |          |
                  +-------> ROLLBACK <-+

A snapshot of both command subtrees, their parents and the manifest is
taken before anything is mutated. Any failure after that point restores
the snapshot so the root ends exactly as it started; if the restore itself
fails a :class:`RollbackFailure` names the retained backup.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from kitdeploy.backup import BackupSet, BackupVault
from kitdeploy.errors import (
    FilesystemFailure,
    IntegrityMismatch,
    KitDeployError,
    RollbackFailure,
)
from kitdeploy.fsutil import iter_files, remove_tree
from kitdeploy.hasher import digest_matches, hash_file
from kitdeploy.layout import (
    CURRENT_COMMAND_SUBTREE,
    LEGACY_COMMAND_SUBTREE,
    MANIFEST_RELPATH,
    StructureState,
)
from kitdeploy.manifest import InstalledFileRecord, ManifestStore
from kitdeploy.probe import detect
from kitdeploy.staging import InterruptGuard, StagingRegistry

logger = logging.getLogger(__name__)

_LEGACY_PREFIX = f"{LEGACY_COMMAND_SUBTREE}/"
_CURRENT_PREFIX = f"{CURRENT_COMMAND_SUBTREE}/"
_COMMAND_PARENTS: tuple[str, ...] = (
    LEGACY_COMMAND_SUBTREE.split("/")[0],
    CURRENT_COMMAND_SUBTREE.split("/")[0],
)


class MigrationPhase(StrEnum):
    DETECT = "detect"
    BACKUP = "backup"
    TRANSFORM = "transform"
    VERIFY = "verify"
    DONE = "done"
    ROLLBACK = "rollback"


@dataclass(frozen=True, slots=True)
class MigrationResult:
    migrated: bool
    previous_state: StructureState
    reason: str | None = None
    backup: BackupSet | None = None
    files_migrated: int = 0


@dataclass(frozen=True, slots=True)
class MigrationPlan:
    """What :meth:`MigrationEngine.migrate` would do, computed without side effects."""

    state: StructureState
    would_migrate: bool
    actions: tuple[str, ...] = ()
    files_to_migrate: tuple[str, ...] = ()
    estimated_bytes: int = 0


def _to_current(relative_path: str) -> str:
    return _CURRENT_PREFIX + relative_path[len(_LEGACY_PREFIX):]


class MigrationEngine:
    """Moves a root from the LEGACY or MIXED layout to CURRENT."""

    def __init__(
        self,
        *,
        staging: StagingRegistry | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.staging = staging or StagingRegistry()
        self._clock = clock
        self.phase = MigrationPhase.DETECT

    def plan(self, root: Path) -> MigrationPlan:
        """Describe the migration of *root* without touching it."""
        state = detect(root)
        match state:
            case StructureState.NONE | StructureState.CURRENT:
                return MigrationPlan(state, would_migrate=False)
            case StructureState.LEGACY:
                actions = (
                    f"Back up {LEGACY_COMMAND_SUBTREE}/ and the manifest",
                    f"Copy {LEGACY_COMMAND_SUBTREE}/ to {CURRENT_COMMAND_SUBTREE}/",
                    "Rewrite manifest paths",
                    f"Remove {LEGACY_COMMAND_SUBTREE}/",
                )
            case StructureState.MIXED:
                actions = (
                    f"Back up {LEGACY_COMMAND_SUBTREE}/, {CURRENT_COMMAND_SUBTREE}/ and the manifest",
                    "Rewrite manifest paths (current layout wins)",
                    f"Remove {LEGACY_COMMAND_SUBTREE}/",
                )
        legacy_files = iter_files(root / LEGACY_COMMAND_SUBTREE)
        return MigrationPlan(
            state,
            would_migrate=True,
            actions=actions,
            files_to_migrate=tuple(p.relative_to(root).as_posix() for p in legacy_files),
            estimated_bytes=sum(p.stat().st_size for p in legacy_files),
        )

    def migrate(self, root: Path) -> MigrationResult:
        """Migrate *root* to the current layout.

        Raises:
            FilesystemFailure: If the snapshot or transform fails (after rollback).
            IntegrityMismatch: If verification fails (after rollback).
            RollbackFailure: If restoring the snapshot fails.
        """
        self.phase = MigrationPhase.DETECT
        state = detect(root)
        match state:
            case StructureState.CURRENT:
                logger.info("%s already uses the current layout", root)
                return MigrationResult(False, state, reason="already_current")
            case StructureState.NONE:
                logger.info("%s has no command layout to migrate", root)
                return MigrationResult(False, state, reason="nothing_to_migrate")
            case StructureState.LEGACY | StructureState.MIXED:
                pass

        self.phase = MigrationPhase.BACKUP
        vault = BackupVault(root, clock=self._clock)
        backup = self._snapshot(root, vault, state)

        try:
            with InterruptGuard(self.staging):
                self.phase = MigrationPhase.TRANSFORM
                migrated = self._transform(root, state)
                self.phase = MigrationPhase.VERIFY
                self._verify(root)
        except BaseException as exc:
            failed_phase = self.phase
            logger.error("Migration of %s failed during %s: %s", root, failed_phase, exc)
            self._rollback(root, vault, backup, exc)
            if isinstance(exc, OSError):
                raise FilesystemFailure.from_os_error(exc, operation=f"migrate ({failed_phase})", path=root) from exc
            raise

        self.phase = MigrationPhase.DONE
        logger.info("Migrated %s from %s layout; backup at %s", root, state, backup.path)
        return MigrationResult(True, state, backup=backup, files_migrated=migrated)

    # ------------------------------------------------------------------
    # BACKUP
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot(root: Path, vault: BackupVault, state: StructureState) -> BackupSet:
        backup = vault.create(reason="migration", origin_structure=state)
        for parent in _COMMAND_PARENTS:
            if (root / parent).is_dir():
                vault.record_directory(backup, parent)
        vault.save_tree(backup, LEGACY_COMMAND_SUBTREE)
        vault.save_tree(backup, CURRENT_COMMAND_SUBTREE)
        if (root / MANIFEST_RELPATH).is_file():
            vault.save_file(backup, MANIFEST_RELPATH)
        return backup

    # ------------------------------------------------------------------
    # TRANSFORM
    # ------------------------------------------------------------------

    def _transform(self, root: Path, state: StructureState) -> int:
        legacy = root / LEGACY_COMMAND_SUBTREE
        migrated = len(iter_files(legacy))
        if state is StructureState.LEGACY:
            self._copy_legacy_tree(root)
        self._rewrite_manifest(root)
        self._remove_legacy(root)
        return migrated

    def _copy_legacy_tree(self, root: Path) -> None:
        current = root / CURRENT_COMMAND_SUBTREE
        staging = self.staging.allocate(current)
        shutil.copytree(root / LEGACY_COMMAND_SUBTREE, staging, dirs_exist_ok=True)
        os.rename(staging, current)
        self.staging.release(staging)
        logger.debug("Copied %s to %s", LEGACY_COMMAND_SUBTREE, current)

    @staticmethod
    def _rewrite_manifest(root: Path) -> None:
        store = ManifestStore(root)
        records = store.load()
        if records is None:
            logger.info("No manifest in %s; skipping path rewrite", root)
            return

        kept = {r.relative_path for r in records if not r.relative_path.startswith(_LEGACY_PREFIX)}
        rewritten: list[InstalledFileRecord] = []
        for record in records:
            if not record.relative_path.startswith(_LEGACY_PREFIX):
                rewritten.append(record.rebased(root))
                continue
            new_path = _to_current(record.relative_path)
            if new_path in kept:
                continue
            target = root / new_path
            if not target.is_file():
                logger.warning("Dropping manifest entry %s: no file at %s", record.relative_path, target)
                continue
            if not digest_matches(target, record.digest):
                rewritten.append(InstalledFileRecord.for_file(root, new_path))
            else:
                rewritten.append(record.with_relative_path(root, new_path))
            kept.add(new_path)
        store.save(rewritten)

    @staticmethod
    def _remove_legacy(root: Path) -> None:
        shutil.rmtree(root / LEGACY_COMMAND_SUBTREE)
        parent = root / _COMMAND_PARENTS[0]
        if parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()

    # ------------------------------------------------------------------
    # VERIFY
    # ------------------------------------------------------------------

    @staticmethod
    def _verify(root: Path) -> None:
        state = detect(root)
        if state is not StructureState.CURRENT:
            raise IntegrityMismatch(
                root,
                operation="verify migration",
                detail=f"layout is {state}, expected {StructureState.CURRENT}",
            )
        for record in ManifestStore(root).load() or []:
            if not record.relative_path.startswith(_CURRENT_PREFIX):
                continue
            path = root / record.relative_path
            if not path.is_file():
                raise IntegrityMismatch(path, operation="verify migration", detail="file missing after migration")
            if record.digest:
                actual = hash_file(path)
                if actual != record.digest:
                    raise IntegrityMismatch(path, expected=record.digest, actual=actual, operation="verify migration")

    # ------------------------------------------------------------------
    # ROLLBACK
    # ------------------------------------------------------------------

    def _rollback(self, root: Path, vault: BackupVault, backup: BackupSet, cause: BaseException) -> None:
        self.phase = MigrationPhase.ROLLBACK
        logger.warning("Rolling back %s from %s", root, backup.path)
        try:
            self.staging.cleanup()
            for subtree in (LEGACY_COMMAND_SUBTREE, CURRENT_COMMAND_SUBTREE):
                remove_tree(root / subtree)
            manifest = root / MANIFEST_RELPATH
            backed_up = {entry.relative_path for entry in backup.entries}
            if manifest.exists() and MANIFEST_RELPATH not in backed_up:
                manifest.unlink()
            for parent in _COMMAND_PARENTS:
                path = root / parent
                if parent not in backup.directories and path.is_dir() and not any(path.iterdir()):
                    path.rmdir()
            vault.restore(backup)
        except (OSError, KitDeployError) as exc:
            raise RollbackFailure(backup.path, exc) from exc
        logger.info("Rollback of %s complete", root)
