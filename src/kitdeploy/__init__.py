"""kitdeploy: atomic install and maintenance of versioned text-asset bundles."""

from kitdeploy.backup import BackupSet, BackupVault
from kitdeploy.errors import (
    ConfigError,
    FailureReason,
    FilesystemFailure,
    IntegrityMismatch,
    KitDeployError,
    ManifestError,
    PreconditionFailure,
    RollbackFailure,
    SourceMissing,
)
from kitdeploy.install import InstallEngine, InstallResult
from kitdeploy.layout import StructureState
from kitdeploy.manifest import InstalledFileRecord, ManifestStore
from kitdeploy.migrate import MigrationEngine, MigrationResult
from kitdeploy.paths import InstallationRoot, Scope, resolve_root
from kitdeploy.probe import detect
from kitdeploy.repair import IssueSet, RepairEngine, RepairReport
from kitdeploy.uninstall import RemovalPlan, RemovalReport, UninstallEngine

__version__ = "0.4.0"

__all__ = [
    "BackupSet",
    "BackupVault",
    "ConfigError",
    "FailureReason",
    "FilesystemFailure",
    "InstallEngine",
    "InstallResult",
    "InstallationRoot",
    "InstalledFileRecord",
    "IntegrityMismatch",
    "IssueSet",
    "KitDeployError",
    "ManifestError",
    "ManifestStore",
    "MigrationEngine",
    "MigrationResult",
    "PreconditionFailure",
    "RemovalPlan",
    "RemovalReport",
    "RepairEngine",
    "RepairReport",
    "RollbackFailure",
    "Scope",
    "SourceMissing",
    "StructureState",
    "UninstallEngine",
    "__version__",
    "detect",
    "resolve_root",
]
