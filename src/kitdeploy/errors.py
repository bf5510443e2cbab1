"""Typed failure taxonomy shared by every engine.

Each error carries a :class:`FailureReason` so callers can map outcomes to
exit codes without inspecting messages, plus the affected path and the
operation that was attempted.
"""

from __future__ import annotations

import errno
from enum import StrEnum
from pathlib import Path


class FailureReason(StrEnum):
    """Closed set of reasons an engine operation can fail."""

    PRECONDITION = "precondition"
    SOURCE_MISSING = "source_missing"
    FILESYSTEM = "filesystem"
    PERMISSION = "permission"
    INTEGRITY = "integrity"
    ROLLBACK = "rollback"
    MANIFEST = "manifest"
    CONFIG = "config"


class KitDeployError(Exception):
    """Base class for all kitdeploy failures."""

    reason: FailureReason = FailureReason.FILESYSTEM

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        operation: str | None = None,
    ) -> None:
        self.path = Path(path) if path is not None else None
        self.operation = operation
        super().__init__(message)


class PreconditionFailure(KitDeployError):
    """The root is not in a state the requested operation accepts."""

    reason = FailureReason.PRECONDITION

    ALREADY_INSTALLED = "AlreadyInstalled"
    LEGACY_LAYOUT_PRESENT = "LegacyLayoutPresent"
    NOT_INSTALLED = "NotInstalled"
    CONFIRMATION_REQUIRED = "ConfirmationRequired"

    def __init__(
        self,
        code: str,
        message: str,
        *,
        path: Path | str | None = None,
        operation: str | None = None,
    ) -> None:
        self.code = code
        super().__init__(f"{code}: {message}", path=path, operation=operation)


class SourceMissing(KitDeployError):
    """The asset bundle to copy from does not exist."""

    reason = FailureReason.SOURCE_MISSING

    def __init__(self, path: Path | str, operation: str = "read bundle") -> None:
        super().__init__(
            f"Source bundle not found: {path} (while trying to {operation})",
            path=path,
            operation=operation,
        )


class FilesystemFailure(KitDeployError):
    """A filesystem call failed while performing an operation."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | str | None = None,
        operation: str | None = None,
        errno_code: int | None = None,
    ) -> None:
        self.errno_code = errno_code
        super().__init__(message, path=path, operation=operation)
        if self.permission_denied:
            self.reason = FailureReason.PERMISSION

    @property
    def permission_denied(self) -> bool:
        return self.errno_code in (errno.EACCES, errno.EPERM)

    @classmethod
    def from_os_error(
        cls, exc: OSError, *, operation: str, path: Path | str | None = None
    ) -> "FilesystemFailure":
        """Build a failure from an ``OSError`` naming the path and operation."""
        target = path if path is not None else exc.filename
        code = exc.errno
        if code in (errno.EACCES, errno.EPERM):
            detail = "permission denied"
        elif code == errno.ENOSPC:
            detail = "disk full"
        elif code == errno.ENOENT:
            detail = "file or directory not found"
        else:
            detail = exc.strerror or str(exc)
        return cls(
            f"Failed to {operation}: {detail} ({target})",
            path=target,
            operation=operation,
            errno_code=code,
        )


class IntegrityMismatch(KitDeployError):
    """A file's content no longer matches its recorded digest."""

    reason = FailureReason.INTEGRITY

    def __init__(
        self,
        path: Path | str,
        *,
        expected: str | None = None,
        actual: str | None = None,
        operation: str = "verify",
        detail: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        if detail is None:
            detail = f"expected {expected}, found {actual}"
        super().__init__(
            f"Integrity check failed during {operation} for {path}: {detail}",
            path=path,
            operation=operation,
        )


class RollbackFailure(KitDeployError):
    """Restoring a snapshot failed; the root needs manual inspection."""

    reason = FailureReason.ROLLBACK

    def __init__(self, backup_path: Path | str, cause: BaseException) -> None:
        self.backup_path = Path(backup_path)
        self.cause = cause
        super().__init__(
            f"Rollback failed ({cause}). Manual intervention required: "
            f"inspect the retained backup at {backup_path}",
            path=backup_path,
            operation="rollback",
        )


class ManifestError(KitDeployError):
    """The manifest file exists but cannot be read or parsed."""

    reason = FailureReason.MANIFEST


class ConfigError(KitDeployError):
    """The settings file is invalid."""

    reason = FailureReason.CONFIG
