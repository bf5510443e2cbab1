"""Process exit codes surfaced by the command line."""

from __future__ import annotations

from enum import IntEnum

from kitdeploy.errors import FailureReason, KitDeployError
from kitdeploy.staging import INTERRUPTED_EXIT_CODE


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    PERMISSION = 2
    INTERRUPTED = INTERRUPTED_EXIT_CODE


def exit_code_for(error: KitDeployError) -> ExitCode:
    """Map a typed failure to the exit code callers can rely on."""
    match error.reason:
        case FailureReason.PERMISSION:
            return ExitCode.PERMISSION
        case _:
            return ExitCode.FAILURE
