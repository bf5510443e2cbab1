"""Read-only classification of a root's command-subtree layout."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from kitdeploy.layout import (
    CURRENT_COMMAND_SUBTREE,
    LEGACY_COMMAND_SUBTREE,
    StructureState,
)


@dataclass(frozen=True, slots=True)
class StructureDetails:
    """Layout of one root plus the action a caller should take next."""

    state: StructureState
    legacy_path: Path
    current_path: Path
    legacy_exists: bool
    current_exists: bool

    @property
    def recommended_action(self) -> str:
        match self.state:
            case StructureState.NONE:
                return "install"
            case StructureState.LEGACY:
                return "migrate"
            case StructureState.MIXED:
                return "migrate (legacy subtree is stale; current layout wins)"
            case StructureState.CURRENT:
                return "none"


def detect(root: Path) -> StructureState:
    """Classify *root* by which command subtrees exist.

    Never mutates anything, so it is safe to call repeatedly, including to
    recompute state after a crash.
    """
    legacy = (root / LEGACY_COMMAND_SUBTREE).is_dir()
    current = (root / CURRENT_COMMAND_SUBTREE).is_dir()
    if legacy and current:
        return StructureState.MIXED
    if legacy:
        return StructureState.LEGACY
    if current:
        return StructureState.CURRENT
    return StructureState.NONE


def describe(root: Path) -> StructureDetails:
    legacy_path = root / LEGACY_COMMAND_SUBTREE
    current_path = root / CURRENT_COMMAND_SUBTREE
    return StructureDetails(
        state=detect(root),
        legacy_path=legacy_path,
        current_path=current_path,
        legacy_exists=legacy_path.is_dir(),
        current_exists=current_path.is_dir(),
    )
