from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from kitdeploy.install import InstallEngine
from kitdeploy.layout import PLACEHOLDER_TOKEN
from kitdeploy.manifest import InstalledFileRecord, ManifestStore
from kitdeploy.paths import InstallationRoot, Scope, resolve_root

EXECUTOR_TEXT = (
    "# Executor\n"
    f"Read {PLACEHOLDER_TOKEN}get-shit-done/templates/summary.md first.\n"
    f"Then run {PLACEHOLDER_TOKEN}commands/gsd/help.md.\n"
)
HELP_TEXT = "# Help\nNo references here.\n"
SUMMARY_TEXT = "# Summary template\n"


def write_file(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real user config and env overrides."""
    monkeypatch.setenv("KITDEPLOY_CONFIG", str(tmp_path / "no-such-config.yaml"))
    monkeypatch.delenv("KITDEPLOY_GLOBAL_ROOT", raising=False)
    monkeypatch.delenv("KITDEPLOY_BUNDLE_ROOT", raising=False)


@pytest.fixture()
def bundle(tmp_path: Path) -> Path:
    """Three-file bundle; only the executor agent carries tokens (two of them)."""
    root = tmp_path / "bundle"
    write_file(root / "agents" / "gsd-executor.md", EXECUTOR_TEXT)
    write_file(root / "command" / "gsd" / "help.md", HELP_TEXT)
    write_file(root / "get-shit-done" / "templates" / "summary.md", SUMMARY_TEXT)
    return root


@pytest.fixture()
def versioned_bundle(bundle: Path) -> Path:
    write_file(bundle / "VERSION", "1.4.2\n")
    return bundle


@pytest.fixture()
def local_root(tmp_path: Path) -> InstallationRoot:
    project = tmp_path / "project"
    project.mkdir()
    return resolve_root(Scope.LOCAL, cwd=project)


@pytest.fixture()
def installed_root(bundle: Path, local_root: InstallationRoot) -> InstallationRoot:
    InstallEngine().install(bundle, local_root)
    return local_root


@pytest.fixture()
def legacy_root(tmp_path: Path) -> Path:
    """A root still using command/gsd/, with a manifest recording it."""
    root = tmp_path / "legacy" / ".opencode"
    write_file(root / "command" / "gsd" / "help.md", HELP_TEXT)
    write_file(root / "command" / "gsd" / "nested" / "plan.md", "# Plan\n")
    write_file(root / "agents" / "gsd-executor.md", "# Executor\n")
    rels = ["command/gsd/help.md", "command/gsd/nested/plan.md", "agents/gsd-executor.md"]
    ManifestStore(root).save(InstalledFileRecord.for_file(root, rel) for rel in rels)
    return root


@pytest.fixture()
def tree_snapshot() -> Callable[[Path], dict[str, bytes]]:
    """Return a function mapping every file under a root to its bytes.

    The backups directory is excluded: it is expected to grow.
    """

    def _snapshot(root: Path) -> dict[str, bytes]:
        result: dict[str, bytes] = {}
        for path in sorted(root.rglob("*")):
            rel = path.relative_to(root).as_posix()
            if rel.split("/")[0] == ".backups":
                continue
            result[rel] = path.read_bytes() if path.is_file() else b"<dir>"
        return result

    return _snapshot
