"""Tests for kitdeploy.layout -- namespace ownership and bundle lookup.

Covers:
- Naming-convention ownership of relative paths
- Rejection of absolute and climbing paths
- Legacy bundle source names for the command subtree
"""

from __future__ import annotations

from pathlib import Path

import pytest

from kitdeploy.layout import (
    VERSION_RELPATH,
    bundle_source_dir,
    bundle_source_file,
    is_namespace_owned,
    is_safe_relative,
    is_text_asset,
    normalize_relative,
)


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------


class TestNamespaceOwnership:
    @pytest.mark.parametrize(
        "rel",
        [
            "agents/gsd-executor.md",
            "commands/gsd/help.md",
            "command/gsd/help.md",
            "skills/gsd-research/SKILL.md",
            "get-shit-done/templates/summary.md",
            "get-shit-done/INSTALLED_FILES.json",
        ],
    )
    def test_owned_paths(self, rel: str) -> None:
        assert is_namespace_owned(rel)

    @pytest.mark.parametrize(
        "rel",
        [
            "agents/custom-agent.md",
            "commands/mine/help.md",
            "opencode.json",
            "skills/other/SKILL.md",
            "get-shit-done-extra/file.md",
        ],
    )
    def test_foreign_paths(self, rel: str) -> None:
        assert not is_namespace_owned(rel)

    def test_climbing_path_is_never_owned(self) -> None:
        assert not is_namespace_owned("get-shit-done/../opencode.json")

    def test_absolute_path_is_never_owned(self) -> None:
        assert not is_namespace_owned("/get-shit-done/VERSION")


class TestSafeRelative:
    def test_plain_relative(self) -> None:
        assert is_safe_relative("agents/gsd-x.md")

    @pytest.mark.parametrize("rel", ["", "/etc/passwd", "C:/x", "a\\b", "a/../../b", "a\x00b"])
    def test_rejected(self, rel: str) -> None:
        assert not is_safe_relative(rel)

    def test_normalize_relative_uses_forward_slashes(self) -> None:
        assert normalize_relative(Path("agents") / "gsd-x.md") == "agents/gsd-x.md"
        assert normalize_relative("") == ""


# ---------------------------------------------------------------------------
# Bundle lookup
# ---------------------------------------------------------------------------


class TestBundleLookup:
    def test_commands_read_from_legacy_bundle_dir(self, tmp_path: Path) -> None:
        (tmp_path / "command" / "gsd").mkdir(parents=True)
        assert bundle_source_dir(tmp_path, "commands") == tmp_path / "command"

    def test_direct_dir_preferred(self, tmp_path: Path) -> None:
        (tmp_path / "command").mkdir()
        (tmp_path / "commands").mkdir()
        assert bundle_source_dir(tmp_path, "commands") == tmp_path / "commands"

    def test_missing_subtree(self, tmp_path: Path) -> None:
        assert bundle_source_dir(tmp_path, "skills") is None

    def test_source_file_maps_installed_path(self, tmp_path: Path) -> None:
        source = tmp_path / "command" / "gsd" / "help.md"
        source.parent.mkdir(parents=True)
        source.write_text("x", encoding="utf-8")
        assert bundle_source_file(tmp_path, "commands/gsd/help.md") == source

    def test_version_marker_maps_to_bundle_root(self, tmp_path: Path) -> None:
        (tmp_path / "VERSION").write_text("1.0.0\n", encoding="utf-8")
        assert bundle_source_file(tmp_path, VERSION_RELPATH) == tmp_path / "VERSION"

    def test_source_file_absent(self, tmp_path: Path) -> None:
        assert bundle_source_file(tmp_path, "agents/gsd-none.md") is None


def test_text_assets_are_markdown() -> None:
    assert is_text_asset(Path("a/README.MD"))
    assert not is_text_asset(Path("a/logo.png"))
