"""Tests for kitdeploy.backup -- backup sets, restore and pruning."""

from __future__ import annotations

import json
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from kitdeploy.backup import BackupVault
from kitdeploy.errors import FilesystemFailure
from kitdeploy.layout import StructureState


def _frozen_clock(value: int):
    return lambda: value


def _write(root: Path, rel: str, text: str) -> Path:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


class TestCreate:
    def test_directory_named_by_timestamp(self, tmp_path: Path) -> None:
        backup = BackupVault(tmp_path, clock=_frozen_clock(1700000000123)).create(reason="repair")
        assert backup.path == tmp_path / ".backups" / "backup-1700000000123"
        metadata = json.loads((backup.path / "metadata.json").read_text(encoding="utf-8"))
        assert metadata["timestamp"] == 1700000000123
        assert metadata["reason"] == "repair"
        assert metadata["originRoot"] == str(tmp_path)

    def test_same_millisecond_never_reuses_directory(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path, clock=_frozen_clock(1000))
        first = vault.create(reason="a")
        second = vault.create(reason="b")
        assert first.path != second.path
        assert second.timestamp == 1001
        assert (first.path / "metadata.json").exists()

    def test_origin_structure_recorded(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path, clock=_frozen_clock(5))
        backup = vault.create(origin_structure=StructureState.LEGACY)
        assert vault.load(backup.path).origin_structure is StructureState.LEGACY


class TestSaveAndRestore:
    def test_save_file_mirrors_relative_path(self, tmp_path: Path) -> None:
        _write(tmp_path, "agents/gsd-a.md", "original")
        vault = BackupVault(tmp_path)
        backup = vault.create(reason="repair")
        entry = vault.save_file(backup, "agents/gsd-a.md")
        assert entry.saved_copy == backup.path / "agents" / "gsd-a.md"
        assert entry.saved_copy.read_text(encoding="utf-8") == "original"
        reloaded = vault.load(backup.path)
        assert [e.relative_path for e in reloaded.entries] == ["agents/gsd-a.md"]

    def test_save_missing_file_raises(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path)
        backup = vault.create()
        with pytest.raises(FilesystemFailure, match="backup file"):
            vault.save_file(backup, "agents/gsd-gone.md")

    def test_save_rejects_climbing_path(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path)
        backup = vault.create()
        with pytest.raises(FilesystemFailure, match="unsafe"):
            vault.save_file(backup, "../outside.md")

    def test_restore_tree(self, tmp_path: Path) -> None:
        _write(tmp_path, "command/gsd/help.md", "help")
        _write(tmp_path, "command/gsd/sub/plan.md", "plan")
        (tmp_path / "command" / "gsd" / "empty").mkdir()
        vault = BackupVault(tmp_path)
        backup = vault.create(reason="migration")
        assert len(vault.save_tree(backup, "command/gsd")) == 2

        shutil.rmtree(tmp_path / "command")
        vault.restore(vault.load(backup.path))
        assert (tmp_path / "command/gsd/help.md").read_text(encoding="utf-8") == "help"
        assert (tmp_path / "command/gsd/sub/plan.md").read_text(encoding="utf-8") == "plan"
        assert (tmp_path / "command/gsd/empty").is_dir()

    def test_save_tree_of_missing_dir(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path)
        backup = vault.create()
        assert vault.save_tree(backup, "commands/gsd") == []
        assert backup.directories == []


class TestListAndPrune:
    def test_list_newest_first(self, tmp_path: Path) -> None:
        for ts in (100, 300, 200):
            BackupVault(tmp_path, clock=_frozen_clock(ts)).create()
        (tmp_path / ".backups" / "notes").mkdir()
        stamps = [b.timestamp for b in BackupVault(tmp_path).list_sets()]
        assert stamps == [300, 200, 100]

    def test_list_skips_damaged_metadata(self, tmp_path: Path) -> None:
        vault = BackupVault(tmp_path, clock=_frozen_clock(100))
        backup = vault.create()
        (backup.path / "metadata.json").write_text("{", encoding="utf-8")
        assert vault.list_sets() == []

    def test_prune_older_than(self, tmp_path: Path) -> None:
        now = datetime(2026, 1, 31, tzinfo=timezone.utc)
        old_ms = int((now - timedelta(days=40)).timestamp() * 1000)
        new_ms = int((now - timedelta(days=2)).timestamp() * 1000)
        old = BackupVault(tmp_path, clock=_frozen_clock(old_ms)).create()
        new = BackupVault(tmp_path, clock=_frozen_clock(new_ms)).create()

        result = BackupVault(tmp_path).prune(older_than=timedelta(days=30), now=now)
        assert result.removed == [old.path]
        assert result.kept == [new.path]
        assert not old.path.exists()
        assert new.path.exists()

    def test_prune_without_backups(self, tmp_path: Path) -> None:
        result = BackupVault(tmp_path).prune(older_than=timedelta(days=1))
        assert result.removed == [] and result.kept == []
