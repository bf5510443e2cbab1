"""Tests for kitdeploy.staging -- staging registry, signal guard and publish.

Covers:
- Staging directories are siblings of the target and cleanup is idempotent
- Signals outside the deferred window clean up and exit 130
- Signals inside the deferred window are held until it closes
- Publish falls back from rename to copy (EXDEV) and to merge
"""

from __future__ import annotations

import errno
import signal
import threading
from pathlib import Path

import pytest

from kitdeploy import staging as staging_module
from kitdeploy.staging import (
    INTERRUPTED_EXIT_CODE,
    InterruptGuard,
    PublishMode,
    StagingRegistry,
    merge_tree,
    publish,
)


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


# ---------------------------------------------------------------------------
# StagingRegistry
# ---------------------------------------------------------------------------


class TestStagingRegistry:
    def test_allocate_beside_target(self, tmp_path: Path) -> None:
        registry = StagingRegistry(clock=lambda: 42)
        staging = registry.allocate(tmp_path / ".opencode")
        assert staging == tmp_path / ".opencode.tmp-42"
        assert staging.is_dir()
        assert registry.active == (staging,)

    def test_allocate_never_reuses(self, tmp_path: Path) -> None:
        registry = StagingRegistry(clock=lambda: 7)
        first = registry.allocate(tmp_path / "t")
        second = registry.allocate(tmp_path / "t")
        assert first != second
        assert second.name == "t.tmp-8"

    def test_cleanup_is_idempotent(self, tmp_path: Path) -> None:
        registry = StagingRegistry()
        staging = registry.allocate(tmp_path / "t")
        _write(staging / "a.md", "x")
        assert registry.cleanup() == [staging]
        assert not staging.exists()
        assert registry.cleanup() == []
        assert registry.active == ()

    def test_release_forgets_directory(self, tmp_path: Path) -> None:
        registry = StagingRegistry()
        staging = registry.allocate(tmp_path / "t")
        registry.release(staging)
        registry.cleanup()
        assert staging.exists()

    def test_cleanup_leaves_unregistered_dirs(self, tmp_path: Path) -> None:
        foreign = tmp_path / "t.tmp-1"
        foreign.mkdir()
        registry = StagingRegistry(clock=lambda: 2)
        registry.allocate(tmp_path / "t")
        registry.cleanup()
        assert foreign.exists()


# ---------------------------------------------------------------------------
# InterruptGuard
# ---------------------------------------------------------------------------


class TestInterruptGuard:
    def test_signal_cleans_up_and_exits(self, tmp_path: Path) -> None:
        registry = StagingRegistry()
        staging = registry.allocate(tmp_path / "t")
        with pytest.raises(SystemExit) as excinfo:
            with InterruptGuard(registry):
                signal.raise_signal(signal.SIGINT)
        assert excinfo.value.code == INTERRUPTED_EXIT_CODE
        assert not staging.exists()

    def test_deferred_signal_runs_after_block(self, tmp_path: Path) -> None:
        registry = StagingRegistry()
        registry.allocate(tmp_path / "t")
        completed = []
        with pytest.raises(SystemExit):
            with InterruptGuard(registry) as guard:
                with guard.deferred():
                    signal.raise_signal(signal.SIGTERM)
                    completed.append("publish")
        assert completed == ["publish"]
        assert registry.active == ()

    def test_handlers_restored(self, tmp_path: Path) -> None:
        before = signal.getsignal(signal.SIGINT)
        with InterruptGuard(StagingRegistry()) as guard:
            assert guard.installed
            assert signal.getsignal(signal.SIGINT) != before
        assert signal.getsignal(signal.SIGINT) == before
        assert not guard.installed

    def test_no_handlers_off_main_thread(self) -> None:
        seen: list[bool] = []

        def worker() -> None:
            with InterruptGuard(StagingRegistry()) as guard:
                seen.append(guard.installed)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()
        assert seen == [False]


# ---------------------------------------------------------------------------
# publish / merge_tree
# ---------------------------------------------------------------------------


class TestPublish:
    def test_rename_into_absent_target(self, tmp_path: Path) -> None:
        staging = tmp_path / "t.tmp-1"
        _write(staging / "agents" / "gsd-a.md", "a")
        target = tmp_path / "t"
        assert publish(staging, target, set()) is PublishMode.RENAMED
        assert (target / "agents" / "gsd-a.md").read_text(encoding="utf-8") == "a"
        assert not staging.exists()

    def test_empty_target_replaced(self, tmp_path: Path) -> None:
        staging = tmp_path / "t.tmp-1"
        _write(staging / "a.md", "a")
        target = tmp_path / "t"
        target.mkdir()
        assert publish(staging, target, set()) is PublishMode.RENAMED

    def test_nonempty_target_is_merged(self, tmp_path: Path) -> None:
        staging = tmp_path / "t.tmp-1"
        _write(staging / "agents" / "gsd-a.md", "new")
        _write(staging / "opencode.json", "{}")
        target = tmp_path / "t"
        _write(target / "opencode.json", '{"user": true}')
        _write(target / "notes.md", "mine")

        mode = publish(staging, target, {"agents/gsd-a.md"})

        assert mode is PublishMode.MERGED
        assert (target / "agents" / "gsd-a.md").read_text(encoding="utf-8") == "new"
        assert (target / "opencode.json").read_text(encoding="utf-8") == '{"user": true}'
        assert (target / "notes.md").read_text(encoding="utf-8") == "mine"
        assert not staging.exists()

    def test_cross_device_falls_back_to_copy(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def cross_device(src: object, dst: object) -> None:
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr(staging_module.os, "rename", cross_device)
        staging = tmp_path / "t.tmp-1"
        _write(staging / "agents" / "gsd-a.md", "a")
        target = tmp_path / "t"

        assert publish(staging, target, set()) is PublishMode.COPIED
        assert (target / "agents" / "gsd-a.md").exists()
        assert not staging.exists()

    def test_other_rename_error_propagates(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        def denied(src: object, dst: object) -> None:
            raise PermissionError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(staging_module.os, "rename", denied)
        staging = tmp_path / "t.tmp-1"
        _write(staging / "a.md", "a")
        with pytest.raises(PermissionError):
            publish(staging, tmp_path / "t", set())
        assert staging.exists()

    def test_target_filled_concurrently_is_merged(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        target = tmp_path / "t"

        def racing(src: object, dst: object) -> None:
            _write(target / "other.md", "raced")
            raise OSError(errno.ENOTEMPTY, "Directory not empty")

        monkeypatch.setattr(staging_module.os, "rename", racing)
        staging = tmp_path / "t.tmp-1"
        _write(staging / "a.md", "a")

        assert publish(staging, target, {"a.md"}) is PublishMode.MERGED
        assert (target / "a.md").exists()
        assert (target / "other.md").read_text(encoding="utf-8") == "raced"


def test_merge_tree_counts_written_files(tmp_path: Path) -> None:
    staging = tmp_path / "s"
    target = tmp_path / "t"
    _write(staging / "a.md", "a")
    _write(staging / "b.md", "b")
    _write(target / "b.md", "keep")
    assert merge_tree(staging, target, owned=set()) == 1
    assert (target / "b.md").read_text(encoding="utf-8") == "keep"
