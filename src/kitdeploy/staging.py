"""Staging directories, interruption handling and atomic publish.

An engine builds new content in a staging directory that sits beside its
final location, then publishes it in one step. The pieces here are scoped
to a single engine instance:

- StagingRegistry: staging directories the engine currently owns
- InterruptGuard: SIGINT/SIGTERM handling for the staging-and-publish window
- publish: move a staging tree to its destination (rename, copy, or merge)
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import signal
import threading
import time
from collections.abc import Callable, Collection, Iterator
from contextlib import contextmanager
from enum import StrEnum
from pathlib import Path
from types import FrameType

from kitdeploy.fsutil import iter_files

logger = logging.getLogger(__name__)

INTERRUPTED_EXIT_CODE = 130

_GUARDED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class StagingRegistry:
    """Staging directories owned by one engine instance.

    Cleanup only ever touches directories this registry allocated, and is
    idempotent so it can run from both a signal handler and a ``finally``.
    """

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or _now_ms
        self._dirs: list[Path] = []

    @property
    def active(self) -> tuple[Path, ...]:
        return tuple(self._dirs)

    def allocate(self, target: Path) -> Path:
        """Create ``<target>.tmp-<ms>`` beside *target* and register it."""
        target.parent.mkdir(parents=True, exist_ok=True)
        stamp = self._clock()
        while True:
            staging = target.with_name(f"{target.name}.tmp-{stamp}")
            try:
                staging.mkdir()
                break
            except FileExistsError:
                stamp += 1
        self._dirs.append(staging)
        logger.debug("Allocated staging directory %s", staging)
        return staging

    def release(self, staging: Path) -> None:
        """Forget *staging* once it has been published or removed."""
        if staging in self._dirs:
            self._dirs.remove(staging)

    def cleanup(self) -> list[Path]:
        """Remove every registered staging directory that still exists."""
        removed: list[Path] = []
        for staging in list(self._dirs):
            if staging.exists():
                try:
                    shutil.rmtree(staging)
                    removed.append(staging)
                except OSError as exc:
                    logger.warning("Failed to remove staging directory %s: %s", staging, exc)
                    continue
            self._dirs.remove(staging)
        if removed:
            logger.info("Cleaned up %d staging director%s", len(removed), "y" if len(removed) == 1 else "ies")
        return removed


class InterruptGuard:
    """Install SIGINT/SIGTERM handlers for the duration of a ``with`` block.

    On a signal the registry is cleaned up and ``SystemExit(130)`` is raised.
    Inside :meth:`deferred` signals are held until the block finishes, so
    publish and manifest finalisation always run to completion. Handlers
    are only installed from the main thread; previous handlers are always
    restored on exit.
    """

    def __init__(self, registry: StagingRegistry) -> None:
        self._registry = registry
        self._previous: dict[signal.Signals, object] = {}
        self._deferring = False
        self._pending: int | None = None

    def __enter__(self) -> "InterruptGuard":
        if threading.current_thread() is threading.main_thread():
            for sig in _GUARDED_SIGNALS:
                self._previous[sig] = signal.getsignal(sig)
                signal.signal(sig, self._handle)
        else:
            logger.debug("Not on the main thread; signal handlers not installed")
        return self

    def __exit__(self, *exc_info: object) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        self._previous.clear()

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Hold signals until the block completes, then act on them."""
        self._deferring = True
        try:
            yield
        finally:
            self._deferring = False
        if self._pending is not None:
            signum, self._pending = self._pending, None
            self._interrupt(signum)

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        if self._deferring:
            logger.warning("Signal %s received during publish; finishing first", signum)
            self._pending = signum
            return
        self._interrupt(signum)

    def _interrupt(self, signum: int) -> None:
        logger.warning("Interrupted by signal %s; removing staging directories", signum)
        self._registry.cleanup()
        raise SystemExit(INTERRUPTED_EXIT_CODE)


class PublishMode(StrEnum):
    RENAMED = "renamed"
    COPIED = "copied"
    MERGED = "merged"


def _is_nonempty_dir(path: Path) -> bool:
    return path.is_dir() and any(path.iterdir())


def merge_tree(staging: Path, target: Path, owned: Collection[str]) -> int:
    """Overlay *staging* onto an existing *target* directory.

    Files whose relative path is in *owned* are overwritten; any other file
    is only created when absent. Nothing already in *target* is removed.

    Returns:
        Number of files written.
    """
    written = 0
    for source in iter_files(staging):
        rel = source.relative_to(staging).as_posix()
        dest = target / rel
        if dest.exists() and rel not in owned:
            logger.debug("Merge keeps existing %s", dest)
            continue
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        written += 1
    return written


def publish(staging: Path, target: Path, owned: Collection[str]) -> PublishMode:
    """Move a finished staging tree to *target*.

    A single rename is attempted first. Across filesystems the tree is
    copied and staging removed. When *target* already holds content the
    staging tree is merged into it instead.

    Raises:
        OSError: If no strategy succeeds.
    """
    if _is_nonempty_dir(target):
        mode = PublishMode.MERGED
        merge_tree(staging, target, owned)
        shutil.rmtree(staging)
        logger.info("Merged %s into existing %s", staging, target)
        return mode

    if target.is_dir():
        target.rmdir()

    try:
        os.rename(staging, target)
        mode = PublishMode.RENAMED
    except OSError as exc:
        if exc.errno == errno.EXDEV:
            shutil.copytree(staging, target, dirs_exist_ok=True)
            shutil.rmtree(staging)
            mode = PublishMode.COPIED
        elif _is_nonempty_dir(target):
            merge_tree(staging, target, owned)
            shutil.rmtree(staging)
            mode = PublishMode.MERGED
        else:
            raise
    logger.info("Published %s to %s (%s)", staging, target, mode)
    return mode
