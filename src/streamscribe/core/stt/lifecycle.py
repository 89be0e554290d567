from __future__ import annotations

import asyncio
import atexit
import contextlib
import logging
import os
import signal
import tempfile
import threading
import time
import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)

TEMP_FILE_PREFIX = "whisper_chunk"


class ProcessTracker(Protocol):
    def track_process(self, process: asyncio.subprocess.Process) -> None: ...
    def untrack_process(self, process: asyncio.subprocess.Process) -> None: ...


@dataclass(eq=False, slots=True, weakref_slot=True)
class LifecycleManager:
    """Owns the temp files and recognizer processes of one audio session.

    Every path handed out by :meth:`new_temp_path` is removed exactly once,
    either by :meth:`release`, by :meth:`release_all` on stop, or by the
    synchronous exit hooks when the host process goes down first.
    """

    temp_dir: Path | None = None
    prefix: str = TEMP_FILE_PREFIX
    install_exit_hooks: bool = True

    _temp_files: set[Path] = field(default_factory=set)
    _processes: set[asyncio.subprocess.Process] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def __post_init__(self) -> None:
        if self.temp_dir is None:
            self.temp_dir = Path(tempfile.gettempdir())
        if self.install_exit_hooks:
            _register_for_exit_cleanup(self)

    @property
    def temp_files(self) -> frozenset[Path]:
        with self._lock:
            return frozenset(self._temp_files)

    @property
    def processes(self) -> frozenset[asyncio.subprocess.Process]:
        return frozenset(self._processes)

    def new_temp_path(self, suffix: str = ".wav") -> Path:
        name = f"{self.prefix}_{int(time.time() * 1000)}_{uuid4().hex[:8]}{suffix}"
        path = self.temp_dir / name  # type: ignore[operator]
        self.track_temp_file(path)
        return path

    def track_temp_file(self, path: Path) -> None:
        with self._lock:
            self._temp_files.add(Path(path))

    def release(self, path: Path) -> bool:
        """Delete a tracked temp file. Returns False if it was already released."""
        path = Path(path)
        with self._lock:
            if path not in self._temp_files:
                return False
            self._temp_files.discard(path)
        _unlink_quietly(path)
        return True

    async def release_async(self, path: Path) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.release, path)

    def release_all(self) -> int:
        with self._lock:
            paths = list(self._temp_files)
            self._temp_files.clear()
        for path in paths:
            _unlink_quietly(path)
        if paths:
            logger.info("[Lifecycle] Removed %d temp file(s)", len(paths))
        return len(paths)

    def track_process(self, process: asyncio.subprocess.Process) -> None:
        self._processes.add(process)

    def untrack_process(self, process: asyncio.subprocess.Process) -> None:
        self._processes.discard(process)

    def terminate_all(self) -> int:
        processes = list(self._processes)
        for process in processes:
            if process.returncode is not None:
                continue
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
        if processes:
            logger.info("[Lifecycle] Sent terminate to %d recognizer process(es)", len(processes))
        return len(processes)

    def cleanup_sync(self) -> None:
        """Last-resort cleanup for interpreter exit and termination signals."""
        for process in list(self._processes):
            try:
                if process.pid is not None and process.returncode is None:
                    os.kill(process.pid, getattr(signal, "SIGKILL", signal.SIGTERM))
            except Exception as exc:
                logger.debug("[Lifecycle] Exit kill failed for pid=%s: %s", process.pid, exc)
        self._processes.clear()
        try:
            self.release_all()
        except Exception as exc:
            logger.debug("[Lifecycle] Exit cleanup failed: %s", exc)


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("[Lifecycle] Failed to delete temp file %s: %s", path, exc)


_live_managers: weakref.WeakSet[LifecycleManager] = weakref.WeakSet()
_hooks_installed = False
_hooks_lock = threading.Lock()


def _register_for_exit_cleanup(manager: LifecycleManager) -> None:
    global _hooks_installed
    _live_managers.add(manager)
    with _hooks_lock:
        if _hooks_installed:
            return
        _hooks_installed = True

    atexit.register(run_exit_cleanup)
    for name in ("SIGINT", "SIGTERM"):
        signum = getattr(signal, name, None)
        if signum is None:
            continue
        try:
            previous = signal.getsignal(signum)
            signal.signal(signum, _make_signal_handler(previous))
        except (ValueError, OSError) as exc:
            # signal handlers can only be installed from the main thread
            logger.debug("[Lifecycle] Could not install %s handler: %s", name, exc)


def run_exit_cleanup() -> None:
    for manager in list(_live_managers):
        try:
            manager.cleanup_sync()
        except Exception as exc:
            logger.debug("[Lifecycle] Exit cleanup raised: %s", exc)


def _make_signal_handler(previous):
    def _handler(signum, frame):
        run_exit_cleanup()
        if callable(previous):
            previous(signum, frame)
            return
        if previous == signal.SIG_IGN:
            return
        signal.signal(signum, signal.SIG_DFL)
        signal.raise_signal(signum)

    return _handler
