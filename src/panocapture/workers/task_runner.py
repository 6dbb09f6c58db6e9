"""Utilities for running stitches in background threads."""
from __future__ import annotations

import traceback
from typing import Iterable

import numpy as np
from PyQt6.QtCore import QObject, QRunnable, QThreadPool, pyqtSignal

from ..stitching.engine import StitchEngine


class TaskSignals(QObject):
    """Signals available from a background stitch."""

    progress = pyqtSignal(object)
    finished = pyqtSignal(object)
    failed = pyqtSignal(str)


class StitchTask(QRunnable):
    """Run one stitch in the Qt thread pool, relaying its progress events."""

    def __init__(self, engine: StitchEngine, frames: Iterable[np.ndarray]) -> None:
        super().__init__()
        self.engine = engine
        self.frames = list(frames)
        self.signals = TaskSignals()
        self.error: BaseException | None = None

    def run(self) -> None:
        try:
            panorama = self.engine.stitch(self.frames, self.signals.progress.emit)
        except Exception as exc:  # noqa: BLE001
            self.error = exc
            tb = traceback.format_exc()
            self.signals.failed.emit(f"{exc}\n{tb}")
        else:
            self.signals.finished.emit(panorama)


class TaskRunner:
    """Thin wrapper around QThreadPool for convenience."""

    def __init__(self, max_threads: int | None = None) -> None:
        self._pool = QThreadPool.globalInstance()
        if max_threads is not None:
            self._pool.setMaxThreadCount(max_threads)

    def submit(self, task: StitchTask) -> None:
        self._pool.start(task)

    def wait(self, timeout_ms: int = -1) -> bool:
        return self._pool.waitForDone(timeout_ms)
