import numpy as np
import pytest
from PyQt6.QtCore import QCoreApplication

from panocapture.errors import InsufficientFrames
from panocapture.models.progress import StitchStage
from panocapture.stitching.engine import StitchEngine
from panocapture.stitching.fallback import FallbackStitcher
from panocapture.workers.task_runner import StitchTask, TaskRunner


@pytest.fixture(scope="module")
def qt_app():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


def _frames(count: int):
    return [np.full((16, 24, 3), 50 + index, dtype=np.uint8) for index in range(count)]


def test_stitch_task_emits_progress_and_result(qt_app):
    task = StitchTask(StitchEngine([FallbackStitcher()]), _frames(3))
    progress, finished, failed = [], [], []
    task.signals.progress.connect(progress.append)
    task.signals.finished.connect(finished.append)
    task.signals.failed.connect(failed.append)

    task.run()

    assert failed == []
    assert len(finished) == 1
    assert finished[0].width == 72
    assert progress[0].stage == StitchStage.LOADING
    assert progress[-1].stage == StitchStage.COMPLETE
    assert task.error is None


def test_stitch_task_reports_failure(qt_app):
    task = StitchTask(StitchEngine([FallbackStitcher()]), _frames(1))
    finished, failed = [], []
    task.signals.finished.connect(finished.append)
    task.signals.failed.connect(failed.append)

    task.run()

    assert finished == []
    assert len(failed) == 1
    assert "InsufficientFrames" in failed[0]
    assert isinstance(task.error, InsufficientFrames)


def test_task_runner_completes_submitted_work(qt_app):
    task = StitchTask(StitchEngine([FallbackStitcher()]), _frames(2))
    task.setAutoDelete(False)
    runner = TaskRunner(max_threads=1)
    runner.submit(task)
    assert runner.wait(10_000)
    assert task.error is None
