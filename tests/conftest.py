"""
Test Configuration
==================

Pytest fixtures and fakes for Live Backdrop.

No camera, display or MediaPipe is needed: frames come from an in-memory
source, time from a manual clock and masks from fake segmentation models.
"""

from collections import deque
from concurrent.futures import Executor, Future
from typing import List, Optional

import numpy as np
import pytest

from backdrop.capture.base import VideoSource
from backdrop.core.contracts import Frame, PerformanceState
from backdrop.core.errors import SegmentationModelError
from backdrop.segmentation.adapter import SegmentationModel


# ============================================================
# HELPERS
# ============================================================

def make_frame(
    frame_id: int = 1,
    width: int = 8,
    height: int = 6,
    color=(200, 100, 50),
    timestamp_ms: Optional[float] = None,
) -> Frame:
    """Opaque single-color RGBA frame."""
    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[..., :3] = color
    pixels[..., 3] = 255
    if timestamp_ms is None:
        timestamp_ms = frame_id * 33.0
    return Frame(frame_id=frame_id, timestamp_ms=timestamp_ms, pixels=pixels)


def make_pattern_frame(frame_id: int = 1, width: int = 16, height: int = 12) -> Frame:
    """Frame with a checkerboard, so blurring visibly changes it."""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    checker = (np.indices((height, width)).sum(axis=0) % 2).astype(bool)
    pixels[checker, :3] = 255
    pixels[..., 3] = 255
    return Frame(frame_id=frame_id, timestamp_ms=frame_id * 33.0, pixels=pixels)


# ============================================================
# FAKES
# ============================================================

class ManualClock:
    """Millisecond clock advanced by the test."""

    def __init__(self, start_ms: float = 0.0):
        self.now_ms = start_ms

    def advance(self, ms: float) -> float:
        self.now_ms += ms
        return self.now_ms

    def __call__(self) -> float:
        return self.now_ms


class InlineExecutor(Executor):
    """Runs every task immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class ManualExecutor(Executor):
    """Queues tasks until the test runs them."""

    def __init__(self):
        self._queue = deque()

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        self._queue.append((future, fn, args, kwargs))
        return future

    def run_next(self) -> Future:
        future, fn, args, kwargs = self._queue.popleft()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def run_all(self):
        while self._queue:
            self.run_next()

    @property
    def pending(self) -> int:
        return len(self._queue)


class ConstantModel(SegmentationModel):
    """Returns the same confidence everywhere, at its own resolution."""

    def __init__(self, value: float = 1.0, width: int = 4, height: int = 3):
        self.value = value
        self.width = width
        self.height = height
        self.loaded = False
        self.closed = False
        self.predictions = 0

    def load(self) -> None:
        self.loaded = True

    def predict(self, pixels):
        self.predictions += 1
        return np.full((self.height, self.width), self.value, dtype=np.float32)

    def close(self) -> None:
        self.closed = True


class ArrayModel(SegmentationModel):
    """Returns a fixed uint8 mask."""

    def __init__(self, values: np.ndarray):
        self.values = values

    def load(self) -> None:
        pass

    def predict(self, pixels):
        return self.values


class BrokenLoadModel(SegmentationModel):
    """Fails to load."""

    def load(self) -> None:
        raise SegmentationModelError("weights not found")

    def predict(self, pixels):
        raise AssertionError("predict called on a model that never loaded")


class BrokenPredictModel(ConstantModel):
    """Loads, then fails on the first inference."""

    def predict(self, pixels):
        raise RuntimeError("inference crashed")


class InMemoryVideoSource(VideoSource):
    """Video source serving frames pushed by the test."""

    def __init__(self, available: bool = True):
        self.available = available
        self.frame: Optional[Frame] = None
        self.started = 0
        self.stopped = 0
        self._running = False

    def start(self) -> bool:
        self.started += 1
        if not self.available:
            return False
        self._running = True
        return True

    def stop(self) -> None:
        self.stopped += 1
        self._running = False

    def current_frame(self) -> Optional[Frame]:
        return self.frame

    @property
    def is_running(self) -> bool:
        return self._running


class RecordingSink:
    """Display and telemetry sink that keeps everything it receives."""

    def __init__(self):
        self.buffers: List[np.ndarray] = []
        self.reports: List[PerformanceState] = []

    def present(self, buffer: np.ndarray):
        self.buffers.append(buffer)

    def report(self, state: PerformanceState):
        self.reports.append(state)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    """Manual millisecond clock starting at 0."""
    return ManualClock()


@pytest.fixture
def inline_executor():
    """Executor that runs tasks synchronously."""
    return InlineExecutor()


@pytest.fixture
def manual_executor():
    """Executor whose tasks run only when the test says so."""
    return ManualExecutor()


@pytest.fixture
def sink():
    """Recording display/telemetry sink."""
    return RecordingSink()


@pytest.fixture
def video_source():
    """In-memory video source holding one frame."""
    source = InMemoryVideoSource()
    source.frame = make_frame(frame_id=1)
    return source
