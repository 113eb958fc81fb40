from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest

from clif.capture.session import open_container_writer
from clif.capture.sources import ErrorCallback, Frame, FrameCallback, ScreenRect
from clif.errors import SetupFailedError


class FakeFrameSource:
    """Frame source driven by the test: a settable clock and synchronous delivery."""

    def __init__(self, bounds: dict[int, ScreenRect] | None = None) -> None:
        self.now = 0.0
        self.bounds = bounds if bounds is not None else {1: ScreenRect(0, 0, 1920, 1080)}
        self.started_rect: ScreenRect | None = None
        self.start_calls = 0
        self.stop_calls = 0
        self.started = threading.Event()
        self._on_frame: FrameCallback | None = None
        self._on_error: ErrorCallback | None = None

    def clock(self) -> float:
        return self.now

    def display_bounds(self, display_id: int) -> ScreenRect | None:
        return self.bounds.get(display_id)

    def start(self, rect: ScreenRect, on_frame: FrameCallback, on_error: ErrorCallback) -> None:
        self.started_rect = rect
        self.start_calls += 1
        self._on_frame = on_frame
        self._on_error = on_error
        self.started.set()

    def stop(self) -> None:
        self.stop_calls += 1

    def emit(self, timestamp: float, *, width: int = 64, height: int = 48) -> None:
        assert self._on_frame is not None, "source was not started"
        shade = int(timestamp * 40) % 256
        image = np.full((height, width, 4), shade, dtype=np.uint8)
        self._on_frame(Frame(image=image, timestamp=timestamp))

    def emit_many(self, count: int, fps: float, **kwargs: int) -> None:
        for index in range(count):
            self.emit(index / fps, **kwargs)

    def fail(self, error: BaseException) -> None:
        assert self._on_error is not None, "source was not started"
        self._on_error(error)


@pytest.fixture
def frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture
def require_video_writer(tmp_path: Path) -> None:
    """Skip when OpenCV cannot open an MP4 writer on this machine."""
    probe = tmp_path / "probe.mp4"
    try:
        writer = open_container_writer(probe, (64, 48), 30.0)
    except SetupFailedError:
        pytest.skip("Video writer could not be initialized")
    writer.release()
    probe.unlink(missing_ok=True)


@pytest.fixture
def fake_gifski(tmp_path: Path) -> Path:
    """Return an existing file that stands in for the gifski binary."""
    binary = tmp_path / "bin" / "gifski"
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text("#!/bin/sh\n", encoding="utf-8")
    return binary


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Return a helper that polls a predicate until it holds or a timeout elapses."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait
