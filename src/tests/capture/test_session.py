from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import pytest

from clif.capture.session import CaptureSession, compute_output_size
from clif.config import CaptureConfig
from clif.errors import (
    AlreadyRecordingError,
    DisplayNotFoundError,
    SetupFailedError,
    StreamFailedError,
    WriteFailedError,
)
from clif.models import Region

RESULT_TIMEOUT = 10.0


class FakeWriter:
    """In-memory container that records every written image."""

    def __init__(self, path: Path, size: tuple[int, int], fps: float) -> None:
        self.path = path
        self.size = size
        self.fps = fps
        self.images: list[Any] = []
        self.released = False
        path.write_bytes(b"")

    def write(self, image: Any) -> None:
        self.images.append(image)

    def release(self) -> None:
        self.released = True


class BlockingWriter(FakeWriter):
    """Writer whose first write blocks until the test releases it."""

    def __init__(self, path: Path, size: tuple[int, int], fps: float) -> None:
        super().__init__(path, size, fps)
        self.entered = threading.Event()
        self.unblock = threading.Event()

    def write(self, image: Any) -> None:
        self.entered.set()
        self.unblock.wait(RESULT_TIMEOUT)
        super().write(image)


@pytest.fixture
def writers() -> list[FakeWriter]:
    return []


@pytest.fixture
def session_factory(frame_source, writers: list[FakeWriter], tmp_path: Path):
    def _factory(writer_cls: type[FakeWriter] = FakeWriter, **config: Any) -> CaptureSession:
        def _open(path: Path, size: tuple[int, int], fps: float) -> FakeWriter:
            writer = writer_cls(path, size, fps)
            writers.append(writer)
            return writer

        settings: dict[str, Any] = {"queue_size": 512, "temp_dir": tmp_path / "capture"}
        settings.update(config)
        return CaptureSession(frame_source, config=CaptureConfig(**settings), writer_factory=_open)

    return _factory


@pytest.fixture
def region() -> Region:
    return Region(x=100, y=50, width=64, height=48)


def test_compute_output_size_scales_and_rounds_to_even() -> None:
    assert compute_output_size(3000, 1000, 1920) == (1920, 640)
    assert compute_output_size(101, 51, 1920) == (100, 50)
    assert compute_output_size(1, 1, 1920) == (2, 2)


def test_recording_places_frames_on_constant_rate_grid(
    session_factory, frame_source, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory()

    future = session.start(region)
    frame_source.emit_many(90, 30.0)
    frame_source.now = 3.0
    assert session.stop() is True
    artifact = future.result(timeout=RESULT_TIMEOUT)

    assert artifact.duration_seconds == pytest.approx(3.0)
    assert artifact.frames_written == 90
    assert artifact.frames_dropped == 0
    assert artifact.region == region
    assert artifact.video_path.exists()
    writer = writers[0]
    assert len(writer.images) == 90
    assert writer.released is True
    assert writer.size == (64, 48)
    assert writer.images[0].shape == (48, 64, 3)
    assert frame_source.started_rect is not None
    assert frame_source.started_rect.left == 100
    assert session.is_recording is False


def test_gaps_hold_previous_frame_and_stop_pads_to_stop_instant(
    session_factory, frame_source, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory()

    future = session.start(region)
    frame_source.emit(0.0)
    frame_source.emit(0.5)
    frame_source.now = 1.0
    session.stop()
    artifact = future.result(timeout=RESULT_TIMEOUT)

    assert artifact.frames_written == 2
    assert artifact.duration_seconds == pytest.approx(1.0)
    assert len(writers[0].images) == 30


def test_frame_landing_on_written_slot_is_dropped(
    session_factory, frame_source, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory()

    future = session.start(region)
    frame_source.emit(0.0)
    frame_source.emit(0.01)
    frame_source.now = 0.1
    session.stop()
    artifact = future.result(timeout=RESULT_TIMEOUT)

    assert artifact.frames_written == 1
    assert artifact.frames_dropped == 1
    assert len(writers[0].images) == 3


def test_full_queue_drops_frames_without_blocking_delivery(
    session_factory, frame_source, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory(BlockingWriter, queue_size=2)

    future = session.start(region)
    frame_source.emit(0.0)
    writer = writers[0]
    assert isinstance(writer, BlockingWriter)
    assert writer.entered.wait(RESULT_TIMEOUT)

    for timestamp in (0.1, 0.2, 0.3, 0.4):
        frame_source.emit(timestamp)
    writer.unblock.set()
    frame_source.now = 1.0
    session.stop()
    artifact = future.result(timeout=RESULT_TIMEOUT)

    assert artifact.frames_dropped == 2
    assert artifact.frames_written == 3


def test_start_while_recording_raises(session_factory, region: Region) -> None:
    session = session_factory()
    future = session.start(region)

    with pytest.raises(AlreadyRecordingError):
        session.start(region)

    session.stop()
    with pytest.raises(WriteFailedError):
        future.result(timeout=RESULT_TIMEOUT)


def test_stop_when_idle_is_a_no_op(session_factory) -> None:
    session = session_factory()
    assert session.stop() is False


def test_second_stop_is_ignored(session_factory, frame_source, region: Region) -> None:
    session = session_factory()
    future = session.start(region)
    frame_source.emit(0.0)
    frame_source.now = 0.5

    assert session.stop() is True
    assert session.stop() is False
    assert future.result(timeout=RESULT_TIMEOUT).duration_seconds == pytest.approx(0.5)


def test_unknown_display_fails_through_future(
    session_factory, frame_source, writers: list[FakeWriter]
) -> None:
    session = session_factory()

    future = session.start(Region(x=0, y=0, width=10, height=10, display_id=7))

    with pytest.raises(DisplayNotFoundError):
        future.result(timeout=RESULT_TIMEOUT)
    assert writers == []
    assert frame_source.start_calls == 0
    assert session.is_recording is False


def test_region_outside_display_fails_setup(session_factory) -> None:
    session = session_factory()

    future = session.start(Region(x=5000, y=5000, width=10, height=10))

    with pytest.raises(SetupFailedError):
        future.result(timeout=RESULT_TIMEOUT)


def test_region_partially_off_display_is_clipped(
    session_factory, frame_source, writers: list[FakeWriter]
) -> None:
    session = session_factory()

    future = session.start(Region(x=1900, y=1060, width=100, height=100))
    frame_source.emit(0.0)
    frame_source.now = 0.2
    session.stop()
    future.result(timeout=RESULT_TIMEOUT)

    assert frame_source.started_rect is not None
    assert (frame_source.started_rect.width, frame_source.started_rect.height) == (20, 20)
    assert writers[0].size == (20, 20)


def test_writer_factory_failure_is_reported_as_setup_failure(
    frame_source, tmp_path: Path, region: Region
) -> None:
    def _broken(path: Path, size: tuple[int, int], fps: float) -> FakeWriter:
        raise OSError("disk full")

    session = CaptureSession(
        frame_source,
        config=CaptureConfig(temp_dir=tmp_path),
        writer_factory=_broken,
    )

    future = session.start(region)

    with pytest.raises(SetupFailedError) as excinfo:
        future.result(timeout=RESULT_TIMEOUT)
    assert excinfo.value.detail == "disk full"
    assert frame_source.start_calls == 0
    assert session.is_recording is False


def test_stream_error_fails_recording_and_removes_partial_video(
    session_factory, frame_source, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory()

    future = session.start(region)
    frame_source.emit(0.0)
    frame_source.fail(RuntimeError("display disconnected"))

    with pytest.raises(StreamFailedError):
        future.result(timeout=RESULT_TIMEOUT)
    assert not writers[0].path.exists()
    assert session.is_recording is False


def test_zero_frames_fails_and_removes_video(
    session_factory, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory()

    future = session.start(region)
    session.stop()

    with pytest.raises(WriteFailedError, match="No frames"):
        future.result(timeout=RESULT_TIMEOUT)
    assert not writers[0].path.exists()


def test_max_duration_stops_recording_automatically(
    session_factory, frame_source, writers: list[FakeWriter], region: Region
) -> None:
    session = session_factory(max_duration_sec=1.0)

    future = session.start(region)
    frame_source.emit_many(45, 30.0)
    artifact = future.result(timeout=RESULT_TIMEOUT)

    assert artifact.duration_seconds == pytest.approx(1.0)
    assert len(writers[0].images) == 30
    assert frame_source.stop_calls >= 1


def test_session_can_be_restarted_after_finishing(
    session_factory, frame_source, region: Region
) -> None:
    session = session_factory()

    first = session.start(region)
    frame_source.emit(0.0)
    frame_source.now = 0.2
    session.stop()
    first.result(timeout=RESULT_TIMEOUT)

    frame_source.now = 10.0
    second = session.start(region)
    frame_source.emit(10.0)
    frame_source.now = 10.5
    session.stop()

    assert second.result(timeout=RESULT_TIMEOUT).duration_seconds == pytest.approx(0.5)


def test_unexpected_setup_error_releases_the_session(
    session_factory, frame_source, region: Region
) -> None:
    lookup = frame_source.display_bounds
    calls = 0

    def _flaky_bounds(display_id: int):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("display server went away")
        return lookup(display_id)

    frame_source.display_bounds = _flaky_bounds
    session = session_factory()

    failed = session.start(region)

    with pytest.raises(SetupFailedError) as excinfo:
        failed.result(timeout=RESULT_TIMEOUT)
    assert excinfo.value.detail == "display server went away"
    assert session.is_recording is False

    retry = session.start(region)
    frame_source.emit(0.0)
    frame_source.now = 0.4
    session.stop()

    assert retry.result(timeout=RESULT_TIMEOUT).duration_seconds == pytest.approx(0.4)
