"""Screen capture session that assembles delivered frames into an MP4 container."""

from __future__ import annotations

import contextlib
import logging
import queue
import tempfile
import threading
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import Future
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Protocol

import cv2
import numpy as np

from ..config import CaptureConfig
from ..errors import (
    AlreadyRecordingError,
    ClifError,
    DisplayNotFoundError,
    SetupFailedError,
    StreamFailedError,
    WriteFailedError,
)
from ..models import RecordingArtifact, Region
from .sources import Frame, FrameArray, FrameSource, ScreenRect

_LOGGER = logging.getLogger(__name__)

CODEC_CANDIDATES: Final[tuple[str, ...]] = ("mp4v", "avc1")
BGRA_CHANNELS: Final[int] = 4
_QUEUE_POLL_SEC: Final[float] = 0.05


class ContainerWriter(Protocol):
    """Minimal interface of a constant-frame-rate video container."""

    def write(self, image: FrameArray) -> None: ...

    def release(self) -> None: ...


WriterFactory = Callable[[Path, tuple[int, int], float], ContainerWriter]


class OpenCVContainerWriter:
    """``cv2.VideoWriter`` wrapper that raises instead of failing silently."""

    def __init__(self, writer: cv2.VideoWriter, codec: str) -> None:
        self._writer = writer
        self.codec = codec

    def write(self, image: FrameArray) -> None:
        self._writer.write(image)

    def release(self) -> None:
        self._writer.release()


def open_container_writer(
    path: Path,
    size: tuple[int, int],
    fps: float,
    *,
    codecs: Sequence[str] = CODEC_CANDIDATES,
) -> OpenCVContainerWriter:
    """Open an MP4 writer at ``path``, trying each codec in ``codecs`` in turn.

    Raises:
        SetupFailedError: If no codec produces an open writer.
    """
    for codec in codecs:
        fourcc = cv2.VideoWriter_fourcc(*codec)  # type: ignore[attr-defined]
        writer = cv2.VideoWriter(str(path), fourcc, fps, size)
        if writer.isOpened():
            return OpenCVContainerWriter(writer, codec)
        writer.release()
    raise SetupFailedError(
        f"Failed to open video writer for {path.name}",
        detail=f"attempted codecs: {', '.join(codecs)}",
    )


def compute_output_size(width: float, height: float, max_dimension: int) -> tuple[int, int]:
    """Scale ``width`` x ``height`` to fit ``max_dimension`` and round down to even pixels."""
    scale = min(1.0, max_dimension / width, max_dimension / height)
    out_width = max(2, int(width * scale) // 2 * 2)
    out_height = max(2, int(height * scale) // 2 * 2)
    return out_width, out_height


class CaptureSession:
    """Own one screen-capture stream and the container writer it feeds.

    Frames arrive on the frame source's delivery thread and are offered to a
    bounded queue; a frame is dropped when the queue is full. One writer thread
    drains the queue in arrival order and is the only code that touches the
    container.
    """

    def __init__(
        self,
        source: FrameSource,
        *,
        config: CaptureConfig | None = None,
        writer_factory: WriterFactory | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Bind the session to a frame source and capture settings."""
        self.source = source
        self.config = config or CaptureConfig()
        self.logger = logger or _LOGGER
        self._writer_factory: WriterFactory = writer_factory or open_container_writer
        self._lock = threading.Lock()
        self._active = False
        self._reset()

    @property
    def is_recording(self) -> bool:
        """Return ``True`` while a session is live, including while it finalises."""
        with self._lock:
            return self._active

    def start(self, region: Region) -> Future[RecordingArtifact]:
        """Begin capturing ``region`` and return a future for the finished recording.

        Setup failures (:class:`DisplayNotFoundError`, :class:`SetupFailedError`)
        are delivered through the returned future, which resolves exactly once.

        Raises:
            AlreadyRecordingError: If a session is already active.
        """
        with self._lock:
            if self._active:
                raise AlreadyRecordingError("A recording is already in progress")
            self._active = True
            self._reset()
            future = self._future

        try:
            self._setup(region)
        except ClifError as exc:
            self._fail_setup(exc)
        except Exception as exc:
            self._fail_setup(SetupFailedError("Failed to start capture", detail=str(exc)))
        return future

    def stop(self) -> bool:
        """Request a graceful finalize; returns ``False`` when nothing is recording."""
        with self._lock:
            if not self._active or self._writer_thread is None:
                return False
        return self._request_stop(self.source.clock(), reason="requested")

    def _reset(self) -> None:
        self._future: Future[RecordingArtifact] = Future()
        self._region: Region | None = None
        self._video_path: Path | None = None
        self._writer: ContainerWriter | None = None
        self._writer_thread: threading.Thread | None = None
        self._queue: queue.Queue[Frame] = queue.Queue(maxsize=self.config.queue_size)
        self._stop_event = threading.Event()
        self._accepting = False
        self._stop_at: float | None = None
        self._first_timestamp: float | None = None
        self._next_slot = 0
        self._last_image: FrameArray | None = None
        self._output_size = (0, 0)
        self._frames_written = 0
        self._frames_dropped = 0
        self._failure: ClifError | None = None

    def _setup(self, region: Region) -> None:
        bounds = self.source.display_bounds(region.display_id)
        if bounds is None:
            raise DisplayNotFoundError(f"No display found with id {region.display_id}")
        requested = ScreenRect(
            left=int(round(region.x)),
            top=int(round(region.y)),
            width=int(round(region.width)),
            height=int(round(region.height)),
        )
        rect = requested.intersect(bounds)
        if rect is None:
            raise SetupFailedError(f"Region lies outside display {region.display_id}")

        self._region = region
        self._output_size = compute_output_size(rect.width, rect.height, self.config.max_dimension)
        self._video_path = self._temp_video_path()
        with contextlib.suppress(FileNotFoundError):
            self._video_path.unlink()
        try:
            self._writer = self._writer_factory(
                self._video_path, self._output_size, self.config.fps
            )
        except ClifError:
            raise
        except Exception as exc:
            raise SetupFailedError("Failed to open video writer", detail=str(exc)) from exc

        self._writer_thread = threading.Thread(
            target=self._run_writer, name="clif-capture-writer", daemon=True
        )
        self._accepting = True
        self._writer_thread.start()
        try:
            self.source.start(rect, self._on_frame, self._on_stream_error)
        except Exception as exc:
            raise SetupFailedError("Failed to start screen capture", detail=str(exc)) from exc

        width, height = self._output_size
        self.logger.info(
            "capture.started",
            extra={
                "path": str(self._video_path),
                "width": width,
                "height": height,
                "fps": self.config.fps,
                "display_id": region.display_id,
            },
        )

    def _fail_setup(self, error: ClifError) -> None:
        self.logger.error("capture.setup_failed", extra=error.context())
        self._teardown_failed_setup(error)
        self._resolve(error)

    def _teardown_failed_setup(self, error: ClifError) -> None:
        """Undo a partial setup: stop the writer thread and delete the partial file."""
        self._accepting = False
        with self._lock:
            self._failure = error
        thread = self._writer_thread
        if thread is not None:
            self._stop_event.set()
            thread.join()
            return
        if self._writer is not None:
            with contextlib.suppress(Exception):
                self._writer.release()
        self._discard_video()

    def _temp_video_path(self) -> Path:
        base = self.config.temp_dir or Path(tempfile.gettempdir())
        base.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%SZ")
        return base / f"clif_{stamp}_{uuid.uuid4().hex[:6]}.mp4"

    def _on_frame(self, frame: Frame) -> None:
        """Delivery-thread entry point; never blocks."""
        if not self._accepting:
            return
        try:
            self._queue.put_nowait(frame)
        except queue.Full:
            self._count_drop()
            self.logger.debug("capture.frame_dropped", extra={"timestamp": frame.timestamp})

    def _on_stream_error(self, error: BaseException) -> None:
        self._accepting = False
        self._record_failure(StreamFailedError("Screen capture stream stopped", detail=str(error)))
        self._stop_event.set()

    def _count_drop(self) -> None:
        with self._lock:
            self._frames_dropped += 1

    def _record_failure(self, error: ClifError) -> None:
        """Keep the first failure; later ones are consequences of it."""
        with self._lock:
            if self._failure is None:
                self._failure = error

    def _request_stop(self, instant: float, *, reason: str) -> bool:
        with self._lock:
            if self._stop_at is not None:
                return False
            self._stop_at = instant
            self._accepting = False
        self.logger.info("capture.stopping", extra={"reason": reason})
        self.source.stop()
        self._stop_event.set()
        return True

    def _run_writer(self) -> None:
        while True:
            try:
                frame = self._queue.get(timeout=_QUEUE_POLL_SEC)
            except queue.Empty:
                if self._stop_event.is_set():
                    break
                continue
            if self._failure is not None:
                continue
            try:
                self._append(frame)
            except Exception as exc:
                self._record_failure(WriteFailedError("Failed to write video frame", detail=str(exc)))
                self._accepting = False
                self._stop_event.set()
        self._finalize()

    def _append(self, frame: Frame) -> None:
        if self._first_timestamp is None:
            self._first_timestamp = frame.timestamp
        pts = frame.timestamp - self._first_timestamp
        max_duration = self.config.max_duration_sec

        if self._stop_at is not None and frame.timestamp > self._stop_at:
            return
        if max_duration is not None and pts >= max_duration:
            self._request_stop(self._first_timestamp + max_duration, reason="max_duration")
            return

        slot = round(pts * self.config.fps)
        if slot < self._next_slot:
            self._count_drop()
            return
        image = self._prepare(frame.image)
        self._fill_until(slot)
        self._write(image)
        self._frames_written += 1

    def _prepare(self, image: FrameArray) -> FrameArray:
        if image.ndim == 3 and image.shape[2] == BGRA_CHANNELS:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        width, height = self._output_size
        if image.shape[1] != width or image.shape[0] != height:
            image = cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)
        return np.ascontiguousarray(image)

    def _fill_until(self, slot: int) -> None:
        """Hold the previous frame across grid slots that received no frame."""
        if self._last_image is None:
            return
        while self._next_slot < slot:
            self._write(self._last_image)

    def _write(self, image: FrameArray) -> None:
        if self._writer is None:
            raise WriteFailedError("Video writer is not open")
        self._writer.write(image)
        self._last_image = image
        self._next_slot += 1

    def _finalize(self) -> None:
        try:
            self.source.stop()
        except Exception as exc:  # pragma: no cover - source already reported its failure
            self.logger.warning("capture.source_stop_failed", extra={"error": str(exc)})
        with self._lock:
            failure = self._failure
            frames_dropped = self._frames_dropped
        if failure is None and self._frames_written == 0:
            failure = WriteFailedError("No frames were captured")
        if failure is None and self._first_timestamp is not None and self._stop_at is not None:
            try:
                self._fill_until(round((self._stop_at - self._first_timestamp) * self.config.fps))
            except Exception as exc:
                failure = WriteFailedError("Failed to finalize video", detail=str(exc))
        try:
            if self._writer is not None:
                self._writer.release()
        except Exception as exc:
            failure = failure or WriteFailedError("Failed to close video", detail=str(exc))

        if failure is not None:
            self.logger.error("capture.failed", extra=failure.context())
            self._discard_video()
            self._resolve(failure)
            return

        assert self._video_path is not None and self._region is not None
        assert self._first_timestamp is not None and self._stop_at is not None
        duration = max(0.0, self._stop_at - self._first_timestamp)
        artifact = RecordingArtifact(
            video_path=self._video_path,
            duration_seconds=duration,
            region=self._region,
            frames_written=self._frames_written,
            frames_dropped=frames_dropped,
        )
        self.logger.info(
            "capture.complete",
            extra={
                "path": str(artifact.video_path),
                "duration_seconds": round(duration, 3),
                "frames_written": artifact.frames_written,
                "frames_dropped": artifact.frames_dropped,
            },
        )
        self._resolve(artifact)

    def _discard_video(self) -> None:
        if self._video_path is not None:
            with contextlib.suppress(FileNotFoundError):
                self._video_path.unlink()

    def _resolve(self, outcome: RecordingArtifact | ClifError) -> None:
        """Release the session slot, then complete the future exactly once."""
        future = self._future
        with self._lock:
            self._active = False
        if future.done():
            return
        if isinstance(outcome, ClifError):
            future.set_exception(outcome)
        else:
            future.set_result(outcome)


__all__ = [
    "CODEC_CANDIDATES",
    "CaptureSession",
    "ContainerWriter",
    "OpenCVContainerWriter",
    "WriterFactory",
    "compute_output_size",
    "open_container_writer",
]
