"""Frame sources that deliver screen images to a capture session."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import mss
import mss.exception
import numpy as np

_LOGGER = logging.getLogger(__name__)

FrameArray = np.ndarray[Any, np.dtype[np.uint8]]


@dataclass(frozen=True, slots=True)
class ScreenRect:
    """Integer pixel rectangle in absolute screen coordinates."""

    left: int
    top: int
    width: int
    height: int

    def intersect(self, other: ScreenRect) -> ScreenRect | None:
        """Return the overlap with ``other`` or ``None`` when they are disjoint."""
        left = max(self.left, other.left)
        top = max(self.top, other.top)
        right = min(self.left + self.width, other.left + other.width)
        bottom = min(self.top + self.height, other.top + other.height)
        if right <= left or bottom <= top:
            return None
        return ScreenRect(left=left, top=top, width=right - left, height=bottom - top)

    def as_monitor(self) -> dict[str, int]:
        """Return the rectangle in the mapping shape ``mss`` expects."""
        return {"left": self.left, "top": self.top, "width": self.width, "height": self.height}


@dataclass(frozen=True, slots=True)
class Frame:
    """One captured image with its presentation timestamp.

    Attributes:
        image: BGR or BGRA pixel data.
        timestamp: Seconds on the source's monotonic clock.
    """

    image: FrameArray
    timestamp: float


FrameCallback = Callable[[Frame], None]
ErrorCallback = Callable[[BaseException], None]


@runtime_checkable
class FrameSource(Protocol):
    """OS capture API seam used by :class:`~clif.capture.session.CaptureSession`.

    Frames are delivered on a thread owned by the source. ``stop`` must not
    return until the delivery thread has stopped invoking ``on_frame``.
    """

    def clock(self) -> float:
        """Return the current time on the clock used for frame timestamps."""
        ...

    def display_bounds(self, display_id: int) -> ScreenRect | None:
        """Return the bounds of ``display_id`` or ``None`` when it does not exist."""
        ...

    def start(self, rect: ScreenRect, on_frame: FrameCallback, on_error: ErrorCallback) -> None:
        """Begin delivering frames of ``rect``."""
        ...

    def stop(self) -> None:
        """Stop delivering frames."""
        ...


class MssFrameSource:
    """Grab a screen rectangle at a fixed rate with ``mss`` on a delivery thread."""

    def __init__(
        self,
        *,
        fps: float = 30.0,
        clock: Callable[[], float] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Configure the grab rate and the clock used for timestamps."""
        if fps <= 0:
            raise ValueError("fps must be greater than 0")
        self.fps = fps
        self.logger = logger or _LOGGER
        self._clock = clock or time.monotonic
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def clock(self) -> float:
        return self._clock()

    def display_bounds(self, display_id: int) -> ScreenRect | None:
        # Index 0 is the union of all monitors; individual displays start at 1.
        if display_id < 1:
            return None
        with mss.mss() as sct:
            monitors = sct.monitors
        if display_id >= len(monitors):
            return None
        monitor = monitors[display_id]
        return ScreenRect(
            left=int(monitor["left"]),
            top=int(monitor["top"]),
            width=int(monitor["width"]),
            height=int(monitor["height"]),
        )

    def start(self, rect: ScreenRect, on_frame: FrameCallback, on_error: ErrorCallback) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("Frame source is already running")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._deliver,
            args=(rect, on_frame, on_error),
            name="clif-frame-source",
            daemon=True,
        )
        self._thread.start()
        self.logger.debug("capture.source_started", extra={"rect": rect.as_monitor(), "fps": self.fps})

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        self._thread = None

    def _deliver(self, rect: ScreenRect, on_frame: FrameCallback, on_error: ErrorCallback) -> None:
        """Grab frames until stopped; ``mss`` handles are bound to this thread."""
        interval = 1.0 / self.fps
        monitor = rect.as_monitor()
        try:
            with mss.mss() as sct:
                while not self._stop_event.is_set():
                    started = self._clock()
                    shot = sct.grab(monitor)
                    on_frame(Frame(image=np.asarray(shot, dtype=np.uint8), timestamp=started))
                    remaining = interval - (self._clock() - started)
                    if remaining > 0:
                        self._stop_event.wait(remaining)
        except Exception as exc:
            self.logger.error("capture.source_failed", exc_info=True, extra={"error": str(exc)})
            on_error(exc)


def mss_permission_check() -> bool:
    """Return ``True`` when a one-pixel grab of the primary display succeeds."""
    try:
        with mss.mss() as sct:
            monitors = sct.monitors
            if len(monitors) < 2:
                return False
            primary = monitors[1]
            sct.grab({"left": primary["left"], "top": primary["top"], "width": 1, "height": 1})
    except mss.exception.ScreenShotError:
        return False
    return True


__all__ = [
    "ErrorCallback",
    "Frame",
    "FrameArray",
    "FrameCallback",
    "FrameSource",
    "MssFrameSource",
    "ScreenRect",
    "mss_permission_check",
]
