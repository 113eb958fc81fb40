"""Convert recorded videos to animated GIFs with gifski."""

from __future__ import annotations

import contextlib
import logging
import math
import shutil
import subprocess
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Final

import cv2

from .config import EncoderConfig
from .errors import (
    ConversionFailedError,
    ConversionTimedOutError,
    EncoderUnavailableError,
    InputMissingError,
    NoFramesExtractedError,
    OutputMissingError,
)
from .models import EncodedArtifact

_LOGGER = logging.getLogger(__name__)

GIFSKI_NAME: Final = "gifski"
GIFSKI_FALLBACK_PATHS: Final[tuple[Path, ...]] = (
    Path("/opt/homebrew/bin/gifski"),
    Path("/usr/local/bin/gifski"),
)
DEFAULT_NATIVE_FPS: Final[float] = 30.0
FRAME_NAME_TEMPLATE: Final = "frame_{index:05d}.png"
_EPSILON: Final[float] = 1e-9

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


def locate_gifski(configured: Path | None = None) -> Path:
    """Return the gifski binary to use.

    Args:
        configured: Explicit path from configuration. When given it must exist.

    Raises:
        EncoderUnavailableError: If gifski cannot be found.
    """
    if configured is not None:
        if configured.is_file():
            return configured
        raise EncoderUnavailableError(f"gifski not found at {configured}")
    found = shutil.which(GIFSKI_NAME)
    if found:
        return Path(found)
    for candidate in GIFSKI_FALLBACK_PATHS:
        if candidate.is_file():
            return candidate
    raise EncoderUnavailableError("gifski not found. Install with: brew install gifski")


def extract_frames(
    video_path: Path,
    frames_dir: Path,
    fps: float,
    *,
    logger: logging.Logger | None = None,
) -> list[Path]:
    """Sample ``video_path`` at ``fps`` into zero-padded PNG stills inside ``frames_dir``.

    Sample ``i`` is the frame shown at ``i / fps`` seconds, and a video of
    duration ``D`` yields ``floor(D * fps)`` samples. Stills that fail to
    decode or write are logged and skipped.

    Args:
        video_path: Path to the input video.
        frames_dir: Existing directory that receives the stills.
        fps: Target sampling frequency.
        logger: Logger for per-frame warnings.

    Returns:
        Paths of the stills written, in sample order.

    Raises:
        NoFramesExtractedError: If the video cannot be opened.
    """
    log = logger or _LOGGER
    capture = cv2.VideoCapture(str(video_path))
    if not capture.isOpened():
        raise NoFramesExtractedError("Failed to open video")

    paths: list[Path] = []
    try:
        native_fps = capture.get(cv2.CAP_PROP_FPS)
        if native_fps <= 0:
            native_fps = DEFAULT_NATIVE_FPS
        frame_count = int(capture.get(cv2.CAP_PROP_FRAME_COUNT))
        total: int | None = None
        if frame_count > 0:
            total = math.floor(frame_count / native_fps * fps + _EPSILON)

        sample = 0
        frame_index = 0
        while total is None or sample < total:
            success, frame = capture.read()
            if not success or frame is None:
                break
            while (total is None or sample < total) and _source_index(
                sample, native_fps, fps
            ) == frame_index:
                path = frames_dir / FRAME_NAME_TEMPLATE.format(index=sample)
                if _write_still(path, frame, sample, log):
                    paths.append(path)
                sample += 1
            frame_index += 1

        if total is not None and sample < total:
            log.warning(
                "encoder.frames_unavailable",
                extra={"missing": total - sample, "expected": total, "path": str(video_path)},
            )
    finally:
        capture.release()

    return paths


def _source_index(sample: int, native_fps: float, fps: float) -> int:
    """Return the index of the video frame displayed at ``sample / fps`` seconds."""
    return math.floor(sample * native_fps / fps + _EPSILON)


def _write_still(path: Path, frame: Any, sample: int, logger: logging.Logger) -> bool:
    try:
        written = bool(cv2.imwrite(str(path), frame))
    except cv2.error as exc:
        logger.warning("encoder.frame_write_failed", extra={"frame_index": sample, "error": str(exc)})
        return False
    if not written:
        logger.warning("encoder.frame_write_failed", extra={"frame_index": sample})
    return written


class GifEncoder:
    """Turn a finished recording into a GIF by sampling stills and invoking gifski."""

    def __init__(
        self,
        config: EncoderConfig | None = None,
        *,
        runner: Runner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Configure the encoder; ``runner`` replaces :func:`subprocess.run` in tests."""
        self.config = config or EncoderConfig()
        self.logger = logger or _LOGGER
        self._run: Runner = runner or subprocess.run

    def convert(
        self,
        video_path: Path,
        *,
        fps: int | None = None,
        max_width: int | None = None,
        output_path: Path | None = None,
    ) -> EncodedArtifact:
        """Convert ``video_path`` to a GIF.

        Args:
            video_path: Finished recording to convert.
            fps: Sampling and playback rate; defaults to the configured value.
            max_width: Output width limit; defaults to the configured value.
            output_path: Destination; defaults to ``video_path`` with a ``.gif`` suffix.

        Returns:
            The encoded artifact. The frame directory is gone by the time this returns.

        Raises:
            EncoderUnavailableError: If gifski is missing (checked before any temp state).
            InputMissingError: If ``video_path`` does not exist.
            NoFramesExtractedError: If no still could be produced.
            ConversionFailedError: If gifski exits nonzero.
            ConversionTimedOutError: If gifski exceeds the configured timeout.
            OutputMissingError: If gifski leaves no nonempty output.
        """
        resolved_fps = fps or self.config.fps
        resolved_width = max_width or self.config.max_width
        binary = locate_gifski(self.config.binary)
        if not video_path.is_file():
            raise InputMissingError(f"Input video not found: {video_path}")

        gif_path = output_path or video_path.with_suffix(".gif")
        self.logger.info(
            "encoder.start",
            extra={
                "path": str(video_path),
                "gifski": str(binary),
                "fps": resolved_fps,
                "max_width": resolved_width,
                "size_kb": video_path.stat().st_size // 1024,
            },
        )

        temp_parent = self.config.temp_dir
        if temp_parent is not None:
            temp_parent.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="clif-frames-", dir=temp_parent) as frames_dir:
            frames = extract_frames(video_path, Path(frames_dir), resolved_fps, logger=self.logger)
            if not frames:
                raise NoFramesExtractedError("No frames extracted")
            self.logger.info("encoder.frames_extracted", extra={"frames": len(frames)})
            with contextlib.suppress(FileNotFoundError):
                gif_path.unlink()
            self._run_gifski(binary, frames, gif_path, resolved_fps, resolved_width)

        if not gif_path.is_file() or gif_path.stat().st_size == 0:
            raise OutputMissingError("GIF file was not created")
        self.logger.info(
            "encoder.complete",
            extra={"path": str(gif_path), "size_kb": gif_path.stat().st_size // 1024},
        )
        return EncodedArtifact(gif_path=gif_path, frame_count=len(frames))

    def _run_gifski(
        self,
        binary: Path,
        frames: Sequence[Path],
        gif_path: Path,
        fps: int,
        width: int,
    ) -> None:
        args = [
            str(binary),
            "--fps",
            str(fps),
            "--width",
            str(width),
            "--quality",
            str(self.config.quality),
            "--output",
            str(gif_path),
            *(str(frame) for frame in frames),
        ]
        timeout = self.config.timeout_sec
        try:
            completed = self._run(args, capture_output=True, text=True, timeout=timeout, check=False)
        except subprocess.TimeoutExpired as exc:
            self.logger.error("encoder.timeout", extra={"timeout_sec": timeout})
            raise ConversionTimedOutError(f"gifski did not finish within {timeout:g}s") from exc
        except OSError as exc:
            raise ConversionFailedError(str(exc)) from exc

        if completed.returncode != 0:
            stderr_text = completed.stderr or ""
            self.logger.error(
                "encoder.gifski_failed",
                extra={"returncode": completed.returncode, "stderr": stderr_text.strip()},
            )
            raise ConversionFailedError(stderr_text, returncode=completed.returncode)


__all__ = [
    "GIFSKI_FALLBACK_PATHS",
    "GifEncoder",
    "extract_frames",
    "locate_gifski",
]
