"""Single-flight orchestration of capture, GIF encoding and library persistence."""

from __future__ import annotations

import contextlib
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .capture.permissions import PermissionProbe
from .capture.session import CaptureSession
from .clipboard import ClipboardSink
from .encoder import GifEncoder
from .errors import BusyError, ClifError, NoRecentArtifactError, describe_error
from .library import LibraryStore
from .models import ClifMetadata, EncodedArtifact, RecordingArtifact, Region

_LOGGER = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Stage the controller is currently in."""

    IDLE = "idle"
    AWAITING_PERMISSION = "awaiting_permission"
    CAPTURING = "capturing"
    ENCODING = "encoding"
    PERSISTING = "persisting"


class PipelineOutcome(str, Enum):
    """How the most recent run ended."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Successful run: the persisted metadata and where its GIF now lives."""

    metadata: ClifMetadata
    gif_path: Path
    copied_to_clipboard: bool


@dataclass(frozen=True, slots=True)
class PipelineStatus:
    """Point-in-time view of the controller for adapters."""

    state: PipelineState
    last_outcome: PipelineOutcome | None
    last_error: str | None
    last_artifact: ClifMetadata | None


class PipelineController:
    """Drive one region through capture, encoding and persistence at a time.

    The current state and the last saved artifact are owned by this object and
    guarded by its lock. Runs execute on the controller's own worker thread so
    the blocking encoder never runs on the caller's thread. A second ``start``
    while a run is in progress is rejected with :class:`BusyError`.
    """

    def __init__(
        self,
        capture: CaptureSession,
        encoder: GifEncoder,
        library: LibraryStore,
        clipboard: ClipboardSink,
        *,
        permission: PermissionProbe | None = None,
        keep_video: bool | None = None,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Wire the stages together; ``keep_video`` defaults to the library setting."""
        self.capture = capture
        self.encoder = encoder
        self.library = library
        self.clipboard = clipboard
        self.permission = permission
        self.keep_video = keep_video
        self.logger = logger or _LOGGER
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="clif-pipeline"
        )
        self._lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._last_outcome: PipelineOutcome | None = None
        self._last_error: str | None = None
        self._last_artifact: tuple[ClifMetadata, Path] | None = None

    @property
    def state(self) -> PipelineState:
        """Return the current stage."""
        with self._lock:
            return self._state

    def last_artifact(self) -> ClifMetadata | None:
        """Return the metadata of the most recently persisted clif, if any."""
        with self._lock:
            return self._last_artifact[0] if self._last_artifact else None

    def status(self) -> PipelineStatus:
        """Return a consistent snapshot of state, outcome and last artifact."""
        with self._lock:
            return PipelineStatus(
                state=self._state,
                last_outcome=self._last_outcome,
                last_error=self._last_error,
                last_artifact=self._last_artifact[0] if self._last_artifact else None,
            )

    def start(self, region: Region) -> Future[PipelineResult]:
        """Start a run for ``region`` and return a future for its result.

        Raises:
            BusyError: If a run is already in progress.
        """
        with self._lock:
            if self._state is not PipelineState.IDLE:
                raise BusyError(f"A clif is already in progress ({self._state.value})")
            self._state = PipelineState.AWAITING_PERMISSION
        self.logger.info("pipeline.start", extra={"region": region.to_dict()})
        try:
            return self._executor.submit(self._run, region)
        except RuntimeError:
            with self._lock:
                self._state = PipelineState.IDLE
            raise

    def stop(self) -> bool:
        """Ask the capture stage to finalize; ignored unless capturing."""
        with self._lock:
            if self._state is not PipelineState.CAPTURING:
                return False
        return self.capture.stop()

    def recopy_last(self) -> bool:
        """Publish the last saved GIF to the clipboard again.

        Raises:
            NoRecentArtifactError: If nothing was saved during this process lifetime.
        """
        with self._lock:
            last = self._last_artifact
        if last is None:
            raise NoRecentArtifactError("No clif has been saved yet")
        return self.clipboard.copy(last[1])

    def shutdown(self, *, wait: bool = True) -> None:
        """Finalize any capture in progress and release the worker thread."""
        self.stop()
        self._executor.shutdown(wait=wait)

    def _run(self, region: Region) -> PipelineResult:
        try:
            result = self._execute(region)
        except Exception as exc:
            context: dict[str, Any] = (
                exc.context() if isinstance(exc, ClifError) else {"error": str(exc)}
            )
            self.logger.error("pipeline.failed", extra=context)
            self._finish(PipelineOutcome.FAILED, describe_error(exc))
            raise
        self._finish(PipelineOutcome.SUCCESS, None)
        return result

    def _execute(self, region: Region) -> PipelineResult:
        recording: RecordingArtifact | None = None
        encoded: EncodedArtifact | None = None
        try:
            if self.permission is not None:
                self.permission.require()
            capture_future = self.capture.start(region)
            self._transition(PipelineState.CAPTURING)
            recording = capture_future.result()

            self._transition(PipelineState.ENCODING)
            encoded = self.encoder.convert(recording.video_path)

            self._transition(PipelineState.PERSISTING)
            metadata = self.library.save_artifact(
                encoded.gif_path,
                recording.video_path,
                recording,
                keep_video=self.keep_video,
            )
        except Exception:
            self._discard_temporaries(recording, encoded)
            raise

        gif_path = self.library.gif_path_for(metadata)
        with self._lock:
            self._last_artifact = (metadata, gif_path)
        copied = self.clipboard.copy(gif_path)
        self.logger.info(
            "pipeline.complete",
            extra={"id": metadata.id, "path": str(gif_path), "copied": copied},
        )
        return PipelineResult(metadata=metadata, gif_path=gif_path, copied_to_clipboard=copied)

    def _transition(self, state: PipelineState) -> None:
        with self._lock:
            self._state = state
        self.logger.debug("pipeline.state", extra={"state": state.value})

    def _finish(self, outcome: PipelineOutcome, error: str | None) -> None:
        with self._lock:
            self._state = PipelineState.IDLE
            self._last_outcome = outcome
            self._last_error = error

    def _discard_temporaries(
        self,
        recording: RecordingArtifact | None,
        encoded: EncodedArtifact | None,
    ) -> None:
        """Delete stage outputs still at their temporary paths; persisted files have moved."""
        for path in (
            recording.video_path if recording else None,
            encoded.gif_path if encoded else None,
        ):
            if path is None:
                continue
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
                self.logger.debug("pipeline.temp_removed", extra={"path": str(path)})


__all__ = [
    "PipelineController",
    "PipelineOutcome",
    "PipelineResult",
    "PipelineState",
    "PipelineStatus",
]
