"""Date-partitioned clif library with crash-safe metadata sidecars."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import shutil
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Final

from ._datetime import ensure_utc
from .config import LibraryConfig
from .errors import PersistenceError
from .models import ClifMetadata, LibraryEntry, ModelValidationError, RecordingArtifact

_LOGGER = logging.getLogger(__name__)

_PART_SUFFIX: Final = ".part"
_SIDECAR_SUFFIX: Final = ".json"
_HASH_LENGTH: Final[int] = 6


def _local_now() -> datetime:
    return datetime.now().astimezone()


class LibraryStore:
    """Persist GIFs, optional videos and their sidecars under ``root/yyyy/mm``."""

    def __init__(
        self,
        root: Path | None = None,
        *,
        config: LibraryConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialise the store; ``clock`` must return timezone-aware datetimes."""
        self.config = config or LibraryConfig()
        self.root = root or self.config.root
        self.logger = logger or _LOGGER
        self._clock = clock or _local_now
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()).upper())

    def folder_for(self, moment: datetime) -> Path:
        """Return the ``yyyy/mm`` folder that items saved at ``moment`` belong to."""
        return self.root / f"{moment.year:04d}" / f"{moment.month:02d}"

    def generate_basename(self, moment: datetime) -> str:
        """Return ``YYYY-MM-DD_HH-MM-SS_<hash>`` for an item saved at ``moment``."""
        timestamp = moment.strftime("%Y-%m-%d_%H-%M-%S")
        return f"{timestamp}_{uuid.uuid4().hex[:_HASH_LENGTH]}"

    def save_artifact(
        self,
        gif_path: Path,
        video_path: Path,
        recording: RecordingArtifact,
        *,
        keep_video: bool | None = None,
    ) -> ClifMetadata:
        """Move a finished GIF (and optionally its video) into the library.

        The sidecar is written last, after every media move succeeded, so a
        crash part-way leaves orphaned media rather than a listed item whose
        files are missing. A GIF that was already moved is not rolled back if
        the video move fails afterwards.

        Args:
            gif_path: Temporary GIF; it is moved, not copied.
            video_path: Temporary recording; moved when kept, deleted otherwise.
            recording: Capture details recorded in the metadata.
            keep_video: Whether to keep the video; defaults to the configured value.

        Returns:
            The metadata that was written.

        Raises:
            PersistenceError: If creating the folder, moving media or writing
                the sidecar fails.
        """
        keep = self.config.keep_video if keep_video is None else keep_video
        now = self._clock()
        folder = self.folder_for(now)
        basename = self.generate_basename(now)

        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to create library folder {folder}", detail=str(exc)) from exc

        gif_filename = f"{basename}.gif"
        self._move(gif_path, folder / gif_filename)

        mp4_filename: str | None = None
        if keep:
            mp4_filename = f"{basename}.mp4"
            self._move(video_path, folder / mp4_filename)
        else:
            with contextlib.suppress(FileNotFoundError):
                video_path.unlink()

        region = recording.region
        metadata = ClifMetadata(
            id=self._id_factory(),
            created_at=ensure_utc(now, assume_utc_if_naive=True),
            duration_ms=int(recording.duration_seconds * 1000),
            width=int(region.width),
            height=int(region.height),
            region=region,
            gif_filename=gif_filename,
            mp4_filename=mp4_filename,
        )
        self._write_sidecar(folder / f"{basename}{_SIDECAR_SUFFIX}", metadata)
        self.logger.info(
            "library.saved",
            extra={"path": str(folder / gif_filename), "id": metadata.id, "kept_video": keep},
        )
        return metadata

    def load_all(self) -> list[LibraryEntry]:
        """Return every listable item, newest first.

        Sidecars that are malformed or reference missing media are skipped
        with a warning.
        """
        if not self.root.is_dir():
            return []

        entries: list[LibraryEntry] = []
        for sidecar in self.root.rglob(f"*{_SIDECAR_SUFFIX}"):
            relative = sidecar.relative_to(self.root)
            if any(part.startswith(".") for part in relative.parts) or not sidecar.is_file():
                continue
            entry = self._load_entry(sidecar)
            if entry is not None:
                entries.append(entry)

        entries.sort(key=lambda entry: entry.created_at, reverse=True)
        return entries

    def get(self, clif_id: str) -> LibraryEntry | None:
        """Return the listable item with ``clif_id`` or ``None``."""
        for entry in self.load_all():
            if entry.id == clif_id:
                return entry
        return None

    def gif_path_for(self, metadata: ClifMetadata) -> Path:
        """Return the final GIF path of an item saved by this store.

        The basename starts with the local ``YYYY-MM`` the folder was derived from.
        """
        year, month = metadata.gif_filename[:4], metadata.gif_filename[5:7]
        return self.root / year / month / metadata.gif_filename

    def _load_entry(self, sidecar: Path) -> LibraryEntry | None:
        try:
            payload = json.loads(sidecar.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ModelValidationError("Sidecar is not a JSON object")
            metadata = ClifMetadata.from_dict(payload)
        except (OSError, ValueError) as exc:
            self.logger.warning(
                "library.sidecar_invalid", extra={"path": str(sidecar), "error": str(exc)}
            )
            return None

        folder = sidecar.parent
        gif_path = folder / metadata.gif_filename
        video_path = folder / metadata.mp4_filename if metadata.mp4_filename else None
        missing = [path for path in (gif_path, video_path) if path is not None and not path.is_file()]
        if missing:
            self.logger.warning(
                "library.media_missing",
                extra={"path": str(sidecar), "missing": [str(path) for path in missing]},
            )
            return None
        return LibraryEntry(
            metadata=metadata,
            gif_path=gif_path,
            sidecar_path=sidecar,
            video_path=video_path,
        )

    def _move(self, source: Path, destination: Path) -> None:
        try:
            shutil.move(str(source), str(destination))
        except OSError as exc:
            self.logger.error(
                "library.move_failed",
                extra={"source": str(source), "destination": str(destination), "error": str(exc)},
            )
            raise PersistenceError(f"Failed to move {source.name} into the library", detail=str(exc)) from exc

    def _write_sidecar(self, destination: Path, metadata: ClifMetadata) -> None:
        """Write the sidecar atomically through a ``.part`` file."""
        temp_path = destination.with_suffix(destination.suffix + _PART_SUFFIX)
        content = json.dumps(metadata.to_dict(), indent=2, sort_keys=True) + "\n"
        try:
            with temp_path.open("w", encoding="utf-8") as temp_file:
                temp_file.write(content)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            temp_path.replace(destination)
        except OSError as exc:
            with contextlib.suppress(FileNotFoundError):
                temp_path.unlink()
            raise PersistenceError("Failed to write clif metadata", detail=str(exc)) from exc


__all__ = ["LibraryStore"]
