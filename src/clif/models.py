"""Typed data models shared by the capture, encode and persist stages."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ._datetime import format_timestamp, parse_timestamp

JsonMapping = Mapping[str, Any]


class ModelValidationError(ValueError):
    """Raised when a model is constructed from invalid values or a bad payload."""


def _ensure_required(payload: JsonMapping, key: str) -> Any:
    """Retrieve ``key`` from ``payload`` and raise if missing or empty."""
    if key not in payload or payload[key] in (None, ""):
        raise ModelValidationError(f"Missing required field '{key}' in payload")
    return payload[key]


def _as_number(value: Any, key: str) -> float:
    """Coerce ``value`` to ``float`` or raise a validation error naming ``key``."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ModelValidationError(f"Field '{key}' must be numeric")
    return float(value)


@dataclass(frozen=True, slots=True)
class Region:
    """Rectangle in absolute screen coordinates plus the display it lives on.

    Attributes:
        x: Left edge of the rectangle.
        y: Top edge of the rectangle.
        width: Rectangle width; must be positive.
        height: Rectangle height; must be positive.
        display_id: Identifier of the display, using ``mss`` monitor numbering.
    """

    x: float
    y: float
    width: float
    height: float
    display_id: int = 1

    def __post_init__(self) -> None:
        """Validate the rectangle dimensions."""
        if self.width <= 0 or self.height <= 0:
            raise ModelValidationError("Region width and height must be greater than 0")

    def to_dict(self) -> dict[str, Any]:
        """Return the sidecar representation of the region."""
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "displayID": self.display_id,
        }

    @classmethod
    def from_dict(cls, payload: JsonMapping) -> Region:
        """Parse a region from its sidecar representation."""
        display_raw = payload.get("displayID", 0)
        return cls(
            x=_as_number(_ensure_required(payload, "x"), "x"),
            y=_as_number(_ensure_required(payload, "y"), "y"),
            width=_as_number(_ensure_required(payload, "width"), "width"),
            height=_as_number(_ensure_required(payload, "height"), "height"),
            display_id=int(_as_number(display_raw, "displayID")),
        )


@dataclass(frozen=True, slots=True)
class RecordingArtifact:
    """Finished screen recording produced by a capture session."""

    video_path: Path
    duration_seconds: float
    region: Region
    frames_written: int = 0
    frames_dropped: int = 0


@dataclass(frozen=True, slots=True)
class EncodedArtifact:
    """Animated GIF produced from a recording, still in temporary storage."""

    gif_path: Path
    frame_count: int


@dataclass(frozen=True, slots=True)
class ClifMetadata:
    """Persisted description of one library item.

    Attributes:
        id: Unique identifier of the item.
        created_at: UTC timestamp at which the item was saved.
        duration_ms: Recording duration in whole milliseconds.
        width: Recorded region width in points.
        height: Recorded region height in points.
        region: The captured region.
        gif_filename: Name of the GIF inside the item's folder.
        mp4_filename: Name of the kept video, or ``None`` when it was discarded.
    """

    id: str
    created_at: datetime
    duration_ms: int
    width: int
    height: int
    region: Region
    gif_filename: str
    mp4_filename: str | None = None

    def __post_init__(self) -> None:
        """Validate required metadata."""
        if not self.id:
            raise ModelValidationError("ClifMetadata.id must be populated")
        if self.created_at.tzinfo is None:
            raise ModelValidationError("ClifMetadata.created_at must be timezone aware")
        if self.duration_ms < 0:
            raise ModelValidationError("ClifMetadata.duration_ms must not be negative")
        if not self.gif_filename:
            raise ModelValidationError("ClifMetadata.gif_filename must be populated")

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase mapping written to the JSON sidecar."""
        payload: dict[str, Any] = {
            "id": self.id,
            "createdAt": format_timestamp(self.created_at),
            "durationMs": self.duration_ms,
            "width": self.width,
            "height": self.height,
            "region": self.region.to_dict(),
            "gifFilename": self.gif_filename,
        }
        if self.mp4_filename is not None:
            payload["mp4Filename"] = self.mp4_filename
        return payload

    @classmethod
    def from_dict(cls, payload: JsonMapping) -> ClifMetadata:
        """Parse metadata from a sidecar mapping.

        Raises:
            ModelValidationError: If required fields are missing or malformed.
        """
        region_payload = _ensure_required(payload, "region")
        if not isinstance(region_payload, Mapping):
            raise ModelValidationError("Field 'region' must be an object")
        created_raw = str(_ensure_required(payload, "createdAt"))
        try:
            created_at = parse_timestamp(created_raw)
        except ValueError as exc:
            raise ModelValidationError(f"Invalid createdAt: {created_raw}") from exc
        mp4_filename = payload.get("mp4Filename")
        return cls(
            id=str(_ensure_required(payload, "id")),
            created_at=created_at,
            duration_ms=int(_as_number(_ensure_required(payload, "durationMs"), "durationMs")),
            width=int(_as_number(_ensure_required(payload, "width"), "width")),
            height=int(_as_number(_ensure_required(payload, "height"), "height")),
            region=Region.from_dict(region_payload),
            gif_filename=str(_ensure_required(payload, "gifFilename")),
            mp4_filename=str(mp4_filename) if mp4_filename else None,
        )


@dataclass(frozen=True, slots=True)
class LibraryEntry:
    """Metadata plus resolved file paths for listing and display."""

    metadata: ClifMetadata
    gif_path: Path
    sidecar_path: Path
    video_path: Path | None = None

    @property
    def id(self) -> str:
        """Alias for the metadata identifier."""
        return self.metadata.id

    @property
    def created_at(self) -> datetime:
        """Alias for the metadata creation timestamp."""
        return self.metadata.created_at


__all__ = [
    "ClifMetadata",
    "EncodedArtifact",
    "LibraryEntry",
    "ModelValidationError",
    "RecordingArtifact",
    "Region",
]
