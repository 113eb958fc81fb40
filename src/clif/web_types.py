"""Pydantic models shared by the web API and its clients."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from .models import LibraryEntry, Region
from .pipeline import PipelineStatus


class ApiError(BaseModel):
    """Serialised representation of an API error response."""

    model_config = ConfigDict(extra="forbid")

    message: str
    code: str | None = None


class RegionPayload(BaseModel):
    """Screen region requested by a client."""

    model_config = ConfigDict(extra="forbid")

    x: float = 0.0
    y: float = 0.0
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    display_id: int = 1

    def to_region(self) -> Region:
        """Translate the payload into the domain ``Region``."""
        return Region(
            x=self.x,
            y=self.y,
            width=self.width,
            height=self.height,
            display_id=self.display_id,
        )


class RecordingRequest(BaseModel):
    """Request payload for starting a recording."""

    model_config = ConfigDict(extra="forbid")

    region: RegionPayload


class ClifSummary(BaseModel):
    """Library item as shown in list views."""

    model_config = ConfigDict(extra="forbid")

    id: str
    created_at: datetime
    duration_ms: int
    width: int
    height: int
    gif_path: str
    video_path: str | None

    @classmethod
    def from_entry(cls, entry: LibraryEntry) -> "ClifSummary":
        """Translate a ``LibraryEntry`` into a summary for the API."""
        metadata = entry.metadata
        return cls(
            id=metadata.id,
            created_at=metadata.created_at.astimezone(UTC),
            duration_ms=metadata.duration_ms,
            width=metadata.width,
            height=metadata.height,
            gif_path=str(entry.gif_path),
            video_path=str(entry.video_path) if entry.video_path else None,
        )


class PipelineStatusResponse(BaseModel):
    """Current pipeline state and the outcome of the last run."""

    model_config = ConfigDict(extra="forbid")

    state: str
    last_outcome: str | None
    last_error: str | None
    last_clif_id: str | None

    @classmethod
    def from_status(cls, status: PipelineStatus) -> "PipelineStatusResponse":
        """Translate a controller snapshot into the response model."""
        return cls(
            state=status.state.value,
            last_outcome=status.last_outcome.value if status.last_outcome else None,
            last_error=status.last_error,
            last_clif_id=status.last_artifact.id if status.last_artifact else None,
        )


class StopResponse(BaseModel):
    """Whether a stop request reached an active capture."""

    model_config = ConfigDict(extra="forbid")

    stopped: bool


class CopyResponse(BaseModel):
    """Outcome of publishing a GIF to the clipboard."""

    model_config = ConfigDict(extra="forbid")

    copied: bool
    path: str


__all__ = [
    "ApiError",
    "ClifSummary",
    "CopyResponse",
    "PipelineStatusResponse",
    "RecordingRequest",
    "RegionPayload",
    "StopResponse",
]
