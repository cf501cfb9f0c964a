"""Data models shared by the FLUX Studio core.

GalleryEntry
    One generated image record, persisted in ``gallery.json``.
UpstreamRecord
    The handful of fields FLUX Studio understands in a single line of the
    model service's NDJSON response.  Anything else on the line is ignored.
ProgressUpdate, ImageReady
    Items produced by :meth:`OllamaClient.stream_events`.
GenerationComplete, GenerationFailed
    Terminal items produced by :meth:`GalleryService.generate_stream`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def utc_timestamp() -> str:
    """Return the current instant as ISO-8601 UTC with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GalleryEntry(BaseModel):
    """A single generated image and its metadata.

    Attributes:
        id: UUID assigned at creation; also the artifact filename stem.
        prompt: Prompt text submitted by the user.
        model: Model identifier used for generation.
        timestamp: ISO-8601 creation instant.
        filename: Artifact filename relative to the images directory.
        favorite: Favourite flag, flipped by the toggle operation.
        category: Optional label owned by the client.  Preserved if present
            in the index but never set by the server.

    Keys this model does not know are kept and written back unchanged.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    prompt: str
    model: str
    timestamp: str
    filename: str
    favorite: bool = False
    category: str | None = Field(default=None)

    def as_dict(self) -> dict:
        """Serialise for JSON output, omitting an unset category."""
        return self.model_dump(exclude_none=True)


@dataclass(frozen=True)
class UpstreamRecord:
    """Fields extracted from one upstream NDJSON line."""

    image: str | None = None
    completed: float | None = None
    total: float | None = None
    error: str | None = None

    @property
    def progress(self) -> int | None:
        """Completion percentage, or ``None`` when the record carries no progress."""
        if self.completed is None or self.total is None or self.total == 0:
            return None
        # Half-up, not banker's rounding.
        return math.floor(self.completed / self.total * 100 + 0.5)


@dataclass(frozen=True)
class ProgressUpdate:
    progress: int


@dataclass(frozen=True)
class ImageReady:
    data: bytes


@dataclass(frozen=True)
class GenerationComplete:
    entry: GalleryEntry


@dataclass(frozen=True)
class GenerationFailed:
    error: str
