"""Pydantic request models for the FLUX Studio API.

Models
------
GenerateRequest
    Payload for ``POST /api/generate`` and ``POST /api/generate-stream``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for the generation endpoints.

    ``prompt`` is optional at the schema level so that a missing prompt is
    reported as ``400 {"error": ...}`` by the service rather than as a
    framework validation error.

    Attributes:
        prompt: Text prompt for the image.
        model: Model identifier.  ``None`` selects the configured default.
    """

    prompt: str | None = Field(
        default=None,
        description="Text prompt describing the image to generate.",
    )
    model: str | None = Field(
        default=None,
        description="Model identifier (e.g. 'x/flux2-klein').  Defaults to the server setting.",
    )
