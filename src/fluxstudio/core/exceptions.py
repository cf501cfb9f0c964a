"""Exception hierarchy for FLUX Studio.

Every failure the core can report derives from :class:`FluxStudioError` so the
HTTP layer can map the whole family onto status codes in one place.
"""

from __future__ import annotations


class FluxStudioError(Exception):
    """Base class for all FLUX Studio errors."""


class InvalidRequest(FluxStudioError):
    """The client supplied unusable input (e.g. an empty prompt)."""


class NotFound(FluxStudioError):
    """An operation referenced a gallery id that does not exist."""

    def __init__(self, image_id: str, message: str | None = None):
        self.image_id = image_id
        super().__init__(message or "Image not found")


class UpstreamUnavailable(FluxStudioError):
    """The model service could not be reached or returned an unreadable failure.

    Safe to retry later.
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class NoImageProduced(FluxStudioError):
    """The model service answered but no usable image payload was captured."""


class GalleryIndexError(FluxStudioError):
    """The persisted gallery index exists but cannot be read."""

    def __init__(self, path: str, message: str | None = None):
        self.path = path
        super().__init__(message or f"Gallery index is unreadable: {path}")
