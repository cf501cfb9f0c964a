"""Core components: generation client, artifact store, gallery index, and service."""

from fluxstudio.core.artifact_store import ArtifactStore
from fluxstudio.core.exceptions import (
    FluxStudioError,
    GalleryIndexError,
    InvalidRequest,
    NoImageProduced,
    NotFound,
    UpstreamUnavailable,
)
from fluxstudio.core.gallery_index import GalleryIndex
from fluxstudio.core.gallery_service import GalleryService
from fluxstudio.core.generation_client import OllamaClient, select_image_models
from fluxstudio.core.models import GalleryEntry

__all__ = [
    "ArtifactStore",
    "FluxStudioError",
    "GalleryEntry",
    "GalleryIndex",
    "GalleryIndexError",
    "GalleryService",
    "InvalidRequest",
    "NoImageProduced",
    "NotFound",
    "OllamaClient",
    "UpstreamUnavailable",
    "select_image_models",
]
