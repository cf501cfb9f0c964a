"""FLUX Studio - image generation gallery backed by a local model service."""

__version__ = "0.1.0"

from fluxstudio.core.config import FluxStudioConfig, config
from fluxstudio.core.gallery_service import GalleryService

__all__ = [
    "FluxStudioConfig",
    "GalleryService",
    "config",
]
