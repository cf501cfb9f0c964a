"""FLUX Studio — FastAPI Application.

This module is the single entry point for the web server.  It builds the
FastAPI ``app``, wires the :class:`~fluxstudio.core.gallery_service.GalleryService`
into it, defines all REST routes, and provides the ``main()`` CLI function
that launches uvicorn.

Architecture
------------
- **Configuration** comes from :mod:`fluxstudio.core.config` (environment
  variables with the ``FLUXSTUDIO_`` prefix).
- **Image generation** is delegated to an Ollama-compatible service through
  :class:`~fluxstudio.core.generation_client.OllamaClient`.
- **Gallery persistence** uses a single ``gallery.json`` file plus a
  directory of PNG files — no database required.
- **Generated images** are served by a ``StaticFiles`` mount at ``/images``.
- **Streaming generation** is delivered as ``text/event-stream`` frames,
  each ``data: <json>`` followed by a blank line.

Endpoints
---------
========  ==============================  ==================================
Method    Path                            Purpose
========  ==============================  ==================================
GET       ``/api/health``                 Liveness and version
GET       ``/api/gallery``                Full gallery, newest first
GET       ``/api/gallery/{id}``           Single gallery entry
POST      ``/api/generate``               Generate one image
POST      ``/api/generate-stream``        Generate with progress events
POST      ``/api/gallery/{id}/favorite``  Toggle favourite status
DELETE    ``/api/gallery/{id}``           Delete image and gallery entry
GET       ``/api/models``                 Image-capable models
GET       ``/api/stats``                  Gallery statistics
GET       ``/images/{filename}``          Stored image files
========  ==============================  ==================================

Usage
-----
CLI (installed entry point)::

    fluxstudio

Direct invocation::

    python -m fluxstudio.api.main
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles

from fluxstudio import __version__
from fluxstudio.api.models import GenerateRequest
from fluxstudio.core.artifact_store import ArtifactStore
from fluxstudio.core.config import FluxStudioConfig, config
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
from fluxstudio.core.generation_client import OllamaClient
from fluxstudio.core.models import GenerationComplete, GenerationFailed, ProgressUpdate

logger = logging.getLogger(__name__)

# Most specific class first; the first isinstance match wins.
_ERROR_STATUS: list[tuple[type[FluxStudioError], int]] = [
    (InvalidRequest, 400),
    (NotFound, 404),
    (NoImageProduced, 500),
    (UpstreamUnavailable, 502),
    (GalleryIndexError, 500),
]


def error_status(exc: FluxStudioError) -> int:
    """Map a core error onto an HTTP status code."""
    return next((status for cls, status in _ERROR_STATUS if isinstance(exc, cls)), 500)


def format_sse(payload: dict) -> str:
    """Encode *payload* as one server-sent event frame."""
    return f"data: {json.dumps(payload)}\n\n"


def event_payload(event: ProgressUpdate | GenerationComplete | GenerationFailed) -> dict:
    """Translate a generation event into its wire representation."""
    if isinstance(event, ProgressUpdate):
        return {"status": "generating", "progress": event.progress}
    if isinstance(event, GenerationComplete):
        return {"status": "complete", "image": event.entry.as_dict()}
    return {"status": "error", "error": event.error}


def get_gallery_service(request: Request) -> GalleryService:
    return request.app.state.gallery_service


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api")


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": __version__}


@router.get("/gallery")
async def get_gallery(service: GalleryService = Depends(get_gallery_service)) -> list[dict]:
    """Return every gallery entry, newest first.

    No filtering is applied; favourites and categories are filtered by the
    client.
    """
    return [entry.as_dict() for entry in service.list()]


@router.get("/gallery/{image_id}")
async def get_image(
    image_id: str, service: GalleryService = Depends(get_gallery_service)
) -> dict:
    """Return a single gallery entry by id.

    Raises:
        NotFound: 404 if the image is not found.
    """
    return service.get(image_id).as_dict()


@router.post("/generate")
async def generate_image(
    req: GenerateRequest, service: GalleryService = Depends(get_gallery_service)
) -> dict:
    """Generate one image and add it to the gallery.

    Returns:
        Dictionary with ``success`` and ``image`` (the new gallery entry).

    Raises:
        InvalidRequest: 400 if the prompt is missing.
        NoImageProduced: 500 if the model service returned no image.
        UpstreamUnavailable: 502 if the model service is unreachable.
    """
    entry = await service.generate(req.prompt, req.model)
    return {"success": True, "image": entry.as_dict()}


@router.post("/generate-stream")
async def generate_image_stream(
    req: GenerateRequest, service: GalleryService = Depends(get_gallery_service)
) -> StreamingResponse:
    """Generate one image, streaming progress as server-sent events.

    The stream carries ``{"status": "generating", "progress": n}`` frames
    followed by one terminal ``complete`` or ``error`` frame.  An empty
    prompt is rejected with 400 before the stream opens.
    """
    service.validate_prompt(req.prompt)

    async def frames() -> AsyncIterator[str]:
        async for event in service.generate_stream(req.prompt, req.model):
            yield format_sse(event_payload(event))

    return StreamingResponse(
        frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.post("/gallery/{image_id}/favorite")
async def toggle_favorite(
    image_id: str, service: GalleryService = Depends(get_gallery_service)
) -> dict:
    """Flip the favourite flag and return the updated entry."""
    return service.toggle_favorite(image_id).as_dict()


@router.delete("/gallery/{image_id}")
async def delete_image(
    image_id: str, service: GalleryService = Depends(get_gallery_service)
) -> dict:
    """Delete the image file and its gallery entry."""
    service.delete(image_id)
    return {"success": True}


@router.get("/models")
async def get_models(service: GalleryService = Depends(get_gallery_service)) -> list[dict]:
    """Return image-capable models, or every model if none match."""
    return await service.list_models()


@router.get("/stats")
async def get_stats(service: GalleryService = Depends(get_gallery_service)) -> dict:
    """Return ``total_images``, ``total_favorites``, and ``model_counts``."""
    return service.stats()


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: FluxStudioConfig | None = None,
    generation_client: OllamaClient | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        generation_client: Pre-built client for the model service.  When
            omitted, one is created from *settings* on startup and closed on
            shutdown.

    Returns:
        The configured application.
    """
    settings = settings if settings is not None else config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # --- Startup -------------------------------------------------------
        client = generation_client or OllamaClient(
            settings.ollama_url,
            timeout=settings.request_timeout,
            connect_timeout=settings.connect_timeout,
        )
        app.state.gallery_service = GalleryService(
            client,
            ArtifactStore(settings.images_dir),
            GalleryIndex(settings.gallery_db),
            default_model=settings.default_model,
            model_markers=settings.image_model_markers,
        )
        logger.info(f"GalleryService ready (model service: {client.base_url})")

        yield

        # --- Shutdown ------------------------------------------------------
        await client.aclose()

    app = FastAPI(
        title="FLUX Studio",
        description="Image generation gallery backed by a local model service.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FluxStudioError)
    async def handle_core_error(request: Request, exc: FluxStudioError) -> JSONResponse:
        status_code = error_status(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.exception_handler(OSError)
    async def handle_storage_error(request: Request, exc: OSError) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path} storage failure: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": str(exc)})

    app.include_router(router)
    app.mount("/images", StaticFiles(directory=str(settings.images_dir)), name="images")
    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Configure logging and launch the uvicorn ASGI server.

    Host, port and log level come from :data:`~fluxstudio.core.config.config`
    (``FLUXSTUDIO_SERVER_HOST``, ``FLUXSTUDIO_SERVER_PORT``,
    ``FLUXSTUDIO_LOG_LEVEL``).  Defaults to ``0.0.0.0:3001``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "fluxstudio.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
