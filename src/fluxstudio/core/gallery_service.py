"""Gallery orchestration for FLUX Studio.

:class:`GalleryService` ties together the :class:`OllamaClient`, the
:class:`ArtifactStore`, and the :class:`GalleryIndex` to implement every
gallery operation the HTTP layer exposes.

Write ordering
--------------
- **generate** writes the image file first and then prepends the index entry.
  If the index write fails, the image file is left behind without an entry.
  That orphan is logged and the error propagates; nothing reconciles it.
- **delete** removes the image file first and then the index entry.  A crash
  in between leaves an entry pointing at a missing file, which listing
  already tolerates and a repeated delete cleans up.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import AsyncIterator, Callable

from fluxstudio.core.artifact_store import ArtifactStore
from fluxstudio.core.exceptions import FluxStudioError, InvalidRequest, NotFound
from fluxstudio.core.gallery_index import GalleryIndex
from fluxstudio.core.generation_client import (
    DEFAULT_IMAGE_MODEL_MARKERS,
    OllamaClient,
    select_image_models,
)
from fluxstudio.core.models import (
    GalleryEntry,
    GenerationComplete,
    GenerationFailed,
    ImageReady,
    ProgressUpdate,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


class GalleryService:
    """Generate, list, favourite, and delete gallery images.

    Args:
        client: Generation client for the model service.
        artifacts: Image file store.
        index: Gallery metadata index.
        default_model: Model used when a request does not name one.
        model_markers: Substrings identifying image-capable models.
        id_factory: Produces fresh gallery ids.  Defaults to UUID4 strings.
        clock: Produces creation timestamps.
    """

    def __init__(
        self,
        client: OllamaClient,
        artifacts: ArtifactStore,
        index: GalleryIndex,
        *,
        default_model: str = "x/flux2-klein",
        model_markers=DEFAULT_IMAGE_MODEL_MARKERS,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], str] = utc_timestamp,
    ):
        self.client = client
        self.artifacts = artifacts
        self.index = index
        self.default_model = default_model
        self.model_markers = tuple(model_markers)
        self._id_factory = id_factory
        self._clock = clock

    def validate_prompt(self, prompt: str | None) -> str:
        """Return *prompt* if usable.

        Raises:
            InvalidRequest: If the prompt is missing or empty.
        """
        if not prompt:
            raise InvalidRequest("Prompt is required")
        return prompt

    def resolve_model(self, model: str | None) -> str:
        return model or self.default_model

    async def generate(self, prompt: str | None, model: str | None = None) -> GalleryEntry:
        """Generate one image and add it to the head of the gallery.

        Raises:
            InvalidRequest: Empty prompt.
            UpstreamUnavailable: Model service unreachable.
            NoImageProduced: Model service produced no image.
        """
        prompt = self.validate_prompt(prompt)
        model = self.resolve_model(model)
        logger.info(f'Generating image with prompt: "{prompt}" (model={model})')

        data = await self.client.generate(prompt, model)
        return self._store(prompt, model, data)

    async def generate_stream(
        self, prompt: str | None, model: str | None = None
    ) -> AsyncIterator[ProgressUpdate | GenerationComplete | GenerationFailed]:
        """Streaming generation as a finite sequence of events.

        Yields zero or more :class:`ProgressUpdate` items followed by exactly
        one :class:`GenerationComplete` or :class:`GenerationFailed`.  Call
        :meth:`validate_prompt` first to reject bad input before streaming.
        """
        entry: GalleryEntry | None = None
        try:
            prompt = self.validate_prompt(prompt)
            model = self.resolve_model(model)
            logger.info(f'Streaming generation with prompt: "{prompt}" (model={model})')

            async for event in self.client.stream_events(prompt, model):
                if isinstance(event, ImageReady):
                    entry = self._store(prompt, model, event.data)
                else:
                    yield event
        except (FluxStudioError, OSError) as e:
            logger.error(f"Stream error: {e}")
            yield GenerationFailed(str(e))
            return

        if entry is None:
            yield GenerationFailed("No image data in response")
        else:
            yield GenerationComplete(entry)

    def list(self) -> list[GalleryEntry]:
        """Return the gallery, newest first, exactly as persisted."""
        return self.index.load()

    def get(self, image_id: str) -> GalleryEntry:
        entry = self.index.find(image_id)
        if entry is None:
            raise NotFound(image_id)
        return entry

    def toggle_favorite(self, image_id: str) -> GalleryEntry:
        entry = self.index.toggle_favorite(image_id)
        logger.info(f"Toggled favorite for {image_id}: {entry.favorite}")
        return entry

    def delete(self, image_id: str) -> None:
        """Delete the image file, then its index entry.

        Raises:
            NotFound: If no entry has that id.
        """
        entry = self.get(image_id)
        self.artifacts.delete(entry.filename)
        self.index.remove(image_id)
        logger.info(f"Deleted image {image_id}")

    def stats(self) -> dict:
        entries = self.index.load()
        return {
            "total_images": len(entries),
            "total_favorites": sum(1 for entry in entries if entry.favorite),
            "model_counts": dict(Counter(entry.model for entry in entries)),
        }

    async def list_models(self) -> list[dict]:
        return select_image_models(await self.client.list_models(), self.model_markers)

    def _store(self, prompt: str, model: str, data: bytes) -> GalleryEntry:
        image_id = self._id_factory()
        path = self.artifacts.save(image_id, data)
        entry = GalleryEntry(
            id=image_id,
            prompt=prompt,
            model=model,
            timestamp=self._clock(),
            filename=path.name,
            favorite=False,
        )
        try:
            self.index.prepend(entry)
        except Exception:
            logger.error(f"Index write failed; image file {path.name} has no gallery entry")
            raise
        return entry
