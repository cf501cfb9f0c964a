"""Async client for the Ollama-compatible image generation service.

:class:`OllamaClient` issues ``POST /api/generate`` requests in single-shot
(``stream=false``) and streaming (``stream=true``) mode and extracts the
generated image from the line-delimited response, and lists installed models
via ``GET /api/tags``.

Failure classes
---------------
- :class:`~fluxstudio.core.exceptions.UpstreamUnavailable` — connection
  refused, timeout, any other httpx request error (e.g. a body that fails
  its declared content-encoding), or a non-2xx response with no readable
  error record.
  Callers may retry later.
- :class:`~fluxstudio.core.exceptions.NoImageProduced` — the service answered
  but no image payload was captured (including an explicit upstream
  ``error`` record, e.g. an unknown model).

Usage
-----
::

    client = OllamaClient("http://localhost:11434")
    png = await client.generate("a red circle", "x/flux2-klein")

    async for event in client.stream_events("a red circle", "x/flux2-klein"):
        ...

    await client.aclose()
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable

import httpx

from fluxstudio.core.exceptions import NoImageProduced, UpstreamUnavailable
from fluxstudio.core.models import ImageReady, ProgressUpdate
from fluxstudio.core.protocol import ImageAccumulator, RecordBuffer, decode_body

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL_MARKERS = ("flux", "stable", "sdxl", "dall")


def select_image_models(models: list[dict], markers) -> list[dict]:
    """Filter model descriptors down to image-capable ones.

    A model qualifies when its ``name`` contains any of *markers*.  If nothing
    qualifies, the unfiltered list is returned so callers always have a choice.

    Args:
        models: Model descriptors as returned by ``/api/tags``.
        markers: Substrings identifying image models.

    Returns:
        The matching descriptors, or *models* unchanged when none match.
    """
    matching = [
        model
        for model in models
        if any(marker in str(model.get("name", "")) for marker in markers)
    ]
    return matching or models


class OllamaClient:
    """Talk to the model service over HTTP.

    Args:
        base_url: Service root, e.g. ``http://localhost:11434``.
        timeout: Read timeout in seconds.  Streaming generations can run for
            minutes, so this is generous by default.
        connect_timeout: Connection timeout in seconds.
        transport: Optional httpx transport, used by tests to stand in for
            the real service.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 600.0,
        connect_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def generate(self, prompt: str, model: str) -> bytes:
        """Run a single-shot generation and return the decoded image bytes.

        Every record of the response is scanned and the last non-empty
        ``image`` value wins.

        Raises:
            UpstreamUnavailable: On transport failure or unreadable error response.
            NoImageProduced: If no record carried an image.
        """
        payload = {"model": model, "prompt": prompt, "stream": False}
        try:
            response = await self._http.post("/api/generate", json=payload)
        except httpx.RequestError as e:
            logger.error(f"Model service unreachable at {self.base_url}: {e}")
            raise UpstreamUnavailable(f"Model service unavailable: {e}") from e

        records = decode_body(response.text)
        if response.is_error:
            self._raise_for_status(response.status_code, records)

        accumulator = ImageAccumulator()
        accumulator.extend(records)
        return accumulator.decode()

    async def stream_events(
        self, prompt: str, model: str
    ) -> AsyncIterator[ProgressUpdate | ImageReady]:
        """Run a streaming generation, yielding progress and finally the image.

        Records are framed on newline boundaries regardless of how the
        transport splits the body.  Each record with ``completed``/``total``
        produces a :class:`ProgressUpdate`; after the stream ends, exactly one
        :class:`ImageReady` is yielded.

        Raises:
            UpstreamUnavailable: On transport failure or unreadable error response.
            NoImageProduced: If the stream ended without an image.
        """
        payload = {"model": model, "prompt": prompt, "stream": True}
        buffer = RecordBuffer()
        accumulator = ImageAccumulator()

        try:
            async with self._http.stream("POST", "/api/generate", json=payload) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", "replace")
                    self._raise_for_status(response.status_code, decode_body(body))

                async for chunk in response.aiter_bytes():
                    for record in buffer.feed(chunk):
                        accumulator.add(record)
                        if record.progress is not None:
                            yield ProgressUpdate(record.progress)
        except httpx.RequestError as e:
            logger.error(f"Model service stream failed at {self.base_url}: {e}")
            raise UpstreamUnavailable(f"Model service unavailable: {e}") from e

        accumulator.extend(buffer.flush())
        yield ImageReady(accumulator.decode())

    async def generate_streaming(
        self,
        prompt: str,
        model: str,
        on_progress: Callable[[int], None] | None = None,
    ) -> bytes:
        """Streaming generation with an optional progress callback.

        Returns:
            The decoded image bytes.
        """
        async for event in self.stream_events(prompt, model):
            if isinstance(event, ImageReady):
                return event.data
            if on_progress is not None:
                on_progress(event.progress)
        raise NoImageProduced("No image data in response")

    async def list_models(self) -> list[dict]:
        """Return every model descriptor reported by ``GET /api/tags``."""
        try:
            response = await self._http.get("/api/tags")
        except httpx.RequestError as e:
            logger.error(f"Model service unreachable at {self.base_url}: {e}")
            raise UpstreamUnavailable(f"Model service unavailable: {e}") from e

        if response.is_error:
            raise UpstreamUnavailable(
                f"Model service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable("Model service returned an unreadable model list") from e

        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise UpstreamUnavailable("Model service returned an unreadable model list")
        return [model for model in models if isinstance(model, dict)]

    async def list_compatible_models(self, markers=DEFAULT_IMAGE_MODEL_MARKERS) -> list[dict]:
        """Return image-capable models, falling back to all models."""
        return select_image_models(await self.list_models(), markers)

    @staticmethod
    def _raise_for_status(status_code: int, records) -> None:
        errors = [record.error for record in records if record.error]
        if errors:
            # The service understood the request and refused it.
            raise NoImageProduced(f"Model service error: {errors[-1]}")
        raise UpstreamUnavailable(
            f"Model service returned HTTP {status_code}",
            status_code=status_code,
        )
