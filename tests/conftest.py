"""Shared pytest fixtures for FLUX Studio tests."""

from __future__ import annotations

import base64
import json
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from fluxstudio.api.main import create_app
from fluxstudio.core.artifact_store import ArtifactStore
from fluxstudio.core.config import FluxStudioConfig
from fluxstudio.core.gallery_index import GalleryIndex
from fluxstudio.core.gallery_service import GalleryService
from fluxstudio.core.generation_client import OllamaClient

UPSTREAM_URL = "http://ollama.test"
PNG_BYTES = b"\x89PNG\r\n\x1a\nnot-really-a-png"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def ndjson(*records: dict) -> str:
    """Join records into a newline-delimited JSON body."""
    return "\n".join(json.dumps(record) for record in records) + "\n"


async def _aiter(chunks: list[bytes]):
    for chunk in chunks:
        yield chunk


class FakeUpstream:
    """In-process stand-in for the Ollama HTTP API.

    Attributes:
        body: Response text for ``POST /api/generate``.
        chunks: Transport chunks for streaming requests.  When ``None`` the
            encoded ``body`` is sent as a single chunk.
        status_code: Status for ``POST /api/generate``.
        tags: JSON document for ``GET /api/tags``.
        fail_connect: Raise a connection error for every request.
        headers: Extra headers on ``POST /api/generate`` responses.  When
            set, the body is always delivered as a stream so the client
            decodes it.
        requests: Every request received, in order.
    """

    def __init__(self) -> None:
        self.body = ndjson({"image": PNG_B64, "done": True})
        self.chunks: list[bytes] | None = None
        self.status_code = 200
        self.tags: dict = {"models": [{"name": "x/flux2-klein:latest"}, {"name": "llama3:8b"}]}
        self.fail_connect = False
        self.headers: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == "/api/generate"]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_connect:
            raise httpx.ConnectError("Connection refused", request=request)

        if request.url.path == "/api/tags":
            return httpx.Response(200, json=self.tags)

        payload = json.loads(request.content)
        if payload.get("stream"):
            chunks = self.chunks if self.chunks is not None else [self.body.encode("utf-8")]
            return httpx.Response(
                self.status_code, headers=self.headers, content=_aiter(list(chunks))
            )
        if self.headers:
            return httpx.Response(
                self.status_code,
                headers=self.headers,
                content=_aiter([self.body.encode("utf-8")]),
            )
        return httpx.Response(self.status_code, text=self.body)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> FluxStudioConfig:
    """Create a test configuration rooted in a temporary directory."""
    return FluxStudioConfig(
        ollama_url=UPSTREAM_URL,
        data_dir=str(temp_dir / "data"),
        images_dir=str(temp_dir / "data" / "images"),
        _env_file=None,
    )


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def ollama_client(fake_upstream: FakeUpstream) -> OllamaClient:
    return OllamaClient(UPSTREAM_URL, transport=fake_upstream.transport)


@pytest.fixture
def artifact_store(test_config: FluxStudioConfig) -> ArtifactStore:
    return ArtifactStore(test_config.images_dir)


@pytest.fixture
def gallery_index(test_config: FluxStudioConfig) -> GalleryIndex:
    return GalleryIndex(test_config.gallery_db)


@pytest.fixture
def gallery_service(
    ollama_client: OllamaClient,
    artifact_store: ArtifactStore,
    gallery_index: GalleryIndex,
) -> GalleryService:
    return GalleryService(ollama_client, artifact_store, gallery_index)


@pytest.fixture
def test_client(
    test_config: FluxStudioConfig, ollama_client: OllamaClient
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the fake upstream and temporary storage."""
    app = create_app(test_config, generation_client=ollama_client)
    with TestClient(app) as client:
        yield client
