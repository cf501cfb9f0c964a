"""Integration tests for fluxstudio.api.main — FastAPI REST API endpoints.

All tests use the FastAPI TestClient with the model service replaced by an
httpx.MockTransport, so no network access occurs.  Tests cover every
endpoint:

- ``GET /api/health`` — liveness.
- ``POST /api/generate`` — single-shot generation.
- ``POST /api/generate-stream`` — server-sent progress events.
- ``GET /api/gallery`` / ``GET /api/gallery/{id}`` — listing and lookup.
- ``POST /api/gallery/{id}/favorite`` — favourite toggling.
- ``DELETE /api/gallery/{id}`` — image deletion.
- ``GET /api/models`` — model discovery.
- ``GET /api/stats`` — gallery statistics.
- ``GET /images/{filename}`` — static image serving.
"""

from __future__ import annotations

import json
import shutil

from conftest import PNG_BYTES, ndjson


def _sse_events(text: str) -> list[dict]:
    """Parse ``data: ...`` frames from an event-stream body."""
    return [
        json.loads(frame[len("data: ") :])
        for frame in text.split("\n\n")
        if frame.startswith("data: ")
    ]


def _generate(client, prompt="a red circle", **extra) -> dict:
    resp = client.post("/api/generate", json={"prompt": prompt, **extra})
    assert resp.status_code == 200
    return resp.json()["image"]


class TestHealth:
    def test_health(self, test_client):
        resp = test_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "version" in resp.json()


class TestGenerate:
    """Test POST /api/generate."""

    def test_generate_success(self, test_client):
        resp = test_client.post("/api/generate", json={"prompt": "a red circle"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        image = data["image"]
        assert image["prompt"] == "a red circle"
        assert image["model"] == "x/flux2-klein"
        assert image["favorite"] is False
        assert image["filename"] == f"{image['id']}.png"

    def test_generate_with_model(self, test_client, fake_upstream):
        image = _generate(test_client, model="sdxl-turbo")
        assert image["model"] == "sdxl-turbo"
        assert fake_upstream.payloads()[-1] == {
            "model": "sdxl-turbo",
            "prompt": "a red circle",
            "stream": False,
        }

    def test_generate_missing_prompt(self, test_client, fake_upstream):
        resp = test_client.post("/api/generate", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt is required"}
        assert fake_upstream.requests == []

    def test_generate_empty_prompt(self, test_client):
        resp = test_client.post("/api/generate", json={"prompt": ""})
        assert resp.status_code == 400

    def test_generate_no_image(self, test_client, fake_upstream):
        fake_upstream.body = ndjson({"done": True})
        resp = test_client.post("/api/generate", json={"prompt": "p"})
        assert resp.status_code == 500
        assert "No image data" in resp.json()["error"]
        assert test_client.get("/api/gallery").json() == []

    def test_generate_upstream_down(self, test_client, fake_upstream):
        fake_upstream.fail_connect = True
        resp = test_client.post("/api/generate", json={"prompt": "p"})
        assert resp.status_code == 502
        assert "error" in resp.json()

    def test_generate_undecodable_body(self, test_client, fake_upstream):
        fake_upstream.headers = {"content-encoding": "gzip"}
        fake_upstream.body = "this is not gzip data"
        resp = test_client.post("/api/generate", json={"prompt": "p"})
        assert resp.status_code == 502
        assert "error" in resp.json()

    def test_generate_storage_failure(self, test_client, test_config):
        """A filesystem error while saving is reported as a JSON 500."""
        shutil.rmtree(test_config.images_dir)
        test_config.images_dir.write_text("not a directory", encoding="utf-8")

        resp = test_client.post("/api/generate", json={"prompt": "p"})
        assert resp.status_code == 500
        assert resp.headers["content-type"].startswith("application/json")
        assert resp.json()["error"]
        assert test_client.get("/api/gallery").json() == []

    def test_generated_image_is_served(self, test_client):
        image = _generate(test_client)
        resp = test_client.get(f"/images/{image['filename']}")
        assert resp.status_code == 200
        assert resp.content == PNG_BYTES

    def test_newest_first(self, test_client):
        first = _generate(test_client, prompt="first")
        second = _generate(test_client, prompt="second")
        ids = [entry["id"] for entry in test_client.get("/api/gallery").json()]
        assert ids == [second["id"], first["id"]]


class TestGenerateStream:
    """Test POST /api/generate-stream."""

    def test_stream_progress_and_complete(self, test_client, fake_upstream):
        body = ndjson(
            {"completed": 1, "total": 4},
            {"completed": 2, "total": 4},
            {"image": ""},
            {"completed": 4, "total": 4},
            {"image": "QUJD"},
        ).encode("utf-8")
        fake_upstream.chunks = [body[i : i + 10] for i in range(0, len(body), 10)]

        resp = test_client.post("/api/generate-stream", json={"prompt": "a red circle"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")

        events = _sse_events(resp.text)
        assert events[:3] == [
            {"status": "generating", "progress": 25},
            {"status": "generating", "progress": 50},
            {"status": "generating", "progress": 100},
        ]
        assert events[-1]["status"] == "complete"
        image = events[-1]["image"]
        assert image["prompt"] == "a red circle"
        assert fake_upstream.payloads()[-1]["stream"] is True
        assert test_client.get(f"/images/{image['filename']}").content == b"ABC"

    def test_stream_no_image(self, test_client, fake_upstream):
        fake_upstream.body = ndjson({"completed": 1, "total": 1})
        events = _sse_events(test_client.post("/api/generate-stream", json={"prompt": "p"}).text)
        assert events[-1]["status"] == "error"
        assert "No image data" in events[-1]["error"]

    def test_stream_upstream_down(self, test_client, fake_upstream):
        fake_upstream.fail_connect = True
        resp = test_client.post("/api/generate-stream", json={"prompt": "p"})
        assert resp.status_code == 200
        events = _sse_events(resp.text)
        assert len(events) == 1
        assert events[0]["status"] == "error"

    def test_stream_undecodable_body(self, test_client, fake_upstream):
        fake_upstream.headers = {"content-encoding": "gzip"}
        fake_upstream.chunks = [b"this is not gzip data"]
        resp = test_client.post("/api/generate-stream", json={"prompt": "p"})
        assert resp.status_code == 200
        events = _sse_events(resp.text)
        assert len(events) == 1
        assert events[0]["status"] == "error"

    def test_stream_missing_prompt(self, test_client):
        resp = test_client.post("/api/generate-stream", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Prompt is required"}


class TestGallery:
    """Test gallery listing, lookup, favourites, and deletion."""

    def test_empty_gallery(self, test_client):
        resp = test_client.get("/api/gallery")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_get_single_entry(self, test_client):
        image = _generate(test_client)
        resp = test_client.get(f"/api/gallery/{image['id']}")
        assert resp.status_code == 200
        assert resp.json() == image

    def test_get_unknown_entry(self, test_client):
        resp = test_client.get("/api/gallery/missing")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Image not found"}

    def test_toggle_favorite(self, test_client):
        image = _generate(test_client)
        resp = test_client.post(f"/api/gallery/{image['id']}/favorite")
        assert resp.status_code == 200
        assert resp.json()["favorite"] is True
        assert test_client.get("/api/gallery").json()[0]["favorite"] is True

        resp = test_client.post(f"/api/gallery/{image['id']}/favorite")
        assert resp.json()["favorite"] is False

    def test_toggle_favorite_unknown(self, test_client):
        _generate(test_client)
        before = test_client.get("/api/gallery").json()
        resp = test_client.post("/api/gallery/missing/favorite")
        assert resp.status_code == 404
        assert test_client.get("/api/gallery").json() == before

    def test_delete(self, test_client):
        image = _generate(test_client)
        resp = test_client.delete(f"/api/gallery/{image['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert test_client.get("/api/gallery").json() == []
        assert test_client.get(f"/images/{image['filename']}").status_code == 404

    def test_delete_twice(self, test_client):
        image = _generate(test_client)
        assert test_client.delete(f"/api/gallery/{image['id']}").status_code == 200
        assert test_client.delete(f"/api/gallery/{image['id']}").status_code == 404

    def test_corrupt_index(self, test_client, test_config):
        test_config.gallery_db.write_text("{oops", encoding="utf-8")
        resp = test_client.get("/api/gallery")
        assert resp.status_code == 500
        assert "error" in resp.json()


class TestModels:
    def test_image_models_filtered(self, test_client):
        resp = test_client.get("/api/models")
        assert resp.status_code == 200
        assert [m["name"] for m in resp.json()] == ["x/flux2-klein:latest"]

    def test_fallback_to_all_models(self, test_client, fake_upstream):
        fake_upstream.tags = {"models": [{"name": "llama3"}, {"name": "mistral"}]}
        assert [m["name"] for m in test_client.get("/api/models").json()] == [
            "llama3",
            "mistral",
        ]

    def test_upstream_down(self, test_client, fake_upstream):
        fake_upstream.fail_connect = True
        assert test_client.get("/api/models").status_code == 502


class TestStats:
    def test_stats(self, test_client):
        image = _generate(test_client)
        _generate(test_client, model="sdxl")
        test_client.post(f"/api/gallery/{image['id']}/favorite")

        assert test_client.get("/api/stats").json() == {
            "total_images": 2,
            "total_favorites": 1,
            "model_counts": {"x/flux2-klein": 1, "sdxl": 1},
        }
