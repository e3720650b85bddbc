"""Tests for the render HTTP API."""

import asyncio
import json
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from mockify.main import create_app
from mockify.schemas.job import JobParams


@pytest.fixture
def png_bytes(media_files):
    return {name: path.read_bytes() for name, path in media_files.items()}


@pytest.fixture
def client(settings, encoder_host):
    with TestClient(create_app(settings, encoder_host=encoder_host)) as c:
        yield c


def render_form(transform, **overrides) -> dict:
    form = {
        "overlayPosition": json.dumps(transform),
        "quality": "low",
        "preserveOriginalSpeed": "false",
        "preview": "true",
    }
    form.update(overrides)
    return form


def render_files(png_bytes) -> dict:
    return {
        "backgroundVideo": ("background.png", png_bytes["background"], "image/png"),
        "overlayImage": ("overlay.png", png_bytes["overlay_image"], "image/png"),
    }


def wait_until_done(client, job_id: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/render/{job_id}").json()
        if body["status"] != "processing" or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


class TestRenderFlow:
    """Submit, poll, download."""

    def test_render_completes(self, client, png_bytes, transform_data):
        resp = client.post("/api/render", data=render_form(transform_data), files=render_files(png_bytes))
        assert resp.status_code == 202
        started = resp.json()
        assert started["status"] == "processing"

        body = wait_until_done(client, started["id"])
        assert body["status"] == "completed"
        assert body["progress"] == 100
        assert "error" not in body
        assert body["downloadUrl"].endswith(f"/api/render/{started['id']}/download")

        video = client.get(body["downloadUrl"])
        assert video.status_code == 200
        assert video.headers["content-type"] == "video/mp4"
        assert video.content == b"FAKE-mp4-30"

    def test_uploads_copied_in_worker_thread(self, client, png_bytes, transform_data, settings, monkeypatch):
        threaded = []
        original = asyncio.to_thread

        async def recording_to_thread(func, *args, **kwargs):
            threaded.append(getattr(func, "__name__", ""))
            return await original(func, *args, **kwargs)

        monkeypatch.setattr("mockify.api.render.asyncio.to_thread", recording_to_thread)
        resp = client.post("/api/render", data=render_form(transform_data), files=render_files(png_bytes))

        assert resp.status_code == 202
        assert threaded.count("_copy_upload") == 2
        saved = sorted(p.name.split("_", 1)[1] for p in Path(settings.upload_dir).iterdir())
        assert saved == ["background.png", "overlay.png"]
        wait_until_done(client, resp.json()["id"])

    def test_processing_status_has_no_url(self, client):
        job = client.app.state.job_store.create(JobParams(aspect_ratio=16 / 9))
        body = client.get(f"/api/render/{job.id}").json()
        assert body == {"id": job.id, "status": "processing", "progress": 0}

    def test_encoder_unsupported_fails_job(self, settings, make_encoder_host, png_bytes, transform_data):
        app = create_app(settings, encoder_host=make_encoder_host(encoders=None))
        with TestClient(app) as c:
            resp = c.post("/api/render", data=render_form(transform_data), files=render_files(png_bytes))
            body = wait_until_done(c, resp.json()["id"])

        assert body["status"] == "failed"
        assert "No supported video encoder" in body["error"]
        assert "downloadUrl" not in body


class TestRenderErrors:
    """Error payloads: {code, message, retryable, ...}."""

    def test_overlay_position_not_json(self, client, png_bytes, transform_data):
        resp = client.post(
            "/api/render",
            data=render_form(transform_data, overlayPosition="{left: 1"),
            files=render_files(png_bytes),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_TRANSFORM"
        assert resp.json()["retryable"] is False

    def test_missing_transform_field_saves_nothing(self, client, png_bytes, transform_data, settings):
        del transform_data["originalHeight"]
        resp = client.post("/api/render", data=render_form(transform_data), files=render_files(png_bytes))

        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "INVALID_TRANSFORM"
        assert "originalHeight" in body["message"]
        assert list(Path(settings.upload_dir).iterdir()) == []
        assert len(client.app.state.job_store) == 0

    def test_missing_form_field(self, client, png_bytes):
        resp = client.post("/api/render", data={"quality": "low"}, files=render_files(png_bytes))
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_unsupported_upload_type(self, client, png_bytes, transform_data):
        files = render_files(png_bytes)
        files["overlayImage"] = ("notes.txt", b"hello", "text/plain")
        resp = client.post("/api/render", data=render_form(transform_data), files=files)
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

    def test_invalid_quality(self, client, png_bytes, transform_data, settings):
        resp = client.post(
            "/api/render", data=render_form(transform_data, quality="ultra"), files=render_files(png_bytes)
        )
        assert resp.status_code == 400
        assert resp.json()["field"] == "quality"
        assert list(Path(settings.upload_dir).iterdir()) == []
        assert len(client.app.state.job_store) == 0

    def test_invalid_container_discards_uploads(self, client, png_bytes, transform_data, settings):
        resp = client.post(
            "/api/render",
            data=render_form(transform_data, preferredContainer="avi"),
            files=render_files(png_bytes),
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"
        assert list(Path(settings.upload_dir).iterdir()) == []

    def test_rejected_second_upload_discards_first(self, client, png_bytes, transform_data, settings):
        files = render_files(png_bytes)
        files["overlayImage"] = ("notes.txt", b"hello", "text/plain")
        resp = client.post("/api/render", data=render_form(transform_data), files=files)
        assert resp.status_code == 400
        assert list(Path(settings.upload_dir).iterdir()) == []

    def test_oversized_upload(self, client, png_bytes, transform_data, settings):
        settings.max_upload_size_mb = 0
        resp = client.post("/api/render", data=render_form(transform_data), files=render_files(png_bytes))
        assert resp.status_code == 400
        assert resp.json()["field"] == "backgroundVideo"
        assert list(Path(settings.upload_dir).iterdir()) == []

    def test_unknown_job(self, client):
        resp = client.get("/api/render/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["code"] == "JOB_NOT_FOUND"

    def test_download_before_completion(self, client):
        job = client.app.state.job_store.create(JobParams(aspect_ratio=16 / 9))
        resp = client.get(f"/api/render/{job.id}/download")
        assert resp.status_code == 409
        assert resp.json()["code"] == "JOB_STATE_CONFLICT"


class TestHealth:
    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["activeJobs"] == 0
