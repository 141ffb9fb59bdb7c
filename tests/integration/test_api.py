"""
API tests for render job submission/status and storage reads.

The render service runs over the in-memory job store with a recording
dispatcher; storage is the temporary local object storage.
"""

from urllib.parse import urlparse

import pytest
from httpx import ASGITransport, AsyncClient

from eventreel.api.deps import get_object_storage, get_render_service
from eventreel.core.config import Settings
from eventreel.jobs.service import RenderJobService
from eventreel.server import app

from ..helpers import put_object


class RecordingDispatcher:
    def __init__(self):
        self.job_ids = []
        self.error = None

    def __call__(self, job_id):
        self.job_ids.append(job_id)
        if self.error is not None:
            raise self.error


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def client(supervisor, dispatcher, storage):
    service = RenderJobService(supervisor, dispatcher=dispatcher, settings=Settings())
    app.dependency_overrides[get_render_service] = lambda: service
    app.dependency_overrides[get_object_storage] = lambda: storage
    yield AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
    app.dependency_overrides.clear()


def render_request(**overrides):
    body = {"event_id": "event-1", "user_id": "user-1", "clip_ids": ["c1", "c2", "c3"]}
    body.update(overrides)
    return body


class TestRenderJobs:
    @pytest.mark.asyncio
    async def test_submit_returns_queued_job(self, client, dispatcher):
        async with client as ac:
            response = await ac.post("/api/render-jobs", json=render_request())

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "queued"
        assert dispatcher.job_ids == [data["job_id"]]

    @pytest.mark.asyncio
    async def test_too_few_clips(self, client, dispatcher):
        async with client as ac:
            response = await ac.post("/api/render-jobs", json=render_request(clip_ids=["c1"]))

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "admission_rejected"
        assert dispatcher.job_ids == []

    @pytest.mark.asyncio
    async def test_free_tier_limit(self, client):
        async with client as ac:
            response = await ac.post(
                "/api/render-jobs", json=render_request(clip_ids=[f"c{i}" for i in range(6)])
            )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_field_is_validation_error(self, client):
        async with client as ac:
            response = await ac.post("/api/render-jobs", json={"event_id": "event-1"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_dispatch_failure(self, client, dispatcher, supervisor):
        dispatcher.error = ConnectionError("redis down")

        async with client as ac:
            response = await ac.post("/api/render-jobs", json=render_request())

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "dispatch_failed"
        assert supervisor.get_status(dispatcher.job_ids[0]).status == "failed"

    @pytest.mark.asyncio
    async def test_status_of_submitted_job(self, client):
        async with client as ac:
            submitted = await ac.post(
                "/api/render-jobs",
                json=render_request(options={"transition": "modern_5"}, tier="premium"),
            )
            job_id = submitted.json()["job_id"]
            response = await ac.get(f"/api/render-jobs/{job_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == job_id
        assert data["status"] == "queued"
        assert data["progress"] == 0
        assert data["tier"] == "premium"
        assert data["effective_preset"]["transition"] == "modern_5"
        assert data["final_video_url"] is None

    @pytest.mark.asyncio
    async def test_status_after_deadline(self, client, supervisor, clock):
        async with client as ac:
            submitted = await ac.post("/api/render-jobs", json=render_request())
            job_id = submitted.json()["job_id"]
            supervisor.dispatch(job_id)
            clock.advance(721)
            response = await ac.get(f"/api/render-jobs/{job_id}")

        data = response.json()
        assert data["status"] == "failed"
        assert data["error_code"] == "deadline_exceeded"

    @pytest.mark.asyncio
    async def test_unknown_job(self, client):
        async with client as ac:
            response = await ac.get("/api/render-jobs/does-not-exist")

        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["error"] == "not_found"
        assert detail["resource_id"] == "does-not-exist"


class TestStorageReads:
    @pytest.mark.asyncio
    async def test_signed_read(self, client, storage):
        put_object(storage, "premium-assets", "users/u1/intro/a.png", b"png bytes")
        url = urlparse(storage.create_signed_url("premium-assets", "users/u1/intro/a.png", 60))

        async with client as ac:
            response = await ac.get(f"{url.path}?{url.query}")

        assert response.status_code == 200
        assert response.content == b"png bytes"
        assert response.headers["content-type"] == "image/png"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "?token=garbage"])
    async def test_private_bucket_needs_valid_token(self, client, storage, query):
        put_object(storage, "premium-assets", "users/u1/intro/a.png", b"png bytes")

        async with client as ac:
            response = await ac.get(f"/storage/premium-assets/users/u1/intro/a.png{query}")

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_token_for_other_object_rejected(self, client, storage):
        put_object(storage, "premium-assets", "users/u1/intro/a.png", b"a")
        put_object(storage, "premium-assets", "users/u2/intro/b.png", b"b")
        url = urlparse(storage.create_signed_url("premium-assets", "users/u1/intro/a.png", 60))

        async with client as ac:
            response = await ac.get(f"/storage/premium-assets/users/u2/intro/b.png?{url.query}")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_public_bucket(self, client, storage):
        put_object(storage, "videos", "final_videos/events/e1/final.mp4", b"mp4")

        async with client as ac:
            response = await ac.get("/storage/videos/final_videos/events/e1/final.mp4")

        assert response.status_code == 200
        assert response.content == b"mp4"
        assert response.headers["content-type"] == "video/mp4"

    @pytest.mark.asyncio
    async def test_missing_object(self, client):
        async with client as ac:
            response = await ac.get("/storage/videos/final_videos/missing.mp4")

        assert response.status_code == 404


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_reports_database(self, client):
        async with client as ac:
            response = await ac.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["database"]["status"] == "healthy"
        assert "redis" in data["checks"]

    @pytest.mark.asyncio
    async def test_root(self, client):
        async with client as ac:
            response = await ac.get("/")

        assert response.json()["name"] == "EventReel API"
