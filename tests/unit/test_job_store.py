"""
Unit tests for the job stores.

Both implementations must give the same compare-and-set behaviour, so every
test runs against the in-memory store and the SQL store on SQLite.
"""

from datetime import datetime

import pytest

from eventreel.core.errors import JobNotFound
from eventreel.jobs.store import Job


@pytest.fixture(params=["memory", "sql"])
def store(request, memory_store, sql_store):
    return memory_store if request.param == "memory" else sql_store


def make_job(job_id: str = "job-1", **overrides) -> Job:
    values = dict(
        id=job_id,
        event_id="event-1",
        user_id="user-1",
        clip_ids=["c1", "c2"],
        requested_options={"transition": "modern_2"},
        effective_preset={"transition": "modern_1"},
        created_at=datetime(2024, 1, 1),
        updated_at=datetime(2024, 1, 1),
    )
    values.update(overrides)
    return Job(**values)


def test_create_and_get(store):
    store.create(make_job())

    job = store.get("job-1")
    assert job.status == "queued"
    assert job.progress == 0
    assert job.clip_ids == ["c1", "c2"]
    assert job.requested_options == {"transition": "modern_2"}
    assert job.effective_preset == {"transition": "modern_1"}


def test_get_unknown_job(store):
    with pytest.raises(JobNotFound):
        store.get("missing")


def test_patch_without_condition(store):
    store.create(make_job())

    job = store.patch("job-1", {"step": "starting", "progress": 5})

    assert job.step == "starting"
    assert job.progress == 5
    assert store.get("job-1").progress == 5


def test_conditional_patch_applies_when_status_matches(store):
    store.create(make_job())

    job = store.patch("job-1", {"status": "processing"}, only_if_status=("queued",))

    assert job is not None
    assert job.status == "processing"


def test_conditional_patch_is_noop_when_status_differs(store):
    store.create(make_job(status="failed", error_code="deadline_exceeded"))

    result = store.patch(
        "job-1",
        {"status": "done", "progress": 100, "final_video_url": "http://x/final.mp4"},
        only_if_status=("processing",),
    )

    assert result is None
    job = store.get("job-1")
    assert job.status == "failed"
    assert job.final_video_url is None


def test_patch_unknown_job(store):
    with pytest.raises(JobNotFound):
        store.patch("missing", {"progress": 10}, only_if_status=("processing",))


def test_identity_fields_cannot_be_patched(store):
    store.create(make_job())

    with pytest.raises(ValueError):
        store.patch("job-1", {"event_id": "other"})


def test_patch_updates_timestamp(store):
    store.create(make_job())

    job = store.patch("job-1", {"progress": 10})

    assert job.updated_at > datetime(2024, 1, 1)


def test_duplicate_id_rejected(memory_store):
    memory_store.create(make_job())
    with pytest.raises(ValueError):
        memory_store.create(make_job())


def test_terminal_flag():
    assert make_job(status="done").is_terminal
    assert make_job(status="failed").is_terminal
    assert not make_job(status="processing").is_terminal
