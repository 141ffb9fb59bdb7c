"""
Unit tests for final video publishing.
"""

import pytest

from eventreel.core.errors import PublishError
from eventreel.core.storage import StorageError
from eventreel.tasks.publish import Publisher, final_video_path


def test_final_video_path():
    assert final_video_path("e1", "job-9", 1700000000123) == (
        "final_videos/events/e1/final_job-9_1700000000123.mp4"
    )


@pytest.mark.asyncio
async def test_publish_uploads_once(storage, tmp_path):
    rendered = tmp_path / "plan_watermark.mp4"
    rendered.write_bytes(b"mp4 data")
    publisher = Publisher(storage, "videos", clock=lambda: 1700000000.5)

    published = await publisher.publish(str(rendered), "e1", "job-1")

    assert published.path == "final_videos/events/e1/final_job-1_1700000000500.mp4"
    assert published.url == f"http://testserver/storage/videos/{published.path}"
    assert storage.open_path("videos", published.path).read_bytes() == b"mp4 data"


@pytest.mark.asyncio
async def test_repeated_renders_do_not_collide(storage, tmp_path):
    rendered = tmp_path / "out.mp4"
    rendered.write_bytes(b"x")
    times = iter([1.0, 2.0])
    publisher = Publisher(storage, "videos", clock=lambda: next(times))

    first = await publisher.publish(str(rendered), "e1", "job-1")
    second = await publisher.publish(str(rendered), "e1", "job-2")

    assert first.path != second.path


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, b""])
async def test_missing_or_empty_output(storage, tmp_path, content):
    rendered = tmp_path / "out.mp4"
    if content is not None:
        rendered.write_bytes(content)

    with pytest.raises(PublishError):
        await Publisher(storage, "videos").publish(str(rendered), "e1", "job-1")


@pytest.mark.asyncio
async def test_upload_failure_becomes_publish_error(tmp_path):
    class BrokenStorage:
        async def upload(self, bucket, path, local_file, content_type):
            raise StorageError("disk full")

        def public_url(self, bucket, path):
            return "unused"

    rendered = tmp_path / "out.mp4"
    rendered.write_bytes(b"x")

    with pytest.raises(PublishError) as exc_info:
        await Publisher(BrokenStorage(), "videos").publish(str(rendered), "e1", "job-1")

    assert exc_info.value.code == "publish_failed"
    assert "disk full" in exc_info.value.tail
    assert "disk full" not in exc_info.value.message
