"""
Final Video Publishing

Uploads the rendered video exactly once to:

    <final bucket>/final_videos/events/<eventId>/final_<jobId>_<epochMs>.mp4

The job id and timestamp keep repeated renders of the same event apart.
Upload failures are not retried here; they fail the job.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ..core.errors import PublishError
from ..core.storage import ObjectStorage

logger = logging.getLogger(__name__)

CONTENT_TYPE = "video/mp4"


@dataclass(frozen=True)
class PublishedVideo:
    url: str
    path: str


def final_video_path(event_id: str, job_id: str, epoch_ms: int) -> str:
    return f"final_videos/events/{event_id}/final_{job_id}_{epoch_ms}.mp4"


class Publisher:
    """Uploads final renders to the final-video bucket."""

    def __init__(
        self,
        storage: ObjectStorage,
        bucket: str,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.bucket = bucket
        self._clock = clock

    async def publish(self, local_file: str, event_id: str, job_id: str) -> PublishedVideo:
        """
        Upload the final video and return where it lives.

        Raises:
            PublishError: If the file is missing or empty, or the upload fails
        """
        source = Path(local_file)
        if not source.is_file() or source.stat().st_size == 0:
            raise PublishError("Rendered video is missing or empty")

        path = final_video_path(event_id, job_id, int(self._clock() * 1000))
        try:
            await self.storage.upload(self.bucket, path, str(source), CONTENT_TYPE)
            url = self.storage.public_url(self.bucket, path)
        except Exception as e:
            logger.error(f"Upload of {path} failed: {e}")
            raise PublishError(
                "The final video could not be uploaded", tail=f"{type(e).__name__}: {e}"
            ) from e

        logger.info(f"Published final video for event {event_id}: {path}")
        return PublishedVideo(url=url, path=path)
