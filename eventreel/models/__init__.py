"""
SQLAlchemy models for EventReel.

    from eventreel.models import VideoJob, Video

All models use UUID strings as primary keys for SQLite compatibility.
"""

from .job import JOB_STATUSES, TERMINAL_STATUSES, VideoJob
from .video import Video

__all__ = [
    "JOB_STATUSES",
    "TERMINAL_STATUSES",
    "Video",
    "VideoJob",
]
