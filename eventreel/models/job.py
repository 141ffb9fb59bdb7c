"""
VideoJob model for EventReel.

One row per render request. The row is owned by the job supervisor: it is
created queued and mutated only through compare-and-set patches.
"""

from datetime import datetime
from typing import Any, Optional
import uuid

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base

JOB_STATUSES = ("queued", "processing", "done", "failed")
TERMINAL_STATUSES = ("done", "failed")


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


class VideoJob(Base):
    """
    Render job for one event.

    Stores the raw options the client sent alongside the canonical preset
    they were normalized into, so a failed render can be reproduced.
    """

    __tablename__ = "video_jobs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=generate_uuid,
        doc="UUID primary key"
    )
    event_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        doc="Event the video is rendered for"
    )
    user_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="User who requested the render"
    )
    clip_ids: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
        doc="Requested clip ids in playback order"
    )
    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="free",
        doc="Tier: free or premium"
    )

    # Status tracking
    status: Mapped[str] = mapped_column(
        String(20),
        default="queued",
        nullable=False,
        index=True,
        doc="Status: queued, processing, done, failed"
    )
    step: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="Name of the step currently running"
    )
    progress: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        doc="Progress percentage (0-100)"
    )

    # Options
    requested_options: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
        doc="Raw render options as sent by the client"
    )
    effective_preset: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        doc="Canonical preset the job renders with"
    )

    # Error handling
    error_code: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="Machine-readable failure reason"
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="User-visible failure message"
    )

    # Output
    final_video_url: Mapped[Optional[str]] = mapped_column(
        String(1000),
        nullable=True,
        doc="Public URL of the published video"
    )
    final_video_path: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Storage path of the published video"
    )

    # Timestamps (naive UTC)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True,
        doc="Job creation timestamp"
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        doc="When processing started"
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        doc="When the job reached done or failed"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
        doc="Last write timestamp"
    )

    def __repr__(self) -> str:
        return f"<VideoJob(id={self.id!r}, event={self.event_id!r}, status={self.status!r}, progress={self.progress}%)>"
