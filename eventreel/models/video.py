"""
Video model for EventReel.

Source clips uploaded by event participants. The render worker only reads
this table to resolve clip ids to storage paths.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class Video(Base):
    """A participant clip stored in the clips bucket."""

    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, doc="UUID primary key")
    event_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        doc="Event the clip was recorded for"
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    storage_path: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        doc="Object key inside the clips bucket"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Video(id={self.id!r}, event={self.event_id!r})>"
