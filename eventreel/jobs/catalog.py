"""
Clip Catalog

Resolves requested clip ids to storage references. Clips must belong to the
event being rendered; a missing clip fails the job.
"""

import logging
from typing import List, Protocol, Sequence

from sqlalchemy import select

from ..core.errors import ClipFetchError
from ..models import Video
from ..tasks.media import ClipRef

logger = logging.getLogger(__name__)


class ClipCatalog(Protocol):
    def get_clips(self, event_id: str, clip_ids: Sequence[str]) -> List[ClipRef]:
        ...


class SqlClipCatalog:
    """Reads clip storage paths from the videos table."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get_clips(self, event_id: str, clip_ids: Sequence[str]) -> List[ClipRef]:
        """
        Clip references in the requested order.

        Raises:
            ClipFetchError: If any id is unknown or belongs to another event
        """
        with self._session_factory() as session:
            rows = session.execute(
                select(Video.id, Video.storage_path).where(
                    Video.event_id == event_id,
                    Video.id.in_(list(set(clip_ids))),
                )
            ).all()

        paths = {row.id: row.storage_path for row in rows}
        missing = [clip_id for clip_id in clip_ids if clip_id not in paths]
        if missing:
            logger.error(f"Event {event_id} is missing clips: {', '.join(missing)}")
            raise ClipFetchError(f"{len(missing)} requested clip(s) could not be found")

        return [ClipRef(id=clip_id, storage_path=paths[clip_id]) for clip_id in clip_ids]
