"""
Common dependencies for EventReel API endpoints.

Provides the render job service and the object storage adapter. Tests swap
either one through app.dependency_overrides.
"""

from functools import lru_cache

from ..core.config import get_settings
from ..core.storage import LocalObjectStorage, get_storage
from ..db import get_session_factory
from ..jobs.service import RenderJobService
from ..jobs.store import SqlJobStore
from ..jobs.supervisor import JobSupervisor


@lru_cache()
def get_supervisor() -> JobSupervisor:
    """
    Process-wide job supervisor over the SQL job store.

    One instance per process so the per-job locks are shared by all requests.
    """
    settings = get_settings()
    return JobSupervisor(
        SqlJobStore(get_session_factory()),
        deadline_seconds=settings.job_deadline_seconds,
    )


def get_render_service() -> RenderJobService:
    """
    Render job service dependency.

    Usage:
        @router.post("/render-jobs")
        def submit(service: RenderJobService = Depends(get_render_service)):
            ...
    """
    return RenderJobService(get_supervisor())


def get_object_storage() -> LocalObjectStorage:
    """Object storage dependency used by the signed read endpoint."""
    return get_storage()


__all__ = [
    "get_object_storage",
    "get_render_service",
    "get_supervisor",
]
