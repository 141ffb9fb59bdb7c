"""
Job Store

Durable persistence of render jobs behind a narrow interface:

    create(job)                                  -> Job
    patch(job_id, changes, only_if_status=None)  -> Job | None
    get(job_id)                                  -> Job

patch() is a compare-and-set when only_if_status is given: the write only
happens while the stored status is one of the listed values, otherwise it
returns None and nothing changes. The job supervisor builds its state
machine on that guarantee, which also holds across processes for the SQL
store.
"""

import logging
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import select, update

from ..core.errors import JobNotFound
from ..models import TERMINAL_STATUSES, VideoJob

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Job:
    """Snapshot of a render job."""

    id: str
    event_id: str
    user_id: str
    clip_ids: List[str] = field(default_factory=list)
    tier: str = "free"
    status: str = "queued"
    step: Optional[str] = None
    progress: int = 0
    requested_options: Any = None
    effective_preset: Optional[dict] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    final_video_url: Optional[str] = None
    final_video_path: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return asdict(self)


JOB_FIELDS = frozenset(f.name for f in fields(Job))
PATCHABLE_FIELDS = JOB_FIELDS - {"id", "event_id", "user_id", "created_at"}


def _check_changes(changes: Dict[str, Any]) -> None:
    unknown = set(changes) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot patch job fields: {', '.join(sorted(unknown))}")


class JobStore(Protocol):
    def create(self, job: Job) -> Job:
        ...

    def patch(
        self,
        job_id: str,
        changes: Dict[str, Any],
        only_if_status: Optional[Iterable[str]] = None,
    ) -> Optional[Job]:
        ...

    def get(self, job_id: str) -> Job:
        ...


class InMemoryJobStore:
    """Process-local store; used by tests and single-process deployments."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job already exists: {job.id}")
            self._jobs[job.id] = job
        return job

    def patch(
        self,
        job_id: str,
        changes: Dict[str, Any],
        only_if_status: Optional[Iterable[str]] = None,
    ) -> Optional[Job]:
        _check_changes(changes)
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFound(job_id)
            if only_if_status is not None and current.status not in set(only_if_status):
                return None
            updated = replace(current, **{"updated_at": datetime.utcnow(), **changes})
            self._jobs[job_id] = updated
            return updated

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job


def _to_job(row: VideoJob) -> Job:
    return Job(**{name: getattr(row, name) for name in JOB_FIELDS})


class SqlJobStore:
    """
    Job store on the video_jobs table.

    Args:
        session_factory: SQLAlchemy sessionmaker (see eventreel.db)
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def create(self, job: Job) -> Job:
        with self._session_factory() as session:
            session.add(VideoJob(**{name: getattr(job, name) for name in JOB_FIELDS}))
            session.commit()
        return job

    def patch(
        self,
        job_id: str,
        changes: Dict[str, Any],
        only_if_status: Optional[Iterable[str]] = None,
    ) -> Optional[Job]:
        _check_changes(changes)
        values = {"updated_at": datetime.utcnow(), **changes}

        stmt = update(VideoJob).where(VideoJob.id == job_id)
        if only_if_status is not None:
            stmt = stmt.where(VideoJob.status.in_(list(only_if_status)))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()

            if result.rowcount == 0:
                exists = session.execute(
                    select(VideoJob.id).where(VideoJob.id == job_id)
                ).scalar_one_or_none()
                if exists is None:
                    raise JobNotFound(job_id)
                return None

            row = session.get(VideoJob, job_id, populate_existing=True)
            return _to_job(row)

    def get(self, job_id: str) -> Job:
        with self._session_factory() as session:
            row = session.get(VideoJob, job_id)
            if row is None:
                raise JobNotFound(job_id)
            return _to_job(row)
