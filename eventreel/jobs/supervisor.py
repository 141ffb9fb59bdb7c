"""
Job Supervisor

Owns the render job state machine:

    queued -> processing -> done
                         -> failed

- create:          queued, progress 0
- dispatch:        queued -> processing, progress 5, started_at recorded
- report_progress: processing only, monotone, capped at 99
- complete:        processing -> done, progress 100, final video recorded
- fail:            queued|processing -> failed, progress kept
- get_status:      fails a processing job older than the deadline, then
                   returns the snapshot

Every transition is a compare-and-set on the job store, so a terminal job is
never written again: a success arriving after a deadline failure is a
logged no-op. Writes for the same job id are serialized with a per-job lock;
no lock spans more than one job.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..core.errors import JobFailure
from .store import Job, JobStore

logger = logging.getLogger(__name__)

DISPATCH_PROGRESS = 5
MAX_RUNNING_PROGRESS = 99
DEFAULT_DEADLINE_SECONDS = 12 * 60

DEADLINE_FAILURE = JobFailure(
    code="deadline_exceeded",
    message="Video processing took too long and was stopped",
)


class JobSupervisor:
    """
    State machine over a JobStore.

    Args:
        store: Job persistence
        deadline_seconds: Maximum time a job may stay in processing
        clock: Returns the current naive UTC datetime (injectable for tests)
    """

    def __init__(
        self,
        store: JobStore,
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.deadline = timedelta(seconds=deadline_seconds)
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.Lock()
            return lock

    def _release_lock(self, job_id: str) -> None:
        with self._locks_guard:
            self._locks.pop(job_id, None)

    def create(
        self,
        event_id: str,
        user_id: str,
        clip_ids: List[str],
        tier: str,
        requested_options: Any,
        effective_preset: dict,
    ) -> Job:
        now = self._clock()
        job = Job(
            id=str(uuid.uuid4()),
            event_id=event_id,
            user_id=user_id,
            clip_ids=list(clip_ids),
            tier=tier,
            status="queued",
            progress=0,
            requested_options=requested_options,
            effective_preset=effective_preset,
            created_at=now,
            updated_at=now,
        )
        self.store.create(job)
        logger.info(f"Created job {job.id} for event {event_id} ({len(clip_ids)} clips, {tier})")
        return job

    def dispatch(self, job_id: str) -> Optional[Job]:
        """
        Move a queued job to processing.

        Returns:
            The updated job, or None if it was not queued any more
        """
        with self._lock_for(job_id):
            job = self.store.patch(
                job_id,
                {
                    "status": "processing",
                    "progress": DISPATCH_PROGRESS,
                    "step": "starting",
                    "started_at": self._clock(),
                },
                only_if_status=("queued",),
            )
        if job is None:
            logger.warning(f"Job {job_id} was not queued, not starting it")
        else:
            logger.info(f"Job {job_id} started")
        return job

    def report_progress(self, job_id: str, step: str, percent: int) -> Optional[Job]:
        """
        Record the current step and progress of a processing job.

        Progress is capped at 99 and never decreases; the step name is always
        updated while the job is processing.
        """
        percent = max(0, min(int(percent), MAX_RUNNING_PROGRESS))
        if self.store.get(job_id).status != "processing":
            return None
        with self._lock_for(job_id):
            current = self.store.get(job_id)
            if current.status == "processing":
                changes: Dict[str, Any] = {"step": step}
                if percent > current.progress:
                    changes["progress"] = percent
                return self.store.patch(job_id, changes, only_if_status=("processing",))
        # Finished while waiting for the lock
        self._release_lock(job_id)
        return None

    def complete(self, job_id: str, final_video_url: str, final_video_path: str) -> Optional[Job]:
        """
        Mark a processing job done.

        Returns:
            The updated job, or None if the job had already left processing
        """
        with self._lock_for(job_id):
            job = self.store.patch(
                job_id,
                {
                    "status": "done",
                    "progress": 100,
                    "step": "done",
                    "final_video_url": final_video_url,
                    "final_video_path": final_video_path,
                    "finished_at": self._clock(),
                },
                only_if_status=("processing",),
            )
        if job is None:
            logger.warning(f"Ignoring completion of job {job_id}: no longer processing")
        else:
            logger.info(f"Job {job_id} done")
        self._release_lock(job_id)
        return job

    def fail(self, job_id: str, failure: JobFailure) -> Optional[Job]:
        """
        Mark a non-terminal job failed, keeping its last progress.

        Returns:
            The updated job, or None if the job was already terminal
        """
        with self._lock_for(job_id):
            job = self.store.patch(
                job_id,
                {
                    "status": "failed",
                    "error_code": failure.code,
                    "error_message": failure.message,
                    "finished_at": self._clock(),
                },
                only_if_status=("queued", "processing"),
            )
        if job is None:
            logger.info(f"Job {job_id} already terminal, ignoring failure {failure.code}")
            self._release_lock(job_id)
            return None

        logger.error(f"Job {job_id} failed: {failure.code}: {failure.message}")
        if failure.tail:
            logger.error(f"Job {job_id} diagnostic tail:\n{failure.tail}")
        self._release_lock(job_id)
        return job

    def is_past_deadline(self, job: Job) -> bool:
        if job.status != "processing" or job.started_at is None:
            return False
        return self._clock() - job.started_at > self.deadline

    def get_status(self, job_id: str) -> Job:
        """
        Current snapshot of a job, enforcing the processing deadline first.

        Raises:
            JobNotFound: If the job does not exist
        """
        job = self.store.get(job_id)
        if self.is_past_deadline(job):
            logger.warning(f"Job {job_id} exceeded its deadline of {self.deadline.total_seconds():g}s")
            failed = self.fail(job_id, DEADLINE_FAILURE)
            return failed if failed is not None else self.store.get(job_id)
        return job
