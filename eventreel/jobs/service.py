"""
Render Job Service

Entry points used by the HTTP layer (or any other caller):

    submit_render_job(event_id, user_id, clip_ids, raw_options, tier) -> job_id
    get_job_status(job_id) -> Job

Admission is synchronous: missing identifiers or a clip count outside
[2, tier maximum] raise AdmissionError before any job exists. Admitted jobs
are normalized, stored queued and handed to the dispatcher; processing
happens out of band.
"""

import logging
from typing import Any, Callable, List, Optional

from ..core.config import Settings, get_settings
from ..core.errors import AdmissionError, JobFailure
from ..core.ownership import AssetOwner, AssetOwnershipValidator, PrefixOwnershipValidator
from ..tasks.render_plan.presets import PREMIUM_TIER, normalize
from .store import Job
from .supervisor import JobSupervisor

logger = logging.getLogger(__name__)

MIN_CLIPS = 2

Dispatcher = Callable[[str], Any]


def rq_dispatcher(job_id: str):
    """Enqueue the render task on the RQ render queue."""
    from ..tasks.render import enqueue_render

    return enqueue_render(job_id)


class RenderJobService:
    """
    Admits render requests and reports job status.

    Args:
        supervisor: Job state machine
        dispatcher: Called with the job id once the job is stored
        settings: Tier limits (application settings by default)
        validator: Ownership validator for custom premium assets
    """

    def __init__(
        self,
        supervisor: JobSupervisor,
        dispatcher: Dispatcher = rq_dispatcher,
        settings: Optional[Settings] = None,
        validator: Optional[AssetOwnershipValidator] = None,
    ):
        self.supervisor = supervisor
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()
        self.validator = validator or PrefixOwnershipValidator()

    def _admit(self, event_id: str, user_id: str, clip_ids: Any, tier: str) -> List[str]:
        if not isinstance(event_id, str) or not event_id.strip():
            raise AdmissionError("event_id is required")
        if not isinstance(user_id, str) or not user_id.strip():
            raise AdmissionError("user_id is required")
        if not isinstance(clip_ids, (list, tuple)):
            raise AdmissionError("clip_ids must be a list")

        ids = [str(c).strip() for c in clip_ids if c is not None and str(c).strip()]
        if len(ids) != len(clip_ids):
            raise AdmissionError("clip_ids must not contain empty ids")

        max_clips = self.settings.max_clips_for_tier(tier)
        if len(ids) < MIN_CLIPS:
            raise AdmissionError(f"At least {MIN_CLIPS} clips are required")
        if len(ids) > max_clips:
            raise AdmissionError(f"At most {max_clips} clips are allowed for the {tier} tier")
        return ids

    def submit_render_job(
        self,
        event_id: str,
        user_id: str,
        clip_ids: List[str],
        raw_options: Any = None,
        tier: str = "free",
    ) -> str:
        """
        Admit, store and dispatch a render job.

        Args:
            event_id: Event the video is for
            user_id: Requesting user
            clip_ids: Clips in playback order
            raw_options: Client render options, any shape
            tier: "premium" or anything else (treated as "free")

        Returns:
            str: The new job id

        Raises:
            AdmissionError: If the request is rejected
            Exception: Whatever the dispatcher raised (the job is failed first)
        """
        tier = PREMIUM_TIER if tier == PREMIUM_TIER else "free"
        ids = self._admit(event_id, user_id, clip_ids, tier)

        owner = AssetOwner(user_id=user_id, event_id=event_id)
        preset = normalize(raw_options, tier, owner=owner, validator=self.validator)

        job = self.supervisor.create(
            event_id=event_id,
            user_id=user_id,
            clip_ids=ids,
            tier=tier,
            requested_options=raw_options,
            effective_preset=preset.to_dict(),
        )

        try:
            self.dispatcher(job.id)
        except Exception as e:
            logger.error(f"Dispatch of job {job.id} failed: {e}")
            self.supervisor.fail(
                job.id,
                JobFailure(
                    code="dispatch_failed",
                    message="The render job could not be queued",
                    tail=f"{type(e).__name__}: {e}",
                ),
            )
            raise

        return job.id

    def get_job_status(self, job_id: str) -> Job:
        """
        Job snapshot after the deadline check.

        Raises:
            JobNotFound: If the job does not exist
        """
        return self.supervisor.get_status(job_id)
