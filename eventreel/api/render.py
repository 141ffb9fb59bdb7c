"""
Render job API endpoints for EventReel.

Submitting a job only admits and queues it; rendering happens in the worker.
Clients poll the status endpoint until the job is done or failed.

The entitlement tier is decided by the caller in front of this service and
passed through unchanged.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ..core.errors import AdmissionError, JobNotFound
from ..jobs.service import RenderJobService
from ..schemas.render import RenderJobAccepted, RenderJobCreate, RenderJobStatus
from .deps import get_render_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/render-jobs",
    response_model=RenderJobAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    name="submit_render_job",
    summary="Queue an event video render",
    description="Validate the clip list, normalize the render options for the tier and queue the job.",
    responses={
        400: {"description": "Request rejected (missing ids or clip count out of range)"},
        503: {"description": "Job could not be queued"},
    },
)
def submit_render_job(
    request: RenderJobCreate,
    service: RenderJobService = Depends(get_render_service),
) -> RenderJobAccepted:
    """
    Admit a render request and return the queued job id.

    Steps:
    1. Check ids and clip count against the tier limit
    2. Normalize options into the effective preset
    3. Store the job as queued and enqueue it
    """
    try:
        job_id = service.submit_render_job(
            event_id=request.event_id,
            user_id=request.user_id,
            clip_ids=request.clip_ids,
            raw_options=request.options,
            tier=request.tier,
        )
    except AdmissionError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": e.code,
                "message": str(e),
            },
        )
    except Exception as e:
        logger.error(f"Render job for event {request.event_id} could not be queued: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "dispatch_failed",
                "message": "The render job could not be queued",
            },
        )

    return RenderJobAccepted(job_id=job_id, status="queued")


@router.get(
    "/render-jobs/{job_id}",
    response_model=RenderJobStatus,
    summary="Get render job status",
    description="Current step, progress and result of a render job. A job stuck past its deadline is failed on read.",
    responses={404: {"description": "Job not found"}},
)
def get_render_job(
    job_id: str,
    service: RenderJobService = Depends(get_render_service),
) -> RenderJobStatus:
    try:
        job = service.get_job_status(job_id)
    except JobNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "message": "Render job not found",
                "resource_type": "render_job",
                "resource_id": job_id,
            },
        )

    return RenderJobStatus.model_validate(job)
