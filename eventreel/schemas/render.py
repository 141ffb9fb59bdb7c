"""
Pydantic schemas for Render Job API endpoints.

Includes request/response models for submitting render jobs and polling
their status.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# --- Request Schemas ---


class RenderJobCreate(BaseModel):
    """Request to render an event video."""

    event_id: str = Field(..., description="Event the video is assembled for")
    user_id: str = Field(..., description="Requesting user")
    clip_ids: List[Any] = Field(..., description="Clip ids in playback order")
    options: Optional[Any] = Field(
        None,
        description="Render options (transition, intro/outro, music, watermark). "
                    "Unknown or malformed values fall back to defaults.",
    )
    tier: str = Field(
        "free",
        description="Entitlement tier decided upstream; anything but 'premium' is free",
    )


# --- Response Schemas ---


class RenderJobAccepted(BaseModel):
    """Response when a render job is queued (202 Accepted)."""

    job_id: str = Field(..., description="Unique identifier for the render job")
    status: Literal["queued"] = Field("queued", description="Initial job status")


class RenderJobStatus(BaseModel):
    """Current state of a render job."""

    id: str = Field(..., description="Job id")
    event_id: str
    status: Literal["queued", "processing", "done", "failed"]
    step: Optional[str] = Field(None, description="Current pipeline step")
    progress: int = Field(0, ge=0, le=100, description="Progress percentage (0-100)")
    tier: str
    effective_preset: Optional[Dict[str, Any]] = Field(
        None, description="Preset the job renders with"
    )
    error_code: Optional[str] = Field(None, description="Reason code if failed")
    error_message: Optional[str] = Field(None, description="Error message if failed")
    final_video_url: Optional[str] = Field(None, description="URL of the published video")
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True
