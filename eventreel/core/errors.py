"""
Render Error Taxonomy

Every failure that can end a render job is a RenderError carrying a
machine-readable reason code, a user-visible message and an optional tail
of diagnostic output. The job supervisor only ever sees the normalized
(code, message, tail) triple produced by to_failure().

Degradable problems (a broken custom asset, an unowned storage path) are
AssetUnavailable and never reach the supervisor.
"""

from dataclasses import dataclass
from typing import Optional


class RenderError(Exception):
    """Base class for failures that abort a render job."""

    code = "render_failed"

    def __init__(self, message: str, tail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tail = tail


class PlanError(RenderError):
    """Raised when a render plan is malformed and cannot be executed."""

    code = "invalid_plan"


class ClipFetchError(RenderError):
    """Raised when a source clip cannot be downloaded or normalized."""

    code = "clip_fetch_failed"


class PublishError(RenderError):
    """Raised when the final artifact cannot be uploaded."""

    code = "publish_failed"


class DeadlineExceeded(RenderError):
    """Raised when a job outlives its processing deadline."""

    code = "deadline_exceeded"


class AdmissionError(ValueError):
    """Raised synchronously when a render request is rejected before admission."""

    code = "admission_rejected"


class JobNotFound(LookupError):
    """Raised when a job id is unknown to the job store."""


class AssetUnavailable(Exception):
    """A custom asset could not be used; callers fall back to the default."""


class AssetOwnershipDenied(AssetUnavailable):
    """A storage path does not belong to the acting user or event."""

    def __init__(self, message: str, code: str = "ASSET_OWNERSHIP_DENIED"):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class JobFailure:
    """Normalized failure recorded on a job."""

    code: str
    message: str
    tail: Optional[str] = None


def to_failure(exc: BaseException) -> JobFailure:
    """
    Normalize any exception into a JobFailure.

    RenderErrors keep their own code and message. Anything else is reported
    with a generic message so raw tool output or paths never become the
    user-visible error.
    """
    if isinstance(exc, RenderError):
        return JobFailure(code=exc.code, message=exc.message, tail=exc.tail)
    return JobFailure(
        code="internal_error",
        message="Unexpected error while rendering the video",
        tail=f"{type(exc).__name__}: {exc}"[-2000:],
    )
