"""
EventReel Worker Tasks

Tasks:
- run_render_job: Assemble, encode and publish an event video

Enqueue helpers (use these for proper timeout handling):
- enqueue_render: Enqueue a render with the job deadline plus grace as timeout
"""

from .render import (
    run_render_job,
    enqueue_render,
    RENDER_JOB_GRACE_SECONDS,
)

__all__ = [
    "run_render_job",
    "enqueue_render",
    "RENDER_JOB_GRACE_SECONDS",
]
