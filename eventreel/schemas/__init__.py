"""
EventReel API schemas.
"""

from .render import RenderJobAccepted, RenderJobCreate, RenderJobStatus

__all__ = [
    "RenderJobAccepted",
    "RenderJobCreate",
    "RenderJobStatus",
]
