"""
EventReel

Assembles participant clips of an event into one composited video:
transitions, intro/outro, background music and watermark, rendered by an
RQ worker under encoder watchdogs and a per-job deadline.
"""

__version__ = "0.1.0"
