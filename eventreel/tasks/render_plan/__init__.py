"""
Render Plan for Event Videos

Preset normalization and the pure construction of encoder steps.

Usage:
    from eventreel.tasks.render_plan import normalize, build_render_plan

    preset = normalize(raw_options, tier="premium", owner=owner)
    plan = build_render_plan(clip_paths, durations, preset, assets, work_dir)
"""

from .presets import (
    DEFAULT_PRESET,
    IntroOutro,
    Music,
    Preset,
    TRANSITIONS,
    Watermark,
    normalize,
    preset_from_dict,
)

from .plan_builder import (
    RenderPlan,
    ResolvedAssets,
    Step,
    build_render_plan,
    compute_xfade_offsets,
    planned_output_duration,
)

__all__ = [
    "DEFAULT_PRESET",
    "IntroOutro",
    "Music",
    "Preset",
    "TRANSITIONS",
    "Watermark",
    "normalize",
    "preset_from_dict",
    "RenderPlan",
    "ResolvedAssets",
    "Step",
    "build_render_plan",
    "compute_xfade_offsets",
    "planned_output_duration",
]
