"""
Render Plan Builder

Turns normalized clips, their measured durations, the job preset and the
resolved assets into an ordered list of encoder steps:

1. concat_single | concat_transitions
2. intro_outro | intro_outro_music | copy_intro_outro
3. music_full | copy_music
4. watermark | copy_watermark

Each step reads the previous step's declared output. Building a plan is
pure: the same inputs always give the same steps and paths, and nothing is
executed here.

Cross-fade offsets:
    offset_i = (d_0 + ... + d_{i-1}) - t * i     for i = 1..N-1
clamped to >= 0 and held non-decreasing, which gives a planned output of
sum(d) - t * (N - 1) seconds.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from . import ffmpeg_templates as templates
from .ffmpeg_templates import DEFAULT_CONFIG, RenderConfig
from .presets import Preset

logger = logging.getLogger(__name__)

CONCAT_OUTPUT = "plan_concat.mp4"
INTRO_OUTRO_OUTPUT = "plan_intro_outro.mp4"
MUSIC_OUTPUT = "plan_music_full.mp4"
WATERMARK_OUTPUT = "plan_watermark.mp4"


@dataclass(frozen=True)
class Step:
    """
    One encoder invocation.

    Attributes:
        name: Step label reported in job status
        program: Executable to run
        args: Arguments after the program name
        output_path: File the step writes
        emits_progress: Whether the step writes a -progress stream on stdout
        duration_hint: Expected output duration in seconds (progress scaling)
    """

    name: str
    program: str
    args: Tuple[str, ...]
    output_path: str
    emits_progress: bool = False
    duration_hint: Optional[float] = None

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]


@dataclass(frozen=True)
class RenderPlan:
    """Ordered steps plus the values they were derived from."""

    steps: Tuple[Step, ...]
    final_output: str
    planned_duration: float
    offsets: Tuple[float, ...] = ()

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]


@dataclass(frozen=True)
class ResolvedAssets:
    """Local files for the optional layers; None means the layer is skipped."""

    intro: Optional[str] = None
    outro: Optional[str] = None
    music: Optional[str] = None
    watermark: Optional[str] = None


def _validate_durations(durations: Sequence[float]) -> List[float]:
    values = []
    for d in durations:
        value = float(d)
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"Invalid clip duration: {d!r}")
        values.append(value)
    return values


def compute_xfade_offsets(durations: Sequence[float], transition_duration: float) -> List[float]:
    """
    Start time of each cross-fade on the output timeline.

    Args:
        durations: Per-clip durations in playback order
        transition_duration: Fade length t in seconds

    Returns:
        List of N-1 offsets, each >= 0 and >= the previous one

    Example:
        >>> compute_xfade_offsets([5.0, 4.0, 6.0], 0.5)
        [4.5, 8.0]
    """
    durations = _validate_durations(durations)
    offsets: List[float] = []
    running = 0.0
    previous = 0.0

    for i in range(1, len(durations)):
        running += durations[i - 1]
        offset = max(0.0, running - transition_duration * i, previous)
        offsets.append(offset)
        previous = offset

    return offsets


def planned_output_duration(durations: Sequence[float], transition_duration: float) -> float:
    """Length of the concatenated core: sum(d) - t * (N - 1), never negative."""
    durations = _validate_durations(durations)
    if not durations:
        return 0.0
    return max(0.0, sum(durations) - transition_duration * (len(durations) - 1))


def build_render_plan(
    clips: Sequence[str],
    durations: Sequence[float],
    preset: Preset,
    assets: ResolvedAssets,
    work_dir: str,
    ffmpeg_binary: str = "ffmpeg",
    config: RenderConfig = DEFAULT_CONFIG,
) -> RenderPlan:
    """
    Build the encoder steps for one job.

    Args:
        clips: Normalized clip files in playback order
        durations: Measured duration of each clip, same order
        preset: Canonical preset of the job
        assets: Resolved intro/outro/music/watermark files
        work_dir: Job working directory receiving every intermediate output
        ffmpeg_binary: Encoder executable
        config: Output encoding settings

    Returns:
        RenderPlan: Steps in execution order

    Raises:
        ValueError: If clips is empty or durations do not match clips
    """
    if not clips:
        raise ValueError("Cannot build a render plan without clips")
    if len(durations) != len(clips):
        raise ValueError(
            f"Got {len(durations)} durations for {len(clips)} clips"
        )

    work = Path(work_dir)
    t = preset.transition_duration
    core_duration = planned_output_duration(durations, t)
    steps: List[Step] = []

    def add(name: str, args: List[str], output: Path, emits_progress: bool, hint: Optional[float]):
        steps.append(
            Step(
                name=name,
                program=ffmpeg_binary,
                args=tuple(args),
                output_path=str(output),
                emits_progress=emits_progress,
                duration_hint=hint,
            )
        )

    # Step 1: concat + transitions
    concat_out = work / CONCAT_OUTPUT
    offsets: List[float] = []
    if len(clips) == 1:
        add(
            "concat_single",
            templates.build_single_clip_args(str(clips[0]), str(concat_out), config),
            concat_out,
            True,
            core_duration,
        )
    else:
        offsets = compute_xfade_offsets(durations, t)
        graph = templates.build_xfade_filtergraph(
            len(clips), offsets, preset.xfade_transition, t
        )
        add(
            "concat_transitions",
            templates.build_concat_transitions_args(
                [str(c) for c in clips], str(concat_out), graph, config
            ),
            concat_out,
            True,
            core_duration,
        )

    # Step 2: intro/outro (+ music under the slides)
    intro_out = work / INTRO_OUTRO_OUTPUT
    timeline_duration = core_duration
    slides = (
        preset.intro.enabled
        and preset.outro.enabled
        and assets.intro is not None
        and assets.outro is not None
    )
    if slides:
        timeline_duration = (
            templates.INTRO_HOLD_SECONDS + core_duration + templates.OUTRO_HOLD_SECONDS
        )
        slide_music = assets.music if preset.music.mode == "intro_outro" else None
        graph = templates.build_intro_outro_filtergraph(
            core_duration,
            music_volume=preset.music.volume if slide_music else None,
            ducking=preset.music.ducking,
            config=config,
        )
        add(
            "intro_outro_music" if slide_music else "intro_outro",
            templates.build_intro_outro_args(
                assets.intro,
                str(concat_out),
                assets.outro,
                str(intro_out),
                graph,
                music_path=slide_music,
                config=config,
            ),
            intro_out,
            True,
            timeline_duration,
        )
    else:
        if preset.intro.enabled or preset.outro.enabled:
            logger.info("Intro/outro asset missing, passing the core render through")
        add(
            "copy_intro_outro",
            templates.build_copy_args(str(concat_out), str(intro_out)),
            intro_out,
            False,
            None,
        )

    # Step 3: full-length music
    music_out = work / MUSIC_OUTPUT
    if preset.music.mode == "full" and assets.music:
        add(
            "music_full",
            templates.build_music_full_args(
                str(intro_out),
                assets.music,
                str(music_out),
                templates.build_music_full_filtergraph(
                    preset.music.volume, ducking=preset.music.ducking
                ),
                config,
            ),
            music_out,
            True,
            timeline_duration,
        )
    else:
        add(
            "copy_music",
            templates.build_copy_args(str(intro_out), str(music_out)),
            music_out,
            False,
            None,
        )

    # Step 4: watermark
    watermark_out = work / WATERMARK_OUTPUT
    if preset.watermark.enabled and assets.watermark:
        add(
            "watermark",
            templates.build_watermark_args(
                str(music_out), assets.watermark, str(watermark_out), config
            ),
            watermark_out,
            True,
            timeline_duration,
        )
    else:
        add(
            "copy_watermark",
            templates.build_copy_args(str(music_out), str(watermark_out)),
            watermark_out,
            False,
            None,
        )

    return RenderPlan(
        steps=tuple(steps),
        final_output=str(watermark_out),
        planned_duration=timeline_duration,
        offsets=tuple(offsets),
    )
