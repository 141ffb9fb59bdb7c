"""
Unit tests for the render plan builder.

Covers cross-fade offsets, planned durations and step selection for every
combination of optional layers.
"""

import math

import pytest

from eventreel.tasks.render_plan.ffmpeg_templates import (
    INTRO_HOLD_SECONDS,
    OUTRO_HOLD_SECONDS,
)
from eventreel.tasks.render_plan.plan_builder import (
    CONCAT_OUTPUT,
    ResolvedAssets,
    build_render_plan,
    compute_xfade_offsets,
    planned_output_duration,
)
from eventreel.tasks.render_plan.presets import (
    DEFAULT_PRESET,
    IntroOutro,
    Music,
    Preset,
    Watermark,
)

ALL_ASSETS = ResolvedAssets(
    intro="/assets/intro.png",
    outro="/assets/outro.png",
    music="/work/music.mp3",
    watermark="/assets/watermark.png",
)
NO_ASSETS = ResolvedAssets()

DURATION_VECTORS = [
    [5.0, 4.0, 6.0],
    [2.5, 2.5],
    [10.0, 3.2, 7.7, 4.1, 12.0],
    [0.2, 0.2, 0.2, 5.0],
    [0.05, 8.0, 0.4],
    [3.0] * 12,
]


def bare_preset(**overrides) -> Preset:
    """Preset with every optional layer off."""
    values = dict(
        transition="modern_1",
        transition_duration=0.5,
        intro=IntroOutro(enabled=False),
        outro=IntroOutro(enabled=False),
        music=Music(mode="none"),
        watermark=Watermark(enabled=False),
    )
    values.update(overrides)
    return Preset(**values)


class TestOffsets:
    def test_three_clip_offsets(self):
        assert compute_xfade_offsets([5.0, 4.0, 6.0], 0.5) == [4.5, 8.0]

    def test_planned_duration(self):
        assert planned_output_duration([5.0, 4.0, 6.0], 0.5) == pytest.approx(14.0)

    def test_short_clips_clamped_and_monotone(self):
        offsets = compute_xfade_offsets([0.2, 0.2, 0.2, 5.0], 1.0)
        assert all(o >= 0 for o in offsets)
        assert offsets == sorted(offsets)

    def test_single_clip_has_no_offsets(self):
        assert compute_xfade_offsets([3.0], 0.3) == []
        assert planned_output_duration([3.0], 0.3) == 3.0

    @pytest.mark.parametrize("durations", DURATION_VECTORS)
    @pytest.mark.parametrize("t", [0.1, 0.3, 0.5, 1.0, 2.0])
    def test_offsets_bounded_by_running_sum(self, durations, t):
        offsets = compute_xfade_offsets(durations, t)

        assert len(offsets) == len(durations) - 1
        running = 0.0
        previous = 0.0
        for i, offset in enumerate(offsets, start=1):
            running += durations[i - 1]
            assert 0.0 <= offset <= running + 1e-9
            assert offset >= previous
            previous = offset

    @pytest.mark.parametrize("durations", DURATION_VECTORS)
    @pytest.mark.parametrize("t", [0.1, 0.3, 0.5, 1.0, 2.0])
    def test_planned_duration_formula(self, durations, t):
        expected = max(0.0, sum(durations) - t * (len(durations) - 1))
        assert planned_output_duration(durations, t) == pytest.approx(expected)

    @pytest.mark.parametrize("durations", [d for d in DURATION_VECTORS if min(d) > 2.0])
    @pytest.mark.parametrize("t", [0.1, 0.5, 2.0])
    def test_offsets_follow_running_sum_for_long_clips(self, durations, t):
        offsets = compute_xfade_offsets(durations, t)
        expected = [sum(durations[:i]) - t * i for i in range(1, len(durations))]
        assert offsets == pytest.approx(expected)

    @pytest.mark.parametrize("bad", [-1.0, float("nan"), float("inf")])
    def test_invalid_durations_rejected(self, bad):
        with pytest.raises(ValueError):
            compute_xfade_offsets([2.0, bad], 0.3)


class TestStepSelection:
    def test_three_clips_without_layers(self, tmp_path):
        plan = build_render_plan(
            ["a.mp4", "b.mp4", "c.mp4"], [5.0, 4.0, 6.0], bare_preset(), NO_ASSETS, str(tmp_path)
        )

        assert plan.step_names == [
            "concat_transitions",
            "copy_intro_outro",
            "copy_music",
            "copy_watermark",
        ]
        assert plan.offsets == (4.5, 8.0)
        assert plan.planned_duration == pytest.approx(14.0)

        graph = plan.steps[0].argv[plan.steps[0].argv.index("-filter_complex") + 1]
        assert "offset=4.5" in graph
        assert "offset=8[vout]" in graph
        assert "transition=fadeblack" in graph
        assert graph.count("acrossfade") == 2

    def test_single_clip_has_no_transition(self, tmp_path):
        plan = build_render_plan(["a.mp4"], [4.0], bare_preset(), NO_ASSETS, str(tmp_path))

        assert plan.steps[0].name == "concat_single"
        assert "-filter_complex" not in plan.steps[0].argv
        assert plan.offsets == ()
        assert plan.planned_duration == 4.0

    def test_default_preset_with_default_assets(self, tmp_path):
        assets = ResolvedAssets(
            intro="/assets/intro.png", outro="/assets/outro.png", watermark="/assets/watermark.png"
        )
        plan = build_render_plan(["a.mp4", "b.mp4"], [3.0, 3.0], DEFAULT_PRESET, assets, str(tmp_path))

        assert plan.step_names == ["concat_transitions", "intro_outro", "copy_music", "watermark"]
        core = 6.0 - DEFAULT_PRESET.transition_duration
        assert plan.planned_duration == pytest.approx(INTRO_HOLD_SECONDS + core + OUTRO_HOLD_SECONDS)

    def test_intro_outro_music(self, tmp_path):
        preset = bare_preset(
            intro=IntroOutro(),
            outro=IntroOutro(),
            music=Music(mode="intro_outro", volume=0.5, storage_path="users/u1/music/m.mp3"),
        )
        plan = build_render_plan(["a.mp4", "b.mp4"], [5.0, 5.0], preset, ALL_ASSETS, str(tmp_path))

        step = plan.steps[1]
        assert step.name == "intro_outro_music"
        assert "/work/music.mp3" in step.argv
        graph = step.argv[step.argv.index("-filter_complex") + 1]
        # outro music starts after the intro hold and the 9.5s core
        assert "adelay=12500|12500[m_outro]" in graph
        assert plan.steps[2].name == "copy_music"

    def test_full_music(self, tmp_path):
        preset = bare_preset(
            music=Music(mode="full", volume=0.4, storage_path="users/u1/music/m.mp3", ducking=True)
        )
        plan = build_render_plan(["a.mp4", "b.mp4"], [5.0, 5.0], preset, ALL_ASSETS, str(tmp_path))

        step = plan.steps[2]
        assert step.name == "music_full"
        assert "-stream_loop" in step.argv
        graph = step.argv[step.argv.index("-filter_complex") + 1]
        assert "volume=0.4" in graph
        assert "sidechaincompress" in graph

    def test_music_layer_skipped_when_track_missing(self, tmp_path):
        preset = bare_preset(music=Music(mode="full", storage_path="users/u1/music/m.mp3"))
        plan = build_render_plan(["a.mp4", "b.mp4"], [5.0, 5.0], preset, NO_ASSETS, str(tmp_path))
        assert plan.steps[2].name == "copy_music"

    def test_slides_need_both_assets(self, tmp_path):
        preset = bare_preset(intro=IntroOutro(), outro=IntroOutro())
        assets = ResolvedAssets(intro="/assets/intro.png")
        plan = build_render_plan(["a.mp4", "b.mp4"], [5.0, 5.0], preset, assets, str(tmp_path))
        assert plan.steps[1].name == "copy_intro_outro"
        assert plan.planned_duration == pytest.approx(9.5)

    def test_steps_chain_outputs(self, tmp_path):
        plan = build_render_plan(
            ["a.mp4", "b.mp4"], [5.0, 5.0], DEFAULT_PRESET, ALL_ASSETS, str(tmp_path)
        )
        assert plan.steps[0].output_path == str(tmp_path / CONCAT_OUTPUT)
        for previous, step in zip(plan.steps, plan.steps[1:]):
            assert previous.output_path in step.argv
        assert plan.final_output == plan.steps[-1].output_path

    def test_copy_steps_do_not_emit_progress(self, tmp_path):
        plan = build_render_plan(["a.mp4", "b.mp4"], [5.0, 5.0], bare_preset(), NO_ASSETS, str(tmp_path))
        for step in plan.steps[1:]:
            assert step.emits_progress is False
            assert "-progress" not in step.argv
        assert plan.steps[0].emits_progress is True
        assert math.isclose(plan.steps[0].duration_hint, 9.5)

    def test_plan_is_deterministic(self, tmp_path):
        args = (["a.mp4", "b.mp4"], [5.0, 4.0], DEFAULT_PRESET, ALL_ASSETS, str(tmp_path))
        assert build_render_plan(*args) == build_render_plan(*args)


class TestInvalidInput:
    def test_no_clips(self, tmp_path):
        with pytest.raises(ValueError):
            build_render_plan([], [], DEFAULT_PRESET, NO_ASSETS, str(tmp_path))

    def test_duration_count_mismatch(self, tmp_path):
        with pytest.raises(ValueError):
            build_render_plan(["a.mp4", "b.mp4"], [5.0], DEFAULT_PRESET, NO_ASSETS, str(tmp_path))
