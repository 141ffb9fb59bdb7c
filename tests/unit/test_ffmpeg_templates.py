"""
Unit tests for ffmpeg argument and filtergraph templates.
"""

import pytest

from eventreel.tasks.render_plan import ffmpeg_templates as templates


class TestFormatting:
    @pytest.mark.parametrize(
        "value, expected",
        [(4.5, "4.5"), (8.0, "8"), (0.0, "0"), (0.3333333, "0.333"), (12.5, "12.5")],
    )
    def test_format_seconds(self, value, expected):
        assert templates.format_seconds(value) == expected

    def test_escape_filter_option(self):
        assert templates.escape_filter_option("a:b'c\\d") == "a\\:b\\'c\\\\d"

    def test_escape_filtergraph(self):
        assert templates.escape_filtergraph("x,y;z[0]") == "x\\,y\\;z\\[0\\]"

    def test_drawtext_value_escapes_both_levels(self):
        # option level gives a\:b, the graph level escapes that backslash
        assert templates.escape_drawtext_value("a:b") == "a\\\\:b"


class TestTextSlide:
    def test_percent_sequences_stay_literal(self):
        graph = templates.build_text_slide_filter("100% %{pts}")
        assert "expansion=none" in graph
        assert "100%" in graph

    def test_separators_are_escaped(self):
        graph = templates.build_text_slide_filter("Hello, world; it's [me]: ok")
        text_option = graph.split(":expansion=none")[0]
        assert ", " not in text_option.replace("\\, ", "")
        assert "\\;" in text_option
        assert "\\[me\\]" in text_option

    def test_control_characters_removed(self):
        assert templates.wrap_slide_text("a\tb\x00c") == "a b c"

    def test_long_text_wrapped(self):
        wrapped = templates.wrap_slide_text("word " * 20)
        assert "\n" in wrapped
        assert all(len(line) <= templates.TEXT_SLIDE_WRAP_WIDTH for line in wrapped.split("\n"))

    def test_font_file_included(self):
        assert "fontfile=" in templates.build_text_slide_filter("Hi", "/fonts/a.ttf")

    def test_text_slide_args_single_frame(self):
        args = templates.build_text_slide_args("Hi", "/work/intro_text.png")
        assert args[-1] == "/work/intro_text.png"
        assert args[args.index("-frames:v") + 1] == "1"
        assert "color=c=black:s=720x1280:d=1" in args


class TestNormalize:
    def test_clip_with_audio(self):
        args = templates.build_normalize_args("in.mov", "out.mp4", has_audio=True)
        assert "0:a:0" in args
        assert "anullsrc" not in " ".join(args)
        assert "-shortest" not in args
        assert args[-1] == "out.mp4"

    def test_clip_without_audio_gets_silence(self):
        args = templates.build_normalize_args("in.mov", "out.mp4", has_audio=False)
        assert templates.SILENT_AUDIO_SOURCE in args
        assert "1:a:0" in args
        assert "-shortest" in args

    def test_output_format(self):
        args = templates.build_normalize_args("in.mov", "out.mp4", has_audio=True)
        vf = args[args.index("-vf") + 1]
        assert "fps=30" in vf
        assert "scale=720:1280:force_original_aspect_ratio=decrease" in vf
        assert args[args.index("-ar") + 1] == "48000"
        assert args[args.index("-ac") + 1] == "2"
        assert "-progress" in args and "pipe:1" in args


class TestXfade:
    def test_two_inputs(self):
        graph = templates.build_xfade_filtergraph(2, [2.7], "smoothleft", 0.3)
        assert graph == (
            "[0:v][1:v]xfade=transition=smoothleft:duration=0.3:offset=2.7[vout];"
            "[0:a][1:a]acrossfade=d=0.3:c1=tri:c2=tri[aout]"
        )

    def test_intermediate_labels(self):
        graph = templates.build_xfade_filtergraph(3, [1.0, 2.0], "fadeblack", 0.5)
        assert "[vx1][2:v]xfade" in graph
        assert "[ax1][2:a]acrossfade" in graph

    def test_offset_count_must_match(self):
        with pytest.raises(ValueError):
            templates.build_xfade_filtergraph(3, [1.0], "fadeblack", 0.5)

    def test_needs_two_inputs(self):
        with pytest.raises(ValueError):
            templates.build_xfade_filtergraph(1, [], "fadeblack", 0.5)


class TestIntroOutro:
    def test_voice_only(self):
        graph = templates.build_intro_outro_filtergraph(10.0)
        assert "adelay=3000|3000" in graph
        assert "apad=whole_dur=15" in graph
        assert "[3:a]" not in graph
        assert graph.endswith("[aout]")

    def test_music_plays_under_both_slides(self):
        graph = templates.build_intro_outro_filtergraph(10.0, music_volume=0.6)
        assert "atrim=0:3" in graph
        assert "atrim=0:2" in graph
        assert "adelay=13000|13000[m_outro]" in graph
        assert "amix=inputs=3:duration=longest[aout]" in graph

    def test_ducking(self):
        graph = templates.build_intro_outro_filtergraph(10.0, music_volume=0.6, ducking=True)
        assert graph.count("sidechaincompress") == 2

    def test_args_loop_slides(self):
        args = templates.build_intro_outro_args("i.png", "core.mp4", "o.png", "out.mp4", "graph")
        assert args.count("-loop") == 2
        assert args[args.index("i.png") - 1] == "-i"
        assert args[args.index("i.png") - 2] == "3"


class TestOtherSteps:
    def test_music_full_keeps_voice_length(self):
        graph = templates.build_music_full_filtergraph(0.5)
        assert "duration=first" in graph
        assert graph.startswith("[1:a]volume=0.5[bg]")

    def test_watermark_copies_audio(self):
        args = templates.build_watermark_args("in.mp4", "wm.png", "out.mp4")
        assert args[args.index("-c:a") + 1] == "copy"
        assert "0:a?" in args
        assert "overlay=W-w-20:H-h-20" in args[args.index("-filter_complex") + 1]

    def test_copy_args(self):
        assert templates.build_copy_args("a.mp4", "b.mp4") == [
            "-nostdin", "-hide_banner", "-y",
            "-i", "a.mp4", "-c", "copy",
            "-movflags", "+faststart", "b.mp4",
        ]
