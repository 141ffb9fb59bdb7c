"""
FFmpeg Argument Templates for Event Videos

Builds filtergraph strings and argv fragments for every encoder invocation
the render pipeline runs. Everything here returns plain strings or lists of
argv tokens; nothing is joined into a shell command line.

Output target: 720x1280 portrait, 30 fps, H.264/AAC, stereo 48 kHz.
"""

import logging
import textwrap
from dataclasses import dataclass
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

INTRO_HOLD_SECONDS = 3.0
OUTRO_HOLD_SECONDS = 2.0

WATERMARK_WIDTH = 150
WATERMARK_MARGIN = 20

# Sidechain compression applied to music under voice
DUCKING_FILTER = "sidechaincompress=threshold=0.03:ratio=8:attack=20:release=300"

SILENT_AUDIO_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=48000"

TEXT_SLIDE_FONT_SIZE = 56
TEXT_SLIDE_WRAP_WIDTH = 22


@dataclass(frozen=True)
class RenderConfig:
    """Encoding settings shared by every step."""

    width: int = 720
    height: int = 1280
    fps: int = 30
    crf: int = 23
    preset: str = "veryfast"
    pix_fmt: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    sample_rate: int = 48000


DEFAULT_CONFIG = RenderConfig()


# =============================================================================
# Formatting and Escaping
# =============================================================================


def format_seconds(value: float) -> str:
    """
    Format a time value for a filter argument.

    Example:
        >>> format_seconds(4.5)
        '4.5'
        >>> format_seconds(8.0)
        '8'
    """
    text = f"{value:.3f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def escape_filter_option(value: str) -> str:
    """Escape a value for use inside a single filter option (first level)."""
    return "".join("\\" + ch if ch in "\\':" else ch for ch in value)


def escape_filtergraph(value: str) -> str:
    """Escape a filter description for embedding in a filtergraph (second level)."""
    return "".join("\\" + ch if ch in "\\'[],;" else ch for ch in value)


def escape_drawtext_value(value: str) -> str:
    """Escape arbitrary text for a drawtext option inside a filtergraph."""
    return escape_filtergraph(escape_filter_option(value))


# =============================================================================
# Shared Argument Fragments
# =============================================================================


def base_args() -> List[str]:
    return ["-nostdin", "-hide_banner", "-y"]


def progress_args() -> List[str]:
    """Machine-readable progress on stdout; stderr keeps diagnostics only."""
    return ["-progress", "pipe:1", "-nostats"]


def video_encode_args(config: RenderConfig = DEFAULT_CONFIG) -> List[str]:
    return [
        "-c:v", "libx264",
        "-preset", config.preset,
        "-crf", str(config.crf),
        "-pix_fmt", config.pix_fmt,
    ]


def audio_encode_args(config: RenderConfig = DEFAULT_CONFIG) -> List[str]:
    return [
        "-c:a", config.audio_codec,
        "-b:a", config.audio_bitrate,
        "-ar", str(config.sample_rate),
        "-ac", "2",
    ]


def output_args(output_path: str) -> List[str]:
    return ["-movflags", "+faststart", output_path]


def fit_frame_filter(config: RenderConfig = DEFAULT_CONFIG) -> str:
    """Scale into the output frame keeping aspect ratio, pad with black."""
    w, h = config.width, config.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:black,"
        f"setsar=1"
    )


def normalize_video_filter(config: RenderConfig = DEFAULT_CONFIG) -> str:
    return (
        f"settb=AVTB,setpts=PTS-STARTPTS,fps={config.fps},"
        f"{fit_frame_filter(config)},format={config.pix_fmt}"
    )


def normalize_audio_filter(config: RenderConfig = DEFAULT_CONFIG) -> str:
    sr = config.sample_rate
    return (
        f"asetpts=PTS-STARTPTS,"
        f"aformat=sample_fmts=fltp:sample_rates={sr}:channel_layouts=stereo,"
        f"aresample={sr}"
    )


# =============================================================================
# Clip Normalization
# =============================================================================


def build_normalize_args(
    input_path: str,
    output_path: str,
    has_audio: bool,
    config: RenderConfig = DEFAULT_CONFIG,
) -> List[str]:
    """
    Arguments normalizing a source clip to the output format.

    A clip without an audio stream gets a silent stereo track so every
    normalized clip has exactly one video and one audio stream.
    """
    args = base_args() + progress_args() + ["-i", input_path]
    if has_audio:
        audio_map = "0:a:0"
    else:
        args += ["-f", "lavfi", "-i", SILENT_AUDIO_SOURCE]
        audio_map = "1:a:0"

    args += [
        "-map", "0:v:0",
        "-map", audio_map,
        "-vf", normalize_video_filter(config),
        "-af", normalize_audio_filter(config),
    ]
    args += video_encode_args(config) + audio_encode_args(config)
    if not has_audio:
        args.append("-shortest")
    return args + output_args(output_path)


# =============================================================================
# Concatenation
# =============================================================================


def build_single_clip_args(
    input_path: str, output_path: str, config: RenderConfig = DEFAULT_CONFIG
) -> List[str]:
    """Re-encode one clip for format consistency."""
    return (
        base_args()
        + progress_args()
        + ["-i", input_path, "-map", "0:v:0", "-map", "0:a:0"]
        + video_encode_args(config)
        + audio_encode_args(config)
        + output_args(output_path)
    )


def build_xfade_filtergraph(
    count: int,
    offsets: Sequence[float],
    transition: str,
    transition_duration: float,
) -> str:
    """
    Chain xfade (video) and acrossfade (audio) over count inputs.

    The i-th fade blends the accumulated stream with input i+1 starting at
    offsets[i]. acrossfade overlaps the same transition_duration at the end
    of the accumulated audio, which keeps both fades on the same window.
    Output labels are [vout] and [aout].
    """
    if count < 2:
        raise ValueError("xfade needs at least two inputs")
    if len(offsets) != count - 1:
        raise ValueError("Need one offset per transition")

    d = format_seconds(transition_duration)
    parts = []
    v_prev, a_prev = "[0:v]", "[0:a]"

    for i in range(1, count):
        last = i == count - 1
        v_out = "[vout]" if last else f"[vx{i}]"
        a_out = "[aout]" if last else f"[ax{i}]"
        parts.append(
            f"{v_prev}[{i}:v]xfade=transition={transition}:duration={d}:"
            f"offset={format_seconds(offsets[i - 1])}{v_out}"
        )
        parts.append(f"{a_prev}[{i}:a]acrossfade=d={d}:c1=tri:c2=tri{a_out}")
        v_prev, a_prev = v_out, a_out

    return ";".join(parts)


def build_concat_transitions_args(
    input_paths: Sequence[str],
    output_path: str,
    filtergraph: str,
    config: RenderConfig = DEFAULT_CONFIG,
) -> List[str]:
    args = base_args() + progress_args()
    for path in input_paths:
        args += ["-i", path]
    args += ["-filter_complex", filtergraph, "-map", "[vout]", "-map", "[aout]"]
    return args + video_encode_args(config) + audio_encode_args(config) + output_args(output_path)


# =============================================================================
# Intro / Outro
# =============================================================================


def _slide_chain(index: int, hold: float, label: str, config: RenderConfig) -> str:
    return (
        f"[{index}:v]{fit_frame_filter(config)},fps={config.fps},format={config.pix_fmt},"
        f"trim=duration={format_seconds(hold)},setpts=PTS-STARTPTS[{label}]"
    )


def build_intro_outro_filtergraph(
    core_duration: float,
    music_volume: Optional[float] = None,
    ducking: bool = False,
    config: RenderConfig = DEFAULT_CONFIG,
) -> str:
    """
    Intro slide, core render and outro slide as one timeline.

    Inputs: 0 intro image, 1 core render, 2 outro image and, when
    music_volume is given, 3 the music track.

    The core audio is delayed by the intro hold and padded to the full
    timeline. With music, the track's first seconds play under the intro and
    again under the outro, which starts at intro hold + core duration.
    """
    total = INTRO_HOLD_SECONDS + core_duration + OUTRO_HOLD_SECONDS
    intro_ms = int(round(INTRO_HOLD_SECONDS * 1000))
    outro_start_ms = int(round((INTRO_HOLD_SECONDS + core_duration) * 1000))

    parts = [
        _slide_chain(0, INTRO_HOLD_SECONDS, "iv", config),
        f"[1:v]setpts=PTS-STARTPTS,fps={config.fps},{fit_frame_filter(config)},"
        f"format={config.pix_fmt}[cv]",
        _slide_chain(2, OUTRO_HOLD_SECONDS, "ov", config),
        "[iv][cv][ov]concat=n=3:v=1:a=0[vout]",
    ]

    voice = (
        f"[1:a]asetpts=PTS-STARTPTS,adelay={intro_ms}|{intro_ms},"
        f"apad=whole_dur={format_seconds(total)}"
    )
    if music_volume is None:
        parts.append(f"{voice}[aout]")
        return ";".join(parts)

    vol = format_seconds(music_volume)
    parts.append("[3:a]asplit=2[mi_src][mo_src]")
    parts.append(
        f"[mi_src]atrim=0:{format_seconds(INTRO_HOLD_SECONDS)},asetpts=PTS-STARTPTS,"
        f"volume={vol}[m_intro]"
    )
    parts.append(
        f"[mo_src]atrim=0:{format_seconds(OUTRO_HOLD_SECONDS)},asetpts=PTS-STARTPTS,"
        f"volume={vol},adelay={outro_start_ms}|{outro_start_ms}[m_outro]"
    )
    if ducking:
        parts.append(f"{voice},asplit=3[voice][sc1][sc2]")
        parts.append(f"[m_intro][sc1]{DUCKING_FILTER}[m_intro_d]")
        parts.append(f"[m_outro][sc2]{DUCKING_FILTER}[m_outro_d]")
        parts.append("[voice][m_intro_d][m_outro_d]amix=inputs=3:duration=longest[aout]")
    else:
        parts.append(f"{voice}[voice]")
        parts.append("[voice][m_intro][m_outro]amix=inputs=3:duration=longest[aout]")
    return ";".join(parts)


def build_intro_outro_args(
    intro_path: str,
    core_path: str,
    outro_path: str,
    output_path: str,
    filtergraph: str,
    music_path: Optional[str] = None,
    config: RenderConfig = DEFAULT_CONFIG,
) -> List[str]:
    args = base_args() + progress_args() + [
        "-loop", "1", "-t", format_seconds(INTRO_HOLD_SECONDS), "-i", intro_path,
        "-i", core_path,
        "-loop", "1", "-t", format_seconds(OUTRO_HOLD_SECONDS), "-i", outro_path,
    ]
    if music_path:
        args += ["-i", music_path]
    args += ["-filter_complex", filtergraph, "-map", "[vout]", "-map", "[aout]"]
    return args + video_encode_args(config) + audio_encode_args(config) + output_args(output_path)


# =============================================================================
# Full-length Music
# =============================================================================


def build_music_full_filtergraph(volume: float, ducking: bool = False) -> str:
    """
    Mix a looped music track under the voice track.

    Inputs: 0 the video being scored, 1 the looped music. The voice track is
    the first amix input, so it decides the output length.
    """
    parts = [f"[1:a]volume={format_seconds(volume)}[bg]"]
    if ducking:
        parts.append("[0:a]asplit=2[voice][sc]")
        parts.append(f"[bg][sc]{DUCKING_FILTER}[bg_d]")
        parts.append("[voice][bg_d]amix=inputs=2:duration=first:dropout_transition=2[aout]")
    else:
        parts.append("[0:a][bg]amix=inputs=2:duration=first:dropout_transition=2[aout]")
    return ";".join(parts)


def build_music_full_args(
    input_path: str,
    music_path: str,
    output_path: str,
    filtergraph: str,
    config: RenderConfig = DEFAULT_CONFIG,
) -> List[str]:
    return (
        base_args()
        + progress_args()
        + ["-i", input_path, "-stream_loop", "-1", "-i", music_path]
        + ["-filter_complex", filtergraph, "-map", "0:v", "-map", "[aout]", "-c:v", "copy"]
        + audio_encode_args(config)
        + output_args(output_path)
    )


# =============================================================================
# Watermark
# =============================================================================


def build_watermark_filtergraph() -> str:
    return (
        f"[1:v]scale={WATERMARK_WIDTH}:-1[wm];"
        f"[0:v][wm]overlay=W-w-{WATERMARK_MARGIN}:H-h-{WATERMARK_MARGIN}[vout]"
    )


def build_watermark_args(
    input_path: str,
    watermark_path: str,
    output_path: str,
    config: RenderConfig = DEFAULT_CONFIG,
) -> List[str]:
    """Overlay the watermark bottom-right; video re-encoded, audio copied."""
    return (
        base_args()
        + progress_args()
        + ["-i", input_path, "-i", watermark_path]
        + ["-filter_complex", build_watermark_filtergraph()]
        + ["-map", "[vout]", "-map", "0:a?"]
        + video_encode_args(config)
        + ["-c:a", "copy"]
        + output_args(output_path)
    )


# =============================================================================
# Pass-through and Text Slides
# =============================================================================


def build_copy_args(input_path: str, output_path: str) -> List[str]:
    """Stream copy; used when a stage has nothing to add."""
    return base_args() + ["-i", input_path, "-c", "copy"] + output_args(output_path)


def wrap_slide_text(text: str) -> str:
    """Break slide text into centered lines; control characters become spaces."""
    clean = "".join(" " if ord(ch) < 32 else ch for ch in text).strip()
    return "\n".join(textwrap.wrap(clean, TEXT_SLIDE_WRAP_WIDTH)) or clean


def build_text_slide_filter(text: str, font_file: Optional[str] = None) -> str:
    """
    drawtext filter rendering text centered in white.

    expansion=none keeps '%' sequences literal. The text is escaped for the
    option level and again for the filtergraph level.
    """
    options = [
        f"text={escape_drawtext_value(wrap_slide_text(text))}",
        "expansion=none",
        "fontcolor=white",
        f"fontsize={TEXT_SLIDE_FONT_SIZE}",
        "line_spacing=12",
        "x=(w-text_w)/2",
        "y=(h-text_h)/2",
    ]
    if font_file:
        options.insert(1, f"fontfile={escape_drawtext_value(font_file)}")
    return "drawtext=" + ":".join(options)


def build_text_slide_args(
    text: str,
    output_path: str,
    font_file: Optional[str] = None,
    config: RenderConfig = DEFAULT_CONFIG,
) -> List[str]:
    """Single-frame PNG with text on a black background."""
    return base_args() + [
        "-f", "lavfi",
        "-i", f"color=c=black:s={config.width}x{config.height}:d=1",
        "-vf", build_text_slide_filter(text, font_file),
        "-frames:v", "1",
        output_path,
    ]
