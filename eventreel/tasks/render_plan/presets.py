"""
Render Preset Normalization

Turns client-supplied render options into a canonical, bounded Preset in a
single pass. Nothing downstream performs its own fallback logic: every field
of a Preset is populated and within range.

Tier policy:
- free: the default preset (default transition and duration, default
  intro/outro, no music, watermark on) whatever the client sent
- premium: any known transition, clamped duration, custom intro/outro and
  music subject to asset ownership validation

Normalization never raises. Unknown enum values fall back to the default
entry, out-of-range numbers are clamped and references that fail ownership
validation are dropped.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ...core.errors import AssetUnavailable
from ...core.ownership import AssetOwner, AssetOwnershipValidator, PrefixOwnershipValidator

logger = logging.getLogger(__name__)

# Transition names exposed to clients, mapped to ffmpeg xfade transitions
TRANSITIONS: Dict[str, str] = {
    "modern_1": "fadeblack",
    "modern_2": "smoothleft",
    "modern_3": "smoothright",
    "modern_4": "circleopen",
    "modern_5": "pixelize",
}
DEFAULT_TRANSITION = "modern_1"

DEFAULT_TRANSITION_DURATION = 0.3
MIN_TRANSITION_DURATION = 0.1
MAX_TRANSITION_DURATION = 2.0

MUSIC_MODES = ("none", "intro_outro", "full")
DEFAULT_MUSIC_VOLUME = 0.6
MIN_MUSIC_VOLUME = 0.05
MAX_MUSIC_VOLUME = 1.0

INTRO_OUTRO_TYPES = ("default", "custom_image", "custom_text")
MAX_TEXT_LENGTH = 80

PREMIUM_TIER = "premium"


@dataclass(frozen=True)
class IntroOutro:
    """
    Intro or outro slide configuration.

    Attributes:
        enabled: Whether the slide is rendered at all
        type: "default", "custom_image" or "custom_text"
        storage_path: Asset key in the premium-assets bucket (custom_image)
        text: Slide text, at most 80 characters (custom_text)
    """

    enabled: bool = True
    type: str = "default"
    storage_path: Optional[str] = None
    text: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "type": self.type,
            "storagePath": self.storage_path,
            "text": self.text,
        }


@dataclass(frozen=True)
class Music:
    """
    Background music configuration.

    Attributes:
        mode: "none", "intro_outro" (only under the slides) or "full"
        volume: Linear gain applied to the track (0.05-1.0)
        storage_path: Track key in the premium-assets bucket
        ducking: Lower the music while voices are present
    """

    mode: str = "none"
    volume: float = DEFAULT_MUSIC_VOLUME
    storage_path: Optional[str] = None
    ducking: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "volume": self.volume,
            "storagePath": self.storage_path,
            "ducking": self.ducking,
        }


@dataclass(frozen=True)
class Watermark:
    enabled: bool = True

    def to_dict(self) -> dict:
        return {"enabled": self.enabled}


@dataclass(frozen=True)
class Preset:
    """Canonical render configuration for one job."""

    transition: str = DEFAULT_TRANSITION
    transition_duration: float = DEFAULT_TRANSITION_DURATION
    intro: IntroOutro = field(default_factory=IntroOutro)
    outro: IntroOutro = field(default_factory=IntroOutro)
    music: Music = field(default_factory=Music)
    watermark: Watermark = field(default_factory=Watermark)

    @property
    def xfade_transition(self) -> str:
        """ffmpeg xfade transition name for this preset."""
        return TRANSITIONS[self.transition]

    def to_dict(self) -> dict:
        """Convert to the camelCase shape clients send and receive."""
        return {
            "transition": self.transition,
            "transitionDuration": self.transition_duration,
            "intro": self.intro.to_dict(),
            "outro": self.outro.to_dict(),
            "music": self.music.to_dict(),
            "watermark": self.watermark.to_dict(),
        }


DEFAULT_PRESET = Preset()


# =============================================================================
# Field Coercion
# =============================================================================


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _first_present(raw: dict, *keys: str) -> Any:
    """Value of the first key present in raw (aliases, preferred first)."""
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _coerce_float(value: Any, default: float, low: float, high: float) -> float:
    """
    Parse value as a float clamped to [low, high].

    Booleans, non-numeric strings, NaN, infinities and integers too large
    for a float fall back to default.
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, (int, float)):
        return default

    try:
        number = float(value)
    except (OverflowError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    return min(max(number, low), high)


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def _coerce_enum(value: Any, allowed, default: str) -> str:
    if isinstance(value, str) and value.strip() in allowed:
        return value.strip()
    return default


def _clean_text(value: Any) -> Optional[str]:
    """Trim and cut slide text to MAX_TEXT_LENGTH; empty text is None."""
    if not isinstance(value, str):
        return None
    text = value.strip()[:MAX_TEXT_LENGTH].rstrip()
    return text or None


def _validated_path(
    value: Any,
    kind: str,
    owner: Optional[AssetOwner],
    validator: AssetOwnershipValidator,
) -> Optional[str]:
    """Storage path if it passes ownership validation, otherwise None."""
    if value is None:
        return None
    try:
        return validator.validate(value, owner, kind)
    except AssetUnavailable as e:
        logger.warning(f"Dropping {kind} asset reference: {e}")
        return None


# =============================================================================
# Normalization
# =============================================================================


def _normalize_intro_outro(
    raw: Any,
    kind: str,
    owner: Optional[AssetOwner],
    validator: AssetOwnershipValidator,
) -> IntroOutro:
    raw = _as_dict(raw)
    enabled = _coerce_bool(raw.get("enabled"), True)
    slide_type = _coerce_enum(raw.get("type"), INTRO_OUTRO_TYPES, "default")

    if slide_type == "custom_image":
        path = _validated_path(
            _first_present(raw, "storagePath", "storage_path", "imageUrl"),
            kind,
            owner,
            validator,
        )
        if path:
            return IntroOutro(enabled=enabled, type="custom_image", storage_path=path)
        logger.info(f"{kind}: custom_image without a usable asset, using default")

    elif slide_type == "custom_text":
        text = _clean_text(raw.get("text"))
        if text:
            return IntroOutro(enabled=enabled, type="custom_text", text=text)
        logger.info(f"{kind}: custom_text without text, using default")

    return IntroOutro(enabled=enabled, type="default")


def _normalize_music(
    raw: Any,
    owner: Optional[AssetOwner],
    validator: AssetOwnershipValidator,
) -> Music:
    raw = _as_dict(raw)
    mode = _coerce_enum(raw.get("mode"), MUSIC_MODES, "none")
    volume = _coerce_float(
        raw.get("volume"), DEFAULT_MUSIC_VOLUME, MIN_MUSIC_VOLUME, MAX_MUSIC_VOLUME
    )

    if mode == "none":
        return Music(mode="none", volume=volume)

    path = _validated_path(
        _first_present(raw, "storagePath", "storage_path", "path"),
        "music",
        owner,
        validator,
    )
    if not path:
        logger.info(f"music: mode {mode} without a usable track, disabling music")
        return Music(mode="none", volume=volume)

    return Music(
        mode=mode,
        volume=volume,
        storage_path=path,
        ducking=_coerce_bool(raw.get("ducking"), False),
    )


def normalize(
    raw: Any,
    tier: str,
    owner: Optional[AssetOwner] = None,
    validator: Optional[AssetOwnershipValidator] = None,
) -> Preset:
    """
    Normalize client render options into a canonical Preset.

    Args:
        raw: Options as sent by the client (any JSON value)
        tier: "premium" unlocks custom options; anything else is free
        owner: Acting user/event, required for custom asset references
        validator: Ownership validator (prefix validator when omitted)

    Returns:
        Preset: Fully populated preset; normalize(p.to_dict(), ...) == p
    """
    if tier != PREMIUM_TIER:
        return DEFAULT_PRESET

    raw = _as_dict(raw)
    validator = validator or PrefixOwnershipValidator()

    transition = _coerce_enum(raw.get("transition"), TRANSITIONS, DEFAULT_TRANSITION)
    duration = _coerce_float(
        _first_present(raw, "transitionDuration", "transition_duration"),
        DEFAULT_TRANSITION_DURATION,
        MIN_TRANSITION_DURATION,
        MAX_TRANSITION_DURATION,
    )

    watermark_raw = _as_dict(raw.get("watermark"))
    watermark_enabled = watermark_raw.get("enabled") is not False

    return Preset(
        transition=transition,
        transition_duration=duration,
        intro=_normalize_intro_outro(raw.get("intro"), "intro", owner, validator),
        outro=_normalize_intro_outro(raw.get("outro"), "outro", owner, validator),
        music=_normalize_music(raw.get("music"), owner, validator),
        watermark=Watermark(enabled=watermark_enabled),
    )


def preset_from_dict(data: Any) -> Preset:
    """
    Rebuild a Preset stored with Preset.to_dict().

    The stored preset was already validated at submission, so no tier policy
    or ownership checks are applied again; values are only range-checked.
    """
    data = _as_dict(data)

    def slide(raw: Any) -> IntroOutro:
        raw = _as_dict(raw)
        return IntroOutro(
            enabled=_coerce_bool(raw.get("enabled"), True),
            type=_coerce_enum(raw.get("type"), INTRO_OUTRO_TYPES, "default"),
            storage_path=raw.get("storagePath"),
            text=_clean_text(raw.get("text")),
        )

    music_raw = _as_dict(data.get("music"))
    return Preset(
        transition=_coerce_enum(data.get("transition"), TRANSITIONS, DEFAULT_TRANSITION),
        transition_duration=_coerce_float(
            data.get("transitionDuration"),
            DEFAULT_TRANSITION_DURATION,
            MIN_TRANSITION_DURATION,
            MAX_TRANSITION_DURATION,
        ),
        intro=slide(data.get("intro")),
        outro=slide(data.get("outro")),
        music=Music(
            mode=_coerce_enum(music_raw.get("mode"), MUSIC_MODES, "none"),
            volume=_coerce_float(
                music_raw.get("volume"),
                DEFAULT_MUSIC_VOLUME,
                MIN_MUSIC_VOLUME,
                MAX_MUSIC_VOLUME,
            ),
            storage_path=music_raw.get("storagePath"),
            ducking=_coerce_bool(music_raw.get("ducking"), False),
        ),
        watermark=Watermark(enabled=_as_dict(data.get("watermark")).get("enabled") is not False),
    )
