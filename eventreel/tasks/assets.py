"""
Asset Resolution

Turns the intro/outro/music/watermark parts of a preset into local files the
encoder can read:
- default: built-in image from the assets directory
- custom_image: downloaded through a signed URL, fitted onto a 720x1280 frame
- custom_text: single-frame PNG rendered by ffmpeg drawtext
- music: downloaded track
- watermark: built-in watermark image

A broken custom asset never fails a job: every failure degrades to the
kind's default (no music for the music track) and is logged.
"""

import asyncio
import logging
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Union

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps

from ..core.errors import AssetUnavailable, RenderError
from ..core.storage import ObjectStorage
from .ffmpeg_runner import EncoderRunner
from .media import download_file
from .render_plan.ffmpeg_templates import DEFAULT_CONFIG, RenderConfig, build_text_slide_args
from .render_plan.plan_builder import ResolvedAssets, Step
from .render_plan.presets import IntroOutro, Music, Preset, Watermark

logger = logging.getLogger(__name__)

DEFAULT_ASSET_FILES: Dict[str, str] = {
    "intro": "intro.png",
    "outro": "outro.png",
    "watermark": "watermark.png",
}

DEFAULT_SLIDE_TEXT = {
    "intro": "Our Event",
    "outro": "Thanks for watching",
}

SLIDE_BACKGROUND = (17, 17, 17)
WATERMARK_SIZE = (300, 90)
WATERMARK_TEXT = "EventReel"

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}
AUDIO_EXTENSIONS = {".mp3", ".m4a", ".aac", ".wav", ".ogg", ".flac"}


# =============================================================================
# Built-in Defaults
# =============================================================================


def _draw_centered(draw: ImageDraw.ImageDraw, size, text: str, font, fill) -> None:
    left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
    x = (size[0] - (right - left)) / 2 - left
    y = (size[1] - (bottom - top)) / 2 - top
    draw.text((x, y), text, font=font, fill=fill)


def _load_font(size: int):
    return ImageFont.load_default(size=size)


def ensure_default_assets(assets_dir: str, config: RenderConfig = DEFAULT_CONFIG) -> Dict[str, Path]:
    """
    Make sure the built-in intro, outro and watermark images exist.

    Missing files are generated with Pillow; existing files are left alone.

    Returns:
        dict mapping asset kind to its path
    """
    root = Path(assets_dir)
    root.mkdir(parents=True, exist_ok=True)
    frame = (config.width, config.height)
    paths = {}

    for kind in ("intro", "outro"):
        path = root / DEFAULT_ASSET_FILES[kind]
        if not path.exists():
            img = Image.new("RGB", frame, SLIDE_BACKGROUND)
            _draw_centered(
                ImageDraw.Draw(img), frame, DEFAULT_SLIDE_TEXT[kind], _load_font(64), (255, 255, 255)
            )
            img.save(path, "PNG")
            logger.info(f"Generated default {kind} image at {path}")
        paths[kind] = path

    path = root / DEFAULT_ASSET_FILES["watermark"]
    if not path.exists():
        img = Image.new("RGBA", WATERMARK_SIZE, (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)
        draw.rounded_rectangle(
            (0, 0, WATERMARK_SIZE[0] - 1, WATERMARK_SIZE[1] - 1), radius=18, fill=(0, 0, 0, 110)
        )
        _draw_centered(draw, WATERMARK_SIZE, WATERMARK_TEXT, _load_font(40), (255, 255, 255, 220))
        img.save(path, "PNG")
        logger.info(f"Generated default watermark at {path}")
    paths["watermark"] = path

    return paths


def fit_slide_image(source: Path, dest: Path, config: RenderConfig = DEFAULT_CONFIG) -> Path:
    """
    Scale an uploaded image up or down to fit a black output-sized frame, as PNG.

    Applies EXIF orientation and flattens transparency.

    Raises:
        AssetUnavailable: If the file is not a readable image
    """
    frame = (config.width, config.height)
    try:
        with Image.open(source) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGBA")
                flat = Image.new("RGB", img.size, (0, 0, 0))
                flat.paste(img, mask=img.split()[-1])
                img = flat
            img = ImageOps.contain(img, frame, Image.Resampling.LANCZOS)
            canvas = Image.new("RGB", frame, (0, 0, 0))
            canvas.paste(img, ((frame[0] - img.width) // 2, (frame[1] - img.height) // 2))
            canvas.save(dest, "PNG")
    except Exception as e:
        raise AssetUnavailable(f"Unreadable image: {e}") from e
    return dest


def _suffix(storage_path: str, allowed) -> str:
    suffix = PurePosixPath(storage_path).suffix.lower()
    return suffix if suffix in allowed else ""


# =============================================================================
# Resolver
# =============================================================================


class AssetResolver:
    """
    Resolves preset fragments into local files for one job.

    Args:
        storage: Object storage issuing signed read URLs
        runner: Encoder runner used to render text slides
        http_client: Client used for downloads
        bucket: Bucket holding custom assets
        assets_dir: Directory of the built-in default images
        font_file: Font for text slides (fontconfig default when None)
    """

    def __init__(
        self,
        storage: ObjectStorage,
        runner: EncoderRunner,
        http_client: httpx.AsyncClient,
        bucket: str,
        assets_dir: str,
        ffmpeg_binary: str = "ffmpeg",
        font_file: Optional[str] = None,
        signed_url_ttl: int = 3600,
        config: RenderConfig = DEFAULT_CONFIG,
    ):
        self.storage = storage
        self.runner = runner
        self.http_client = http_client
        self.bucket = bucket
        self.assets_dir = Path(assets_dir)
        self.ffmpeg_binary = ffmpeg_binary
        self.font_file = font_file
        self.signed_url_ttl = signed_url_ttl
        self.config = config

    def default_path(self, kind: str) -> Optional[str]:
        """Built-in asset for kind, or None if there is none on disk."""
        filename = DEFAULT_ASSET_FILES.get(kind)
        if filename is None:
            return None
        path = self.assets_dir / filename
        if not path.is_file():
            logger.warning(f"Default {kind} asset missing at {path}")
            return None
        return str(path)

    async def resolve(
        self,
        kind: str,
        fragment: Union[IntroOutro, Music, Watermark],
        work_dir: str,
    ) -> Optional[str]:
        """
        Local file for one asset kind, or None when the layer is off.

        Never raises for a broken asset; the kind's default is returned.
        """
        work = Path(work_dir)

        if kind == "watermark":
            return self.default_path("watermark") if fragment.enabled else None

        if kind == "music":
            if fragment.mode == "none" or not fragment.storage_path:
                return None
            try:
                dest = work / f"music{_suffix(fragment.storage_path, AUDIO_EXTENSIONS)}"
                return str(await self._download(fragment.storage_path, dest))
            except Exception as e:
                logger.warning(f"Music track unavailable, rendering without music: {e}")
                return None

        if not fragment.enabled:
            return None

        try:
            if fragment.type == "custom_image" and fragment.storage_path:
                dest = work / f"{kind}_download{_suffix(fragment.storage_path, IMAGE_EXTENSIONS)}"
                downloaded = await self._download(fragment.storage_path, dest)
                slide = await asyncio.to_thread(
                    fit_slide_image, downloaded, work / f"{kind}_custom.png", self.config
                )
                return str(slide)

            if fragment.type == "custom_text" and fragment.text:
                return await self._render_text(kind, fragment.text, work)

        except RenderError as e:
            logger.warning(f"Custom {kind} failed, using default: {e.message}")
        except Exception as e:
            logger.warning(f"Custom {kind} unavailable, using default: {e}")

        return self.default_path(kind)

    async def resolve_all(self, preset: Preset, work_dir: str) -> ResolvedAssets:
        """Resolve intro, outro, music and watermark concurrently."""
        intro, outro, music, watermark = await asyncio.gather(
            self.resolve("intro", preset.intro, work_dir),
            self.resolve("outro", preset.outro, work_dir),
            self.resolve("music", preset.music, work_dir),
            self.resolve("watermark", preset.watermark, work_dir),
        )
        return ResolvedAssets(intro=intro, outro=outro, music=music, watermark=watermark)

    async def _download(self, storage_path: str, dest: Path) -> Path:
        try:
            url = self.storage.create_signed_url(self.bucket, storage_path, self.signed_url_ttl)
        except Exception as e:
            raise AssetUnavailable(f"No signed URL for asset: {e}") from e
        return await download_file(self.http_client, url, dest)

    async def _render_text(self, kind: str, text: str, work: Path) -> str:
        output = work / f"{kind}_text.png"
        step = Step(
            name=f"{kind}_text",
            program=self.ffmpeg_binary,
            args=tuple(build_text_slide_args(text, str(output), self.font_file, self.config)),
            output_path=str(output),
        )
        await self.runner.run(step)
        if not output.is_file() or output.stat().st_size == 0:
            raise AssetUnavailable(f"Text slide for {kind} was not created")
        return str(output)
