"""
Clip Fetching and Normalization

Downloads each source clip through a time-boxed signed URL and normalizes it
to the output format (720x1280, 30 fps, H.264/AAC, stereo 48 kHz):
- Clips without audio get a synthesized silent stereo track
- Each normalized clip's duration is measured with ffprobe

Clips are processed in fixed-size batches: clips inside a batch run
concurrently, batches run one after another. A failure of any clip fails
the whole fetch once its batch has settled, so no encoder is left running.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Sequence

import aiofiles
import httpx

from ..core.errors import ClipFetchError, RenderError
from ..core.storage import ObjectStorage
from .ffmpeg_runner import EncoderRunner, probe
from .render_plan.ffmpeg_templates import DEFAULT_CONFIG, RenderConfig, build_normalize_args
from .render_plan.plan_builder import Step

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DEFAULT_BATCH_SIZE = 2
VIDEO_EXTENSIONS = {".mp4", ".mov", ".m4v", ".webm", ".mkv", ".avi", ".3gp"}


@dataclass(frozen=True)
class ClipRef:
    """A source clip: catalog id and key inside the clips bucket."""

    id: str
    storage_path: str


@dataclass(frozen=True)
class NormalizedClip:
    clip_id: str
    path: str
    duration: float


# =============================================================================
# Download and Probe Helpers
# =============================================================================


async def download_file(client: httpx.AsyncClient, url: str, dest: Path) -> Path:
    """
    Stream url into dest.

    Raises:
        httpx.HTTPError: On transport errors or a non-2xx response
        ValueError: If the downloaded file is empty
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    async with client.stream("GET", url) as response:
        response.raise_for_status()
        async with aiofiles.open(dest, "wb") as f:
            async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                await f.write(chunk)

    if dest.stat().st_size == 0:
        raise ValueError("Downloaded file is empty")
    return dest


async def probe_has_audio(path: str, ffprobe_binary: str = "ffprobe") -> bool:
    """Whether the file has at least one audio stream."""
    output = await probe([
        ffprobe_binary,
        "-v", "error",
        "-select_streams", "a",
        "-show_entries", "stream=index",
        "-of", "json",
        path,
    ])
    data = json.loads(output or "{}")
    return bool(data.get("streams"))


async def probe_duration(path: str, ffprobe_binary: str = "ffprobe") -> float:
    """
    Container duration in seconds.

    Raises:
        ValueError: If ffprobe reports no usable duration
    """
    output = await probe([
        ffprobe_binary,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json",
        path,
    ])
    data = json.loads(output or "{}")
    raw = data.get("format", {}).get("duration")
    try:
        duration = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"No duration reported for {Path(path).name}")
    if duration <= 0:
        raise ValueError(f"Non-positive duration reported for {Path(path).name}")
    return duration


def _source_extension(storage_path: str) -> str:
    suffix = PurePosixPath(storage_path).suffix.lower()
    return suffix if suffix in VIDEO_EXTENSIONS else ".mp4"


# =============================================================================
# Clip Fetcher
# =============================================================================


class ClipFetcher:
    """
    Fetches and normalizes source clips for one job.

    Args:
        storage: Object storage issuing signed read URLs
        runner: Encoder runner used for the normalize steps
        http_client: Client used for downloads
        bucket: Bucket holding the source clips
        batch_size: Clips processed concurrently
        signed_url_ttl: Lifetime of the signed read URLs in seconds
    """

    def __init__(
        self,
        storage: ObjectStorage,
        runner: EncoderRunner,
        http_client: httpx.AsyncClient,
        bucket: str,
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        batch_size: int = DEFAULT_BATCH_SIZE,
        signed_url_ttl: int = 3600,
        config: RenderConfig = DEFAULT_CONFIG,
    ):
        self.storage = storage
        self.runner = runner
        self.http_client = http_client
        self.bucket = bucket
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.batch_size = max(1, batch_size)
        self.signed_url_ttl = signed_url_ttl
        self.config = config

    async def fetch_all(
        self,
        clips: Sequence[ClipRef],
        work_dir: str,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> List[NormalizedClip]:
        """
        Fetch and normalize every clip.

        Args:
            clips: Clip references in playback order
            work_dir: Job working directory
            on_progress: Called with (clips_done, clips_total) after each batch

        Returns:
            Normalized clips in the order of clips

        Raises:
            ClipFetchError: If any clip fails
        """
        results: List[NormalizedClip] = []
        indexed = list(enumerate(clips))
        total = len(indexed)

        for start in range(0, total, self.batch_size):
            batch = indexed[start:start + self.batch_size]
            logger.info(
                f"Fetching clips {start + 1}-{start + len(batch)} of {total}"
            )
            outcomes = await asyncio.gather(
                *(self.fetch_one(index, clip, work_dir) for index, clip in batch),
                return_exceptions=True,
            )

            # Every clip of the batch has settled; the first failure wins
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)

            if on_progress is not None:
                on_progress(len(results), total)

        return results

    async def fetch_one(self, index: int, clip: ClipRef, work_dir: str) -> NormalizedClip:
        """
        Download, normalize and measure one clip.

        Raises:
            ClipFetchError: Wrapping whatever went wrong with this clip
        """
        work = Path(work_dir)
        source = work / f"clip_{index:03d}_src{_source_extension(clip.storage_path)}"
        output = work / f"clip_{index:03d}.mp4"

        try:
            url = self.storage.create_signed_url(
                self.bucket, clip.storage_path, self.signed_url_ttl
            )
            await download_file(self.http_client, url, source)

            has_audio = await probe_has_audio(str(source), self.ffprobe_binary)
            if not has_audio:
                logger.info(f"Clip {clip.id} has no audio, adding a silent track")

            step = Step(
                name=f"normalize_clip_{index + 1}",
                program=self.ffmpeg_binary,
                args=tuple(build_normalize_args(str(source), str(output), has_audio, self.config)),
                output_path=str(output),
                emits_progress=True,
            )
            await self.runner.run(step)

            duration = await probe_duration(str(output), self.ffprobe_binary)

        except Exception as e:
            tail = e.tail if isinstance(e, RenderError) else f"{type(e).__name__}: {e}"
            logger.error(f"Clip {clip.id} (#{index + 1}) failed: {e}")
            raise ClipFetchError(
                f"Clip {index + 1} could not be downloaded or converted", tail=tail
            ) from e

        finally:
            if source.exists():
                source.unlink()

        logger.info(f"Clip {clip.id} normalized ({duration:.2f}s)")
        return NormalizedClip(clip_id=clip.id, path=str(output), duration=duration)
