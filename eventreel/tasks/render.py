"""
Render Task for EventReel Worker

Assembles an event video from participant clips:

1. Dispatch the job (queued -> processing)
2. Look up the clips and fetch/normalize them in batches of two, while the
   intro/outro/music/watermark assets are resolved
3. Build the render plan and run its steps
4. Publish the final video and mark the job done

Progress bands reported to the job:
- 5:      dispatched
- 5-40:   clips fetched and normalized
- 40:     assets resolved
- 40-95:  plan steps, split evenly, scaled by out_time inside a step
- 96:     publishing
- 100:    done

The whole pipeline runs under the job deadline. When it expires the running
encoder is killed and the job fails with deadline_exceeded. The job working
directory is always removed.
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings, get_settings
from ..core.errors import DeadlineExceeded, JobFailure, to_failure
from ..core.storage import ObjectStorage, get_storage
from ..db import get_session_factory
from ..jobs.catalog import ClipCatalog, SqlClipCatalog
from ..jobs.store import Job, SqlJobStore
from ..jobs.supervisor import DISPATCH_PROGRESS, JobSupervisor
from .assets import AssetResolver, ensure_default_assets
from .ffmpeg_runner import EncoderRunner, ProgressEvent, execute_plan
from .media import ClipFetcher
from .publish import PublishedVideo, Publisher
from .render_plan.plan_builder import Step, build_render_plan
from .render_plan.presets import preset_from_dict

logger = logging.getLogger(__name__)

# RQ kills the work horse this long after the job deadline
RENDER_JOB_GRACE_SECONDS = 60

CLIPS_DONE_PROGRESS = 40
PLAN_DONE_PROGRESS = 95
PUBLISH_PROGRESS = 96


# ============================================================================
# Progress Channel
# ============================================================================


class ProgressChannel:
    """
    Fire-and-forget progress from the pipeline to the job supervisor.

    publish() never blocks and never raises. A single consumer task writes
    updates to the supervisor in a worker thread, in order, and logs its own
    failures.
    """

    def __init__(self, supervisor: JobSupervisor, job_id: str):
        self.supervisor = supervisor
        self.job_id = job_id
        self._queue: "asyncio.Queue[Optional[tuple]]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._consumer = asyncio.create_task(self._consume())

    def publish(self, step: str, percent: float) -> None:
        self._queue.put_nowait((step, int(percent)))

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            step, percent = item
            try:
                await asyncio.to_thread(
                    self.supervisor.report_progress, self.job_id, step, percent
                )
            except Exception as e:
                logger.warning(f"Progress update for job {self.job_id} failed: {e}")

    async def close(self) -> None:
        """Flush pending updates and stop the consumer."""
        if self._consumer is None:
            return
        self._queue.put_nowait(None)
        await self._consumer
        self._consumer = None


class PlanProgress:
    """Maps plan step events onto the 40-95 progress band."""

    def __init__(self, channel: ProgressChannel, steps):
        self.channel = channel
        self.steps = list(steps)
        self._index = {step.name: i for i, step in enumerate(self.steps)}
        self._band = (PLAN_DONE_PROGRESS - CLIPS_DONE_PROGRESS) / max(1, len(self.steps))

    def _base(self, index: int) -> float:
        return CLIPS_DONE_PROGRESS + self._band * index

    def on_step(self, index: int, step: Step) -> None:
        self.channel.publish(step.name, self._base(index))

    def on_progress(self, event: ProgressEvent) -> None:
        index = self._index.get(event.step)
        if index is None:
            return
        step = self.steps[index]
        if event.marker == "end":
            fraction = 1.0
        elif step.duration_hint:
            fraction = min(1.0, event.out_time / step.duration_hint)
        else:
            return
        self.channel.publish(step.name, self._base(index) + self._band * fraction)


# ============================================================================
# Pipeline
# ============================================================================


class RenderPipeline:
    """
    Runs one render job end to end.

    Args:
        supervisor: Job state machine
        catalog: Clip id -> storage path lookup
        clip_fetcher: Downloads and normalizes clips
        asset_resolver: Resolves intro/outro/music/watermark
        publisher: Uploads the final video
        runner: Encoder runner for the plan steps
        settings: Work root, deadline and binaries
    """

    def __init__(
        self,
        supervisor: JobSupervisor,
        catalog: ClipCatalog,
        clip_fetcher: ClipFetcher,
        asset_resolver: AssetResolver,
        publisher: Publisher,
        runner: EncoderRunner,
        settings: Settings,
    ):
        self.supervisor = supervisor
        self.catalog = catalog
        self.clip_fetcher = clip_fetcher
        self.asset_resolver = asset_resolver
        self.publisher = publisher
        self.runner = runner
        self.settings = settings

    async def run(self, job_id: str) -> Dict[str, Any]:
        """
        Render a queued job.

        Failures are recorded on the job, not raised.

        Returns:
            dict with job_id, status and final_video_url
        """
        job = await asyncio.to_thread(self.supervisor.dispatch, job_id)
        if job is None:
            current = await asyncio.to_thread(self.supervisor.get_status, job_id)
            return {"job_id": job_id, "status": current.status, "final_video_url": current.final_video_url}

        work_dir = Path(self.settings.work_root) / job_id
        work_dir.mkdir(parents=True, exist_ok=True)

        channel = ProgressChannel(self.supervisor, job_id)
        channel.start()

        failure: Optional[JobFailure] = None
        published: Optional[PublishedVideo] = None
        try:
            published = await asyncio.wait_for(
                self._render(job, str(work_dir), channel),
                timeout=self.settings.job_deadline_seconds,
            )
        except asyncio.TimeoutError:
            failure = to_failure(
                DeadlineExceeded("Video processing took too long and was stopped")
            )
        except Exception as e:
            logger.error(f"Render of job {job_id} failed: {e}")
            failure = to_failure(e)
        finally:
            await channel.close()
            shutil.rmtree(work_dir, ignore_errors=True)

        if failure is not None:
            await asyncio.to_thread(self.supervisor.fail, job_id, failure)
            return {"job_id": job_id, "status": "failed", "final_video_url": None}

        done = await asyncio.to_thread(
            self.supervisor.complete, job_id, published.url, published.path
        )
        if done is None:
            # Deadline failure won the race; the upload is not committed to the job
            current = await asyncio.to_thread(self.supervisor.get_status, job_id)
            return {"job_id": job_id, "status": current.status, "final_video_url": None}

        return {"job_id": job_id, "status": "done", "final_video_url": published.url}

    async def _render(self, job: Job, work_dir: str, channel: ProgressChannel) -> PublishedVideo:
        preset = preset_from_dict(job.effective_preset)

        channel.publish("fetching_clips", DISPATCH_PROGRESS)
        clip_refs = await asyncio.to_thread(self.catalog.get_clips, job.event_id, job.clip_ids)

        def clips_progress(done: int, total: int) -> None:
            span = CLIPS_DONE_PROGRESS - DISPATCH_PROGRESS
            channel.publish("fetching_clips", DISPATCH_PROGRESS + span * done / max(1, total))

        clips_task = asyncio.create_task(
            self.clip_fetcher.fetch_all(clip_refs, work_dir, on_progress=clips_progress)
        )
        assets_task = asyncio.create_task(self.asset_resolver.resolve_all(preset, work_dir))
        try:
            clips = await clips_task
            assets = await assets_task
        except BaseException:
            for task in (clips_task, assets_task):
                task.cancel()
            await asyncio.gather(clips_task, assets_task, return_exceptions=True)
            raise

        channel.publish("resolving_assets", CLIPS_DONE_PROGRESS)

        plan = build_render_plan(
            [clip.path for clip in clips],
            [clip.duration for clip in clips],
            preset,
            assets,
            work_dir,
            ffmpeg_binary=self.settings.ffmpeg_binary,
        )
        logger.info(
            f"Job {job.id} plan: {', '.join(plan.step_names)} "
            f"(planned {plan.planned_duration:.2f}s)"
        )

        tracker = PlanProgress(channel, plan.steps)
        final_output = await execute_plan(
            plan, self.runner, on_progress=tracker.on_progress, on_step=tracker.on_step
        )

        channel.publish("publishing", PUBLISH_PROGRESS)
        return await self.publisher.publish(final_output, job.event_id, job.id)


# ============================================================================
# RQ Entry Points
# ============================================================================


def build_pipeline(
    http_client: httpx.AsyncClient,
    supervisor: JobSupervisor,
    catalog: ClipCatalog,
    storage: ObjectStorage,
    settings: Settings,
) -> RenderPipeline:
    """Wire a RenderPipeline from settings."""
    runner = EncoderRunner.from_settings(settings)
    fetcher = ClipFetcher(
        storage=storage,
        runner=runner,
        http_client=http_client,
        bucket=settings.clips_bucket,
        ffmpeg_binary=settings.ffmpeg_binary,
        ffprobe_binary=settings.ffprobe_binary,
        batch_size=settings.clip_batch_size,
        signed_url_ttl=settings.signed_url_ttl_seconds,
    )
    resolver = AssetResolver(
        storage=storage,
        runner=runner,
        http_client=http_client,
        bucket=settings.assets_bucket,
        assets_dir=settings.assets_dir,
        ffmpeg_binary=settings.ffmpeg_binary,
        font_file=settings.text_font_file,
        signed_url_ttl=settings.signed_url_ttl_seconds,
    )
    publisher = Publisher(storage=storage, bucket=settings.final_bucket)
    return RenderPipeline(
        supervisor=supervisor,
        catalog=catalog,
        clip_fetcher=fetcher,
        asset_resolver=resolver,
        publisher=publisher,
        runner=runner,
        settings=settings,
    )


async def _run(job_id: str, settings: Settings) -> Dict[str, Any]:
    session_factory = get_session_factory()
    supervisor = JobSupervisor(SqlJobStore(session_factory), settings.job_deadline_seconds)
    await asyncio.to_thread(ensure_default_assets, settings.assets_dir)

    timeout = httpx.Timeout(settings.download_timeout_seconds, connect=10.0)
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        pipeline = build_pipeline(
            client, supervisor, SqlClipCatalog(session_factory), get_storage(), settings
        )
        return await pipeline.run(job_id)


def enqueue_render(job_id: str):
    """
    Enqueue a render job with the deadline-based timeout.

    Use this instead of directly enqueueing the task.

    Args:
        job_id: Id of a queued job

    Returns:
        RQ Job instance
    """
    from ..queues import render_queue

    settings = get_settings()
    return render_queue.enqueue(
        run_render_job,
        job_id,
        job_timeout=int(settings.job_deadline_seconds) + RENDER_JOB_GRACE_SECONDS,
    )


def run_render_job(job_id: str) -> Dict[str, Any]:
    """
    RQ task rendering one job.

    Args:
        job_id: Id of a queued job

    Returns:
        dict with job_id, status and final_video_url
    """
    logger.info(f"Starting render for job={job_id}")
    result = asyncio.run(_run(job_id, get_settings()))
    logger.info(f"Render for job={job_id} finished with status={result['status']}")
    return result
