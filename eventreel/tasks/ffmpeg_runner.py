"""
FFmpeg Runner with Watchdogs

Runs encoder steps with:
- Its own process group, so the whole tree is killed atomically
- Hard wall-clock timeout per step
- Inactivity watchdog (no output on either stream)
- Stalled-progress watchdog (output continues but out_time does not advance)
- Progress parsing from the dedicated -progress pipe:1 stream
- Output tail carried on every failure

All limits are checked by a single watchdog task. Every kill is a SIGKILL
to the process group; cancelling the running task kills it too.

Also runs a render plan's steps sequentially (execute_plan).
"""

import asyncio
import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..core.errors import PlanError, RenderError
from .render_plan.plan_builder import RenderPlan, Step

logger = logging.getLogger(__name__)

TAIL_CHARS = 6000
READ_CHUNK_SIZE = 4096


class FFmpegError(RenderError):
    """Raised when an encoder step exits non-zero or cannot be started."""

    code = "encoder_failed"


class FFmpegTimeout(FFmpegError):
    """Raised when an encoder step exceeds its hard timeout."""

    code = "encoder_timeout"


class FFmpegInactive(FFmpegError):
    """Raised when an encoder step produces no output for the inactivity window."""

    code = "encoder_inactive"


class FFmpegStalled(FFmpegError):
    """Raised when an encoder keeps writing but its output time stops advancing."""

    code = "encoder_stalled"


@dataclass(frozen=True)
class ProgressEvent:
    """
    Progress of one step.

    Attributes:
        step: Name of the step that produced the event
        out_time: Seconds of output written so far
        marker: "continue" or "end"
    """

    step: str
    out_time: float
    marker: str = "continue"


ProgressSink = Callable[[ProgressEvent], None]


def _parse_clock(value: str) -> Optional[float]:
    """Parse HH:MM:SS.micro into seconds; negative or malformed values are None."""
    if value.startswith("-"):
        return None
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes = int(parts[0]), int(parts[1])
        seconds = float(parts[2])
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


class ProgressParser:
    """
    Line parser for ffmpeg's -progress key=value stream.

    Emits a ProgressEvent for every new, larger out_time and once for
    progress=end. Unknown keys and "N/A" values are ignored.
    """

    def __init__(self, step: str):
        self.step = step
        self.out_time: Optional[float] = None
        self.ended = False

    def _time_from(self, key: str, value: str) -> Optional[float]:
        if value in ("", "N/A"):
            return None
        if key == "out_time":
            return _parse_clock(value)
        # ffmpeg reports out_time_ms in microseconds as well
        try:
            micros = int(value)
        except ValueError:
            return None
        return micros / 1_000_000 if micros >= 0 else None

    def feed_line(self, line: str) -> Optional[ProgressEvent]:
        """
        Consume one line of the progress stream.

        Returns:
            ProgressEvent if the line advanced progress or ended it, else None
        """
        key, sep, value = line.strip().partition("=")
        if not sep:
            return None
        key, value = key.strip(), value.strip()

        if key in ("out_time_us", "out_time_ms", "out_time"):
            seconds = self._time_from(key, value)
            if seconds is None:
                return None
            if self.out_time is None or seconds > self.out_time:
                self.out_time = seconds
                return ProgressEvent(self.step, seconds, "continue")
            return None

        if key == "progress" and value == "end" and not self.ended:
            self.ended = True
            return ProgressEvent(self.step, self.out_time or 0.0, "end")

        return None


class _Tail:
    """Keeps the last max_chars characters written to it."""

    def __init__(self, max_chars: int = TAIL_CHARS):
        self.max_chars = max_chars
        self._text = ""

    def append(self, text: str) -> None:
        self._text += text
        if len(self._text) > 2 * self.max_chars:
            self._text = self._text[-self.max_chars:]

    def value(self) -> str:
        return self._text[-self.max_chars:]


class _RunState:
    def __init__(self, now: float):
        self.started = now
        self.last_activity = now
        self.last_advance = now
        self.tail = _Tail()


def _kill_process_group(process: asyncio.subprocess.Process, quiet: bool = False) -> None:
    """
    Kill the encoder and its entire process group with SIGKILL.

    The process was started with start_new_session=True, so its pid is the
    process group id.
    """
    try:
        if not quiet:
            logger.info(f"Killing encoder process group {process.pid}")
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        logger.debug("Process group already gone")
    except PermissionError as e:
        logger.warning(f"Error killing process group {process.pid}: {e}")
        if process.returncode is None:
            process.kill()


def _emit(sink: Optional[ProgressSink], event: ProgressEvent) -> None:
    if sink is None:
        return
    try:
        sink(event)
    except Exception as e:
        logger.warning(f"Progress sink failed for step {event.step}: {e}")


class EncoderRunner:
    """
    Runs one Step at a time under hard timeout, inactivity and stall watchdogs.

    Args:
        timeout: Hard wall-clock limit per step in seconds
        inactivity: Window without output (or without progress) before a kill
        watchdog_interval: How often the limits are checked
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        timeout: float = 20 * 60,
        inactivity: float = 90,
        watchdog_interval: float = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self.inactivity = inactivity
        self.watchdog_interval = watchdog_interval
        self._clock = clock

    @classmethod
    def from_settings(cls, settings) -> "EncoderRunner":
        return cls(
            timeout=settings.encoder_timeout_seconds,
            inactivity=settings.encoder_inactivity_seconds,
            watchdog_interval=settings.encoder_watchdog_interval_seconds,
        )

    async def run(self, step: Step, on_progress: Optional[ProgressSink] = None) -> None:
        """
        Run a step to completion.

        Args:
            step: Step to run
            on_progress: Called with each ProgressEvent of a progress-emitting step

        Raises:
            FFmpegTimeout: Hard timeout expired
            FFmpegInactive: No output for the inactivity window
            FFmpegStalled: out_time did not advance for the inactivity window
            FFmpegError: Non-zero exit or spawn failure
        """
        state = _RunState(self._clock())
        parser = ProgressParser(step.name) if step.emits_progress else None

        logger.info(f"Starting step {step.name}")
        logger.debug(f"Step argv: {step.argv}")

        try:
            process = await asyncio.create_subprocess_exec(
                *step.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise FFmpegError(
                f"Encoder step '{step.name}' could not be started", tail=str(e)
            ) from e

        readers = [
            asyncio.create_task(self._read_progress(process.stdout, state, parser, on_progress)),
            asyncio.create_task(self._read_diagnostics(process.stderr, state, step.name)),
        ]
        waiter = asyncio.create_task(process.wait())
        watchdog = asyncio.create_task(self._watch(process, step, state))

        try:
            done, _ = await asyncio.wait(
                {waiter, watchdog}, return_when=asyncio.FIRST_COMPLETED
            )

            if watchdog in done:
                error = watchdog.result()
                await waiter
                await asyncio.gather(*readers, return_exceptions=True)
                error.tail = state.tail.value()
                logger.error(f"{error.message}\n{error.tail}")
                raise error

            # Leftover children may still hold the pipes open
            _kill_process_group(process, quiet=True)
            await asyncio.gather(*readers, return_exceptions=True)
            returncode = waiter.result()

        except asyncio.CancelledError:
            logger.warning(f"Step {step.name} cancelled, killing encoder")
            _kill_process_group(process)
            raise

        finally:
            for task in (*readers, waiter, watchdog):
                if not task.done():
                    task.cancel()
            if process.returncode is None:
                _kill_process_group(process)
                await process.wait()
            await asyncio.gather(*readers, waiter, watchdog, return_exceptions=True)

        elapsed = self._clock() - state.started
        if returncode != 0:
            tail = state.tail.value()
            logger.error(f"Step {step.name} failed with exit code {returncode}\n{tail}")
            raise FFmpegError(
                f"Encoder step '{step.name}' failed with exit code {returncode}", tail=tail
            )

        logger.info(f"Step {step.name} completed in {elapsed:.1f}s")

    async def _watch(self, process, step: Step, state: _RunState) -> FFmpegError:
        """Check the limits until one is exceeded; kill the group and return the error."""
        while True:
            await asyncio.sleep(self.watchdog_interval)
            now = self._clock()

            if now - state.started > self.timeout:
                error: FFmpegError = FFmpegTimeout(
                    f"Encoder step '{step.name}' exceeded {self.timeout:g}s"
                )
            elif now - state.last_activity > self.inactivity:
                error = FFmpegInactive(
                    f"Encoder step '{step.name}' produced no output for {self.inactivity:g}s"
                )
            elif step.emits_progress and now - state.last_advance > self.inactivity:
                error = FFmpegStalled(
                    f"Encoder step '{step.name}' made no progress for {self.inactivity:g}s"
                )
            else:
                continue

            logger.warning(f"Watchdog fired for step {step.name}: {error.code}")
            _kill_process_group(process)
            return error

    async def _read_progress(
        self,
        stream: asyncio.StreamReader,
        state: _RunState,
        parser: Optional[ProgressParser],
        on_progress: Optional[ProgressSink],
    ) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            state.last_activity = self._clock()
            if parser is None:
                continue
            event = parser.feed_line(line.decode("utf-8", errors="replace"))
            if event is None:
                continue
            if event.marker == "continue":
                state.last_advance = state.last_activity
            _emit(on_progress, event)

    async def _read_diagnostics(
        self, stream: asyncio.StreamReader, state: _RunState, step_name: str
    ) -> None:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            state.last_activity = self._clock()
            text = chunk.decode("utf-8", errors="replace")
            state.tail.append(text)
            if logger.isEnabledFor(logging.DEBUG):
                for line in text.splitlines():
                    if line.strip():
                        logger.debug(f"[{step_name}] {line}")


async def probe(argv: List[str], timeout: float = 30) -> str:
    """
    Run a short command (ffprobe) and return its stdout.

    Raises:
        FFmpegTimeout: If the command does not finish within timeout
        FFmpegError: If it cannot be started or exits non-zero
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        raise FFmpegError(f"Could not start {os.path.basename(argv[0])}", tail=str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill_process_group(process)
        await process.wait()
        raise FFmpegTimeout(f"{os.path.basename(argv[0])} exceeded {timeout:g}s")
    except asyncio.CancelledError:
        _kill_process_group(process)
        raise

    if process.returncode != 0:
        tail = stderr.decode("utf-8", errors="replace")[-TAIL_CHARS:]
        raise FFmpegError(
            f"{os.path.basename(argv[0])} failed with exit code {process.returncode}",
            tail=tail,
        )
    return stdout.decode("utf-8", errors="replace")


def validate_plan(plan: RenderPlan) -> None:
    """
    Reject plans that cannot be executed.

    Raises:
        PlanError: If the plan has no steps or a step lacks program, args or output
    """
    if not plan.steps:
        raise PlanError("Render plan has no steps")
    for index, step in enumerate(plan.steps):
        if not step.name or not step.program or not step.args or not step.output_path:
            raise PlanError(f"Render plan step {index} is incomplete")
    if not plan.final_output:
        raise PlanError("Render plan has no final output")


async def execute_plan(
    plan: RenderPlan,
    runner: EncoderRunner,
    on_progress: Optional[ProgressSink] = None,
    on_step: Optional[Callable[[int, Step], None]] = None,
) -> str:
    """
    Run every step of a plan strictly in order.

    The first failing step aborts the plan and its error propagates
    unchanged. Progress events are forwarded to on_progress tagged with the
    step that produced them; on_step is told (index, step) before each step.

    Returns:
        str: plan.final_output
    """
    validate_plan(plan)

    for index, step in enumerate(plan.steps):
        logger.info(f"Plan step {index + 1}/{len(plan.steps)}: {step.name}")
        if on_step is not None:
            try:
                on_step(index, step)
            except Exception as e:
                logger.warning(f"Step listener failed for {step.name}: {e}")
        await runner.run(step, on_progress=on_progress)

    return plan.final_output


def validate_ffmpeg_available(binary: str = "ffmpeg") -> bool:
    """
    Check if FFmpeg is available and working.

    Returns:
        True if FFmpeg is available, False otherwise
    """
    try:
        result = subprocess.run(
            [binary, "-version"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"FFmpeg not available: {e}")
        return False
