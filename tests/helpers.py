"""
Test helpers shared by unit and integration tests.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from urllib.parse import unquote

import httpx

from eventreel.core.storage import LocalObjectStorage
from eventreel.tasks.render_plan.plan_builder import Step


class FakeClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def put_object(storage: LocalObjectStorage, bucket: str, path: str, data: bytes) -> Path:
    """Write an object straight into the storage root."""
    target = storage.resolve(bucket, path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    return target


def python_step(name: str, script: str, output_path: str = "out.bin", emits_progress: bool = True) -> Step:
    """A Step running script with the current interpreter."""
    return Step(
        name=name,
        program=sys.executable,
        args=("-c", script),
        output_path=output_path,
        emits_progress=emits_progress,
    )


def storage_transport(storage: LocalObjectStorage, fail_paths=()) -> httpx.MockTransport:
    """MockTransport serving /storage/{bucket}/{path} from the local storage."""

    def handler(request: httpx.Request) -> httpx.Response:
        _, _, bucket, key = request.url.path.split("/", 3)
        key = unquote(key)
        if key in fail_paths:
            return httpx.Response(500)
        try:
            return httpx.Response(200, content=storage.open_path(bucket, key).read_bytes())
        except FileNotFoundError:
            return httpx.Response(404)

    return httpx.MockTransport(handler)
