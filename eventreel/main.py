"""
EventReel Worker Entry Point

Starts the RQ worker that renders event videos.

Usage:
    python -m eventreel.main

Environment Variables:
    REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
    DATABASE_URL: Job store database URL
    ASSETS_DIR: Directory of the built-in intro/outro/watermark images
"""

import logging
import sys

from redis import Redis
from rq import Queue, Worker

from .core.config import get_settings
from .queues import ALL_QUEUES, get_redis_connection
from .tasks.assets import ensure_default_assets
from .tasks.ffmpeg_runner import validate_ffmpeg_available

# Configure logging
logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("eventreel.worker")


def create_worker(connection: Redis) -> Worker:
    """
    Create an RQ worker that listens to the EventReel queues.

    Args:
        connection: Redis connection instance

    Returns:
        Worker: Configured RQ worker instance
    """
    queues = [Queue(name, connection=connection) for name in ALL_QUEUES]
    return Worker(queues=queues, connection=connection)


def start_worker() -> None:
    """
    Check dependencies and run the RQ worker.

    This function blocks and runs until the worker is terminated.
    """
    settings = get_settings()
    logger.info("Starting EventReel worker...")

    try:
        connection = get_redis_connection()
        connection.ping()
        logger.info("Successfully connected to Redis")
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        sys.exit(1)

    if not validate_ffmpeg_available(settings.ffmpeg_binary):
        logger.error(f"{settings.ffmpeg_binary} is not available")
        sys.exit(1)

    ensure_default_assets(settings.assets_dir)

    logger.info(f"Listening on queues: {', '.join(ALL_QUEUES)}")
    worker = create_worker(connection)

    try:
        worker.work(with_scheduler=False)
    except KeyboardInterrupt:
        logger.info("Worker shutdown requested")

    logger.info("Worker stopped")


def main() -> None:
    """Main entry point for the worker module."""
    start_worker()


if __name__ == "__main__":
    main()
