"""
Long-running Sentinel process: timers, notification worker and graceful shutdown.
"""

import asyncio
import logging
import signal
from typing import Optional

from dotenv import load_dotenv

from .config import load_config
from .service import SentinelService


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    # APScheduler logs every job execution at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


async def serve(config_path: Optional[str] = None) -> None:
    """Run the scheduler and the auto-publish timer until SIGINT/SIGTERM."""
    config = load_config(config_path)
    service = SentinelService(config)

    stop_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        asyncio.get_running_loop().add_signal_handler(sig, signal_handler)

    try:
        await service.start()
        runtime = service.runtime()
        logger.info(
            f"Sentinel is {runtime['status']}: {runtime['sourcesCount']} sources, "
            f"every {runtime['frequencyMs'] // 1000}s, max {runtime['maxPerRun']} per run, "
            f"{'persisting' if runtime['autoPersist'] else 'preview only'}"
        )
        if config.auto_publish.enabled:
            schedule = config.auto_publish.cron or f"every {config.auto_publish.interval_minutes} min"
            logger.info(f"Auto-publish scheduled ({schedule})")

        await stop_event.wait()
    finally:
        logger.info("Shutting down...")
        service.runner.stop()
        await service.close()
        logger.info("Shutdown complete")


def main() -> None:
    load_dotenv()
    setup_logging()
    asyncio.run(serve())
