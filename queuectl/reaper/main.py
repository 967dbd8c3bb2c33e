"""
Reaper for recovering orphaned jobs.

A job stays in PROCESSING only while a worker is executing it, and no
execution outlives the executor's hard timeout. A PROCESSING job whose last
update is older than that timeout plus a grace period therefore belongs to
a worker that crashed, and the reaper returns it to the queue.
"""

import asyncio
import logging
import signal
import time
from collections.abc import Callable

from queuectl.config import get_settings
from queuectl.db.connection import Database
from queuectl.db.repository import JobRepository
from queuectl.exceptions import StoreUnavailable
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Periodic recovery of stale PROCESSING jobs.

    Runs periodically to:
    1. Find PROCESSING jobs not updated within the stale threshold
    2. Return them to PENDING without touching attempts
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        database: Database,
        *,
        stop_event: asyncio.Event | None = None,
        interval_seconds: float | None = None,
        stale_after_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the reaper.

        Args:
            database: The job store.
            stop_event: Token that ends the loop once set.
            interval_seconds: Seconds between reaper runs.
            stale_after_seconds: Claim age after which a job is recovered.
            metrics: Metrics collector. Defaults to the global collector.
            clock: Source of epoch seconds, injectable for tests.
        """
        settings = database.settings
        if interval_seconds is None:
            interval_seconds = settings.reaper_interval_seconds
        if stale_after_seconds is None:
            stale_after_seconds = settings.stale_job_after_seconds

        self.interval = interval_seconds
        self.stale_after = stale_after_seconds

        self._database = database
        self._stop_event = stop_event or asyncio.Event()
        self._metrics = metrics or get_metrics()
        self._clock = clock

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"stale_after": self.stale_after},
        )

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except StoreUnavailable as e:
                logger.warning(f"Job store unavailable, backing off: {e}")
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._stop_event.set()

    async def run_once(self) -> list[str]:
        """
        Run the reaper once (for testing or cron-style execution).

        Returns:
            Ids of the recovered jobs.
        """
        async with self._database.session() as session:
            repo = JobRepository(session, clock=self._clock)
            recovered = await repo.recover_stale_jobs(self.stale_after)

        if recovered:
            self._metrics.record_stale_recovered(len(recovered))
        return recovered


async def run_async(once: bool = False, configure_logging: bool = True) -> list[str]:
    """
    Run the reaper asynchronously.

    Args:
        once: Perform a single pass instead of looping until signalled.
        configure_logging: Set up logging. False when the caller already has.

    Returns:
        Ids recovered by the single pass, or an empty list when looping.
    """
    if configure_logging:
        setup_logging()
    database = Database(get_settings())
    await database.init()

    reaper = Reaper(database)

    try:
        if once:
            return await reaper.run_once()

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, reaper.stop)

        await reaper.start()
        return []
    finally:
        await database.close()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
