"""
Worker loops for executing jobs.

A Worker repeatedly claims the oldest eligible job, runs its command and
records the outcome. A WorkerPool runs several workers as asyncio tasks that
share one stop token.
"""

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable

from queuectl.config import get_settings
from queuectl.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB, SPAN_RECORD_OUTCOME
from queuectl.db.connection import Database
from queuectl.db.models import Job
from queuectl.db.repository import JobRepository
from queuectl.exceptions import StoreUnavailable
from queuectl.observability.logging import bind_context, setup_logging
from queuectl.observability.metrics import MetricsCollector, get_metrics
from queuectl.observability.tracing import get_tracer, instrument_sqlalchemy
from queuectl.types.job import Outcome
from queuectl.worker.executor import CommandExecutor

logger = logging.getLogger(__name__)


def default_worker_id() -> str:
    return f"{os.uname().nodename}-{os.getpid()}"


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claims through the repository's conditional update
    - Retry and dead-letter handling via recorded outcomes
    - Cooperative shutdown through a shared asyncio.Event

    A claimed job always runs to completion (or to its hard timeout) and has
    its outcome recorded before the stop token is checked again.
    """

    def __init__(
        self,
        database: Database,
        *,
        stop_event: asyncio.Event,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        backoff_base: int | None = None,
        executor: CommandExecutor | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the worker.

        Args:
            database: The job store.
            stop_event: Token that ends the loop once set.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            poll_interval: Seconds to wait when no job is eligible.
            backoff_base: Multiplier for retry backoff.
            executor: Command executor. Built from settings if not provided.
            metrics: Metrics collector. Defaults to the global collector.
            clock: Source of epoch seconds, injectable for tests.
        """
        settings = database.settings

        self.worker_id = worker_id or default_worker_id()
        if poll_interval is None:
            poll_interval = settings.worker_poll_interval_seconds
        if backoff_base is None:
            backoff_base = settings.backoff_base

        self.poll_interval = poll_interval
        self.backoff_base = backoff_base
        self.executor = executor or CommandExecutor(
            timeout_seconds=settings.job_timeout_seconds,
            max_error_length=settings.max_error_length,
        )

        self._database = database
        self._stop_event = stop_event
        self._metrics = metrics or get_metrics()
        self._clock = clock

    async def run(self) -> None:
        """Run the polling loop until the stop token is set."""
        # Each worker runs in its own task, so this binding stays task-local
        bind_context(worker_id=self.worker_id)
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "poll_interval": self.poll_interval},
        )

        while not self._stop_event.is_set():
            try:
                processed = await self.run_once()
            except StoreUnavailable as e:
                logger.warning(
                    f"Job store unavailable, backing off: {e}",
                    extra={"worker_id": self.worker_id},
                )
                processed = False
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                processed = False

            if not processed:
                await self._idle()

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def run_once(self) -> bool:
        """
        Perform one claim, execute and record cycle.

        Returns:
            True if a job was processed, False if nothing was eligible.
        """
        job = await self._claim()
        if job is None:
            return False

        logger.info(
            "Executing job",
            extra={
                "worker_id": self.worker_id,
                "job_id": job.id,
                "command": job.command,
                "attempts": job.attempts,
            },
        )

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("attempts", job.attempts)
            outcome = await self.executor.execute(job)

        await self._record(job.id, outcome)
        return True

    async def _claim(self) -> Job | None:
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)
            async with self._database.session() as session:
                repo = JobRepository(session, clock=self._clock)
                job = await repo.claim_next_pending()

        if job is not None:
            self._metrics.record_job_claimed(self.worker_id)
        return job

    async def _record(self, job_id: str, outcome: Outcome) -> None:
        with get_tracer().start_as_current_span(SPAN_RECORD_OUTCOME) as span:
            span.set_attribute("job_id", job_id)
            async with self._database.session() as session:
                repo = JobRepository(
                    session,
                    backoff_base=self.backoff_base,
                    clock=self._clock,
                )
                updated = await repo.record_outcome(job_id, outcome)

        if updated is None:
            return

        self._metrics.record_outcome(updated.state.value, outcome.duration_seconds)
        logger.info(
            f"Job {updated.state.value}",
            extra={
                "worker_id": self.worker_id,
                "job_id": job_id,
                "attempts": updated.attempts,
            },
        )

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
        except TimeoutError:
            pass


class WorkerPool:
    """
    A set of workers running as tracked asyncio tasks.

    All workers share one stop token, so stop() asks every loop to finish
    its current job and exit. join() waits for them to do so.

    Usage:
        async with WorkerPool(database, count=4) as pool:
            await pool.wait_stopped()
    """

    def __init__(
        self,
        database: Database,
        *,
        count: int | None = None,
        poll_interval: float | None = None,
        backoff_base: int | None = None,
        executor: CommandExecutor | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
        name_prefix: str | None = None,
    ):
        settings = database.settings
        if count is None:
            count = settings.worker_count
        if count < 1:
            raise ValueError("Worker count must be at least 1")

        prefix = name_prefix or default_worker_id()
        self.stop_event = asyncio.Event()
        self.workers = [
            Worker(
                database,
                stop_event=self.stop_event,
                worker_id=f"{prefix}-{i}",
                poll_interval=poll_interval,
                backoff_base=backoff_base,
                executor=executor,
                metrics=metrics,
                clock=clock,
            )
            for i in range(1, count + 1)
        ]
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        """Spawn one task per worker."""
        if self._tasks:
            raise RuntimeError("Worker pool already started")

        logger.info(f"Starting {len(self.workers)} worker(s)")
        self._tasks = [
            asyncio.create_task(worker.run(), name=worker.worker_id)
            for worker in self.workers
        ]

    def stop(self) -> None:
        """Ask every worker to stop after its current job."""
        if not self.stop_event.is_set():
            logger.info("Stopping workers")
        self.stop_event.set()

    async def join(self) -> None:
        """Wait for every worker task to finish."""
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Worker exited with error: {result!r}",
                    extra={"worker_id": task.get_name()},
                )

    async def wait_stopped(self) -> None:
        """Block until stop() has been called."""
        await self.stop_event.wait()

    async def __aenter__(self) -> "WorkerPool":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop()
        await self.join()


async def run_async(
    count: int | None = None,
    poll_interval: float | None = None,
    backoff_base: int | None = None,
    configure_logging: bool = True,
) -> None:
    """
    Run a worker pool until SIGINT or SIGTERM.

    Pass configure_logging=False when the caller has already set up logging.
    """
    settings = get_settings()
    if configure_logging:
        setup_logging()

    if settings.metrics_port:
        get_metrics().serve(settings.metrics_port)
        logger.info(f"Serving metrics on port {settings.metrics_port}")

    database = Database(settings)
    if settings.otel_exporter_otlp_endpoint:
        instrument_sqlalchemy(database.engine.sync_engine)
    await database.init()

    pool = WorkerPool(
        database,
        count=count,
        poll_interval=poll_interval,
        backoff_base=backoff_base,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, pool.stop)

    try:
        async with pool:
            await pool.wait_stopped()
    finally:
        await database.close()


def run() -> None:
    """Run the worker pool."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
