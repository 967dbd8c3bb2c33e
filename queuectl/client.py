"""
Programmatic entry point to the job queue.

QueueClient wraps a Database and exposes enqueue, inspection, requeue and
worker management. The CLI is a thin layer over this class.
"""

import logging
from typing import Any

from queuectl.config import Settings, get_settings
from queuectl.constants import SPAN_ENQUEUE_JOB, JobState
from queuectl.db.connection import Database
from queuectl.db.repository import JobRepository
from queuectl.exceptions import NotFoundError
from queuectl.observability.metrics import MetricsCollector, get_metrics
from queuectl.observability.tracing import get_tracer
from queuectl.reaper.main import Reaper
from queuectl.types.job import JobRecord, JobSpec
from queuectl.worker.main import WorkerPool

logger = logging.getLogger(__name__)


class QueueClient:
    """
    Facade over the job store.

    The database is created and initialized on first use unless one is
    passed in. A client that created its own database closes it in close().

    Usage:
        async with QueueClient() as client:
            job_id = await client.enqueue({"command": "echo hi"})
    """

    def __init__(
        self,
        database: Database | None = None,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.settings = settings or (database.settings if database else get_settings())
        self._database = database
        self._owns_database = database is None
        self._initialized = False
        self._metrics = metrics or get_metrics()

    async def _db(self) -> Database:
        if self._database is None:
            self._database = Database(self.settings)
        if not self._initialized:
            await self._database.init()
            self._initialized = True
        return self._database

    async def enqueue(self, spec: JobSpec | dict[str, Any]) -> str:
        """
        Add a new pending job.

        Args:
            spec: The job, as a JobSpec or a plain dict with the same fields.

        Returns:
            The job id, generated when the spec has none.

        Raises:
            pydantic.ValidationError: If the dict is not a valid job.
            DuplicateIdError: If the id is already taken.
        """
        if not isinstance(spec, JobSpec):
            spec = JobSpec.model_validate(spec)

        database = await self._db()
        with get_tracer().start_as_current_span(SPAN_ENQUEUE_JOB) as span:
            async with database.session() as session:
                repo = JobRepository(session)
                job = await repo.create_job(
                    spec, default_max_retries=self.settings.default_max_retries
                )
                job_id = job.id
            span.set_attribute("job_id", job_id)

        self._metrics.record_job_enqueued()
        return job_id

    async def list_jobs(self, state: JobState | None = None) -> list[JobRecord]:
        """List jobs, newest first, optionally filtered by state."""
        database = await self._db()
        async with database.session() as session:
            jobs = await JobRepository(session).list_jobs(state)
            return [JobRecord.model_validate(job) for job in jobs]

    async def list_dead(self) -> list[JobRecord]:
        """List the dead-letter queue."""
        return await self.list_jobs(JobState.DEAD)

    async def get_job(self, job_id: str) -> JobRecord | None:
        database = await self._db()
        async with database.session() as session:
            job = await JobRepository(session).get_job(job_id)
            return JobRecord.model_validate(job) if job else None

    async def stats(self) -> dict[str, int]:
        """
        Count jobs per state.

        Returns:
            Mapping of every state name to its count, zero when absent.
        """
        database = await self._db()
        async with database.session() as session:
            counts = await JobRepository(session).count_by_state()

        self._metrics.update_queue_depth(counts)
        return counts

    async def requeue(self, job_id: str) -> None:
        """
        Reset a job to pending with attempts cleared.

        Raises:
            NotFoundError: If the job does not exist.
        """
        database = await self._db()
        async with database.session() as session:
            await JobRepository(session).requeue(job_id)

    async def retry_dead(self, job_id: str) -> None:
        """
        Requeue a dead-lettered job.

        Raises:
            NotFoundError: If no dead job has this id.
        """
        job = await self.get_job(job_id)
        if job is None or job.state != JobState.DEAD:
            raise NotFoundError(job_id)
        await self.requeue(job_id)

    async def recover_stale_jobs(self) -> list[str]:
        """Return orphaned processing jobs to the queue once."""
        database = await self._db()
        return await Reaper(database, metrics=self._metrics).run_once()

    async def start_workers(
        self,
        count: int | None = None,
        poll_interval_ms: int | None = None,
        backoff_base: int | None = None,
    ) -> WorkerPool:
        """
        Start a pool of workers in the running event loop.

        Args:
            count: Number of workers.
            poll_interval_ms: Idle wait between polls, in milliseconds.
            backoff_base: Multiplier for retry backoff.

        Returns:
            The started pool. Pass it to stop_all() to shut it down.
        """
        database = await self._db()
        pool = WorkerPool(
            database,
            count=count,
            poll_interval=(
                poll_interval_ms / 1000 if poll_interval_ms is not None else None
            ),
            backoff_base=backoff_base,
            metrics=self._metrics,
        )
        pool.start()
        return pool

    async def stop_all(self, pool: WorkerPool) -> None:
        """Stop a pool cooperatively and wait for its workers to exit."""
        pool.stop()
        await pool.join()

    async def close(self) -> None:
        if self._owns_database and self._database is not None:
            await self._database.close()
            self._database = None
            self._initialized = False

    async def __aenter__(self) -> "QueueClient":
        await self._db()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
