"""
Job repository for database operations.
Implements the core data access patterns of the job lifecycle.
"""

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import ALL_STATES, DEFAULT_BACKOFF_BASE, JobState
from queuectl.db.models import Job
from queuectl.exceptions import DuplicateIdError, NotFoundError
from queuectl.types.job import Completed, JobSpec, Outcome, RetryableFailure
from queuectl.worker.backoff import next_eligible_time

logger = logging.getLogger(__name__)

_SKIP_LOCKED_DIALECTS = frozenset({"postgresql"})


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission with duplicate id detection
    - Claiming the oldest eligible job with a single conditional UPDATE
    - Outcome transitions (complete / retry with backoff / dead-letter)
    - Manual requeue and stale claim recovery

    One repository wraps one session; the session's transaction is the
    unit of atomicity.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        backoff_base: int = DEFAULT_BACKOFF_BASE,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            backoff_base: Multiplier for exponential retry backoff.
            clock: Source of epoch seconds, injectable for tests.
        """
        self._session = session
        self._backoff_base = backoff_base
        self._clock = clock

    def _now(self) -> tuple[float, datetime]:
        ts = self._clock()
        return ts, datetime.fromtimestamp(ts, UTC)

    @property
    def _supports_skip_locked(self) -> bool:
        bind = self._session.bind
        return bind is not None and bind.dialect.name in _SKIP_LOCKED_DIALECTS

    async def create_job(self, spec: JobSpec, default_max_retries: int = 3) -> Job:
        """
        Insert a new pending job.

        Args:
            spec: The job to create.
            default_max_retries: Used when the spec does not set max_retries.

        Returns:
            The created Job.

        Raises:
            DuplicateIdError: If a job with the same id already exists.
        """
        _, now = self._now()
        job = Job(
            id=spec.id or str(uuid.uuid4()),
            command=spec.command,
            state=JobState.PENDING,
            attempts=0,
            max_retries=(
                spec.max_retries if spec.max_retries is not None else default_max_retries
            ),
            created_at=now,
            updated_at=now,
            run_after=0,
            last_error=None,
        )
        self._session.add(job)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise DuplicateIdError(job.id) from e

        logger.info(
            "Created new job",
            extra={"job_id": job.id, "max_retries": job.max_retries},
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(self, state: JobState | None = None) -> Sequence[Job]:
        """
        List jobs, newest first, with an optional state filter.

        Args:
            state: Optional state filter.

        Returns:
            The matching jobs.
        """
        stmt = select(Job).order_by(Job.created_at.desc(), Job.id.desc())
        if state is not None:
            stmt = stmt.where(Job.state == state)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_by_state(self) -> dict[str, int]:
        """
        Get job counts by state.

        Returns:
            Dictionary of state -> count with every state present.
        """
        stmt = select(Job.state, func.count()).group_by(Job.state)
        result = await self._session.execute(stmt)
        counts = {state.value: 0 for state in ALL_STATES}
        for state, count in result.all():
            counts[JobState(state).value] = count
        return counts

    async def claim_next_pending(self) -> Job | None:
        """
        Atomically claim the oldest eligible pending job.

        Selection and transition happen in one UPDATE statement whose
        WHERE clause re-checks the pending state, so two racing callers can
        never both receive the same row. On PostgreSQL the candidate
        subquery additionally uses FOR UPDATE SKIP LOCKED.

        Returns:
            The claimed job, now PROCESSING, or None if nothing is eligible.
        """
        ts, now = self._now()

        candidate = (
            select(Job.id)
            .where(Job.state == JobState.PENDING, Job.run_after <= int(ts))
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(1)
        )
        if self._supports_skip_locked:
            candidate = candidate.with_for_update(skip_locked=True)

        stmt = (
            update(Job)
            .where(
                Job.id == candidate.scalar_subquery(),
                Job.state == JobState.PENDING,
            )
            .values(state=JobState.PROCESSING, updated_at=now)
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Claimed job",
                extra={"job_id": job.id, "attempts": job.attempts},
            )
        return job

    async def record_outcome(self, job_id: str, outcome: Outcome) -> Job | None:
        """
        Apply the lifecycle transition for a finished execution.

        Completed moves the job to COMPLETED. RetryableFailure increments
        attempts and either reschedules the job with exponential backoff or,
        once attempts exceed max_retries, moves it to DEAD.

        Args:
            job_id: The job id.
            outcome: Result of executing the job's command.

        Returns:
            Updated Job or None if the job is not currently PROCESSING.
        """
        stmt = (
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        if self._supports_skip_locked:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is None or job.state != JobState.PROCESSING:
            logger.warning(
                "Outcome for a job that is not processing",
                extra={
                    "job_id": job_id,
                    "state": job.state.value if job else None,
                },
            )
            return None

        ts, now = self._now()
        job.updated_at = now

        if isinstance(outcome, Completed):
            job.state = JobState.COMPLETED
            logger.info("Job completed", extra={"job_id": job_id})
        elif isinstance(outcome, RetryableFailure):
            job.attempts += 1
            job.last_error = outcome.message
            if job.attempts > job.max_retries:
                job.state = JobState.DEAD
                logger.warning(
                    f"Job moved to dead-letter after {job.attempts} attempts",
                    extra={"job_id": job_id, "error": outcome.message},
                )
            else:
                job.state = JobState.PENDING
                job.run_after = max(
                    job.run_after,
                    next_eligible_time(self._backoff_base, job.attempts, now=ts),
                )
                logger.info(
                    "Job scheduled for retry",
                    extra={
                        "job_id": job_id,
                        "attempts": job.attempts,
                        "run_after": job.run_after,
                    },
                )
        else:
            raise TypeError(f"Unknown outcome type: {type(outcome).__name__}")

        await self._session.flush()
        return job

    async def requeue(self, job_id: str) -> Job:
        """
        Reset a job to PENDING with a fresh retry budget.

        Applies regardless of the current state; used to recover
        dead-lettered jobs.

        Args:
            job_id: The job id.

        Returns:
            The requeued Job.

        Raises:
            NotFoundError: If the job does not exist.
        """
        _, now = self._now()
        stmt = (
            update(Job)
            .where(Job.id == job_id)
            .values(
                state=JobState.PENDING,
                attempts=0,
                last_error=None,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        if job is None:
            raise NotFoundError(job_id)

        logger.info("Job requeued", extra={"job_id": job_id})
        return job

    async def recover_stale_jobs(self, older_than_seconds: float) -> list[str]:
        """
        Return jobs stuck in PROCESSING to PENDING.

        A claim whose updated_at is older than the executor's hard timeout
        (plus grace) can only belong to a worker that died. Attempts are left
        untouched because the command never reported a result.

        Args:
            older_than_seconds: Minimum age of the claim.

        Returns:
            Ids of the recovered jobs.
        """
        _, now = self._now()
        cutoff = now - timedelta(seconds=older_than_seconds)

        stmt = (
            update(Job)
            .where(
                Job.state == JobState.PROCESSING,
                Job.updated_at < cutoff,
            )
            .values(state=JobState.PENDING, updated_at=now)
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        recovered = list(result.scalars().all())

        if recovered:
            logger.warning(
                f"Recovered {len(recovered)} stale jobs",
                extra={"job_ids": recovered},
            )
        return recovered
