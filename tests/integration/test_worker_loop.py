"""
Integration tests for worker functionality.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from queuectl.constants import JobState
from queuectl.db.connection import Database
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import MetricsCollector
from queuectl.types.job import JobSpec
from queuectl.worker.executor import CommandExecutor
from queuectl.worker.main import Worker, WorkerPool


async def enqueue(database: Database, clock, **fields) -> str:
    async with database.session() as session:
        job = await JobRepository(session, clock=clock).create_job(JobSpec(**fields))
        return job.id


async def fetch(database: Database, job_id: str):
    async with database.session() as session:
        return await JobRepository(session).get_job(job_id)


async def wait_for_state(database: Database, state: str, count: int, timeout: float = 10.0):
    async def poll() -> None:
        while True:
            async with database.session() as session:
                counts = await JobRepository(session).count_by_state()
            if counts[state] >= count:
                return
            await asyncio.sleep(0.02)

    await asyncio.wait_for(poll(), timeout)


class TestWorkerRunOnce:
    """Scenario tests driving one worker cycle at a time."""

    @pytest.fixture
    def make_worker(self, database: Database, clock, metrics: MetricsCollector):
        def factory(executor=None, backoff_base: int = 2) -> Worker:
            return Worker(
                database,
                stop_event=asyncio.Event(),
                worker_id="test-worker",
                poll_interval=0.01,
                backoff_base=backoff_base,
                executor=executor or CommandExecutor(timeout_seconds=5),
                metrics=metrics,
                clock=clock,
            )

        return factory

    async def test_empty_queue(self, make_worker):
        """Test that a cycle on an empty queue does nothing."""
        assert await make_worker().run_once() is False

    async def test_successful_command(self, database: Database, clock, make_worker):
        """Test that a job running `true` completes without using retries."""
        await enqueue(database, clock, id="ok", command="true", max_retries=2)

        assert await make_worker().run_once() is True

        job = await fetch(database, "ok")
        assert job.state == JobState.COMPLETED
        assert job.attempts == 0

    async def test_failing_command_retries_then_dies(
        self,
        database: Database,
        clock,
        make_worker,
    ):
        """Test that `false` is retried with backoff and then dead-lettered."""
        await enqueue(database, clock, id="bad", command="false", max_retries=1)
        worker = make_worker(backoff_base=2)
        start = clock.now

        assert await worker.run_once() is True
        job = await fetch(database, "bad")
        assert job.state == JobState.PENDING
        assert job.attempts == 1
        assert job.run_after == int(start) + 2
        assert "code 1" in job.last_error

        # Not eligible until the backoff elapses
        clock.advance(1)
        assert await worker.run_once() is False

        clock.advance(1)
        assert await worker.run_once() is True
        job = await fetch(database, "bad")
        assert job.state == JobState.DEAD
        assert job.attempts == 2

    async def test_outcome_metrics(
        self,
        database: Database,
        clock,
        make_worker,
        stub_executor,
        metrics_registry: CollectorRegistry,
    ):
        """Test that claims and outcomes are counted."""
        await enqueue(database, clock, id="ok", command="true")
        await make_worker(executor=stub_executor).run_once()

        claimed = metrics_registry.get_sample_value(
            "queuectl_jobs_claimed_total", {"worker_id": "test-worker"}
        )
        completed = metrics_registry.get_sample_value(
            "queuectl_job_outcomes_total", {"state": "completed"}
        )
        assert claimed == 1
        assert completed == 1


class TestConcurrentClaims:
    """Tests for claim exclusivity across sessions."""

    async def test_single_job_has_one_winner(self, database: Database, clock):
        """Test that racing claims for one job yield exactly one winner."""
        await enqueue(database, clock, id="only", command="true")

        async def claim():
            async with database.session() as session:
                job = await JobRepository(session, clock=clock).claim_next_pending()
                return job.id if job else None

        results = await asyncio.gather(*(claim() for _ in range(8)))

        assert [r for r in results if r is not None] == ["only"]

    async def test_pool_never_double_claims(
        self,
        database: Database,
        clock,
        metrics: MetricsCollector,
        stub_executor,
    ):
        """Test that K workers over M jobs execute each job exactly once."""
        job_count = 30
        for i in range(job_count):
            await enqueue(database, clock, id=f"job-{i:03d}", command="true")

        pool = WorkerPool(
            database,
            count=4,
            poll_interval=0.01,
            executor=stub_executor,
            metrics=metrics,
            clock=clock,
            name_prefix="pool",
        )

        async with pool:
            await wait_for_state(database, "completed", job_count)

        assert len(stub_executor.executed) == job_count
        assert len(set(stub_executor.executed)) == job_count


class TestWorkerPool:
    """Tests for pool lifecycle."""

    async def test_stop_and_join(self, database: Database, metrics: MetricsCollector):
        """Test that stop() ends every worker loop and join() returns."""
        pool = WorkerPool(database, count=3, poll_interval=0.01, metrics=metrics)
        pool.start()
        await asyncio.sleep(0.05)
        assert pool.running

        pool.stop()
        await asyncio.wait_for(pool.join(), timeout=5)

        assert not pool.running

    async def test_start_twice(self, database: Database, metrics: MetricsCollector):
        """Test that a pool cannot be started twice."""
        pool = WorkerPool(database, count=1, poll_interval=0.01, metrics=metrics)
        pool.start()
        try:
            with pytest.raises(RuntimeError):
                pool.start()
        finally:
            pool.stop()
            await pool.join()

    async def test_invalid_count(self, database: Database):
        """Test that a pool needs at least one worker."""
        with pytest.raises(ValueError):
            WorkerPool(database, count=-1)

    async def test_zero_count_is_not_defaulted(self, database: Database):
        """Test that count=0 is rejected rather than replaced by the configured count."""
        with pytest.raises(ValueError):
            WorkerPool(database, count=0)

    async def test_explicit_zero_options_are_kept(self, database: Database):
        """Test that zero poll interval is kept instead of falling back to settings."""
        pool = WorkerPool(database, count=2, poll_interval=0)

        assert len(pool.workers) == 2
        assert all(worker.poll_interval == 0 for worker in pool.workers)

    async def test_in_flight_job_finishes_before_stop(
        self,
        database: Database,
        clock,
        metrics: MetricsCollector,
    ):
        """Test that a stop request waits for the running command."""
        await enqueue(database, clock, id="slow", command="sleep 0.3")
        pool = WorkerPool(
            database,
            count=1,
            poll_interval=0.01,
            executor=CommandExecutor(timeout_seconds=5),
            metrics=metrics,
            clock=clock,
        )
        pool.start()
        await wait_for_state(database, "processing", 1)

        pool.stop()
        await asyncio.wait_for(pool.join(), timeout=5)

        job = await fetch(database, "slow")
        assert job.state == JobState.COMPLETED
