"""
Integration tests for job store outages.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from queuectl.config import Settings
from queuectl.db.connection import Database
from queuectl.db.repository import JobRepository
from queuectl.exceptions import StoreUnavailable
from queuectl.observability.metrics import MetricsCollector
from queuectl.reaper.main import Reaper
from queuectl.worker.main import Worker


def locked_error() -> OperationalError:
    return OperationalError(
        "UPDATE jobs", {}, sqlite3.OperationalError("database is locked")
    )


class TestDatabaseErrors:
    """Tests for the OperationalError to StoreUnavailable mapping."""

    @pytest_asyncio.fixture
    async def unreachable(self, tmp_path: Path):
        settings = Settings(
            database_url=f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'queue.db'}"
        )
        database = Database(settings)
        yield database
        await database.close()

    async def test_init_unreachable_store(self, unreachable: Database):
        """Test that init() on a path that cannot be opened raises StoreUnavailable."""
        with pytest.raises(StoreUnavailable):
            await unreachable.init()

    async def test_session_unreachable_store(self, unreachable: Database):
        """Test that a query against an unreachable store raises StoreUnavailable."""
        with pytest.raises(StoreUnavailable):
            async with unreachable.session() as session:
                await session.execute(text("SELECT 1"))

    async def test_session_maps_operational_error(self, database: Database):
        """Test that an OperationalError inside a session is re-raised as StoreUnavailable."""
        with pytest.raises(StoreUnavailable, match="database is locked"):
            async with database.session():
                raise locked_error()

    async def test_session_keeps_other_errors(self, database: Database):
        """Test that unrelated errors pass through unchanged."""
        with pytest.raises(ValueError):
            async with database.session():
                raise ValueError("boom")


class TestLoopsBackOff:
    """Tests that worker and reaper loops survive an unavailable store."""

    async def test_worker_keeps_polling(
        self,
        database: Database,
        metrics: MetricsCollector,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ):
        """Test that a worker logs the outage, waits and tries again."""
        calls = 0

        async def failing_claim(self):
            nonlocal calls
            calls += 1
            raise locked_error()

        monkeypatch.setattr(JobRepository, "claim_next_pending", failing_claim)
        stop_event = asyncio.Event()
        worker = Worker(
            database,
            stop_event=stop_event,
            worker_id="outage-worker",
            poll_interval=0.01,
            metrics=metrics,
        )

        with caplog.at_level(logging.WARNING, logger="queuectl.worker.main"):
            task = asyncio.create_task(worker.run())

            async def until_retried() -> None:
                while calls < 3:
                    await asyncio.sleep(0.01)

            await asyncio.wait_for(until_retried(), timeout=5)
            assert not task.done()

            stop_event.set()
            await asyncio.wait_for(task, timeout=5)

        assert task.exception() is None
        assert "Job store unavailable" in caplog.text

    async def test_worker_waits_between_attempts(
        self,
        database: Database,
        metrics: MetricsCollector,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that a failed claim is followed by one poll interval of idling."""
        calls = 0

        async def failing_claim(self):
            nonlocal calls
            calls += 1
            raise locked_error()

        monkeypatch.setattr(JobRepository, "claim_next_pending", failing_claim)
        stop_event = asyncio.Event()
        worker = Worker(
            database,
            stop_event=stop_event,
            poll_interval=1.0,
            metrics=metrics,
        )

        task = asyncio.create_task(worker.run())
        await asyncio.sleep(0.1)
        stop_event.set()
        await asyncio.wait_for(task, timeout=5)

        assert calls == 1

    async def test_reaper_keeps_running(
        self,
        database: Database,
        metrics: MetricsCollector,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that the reaper loop survives a failing recovery pass."""
        calls = 0

        async def failing_recover(self, older_than_seconds):
            nonlocal calls
            calls += 1
            raise locked_error()

        monkeypatch.setattr(JobRepository, "recover_stale_jobs", failing_recover)
        reaper = Reaper(database, interval_seconds=0.01, metrics=metrics)

        task = asyncio.create_task(reaper.start())

        async def until_retried() -> None:
            while calls < 3:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(until_retried(), timeout=5)
        assert not task.done()

        reaper.stop()
        await asyncio.wait_for(task, timeout=5)
        assert task.exception() is None
