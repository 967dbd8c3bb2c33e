"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.config import Settings, get_settings
from queuectl.db.connection import Database
from queuectl.db.repository import JobRepository
from queuectl.observability.metrics import MetricsCollector
from queuectl.types.job import Completed, RetryableFailure


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubExecutor:
    """Executor that returns canned outcomes and records what it ran."""

    def __init__(self, fail_commands: set[str] | None = None):
        self.fail_commands = fail_commands or set()
        self.executed: list[str] = []

    async def execute(self, job):
        self.executed.append(job.id)
        if job.command in self.fail_commands:
            return RetryableFailure(message=f"{job.command} failed", exit_code=1)
        return Completed(duration_seconds=0.0)


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    """Path of a fresh SQLite file for one test."""
    return tmp_path / "queuectl-test.db"


@pytest.fixture
def test_settings(database_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{database_path}",
        database_busy_timeout_seconds=30.0,
        log_level="DEBUG",
        log_format="console",
        worker_poll_interval_seconds=0.01,
        job_timeout_seconds=5,
        reaper_interval_seconds=0.05,
        stale_job_grace_seconds=1,
    )


@pytest.fixture
def env_database(database_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[str]:
    """Point the cached settings at the test database via the environment."""
    url = f"sqlite+aiosqlite:///{database_path}"
    monkeypatch.setenv("QUEUECTL_DATABASE_URL", url)
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database]:
    """Create an initialized database on a temporary SQLite file."""
    db = Database(test_settings)
    await db.init()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with database.session() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo(db_session: AsyncSession, clock: FakeClock) -> JobRepository:
    """Create a repository instance driven by the fake clock."""
    return JobRepository(db_session, backoff_base=2, clock=clock)


@pytest.fixture
def stub_executor() -> StubExecutor:
    return StubExecutor(fail_commands={"false"})


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry: CollectorRegistry) -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=metrics_registry)
