"""
SQLAlchemy database models.
Defines the jobs table.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from queuectl.constants import MAX_JOB_ID_LENGTH, JobState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp.

    SQLite stores datetimes without an offset, so values are normalized to
    UTC on the way in and tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing one shell command in the queue.

    This is the authoritative source of truth for job state.
    All lifecycle transitions go through JobRepository.

    Key constraints:
    - id is the primary key, so a duplicate enqueue fails at insert time
    - (state, run_after) is indexed for the claim lookup
    - created_at orders claims first-in first-out
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(
        String(MAX_JOB_ID_LENGTH),
        primary_key=True,
    )

    command: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            native_enum=False,
            create_constraint=True,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.PENDING,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=3,
    )

    # Scheduling (epoch seconds, 0 = eligible immediately)
    run_after: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=_utcnow,
    )

    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        Index("ix_jobs_claim", "state", "run_after"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries})"
        )
