"""
Job-related type definitions.
"""

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from queuectl.constants import MAX_JOB_ID_LENGTH, JobState


class JobSpec(BaseModel):
    """
    Caller-supplied description of a job to enqueue.

    The id is generated when omitted. max_retries falls back to the
    configured default when omitted.
    """

    model_config = ConfigDict(extra="forbid")

    command: str = Field(..., min_length=1, description="Shell command to execute")
    id: str | None = Field(
        default=None,
        min_length=1,
        max_length=MAX_JOB_ID_LENGTH,
        description="Unique job id",
    )
    max_retries: int | None = Field(
        default=None, ge=0, description="Retries allowed before dead-lettering"
    )


class JobRecord(BaseModel):
    """Read-only snapshot of a stored job."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str
    command: str
    state: JobState
    attempts: int
    max_retries: int
    created_at: datetime
    updated_at: datetime
    run_after: int
    last_error: str | None = None


@dataclass(frozen=True)
class Completed:
    """The command exited successfully."""

    duration_seconds: float | None = None


@dataclass(frozen=True)
class RetryableFailure:
    """
    The command failed or timed out.

    Whether the job is retried or dead-lettered is decided by the
    repository, not by whoever produced this outcome.
    """

    message: str
    exit_code: int | None = None
    duration_seconds: float | None = None


Outcome = Completed | RetryableFailure
