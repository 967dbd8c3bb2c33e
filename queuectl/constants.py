"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a worker)
    - PROCESSING -> COMPLETED (command succeeded)
    - PROCESSING -> PENDING (command failed, retries left, run_after advanced)
    - PROCESSING -> DEAD (retries exhausted)
    - PROCESSING -> PENDING (stale claim recovered by the reaper)
    - any -> PENDING (manual requeue)

    FAILED is a transient marker: a failed attempt with retries left is
    persisted as PENDING. It is kept so that state counts report all five.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


ALL_STATES: tuple[JobState, ...] = tuple(JobState)

# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2
DEFAULT_JOB_TIMEOUT_SECONDS = 300
DEFAULT_MAX_ERROR_LENGTH = 1000
MAX_JOB_ID_LENGTH = 255

# Metrics names
METRIC_QUEUE_DEPTH = "queuectl_queue_depth"
METRIC_JOBS_ENQUEUED = "queuectl_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "queuectl_jobs_claimed_total"
METRIC_JOB_OUTCOMES = "queuectl_job_outcomes_total"
METRIC_JOB_DURATION = "queuectl_job_duration_seconds"
METRIC_STALE_RECOVERED = "queuectl_stale_jobs_recovered_total"

# Trace span names
SPAN_ENQUEUE_JOB = "enqueue_job"
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RECORD_OUTCOME = "record_outcome"
