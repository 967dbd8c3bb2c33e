"""
Exception hierarchy for queuectl.

Only structural errors propagate to callers. Command failures are modelled
by ExecutionFailure and absorbed into the retry/dead-letter state machine.
"""


class QueueError(Exception):
    """Base exception for the queuectl package."""


class DuplicateIdError(QueueError):
    """Raised when a job is enqueued with an id that already exists."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' already exists")
        self.job_id = job_id


class NotFoundError(QueueError):
    """Raised when an operation targets an unknown job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' not found")
        self.job_id = job_id


class ExecutionFailure(QueueError):
    """A job's command exited non-zero, timed out or could not be started."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class StoreUnavailable(QueueError):
    """The underlying job store could not be reached."""
