"""
Type definitions for queuectl.
Contains input/output types shared by the repository, executor and client.
"""

from queuectl.types.job import (
    Completed,
    JobRecord,
    JobSpec,
    Outcome,
    RetryableFailure,
)

__all__ = [
    "JobSpec",
    "JobRecord",
    "Completed",
    "RetryableFailure",
    "Outcome",
]
