"""
Worker module.
Contains the backoff policy, the command executor and the worker loops.

Worker and WorkerPool live in queuectl.worker.main; they are not imported
here because the repository depends on the backoff policy.
"""

from queuectl.worker.backoff import backoff_delay, next_eligible_time
from queuectl.worker.executor import CommandExecutor

__all__ = [
    "backoff_delay",
    "next_eligible_time",
    "CommandExecutor",
]
