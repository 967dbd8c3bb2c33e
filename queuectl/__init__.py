"""
queuectl - durable single-node background job queue

Shell-command jobs are persisted in a SQL store and executed by concurrent
workers with atomic claims, exponential-backoff retries and a dead-letter state.
"""

__version__ = "1.0.0"
