"""
Exponential backoff policy for failed jobs.

No jitter is applied: the delay for a given attempt is always base ** attempt
seconds, which keeps retry scheduling deterministic and easy to test.
"""

import time


def backoff_delay(base: int, attempt: int) -> int:
    """Seconds to wait after the given failed attempt."""
    return base**attempt


def next_eligible_time(base: int, attempt: int, now: float | None = None) -> int:
    """
    Compute when a job that just failed may be claimed again.

    Args:
        base: Backoff multiplier (>= 1).
        attempt: The attempt number that just failed (>= 1).
        now: Epoch seconds to compute from. Defaults to the current time.

    Returns:
        Epoch seconds, truncated to an integer.
    """
    if now is None:
        now = time.time()
    return int(now + backoff_delay(base, attempt))
