"""
Unit tests for the backoff policy.
"""

from queuectl.worker.backoff import backoff_delay, next_eligible_time


class TestBackoff:
    """Tests for exponential backoff."""

    def test_delay_is_base_to_the_attempt(self):
        """Test that the delay grows as base ** attempt."""
        assert backoff_delay(2, 1) == 2
        assert backoff_delay(2, 3) == 8
        assert backoff_delay(3, 2) == 9

    def test_base_one_is_constant(self):
        """Test that base 1 yields a constant one-second delay."""
        assert [backoff_delay(1, n) for n in range(1, 5)] == [1, 1, 1, 1]

    def test_next_eligible_time_from_fixed_clock(self):
        """Test eligibility is now + base ** attempt."""
        assert next_eligible_time(2, 1, now=1000.0) == 1002
        assert next_eligible_time(2, 4, now=1000.0) == 1016

    def test_next_eligible_time_truncates(self):
        """Test fractional clock readings are truncated to whole seconds."""
        assert next_eligible_time(2, 1, now=1000.9) == 1002

    def test_monotonic_in_attempt(self):
        """Test that later attempts are never scheduled earlier."""
        times = [next_eligible_time(2, n, now=500.0) for n in range(1, 8)]
        assert times == sorted(times)
        assert len(set(times)) == len(times)

    def test_defaults_to_current_time(self, monkeypatch):
        """Test the wall clock is used when now is omitted."""
        monkeypatch.setattr("queuectl.worker.backoff.time.time", lambda: 2000.0)
        assert next_eligible_time(2, 2) == 2004
