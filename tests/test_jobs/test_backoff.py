"""Tests for the worker poll-loop backoff."""

from unittest.mock import patch

from src.jobs.backoff import ExponentialBackoff


class TestExponentialBackoff:
    def test_grows_then_caps(self):
        backoff = ExponentialBackoff(base_delay=1.0, max_delay=5.0, jitter_range=0.0)

        delays = [backoff.next_delay() for _ in range(5)]

        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]
        assert backoff.failures == 5

    def test_reset_starts_over(self):
        backoff = ExponentialBackoff(base_delay=2.0, jitter_range=0.0)
        backoff.next_delay()
        backoff.next_delay()

        backoff.reset()

        assert backoff.failures == 0
        assert backoff.next_delay() == 2.0

    def test_jitter_bounds(self):
        backoff = ExponentialBackoff(base_delay=4.0, jitter_range=0.25)

        with patch("src.jobs.backoff.random.uniform", return_value=-0.25):
            assert backoff.next_delay() == 3.0
