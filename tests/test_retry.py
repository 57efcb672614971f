"""
llmwire - Retry Policy Tests

Verifies:
- Exponential backoff sequence and jitter bounds
- Retry-After floor
- should_retry budget and cancellation rules
"""

import random

import pytest
from pydantic import ValidationError

from llmwire.core.errors import ErrorKind, create_error
from llmwire.core.models import BackoffPolicy
from llmwire.core.retry import MIN_DELAY, calculate_backoff, should_retry


NO_JITTER = BackoffPolicy(jitter_factor=0.0)


class TestCalculateBackoff:
    """Test delay calculation."""

    def test_exponential_sequence(self):
        delays = [calculate_backoff(attempt, NO_JITTER) for attempt in range(6)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 16.0]

    def test_jitter_within_bounds(self):
        rng = random.Random(42)
        policy = BackoffPolicy()
        for attempt in range(5):
            base = min(1.0 * 2 ** attempt, 16.0)
            for _ in range(50):
                delay = calculate_backoff(attempt, policy, rng=rng)
                assert base * 0.75 <= delay <= base * 1.25

    def test_minimum_delay(self):
        policy = BackoffPolicy(base_delay=0.01, max_delay=0.01, jitter_factor=0.0)
        assert calculate_backoff(0, policy) == MIN_DELAY

    def test_retry_after_is_a_floor(self):
        assert calculate_backoff(0, NO_JITTER, retry_after=5) == 5.0

    def test_retry_after_can_exceed_max_delay(self):
        assert calculate_backoff(0, NO_JITTER, retry_after=60) == 60.0

    def test_smaller_retry_after_keeps_backoff(self):
        assert calculate_backoff(3, NO_JITTER, retry_after=1) == 8.0

    def test_policy_rejects_inverted_bounds(self):
        with pytest.raises(ValidationError):
            BackoffPolicy(base_delay=10.0, max_delay=1.0)


class TestShouldRetry:
    """Test the retry decision."""

    def test_retryable_within_budget(self):
        error = create_error(ErrorKind.SERVER_ERROR, http_status=500)
        assert should_retry(error, attempt=0, max_retries=2) is True
        assert should_retry(error, attempt=1, max_retries=2) is True

    def test_budget_exhausted(self):
        error = create_error(ErrorKind.SERVER_ERROR, http_status=500)
        assert should_retry(error, attempt=2, max_retries=2) is False

    def test_zero_retries(self):
        error = create_error(ErrorKind.NETWORK_ERROR)
        assert should_retry(error, attempt=0, max_retries=0) is False

    def test_non_retryable_kind(self):
        error = create_error(ErrorKind.AUTHENTICATION_ERROR, http_status=401)
        assert should_retry(error, attempt=0, max_retries=5) is False

    def test_cancelled_is_never_retried(self):
        error = create_error(ErrorKind.CANCELLED)
        assert should_retry(error, attempt=0, max_retries=100) is False
