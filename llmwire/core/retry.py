"""
llmwire - Retry Policy

Exponential backoff with jitter, floored at the server's retry hint.
"""

import random
from typing import Optional

from .errors import ClassifiedError, ErrorKind
from .models import BackoffPolicy


MIN_DELAY = 0.1  # seconds


def calculate_backoff(
    attempt: int,
    policy: Optional[BackoffPolicy] = None,
    retry_after: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> float:
    """
    Delay before the retry that follows `attempt` (0-based).

    Sequence with defaults: 1s, 2s, 4s, 8s, 16s with +/-25% jitter. A
    retry_after hint is a hard floor, even above max_delay.
    """
    policy = policy or BackoffPolicy()
    uniform = rng.uniform if rng is not None else random.uniform

    delay = min(policy.base_delay * (policy.exponential_base ** attempt), policy.max_delay)

    jitter_range = delay * policy.jitter_factor
    delay = max(MIN_DELAY, delay + uniform(-jitter_range, jitter_range))

    if retry_after is not None and retry_after > delay:
        delay = float(retry_after)
    return delay


def should_retry(error: ClassifiedError, attempt: int, max_retries: int) -> bool:
    """
    Whether a failed attempt (0-based) may be retried.

    Cancellation is never retried, whatever the budget.
    """
    if error.kind == ErrorKind.CANCELLED:
        return False
    if not error.retryable:
        return False
    return attempt < max_retries
