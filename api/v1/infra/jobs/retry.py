"""
Retry policy: backoff delays and the dead-letter decision.
"""

import random
from collections.abc import Callable
from datetime import datetime

from api.config.settings import Settings
from api.infra.clock import after
from api.v1.infra.jobs.models import JobStatus

# 2**63 * base already exceeds any sane cap; keeps the float conversion finite
_MAX_EXPONENT = 63


def compute_backoff(
    attempts: int,
    base_s: float,
    cap_s: float,
    jitter: float = 0.0,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Delay before the next attempt after ``attempts`` failures.

    Exponential: base, 2*base, 4*base, ... capped at ``cap_s``. With
    ``jitter`` > 0 the delay varies by up to ±jitter of itself, clamped to
    [base_s, cap_s].
    """
    exponent = min(max(attempts, 1) - 1, _MAX_EXPONENT)
    delay = min(cap_s, base_s * (2**exponent))

    if jitter:
        delay = delay * (1 + jitter * (2 * rng() - 1))
        delay = max(min(base_s, cap_s), min(cap_s, delay))

    return delay


def next_run_at(attempts: int, settings: Settings, now: datetime | None = None) -> datetime:
    """When a job that has failed ``attempts`` times becomes eligible again."""
    delay = compute_backoff(
        attempts,
        settings.job_backoff_base_s,
        settings.job_max_backoff_s,
        settings.job_backoff_jitter,
    )
    return after(delay, now)


def failure_outcome(attempts: int, max_attempts: int, permanent: bool = False) -> JobStatus:
    """Status a job moves to once ``attempts`` (already incremented) is recorded."""
    if permanent or attempts >= max_attempts:
        return JobStatus.DEAD
    return JobStatus.PENDING


def truncate_error(error: str, max_length: int) -> str:
    if len(error) <= max_length:
        return error
    return error[: max_length - 3] + "..."
