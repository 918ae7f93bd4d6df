"""
Retry scheduling with exponential backoff and jitter.

Nothing here sleeps: the delay is turned into a ``next_attempt_at`` that the
dispatcher's next sweep honours.
"""
import random
from datetime import datetime, timedelta


def compute_backoff(
    attempt_count: int,
    base_delay: timedelta = timedelta(minutes=1),
    jitter_seconds: float = 30.0,
    rng: random.Random | None = None,
) -> timedelta:
    """
    Delay before the next attempt.

    Args:
        attempt_count: Attempts made so far (1 after the first failure)
        base_delay: Delay unit doubled per attempt
        jitter_seconds: Upper bound (exclusive) of the random jitter
        rng: Random source, for deterministic tests
    """
    rng = rng or random
    jitter = timedelta(seconds=rng.random() * jitter_seconds)
    return base_delay * (2 ** attempt_count) + jitter


def next_attempt_at(
    now: datetime,
    attempt_count: int,
    jitter_seconds: float = 30.0,
    rng: random.Random | None = None,
) -> datetime:
    return now + compute_backoff(attempt_count, jitter_seconds=jitter_seconds, rng=rng)
