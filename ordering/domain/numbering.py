"""
Human-readable document numbers: ``<PREFIX>-YYYYMMDD-NNNNNN``.
"""
from __future__ import annotations

import random
from datetime import datetime
from typing import Callable

from ordering.domain.errors import ConflictError


def format_number(prefix: str, day: datetime, suffix: int) -> str:
    return f"{prefix}-{day:%Y%m%d}-{suffix:06d}"


def allocate_number(
    prefix: str,
    now: datetime,
    is_taken: Callable[[str], bool],
    attempts: int = 5,
    rng: random.Random | None = None,
) -> str:
    """
    Pick a free number for ``now``'s date.

    The unique constraint on the column stays the final arbiter; this only
    keeps collisions rare.
    """
    rng = rng or random
    for _ in range(attempts):
        number = format_number(prefix, now, rng.randint(1, 999999))
        if not is_taken(number):
            return number
    raise ConflictError(f"Could not allocate a free {prefix} number")
