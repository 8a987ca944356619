"""Backoff between resume attempts of a halted workflow run."""

from __future__ import annotations

import asyncio
import logging
import random

logger = logging.getLogger(__name__)

MAX_BACKOFF_S = 60.0


def compute_backoff(
    attempt: int, base: float = 1.5, jitter: float = 0.5, cap: float = MAX_BACKOFF_S
) -> float:
    """Seconds to wait before resume ``attempt`` (counted from 1).

    The exponential part is clamped to ``cap`` so a long run of resumes never
    sleeps for more than ``cap + jitter`` seconds. A ``base`` of ``0`` turns
    the delay into jitter only.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be at least 1, got {attempt}")
    delay = min(base ** attempt, cap)
    return delay + random.uniform(0, jitter)


async def schedule_retry(
    attempt: int, base: float = 1.5, jitter: float = 0.5, cap: float = MAX_BACKOFF_S
) -> None:
    delay = compute_backoff(attempt, base=base, jitter=jitter, cap=cap)
    logger.debug(f"Resume attempt {attempt} in {delay:.2f}s")
    await asyncio.sleep(delay)
