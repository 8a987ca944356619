import asyncio

import pytest

from codeweave.utils.retry import MAX_BACKOFF_S, compute_backoff, schedule_retry


def test_backoff_grows_exponentially():
    assert compute_backoff(1, base=2, jitter=0) == 2
    assert compute_backoff(3, base=2, jitter=0) == 8


def test_backoff_is_capped():
    assert compute_backoff(40, base=2, jitter=0) == MAX_BACKOFF_S
    assert compute_backoff(5, base=10, jitter=0, cap=3) == 3


def test_backoff_jitter_stays_in_range():
    for _ in range(20):
        assert 1.5 <= compute_backoff(1, base=1.5, jitter=0.5) <= 2.0


def test_zero_base_means_no_wait():
    assert compute_backoff(1, base=0, jitter=0) == 0


def test_attempts_are_counted_from_one():
    with pytest.raises(ValueError):
        compute_backoff(0)


@pytest.mark.asyncio
async def test_schedule_retry_returns_after_backoff():
    await asyncio.wait_for(schedule_retry(3, base=0.1, jitter=0), timeout=1)
