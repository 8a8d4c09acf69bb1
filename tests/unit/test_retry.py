from datetime import datetime, timedelta

from ledgerflow.utils.retry import RetryPolicy, compute_backoff


def test_compute_backoff_is_linear():
    assert compute_backoff(1, 5) == 5
    assert compute_backoff(2, 5) == 10
    assert compute_backoff(3, 0.5) == 1.5


def test_compute_backoff_never_negative():
    assert compute_backoff(0, 5) == 0
    assert compute_backoff(-2, 5) == 0


def test_should_retry_until_attempts_reach_ceiling():
    policy = RetryPolicy(max_attempts=3)
    assert policy.should_retry(1)
    assert policy.should_retry(2)
    assert not policy.should_retry(3)
    assert not policy.should_retry(4)


def test_next_run_at_uses_attempt_count():
    now = datetime(2024, 1, 1, 12, 0, 0)
    policy = RetryPolicy(max_attempts=5, backoff_base_seconds=5)
    assert policy.next_run_at(1, now) == now + timedelta(seconds=5)
    assert policy.next_run_at(2, now) == now + timedelta(seconds=10)


def test_zero_backoff_retries_immediately():
    now = datetime(2024, 1, 1, 12, 0, 0)
    assert RetryPolicy(backoff_base_seconds=0).next_run_at(3, now) == now
