# Overview: Pytest coverage for the shared retry policy.

import pytest

from shopfloor.errors import NotFoundError, QuickBooksConnectionError
from shopfloor.services.concurrency import RetryPolicy


class Flaky:
    def __init__(self, failures, exc_factory):
        self.failures = failures
        self.exc_factory = exc_factory
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc_factory()
        return "ok"


def test_retryable_error_is_retried_until_success():
    sleeps = []
    policy = RetryPolicy(max_attempts=3, backoff_base=0.5, sleep=sleeps.append)
    func = Flaky(2, lambda: QuickBooksConnectionError("timeout"))

    assert policy.run(func) == "ok"
    assert func.calls == 3
    assert sleeps == [0.5, 1.0]


def test_gives_up_after_max_attempts():
    policy = RetryPolicy(max_attempts=2, backoff_base=0, sleep=lambda s: None)
    func = Flaky(5, lambda: QuickBooksConnectionError("down"))

    with pytest.raises(QuickBooksConnectionError):
        policy.run(func)
    assert func.calls == 2


def test_non_retryable_error_propagates_immediately():
    policy = RetryPolicy(max_attempts=5, backoff_base=0, sleep=lambda s: None)
    func = Flaky(1, lambda: NotFoundError("gone"))

    with pytest.raises(NotFoundError):
        policy.run(func)
    assert func.calls == 1


def test_on_retry_hook_runs_before_each_retry():
    seen = []
    policy = RetryPolicy(
        max_attempts=3,
        backoff_base=0,
        on_retry=seen.append,
        sleep=lambda s: None,
    )
    policy.run(Flaky(1, lambda: QuickBooksConnectionError("blip")))
    assert len(seen) == 1
    assert isinstance(seen[0], QuickBooksConnectionError)


def test_custom_predicate():
    policy = RetryPolicy(max_attempts=2, backoff_base=0, retryable=lambda e: isinstance(e, KeyError), sleep=lambda s: None)
    assert policy.run(Flaky(1, lambda: KeyError("x"))) == "ok"
