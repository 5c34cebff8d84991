from __future__ import annotations

import threading

import pytest

from factories import FakeClock
from git_ingest.application.retry import RateLimitRetryPolicy, RetryAborted
from git_ingest.infrastructure.github_client import GitHubUnavailable, RateLimitExceeded


class Flaky:
    def __init__(self, *errors: Exception, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls: list[tuple] = []

    def __call__(self, *args: object) -> str:
        self.calls.append(args)
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def test_waits_until_reset_then_repeats_identical_call(clock: FakeClock) -> None:
    reset_at = int(clock.now) + 120
    func = Flaky(RateLimitExceeded(reset_at))
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep)

    assert policy.call(func, "octo", "hello") == "ok"

    assert func.calls == [("octo", "hello"), ("octo", "hello")]
    assert clock.sleeps == [121.0]
    assert clock.now >= reset_at


def test_reset_in_the_past_only_waits_the_buffer(clock: FakeClock) -> None:
    func = Flaky(RateLimitExceeded(int(clock.now) - 30))
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep, buffer_seconds=2)

    policy.call(func)

    assert clock.sleeps == [2]


def test_unlimited_by_default(clock: FakeClock) -> None:
    errors = [RateLimitExceeded(int(clock.now) + 60) for _ in range(25)]
    func = Flaky(*errors)
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep)

    assert policy.call(func) == "ok"
    assert len(func.calls) == 26


def test_other_errors_propagate_without_waiting(clock: FakeClock) -> None:
    func = Flaky(GitHubUnavailable("boom"))
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep)

    with pytest.raises(GitHubUnavailable):
        policy.call(func)

    assert clock.sleeps == []
    assert len(func.calls) == 1


def test_max_attempts_aborts(clock: FakeClock) -> None:
    func = Flaky(*[RateLimitExceeded(int(clock.now) + 1) for _ in range(5)])
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep, max_attempts=3)

    with pytest.raises(RetryAborted):
        policy.call(func)

    assert len(func.calls) == 3
    assert len(clock.sleeps) == 2


def test_cancel_event_interrupts_wait(clock: FakeClock) -> None:
    cancel = threading.Event()
    cancel.set()
    func = Flaky(RateLimitExceeded(int(clock.now) + 3600))
    policy = RateLimitRetryPolicy(clock=clock.time, sleep=clock.sleep, cancel_event=cancel)

    with pytest.raises(RetryAborted):
        policy.call(func)

    assert len(func.calls) == 1
