from __future__ import annotations

import pytest

from imagerouter.core.errors import CancelledError, InvalidInputError, RateLimitedError, TransientError
from imagerouter.core.resilience.deadline import CancelToken
from imagerouter.core.resilience.retry import RetryExecutor, RetryPolicy


def _executor(sleeps, **policy):
    return RetryExecutor(RetryPolicy(**policy), sleep=sleeps.append, rand=lambda: 0.0)


def test_transient_errors_are_retried_with_backoff():
    sleeps = []
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        if calls["n"] < 3:
            raise TransientError("503", backend="X")
        return "ok"

    assert _executor(sleeps).run(fn, backend="X") == "ok"
    assert calls["n"] == 3
    assert sleeps == [1.0, 2.0]


def test_gives_up_after_max_attempts():
    sleeps = []
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        raise TransientError("down", backend="X")

    with pytest.raises(TransientError) as ei:
        _executor(sleeps, max_attempts=3).run(fn, backend="X")
    assert calls["n"] == 3
    assert len(sleeps) == 2
    assert ei.value.context["attempts"] == 3


@pytest.mark.parametrize(
    "err",
    [InvalidInputError("bad", backend="X"), RateLimitedError("slow down", backend="X", retry_after_seconds=5)],
)
def test_non_transient_errors_propagate_immediately(err):
    sleeps = []
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        raise err

    with pytest.raises(type(err)):
        _executor(sleeps).run(fn, backend="X")
    assert calls["n"] == 1
    assert sleeps == []


def test_cancel_during_backoff_stops_retrying():
    token = CancelToken()
    token.cancel("user")
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        raise TransientError("down", backend="X")

    with pytest.raises(CancelledError):
        _executor([]).run(fn, backend="X", cancel=token)
    assert calls["n"] == 1


def test_delay_is_capped_and_jittered():
    policy = RetryPolicy(initial_delay_seconds=1.0, max_delay_seconds=10.0, jitter_seconds=0.5)
    assert policy.delay_for(10, rand=lambda: 0.0) == 10.0
    assert policy.delay_for(0, rand=lambda: 1.0) == pytest.approx(1.5)
