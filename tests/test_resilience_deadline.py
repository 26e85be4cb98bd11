from __future__ import annotations

import pytest

from imagerouter.core.errors import CancelledError, ExhaustedError
from imagerouter.core.resilience.deadline import CancelToken, Deadline


def test_timer_disarmed_on_normal_exit():
    d = Deadline(5, backend="X")
    with d:
        assert d.armed is True
    assert d.armed is False


def test_timer_disarmed_on_exception():
    d = Deadline(5, backend="X")
    with pytest.raises(ValueError):
        with d:
            raise ValueError("boom")
    assert d.armed is False


def test_parent_cancellation_reaches_deadline():
    parent = CancelToken()
    with Deadline(5, backend="X", parent=parent) as d:
        parent.cancel("user")
        assert d.token.cancelled is True
        with pytest.raises(CancelledError):
            d.check()


def test_child_cancellation_does_not_reach_parent():
    parent = CancelToken()
    with Deadline(5, backend="X", parent=parent) as d:
        d.token.cancel("deadline")
    assert parent.cancelled is False


def test_already_cancelled_parent_cancels_new_deadline():
    parent = CancelToken()
    parent.cancel("shutdown")
    with Deadline(5, backend="X", parent=parent) as d:
        assert d.token.cancelled is True


def test_expiry_by_clock(clock):
    with Deadline(10, backend="BFL", clock=clock.time) as d:
        clock.advance(11)
        assert d.expired is True
        with pytest.raises(ExhaustedError) as ei:
            d.check()
    assert ei.value.backend == "BFL"


def test_request_timeout_never_exceeds_remaining(clock):
    with Deadline(30, backend="X", clock=clock.time) as d:
        assert d.request_timeout(10) == pytest.approx(10.0)
        clock.advance(25)
        assert d.request_timeout(10) == pytest.approx(5.0)


def test_real_timer_cancels_token():
    with Deadline(0.05, backend="X") as d:
        assert d.token.wait(2.0) is True
        assert d.expired is True
