from __future__ import annotations

import threading

import pytest

from imagerouter.core.errors import RateLimitedError
from imagerouter.core.limits.limiter import LimitsConfig, RateLimitRule, WindowLimiter


def _limiter(clock, max_requests: int = 2, window: float = 60.0, **backends):
    cfg = LimitsConfig(
        default=RateLimitRule(window_seconds=window, max_requests=max_requests),
        backends={k: RateLimitRule(**v) for k, v in backends.items()},
    )
    return WindowLimiter(cfg, time_fn=clock.time)


def test_window_admits_up_to_max_then_rejects(clock):
    lim = _limiter(clock)
    assert lim.check("OPENAI").allowed is True
    assert lim.check("OPENAI").allowed is True
    d = lim.check("OPENAI")
    assert d.allowed is False
    assert d.reason == "rate_limited"
    assert d.retry_after_seconds == pytest.approx(60.0)


def test_acquire_raises_with_wait_hint(clock):
    lim = _limiter(clock, max_requests=1)
    lim.acquire("OPENAI")
    clock.advance(15)
    with pytest.raises(RateLimitedError) as ei:
        lim.acquire("OPENAI")
    assert ei.value.retryable is True
    assert ei.value.retry_after_seconds == pytest.approx(45.0)
    assert "Please wait 45 seconds" in ei.value.user_message


def test_window_resets_after_expiry(clock):
    lim = _limiter(clock, max_requests=1)
    lim.acquire("BFL")
    assert lim.check("BFL").allowed is False
    clock.advance(60)
    assert lim.check("BFL").allowed is True


def test_keys_are_independent_and_case_insensitive(clock):
    lim = _limiter(clock, max_requests=1)
    lim.acquire("openai")
    assert lim.check("OPENAI").allowed is False
    assert lim.check("STABILITY").allowed is True


def test_per_backend_rule_overrides_default(clock):
    lim = _limiter(clock, max_requests=5, BFL={"window_seconds": 10, "max_requests": 1})
    lim.acquire("BFL")
    with pytest.raises(RateLimitedError):
        lim.acquire("BFL")
    for _ in range(5):
        lim.acquire("GEMINI")


def test_slot_releases_in_flight_on_error(clock):
    lim = _limiter(clock, max_requests=10)
    with pytest.raises(RuntimeError):
        with lim.slot("FAL"):
            assert lim.in_flight("FAL") == 1
            raise RuntimeError("boom")
    assert lim.in_flight("FAL") == 0


def test_rejected_slot_never_counts_in_flight(clock):
    lim = _limiter(clock, max_requests=1)
    with lim.slot("FAL"):
        pass
    with pytest.raises(RateLimitedError):
        with lim.slot("FAL"):
            pass  # pragma: no cover
    assert lim.in_flight("FAL") == 0
    assert lim.snapshot()["FAL"]["count"] == 1


def test_concurrent_checks_admit_exactly_max(clock):
    lim = _limiter(clock, max_requests=10)
    start = threading.Barrier(50)
    admitted = []

    def worker():
        start.wait()
        admitted.append(lim.check("X").allowed)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert len(admitted) == 50
    assert admitted.count(True) == 10
    assert lim.snapshot()["X"]["count"] == 10


def test_concurrent_slots_leave_nothing_in_flight(clock):
    lim = _limiter(clock, max_requests=1000)
    start = threading.Barrier(20)

    def worker():
        start.wait()
        for _ in range(25):
            with lim.slot("FAL"):
                pass

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert lim.in_flight("FAL") == 0
    assert lim.snapshot()["FAL"]["count"] == 500


def test_lower_case_backend_rule_applies(clock):
    cfg = LimitsConfig.model_validate({"backends": {"openai": {"max_requests": 1}}})
    assert cfg.rule_for("OPENAI").max_requests == 1
    lim = WindowLimiter(cfg, time_fn=clock.time)
    lim.acquire("OpenAI")
    with pytest.raises(RateLimitedError):
        lim.acquire("openai")
