"""
The generate/edit pipeline shared by every backend: configuration and prompt
checks, rate-limit slot, cache, retry and per-attempt deadline.
"""
from __future__ import annotations

import pytest

from imagerouter.core.config.models import RouterSettings
from imagerouter.core.errors import (
    CancelledError,
    InvalidInputError,
    NotConfiguredError,
    OperationNotImplementedError,
    RateLimitedError,
    TransientError,
)
from imagerouter.core.image_backends.models import EditRequest, GenerationRequest
from imagerouter.core.image_io import to_data_url
from imagerouter.core.limits.limiter import LimitsConfig, RateLimitRule
from imagerouter.core.resilience.deadline import CancelToken

from .helpers.fakes import FakeBackend, fake_backend, make_context, png_bytes


def _backend(resilience, name="OPENAI", **caps):
    return fake_backend(name, **caps)(resilience)


def test_unconfigured_backend_fails_before_any_call(resilience):
    b = _backend(resilience)
    b.configured = False
    with pytest.raises(NotConfiguredError) as ei:
        b.generate(GenerationRequest(prompt="a cat"))
    assert "OPENAI_API_KEY" in ei.value.user_message
    assert b.calls == []


def test_empty_prompt_rejected_before_any_call(resilience):
    b = _backend(resilience)
    with pytest.raises(InvalidInputError):
        b.generate(GenerationRequest(prompt="   "))
    assert b.calls == []


def test_missing_capability_is_not_implemented(resilience):
    b = _backend(resilience, supports_edit=False)
    with pytest.raises(OperationNotImplementedError):
        b.edit(EditRequest(prompt="x", base_image=to_data_url(png_bytes(), "image/png")))


def test_identical_requests_served_from_cache(resilience):
    b = _backend(resilience)
    req = GenerationRequest(prompt="a red fox", width=512, height=512)
    first = b.generate(req)
    second = b.generate(req)
    assert second is first
    assert b.calls == ["generate"]
    assert resilience.cache.hits == 1


def test_cache_expires_after_ttl(clock):
    ctx = make_context(RouterSettings(test_mode=True), clock)
    b = _backend(ctx)
    req = GenerationRequest(prompt="a red fox")
    b.generate(req)
    clock.advance(301)
    b.generate(req)
    assert b.calls == ["generate", "generate"]


def test_different_fields_miss_cache(resilience):
    b = _backend(resilience)
    b.generate(GenerationRequest(prompt="a red fox", seed=1))
    b.generate(GenerationRequest(prompt="a red fox", seed=2))
    assert len(b.calls) == 2


def test_edit_fingerprint_includes_base_image(resilience):
    b = _backend(resilience)
    red = to_data_url(png_bytes(color=(255, 0, 0)), "image/png")
    blue = to_data_url(png_bytes(color=(0, 0, 255)), "image/png")
    k1 = b.cache_key("edit", EditRequest(prompt="make it pop", base_image=red))
    k2 = b.cache_key("edit", EditRequest(prompt="make it pop", base_image=blue))
    k3 = b.cache_key("edit", EditRequest(prompt="make it pop", base_image=red, mask_image=blue))
    assert len({k1, k2, k3}) == 3


def test_cache_disabled_always_invokes():
    ctx = make_context(RouterSettings(test_mode=True, cache={"enabled": False}))
    b = _backend(ctx)
    req = GenerationRequest(prompt="a red fox")
    b.generate(req)
    b.generate(req)
    assert len(b.calls) == 2
    assert len(ctx.cache) == 0


def test_rate_limit_rejects_without_invoking(clock):
    settings = RouterSettings(test_mode=True, limits=LimitsConfig(default=RateLimitRule(max_requests=1)))
    ctx = make_context(settings, clock)
    b = _backend(ctx)
    b.generate(GenerationRequest(prompt="one"))
    with pytest.raises(RateLimitedError):
        b.generate(GenerationRequest(prompt="two"))
    assert b.calls == ["generate"]
    assert ctx.limiter.in_flight("OPENAI") == 0


def test_transient_failures_retried_then_surface(resilience):
    b = _backend(resilience)
    b.fail_with = TransientError("503", backend="OPENAI")
    with pytest.raises(TransientError):
        b.generate(GenerationRequest(prompt="a red fox"))
    assert b.calls == ["generate"] * 3
    assert len(resilience.cache) == 0
    assert resilience.limiter.in_flight("OPENAI") == 0


def test_non_retryable_failure_not_retried(resilience):
    b = _backend(resilience)
    b.fail_with = InvalidInputError("content policy", backend="OPENAI")
    with pytest.raises(InvalidInputError):
        b.generate(GenerationRequest(prompt="a red fox"))
    assert b.calls == ["generate"]


def test_cancelled_call_never_writes_cache(resilience):
    token = CancelToken()

    class Cancelling(FakeBackend):
        name = "GEMINI"

        def _generate(self, request, deadline):  # noqa: ANN001
            token.cancel("user")
            deadline.check()
            return super()._generate(request, deadline)  # pragma: no cover

    b = Cancelling(resilience)
    with pytest.raises(CancelledError):
        b.generate(GenerationRequest(prompt="a red fox"), cancel=token)
    assert len(resilience.cache) == 0
    assert resilience.limiter.in_flight("GEMINI") == 0
