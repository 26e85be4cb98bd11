from __future__ import annotations

import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from imagerouter.core.errors import RateLimitedError


@dataclass
class WindowCounter:
    """
    Fixed window counter:
    - count    = requests admitted in the current window
    - reset_at = when the window expires and the counter starts over
    """

    count: int
    reset_at: float


class RateLimitRule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    window_seconds: float = Field(default=60.0, gt=0.0, le=86_400.0)
    max_requests: int = Field(default=10, ge=1, le=1_000_000)


class LimitsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default: RateLimitRule = Field(default_factory=RateLimitRule)
    backends: Dict[str, RateLimitRule] = Field(default_factory=dict)

    @field_validator("backends")
    @classmethod
    def _upper_keys(cls, v: Dict[str, RateLimitRule]) -> Dict[str, RateLimitRule]:
        return {str(k).strip().upper(): rule for k, rule in v.items()}

    def rule_for(self, key: str) -> RateLimitRule:
        return self.backends.get(str(key or "").upper()) or self.default


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    reason: str = ""
    retry_after_seconds: float = 0.0
    count: int = 0


class WindowLimiter:
    """
    Process-local request limiter keyed by backend name.

    Admission is checked before any network activity.  Rejected calls are not
    queued; the caller receives RateLimitedError with the remaining wait.
    """

    def __init__(self, config: Optional[LimitsConfig] = None, *, time_fn=time.time):
        self.config = config or LimitsConfig()
        self._time = time_fn
        self._lock = threading.Lock()
        self._windows: Dict[str, WindowCounter] = {}
        self._inflight: Dict[str, int] = {}

    def check(self, key: str) -> LimitDecision:
        """Admit one request for `key` if the window still has room."""
        rule = self.config.rule_for(key)
        now = float(self._time())
        k = str(key or "").upper()
        with self._lock:
            w = self._windows.get(k)
            if w is None or now >= w.reset_at:
                w = WindowCounter(count=1, reset_at=now + float(rule.window_seconds))
                self._windows[k] = w
                return LimitDecision(allowed=True, reason="ok", count=w.count)
            if w.count >= int(rule.max_requests):
                return LimitDecision(
                    allowed=False,
                    reason="rate_limited",
                    retry_after_seconds=max(0.0, w.reset_at - now),
                    count=w.count,
                )
            w.count += 1
            return LimitDecision(allowed=True, reason="ok", count=w.count)

    def acquire(self, key: str) -> LimitDecision:
        decision = self.check(key)
        if not decision.allowed:
            wait = int(math.ceil(decision.retry_after_seconds))
            raise RateLimitedError(
                f"Rate limit exceeded for {key}. Please wait {wait} seconds.",
                backend=str(key),
                retry_after_seconds=decision.retry_after_seconds,
            )
        return decision

    @contextmanager
    def slot(self, key: str) -> Iterator[LimitDecision]:
        """Admit a request and track it as in flight until the block exits."""
        decision = self.acquire(key)
        k = str(key or "").upper()
        with self._lock:
            self._inflight[k] = self._inflight.get(k, 0) + 1
        try:
            yield decision
        finally:
            with self._lock:
                left = self._inflight.get(k, 1) - 1
                if left <= 0:
                    self._inflight.pop(k, None)
                else:
                    self._inflight[k] = left

    def in_flight(self, key: str) -> int:
        with self._lock:
            return int(self._inflight.get(str(key or "").upper(), 0))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        now = float(self._time())
        with self._lock:
            return {
                k: {
                    "count": w.count,
                    "resets_in_seconds": max(0.0, w.reset_at - now),
                    "in_flight": self._inflight.get(k, 0),
                }
                for k, w in self._windows.items()
            }
