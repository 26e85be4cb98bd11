from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from imagerouter.core.config.models import RouterSettings
from imagerouter.core.limits.limiter import WindowLimiter
from imagerouter.core.resilience.cache import ResponseCache
from imagerouter.core.resilience.retry import RetryExecutor


@dataclass
class ResilienceContext:
    """
    Shared resilience state for one process (or one test).

    Owns the rate-limit table and the response cache; every backend built by
    a registry receives the same context.
    """

    settings: RouterSettings
    limiter: WindowLimiter
    cache: ResponseCache
    retry: RetryExecutor
    clock: Callable[[], float] = field(default=time.monotonic)

    @classmethod
    def from_settings(
        cls,
        settings: Optional[RouterSettings] = None,
        *,
        time_fn: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> "ResilienceContext":
        s = settings or RouterSettings()
        return cls(
            settings=s,
            limiter=WindowLimiter(s.limits, time_fn=time_fn),
            cache=ResponseCache(ttl_seconds=s.cache.ttl_seconds, max_entries=s.cache.max_entries, time_fn=time_fn),
            retry=RetryExecutor(s.retry, sleep=sleep, rand=rand),
            clock=clock,
        )
