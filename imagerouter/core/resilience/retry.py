from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from imagerouter.core.errors import CancelledError, ImageRouterError, TransientError
from imagerouter.core.resilience.deadline import CancelToken

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=20)
    initial_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    max_delay_seconds: float = Field(default=10.0, ge=0.0, le=600.0)
    jitter_seconds: float = Field(default=0.5, ge=0.0, le=60.0)

    def delay_for(self, attempt: int, *, rand: Callable[[], float] = random.random) -> float:
        base = min(self.initial_delay_seconds * (2 ** attempt), self.max_delay_seconds)
        return base + rand() * self.jitter_seconds


@dataclass
class RetryExecutor:
    """
    Runs an operation under the retry budget.

    Only TransientError is retried here.  Rate limiting and every
    non-retryable error propagate on the first occurrence, without sleeping.
    """

    policy: RetryPolicy
    sleep: Callable[[float], None] = time.sleep
    rand: Callable[[], float] = random.random

    def run(
        self,
        fn: Callable[[], T],
        *,
        backend: str = "",
        cancel: Optional[CancelToken] = None,
    ) -> T:
        last: Optional[ImageRouterError] = None
        attempts = int(self.policy.max_attempts)
        for attempt in range(attempts):
            try:
                return fn()
            except TransientError as e:
                last = e
                if attempt >= attempts - 1:
                    break
                delay = self.policy.delay_for(attempt, rand=self.rand)
                logger.debug("retry %d/%d for %s after %.2fs: %s", attempt + 1, attempts, backend, delay, e.user_message)
                self._pause(delay, backend=backend, cancel=cancel)
        if last is not None:
            last.context.setdefault("attempts", attempts)
            raise last
        raise TransientError(f"Failed after {attempts} attempts.", backend=backend)

    def _pause(self, seconds: float, *, backend: str, cancel: Optional[CancelToken]) -> None:
        if cancel is None:
            self.sleep(seconds)
            return
        if cancel.wait(seconds):
            raise CancelledError(f"Request to {backend} was cancelled during backoff.", backend=backend)
