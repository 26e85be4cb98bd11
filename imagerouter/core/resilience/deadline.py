"""
Timeout and cancellation scaffolding for backend calls.

A CancelToken is a cooperative cancellation flag.  Tokens form a tree:
cancelling a parent cancels its live children, never the other way round.

A Deadline arms a timer that cancels its own child token after a fixed
duration.  It is a context manager; leaving the block (normally, by
exception, or by cancellation) disarms the timer and detaches the token.
"""
from __future__ import annotations

import threading
import time
from typing import List, Optional

from imagerouter.core.errors import CancelledError, ExhaustedError


class CancelToken:
    def __init__(self, parent: Optional["CancelToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["CancelToken"] = []
        self._parent = parent
        self.reason = ""
        if parent is not None:
            parent._attach(self)

    def _attach(self, child: "CancelToken") -> None:
        with self._lock:
            cancelled = self._event.is_set()
            if not cancelled:
                self._children.append(child)
        if cancelled:
            child.cancel(self.reason)

    def _detach(self, child: "CancelToken") -> None:
        with self._lock:
            try:
                self._children.remove(child)
            except ValueError:
                pass

    def detach(self) -> None:
        if self._parent is not None:
            self._parent._detach(self)
            self._parent = None

    def cancel(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children = list(self._children)
            self._children.clear()
        for c in children:
            c.cancel(reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; returns True if cancelled meanwhile."""
        return self._event.wait(max(0.0, float(seconds)))


class Deadline:
    """Per-call cancellation signal armed for `seconds`."""

    def __init__(
        self,
        seconds: float,
        *,
        backend: str = "",
        parent: Optional[CancelToken] = None,
        clock=time.monotonic,
    ):
        self.seconds = float(seconds)
        self.backend = backend
        self._parent = parent
        self._clock = clock
        self._timer: Optional[threading.Timer] = None
        self._expired = False
        self._started_at = 0.0
        self.token: Optional[CancelToken] = None

    # ── scoped acquisition ─────────────────────────────────────────

    def __enter__(self) -> "Deadline":
        self.token = CancelToken(parent=self._parent)
        self._started_at = float(self._clock())
        self._timer = threading.Timer(self.seconds, self._expire)
        self._timer.daemon = True
        self._timer.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disarm()

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.token is not None:
            self.token.detach()

    @property
    def armed(self) -> bool:
        return self._timer is not None

    def _expire(self) -> None:
        self._expired = True
        if self.token is not None:
            self.token.cancel("deadline")

    # ── queries used inside the call ───────────────────────────────

    def remaining(self) -> float:
        return max(0.0, self.seconds - (float(self._clock()) - self._started_at))

    @property
    def expired(self) -> bool:
        return self._expired or self.remaining() <= 0.0

    def check(self) -> None:
        """Raise if the caller cancelled or the deadline passed."""
        if self._parent is not None and self._parent.cancelled:
            raise CancelledError(
                f"Request to {self.backend} was cancelled.",
                backend=self.backend,
                reason=self._parent.reason,
            )
        if self.expired:
            raise ExhaustedError(
                f"{self.backend} did not finish within {self.seconds:g}s.",
                backend=self.backend,
                timeout_seconds=self.seconds,
            )

    def request_timeout(self, cap: Optional[float] = None) -> float:
        """Timeout for one HTTP call: never longer than what is left."""
        self.check()
        left = self.remaining()
        return min(left, float(cap)) if cap else left

    def sleep(self, seconds: float) -> None:
        """Wait between polls, waking early on cancellation."""
        self.check()
        wait = min(max(0.0, float(seconds)), self.remaining())
        if self.token is not None:
            self.token.wait(wait)
        else:
            time.sleep(wait)
        self.check()
