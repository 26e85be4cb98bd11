"""
Bounded state machine for submit-then-poll backends.

    SUBMITTED -> POLLING -> COMPLETE | FAILED | TIMED_OUT

The whole loop runs under the caller's Deadline; the deadline is not reset
between polls.  A FAILED job is reported as TransientError (another attempt,
or another backend, may succeed).  TIMED_OUT is ExhaustedError.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List

from imagerouter.core.errors import ExhaustedError, ImageRouterError, TransientError
from imagerouter.core.resilience.deadline import Deadline

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class JobStatus:
    """What one poll observed.  `state` is POLLING while the job is pending."""

    state: JobState
    payload: Any = None
    detail: str = ""

    @classmethod
    def pending(cls, detail: str = "") -> "JobStatus":
        return cls(JobState.POLLING, detail=detail)

    @classmethod
    def complete(cls, payload: Any) -> "JobStatus":
        return cls(JobState.COMPLETE, payload=payload)

    @classmethod
    def failed(cls, detail: str = "") -> "JobStatus":
        return cls(JobState.FAILED, detail=detail)


@dataclass
class JobPoller:
    backend: str
    initial_interval: float = 1.0
    max_interval: float = 10.0
    factor: float = 1.5
    max_attempts: int = 30
    history: List[JobState] = field(default_factory=list)

    def interval(self, attempt: int) -> float:
        return min(self.initial_interval * (self.factor ** attempt), self.max_interval)

    def run(
        self,
        job_id: str,
        check: Callable[[str], JobStatus],
        deadline: Deadline,
        *,
        wait_first: bool = True,
    ) -> Any:
        self.history = [JobState.SUBMITTED]
        state = JobState.SUBMITTED
        for attempt in range(int(self.max_attempts)):
            try:
                if wait_first or attempt > 0:
                    deadline.sleep(self.interval(attempt))
                status = check(job_id)
            except ExhaustedError:
                self._enter(JobState.TIMED_OUT)
                raise
            except ImageRouterError:
                raise
            state = status.state
            self._enter(state)
            if state == JobState.COMPLETE:
                return status.payload
            if state == JobState.FAILED:
                raise TransientError(
                    f"{self.backend} job {job_id} failed: {status.detail or 'no detail'}",
                    backend=self.backend,
                    job_id=job_id,
                )
            logger.debug("%s poll %d/%d job=%s state=%s", self.backend, attempt + 1, self.max_attempts, job_id, status.detail)
        self._enter(JobState.TIMED_OUT)
        raise ExhaustedError(
            f"{self.backend} job {job_id} still pending after {self.max_attempts} polls.",
            backend=self.backend,
            job_id=job_id,
            last_state=state.value,
        )

    def _enter(self, state: JobState) -> None:
        if not self.history or self.history[-1] != state:
            self.history.append(state)
