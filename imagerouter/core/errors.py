from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from imagerouter.core.events import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(eq=False)
class ImageRouterError(Exception):
    code: str
    user_message: str
    backend: str = ""
    severity: Severity = Severity.ERROR
    retryable: bool = False
    context: Dict[str, Any] = field(default_factory=dict)
    tried_backends: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(self.user_message)

    def __str__(self) -> str:
        if self.backend:
            return f"[{self.backend}] {self.user_message}"
        return self.user_message

    def annotate_tried(self, *names: str) -> "ImageRouterError":
        for n in names:
            if n and n not in self.tried_backends:
                self.tried_backends.append(n)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "backend": self.backend,
            "severity": self.severity.value,
            "retryable": bool(self.retryable),
            "tried_backends": list(self.tried_backends),
            "context": redact(self.context or {}),
        }


# ---- Non-retryable ----
class InvalidInputError(ImageRouterError):
    def __init__(self, user_message: str = "Invalid request.", *, backend: str = "", **ctx: Any):
        super().__init__("invalid_input", user_message, backend=backend, severity=Severity.WARN, retryable=False, context=ctx)


class NotConfiguredError(ImageRouterError):
    def __init__(self, user_message: str = "Backend is not configured.", *, backend: str = "", **ctx: Any):
        super().__init__("not_configured", user_message, backend=backend, severity=Severity.ERROR, retryable=False, context=ctx)


class OperationNotImplementedError(ImageRouterError):
    def __init__(self, user_message: str = "Operation not implemented.", *, backend: str = "", **ctx: Any):
        super().__init__("not_implemented", user_message, backend=backend, severity=Severity.WARN, retryable=False, context=ctx)


class CapabilityExceededError(ImageRouterError):
    def __init__(self, user_message: str = "Request exceeds backend capabilities.", *, backend: str = "", **ctx: Any):
        super().__init__("capability_exceeded", user_message, backend=backend, severity=Severity.WARN, retryable=False, context=ctx)


class ExhaustedError(ImageRouterError):
    def __init__(self, user_message: str = "Gave up waiting for the backend.", *, backend: str = "", **ctx: Any):
        super().__init__("exhausted", user_message, backend=backend, severity=Severity.ERROR, retryable=False, context=ctx)


class CancelledError(ImageRouterError):
    def __init__(self, user_message: str = "Request was cancelled.", *, backend: str = "", **ctx: Any):
        super().__init__("cancelled", user_message, backend=backend, severity=Severity.INFO, retryable=False, context=ctx)


# ---- Retryable ----
class TransientError(ImageRouterError):
    def __init__(self, user_message: str = "Backend temporarily unavailable.", *, backend: str = "", **ctx: Any):
        super().__init__("transient", user_message, backend=backend, severity=Severity.WARN, retryable=True, context=ctx)


class RateLimitedError(ImageRouterError):
    def __init__(
        self,
        user_message: str = "Rate limit exceeded.",
        *,
        backend: str = "",
        retry_after_seconds: float = 0.0,
        **ctx: Any,
    ):
        ctx["retry_after_seconds"] = float(retry_after_seconds)
        super().__init__("rate_limited", user_message, backend=backend, severity=Severity.WARN, retryable=True, context=ctx)

    @property
    def retry_after_seconds(self) -> float:
        return float(self.context.get("retry_after_seconds", 0.0))
