"""
JSONL audit trail for image requests.

Events carry request metadata only (backend names, sizes, error codes,
timings).  Values under secret-like keys, and under any `prompt` key, are
masked before the line is written.
"""
from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = frozenset({
    "api_key",
    "apikey",
    "key",
    "x-key",
    "token",
    "secret",
    "password",
    "authorization",
    "prompt",
})


def redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: (REDACTED if str(k).lower() in SENSITIVE_KEYS else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj


def _timestamp() -> str:
    now = time.time()
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(now)) + f".{int(now * 1000) % 1000:03d}Z"


@dataclass(frozen=True)
class EventLogger:
    path: str
    _lock: threading.Lock = field(default_factory=threading.Lock, compare=False, repr=False)

    def log(self, trace_id: str, event_type: str, details: Optional[Dict[str, Any]] = None) -> None:
        record = {
            "ts": _timestamp(),
            "trace_id": trace_id,
            "event": event_type,
            "details": redact(details or {}),
        }
        line = json.dumps(record, ensure_ascii=False, default=str)
        with self._lock:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self) -> List[Dict[str, Any]]:
        """Events written so far, oldest first.  A missing file reads as empty."""
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
