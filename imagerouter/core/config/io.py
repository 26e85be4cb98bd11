"""Reading the optional router config file.  Never raises; the loader decides."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ConfigRead:
    path: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def missing(self) -> bool:
        return self.error == "missing"


def read_config_file(path: str) -> ConfigRead:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return ConfigRead(path, error="missing")
    except OSError as e:
        return ConfigRead(path, error=f"unreadable ({e.strerror or e})")
    if not text.strip():
        return ConfigRead(path)
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        return ConfigRead(path, error=f"corrupt JSON at line {e.lineno}: {e.msg}")
    if not isinstance(obj, dict):
        return ConfigRead(path, error=f"top level must be an object, not {type(obj).__name__}")
    return ConfigRead(path, data=obj)


def overlay(base: Dict[str, Any], top: Dict[str, Any]) -> Dict[str, Any]:
    """Nested sections merge key by key; any other value in `top` replaces."""
    out = dict(base)
    for k, v in top.items():
        below = out.get(k)
        out[k] = overlay(below, v) if isinstance(v, dict) and isinstance(below, dict) else v
    return out
