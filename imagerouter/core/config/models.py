from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from imagerouter.core.limits.limiter import LimitsConfig
from imagerouter.core.resilience.retry import RetryPolicy


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    ttl_seconds: float = Field(default=300.0, gt=0.0, le=86_400.0)
    max_entries: int = Field(default=100, ge=1, le=100_000)


class TimeoutsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    default_seconds: float = Field(default=30.0, gt=0.0, le=3600.0)
    backends: Dict[str, float] = Field(default_factory=dict)

    @field_validator("backends")
    @classmethod
    def _upper_keys(cls, v: Dict[str, float]) -> Dict[str, float]:
        return {str(k).strip().upper(): secs for k, secs in v.items()}

    def for_backend(self, name: str, fallback: Optional[float] = None) -> float:
        v = self.backends.get(str(name or "").upper())
        if v is not None:
            return float(v)
        return float(fallback) if fallback is not None else float(self.default_seconds)


class PayloadConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    max_image_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    max_prompt_length: int = Field(default=4000, ge=1, le=100_000)
    large_output_warning_bytes: int = Field(default=5 * 1024 * 1024, ge=1024)


class RouterSettings(BaseModel):
    """Process-wide router configuration.  Defaults are the reference values."""

    model_config = ConfigDict(extra="forbid")

    default_backend: str = ""
    disable_fallback: bool = False
    allow_mock: bool = False
    test_mode: bool = False
    log_dir: str = "logs"
    output_dir: str = "artifacts/images"

    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    payload: PayloadConfig = Field(default_factory=PayloadConfig)

    @field_validator("default_backend")
    @classmethod
    def _norm_backend(cls, v: str) -> str:
        v = str(v or "").strip()
        if v.lower() == "auto":
            return "auto"
        return v.upper()

    @property
    def auto_default(self) -> bool:
        return self.default_backend == "auto"
