from __future__ import annotations

import threading
from typing import Dict, List, Mapping, Optional, Sequence, Type

from imagerouter.core.errors import InvalidInputError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.bfl import BFLBackend
from imagerouter.core.image_backends.clipdrop import ClipdropBackend
from imagerouter.core.image_backends.fal import FalBackend
from imagerouter.core.image_backends.gemini import GeminiBackend
from imagerouter.core.image_backends.ideogram import IdeogramBackend
from imagerouter.core.image_backends.leonardo import LeonardoBackend
from imagerouter.core.image_backends.mock import MockBackend
from imagerouter.core.image_backends.models import BackendStatus
from imagerouter.core.image_backends.openai import OpenAIBackend
from imagerouter.core.image_backends.recraft import RecraftBackend
from imagerouter.core.image_backends.replicate import ReplicateBackend
from imagerouter.core.image_backends.stability import StabilityBackend
from imagerouter.core.resilience.context import ResilienceContext

# Listing order for `backends` output.
BACKEND_CLASSES: Sequence[Type[ImageBackend]] = (
    MockBackend,
    OpenAIBackend,
    StabilityBackend,
    ReplicateBackend,
    GeminiBackend,
    IdeogramBackend,
    BFLBackend,
    LeonardoBackend,
    FalBackend,
    ClipdropBackend,
    RecraftBackend,
)

ALIASES = {"DALLE": "OPENAI", "STABLE": "STABILITY"}


def canonical_name(name: str) -> str:
    n = str(name or "").strip().upper()
    return ALIASES.get(n, n)


class BackendRegistry:
    """
    Name -> backend instance.

    Instances are built lazily, once per name, and share one
    ResilienceContext.  Nothing here performs network I/O.
    """

    def __init__(
        self,
        resilience: ResilienceContext,
        *,
        env: Optional[Mapping[str, str]] = None,
        backend_classes: Optional[Sequence[Type[ImageBackend]]] = None,
    ) -> None:
        self.resilience = resilience
        self._env = env
        self._classes: Dict[str, Type[ImageBackend]] = {}
        for cls in backend_classes if backend_classes is not None else BACKEND_CLASSES:
            self._classes[canonical_name(cls.name)] = cls
        self._instances: Dict[str, ImageBackend] = {}
        self._lock = threading.Lock()

    def names(self) -> List[str]:
        return list(self._classes)

    def get(self, name: str, *, required: bool = False) -> Optional[ImageBackend]:
        key = canonical_name(name)
        cls = self._classes.get(key)
        if cls is None:
            if required:
                raise InvalidInputError(
                    f"Unknown backend: {name}. Available: {', '.join(self.names())}",
                    backend=key,
                )
            return None
        with self._lock:
            inst = self._instances.get(key)
            if inst is None:
                inst = cls(self.resilience, env=self._env)
                self._instances[key] = inst
            return inst

    def all(self) -> List[ImageBackend]:
        return [b for b in (self.get(n) for n in self.names()) if b is not None]

    def configured(self) -> List[str]:
        return [b.name for b in self.all() if b.is_configured()]

    def configured_edit(self) -> List[str]:
        return [b.name for b in self.all() if b.is_configured() and b.capabilities().supports_edit]

    def status(self) -> List[BackendStatus]:
        return [
            BackendStatus(
                name=b.name,
                configured=b.is_configured(),
                required_credential_keys=b.required_credential_keys(),
                capabilities=b.capabilities(),
            )
            for b in self.all()
        ]
