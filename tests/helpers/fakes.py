from __future__ import annotations

import io
import json
from typing import Any, Dict, List, Optional, Tuple, Type

import requests
from PIL import Image

from imagerouter.core.config.models import RouterSettings
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, ImageResult, OutputImage
from imagerouter.core.resilience.context import ResilienceContext


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self._t = float(start)

    def time(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        self._t += float(seconds)


class StubResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Any = None,
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json_data = json_data
        self.content = content
        self.headers = headers or {}
        self.text = json.dumps(json_data) if json_data is not None else ""

    def json(self):
        if self._json_data is None:
            raise ValueError("no json body")
        return self._json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


def png_bytes(width: int = 8, height: int = 8, color: Tuple[int, int, int] = (200, 40, 40)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (width, height), color).save(out, format="PNG")
    return out.getvalue()


def make_context(settings: Optional[RouterSettings] = None, clock: Optional[FakeClock] = None) -> ResilienceContext:
    """Resilience context with a fake clock and no real backoff sleeps."""
    clock = clock or FakeClock()
    return ResilienceContext.from_settings(
        settings or RouterSettings(test_mode=True),
        time_fn=clock.time,
        sleep=lambda _s: None,
        rand=lambda: 0.0,
        clock=clock.time,
    )


class FakeBackend(ImageBackend):
    """
    In-memory backend for dispatcher tests.

    `fail_with` is raised on every call while set; `configured` toggles
    is_configured() without touching credentials.
    """

    name = "FAKE"
    credential_keys = ()
    caps = BackendCapabilities(supports_generate=True, supports_edit=True, max_width=2048, max_height=2048)

    def __init__(self, resilience, *, env=None):  # noqa: ANN001
        super().__init__(resilience, env=env)
        self.calls: List[str] = []
        self.fail_with: Optional[Exception] = None
        self.configured = True
        self.output = png_bytes()

    def is_configured(self) -> bool:
        return self.configured

    def required_credential_keys(self) -> List[str]:
        return [f"{self.name}_API_KEY"]

    def capabilities(self) -> BackendCapabilities:
        return self.caps

    def _respond(self, op: str) -> ImageResult:
        self.calls.append(op)
        if self.fail_with is not None:
            raise self.fail_with
        return ImageResult(images=(OutputImage(data=self.output, format="png"),), backend=self.name, model="fake-1")

    def _generate(self, request, deadline):  # noqa: ANN001
        return self._respond("generate")

    def _edit(self, request, deadline):  # noqa: ANN001
        return self._respond("edit")


def fake_backend(name: str, **caps: Any) -> Type[FakeBackend]:
    defaults: Dict[str, Any] = {"supports_generate": True, "supports_edit": True, "max_width": 2048, "max_height": 2048}
    defaults.update(caps)
    return type(f"Fake{name.title()}Backend", (FakeBackend,), {"name": name, "caps": BackendCapabilities(**defaults)})
