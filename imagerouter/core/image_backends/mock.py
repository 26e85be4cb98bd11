from __future__ import annotations

import io
import logging
from typing import Tuple

from PIL import Image

from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.resilience.deadline import Deadline

logger = logging.getLogger(__name__)

MAX_SIDE = 256


def prompt_hash(prompt: str) -> int:
    """Signed 32-bit string hash; stable across runs, unlike hash()."""
    h = 0
    for ch in prompt:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - (1 << 32) if h >= (1 << 31) else h


def _colors(prompt: str, inverted: bool) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
    h = prompt_hash(prompt)
    start = (abs(h) % 256, abs(h >> 8) % 256, abs(h >> 16) % 256)
    if inverted:
        end = tuple(255 - c for c in start)
    else:
        end = tuple((c + 128) % 256 for c in start)
    return start, end  # type: ignore[return-value]


def gradient_png(width: int, height: int, prompt: str, *, inverted: bool = False) -> bytes:
    start, end = _colors(prompt, inverted)
    total = float(width + height)
    pixels = bytearray()
    for y in range(height):
        for x in range(width):
            t = (x + y) / total
            pixels.extend(int(a * (1 - t) + b * t) for a, b in zip(start, end))
    im = Image.frombytes("RGB", (width, height), bytes(pixels))
    out = io.BytesIO()
    im.save(out, format="PNG")
    return out.getvalue()


class MockBackend(ImageBackend):
    """
    Offline backend for tests and demos.  Always configured, never touches
    the network, and is only auto-selected when ALLOW_MOCK_BACKEND is set.
    """

    name = "MOCK"
    credential_keys = ()

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=MAX_SIDE,
            max_height=MAX_SIDE,
            supported_models=("mock-v1",),
            default_model="mock-v1",
        )

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        logger.info("mock backend generating image")
        req_w = request.width or MAX_SIDE
        req_h = request.height or MAX_SIDE
        width, height = min(req_w, MAX_SIDE), min(req_h, MAX_SIDE)
        image = OutputImage(data=gradient_png(width, height, request.prompt), format="png")
        warnings = ["This is a mock image for testing. Configure real backends for actual generation."]
        if (width, height) != (req_w, req_h):
            warnings.append(f"Requested size {req_w}x{req_h} was clamped to {width}x{height}")
        return ImageResult(images=(image,), backend=self.name, model="mock-v1", warnings=tuple(warnings))

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        logger.info("mock backend editing image")
        self._load_image(request.base_image)
        image = OutputImage(data=gradient_png(MAX_SIDE, MAX_SIDE, request.prompt, inverted=True), format="png")
        return ImageResult(
            images=(image,),
            backend=self.name,
            model="mock-v1",
            warnings=("This is a mock edited image for testing. Configure real backends for actual editing.",),
        )
