from __future__ import annotations

from typing import Any, Dict, List

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.resilience.deadline import Deadline

API_BASE = "https://external.api.recraft.ai/v1"
DEFAULT_MODEL = "recraftv3"


def recraft_style(prompt: str) -> str:
    lower = prompt.lower()
    if "vector" in lower or "svg" in lower:
        return "vector_illustration"
    if "digital art" in lower or "illustration" in lower:
        return "digital_illustration"
    return ""


def detect_format(data: bytes, declared: str = "") -> str:
    head = data[:100].decode("utf-8", errors="ignore")
    if "<svg" in head or declared == "vector":
        return "svg"
    if len(data) > 12 and data[8:12] == b"WEBP":
        return "webp"
    return "png"


class RecraftBackend(ImageBackend):
    """Recraft V3: design work, text rendering and vector (SVG) output."""

    name = "RECRAFT"
    credential_keys = ("RECRAFT_API_KEY",)
    timeout_seconds = 45.0

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=False,
            max_width=2048,
            max_height=2048,
            supported_models=(DEFAULT_MODEL,),
            special_features=("vector_output", "text_rendering", "design"),
            default_model=DEFAULT_MODEL,
        )

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        body: Dict[str, Any] = {
            "prompt": request.prompt,
            "size": f"{request.width or 1024}x{request.height or 1024}",
            "model": DEFAULT_MODEL,
            "response_format": "url",
            "n": 1,
        }
        style = recraft_style(request.prompt)
        if style:
            body["style"] = style
        headers = {"Authorization": f"Bearer {self.credential()}", "Content-Type": "application/json"}
        data = self._json(self._send("POST", f"{API_BASE}/images/generations", deadline, headers=headers, json=body))
        items = data.get("data") or []
        if not items or not (items[0] or {}).get("url"):
            raise TransientError("No images returned from Recraft API.", backend=self.name)

        declared = str(items[0].get("format") or "")
        raw = self._download(str(items[0]["url"]), deadline)
        image = OutputImage(data=raw, format=detect_format(raw, declared))

        warnings: List[str] = []
        if image.format == "svg":
            warnings.append("Vector output (SVG format) - scalable and print-ready")
        warnings.append("Text rendering optimized")
        return ImageResult(images=(image,), backend=self.name, model=DEFAULT_MODEL, warnings=tuple(warnings))
