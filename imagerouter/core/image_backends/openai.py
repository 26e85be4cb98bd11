"""
OpenAI images backend.

Generation posts JSON to /v1/images/generations; edits post multipart form
data to /v1/images/edits.  gpt-image models answer with URLs, dall-e models
with base64 payloads.
"""
from __future__ import annotations

import io
from typing import Any, Dict, List, Optional

from PIL import Image, UnidentifiedImageError

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.resilience.deadline import Deadline

API_BASE = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-image-1.5"
LEGACY_MODELS = ("dall-e-3", "dall-e-2")


def map_size(width: Optional[int], height: Optional[int], model: str) -> str:
    legacy = model in LEGACY_MODELS
    if width and height:
        if (width, height) == (1024, 1024):
            return "1024x1024"
        exact = {(1792, 1024), (1024, 1792)} if legacy else {(1536, 1024), (1024, 1536)}
        if (width, height) in exact:
            return f"{width}x{height}"
        ratio = width / height
        if legacy:
            if ratio > 1.5:
                return "1792x1024"
            if ratio < 0.7:
                return "1024x1792"
        else:
            if ratio > 1.2:
                return "1536x1024"
            if ratio < 0.8:
                return "1024x1536"
    return "1024x1024"


def ensure_rgba_png(data: bytes) -> bytes:
    """The edits endpoint wants RGBA input; RGB images get an alpha channel."""
    try:
        with Image.open(io.BytesIO(data)) as im:
            if im.mode == "RGBA":
                return data
            out = io.BytesIO()
            im.convert("RGBA").save(out, format="PNG")
            return out.getvalue()
    except (UnidentifiedImageError, OSError):
        return data


class OpenAIBackend(ImageBackend):
    name = "OPENAI"
    credential_keys = ("OPENAI_API_KEY",)
    timeout_seconds = 30.0
    edit_timeout_seconds = 180.0

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=1536,
            max_height=1536,
            supported_models=("gpt-image-1.5", "gpt-image-1", "dall-e-3", "dall-e-2"),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credential()}"}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        body: Dict[str, Any] = {
            "model": model,
            "prompt": request.prompt,
            "size": map_size(request.width, request.height, model),
            "n": 1,
        }
        if model in LEGACY_MODELS:
            body["response_format"] = "b64_json"
        resp = self._send("POST", f"{API_BASE}/images/generations", deadline, headers=self._headers(), json=body)
        return self._result(self._images(self._json(resp), deadline), model=model)

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        base = self._load_image(request.base_image)
        files = {"image": ("image.png", ensure_rgba_png(base.data), "image/png")}
        if request.mask_image:
            mask = self._load_image(request.mask_image)
            files["mask"] = ("mask.png", mask.data, "image/png")
        data: Dict[str, Any] = {"model": model, "prompt": request.prompt, "n": "1"}
        if model == "dall-e-2":
            data["response_format"] = "b64_json"
        else:
            data["output_format"] = "png"
        resp = self._send("POST", f"{API_BASE}/images/edits", deadline, headers=self._headers(), data=data, files=files)
        return self._result(self._images(self._json(resp), deadline), model=model)

    def _images(self, payload: Dict[str, Any], deadline: Deadline) -> List[OutputImage]:
        out: List[OutputImage] = []
        for item in payload.get("data") or []:
            if item.get("b64_json"):
                out.append(self._image_from_b64(item["b64_json"], "png"))
            elif item.get("url"):
                out.append(self._image_from_url(item["url"], deadline, "png"))
        if not out:
            raise TransientError("No image data in OpenAI response.", backend=self.name)
        return out
