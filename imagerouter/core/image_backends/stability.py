from __future__ import annotations

from typing import Any, Dict

from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult
from imagerouter.core.image_backends.sizing import ratio_label
from imagerouter.core.image_io import image_dimensions
from imagerouter.core.resilience.deadline import Deadline

API_BASE = "https://api.stability.ai/v2beta/stable-image/generate"
DEFAULT_MODEL = "stable-image-core-v1"
EDIT_MODEL = "stable-diffusion-3"


class StabilityBackend(ImageBackend):
    """Stability AI.  Both endpoints take multipart form data and return raw image bytes."""

    name = "STABILITY"
    credential_keys = ("STABILITY_API_KEY",)
    timeout_seconds = 30.0

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=1536,
            max_height=1536,
            supported_models=("stable-diffusion-3.5-large", "stable-diffusion-3.5-medium", DEFAULT_MODEL),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credential()}", "Accept": "image/*"}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        fields: Dict[str, Any] = {
            "prompt": request.prompt,
            "output_format": "png",
            "aspect_ratio": ratio_label(request.width or 1024, request.height or 1024),
        }
        if request.seed is not None:
            fields["seed"] = str(request.seed)
        # requests only sends multipart when files is non-empty
        files = {k: (None, str(v)) for k, v in fields.items()}
        resp = self._send("POST", f"{API_BASE}/core", deadline, headers=self._headers(), files=files)
        return self._result([self._image_from_response(resp, "png")], model=model)

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        base = self._load_image(request.base_image)
        width, height = request.width, request.height
        if not width or not height:
            w, h = image_dimensions(base.data, backend=self.name)
            width, height = width or w, height or h
        files = {
            "image": ("image.png", base.data, base.mime_type),
            "prompt": (None, request.prompt),
            "mode": (None, "image-to-image"),
            "output_format": (None, "png"),
            "aspect_ratio": (None, ratio_label(width, height)),
            "strength": (None, "0.7"),
        }
        resp = self._send("POST", f"{API_BASE}/sd3", deadline, headers=self._headers(), files=files)
        return self._result([self._image_from_response(resp, "png")], model=EDIT_MODEL)
