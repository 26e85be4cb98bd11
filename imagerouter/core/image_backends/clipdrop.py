from __future__ import annotations

from typing import Dict, Tuple

from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult
from imagerouter.core.resilience.deadline import Deadline

API_BASE = "https://clipdrop-api.co"
DEFAULT_MODEL = "stable-diffusion-xl"

EDIT_ENDPOINTS = {
    "remove-background": "/remove-background/v1",
    "remove-object": "/cleanup/v1",
    "remove-text": "/remove-text/v1",
    "replace-background": "/replace-background/v1",
    "upscale": "/image-upscaling/v1",
    "uncrop": "/uncrop/v1",
}

# first match wins
EDIT_TRIGGERS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("remove-background", ("remove background", "transparent")),
    ("remove-text", ("remove text", "delete text")),
    ("remove-object", ("remove object", "erase", "delete")),
    ("replace-background", ("replace background", "change background")),
    ("upscale", ("upscale", "enhance", "higher resolution")),
    ("uncrop", ("uncrop", "expand", "extend")),
)


def edit_type(prompt: str) -> str:
    lower = prompt.lower()
    for kind, triggers in EDIT_TRIGGERS:
        if any(t in lower for t in triggers):
            return kind
    return "replace-background"


class ClipdropBackend(ImageBackend):
    """Clipdrop: one endpoint per edit type, chosen from the prompt wording."""

    name = "CLIPDROP"
    credential_keys = ("CLIPDROP_API_KEY",)
    timeout_seconds = 30.0

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=1024,
            max_height=1024,
            supported_models=(DEFAULT_MODEL,),
            special_features=tuple(EDIT_ENDPOINTS),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"x-api-key": self.credential()}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        files = {"prompt": (None, request.prompt)}
        if request.seed is not None:
            files["seed"] = (None, str(request.seed))
        if request.guidance is not None:
            files["guidance_scale"] = (None, str(request.guidance))
        if request.steps is not None:
            files["num_inference_steps"] = (None, str(request.steps))
        resp = self._send("POST", f"{API_BASE}/text-to-image/v1", deadline, headers=self._headers(), files=files)
        return self._result([self._image_from_response(resp)], model=request.model or DEFAULT_MODEL)

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        kind = edit_type(request.prompt)
        base = self._load_image(request.base_image)
        files = {"image_file": ("image.png", base.data, "image/png")}
        if kind == "remove-object":
            if request.mask_image:
                files["mask_file"] = ("mask.png", self._load_image(request.mask_image).data, "image/png")
        elif kind == "upscale":
            if request.width:
                files["target_width"] = (None, str(request.width))
            if request.height:
                files["target_height"] = (None, str(request.height))
        elif kind not in ("remove-background", "remove-text"):
            files["prompt"] = (None, request.prompt)
        resp = self._send("POST", f"{API_BASE}{EDIT_ENDPOINTS[kind]}", deadline, headers=self._headers(), files=files)
        warnings = ("Background removed - image has transparency",) if kind == "remove-background" else ()
        return ImageResult(
            images=(self._image_from_response(resp),),
            backend=self.name,
            model=f"clipdrop-{kind}",
            warnings=warnings,
        )
