"""
Google Gemini / Imagen backend.

imagen-* models use the :predict endpoint; everything else (and every edit)
goes through the multimodal :generateContent endpoint.  The key travels as
a query parameter, never in logs.
"""
from __future__ import annotations

from typing import Any, Dict, List

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.image_backends.sizing import ratio_label
from imagerouter.core.image_io import to_base64
from imagerouter.core.resilience.deadline import Deadline

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "imagen-4.0-generate-001"
EDIT_MODEL = "gemini-2.5-flash-image-preview"

IMAGEN_RATIOS = (
    ("1:1", 1.0),
    ("4:3", 4 / 3),
    ("3:4", 3 / 4),
    ("16:9", 16 / 9),
    ("9:16", 9 / 16),
)

WATERMARK_WARNING = "All Gemini images include a SynthID watermark"

GENERATION_CONFIG = {"temperature": 0.8, "topK": 40, "topP": 0.95, "maxOutputTokens": 8192}


def _format_from_mime(mime: str) -> str:
    sub = str(mime or "").split("/", 1)[-1].lower()
    if sub in ("jpeg", "jpg"):
        return "jpeg"
    if sub == "webp":
        return "webp"
    return "png"


class GeminiBackend(ImageBackend):
    name = "GEMINI"
    credential_keys = ("GEMINI_API_KEY",)
    timeout_seconds = 60.0

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=2048,
            max_height=2048,
            supported_models=(
                "imagen-4.0-generate-001",
                "imagen-4.0-ultra-generate-001",
                "imagen-4.0-fast-generate-001",
                "imagen-3.0-generate-002",
                EDIT_MODEL,
            ),
            special_features=("text_rendering", "synthid_watermark", "multiple_images"),
            default_model=DEFAULT_MODEL,
        )

    def _params(self) -> Dict[str, str]:
        return {"key": self.credential()}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        if model.startswith("imagen-"):
            return self._imagen(request, model, deadline)
        parts = [{"text": request.prompt}]
        images = self._generate_content(model, parts, deadline)
        return ImageResult(
            images=tuple(images),
            backend=self.name,
            model=model,
            warnings=(WATERMARK_WARNING, "Gemini multimodal currently only supports 1:1 aspect ratio"),
        )

    def _imagen(self, request: GenerationRequest, model: str, deadline: Deadline) -> ImageResult:
        body = {
            "instances": [{"prompt": request.prompt}],
            "parameters": {
                "sampleCount": 1,
                "aspectRatio": ratio_label(request.width or 1024, request.height or 1024, ratios=IMAGEN_RATIOS),
            },
        }
        resp = self._send("POST", f"{API_BASE}/{model}:predict", deadline, params=self._params(), json=body)
        images: List[OutputImage] = []
        for pred in self._json(resp).get("predictions") or []:
            if pred.get("bytesBase64Encoded"):
                images.append(self._image_from_b64(pred["bytesBase64Encoded"], _format_from_mime(pred.get("mimeType", "image/png"))))
        if not images:
            raise TransientError("No image generated by Imagen.", backend=self.name)
        return ImageResult(images=tuple(images), backend=self.name, model=model, warnings=(WATERMARK_WARNING,))

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        model = request.model or EDIT_MODEL
        base = self._load_image(request.base_image)
        parts: List[Dict[str, Any]] = [{"inlineData": {"mimeType": base.mime_type, "data": to_base64(base.data)}}]
        if request.mask_image:
            mask = self._load_image(request.mask_image)
            parts.append({"inlineData": {"mimeType": mask.mime_type, "data": to_base64(mask.data)}})
            parts.append({"text": f"Using the second image as a mask/guide, {request.prompt}"})
        else:
            parts.append({"text": request.prompt})
        images = self._generate_content(model, parts, deadline)
        warnings = [WATERMARK_WARNING]
        if not request.mask_image:
            warnings.append("Editing without mask - Gemini will detect areas to modify")
        return ImageResult(images=tuple(images), backend=self.name, model=model, warnings=tuple(warnings))

    def _generate_content(self, model: str, parts: List[Dict[str, Any]], deadline: Deadline) -> List[OutputImage]:
        body = {"contents": [{"parts": parts}], "generationConfig": dict(GENERATION_CONFIG)}
        resp = self._send("POST", f"{API_BASE}/{model}:generateContent", deadline, params=self._params(), json=body)
        data = self._json(resp)
        candidates = data.get("candidates") or [{}]
        out_parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
        images: List[OutputImage] = []
        for part in out_parts:
            inline = part.get("inlineData")
            if inline and inline.get("data"):
                images.append(self._image_from_b64(inline["data"], _format_from_mime(inline.get("mimeType", "image/png"))))
        if not images:
            text = next((p.get("text") for p in out_parts if p.get("text")), "")
            raise TransientError(text or "Gemini did not return an image.", backend=self.name)
        return images
