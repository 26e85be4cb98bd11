from __future__ import annotations

import io
from typing import Any, Dict, List, Optional

from PIL import Image

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.image_backends.sizing import closest_label
from imagerouter.core.image_io import image_dimensions
from imagerouter.core.resilience.deadline import Deadline

API_BASE = "https://api.ideogram.ai"
DEFAULT_MODEL = "V_3"

V3_RATIOS = (
    ("1x1", 1.0),
    ("16x9", 1.778),
    ("9x16", 0.5625),
    ("4x3", 1.333),
    ("3x4", 0.75),
    ("3x2", 1.5),
    ("2x3", 0.667),
)

LEGACY_RATIOS = (
    ("ASPECT_1_1", 1.0),
    ("ASPECT_16_9", 1.778),
    ("ASPECT_9_16", 0.5625),
    ("ASPECT_4_3", 1.333),
    ("ASPECT_3_4", 0.75),
    ("ASPECT_10_16", 0.625),
    ("ASPECT_16_10", 1.6),
)

TEXT_KEYWORDS = (
    "text", "logo", "poster", "banner", "sign", "quote", "typography", "lettering",
    "word", "title", "headline", "label", "badge", "sticker",
)


def is_text_request(prompt: str) -> bool:
    lower = prompt.lower()
    return any(k in lower for k in TEXT_KEYWORDS)


def style_preset(prompt: str) -> Optional[str]:
    lower = prompt.lower()
    if any(k in lower for k in ("logo", "brand", "poster", "flyer")):
        return "DESIGN"
    if "photo" in lower or "realistic" in lower:
        return "REALISTIC"
    return None


def border_mask(width: int, height: int) -> bytes:
    """White editable area with a thin black border; used when no mask is supplied."""
    border = max(1, int(width * 0.005))
    im = Image.new("RGB", (width, height), (0, 0, 0))
    if width > 2 * border and height > 2 * border:
        im.paste((255, 255, 255), (border, border, width - border, height - border))
    out = io.BytesIO()
    im.save(out, format="PNG")
    return out.getvalue()


class IdeogramBackend(ImageBackend):
    """Ideogram: strongest at text rendering (logos, posters, packaging)."""

    name = "IDEOGRAM"
    credential_keys = ("IDEOGRAM_API_KEY",)
    timeout_seconds = 60.0

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=2048,
            max_height=2048,
            supported_models=("V_3", "V_3_TURBO", "V_2", "V_2_TURBO", "V_1"),
            special_features=("text_rendering", "photorealism", "typography"),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Api-Key": self.credential()}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        text_heavy = is_text_request(request.prompt)
        preset = style_preset(request.prompt)
        if model in ("V_3", "V_3_TURBO"):
            url = f"{API_BASE}/v1/ideogram-v3/generate"
            body: Dict[str, Any] = {
                "prompt": request.prompt,
                "aspect_ratio": closest_label(request.width, request.height, V3_RATIOS),
                "magic_prompt": "OFF" if text_heavy else "AUTO",
                "rendering_speed": "TURBO" if model == "V_3_TURBO" else "DEFAULT",
            }
            if preset:
                body["style_type"] = preset
        else:
            url = f"{API_BASE}/generate"
            inner: Dict[str, Any] = {
                "prompt": request.prompt,
                "model": model,
                "aspect_ratio": closest_label(request.width, request.height, LEGACY_RATIOS),
                "magic_prompt_option": "OFF" if text_heavy else "AUTO",
            }
            if preset:
                inner["style_type"] = preset
            body = {"image_request": inner}
        resp = self._send("POST", url, deadline, headers=dict(self._headers(), **{"Content-Type": "application/json"}), json=body)
        images = self._images(self._json(resp), deadline)
        warnings = ("Optimized for text rendering",) if text_heavy else ()
        return ImageResult(images=tuple(images), backend=self.name, model=model, warnings=warnings)

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        base = self._load_image(request.base_image)
        if request.mask_image:
            mask = self._load_image(request.mask_image).data
        else:
            w, h = image_dimensions(base.data, backend=self.name)
            mask = border_mask(w, h)
        files = {
            "image": ("image.png", base.data, "image/png"),
            "mask": ("mask.png", mask, "image/png"),
            "prompt": (None, request.prompt),
        }
        resp = self._send("POST", f"{API_BASE}/v1/ideogram-v3/edit", deadline, headers=self._headers(), files=files)
        return self._result(self._images(self._json(resp), deadline), model=request.model or DEFAULT_MODEL)

    def _images(self, payload: Dict[str, Any], deadline: Deadline) -> List[OutputImage]:
        out: List[OutputImage] = []
        for item in payload.get("data") or []:
            if item.get("url"):
                out.append(self._image_from_url(item["url"], deadline, "png"))
            elif item.get("base64"):
                b64 = str(item["base64"])
                if b64.startswith("data:"):
                    out.append(self._image_from_url(b64, deadline))
                else:
                    out.append(self._image_from_b64(b64, "png"))
        if not out:
            raise TransientError("No image data in Ideogram response.", backend=self.name)
        return out
