"""
Black Forest Labs (FLUX) backend.

Submit -> poll flow:
1. POST /v1/<model endpoint>         -> {"id": ..., "polling_url": ...}
2. GET  /v1/get_result?id=<id>       until status is Ready or Failed
3. result.sample is a signed URL (or inline base64) for the image

Edits go to flux-kontext-pro (prompt only) or flux-pro-1.0-fill (with
mask).  Kontext cannot preserve a non-square aspect ratio reliably, so the
backend is declared square_edit_only.
"""
from __future__ import annotations

from typing import Any, Dict, List

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, EditRequest, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.image_backends.sizing import clamped_ratio_label
from imagerouter.core.image_io import image_dimensions, to_base64
from imagerouter.core.resilience.deadline import Deadline
from imagerouter.core.resilience.polling import JobStatus

API_BASE = "https://api.bfl.ml"
DEFAULT_MODEL = "flux-2-pro"

MODEL_ENDPOINTS = {
    "flux-2-pro": "v1/flux-2-pro",
    "flux-2-flex": "v1/flux-2-flex",
    "flux1.1-pro": "v1/flux-pro-1.1",
    "flux1.1-pro-ultra": "v1/flux-pro-1.1-ultra",
    "flux-kontext-pro": "v1/flux-kontext-pro",
    "flux-kontext-max": "v1/flux-kontext-max",
    "flux-fill-pro": "v1/flux-pro-1.0-fill",
}

FAILED_STATES = {"Failed", "Error", "Content Moderated", "Request Moderated"}


class BFLBackend(ImageBackend):
    name = "BFL"
    credential_keys = ("BFL_API_KEY",)
    timeout_seconds = 90.0
    poll_max_interval = 10.0
    poll_max_attempts = 30

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=True,
            max_width=2048,
            max_height=2048,
            supported_models=tuple(MODEL_ENDPOINTS),
            special_features=("character_consistency", "text_rendering", "photorealistic", "inpainting", "aspect_ratio_control"),
            default_model=DEFAULT_MODEL,
            square_edit_only=True,
        )

    def _headers(self) -> Dict[str, str]:
        return {"X-Key": self.credential(), "Content-Type": "application/json"}

    # ── operations ─────────────────────────────────────────────────

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        body: Dict[str, Any] = {
            "prompt": request.prompt,
            "width": request.width or 1024,
            "height": request.height or 1024,
            "steps": request.steps or (50 if "ultra" in model else 28),
            "guidance": request.guidance if request.guidance is not None else 3.5,
            "safety_tolerance": 2,
            "output_format": "png",
        }
        if request.seed is not None:
            body["seed"] = request.seed
        endpoint = MODEL_ENDPOINTS.get(model, MODEL_ENDPOINTS[DEFAULT_MODEL])
        result = self._submit_and_wait(f"{API_BASE}/{endpoint}", body, deadline)
        images = self._images(result, deadline)
        warnings = ("Ultra-high resolution image generated",) if "ultra" in model else ()
        return ImageResult(images=tuple(images), backend=self.name, model=model, warnings=warnings)

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        base = self._load_image(request.base_image)
        width, height = request.width, request.height
        if not width or not height:
            w, h = image_dimensions(base.data, backend=self.name)
            width, height = width or w, height or h
        if request.mask_image:
            model = "flux-fill-pro"
            mask = self._load_image(request.mask_image)
            body: Dict[str, Any] = {
                "prompt": request.prompt,
                "image": to_base64(base.data),
                "mask": to_base64(mask.data),
                "width": width,
                "height": height,
                "steps": request.steps or 28,
                "guidance": request.guidance if request.guidance is not None else 30,
                "output_format": "png",
            }
        else:
            model = "flux-kontext-pro"
            body = {
                "prompt": request.prompt,
                "input_image": to_base64(base.data),
                "aspect_ratio": clamped_ratio_label(width, height),
                "steps": request.steps or 28,
                "guidance": request.guidance if request.guidance is not None else 3.5,
                "safety_tolerance": 2,
                "output_format": "png",
            }
        result = self._submit_and_wait(f"{API_BASE}/{MODEL_ENDPOINTS[model]}", body, deadline)
        return self._result(self._images(result, deadline), model=model)

    # ── job handling ───────────────────────────────────────────────

    def _submit_and_wait(self, url: str, body: Dict[str, Any], deadline: Deadline) -> Dict[str, Any]:
        data = self._json(self._send("POST", url, deadline, headers=self._headers(), json=body))
        if data.get("sample") or (data.get("result") or {}).get("sample"):
            return data
        job_id = str(data.get("id") or "")
        if not job_id:
            raise TransientError("BFL response carried neither a job id nor an image.", backend=self.name)
        return self._poller().run(job_id, lambda jid: self._check(jid, deadline), deadline)

    def _check(self, job_id: str, deadline: Deadline) -> JobStatus:
        resp = self._send("GET", f"{API_BASE}/v1/get_result", deadline, headers={"X-Key": self.credential()}, params={"id": job_id})
        data = self._json(resp)
        status = str(data.get("status") or "")
        if status == "Ready":
            return JobStatus.complete(data)
        if status in FAILED_STATES:
            return JobStatus.failed(status)
        return JobStatus.pending(status)

    def _images(self, data: Dict[str, Any], deadline: Deadline) -> List[OutputImage]:
        sample = (data.get("result") or {}).get("sample") or data.get("sample")
        if not sample:
            raise TransientError("No image in BFL response.", backend=self.name)
        if str(sample).startswith(("http://", "https://")):
            return [self._image_from_url(sample, deadline, "png")]
        return [self._image_from_b64(sample, "png")]
