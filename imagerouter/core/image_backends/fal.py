from __future__ import annotations

from typing import Any, Dict, List

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.resilience.deadline import Deadline
from imagerouter.core.resilience.polling import JobStatus

API_BASE = "https://fal.run"
DEFAULT_MODEL = "flux-2-pro"

MODEL_ENDPOINTS = {
    "flux-2-pro": "fal-ai/flux-2-pro",
    "flux-2-flex": "fal-ai/flux-2-flex",
    "fast-sdxl": "fal-ai/fast-sdxl",
    "fast-lightning-sdxl": "fal-ai/fast-lightning-sdxl",
    "flux-pro": "fal-ai/flux-pro",
    "flux-realism": "fal-ai/flux-realism",
    "stable-diffusion-v3": "fal-ai/stable-diffusion-v3-medium",
    "animagine-xl": "fal-ai/animagine-xl-v31",
    "playground-v2": "fal-ai/playground-v25",
    "realvisxl-v4": "fal-ai/realvisxl-v4",
}


def preset_size(width: int, height: int) -> str:
    r = (width or 1024) / (height or 1024)
    if r > 1.7:
        return "landscape_16_9"
    if r > 1.3:
        return "landscape_4_3"
    if r < 0.6:
        return "portrait_9_16"
    if r < 0.8:
        return "portrait_3_4"
    return "square"


def build_body(request: GenerationRequest, endpoint: str) -> Dict[str, Any]:
    fast = "fast" in endpoint
    default_steps = 8 if fast else (28 if "flux-2" in endpoint else 25)
    body: Dict[str, Any] = {
        "prompt": request.prompt,
        "num_inference_steps": request.steps or default_steps,
        "guidance_scale": request.guidance if request.guidance is not None else 3.5,
        "num_images": 1,
        "enable_safety_checker": True,
        "format": "png",
    }
    if "flux" in endpoint:
        body["image_size"] = {"width": request.width or 1024, "height": request.height or 1024}
    else:
        body["image_size"] = preset_size(request.width or 1024, request.height or 1024)
    if request.seed is not None:
        body["seed"] = request.seed
    if fast:
        body["enable_lcm"] = True
        body["num_inference_steps"] = min(request.steps or 4, 8)
    elif "flux-2-flex" in endpoint:
        body["num_inference_steps"] = max(10, min(request.steps or 28, 50))
    return body


class FalBackend(ImageBackend):
    """
    fal.ai.  The run endpoint answers synchronously for fast models and with
    a request_id otherwise; queued requests are polled until COMPLETED.
    """

    name = "FAL"
    credential_keys = ("FAL_API_KEY",)
    timeout_seconds = 60.0
    poll_initial_interval = 0.5
    poll_max_attempts = 30

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=False,
            max_width=1536,
            max_height=1536,
            supported_models=tuple(MODEL_ENDPOINTS),
            special_features=("fast_generation", "upscale"),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Key {self.credential()}"}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        endpoint = MODEL_ENDPOINTS.get(model, MODEL_ENDPOINTS[DEFAULT_MODEL])
        data = self._json(
            self._send("POST", f"{API_BASE}/{endpoint}", deadline, headers=self._headers(), json=build_body(request, endpoint))
        )
        if not data.get("images"):
            request_id = str(data.get("request_id") or "")
            if not request_id:
                raise TransientError("Unexpected response format from fal.ai.", backend=self.name)
            data = self._poller().run(request_id, lambda rid: self._check(endpoint, rid, deadline), deadline)
        return self._process(data, model, deadline)

    def _check(self, endpoint: str, request_id: str, deadline: Deadline) -> JobStatus:
        data = self._json(self._send("GET", f"{API_BASE}/{endpoint}/requests/{request_id}", deadline, headers=self._headers()))
        status = str(data.get("status") or "")
        if status == "COMPLETED" and data.get("images"):
            return JobStatus.complete(data)
        if status == "FAILED":
            return JobStatus.failed(str(data.get("error") or "generation failed"))
        return JobStatus.pending(status)

    def _process(self, data: Dict[str, Any], model: str, deadline: Deadline) -> ImageResult:
        images: List[OutputImage] = []
        for img in data.get("images") or []:
            url = img if isinstance(img, str) else str((img or {}).get("url") or "")
            if url:
                images.append(self._image_from_url(url, deadline, "webp" if ".webp" in url else "png"))
        if not images:
            raise TransientError("No images returned by fal.ai.", backend=self.name)
        warnings: List[str] = []
        nsfw = data.get("has_nsfw_concepts") or []
        if nsfw and nsfw[0]:
            warnings.append("Content may be NSFW")
        timings = data.get("timings") or {}
        elapsed = timings.get("inference") or timings.get("total")
        if elapsed:
            warnings.append(f"Generated in {float(elapsed):.0f}ms")
        return ImageResult(images=tuple(images), backend=self.name, model=model, warnings=tuple(warnings))
