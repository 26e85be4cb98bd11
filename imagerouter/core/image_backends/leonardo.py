from __future__ import annotations

from typing import Any, Dict, List, Optional

from imagerouter.core.errors import TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.resilience.deadline import Deadline
from imagerouter.core.resilience.polling import JobStatus

API_BASE = "https://cloud.leonardo.ai/api/rest/v1"
DEFAULT_MODEL = "leonardo-diffusion-xl"

MODEL_IDS = {
    "leonardo-diffusion-xl": "1e60896f-3c26-4296-8ecc-53e2afecc132",
    "dreamshaper-v7": "e71a1c2f-4f80-4800-934f-2c68979d8cc8",
    "rpg-v5": "f1929ea2-b099-4d8c-a95a-b8a28d3f5b49",
    "photoreal-v2": "b24e16ff-06e3-43eb-9f82-6fcd85431356",
    "anime-pastel-dream": "e9b8c9f0-d8e0-4f16-8e2d-8cd1b3e7c0c0",
    "leonardo-vision-xl": "b63f7119-31dc-4540-969b-2a9df997e173",
}


def preset_style(prompt: str) -> Optional[str]:
    lower = prompt.lower()
    if "anime" in lower or "manga" in lower:
        return "ANIME"
    if "photo" in lower or "realistic" in lower:
        return "PHOTOREALISTIC"
    if "cinematic" in lower or "film" in lower:
        return "CINEMATIC"
    if "concept" in lower or "game" in lower:
        return "CONCEPT_ART"
    if "illustration" in lower or "art" in lower:
        return "ILLUSTRATION"
    return None


class LeonardoBackend(ImageBackend):
    """Leonardo.AI: generation only; jobs are polled until COMPLETE."""

    name = "LEONARDO"
    credential_keys = ("LEONARDO_API_KEY",)
    timeout_seconds = 60.0
    poll_max_attempts = 30

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=False,
            max_width=1024,
            max_height=1024,
            supported_models=tuple(MODEL_IDS),
            special_features=("character_consistency", "custom_models", "upscale"),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credential()}"}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        lower = request.prompt.lower()
        body: Dict[str, Any] = {
            "prompt": request.prompt,
            "modelId": MODEL_IDS.get(model, MODEL_IDS[DEFAULT_MODEL]),
            "width": request.width or 768,
            "height": request.height or 768,
            "num_images": 1,
            "num_inference_steps": request.steps or 30,
            "guidance_scale": request.guidance if request.guidance is not None else 7.0,
            "public": False,
            "alchemy": True,
        }
        if request.seed is not None:
            body["seed"] = request.seed
        style = preset_style(request.prompt)
        if style:
            body["presetStyle"] = style
        if "photo" in lower or "realistic" in lower:
            body.update({"photoReal": True, "photoRealVersion": "v2", "photoRealStrength": 0.5})

        created = self._json(self._send("POST", f"{API_BASE}/generations", deadline, headers=self._headers(), json=body))
        generation_id = str((created.get("sdGenerationJob") or {}).get("generationId") or "")
        if not generation_id:
            raise TransientError("Failed to start Leonardo generation job.", backend=self.name)

        generation = self._poller().run(generation_id, lambda gid: self._check(gid, deadline), deadline)
        images: List[OutputImage] = []
        for img in generation.get("generated_images") or []:
            url = str(img.get("url") or "")
            if url:
                images.append(self._image_from_url(url, deadline, "webp" if ".webp" in url else "png"))
        if not images:
            raise TransientError("Leonardo generation completed but no images returned.", backend=self.name)
        warnings = ("Content may be NSFW",) if generation.get("nsfw") else ()
        return ImageResult(images=tuple(images), backend=self.name, model=model, warnings=warnings)

    def _check(self, generation_id: str, deadline: Deadline) -> JobStatus:
        data = self._json(self._send("GET", f"{API_BASE}/generations/{generation_id}", deadline, headers=self._headers()))
        generation = data.get("generations_by_pk") or {}
        status = str(generation.get("status") or "")
        if status == "COMPLETE":
            return JobStatus.complete(generation)
        if status == "FAILED":
            return JobStatus.failed("generation failed")
        return JobStatus.pending(status)
