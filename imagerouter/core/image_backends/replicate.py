from __future__ import annotations

from typing import Any, Dict, List

from imagerouter.core.errors import InvalidInputError, TransientError
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import BackendCapabilities, GenerationRequest, ImageResult, OutputImage
from imagerouter.core.resilience.deadline import Deadline
from imagerouter.core.resilience.polling import JobStatus

API_BASE = "https://api.replicate.com/v1"
DEFAULT_MODEL = "black-forest-labs/flux-2-pro"

OFFICIAL_MODELS = (
    "black-forest-labs/flux-2-pro",
    "black-forest-labs/flux-2-dev",
    "black-forest-labs/flux-2-flex",
    "black-forest-labs/flux-1.1-pro",
    "black-forest-labs/flux-kontext-pro",
    "black-forest-labs/flux-schnell",
    "black-forest-labs/flux-dev",
)

KNOWN_VERSIONS = {
    "stability-ai/sdxl": "7762fd07cf82c948538e41f63f77d685e02b063e37e496e96eefd46c929f9bdc",
    "lucataco/sdxl-lightning-4step": "6f7a773af6fc3e8de9d5a3c00be77c17308914bf67772726aff83496ba1e3bbe",
}


class ReplicateBackend(ImageBackend):
    """
    Replicate predictions API.

    Official models are addressed by name; community models need a version
    id, looked up once per call when not in KNOWN_VERSIONS.  Predictions are
    polled once a second until succeeded/failed.
    """

    name = "REPLICATE"
    credential_keys = ("REPLICATE_API_TOKEN",)
    timeout_seconds = 90.0
    poll_initial_interval = 1.0
    poll_max_interval = 1.0
    poll_max_attempts = 60

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities(
            supports_generate=True,
            supports_edit=False,
            max_width=2048,
            max_height=2048,
            supported_models=OFFICIAL_MODELS,
            special_features=("text_rendering", "high_resolution"),
            default_model=DEFAULT_MODEL,
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.credential()}"}

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        model = request.model or DEFAULT_MODEL
        inputs: Dict[str, Any] = {
            "prompt": request.prompt,
            "width": request.width or 1024,
            "height": request.height or 1024,
            "num_outputs": 1,
        }
        if request.seed is not None:
            inputs["seed"] = request.seed
        if request.guidance is not None:
            inputs["guidance_scale"] = request.guidance
        if request.steps is not None:
            inputs["num_inference_steps"] = request.steps

        prediction = self._create_prediction(model, inputs, deadline)
        status = str(prediction.get("status") or "")
        if status != "succeeded":
            if status in ("failed", "canceled"):
                raise TransientError(f"Replicate model failed: {prediction.get('error') or status}", backend=self.name)
            prediction = self._poller().run(str(prediction.get("id") or ""), lambda pid: self._check(pid, deadline), deadline)

        urls = _output_urls(prediction.get("output"))
        if not urls:
            raise TransientError("Unexpected output format from Replicate.", backend=self.name)
        images: List[OutputImage] = [self._image_from_url(u, deadline) for u in urls]
        return self._result(images, model=model)

    # ── predictions ────────────────────────────────────────────────

    def _create_prediction(self, model: str, inputs: Dict[str, Any], deadline: Deadline) -> Dict[str, Any]:
        headers = dict(self._headers(), Prefer="wait")
        if model in OFFICIAL_MODELS:
            url = f"{API_BASE}/models/{model}/predictions"
            body: Dict[str, Any] = {"input": inputs}
        else:
            url = f"{API_BASE}/predictions"
            body = {"version": self._model_version(model, deadline), "input": inputs}
        data = self._json(self._send("POST", url, deadline, headers=headers, json=body))
        if not data.get("id") and data.get("status") != "succeeded":
            raise TransientError("Replicate did not return a prediction id.", backend=self.name)
        return data

    def _model_version(self, model: str, deadline: Deadline) -> str:
        if model in KNOWN_VERSIONS:
            return KNOWN_VERSIONS[model]
        if "/" not in model:
            raise InvalidInputError(f"Replicate model must be 'owner/name', got '{model}'.", backend=self.name)
        data = self._json(self._send("GET", f"{API_BASE}/models/{model}", deadline, headers=self._headers()))
        version = (data.get("latest_version") or {}).get("id") or (data.get("default_version") or {}).get("id")
        if not version:
            raise InvalidInputError(f"Could not find version for model: {model}", backend=self.name)
        return str(version)

    def _check(self, prediction_id: str, deadline: Deadline) -> JobStatus:
        data = self._json(self._send("GET", f"{API_BASE}/predictions/{prediction_id}", deadline, headers=self._headers()))
        status = str(data.get("status") or "")
        if status == "succeeded":
            return JobStatus.complete(data)
        if status in ("failed", "canceled"):
            return JobStatus.failed(str(data.get("error") or status))
        return JobStatus.pending(status)


def _output_urls(output: Any) -> List[str]:
    if isinstance(output, list):
        return [str(u) for u in output if u]
    if isinstance(output, str):
        return [output]
    if isinstance(output, dict) and output.get("url"):
        return [str(output["url"])]
    return []
