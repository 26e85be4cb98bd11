from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

from imagerouter.core.errors import NotConfiguredError, OperationNotImplementedError, TransientError
from imagerouter.core.image_backends import http
from imagerouter.core.image_backends.models import (
    BackendCapabilities,
    EditRequest,
    GenerationRequest,
    ImageResult,
    OutputImage,
)
from imagerouter.core.image_io import LoadedImage, load_image, reference_digest, sniff_format
from imagerouter.core.logger import prompt_preview
from imagerouter.core.resilience.cache import fingerprint
from imagerouter.core.resilience.context import ResilienceContext
from imagerouter.core.resilience.deadline import CancelToken, Deadline
from imagerouter.core.resilience.polling import JobPoller
from imagerouter.core.resilience.validation import validate_api_key, validate_payload_size, validate_prompt

logger = logging.getLogger(__name__)


class ImageBackend:
    """
    Image backend interface.

    Subclasses declare `name`, `credential_keys` and `timeout_seconds`, and
    override capabilities() plus _generate() and/or _edit().  The public
    generate()/edit() methods wrap those hooks in the resilience pipeline:

    - configuration and prompt checks      (no network)
    - rate-limit slot                      (released on every exit)
    - response cache lookup
    - retry executor, one Deadline per attempt
    - cache population on success only
    """

    name: str = "base"
    credential_keys: Tuple[str, ...] = ()
    timeout_seconds: Optional[float] = None
    edit_timeout_seconds: Optional[float] = None
    poll_initial_interval: float = 1.0
    poll_max_interval: float = 5.0
    poll_max_attempts: int = 60

    def __init__(self, resilience: ResilienceContext, *, env: Optional[Mapping[str, str]] = None) -> None:
        self.resilience = resilience
        self._env = os.environ if env is None else env

    # ── configuration ──────────────────────────────────────────────

    @property
    def settings(self):
        return self.resilience.settings

    def required_credential_keys(self) -> List[str]:
        return list(self.credential_keys)

    def credential(self, key: Optional[str] = None) -> str:
        k = key or (self.credential_keys[0] if self.credential_keys else "")
        return str(self._env.get(k, "") or "").strip() if k else ""

    def is_configured(self) -> bool:
        if not self.credential_keys:
            return True
        return all(
            validate_api_key(self.credential(k), backend=self.name, test_mode=self.settings.test_mode)
            for k in self.credential_keys
        )

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities()

    def timeout_for(self, operation: str) -> float:
        declared = self.edit_timeout_seconds if operation == "edit" and self.edit_timeout_seconds else self.timeout_seconds
        return self.settings.timeouts.for_backend(self.name, declared)

    # ── public operations ──────────────────────────────────────────

    def generate(self, request: GenerationRequest, *, cancel: Optional[CancelToken] = None) -> ImageResult:
        if not self.capabilities().supports_generate:
            raise OperationNotImplementedError(f"{self.name} backend does not implement generate.", backend=self.name)
        return self._run("generate", request, self._generate, cancel)

    def edit(self, request: EditRequest, *, cancel: Optional[CancelToken] = None) -> ImageResult:
        if not self.capabilities().supports_edit:
            raise OperationNotImplementedError(f"{self.name} backend does not implement edit.", backend=self.name)
        return self._run("edit", request, self._edit, cancel)

    # ── hooks ──────────────────────────────────────────────────────

    def _generate(self, request: GenerationRequest, deadline: Deadline) -> ImageResult:
        raise OperationNotImplementedError(f"{self.name} backend does not implement generate.", backend=self.name)

    def _edit(self, request: EditRequest, deadline: Deadline) -> ImageResult:
        raise OperationNotImplementedError(f"{self.name} backend does not implement edit.", backend=self.name)

    # ── pipeline ───────────────────────────────────────────────────

    def cache_key(self, operation: str, request: GenerationRequest) -> str:
        fields = {
            "operation": operation,
            "backend": self.name,
            "prompt": request.prompt,
            "model": request.model,
            "width": request.width,
            "height": request.height,
            "seed": request.seed,
        }
        if isinstance(request, EditRequest):
            fields["base_image"] = reference_digest(request.base_image)
            fields["mask_image"] = reference_digest(request.mask_image)
        return fingerprint(**fields)

    def _run(
        self,
        operation: str,
        request: Any,
        fn: Callable[[Any, Deadline], ImageResult],
        cancel: Optional[CancelToken],
    ) -> ImageResult:
        if not self.is_configured():
            keys = ", ".join(self.required_credential_keys())
            raise NotConfiguredError(
                f"{self.name} is not configured. Set {keys}.",
                backend=self.name,
                required=self.required_credential_keys(),
            )
        validate_prompt(request.prompt, backend=self.name, max_length=self.settings.payload.max_prompt_length)

        ctx = self.resilience
        timeout = self.timeout_for(operation)
        with ctx.limiter.slot(self.name):
            key = self.cache_key(operation, request)
            if self.settings.cache.enabled:
                cached = ctx.cache.get(key)
                if cached is not None:
                    logger.debug("cache hit for %s %s", self.name, operation)
                    return cached

            logger.info("%s %s model=%s size=%sx%s", self.name, operation, request.model or "default", request.width, request.height)
            logger.debug("%s prompt preview: %s", self.name, prompt_preview(request.prompt))

            def attempt() -> ImageResult:
                with Deadline(timeout, backend=self.name, parent=cancel, clock=ctx.clock) as deadline:
                    return fn(request, deadline)

            result = ctx.retry.run(attempt, backend=self.name, cancel=cancel)
            if self.settings.cache.enabled:
                ctx.cache.put(key, result)
            return result

    # ── helpers for adapters ───────────────────────────────────────

    def _send(self, method: str, url: str, deadline: Deadline, **kwargs: Any) -> Any:
        return http.send(method, url, backend=self.name, deadline=deadline, max_bytes=self.settings.payload.max_image_bytes, **kwargs)

    def _download(self, url: str, deadline: Deadline) -> bytes:
        return http.download(url, backend=self.name, deadline=deadline, max_bytes=self.settings.payload.max_image_bytes)

    def _json(self, resp: Any) -> dict:
        return http.json_body(resp, backend=self.name)

    def _load_image(self, ref: str) -> LoadedImage:
        return load_image(ref, backend=self.name, max_bytes=self.settings.payload.max_image_bytes)

    def _poller(self) -> JobPoller:
        return JobPoller(
            self.name,
            initial_interval=self.poll_initial_interval,
            max_interval=self.poll_max_interval,
            max_attempts=self.poll_max_attempts,
        )

    def _result(self, images: Sequence[OutputImage], model: Optional[str] = None) -> ImageResult:
        return ImageResult(images=tuple(images), backend=self.name, model=model)

    def _image_from_b64(self, b64: str, fmt: str = "png") -> OutputImage:
        try:
            data = base64.b64decode(b64)
        except (binascii.Error, ValueError) as e:
            raise TransientError(f"{self.name} returned undecodable image data.", backend=self.name) from e
        validate_payload_size(data, backend=self.name, max_bytes=self.settings.payload.max_image_bytes)
        return OutputImage(data=data, format=fmt)

    def _image_from_response(self, resp: Any, fmt: Optional[str] = None) -> OutputImage:
        data = resp.content or b""
        if not data:
            raise TransientError(f"{self.name} returned an empty image.", backend=self.name)
        ctype = str((getattr(resp, "headers", None) or {}).get("content-type", ""))
        if not fmt:
            fmt = "webp" if "webp" in ctype else (sniff_format(data) or "png")
        return OutputImage(data=data, format=fmt)

    def _image_from_url(self, url: str, deadline: Deadline, fmt: Optional[str] = None) -> OutputImage:
        if url.startswith("data:"):
            loaded = self._load_image(url)
            return OutputImage(data=loaded.data, format=fmt or loaded.format)
        data = self._download(url, deadline)
        return OutputImage(data=data, format=fmt or sniff_format(data) or "png")
