"""
Single entry point for image requests.

Resolves a request to one backend, enforces capabilities before any network
call, invokes it, and falls back once to the next configured backend when
the failure is retryable.  Every request leaves an audit trail of metadata
only (never the prompt).
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from imagerouter.core.config.models import RouterSettings
from imagerouter.core.errors import (
    CapabilityExceededError,
    ImageRouterError,
    InvalidInputError,
    NotConfiguredError,
)
from imagerouter.core.events import EventLogger
from imagerouter.core.image_backends.base import ImageBackend
from imagerouter.core.image_backends.models import (
    BackendStatus,
    EditRequest,
    GenerationRequest,
    ImageResult,
    parse_request,
)
from imagerouter.core.image_backends.registry import BackendRegistry, canonical_name
from imagerouter.core.image_backends.sizing import is_near_square
from imagerouter.core.image_io import image_dimensions, load_image
from imagerouter.core.resilience.deadline import CancelToken
from imagerouter.core.selection import BackendSelector, Recommendation

logger = logging.getLogger(__name__)

# Default resolution and fallback order.
FALLBACK_CHAIN: Tuple[str, ...] = (
    "RECRAFT",
    "BFL",
    "OPENAI",
    "LEONARDO",
    "IDEOGRAM",
    "STABILITY",
    "GEMINI",
    "FAL",
    "REPLICATE",
)

MOCK = "MOCK"

RequestLike = Union[GenerationRequest, Mapping[str, Any]]


@dataclass
class _Plan:
    """Resolved target for one request."""

    backend: ImageBackend
    mode: str
    warnings: List[str] = field(default_factory=list)
    avoid_square: bool = False


class ImageDispatcher:
    def __init__(
        self,
        registry: BackendRegistry,
        selector: Optional[BackendSelector] = None,
        settings: Optional[RouterSettings] = None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.registry = registry
        self.selector = selector or BackendSelector()
        self.settings = settings or registry.resilience.settings
        self.event_logger = event_logger

    # ── public operations ──────────────────────────────────────────

    def generate(
        self,
        request: RequestLike,
        *,
        cancel: Optional[CancelToken] = None,
        trace_id: Optional[str] = None,
    ) -> ImageResult:
        req = request if isinstance(request, GenerationRequest) else parse_request(GenerationRequest, dict(request))
        return self._dispatch("generate", req, cancel, trace_id or uuid.uuid4().hex)

    def edit(
        self,
        request: Union[EditRequest, Mapping[str, Any]],
        *,
        cancel: Optional[CancelToken] = None,
        trace_id: Optional[str] = None,
    ) -> ImageResult:
        req = request if isinstance(request, EditRequest) else parse_request(EditRequest, dict(request))
        return self._dispatch("edit", req, cancel, trace_id or uuid.uuid4().hex)

    def list_backends(self) -> List[BackendStatus]:
        return self.registry.status()

    def get_configured_backends(self) -> List[str]:
        return self.registry.configured()

    def get_configured_edit_backends(self) -> List[str]:
        return self.registry.configured_edit()

    def recommend(self, prompt: str) -> Recommendation:
        return self.selector.recommend(prompt)

    # ── dispatch ───────────────────────────────────────────────────

    def _dispatch(self, operation: str, request: GenerationRequest, cancel: Optional[CancelToken], trace_id: str) -> ImageResult:
        t0 = time.time()
        event_prefix = f"image.{operation}"
        try:
            plan = self._resolve(operation, request)
            self._check_capabilities(plan.backend, operation, request)
        except ImageRouterError as e:
            self._event(trace_id, f"{event_prefix}.denied", {
                "backend": e.backend or request.backend or "",
                "reason_code": e.code,
            })
            raise

        self._event(trace_id, f"{event_prefix}.requested", {
            "backend": plan.backend.name,
            "mode": plan.mode,
            "model": request.model or "",
            "width": request.width,
            "height": request.height,
            "seed_present": request.seed is not None,
        })

        primary = plan.backend
        try:
            result = self._invoke(primary, operation, request, cancel)
        except ImageRouterError as e:
            e.annotate_tried(primary.name)
            fallback = None
            if e.retryable and not self.settings.disable_fallback:
                fallback = self._fallback_for(operation, request, failed=primary.name, avoid_square=plan.avoid_square)
            if fallback is None:
                self._failed(trace_id, event_prefix, e, t0)
                raise

            logger.warning("backend %s failed (%s), falling back to %s", primary.name, e.code, fallback.name)
            self._event(trace_id, f"{event_prefix}.fallback", {
                "failed_backend": primary.name,
                "fallback_backend": fallback.name,
                "error_code": e.code,
            })
            try:
                result = self._invoke(fallback, operation, request, cancel)
            except ImageRouterError as e2:
                e2.annotate_tried(primary.name, fallback.name)
                self._failed(trace_id, event_prefix, e2, t0)
                raise
            plan.warnings.extend([f"Original backend {primary.name} failed: {e.user_message}", f"Fell back to {fallback.name}"])

        warnings = list(plan.warnings) + list(result.warnings) + self._size_warnings(result)
        result = ImageResult(images=result.images, backend=result.backend, model=result.model, warnings=tuple(warnings))

        self._event(trace_id, f"{event_prefix}.completed", {
            "backend": result.backend,
            "model": result.model or "",
            "images": len(result.images),
            "bytes": sum(i.size_bytes for i in result.images),
            "elapsed_ms": int((time.time() - t0) * 1000),
        })
        return result

    def _invoke(self, backend: ImageBackend, operation: str, request: GenerationRequest, cancel: Optional[CancelToken]) -> ImageResult:
        logger.info("%s with %s", operation, backend.name)
        if operation == "edit":
            return backend.edit(request, cancel=cancel)  # type: ignore[arg-type]
        return backend.generate(request, cancel=cancel)

    # ── resolution ─────────────────────────────────────────────────

    def _resolve(self, operation: str, request: GenerationRequest) -> _Plan:
        name = request.backend
        if name is None and self.settings.auto_default:
            name = "auto"

        if name == "auto":
            return self._auto(operation, request)

        if name:
            backend = self.registry.get(name)
            if backend is not None and backend.is_configured():
                return _Plan(backend=backend, mode="explicit")
            if self.settings.disable_fallback:
                self._raise_unavailable(name, backend)
            warnings: List[str] = []
            substitute = self._default_backend(operation, warnings)
            reason = "unknown" if backend is None else "not configured"
            logger.warning("requested backend %s is %s, using %s", name, reason, substitute.name)
            warnings.insert(0, f"Requested backend {canonical_name(name)} is {reason}; using {substitute.name}")
            return _Plan(backend=substitute, mode="default", warnings=warnings)

        warnings = []
        return _Plan(backend=self._default_backend(operation, warnings), mode="default", warnings=warnings)

    def _raise_unavailable(self, name: str, backend: Optional[ImageBackend]) -> None:
        if backend is None:
            raise InvalidInputError(
                f"Unknown backend: {name}. Available: {', '.join(self.registry.names())}",
                backend=canonical_name(name),
            )
        raise NotConfiguredError(
            f"{backend.name} is not configured. Set {', '.join(backend.required_credential_keys())}.",
            backend=backend.name,
            required=backend.required_credential_keys(),
        )

    def _auto(self, operation: str, request: GenerationRequest) -> _Plan:
        candidates = self._candidates(operation, request)
        if not candidates:
            if operation == "edit":
                raise NotConfiguredError(
                    "No backends configured that support image editing. Set one of: "
                    + ", ".join(self._credential_keys(edit_only=True)),
                    required=self._credential_keys(edit_only=True),
                )
            warnings: List[str] = []
            return _Plan(backend=self._default_backend(operation, warnings), mode="default", warnings=warnings)

        chosen = self.selector.select(request.prompt, candidates)
        backend = self.registry.get(chosen or candidates[0], required=True)
        plan = _Plan(backend=backend, mode="auto")  # type: ignore[arg-type]

        if operation == "edit" and backend.capabilities().square_edit_only and self._non_square(request):
            plan.avoid_square = True
            remaining = [n for n in candidates if not self._square_only(n)]
            if remaining:
                alt = self.selector.select(request.prompt, remaining) or remaining[0]
                logger.info("%s cannot keep a non-square aspect ratio, using %s", backend.name, alt)
                plan.backend = self.registry.get(alt, required=True)  # type: ignore[assignment]
        return plan

    def _candidates(self, operation: str, request: GenerationRequest) -> List[str]:
        out: List[str] = []
        for name in self.registry.configured():
            if name == MOCK and not self.settings.allow_mock:
                continue
            backend = self.registry.get(name)
            if backend is not None and self._supports(backend, operation, request):
                out.append(name)
        return out

    def _default_backend(self, operation: str, warnings: List[str]) -> ImageBackend:
        """DEFAULT_BACKEND, else the fallback chain, else MOCK when allowed.  Substitutions append to `warnings`."""
        default = self.settings.default_backend
        missing = ""
        if default and default != "auto":
            backend = self.registry.get(default)
            if backend is not None and backend.is_configured():
                return backend
            if self.settings.disable_fallback:
                self._raise_unavailable(default, backend)
            missing = "unknown" if backend is None else "not configured"
            logger.warning("DEFAULT_BACKEND %s is %s", default, missing)

        chosen: Optional[ImageBackend] = None
        for name in FALLBACK_CHAIN:
            backend = self.registry.get(name)
            if backend is not None and backend.is_configured() and self._supports_operation(backend, operation):
                chosen = backend
                break
        if chosen is None and self.settings.allow_mock:
            chosen = self.registry.get(MOCK)

        if chosen is not None:
            if missing:
                warnings.append(f"Default backend {default} is {missing}; using {chosen.name}")
            return chosen

        keys = self._credential_keys(edit_only=operation == "edit")
        raise NotConfiguredError(
            "No image backends configured. Set one of: " + ", ".join(keys),
            required=keys,
        )

    def _fallback_for(self, operation: str, request: GenerationRequest, *, failed: str, avoid_square: bool) -> Optional[ImageBackend]:
        for name in FALLBACK_CHAIN:
            if name == failed:
                continue
            backend = self.registry.get(name)
            if backend is None or not backend.is_configured():
                continue
            if not self._supports(backend, operation, request):
                continue
            if operation == "edit" and backend.capabilities().square_edit_only:
                if avoid_square or self._non_square(request):
                    continue
            return backend
        return None

    # ── capabilities ───────────────────────────────────────────────

    @staticmethod
    def _supports_operation(backend: ImageBackend, operation: str) -> bool:
        caps = backend.capabilities()
        return caps.supports_edit if operation == "edit" else caps.supports_generate

    def _supports(self, backend: ImageBackend, operation: str, request: GenerationRequest) -> bool:
        caps = backend.capabilities()
        if not self._supports_operation(backend, operation):
            return False
        if request.width and request.width > caps.max_width:
            return False
        if request.height and request.height > caps.max_height:
            return False
        return True

    def _check_capabilities(self, backend: ImageBackend, operation: str, request: GenerationRequest) -> None:
        caps = backend.capabilities()
        if not self._supports_operation(backend, operation):
            raise CapabilityExceededError(
                f"Backend {backend.name} does not support image {'editing' if operation == 'edit' else 'generation'}.",
                backend=backend.name,
                field=operation,
            )
        if request.width and request.width > caps.max_width:
            raise CapabilityExceededError(
                f"Width {request.width} exceeds backend {backend.name} maximum ({caps.max_width}).",
                backend=backend.name,
                field="width",
                limit=caps.max_width,
            )
        if request.height and request.height > caps.max_height:
            raise CapabilityExceededError(
                f"Height {request.height} exceeds backend {backend.name} maximum ({caps.max_height}).",
                backend=backend.name,
                field="height",
                limit=caps.max_height,
            )

    def _square_only(self, name: str) -> bool:
        backend = self.registry.get(name)
        return bool(backend is not None and backend.capabilities().square_edit_only)

    def _non_square(self, request: GenerationRequest) -> bool:
        if not isinstance(request, EditRequest):
            return False
        loaded = load_image(request.base_image, max_bytes=self.settings.payload.max_image_bytes)
        w, h = image_dimensions(loaded.data)
        return not is_near_square(w, h)

    # ── helpers ────────────────────────────────────────────────────

    def _credential_keys(self, *, edit_only: bool = False) -> List[str]:
        keys: List[str] = []
        for status in self.registry.status():
            if edit_only and not status.capabilities.supports_edit:
                continue
            for k in status.required_credential_keys:
                if k not in keys:
                    keys.append(k)
        return keys

    def _size_warnings(self, result: ImageResult) -> List[str]:
        limit = self.settings.payload.large_output_warning_bytes
        out: List[str] = []
        for i, img in enumerate(result.images):
            if img.size_bytes > limit:
                out.append(f"Image {i + 1} is large ({img.size_bytes // 1024}KB). Consider external storage for production use.")
        return out

    def _failed(self, trace_id: str, prefix: str, err: ImageRouterError, t0: float) -> None:
        self._event(trace_id, f"{prefix}.failed", {
            "backend": err.backend,
            "error_code": err.code,
            "retryable": err.retryable,
            "tried_backends": list(err.tried_backends),
            "elapsed_ms": int((time.time() - t0) * 1000),
        })

    def _event(self, trace_id: str, event_type: str, details: Dict[str, Any]) -> None:
        if self.event_logger is not None:
            self.event_logger.log(trace_id, event_type, details)
