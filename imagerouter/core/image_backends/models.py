"""Request, result and capability types for the image backends."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from imagerouter.core.errors import InvalidInputError
from imagerouter.core.image_io import mime_for_format, to_data_url

OutputFormat = Literal["png", "jpeg", "webp"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class GenerationRequest(BaseModel):
    """
    Immutable generation request.  Prompt text is never logged or
    written to the audit trail.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    prompt: str
    backend: Optional[str] = None
    width: Optional[int] = Field(default=None, ge=1, le=16384)
    height: Optional[int] = Field(default=None, ge=1, le=16384)
    model: Optional[str] = None
    seed: Optional[int] = Field(default=None, ge=0)
    guidance: Optional[float] = Field(default=None, ge=0.0, le=50.0)
    steps: Optional[int] = Field(default=None, ge=1, le=500)
    output_format: OutputFormat = "png"

    @field_validator("backend")
    @classmethod
    def _norm_backend(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        return "auto" if v.lower() == "auto" else v.upper()


class EditRequest(GenerationRequest):
    base_image: str
    mask_image: Optional[str] = None

    @field_validator("base_image")
    @classmethod
    def _base_required(cls, v: str) -> str:
        if not str(v or "").strip():
            raise ValueError("base_image is required")
        return v


RequestT = TypeVar("RequestT", bound=GenerationRequest)


def parse_request(model: Type[RequestT], data: Dict[str, Any]) -> RequestT:
    """Validate user-supplied fields, mapping pydantic errors to InvalidInputError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(x) for x in first.get("loc", ()))
        msg = first.get("msg", "invalid value")
        raise InvalidInputError(f"Invalid request field '{loc}': {msg}", field=loc) from e


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OutputImage:
    data: bytes
    format: str = "png"

    @property
    def mime_type(self) -> str:
        return mime_for_format(self.format)

    @property
    def data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ImageResult:
    images: Tuple[OutputImage, ...]
    backend: str
    model: Optional[str] = None
    warnings: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BackendCapabilities:
    supports_generate: bool = True
    supports_edit: bool = False
    max_width: int = 1024
    max_height: int = 1024
    supported_models: Tuple[str, ...] = ()
    special_features: Tuple[str, ...] = ()
    default_model: Optional[str] = None
    square_edit_only: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supports_generate": self.supports_generate,
            "supports_edit": self.supports_edit,
            "max_width": self.max_width,
            "max_height": self.max_height,
            "supported_models": list(self.supported_models),
            "special_features": list(self.special_features),
            "default_model": self.default_model,
            "square_edit_only": self.square_edit_only,
        }


@dataclass(frozen=True)
class BackendStatus:
    name: str
    configured: bool
    required_credential_keys: List[str] = field(default_factory=list)
    capabilities: BackendCapabilities = field(default_factory=BackendCapabilities)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "configured": self.configured,
            "required_credential_keys": list(self.required_credential_keys),
            "capabilities": self.capabilities.to_dict(),
        }
