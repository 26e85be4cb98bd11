"""
Image reference helpers.

A reference is a `data:<mime>;base64,...` URL, a `file://` URL or a plain
filesystem path.  Every load is size-checked before the bytes are used.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import io
import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from imagerouter.core.errors import InvalidInputError
from imagerouter.core.resilience.validation import MAX_IMAGE_BYTES, validate_payload_size

_DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)

MIME_BY_EXT = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}

FORMAT_MIME = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "svg": "image/svg+xml",
}


@dataclass(frozen=True)
class LoadedImage:
    data: bytes
    mime_type: str

    @property
    def format(self) -> str:
        return self.mime_type.split("/", 1)[-1]


def mime_for_path(path: str) -> str:
    return MIME_BY_EXT.get(os.path.splitext(path)[1].lower(), "image/png")


def mime_for_format(fmt: str) -> str:
    return FORMAT_MIME.get(str(fmt or "").lower(), "image/png")


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{to_base64(data)}"


def decode_data_url(ref: str, *, backend: str = "", max_bytes: int = MAX_IMAGE_BYTES) -> LoadedImage:
    m = _DATA_URL_RE.match(ref.strip())
    if not m:
        raise InvalidInputError("Invalid data URL format.", backend=backend)
    try:
        data = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise InvalidInputError(f"Invalid base64 payload in data URL: {e}", backend=backend) from e
    validate_payload_size(data, backend=backend, max_bytes=max_bytes)
    return LoadedImage(data=data, mime_type=m.group(1))


def load_image(ref: str, *, backend: str = "", max_bytes: int = MAX_IMAGE_BYTES) -> LoadedImage:
    if not ref:
        raise InvalidInputError("Image reference is empty.", backend=backend)
    if ref.startswith("data:"):
        return decode_data_url(ref, backend=backend, max_bytes=max_bytes)
    path = ref[len("file://"):] if ref.startswith("file://") else ref
    try:
        size = os.path.getsize(path)
        # reject before reading the whole file
        if size > int(max_bytes):
            raise InvalidInputError(
                f"Image size {size / 1024 / 1024:.2f}MB exceeds maximum allowed size of {int(max_bytes) // (1024 * 1024)}MB.",
                backend=backend,
                size_bytes=size,
                max_bytes=int(max_bytes),
            )
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise InvalidInputError(f"Failed to load image from path: {path}. Error: {e}", backend=backend, path=path) from e
    validate_payload_size(data, backend=backend, max_bytes=max_bytes)
    return LoadedImage(data=data, mime_type=mime_for_path(path))


def image_dimensions(data: bytes, *, backend: str = "") -> Tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            w, h = im.size
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidInputError(f"Could not detect image dimensions: {e}", backend=backend) from e
    if not w or not h:
        raise InvalidInputError("Could not detect image dimensions.", backend=backend)
    return int(w), int(h)


def sniff_format(data: bytes) -> Optional[str]:
    """Pillow format name, lower-cased (`png`, `jpeg`, `webp`...), or None."""
    try:
        with Image.open(io.BytesIO(data)) as im:
            fmt = im.format
    except (UnidentifiedImageError, OSError):
        return None
    return fmt.lower() if fmt else None


def reference_digest(ref: Optional[str]) -> str:
    if not ref:
        return ""
    return hashlib.sha256(ref.encode("utf-8")).hexdigest()
