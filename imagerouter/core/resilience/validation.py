from __future__ import annotations

import logging
from typing import Optional

from imagerouter.core.errors import InvalidInputError

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 4000
MAX_IMAGE_BYTES = 10 * 1024 * 1024
API_KEY_MIN_LENGTH = 10
PLACEHOLDER_KEYS = ("your-api-key", "xxx", "placeholder", "test", "demo")


def validate_prompt(prompt: str, *, backend: str = "", max_length: int = MAX_PROMPT_LENGTH) -> str:
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidInputError("Prompt cannot be empty.", backend=backend)
    if len(prompt) > int(max_length):
        raise InvalidInputError(
            f"Prompt length {len(prompt)} exceeds maximum allowed length of {int(max_length)}.",
            backend=backend,
            prompt_length=len(prompt),
            max_length=int(max_length),
        )
    return prompt


def _mib(n: int) -> str:
    return f"{n / 1024 / 1024:.2f}MB"


def validate_payload_size(data: bytes, *, backend: str = "", max_bytes: int = MAX_IMAGE_BYTES, what: str = "Image") -> bytes:
    size = len(data or b"")
    if size > int(max_bytes):
        raise InvalidInputError(
            f"{what} size {_mib(size)} exceeds maximum allowed size of {int(max_bytes) // (1024 * 1024)}MB.",
            backend=backend,
            size_bytes=size,
            max_bytes=int(max_bytes),
        )
    return data


def validate_api_key(key: Optional[str], *, backend: str = "", test_mode: bool = False) -> bool:
    """
    True when `key` looks like a real credential.

    Short keys and anything containing a well-known placeholder word are
    rejected.  `test-` prefixed keys pass only in test mode.
    """
    if not key:
        return False
    key = str(key).strip()
    if len(key) < API_KEY_MIN_LENGTH:
        logger.error("API key for %s is too short", backend or "backend")
        return False
    if test_mode and key.startswith("test-"):
        return True
    lowered = key.lower()
    if any(p in lowered for p in PLACEHOLDER_KEYS):
        logger.error("API key for %s appears to be a placeholder", backend or "backend")
        return False
    return True
