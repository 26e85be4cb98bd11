"""
HTTP plumbing shared by the hosted backends.

Every outcome is mapped onto the error taxonomy here, so adapters only deal
with successful responses:

    connection error / timeout / 5xx / 429  -> TransientError
    401 / 403                               -> NotConfiguredError
    other 4xx                               -> InvalidInputError
    body larger than the payload ceiling    -> InvalidInputError
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from imagerouter.core.errors import InvalidInputError, NotConfiguredError, TransientError
from imagerouter.core.resilience.deadline import Deadline
from imagerouter.core.resilience.validation import MAX_IMAGE_BYTES, validate_payload_size

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_CAP = 60.0


def _error_detail(resp: Any, limit: int = 300) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for k in ("error", "message", "detail", "errors", "name"):
            v = body.get(k)
            if isinstance(v, dict):
                v = v.get("message") or v.get("detail") or v
            if v:
                return str(v)[:limit]
    text = getattr(resp, "text", "") or ""
    return str(text)[:limit] or f"HTTP {resp.status_code}"


def classify_response(resp: Any, *, backend: str, max_bytes: int = MAX_IMAGE_BYTES) -> Any:
    status = int(resp.status_code)
    if status == 429:
        retry_after = (getattr(resp, "headers", None) or {}).get("Retry-After", "")
        raise TransientError(
            f"{backend} API rate limit hit (HTTP 429): {_error_detail(resp)}",
            backend=backend,
            status=status,
            retry_after=str(retry_after),
        )
    if status >= 500:
        raise TransientError(f"{backend} API error (HTTP {status}): {_error_detail(resp)}", backend=backend, status=status)
    if status in (401, 403):
        raise NotConfiguredError(
            f"{backend} rejected the credentials (HTTP {status}). Check the API key.",
            backend=backend,
            status=status,
        )
    if status >= 400:
        raise InvalidInputError(f"{backend} rejected the request (HTTP {status}): {_error_detail(resp)}", backend=backend, status=status)
    validate_payload_size(resp.content or b"", backend=backend, max_bytes=max_bytes, what="Response")
    return resp


def send(
    method: str,
    url: str,
    *,
    backend: str,
    deadline: Deadline,
    timeout_cap: Optional[float] = DEFAULT_REQUEST_CAP,
    max_bytes: int = MAX_IMAGE_BYTES,
    **kwargs: Any,
) -> Any:
    """
    One HTTP exchange under `deadline`.

    The requests timeout is the smaller of `timeout_cap` and what is left on
    the deadline.  Cancellation is checked before and after the call.
    """
    timeout = deadline.request_timeout(timeout_cap)
    m = method.upper()
    try:
        if m == "GET":
            resp = requests.get(url, timeout=timeout, **kwargs)
        elif m == "POST":
            resp = requests.post(url, timeout=timeout, **kwargs)
        else:
            resp = requests.request(m, url, timeout=timeout, **kwargs)
    except requests.Timeout as e:
        deadline.check()
        raise TransientError(f"{backend} request timed out after {timeout:.1f}s.", backend=backend) from e
    except requests.ConnectionError as e:
        deadline.check()
        raise TransientError(f"Could not connect to {backend}: {e}", backend=backend) from e
    except requests.RequestException as e:
        deadline.check()
        raise TransientError(f"{backend} request failed: {e}", backend=backend) from e
    deadline.check()
    return classify_response(resp, backend=backend, max_bytes=max_bytes)


def json_body(resp: Any, *, backend: str) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError as e:
        raise TransientError(f"{backend} returned a malformed JSON body.", backend=backend) from e
    if not isinstance(data, dict):
        raise TransientError(f"{backend} returned an unexpected response shape.", backend=backend)
    return data


def download(url: str, *, backend: str, deadline: Deadline, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    resp = send("GET", url, backend=backend, deadline=deadline, max_bytes=max_bytes)
    content = resp.content or b""
    if not content:
        raise TransientError(f"{backend} returned an empty image.", backend=backend)
    return content
