"""
Test: Image prompts never appear in the text log or the audit trail.

Sends a prompt containing a marker through the dispatcher (with a failing
primary, so the fallback path logs too) and verifies the marker does NOT
appear in imagerouter.log or events.jsonl.
"""
from __future__ import annotations

import logging
import os

import pytest

from imagerouter.core.config.models import RouterSettings
from imagerouter.core.dispatcher import ImageDispatcher
from imagerouter.core.errors import TransientError
from imagerouter.core.events import EventLogger, redact
from imagerouter.core.image_backends.mock import MockBackend
from imagerouter.core.image_backends.registry import BackendRegistry
from imagerouter.core.logger import setup_logging

from .helpers.fakes import fake_backend, make_context


SECRET_MARKER = "SECRET123_IMAGE_NEVER_LOG"


@pytest.fixture
def log_dir(tmp_path):
    d = str(tmp_path / "logs")
    setup_logging(d, console=False)
    yield d
    lg = logging.getLogger("imagerouter")
    for h in list(lg.handlers):
        lg.removeHandler(h)
        h.close()


def _read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def test_prompt_not_in_text_or_event_log(log_dir):
    settings = RouterSettings(test_mode=True, allow_mock=True)
    classes = [fake_backend("OPENAI"), fake_backend("BFL")]
    registry = BackendRegistry(make_context(settings), env={}, backend_classes=classes)
    registry.get("OPENAI").fail_with = TransientError("upstream 503", backend="OPENAI")
    ev = EventLogger(os.path.join(log_dir, "events.jsonl"))
    dispatcher = ImageDispatcher(registry, settings=settings, event_logger=ev)

    result = dispatcher.generate({"prompt": f"Draw {SECRET_MARKER} in a landscape", "backend": "OPENAI"}, trace_id="t1")
    assert result.backend == "BFL"

    events = _read(os.path.join(log_dir, "events.jsonl"))
    text = _read(os.path.join(log_dir, "imagerouter.log"))
    assert "image.generate.fallback" in events
    assert "falling back to BFL" in text
    assert SECRET_MARKER not in events, "Prompts must NEVER be written to the audit trail."
    assert SECRET_MARKER not in text, "Prompts must NEVER be written to the text log."


def test_mock_backend_does_not_log_prompt(log_dir):
    settings = RouterSettings(test_mode=True, allow_mock=True)
    registry = BackendRegistry(make_context(settings), env={}, backend_classes=[MockBackend])
    ev = EventLogger(os.path.join(log_dir, "events.jsonl"))
    ImageDispatcher(registry, settings=settings, event_logger=ev).generate(
        {"prompt": f"{SECRET_MARKER} sunrise", "backend": "MOCK", "width": 32, "height": 32}
    )
    assert SECRET_MARKER not in _read(os.path.join(log_dir, "imagerouter.log"))
    assert SECRET_MARKER not in _read(os.path.join(log_dir, "events.jsonl"))


def test_event_details_redact_sensitive_keys(tmp_path):
    ev = EventLogger(str(tmp_path / "events.jsonl"))
    ev.log("t2", "image.test", {"prompt": SECRET_MARKER, "nested": {"api_key": "sk-live-1234567890"}, "width": 64})
    raw = _read(ev.path)
    assert SECRET_MARKER not in raw
    assert "sk-live-1234567890" not in raw
    assert '"width": 64' in raw
    assert redact({"Authorization": "Bearer x"}) == {"Authorization": "***REDACTED***"}


def test_text_log_masks_credentials(log_dir):
    lg = logging.getLogger("imagerouter.core.image_backends.http")
    lg.warning("POST %s failed with header Bearer %s", "https://api.example/v1?key=AIzaSyABCDEF123456", "tok_abcdefghijkl")
    lg.warning("provider rejected sk-proj-0123456789abcdef")
    text = _read(os.path.join(log_dir, "imagerouter.log"))
    assert "AIzaSyABCDEF123456" not in text
    assert "tok_abcdefghijkl" not in text
    assert "sk-proj-0123456789abcdef" not in text
    assert "Bearer ***" in text
    assert "?key=***" in text
