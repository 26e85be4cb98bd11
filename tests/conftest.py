from __future__ import annotations

import pytest

from imagerouter.core.config.models import RouterSettings
from imagerouter.core.events import EventLogger

from .helpers.fakes import FakeClock, make_context


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return RouterSettings(test_mode=True)


@pytest.fixture
def resilience(settings, clock):
    """Shared limiter/cache/retry state with a fake clock and instant backoff."""
    return make_context(settings, clock)


@pytest.fixture
def event_logger(tmp_path):
    return EventLogger(str(tmp_path / "events.jsonl"))


@pytest.fixture
def api_env():
    return {
        "OPENAI_API_KEY": "sk-live-abcdefghijklmnop",
        "STABILITY_API_KEY": "sk-stab-abcdefghijklmnop",
        "BFL_API_KEY": "bfl-abcdefghijklmnop",
        "REPLICATE_API_TOKEN": "r8_abcdefghijklmnop",
    }
