from __future__ import annotations

import pytest

from imagerouter.core.errors import InvalidInputError
from imagerouter.core.image_io import load_image, to_data_url
from imagerouter.core.resilience.validation import validate_api_key, validate_payload_size, validate_prompt


@pytest.mark.parametrize("prompt", ["", "   ", "\n\t"])
def test_empty_prompts_rejected(prompt):
    with pytest.raises(InvalidInputError):
        validate_prompt(prompt, backend="OPENAI")


def test_prompt_length_boundary():
    assert validate_prompt("a" * 4000) == "a" * 4000
    with pytest.raises(InvalidInputError) as ei:
        validate_prompt("a" * 4001, backend="OPENAI")
    assert ei.value.context["max_length"] == 4000


def test_payload_over_ceiling_rejected():
    limit = 10 * 1024 * 1024
    validate_payload_size(b"\0" * limit)
    with pytest.raises(InvalidInputError) as ei:
        validate_payload_size(b"\0" * (limit + 1), backend="BFL")
    assert "exceeds maximum allowed size of 10MB" in ei.value.user_message


def test_oversize_file_rejected_before_read(tmp_path):
    p = tmp_path / "big.png"
    p.write_bytes(b"\0" * 4096)
    with pytest.raises(InvalidInputError):
        load_image(str(p), max_bytes=2048)


def test_oversize_data_url_rejected():
    ref = to_data_url(b"\0" * 4096, "image/png")
    with pytest.raises(InvalidInputError):
        load_image(ref, max_bytes=2048)


def test_missing_file_is_invalid_input(tmp_path):
    with pytest.raises(InvalidInputError):
        load_image(str(tmp_path / "nope.png"))


@pytest.mark.parametrize(
    "key",
    [None, "", "short", "sk-your-api-key-here", "sk-xxxxxxxxxxxx", "my-placeholder-key", "demo-key-123456", "test-abcdefghij"],
)
def test_placeholder_and_short_keys_rejected(key):
    assert validate_api_key(key, backend="OPENAI") is False


def test_real_looking_key_accepted():
    assert validate_api_key("sk-live-abcdefghijkl", backend="OPENAI") is True


def test_test_prefix_only_in_test_mode():
    assert validate_api_key("test-abcdefghij", test_mode=False) is False
    assert validate_api_key("test-abcdefghij", test_mode=True) is True
