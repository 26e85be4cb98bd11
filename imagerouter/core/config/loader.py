from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from imagerouter.core.config.io import overlay, read_config_file
from imagerouter.core.config.models import RouterSettings
from imagerouter.core.errors import InvalidInputError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "IMAGEROUTER_CONFIG"


def _flag(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() == "true"


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if env.get("DEFAULT_BACKEND"):
        out["default_backend"] = env["DEFAULT_BACKEND"]
    if "DISABLE_FALLBACK" in env:
        out["disable_fallback"] = _flag(env.get("DISABLE_FALLBACK"))
    if "ALLOW_MOCK_BACKEND" in env:
        out["allow_mock"] = _flag(env.get("ALLOW_MOCK_BACKEND"))
    if env.get("IMAGEROUTER_ENV"):
        out["test_mode"] = str(env["IMAGEROUTER_ENV"]).strip().lower() == "test"
    if env.get("IMAGEROUTER_LOG_DIR"):
        out["log_dir"] = env["IMAGEROUTER_LOG_DIR"]
    if env.get("IMAGEROUTER_OUTPUT_DIR"):
        out["output_dir"] = env["IMAGEROUTER_OUTPUT_DIR"]
    return out


def load_settings(env: Optional[Mapping[str, str]] = None, *, config_path: Optional[str] = None) -> RouterSettings:
    """
    Build RouterSettings from an optional JSON file overlaid by environment keys.

    A missing config file is not an error (defaults apply).  A corrupt file or
    a value outside its allowed range is.
    """
    env = os.environ if env is None else env
    path = config_path or env.get(CONFIG_PATH_ENV) or ""
    raw: Dict[str, Any] = {}
    if path:
        res = read_config_file(path)
        if res.ok:
            raw = res.data
        elif res.missing:
            logger.warning("Config file %s not found; using defaults.", path)
        else:
            raise InvalidInputError(f"Config file {path} could not be read: {res.error}", path=path)
    merged = overlay(raw, _env_overrides(env))
    try:
        return RouterSettings.model_validate(merged)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid configuration: {e.errors()[0].get('msg', 'validation error')}", path=path) from e
