from __future__ import annotations

import logging
import os
import re
from logging.handlers import RotatingFileHandler

LOGGER_NAME = "imagerouter"
LOG_FILE = "imagerouter.log"

# Bearer tokens, "key=..." query strings and provider-style key prefixes.
_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]{8,}"),
    re.compile(r"([?&](?:key|api_key|token)=)[^&\s]+"),
    re.compile(r"()\b(?:sk|r8|AIza)[-_][A-Za-z0-9_\-]{8,}"),
)


class SecretMaskingFilter(logging.Filter):
    """Masks credential-looking substrings in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        masked = msg
        for pat in _SECRET_PATTERNS:
            masked = pat.sub(lambda m: m.group(1) + "***", masked)
        if masked != msg:
            record.msg, record.args = masked, None
        return True


def _file_handler(log_dir: str) -> RotatingFileHandler:
    h = RotatingFileHandler(os.path.join(log_dir, LOG_FILE), maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    h.addFilter(SecretMaskingFilter())
    return h


def _console_handler() -> logging.StreamHandler:
    # stderr only: stdout carries CLI output
    sh = logging.StreamHandler()
    sh.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    sh.setLevel(logging.WARNING)
    sh.addFilter(SecretMaskingFilter())
    return sh


def setup_logging(log_dir: str = "logs", *, level: int = logging.INFO, console: bool = True) -> logging.Logger:
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        logger.addHandler(_file_handler(log_dir))
    if console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        logger.addHandler(_console_handler())
    return logger


def prompt_preview(prompt: str, limit: int = 50) -> str:
    p = " ".join(str(prompt or "").split())
    return p if len(p) <= limit else p[:limit] + "..."
