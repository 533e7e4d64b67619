import logging
import os
import re
from threading import Lock
from typing import Any

_SETUP_LOCK = Lock()
_SETUP_DONE = False
_SENSITIVE_KEYS = {
    "password",
    "token",
    "secret",
    "api_key",
    "apikey",
    "authorization",
}
_URL_PASSWORD = re.compile(r"(?P<prefix>[a-zA-Z][\w+.-]*://[^:/@\s]+:)[^@/\s]+(?P<suffix>@)")


def _resolve_log_level() -> int:
    level_name = os.getenv("FEEDER_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def _setup_default_logging() -> None:
    global _SETUP_DONE
    if _SETUP_DONE:
        return

    with _SETUP_LOCK:
        if _SETUP_DONE:
            return

        root_logger = logging.getLogger()
        if not root_logger.handlers:
            logging.basicConfig(
                level=_resolve_log_level(),
                format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            )

        _SETUP_DONE = True


def get_logger(name: str) -> logging.Logger:
    _setup_default_logging()
    return logging.getLogger(f"sqlfeeder.{name}")


def redact_url(url: str) -> str:
    return _URL_PASSWORD.sub(r"\g<prefix>***\g<suffix>", url)


def redact_config(values: dict[str, Any]) -> dict[str, Any]:
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if key.lower() in _SENSITIVE_KEYS and value is not None:
            redacted[key] = "***"
        elif isinstance(value, dict):
            redacted[key] = redact_config(value)
        elif isinstance(value, str) and "://" in value:
            redacted[key] = redact_url(value)
        else:
            redacted[key] = value
    return redacted
