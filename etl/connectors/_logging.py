import logging
import os
import re
from threading import Lock
from typing import Any

_SETUP_LOCK = Lock()
_SETUP_DONE = False
_SENSITIVE_KEYS = {
    "password",
    "pwd",
    "token",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "connection_string",
    "connectionstring",
}
_CONNECTION_STRING_SECRET = re.compile(r"(PWD|PASSWORD)=[^;]*;?", re.IGNORECASE)


def _resolve_log_level() -> int:
    level_name = os.getenv("ETL_LOG_LEVEL", "INFO").upper()
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
    return logging.getLogger(f"etl.{name}")


def redact_connection_string(value: str) -> str:
    return _CONNECTION_STRING_SECRET.sub(lambda match: f"{match.group(1)}=***;", value)


def redact_config(values: dict[str, Any]) -> dict[str, Any]:
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, dict):
            redacted[key] = redact_config(value)
        elif key.lower() in _SENSITIVE_KEYS and value is not None:
            redacted[key] = "***"
        else:
            redacted[key] = value
    return redacted
