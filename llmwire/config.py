"""
llmwire - Environment Configuration

Process-wide defaults read from the environment.

Only tuning knobs live here. API keys and endpoint URLs are always passed
explicitly per call and are never read from the environment by llmwire.
"""

import os
from typing import Optional

from .core.errors import ErrorKind, ProviderError, create_error


DEFAULT_MAX_RETRIES = 2
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_MAX_MS = 16000


def _invalid(name: str, raw: str, expected: str) -> ProviderError:
    return ProviderError(
        create_error(
            ErrorKind.INVALID_CONFIGURATION,
            detail=f"{name}={raw!r} is not {expected}",
        )
    )


def _get_int(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise _invalid(name, raw, "an integer") from None
    if value < minimum:
        raise _invalid(name, raw, f"an integer >= {minimum}")
    return value


def get_default_max_retries() -> int:
    """LLMWIRE_MAX_RETRIES, default 2."""
    return _get_int("LLMWIRE_MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=0)


def get_default_timeout_ms() -> int:
    """LLMWIRE_TIMEOUT_MS, per-attempt timeout, default 30000."""
    return _get_int("LLMWIRE_TIMEOUT_MS", DEFAULT_TIMEOUT_MS, minimum=1)


def get_backoff_base_ms() -> int:
    return _get_int("LLMWIRE_BACKOFF_BASE_MS", DEFAULT_BACKOFF_BASE_MS, minimum=1)


def get_backoff_max_ms() -> int:
    return _get_int("LLMWIRE_BACKOFF_MAX_MS", DEFAULT_BACKOFF_MAX_MS, minimum=1)


def get_anthropic_version() -> str:
    """Version header sent in api-key-header auth mode."""
    value = os.getenv("LLMWIRE_ANTHROPIC_VERSION", DEFAULT_ANTHROPIC_VERSION).strip()
    return value or DEFAULT_ANTHROPIC_VERSION


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper().strip() or "INFO"


def get_log_format() -> str:
    """LOG_FORMAT: json (default) or text."""
    value = os.getenv("LOG_FORMAT", "json").lower().strip()
    if value not in {"json", "text"}:
        raise _invalid("LOG_FORMAT", value, "one of: json, text")
    return value


def is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")
