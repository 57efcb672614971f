"""
llmwire - Structured Logging

JSON logging with per-call context.

llmwire never configures handlers on import; applications call
setup_logging() (or configure the stdlib `logging` tree themselves).

Usage:
    from llmwire.observability.logging import setup_logging, get_logger

    setup_logging(level="DEBUG")
    logger = get_logger(__name__)
    logger.info("Stream opened", request_id="req_abc", status=200)

Output:
    {"timestamp": "2024-01-15T10:30:00+00:00", "level": "INFO",
     "logger": "llmwire.core.http_client", "message": "Stream opened",
     "request_id": "req_abc", "status": 200}
"""

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .. import config


_log_context: ContextVar[Optional["LogContext"]] = ContextVar("llmwire_log_context", default=None)


@dataclass
class LogContext:
    """
    Correlation fields added to every record logged while it is current.

    Stored in a ContextVar, so concurrent calls do not see each other's
    fields.
    """
    request_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    url: str = ""
    wire_format: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _log_context.get()

    @classmethod
    def set_current(cls, ctx: "LogContext"):
        """Make ctx current; returns a token for reset()."""
        return _log_context.set(ctx)

    @classmethod
    def reset(cls, token) -> None:
        _log_context.reset(token)

    @classmethod
    def clear(cls):
        _log_context.set(None)

    def update(self, **kwargs):
        for key, value in kwargs.items():
            if hasattr(self, key) and key != "extra":
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for name in ("request_id", "trace_id", "span_id", "url", "wire_format"):
            value = getattr(self, name)
            if value:
                result[name] = value
        result.update(self.extra)
        return result


_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename",
    "funcName", "levelname", "levelno", "lineno",
    "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info",
    "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}


class JSONFormatter(logging.Formatter):
    """JSON log formatter with context injection and secret redaction."""

    SENSITIVE_FIELDS = {
        "password", "secret", "token", "api_key", "apikey",
        "authorization", "credential", "private_key", "x-api-key",
    }

    def __init__(
        self,
        include_location: bool = False,
        redact_sensitive: bool = True,
    ):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            if self.redact_sensitive and self._is_sensitive(key):
                value = "[REDACTED]"
            log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _is_sensitive(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        # token counters are not secrets
        if field_lower.endswith("_tokens"):
            return False
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Logger wrapper taking structured fields as keyword arguments.

        logger.warning("Retry scheduled", attempt=2, delay_s=1.5)
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def isEnabledFor(self, level: int) -> bool:
        return self._logger.isEnabledFor(level)

    def log(self, level: int, msg: str, *args, **kwargs):
        extra = dict(kwargs.pop("extra", None) or {})
        for key in list(kwargs):
            if key not in {"exc_info", "stack_info", "stacklevel"}:
                extra[key] = kwargs.pop(key)
        kwargs["extra"] = extra
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.log(logging.ERROR, msg, *args, **kwargs)


def setup_logging(
    level: Union[str, int, None] = None,
    json_output: Optional[bool] = None,
    include_location: bool = False,
    redact_sensitive: bool = True,
    logger_name: str = "llmwire",
) -> logging.Logger:
    """
    Attach a stdout handler to the llmwire logger tree.

    Defaults come from LOG_LEVEL and LOG_FORMAT. Calling again replaces
    the handler rather than adding a second one.

    Args:
        level: Log level name or number
        json_output: JSON formatter (True) or plain text (False)
        include_location: Include filename:lineno in JSON records
        redact_sensitive: Redact secret-looking fields
        logger_name: Logger to configure; "" for the root logger
    """
    if level is None:
        level = config.get_log_level()
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = config.get_log_format() == "json"

    target = logging.getLogger(logger_name)
    target.setLevel(level)

    for handler in target.handlers[:]:
        if getattr(handler, "_llmwire_handler", False):
            target.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler._llmwire_handler = True  # type: ignore[attr-defined]
    if json_output:
        handler.setFormatter(JSONFormatter(
            include_location=include_location,
            redact_sensitive=redact_sensitive,
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    target.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return target


def get_logger(name: str) -> StructuredLogger:
    """Structured logger for a module (typically __name__)."""
    return StructuredLogger(logging.getLogger(name))
