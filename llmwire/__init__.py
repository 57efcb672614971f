"""
llmwire - Resilient HTTP/SSE Client for LLM APIs

Retrying JSON requests and streaming calls against LLM inference APIs,
with one error taxonomy for every failure and a provider-agnostic event
stream for both delta-JSON and typed-event SSE formats.
"""

__version__ = "1.0.0"

from .core.errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorKind,
    ErrorSeverity,
    ProviderError,
)
from .core.models import AuthMode, BackoffPolicy, RequestConfig, WireFormat
from .core.cancellation import CancellationToken, OperationCancelled
from .core.http_client import RequestEngine, request, stream_request
from .streaming.events import FinishReason, StreamEventType, Usage

__all__ = [
    "__version__",
    # Errors
    "ClassifiedError",
    "ErrorCategory",
    "ErrorKind",
    "ErrorSeverity",
    "ProviderError",
    # Config
    "AuthMode",
    "BackoffPolicy",
    "RequestConfig",
    "WireFormat",
    "CancellationToken",
    "OperationCancelled",
    # Engine
    "RequestEngine",
    "request",
    "stream_request",
    # Streams
    "FinishReason",
    "StreamEventType",
    "Usage",
]
