"""
llmwire - Failure Classifier

The single place where raw failures become ClassifiedError values.

Inputs handled, in priority order:
1. Caller cancellation -> CANCELLED (never retryable)
2. Network exceptions (httpx / asyncio / OSError) -> NETWORK_ERROR or a
   CONNECTION_* kind
3. HTTP responses -> status table, refined by the vendor error body
   (OpenAI {"error": {type, code, message}}, Anthropic
   {"type": "error", "error": {type, message}}, or flat {message, code})
4. Bodies that fail to parse -> RESPONSE_PARSING_ERROR / MALFORMED_RESPONSE

Anything else becomes UNKNOWN_ERROR. classify() never raises.
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx
from pydantic import ValidationError

from .cancellation import OperationCancelled
from .errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorKind,
    ProviderError,
    create_error,
    get_error_metadata,
)


# ============================================================
# Outcome types
# ============================================================

@dataclass(frozen=True)
class HttpOutcome:
    """A completed HTTP exchange, independent of the transport library."""
    status: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    url: Optional[str] = None


@dataclass(frozen=True)
class ResponseParseFailure:
    """A body that could not be decoded into the expected shape."""
    detail: str
    status: Optional[int] = None
    body: Any = None
    url: Optional[str] = None
    # MALFORMED_RESPONSE for whole bodies, RESPONSE_PARSING_ERROR for stream frames
    kind: ErrorKind = ErrorKind.MALFORMED_RESPONSE


@dataclass(frozen=True)
class ClassifierRules:
    """
    Tunable parts of classification.

    A 404 is MODEL_NOT_FOUND when the vendor error text mentions one of
    `model_markers`, RESOURCE_NOT_FOUND when it mentions one of
    `resource_markers`, and `default_not_found` otherwise.
    """
    model_markers: Tuple[str, ...] = ("model",)
    resource_markers: Tuple[str, ...] = ("resource", "route", "endpoint", "path", "url", "file")
    default_not_found: ErrorKind = ErrorKind.MODEL_NOT_FOUND


DEFAULT_RULES = ClassifierRules()


# ============================================================
# Tables
# ============================================================

STATUS_TO_KIND: Dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.AUTHENTICATION_ERROR,
    403: ErrorKind.AUTHORIZATION_ERROR,
    404: ErrorKind.MODEL_NOT_FOUND,  # refined by ClassifierRules
    408: ErrorKind.CONNECTION_TIMEOUT,
    413: ErrorKind.CONTENT_TOO_LONG,
    422: ErrorKind.INVALID_PARAMETERS,
    429: ErrorKind.RATE_LIMIT_EXCEEDED,
    500: ErrorKind.SERVER_ERROR,
    502: ErrorKind.SERVICE_UNAVAILABLE,
    503: ErrorKind.SERVICE_UNAVAILABLE,
    504: ErrorKind.GATEWAY_TIMEOUT,
    507: ErrorKind.QUOTA_EXCEEDED,
    529: ErrorKind.MODEL_OVERLOADED,
}

# Vendor `code` / `type` strings. Codes are checked before types.
VENDOR_TO_KIND: Dict[str, ErrorKind] = {
    # auth
    "authentication_error": ErrorKind.AUTHENTICATION_ERROR,
    "invalid_api_key": ErrorKind.API_KEY_INVALID,
    "invalid_authentication": ErrorKind.AUTHENTICATION_ERROR,
    "permission_error": ErrorKind.AUTHORIZATION_ERROR,
    "permission_denied": ErrorKind.AUTHORIZATION_ERROR,
    "insufficient_permissions": ErrorKind.AUTHORIZATION_ERROR,
    # request shape
    "invalid_request_error": ErrorKind.INVALID_REQUEST,
    "invalid_request": ErrorKind.INVALID_REQUEST,
    "invalid_parameter": ErrorKind.INVALID_PARAMETERS,
    "invalid_value": ErrorKind.INVALID_PARAMETERS,
    "missing_required_parameter": ErrorKind.MISSING_REQUIRED_PARAMETER,
    "invalid_model": ErrorKind.INVALID_MODEL,
    "model_not_found": ErrorKind.MODEL_NOT_FOUND,
    "invalid_prompt": ErrorKind.INVALID_PROMPT,
    "invalid_tool": ErrorKind.INVALID_TOOL_FORMAT,
    "invalid_tool_format": ErrorKind.INVALID_TOOL_FORMAT,
    "invalid_function_parameters": ErrorKind.INVALID_TOOL_FORMAT,
    # rate & quota
    "rate_limit_error": ErrorKind.RATE_LIMIT_EXCEEDED,
    "rate_limit_exceeded": ErrorKind.RATE_LIMIT_EXCEEDED,
    "insufficient_quota": ErrorKind.QUOTA_EXCEEDED,
    "quota_exceeded": ErrorKind.QUOTA_EXCEEDED,
    "billing_error": ErrorKind.QUOTA_EXCEEDED,
    "concurrency_limit_exceeded": ErrorKind.CONCURRENT_REQUESTS_LIMIT,
    "too_many_concurrent_requests": ErrorKind.CONCURRENT_REQUESTS_LIMIT,
    # model & server
    "overloaded_error": ErrorKind.MODEL_OVERLOADED,
    "model_overloaded": ErrorKind.MODEL_OVERLOADED,
    "model_unavailable": ErrorKind.MODEL_UNAVAILABLE,
    "engine_overloaded": ErrorKind.MODEL_OVERLOADED,
    "api_error": ErrorKind.SERVER_ERROR,
    "server_error": ErrorKind.SERVER_ERROR,
    "internal_error": ErrorKind.SERVER_ERROR,
    "service_unavailable": ErrorKind.SERVICE_UNAVAILABLE,
    "timeout_error": ErrorKind.GATEWAY_TIMEOUT,
    "maintenance": ErrorKind.MAINTENANCE_MODE,
    "maintenance_mode": ErrorKind.MAINTENANCE_MODE,
    # content policy
    "content_filter": ErrorKind.CONTENT_FILTERED,
    "content_filtered": ErrorKind.CONTENT_FILTERED,
    "content_policy_violation": ErrorKind.CONTENT_FILTERED,
    "unsafe_content": ErrorKind.UNSAFE_CONTENT,
    "safety_error": ErrorKind.UNSAFE_CONTENT,
    "context_length_exceeded": ErrorKind.CONTENT_TOO_LONG,
    "request_too_large": ErrorKind.CONTENT_TOO_LONG,
    "string_above_max_length": ErrorKind.CONTENT_TOO_LONG,
}

_SERVER_SIDE = {ErrorCategory.SERVER, ErrorCategory.NETWORK}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")


# ============================================================
# Vendor bodies
# ============================================================

@dataclass(frozen=True)
class VendorError:
    """Fields pulled out of a vendor error body."""
    type: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    retry_after: Optional[float] = None


def _as_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def decode_body(body: Any) -> Any:
    """Turn bytes/str bodies into JSON where possible; else return text."""
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8", errors="replace")
    if isinstance(body, str):
        text = body.strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError:
            return text
    return body


def parse_vendor_error(body: Any) -> VendorError:
    """Extract type/code/message from any of the supported error shapes."""
    data = decode_body(body)
    if isinstance(data, str):
        return VendorError(message=data[:500])
    if not isinstance(data, dict):
        return VendorError()

    retry_after = _parse_seconds(data.get("retry_after"))
    inner = data.get("error")
    if isinstance(inner, dict):
        return VendorError(
            type=_as_str(inner.get("type")) or (
                _as_str(data.get("type")) if data.get("type") != "error" else None
            ),
            code=_as_str(inner.get("code")) or _as_str(data.get("code")),
            message=_as_str(inner.get("message")) or _as_str(data.get("message")),
            retry_after=retry_after if retry_after is not None else _parse_seconds(inner.get("retry_after")),
        )
    if isinstance(inner, str):
        return VendorError(
            code=_as_str(data.get("code")),
            message=inner,
            retry_after=retry_after,
        )
    vendor_type = _as_str(data.get("type"))
    return VendorError(
        type=vendor_type if vendor_type != "error" else None,
        code=_as_str(data.get("code")) or _as_str(data.get("error_code")),
        message=_as_str(data.get("message")) or _as_str(data.get("detail")),
        retry_after=retry_after,
    )


def refine_kind(vendor: VendorError) -> Optional[ErrorKind]:
    for key in (vendor.code, vendor.type):
        if key and key.lower() in VENDOR_TO_KIND:
            return VENDOR_TO_KIND[key.lower()]
    return None


def _not_found_kind(vendor: VendorError, rules: ClassifierRules) -> ErrorKind:
    text = " ".join(part for part in (vendor.code, vendor.type, vendor.message) if part).lower()
    if any(marker in text for marker in rules.model_markers):
        return ErrorKind.MODEL_NOT_FOUND
    if any(marker in text for marker in rules.resource_markers):
        return ErrorKind.RESOURCE_NOT_FOUND
    return rules.default_not_found


# ============================================================
# Retry hints
# ============================================================

def _parse_seconds(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def _parse_duration(value: str) -> Optional[float]:
    """Parse durations like '6m0s', '1.5s', '250ms'."""
    value = value.strip()
    parts = _DURATION_PART.findall(value)
    if not parts or "".join(n + u for n, u in parts) != value:
        return None
    scale = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
    return sum(float(number) * scale[unit] for number, unit in parts)


def _seconds_until(moment: datetime, now: float) -> float:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max(0.0, moment.timestamp() - now)


def _parse_reset(value: str, now: float) -> Optional[float]:
    """
    Parse a reset hint: delta seconds, epoch seconds, duration, RFC 3339
    or HTTP date.
    """
    value = value.strip()
    if not value:
        return None
    seconds = _parse_seconds(value)
    if seconds is not None:
        # Large numbers are absolute epoch timestamps
        if seconds > 1_000_000_000:
            return max(0.0, seconds - now)
        return seconds
    duration = _parse_duration(value)
    if duration is not None:
        return duration
    try:
        return _seconds_until(datetime.fromisoformat(value.replace("Z", "+00:00")), now)
    except ValueError:
        pass
    try:
        return _seconds_until(parsedate_to_datetime(value), now)
    except (TypeError, ValueError, IndexError):
        return None


def parse_retry_after(
    headers: Optional[Mapping[str, str]],
    vendor: Optional[VendorError] = None,
    now: Optional[float] = None,
) -> Optional[float]:
    """
    Seconds the server asked us to wait, if it said.

    Checks, in order: retry-after-ms, Retry-After, x-ratelimit-reset*,
    anthropic-ratelimit-*-reset, then a body `retry_after`. The largest
    reset hint wins among the rate-limit headers.
    """
    now = time.time() if now is None else now
    lowered = {k.lower(): v for k, v in (headers or {}).items()}

    ms = _parse_seconds(lowered.get("retry-after-ms"))
    if ms is not None:
        return ms / 1000.0

    if "retry-after" in lowered:
        parsed = _parse_reset(lowered["retry-after"], now)
        if parsed is not None:
            return parsed

    resets = []
    for name, value in lowered.items():
        if name.startswith("x-ratelimit-reset") or (
            name.startswith("anthropic-ratelimit-") and name.endswith("-reset")
        ):
            parsed = _parse_reset(value, now)
            if parsed is not None:
                resets.append(parsed)
    if resets:
        return max(resets)

    if vendor is not None and vendor.retry_after is not None:
        return vendor.retry_after
    return None


# ============================================================
# Classification
# ============================================================

def classify_status(
    status: int,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    url: Optional[str] = None,
    rules: ClassifierRules = DEFAULT_RULES,
) -> ClassifiedError:
    """Classify a non-2xx HTTP response."""
    vendor = parse_vendor_error(body)

    if status in STATUS_TO_KIND:
        kind = STATUS_TO_KIND[status]
    elif 500 <= status <= 599:
        kind = ErrorKind.SERVER_ERROR
    else:
        kind = ErrorKind.API_ERROR

    refined = refine_kind(vendor)
    if refined is not None and refined != kind:
        refined_meta = get_error_metadata(refined)
        if status >= 500 and refined_meta.category not in _SERVER_SIDE:
            refined = None
        elif status < 500 and refined_meta.category in _SERVER_SIDE and status != 429:
            refined = None
        elif refined == ErrorKind.INVALID_REQUEST and kind not in (
            ErrorKind.INVALID_REQUEST, ErrorKind.API_ERROR,
        ):
            # generic vendor type never hides a more specific status
            refined = None
    if refined is not None:
        kind = refined
    elif status == 404:
        kind = _not_found_kind(vendor, rules)

    retry_after = None
    if get_error_metadata(kind).retryable:
        retry_after = parse_retry_after(headers, vendor)

    return create_error(
        kind,
        detail=vendor.message,
        http_status=status,
        raw_body=body,
        retry_after_seconds=retry_after,
        vendor_type=vendor.type,
        vendor_code=vendor.code,
        url=url,
    )


def classify_vendor_error(
    payload: Any,
    status: Optional[int] = None,
    url: Optional[str] = None,
) -> ClassifiedError:
    """
    Classify an error object delivered inside a stream.

    Used for delta-JSON `{"error": {...}}` frames and typed `error` events,
    where there is no HTTP status to go on.
    """
    if status is not None:
        return classify_status(status, payload, url=url)
    vendor = parse_vendor_error(payload)
    kind = refine_kind(vendor) or ErrorKind.STREAM_ERROR
    return create_error(
        kind,
        detail=vendor.message,
        raw_body=payload,
        retry_after_seconds=vendor.retry_after,
        vendor_type=vendor.type,
        vendor_code=vendor.code,
        url=url,
    )


def classify_parse_failure(failure: ResponseParseFailure) -> ClassifiedError:
    return create_error(
        failure.kind,
        detail=failure.detail,
        http_status=failure.status,
        raw_body=failure.body,
        url=failure.url,
    )


def _network_kind(message: str) -> ErrorKind:
    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorKind.CONNECTION_TIMEOUT
    if "refused" in lowered or "econnrefused" in lowered:
        return ErrorKind.CONNECTION_REFUSED
    if (
        "dns" in lowered
        or "getaddrinfo" in lowered
        or "name or service not known" in lowered
        or "nodename nor servname" in lowered
        or "name resolution" in lowered
    ):
        return ErrorKind.DNS_RESOLUTION_ERROR
    return ErrorKind.NETWORK_ERROR


def _exception_url(exc: BaseException) -> Optional[str]:
    if isinstance(exc, httpx.RequestError):
        try:
            return str(exc.request.url)
        except RuntimeError:
            return None
    return None


def classify_exception(
    exc: BaseException,
    during_stream: bool = False,
    url: Optional[str] = None,
) -> ClassifiedError:
    """
    Classify a raised exception.

    `during_stream` marks failures that happen after a 2xx stream was
    opened; transport errors there are STREAM_ERROR rather than network
    kinds.
    """
    if isinstance(exc, ProviderError):
        return exc.error

    url = url or _exception_url(exc)
    detail = str(exc) or type(exc).__name__

    if isinstance(exc, (OperationCancelled, asyncio.CancelledError)):
        reason = getattr(exc, "reason", None)
        return create_error(ErrorKind.CANCELLED, detail=reason, url=url)

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return create_error(ErrorKind.CONNECTION_TIMEOUT, detail=detail, url=url)

    if isinstance(exc, ValidationError):
        return create_error(ErrorKind.INVALID_CONFIGURATION, detail=detail, url=url)

    if during_stream and isinstance(exc, (httpx.TransportError, httpx.StreamError, OSError)):
        return create_error(ErrorKind.STREAM_ERROR, detail=detail, url=url)

    if isinstance(exc, httpx.ConnectError):
        return create_error(_network_kind(detail), detail=detail, url=url)

    if isinstance(exc, ConnectionRefusedError):
        return create_error(ErrorKind.CONNECTION_REFUSED, detail=detail, url=url)

    if isinstance(exc, (httpx.TransportError, OSError)):
        return create_error(_network_kind(detail), detail=detail, url=url)

    if isinstance(exc, httpx.HTTPStatusError):
        return classify_response(exc.response)

    if isinstance(exc, (json.JSONDecodeError, UnicodeDecodeError)):
        kind = ErrorKind.RESPONSE_PARSING_ERROR if during_stream else ErrorKind.MALFORMED_RESPONSE
        return create_error(kind, detail=detail, url=url)

    return create_error(ErrorKind.UNKNOWN_ERROR, detail=f"{type(exc).__name__}: {detail}", url=url)


def classify_response(
    response: httpx.Response,
    rules: ClassifierRules = DEFAULT_RULES,
) -> ClassifiedError:
    """Classify a non-2xx httpx response whose body has been read."""
    try:
        body: Any = response.content
    except httpx.ResponseNotRead:
        body = None
    try:
        url = str(response.request.url)
    except RuntimeError:
        url = None
    return classify_status(response.status_code, body, response.headers, url, rules)


def classify(
    outcome: Any,
    *,
    during_stream: bool = False,
    rules: ClassifierRules = DEFAULT_RULES,
) -> ClassifiedError:
    """
    Classify any failure outcome.

    Accepts an exception, an httpx.Response, an HttpOutcome, a
    ResponseParseFailure or an already ClassifiedError.
    """
    try:
        if isinstance(outcome, ClassifiedError):
            return outcome
        if isinstance(outcome, ResponseParseFailure):
            return classify_parse_failure(outcome)
        if isinstance(outcome, HttpOutcome):
            return classify_status(outcome.status, outcome.body, outcome.headers, outcome.url, rules)
        if isinstance(outcome, httpx.Response):
            return classify_response(outcome, rules)
        if isinstance(outcome, BaseException):
            return classify_exception(outcome, during_stream=during_stream)
        return create_error(
            ErrorKind.UNKNOWN_ERROR,
            detail=f"Unclassifiable outcome of type {type(outcome).__name__}",
        )
    except Exception as exc:  # classification itself must never escape
        return create_error(
            ErrorKind.UNKNOWN_ERROR,
            detail=f"Classification failed: {type(exc).__name__}: {exc}",
        )
