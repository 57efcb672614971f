"""
llmwire - User-Friendly Errors

Renders a ClassifiedError for people: a plain message, numbered recovery
steps, a retry flag and an estimated resolution time.

Every function here is pure; the same error always renders the same way
(the detailed report's timestamp aside).
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .errors import (
    ClassifiedError,
    ErrorCategory,
    ErrorKind,
    ErrorSeverity,
    ProviderError,
)


ErrorLike = Union[ClassifiedError, ProviderError]


RESOLUTION_TIMES: Dict[ErrorSeverity, str] = {
    ErrorSeverity.LOW: "1-5 minutes",
    ErrorSeverity.MEDIUM: "5-15 minutes",
    ErrorSeverity.HIGH: "15-60 minutes",
    ErrorSeverity.CRITICAL: "1-4 hours",
}

# Only the caller can fix these; waiting does not help
_CALLER_FIXED = {
    ErrorCategory.CLIENT,
    ErrorCategory.VALIDATION,
    ErrorCategory.CONFIGURATION,
}

_CREDENTIAL_KINDS = {
    ErrorKind.AUTHENTICATION_ERROR,
    ErrorKind.AUTHORIZATION_ERROR,
    ErrorKind.API_KEY_INVALID,
    ErrorKind.API_KEY_MISSING,
}

_THROTTLE_KINDS = {
    ErrorKind.RATE_LIMIT_EXCEEDED,
    ErrorKind.CONCURRENT_REQUESTS_LIMIT,
}


@dataclass(frozen=True)
class UserFriendlyError:
    user_message: str
    technical_details: str
    recovery_suggestions: List[str] = field(default_factory=list)
    severity: ErrorSeverity = ErrorSeverity.MEDIUM
    category: ErrorCategory = ErrorCategory.CLIENT
    is_retryable: bool = False
    doc_url: Optional[str] = None
    estimated_resolution_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_message": self.user_message,
            "technical_details": self.technical_details,
            "recovery_suggestions": list(self.recovery_suggestions),
            "severity": self.severity.value,
            "category": self.category.value,
            "is_retryable": self.is_retryable,
            "doc_url": self.doc_url,
            "estimated_resolution_time": self.estimated_resolution_time,
        }


def _unwrap(error: ErrorLike) -> ClassifiedError:
    if isinstance(error, ProviderError):
        return error.error
    return error


def get_estimated_resolution_time(error: ClassifiedError) -> Optional[str]:
    """None when only a change on the caller's side resolves the error."""
    if not error.retryable and error.category in _CALLER_FIXED:
        return None
    return RESOLUTION_TIMES.get(error.severity)


def create_user_friendly_error(error: ErrorLike) -> UserFriendlyError:
    error = _unwrap(error)
    metadata = error.metadata

    technical = error.message
    if error.http_status is not None and str(error.http_status) not in technical:
        technical = f"HTTP {error.http_status}: {technical}"

    return UserFriendlyError(
        user_message=metadata.user_message,
        technical_details=technical,
        recovery_suggestions=list(metadata.recovery_steps),
        severity=metadata.severity,
        category=metadata.category,
        is_retryable=metadata.retryable,
        doc_url=metadata.doc_url,
        estimated_resolution_time=get_estimated_resolution_time(error),
    )


def format_user_friendly_error(user_error: UserFriendlyError) -> str:
    """Multi-line display block for terminals and logs."""
    lines = [f"Error: {user_error.user_message}"]

    if user_error.severity == ErrorSeverity.CRITICAL:
        lines.append("This is a critical error that requires immediate attention.")
    elif user_error.severity == ErrorSeverity.HIGH:
        lines.append("This is a high-priority error.")

    if user_error.recovery_suggestions:
        lines.append("")
        lines.append("What you can do:")
        for index, suggestion in enumerate(user_error.recovery_suggestions, start=1):
            lines.append(f"{index}. {suggestion}")

    if user_error.is_retryable:
        lines.append("")
        lines.append("This error can be retried automatically.")
    if user_error.estimated_resolution_time:
        lines.append(f"Estimated resolution time: {user_error.estimated_resolution_time}")

    if user_error.doc_url:
        lines.append("")
        lines.append(f"For more information: {user_error.doc_url}")

    lines.append("")
    lines.append("Technical details:")
    lines.append(user_error.technical_details)
    return "\n".join(lines)


def create_simple_error_message(error: ErrorLike) -> str:
    """One line for end users."""
    user_error = create_user_friendly_error(error)
    message = user_error.user_message
    if user_error.recovery_suggestions:
        message += f" Try: {user_error.recovery_suggestions[0]}"
    if user_error.is_retryable:
        message += " (This will be retried automatically)"
    return message


def create_detailed_error_report(
    error: ErrorLike,
    request_body: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> str:
    """Developer report including the HTTP status, URL and raw body."""
    attempts = error.attempts if isinstance(error, ProviderError) else None
    classified = _unwrap(error)
    user_error = create_user_friendly_error(classified)
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    lines = [
        "=== ERROR REPORT ===",
        f"Timestamp: {timestamp}",
        f"Kind: {classified.kind.value}",
        f"Severity: {user_error.severity.value}",
        f"Category: {user_error.category.value}",
        f"Retryable: {str(user_error.is_retryable).lower()}",
    ]
    if attempts:
        lines.append(f"Attempts: {attempts}")

    lines += ["", f"User Message: {user_error.user_message}"]
    lines += ["", "Technical Details:", user_error.technical_details]

    if classified.http_status is not None or classified.url:
        lines.append("")
    if classified.http_status is not None:
        lines.append(f"HTTP Status: {classified.http_status}")
    if classified.url:
        lines.append(f"URL: {classified.url}")
    if classified.retry_after_seconds is not None:
        lines.append(f"Retry After: {classified.retry_after_seconds:g}s")

    if request_body:
        lines += ["", f"Request Body: {json.dumps(request_body, indent=2, default=str)}"]

    raw = classified.raw_body
    if raw:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        elif not isinstance(raw, str):
            raw = json.dumps(raw, default=str)
        lines += ["", f"Response Body: {raw}"]

    lines += ["", "Recovery Suggestions:"]
    for index, suggestion in enumerate(user_error.recovery_suggestions, start=1):
        lines.append(f"{index}. {suggestion}")

    if user_error.doc_url:
        lines += ["", f"Documentation: {user_error.doc_url}"]

    lines += ["", "=== END REPORT ==="]
    return "\n".join(lines)


def is_configuration_error(error: ErrorLike) -> bool:
    error = _unwrap(error)
    if error.category in (ErrorCategory.CONFIGURATION, ErrorCategory.VALIDATION):
        return True
    return error.kind in _CREDENTIAL_KINDS


def is_temporary_service_error(error: ErrorLike) -> bool:
    error = _unwrap(error)
    if error.kind in _THROTTLE_KINDS:
        return True
    return error.retryable and error.category in (ErrorCategory.SERVER, ErrorCategory.NETWORK)


def get_contextual_help(kind: Union[ErrorKind, str, ErrorLike]) -> List[str]:
    """Extra steps for a kind, on top of its metadata recovery steps."""
    if isinstance(kind, (ClassifiedError, ProviderError)):
        kind = _unwrap(kind).kind
    try:
        kind = ErrorKind(kind)
    except ValueError:
        kind = ErrorKind.UNKNOWN_ERROR

    if kind == ErrorKind.API_KEY_MISSING:
        return [
            "Set the credential environment variable your application reads the API key from",
            "Pass the key explicitly on every call",
            "Restart the process after changing its environment",
        ]
    if kind in (ErrorKind.AUTHENTICATION_ERROR, ErrorKind.API_KEY_INVALID):
        return [
            "Verify your API key is correct and active",
            "Check that you're using the right environment (staging vs production)",
            "Ensure your API key has the necessary permissions for this operation",
        ]
    if kind in (ErrorKind.RATE_LIMIT_EXCEEDED, ErrorKind.CONCURRENT_REQUESTS_LIMIT):
        return [
            "Implement exponential backoff in your retry logic",
            "Consider upgrading your plan for higher rate limits",
            "Batch your requests to reduce API calls",
        ]
    if kind in (ErrorKind.INVALID_MODEL, ErrorKind.MODEL_NOT_FOUND):
        return [
            "Check the list of supported models in the documentation",
            "Verify the model name is spelled correctly",
            "Ensure the model is available in your region",
        ]
    if kind in (ErrorKind.CONTENT_FILTERED, ErrorKind.UNSAFE_CONTENT):
        return [
            "Review your input for potentially harmful content",
            "Consider implementing content filtering before API calls",
            "Check the content policy guidelines",
        ]
    return [
        "Check the API documentation for guidance",
        "Review your request parameters",
        "Contact support if the issue persists",
    ]
