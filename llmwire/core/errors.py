"""
llmwire - Error Taxonomy

Every failure the client can report is one ErrorKind. Each kind has exactly
one ErrorMetadata record (severity, category, retryability, user-facing text,
recovery steps). The table is built once at import and is read-only.

Raw transport failures are turned into ClassifiedError values by
llmwire.core.classifier; callers see them wrapped in ProviderError.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union


class ErrorKind(str, Enum):
    """Failure classes reported by the client."""
    # Authentication & access
    AUTHENTICATION_ERROR = "authentication_error"
    AUTHORIZATION_ERROR = "authorization_error"
    API_KEY_INVALID = "api_key_invalid"
    API_KEY_MISSING = "api_key_missing"

    # Request validation
    INVALID_REQUEST = "invalid_request"
    INVALID_PARAMETERS = "invalid_parameters"
    MISSING_REQUIRED_PARAMETER = "missing_required_parameter"
    INVALID_MODEL = "invalid_model"
    INVALID_PROMPT = "invalid_prompt"
    INVALID_TOOL_FORMAT = "invalid_tool_format"

    # Rate & quota
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONCURRENT_REQUESTS_LIMIT = "concurrent_requests_limit"

    # Model & resource
    MODEL_NOT_FOUND = "model_not_found"
    MODEL_UNAVAILABLE = "model_unavailable"
    MODEL_OVERLOADED = "model_overloaded"
    RESOURCE_NOT_FOUND = "resource_not_found"

    # Server
    SERVER_ERROR = "server_error"
    SERVICE_UNAVAILABLE = "service_unavailable"
    GATEWAY_TIMEOUT = "gateway_timeout"
    MAINTENANCE_MODE = "maintenance_mode"

    # Network
    NETWORK_ERROR = "network_error"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_REFUSED = "connection_refused"
    DNS_RESOLUTION_ERROR = "dns_resolution_error"

    # Response processing
    RESPONSE_PARSING_ERROR = "response_parsing_error"
    MALFORMED_RESPONSE = "malformed_response"
    INCOMPLETE_RESPONSE = "incomplete_response"
    STREAM_ERROR = "stream_error"

    # Content policy
    CONTENT_FILTERED = "content_filtered"
    UNSAFE_CONTENT = "unsafe_content"
    CONTENT_TOO_LONG = "content_too_long"

    # Configuration
    INVALID_CONFIGURATION = "invalid_configuration"
    MISSING_CONFIGURATION = "missing_configuration"

    # Caller initiated
    CANCELLED = "cancelled"

    # Generic
    UNKNOWN_ERROR = "unknown_error"
    API_ERROR = "api_error"


class ErrorSeverity(str, Enum):
    """How badly a failure affects the caller."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Where a failure originates."""
    CLIENT = "client"
    SERVER = "server"
    NETWORK = "network"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"


class _TemplateValues(dict):
    """format_map source that renders unknown placeholders as n/a."""

    def __missing__(self, key: str) -> str:
        return "n/a"


@dataclass(frozen=True)
class ErrorMetadata:
    """Static description of one ErrorKind."""
    kind: ErrorKind
    severity: ErrorSeverity
    category: ErrorCategory
    retryable: bool
    user_message: str
    technical_message: str
    recovery_steps: Tuple[str, ...]
    doc_url: Optional[str] = None

    def render_technical(
        self,
        status: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> str:
        """
        Fill the technical message template.

        Templates may reference {status} and {detail}. A detail that the
        template does not reference is appended after a colon.
        """
        values = _TemplateValues()
        if status is not None:
            values["status"] = status
        if detail:
            values["detail"] = detail
        text = self.technical_message.format_map(values)
        if detail and "{detail}" not in self.technical_message:
            text = f"{text}: {detail}"
        return text


def _meta(
    kind: ErrorKind,
    severity: ErrorSeverity,
    category: ErrorCategory,
    retryable: bool,
    user_message: str,
    technical_message: str,
    steps: Tuple[str, ...],
    doc_url: Optional[str] = None,
) -> ErrorMetadata:
    return ErrorMetadata(
        kind=kind,
        severity=severity,
        category=category,
        retryable=retryable,
        user_message=user_message,
        technical_message=technical_message,
        recovery_steps=steps,
        doc_url=doc_url,
    )


_LOW = ErrorSeverity.LOW
_MEDIUM = ErrorSeverity.MEDIUM
_HIGH = ErrorSeverity.HIGH
_CRITICAL = ErrorSeverity.CRITICAL

_CLIENT = ErrorCategory.CLIENT
_SERVER = ErrorCategory.SERVER
_NETWORK = ErrorCategory.NETWORK
_VALIDATION = ErrorCategory.VALIDATION
_CONFIGURATION = ErrorCategory.CONFIGURATION

_BEARER_DOCS = "https://datatracker.ietf.org/doc/html/rfc6750"
_RATE_LIMIT_DOCS = "https://www.rfc-editor.org/rfc/rfc6585#section-4"
_SSE_DOCS = "https://html.spec.whatwg.org/multipage/server-sent-events.html"


_METADATA_ENTRIES = (
    # ============================================================
    # Authentication & access
    # ============================================================
    _meta(
        ErrorKind.AUTHENTICATION_ERROR, _HIGH, _CLIENT, False,
        "Authentication failed. Please check your API key.",
        "Upstream rejected the credentials (HTTP {status})",
        (
            "Verify your API key is correct",
            "Check that the API key has not expired or been revoked",
            "Ensure the API key is sent with the auth mode the endpoint expects",
        ),
        _BEARER_DOCS,
    ),
    _meta(
        ErrorKind.AUTHORIZATION_ERROR, _HIGH, _CLIENT, False,
        "Access denied. Your account does not have permission to use this feature.",
        "Insufficient permissions for the requested operation (HTTP {status})",
        (
            "Contact your account administrator to request access",
            "Verify your account has the necessary permissions",
            "Check if the model requires special access privileges",
        ),
    ),
    _meta(
        ErrorKind.API_KEY_INVALID, _HIGH, _CLIENT, False,
        "Invalid API key format.",
        "The provided API key format is invalid",
        (
            "Check the API key format matches the provider requirements",
            "Regenerate your API key if necessary",
            "Ensure no extra characters or whitespace in the key",
        ),
        _BEARER_DOCS,
    ),
    _meta(
        ErrorKind.API_KEY_MISSING, _HIGH, _CONFIGURATION, False,
        "API key is required but not provided.",
        "No API key provided for the request",
        (
            "Set the credential environment variable your application reads the key from",
            "Pass the API key explicitly when making the request",
            "Verify your environment configuration is loaded correctly",
        ),
    ),

    # ============================================================
    # Request validation
    # ============================================================
    _meta(
        ErrorKind.INVALID_REQUEST, _MEDIUM, _VALIDATION, False,
        "Invalid request. Please check your input parameters.",
        "Request validation failed (HTTP {status})",
        (
            "Review the API documentation for correct parameter formats",
            "Check all required parameters are provided",
            "Validate parameter types and values",
        ),
    ),
    _meta(
        ErrorKind.INVALID_PARAMETERS, _MEDIUM, _VALIDATION, False,
        "One or more parameters are invalid.",
        "Request contains invalid parameter values",
        (
            "Check parameter types match expected formats",
            "Verify parameter values are within acceptable ranges",
            "Review the API documentation for parameter requirements",
        ),
    ),
    _meta(
        ErrorKind.MISSING_REQUIRED_PARAMETER, _MEDIUM, _VALIDATION, False,
        "Required parameter is missing.",
        "Request is missing a required parameter",
        (
            "Check the API documentation for required parameters",
            "Ensure all mandatory fields are provided",
            "Verify parameter names are spelled correctly",
        ),
    ),
    _meta(
        ErrorKind.INVALID_MODEL, _MEDIUM, _VALIDATION, False,
        "The specified model is not valid.",
        "Invalid model identifier provided",
        (
            "Check the model name is spelled correctly",
            "Verify the model is available in your region",
            "Consult the list of supported models",
        ),
    ),
    _meta(
        ErrorKind.INVALID_PROMPT, _MEDIUM, _VALIDATION, False,
        "The provided prompt is invalid.",
        "Prompt validation failed",
        (
            "Check prompt format and structure",
            "Ensure prompt is not empty",
            "Verify prompt length is within limits",
        ),
    ),
    _meta(
        ErrorKind.INVALID_TOOL_FORMAT, _MEDIUM, _VALIDATION, False,
        "Tool definition format is invalid.",
        "Tool call or tool configuration does not match expected format",
        (
            "Check tool definition structure",
            "Verify all required tool properties are present",
            "Review tool schema documentation",
        ),
    ),

    # ============================================================
    # Rate & quota
    # ============================================================
    _meta(
        ErrorKind.RATE_LIMIT_EXCEEDED, _MEDIUM, _CLIENT, True,
        "Rate limit exceeded. Please try again later.",
        "API rate limit has been exceeded (HTTP {status})",
        (
            "Wait before making additional requests",
            "Implement exponential backoff in your retry logic",
            "Consider upgrading your plan for higher rate limits",
        ),
        _RATE_LIMIT_DOCS,
    ),
    _meta(
        ErrorKind.QUOTA_EXCEEDED, _HIGH, _CLIENT, False,
        "Usage quota exceeded for your account.",
        "Account usage quota has been exceeded",
        (
            "Check your account usage dashboard",
            "Upgrade your plan for higher quotas",
            "Wait for quota reset if on a time-based plan",
        ),
    ),
    _meta(
        ErrorKind.CONCURRENT_REQUESTS_LIMIT, _MEDIUM, _CLIENT, True,
        "Too many concurrent requests. Please reduce request frequency.",
        "Maximum concurrent requests limit exceeded",
        (
            "Reduce the number of simultaneous requests",
            "Implement request queuing in your application",
            "Consider upgrading for higher concurrency limits",
        ),
    ),

    # ============================================================
    # Model & resource
    # ============================================================
    _meta(
        ErrorKind.MODEL_NOT_FOUND, _HIGH, _CLIENT, False,
        "The requested model was not found.",
        "Specified model does not exist or is not accessible (HTTP {status})",
        (
            "Verify the model name is correct",
            "Check if the model is available in your region",
            "Ensure your account has access to the model",
        ),
    ),
    _meta(
        ErrorKind.MODEL_UNAVAILABLE, _HIGH, _SERVER, True,
        "The model is temporarily unavailable.",
        "Model service is currently unavailable",
        (
            "Try again in a few minutes",
            "Use an alternative model if available",
            "Check the provider status page for service updates",
        ),
    ),
    _meta(
        ErrorKind.MODEL_OVERLOADED, _MEDIUM, _SERVER, True,
        "The model is currently overloaded. Please try again.",
        "Model is experiencing high load (HTTP {status})",
        (
            "Retry with exponential backoff",
            "Try during off-peak hours",
            "Consider using a different model variant",
        ),
    ),
    _meta(
        ErrorKind.RESOURCE_NOT_FOUND, _MEDIUM, _CLIENT, False,
        "The requested resource was not found.",
        "Specified resource does not exist (HTTP {status})",
        (
            "Check the endpoint URL and resource identifier",
            "Verify the resource exists and is accessible",
            "Ensure proper permissions for the resource",
        ),
    ),

    # ============================================================
    # Server
    # ============================================================
    _meta(
        ErrorKind.SERVER_ERROR, _HIGH, _SERVER, True,
        "A server error occurred. Please try again later.",
        "Upstream internal server error (HTTP {status})",
        (
            "Retry the request after a short delay",
            "Check the provider status page",
            "Contact support if the issue persists",
        ),
    ),
    _meta(
        ErrorKind.SERVICE_UNAVAILABLE, _HIGH, _SERVER, True,
        "The service is temporarily unavailable.",
        "Service is currently unavailable (HTTP {status})",
        (
            "Wait and retry in a few minutes",
            "Check the provider status page for updates",
            "Implement retry logic with exponential backoff",
        ),
    ),
    _meta(
        ErrorKind.GATEWAY_TIMEOUT, _MEDIUM, _SERVER, True,
        "Request timed out. Please try again.",
        "Gateway timeout occurred (HTTP {status})",
        (
            "Retry the request",
            "Reduce request complexity if possible",
            "Check your network connection",
        ),
    ),
    _meta(
        ErrorKind.MAINTENANCE_MODE, _HIGH, _SERVER, True,
        "The service is under maintenance. Please try again later.",
        "Service is in maintenance mode",
        (
            "Wait for maintenance to complete",
            "Check the provider status page for updates",
            "Subscribe to status notifications",
        ),
    ),

    # ============================================================
    # Network
    # ============================================================
    _meta(
        ErrorKind.NETWORK_ERROR, _MEDIUM, _NETWORK, True,
        "Network error occurred. Please check your connection.",
        "Network connectivity issue",
        (
            "Check your internet connection",
            "Verify firewall settings",
            "Try again in a moment",
        ),
    ),
    _meta(
        ErrorKind.CONNECTION_TIMEOUT, _MEDIUM, _NETWORK, True,
        "Connection timed out. Please try again.",
        "Request timed out waiting for response",
        (
            "Check your network connection",
            "Increase the request timeout",
            "Retry the request",
        ),
    ),
    _meta(
        ErrorKind.CONNECTION_REFUSED, _HIGH, _NETWORK, True,
        "Connection refused. Please try again later.",
        "Connection to server was refused",
        (
            "Check if the service is running",
            "Verify the endpoint URL is correct",
            "Check firewall and network settings",
        ),
    ),
    _meta(
        ErrorKind.DNS_RESOLUTION_ERROR, _MEDIUM, _NETWORK, True,
        "Unable to resolve server address.",
        "DNS resolution failed for the API endpoint",
        (
            "Check your DNS settings",
            "Try using a different DNS server",
            "Verify the endpoint URL is correct",
        ),
    ),

    # ============================================================
    # Response processing
    # ============================================================
    _meta(
        ErrorKind.RESPONSE_PARSING_ERROR, _MEDIUM, _SERVER, False,
        "Unable to process server response.",
        "Failed to parse API response",
        (
            "Report this issue to support",
            "Try the request again",
            "Check if the API version is compatible",
        ),
    ),
    _meta(
        ErrorKind.MALFORMED_RESPONSE, _MEDIUM, _SERVER, False,
        "Received invalid response from server.",
        "Server returned malformed response (HTTP {status})",
        (
            "Report this issue to support",
            "Try the request again",
            "Check API documentation for expected response format",
        ),
    ),
    _meta(
        ErrorKind.INCOMPLETE_RESPONSE, _MEDIUM, _SERVER, True,
        "Received incomplete response from server.",
        "Server response was incomplete or truncated",
        (
            "Retry the request",
            "Check network stability",
            "Report persistent issues to support",
        ),
    ),
    _meta(
        ErrorKind.STREAM_ERROR, _MEDIUM, _SERVER, True,
        "Error occurred during streaming response.",
        "Streaming response encountered an error",
        (
            "Try using non-streaming mode",
            "Check network stability",
            "Retry the request",
        ),
        _SSE_DOCS,
    ),

    # ============================================================
    # Content policy (never retryable)
    # ============================================================
    _meta(
        ErrorKind.CONTENT_FILTERED, _MEDIUM, _CLIENT, False,
        "Content was filtered due to safety policies.",
        "Request content triggered safety filters",
        (
            "Modify your prompt to avoid sensitive content",
            "Review content policy guidelines",
            "Try rephrasing your request",
        ),
    ),
    _meta(
        ErrorKind.UNSAFE_CONTENT, _MEDIUM, _CLIENT, False,
        "Content violates safety guidelines.",
        "Content was flagged as unsafe",
        (
            "Review and modify your content",
            "Ensure compliance with usage policies",
            "Contact support if you believe this is an error",
        ),
    ),
    _meta(
        ErrorKind.CONTENT_TOO_LONG, _MEDIUM, _CLIENT, False,
        "Content exceeds maximum length limit.",
        "Request content exceeds size limits (HTTP {status})",
        (
            "Reduce the length of your input",
            "Split large requests into smaller chunks",
            "Check the model's context window limits",
        ),
    ),

    # ============================================================
    # Configuration
    # ============================================================
    _meta(
        ErrorKind.INVALID_CONFIGURATION, _HIGH, _CONFIGURATION, False,
        "Invalid configuration detected.",
        "Client configuration is invalid",
        (
            "Check your request configuration",
            "Verify the endpoint URL is an absolute http(s) URL",
            "Review configuration documentation",
        ),
    ),
    _meta(
        ErrorKind.MISSING_CONFIGURATION, _HIGH, _CONFIGURATION, False,
        "Required configuration is missing.",
        "Missing required configuration parameters",
        (
            "Provide all required configuration parameters",
            "Check environment variables are set",
            "Review setup documentation",
        ),
    ),

    # ============================================================
    # Caller initiated
    # ============================================================
    _meta(
        ErrorKind.CANCELLED, _LOW, _CLIENT, False,
        "The request was cancelled.",
        "Operation cancelled by the caller",
        (
            "No action needed if the cancellation was intentional",
            "Issue the request again if the result is still needed",
            "Check which component triggered the cancellation",
        ),
    ),

    # ============================================================
    # Generic
    # ============================================================
    _meta(
        ErrorKind.UNKNOWN_ERROR, _MEDIUM, _SERVER, False,
        "An unexpected error occurred.",
        "Unknown error occurred",
        (
            "Try the request again",
            "Check the provider status page",
            "Contact support with error details",
        ),
    ),
    _meta(
        ErrorKind.API_ERROR, _MEDIUM, _CLIENT, False,
        "API error occurred.",
        "Upstream returned an unexpected status (HTTP {status})",
        (
            "Check request parameters",
            "Review the API documentation for this endpoint",
            "Contact support if the issue persists",
        ),
    ),
)


ERROR_METADATA: Mapping[ErrorKind, ErrorMetadata] = MappingProxyType(
    {entry.kind: entry for entry in _METADATA_ENTRIES}
)

_missing_kinds = set(ErrorKind) - set(ERROR_METADATA)
if _missing_kinds or len(ERROR_METADATA) != len(_METADATA_ENTRIES):
    raise RuntimeError(
        f"Error metadata table is not total: missing={sorted(k.value for k in _missing_kinds)}"
    )


def get_error_metadata(kind: Union[ErrorKind, str]) -> ErrorMetadata:
    """
    Look up metadata for a kind.

    Accepts the enum or its string value. Unknown strings resolve to
    UNKNOWN_ERROR so lookups never fail.
    """
    if not isinstance(kind, ErrorKind):
        try:
            kind = ErrorKind(kind)
        except ValueError:
            kind = ErrorKind.UNKNOWN_ERROR
    return ERROR_METADATA[kind]


def is_retryable_kind(kind: Union[ErrorKind, str]) -> bool:
    return get_error_metadata(kind).retryable


# ============================================================
# Classified errors
# ============================================================

@dataclass(frozen=True)
class ClassifiedError:
    """
    A failure after classification.

    Created once where the raw failure is first observed and never
    mutated afterwards.
    """
    kind: ErrorKind
    metadata: ErrorMetadata
    message: str
    http_status: Optional[int] = None
    raw_body: Any = None
    retry_after_seconds: Optional[float] = None
    vendor_type: Optional[str] = None
    vendor_code: Optional[str] = None
    url: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.metadata.retryable

    @property
    def severity(self) -> ErrorSeverity:
        return self.metadata.severity

    @property
    def category(self) -> ErrorCategory:
        return self.metadata.category

    @property
    def is_rate_limited(self) -> bool:
        return self.kind in (
            ErrorKind.RATE_LIMIT_EXCEEDED,
            ErrorKind.CONCURRENT_REQUESTS_LIMIT,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.http_status is not None:
            result["http_status"] = self.http_status
        if self.retry_after_seconds is not None:
            result["retry_after_seconds"] = self.retry_after_seconds
        if self.vendor_type:
            result["vendor_type"] = self.vendor_type
        if self.vendor_code:
            result["vendor_code"] = self.vendor_code
        if self.url:
            result["url"] = self.url
        return {"error": result}


def create_error(
    kind: ErrorKind,
    *,
    detail: Optional[str] = None,
    http_status: Optional[int] = None,
    raw_body: Any = None,
    retry_after_seconds: Optional[float] = None,
    vendor_type: Optional[str] = None,
    vendor_code: Optional[str] = None,
    url: Optional[str] = None,
) -> ClassifiedError:
    """Build a ClassifiedError with its metadata and rendered message."""
    metadata = ERROR_METADATA[kind]
    return ClassifiedError(
        kind=kind,
        metadata=metadata,
        message=metadata.render_technical(status=http_status, detail=detail),
        http_status=http_status,
        raw_body=raw_body,
        retry_after_seconds=retry_after_seconds,
        vendor_type=vendor_type,
        vendor_code=vendor_code,
        url=url,
    )


def create_validation_error(
    message: str,
    parameter: Optional[str] = None,
    value: Any = None,
) -> ClassifiedError:
    """
    Build an error for a request rejected before any I/O.

    Naming the offending parameter makes it a missing-parameter error.
    """
    if parameter:
        detail = f"{message} (parameter={parameter!r}"
        if value is not None:
            detail += f", value={value!r}"
        detail += ")"
        return create_error(ErrorKind.MISSING_REQUIRED_PARAMETER, detail=detail)
    return create_error(ErrorKind.INVALID_PARAMETERS, detail=message)


class ProviderError(Exception):
    """Exception carrying a ClassifiedError to callers."""

    def __init__(self, error: ClassifiedError, attempts: int = 0):
        self.error = error
        self.attempts = attempts
        super().__init__(error.message)

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def retryable(self) -> bool:
        return self.error.retryable

    @property
    def http_status(self) -> Optional[int]:
        return self.error.http_status

    def __str__(self) -> str:
        return f"[{self.error.kind.value}] {self.error.message}"
