"""
llmwire - Request Engine

HTTP engine for LLM APIs with:
- Exponential backoff retry (1-2-4-8-16s with jitter), floored by
  Retry-After style hints
- Per-attempt timeouts
- Cancellation through a CancellationToken, including during backoff
  and while a stream is being read
- Request correlation (X-Request-ID on every attempt)
- Step-based logging for debugging

The engine holds no per-call state: every call gets its own attempt
counter, request id and (unless one was injected) its own httpx client.
"""

import asyncio
import json
import logging
import time
import uuid
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Type

import httpx
from pydantic import BaseModel, ValidationError

from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector, get_metrics
from ..observability.tracing import (
    attempt_span,
    get_tracer,
    inject_trace_headers,
    record_attempt_outcome,
)
from ..streaming.events import Finish, ProviderStreamEvent, StreamErrorEvent
from ..streaming.pipeline import stream_events
from .cancellation import CancellationToken, OperationCancelled, run_cancellable
from .classifier import (
    DEFAULT_RULES,
    ClassifierRules,
    ResponseParseFailure,
    classify_exception,
    classify_parse_failure,
    classify_response,
)
from .errors import (
    ClassifiedError,
    ErrorKind,
    ErrorSeverity,
    ProviderError,
    create_error,
    create_validation_error,
)
from .models import AuthMode, RequestConfig
from .retry import calculate_backoff, should_retry


logger = get_logger("llmwire.http")

_PREVIEW_CHARS = 200
_REDACTED_KEYS = ("api_key", "key", "token", "secret", "password", "authorization")


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def _is_success(status: int) -> bool:
    return 200 <= status < 300


class RequestEngine:
    """
    Retrying HTTP engine for JSON requests and SSE streams.

    Args:
        client: Caller-owned httpx.AsyncClient, reused and never closed
        transport: Transport for per-call clients (httpx.MockTransport in tests)
        sleep: Backoff sleep, asyncio.sleep by default
        metrics: Metrics collector, the process default if omitted
        tracer: OpenTelemetry tracer, llmwire's default if omitted
        rules: Classification rules for ambiguous statuses
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        metrics: Optional[MetricsCollector] = None,
        tracer=None,
        rules: ClassifierRules = DEFAULT_RULES,
    ):
        self._client = client
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self._metrics = metrics
        self._tracer = tracer
        self.rules = rules

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics or get_metrics()

    @property
    def tracer(self):
        return self._tracer or get_tracer()

    @asynccontextmanager
    async def _client_scope(self, config: RequestConfig) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        client = httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(config.timeout_seconds),
        )
        try:
            yield client
        finally:
            await client.aclose()

    # ============================================================
    # Headers and validation
    # ============================================================

    def build_headers(
        self,
        api_key: str,
        config: RequestConfig,
        request_id: str,
        attempt: int,
        streaming: bool,
    ) -> Dict[str, str]:
        """Headers for one attempt; `attempt` is 1-based."""
        headers: Dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if streaming else "application/json",
            "X-Request-ID": request_id,
            "X-Request-Attempt": str(attempt),
        }
        if config.auth_mode == AuthMode.API_KEY_HEADER:
            headers[config.api_key_header] = api_key
            headers["anthropic-version"] = config.api_version
        else:
            headers["Authorization"] = f"Bearer {api_key}"
        inject_trace_headers(headers)
        headers.update(config.extra_headers)
        return headers

    def _validate_call(self, url: Any, api_key: Any, body: Any) -> None:
        if not isinstance(api_key, str) or not api_key.strip():
            raise ProviderError(create_error(
                ErrorKind.API_KEY_MISSING,
                detail="api_key must be a non-empty string",
            ))

        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            raise ProviderError(create_error(
                ErrorKind.INVALID_CONFIGURATION,
                detail=f"Invalid URL {url!r}: {e}",
            )) from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ProviderError(create_error(
                ErrorKind.INVALID_CONFIGURATION,
                detail=f"URL must be absolute http(s), got {url!r}",
            ))

        if not isinstance(body, Mapping):
            raise ProviderError(create_validation_error(
                f"Request body must be a JSON object, got {type(body).__name__}",
            ))

    # ============================================================
    # Logging
    # ============================================================

    def _summarize_payload(self, payload: Mapping[str, Any]) -> str:
        """Create safe payload summary (no secrets, no prompt text)."""
        summary = {}
        for key, value in payload.items():
            if key.lower() in _REDACTED_KEYS:
                summary[key] = "***REDACTED***"
            elif key in ("messages", "input", "tools") and isinstance(value, list):
                summary[key] = f"[{len(value)} {key}]"
            elif isinstance(value, str) and len(value) > 100:
                summary[key] = f"{value[:50]}...({len(value)} chars)"
            else:
                summary[key] = value
        return str(summary)

    def _log_request_start(self, request_id: str, method: str, url: str, body: Mapping[str, Any], streaming: bool):
        logger.info(
            f"STEP [{'stream' if streaming else 'request'}] Starting {method} {url}",
            request_id=request_id,
            url=url,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Payload summary: {self._summarize_payload(body)}", request_id=request_id)

    def _log_attempt(self, request_id: str, attempt: int, max_retries: int):
        logger.debug(
            f"STEP [attempt] {attempt}/{max_retries + 1}",
            request_id=request_id,
            attempt=attempt,
        )

    def _log_response(self, request_id: str, status: int, latency_ms: float, attempt: int):
        level = logging.INFO if status < 400 else logging.WARNING
        logger.log(
            level,
            f"STEP [response] status={status}, latency={latency_ms:.0f}ms, attempt={attempt}",
            request_id=request_id,
            status=status,
            attempt=attempt,
        )

    def _log_retry(self, request_id: str, attempt: int, max_retries: int, delay: float, error: ClassifiedError):
        logger.warning(
            f"STEP [retry] Retry {attempt}/{max_retries} after {delay:.2f}s - "
            f"Error: {error.kind.value}: {error.message}",
            request_id=request_id,
            kind=error.kind.value,
            delay_s=round(delay, 3),
        )

    def _log_failure(self, request_id: str, error: ClassifiedError, attempts: int):
        if error.kind == ErrorKind.CANCELLED:
            logger.info("STEP [cancelled] Call cancelled", request_id=request_id, attempts=attempts)
            return
        level = logging.ERROR if error.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL) else logging.WARNING
        logger.log(
            level,
            f"STEP [failed] {error.kind.value}: {error.message}",
            request_id=request_id,
            kind=error.kind.value,
            http_status=error.http_status,
            attempts=attempts,
        )

    def _record_failure(self, request_id: str, error: ClassifiedError, attempts: int, streaming: bool):
        self._log_failure(request_id, error, attempts)
        self.metrics.record_error(error, streaming=streaming)

    # ============================================================
    # Retry loop
    # ============================================================

    async def _backoff(
        self,
        request_id: str,
        url: str,
        attempt: int,
        config: RequestConfig,
        error: ClassifiedError,
    ):
        """Sleep before the retry following `attempt` (0-based)."""
        delay = calculate_backoff(attempt, config.backoff, error.retry_after_seconds)
        self._log_retry(request_id, attempt + 1, config.max_retries, delay, error)
        self.metrics.record_retry(error.kind.value, delay)
        try:
            await run_cancellable(self._sleep(delay), config.cancellation_token)
        except OperationCancelled as e:
            raise ProviderError(
                classify_exception(e, url=url),
                attempts=attempt + 1,
            ) from e

    def _cancelled_error(self, token: CancellationToken, url: str, attempts: int) -> ProviderError:
        return ProviderError(
            create_error(ErrorKind.CANCELLED, detail=token.reason, url=url),
            attempts=attempts,
        )

    def _parse_body(
        self,
        response: httpx.Response,
        url: str,
        response_model: Optional[Type[BaseModel]],
    ):
        """Parse a 2xx body; returns (result, error)."""
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            return None, classify_parse_failure(ResponseParseFailure(
                detail=f"Response body is not valid JSON: {e}",
                status=response.status_code,
                body=response.text[:_PREVIEW_CHARS],
                url=url,
            ))

        if not isinstance(data, dict):
            return None, classify_parse_failure(ResponseParseFailure(
                detail=f"Expected a JSON object, got {type(data).__name__}",
                status=response.status_code,
                body=data,
                url=url,
            ))

        if response_model is None:
            return data, None
        try:
            return response_model.model_validate(data), None
        except ValidationError as e:
            return None, classify_parse_failure(ResponseParseFailure(
                detail=f"Response does not match {response_model.__name__}: {e.error_count()} error(s)",
                status=response.status_code,
                body=data,
                url=url,
            ))

    async def request(
        self,
        url: str,
        api_key: str,
        body: Mapping[str, Any],
        config: Optional[RequestConfig] = None,
        *,
        method: str = "POST",
        response_model: Optional[Type[BaseModel]] = None,
    ) -> Any:
        """
        Make a JSON request with retry.

        Args:
            url: Absolute endpoint URL
            api_key: Credential, sent per config.auth_mode
            body: JSON object body
            config: Retry, timeout, auth and cancellation options
            method: HTTP method
            response_model: Optional pydantic model to validate the body with

        Returns:
            The parsed JSON object, or a response_model instance

        Raises:
            ProviderError: With the ClassifiedError of the last attempt
        """
        config = config or RequestConfig()
        request_id = new_request_id()
        start = time.monotonic()
        outcome = "error"

        with self.metrics.track_active_request(streaming=False):
            try:
                self._validate_call(url, api_key, body)
                self._log_request_start(request_id, method, url, body, streaming=False)
                async with self._client_scope(config) as client:
                    result = await self._request_with_retry(
                        client, method, url, api_key, body, config, request_id, response_model,
                    )
                outcome = "success"
                return result
            except ProviderError as e:
                self._record_failure(request_id, e.error, e.attempts, streaming=False)
                raise
            finally:
                self.metrics.record_request(False, outcome, time.monotonic() - start)

    async def _request_with_retry(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        api_key: str,
        body: Mapping[str, Any],
        config: RequestConfig,
        request_id: str,
        response_model: Optional[Type[BaseModel]],
    ) -> Any:
        token = config.cancellation_token
        timeout_s = config.timeout_seconds
        wire_format = config.wire_format.value

        for attempt in range(config.max_retries + 1):
            if token is not None and token.cancelled:
                raise self._cancelled_error(token, url, attempt)

            self._log_attempt(request_id, attempt + 1, config.max_retries)
            started = time.monotonic()
            result: Any = None
            status: Optional[int] = None

            with attempt_span(self.tracer, "llmwire.request", {
                "http.request.method": method,
                "url.full": url,
                "llmwire.request_id": request_id,
                "llmwire.attempt": attempt + 1,
            }) as span:
                # inside the span so traceparent names this attempt
                headers = self.build_headers(api_key, config, request_id, attempt + 1, streaming=False)
                try:
                    response = await run_cancellable(
                        asyncio.wait_for(
                            client.request(
                                method,
                                url,
                                json=dict(body),
                                headers=headers,
                                timeout=httpx.Timeout(timeout_s),
                            ),
                            timeout_s,
                        ),
                        token,
                    )
                except Exception as e:
                    error = classify_exception(e, url=url)
                else:
                    status = response.status_code
                    self._log_response(request_id, status, (time.monotonic() - started) * 1000, attempt + 1)
                    if _is_success(status):
                        result, error = self._parse_body(response, url, response_model)
                    else:
                        error = classify_response(response, self.rules)
                record_attempt_outcome(span, status, error)

            self.metrics.record_attempt(
                wire_format,
                streaming=False,
                outcome="success" if error is None else error.kind.value,
            )
            if error is None:
                return result
            if not should_retry(error, attempt, config.max_retries):
                raise ProviderError(error, attempts=attempt + 1)
            await self._backoff(request_id, url, attempt, config, error)

        # range() always ends in a return or raise above
        raise AssertionError("retry loop exited without an outcome")

    # ============================================================
    # Streaming
    # ============================================================

    async def stream_request(
        self,
        url: str,
        api_key: str,
        body: Mapping[str, Any],
        config: Optional[RequestConfig] = None,
    ) -> AsyncIterator[ProviderStreamEvent]:
        """
        Open an SSE stream with retry and yield reduced events.

        Retries only happen while opening the stream. Every failure,
        including validation and cancellation, arrives as a single
        terminal error event; nothing is raised to the consumer.
        """
        config = config or RequestConfig()
        request_id = new_request_id()
        wire_format = config.wire_format.value
        start = time.monotonic()
        outcome = "error"

        with self.metrics.track_active_request(streaming=True):
            try:
                try:
                    self._validate_call(url, api_key, body)
                    self._log_request_start(request_id, "POST", url, body, streaming=True)
                except ProviderError as e:
                    self._record_failure(request_id, e.error, 0, streaming=True)
                    event = StreamErrorEvent(error=e.error)
                    self.metrics.record_stream_event(wire_format, event.type.value)
                    yield event
                    return

                async with self._client_scope(config) as client:
                    try:
                        response, attempts = await self._open_stream(client, url, api_key, body, config, request_id)
                    except ProviderError as e:
                        self._record_failure(request_id, e.error, e.attempts, streaming=True)
                        event = StreamErrorEvent(error=e.error)
                        self.metrics.record_stream_event(wire_format, event.type.value)
                        yield event
                        return

                    try:
                        opened = time.monotonic()
                        first = True
                        chunks = self._iter_chunks(response, config.cancellation_token)
                        events = stream_events(
                            chunks,
                            config.wire_format,
                            url=url,
                            cancellation_token=config.cancellation_token,
                        )
                        async with aclosing(chunks), aclosing(events):
                            async for event in events:
                                if first:
                                    self.metrics.record_time_to_first_event(wire_format, time.monotonic() - opened)
                                    first = False
                                self.metrics.record_stream_event(wire_format, event.type.value)
                                if isinstance(event, StreamErrorEvent):
                                    self._record_failure(request_id, event.error, attempts, streaming=True)
                                elif isinstance(event, Finish):
                                    outcome = "success"
                                    logger.info(
                                        f"STEP [finish] reason={event.reason.value}",
                                        request_id=request_id,
                                    )
                                yield event
                    finally:
                        await response.aclose()
            finally:
                self.metrics.record_request(True, outcome, time.monotonic() - start)

    async def _open_stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        api_key: str,
        body: Mapping[str, Any],
        config: RequestConfig,
        request_id: str,
    ) -> Tuple[httpx.Response, int]:
        """Send the request until a 2xx response head arrives; returns it with the attempt count."""
        token = config.cancellation_token
        timeout_s = config.timeout_seconds
        wire_format = config.wire_format.value

        for attempt in range(config.max_retries + 1):
            if token is not None and token.cancelled:
                raise self._cancelled_error(token, url, attempt)

            self._log_attempt(request_id, attempt + 1, config.max_retries)
            started = time.monotonic()
            response: Optional[httpx.Response] = None
            error: Optional[ClassifiedError] = None

            with attempt_span(self.tracer, "llmwire.stream", {
                "http.request.method": "POST",
                "url.full": url,
                "llmwire.request_id": request_id,
                "llmwire.attempt": attempt + 1,
                "llmwire.wire_format": wire_format,
            }) as span:
                request = client.build_request(
                    "POST",
                    url,
                    json=dict(body),
                    headers=self.build_headers(api_key, config, request_id, attempt + 1, streaming=True),
                    timeout=httpx.Timeout(timeout_s),
                )
                try:
                    response = await run_cancellable(
                        asyncio.wait_for(client.send(request, stream=True), timeout_s),
                        token,
                    )
                except Exception as e:
                    error = classify_exception(e, url=url)
                else:
                    self._log_response(
                        request_id, response.status_code, (time.monotonic() - started) * 1000, attempt + 1,
                    )
                    if not _is_success(response.status_code):
                        error = await self._classify_stream_rejection(response, request_id)
                record_attempt_outcome(span, response.status_code if response is not None else None, error)

            self.metrics.record_attempt(
                wire_format,
                streaming=True,
                outcome="success" if error is None else error.kind.value,
            )
            if error is None:
                return response, attempt + 1
            if not should_retry(error, attempt, config.max_retries):
                raise ProviderError(error, attempts=attempt + 1)
            await self._backoff(request_id, url, attempt, config, error)

        raise AssertionError("retry loop exited without an outcome")

    async def _classify_stream_rejection(self, response: httpx.Response, request_id: str) -> ClassifiedError:
        """Read the error body of a non-2xx stream response, then close it."""
        try:
            await response.aread()
        except httpx.HTTPError as e:
            # status alone still classifies
            logger.debug(f"Could not read error body: {e}", request_id=request_id)
        finally:
            await response.aclose()
        return classify_response(response, self.rules)

    async def _iter_chunks(
        self,
        response: httpx.Response,
        token: Optional[CancellationToken],
    ) -> AsyncIterator[bytes]:
        """Raw body chunks; each read aborts as soon as the token fires."""
        chunks = response.aiter_bytes()
        try:
            while True:
                chunk = await run_cancellable(_next_chunk(chunks), token)
                if chunk is None:
                    return
                if chunk:
                    yield chunk
        finally:
            await chunks.aclose()


async def _next_chunk(chunks: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


# ============================================================
# Module-level API
# ============================================================

_default_engine: Optional[RequestEngine] = None


def get_default_engine() -> RequestEngine:
    global _default_engine
    if _default_engine is None:
        _default_engine = RequestEngine()
    return _default_engine


async def request(
    url: str,
    api_key: str,
    body: Mapping[str, Any],
    config: Optional[RequestConfig] = None,
    **kwargs: Any,
) -> Any:
    """Non-streaming request on the default engine."""
    return await get_default_engine().request(url, api_key, body, config, **kwargs)


def stream_request(
    url: str,
    api_key: str,
    body: Mapping[str, Any],
    config: Optional[RequestConfig] = None,
) -> AsyncIterator[ProviderStreamEvent]:
    """
    Streaming request on the default engine.

        async for event in stream_request(url, key, body, config):
            ...
    """
    return get_default_engine().stream_request(url, api_key, body, config)
