"""
llmwire - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Scripted upstreams on httpx.MockTransport
- Recording backoff sleep so retry tests never wait
- Fresh Prometheus registries per test
"""

import json
import logging
import os
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

import httpx
import pytest
from prometheus_client import CollectorRegistry

from llmwire.config import is_truthy
from llmwire.core.http_client import RequestEngine
from llmwire.observability.metrics import MetricsCollector


# ============================================================
# Environment Configuration
# ============================================================

RUN_INTEGRATION = is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# SSE helpers
# ============================================================

def sse_data(payload: Any) -> str:
    """One delta-JSON record."""
    if isinstance(payload, str):
        return f"data: {payload}\n\n"
    return f"data: {json.dumps(payload)}\n\n"


def sse_event(name: str, payload: Dict[str, Any]) -> str:
    """One typed-event record."""
    return f"event: {name}\ndata: {json.dumps(payload)}\n\n"


def split_bytes(text: str, size: int) -> List[bytes]:
    """Cut an SSE body into fixed-size network chunks."""
    raw = text.encode("utf-8")
    return [raw[i:i + size] for i in range(0, len(raw), size)]


async def aiter_chunks(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


async def collect(events) -> list:
    return [event async for event in events]


@pytest.fixture
def sse():
    """SSE body builders: sse.data(...), sse.event(...), sse.split(...)."""
    class _SSE:
        data = staticmethod(sse_data)
        event = staticmethod(sse_event)
        split = staticmethod(split_bytes)
        aiter = staticmethod(aiter_chunks)
        collect = staticmethod(collect)
    return _SSE


# ============================================================
# Sample bodies
# ============================================================

@pytest.fixture
def chat_completion_body():
    """Standard delta-JSON (chat completions) response."""
    return {
        "id": "chatcmpl-test123",
        "object": "chat.completion",
        "created": 1234567890,
        "model": "gpt-4o",
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": "Hello! I'm a mock response."
                },
                "finish_reason": "stop"
            }
        ],
        "usage": {
            "prompt_tokens": 10,
            "completion_tokens": 8,
            "total_tokens": 18
        }
    }


@pytest.fixture
def rate_limit_body():
    return {
        "error": {
            "code": "rate_limit_exceeded",
            "message": "Rate limit exceeded",
            "type": "rate_limit_exceeded"
        }
    }


@pytest.fixture
def server_error_body():
    return {
        "error": {
            "code": "internal_error",
            "message": "Internal server error",
            "type": "server_error"
        }
    }


# ============================================================
# Engine wiring
# ============================================================

class RecordingSleep:
    """Backoff sleep that records delays and returns immediately."""

    def __init__(self, on_sleep: Optional[Callable[[float], None]] = None):
        self.delays: List[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.on_sleep is not None:
            self.on_sleep(delay)


class ScriptedUpstream:
    """
    MockTransport handler replaying a list of responses.

    Entries are httpx.Response objects, exceptions to raise, or callables
    taking the request. The last entry repeats once the script runs out.
    """

    def __init__(self, script: List[Any]):
        self.script = list(script)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.script) - 1)
        step = self.script[index]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(request)
        # fresh copy so a repeated entry is never a consumed response
        return httpx.Response(step.status_code, headers=step.headers, content=step.content)

    @property
    def attempts(self) -> int:
        return len(self.requests)

    def bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def registry():
    """Fresh registry so metric values never leak between tests."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsCollector(registry)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def make_engine(metrics, recording_sleep):
    """
    Build an engine on a scripted upstream.

    Usage:
        engine, upstream = make_engine([httpx.Response(500), httpx.Response(200, json={})])
    """
    def _make(script, **kwargs):
        upstream = script if isinstance(script, ScriptedUpstream) else ScriptedUpstream(script)
        kwargs.setdefault("sleep", recording_sleep)
        kwargs.setdefault("metrics", metrics)
        engine = RequestEngine(transport=httpx.MockTransport(upstream), **kwargs)
        return engine, upstream
    return _make


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield
