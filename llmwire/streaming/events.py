"""
llmwire - Provider Stream Events

The vendor-neutral events a stream produces, in arrival order:

    text-delta / reasoning-delta   emitted as soon as they arrive
    tool-call-start                a tool call's id and name are known
    tool-call-delta                a fragment of a tool call's JSON arguments
    tool-call                      the finished call with parsed arguments
    finish                         exactly once, with reason and usage
    error                          exactly once, instead of finish

After finish or error nothing else is produced.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..core.errors import ClassifiedError


class StreamEventType(str, Enum):
    """Types of stream events."""
    TEXT_DELTA = "text-delta"
    REASONING_DELTA = "reasoning-delta"
    TOOL_CALL_START = "tool-call-start"
    TOOL_CALL_DELTA = "tool-call-delta"
    TOOL_CALL = "tool-call"
    FINISH = "finish"
    ERROR = "error"


class FinishReason(str, Enum):
    """Vendor-neutral reasons a generation stopped."""
    STOP = "stop"
    TOOL_CALLS = "tool-calls"
    LENGTH = "length"
    CONTENT_FILTER = "content-filter"
    ERROR = "error"
    OTHER = "other"


_FINISH_MAP = {
    # delta-JSON
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
    "error": FinishReason.ERROR,
    # typed-event
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "model_context_window_exceeded": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "refusal": FinishReason.CONTENT_FILTER,
    # misc vendors
    "safety": FinishReason.CONTENT_FILTER,
    "content-filter": FinishReason.CONTENT_FILTER,
    "tool-calls": FinishReason.TOOL_CALLS,
}


def map_finish_reason(raw: Optional[str]) -> FinishReason:
    """Map a vendor finish reason; unknown values become OTHER."""
    if not raw:
        return FinishReason.OTHER
    return _FINISH_MAP.get(str(raw).lower(), FinishReason.OTHER)


@dataclass
class Usage:
    """
    Token counters for one stream.

    Counters only grow: merging a smaller or missing value keeps the
    current one.
    """
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    reasoning_tokens: Optional[int] = None
    cached_input_tokens: Optional[int] = None

    def merge(self, other: "Usage") -> None:
        for name in (
            "input_tokens",
            "output_tokens",
            "total_tokens",
            "reasoning_tokens",
            "cached_input_tokens",
        ):
            incoming = getattr(other, name)
            if incoming is None:
                continue
            current = getattr(self, name)
            if current is None or incoming > current:
                setattr(self, name, incoming)

    @property
    def total(self) -> Optional[int]:
        if self.total_tokens is not None:
            return self.total_tokens
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def snapshot(self) -> "Usage":
        return Usage(
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            total_tokens=self.total,
            reasoning_tokens=self.reasoning_tokens,
            cached_input_tokens=self.cached_input_tokens,
        )

    def to_dict(self) -> Dict[str, int]:
        return {k: v for k, v in asdict(self.snapshot()).items() if v is not None}


def _token_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0, int(value))


def usage_from_delta_json(data: Any) -> Optional[Usage]:
    """Parse a delta-JSON `usage` object."""
    if not isinstance(data, dict):
        return None
    completion_details = data.get("completion_tokens_details") or {}
    prompt_details = data.get("prompt_tokens_details") or {}
    return Usage(
        input_tokens=_token_count(data.get("prompt_tokens")),
        output_tokens=_token_count(data.get("completion_tokens")),
        total_tokens=_token_count(data.get("total_tokens")),
        reasoning_tokens=_token_count(
            completion_details.get("reasoning_tokens")
            if isinstance(completion_details, dict) else None
        ),
        cached_input_tokens=_token_count(
            prompt_details.get("cached_tokens")
            if isinstance(prompt_details, dict) else None
        ),
    )


def usage_from_typed_event(data: Any) -> Optional[Usage]:
    """Parse a typed-event `usage` object."""
    if not isinstance(data, dict):
        return None
    return Usage(
        input_tokens=_token_count(data.get("input_tokens")),
        output_tokens=_token_count(data.get("output_tokens")),
        cached_input_tokens=_token_count(data.get("cache_read_input_tokens")),
    )


# ============================================================
# Events
# ============================================================

@dataclass(frozen=True)
class TextDelta:
    text: str
    type: StreamEventType = field(default=StreamEventType.TEXT_DELTA, init=False)


@dataclass(frozen=True)
class ReasoningDelta:
    text: str
    type: StreamEventType = field(default=StreamEventType.REASONING_DELTA, init=False)


@dataclass(frozen=True)
class ToolCallStart:
    index: int
    id: str
    name: str
    type: StreamEventType = field(default=StreamEventType.TOOL_CALL_START, init=False)


@dataclass(frozen=True)
class ToolCallDelta:
    index: int
    id: Optional[str]
    arguments_delta: str
    type: StreamEventType = field(default=StreamEventType.TOOL_CALL_DELTA, init=False)


@dataclass(frozen=True)
class ToolCall:
    """A completed tool call with its arguments parsed."""
    index: int
    id: str
    name: str
    arguments: Dict[str, Any]
    raw_arguments: str
    type: StreamEventType = field(default=StreamEventType.TOOL_CALL, init=False)


@dataclass(frozen=True)
class Finish:
    reason: FinishReason
    usage: Usage
    raw_reason: Optional[str] = None
    type: StreamEventType = field(default=StreamEventType.FINISH, init=False)


@dataclass(frozen=True)
class StreamErrorEvent:
    error: ClassifiedError
    type: StreamEventType = field(default=StreamEventType.ERROR, init=False)


ProviderStreamEvent = Union[
    TextDelta,
    ReasoningDelta,
    ToolCallStart,
    ToolCallDelta,
    ToolCall,
    Finish,
    StreamErrorEvent,
]


def is_terminal(event: ProviderStreamEvent) -> bool:
    return event.type in (StreamEventType.FINISH, StreamEventType.ERROR)


def event_to_dict(event: ProviderStreamEvent) -> Dict[str, Any]:
    """Plain-dict form of an event, for logging and JSON output."""
    if isinstance(event, StreamErrorEvent):
        return {"type": event.type.value, **event.error.to_dict()}
    if isinstance(event, Finish):
        result: Dict[str, Any] = {
            "type": event.type.value,
            "reason": event.reason.value,
            "usage": event.usage.to_dict(),
        }
        if event.raw_reason is not None:
            result["raw_reason"] = event.raw_reason
        return result
    data = asdict(event)
    data["type"] = event.type.value
    return data
