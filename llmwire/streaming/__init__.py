"""
llmwire - Streaming Module

SSE decoding and stream reduction for both wire formats:
- Incremental SSE record splitting (chunk boundaries anywhere)
- Delta-JSON and typed-event frame decoders
- Tool call reconstruction from argument fragments
- One terminal finish or error event per stream
"""

from .events import (
    Finish,
    FinishReason,
    ProviderStreamEvent,
    ReasoningDelta,
    StreamErrorEvent,
    StreamEventType,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolCallStart,
    Usage,
)
from .frames import DeltaJSONDecoder, TypedEventDecoder, create_frame_decoder
from .pipeline import stream_events
from .reducer import DeltaJSONReducer, StreamReducer, TypedEventReducer, create_reducer
from .sse import SSEDecoder, SSERecord
from .tool_calls import ToolCallAccumulator, ToolCallTracker

__all__ = [
    # Events
    "Finish",
    "FinishReason",
    "ProviderStreamEvent",
    "ReasoningDelta",
    "StreamErrorEvent",
    "StreamEventType",
    "TextDelta",
    "ToolCall",
    "ToolCallDelta",
    "ToolCallStart",
    "Usage",
    # Decoding
    "SSEDecoder",
    "SSERecord",
    "DeltaJSONDecoder",
    "TypedEventDecoder",
    "create_frame_decoder",
    # Reduction
    "StreamReducer",
    "DeltaJSONReducer",
    "TypedEventReducer",
    "create_reducer",
    "stream_events",
    # Tool calls
    "ToolCallAccumulator",
    "ToolCallTracker",
]
