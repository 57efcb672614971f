"""
llmwire - Stream Frame Decoders

Turns SSE records into typed frames, one decoder per wire format.

Delta-JSON:
    data: {"choices":[{"delta":{"content":"Hi"}}]}
    data: [DONE]

Typed-event:
    event: content_block_delta
    data: {"type":"content_block_delta","index":0,"delta":{...}}

Decoders are stateless; a frame is returned the moment its record is
complete.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Dict, Optional, Union

from ..core.errors import ErrorKind
from ..core.models import WireFormat
from .errors import StreamDecodeError, truncated
from .sse import SSERecord


DONE_SENTINEL = "[DONE]"


class TypedEventName(str, Enum):
    """Known typed-event names. Anything else is ignored by the reducer."""
    MESSAGE_START = "message_start"
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    PING = "ping"
    ERROR = "error"


@dataclass(frozen=True)
class DeltaFrame:
    event_data: Dict[str, Any]
    format: WireFormat = field(default=WireFormat.DELTA_JSON, init=False)


@dataclass(frozen=True)
class TypedEventFrame:
    event_name: str
    event_data: Dict[str, Any]
    format: WireFormat = field(default=WireFormat.TYPED_EVENT, init=False)

    @property
    def known_name(self) -> Optional[TypedEventName]:
        try:
            return TypedEventName(self.event_name)
        except ValueError:
            return None


@dataclass(frozen=True)
class DoneFrame:
    """The `[DONE]` sentinel."""


StreamFrame = Union[DeltaFrame, TypedEventFrame, DoneFrame]


def _parse_object(data: str) -> Dict[str, Any]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise StreamDecodeError(
            ErrorKind.RESPONSE_PARSING_ERROR,
            f"Stream record is not valid JSON: {e}",
            raw=truncated(data),
        ) from e
    if not isinstance(payload, dict):
        raise StreamDecodeError(
            ErrorKind.RESPONSE_PARSING_ERROR,
            f"Stream record must be a JSON object, got {type(payload).__name__}",
            raw=truncated(data),
        )
    return payload


class DeltaJSONDecoder:
    """Decoder for `data: <json>` records terminated by `data: [DONE]`."""

    wire_format = WireFormat.DELTA_JSON

    def decode(self, record: SSERecord) -> Optional[StreamFrame]:
        if record.data is None:
            return None
        data = record.data.strip()
        if not data:
            return None
        if data == DONE_SENTINEL:
            return DoneFrame()
        return DeltaFrame(event_data=_parse_object(data))


class TypedEventDecoder:
    """
    Decoder for `event: <name>` + `data: <json>` records.

    The name comes from the event: line, then the payload's `type`, then
    the SSE default "message". A record without data decodes to an empty
    payload.
    """

    wire_format = WireFormat.TYPED_EVENT

    def decode(self, record: SSERecord) -> Optional[StreamFrame]:
        payload: Dict[str, Any] = {}
        data = record.data.strip() if record.data is not None else ""
        if data == DONE_SENTINEL:
            return DoneFrame()
        if data:
            payload = _parse_object(data)

        name = record.event
        if not name:
            payload_type = payload.get("type")
            name = payload_type if isinstance(payload_type, str) and payload_type else "message"
        return TypedEventFrame(event_name=name, event_data=payload)


FrameDecoder = Union[DeltaJSONDecoder, TypedEventDecoder]


def create_frame_decoder(wire_format: WireFormat) -> FrameDecoder:
    if wire_format == WireFormat.TYPED_EVENT:
        return TypedEventDecoder()
    return DeltaJSONDecoder()


async def iter_frames(
    records: AsyncIterable[SSERecord],
    wire_format: WireFormat,
) -> AsyncIterator[StreamFrame]:
    """Lazily decode records into frames for one wire format."""
    decoder = create_frame_decoder(wire_format)
    async for record in records:
        frame = decoder.decode(record)
        if frame is not None:
            yield frame
