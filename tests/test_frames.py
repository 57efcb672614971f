"""
llmwire - Frame Decoder Tests

Verifies:
- Delta-JSON records, [DONE] sentinel, blank data
- Typed-event naming rules
- Malformed payloads raise RESPONSE_PARSING_ERROR
"""

import pytest

from llmwire.core.errors import ErrorKind
from llmwire.core.models import WireFormat
from llmwire.streaming.errors import StreamDecodeError
from llmwire.streaming.frames import (
    DeltaFrame,
    DeltaJSONDecoder,
    DoneFrame,
    TypedEventDecoder,
    TypedEventFrame,
    TypedEventName,
    create_frame_decoder,
    iter_frames,
)
from llmwire.streaming.sse import SSERecord


class TestDeltaJSONDecoder:
    """Test `data: <json>` decoding."""

    def test_object_payload(self):
        frame = DeltaJSONDecoder().decode(SSERecord(data='{"choices": []}'))
        assert frame == DeltaFrame(event_data={"choices": []})
        assert frame.format == WireFormat.DELTA_JSON

    def test_done_sentinel(self):
        assert DeltaJSONDecoder().decode(SSERecord(data="[DONE]")) == DoneFrame()

    def test_done_sentinel_with_whitespace(self):
        assert DeltaJSONDecoder().decode(SSERecord(data=" [DONE] ")) == DoneFrame()

    def test_no_data_is_skipped(self):
        assert DeltaJSONDecoder().decode(SSERecord(event="ping")) is None

    def test_blank_data_is_skipped(self):
        assert DeltaJSONDecoder().decode(SSERecord(data="   ")) is None

    def test_invalid_json(self):
        with pytest.raises(StreamDecodeError) as exc_info:
            DeltaJSONDecoder().decode(SSERecord(data='{"choices": ['))
        assert exc_info.value.kind == ErrorKind.RESPONSE_PARSING_ERROR
        assert exc_info.value.raw == '{"choices": ['

    def test_non_object_json(self):
        with pytest.raises(StreamDecodeError) as exc_info:
            DeltaJSONDecoder().decode(SSERecord(data="[1, 2]"))
        assert exc_info.value.kind == ErrorKind.RESPONSE_PARSING_ERROR
        assert "list" in exc_info.value.detail


class TestTypedEventDecoder:
    """Test `event:` + `data:` decoding."""

    def test_name_from_event_line(self):
        frame = TypedEventDecoder().decode(SSERecord(
            event="content_block_delta",
            data='{"type": "something_else", "index": 0}',
        ))
        assert isinstance(frame, TypedEventFrame)
        assert frame.event_name == "content_block_delta"
        assert frame.known_name == TypedEventName.CONTENT_BLOCK_DELTA
        assert frame.format == WireFormat.TYPED_EVENT

    def test_name_from_payload_type(self):
        frame = TypedEventDecoder().decode(SSERecord(data='{"type": "message_stop"}'))
        assert frame.event_name == "message_stop"

    def test_default_name(self):
        frame = TypedEventDecoder().decode(SSERecord(data='{"x": 1}'))
        assert frame.event_name == "message"
        assert frame.known_name is None

    def test_missing_data_is_empty_payload(self):
        frame = TypedEventDecoder().decode(SSERecord(event="ping"))
        assert frame == TypedEventFrame(event_name="ping", event_data={})

    def test_unknown_event_name_kept(self):
        frame = TypedEventDecoder().decode(SSERecord(event="future_event", data="{}"))
        assert frame.event_name == "future_event"
        assert frame.known_name is None

    def test_done_sentinel(self):
        assert TypedEventDecoder().decode(SSERecord(data="[DONE]")) == DoneFrame()

    def test_invalid_json(self):
        with pytest.raises(StreamDecodeError) as exc_info:
            TypedEventDecoder().decode(SSERecord(event="message_start", data="{oops"))
        assert exc_info.value.kind == ErrorKind.RESPONSE_PARSING_ERROR


class TestDecoderSelection:

    def test_create_frame_decoder(self):
        assert isinstance(create_frame_decoder(WireFormat.DELTA_JSON), DeltaJSONDecoder)
        assert isinstance(create_frame_decoder(WireFormat.TYPED_EVENT), TypedEventDecoder)

    @pytest.mark.asyncio
    async def test_iter_frames_skips_empty_records(self, sse):
        async def records():
            yield SSERecord(data='{"a": 1}')
            yield SSERecord(event="keepalive")
            yield SSERecord(data="[DONE]")

        frames = await sse.collect(iter_frames(records(), WireFormat.DELTA_JSON))
        assert frames == [DeltaFrame(event_data={"a": 1}), DoneFrame()]
