"""
llmwire - Stream Reduction Tests

Verifies:
- Delta-JSON text, reasoning, tool calls, [DONE] and usage lookahead
- Typed-event blocks, tool_use reconstruction, stop_reason handling
- Exactly one terminal event, nothing after it
- Chunk boundaries never change the event sequence
- Vendor error frames and truncated streams become error events
"""

import httpx
import pytest

from llmwire.core.cancellation import CancellationToken
from llmwire.core.errors import ErrorKind
from llmwire.core.models import WireFormat
from llmwire.streaming.events import (
    Finish,
    FinishReason,
    StreamErrorEvent,
    StreamEventType,
    TextDelta,
    ToolCall,
    ToolCallDelta,
    ToolCallStart,
    Usage,
    event_to_dict,
    map_finish_reason,
)
from llmwire.streaming.frames import DeltaFrame, DoneFrame
from llmwire.streaming.pipeline import stream_events
from llmwire.streaming.reducer import (
    DeltaJSONReducer,
    TypedEventReducer,
    create_reducer,
)


def types(events):
    return [event.type.value for event in events]


async def run_stream(sse, body, wire_format, chunk_size=None, reducer=None):
    chunks = sse.split(body, chunk_size or len(body.encode("utf-8")) or 1)
    return await sse.collect(
        stream_events(sse.aiter(chunks), wire_format, url="https://api.test/v1", reducer=reducer)
    )


def delta(content=None, finish_reason=None, tool_calls=None, usage=None, reasoning=None):
    payload = {"choices": [{"index": 0, "delta": {}, "finish_reason": finish_reason}]}
    if content is not None:
        payload["choices"][0]["delta"]["content"] = content
    if reasoning is not None:
        payload["choices"][0]["delta"]["reasoning_content"] = reasoning
    if tool_calls is not None:
        payload["choices"][0]["delta"]["tool_calls"] = tool_calls
    if usage is not None:
        payload["usage"] = usage
    return payload


# ============================================================
# Delta-JSON
# ============================================================

class TestDeltaJSONStreams:
    """Test OpenAI-compatible streams."""

    @pytest.mark.asyncio
    async def test_text_then_done(self, sse):
        body = (
            sse.data(delta(content="Hel"))
            + sse.data(delta(content="lo"))
            + sse.data(delta(finish_reason="stop"))
            + sse.data("[DONE]")
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)

        assert events[:2] == [TextDelta(text="Hel"), TextDelta(text="lo")]
        assert types(events) == ["text-delta", "text-delta", "finish"]
        assert events[-1].reason == FinishReason.STOP
        assert events[-1].raw_reason == "stop"

    @pytest.mark.asyncio
    async def test_nothing_after_done(self, sse):
        body = (
            sse.data(delta(content="a"))
            + sse.data("[DONE]")
            + sse.data(delta(content="late"))
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert types(events) == ["text-delta", "finish"]

    @pytest.mark.asyncio
    async def test_done_without_finish_reason_is_stop(self, sse):
        body = sse.data(delta(content="a")) + sse.data("[DONE]")
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert events[-1] == Finish(reason=FinishReason.STOP, usage=Usage())

    @pytest.mark.asyncio
    async def test_reasoning_before_text(self, sse):
        body = (
            sse.data(delta(reasoning="thinking..."))
            + sse.data(delta(content="answer", finish_reason="stop"))
            + sse.data("[DONE]")
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert types(events) == ["reasoning-delta", "text-delta", "finish"]

    @pytest.mark.asyncio
    async def test_usage_on_finish_frame(self, sse):
        usage = {"prompt_tokens": 10, "completion_tokens": 4, "total_tokens": 14}
        body = sse.data(delta(content="x", finish_reason="length", usage=usage))
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)

        finish = events[-1]
        assert finish.reason == FinishReason.LENGTH
        assert finish.usage == Usage(input_tokens=10, output_tokens=4, total_tokens=14)

    @pytest.mark.asyncio
    async def test_trailing_usage_frame_folded_into_finish(self, sse):
        body = (
            sse.data(delta(content="x", finish_reason="stop"))
            + sse.data({"choices": [], "usage": {
                "prompt_tokens": 7,
                "completion_tokens": 3,
                "completion_tokens_details": {"reasoning_tokens": 1},
                "prompt_tokens_details": {"cached_tokens": 5},
            }})
            + sse.data("[DONE]")
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)

        assert types(events) == ["text-delta", "finish"]
        usage = events[-1].usage
        assert usage.input_tokens == 7
        assert usage.output_tokens == 3
        assert usage.total_tokens == 10
        assert usage.reasoning_tokens == 1
        assert usage.cached_input_tokens == 5

    @pytest.mark.asyncio
    async def test_pending_finish_released_at_end_of_input(self, sse):
        body = sse.data(delta(content="x", finish_reason="stop"))
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert types(events) == ["text-delta", "finish"]

    @pytest.mark.asyncio
    async def test_eof_without_finish_is_incomplete(self, sse):
        body = sse.data(delta(content="partial"))
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)

        assert types(events) == ["text-delta", "error"]
        assert events[-1].error.kind == ErrorKind.INCOMPLETE_RESPONSE
        assert events[-1].error.url == "https://api.test/v1"

    @pytest.mark.asyncio
    async def test_truncated_record_is_stream_error(self, sse):
        body = sse.data(delta(content="a")) + 'data: {"choices": [{"delta": {"cont'
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert types(events) == ["text-delta", "error"]
        assert events[-1].error.kind == ErrorKind.STREAM_ERROR

    @pytest.mark.asyncio
    async def test_malformed_json_record(self, sse):
        body = sse.data(delta(content="a")) + "data: {not json}\n\n" + sse.data(delta(content="b"))
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert types(events) == ["text-delta", "error"]
        assert events[-1].error.kind == ErrorKind.RESPONSE_PARSING_ERROR

    @pytest.mark.asyncio
    async def test_vendor_error_frame(self, sse):
        body = (
            sse.data(delta(content="a"))
            + sse.data({"error": {"type": "rate_limit_exceeded", "message": "Slow down"}})
            + sse.data(delta(content="never"))
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)

        assert types(events) == ["text-delta", "error"]
        error = events[-1].error
        assert error.kind == ErrorKind.RATE_LIMIT_EXCEEDED
        assert error.vendor_type == "rate_limit_exceeded"

    @pytest.mark.asyncio
    async def test_unrecognised_vendor_error_is_stream_error(self, sse):
        body = sse.data({"error": {"message": "something broke"}})
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        assert events[-1].error.kind == ErrorKind.STREAM_ERROR


class TestDeltaJSONToolCalls:
    """Test tool-call reconstruction from argument fragments."""

    def tool_stream(self, sse):
        return (
            sse.data(delta(tool_calls=[{
                "index": 0,
                "id": "call_abc",
                "type": "function",
                "function": {"name": "get_weather", "arguments": ""},
            }]))
            + sse.data(delta(tool_calls=[{"index": 0, "function": {"arguments": '{"loc'}}]))
            + sse.data(delta(tool_calls=[{"index": 0, "function": {"arguments": 'ation": "N'}}]))
            + sse.data(delta(tool_calls=[{"index": 0, "function": {"arguments": 'YC"}'}}]))
            + sse.data(delta(finish_reason="tool_calls"))
            + sse.data("[DONE]")
        )

    @pytest.mark.asyncio
    async def test_three_fragment_tool_call(self, sse):
        events = await run_stream(sse, self.tool_stream(sse), WireFormat.DELTA_JSON)

        assert types(events) == [
            "tool-call-start",
            "tool-call-delta",
            "tool-call-delta",
            "tool-call-delta",
            "tool-call",
            "finish",
        ]
        assert events[0] == ToolCallStart(index=0, id="call_abc", name="get_weather")
        assert events[1] == ToolCallDelta(index=0, id="call_abc", arguments_delta='{"loc')
        assert events[4] == ToolCall(
            index=0,
            id="call_abc",
            name="get_weather",
            arguments={"location": "NYC"},
            raw_arguments='{"location": "NYC"}',
        )
        assert events[5].reason == FinishReason.TOOL_CALLS

    @pytest.mark.asyncio
    async def test_same_events_at_any_chunk_size(self, sse):
        body = self.tool_stream(sse)
        whole = await run_stream(sse, body, WireFormat.DELTA_JSON)
        for size in (1, 3, 7, 64):
            assert await run_stream(sse, body, WireFormat.DELTA_JSON, chunk_size=size) == whole

    @pytest.mark.asyncio
    async def test_parallel_tool_calls(self, sse):
        body = (
            sse.data(delta(tool_calls=[
                {"index": 0, "id": "call_a", "function": {"name": "a", "arguments": '{"x":'}},
                {"index": 1, "id": "call_b", "function": {"name": "b", "arguments": '{"y":'}},
            ]))
            + sse.data(delta(tool_calls=[
                {"index": 1, "function": {"arguments": " 2}"}},
                {"index": 0, "function": {"arguments": " 1}"}},
            ]))
            + sse.data(delta(finish_reason="tool_calls"))
            + sse.data("[DONE]")
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        calls = [e for e in events if e.type == StreamEventType.TOOL_CALL]

        assert [(c.name, c.arguments) for c in calls] == [("a", {"x": 1}), ("b", {"y": 2})]

    @pytest.mark.asyncio
    async def test_tool_call_without_id_gets_one(self, sse):
        body = (
            sse.data(delta(tool_calls=[{"index": 0, "function": {"name": "now", "arguments": "{}"}}]))
            + sse.data(delta(finish_reason="tool_calls"))
            + sse.data("[DONE]")
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)
        call = next(e for e in events if e.type == StreamEventType.TOOL_CALL)
        assert call.id.startswith("call_")

    @pytest.mark.asyncio
    async def test_invalid_arguments_become_error_event(self, sse):
        body = (
            sse.data(delta(tool_calls=[{
                "index": 0, "id": "call_x", "function": {"name": "f", "arguments": '{"a": '},
            }]))
            + sse.data(delta(finish_reason="tool_calls"))
            + sse.data("[DONE]")
        )
        events = await run_stream(sse, body, WireFormat.DELTA_JSON)

        assert types(events) == ["tool-call-start", "tool-call-delta", "error"]
        assert events[-1].error.kind == ErrorKind.INVALID_TOOL_FORMAT

    @pytest.mark.asyncio
    async def test_tool_state_released_after_stream(self, sse):
        reducer = DeltaJSONReducer()
        body = sse.data(delta(tool_calls=[
            {"index": 0, "id": "call_a", "function": {"name": "a", "arguments": '{"x'}},
        ]))
        events = await run_stream(sse, body, WireFormat.DELTA_JSON, reducer=reducer)

        assert events[-1].type == StreamEventType.ERROR
        assert reducer.closed is True
        assert reducer.tools.drain() == []


# ============================================================
# Typed-event
# ============================================================

def typed_text_stream(sse, text_parts, stop_reason="end_turn", message_stop=True):
    body = sse.event("message_start", {
        "type": "message_start",
        "message": {"id": "msg_1", "usage": {"input_tokens": 12, "output_tokens": 1}},
    })
    body += sse.event("content_block_start", {
        "type": "content_block_start", "index": 0,
        "content_block": {"type": "text", "text": ""},
    })
    body += sse.event("ping", {"type": "ping"})
    for part in text_parts:
        body += sse.event("content_block_delta", {
            "type": "content_block_delta", "index": 0,
            "delta": {"type": "text_delta", "text": part},
        })
    body += sse.event("content_block_stop", {"type": "content_block_stop", "index": 0})
    if stop_reason is not None:
        body += sse.event("message_delta", {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason},
            "usage": {"output_tokens": 9},
        })
    if message_stop:
        body += sse.event("message_stop", {"type": "message_stop"})
    return body


class TestTypedEventStreams:
    """Test Anthropic-style streams."""

    @pytest.mark.asyncio
    async def test_text_stream(self, sse):
        body = typed_text_stream(sse, ["Hello", ", ", "world"])
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)

        assert types(events) == ["text-delta", "text-delta", "text-delta", "finish"]
        assert "".join(e.text for e in events[:3]) == "Hello, world"
        finish = events[-1]
        assert finish.reason == FinishReason.STOP
        assert finish.raw_reason == "end_turn"
        assert finish.usage == Usage(input_tokens=12, output_tokens=9, total_tokens=21)

    @pytest.mark.asyncio
    async def test_fragmentation_does_not_change_events(self, sse):
        body = typed_text_stream(sse, ["caf", "é ☃", "!"])
        whole = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        for size in (1, 2, 5, 13, 100):
            assert await run_stream(sse, body, WireFormat.TYPED_EVENT, chunk_size=size) == whole

    @pytest.mark.asyncio
    async def test_unknown_events_ignored(self, sse):
        body = sse.event("future_event", {"type": "future_event", "x": 1}) + typed_text_stream(sse, ["a"])
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        assert types(events) == ["text-delta", "finish"]

    @pytest.mark.asyncio
    async def test_max_tokens_maps_to_length(self, sse):
        body = typed_text_stream(sse, ["a"], stop_reason="max_tokens")
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        assert events[-1].reason == FinishReason.LENGTH

    @pytest.mark.asyncio
    async def test_eof_after_stop_reason_finishes(self, sse):
        body = typed_text_stream(sse, ["a"], message_stop=False)
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        assert types(events) == ["text-delta", "finish"]

    @pytest.mark.asyncio
    async def test_eof_without_stop_reason_is_incomplete(self, sse):
        body = typed_text_stream(sse, ["a"], stop_reason=None, message_stop=False)
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        assert types(events) == ["text-delta", "error"]
        assert events[-1].error.kind == ErrorKind.INCOMPLETE_RESPONSE

    @pytest.mark.asyncio
    async def test_error_event(self, sse):
        body = sse.event("error", {
            "type": "error",
            "error": {"type": "overloaded_error", "message": "Overloaded"},
        })
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)

        assert types(events) == ["error"]
        assert events[0].error.kind == ErrorKind.MODEL_OVERLOADED
        assert events[0].error.retryable is True

    @pytest.mark.asyncio
    async def test_thinking_blocks(self, sse):
        body = (
            sse.event("content_block_start", {
                "index": 0, "content_block": {"type": "thinking", "thinking": ""},
            })
            + sse.event("content_block_delta", {
                "index": 0, "delta": {"type": "thinking_delta", "thinking": "hmm"},
            })
            + sse.event("message_stop", {})
        )
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        assert types(events) == ["reasoning-delta", "finish"]


class TestTypedEventToolCalls:
    """Test tool_use block reconstruction."""

    def tool_stream(self, sse):
        return (
            sse.event("message_start", {"message": {"usage": {"input_tokens": 3}}})
            + sse.event("content_block_start", {
                "type": "content_block_start", "index": 1,
                "content_block": {"type": "tool_use", "id": "toolu_01", "name": "get_weather", "input": {}},
            })
            + sse.event("content_block_delta", {
                "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"location":'},
            })
            + sse.event("content_block_delta", {
                "index": 1, "delta": {"type": "input_json_delta", "partial_json": ' "NYC"}'},
            })
            + sse.event("content_block_stop", {"index": 1})
            + sse.event("message_delta", {"delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 20}})
            + sse.event("message_stop", {})
        )

    @pytest.mark.asyncio
    async def test_tool_use_block(self, sse):
        events = await run_stream(sse, self.tool_stream(sse), WireFormat.TYPED_EVENT)

        assert types(events) == [
            "tool-call-start",
            "tool-call-delta",
            "tool-call-delta",
            "tool-call",
            "finish",
        ]
        assert events[0] == ToolCallStart(index=1, id="toolu_01", name="get_weather")
        assert events[3].arguments == {"location": "NYC"}
        assert events[4].reason == FinishReason.TOOL_CALLS

    @pytest.mark.asyncio
    async def test_tool_use_any_chunk_size(self, sse):
        body = self.tool_stream(sse)
        whole = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        for size in (1, 4, 9):
            assert await run_stream(sse, body, WireFormat.TYPED_EVENT, chunk_size=size) == whole

    @pytest.mark.asyncio
    async def test_input_on_start_block(self, sse):
        body = (
            sse.event("content_block_start", {
                "index": 0,
                "content_block": {"type": "tool_use", "id": "toolu_2", "name": "lookup", "input": {"id": 7}},
            })
            + sse.event("content_block_stop", {"index": 0})
            + sse.event("message_stop", {})
        )
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)
        assert events[1].arguments == {"id": 7}

    @pytest.mark.asyncio
    async def test_invalid_tool_json(self, sse):
        body = (
            sse.event("content_block_start", {
                "index": 0, "content_block": {"type": "tool_use", "id": "toolu_3", "name": "f"},
            })
            + sse.event("content_block_delta", {
                "index": 0, "delta": {"type": "input_json_delta", "partial_json": '{"a": tru'},
            })
            + sse.event("content_block_stop", {"index": 0})
            + sse.event("message_stop", {})
        )
        events = await run_stream(sse, body, WireFormat.TYPED_EVENT)

        assert types(events) == ["tool-call-start", "tool-call-delta", "error"]
        assert events[-1].error.kind == ErrorKind.INVALID_TOOL_FORMAT


# ============================================================
# Reducer contract
# ============================================================

class TestReducerContract:
    """Test terminal-event rules directly on the reducer."""

    def test_create_reducer(self):
        assert isinstance(create_reducer(WireFormat.DELTA_JSON), DeltaJSONReducer)
        assert isinstance(create_reducer(WireFormat.TYPED_EVENT), TypedEventReducer)

    def test_feed_after_finish_returns_nothing(self):
        reducer = DeltaJSONReducer()
        assert types(reducer.feed(DoneFrame())) == ["finish"]
        assert reducer.feed(DeltaFrame(event_data=delta(content="x"))) == []
        assert reducer.end_of_input() == []

    def test_fail_is_terminal_once(self):
        from llmwire.core.errors import create_error

        reducer = TypedEventReducer()
        first = reducer.fail(create_error(ErrorKind.CANCELLED))
        assert types(first) == ["error"]
        assert reducer.fail(create_error(ErrorKind.STREAM_ERROR)) == []

    @pytest.mark.asyncio
    async def test_transport_error_mid_stream(self, sse):
        async def chunks():
            yield sse.data(delta(content="a")).encode()
            raise httpx.ReadError("connection reset")

        events = await sse.collect(stream_events(chunks(), WireFormat.DELTA_JSON))
        assert types(events) == ["text-delta", "error"]
        assert events[-1].error.kind == ErrorKind.STREAM_ERROR

    @pytest.mark.asyncio
    async def test_cancel_hides_pending_finish(self, sse):
        body = TestDeltaJSONToolCalls().tool_stream(sse).encode()
        token = CancellationToken()
        events = []

        async for event in stream_events(sse.aiter([body]), WireFormat.DELTA_JSON, cancellation_token=token):
            events.append(event)
            if event.type == StreamEventType.TOOL_CALL:
                token.cancel("stop")

        assert types(events)[-2:] == ["tool-call", "error"]
        assert events[-1].error.kind == ErrorKind.CANCELLED
        assert "finish" not in types(events)


class TestEventHelpers:

    @pytest.mark.parametrize("raw,expected", [
        ("stop", FinishReason.STOP),
        ("end_turn", FinishReason.STOP),
        ("tool_use", FinishReason.TOOL_CALLS),
        ("tool_calls", FinishReason.TOOL_CALLS),
        ("max_tokens", FinishReason.LENGTH),
        ("content_filter", FinishReason.CONTENT_FILTER),
        ("something_new", FinishReason.OTHER),
        (None, FinishReason.OTHER),
    ])
    def test_map_finish_reason(self, raw, expected):
        assert map_finish_reason(raw) == expected

    def test_usage_merge_keeps_larger(self):
        usage = Usage(input_tokens=10, output_tokens=5)
        usage.merge(Usage(input_tokens=3, output_tokens=8))
        assert usage.input_tokens == 10
        assert usage.output_tokens == 8

    def test_event_to_dict(self):
        finish = Finish(reason=FinishReason.STOP, usage=Usage(input_tokens=1, output_tokens=2))
        assert event_to_dict(finish) == {
            "type": "finish",
            "reason": "stop",
            "usage": {"input_tokens": 1, "output_tokens": 2, "total_tokens": 3},
        }
        assert event_to_dict(TextDelta(text="hi")) == {"type": "text-delta", "text": "hi"}

    def test_error_event_to_dict(self):
        from llmwire.core.errors import create_error

        event = StreamErrorEvent(error=create_error(ErrorKind.STREAM_ERROR))
        data = event_to_dict(event)
        assert data["type"] == "error"
