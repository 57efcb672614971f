"""
llmwire - Stream Reducer

Folds decoded frames into ProviderStreamEvents. There is one strategy per
wire format, selected from RequestConfig.wire_format:

- DeltaJSONReducer: OpenAI-compatible `choices[0].delta` chunks
- TypedEventReducer: Anthropic-style typed events

Both guarantee:
- events leave in the order their frames arrived; text is never coalesced
- exactly one terminal event (finish or error), after which feed()
  returns nothing
- tool-call arguments are parsed only once complete; bad JSON becomes an
  INVALID_TOOL_FORMAT error event, never a silently dropped call
- tool-call state is released when the stream closes, on any path
"""

import json
from typing import Any, Dict, List, Optional

from ..core.classifier import classify_vendor_error
from ..core.errors import ClassifiedError, ErrorKind, create_error
from ..core.models import WireFormat
from .errors import StreamDecodeError
from .events import (
    Finish,
    FinishReason,
    ProviderStreamEvent,
    ReasoningDelta,
    StreamErrorEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallStart,
    Usage,
    is_terminal,
    map_finish_reason,
    usage_from_delta_json,
    usage_from_typed_event,
)
from .frames import DeltaFrame, DoneFrame, StreamFrame, TypedEventFrame, TypedEventName
from .tool_calls import ToolCallAccumulator, ToolCallTracker


class StreamReducer:
    """
    Shared state and closing rules for both wire formats.

    Subclasses implement _reduce(frame) and _end_of_input().
    """

    wire_format: WireFormat

    def __init__(self, url: Optional[str] = None):
        self.url = url
        self.usage = Usage()
        self.finish_reason: Optional[FinishReason] = None
        self.raw_finish_reason: Optional[str] = None
        self.tools = ToolCallTracker()
        self.tool_calls_emitted = 0
        self.closed = False

    # ---------------------------------------------------------------- public

    def feed(self, frame: StreamFrame) -> List[ProviderStreamEvent]:
        """Reduce one frame. Returns no events once the stream is closed."""
        if self.closed:
            return []
        return self._emit(self._reduce(frame))

    def end_of_input(self) -> List[ProviderStreamEvent]:
        """The byte stream ended cleanly."""
        if self.closed:
            return []
        return self._emit(self._end_of_input())

    def fail(self, error: ClassifiedError) -> List[ProviderStreamEvent]:
        """Terminate with an error from outside the reducer."""
        if self.closed:
            return []
        return self._emit([StreamErrorEvent(error=error)])

    def close(self) -> None:
        """Release tool-call state. Idempotent."""
        self.closed = True
        self.tools.clear()

    # ---------------------------------------------------------------- helpers

    def _emit(self, events: List[ProviderStreamEvent]) -> List[ProviderStreamEvent]:
        for position, event in enumerate(events):
            if is_terminal(event):
                self.close()
                return events[:position + 1]
        return events

    def _error(self, error: ClassifiedError) -> StreamErrorEvent:
        return StreamErrorEvent(error=error)

    def _finalize_call(self, call: ToolCallAccumulator) -> ProviderStreamEvent:
        try:
            event = call.finalize()
        except StreamDecodeError as e:
            return self._error(e.to_classified(self.url))
        self.tool_calls_emitted += 1
        return event

    def _finalize_open_calls(self) -> List[ProviderStreamEvent]:
        events: List[ProviderStreamEvent] = []
        for call in self.tools.drain():
            if not call.started and call.name:
                call.started = True
                events.append(ToolCallStart(index=call.index, id=call.ensure_id(), name=call.name))
            events.append(self._finalize_call(call))
        return events

    def _finish(self) -> Finish:
        reason = self.finish_reason
        if reason is None:
            reason = FinishReason.TOOL_CALLS if self.tool_calls_emitted else FinishReason.STOP
        return Finish(reason=reason, usage=self.usage.snapshot(), raw_reason=self.raw_finish_reason)

    def _set_finish_reason(self, raw: Any) -> None:
        if raw is None:
            return
        self.raw_finish_reason = str(raw)
        self.finish_reason = map_finish_reason(self.raw_finish_reason)

    def _incomplete(self) -> StreamErrorEvent:
        return self._error(create_error(
            ErrorKind.INCOMPLETE_RESPONSE,
            detail="Stream ended before a terminal frame",
            url=self.url,
        ))

    def _reduce(self, frame: StreamFrame) -> List[ProviderStreamEvent]:
        raise NotImplementedError

    def _end_of_input(self) -> List[ProviderStreamEvent]:
        raise NotImplementedError


class DeltaJSONReducer(StreamReducer):
    """
    Reducer for delta-JSON streams.

    A frame with a finish_reason ends generation. If that frame carries no
    usage, one more frame is looked at so a trailing usage-only frame can
    be folded into the finish event.
    """

    wire_format = WireFormat.DELTA_JSON

    def __init__(self, url: Optional[str] = None):
        super().__init__(url)
        self._finish_pending = False

    def _reduce(self, frame: StreamFrame) -> List[ProviderStreamEvent]:
        if isinstance(frame, DoneFrame):
            return self._complete()
        if not isinstance(frame, DeltaFrame):
            return []

        payload = frame.event_data

        if self._finish_pending:
            usage = usage_from_delta_json(payload.get("usage"))
            if usage is not None:
                self.usage.merge(usage)
            return [self._finish()]

        error = payload.get("error")
        if error and not payload.get("choices"):
            return [self._error(classify_vendor_error(payload, url=self.url))]

        events: List[ProviderStreamEvent] = []

        usage = usage_from_delta_json(payload.get("usage"))
        if usage is not None:
            self.usage.merge(usage)

        choices = payload.get("choices")
        choice: Dict[str, Any] = {}
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            choice = choices[0]

        delta = choice.get("delta")
        if isinstance(delta, dict):
            events.extend(self._reduce_delta(delta))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            self._set_finish_reason(finish_reason)
            events.extend(self._finalize_open_calls())
            if usage is not None:
                events.append(self._finish())
            else:
                self._finish_pending = True

        return events

    def _reduce_delta(self, delta: Dict[str, Any]) -> List[ProviderStreamEvent]:
        events: List[ProviderStreamEvent] = []

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            events.append(ReasoningDelta(text=reasoning))

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(TextDelta(text=content))

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for position, fragment in enumerate(tool_calls):
                if isinstance(fragment, dict):
                    events.extend(self._reduce_tool_fragment(fragment, position))
        return events

    def _reduce_tool_fragment(self, fragment: Dict[str, Any], position: int) -> List[ProviderStreamEvent]:
        function = fragment.get("function") or {}
        if not isinstance(function, dict):
            function = {}
        call_id = fragment.get("id") if isinstance(fragment.get("id"), str) else None
        name = function.get("name") if isinstance(function.get("name"), str) else None
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = ""

        index = self.tools.resolve_index(fragment.get("index"), call_id, position)
        call = self.tools.update_call(index, id=call_id, name=name, arguments_delta=arguments)

        events: List[ProviderStreamEvent] = []
        if call.ready_to_start:
            call.started = True
            events.append(ToolCallStart(index=index, id=call.ensure_id(), name=call.name))
        if arguments:
            events.append(ToolCallDelta(index=index, id=call.id, arguments_delta=arguments))
        return events

    def _complete(self) -> List[ProviderStreamEvent]:
        if self._finish_pending:
            return [self._finish()]
        events = self._finalize_open_calls()
        events.append(self._finish())
        return events

    def _end_of_input(self) -> List[ProviderStreamEvent]:
        if self._finish_pending:
            return [self._finish()]
        return [self._incomplete()]


class TypedEventReducer(StreamReducer):
    """
    Reducer for typed-event streams.

    message_start        -> input token usage
    content_block_start  -> opens a text or tool_use block
    content_block_delta  -> text_delta / input_json_delta / thinking_delta
    content_block_stop   -> finalizes a tool_use block
    message_delta        -> stop_reason and output token usage
    message_stop         -> finish
    ping, unknown        -> ignored
    error                -> error
    """

    wire_format = WireFormat.TYPED_EVENT

    TOOL_BLOCK_TYPES = ("tool_use", "server_tool_use")

    def __init__(self, url: Optional[str] = None):
        super().__init__(url)
        self._seen_stop_reason = False

    def _reduce(self, frame: StreamFrame) -> List[ProviderStreamEvent]:
        if not isinstance(frame, TypedEventFrame):
            return []

        name = frame.known_name
        data = frame.event_data

        if name == TypedEventName.MESSAGE_START:
            message = data.get("message")
            if isinstance(message, dict):
                usage = usage_from_typed_event(message.get("usage"))
                if usage is not None:
                    self.usage.merge(usage)
            return []

        if name == TypedEventName.CONTENT_BLOCK_START:
            return self._block_start(data)

        if name == TypedEventName.CONTENT_BLOCK_DELTA:
            return self._block_delta(data)

        if name == TypedEventName.CONTENT_BLOCK_STOP:
            call = self.tools.pop_call(self._index(data))
            if call is None:
                return []
            return [self._finalize_call(call)]

        if name == TypedEventName.MESSAGE_DELTA:
            delta = data.get("delta")
            if isinstance(delta, dict) and delta.get("stop_reason"):
                self._seen_stop_reason = True
                self._set_finish_reason(delta.get("stop_reason"))
            usage = usage_from_typed_event(data.get("usage"))
            if usage is not None:
                self.usage.merge(usage)
            return []

        if name == TypedEventName.MESSAGE_STOP:
            events = self._finalize_open_calls()
            events.append(self._finish())
            return events

        if name == TypedEventName.ERROR:
            return [self._error(classify_vendor_error(data, url=self.url))]

        # ping and unknown events
        return []

    @staticmethod
    def _index(data: Dict[str, Any]) -> int:
        index = data.get("index", 0)
        if isinstance(index, bool) or not isinstance(index, int):
            return 0
        return index

    def _block_start(self, data: Dict[str, Any]) -> List[ProviderStreamEvent]:
        index = self._index(data)
        block = data.get("content_block")
        if not isinstance(block, dict):
            return []

        block_type = block.get("type")
        if block_type in self.TOOL_BLOCK_TYPES:
            call = self.tools.update_call(
                index,
                id=block.get("id") if isinstance(block.get("id"), str) else None,
                name=block.get("name") if isinstance(block.get("name"), str) else None,
            )
            # Full input on the start block (non-streamed tools); normally {}.
            initial = block.get("input")
            if isinstance(initial, dict) and initial:
                call.arguments_buffer = json.dumps(initial)
            if call.ready_to_start:
                call.started = True
                return [ToolCallStart(index=index, id=call.ensure_id(), name=call.name)]
            return []

        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                return [TextDelta(text=text)]
        elif block_type == "thinking":
            thinking = block.get("thinking")
            if isinstance(thinking, str) and thinking:
                return [ReasoningDelta(text=thinking)]
        return []

    def _block_delta(self, data: Dict[str, Any]) -> List[ProviderStreamEvent]:
        index = self._index(data)
        delta = data.get("delta")
        if not isinstance(delta, dict):
            return []

        delta_type = delta.get("type")
        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str) and text:
                return [TextDelta(text=text)]
            return []

        if delta_type == "input_json_delta":
            partial = delta.get("partial_json")
            if not isinstance(partial, str) or not partial:
                return []
            call = self.tools.get_call(index)
            if call is None:
                # delta without a start block; keep the fragment anyway
                call = self.tools.update_call(index)
            call.arguments_buffer += partial
            return [ToolCallDelta(index=index, id=call.id, arguments_delta=partial)]

        if delta_type == "thinking_delta":
            thinking = delta.get("thinking")
            if isinstance(thinking, str) and thinking:
                return [ReasoningDelta(text=thinking)]
        return []

    def _end_of_input(self) -> List[ProviderStreamEvent]:
        if self._seen_stop_reason:
            events = self._finalize_open_calls()
            events.append(self._finish())
            return events
        return [self._incomplete()]


def create_reducer(wire_format: WireFormat, url: Optional[str] = None) -> StreamReducer:
    """Pick the reducer strategy for a wire format."""
    if wire_format == WireFormat.TYPED_EVENT:
        return TypedEventReducer(url)
    return DeltaJSONReducer(url)
