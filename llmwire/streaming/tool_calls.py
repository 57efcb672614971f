"""
llmwire - Tool Call Accumulation

Tool calls arrive in pieces:
1. A start fragment with the call id and function name
2. Any number of fragments with partial arguments JSON
3. An end signal (content_block_stop, finish_reason, message_stop)

Arguments are parsed exactly once, after the end signal. Partial buffers
are never parsed. An empty buffer means "no arguments" and becomes {}.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .errors import ToolCallFormatError, truncated
from .events import ToolCall


def generate_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ToolCallAccumulator:
    """
    State for one in-flight tool call.

    Owned by a single reducer for the lifetime of one stream.
    """
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_buffer: str = ""
    started: bool = False  # tool-call-start already emitted

    def update(
        self,
        id: Optional[str] = None,
        name: Optional[str] = None,
        arguments_delta: str = "",
    ) -> None:
        if id:
            self.id = id
        if name:
            self.name = name
        if arguments_delta:
            self.arguments_buffer += arguments_delta

    @property
    def ready_to_start(self) -> bool:
        return not self.started and bool(self.name)

    def ensure_id(self) -> str:
        if not self.id:
            self.id = generate_call_id()
        return self.id

    def parse_arguments(self) -> Dict[str, Any]:
        """Parse the full buffer. Raises ToolCallFormatError."""
        text = self.arguments_buffer.strip()
        if not text:
            return {}
        try:
            value = json.loads(text)
        except json.JSONDecodeError as e:
            raise ToolCallFormatError(
                f"Tool call {self.name or self.index!r} has invalid arguments JSON: {e}",
                raw=truncated(self.arguments_buffer),
            ) from e
        if not isinstance(value, dict):
            raise ToolCallFormatError(
                f"Tool call {self.name or self.index!r} arguments must be a JSON object, "
                f"got {type(value).__name__}",
                raw=truncated(self.arguments_buffer),
            )
        return value

    def finalize(self) -> ToolCall:
        """Build the finished ToolCall event."""
        if not self.name:
            raise ToolCallFormatError(f"Tool call at index {self.index} has no function name")
        return ToolCall(
            index=self.index,
            id=self.ensure_id(),
            name=self.name,
            arguments=self.parse_arguments(),
            raw_arguments=self.arguments_buffer or "{}",
        )


class ToolCallTracker:
    """
    Tracks parallel tool calls during one stream, keyed by index.

    Calls that only carry an id are matched to an existing entry by id.
    """

    def __init__(self):
        self._calls: Dict[int, ToolCallAccumulator] = {}

    def resolve_index(self, index: Optional[int], id: Optional[str], position: int) -> int:
        if isinstance(index, int) and not isinstance(index, bool):
            return index
        if id:
            for call in self._calls.values():
                if call.id == id:
                    return call.index
        return position

    def update_call(
        self,
        index: int,
        id: Optional[str] = None,
        name: Optional[str] = None,
        arguments_delta: str = "",
    ) -> ToolCallAccumulator:
        """Update the call at `index`, creating it if needed."""
        call = self._calls.get(index)
        if call is None:
            call = ToolCallAccumulator(index=index)
            self._calls[index] = call
        call.update(id=id, name=name, arguments_delta=arguments_delta)
        return call

    def get_call(self, index: int) -> Optional[ToolCallAccumulator]:
        return self._calls.get(index)

    def pop_call(self, index: int) -> Optional[ToolCallAccumulator]:
        return self._calls.pop(index, None)

    def drain(self) -> List[ToolCallAccumulator]:
        """Remove and return all open calls in index order."""
        calls = [self._calls[i] for i in sorted(self._calls)]
        self._calls.clear()
        return calls

    def clear(self) -> None:
        self._calls.clear()
