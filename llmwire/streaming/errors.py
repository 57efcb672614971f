"""
llmwire - Stream Errors

Errors raised while decoding a stream. They carry the taxonomy kind the
failure maps to; the stream pipeline turns them into a terminal error
event instead of letting them escape to the consumer.
"""

from typing import Optional

from ..core.errors import ClassifiedError, ErrorKind, create_error


class StreamDecodeError(Exception):
    """A stream could not be decoded."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str,
        raw: Optional[str] = None,
    ):
        self.kind = kind
        self.detail = detail
        self.raw = raw
        super().__init__(detail)

    def to_classified(self, url: Optional[str] = None) -> ClassifiedError:
        return create_error(self.kind, detail=self.detail, raw_body=self.raw, url=url)


class ToolCallFormatError(StreamDecodeError):
    """Accumulated tool-call arguments are not a JSON object."""

    def __init__(self, detail: str, raw: Optional[str] = None):
        super().__init__(ErrorKind.INVALID_TOOL_FORMAT, detail, raw)


def truncated(text: Optional[str], limit: int = 200) -> str:
    """Preview of a raw payload for error messages."""
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}...({len(text)} chars)"
