"""
llmwire - SSE Record Decoder

Incremental Server-Sent Events parsing.

Bytes go in as they arrive from the network; complete records come out
as soon as their terminating blank line is seen. Only the unfinished
line and the fields of the current record are buffered, so memory stays
bounded no matter how slowly the consumer pulls.

Handled here:
- records split at any byte, including inside a UTF-8 sequence or
  between the \\r and \\n of a CRLF
- LF, CRLF and lone CR line endings
- comment lines (": keep-alive")
- multiple data: lines, joined with "\\n"

A non-empty record still open at end of stream raises StreamDecodeError
(STREAM_ERROR).
"""

import codecs
import re
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

from ..core.errors import ErrorKind
from .errors import StreamDecodeError, truncated


_LINE_END = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class SSERecord:
    """One dispatched SSE record."""
    event: Optional[str] = None
    data: Optional[str] = None  # None when the record had no data: line


class SSEDecoder:
    """
    Stateful byte-to-record decoder for one stream.

    Usage:
        decoder = SSEDecoder()
        for chunk in chunks:
            for record in decoder.feed(chunk):
                ...
        decoder.close()
    """

    def __init__(self):
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._pieces: List[str] = []
        self._buffered = 0
        self._skip_lf = False
        self._event: Optional[str] = None
        self._data: List[str] = []
        self._has_fields = False
        self._started = False
        self._closed = False

    @property
    def buffered(self) -> int:
        """Characters held for the unfinished line."""
        return self._buffered

    def feed(self, chunk: bytes) -> List[SSERecord]:
        """Decode a chunk and return the records it completed."""
        if self._closed:
            raise StreamDecodeError(ErrorKind.STREAM_ERROR, "SSE decoder already closed")
        try:
            text = self._utf8.decode(chunk)
        except UnicodeDecodeError as e:
            raise StreamDecodeError(
                ErrorKind.STREAM_ERROR, f"Stream is not valid UTF-8: {e}"
            ) from e
        return self._consume(text)

    def close(self) -> List[SSERecord]:
        """
        Signal end of stream.

        Raises StreamDecodeError if a record was left unterminated.
        """
        if self._closed:
            return []
        try:
            tail = self._utf8.decode(b"", final=True)
        except UnicodeDecodeError as e:
            raise StreamDecodeError(
                ErrorKind.STREAM_ERROR, f"Stream ended inside a UTF-8 sequence: {e}"
            ) from e
        records = self._consume(tail)
        self._closed = True

        leftover = "".join(self._pieces)
        pending = self._has_fields
        self._reset_record()
        self._pieces = []
        self._buffered = 0
        if leftover.strip() or pending:
            raise StreamDecodeError(
                ErrorKind.STREAM_ERROR,
                "Stream ended with an incomplete SSE record",
                raw=truncated(leftover) or None,
            )
        return records

    # ----------------------------------------------------------------

    def _consume(self, text: str) -> List[SSERecord]:
        records: List[SSERecord] = []
        if not text:
            return records
        if not self._started:
            self._started = True
            if text.startswith("\ufeff"):
                text = text[1:]
        if self._skip_lf:
            # second half of a CRLF split across chunks
            self._skip_lf = False
            if text.startswith("\n"):
                text = text[1:]

        # only the new text is scanned; the partial line stays in pieces
        pos = 0
        for match in _LINE_END.finditer(text):
            self._pieces.append(text[pos:match.start()])
            line = "".join(self._pieces)
            self._pieces = []
            self._buffered = 0
            self._process_line(line, records)
            pos = match.end()
        if text.endswith("\r"):
            self._skip_lf = True
        elif pos < len(text):
            self._pieces.append(text[pos:])
            self._buffered += len(text) - pos
        return records

    def _process_line(self, line: str, records: List[SSERecord]) -> None:
        if line == "":
            if self._has_fields:
                records.append(SSERecord(
                    event=self._event,
                    data="\n".join(self._data) if self._data else None,
                ))
            self._reset_record()
            return

        if line.startswith(":"):
            return

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "data":
            self._data.append(value)
            self._has_fields = True
        elif name == "event":
            self._event = value or None
            self._has_fields = True
        # id, retry and unknown fields carry nothing the reducers use

    def _reset_record(self) -> None:
        self._event = None
        self._data = []
        self._has_fields = False


async def iter_sse_records(chunks: AsyncIterable[bytes]) -> AsyncIterator[SSERecord]:
    """Lazily turn a byte stream into SSE records."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
    for record in decoder.close():
        yield record
