"""
llmwire - Stream Pipeline

bytes -> SSE records -> frames -> ProviderStreamEvents, pulled lazily.

Every failure while reading (decoder errors, transport errors,
cancellation) is turned into one terminal error event, so consumers only
ever see events. Consumer-side task cancellation is not intercepted.

The cancellation token is checked before every event is handed out, not
only at network reads: one chunk often carries many records, and nothing
decoded after the token fires may reach the consumer.
"""

from typing import AsyncIterable, AsyncIterator, Iterable, Optional

from ..core.cancellation import CancellationToken
from ..core.classifier import classify_exception
from ..core.errors import ErrorKind, create_error
from ..core.models import WireFormat
from .errors import StreamDecodeError
from .events import ProviderStreamEvent, StreamErrorEvent
from .frames import create_frame_decoder
from .reducer import StreamReducer, create_reducer
from .sse import SSEDecoder


class _Cancelled(Exception):
    pass


def _guard(
    events: Iterable[ProviderStreamEvent],
    token: Optional[CancellationToken],
) -> Iterable[ProviderStreamEvent]:
    for event in events:
        if token is not None and token.cancelled:
            raise _Cancelled()
        yield event


async def stream_events(
    chunks: AsyncIterable[bytes],
    wire_format: WireFormat,
    *,
    url: Optional[str] = None,
    reducer: Optional[StreamReducer] = None,
    cancellation_token: Optional[CancellationToken] = None,
) -> AsyncIterator[ProviderStreamEvent]:
    """
    Decode and reduce a raw SSE byte stream.

    Args:
        chunks: Network chunks, in order. May split records anywhere.
        wire_format: Which frame decoder and reducer to use.
        url: Attached to errors for reporting.
        reducer: Pre-built reducer (tests inspect its state).
        cancellation_token: Checked before each event; once fired, the
            stream ends with a single CANCELLED error event.

    Yields:
        Events in arrival order, ending with exactly one finish or error.
    """
    sse = SSEDecoder()
    decoder = create_frame_decoder(wire_format)
    reducer = reducer or create_reducer(wire_format, url)
    token = cancellation_token

    try:
        try:
            async for chunk in chunks:
                for record in sse.feed(chunk):
                    frame = decoder.decode(record)
                    if frame is None:
                        continue
                    for event in _guard(reducer.feed(frame), token):
                        yield event
                    if reducer.closed:
                        return
            for record in sse.close():
                frame = decoder.decode(record)
                if frame is not None:
                    for event in _guard(reducer.feed(frame), token):
                        yield event
            for event in _guard(reducer.end_of_input(), token):
                yield event
        except _Cancelled:
            # the reducer may already hold a terminal event it never handed out
            yield StreamErrorEvent(
                error=create_error(ErrorKind.CANCELLED, detail=token.reason, url=url),
            )
        except StreamDecodeError as e:
            for event in reducer.fail(e.to_classified(url)):
                yield event
        except Exception as e:
            for event in reducer.fail(classify_exception(e, during_stream=True, url=url)):
                yield event
    finally:
        reducer.close()
