"""
Server-sent events decoder for the Messages streaming API.

The decoder is a lazy, forward-only iterator over typed events. It reads
one line at a time from the transport, buffers ``event:`` and ``data:``
fields, and dispatches one event per blank line.
"""

import json
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Union

import httpx
import structlog

from ..cancel import CancelToken
from ..errors import ProtocolError, TransportError
from .base import StopReason

logger = structlog.get_logger()


@dataclass
class MessageStart:
    input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0


@dataclass
class ContentBlockStart:
    """A content block opens. ``kind`` is thinking, text or tool_use."""

    index: int
    kind: str
    id: str = ""
    name: str = ""


@dataclass
class ContentBlockDelta:
    """A fragment for the open block.

    ``kind`` is one of thinking, signature, text or input_json.
    """

    index: int
    kind: str
    value: str


@dataclass
class ContentBlockStop:
    index: int


@dataclass
class MessageDelta:
    stop_reason: StopReason
    output_tokens: int = 0


@dataclass
class MessageStop:
    pass


@dataclass
class Ping:
    pass


@dataclass
class StreamError:
    """An error reported by the service in the middle of a stream."""

    type: str
    message: str


Event = Union[
    MessageStart,
    ContentBlockStart,
    ContentBlockDelta,
    ContentBlockStop,
    MessageDelta,
    MessageStop,
    Ping,
    StreamError,
]

_DELTA_KINDS = {
    "thinking_delta": ("thinking", "thinking"),
    "signature_delta": ("signature", "signature"),
    "text_delta": ("text", "text"),
    "input_json_delta": ("input_json", "partial_json"),
}


def decode_event(event_type: str | None, data: str) -> Event:
    """Turn one buffered SSE frame into a typed event."""
    try:
        payload: dict[str, Any] = json.loads(data)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"invalid event payload: {e}") from e
    if not isinstance(payload, dict):
        raise ProtocolError(f"event payload is not an object: {data[:100]}")

    event_type = event_type or payload.get("type")
    try:
        return _build_event(event_type, payload)
    except (KeyError, TypeError) as e:
        raise ProtocolError(f"{event_type} event missing field {e}") from e


def _build_event(event_type: str | None, payload: dict[str, Any]) -> Event:
    if event_type == "message_start":
        usage = payload["message"].get("usage") or {}
        return MessageStart(
            input_tokens=usage.get("input_tokens") or 0,
            cache_creation_input_tokens=usage.get("cache_creation_input_tokens") or 0,
            cache_read_input_tokens=usage.get("cache_read_input_tokens") or 0,
        )

    if event_type == "content_block_start":
        block = payload["content_block"]
        kind = block["type"]
        if kind == "tool_use":
            return ContentBlockStart(payload["index"], kind, id=block["id"], name=block["name"])
        return ContentBlockStart(payload["index"], kind)

    if event_type == "content_block_delta":
        delta = payload["delta"]
        known = _DELTA_KINDS.get(delta["type"])
        if known is None:
            return ContentBlockDelta(payload["index"], delta["type"], "")
        kind, key = known
        return ContentBlockDelta(payload["index"], kind, delta[key])

    if event_type == "content_block_stop":
        return ContentBlockStop(payload["index"])

    if event_type == "message_delta":
        usage = payload.get("usage") or {}
        return MessageDelta(
            stop_reason=StopReason.parse(payload["delta"].get("stop_reason")),
            output_tokens=usage.get("output_tokens") or 0,
        )

    if event_type == "message_stop":
        return MessageStop()

    if event_type == "error":
        error = payload.get("error") or {}
        return StreamError(
            type=error.get("type", "error"),
            message=error.get("message", json.dumps(payload)),
        )

    if event_type != "ping":
        logger.debug("Ignoring unknown event type", event_type=event_type)
    return Ping()


class SSEDecoder:
    """Decode a line stream into events.

    The cancellation token is checked before every read. Once it is set the
    decoder reports end-of-stream instead of an error, even if the read
    itself failed because the connection was torn down. Used as a context
    manager, the decoder closes its response as soon as the token is set.
    """

    def __init__(
        self,
        lines: Iterable[str],
        cancel: CancelToken | None = None,
        on_close: Callable[[], None] | None = None,
    ):
        self._lines = iter(lines)
        self._cancel = cancel
        self._on_close = on_close
        self._done = False
        self._hooks = ExitStack()

    @classmethod
    def from_response(cls, response: httpx.Response, cancel: CancelToken | None = None) -> "SSEDecoder":
        return cls(response.iter_lines(), cancel=cancel, on_close=response.close)

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    def next_event(self) -> Event | None:
        """Return the next event, or None at end of stream."""
        if self._done:
            return None

        event_type: str | None = None
        data: list[str] = []

        while True:
            if self._cancelled():
                return self._finish()
            try:
                line = next(self._lines)
            except StopIteration:
                return self._finish()
            except (httpx.HTTPError, httpx.StreamError, OSError) as e:
                if self._cancelled():
                    return self._finish()
                self._finish()
                raise TransportError(f"stream read failed: {e}") from e

            line = line.rstrip("\r\n")
            if not line:
                if not data:
                    event_type = None
                    continue
                return decode_event(event_type, "\n".join(data))

            if line.startswith("event:"):
                event_type = line[len("event:"):].strip()
            elif line.startswith("data:"):
                value = line[len("data:"):]
                data.append(value[1:] if value.startswith(" ") else value)

    def _finish(self) -> None:
        self._done = True
        return None

    def close(self) -> None:
        self._done = True
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            on_close()

    def abort(self) -> None:
        """Close the response from a cancel callback; a blocked read then fails."""
        try:
            self.close()
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            logger.debug("Error closing cancelled stream", error=str(e))

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.next_event()
            if event is None:
                return
            yield event

    def __enter__(self) -> "SSEDecoder":
        if self._cancel is not None:
            self._hooks.enter_context(self._cancel.on_cancel(self.abort))
        return self

    def __exit__(self, *exc_info) -> None:
        self._hooks.close()
        self.close()
