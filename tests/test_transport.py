"""
Tests for the Anthropic streaming transport and its retry policy.
"""

import json

import httpx
import pytest

from tapir_agent.cancel import CancelToken
from tapir_agent.errors import APIError, TransportError
from tapir_agent.llm.anthropic import (
    MAX_ATTEMPTS,
    AnthropicTransport,
    is_retryable,
    parse_api_error,
    retry_delay,
)
from tapir_agent.llm.base import Message, Request
from tapir_agent.llm.sse import MessageStart, MessageStop

STREAM_BODY = (
    "event: message_start\n"
    'data: {"type":"message_start","message":{"usage":{"input_tokens":7}}}\n'
    "\n"
    "event: message_stop\n"
    'data: {"type":"message_stop"}\n'
    "\n"
)


def make_request() -> Request:
    return Request(model="m", max_tokens=10, system="s", messages=[Message.user("hi")])


def make_transport(handler, **kwargs) -> tuple[AnthropicTransport, list[float]]:
    sleeps: list[float] = []
    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = AnthropicTransport("key", "https://api.test/v1/messages", client=client, sleep=sleeps.append, **kwargs)
    return transport, sleeps


@pytest.mark.parametrize("status", [429, 500, 502, 503, 529])
def test_retryable_statuses(status):
    """Test that overload and server statuses are retried."""
    assert is_retryable(APIError(status, "x"))


@pytest.mark.parametrize("status", [400, 401, 403, 404])
def test_non_retryable_statuses(status):
    """Test that client errors are not retried."""
    assert not is_retryable(APIError(status, "x"))


def test_transport_failure_is_retryable():
    """Test that a plain transport failure is retried."""
    assert is_retryable(TransportError("connection reset"))
    assert not is_retryable(ValueError("nope"))


def test_retry_delay_backoff():
    """Test the 1s, 2s, 4s schedule without a server hint."""
    error = TransportError("x")
    assert [retry_delay(a, error) for a in (1, 2, 3)] == [1, 2, 4]


def test_retry_delay_prefers_server_value():
    """Test that retry-after overrides the schedule."""
    assert retry_delay(1, APIError(429, "slow down", retry_after=7)) == 7
    assert retry_delay(3, APIError(429, "slow down", retry_after=0)) == 0


def test_parse_api_error_message():
    """Test extracting the message from an error body."""
    body = json.dumps({"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}})
    error = parse_api_error(529, body)

    assert error.status == 529
    assert error.message == "Overloaded"
    assert str(error) == "API error (529): Overloaded"


def test_parse_api_error_raw_body_fallback():
    """Test that an unparseable body is used verbatim."""
    assert parse_api_error(502, "<html>bad gateway</html>").message == "<html>bad gateway</html>"


def test_send_headers_and_body():
    """Test the request headers and the serialized body."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, text=STREAM_BODY)

    transport, _ = make_transport(handler)
    with transport.stream(make_request()) as events:
        assert list(events) == [MessageStart(input_tokens=7), MessageStop()]

    assert seen["headers"]["x-api-key"] == "key"
    assert seen["headers"]["anthropic-version"] == "2023-06-01"
    assert seen["body"]["stream"] is True


def test_retry_then_success():
    """Test that a 529 is retried and the retry is announced."""
    calls = []
    notices = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(529, json={"error": {"type": "overloaded_error", "message": "Overloaded"}})
        return httpx.Response(200, text=STREAM_BODY)

    transport, sleeps = make_transport(handler, on_retry=notices.append)
    response = transport.send(make_request())

    assert response.status_code == 200
    assert len(calls) == 2
    assert sleeps == [1]
    assert notices == ["retry 1/3 in 1s (API error (529): Overloaded)"]


def test_retry_after_header_is_used():
    """Test that the retry-after header sets the delay."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, headers={"retry-after": "5"}, text="rate limited")
        return httpx.Response(200, text=STREAM_BODY)

    transport, sleeps = make_transport(handler)
    transport.send(make_request())

    assert sleeps == [5]


def test_gives_up_after_max_attempts():
    """Test that retries stop after three attempts."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="unavailable")

    transport, sleeps = make_transport(handler)
    with pytest.raises(APIError) as exc_info:
        transport.send(make_request())

    assert exc_info.value.status == 503
    assert len(calls) == MAX_ATTEMPTS
    assert sleeps == [1, 2]


def test_client_error_not_retried():
    """Test that a 400 fails immediately."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "bad request"}})

    transport, sleeps = make_transport(handler)
    with pytest.raises(APIError, match="bad request"):
        transport.send(make_request())

    assert len(calls) == 1
    assert sleeps == []


def test_connect_error_becomes_transport_error():
    """Test that httpx failures are wrapped and retried."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    transport, sleeps = make_transport(handler)
    with pytest.raises(TransportError, match="connection refused"):
        transport.send(make_request())

    assert len(calls) == MAX_ATTEMPTS


def test_cancel_during_backoff_stops_retrying():
    """Test that a cancellation seen after the backoff sleep aborts the retry loop."""
    cancel = CancelToken()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, text="oops")

    client = httpx.Client(transport=httpx.MockTransport(handler))
    transport = AnthropicTransport("key", client=client, sleep=lambda _: cancel.set())

    with pytest.raises(APIError):
        transport.send(make_request(), cancel)
    assert len(calls) == 1
