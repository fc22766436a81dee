"""
Anthropic Messages API transport.

One streaming POST per model turn, with bounded retries for transport
failures and overloaded or rate-limited responses.
"""

import json
import time
from typing import Callable

import httpx
import structlog

from ..cancel import CancelToken
from ..errors import APIError, TransportError
from .base import Request
from .sse import SSEDecoder

logger = structlog.get_logger()

DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
MAX_ATTEMPTS = 3
REQUEST_TIMEOUT = 60.0


def is_retryable(error: Exception) -> bool:
    if isinstance(error, TransportError):
        return True
    if isinstance(error, APIError):
        return error.retryable
    return False


def retry_delay(attempt: int, error: Exception) -> int:
    """Seconds to wait after failed ``attempt`` (1-based).

    A server-supplied retry-after wins; otherwise back off 1, 2, 4...
    """
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        return retry_after
    return 2 ** (attempt - 1)


def parse_api_error(status: int, body: str, retry_after: int | None = None) -> APIError:
    """Build an APIError from a non-200 response body."""
    message = body
    try:
        payload = json.loads(body)
        error = payload["error"]
        message = error["message"]
    except (ValueError, KeyError, TypeError):
        pass
    return APIError(status, message, retry_after=retry_after)


def _parse_retry_after(headers: httpx.Headers) -> int | None:
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(int(value.strip()), 0)
    except ValueError:
        return None


class AnthropicTransport:
    """Streaming HTTP transport for the Messages API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_retry: Callable[[str], None] | None = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self._client = client or httpx.Client(timeout=REQUEST_TIMEOUT)
        self._sleep = sleep
        self._on_retry = on_retry

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    def send(self, request: Request, cancel: CancelToken | None = None) -> httpx.Response:
        """POST the request and return the open streaming response.

        Raises TransportError or APIError once retries are exhausted or the
        failure is not retryable.
        """
        body = json.dumps(request.to_body()).encode("utf-8")

        attempt = 1
        while True:
            try:
                return self._attempt(body)
            except (TransportError, APIError) as e:
                if not is_retryable(e) or attempt >= MAX_ATTEMPTS:
                    logger.error("Request failed", attempt=attempt, error=str(e))
                    raise
                delay = retry_delay(attempt, e)
                logger.warning("Retrying request", attempt=attempt, delay=delay, error=str(e))
                if self._on_retry is not None:
                    self._on_retry(f"retry {attempt}/{MAX_ATTEMPTS} in {delay}s ({e})")
                self._sleep(delay)
                if cancel is not None and cancel.is_set():
                    raise
                attempt += 1

    def _attempt(self, body: bytes) -> httpx.Response:
        http_request = self._client.build_request(
            "POST", self.api_url, content=body, headers=self._headers()
        )
        try:
            response = self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__) from e

        if response.status_code == 200:
            return response

        try:
            text = response.read().decode("utf-8", errors="replace")
        except httpx.HTTPError as e:
            text = str(e)
        finally:
            response.close()
        raise parse_api_error(response.status_code, text, _parse_retry_after(response.headers))

    def stream(self, request: Request, cancel: CancelToken | None = None) -> SSEDecoder:
        """Send the request and return a decoder over its event stream."""
        response = self.send(request, cancel)
        return SSEDecoder.from_response(response, cancel)

    def close(self) -> None:
        self._client.close()
