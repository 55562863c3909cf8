"""Async transport for OpenAI-compatible chat-completions endpoints.

One call, one HTTP request: the client never retries.  Retrying is a job
layer decision (see ``cardlink.jobs.retry``).
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from cardlink.config import LLMSettings
from cardlink.errors import ApiError, ApiErrorKind, LLMTimeoutError, StreamCancelled
from cardlink.types import StreamEvent

from .sse import decode_stream

_logger = logging.getLogger(__name__)


class CancelToken:
    """External cancellation signal for a streaming call.

    The read loop checks the token on every received chunk and aborts the
    HTTP read once it is set.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncLLMClient:
    """Async client for OpenAI-compatible chat-completions APIs.

    Parameters
    ----------
    settings:
        Endpoint, credentials and timeouts.  Missing credentials are only
        reported when a request is made.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        settings: LLMSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Blocking
    # ------------------------------------------------------------------

    async def chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST *payload* and return the parsed JSON body."""
        url = self._url()
        try:
            resp = await self._client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise self._timeout_error(e) from e
        except httpx.TransportError as e:
            raise ApiError(ApiErrorKind.GENERIC, f"Transport error: {e}") from e

        if resp.status_code != 200:
            raise ApiError.from_status(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(
                ApiErrorKind.INVALID_BODY, f"Invalid JSON response: {e}", 200,
            ) from e

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        payload: dict[str, Any],
        cancel: CancelToken | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """POST *payload* with ``stream: true`` and yield decoded events.

        Events are yielded as bytes arrive; the read loop waits on the
        consumer between events.
        """
        url = self._url()
        body = dict(payload)
        body["stream"] = True
        headers = self._headers()
        headers["Accept"] = "text/event-stream"

        try:
            async with self._client.stream("POST", url, json=body, headers=headers) as resp:
                if resp.status_code != 200:
                    text = (await resp.aread()).decode("utf-8", errors="replace")
                    raise ApiError.from_status(resp.status_code, text)
                async for event in decode_stream(_guard(resp.aiter_bytes(), cancel)):
                    yield event
        except httpx.TimeoutException as e:
            raise self._timeout_error(e) from e
        except httpx.TransportError as e:
            raise ApiError(ApiErrorKind.GENERIC, f"Transport error: {e}") from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _url(self) -> str:
        self.settings.require_credentials()
        return f"{self.settings.base_url.rstrip('/')}/chat/completions"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }

    def _timeout_error(self, exc: httpx.TimeoutException) -> LLMTimeoutError:
        if isinstance(exc, httpx.ConnectTimeout):
            return LLMTimeoutError(
                f"Connection timed out after {self.settings.connect_timeout}s",
            )
        return LLMTimeoutError(f"Request timed out after {self.settings.timeout}s")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncLLMClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def _guard(
    chunks: AsyncIterator[bytes],
    cancel: CancelToken | None,
) -> AsyncIterator[bytes]:
    async for raw in chunks:
        if cancel is not None and cancel.cancelled:
            _logger.info("Stream cancelled, closing response")
            raise StreamCancelled("stream cancelled")
        yield raw
