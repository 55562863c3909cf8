"""Middleware pipeline for composable chat-completions requests.

The pipeline chains middleware around the core client call so that
cross-cutting request adaptation (default options, logging) is stacked
declaratively instead of patched into the client.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request type
# ---------------------------------------------------------------------------

@dataclass
class LLMRequest:
    """Encapsulates everything needed for a single chat-completions call."""

    messages: list[dict[str, Any]]
    model: str
    temperature: float = 0.7
    max_tokens: int = 4000
    tools: list[dict[str, Any]] | None = None
    tool_choice: Any = None
    modalities: list[str] | None = None
    stream: bool = False
    extra_params: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON body for ``POST /chat/completions``."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.tools:
            payload["tools"] = self.tools
            if self.tool_choice:
                payload["tool_choice"] = self.tool_choice
        if self.modalities:
            payload["modalities"] = self.modalities
        if self.extra_params:
            payload.update(self.extra_params)
        if self.stream:
            payload["stream"] = True
        return payload


# ---------------------------------------------------------------------------
# Middleware protocol
# ---------------------------------------------------------------------------

# The "next" function a middleware calls to continue the chain.  It resolves
# to the parsed body for blocking requests and to an async iterator of
# stream events for streaming ones.
NextFn = Callable[["LLMRequest"], Any]


class Middleware(Protocol):
    """Protocol that all middleware must implement."""

    async def process(self, request: LLMRequest, next_fn: NextFn) -> Any:
        """Process the request, optionally modifying it, and call *next_fn*."""
        ...


# ---------------------------------------------------------------------------
# Built-in middleware
# ---------------------------------------------------------------------------

@dataclass
class DefaultOptionsMiddleware:
    """Fill in request options the caller left unset.

    Only keys absent from ``request.extra_params`` are added, and
    ``tool_choice`` is only defaulted when tools are present.
    """

    extra_params: dict[str, Any] = field(default_factory=dict)
    tool_choice: Any = None

    async def process(self, request: LLMRequest, next_fn: NextFn) -> Any:
        for key, value in self.extra_params.items():
            request.extra_params.setdefault(key, value)
        if request.tools and request.tool_choice is None and self.tool_choice:
            request.tool_choice = self.tool_choice
        return await next_fn(request)


class RequestLoggingMiddleware:
    """Log the shape of each request at DEBUG level."""

    async def process(self, request: LLMRequest, next_fn: NextFn) -> Any:
        _logger.debug(
            "LLM request model=%s messages=%d tools=%d stream=%s",
            request.model,
            len(request.messages),
            len(request.tools or []),
            request.stream,
        )
        start = time.monotonic()
        result = await next_fn(request)
        if not request.stream:
            _logger.debug(
                "LLM response in %.0fms", (time.monotonic() - start) * 1000,
            )
        return result


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class MiddlewarePipeline:
    """Ordered chain of middleware around an ``AsyncLLMClient``.

    Usage::

        pipeline = MiddlewarePipeline(client)
        pipeline.use(DefaultOptionsMiddleware(tool_choice="auto"))
        body = await pipeline.execute(LLMRequest(...))
        events = await pipeline.open_stream(LLMRequest(..., stream=True))

    Middleware is executed in the order registered (first added = outermost).
    """

    def __init__(self, client: Any) -> None:  # client: AsyncLLMClient
        self._client = client
        self._middlewares: list[Middleware] = []

    def use(self, middleware: Middleware) -> MiddlewarePipeline:
        """Register a middleware.  Returns ``self`` for chaining."""
        self._middlewares.append(middleware)
        return self

    async def execute(self, request: LLMRequest) -> dict[str, Any]:
        """Run the chain for a blocking request and return the parsed body."""

        async def _core(req: LLMRequest) -> dict[str, Any]:
            return await self._client.chat(req.to_payload())

        return await self._build(_core)(request)

    async def open_stream(self, request: LLMRequest, cancel: Any = None) -> Any:
        """Run the chain for a streaming request.

        Returns the async iterator of stream events produced by the client.
        """
        request.stream = True

        async def _core(req: LLMRequest) -> Any:
            return self._client.stream(req.to_payload(), cancel=cancel)

        return await self._build(_core)(request)

    def _build(self, core: Callable[[LLMRequest], Any]) -> Callable[[LLMRequest], Any]:
        # Build the chain from inside out (last middleware wraps the core)
        chain = core
        for mw in reversed(self._middlewares):
            chain = _wrap(mw, chain)
        return chain


def _wrap(
    middleware: Middleware,
    next_fn: Callable[[LLMRequest], Any],
) -> Callable[[LLMRequest], Any]:
    """Create a closure that calls ``middleware.process(req, next_fn)``."""

    async def _handler(request: LLMRequest) -> Any:
        return await middleware.process(request, next_fn)

    return _handler
