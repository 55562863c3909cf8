"""Orchestrator — the prompt → answer loop with tool calling.

    conversation → LLM → reasoner → executor → loop

Two variants share the loop: ``call_blocking`` returns the final text,
``call_streaming`` returns a ``ChatStream`` that yields text chunks as they
arrive plus a ``ToolInvocation`` before each tool call is dispatched.
Errors propagate to the caller; nothing here retries.
"""

from __future__ import annotations

import inspect
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Union

from cardlink.config import LLMSettings
from cardlink.core.accumulator import ToolCallAccumulator
from cardlink.core.context import Conversation
from cardlink.core.executor import ToolCallExecutor
from cardlink.core.reasoner import ActionType, Reasoner
from cardlink.errors import ApiError, ApiErrorKind, StreamCancelled
from cardlink.llm.client import AsyncLLMClient, CancelToken
from cardlink.llm.middleware import (
    DefaultOptionsMiddleware,
    LLMRequest,
    MiddlewarePipeline,
    RequestLoggingMiddleware,
)
from cardlink.tools.base import ToolExecutor
from cardlink.tools.mcp import MCPGateway
from cardlink.tools.toolset import Toolset, resolve_toolset
from cardlink.types import (
    ContentChunk,
    ToolCall,
    ToolCallDeltas,
    ToolDefinition,
    ToolInvocation,
)

_logger = logging.getLogger(__name__)

ChatStreamEvent = Union[ContentChunk, ToolInvocation]

MULTIMODAL = ["text", "image"]


def default_pipeline(client: AsyncLLMClient) -> MiddlewarePipeline:
    """The pipeline used when the caller does not supply one."""
    settings = client.settings
    return (
        MiddlewarePipeline(client)
        .use(RequestLoggingMiddleware())
        .use(DefaultOptionsMiddleware(
            extra_params=dict(settings.extra_params),
            tool_choice=settings.tool_choice,
        ))
    )


def _first_message(body: dict[str, Any]) -> dict[str, Any]:
    try:
        message = body["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as e:
        raise ApiError(
            ApiErrorKind.INVALID_BODY, "Invalid response structure: missing choices[0].message",
        ) from e
    if not isinstance(message, dict):
        raise ApiError(ApiErrorKind.INVALID_BODY, "Invalid response structure: message is not an object")
    return message


def _invocation(tc: ToolCall) -> ToolInvocation:
    return ToolInvocation(tool_call_id=tc.id, name=tc.name, arguments=tc.arguments)


class Orchestrator:
    """Runs one prompt through the model, executing tool calls as requested.

    Parameters
    ----------
    client:
        Transport for chat-completions requests.
    settings:
        Model options; defaults to ``client.settings``.
    tools:
        Static tool definitions advertised to the model.
    executor:
        Handler for tool calls.  Required whenever the model asks for one.
    gateway:
        Optional MCP gateway; when set, its tools are discovered per call
        and replace *tools*.
    pipeline:
        Middleware pipeline around the client (optional).
    concurrent_tools:
        Run the tool calls of one turn concurrently instead of in order.
    """

    def __init__(
        self,
        client: AsyncLLMClient,
        settings: LLMSettings | None = None,
        tools: list[ToolDefinition] | None = None,
        executor: ToolExecutor | None = None,
        gateway: MCPGateway | None = None,
        pipeline: MiddlewarePipeline | None = None,
        concurrent_tools: bool = False,
    ) -> None:
        self._client = client
        self.settings = settings or client.settings
        self._tools = list(tools or [])
        self._executor = executor
        self._gateway = gateway
        self._pipeline = pipeline or default_pipeline(client)
        self._concurrent_tools = concurrent_tools

    # ------------------------------------------------------------------
    # Blocking
    # ------------------------------------------------------------------

    async def call_blocking(
        self,
        prompt: str,
        system: str | None = None,
        history: list[dict[str, Any]] | None = None,
        images: list[str] | str | None = None,
    ) -> str:
        """Run the loop to completion and return the final answer text."""
        conversation = Conversation(prompt, system=system, history=history, images=images)
        toolset = await self.resolve_tools()
        reasoner = Reasoner(max_iterations=self.settings.max_tool_iterations)

        while True:
            iteration = reasoner.begin_turn()
            _logger.debug("Blocking turn %d", iteration)
            body = await self._pipeline.execute(self.build_request(conversation, toolset))
            message = _first_message(body)
            conversation.append(message)

            decision = reasoner.decide(message)
            if decision.action == ActionType.RESPOND:
                return decision.response_text

            runner = self.tool_runner(toolset)
            for result in await runner.execute(decision.tool_calls):
                conversation.append(result.to_message())

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def call_streaming(
        self,
        prompt: str,
        system: str | None = None,
        history: list[dict[str, Any]] | None = None,
        images: list[str] | str | None = None,
        cancel: CancelToken | None = None,
    ) -> ChatStream:
        """Start a streaming call.

        Argument validation happens here; no request is sent until the
        returned stream is iterated.
        """
        conversation = Conversation(prompt, system=system, history=history, images=images)
        return ChatStream(self, conversation, cancel or CancelToken())

    # ------------------------------------------------------------------
    # Shared pieces
    # ------------------------------------------------------------------

    async def resolve_tools(self) -> Toolset:
        return await resolve_toolset(self._tools, self._executor, self._gateway)

    def tool_runner(self, toolset: Toolset) -> ToolCallExecutor:
        return ToolCallExecutor(toolset.executor, concurrent=self._concurrent_tools)

    def build_request(self, conversation: Conversation, toolset: Toolset) -> LLMRequest:
        return LLMRequest(
            messages=conversation.messages,
            model=self.settings.model,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            tools=toolset.openai_schemas() or None,
            modalities=list(MULTIMODAL) if conversation.has_images else None,
        )

    @property
    def pipeline(self) -> MiddlewarePipeline:
        return self._pipeline


class ChatStream:
    """Async iterator over one streaming call.

    Yields ``ContentChunk`` for every non-empty text fragment (in arrival
    order, across all turns) and a ``ToolInvocation`` before each tool call
    is dispatched.  After exhaustion ``content`` holds the final answer.

    Usage::

        stream = orchestrator.call_streaming("Hi")
        async for event in stream:
            ...
        answer = stream.content
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        conversation: Conversation,
        cancel: CancelToken,
    ) -> None:
        self._orchestrator = orchestrator
        self._conversation = conversation
        self._cancel = cancel
        self._events: AsyncIterator[ChatStreamEvent] | None = None
        self.content = ""
        self.done = False

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> ChatStreamEvent:
        if self._events is None:
            self._events = self._run()
        return await self._events.__anext__()

    def cancel(self) -> None:
        """Abort the stream at the next received chunk."""
        self._cancel.cancel()

    async def aclose(self) -> None:
        if self._events is not None:
            await self._events.aclose()

    @property
    def messages(self) -> list[dict[str, Any]]:
        return self._conversation.messages

    async def collect(self, on_chunk: Callable[[str], Any] | None = None) -> str:
        """Drain the stream, passing each text fragment to *on_chunk*.

        *on_chunk* may be a plain function or a coroutine function.
        """
        async for event in self:
            if isinstance(event, ContentChunk) and on_chunk is not None:
                ret = on_chunk(event.text)
                if inspect.isawaitable(ret):
                    await ret
        return self.content

    async def _run(self) -> AsyncIterator[ChatStreamEvent]:
        orch = self._orchestrator
        conversation = self._conversation
        toolset = await orch.resolve_tools()
        reasoner = Reasoner(max_iterations=orch.settings.max_tool_iterations)

        while True:
            iteration = reasoner.begin_turn()
            if self._cancel.cancelled:
                raise StreamCancelled("Stream cancelled")
            _logger.debug("Streaming turn %d", iteration)

            accumulator = ToolCallAccumulator()
            parts: list[str] = []
            events = await orch.pipeline.open_stream(
                orch.build_request(conversation, toolset), cancel=self._cancel,
            )
            async with aclosing(events):
                async for event in events:
                    if self._cancel.cancelled:
                        raise StreamCancelled("Stream cancelled")
                    if isinstance(event, ContentChunk):
                        if event.text:
                            parts.append(event.text)
                            yield event
                    elif isinstance(event, ToolCallDeltas):
                        accumulator.feed(event.deltas)

            message: dict[str, Any] = {"role": "assistant"}
            text = "".join(parts)
            if text:
                message["content"] = text
            tool_calls = accumulator.finalize()
            if tool_calls:
                message["tool_calls"] = [tc.to_message_dict() for tc in tool_calls]
            conversation.append(message)

            decision = reasoner.decide(message, allow_empty=True)
            if decision.action == ActionType.RESPOND:
                self.content = decision.response_text
                self.done = True
                return

            runner = orch.tool_runner(toolset)
            runner.require_executor()
            if runner.concurrent:
                for tc in decision.tool_calls:
                    yield _invocation(tc)
                results = await runner.execute(decision.tool_calls)
            else:
                results = []
                for tc in decision.tool_calls:
                    yield _invocation(tc)
                    results.append(await runner.run_one(tc))
            for result in results:
                conversation.append(result.to_message())
