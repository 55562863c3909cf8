"""LLM transport, stream decoding and middleware for cardlink."""

from cardlink.llm.client import AsyncLLMClient, CancelToken
from cardlink.llm.middleware import (
    DefaultOptionsMiddleware,
    LLMRequest,
    Middleware,
    MiddlewarePipeline,
    RequestLoggingMiddleware,
)
from cardlink.llm.sse import SSEDecoder, decode_stream

__all__ = [
    "AsyncLLMClient",
    "CancelToken",
    "DefaultOptionsMiddleware",
    "LLMRequest",
    "Middleware",
    "MiddlewarePipeline",
    "RequestLoggingMiddleware",
    "SSEDecoder",
    "decode_stream",
]
