"""Exception hierarchy for the cardlink LLM client and jobs."""

from __future__ import annotations

import enum


class LLMError(Exception):
    """Base class for every error raised by the LLM client stack."""


class ConfigurationError(LLMError):
    """Credentials or endpoint configuration is missing."""


class LLMTimeoutError(LLMError, TimeoutError):
    """Connect or read timeout talking to the chat-completions endpoint."""


class ApiErrorKind(enum.Enum):
    """Sub-kinds of :class:`ApiError`."""

    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    GENERIC = "generic"
    INVALID_BODY = "invalid_body"


class ApiError(LLMError):
    """Non-200 status or malformed body from the upstream API."""

    def __init__(
        self,
        kind: ApiErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in (ApiErrorKind.RATE_LIMITED, ApiErrorKind.SERVER_ERROR)

    @classmethod
    def from_status(cls, status_code: int, body: str = "") -> ApiError:
        """Map an HTTP status to the matching error kind."""
        if status_code == 429:
            return cls(ApiErrorKind.RATE_LIMITED, "Rate limit exceeded", status_code)
        if 500 <= status_code <= 599:
            return cls(
                ApiErrorKind.SERVER_ERROR, f"Server error: {status_code}", status_code,
            )
        return cls(
            ApiErrorKind.GENERIC, f"API error: {status_code} - {body}", status_code,
        )

    def __repr__(self) -> str:
        return f"ApiError({self.kind.value}, {str(self)!r})"


class ToolExecutionError(LLMError):
    """No tool executor is configured, or a remote execution call failed."""


class IterationLimitError(LLMError):
    """The model kept requesting tools past ``max_tool_iterations``."""


class EmptyResponseError(LLMError):
    """The conversation finished without any answer text."""


class StreamCancelled(LLMError):
    """A streaming call was aborted through its cancel token."""
