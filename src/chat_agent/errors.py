"""Error taxonomy for generation, tools, embeddings and request budgets."""

from __future__ import annotations

from collections.abc import Sequence

from chat_agent.types import ToolResult


class ChatAgentError(Exception):
    """Base class for all errors raised by the chat agent."""


class GenerationError(ChatAgentError):
    """The generation provider failed in a way no fallback can repair."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ModelNotFoundError(GenerationError):
    """The model identifier is not served by the endpoint."""

    def __init__(self, model: str, message: str | None = None) -> None:
        super().__init__(message or f"Model not found: {model}", status=404)
        self.model = model


class RateLimitExceededError(GenerationError):
    """The provider rejected the call because of rate limiting or quota."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_delay: float | None = None,
        synthetic: bool = False,
    ) -> None:
        super().__init__(message, status=429)
        self.retry_delay = retry_delay
        self.synthetic = synthetic


class MalformedResponseError(GenerationError):
    """The provider response could not be interpreted."""


class LadderExhaustedError(ChatAgentError):
    """No model on the fallback ladder produced a response.

    `tool_results` holds the tool results gathered in earlier rounds of the
    same request so callers can still answer from them.
    """

    def __init__(self, message: str, *, tool_results: Sequence[ToolResult] = ()) -> None:
        super().__init__(message)
        self.tool_results = list(tool_results)


class ProviderUnavailableError(LadderExhaustedError):
    """Every model on the fallback ladder was unavailable."""


class RateLimitedError(LadderExhaustedError):
    """Every model on the fallback ladder stayed rate limited after backoff."""


class ToolExecutionError(ChatAgentError):
    """A tool handler failed; converted to a result string by the registry."""


class EmbeddingUnavailableError(ChatAgentError):
    """The embedding provider failed after all retries."""


class RequestTimeoutError(ChatAgentError):
    """The outer request budget was exceeded."""
