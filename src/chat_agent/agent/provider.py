"""Generation provider contract and the LangChain chat-model adapter."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool

from chat_agent.config import Settings
from chat_agent.errors import (
    GenerationError,
    MalformedResponseError,
    ModelNotFoundError,
    RateLimitExceededError,
)
from chat_agent.types import ToolCall

logger = logging.getLogger(__name__)

_RETRY_DELAY_PATTERNS = (
    re.compile(r"retry[_ ]?delay['\"]?\s*[:=]\s*['\"]?(\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
    re.compile(r"retry (?:in|after) (\d+(?:\.\d+)?)\s*(?:s\b|sec|second)", re.IGNORECASE),
)
_RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate_limit",
    "resource_exhausted",
    "quota",
    "too many requests",
)


@dataclass(slots=True)
class GenerationRequest:
    """One provider call: model id, prompt contents, tools and options."""

    model: str
    contents: Sequence[BaseMessage]
    tools: Sequence[BaseTool] = ()
    temperature: float = 0.7
    max_output_tokens: int = 1024


@dataclass(slots=True)
class GenerationResponse:
    """Provider output: final text and/or tool invocation requests."""

    model: str
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    message: AIMessage | None = None


class GenerationClient(Protocol):
    """Calls a hosted model.

    Implementations raise `ModelNotFoundError`, `RateLimitExceededError` or
    `GenerationError` so the dispatcher can tell failure modes apart.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        ...


ChatModelFactory = Callable[[str, float, int], BaseChatModel]


class LangChainGenerationClient:
    """Adapts LangChain chat models to `GenerationClient`.

    One chat model is created per (model id, temperature, max tokens) through
    `model_factory` and reused for the process lifetime. Provider exceptions
    are classified by their HTTP status and message.
    """

    def __init__(self, model_factory: ChatModelFactory) -> None:
        self._model_factory = model_factory
        self._models: dict[tuple[str, float, int], BaseChatModel] = {}

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        model = self._model_for(request)
        runnable: Any = model.bind_tools(list(request.tools)) if request.tools else model
        try:
            message = await runnable.ainvoke(list(request.contents))
        except Exception as exc:
            raise classify_provider_error(exc, request.model) from exc
        return parse_ai_message(message, request.model)

    def _model_for(self, request: GenerationRequest) -> BaseChatModel:
        key = (request.model, request.temperature, request.max_output_tokens)
        model = self._models.get(key)
        if model is None:
            model = self._model_factory(*key)
            self._models[key] = model
        return model


def parse_ai_message(message: Any, model: str) -> GenerationResponse:
    """Normalize a LangChain `AIMessage` into a `GenerationResponse`."""

    if not isinstance(message, AIMessage):
        raise MalformedResponseError(
            f"Expected AIMessage from {model}, got {type(message).__name__}"
        )

    calls: list[ToolCall] = []
    for raw in message.tool_calls:
        name = raw.get("name")
        if not name:
            continue
        args = raw.get("args") or {}
        if not isinstance(args, dict):
            args = {"input": args}
        calls.append(ToolCall(name=str(name), arguments=dict(args), call_id=raw.get("id")))

    invalid = getattr(message, "invalid_tool_calls", None) or []
    if invalid:
        logger.warning("Ignoring %d unparseable tool calls from %s", len(invalid), model)

    text = _message_text(message.content)
    if not text and not calls and invalid:
        raise MalformedResponseError(f"{model} returned only unparseable tool calls")
    return GenerationResponse(model=model, text=text, tool_calls=calls, message=message)


def classify_provider_error(exc: BaseException, model: str) -> GenerationError:
    """Map a provider SDK exception onto the dispatcher's failure modes."""

    if isinstance(exc, GenerationError):
        return exc
    status = _status_of(exc)
    lowered = str(exc).lower()
    if status == 404 or (status is None and "not found" in lowered and "model" in lowered):
        return ModelNotFoundError(model, f"Model {model} is not available: {type(exc).__name__}")
    if status == 429 or (status is None and any(m in lowered for m in _RATE_LIMIT_MARKERS)):
        return RateLimitExceededError(
            f"Model {model} is rate limited", retry_delay=parse_retry_delay(exc)
        )
    return GenerationError(f"Generation failed on {model}: {type(exc).__name__}", status=status)


def parse_retry_delay(exc: BaseException) -> float | None:
    """Read a retry hint in seconds from an exception, if it carries one.

    Checks, in order: a `retry_after` attribute, a `Retry-After` response
    header, then `retryDelay: "12s"` / "retry in 12.5s" style text.
    """

    retry_after = getattr(exc, "retry_after", None)
    if isinstance(retry_after, (int, float)):
        return float(retry_after)

    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        try:
            header = headers.get("retry-after")
        except AttributeError:
            header = None
        if header is not None:
            try:
                return float(header)
            except (TypeError, ValueError):
                pass

    text = str(exc)
    for pattern in _RETRY_DELAY_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1))
    return None


def create_generation_client(settings: Settings) -> GenerationClient:
    """OpenAI chat models when a key is configured, else the offline client."""

    if not settings.openai_api_key:
        from chat_agent.agent.fallback import ExtractiveGenerationClient

        logger.warning("OPENAI_API_KEY not set; using offline extractive generation")
        return ExtractiveGenerationClient()

    from langchain_openai import ChatOpenAI

    api_key = settings.openai_api_key

    def _factory(model: str, temperature: float, max_tokens: int) -> BaseChatModel:
        # The dispatcher owns retries and fallback.
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            max_retries=0,
        )

    return LangChainGenerationClient(_factory)


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type", "text") == "text" and "text" in item:
                    parts.append(str(item["text"]))
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts).strip()
    return str(content or "").strip()
