"""Generation dispatch loop: model ladder, rate-limit backoff and tool rounds."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage
from langchain_core.tools import BaseTool

from chat_agent.agent.prompt import build_contents
from chat_agent.agent.provider import GenerationClient, GenerationRequest, GenerationResponse
from chat_agent.agent.rate_limit import RateLimitWindow
from chat_agent.agent.registry import ToolRegistry
from chat_agent.config import DispatchConfig
from chat_agent.errors import (
    ModelNotFoundError,
    ProviderUnavailableError,
    RateLimitedError,
    RateLimitExceededError,
)
from chat_agent.memory.session import SessionHistory
from chat_agent.types import ToolResult, Turn

logger = logging.getLogger(__name__)

FALLBACK_REPLY = (
    "I'm sorry, I wasn't able to put together an answer to that. "
    "Could you try rephrasing your question?"
)

Sleep = Callable[[float], Awaitable[None]]


class DispatchPhase(str, Enum):
    DRAFTING = "drafting"
    CALLING = "calling"
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    TOOL_ROUND = "tool_round"
    DONE = "done"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class DispatchState:
    """Per-request state; never shared between requests."""

    contents: list[BaseMessage]
    phase: DispatchPhase = DispatchPhase.DRAFTING
    round: int = 0
    model_index: int = 0
    resolved: dict[str, ToolResult] = field(default_factory=dict)
    rate_limit_hits: dict[str, int] = field(default_factory=dict)
    last_tool_results: list[ToolResult] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    attempts: list[str] = field(default_factory=list)

    def begin_round(self, number: int) -> None:
        self.round = number
        self.resolved = {}
        self.rate_limit_hits = {}
        self.last_tool_results = []


@dataclass(slots=True)
class DispatchResult:
    reply: str
    phase: DispatchPhase
    model: str | None
    rounds: int
    tool_results: list[ToolResult]
    attempts: list[str]


class GenerationDispatcher:
    """Turns one user turn into provider calls until a final answer exists.

    Per round the dispatcher walks the model ladder:
    - model not found: advance to the next model, same contents.
    - rate limited: the first hit for a model in a round waits the provider
      hint (or the default), capped at `max_retry_delay_seconds`, then retries
      the same model. The second hit advances to the next model. Each real
      hit extends the shared `RateLimitWindow`; while that window is active
      calls are not sent and count as hits.
    - text without tool calls: done, the exchange is recorded to history.
    - tool calls: duplicates are collapsed, tools run through the registry,
      the results are appended as tool messages and another round starts.

    When the ladder runs out the dispatcher raises `RateLimitedError` or
    `ProviderUnavailableError` after the last observed condition, carrying
    the tool results of earlier rounds. When the round budget runs out the
    last round's tool outputs (or a fixed apology) become the reply, which
    is also recorded.
    """

    def __init__(
        self,
        client: GenerationClient,
        registry: ToolRegistry,
        history: SessionHistory,
        rate_window: RateLimitWindow,
        config: DispatchConfig | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.registry = registry
        self.history = history
        self.rate_window = rate_window
        self.config = config or DispatchConfig()
        self._sleep = sleep

    async def dispatch(
        self,
        session_id: str,
        message: str,
        *,
        history: Sequence[Turn] = (),
        context_chunks: Sequence[str] = (),
        tool_outputs: Sequence[str] = (),
    ) -> DispatchResult:
        state = DispatchState(
            contents=build_contents(
                message,
                history=history,
                context_chunks=context_chunks,
                tool_outputs=tool_outputs,
            )
        )
        tools = self.registry.as_langchain_tools()

        for number in range(1, self.config.max_rounds + 1):
            state.begin_round(number)
            response = await self._call_ladder(state, tools)

            if not response.tool_calls:
                state.phase = DispatchPhase.DONE
                reply = response.text or FALLBACK_REPLY
                return self._finish(session_id, message, reply, state, response.model)

            state.phase = DispatchPhase.TOOL_ROUND
            results = await self.registry.dispatch_round(response.tool_calls, state.resolved)
            logger.info(
                "Round %d: %d tool calls, %d results",
                number,
                len(response.tool_calls),
                len(results),
            )
            self._fold_tool_results(state, response, results)
            state.last_tool_results = results
            state.tool_results.extend(results)

        state.phase = DispatchPhase.EXHAUSTED
        outputs = [result.output for result in state.last_tool_results if not result.cached]
        reply = "\n\n".join(outputs) if outputs else FALLBACK_REPLY
        logger.info("Round budget of %d exhausted", self.config.max_rounds)
        model = state.attempts[-1] if state.attempts else None
        return self._finish(session_id, message, reply, state, model)

    async def _call_ladder(
        self, state: DispatchState, tools: Sequence[BaseTool]
    ) -> GenerationResponse:
        models = self.config.models
        while state.model_index < len(models):
            model = models[state.model_index]
            state.phase = DispatchPhase.CALLING
            try:
                if self.rate_window.is_active():
                    raise RateLimitExceededError(
                        "Shared cooldown active",
                        retry_delay=self.rate_window.remaining(),
                        synthetic=True,
                    )
                state.attempts.append(model)
                return await self.client.generate(
                    GenerationRequest(
                        model=model,
                        contents=list(state.contents),
                        tools=tools,
                        temperature=self.config.temperature,
                        max_output_tokens=self.config.max_output_tokens,
                    )
                )
            except ModelNotFoundError:
                logger.warning("Model %s not found; trying next model", model)
                state.phase = DispatchPhase.MODEL_UNAVAILABLE
                state.model_index += 1
            except RateLimitExceededError as exc:
                state.phase = DispatchPhase.RATE_LIMITED
                delay = self._retry_delay(exc)
                if not exc.synthetic:
                    self.rate_window.extend(delay)
                hits = state.rate_limit_hits.get(model, 0) + 1
                state.rate_limit_hits[model] = hits
                if hits == 1:
                    logger.warning("Model %s rate limited; retrying in %.1fs", model, delay)
                    await self._sleep(delay)
                else:
                    logger.warning("Model %s still rate limited; trying next model", model)
                    state.model_index += 1

        if state.phase is DispatchPhase.RATE_LIMITED:
            raise RateLimitedError(
                "All models are rate limited", tool_results=state.tool_results
            )
        raise ProviderUnavailableError(
            "No configured model is available", tool_results=state.tool_results
        )

    def _retry_delay(self, exc: RateLimitExceededError) -> float:
        hint = exc.retry_delay
        delay = self.config.default_retry_delay_seconds if hint is None else hint
        return min(max(0.0, delay), self.config.max_retry_delay_seconds)

    @staticmethod
    def _fold_tool_results(
        state: DispatchState,
        response: GenerationResponse,
        results: Sequence[ToolResult],
    ) -> None:
        if not results:
            return
        requested: list[dict[str, Any]] = []
        answers: list[BaseMessage] = []
        for index, result in enumerate(results):
            call_id = result.call.call_id or f"call_{state.round}_{index}"
            requested.append(
                {
                    "name": result.call.name,
                    "args": result.call.arguments,
                    "id": call_id,
                    "type": "tool_call",
                }
            )
            answers.append(
                ToolMessage(content=result.output, tool_call_id=call_id, name=result.call.name)
            )
        state.contents.append(AIMessage(content=response.text, tool_calls=requested))
        state.contents.extend(answers)

    def _finish(
        self,
        session_id: str,
        message: str,
        reply: str,
        state: DispatchState,
        model: str | None,
    ) -> DispatchResult:
        self.history.append_exchange(session_id, message, reply)
        return DispatchResult(
            reply=reply,
            phase=state.phase,
            model=model,
            rounds=state.round,
            tool_results=list(state.tool_results),
            attempts=list(state.attempts),
        )
