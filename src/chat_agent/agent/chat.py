"""Inbound turn handling: context gathering, dispatch, budget and degradation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from chat_agent.agent.dispatcher import DispatchResult, GenerationDispatcher
from chat_agent.agent.intent import IntentDetector
from chat_agent.agent.provider import GenerationClient, create_generation_client
from chat_agent.agent.rate_limit import RateLimitWindow
from chat_agent.agent.registry import ToolRegistry
from chat_agent.agent.tools import WeatherService, register_builtin_tools
from chat_agent.config import AgentConfig, HistoryConfig, Settings
from chat_agent.errors import (
    LadderExhaustedError,
    ProviderUnavailableError,
    RateLimitedError,
    RequestTimeoutError,
)
from chat_agent.ingest.embedder import Embedder, RetryingEmbedder, create_embedder
from chat_agent.ingest.parser import ParserRegistry
from chat_agent.memory.session import SessionHistory
from chat_agent.obs.tracing import Timer, TraceStore
from chat_agent.retrieval.vector_store import SimilarityIndex
from chat_agent.types import ToolResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_REPLY = "I'm taking too long to respond right now. Please try again in a moment."
ERROR_REPLY = (
    "I'm experiencing technical difficulties right now. Please try again in a few minutes."
)
HIGH_USAGE_REPLY = (
    "I'm currently experiencing high usage. Please try again in a few minutes. "
    'Your message was: "{message}"'
)
UNAVAILABLE_REPLY = (
    "I can't reach the language model right now. Please try again in a few minutes."
)


@dataclass(slots=True)
class _TurnOutcome:
    reply: str
    outcome: str
    context_chunks: list[str] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    dispatch: DispatchResult | None = None


class ChatAgent:
    """Entry point for one chat turn: `process_message(session_id, message)`.

    The turn gathers recent history, retrieval context and intent-triggered
    tool results, then hands everything to the dispatcher. The whole turn runs
    under `request_timeout_seconds`; on expiry the caller gets a fixed reply
    while the abandoned work finishes in the background. Every failure is
    turned into a reply string, so this method never raises.
    """

    def __init__(
        self,
        *,
        dispatcher: GenerationDispatcher,
        index: SimilarityIndex,
        history: SessionHistory,
        registry: ToolRegistry,
        intent_detector: IntentDetector | None = None,
        trace_store: TraceStore | None = None,
        history_config: HistoryConfig | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.index = index
        self.history = history
        self.registry = registry
        self.intent_detector = intent_detector or IntentDetector()
        self.trace_store = trace_store or TraceStore()
        self.history_config = history_config or HistoryConfig()
        self.config = config or AgentConfig()
        self._background: set[asyncio.Future[Any]] = set()

    async def process_message(self, session_id: str, message: str) -> str:
        with Timer() as timer:
            try:
                turn = await self._within_budget(self._respond(session_id, message))
            except RequestTimeoutError:
                logger.warning(
                    "Request for session %s exceeded %.1fs",
                    session_id[:16],
                    self.config.request_timeout_seconds,
                )
                turn = _TurnOutcome(reply=TIMEOUT_REPLY, outcome="timeout")
            except Exception as exc:
                logger.exception("Failed to process message for session %s", session_id[:16])
                turn = _TurnOutcome(reply=self._error_reply(exc), outcome="error")

        dispatch = turn.dispatch
        self.trace_store.create_record(
            session_id=session_id,
            message=message,
            reply=turn.reply,
            outcome=turn.outcome,
            latency_ms=timer.elapsed_ms,
            model=dispatch.model if dispatch else None,
            rounds=dispatch.rounds if dispatch else 0,
            attempts=dispatch.attempts if dispatch else None,
            context_chunks=len(turn.context_chunks),
            tool_results=turn.tool_results + (dispatch.tool_results if dispatch else []),
        )
        return turn.reply

    async def _respond(self, session_id: str, message: str) -> _TurnOutcome:
        recent = self.history.recent(session_id, self.history_config.window)
        calls = self.intent_detector.detect(message)
        context_chunks, preflight = await asyncio.gather(
            self.index.query(message),
            self.registry.dispatch_round(calls),
        )
        tool_outputs = [result.output for result in preflight if not result.cached]

        try:
            result = await self.dispatcher.dispatch(
                session_id,
                message,
                history=recent,
                context_chunks=context_chunks,
                tool_outputs=tool_outputs,
            )
        except RateLimitedError as exc:
            return _TurnOutcome(
                reply=_degraded_reply(
                    _evidence(tool_outputs, exc),
                    context_chunks,
                    HIGH_USAGE_REPLY.format(message=message),
                ),
                outcome="rate_limited",
                context_chunks=context_chunks,
                tool_results=preflight + exc.tool_results,
            )
        except ProviderUnavailableError as exc:
            return _TurnOutcome(
                reply=_degraded_reply(
                    _evidence(tool_outputs, exc), context_chunks, UNAVAILABLE_REPLY
                ),
                outcome="model_unavailable",
                context_chunks=context_chunks,
                tool_results=preflight + exc.tool_results,
            )

        return _TurnOutcome(
            reply=result.reply,
            outcome=result.phase.value,
            context_chunks=context_chunks,
            tool_results=preflight,
            dispatch=result,
        )

    async def _within_budget(self, work: Awaitable[T]) -> T:
        task = asyncio.ensure_future(work)
        done, _ = await asyncio.wait({task}, timeout=self.config.request_timeout_seconds)
        if task in done:
            return task.result()
        # Not cancelled: in-flight provider and tool calls run to completion.
        self._background.add(task)
        task.add_done_callback(self._reap)
        raise RequestTimeoutError("request budget exceeded")

    def _reap(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Abandoned turn finished with error: %r", task.exception())

    def _error_reply(self, exc: Exception) -> str:
        if self.config.expose_errors:
            return f"{ERROR_REPLY} (error: {type(exc).__name__}: {exc})"
        return ERROR_REPLY


def _evidence(tool_outputs: list[str], exc: LadderExhaustedError) -> list[str]:
    return tool_outputs + [result.output for result in exc.tool_results if not result.cached]


def _degraded_reply(tool_outputs: list[str], context_chunks: list[str], default: str) -> str:
    if tool_outputs:
        return "I looked that up for you: " + "\n\n".join(tool_outputs)
    if context_chunks:
        snippet = context_chunks[0]
        if len(snippet) > 200:
            snippet = snippet[:200] + "..."
        return f"Based on the available information: {snippet}"
    return default


def create_agent(
    settings: Settings,
    *,
    client: GenerationClient | None = None,
    embedder: Embedder | None = None,
    weather: WeatherService | None = None,
    rate_window: RateLimitWindow | None = None,
) -> ChatAgent:
    """Wire every component once, at process start."""

    parsers = ParserRegistry()
    index = SimilarityIndex(
        RetryingEmbedder(embedder or create_embedder(settings), settings.index),
        config=settings.index,
        document_loader=lambda: parsers.parse_directory(settings.content_dir),
    )

    registry = ToolRegistry(timeout_seconds=settings.tools.tool_timeout_seconds)
    register_builtin_tools(
        registry,
        weather=weather or WeatherService(settings.weather_api_key, settings.tools),
    )

    history = SessionHistory()
    dispatcher = GenerationDispatcher(
        client or create_generation_client(settings),
        registry,
        history,
        rate_window or RateLimitWindow(),
        settings.dispatch,
    )
    return ChatAgent(
        dispatcher=dispatcher,
        index=index,
        history=history,
        registry=registry,
        intent_detector=IntentDetector(settings.tools.weather_default_location),
        history_config=settings.history,
        config=settings.agent,
    )
