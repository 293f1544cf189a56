"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from chat_agent.errors import ToolExecutionError
from chat_agent.types import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[Any], Awaitable[str]]
    tags: list[str] = Field(default_factory=list)

    async def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return await self.handler(data)

    def declaration(self) -> dict[str, Any]:
        """Function-calling declaration: name, description and JSON schema."""

        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.args_schema.model_json_schema(),
        }


class ToolRegistry:
    """Stores tool specs, executes them safely and collapses duplicate calls.

    Execution never raises for tool-side problems: invalid arguments, handler
    errors and timeouts are turned into a readable failure string so the
    caller always has a result to hand back to the model.
    """

    def __init__(self, *, timeout_seconds: float = 8.0) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self.timeout_seconds = timeout_seconds

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def declarations(self) -> list[dict[str, Any]]:
        return [spec.declaration() for spec in self._tools.values()]

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    coroutine=self._build_coroutine(spec),
                )
            )
        return tools

    async def execute(self, name: str, payload: dict[str, Any]) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        output, _, _ = await self._execute_spec(spec, payload)
        return output

    async def dispatch(self, call: ToolCall) -> ToolResult | None:
        """Run one call; unknown tool names are skipped and yield `None`."""

        spec = self._tools.get(call.name)
        if spec is None:
            logger.warning("Skipping call to unknown tool %r", call.name)
            return None
        output, ok, latency_ms = await self._execute_spec(spec, call.arguments)
        return ToolResult(call=call, output=output, ok=ok, latency_ms=latency_ms)

    async def dispatch_round(
        self,
        calls: Sequence[ToolCall],
        resolved: dict[str, ToolResult] | None = None,
    ) -> list[ToolResult]:
        """Run the calls of one round, executing each dedup key at most once.

        `resolved` maps dedup keys already executed in this round to their
        results; it is updated in place. Distinct calls run concurrently.
        The returned list follows the order of `calls`, skips unknown tools and
        gives every later duplicate the first result marked as `cached`.
        """

        cache = resolved if resolved is not None else {}
        pending: dict[str, ToolCall] = {}
        for call in calls:
            key = call.dedup_key
            if key in cache or key in pending:
                continue
            if call.name not in self._tools:
                logger.warning("Skipping call to unknown tool %r", call.name)
                continue
            pending[key] = call

        fresh = await asyncio.gather(*(self.dispatch(call) for call in pending.values()))
        fresh_keys: set[str] = set()
        for key, result in zip(pending, fresh, strict=True):
            if result is not None:
                cache[key] = result
                fresh_keys.add(key)

        results: list[ToolResult] = []
        delivered: set[str] = set()
        for call in calls:
            key = call.dedup_key
            first = cache.get(key)
            if first is None:
                continue
            if key in fresh_keys and key not in delivered:
                delivered.add(key)
                results.append(first)
                continue
            results.append(
                ToolResult(call=call, output=first.output, ok=first.ok, cached=True)
            )
        return results

    def _build_coroutine(self, spec: ToolSpec) -> Callable[..., Awaitable[str]]:
        async def _callable(**kwargs: Any) -> str:
            output, _, _ = await self._execute_spec(spec, kwargs)
            return output

        return _callable

    async def _execute_spec(
        self, spec: ToolSpec, payload: dict[str, Any]
    ) -> tuple[str, bool, float]:
        start = perf_counter()
        ok = False
        try:
            output = await asyncio.wait_for(spec.invoke(payload), timeout=self.timeout_seconds)
            ok = True
        except ValidationError as exc:
            fields = ", ".join(
                ".".join(str(part) for part in error["loc"]) or "input" for error in exc.errors()
            )
            output = f"The {spec.name} tool received invalid arguments ({fields})."
        except asyncio.TimeoutError:
            logger.warning("Tool %s timed out after %.1fs", spec.name, self.timeout_seconds)
            output = f"The {spec.name} tool took too long to respond."
        except ToolExecutionError as exc:
            output = str(exc)
        except Exception:
            logger.exception("Tool %s failed", spec.name)
            output = f"The {spec.name} tool failed to complete the request."
        latency_ms = (perf_counter() - start) * 1000.0
        return output, ok, latency_ms
