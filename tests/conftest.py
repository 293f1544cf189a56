from __future__ import annotations

from collections.abc import Callable

import pytest

from chat_agent.agent.provider import GenerationRequest, GenerationResponse
from chat_agent.types import ToolCall


class FakeClock:
    """Monotonic clock whose `sleep` advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedClient:
    """Generation client replaying a per-model script.

    Script items: an exception instance is raised, a list of `ToolCall` is
    returned as tool invocation requests, a string is returned as final text.
    """

    def __init__(self, script: dict[str, list[object]]) -> None:
        self.script = {model: list(items) for model, items in script.items()}
        self.requests: list[GenerationRequest] = []

    @property
    def models_called(self) -> list[str]:
        return [request.model for request in self.requests]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        queue = self.script.get(request.model)
        if not queue:
            raise AssertionError(f"unexpected call to {request.model}")
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, list):
            calls = [call for call in item if isinstance(call, ToolCall)]
            return GenerationResponse(model=request.model, tool_calls=calls)
        return GenerationResponse(model=request.model, text=str(item))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted_client() -> Callable[[dict[str, list[object]]], ScriptedClient]:
    return ScriptedClient
