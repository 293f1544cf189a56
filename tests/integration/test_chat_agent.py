import asyncio
from pathlib import Path

from chat_agent.agent.chat import (
    ERROR_REPLY,
    TIMEOUT_REPLY,
    UNAVAILABLE_REPLY,
    ChatAgent,
    create_agent,
)
from chat_agent.agent.provider import GenerationRequest, GenerationResponse
from chat_agent.agent.tools import WeatherService
from chat_agent.config import AgentConfig, DispatchConfig, Settings
from chat_agent.errors import GenerationError, ModelNotFoundError, RateLimitExceededError
from chat_agent.ingest.embedder import HashingEmbedder
from chat_agent.types import ToolCall

STORE_HOURS = "Our store opens at nine in the morning and closes at six in the evening."


class SlowClient:
    def __init__(self, delay: float) -> None:
        self.delay = delay

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        await asyncio.sleep(self.delay)
        return GenerationResponse(model=request.model, text="finally done")


def _agent(tmp_path: Path, client, *, with_docs: bool = True, **overrides) -> ChatAgent:
    if with_docs:
        (tmp_path / "hours.md").write_text(f"# Hours\n\n{STORE_HOURS}\n", encoding="utf-8")
    settings = Settings(
        content_dir=str(tmp_path),
        dispatch=DispatchConfig(
            models=["model-a"], default_retry_delay_seconds=0.0, max_retry_delay_seconds=0.0
        ),
        **overrides,
    )
    return create_agent(
        settings,
        client=client,
        embedder=HashingEmbedder(dimension=4096),
        weather=WeatherService(None),
    )


def _run(agent: ChatAgent, *messages: str, session_id: str = "s1") -> list[str]:
    async def _go() -> list[str]:
        await agent.index.build()
        return [await agent.process_message(session_id, message) for message in messages]

    return asyncio.run(_go())


def test_reply_uses_retrieved_context_and_is_recorded(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": ["We open at nine."]})
    agent = _agent(tmp_path, client)

    (reply,) = _run(agent, "When does the store open in the morning?")

    assert reply == "We open at nine."
    assert STORE_HOURS in client.requests[0].contents[0].content
    assert [turn.text for turn in agent.history.get("s1")] == [
        "When does the store open in the morning?",
        "We open at nine.",
    ]
    (trace,) = agent.trace_store.list_recent()
    assert trace.outcome == "done"
    assert trace.context_chunks == 1
    assert trace.model == "model-a"


def test_math_intent_result_is_in_the_prompt(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": ["It is 48."]})
    agent = _agent(tmp_path, client, with_docs=False)

    (reply,) = _run(agent, "What is 12 * 4?")

    assert reply == "It is 48."
    assert 'The result of "12 * 4" is 48' in client.requests[0].contents[0].content
    (trace,) = agent.trace_store.list_recent()
    assert [tool.name for tool in trace.tool_traces] == ["math_evaluator"]


def test_previous_turns_are_replayed(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": ["Hi Sam.", "Your name is Sam."]})
    agent = _agent(tmp_path, client, with_docs=False)

    _run(agent, "My name is Sam.", "What is my name?")

    replayed = [message.content for message in client.requests[1].contents[1:]]
    assert replayed == ["My name is Sam.", "Hi Sam.", "What is my name?"]


def test_rate_limited_turn_falls_back_to_tool_results(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": [RateLimitExceededError(), RateLimitExceededError()]})
    agent = _agent(tmp_path, client, with_docs=False)

    (reply,) = _run(agent, "What is 12 * 4?")

    assert reply == 'I looked that up for you: The result of "12 * 4" is 48'
    assert "s1" not in agent.history
    assert agent.trace_store.list_recent()[0].outcome == "rate_limited"


def test_rate_limited_turn_without_evidence_echoes_message(
    tmp_path: Path, scripted_client
) -> None:
    client = scripted_client({"model-a": [RateLimitExceededError(), RateLimitExceededError()]})
    agent = _agent(tmp_path, client, with_docs=False)

    (reply,) = _run(agent, "Tell me a joke")

    assert reply.startswith("I'm currently experiencing high usage.")
    assert 'Your message was: "Tell me a joke"' in reply


def test_unavailable_models_fall_back_to_context(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": [ModelNotFoundError("model-a")]})
    agent = _agent(tmp_path, client)

    (reply,) = _run(agent, "When does the store open in the morning?")

    assert reply == f"Based on the available information: {STORE_HOURS}"


def test_unavailable_models_without_context(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": [ModelNotFoundError("model-a")]})
    agent = _agent(tmp_path, client, with_docs=False)

    assert _run(agent, "Hello there") == [UNAVAILABLE_REPLY]


def test_unexpected_failure_becomes_error_reply(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": [GenerationError("bad request", status=400)]})
    agent = _agent(tmp_path, client, with_docs=False)

    assert _run(agent, "Hello there") == [ERROR_REPLY]
    assert agent.trace_store.list_recent()[0].outcome == "error"


def test_error_detail_is_exposed_in_debug_mode(tmp_path: Path, scripted_client) -> None:
    client = scripted_client({"model-a": [GenerationError("bad request", status=400)]})
    agent = _agent(tmp_path, client, with_docs=False, agent=AgentConfig(expose_errors=True))

    (reply,) = _run(agent, "Hello there")

    assert reply.startswith(ERROR_REPLY)
    assert "GenerationError: bad request" in reply


def test_timeout_returns_fixed_reply_and_work_completes(tmp_path: Path) -> None:
    agent = _agent(
        tmp_path,
        SlowClient(delay=0.3),
        with_docs=False,
        agent=AgentConfig(request_timeout_seconds=0.05),
    )

    async def _go() -> tuple[str, list[str]]:
        reply = await agent.process_message("s1", "Hello there")
        await asyncio.sleep(0.5)
        return reply, [turn.text for turn in agent.history.get("s1")]

    reply, recorded = asyncio.run(_go())

    assert reply == TIMEOUT_REPLY
    assert recorded == ["Hello there", "finally done"]
    assert agent.trace_store.list_recent()[0].outcome == "timeout"


def test_rate_limited_second_round_answers_from_first_round_tools(
    tmp_path: Path, scripted_client
) -> None:
    client = scripted_client(
        {
            "model-a": [
                [ToolCall("math_evaluator", {"expression": "6 * 7"})],
                RateLimitExceededError(),
                RateLimitExceededError(),
            ]
        }
    )
    agent = _agent(tmp_path, client, with_docs=False)

    (reply,) = _run(agent, "Tell me the answer to everything")

    assert reply == 'I looked that up for you: The result of "6 * 7" is 42'
    (trace,) = agent.trace_store.list_recent()
    assert trace.outcome == "rate_limited"
    assert [tool.name for tool in trace.tool_traces] == ["math_evaluator"]
