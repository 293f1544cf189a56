"""Deterministic generation client used when no hosted model is configured."""

from __future__ import annotations

from langchain_core.messages import AIMessage, SystemMessage, ToolMessage

from chat_agent.agent.prompt import CONTEXT_HEADER, TOOL_RESULTS_HEADER, extract_sections
from chat_agent.agent.provider import GenerationRequest, GenerationResponse

NO_CONTEXT_REPLY = (
    "I don't have a language model configured right now, and I couldn't find "
    "anything in the indexed documents about that."
)


class ExtractiveGenerationClient:
    """Answers from the evidence already present in the prompt.

    This keeps the `GenerationClient` contract for local/offline environments
    where `OPENAI_API_KEY` is not configured. It never requests tools: tool
    messages from earlier rounds, intent-stage tool results and retrieved
    context are quoted back in that order of preference.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        tool_messages = [
            str(message.content)
            for message in request.contents
            if isinstance(message, ToolMessage)
        ]
        system_text = "\n".join(
            str(message.content)
            for message in request.contents
            if isinstance(message, SystemMessage)
        )
        sections = extract_sections(system_text)
        answer = _build_answer(
            tool_messages or sections[TOOL_RESULTS_HEADER],
            sections[CONTEXT_HEADER],
        )
        return GenerationResponse(
            model=request.model,
            text=answer,
            message=AIMessage(content=answer),
        )


def _build_answer(tool_outputs: list[str], snippets: list[str]) -> str:
    if tool_outputs:
        return "\n\n".join(tool_outputs)
    if not snippets:
        return NO_CONTEXT_REPLY

    lines = ["Here is what I found in the documents:"]
    for idx, snippet in enumerate(snippets[:3], start=1):
        lines.append(f"{idx}. {snippet}")
    return "\n".join(lines)
