"""Prompt assembly: system policy, history, retrieved context and the user turn."""

from __future__ import annotations

from collections.abc import Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from chat_agent.types import Turn

SYSTEM_PROMPT = """
You are a helpful AI assistant.

Rules:
1) Use the tool results and relevant information below when they answer the question.
2) Call `math_evaluator` for arithmetic and `get_weather` for weather questions.
3) If the information is missing, say so instead of guessing.
4) Keep answers short and conversational.
""".strip()

TOOL_RESULTS_HEADER = "Tool results:"
CONTEXT_HEADER = "Relevant information:"


def build_system_instruction(
    context_chunks: Sequence[str] = (),
    tool_outputs: Sequence[str] = (),
) -> str:
    sections = [SYSTEM_PROMPT]
    if tool_outputs:
        sections.append(_section(TOOL_RESULTS_HEADER, tool_outputs))
    if context_chunks:
        sections.append(_section(CONTEXT_HEADER, context_chunks))
    return "\n\n".join(sections)


def build_contents(
    message: str,
    *,
    history: Sequence[Turn] = (),
    context_chunks: Sequence[str] = (),
    tool_outputs: Sequence[str] = (),
) -> list[BaseMessage]:
    """Assemble the ordered prompt contents for the first round."""

    contents: list[BaseMessage] = [
        SystemMessage(content=build_system_instruction(context_chunks, tool_outputs))
    ]
    for turn in history:
        if turn.role == "user":
            contents.append(HumanMessage(content=turn.text))
        else:
            contents.append(AIMessage(content=turn.text))
    contents.append(HumanMessage(content=message))
    return contents


def extract_sections(system_text: str) -> dict[str, list[str]]:
    """Invert `build_system_instruction`: header -> list of entries."""

    sections: dict[str, list[str]] = {TOOL_RESULTS_HEADER: [], CONTEXT_HEADER: []}
    current: list[str] | None = None
    for line in system_text.splitlines():
        stripped = line.strip()
        if stripped in sections:
            current = sections[stripped]
            continue
        if current is None:
            continue
        if line.startswith("- "):
            current.append(line[2:])
        elif line.startswith("  ") and current:
            current[-1] = f"{current[-1]}\n{line[2:]}"
        elif not stripped:
            continue
        else:
            current = None
    return sections


def _section(header: str, entries: Sequence[str]) -> str:
    lines = [header]
    for entry in entries:
        first, *rest = entry.strip().splitlines() or [""]
        lines.append(f"- {first}")
        lines.extend(f"  {line}" for line in rest)
    return "\n".join(lines)
