"""Keyword intent detection that triggers tools before generation."""

from __future__ import annotations

import logging
import re

from chat_agent.agent.tools import MATH_TOOL, WEATHER_TOOL
from chat_agent.types import ToolCall

logger = logging.getLogger(__name__)

_MATH_KEYWORDS = ("calculate", "math", "compute")
_WEATHER_KEYWORDS = ("weather", "temperature", "forecast")

_EXPRESSION_RUN = re.compile(r"[\d.\s+\-*/()^√%×÷]+")
_OPERATOR = re.compile(r"[+\-*/^√%×÷]")
_LOCATION = re.compile(r"\b(?:in|for|at)\s+([a-zA-Z][a-zA-Z\s,.'-]*)", re.IGNORECASE)
_TRAILING_TIME = re.compile(
    r"\s+(?:right now|now|today|tonight|tomorrow|this week|this weekend)\s*$", re.IGNORECASE
)


class IntentDetector:
    """Maps a user message to tool calls using cheap lexical rules.

    Math intent needs an arithmetic run with at least one digit, plus either an
    operator or an explicit keyword such as "calculate". Weather intent needs a
    weather keyword; the location follows "in", "for" or "at" and falls back to
    `default_location`.
    """

    def __init__(self, default_location: str = "London") -> None:
        self.default_location = default_location

    def detect(self, message: str) -> list[ToolCall]:
        calls: list[ToolCall] = []
        expression = self.extract_expression(message)
        if expression is not None:
            logger.info("Detected math intent: %r", expression)
            calls.append(ToolCall(name=MATH_TOOL, arguments={"expression": expression}))

        lowered = message.lower()
        if any(keyword in lowered for keyword in _WEATHER_KEYWORDS):
            location = self.extract_location(message)
            logger.info("Detected weather intent: %r", location)
            calls.append(ToolCall(name=WEATHER_TOOL, arguments={"location": location}))
        return calls

    def extract_expression(self, message: str) -> str | None:
        lowered = message.lower()
        keyword = any(word in lowered for word in _MATH_KEYWORDS)
        best: str | None = None
        for match in _EXPRESSION_RUN.finditer(message):
            run = match.group(0).strip()
            if not any(char.isdigit() for char in run):
                continue
            if not (_OPERATOR.search(run) or keyword):
                continue
            if best is None or len(run) > len(best):
                best = run
        return best

    def extract_location(self, message: str) -> str:
        match = _LOCATION.search(message)
        if match is None:
            return self.default_location
        location = match.group(1).strip().rstrip("?.!,")
        location = _TRAILING_TIME.sub("", location).strip().rstrip("?.!,")
        return location or self.default_location
