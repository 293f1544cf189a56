import pytest

from chat_agent.agent.intent import IntentDetector
from chat_agent.agent.tools import MATH_TOOL, WEATHER_TOOL


@pytest.mark.parametrize(
    ("message", "expression"),
    [
        ("What is 2 + 2?", "2 + 2"),
        ("calculate 15 * 7 please", "15 * 7"),
        ("Can you work out (3 + 4) * 2 for me", "(3 + 4) * 2"),
        ("compute 144", "144"),
    ],
)
def test_math_intent_extracts_expression(message: str, expression: str) -> None:
    calls = IntentDetector().detect(message)

    assert [call.name for call in calls] == [MATH_TOOL]
    assert calls[0].arguments == {"expression": expression}


def test_plain_numbers_are_not_math() -> None:
    assert IntentDetector().detect("I have 3 cats and 2 dogs") == []


@pytest.mark.parametrize(
    ("message", "location"),
    [
        ("What's the weather in Paris today?", "Paris"),
        ("temperature for New York right now", "New York"),
        ("Weather at San Francisco, CA", "San Francisco, CA"),
        ("what's the forecast", "London"),
    ],
)
def test_weather_intent_extracts_location(message: str, location: str) -> None:
    calls = IntentDetector().detect(message)

    assert [call.name for call in calls] == [WEATHER_TOOL]
    assert calls[0].arguments == {"location": location}


def test_default_location_is_configurable() -> None:
    calls = IntentDetector(default_location="Tokyo").detect("how is the weather?")

    assert calls[0].arguments == {"location": "Tokyo"}


def test_both_intents_in_one_message() -> None:
    calls = IntentDetector().detect("What is 5 * 5 and the weather in Rome?")

    assert [call.name for call in calls] == [MATH_TOOL, WEATHER_TOOL]
    assert calls[0].arguments == {"expression": "5 * 5"}
    assert calls[1].arguments == {"location": "Rome"}
