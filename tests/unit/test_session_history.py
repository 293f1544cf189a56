from chat_agent.memory.session import SessionHistory
from chat_agent.types import Turn


def test_recent_unknown_session_is_empty() -> None:
    history = SessionHistory()

    assert history.recent("nobody", 4) == []
    assert "nobody" not in history


def test_recent_returns_last_turns_in_arrival_order() -> None:
    history = SessionHistory()
    for index in range(3):
        history.append_exchange("s1", f"question {index}", f"answer {index}")

    recent = history.recent("s1", 4)

    assert recent == [
        Turn(role="user", text="question 1"),
        Turn(role="model", text="answer 1"),
        Turn(role="user", text="question 2"),
        Turn(role="model", text="answer 2"),
    ]


def test_recent_with_fewer_turns_than_requested() -> None:
    history = SessionHistory()
    history.append("s1", Turn(role="user", text="hello"))

    assert history.recent("s1", 4) == [Turn(role="user", text="hello")]
    assert history.recent("s1", 0) == []


def test_sessions_are_isolated() -> None:
    history = SessionHistory()
    history.append_exchange("a", "hi from a", "reply to a")
    history.append_exchange("b", "hi from b", "reply to b")

    assert [turn.text for turn in history.get("a")] == ["hi from a", "reply to a"]
    assert history.session_count() == 2


def test_returned_turns_are_a_copy() -> None:
    history = SessionHistory()
    history.append_exchange("s1", "q", "a")

    snapshot = history.get("s1")
    snapshot.clear()

    assert len(history.get("s1")) == 2
