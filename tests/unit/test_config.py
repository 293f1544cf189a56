import pytest
from pydantic import ValidationError

from chat_agent.config import DEFAULT_MODEL_LADDER, load_settings


def test_load_settings_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHAT_MODELS", "model-a, model-b")
    monkeypatch.setenv("MAX_ROUNDS", "3")
    monkeypatch.setenv("REQUEST_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("DEBUG", "true")

    settings = load_settings()

    assert settings.dispatch.models == ["model-a", "model-b"]
    assert settings.dispatch.max_rounds == 3
    assert settings.agent.request_timeout_seconds == 12.5
    assert settings.agent.expose_errors is True


def test_load_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("CHAT_MODELS", "MAX_ROUNDS", "REQUEST_TIMEOUT_SECONDS", "DEBUG"):
        monkeypatch.setenv(name, "")

    settings = load_settings()

    assert settings.dispatch.models == DEFAULT_MODEL_LADDER
    assert settings.dispatch.max_rounds == 2
    assert settings.agent.request_timeout_seconds == 25.0
    assert settings.agent.expose_errors is False


@pytest.mark.parametrize(
    ("name", "value"),
    [("MAX_ROUNDS", "0"), ("REQUEST_TIMEOUT_SECONDS", "0"), ("REQUEST_TIMEOUT_SECONDS", "-5")],
)
def test_out_of_range_environment_values_are_rejected(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        load_settings()
