"""Configuration models for the chat agent."""

from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_MODEL_LADDER = ["gpt-4o-mini", "gpt-4.1-mini", "gpt-3.5-turbo"]


class IndexConfig(BaseModel):
    """Configures paragraph chunking, embedding retries and similarity search."""

    min_chunk_chars: int = Field(default=20, ge=1)
    top_k: int = Field(default=2, ge=1)
    min_score: float | None = Field(default=0.1, ge=-1.0, le=1.0)
    embed_timeout_seconds: float = Field(default=10.0, gt=0.0)
    embed_max_attempts: int = Field(default=3, ge=1)
    embed_backoff_seconds: float = Field(default=0.5, ge=0.0)
    embed_backoff_max_seconds: float = Field(default=4.0, ge=0.0)


class HistoryConfig(BaseModel):
    """Configures how much conversation history is replayed to the model."""

    window: int = Field(default=4, ge=0)


class DispatchConfig(BaseModel):
    """Configures the model fallback ladder, rate-limit backoff and round budget."""

    models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODEL_LADDER), min_length=1)
    max_rounds: int = Field(default=2, ge=1)
    default_retry_delay_seconds: float = Field(default=2.0, ge=0.0)
    max_retry_delay_seconds: float = Field(default=7.0, ge=0.0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1024, ge=1)


class ToolConfig(BaseModel):
    """Configures tool execution timeouts and weather caching."""

    tool_timeout_seconds: float = Field(default=8.0, gt=0.0)
    weather_http_timeout_seconds: float = Field(default=6.0, gt=0.0)
    weather_cache_ttl_seconds: float = Field(default=300.0, ge=0.0)
    weather_timeout_cache_ttl_seconds: float = Field(default=30.0, ge=0.0)
    weather_error_cache_ttl_seconds: float = Field(default=60.0, ge=0.0)
    weather_cache_max_entries: int = Field(default=512, ge=1)
    weather_default_location: str = "London"


class AgentConfig(BaseModel):
    """Configures the outer request budget and user-visible error detail."""

    request_timeout_seconds: float = Field(default=25.0, gt=0.0)
    expose_errors: bool = False


class Settings(BaseModel):
    """Runtime configuration assembled from environment variables."""

    openai_api_key: str | None = None
    weather_api_key: str | None = None
    content_dir: str = "content"
    embedding_model: str = "text-embedding-3-small"
    debug: bool = False

    index: IndexConfig = Field(default_factory=IndexConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    tools: ToolConfig = Field(default_factory=ToolConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)


def load_settings() -> Settings:
    """Build `Settings` from the current environment.

    `.env` is loaded first without overriding variables that are already set.
    Nothing is cached, so callers observe environment changes between calls.
    """

    load_dotenv(override=False)

    debug = _env_flag("DEBUG")
    models_raw = os.getenv("CHAT_MODELS") or ""
    models = [part.strip() for part in models_raw.split(",") if part.strip()]

    dispatch_fields: dict[str, Any] = {}
    if models:
        dispatch_fields["models"] = models
    if os.getenv("MAX_ROUNDS"):
        dispatch_fields["max_rounds"] = int(os.environ["MAX_ROUNDS"])

    agent_fields: dict[str, Any] = {"expose_errors": debug}
    if os.getenv("REQUEST_TIMEOUT_SECONDS"):
        agent_fields["request_timeout_seconds"] = float(os.environ["REQUEST_TIMEOUT_SECONDS"])

    dispatch = DispatchConfig(**dispatch_fields)
    agent = AgentConfig(**agent_fields)

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        weather_api_key=os.getenv("WEATHER_API_KEY") or None,
        content_dir=os.getenv("CONTENT_DIR") or "content",
        embedding_model=os.getenv("EMBEDDING_MODEL") or "text-embedding-3-small",
        debug=debug,
        dispatch=dispatch,
        agent=agent,
    )


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in {"1", "true", "yes", "on"}
