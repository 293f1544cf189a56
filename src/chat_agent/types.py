"""Shared domain models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "model"]


@dataclass(slots=True, frozen=True)
class Turn:
    """One message in a session's conversation log."""

    role: Role
    text: str


@dataclass(slots=True)
class ParsedDocument:
    """A parsed source document before chunking."""

    doc_id: str
    text: str
    metadata: dict[str, Any]


@dataclass(slots=True, frozen=True)
class Chunk:
    """An embedded paragraph of a source document."""

    chunk_id: str
    source: str
    text: str
    embedding: tuple[float, ...]


@dataclass(slots=True)
class ScoredChunk:
    """A retrieval result with its cosine score."""

    chunk: Chunk
    score: float
    rank: int = 0


@dataclass(slots=True)
class ToolCall:
    """A request to run a named tool with keyword arguments."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None

    @property
    def dedup_key(self) -> str:
        canonical = json.dumps(
            self.arguments, sort_keys=True, separators=(",", ":"), default=str
        )
        return f"{self.name}:{canonical}"


@dataclass(slots=True)
class ToolResult:
    """Output of one tool call; `cached` marks a result shared with an earlier duplicate."""

    call: ToolCall
    output: str
    ok: bool = True
    cached: bool = False
    latency_ms: float = 0.0


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    ok: bool = True
