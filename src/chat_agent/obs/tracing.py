"""Per-turn tracing and aggregate request metrics."""

from __future__ import annotations

import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from chat_agent.types import ToolResult, ToolTrace


@dataclass(slots=True)
class TraceRecord:
    trace_id: str
    timestamp_utc: str
    session_id: str
    message: str
    reply: str
    outcome: str
    model: str | None
    rounds: int
    attempts: list[str]
    context_chunks: int
    tool_traces: list[ToolTrace]
    latency_ms: float


def trace_tool_result(result: ToolResult) -> ToolTrace:
    return ToolTrace(
        name=result.call.name,
        input_payload=dict(result.call.arguments),
        output_preview=result.output[:320],
        latency_ms=result.latency_ms,
        ok=result.ok,
    )


class TraceStore:
    """In-memory trace storage for API-level observability.

    Keeps the most recent `max_records` turns; older records are dropped.
    """

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: dict[str, TraceRecord] = {}
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        session_id: str,
        message: str,
        reply: str,
        outcome: str,
        latency_ms: float,
        model: str | None = None,
        rounds: int = 0,
        attempts: list[str] | None = None,
        context_chunks: int = 0,
        tool_results: list[ToolResult] | None = None,
    ) -> TraceRecord:
        record = TraceRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            message=message,
            reply=reply,
            outcome=outcome,
            model=model,
            rounds=rounds,
            attempts=list(attempts or []),
            context_chunks=context_chunks,
            tool_traces=[trace_tool_result(result) for result in tool_results or []],
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                self._records.pop(next(iter(self._records)))
        return record

    def get(self, trace_id: str) -> TraceRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TraceRecord]:
        if limit <= 0:
            return []
        with self._lock:
            return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, object]:
        """Aggregate request metrics for dashboard display."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "outcomes": {},
                "total_tool_calls": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_requests": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "outcomes": dict(Counter(record.outcome for record in records)),
            "total_tool_calls": sum(len(record.tool_traces) for record in records),
        }


class Timer:
    """Simple context timer used around each turn."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
