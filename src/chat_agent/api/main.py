"""FastAPI entrypoint for chat, health, trace and metrics endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from chat_agent.agent.chat import ChatAgent, create_agent
from chat_agent.config import load_settings

logger = logging.getLogger(__name__)


class MessageRequest(BaseModel):
    session_id: str = Field(min_length=1)
    message: str = Field(min_length=1)

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must be a non-empty string")
        return value


class MessageResponse(BaseModel):
    reply: str
    session_id: str
    processing_time_ms: int


def create_app(agent: ChatAgent | None = None) -> FastAPI:
    """Build the HTTP app around one `ChatAgent` shared by all requests."""

    chat_agent = agent or create_agent(load_settings())

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await chat_agent.index.build()
        logger.info("Similarity index ready with %d chunks", len(chat_agent.index))
        yield

    app = FastAPI(title="Chat Agent", version="0.1.0", lifespan=lifespan)
    app.state.agent = chat_agent

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
        return JSONResponse(
            status_code=400,
            content={"error": f"{field or 'body'} is required and must be a non-empty string"},
        )

    @app.get("/")
    def health() -> dict[str, Any]:
        return {
            "message": "Chat agent is running",
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "index_ready": chat_agent.index.ready,
            "indexed_chunks": len(chat_agent.index),
            "endpoints": {"health": "GET /", "chat": "POST /agent/message"},
        }

    @app.post("/agent/message", response_model=MessageResponse)
    async def message(request: MessageRequest) -> MessageResponse:
        logger.info(
            "Processing message for session %s: %r", request.session_id[:16], request.message[:100]
        )
        start = perf_counter()
        reply = await chat_agent.process_message(request.session_id, request.message)
        duration_ms = int((perf_counter() - start) * 1000)
        return MessageResponse(
            reply=reply, session_id=request.session_id, processing_time_ms=duration_ms
        )

    @app.get("/traces")
    def traces(limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in chat_agent.trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str) -> dict[str, Any]:
        try:
            record = chat_agent.trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics() -> dict[str, Any]:
        return chat_agent.trace_store.summary()

    return app


app = create_app()
