"""In-memory, append-only conversation history keyed by session id."""

from __future__ import annotations

import logging
import threading

from chat_agent.types import Turn

logger = logging.getLogger(__name__)


class SessionHistory:
    """Per-session ordered turn log.

    Sessions are created on first append and live for the process lifetime.
    Each append is atomic; there is no deletion or truncation.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, list[Turn]] = {}
        self._lock = threading.Lock()

    def append(self, session_id: str, turn: Turn) -> None:
        with self._lock:
            self._sessions.setdefault(session_id, []).append(turn)
        logger.debug(
            "Appended %s turn to session %s (%d chars)", turn.role, session_id[:16], len(turn.text)
        )

    def append_exchange(self, session_id: str, user_text: str, model_text: str) -> None:
        """Append a user turn and its reply as one atomic step."""

        with self._lock:
            log = self._sessions.setdefault(session_id, [])
            log.append(Turn(role="user", text=user_text))
            log.append(Turn(role="model", text=model_text))

    def recent(self, session_id: str, k: int) -> list[Turn]:
        """Return the last `k` turns in arrival order; empty for unknown sessions."""

        if k <= 0:
            return []
        with self._lock:
            log = self._sessions.get(session_id)
            return list(log[-k:]) if log else []

    def get(self, session_id: str) -> list[Turn]:
        with self._lock:
            return list(self._sessions.get(session_id, ()))

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)
