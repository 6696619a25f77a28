"""
Session store: auth token plus the quiz-session record.

Backed by a JSON file so a restarted host can resume a running attempt.
Pass `path=None` for an in-memory store.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Dict

from pydantic import BaseModel, Field

from quiztaker.logger import setup_logger
from quiztaker.models import ParticipantInfo
from quiztaker.utils.helpers import token_preview

logger = setup_logger(__name__)


class QuizSession(BaseModel):
    """Per-quiz session state kept across reloads."""

    quiz_id: str
    session_token: str | None = None
    participant: ParticipantInfo | None = None
    login_time: float = Field(default_factory=time.time)
    attempt_started_at: float | None = None
    attempt_duration: float | None = None  # seconds


class SessionStore:
    """Explicit holder for the auth token and quiz sessions."""

    def __init__(self, path: str | None = None) -> None:
        self.path = Path(path) if path else None
        self._token: str | None = None
        self._sessions: Dict[str, QuizSession] = {}
        self._load()

    # ------------------------------------------------------------------
    # Auth token
    # ------------------------------------------------------------------
    @property
    def token(self) -> str | None:
        return self._token

    def set_token(self, token: str | None) -> None:
        self._token = token
        if token:
            logger.info(f"🔐 Auth token stored ({token_preview(token)})")
        self._save()

    def clear_token(self) -> None:
        if self._token is not None:
            logger.warning("🔐 Auth token cleared")
        self._token = None
        self._save()

    # ------------------------------------------------------------------
    # Quiz sessions
    # ------------------------------------------------------------------
    def create_on_login(
        self,
        quiz_id: str,
        session_token: str | None = None,
        participant: ParticipantInfo | None = None,
    ) -> QuizSession:
        """Start a fresh session for a quiz, replacing any previous one."""
        session = QuizSession(
            quiz_id=quiz_id, session_token=session_token, participant=participant
        )
        self._sessions[quiz_id] = session
        self._save()
        logger.info(f"🗂️  Session created for quiz {quiz_id}")
        return session

    def read_on_resume(self, quiz_id: str) -> QuizSession | None:
        return self._sessions.get(quiz_id)

    def record_attempt_start(
        self, quiz_id: str, started_at: float, duration: float
    ) -> QuizSession:
        """Persist the attempt start so a reload can rebuild the countdown."""
        session = self._sessions.get(quiz_id) or QuizSession(quiz_id=quiz_id)
        session.attempt_started_at = started_at
        session.attempt_duration = duration
        self._sessions[quiz_id] = session
        self._save()
        return session

    def finish_attempt(self, quiz_id: str) -> None:
        """Forget the attempt timing once the attempt has ended."""
        session = self._sessions.get(quiz_id)
        if session is None:
            return
        session.attempt_started_at = None
        session.attempt_duration = None
        self._save()

    def destroy_on_logout(self, quiz_id: str | None = None) -> None:
        """Drop one quiz session, or everything including the token."""
        if quiz_id is not None:
            self._sessions.pop(quiz_id, None)
        else:
            self._sessions.clear()
            self._token = None
        self._save()
        logger.info(f"🗂️  Session destroyed ({quiz_id or 'all'})")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"⚠️  Ignoring unreadable session file {self.path}: {e}")
            return
        self._token = data.get("token")
        self._sessions = {
            quiz_id: QuizSession.model_validate(raw)
            for quiz_id, raw in (data.get("sessions") or {}).items()
        }
        logger.debug(f"Loaded {len(self._sessions)} session(s) from {self.path}")

    def _save(self) -> None:
        if self.path is None:
            return
        payload: Dict[str, Any] = {
            "token": self._token,
            "sessions": {
                quiz_id: session.model_dump(mode="json")
                for quiz_id, session in self._sessions.items()
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
