"""
Quiz sources: where an attempt gets its questions and sends its answers.

The controller only talks to a QuizSource, so academic and event quizzes
share one attempt flow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List

from quiztaker.config import settings
from quiztaker.logger import setup_logger
from quiztaker.models import AnswerEntry, Question, Quiz, SubmissionResult
from quiztaker.session.store import QuizSession, SessionStore
from quiztaker.utils.exceptions import (
    ApiError,
    AuthError,
    LoadError,
    NotFoundError,
    QuizAlreadyAttemptedError,
    QuizDeletedError,
    SubmissionError,
    ValidationError,
)
from quiztaker.utils.helpers import parse_timestamp

logger = setup_logger(__name__)

ALREADY_ATTEMPTED = "Quiz already attempted"


@dataclass
class LoadedAttempt:
    quiz: Quiz
    questions: List[Question]
    time_remaining: float | None = None  # seconds, as reported by the server
    started_at: float | None = None  # epoch seconds, as recorded by the server


def with_question_ids(questions: List[Question]) -> List[Question]:
    """Give id-less questions their zero-based position as id."""
    return [
        q if q.id is not None else q.model_copy(update={"id": str(index)})
        for index, q in enumerate(questions)
    ]


class QuizSource(ABC):
    kind: str = ""

    def __init__(self, api, quiz_id: str) -> None:
        self.api = api
        self.quiz_id = quiz_id

    @abstractmethod
    async def load(self) -> LoadedAttempt:
        """Fetch quiz and questions. Raises LoadError or a SessionError."""

    @abstractmethod
    async def submit(
        self, answers: List[AnswerEntry], time_taken: int, emergency: bool = False
    ) -> SubmissionResult:
        """Send answers once. Raises SubmissionError or ValidationError."""

    @abstractmethod
    async def check_alive(self) -> None:
        """Raise QuizDeletedError if the quiz no longer exists."""

    @property
    @abstractmethod
    def exit_path(self) -> str:
        """Where the taker goes after a fatal error."""


class AcademicQuizSource(QuizSource):
    """Authenticated student quizzes: fetch, resume or start, submit."""

    kind = "academic"

    @property
    def exit_path(self) -> str:
        return settings.dashboard_path

    @property
    def review_path(self) -> str:
        return f"/quizzes/{self.quiz_id}/review"

    async def load(self) -> LoadedAttempt:
        try:
            quiz = await self.api.get_quiz(self.quiz_id)
        except AuthError:
            raise
        except ApiError as e:
            raise LoadError(f"Failed to load quiz: {e}") from e
        if not quiz.title:
            raise LoadError("Invalid quiz data received")
        if not quiz.questions:
            raise LoadError("No questions available for this quiz")

        record = await self._existing_attempt()
        if record is not None:
            if record.status != "started":
                logger.info(f"↩️  Quiz {self.quiz_id} already completed, redirecting to review")
                raise QuizAlreadyAttemptedError(ALREADY_ATTEMPTED, redirect=self.review_path)
            logger.info(f"▶️  Resuming attempt for quiz {self.quiz_id}")
        else:
            record = await self._start_attempt()

        return LoadedAttempt(
            quiz=quiz,
            questions=with_question_ids(quiz.questions),
            started_at=parse_timestamp(record.start_time),
        )

    async def _existing_attempt(self):
        try:
            return await self.api.get_submission(self.quiz_id)
        except NotFoundError:
            return None
        except AuthError:
            raise
        except ApiError as e:
            raise LoadError(f"Failed to check existing attempt: {e}") from e

    async def _start_attempt(self):
        logger.info(f"🆕 Starting new attempt for quiz {self.quiz_id}")
        try:
            return await self.api.start_quiz(self.quiz_id)
        except AuthError:
            raise
        except ApiError as e:
            if e.status_code == 400 and str(e) == ALREADY_ATTEMPTED:
                raise QuizAlreadyAttemptedError(
                    ALREADY_ATTEMPTED, redirect=self.review_path
                ) from e
            raise LoadError(f"Failed to start quiz: {e}") from e

    async def submit(
        self, answers: List[AnswerEntry], time_taken: int, emergency: bool = False
    ) -> SubmissionResult:
        payload = [entry.model_dump(by_alias=True) for entry in answers]
        try:
            return await self.api.submit_quiz(self.quiz_id, payload)
        except ApiError as e:
            raise SubmissionError(str(e) or "Failed to submit quiz") from e

    async def check_alive(self) -> None:
        try:
            await self.api.get_quiz(self.quiz_id)
        except NotFoundError as e:
            raise QuizDeletedError("This quiz has been deleted.") from e
        except ApiError as e:
            logger.warning(f"⚠️  Quiz status check failed: {e}")


class EventQuizSource(QuizSource):
    """
    Public event quizzes.

    Access is through a per-quiz session token obtained at login. Answers
    are submitted by question position, with the participant's email.
    """

    kind = "event"

    def __init__(
        self,
        api,
        quiz_id: str,
        store: SessionStore,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        super().__init__(api, quiz_id)
        self.store = store
        self.username = username
        self.password = password
        self._index_of: Dict[str, int] = {}

    @property
    def exit_path(self) -> str:
        return settings.events_path

    @property
    def session(self) -> QuizSession | None:
        return self.store.read_on_resume(self.quiz_id)

    async def login(self, username: str, password: str) -> QuizSession:
        try:
            response = await self.api.login_event_quiz(self.quiz_id, username, password)
        except AuthError:
            raise
        except ApiError as e:
            raise LoadError(f"Login failed: {e}") from e
        if response.has_attempted_quiz:
            raise QuizAlreadyAttemptedError(
                "You have already attempted this quiz", redirect=self.exit_path
            )
        logger.info(f"🔑 Logged in to event quiz {self.quiz_id}")
        return self.store.create_on_login(
            self.quiz_id, response.session_token, response.participant
        )

    async def load(self) -> LoadedAttempt:
        session = self.session
        if session is None or not session.session_token:
            if not (self.username and self.password):
                raise LoadError("No quiz session found. Please log in again.")
            session = await self.login(self.username, self.password)

        try:
            question_set = await self.api.get_event_questions(
                self.quiz_id, session.session_token
            )
        except NotFoundError as e:
            raise QuizDeletedError("This quiz has been deleted.") from e
        except AuthError:
            raise
        except ApiError as e:
            raise LoadError(f"Failed to load questions: {e}") from e

        if not question_set.questions:
            raise LoadError("No questions available for this quiz")

        questions = with_question_ids(question_set.questions)
        self._index_of = {q.id: index for index, q in enumerate(questions)}
        quiz = question_set.quiz or Quiz(id=self.quiz_id)
        quiz = quiz.model_copy(update={"type": "event", "questions": questions})

        time_remaining = None
        if question_set.time_remaining is not None:
            time_remaining = question_set.time_remaining / 1000.0
        return LoadedAttempt(quiz=quiz, questions=questions, time_remaining=time_remaining)

    async def submit(
        self, answers: List[AnswerEntry], time_taken: int, emergency: bool = False
    ) -> SubmissionResult:
        session = self.session
        participant = session.participant if session else None
        email = participant.email if participant else None
        if not email:
            raise ValidationError("Participant email not found. Please log in again.")
        emergency = emergency or participant.is_emergency_login

        payload = [
            {"questionIndex": self._index_of[entry.question_id], "selectedOption": entry.selected_option}
            for entry in answers
        ]
        try:
            return await self.api.submit_event_quiz(
                self.quiz_id, email, payload, time_taken, is_emergency_submission=emergency
            )
        except ApiError as e:
            raise SubmissionError(str(e) or "Failed to submit quiz") from e

    async def check_alive(self) -> None:
        try:
            await self.api.get_event_status(self.quiz_id)
        except NotFoundError as e:
            raise QuizDeletedError(
                str(e) or "Quiz has been deleted by the event manager"
            ) from e
        except ApiError as e:
            logger.warning(f"⚠️  Quiz status check failed: {e}")


def make_source(
    api,
    store: SessionStore,
    quiz_type: str,
    quiz_id: str,
    username: str | None = None,
    password: str | None = None,
) -> QuizSource:
    """Pick the source for a quiz type ("academic" or "event")."""
    if quiz_type == "event":
        return EventQuizSource(api, quiz_id, store, username, password)
    if quiz_type == "academic":
        return AcademicQuizSource(api, quiz_id)
    raise ValidationError(f"Unknown quiz type: {quiz_type}")
