"""
Attempt session controller.

Drives one quiz attempt through loading -> in_progress -> submitting ->
submitted, with error (load or submission failure) and terminated (fatal
exit) on the side. Hosts call its methods for user actions and render
`snapshot()`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Tuple

from quiztaker.attempt.answers import AnswerTracker
from quiztaker.attempt.scheduler import Job, Scheduler
from quiztaker.attempt.sources import LoadedAttempt, QuizSource
from quiztaker.attempt.timer import CountdownTimer
from quiztaker.config import settings
from quiztaker.lockdown.monitor import LockdownMonitor
from quiztaker.logger import setup_logger
from quiztaker.models import Question, Quiz, SubmissionResult
from quiztaker.session.store import SessionStore
from quiztaker.utils.exceptions import (
    ApiError,
    InvalidStateError,
    LoadError,
    QuizAttemptError,
    QuizDeletedError,
    SessionError,
    SessionTerminatedError,
    SubmissionError,
    ValidationError,
)

logger = setup_logger(__name__)

MonitorFactory = Callable[..., LockdownMonitor]


class AttemptState(str, Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    ERROR = "error"
    TERMINATED = "terminated"


class ErrorKind(str, Enum):
    LOAD = "load"
    SUBMISSION = "submission"


@dataclass(frozen=True)
class SubmitConfirmation:
    answered: int
    total: int

    @property
    def unanswered(self) -> int:
        return self.total - self.answered


class AttemptController:
    """
    One attempt of one quiz.

    Every timer (countdown, liveness poll, lockdown jobs) runs on the
    shared scheduler. Submission is guarded so concurrent triggers share
    a single request.
    """

    def __init__(
        self,
        source: QuizSource,
        scheduler: Scheduler,
        store: SessionStore | None = None,
        monitor_factory: MonitorFactory | None = None,
        on_notice: Callable[[str], None] | None = None,
        on_navigate: Callable[[str], None] | None = None,
    ) -> None:
        self.source = source
        self.scheduler = scheduler
        self.store = store
        self.monitor_factory = monitor_factory
        self.on_notice = on_notice
        self.on_navigate = on_navigate

        self.state = AttemptState.LOADING
        self.quiz: Quiz | None = None
        self.questions: List[Question] = []
        self.answers: AnswerTracker | None = None
        self.timer: CountdownTimer | None = None
        self.monitor: LockdownMonitor | None = None
        self.current_index = 0
        self.confirmation_pending = False
        self.result: SubmissionResult | None = None
        self.error: Exception | None = None
        self.error_kind: ErrorKind | None = None
        self.redirect: str | None = None
        self.notices: List[str] = []

        self._loading = False
        self._closed = False
        self._submission: asyncio.Future | None = None
        self._poll_job: Job | None = None

    @property
    def quiz_id(self) -> str:
        return self.source.quiz_id

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def load(self) -> None:
        """Fetch the quiz once and start the attempt."""
        if self._loading:
            raise InvalidStateError("Quiz is already loading")
        load_retry = self.state is AttemptState.ERROR and self.error_kind is ErrorKind.LOAD
        if self.state is not AttemptState.LOADING and not load_retry:
            raise InvalidStateError(f"Cannot load quiz ({self.state.value})")
        if self.quiz is not None:
            raise InvalidStateError("Quiz already loaded")

        self.state = AttemptState.LOADING
        self.error = None
        self.error_kind = None
        self._loading = True
        logger.info(f"📥 Loading {self.source.kind} quiz {self.quiz_id}")
        try:
            loaded = await self.source.load()
            if not self._closed:
                await self._start(loaded)
        except SessionError as e:
            self._terminate(e)
        except (LoadError, ApiError) as e:
            self._fail(ErrorKind.LOAD, e)
        finally:
            self._loading = False

    async def retry_load(self) -> None:
        if not (self.state is AttemptState.ERROR and self.error_kind is ErrorKind.LOAD):
            raise InvalidStateError(f"Nothing to retry ({self.state.value})")
        await self.load()

    async def _start(self, loaded: LoadedAttempt) -> None:
        self.quiz = loaded.quiz
        self.questions = loaded.questions
        self.answers = AnswerTracker(q.id for q in self.questions)
        self.current_index = 0

        duration, started_at = self._resolve_timing(loaded)
        self.timer = CountdownTimer(
            duration,
            self.scheduler,
            on_expire=self._on_time_expired,
            tick_interval=settings.tick_interval,
        )
        self.timer.start(started_at)
        if self.store is not None:
            self.store.record_attempt_start(self.quiz_id, started_at, duration)

        self.state = AttemptState.IN_PROGRESS
        self._poll_job = self.scheduler.call_every(
            settings.status_poll_interval, self._check_alive, name="liveness-poll"
        )
        logger.info(
            f"📝 {self.quiz.title or self.quiz_id}: {len(self.questions)} questions, "
            f"{self.timer.formatted()} remaining"
        )

        policy = self.quiz.security_settings
        if self.monitor_factory is not None and policy is not None and policy.any_enabled:
            self.monitor = self.monitor_factory(
                policy, on_terminate=self._on_lockdown_terminated
            )
            await self.monitor.load_admin_config()
            if self.state is AttemptState.IN_PROGRESS:
                self.monitor.begin()

    def _resolve_timing(self, loaded: LoadedAttempt) -> Tuple[float, float]:
        """
        Pick (duration, started_at) for the countdown.

        Order: time remaining reported by the server, attempt start
        recorded by the server, attempt start stored locally, quiz
        duration, configured default.
        """
        now = self.scheduler.clock.now()
        if loaded.time_remaining is not None:
            return loaded.time_remaining, now

        full = self.quiz.duration_seconds if self.quiz else None
        if full and loaded.started_at is not None:
            return full, loaded.started_at

        if self.store is not None:
            stored = self.store.read_on_resume(self.quiz_id)
            if stored and stored.attempt_started_at is not None and stored.attempt_duration:
                logger.info("⏯️  Resuming countdown from stored start time")
                return stored.attempt_duration, stored.attempt_started_at

        if full:
            return full, now
        return settings.default_time_remaining_ms / 1000.0, now

    # ------------------------------------------------------------------
    # Answering and navigation
    # ------------------------------------------------------------------
    def _require_in_progress(self, action: str) -> None:
        if self.state is not AttemptState.IN_PROGRESS:
            raise InvalidStateError(f"Cannot {action} ({self.state.value})")

    def _require_answerable(self) -> None:
        self._require_in_progress("change answers")
        if self.timer is not None and self.timer.is_expired():
            raise InvalidStateError("Time is up, answers can no longer change")

    def set_answer(self, question_id: str, option_index: int) -> None:
        self._require_answerable()
        question = self._question(question_id)
        if question.options and not 0 <= option_index < len(question.options):
            raise ValidationError(
                f"Option {option_index} out of range for question {question_id}"
            )
        self.answers.set_answer(question_id, option_index)

    def clear_answer(self, question_id: str) -> None:
        self._require_answerable()
        self.answers.clear_answer(question_id)

    def progress(self) -> float:
        return self.answers.progress() if self.answers else 0.0

    @property
    def current_question(self) -> Question | None:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    def next_question(self) -> int:
        self._require_in_progress("navigate")
        if not self.questions:
            return 0
        self.current_index = min(self.current_index + 1, len(self.questions) - 1)
        return self.current_index

    def previous_question(self) -> int:
        self._require_in_progress("navigate")
        self.current_index = max(self.current_index - 1, 0)
        return self.current_index

    def jump_to(self, index: int) -> int:
        self._require_in_progress("navigate")
        if not 0 <= index < len(self.questions):
            raise ValidationError(f"Question index {index} out of range")
        self.current_index = index
        return self.current_index

    def _question(self, question_id: str) -> Question:
        for question in self.questions:
            if question.id == question_id:
                return question
        raise ValidationError(f"Unknown question: {question_id}")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def request_submit(self) -> SubmitConfirmation:
        """Ask for confirmation before a manual submit."""
        self._require_in_progress("submit")
        self.confirmation_pending = True
        return SubmitConfirmation(self.answers.answered_count, self.answers.total)

    def cancel_submit(self) -> None:
        self.confirmation_pending = False

    async def confirm_submit(self) -> SubmissionResult:
        if not self.confirmation_pending and self._submission is None:
            raise InvalidStateError("Submission has not been requested")
        return await self.submit()

    async def retry_submit(self) -> SubmissionResult:
        if not (self.state is AttemptState.ERROR and self.error_kind is ErrorKind.SUBMISSION):
            raise InvalidStateError(f"Nothing to retry ({self.state.value})")
        self._submission = None
        self.error = None
        self.error_kind = None
        self.state = AttemptState.IN_PROGRESS
        return await self.submit()

    async def submit(self, auto: bool = False) -> SubmissionResult:
        """
        Submit the current answers.

        Concurrent calls share the first call's request; later calls get
        the same result or the same error.
        """
        if self._submission is None:
            self._require_in_progress("submit")
            self.state = AttemptState.SUBMITTING
            self._submission = asyncio.ensure_future(self._send(auto))
        return await asyncio.shield(self._submission)

    async def _send(self, auto: bool) -> SubmissionResult:
        entries = self.answers.to_submission_payload()
        time_taken = int(self.timer.elapsed()) if self.timer else 0
        logger.info(
            f"📤 Submitting {len(entries)}/{self.answers.total} answers"
            f"{' (auto)' if auto else ''}"
        )
        try:
            result = await self.source.submit(entries, time_taken)
        except QuizAttemptError as e:
            if self.state is AttemptState.SUBMITTING:
                self._fail(ErrorKind.SUBMISSION, e)
            raise
        except Exception as e:
            error = SubmissionError(f"Failed to submit quiz: {e}")
            if self.state is AttemptState.SUBMITTING:
                self._fail(ErrorKind.SUBMISSION, error)
            raise error from e

        if self.state is not AttemptState.SUBMITTING:
            logger.warning(f"⚠️  Submission finished after attempt became {self.state.value}")
            return result

        self.result = result
        self.state = AttemptState.SUBMITTED
        self.confirmation_pending = False
        self._shutdown()
        if self.store is not None:
            self.store.finish_attempt(self.quiz_id)
        logger.info(f"✅ Quiz submitted (score: {result.score}/{result.total_marks})")
        self._notify(result.message or "Quiz submitted successfully!")
        return result

    async def _on_time_expired(self) -> None:
        if self.state is not AttemptState.IN_PROGRESS:
            return
        self._notify("Time expired! Your quiz is being submitted automatically.")
        try:
            await self.submit(auto=True)
        except QuizAttemptError as e:
            logger.error(f"❌ Auto-submit failed: {e}")

    # ------------------------------------------------------------------
    # Liveness and fatal exits
    # ------------------------------------------------------------------
    async def _check_alive(self) -> None:
        if self.state is not AttemptState.IN_PROGRESS:
            return
        try:
            await self.source.check_alive()
        except QuizDeletedError as e:
            self._terminate(e)

    def _on_lockdown_terminated(self, reason: str) -> None:
        self._terminate(SessionTerminatedError(reason))

    def _terminate(self, error: SessionError) -> None:
        if self.state in (AttemptState.TERMINATED, AttemptState.SUBMITTED):
            return
        self.state = AttemptState.TERMINATED
        self.error = error
        self.error_kind = None
        self.confirmation_pending = False
        self.redirect = getattr(error, "redirect", None) or self.source.exit_path
        self._shutdown()
        if self.answers is not None:
            self.answers.reset()
        if self.store is not None:
            self.store.finish_attempt(self.quiz_id)

        logger.error(f"⛔ Attempt terminated: {error}")
        self._notify(str(error))
        if self.on_navigate is not None:
            self.on_navigate(self.redirect)

    def _fail(self, kind: ErrorKind, error: Exception) -> None:
        self.state = AttemptState.ERROR
        self.error_kind = kind
        self.error = error
        logger.error(f"❌ {kind.value.title()} failed: {error}")
        self._notify(str(error))

    # ------------------------------------------------------------------
    # Teardown and reporting
    # ------------------------------------------------------------------
    def close(self) -> None:
        """Stop timers and listeners. An in-flight submit is left to finish."""
        self._closed = True
        self._shutdown()

    def _shutdown(self) -> None:
        if self.timer is not None:
            self.timer.stop()
        if self._poll_job is not None:
            self._poll_job.cancel()
            self._poll_job = None
        if self.monitor is not None:
            self.monitor.teardown()

    def _notify(self, message: str) -> None:
        self.notices.append(message)
        if self.on_notice is not None:
            self.on_notice(message)

    def snapshot(self) -> Dict[str, Any]:
        """Serialisable view of the attempt for hosts."""
        error = None
        if self.error is not None:
            error = {
                "kind": self.error_kind.value if self.error_kind else "fatal",
                "message": str(self.error),
                "retryable": self.state is AttemptState.ERROR,
            }
        quiz = None
        if self.quiz is not None:
            quiz = {
                "id": self.quiz.id or self.quiz_id,
                "title": self.quiz.title,
                "type": self.quiz.type or self.source.kind,
                "question_display_mode": self.quiz.question_display_mode,
                "total_marks": self.quiz.computed_total_marks(),
                "instructions": self.quiz.instructions,
            }
        answers = self.answers
        return {
            "state": self.state.value,
            "quiz": quiz,
            "questions": [
                {
                    "id": q.id,
                    "text": q.text,
                    "options": q.options,
                    "marks": q.marks,
                    "selected": answers.selected(q.id) if answers else None,
                }
                for q in self.questions
            ],
            "current_index": self.current_index,
            "answered": answers.answered_count if answers else 0,
            "total": answers.total if answers else 0,
            "progress": self.progress(),
            "time_remaining": self.timer.time_remaining() if self.timer else None,
            "time_display": self.timer.formatted() if self.timer else None,
            "fraction_elapsed": self.timer.fraction_elapsed() if self.timer else 0.0,
            "confirmation_pending": self.confirmation_pending,
            "error": error,
            "redirect": self.redirect,
            "result": self.result.model_dump(mode="json") if self.result else None,
            "lockdown": self.monitor.status_summary() if self.monitor else None,
            "notices": list(self.notices),
        }
