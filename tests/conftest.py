import asyncio
import json
from typing import Any, Dict, List, Tuple

import httpx
import pytest

from quiztaker.api.client import QuizApiClient
from quiztaker.attempt.scheduler import ManualClock, Scheduler
from quiztaker.attempt.sources import LoadedAttempt, QuizSource
from quiztaker.lockdown.surface import BrowserEnvironment, EventSurface
from quiztaker.models import (
    AdminOverrideConfig,
    AdminValidation,
    Question,
    Quiz,
    SecuritySettings,
    SubmissionResult,
)
from quiztaker.session.store import SessionStore

START = 1_700_000_000.0


def make_quiz(
    n_questions: int = 5,
    duration: float | None = 10,
    security: SecuritySettings | None = None,
    quiz_id: str = "q1",
) -> Quiz:
    return Quiz(
        id=quiz_id,
        title="Sample Quiz",
        type="academic",
        duration=duration,
        questions=[
            Question(id=f"x{i}", text=f"Question {i}", options=["a", "b", "c", "d"])
            for i in range(n_questions)
        ],
        security_settings=security,
    )


class FakeEnvironment(BrowserEnvironment):
    def __init__(self, grant: bool = True) -> None:
        self.grant = grant
        self.fullscreen = False
        self.requests = 0
        self.focus_calls = 0

    async def request_fullscreen(self) -> bool:
        self.requests += 1
        if self.grant:
            self.fullscreen = True
        return self.grant

    async def is_fullscreen(self) -> bool:
        return self.fullscreen

    async def exit_fullscreen(self) -> None:
        self.fullscreen = False

    async def focus(self) -> None:
        self.focus_calls += 1


class FakeOverrideApi:
    """Stands in for QuizApiClient in lockdown tests."""

    def __init__(
        self,
        config: AdminOverrideConfig | None = None,
        validation: AdminValidation | None = None,
        config_error: Exception | None = None,
    ) -> None:
        self.config = config or AdminOverrideConfig()
        self.validation = validation or AdminValidation(valid=True, session_timeout=300)
        self.config_error = config_error
        self.passwords: List[str] = []

    async def get_admin_config(self) -> AdminOverrideConfig:
        if self.config_error is not None:
            raise self.config_error
        return self.config

    async def validate_admin_override(self, password: str) -> AdminValidation:
        self.passwords.append(password)
        return self.validation


class FakeSource(QuizSource):
    kind = "academic"
    exit_path = "/student/dashboard"

    def __init__(
        self,
        quiz: Quiz,
        time_remaining: float | None = None,
        started_at: float | None = None,
        load_errors: List[Exception] | None = None,
        submit_errors: List[Exception] | None = None,
    ) -> None:
        super().__init__(api=None, quiz_id=quiz.id)
        self.quiz = quiz
        self.time_remaining = time_remaining
        self.started_at = started_at
        self.load_errors = list(load_errors or [])
        self.submit_errors = list(submit_errors or [])
        self.submit_gate: asyncio.Event | None = None
        self.alive_error: Exception | None = None
        self.alive_gate: asyncio.Event | None = None
        self.load_calls = 0
        self.alive_checks = 0
        self.submissions: List[List[Any]] = []

    async def load(self) -> LoadedAttempt:
        self.load_calls += 1
        if self.load_errors:
            raise self.load_errors.pop(0)
        return LoadedAttempt(
            quiz=self.quiz,
            questions=self.quiz.questions,
            time_remaining=self.time_remaining,
            started_at=self.started_at,
        )

    async def submit(self, answers, time_taken, emergency=False) -> SubmissionResult:
        self.submissions.append(list(answers))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return SubmissionResult(
            message="Quiz submitted successfully",
            score=len(answers),
            total_marks=len(self.quiz.questions),
        )

    async def check_alive(self) -> None:
        self.alive_checks += 1
        if self.alive_gate is not None:
            await self.alive_gate.wait()
        if self.alive_error is not None:
            raise self.alive_error


Route = Tuple[str, str]


class MockApi:
    """Route table for httpx.MockTransport that records every request."""

    def __init__(self, routes: Dict[Route, Any] | None = None) -> None:
        self.routes: Dict[Route, Any] = dict(routes or {})
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.routes.get((request.method, request.url.path))
        if reply is None:
            return httpx.Response(404, json={"message": "Not found"})
        if callable(reply):
            return reply(request)
        status, body = reply
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def scheduler(clock) -> Scheduler:
    return Scheduler(clock)


@pytest.fixture
def surface() -> EventSurface:
    return EventSurface()


@pytest.fixture
def environment() -> FakeEnvironment:
    return FakeEnvironment()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def mock_api() -> MockApi:
    return MockApi()


@pytest.fixture
async def api(mock_api, store):
    client = QuizApiClient(
        store=store,
        base_url="http://quiz.test",
        max_retries=3,
        transport=httpx.MockTransport(mock_api),
    )
    client.backoffs = [0.0, 0.0, 0.0, 0.0]
    yield client
    await client.close()
