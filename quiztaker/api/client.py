"""
HTTP client for the quiz REST API.

Idempotent GETs retry on 429/5xx/transport errors with backoff. POSTs are
sent exactly once so a submission can never be duplicated by the client.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from quiztaker.config import settings
from quiztaker.logger import setup_logger
from quiztaker.models import (
    AdminOverrideConfig,
    AdminValidation,
    AttemptRecord,
    EventQuestionSet,
    LoginResponse,
    Quiz,
    QuizStatus,
    SubmissionResult,
)
from quiztaker.session.cache import CacheExpiry, TTLCache
from quiztaker.session.store import SessionStore
from quiztaker.utils.exceptions import ApiError, AuthError, NotFoundError

logger = setup_logger(__name__)

ADMIN_CONFIG_KEY = "admin-config"


class QuizApiClient:
    """
    Thin async wrapper over the quiz API.

    Every request carries the bearer token held by the session store.
    A 401 clears that token.
    """

    backoffs = [0.0, 0.5, 1.0, 2.0]  # seconds

    def __init__(
        self,
        store: SessionStore | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        cache: TTLCache | None = None,
    ) -> None:
        self.store = store or SessionStore()
        self.cache = cache or TTLCache()
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.http_timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Academic quizzes
    # ------------------------------------------------------------------
    async def get_quiz(self, quiz_id: str) -> Quiz:
        data = await self._request("GET", f"/api/quiz/{quiz_id}")
        return self._parse(Quiz, data)

    async def get_submission(self, quiz_id: str) -> AttemptRecord:
        data = await self._request("GET", f"/api/quiz/{quiz_id}/submission")
        return self._parse(AttemptRecord, data)

    async def start_quiz(self, quiz_id: str) -> AttemptRecord:
        data = await self._request("POST", f"/api/quiz/{quiz_id}/start")
        return self._parse(AttemptRecord, data or {})

    async def submit_quiz(
        self, quiz_id: str, answers: List[Dict[str, Any]]
    ) -> SubmissionResult:
        data = await self._request(
            "POST", f"/api/quiz/{quiz_id}/submit", json={"answers": answers}
        )
        return self._parse(SubmissionResult, data or {})

    # ------------------------------------------------------------------
    # Event quizzes
    # ------------------------------------------------------------------
    async def login_event_quiz(
        self, quiz_id: str, username: str, password: str
    ) -> LoginResponse:
        data = await self._request(
            "POST",
            f"/api/event-quiz/{quiz_id}/login",
            json={"username": username, "password": password},
        )
        return self._parse(LoginResponse, data)

    async def get_event_questions(
        self, quiz_id: str, session_token: str
    ) -> EventQuestionSet:
        data = await self._request(
            "GET",
            f"/api/event-quiz/{quiz_id}/questions",
            headers={"sessionToken": session_token},
        )
        return self._parse(EventQuestionSet, data)

    async def get_event_status(self, quiz_id: str) -> QuizStatus:
        data = await self._request("GET", f"/api/event-quiz/{quiz_id}/status")
        return self._parse(QuizStatus, data)

    async def submit_event_quiz(
        self,
        quiz_id: str,
        participant_email: str,
        answers: List[Dict[str, Any]],
        time_taken: int,
        is_emergency_submission: bool = False,
    ) -> SubmissionResult:
        body = {
            "participantEmail": participant_email,
            "answers": answers,
            "timeTaken": time_taken,
            "isEmergencySubmission": is_emergency_submission,
        }
        data = await self._request(
            "POST", f"/api/event-quiz/{quiz_id}/submit", json=body
        )
        return self._parse(SubmissionResult, data or {})

    # ------------------------------------------------------------------
    # Admin override settings
    # ------------------------------------------------------------------
    async def get_admin_config(self) -> AdminOverrideConfig:
        cached = self.cache.get(ADMIN_CONFIG_KEY)
        if cached is not None:
            return cached
        data = await self._request("GET", "/api/admin/quiz-settings/admin-config")
        config = self._parse(AdminOverrideConfig, data or {})
        self.cache.set(ADMIN_CONFIG_KEY, config, CacheExpiry.LONG)
        return config

    async def validate_admin_override(self, password: str) -> AdminValidation:
        """A rejected password answers 401 but must not log the taker out."""
        try:
            data = await self._request(
                "POST",
                "/api/admin/quiz-settings/validate-admin",
                json={"password": password},
                clear_token_on_401=False,
            )
        except AuthError as e:
            return AdminValidation(valid=False, message=str(e))
        return self._parse(AdminValidation, data or {})

    @staticmethod
    def _parse(model: type[BaseModel], data: Any) -> Any:
        """Validate a response body, reporting schema mismatches as ApiError."""
        try:
            return model.model_validate(data)
        except SchemaError as e:
            fields = ", ".join(
                ".".join(str(p) for p in err["loc"]) or "body" for err in e.errors()
            )
            logger.error(f"❌ Unexpected {model.__name__} response ({fields})")
            raise ApiError(f"Invalid {model.__name__} response: {fields}") from e

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        json: Dict[str, Any] | None = None,
        headers: Dict[str, str] | None = None,
        clear_token_on_401: bool = True,
    ) -> Any:
        """
        Send one API call and return the decoded JSON body.

        Raises:
            AuthError: on 401
            NotFoundError: on 404
            ApiError: on any other failure
        """
        request_headers = {"Content-Type": "application/json"}
        if self.store.token:
            request_headers["Authorization"] = f"Bearer {self.store.token}"
        if headers:
            request_headers.update(headers)

        max_attempts = 1 + self.max_retries if method == "GET" else 1
        try:
            response = await self._call_with_retries(
                method, path, json, request_headers, max_attempts
            )
        except httpx.HTTPStatusError as e:
            raise self._to_api_error(e, clear_token_on_401) from e
        except httpx.HTTPError as e:
            logger.error(f"❌ {method} {path} failed: {e}")
            raise ApiError(f"Network error: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {path}: {e}", response.status_code) from e

    async def _call_with_retries(
        self,
        method: str,
        path: str,
        json: Dict[str, Any] | None,
        headers: Dict[str, str],
        max_attempts: int,
    ) -> httpx.Response:
        last_error: Exception | None = None

        for attempt in range(max_attempts):
            delay = self.backoffs[min(attempt, len(self.backoffs) - 1)]
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                logger.debug(f"➡️  {method} {path} (attempt {attempt + 1}/{max_attempts})")
                response = await self._client.request(
                    method, path, json=json, headers=headers
                )
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                last_error = e
                if not self._is_retriable_error(e) or attempt == max_attempts - 1:
                    break
                logger.warning(
                    f"⚠️ {method} {path} error (attempt {attempt + 1}/{max_attempts}): {e}"
                )

        raise last_error

    def _is_retriable_error(self, e: Exception) -> bool:
        if isinstance(e, httpx.HTTPStatusError):
            status = e.response.status_code
            return status == 429 or 500 <= status < 600

        if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
            return True

        return False

    def _to_api_error(
        self, e: httpx.HTTPStatusError, clear_token_on_401: bool
    ) -> ApiError:
        status = e.response.status_code
        message = self._error_message(e.response) or f"HTTP {status}"

        if status == 401:
            if clear_token_on_401:
                self.store.clear_token()
            logger.warning(f"🔐 Unauthorized: {message}")
            return AuthError(message, status)
        if status == 404:
            return NotFoundError(message, status)

        logger.error(f"❌ API error {status}: {message}")
        return ApiError(message, status)

    @staticmethod
    def _error_message(response: httpx.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return response.text or None
        if isinstance(body, dict):
            return body.get("message") or body.get("error")
        return None
