"""
HTTP bridge exposing one quiz attempt to a browser shell.

The shell renders `GET /attempts/current`, forwards user actions and DOM
events, and honours the `prevent_default` answer for each event.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, List, Literal

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quiztaker.api.client import QuizApiClient
from quiztaker.attempt.controller import AttemptController
from quiztaker.attempt.scheduler import Scheduler
from quiztaker.attempt.sources import make_source
from quiztaker.config import settings
from quiztaker.lockdown.events import BrowserEvent, EventOutcome, EventType
from quiztaker.lockdown.monitor import LockdownMonitor
from quiztaker.lockdown.overrides import OverrideKind
from quiztaker.lockdown.surface import EventSurface, RemoteEnvironment
from quiztaker.logger import setup_logger
from quiztaker.models import (
    AnswerRequest,
    ConsentRequest,
    Credentials,
    HealthResponse,
    NavigateRequest,
    PasswordRequest,
    SecuritySettings,
)
from quiztaker.session.store import SessionStore
from quiztaker.utils.exceptions import (
    AuthError,
    InvalidStateError,
    QuizAttemptError,
    SessionError,
)

logger = setup_logger(__name__)


class AttemptHost:
    """Owns the scheduler, API client and the single current attempt."""

    def __init__(
        self,
        scheduler: Scheduler | None = None,
        store: SessionStore | None = None,
        api: QuizApiClient | None = None,
    ) -> None:
        self.scheduler = scheduler or Scheduler()
        self.store = store or SessionStore(settings.session_file)
        self.api = api or QuizApiClient(store=self.store)
        self.surface = EventSurface()
        self.environment = RemoteEnvironment()
        self.controller: AttemptController | None = None
        self.navigations: List[str] = []

    def monitor_factory(self, policy: SecuritySettings, **callbacks: Any) -> LockdownMonitor:
        return LockdownMonitor(
            policy,
            surface=self.surface,
            environment=self.environment,
            scheduler=self.scheduler,
            api=self.api,
            **callbacks,
        )

    async def open(
        self, quiz_type: str, quiz_id: str, credentials: Credentials | None = None
    ) -> AttemptController:
        if self.controller is not None:
            self.controller.close()
        self.surface = EventSurface()
        self.environment = RemoteEnvironment()

        creds = credentials or Credentials()
        source = make_source(
            self.api, self.store, quiz_type, quiz_id, creds.username, creds.password
        )
        self.controller = AttemptController(
            source,
            self.scheduler,
            store=self.store,
            monitor_factory=self.monitor_factory,
            on_navigate=self.navigations.append,
        )
        await self.controller.load()
        return self.controller

    def current(self) -> AttemptController:
        if self.controller is None:
            raise HTTPException(status_code=404, detail="No attempt has been opened")
        return self.controller

    def monitor(self) -> LockdownMonitor:
        monitor = self.current().monitor
        if monitor is None:
            raise InvalidStateError("Lockdown is not active for this quiz")
        return monitor

    async def close(self) -> None:
        if self.controller is not None:
            self.controller.close()
        self.scheduler.close()
        await self.api.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager: startup and shutdown."""
    host = getattr(app.state, "host", None) or AttemptHost()
    app.state.host = host
    logger.info("🚀 Starting quiz attempt bridge")
    logger.info(f"   Config: API={settings.api_url}, threshold={settings.violation_threshold}")
    ticker = asyncio.create_task(host.scheduler.run())
    yield
    logger.info("🛑 Shutting down bridge")
    await host.close()
    ticker.cancel()
    with suppress(asyncio.CancelledError):
        await ticker


app = FastAPI(title="Quiz Attempt Bridge", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_host(request: Request) -> AttemptHost:
    return request.app.state.host


@app.get("/health", response_model=HealthResponse)
async def health_check(host: AttemptHost = Depends(get_host)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        api_url=settings.api_url,
        attempt_state=host.controller.state.value if host.controller else None,
    )


@app.get("/attempts/current")
async def current_attempt(host: AttemptHost = Depends(get_host)):
    return host.current().snapshot()


@app.put("/attempts/current/answers/{question_id}")
async def set_answer(
    question_id: str, body: AnswerRequest, host: AttemptHost = Depends(get_host)
):
    controller = host.current()
    controller.set_answer(question_id, body.selected_option)
    return controller.snapshot()


@app.delete("/attempts/current/answers/{question_id}")
async def clear_answer(question_id: str, host: AttemptHost = Depends(get_host)):
    controller = host.current()
    controller.clear_answer(question_id)
    return controller.snapshot()


@app.post("/attempts/current/navigate")
async def navigate(body: NavigateRequest, host: AttemptHost = Depends(get_host)):
    controller = host.current()
    if body.index is not None:
        controller.jump_to(body.index)
    elif body.direction == "next":
        controller.next_question()
    elif body.direction == "previous":
        controller.previous_question()
    else:
        raise HTTPException(status_code=422, detail="Provide a direction or an index")
    return {"current_index": controller.current_index}


@app.post("/attempts/current/load/retry")
async def retry_load(host: AttemptHost = Depends(get_host)):
    controller = host.current()
    await controller.retry_load()
    return controller.snapshot()


@app.post("/attempts/current/submit")
async def request_submit(host: AttemptHost = Depends(get_host)):
    confirmation = host.current().request_submit()
    return {
        "answered": confirmation.answered,
        "total": confirmation.total,
        "unanswered": confirmation.unanswered,
    }


@app.post("/attempts/current/submit/confirm")
async def confirm_submit(host: AttemptHost = Depends(get_host)):
    result = await host.current().confirm_submit()
    return result.model_dump(mode="json")


@app.post("/attempts/current/submit/cancel")
async def cancel_submit(host: AttemptHost = Depends(get_host)):
    host.current().cancel_submit()
    return {"confirmation_pending": False}


@app.post("/attempts/current/submit/retry")
async def retry_submit(host: AttemptHost = Depends(get_host)):
    result = await host.current().retry_submit()
    return result.model_dump(mode="json")


@app.post("/attempts/current/events")
async def forward_event(event: BrowserEvent, host: AttemptHost = Depends(get_host)):
    """Run one DOM event through the lockdown monitor."""
    controller = host.current()
    if event.type is EventType.FULLSCREEN_CHANGE and event.is_fullscreen is not None:
        host.environment.report_fullscreen(event.is_fullscreen)

    outcome = EventOutcome.allow()
    if controller.monitor is not None:
        outcome = controller.monitor.handle_event(event)
    response: Dict[str, Any] = outcome.model_dump(mode="json")
    response["commands"] = host.environment.drain_commands()
    response["state"] = controller.state.value
    response["redirect"] = controller.redirect
    return response


@app.post("/attempts/current/consent")
async def fullscreen_consent(body: ConsentRequest, host: AttemptHost = Depends(get_host)):
    monitor = host.monitor()
    host.environment.report_fullscreen(body.fullscreen)
    granted = await monitor.grant_fullscreen_consent()
    return {"granted": granted, **monitor.status_summary()}


@app.post("/attempts/current/override/reenable")
async def reenable_security(host: AttemptHost = Depends(get_host)):
    monitor = host.monitor()
    monitor.re_enable_security()
    return monitor.status_summary()


@app.post("/attempts/current/override/dismiss")
async def dismiss_override_prompt(host: AttemptHost = Depends(get_host)):
    monitor = host.monitor()
    monitor.dismiss_prompt()
    return monitor.status_summary()


@app.post("/attempts/current/override/{kind}")
async def submit_override(
    kind: OverrideKind, body: PasswordRequest, host: AttemptHost = Depends(get_host)
):
    monitor = host.monitor()
    if kind is OverrideKind.ADMIN:
        await monitor.submit_admin_password(body.password)
    else:
        monitor.submit_personal_password(body.password)
    return monitor.status_summary()


# Registered last so /attempts/current/... paths take precedence.
@app.post("/attempts/{quiz_type}/{quiz_id}")
async def open_attempt(
    quiz_type: Literal["academic", "event"],
    quiz_id: str,
    credentials: Credentials | None = None,
    host: AttemptHost = Depends(get_host),
):
    """Load a quiz and start the attempt."""
    controller = await host.open(quiz_type, quiz_id, credentials)
    if isinstance(controller.error, AuthError):
        raise controller.error
    return controller.snapshot()


@app.exception_handler(AuthError)
async def auth_exception_handler(request: Request, exc: AuthError):
    logger.warning(f"🔐 Auth Error: {exc}")
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(InvalidStateError)
async def state_exception_handler(request: Request, exc: InvalidStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(SessionError)
async def session_exception_handler(request: Request, exc: SessionError):
    logger.error(f"⛔ Session Error: {exc}")
    return JSONResponse(
        status_code=410,
        content={"detail": str(exc), "redirect": getattr(exc, "redirect", None)},
    )


@app.exception_handler(QuizAttemptError)
async def quiz_exception_handler(request: Request, exc: QuizAttemptError):
    """Handle recoverable application exceptions."""
    logger.error(f"🔥 Application Error: {exc}")
    return JSONResponse(
        status_code=400, content={"detail": str(exc), "retryable": exc.retryable}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.error(f"🔥 Unexpected Error: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


if __name__ == "__main__":
    uvicorn.run("quiztaker.main:app", host=settings.host, port=settings.port)
