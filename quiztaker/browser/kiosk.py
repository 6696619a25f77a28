"""
Kiosk browser using Playwright.

Hosts the quiz page and bridges its DOM events into a LockdownMonitor.
The page cancels blocked gestures synchronously from a policy pushed by
Python, then reports every event so the monitor can record violations.
"""

import argparse
import asyncio
from contextlib import suppress
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List

from playwright.async_api import Browser, Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeout

from quiztaker.api.client import QuizApiClient
from quiztaker.attempt.controller import AttemptController, AttemptState
from quiztaker.attempt.scheduler import Scheduler
from quiztaker.attempt.sources import make_source
from quiztaker.config import settings
from quiztaker.lockdown.events import BrowserEvent, EventOutcome, EventType
from quiztaker.lockdown.monitor import LockdownMonitor, MonitorState
from quiztaker.lockdown.policy import Signature, blocked_signatures, required_event_types
from quiztaker.lockdown.surface import BrowserEnvironment, EventSurface
from quiztaker.logger import setup_logger
from quiztaker.session.store import SessionStore
from quiztaker.utils.exceptions import (
    BrowserError,
    InvalidStateError,
    QuizAttemptError,
    ValidationError,
)
from quiztaker.utils.helpers import format_json

logger = setup_logger(__name__)

EVENT_BINDING = "__quiztakerEvent"
ACTION_BINDING = "__quiztakerAction"

FINAL_STATES = (AttemptState.SUBMITTED, AttemptState.TERMINATED)

ActionHandler = Callable[[str, Dict[str, Any] | None], Awaitable[Dict[str, Any]]]

# Page-side half of the bridge. Runs before any page script.
INIT_SCRIPT = """
(() => {
  window.__quiztakerPolicy = window.__quiztakerPolicy || {keys: [], types: [], all: false};
  const sig = (e) => [e.key, +e.ctrlKey, +e.altKey, +e.shiftKey, +e.metaKey].join('|');
  const send = (payload) => {
    if (window.__quiztakerEvent) { window.__quiztakerEvent(payload); }
  };
  const keyPayload = (type, e) => ({
    type, key: e.key, ctrl: e.ctrlKey, alt: e.altKey, shift: e.shiftKey, meta: e.metaKey,
  });
  const cancel = (e) => { e.preventDefault(); e.stopPropagation(); };

  document.addEventListener('keydown', (e) => {
    const policy = window.__quiztakerPolicy;
    if (policy.all || policy.keys.includes(sig(e))) { cancel(e); }
    send(keyPayload('keydown', e));
  }, true);
  document.addEventListener('keyup', (e) => send(keyPayload('keyup', e)), true);
  document.addEventListener('contextmenu', (e) => {
    if (window.__quiztakerPolicy.types.includes('contextmenu')) { cancel(e); }
    send({type: 'contextmenu'});
  }, true);
  document.addEventListener('auxclick', (e) => {
    if (e.button !== 1) { return; }
    if (window.__quiztakerPolicy.types.includes('middleclick')) { cancel(e); }
    send({type: 'middleclick'});
  }, true);
  document.addEventListener('dragstart', (e) => {
    if (window.__quiztakerPolicy.types.includes('dragstart')) { cancel(e); }
    send({type: 'dragstart'});
  }, true);
  document.addEventListener('visibilitychange', () => {
    if (document.hidden) { send({type: 'visibilityhidden'}); }
  });
  window.addEventListener('blur', () => send({type: 'blur'}));
  document.addEventListener('fullscreenchange', () => {
    send({type: 'fullscreenchange', is_fullscreen: !!document.fullscreenElement});
  });
})();
"""

CANCELLABLE_TYPES = (EventType.CONTEXT_MENU, EventType.MIDDLE_CLICK, EventType.DRAG_START)


def signature_key(signature: Signature) -> str:
    key, ctrl, alt, shift, meta = signature
    return "|".join([key, str(int(ctrl)), str(int(alt)), str(int(shift)), str(int(meta))])


def page_policy(monitor: LockdownMonitor | None) -> Dict[str, Any]:
    """What the page must cancel on its own for the monitor's current state."""
    if monitor is None or monitor.state in (MonitorState.INACTIVE, MonitorState.OVERRIDDEN):
        return {"keys": [], "types": [], "all": False}
    if monitor.state is MonitorState.TERMINATED:
        return {"keys": [], "types": [t.value for t in CANCELLABLE_TYPES], "all": True}

    needed = required_event_types(monitor.policy)
    return {
        "keys": sorted(signature_key(s) for s in blocked_signatures(monitor.policy)),
        "types": [t.value for t in CANCELLABLE_TYPES if t in needed],
        "all": False,
    }


class PlaywrightEnvironment(BrowserEnvironment):
    """Fullscreen and focus control on a Playwright page."""

    def __init__(self, page: Page) -> None:
        self.page = page

    async def request_fullscreen(self) -> bool:
        try:
            return bool(
                await self.page.evaluate(
                    "() => document.documentElement.requestFullscreen()"
                    ".then(() => true, () => false)"
                )
            )
        except Exception as e:
            logger.warning(f"⚠️ requestFullscreen failed: {e}")
            return False

    async def is_fullscreen(self) -> bool:
        return bool(await self.page.evaluate("() => !!document.fullscreenElement"))

    async def exit_fullscreen(self) -> None:
        await self.page.evaluate(
            "() => document.fullscreenElement ? document.exitFullscreen() : null"
        )

    async def focus(self) -> None:
        await self.page.bring_to_front()


class KioskBrowser:
    """
    Manages the Playwright browser that shows the quiz.

    Call `attach()` once the attempt's monitor exists; events that arrive
    before that are allowed.
    """

    def __init__(self) -> None:
        self.playwright = None
        self.browser: Browser | None = None
        self.page: Page | None = None
        self.monitor: LockdownMonitor | None = None
        self.on_outcome: Callable[[BrowserEvent, EventOutcome], None] | None = None
        self.on_action: ActionHandler | None = None
        self.outcomes: List[EventOutcome] = []
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize Playwright and browser."""
        if self._initialized:
            return
        try:
            logger.info("🌐 Initializing kiosk browser...")
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=settings.headless,
                args=[
                    "--no-sandbox",
                    "--disable-dev-shm-usage",
                    "--start-maximized",
                ],
            )
            self._initialized = True
            logger.info("✅ Browser initialized successfully")
        except Exception as e:
            logger.error(f"❌ Failed to initialize browser: {e}")
            raise BrowserError(f"Browser initialization failed: {e}")

    async def open(self, url: str, timeout: int | None = None) -> PlaywrightEnvironment:
        """
        Load the quiz page with the event bridge installed.

        Returns:
            Environment for the monitor to drive fullscreen and focus.

        Raises:
            BrowserError if the page cannot be loaded.
        """
        if not self._initialized:
            await self.initialize()

        timeout = timeout or settings.playwright_timeout
        try:
            logger.info(f"📄 Loading quiz page: {url}")
            self.page = await self.browser.new_page()  # type: ignore[union-attr]
            await self.page.expose_function(EVENT_BINDING, self._on_page_event)
            await self.page.expose_function(ACTION_BINDING, self._on_page_action)
            await self.page.add_init_script(INIT_SCRIPT)
            await self.page.goto(url, wait_until="networkidle", timeout=timeout)
        except PlaywrightTimeout:
            logger.error(f"⏱️ Timeout loading page: {url}")
            raise BrowserError(f"Page load timeout after {timeout}ms")
        except Exception as e:
            logger.error(f"❌ Error loading page: {e}")
            raise BrowserError(f"Failed to load page: {e}")
        return PlaywrightEnvironment(self.page)

    async def attach(self, monitor: LockdownMonitor) -> None:
        self.monitor = monitor
        previous = monitor.on_override_change

        def override_changed(grant) -> None:
            if previous is not None:
                previous(grant)
            # Expiry fires from the scheduler, outside any page event
            monitor.scheduler.call_later(0, self.sync_policy, name="kiosk-policy-sync")

        monitor.on_override_change = override_changed
        await self.sync_policy()

    async def sync_policy(self) -> None:
        """Push the current blocking policy into the page."""
        if self.page is None:
            return
        await self.page.evaluate(
            "(policy) => { window.__quiztakerPolicy = policy; }", page_policy(self.monitor)
        )

    async def _on_page_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        event = BrowserEvent.model_validate(payload)
        if self.monitor is None:
            outcome = EventOutcome.allow()
        else:
            before = self.monitor.state
            outcome = self.monitor.handle_event(event)
            if self.monitor.state is not before:
                await self.sync_policy()

        self.outcomes.append(outcome)
        if outcome.violation is not None:
            logger.info(f"🚫 Page event {event.type.value} -> {outcome.violation.value}")
        if self.on_outcome is not None:
            self.on_outcome(event, outcome)
        return outcome.model_dump(mode="json")

    async def _on_page_action(
        self, action: str, payload: Dict[str, Any] | None = None
    ) -> Dict[str, Any]:
        if self.on_action is None:
            return {"action_error": {"message": "No attempt is running", "retryable": False}}
        return await self.on_action(action, payload)

    @property
    def closed(self) -> bool:
        return self.page is not None and self.page.is_closed()

    async def close(self) -> None:
        """Close browser and cleanup."""
        if self.browser:
            await self.browser.close()
            logger.info("🔒 Browser closed")
        if self.playwright:
            await self.playwright.stop()
            logger.info("🔒 Playwright stopped")
        self._initialized = False


class KioskAttempt:
    """
    One attempt driven from a kiosk window.

    The page calls `window.__quiztakerAction(name, payload)` for every taker
    action and gets the attempt snapshot back. A failed load or submit
    leaves the window open so the taker can retry; only a submitted or
    terminated attempt, or an explicit exit from the error screen, ends it.
    """

    def __init__(
        self,
        kiosk: KioskBrowser | None = None,
        api: QuizApiClient | None = None,
        store: SessionStore | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.scheduler = scheduler or Scheduler()
        self.store = store or SessionStore(settings.session_file)
        self.api = api or QuizApiClient(store=self.store)
        self.kiosk = kiosk or KioskBrowser()
        self.controller: AttemptController | None = None
        self.exit_requested = False
        self._ticker: asyncio.Task | None = None

    async def start(
        self,
        quiz_type: str,
        quiz_id: str,
        url: str,
        username: str | None = None,
        password: str | None = None,
    ) -> AttemptController:
        """Open the page and load the attempt. Load errors stay on screen."""
        self._ticker = asyncio.create_task(self.scheduler.run())
        self.kiosk.on_action = self.perform
        environment = await self.kiosk.open(url)
        self.controller = AttemptController(
            make_source(self.api, self.store, quiz_type, quiz_id, username, password),
            self.scheduler,
            store=self.store,
            monitor_factory=partial(
                LockdownMonitor,
                surface=EventSurface(),
                environment=environment,
                scheduler=self.scheduler,
                api=self.api,
            ),
            on_notice=lambda message: logger.info(f"📢 {message}"),
        )
        await self.controller.load()
        await self._attach_monitor()
        return self.controller

    async def _attach_monitor(self) -> None:
        monitor = self.controller.monitor
        if monitor is None or self.kiosk.monitor is monitor:
            return
        await self.kiosk.attach(monitor)
        # Launching the kiosk is the taker's consent to fullscreen
        if monitor.state is MonitorState.AWAITING_CONSENT:
            await monitor.grant_fullscreen_consent()
            await self.kiosk.sync_policy()

    @property
    def finished(self) -> bool:
        if self.exit_requested:
            return True
        return self.controller is not None and self.controller.state in FINAL_STATES

    async def wait(self) -> None:
        """Block until the attempt ends or the window is closed."""
        while not self.finished and not self.kiosk.closed:
            await asyncio.sleep(self.scheduler.resolution)

    async def perform(
        self, action: str, payload: Dict[str, Any] | None = None
    ) -> Dict[str, Any]:
        """Run one taker action and return the attempt snapshot."""
        if self.controller is None:
            return {
                "state": AttemptState.LOADING.value,
                "action_error": {"message": "Quiz is still loading", "retryable": True},
            }
        try:
            await self._dispatch(action, payload or {})
        except QuizAttemptError as e:
            logger.warning(f"⚠️  Action {action} failed: {e}")
            return {
                **self.controller.snapshot(),
                "action_error": {"message": str(e), "retryable": e.retryable},
            }
        return self.controller.snapshot()

    async def _dispatch(self, action: str, payload: Dict[str, Any]) -> None:
        controller = self.controller
        if action == "set-answer":
            controller.set_answer(_field(payload, "question_id"), int(_field(payload, "option")))
        elif action == "clear-answer":
            controller.clear_answer(_field(payload, "question_id"))
        elif action == "next":
            controller.next_question()
        elif action == "previous":
            controller.previous_question()
        elif action == "jump":
            controller.jump_to(int(_field(payload, "index")))
        elif action == "request-submit":
            controller.request_submit()
        elif action == "cancel-submit":
            controller.cancel_submit()
        elif action == "confirm-submit":
            await controller.confirm_submit()
        elif action == "retry-submit":
            await controller.retry_submit()
        elif action == "retry-load":
            await controller.retry_load()
            await self._attach_monitor()
        elif action == "exit":
            if controller.state is not AttemptState.ERROR:
                raise InvalidStateError(f"Cannot exit ({controller.state.value})")
            logger.warning("🚪 Taker left the kiosk from the error screen")
            self.exit_requested = True
        else:
            raise ValidationError(f"Unknown action: {action}")

    async def close(self) -> None:
        if self.controller is not None:
            self.controller.close()
        self.scheduler.close()
        if self._ticker is not None:
            self._ticker.cancel()
            with suppress(asyncio.CancelledError):
                await self._ticker
        await self.api.close()
        await self.kiosk.close()


def _field(payload: Dict[str, Any], name: str) -> Any:
    if payload.get(name) is None:
        raise ValidationError(f"Missing field: {name}")
    return payload[name]


async def run_kiosk(
    quiz_type: str,
    quiz_id: str,
    url: str,
    username: str | None = None,
    password: str | None = None,
) -> AttemptController:
    """
    Run one attempt in a kiosk window until it is submitted or ends.

    The quiz page at `url` is the taker's UI; this process owns the attempt
    state, the countdown and the lockdown monitor.
    """
    attempt = KioskAttempt()
    try:
        controller = await attempt.start(quiz_type, quiz_id, url, username, password)
        await attempt.wait()
        logger.info(f"🏁 Attempt finished: {controller.state.value}")
        logger.debug(f"Final snapshot:\n{format_json(controller.snapshot())}")
        return controller
    finally:
        await attempt.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Take a quiz in a kiosk browser")
    parser.add_argument("quiz_type", choices=["academic", "event"])
    parser.add_argument("quiz_id")
    parser.add_argument("url", help="Quiz page to display")
    parser.add_argument("--username")
    parser.add_argument("--password")
    args = parser.parse_args()
    asyncio.run(
        run_kiosk(args.quiz_type, args.quiz_id, args.url, args.username, args.password)
    )
