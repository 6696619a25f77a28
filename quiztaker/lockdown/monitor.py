"""
Lockdown monitor: applies a quiz's security policy to browser events.

Lifecycle: inactive -> awaiting-fullscreen-consent -> monitoring ->
overridden -> terminated, with overridden -> monitoring when a grant
expires or security is re-enabled.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Tuple

from quiztaker.attempt.scheduler import Job, Scheduler
from quiztaker.config import settings
from quiztaker.lockdown.events import (
    BrowserEvent,
    EventOutcome,
    EventType,
    ViolationKind,
)
from quiztaker.lockdown.overrides import (
    ComboDetector,
    KeyCombo,
    OverrideGrant,
    OverrideKind,
    daily_buttons,
    daily_password,
)
from quiztaker.lockdown.policy import (
    EVENT_RULES,
    PolicyAction,
    required_event_types,
    resolve_shortcut,
)
from quiztaker.lockdown.surface import BrowserEnvironment, EventSurface, Listener
from quiztaker.logger import setup_logger
from quiztaker.models import AdminOverrideConfig, SecuritySettings
from quiztaker.utils.exceptions import ApiError, InvalidStateError, OverrideError

logger = setup_logger(__name__)


class MonitorState(str, Enum):
    INACTIVE = "inactive"
    AWAITING_CONSENT = "awaiting-fullscreen-consent"
    MONITORING = "monitoring"
    OVERRIDDEN = "overridden"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class ViolationRecord:
    kind: ViolationKind
    message: str
    timestamp: float
    count: int


class LockdownMonitor:
    """
    Enforces one SecuritySettings policy.

    The host feeds DOM events through `handle_event()` and honours the
    returned `prevent_default`. All timers (override expiry, fullscreen
    re-entry, refocus) are jobs on the shared scheduler.
    """

    def __init__(
        self,
        security_settings: SecuritySettings | None,
        *,
        surface: EventSurface,
        environment: BrowserEnvironment,
        scheduler: Scheduler,
        api=None,
        threshold: int | None = None,
        personal_override_enabled: bool | None = None,
        on_violation: Callable[[ViolationRecord], None] | None = None,
        on_terminate: Callable[[str], None] | None = None,
        on_override_change: Callable[[OverrideGrant | None], None] | None = None,
    ) -> None:
        self.policy = security_settings or SecuritySettings()
        self.surface = surface
        self.environment = environment
        self.scheduler = scheduler
        self.api = api
        self.threshold = threshold if threshold is not None else settings.violation_threshold
        self.personal_override_enabled = (
            settings.personal_override_enabled
            if personal_override_enabled is None
            else personal_override_enabled
        )
        self.on_violation = on_violation
        self.on_terminate = on_terminate
        self.on_override_change = on_override_change

        self.state = MonitorState.INACTIVE
        self.violations: List[ViolationRecord] = []
        self.grant: OverrideGrant | None = None
        self.prompt: OverrideKind | None = None
        self.admin_config = AdminOverrideConfig()
        self.last_error: str | None = None

        self._detector = ComboDetector()
        self._installed: List[Tuple[EventType, Listener]] = []
        self._expiry_job: Job | None = None
        self._reentry_job: Job | None = None
        self._reentry_attempts = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def enabled(self) -> bool:
        return self.policy.any_enabled

    async def load_admin_config(self) -> AdminOverrideConfig:
        """Fetch the admin trigger combo. Failures leave the admin override off."""
        if self.api is None or not self.enabled:
            return self.admin_config
        try:
            self.admin_config = await self.api.get_admin_config()
            logger.info(
                f"🔑 Admin override {'enabled' if self.admin_config.enabled else 'disabled'}"
            )
        except ApiError as e:
            logger.warning(f"⚠️  Could not load admin override config: {e}")
        return self.admin_config

    def begin(self) -> None:
        """Install listeners and start enforcing the policy."""
        if self.state is not MonitorState.INACTIVE:
            raise InvalidStateError(f"Monitor already started ({self.state.value})")
        if not self.enabled:
            logger.info("🔓 No security features enabled, lockdown inactive")
            return

        handlers: Dict[EventType, Listener] = {
            EventType.KEYDOWN: self._on_key_down,
            EventType.KEYUP: self._on_key_up,
        }
        for event_type in sorted(required_event_types(self.policy), key=lambda t: t.value):
            listener = handlers.get(event_type, self._on_page_event)
            self.surface.add_listener(event_type, listener)
            self._installed.append((event_type, listener))

        if self.policy.fullscreen_required:
            self.state = MonitorState.AWAITING_CONSENT
        else:
            self.state = MonitorState.MONITORING
        logger.info(
            f"🔒 Lockdown {self.state.value}: {', '.join(self.policy.active_features())}"
        )

    async def grant_fullscreen_consent(self) -> bool:
        """Enter fullscreen after the taker's explicit gesture."""
        if self.state is not MonitorState.AWAITING_CONSENT:
            raise InvalidStateError(f"Fullscreen consent not expected ({self.state.value})")
        self.last_error = None
        try:
            entered = await self.environment.request_fullscreen()
        except Exception as e:
            logger.warning(f"⚠️  Fullscreen request failed: {e}")
            entered = False
            self.last_error = f"Fullscreen request failed: {e}"
        if not entered:
            self.last_error = self.last_error or "The browser refused to enter fullscreen."
            logger.warning(f"⚠️  {self.last_error}")
            return False

        self.last_error = None
        self.state = MonitorState.MONITORING
        logger.info("🖥️  Fullscreen granted, monitoring")
        return True

    def teardown(self) -> None:
        """Remove listeners and cancel timers."""
        self._remove_listeners()
        self._cancel_jobs()
        self.grant = None
        self.prompt = None
        if self.state is not MonitorState.TERMINATED:
            self.state = MonitorState.INACTIVE

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def handle_event(self, event: BrowserEvent) -> EventOutcome:
        if self.state is MonitorState.TERMINATED:
            return EventOutcome.block()
        return self.surface.dispatch(event)

    def _on_key_down(self, event: BrowserEvent) -> EventOutcome | None:
        combos = self._combos()
        matched = self._detector.key_down(event, combos)
        if matched is not None:
            if self.state is MonitorState.MONITORING:
                self.prompt = matched
                logger.info(f"🔑 {matched.value.title()} override prompt opened")
            return EventOutcome.block()
        if any(combo.is_trigger(event) for _, combo in combos):
            return EventOutcome.block()

        if self.state is MonitorState.OVERRIDDEN:
            return None
        rule = resolve_shortcut(event, self.policy)
        if rule is None:
            return None
        if self.state is MonitorState.AWAITING_CONSENT:
            return EventOutcome.block()

        outcome = self._violate(rule.violation, rule.message)
        if rule.action is PolicyAction.REPORT:
            outcome.prevent_default = False
        elif rule.action is PolicyAction.BLOCK_AND_REFULLSCREEN:
            self._start_reentry()
        return outcome

    def _on_key_up(self, event: BrowserEvent) -> None:
        self._detector.key_up(event)

    def _on_page_event(self, event: BrowserEvent) -> EventOutcome | None:
        _, kind, message = EVENT_RULES[event.type]

        if event.type is EventType.FULLSCREEN_CHANGE:
            if event.is_fullscreen:
                self._stop_reentry()
                return None
            if self.state is not MonitorState.MONITORING:
                return None
            outcome = self._violate(kind, message)
            self._start_reentry()
            return outcome

        if self.state is MonitorState.OVERRIDDEN:
            return None
        if self.state is MonitorState.AWAITING_CONSENT:
            return EventOutcome.block()

        outcome = self._violate(kind, message)
        if event.type is EventType.WINDOW_BLUR and self.state is MonitorState.MONITORING:
            self.scheduler.call_later(0, self.environment.focus, name="refocus")
        return outcome

    def _violate(self, kind: ViolationKind, message: str) -> EventOutcome:
        record = ViolationRecord(
            kind=kind,
            message=message,
            timestamp=self.scheduler.clock.now(),
            count=len(self.violations) + 1,
        )
        self.violations.append(record)
        logger.warning(
            f"🚨 Violation {record.count}/{self.threshold} ({kind.value}): {message}"
        )
        if self.on_violation is not None:
            self.on_violation(record)
        if record.count >= self.threshold:
            self._terminate()
        return EventOutcome(prevent_default=True, violation=kind, message=message)

    def _terminate(self) -> None:
        reason = (
            f"Quiz session terminated after {len(self.violations)} security violations."
        )
        self.teardown()
        self.state = MonitorState.TERMINATED
        logger.error(f"⛔ {reason}")
        if self.on_terminate is not None:
            self.on_terminate(reason)

    # ------------------------------------------------------------------
    # Fullscreen re-entry
    # ------------------------------------------------------------------
    def _start_reentry(self) -> None:
        if not self.policy.fullscreen_required or self._reentry_job is not None:
            return
        self._reentry_attempts = 0
        self._reentry_job = self.scheduler.call_every(
            settings.fullscreen_retry_interval,
            self._reentry_attempt,
            name="fullscreen-reentry",
            start_delay=0,
        )

    def _stop_reentry(self) -> None:
        if self._reentry_job is not None:
            self._reentry_job.cancel()
            self._reentry_job = None

    async def _reentry_attempt(self) -> None:
        if self.state is not MonitorState.MONITORING:
            self._stop_reentry()
            return
        if await self.environment.is_fullscreen():
            self._stop_reentry()
            return

        self._reentry_attempts += 1
        try:
            entered = await self.environment.request_fullscreen()
        except Exception as e:
            logger.warning(f"⚠️  Fullscreen re-entry attempt {self._reentry_attempts} failed: {e}")
            entered = False
        if entered:
            logger.info(f"🖥️  Fullscreen restored after {self._reentry_attempts} attempt(s)")
            self._stop_reentry()
        elif self._reentry_attempts >= settings.fullscreen_retry_limit:
            self.last_error = "Could not restore fullscreen. Please re-enter fullscreen manually."
            logger.warning(f"⚠️  {self.last_error}")
            self._stop_reentry()

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------
    def _today(self):
        return datetime.fromtimestamp(self.scheduler.clock.now()).date()

    def _combos(self) -> List[Tuple[OverrideKind, KeyCombo]]:
        combos: List[Tuple[OverrideKind, KeyCombo]] = []
        if self.admin_config.enabled:
            buttons = self.admin_config.trigger_buttons
            combos.append((OverrideKind.ADMIN, KeyCombo(buttons.button1, buttons.button2)))
        if self.personal_override_enabled:
            combos.append((OverrideKind.PERSONAL, KeyCombo(*daily_buttons(self._today()))))
        return combos

    def _require_prompt(self, kind: OverrideKind) -> None:
        if self.state is not MonitorState.MONITORING:
            raise InvalidStateError(f"Override not available ({self.state.value})")
        if self.prompt is not kind:
            raise InvalidStateError(f"No {kind.value} override prompt is open")

    def submit_personal_password(self, password: str) -> OverrideGrant:
        self._require_prompt(OverrideKind.PERSONAL)
        if password != daily_password(self._today()):
            logger.warning("🔑 Invalid personal override password")
            raise OverrideError("Invalid password")
        return self._activate(
            OverrideKind.PERSONAL, settings.personal_override_minutes * 60
        )

    async def submit_admin_password(self, password: str) -> OverrideGrant:
        """Validate the password with the server and open an admin grant."""
        self._require_prompt(OverrideKind.ADMIN)
        if self.api is None:
            raise OverrideError("Admin override is not available offline")
        try:
            result = await self.api.validate_admin_override(password)
        except ApiError as e:
            raise OverrideError(f"Admin validation failed: {e}") from e
        if not result.valid:
            logger.warning("🔑 Invalid admin override password")
            raise OverrideError(result.message or "Invalid admin password")

        timeout = result.session_timeout or self.admin_config.session_timeout
        return self._activate(OverrideKind.ADMIN, timeout)

    def dismiss_prompt(self) -> None:
        self.prompt = None

    def _activate(self, kind: OverrideKind, seconds: float) -> OverrideGrant:
        if self._expiry_job is not None:
            self._expiry_job.cancel()
        now = self.scheduler.clock.now()
        self.grant = OverrideGrant(kind=kind, activated_at=now, expires_at=now + seconds)
        self.state = MonitorState.OVERRIDDEN
        self.prompt = None
        self._stop_reentry()
        self._expiry_job = self.scheduler.call_later(
            seconds, self._expire_override, name=f"{kind.value}-override-expiry"
        )
        logger.info(f"🔓 {kind.value.title()} override active for {int(seconds)}s")
        if self.on_override_change is not None:
            self.on_override_change(self.grant)
        return self.grant

    def _expire_override(self) -> None:
        logger.info("🔒 Override expired, security re-enabled")
        self._restore_monitoring()

    def re_enable_security(self) -> None:
        """End the active override early."""
        if self.state is not MonitorState.OVERRIDDEN:
            raise InvalidStateError(f"No active override ({self.state.value})")
        logger.info("🔒 Security re-enabled")
        self._restore_monitoring()

    def _restore_monitoring(self) -> None:
        if self._expiry_job is not None:
            self._expiry_job.cancel()
            self._expiry_job = None
        if self.state is not MonitorState.OVERRIDDEN:
            return
        self.grant = None
        self.state = MonitorState.MONITORING
        if self.on_override_change is not None:
            self.on_override_change(None)
        if self.policy.fullscreen_required:
            self._start_reentry()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def status_summary(self) -> Dict[str, Any]:
        now = self.scheduler.clock.now()
        override = None
        if self.grant is not None:
            override = {
                "kind": self.grant.kind.value,
                "remaining": self.grant.remaining(now),
                "indicator": self.grant.indicator,
            }
        return {
            "state": self.state.value,
            "features": self.policy.active_features(),
            "violations": len(self.violations),
            "threshold": self.threshold,
            "override": override,
            "prompt": self.prompt.value if self.prompt else None,
            "last_error": self.last_error,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _remove_listeners(self) -> None:
        for event_type, listener in self._installed:
            self.surface.remove_listener(event_type, listener)
        self._installed = []
        self._detector.pressed.clear()

    def _cancel_jobs(self) -> None:
        self._stop_reentry()
        if self._expiry_job is not None:
            self._expiry_job.cancel()
            self._expiry_job = None
