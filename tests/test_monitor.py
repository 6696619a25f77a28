from datetime import datetime

import pytest

from conftest import START, FakeEnvironment, FakeOverrideApi

from quiztaker.lockdown.events import BrowserEvent, EventType, ViolationKind
from quiztaker.lockdown.monitor import LockdownMonitor, MonitorState
from quiztaker.lockdown.overrides import OverrideKind, daily_buttons, daily_password
from quiztaker.models import AdminOverrideConfig, AdminValidation, SecuritySettings, TriggerButtons
from quiztaker.utils.exceptions import ApiError, InvalidStateError, OverrideError

TODAY = datetime.fromtimestamp(START).date()
COPY_ONLY = SecuritySettings(disable_copy_paste=True)
FULLSCREEN = SecuritySettings(enable_fullscreen=True)
CTRL_C = BrowserEvent.keydown("c", ctrl=True)


@pytest.fixture
def make_monitor(surface, environment, scheduler):
    def factory(policy, **kwargs):
        kwargs.setdefault("threshold", 5)
        kwargs.setdefault("personal_override_enabled", True)
        return LockdownMonitor(
            policy, surface=surface, environment=environment, scheduler=scheduler, **kwargs
        )

    return factory


def open_personal_prompt(monitor):
    first, second = daily_buttons(TODAY)
    monitor.handle_event(BrowserEvent.keydown(first))
    monitor.handle_event(BrowserEvent.keydown(second))
    assert monitor.prompt is OverrideKind.PERSONAL


def test_all_false_policy_is_a_noop(make_monitor, surface):
    monitor = make_monitor(SecuritySettings())
    monitor.begin()

    assert monitor.state is MonitorState.INACTIVE
    assert surface.listener_count() == 0
    outcome = monitor.handle_event(CTRL_C)
    assert not outcome.prevent_default
    assert monitor.violations == []


def test_copy_paste_violation_is_recorded(make_monitor, surface):
    monitor = make_monitor(COPY_ONLY)
    monitor.begin()

    assert monitor.state is MonitorState.MONITORING
    assert surface.listener_count(EventType.KEYDOWN) == 1
    assert surface.listener_count(EventType.CONTEXT_MENU) == 0

    outcome = monitor.handle_event(CTRL_C)
    assert outcome.prevent_default
    assert outcome.violation is ViolationKind.BLOCKED_SHORTCUT
    assert monitor.violations[0].count == 1
    assert monitor.violations[0].timestamp == START

    assert not monitor.handle_event(BrowserEvent.keydown("c")).prevent_default


async def test_fullscreen_waits_for_consent(make_monitor, environment):
    monitor = make_monitor(FULLSCREEN)
    monitor.begin()
    assert monitor.state is MonitorState.AWAITING_CONSENT

    outcome = monitor.handle_event(BrowserEvent.keydown("F12"))
    assert outcome.prevent_default
    assert outcome.violation is None
    assert monitor.violations == []

    assert await monitor.grant_fullscreen_consent()
    assert monitor.state is MonitorState.MONITORING
    assert environment.requests == 1


async def test_refused_consent_stays_awaiting(surface, scheduler):
    monitor = LockdownMonitor(
        FULLSCREEN, surface=surface, environment=FakeEnvironment(grant=False), scheduler=scheduler
    )
    monitor.begin()

    assert not await monitor.grant_fullscreen_consent()
    assert monitor.state is MonitorState.AWAITING_CONSENT
    assert monitor.last_error


def test_threshold_terminates_and_blocks_everything(make_monitor, surface):
    reasons = []
    monitor = make_monitor(COPY_ONLY, on_terminate=reasons.append)
    monitor.begin()

    for _ in range(5):
        monitor.handle_event(CTRL_C)

    assert monitor.state is MonitorState.TERMINATED
    assert len(reasons) == 1
    assert surface.listener_count() == 0

    later = monitor.handle_event(BrowserEvent.keydown("q"))
    assert later.prevent_default
    assert later.violation is None
    assert len(monitor.violations) == 5


def test_override_at_fourth_violation_still_terminates_at_fifth(make_monitor):
    monitor = make_monitor(COPY_ONLY)
    monitor.begin()
    for _ in range(4):
        monitor.handle_event(CTRL_C)

    open_personal_prompt(monitor)
    grant = monitor.submit_personal_password(daily_password(TODAY))
    assert grant.indicator == "discreet-marker"
    assert monitor.state is MonitorState.OVERRIDDEN

    outcome = monitor.handle_event(CTRL_C)
    assert not outcome.prevent_default
    assert len(monitor.violations) == 4

    monitor.re_enable_security()
    assert monitor.state is MonitorState.MONITORING
    monitor.handle_event(CTRL_C)
    assert monitor.state is MonitorState.TERMINATED


def test_wrong_personal_password(make_monitor):
    monitor = make_monitor(COPY_ONLY)
    monitor.begin()
    open_personal_prompt(monitor)

    with pytest.raises(OverrideError):
        monitor.submit_personal_password("admin0000x")
    assert monitor.state is MonitorState.MONITORING


def test_personal_override_can_be_disabled(make_monitor):
    monitor = make_monitor(COPY_ONLY, personal_override_enabled=False)
    monitor.begin()
    first, second = daily_buttons(TODAY)
    monitor.handle_event(BrowserEvent.keydown(first))
    monitor.handle_event(BrowserEvent.keydown(second))

    assert monitor.prompt is None
    with pytest.raises(InvalidStateError):
        monitor.submit_personal_password(daily_password(TODAY))


async def test_personal_override_expires_after_ten_minutes(make_monitor, scheduler):
    monitor = make_monitor(COPY_ONLY)
    monitor.begin()
    open_personal_prompt(monitor)
    monitor.submit_personal_password(daily_password(TODAY))

    await scheduler.advance(599)
    assert monitor.state is MonitorState.OVERRIDDEN
    await scheduler.advance(1)
    assert monitor.state is MonitorState.MONITORING


async def test_new_grant_cancels_previous_expiry(make_monitor, scheduler):
    monitor = make_monitor(COPY_ONLY)
    monitor.begin()
    open_personal_prompt(monitor)
    monitor.submit_personal_password(daily_password(TODAY))

    await scheduler.advance(60)
    monitor.re_enable_security()
    await scheduler.advance(60)
    open_personal_prompt(monitor)
    monitor.submit_personal_password(daily_password(TODAY))

    # First grant would have expired at +600
    await scheduler.advance(500)
    assert monitor.state is MonitorState.OVERRIDDEN
    await scheduler.advance(100)
    assert monitor.state is MonitorState.MONITORING


async def test_admin_override_returns_to_monitoring_after_timeout(make_monitor, scheduler):
    api = FakeOverrideApi(
        config=AdminOverrideConfig(enabled=True, trigger_buttons=TriggerButtons(button1="Ctrl", button2="6")),
        validation=AdminValidation(valid=True, session_timeout=300),
    )
    changes = []
    monitor = make_monitor(COPY_ONLY, api=api, on_override_change=changes.append)
    await monitor.load_admin_config()
    monitor.begin()

    outcome = monitor.handle_event(BrowserEvent.keydown("6", ctrl=True))
    assert outcome.prevent_default
    assert outcome.violation is None
    assert monitor.prompt is OverrideKind.ADMIN

    grant = await monitor.submit_admin_password("letmein")
    assert grant.indicator == "visible-banner"
    assert monitor.state is MonitorState.OVERRIDDEN
    assert monitor.status_summary()["override"]["remaining"] == 300

    await scheduler.advance(299)
    assert monitor.state is MonitorState.OVERRIDDEN
    await scheduler.advance(1)
    assert monitor.state is MonitorState.MONITORING
    assert monitor.grant is None
    assert changes[0] is grant
    assert changes[-1] is None


async def test_invalid_admin_password_changes_nothing(make_monitor):
    api = FakeOverrideApi(
        config=AdminOverrideConfig(enabled=True),
        validation=AdminValidation(valid=False, message="Invalid admin password"),
    )
    monitor = make_monitor(COPY_ONLY, api=api)
    await monitor.load_admin_config()
    monitor.begin()
    monitor.handle_event(BrowserEvent.keydown("6", ctrl=True))

    with pytest.raises(OverrideError, match="Invalid admin password"):
        await monitor.submit_admin_password("wrong")
    assert monitor.state is MonitorState.MONITORING
    assert monitor.grant is None


async def test_admin_config_failure_leaves_admin_override_off(make_monitor):
    api = FakeOverrideApi(config_error=ApiError("Server error", 500))
    monitor = make_monitor(COPY_ONLY, api=api)
    config = await monitor.load_admin_config()
    monitor.begin()

    assert config.enabled is False
    monitor.handle_event(BrowserEvent.keydown("6", ctrl=True))
    assert monitor.prompt is None


async def test_fullscreen_exit_reenters(make_monitor, environment, scheduler):
    monitor = make_monitor(FULLSCREEN)
    monitor.begin()
    await monitor.grant_fullscreen_consent()

    environment.fullscreen = False
    outcome = monitor.handle_event(
        BrowserEvent(type=EventType.FULLSCREEN_CHANGE, is_fullscreen=False)
    )
    assert outcome.violation is ViolationKind.FULLSCREEN_EXIT

    await scheduler.advance(0)
    assert environment.fullscreen
    assert environment.requests == 2
    await scheduler.advance(10)
    assert environment.requests == 2


async def test_reentry_is_bounded(make_monitor, environment, scheduler):
    monitor = make_monitor(FULLSCREEN)
    monitor.begin()
    await monitor.grant_fullscreen_consent()

    environment.grant = False
    environment.fullscreen = False
    outcome = monitor.handle_event(BrowserEvent.keydown("Escape"))
    assert outcome.prevent_default
    assert outcome.violation is ViolationKind.FULLSCREEN_EXIT

    await scheduler.advance(30)
    assert environment.requests == 1 + 10
    assert monitor.last_error


async def test_window_blur_is_recorded_and_refocused(make_monitor, environment, scheduler):
    monitor = make_monitor(SecuritySettings(disable_tab_switch=True))
    monitor.begin()

    outcome = monitor.handle_event(BrowserEvent(type=EventType.WINDOW_BLUR))
    assert outcome.violation is ViolationKind.WINDOW_BLUR
    await scheduler.advance(0)
    assert environment.focus_calls == 1


def test_right_click_is_blocked(make_monitor):
    monitor = make_monitor(SecuritySettings(disable_right_click=True))
    monitor.begin()
    outcome = monitor.handle_event(BrowserEvent(type=EventType.CONTEXT_MENU))
    assert outcome.prevent_default
    assert outcome.violation is ViolationKind.RIGHT_CLICK


async def test_teardown_removes_listeners_and_timers(make_monitor, surface, scheduler):
    monitor = make_monitor(COPY_ONLY)
    monitor.begin()
    open_personal_prompt(monitor)
    monitor.submit_personal_password(daily_password(TODAY))
    assert scheduler.pending == 1

    monitor.teardown()
    assert surface.listener_count() == 0
    assert scheduler.pending == 0
    assert monitor.state is MonitorState.INACTIVE


def test_status_summary_lists_features(make_monitor):
    monitor = make_monitor(SecuritySettings(enable_fullscreen=True, disable_copy_paste=True))
    monitor.begin()
    summary = monitor.status_summary()
    assert summary["state"] == "awaiting-fullscreen-consent"
    assert summary["features"] == ["Fullscreen", "Copy/Paste disabled"]
    assert summary["threshold"] == 5
    assert summary["override"] is None
