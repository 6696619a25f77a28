import pytest

from quiztaker.lockdown.events import BrowserEvent, EventType, ViolationKind
from quiztaker.lockdown.policy import (
    APP_SWITCH,
    COPY_PASTE,
    DEV_TOOLS,
    FULLSCREEN_EXIT_KEY,
    NEW_TAB,
    PolicyAction,
    blocked_signatures,
    required_event_types,
    resolve_shortcut,
)
from quiztaker.models import SecuritySettings

COPY_ONLY = SecuritySettings(disable_copy_paste=True)
FULLSCREEN = SecuritySettings(enable_fullscreen=True)


def test_all_false_policy_needs_no_listeners():
    assert required_event_types(SecuritySettings()) == set()
    assert required_event_types(None) == set()


def test_null_flags_are_false():
    policy = SecuritySettings.model_validate({"enableFullscreen": None, "disableCopyPaste": True})
    assert policy.enable_fullscreen is False
    assert policy.copy_paste_blocked


@pytest.mark.parametrize("key", ["c", "v", "x", "a"])
def test_copy_paste_rule_covers_ctrl_and_cmd(key):
    assert resolve_shortcut(BrowserEvent.keydown(key, ctrl=True), COPY_ONLY) is COPY_PASTE
    assert resolve_shortcut(BrowserEvent.keydown(key, meta=True), COPY_ONLY) is COPY_PASTE


def test_rules_are_gated_by_their_flag():
    new_tab = BrowserEvent.keydown("t", ctrl=True)
    assert resolve_shortcut(new_tab, COPY_ONLY) is None
    assert resolve_shortcut(new_tab, FULLSCREEN) is NEW_TAB
    assert resolve_shortcut(BrowserEvent.keydown("c", ctrl=True), FULLSCREEN) is None


def test_plain_keys_are_allowed():
    assert resolve_shortcut(BrowserEvent.keydown("c"), COPY_ONLY) is None
    assert resolve_shortcut(BrowserEvent.keydown("t"), FULLSCREEN) is None


def test_dev_tools_shortcuts():
    for event in (
        BrowserEvent.keydown("F12"),
        BrowserEvent.keydown("I", ctrl=True, shift=True),
        BrowserEvent.keydown("J", meta=True, shift=True),
    ):
        rule = resolve_shortcut(event, FULLSCREEN)
        assert rule is DEV_TOOLS
        assert rule.violation is ViolationKind.DEV_TOOLS_ATTEMPT


def test_escape_blocks_and_refullscreens():
    rule = resolve_shortcut(BrowserEvent.keydown("Escape"), FULLSCREEN)
    assert rule is FULLSCREEN_EXIT_KEY
    assert rule.action is PolicyAction.BLOCK_AND_REFULLSCREEN


def test_meta_tab_is_report_only():
    rule = resolve_shortcut(BrowserEvent.keydown("Tab", meta=True), FULLSCREEN)
    assert rule is APP_SWITCH
    assert rule.action is PolicyAction.REPORT
    assert ("Tab", False, False, False, True) not in blocked_signatures(FULLSCREEN)
    assert ("Tab", False, True, False, False) in blocked_signatures(FULLSCREEN)


def test_fullscreen_implies_right_click_and_tab_monitoring():
    types = required_event_types(FULLSCREEN)
    assert EventType.CONTEXT_MENU in types
    assert EventType.VISIBILITY_HIDDEN in types
    assert EventType.WINDOW_BLUR in types
    assert EventType.FULLSCREEN_CHANGE in types


def test_copy_paste_only_listens_to_keys():
    assert required_event_types(COPY_ONLY) == {EventType.KEYDOWN, EventType.KEYUP}


def test_proctoring_mode_enables_everything():
    policy = SecuritySettings(enable_proctoring_mode=True)
    assert policy.fullscreen_required
    assert policy.copy_paste_blocked
    assert policy.right_click_blocked
    assert policy.tab_switch_monitored
    assert policy.shortcuts_blocked
    assert len(required_event_types(policy)) == len(EventType)
