"""
Lockdown rules.

Keyboard handling is a dispatch table from (key, modifiers) to a rule,
each rule gated by the policy flag that enables it, so every rule can be
checked in isolation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Set, Tuple

from quiztaker.lockdown.events import BrowserEvent, EventType, ViolationKind
from quiztaker.models import SecuritySettings

Signature = Tuple[str, bool, bool, bool, bool]  # key, ctrl, alt, shift, meta


class PolicyAction(str, Enum):
    BLOCK = "block"  # prevent default and record a violation
    BLOCK_AND_REFULLSCREEN = "block-and-refullscreen"
    REPORT = "report"  # record a violation, the browser cannot be stopped


@dataclass(frozen=True)
class ShortcutRule:
    name: str
    gate: str  # SecuritySettings property that enables the rule
    action: PolicyAction
    violation: ViolationKind
    message: str

    def enabled(self, settings: SecuritySettings) -> bool:
        return bool(getattr(settings, self.gate))


def _sig(key: str, ctrl=False, alt=False, shift=False, meta=False) -> Signature:
    return (key, ctrl, alt, shift, meta)


def _ctrl_or_cmd(key: str, shift: bool = False) -> Iterable[Signature]:
    yield _sig(key, ctrl=True, shift=shift)
    yield _sig(key, meta=True, shift=shift)


COPY_PASTE = ShortcutRule(
    "copy-paste",
    "copy_paste_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Copy/Paste operations are disabled during the quiz",
)
NEW_TAB = ShortcutRule(
    "new-tab",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Opening a new tab is not allowed during the quiz.",
)
NEW_WINDOW = ShortcutRule(
    "new-window",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Opening a new window is not allowed during the quiz.",
)
REOPEN_TAB = ShortcutRule(
    "reopen-tab",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Reopening closed tabs is not allowed during the quiz.",
)
INCOGNITO = ShortcutRule(
    "incognito",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Opening incognito windows is not allowed during the quiz.",
)
CLOSE_TAB = ShortcutRule(
    "close-tab",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Closing the browser tab is not allowed during the quiz.",
)
CLOSE_WINDOW = ShortcutRule(
    "close-window",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Closing the browser window is not allowed during the quiz.",
)
BROWSER_UI = ShortcutRule(
    "browser-ui",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Browser address bar, history, bookmarks, downloads and search are not available during the quiz.",
)
FUNCTION_KEY = ShortcutRule(
    "function-key",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.BLOCKED_SHORTCUT,
    "Function keys are disabled during the quiz.",
)
DEV_TOOLS = ShortcutRule(
    "dev-tools",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.DEV_TOOLS_ATTEMPT,
    "Developer tools are not allowed during the quiz.",
)
VIEW_SOURCE = ShortcutRule(
    "view-source",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.DEV_TOOLS_ATTEMPT,
    "Viewing the page source is not allowed during the quiz.",
)
FULLSCREEN_EXIT_KEY = ShortcutRule(
    "fullscreen-exit-key",
    "fullscreen_required",
    PolicyAction.BLOCK_AND_REFULLSCREEN,
    ViolationKind.FULLSCREEN_EXIT,
    "Leaving fullscreen is not allowed. The quiz will return to fullscreen.",
)
TASK_SWITCH = ShortcutRule(
    "task-switch",
    "shortcuts_blocked",
    PolicyAction.BLOCK,
    ViolationKind.TAB_SWITCH,
    "Switching to another application is not allowed during the quiz.",
)
APP_SWITCH = ShortcutRule(
    "app-switch",
    "shortcuts_blocked",
    PolicyAction.REPORT,
    ViolationKind.TAB_SWITCH,
    "Application switching detected. Please stay focused on the quiz.",
)


def _build_keymap() -> Dict[Signature, ShortcutRule]:
    keymap: Dict[Signature, ShortcutRule] = {}

    def add(rule: ShortcutRule, *signatures: Signature) -> None:
        for signature in signatures:
            keymap[signature] = rule

    for key in ("c", "v", "x", "a"):
        add(COPY_PASTE, *_ctrl_or_cmd(key))

    add(NEW_TAB, *_ctrl_or_cmd("t"))
    add(NEW_WINDOW, _sig("n", ctrl=True))
    add(REOPEN_TAB, _sig("T", ctrl=True, shift=True))
    add(INCOGNITO, _sig("N", ctrl=True, shift=True))
    add(CLOSE_TAB, *_ctrl_or_cmd("w"))
    add(CLOSE_WINDOW, _sig("F4", alt=True))
    for key in ("l", "d", "h", "j", "k", "e"):
        add(BROWSER_UI, _sig(key, ctrl=True))
    add(BROWSER_UI, _sig("F6"), _sig("Delete", ctrl=True, shift=True))

    add(FUNCTION_KEY, _sig("F1"), _sig("F2"))
    add(DEV_TOOLS, _sig("F12"), *_ctrl_or_cmd("I", shift=True), *_ctrl_or_cmd("J", shift=True))
    add(VIEW_SOURCE, *_ctrl_or_cmd("u"))
    add(FULLSCREEN_EXIT_KEY, _sig("Escape"), _sig("F11"))
    add(TASK_SWITCH, _sig("Tab", alt=True))
    add(APP_SWITCH, _sig("Tab", meta=True))
    return keymap


KEYMAP: Dict[Signature, ShortcutRule] = _build_keymap()


def resolve_shortcut(
    event: BrowserEvent, settings: SecuritySettings
) -> ShortcutRule | None:
    """Rule for a keydown under `settings`, or None if the key is allowed."""
    if event.key is None:
        return None
    rule = KEYMAP.get(event.signature)
    if rule is None or not rule.enabled(settings):
        return None
    return rule


# Non-keyboard events: event type -> (gate, violation, message)
EVENT_RULES: Dict[EventType, Tuple[str, ViolationKind, str]] = {
    EventType.CONTEXT_MENU: (
        "right_click_blocked",
        ViolationKind.RIGHT_CLICK,
        "Right-click is disabled during the quiz.",
    ),
    EventType.MIDDLE_CLICK: (
        "shortcuts_blocked",
        ViolationKind.BLOCKED_SHORTCUT,
        "Middle mouse button clicks are disabled to prevent opening new tabs.",
    ),
    EventType.DRAG_START: (
        "shortcuts_blocked",
        ViolationKind.BLOCKED_SHORTCUT,
        "Drag and drop is disabled during the quiz.",
    ),
    EventType.VISIBILITY_HIDDEN: (
        "tab_switch_monitored",
        ViolationKind.TAB_SWITCH,
        "The quiz page became hidden. Please return to the quiz immediately.",
    ),
    EventType.WINDOW_BLUR: (
        "tab_switch_monitored",
        ViolationKind.WINDOW_BLUR,
        "The quiz window lost focus. Please stay focused on the quiz at all times.",
    ),
    EventType.FULLSCREEN_CHANGE: (
        "fullscreen_required",
        ViolationKind.FULLSCREEN_EXIT,
        "Fullscreen mode exited. The quiz will return to fullscreen.",
    ),
}


def required_event_types(settings: SecuritySettings | None) -> Set[EventType]:
    """Event types the monitor must listen to. Empty when nothing is enabled."""
    if settings is None or not settings.any_enabled:
        return set()
    # Key listeners are always needed for override combos.
    types = {EventType.KEYDOWN, EventType.KEYUP}
    for event_type, (gate, _, _) in EVENT_RULES.items():
        if getattr(settings, gate):
            types.add(event_type)
    return types


def blocked_signatures(settings: SecuritySettings) -> Set[Signature]:
    """Keyboard signatures the host page should cancel without asking."""
    return {
        signature
        for signature, rule in KEYMAP.items()
        if rule.action is not PolicyAction.REPORT and rule.enabled(settings)
    }
