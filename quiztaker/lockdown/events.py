"""Browser events fed into the lockdown monitor, and what the host must do with them."""

from __future__ import annotations

from enum import Enum
from typing import Tuple

from pydantic import BaseModel, Field

MODIFIER_KEYS = frozenset({"Control", "Alt", "Shift", "Meta"})


class EventType(str, Enum):
    KEYDOWN = "keydown"
    KEYUP = "keyup"
    CONTEXT_MENU = "contextmenu"
    MIDDLE_CLICK = "middleclick"
    DRAG_START = "dragstart"
    VISIBILITY_HIDDEN = "visibilityhidden"
    WINDOW_BLUR = "blur"
    FULLSCREEN_CHANGE = "fullscreenchange"


class ViolationKind(str, Enum):
    FULLSCREEN_EXIT = "fullscreen-exit"
    RIGHT_CLICK = "right-click"
    TAB_SWITCH = "tab-switch"
    BLOCKED_SHORTCUT = "blocked-shortcut"
    DEV_TOOLS_ATTEMPT = "dev-tools-attempt"
    WINDOW_BLUR = "window-blur"


class BrowserEvent(BaseModel):
    """A DOM event as reported by the host page."""

    type: EventType
    key: str | None = None
    ctrl: bool = False
    alt: bool = False
    shift: bool = False
    meta: bool = False
    is_fullscreen: bool | None = Field(
        default=None, description="New fullscreen state for fullscreenchange events"
    )

    @property
    def signature(self) -> Tuple[str | None, bool, bool, bool, bool]:
        return (self.key, self.ctrl, self.alt, self.shift, self.meta)

    @property
    def has_modifier(self) -> bool:
        return self.ctrl or self.alt or self.shift or self.meta

    @classmethod
    def keydown(cls, key: str, **modifiers: bool) -> "BrowserEvent":
        return cls(type=EventType.KEYDOWN, key=key, **modifiers)

    @classmethod
    def keyup(cls, key: str, **modifiers: bool) -> "BrowserEvent":
        return cls(type=EventType.KEYUP, key=key, **modifiers)


class EventOutcome(BaseModel):
    """Host instructions for one event."""

    prevent_default: bool = False
    violation: ViolationKind | None = None
    message: str | None = None

    @classmethod
    def allow(cls) -> "EventOutcome":
        return cls()

    @classmethod
    def block(cls) -> "EventOutcome":
        return cls(prevent_default=True)
