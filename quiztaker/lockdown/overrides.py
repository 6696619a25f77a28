"""
Lockdown override secrets, grants and key-combination detection.

The personal override is derived from the calendar date alone, so anyone
who can read this module can compute it. It is kept for compatibility with
deployed quizzes and can be switched off with `personal_override_enabled`.
The admin override is validated by the server and is the trustworthy path.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Set, Tuple

from quiztaker.lockdown.events import BrowserEvent

MODIFIER_BUTTONS = {"Ctrl": "ctrl", "Alt": "alt", "Shift": "shift"}
MODIFIER_KEY_NAMES = {"Ctrl": "Control", "Alt": "Alt", "Shift": "Shift"}
_PASSWORD_MULTIPLIER = 7


class OverrideKind(str, Enum):
    PERSONAL = "personal"
    ADMIN = "admin"


@dataclass(frozen=True)
class OverrideGrant:
    kind: OverrideKind
    activated_at: float
    expires_at: float

    def remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)

    @property
    def indicator(self) -> str:
        # Admin overrides show a banner; personal ones only a faint marker.
        return "visible-banner" if self.kind is OverrideKind.ADMIN else "discreet-marker"


def daily_buttons(today: date) -> Tuple[str, str]:
    """Digit keys for the personal override on `today`."""
    return str(today.day % 9 + 1), str(today.month % 9 + 1)


def daily_password(today: date) -> str:
    """Personal override password for `today`."""
    number = ((today.year + today.month + today.day) * _PASSWORD_MULTIPLIER) % 10000
    return f"admin{number}"


@dataclass(frozen=True)
class KeyCombo:
    """Two trigger buttons: a modifier plus a digit, or two digits."""

    button1: str
    button2: str

    @property
    def modifier(self) -> str | None:
        for button in (self.button1, self.button2):
            if button in MODIFIER_BUTTONS:
                return button
        return None

    @property
    def is_digit_pair(self) -> bool:
        return self.button1.isdigit() and self.button2.isdigit()

    def other_button(self) -> str:
        return self.button2 if self.button1 == self.modifier else self.button1

    def matches(self, event: BrowserEvent, pressed: Set[str]) -> bool:
        """True if `event` completes the combo given the keys already held."""
        modifier = self.modifier
        if modifier is not None:
            if not getattr(event, MODIFIER_BUTTONS[modifier]):
                return False
            other = self.other_button()
            # Digit first, then the modifier
            if event.key == MODIFIER_KEY_NAMES[modifier]:
                return other in pressed
            return event.key == other
        if self.is_digit_pair:
            keys = pressed | {event.key}
            return self.button1 in keys and self.button2 in keys
        return False

    def is_trigger(self, event: BrowserEvent) -> bool:
        """True if `event` is the modifier form of this combo, regardless of state."""
        modifier = self.modifier
        if modifier is None:
            return False
        return getattr(event, MODIFIER_BUTTONS[modifier]) and event.key == self.other_button()


@dataclass
class ComboDetector:
    """Rolling set of pressed keys used to spot override combos."""

    pressed: Set[str] = field(default_factory=set)

    def key_down(
        self, event: BrowserEvent, combos: Iterable[Tuple[OverrideKind, KeyCombo]]
    ) -> OverrideKind | None:
        """Record a keydown and return the first combo it completes."""
        for kind, combo in combos:
            if combo.matches(event, self.pressed):
                self.pressed.clear()
                return kind
        if event.key:
            self.pressed.add(event.key)
        return None

    def key_up(self, event: BrowserEvent) -> None:
        if event.key:
            self.pressed.discard(event.key)
        if not event.has_modifier:
            self.pressed.clear()
