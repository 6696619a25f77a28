from datetime import date

from quiztaker.lockdown.events import BrowserEvent
from quiztaker.lockdown.overrides import (
    ComboDetector,
    KeyCombo,
    OverrideGrant,
    OverrideKind,
    daily_buttons,
    daily_password,
)


def test_daily_buttons():
    assert daily_buttons(date(2024, 3, 15)) == ("7", "4")
    assert daily_buttons(date(2024, 12, 18)) == ("1", "4")


def test_daily_password():
    # (2024 + 3 + 15) * 7 = 14294
    assert daily_password(date(2024, 3, 15)) == "admin4294"


def test_modifier_combo_in_either_order():
    combo = KeyCombo("Ctrl", "6")
    assert combo.matches(BrowserEvent.keydown("6", ctrl=True), set())
    assert not combo.matches(BrowserEvent.keydown("6"), set())
    assert combo.matches(BrowserEvent.keydown("Control", ctrl=True), {"6"})
    assert not combo.matches(BrowserEvent.keydown("Control", ctrl=True), set())


def test_digit_pair_uses_pressed_keys():
    detector = ComboDetector()
    combos = [(OverrideKind.PERSONAL, KeyCombo("7", "4"))]

    assert detector.key_down(BrowserEvent.keydown("7"), combos) is None
    assert detector.key_down(BrowserEvent.keydown("4"), combos) is OverrideKind.PERSONAL
    assert detector.pressed == set()


def test_key_up_without_modifier_clears_pressed_keys():
    detector = ComboDetector()
    combos = [(OverrideKind.PERSONAL, KeyCombo("7", "4"))]

    detector.key_down(BrowserEvent.keydown("7"), combos)
    detector.key_up(BrowserEvent.keyup("x"))
    assert detector.key_down(BrowserEvent.keydown("4"), combos) is None


def test_key_up_with_modifier_held_keeps_other_keys():
    detector = ComboDetector()
    detector.key_down(BrowserEvent.keydown("6"), [])
    detector.key_down(BrowserEvent.keydown("Shift", shift=True), [])
    detector.key_up(BrowserEvent.keyup("x", shift=True))
    assert "6" in detector.pressed


def test_admin_combo_wins_over_personal():
    detector = ComboDetector()
    combos = [
        (OverrideKind.ADMIN, KeyCombo("Ctrl", "4")),
        (OverrideKind.PERSONAL, KeyCombo("7", "4")),
    ]
    detector.key_down(BrowserEvent.keydown("7", ctrl=True), combos)
    assert detector.key_down(BrowserEvent.keydown("4", ctrl=True), combos) is OverrideKind.ADMIN


def test_grant_indicator_and_remaining():
    admin = OverrideGrant(OverrideKind.ADMIN, activated_at=100, expires_at=400)
    personal = OverrideGrant(OverrideKind.PERSONAL, activated_at=100, expires_at=700)
    assert admin.indicator == "visible-banner"
    assert personal.indicator == "discreet-marker"
    assert admin.remaining(350) == 50
    assert admin.remaining(500) == 0
