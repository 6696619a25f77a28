"""
Where the lockdown monitor plugs into a host.

EventSurface is the listener registry the host dispatches DOM events
through. BrowserEnvironment is the small set of browser capabilities the
monitor needs (fullscreen and focus).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Dict, List

from quiztaker.lockdown.events import BrowserEvent, EventOutcome, EventType
from quiztaker.logger import setup_logger

logger = setup_logger(__name__)

Listener = Callable[[BrowserEvent], EventOutcome | None]


class EventSurface:
    """Listener registry keyed by event type."""

    def __init__(self) -> None:
        self._listeners: Dict[EventType, List[Listener]] = {}
        self.on_change: Callable[[], None] | None = None

    def add_listener(self, event_type: EventType, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)
        self._changed()

    def remove_listener(self, event_type: EventType, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            self._listeners.pop(event_type, None)
        self._changed()

    def listener_count(self, event_type: EventType | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    def event_types(self) -> List[EventType]:
        return list(self._listeners)

    def dispatch(self, event: BrowserEvent) -> EventOutcome:
        """Run every listener for the event and merge their outcomes."""
        merged = EventOutcome.allow()
        for listener in list(self._listeners.get(event.type, [])):
            outcome = listener(event)
            if outcome is None:
                continue
            if outcome.prevent_default:
                merged.prevent_default = True
            if outcome.violation is not None and merged.violation is None:
                merged.violation = outcome.violation
                merged.message = outcome.message
        return merged

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()


class BrowserEnvironment(ABC):
    """Browser capabilities used by the lockdown monitor."""

    @abstractmethod
    async def request_fullscreen(self) -> bool:
        """Ask for fullscreen. Returns False if the browser refused."""

    @abstractmethod
    async def is_fullscreen(self) -> bool:
        ...

    @abstractmethod
    async def exit_fullscreen(self) -> None:
        ...

    @abstractmethod
    async def focus(self) -> None:
        ...


class RemoteEnvironment(BrowserEnvironment):
    """
    Environment for a browser shell driven over HTTP.

    The shell cannot be called back synchronously, so commands are queued
    and drained by the shell; fullscreen state is whatever the shell last
    reported.
    """

    def __init__(self) -> None:
        self.fullscreen = False
        self.commands: List[str] = []

    def report_fullscreen(self, value: bool) -> None:
        self.fullscreen = value

    async def request_fullscreen(self) -> bool:
        self.commands.append("request-fullscreen")
        return self.fullscreen

    async def is_fullscreen(self) -> bool:
        return self.fullscreen

    async def exit_fullscreen(self) -> None:
        self.commands.append("exit-fullscreen")
        self.fullscreen = False

    async def focus(self) -> None:
        self.commands.append("focus")

    def drain_commands(self) -> List[str]:
        commands, self.commands = self.commands, []
        return commands
