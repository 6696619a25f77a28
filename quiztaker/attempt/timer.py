"""
Attempt countdown with auto-submit on expiry.
"""

from typing import Any, Awaitable, Callable

from quiztaker.attempt.scheduler import Job, Scheduler
from quiztaker.logger import setup_logger
from quiztaker.utils.helpers import format_time

logger = setup_logger(__name__)

ExpireCallback = Callable[[], Awaitable[Any] | None]


class CountdownTimer:
    """
    Wall-clock countdown for one attempt.

    Remaining time is derived from (duration, started_at, now) on every
    read, so a timer rebuilt from a stored start time after a reload
    reports the same value as one that never stopped.
    """

    def __init__(
        self,
        duration: float,
        scheduler: Scheduler,
        started_at: float | None = None,
        on_expire: ExpireCallback | None = None,
        tick_interval: float = 1.0,
    ) -> None:
        """
        Args:
            duration: Total attempt length in seconds.
            scheduler: Tick source shared with the rest of the attempt.
            started_at: Epoch seconds the attempt began (None = not started).
            on_expire: Called exactly once when remaining time reaches zero.
            tick_interval: Seconds between ticks.
        """
        self.duration = max(0.0, float(duration))
        self.scheduler = scheduler
        self.started_at = started_at
        self.on_expire = on_expire
        self.tick_interval = tick_interval
        self.remaining_seconds: int = int(self.duration)
        self._job: Job | None = None
        self._expired = False

    @staticmethod
    def remaining_at(duration: float, started_at: float, now: float) -> float:
        """Seconds left for an attempt of `duration` started at `started_at`."""
        return max(0.0, duration - (now - started_at))

    def start(self, started_at: float | None = None) -> None:
        """Start ticking. Keeps a stored start time when resuming."""
        if started_at is not None:
            self.started_at = started_at
        if self.started_at is None:
            self.started_at = self.scheduler.clock.now()
        self.stop()
        self._job = self.scheduler.call_every(
            self.tick_interval, self._tick, name="countdown"
        )
        self.remaining_seconds = int(self.time_remaining())
        logger.info(
            f"⏱️  Countdown started ({format_time(self.time_remaining())} remaining)"
        )

    def stop(self) -> None:
        if self._job is not None:
            self._job.cancel()
            self._job = None

    @property
    def running(self) -> bool:
        return self._job is not None

    def elapsed(self) -> float:
        """Return elapsed seconds since start."""
        if self.started_at is None:
            return 0.0
        return max(0.0, self.scheduler.clock.now() - self.started_at)

    def time_remaining(self) -> float:
        """Return seconds remaining, floored at zero."""
        if self.started_at is None:
            return self.duration
        return self.remaining_at(self.duration, self.started_at, self.scheduler.clock.now())

    def is_expired(self) -> bool:
        return self.started_at is not None and self.time_remaining() <= 0.0

    def fraction_elapsed(self) -> float:
        if self.duration <= 0:
            return 1.0
        return min(1.0, self.elapsed() / self.duration)

    def formatted(self) -> str:
        return format_time(self.time_remaining())

    def _tick(self) -> Awaitable[Any] | None:
        self.remaining_seconds = int(self.time_remaining())
        if self.remaining_seconds > 0 or self._expired:
            return None

        self._expired = True
        self.stop()
        logger.warning("⌛ Countdown reached zero")
        if self.on_expire is not None:
            return self.on_expire()
        return None
