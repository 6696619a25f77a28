from conftest import START

from quiztaker.attempt.timer import CountdownTimer


def test_remaining_is_a_pure_function_of_start_and_now():
    assert CountdownTimer.remaining_at(600, START, START + 100) == 500
    assert CountdownTimer.remaining_at(600, START, START + 700) == 0


def test_rebuilt_timer_reports_same_remaining(scheduler, clock):
    original = CountdownTimer(600, scheduler)
    original.start()
    clock.advance(125)

    rebuilt = CountdownTimer(600, scheduler, started_at=original.started_at)
    assert rebuilt.time_remaining() == original.time_remaining() == 475


async def test_expiry_fires_exactly_once(scheduler):
    calls = []
    timer = CountdownTimer(5, scheduler, on_expire=lambda: calls.append("expired"))
    timer.start()

    await scheduler.advance(4)
    assert calls == []
    assert timer.remaining_seconds == 1

    await scheduler.advance(10)
    assert calls == ["expired"]
    assert not timer.running
    assert timer.time_remaining() == 0
    assert timer.is_expired()


async def test_async_expire_callback_is_awaited(scheduler):
    calls = []

    async def on_expire():
        calls.append(scheduler.clock.now())

    timer = CountdownTimer(3, scheduler, on_expire=on_expire)
    timer.start()
    await scheduler.advance(3)
    assert calls == [START + 3]


async def test_resumed_timer_past_deadline_expires_on_first_tick(scheduler):
    calls = []
    timer = CountdownTimer(60, scheduler, on_expire=lambda: calls.append(1))
    timer.start(started_at=START - 120)

    assert timer.time_remaining() == 0
    await scheduler.advance(1)
    assert calls == [1]


def test_formatted_and_fraction_elapsed(scheduler, clock):
    timer = CountdownTimer(600, scheduler)
    assert timer.time_remaining() == 600
    timer.start()
    clock.advance(65)

    assert timer.formatted() == "8:55"
    assert abs(timer.fraction_elapsed() - 65 / 600) < 1e-9


def test_stop_cancels_ticks(scheduler):
    timer = CountdownTimer(600, scheduler)
    timer.start()
    assert scheduler.pending == 1
    timer.stop()
    assert scheduler.pending == 0
    assert not timer.running
