"""
Tests for billing_batch.services.timer_loop.

Synchronous ``run()`` tests inject a sleep function that advances a
DeterministicClock, so no wall-clock waiting happens.  The threaded tests
only check lifecycle: arming, interruption and draining.
"""

import threading
import time
from datetime import datetime, timedelta

import pytest

from billing_kernel.domain.clock import DeterministicClock

from billing_batch.services.timer_loop import TimerLoop


T1 = datetime(2024, 4, 1)
T2 = datetime(2024, 5, 1)
T3 = datetime(2024, 6, 1)


def _advancing_sleep(clock: DeterministicClock, slept: list[float] | None = None):
    def _sleep(seconds: float) -> bool:
        if slept is not None:
            slept.append(seconds)
        clock.advance(seconds)
        return False

    return _sleep


def _wait_for_exit(timer: TimerLoop, deadline_seconds: float = 5.0) -> None:
    deadline = time.monotonic() + deadline_seconds
    while timer.is_running and time.monotonic() < deadline:
        time.sleep(0.01)


class TestRun:

    def test_fires_once_at_t2_when_now_between(self):
        clock = DeterministicClock(datetime(2024, 4, 15))
        fired_at = []
        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))

        fired = timer.run([T1, T2], lambda: fired_at.append(clock.now()))

        assert fired == 1
        assert fired_at == [T2]
        assert timer.fired_count == 1

    def test_fires_every_future_instant_in_order(self):
        clock = DeterministicClock(datetime(2024, 3, 15))
        slept = []
        fired_at = []
        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock, slept))

        timer.run([T1, T2, T3], lambda: fired_at.append(clock.now()))

        assert fired_at == [T1, T2, T3]
        assert slept[0] == (T1 - datetime(2024, 3, 15)).total_seconds()

    def test_all_instants_past_fires_nothing(self, captured_logs):
        clock = DeterministicClock(datetime(2025, 1, 1))
        calls = []
        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))

        assert timer.run([T1, T2, T3], lambda: calls.append(1)) == 0
        assert calls == []
        assert any(r["message"] == "timer_sequence_exhausted" for r in captured_logs())

    def test_instant_equal_to_now_is_dropped(self):
        clock = DeterministicClock(T1)
        fired_at = []
        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))

        timer.run([T1, T2], lambda: fired_at.append(clock.now()))

        assert fired_at == [T2]

    def test_dropped_instants_logged(self, captured_logs):
        clock = DeterministicClock(datetime(2024, 5, 15))
        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))

        timer.run([T1, T2, T3], lambda: None)

        dropped = [r for r in captured_logs() if r["message"] == "timer_past_instants_dropped"]
        assert dropped[0]["dropped"] == 2

    def test_task_failure_does_not_stop_later_firings(self, captured_logs):
        clock = DeterministicClock(datetime(2024, 3, 1))
        calls = []

        def task():
            calls.append(clock.now())
            if len(calls) == 1:
                raise RuntimeError("database unavailable")

        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))

        assert timer.run([T1, T2, T3], task) == 3
        assert calls == [T1, T2, T3]
        failures = [r for r in captured_logs() if r["message"] == "timer_task_failed"]
        assert len(failures) == 1
        assert failures[0]["exc_message"] == "database unavailable"

    def test_next_instant_armed_before_task_runs(self):
        clock = DeterministicClock(datetime(2024, 3, 1))
        pulled = []

        def instants():
            for instant in (T1, T2):
                pulled.append(instant)
                yield instant

        observed = []
        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))

        timer.run(instants(), lambda: observed.append(list(pulled)))

        assert observed[0] == [T1, T2]

    def test_infinite_sequence_stops_on_sleep_interrupt(self):
        clock = DeterministicClock(datetime(2024, 1, 1))
        calls = []

        def sleep(seconds):
            clock.advance(seconds)
            return len(calls) >= 3

        def forever():
            instant = datetime(2024, 1, 2)
            while True:
                yield instant
                instant += timedelta(days=1)

        timer = TimerLoop(clock=clock, sleep=sleep)

        assert timer.run(forever(), lambda: calls.append(1)) == 3

    def test_clock_rechecked_after_early_wakeup(self):
        clock = DeterministicClock(datetime(2024, 3, 31, 23, 0))
        wakeups = []

        def short_sleep(seconds):
            wakeups.append(seconds)
            clock.advance(min(seconds, 1200))
            return False

        fired_at = []
        timer = TimerLoop(clock=clock, sleep=short_sleep)
        timer.run([T1], lambda: fired_at.append(clock.now()))

        assert fired_at == [T1]
        assert wakeups == [3600, 2400, 1200]


class TestScheduleThreaded:

    def test_tasks_run_on_pass_worker(self):
        clock = DeterministicClock(datetime(2024, 3, 1))
        threads = []
        done = threading.Event()

        def task():
            threads.append(threading.current_thread().name)
            if len(threads) == 3:
                done.set()

        timer = TimerLoop(clock=clock, sleep=_advancing_sleep(clock))
        timer.schedule([T1, T2, T3], task)

        assert done.wait(timeout=5)
        _wait_for_exit(timer)
        timer.stop(timeout=5)

        assert len(threads) == 3
        assert all(name.startswith("billing-timer-pass") for name in threads)
        assert timer.fired_count == 3

    def test_stop_interrupts_wait(self):
        clock = DeterministicClock(datetime(2024, 3, 1))
        calls = []
        timer = TimerLoop(clock=clock)  # real Event.wait

        timer.schedule([clock.now() + timedelta(hours=1)], lambda: calls.append(1))
        assert timer.is_running

        timer.stop(timeout=5)

        assert not timer.is_running
        assert calls == []

    def test_schedule_twice_rejected(self):
        clock = DeterministicClock(datetime(2024, 3, 1))
        timer = TimerLoop(clock=clock)
        timer.schedule([clock.now() + timedelta(days=1)], lambda: None)

        try:
            with pytest.raises(RuntimeError):
                timer.schedule([clock.now() + timedelta(days=2)], lambda: None)
        finally:
            timer.stop(timeout=5)

    def test_can_rearm_after_stop(self):
        clock = DeterministicClock(datetime(2024, 3, 1))
        timer = TimerLoop(clock=clock)
        timer.schedule([clock.now() + timedelta(days=1)], lambda: None)
        timer.stop(timeout=5)

        timer.schedule([clock.now() + timedelta(days=1)], lambda: None)
        assert timer.is_running
        timer.stop(timeout=5)
