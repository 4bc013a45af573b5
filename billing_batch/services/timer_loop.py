"""
TimerLoop -- fires a task at each instant of a recurrence.

Contract:
    ``schedule(instants, task)`` starts a daemon timer thread that waits for
    each due instant and hands the task to a single pass-worker thread.
    ``run(instants, task)`` executes the same loop synchronously on the
    calling thread (used by the timer thread itself and by tests with an
    injected clock and sleep function).

Algorithm:
    1. Drop every leading instant <= now (missed triggers are not caught up).
    2. Wait until the next instant is due.
    3. On firing, take the following instant from the sequence first, then
       run (or dispatch) the task.
    4. Stop permanently when the sequence is exhausted or ``stop()`` is
       called.

Architecture: billing_batch/services.  Pure threading; knows nothing about
    invoices.

Invariants enforced:
    - A task failure is caught, logged as ``timer_task_failed`` and never
      stops later firings.
    - Firings dispatched to the pass worker run one at a time, in order; a
      firing that comes due while a pass is still running waits for it.
    - All "now" readings come from the injected Clock.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger

logger = get_logger("batch.timer")

Task = Callable[[], Any]
# Waits up to the given seconds; a truthy return means "stop requested".
Sleeper = Callable[[float], Any]


class TimerLoop:
    """Self-arming timer over a sequence of instants.

    Non-goals:
        - No catch-up of instants missed while the process was down.
        - No persistence of the next trigger.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
        name: str = "billing-timer",
    ):
        self._clock = clock or SystemClock()
        self._stop_event = threading.Event()
        self._sleep: Sleeper = sleep or self._stop_event.wait
        self._name = name
        self._thread: threading.Thread | None = None
        self._worker: ThreadPoolExecutor | None = None
        self._fired_count = 0
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def schedule(self, instants: Iterable[datetime], task: Task) -> None:
        """Start the timer thread for ``instants``.

        Raises:
            RuntimeError: If the loop is already running.
        """
        if self.is_running:
            raise RuntimeError(f"{self._name} is already running")

        self._stop_event.clear()
        self._worker = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"{self._name}-pass",
        )
        worker = self._worker
        self._thread = threading.Thread(
            target=self._thread_main,
            args=(instants, task, lambda t: worker.submit(self._run_task, t)),
            name=self._name,
            daemon=True,
        )
        self._thread.start()
        logger.info("timer_started", extra={"timer": self._name})

    def run(
        self,
        instants: Iterable[datetime],
        task: Task,
        dispatch: Callable[[Task], Any] | None = None,
    ) -> int:
        """Run the loop on the calling thread until exhaustion or stop.

        Returns the number of firings during this call.
        """
        fire = dispatch or self._run_task
        iterator = iter(instants)
        fired = 0

        due = self._first_due(iterator)
        while due is not None:
            if self._wait_until(due):
                logger.info("timer_interrupted", extra={"timer": self._name})
                return fired

            following = next(iterator, None)
            logger.info(
                "timer_fired",
                extra={
                    "timer": self._name,
                    "instant": due,
                    "next_instant": following,
                },
            )
            with self._lock:
                self._fired_count += 1
            fired += 1
            fire(task)
            due = following

        logger.info("timer_sequence_exhausted", extra={"timer": self._name})
        return fired

    def stop(self, timeout: float = 30.0) -> None:
        """Interrupt the wait, join the timer thread and drain the pass worker.

        Args:
            timeout: Max seconds to wait for the timer thread.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        if self._worker is not None:
            self._worker.shutdown(wait=True)
            self._worker = None
        logger.info(
            "timer_stopped",
            extra={"timer": self._name, "fired_count": self.fired_count},
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def fired_count(self) -> int:
        with self._lock:
            return self._fired_count

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _thread_main(
        self,
        instants: Iterable[datetime],
        task: Task,
        dispatch: Callable[[Task], Any],
    ) -> None:
        try:
            self.run(instants, task, dispatch)
        except Exception:
            # The recurrence itself failed; nothing left to arm.
            logger.exception("timer_loop_failed", extra={"timer": self._name})

    def _first_due(self, iterator: Iterator[datetime]) -> datetime | None:
        now = self._clock.now()
        dropped = 0
        for instant in iterator:
            if instant > now:
                if dropped:
                    logger.info(
                        "timer_past_instants_dropped",
                        extra={"timer": self._name, "dropped": dropped},
                    )
                return instant
            dropped += 1
        return None

    def _wait_until(self, due: datetime) -> bool:
        """Block until ``due``.  True when a stop was requested instead."""
        while True:
            if self._stop_event.is_set():
                return True
            delay = (due - self._clock.now()).total_seconds()
            if delay <= 0:
                return False
            if self._sleep(delay):
                return True

    def _run_task(self, task: Task) -> None:
        try:
            task()
        except Exception:
            logger.exception("timer_task_failed", extra={"timer": self._name})
