# courier-dispatch/courier_dispatch/scheduler.py
"""
Auto-dispatch scheduler.

`DispatchScheduler` is the handle the rest of the engine receives; there is
no module-level scheduler. It owns one recurring asyncio task and moves
between three states:

- Disabled: nothing scheduled
- Armed: waiting for `next_run_at`
- Running: a cycle is in flight

Disabling cancels future ticks only. A cycle already running is shielded
from the cancellation and allowed to finish.

The cycle callback receives the CycleTrigger and may be a plain function or
a coroutine function. Whatever it raises is logged; the timer keeps going.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Set

from . import config, utils
from .models import CycleSummary, CycleTrigger, DispatchScheduleState, SchedulerStatus

logger = logging.getLogger(__name__)

CycleFunction = Callable[[CycleTrigger], Any]
CountdownListener = Callable[[DispatchScheduleState], None]


class DispatchScheduler:
    """
    Cancellable recurring scheduler for dispatch cycles.

    All methods that start work must be called from inside a running event
    loop.

    Args:
        interval_seconds: Seconds between scheduled cycles
        countdown_refresh_seconds: How often countdown listeners are refreshed
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        interval_seconds: float = config.DEFAULT_DISPATCH_INTERVAL_SECONDS,
        countdown_refresh_seconds: float = config.COUNTDOWN_REFRESH_SECONDS,
        clock: Callable[[], datetime] = utils.utc_now,
    ):
        self._interval = _validate_interval(interval_seconds)
        self._countdown_refresh = countdown_refresh_seconds
        self._clock = clock

        self._enabled = False
        self._cycle_fn: Optional[CycleFunction] = None
        self._next_run_at: Optional[datetime] = None
        self._dispatch_count = 0
        self._last_summary: Optional[CycleSummary] = None

        self._timer_task: Optional[asyncio.Task] = None
        self._countdown_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._countdown_listeners: List[CountdownListener] = []

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def next_run_at(self) -> Optional[datetime]:
        return self._next_run_at

    @property
    def dispatch_count(self) -> int:
        return self._dispatch_count

    @property
    def last_cycle_summary(self) -> Optional[CycleSummary]:
        return self._last_summary

    @property
    def cycle_in_flight(self) -> bool:
        """True while any cycle, scheduled or manual, is still running."""
        return bool(self._in_flight)

    @property
    def status(self) -> SchedulerStatus:
        if not self._enabled:
            return SchedulerStatus.DISABLED
        if self._in_flight:
            return SchedulerStatus.RUNNING
        return SchedulerStatus.ARMED

    def countdown(self) -> str:
        """Time until the next scheduled run, e.g. '12 sec' ('' when not armed)."""
        if not self._enabled or self._next_run_at is None:
            return ""
        remaining = (self._next_run_at - self._clock()).total_seconds()
        return utils.format_countdown(remaining)

    def state(self) -> DispatchScheduleState:
        return DispatchScheduleState(
            enabled=self._enabled,
            status=self.status,
            interval_seconds=self._interval,
            next_run_at=self._next_run_at,
            cumulative_dispatch_count=self._dispatch_count,
            last_cycle_summary=self._last_summary,
            countdown=self.countdown(),
            cycle_in_flight=self.cycle_in_flight,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def enable(self, cycle_fn: Optional[CycleFunction] = None, run_immediately: bool = False) -> None:
        """
        Arm the recurring schedule.

        Re-enabling replaces the previous timer. The dispatch counter is
        reset to zero.

        Args:
            cycle_fn: Callback run on every tick; defaults to the last one used
            run_immediately: Also run one cycle right away
        """
        self._dispatch_count = 0
        self._start(cycle_fn)
        logger.info(f"Auto-dispatch enabled (every {self._interval:g}s)")
        if run_immediately:
            self._spawn(CycleTrigger.SCHEDULED)

    def disable(self) -> None:
        """Stop future ticks. Safe to call in any state; in-flight cycles finish."""
        was_enabled = self._enabled
        self._enabled = False
        self._next_run_at = None
        for task in (self._timer_task, self._countdown_task):
            if task is not None and not task.done():
                task.cancel()
        self._timer_task = None
        self._countdown_task = None
        if was_enabled:
            logger.info("Auto-dispatch disabled")

    def manual_trigger(self, cycle_fn: Optional[CycleFunction] = None) -> asyncio.Task:
        """
        Run one cycle now, without touching `next_run_at`.

        Returns:
            The task running the cycle; awaiting it yields the callback result
        """
        fn = cycle_fn or self._cycle_fn
        if fn is None:
            raise ValueError("No cycle function to run")
        return self._spawn(CycleTrigger.MANUAL, fn)

    def set_dispatch_interval(self, seconds: float) -> None:
        """
        Change the interval; restarts the timer when enabled.

        Unlike `enable`, the restart keeps the dispatch count and does not
        run a cycle right away; the next tick is one new interval from now.

        Raises:
            ValueError: If seconds is not a positive number
        """
        self._interval = _validate_interval(seconds)
        logger.info(f"Dispatch interval set to {self._interval:g}s")
        if self._enabled:
            callback = self._cycle_fn
            self.disable()
            self._start(callback)

    def record_dispatch(self) -> None:
        """Count one successful assignment."""
        self._dispatch_count += 1

    def add_countdown_listener(self, listener: CountdownListener) -> None:
        self._countdown_listeners.append(listener)

    def remove_countdown_listener(self, listener: CountdownListener) -> None:
        if listener in self._countdown_listeners:
            self._countdown_listeners.remove(listener)

    async def wait_idle(self) -> None:
        """Wait until no cycle is in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def shutdown(self) -> None:
        """Disable and wait for in-flight cycles to finish."""
        self.disable()
        await self.wait_idle()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start(self, cycle_fn: Optional[CycleFunction]) -> None:
        fn = cycle_fn or self._cycle_fn
        if fn is None:
            raise ValueError("No cycle function to schedule")

        self.disable()
        loop = asyncio.get_running_loop()
        self._cycle_fn = fn
        self._enabled = True
        interval = self._interval
        self._next_run_at = self._clock() + timedelta(seconds=interval)
        self._timer_task = loop.create_task(self._run_timer(interval))
        self._countdown_task = loop.create_task(self._run_countdown())

    async def _run_timer(self, interval: float) -> None:
        while self._enabled:
            delay = 0.0
            if self._next_run_at is not None:
                delay = max(0.0, (self._next_run_at - self._clock()).total_seconds())
            await asyncio.sleep(delay)

            cycle = self._spawn(CycleTrigger.SCHEDULED)
            await asyncio.shield(cycle)

            self._next_run_at = self._clock() + timedelta(seconds=interval)

    async def _run_countdown(self) -> None:
        while self._enabled:
            state = self.state()
            for listener in list(self._countdown_listeners):
                try:
                    listener(state)
                except Exception:
                    logger.exception("Countdown listener failed")
            await asyncio.sleep(self._countdown_refresh)

    def _spawn(self, trigger: CycleTrigger, cycle_fn: Optional[CycleFunction] = None) -> asyncio.Task:
        fn = cycle_fn or self._cycle_fn
        task = asyncio.get_running_loop().create_task(self._invoke(fn, trigger))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _invoke(self, cycle_fn: CycleFunction, trigger: CycleTrigger) -> Any:
        """Run the callback, logging anything it raises."""
        try:
            result = cycle_fn(trigger)
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.exception(f"Dispatch cycle ({trigger.value}) raised")
            return None

        if isinstance(result, CycleSummary):
            self._last_summary = result
        return result


def _validate_interval(seconds: float) -> float:
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        raise ValueError(f"Dispatch interval must be a number, got {seconds!r}")
    if seconds <= 0:
        raise ValueError(f"Dispatch interval must be positive, got {seconds}")
    return float(seconds)
