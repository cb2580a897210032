"""Scheduler - invokes the orchestrator on a fixed interval."""
from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable

from tick_city.clock import Clock, TickContext

if TYPE_CHECKING:
    from tick_city.orchestrator import TickOrchestrator
    from tick_city.types import TickRecord

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 600.0

Hook = Callable[[TickContext], None]
TickHook = Callable[["TickRecord", TickContext], None]


class Scheduler:
    """Runs one tick per interval, never two at once.

    A tick that overruns its interval delays the next one instead of
    overlapping it.
    """

    def __init__(self, orchestrator: TickOrchestrator, interval: float = DEFAULT_INTERVAL) -> None:
        self._orchestrator = orchestrator
        self._clock = Clock(interval)
        self._start_hooks: list[Hook] = []
        self._stop_hooks: list[Hook] = []
        self._tick_hooks: list[TickHook] = []
        self._stop = threading.Event()
        self._running = threading.Lock()

    @property
    def clock(self) -> Clock:
        return self._clock

    def on_start(self, hook: Hook) -> None:
        self._start_hooks.append(hook)

    def on_stop(self, hook: Hook) -> None:
        self._stop_hooks.append(hook)

    def on_tick(self, hook: TickHook) -> None:
        self._tick_hooks.append(hook)

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def _tick(self) -> TickRecord:
        with self._running:
            self._clock.advance()
            record = self._orchestrator.run_tick()
        ctx = self._clock.context()
        for hook in self._tick_hooks:
            hook(record, ctx)
        return record

    def step(self) -> TickRecord:
        return self._tick()

    def run(self, n: int) -> list[TickRecord]:
        """Run ``n`` ticks back to back, without pacing."""
        self._stop.clear()
        self._fire(self._start_hooks)
        records: list[TickRecord] = []
        for _ in range(n):
            records.append(self._tick())
            if self._stop.is_set():
                break
        self._fire(self._stop_hooks)
        return records

    def run_forever(self) -> None:
        self._stop.clear()
        self._fire(self._start_hooks)
        while not self._stop.is_set():
            start = time.monotonic()
            try:
                self._tick()
            except Exception:
                # Failed ticks are retried on the next interval.
                logger.exception("Tick %d failed", self._clock.tick_number)
            elapsed = time.monotonic() - start
            if self._clock.overran(elapsed):
                logger.warning("Tick took %.1fs, longer than the %.1fs interval",
                               elapsed, self._clock.interval)
            self._stop.wait(self._clock.delay(elapsed))
        self._fire(self._stop_hooks)

    def _fire(self, hooks: list[Hook]) -> None:
        ctx = self._clock.context()
        for hook in hooks:
            hook(ctx)
