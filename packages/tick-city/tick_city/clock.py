"""Tick numbering and pacing for the fixed-interval scheduler."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TickContext:
    tick_number: int
    interval: float
    elapsed: float


class Clock:
    """Counts scheduled ticks and works out the wait before the next one.

    A tick that overruns the interval is followed immediately by the next;
    missed slots are not made up.
    """

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._tick_number = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def tick_number(self) -> int:
        return self._tick_number

    def advance(self) -> int:
        self._tick_number += 1
        return self._tick_number

    def overran(self, duration: float) -> bool:
        return duration > self._interval

    def delay(self, duration: float) -> float:
        """Seconds to wait after a tick that took ``duration`` seconds."""
        return max(0.0, self._interval - duration)

    def context(self) -> TickContext:
        # Nominal schedule time, not wall time.
        return TickContext(
            tick_number=self._tick_number,
            interval=self._interval,
            elapsed=self._tick_number * self._interval,
        )

    def reset(self, tick_number: int = 0) -> None:
        self._tick_number = tick_number
