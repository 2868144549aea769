from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import simpy


@dataclass(slots=True)
class TimerHandle:
    label: str
    cancelled: bool = False
    fired: int = 0

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not self.cancelled


class Timers:
    """
    setTimeout / setInterval on a SimPy clock.

    Each timer is a SimPy process that checks its handle before firing, so a
    cancelled timer never runs its callback. cancel_all() is used on stop and
    on termination.
    """

    def __init__(self, env: simpy.Environment) -> None:
        self.env = env
        self._handles: list[TimerHandle] = []

    def set_timeout(
        self, delay_s: float, fn: Callable[[], object], *, label: str = "timeout"
    ) -> TimerHandle:
        self._handles = [h for h in self._handles if h.pending]
        handle = TimerHandle(label=label)
        self._handles.append(handle)
        self.env.process(self._timeout_proc(handle, max(0.0, float(delay_s)), fn))
        return handle

    def set_interval(
        self, period_s: float, fn: Callable[[], object], *, label: str = "interval"
    ) -> TimerHandle:
        if period_s <= 0:
            raise ValueError("interval period must be > 0")
        handle = TimerHandle(label=label)
        self._handles.append(handle)
        self.env.process(self._interval_proc(handle, float(period_s), fn))
        return handle

    def cancel_all(self) -> None:
        for h in self._handles:
            h.cancel()
        self._handles.clear()

    def active(self) -> list[TimerHandle]:
        return [h for h in self._handles if h.pending]

    def _timeout_proc(self, handle: TimerHandle, delay_s: float, fn: Callable[[], object]):
        yield self.env.timeout(delay_s)
        if handle.cancelled:
            return
        handle.fired += 1
        handle.cancelled = True  # one-shot
        fn()

    def _interval_proc(self, handle: TimerHandle, period_s: float, fn: Callable[[], object]):
        while True:
            yield self.env.timeout(period_s)
            if handle.cancelled:
                return
            handle.fired += 1
            fn()
