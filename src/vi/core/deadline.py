from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import TypeVar

T = TypeVar("T")

# Shared pool for bounded external calls. A call that overruns its budget keeps
# running in the pool; its result is discarded.
_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="vi-external")


class GenerationTimeout(RuntimeError):
    pass


class Deadline:
    def __init__(self, budget_s: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.start_ts = clock()
        self.budget_s = max(0.0, float(budget_s))

    def remaining_s(self) -> float:
        elapsed = self._clock() - self.start_ts
        remaining = self.budget_s - elapsed
        return remaining if remaining > 0 else 0.0

    def expired(self) -> bool:
        return self.remaining_s() <= 0.0

    def run(self, label: str, fn: Callable[[], T]) -> T:
        """
        Run fn within the remaining budget. Raises GenerationTimeout when the
        budget is gone or the call overruns it; exceptions from fn propagate.
        """
        remaining = self.remaining_s()
        if remaining <= 0.0:
            raise GenerationTimeout(f"{label}: deadline already expired")

        future = _EXECUTOR.submit(fn)
        try:
            return future.result(timeout=remaining)
        except FutureTimeout as e:
            future.cancel()
            raise GenerationTimeout(f"{label}: exceeded {self.budget_s:.2f}s budget") from e
