"""
Serialized timer loop.

Every controller mutation happens inside one of these callbacks, on one
thread, so controller state needs no locks. Periodic tasks are keyed by
name: starting a running task again just re-times it, cancelling an idle
one is a no-op. A callback that raises is logged and the loop carries on.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from .logs import log


@dataclass
class PeriodicTask:
    name: str
    callback: Callable[[float], object]
    interval: float | None  # None for one-shot
    next_due: float
    runs: int = 0
    failures: int = 0


class Scheduler:
    """Single-threaded periodic and one-shot task runner with an injectable clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sleep: Callable[[float], None] = time.sleep):
        self.clock = clock
        self.sleep = sleep
        self.tasks: dict[str, PeriodicTask] = {}
        self._stopped = False

    def every(self, name: str, interval: float, callback: Callable[[float], object], fire_now: bool = False) -> None:
        """Run callback every interval seconds. Replaces a task of the same name."""
        now = self.clock()
        self.tasks[name] = PeriodicTask(name, callback, interval, now if fire_now else now + interval)

    def once(self, name: str, delay: float, callback: Callable[[float], object]) -> None:
        """Run callback once after delay seconds. Replaces a pending task of the same name."""
        self.tasks[name] = PeriodicTask(name, callback, None, self.clock() + delay)

    def cancel(self, name: str) -> bool:
        return self.tasks.pop(name, None) is not None

    def is_running(self, name: str) -> bool:
        return name in self.tasks

    def next_deadline(self) -> float | None:
        if not self.tasks:
            return None
        return min(t.next_due for t in self.tasks.values())

    def run_pending(self, now: float | None = None) -> int:
        """Run every task that is due. Returns the number of callbacks invoked."""
        now = self.clock() if now is None else now
        ran = 0
        due = sorted((t for t in self.tasks.values() if t.next_due <= now), key=lambda t: t.next_due)
        for task in due:
            # A previous callback may have cancelled or replaced this task
            if self.tasks.get(task.name) is not task:
                continue
            if task.interval is None:
                del self.tasks[task.name]
            else:
                task.next_due += task.interval
                if task.next_due <= now:
                    # Fell behind; skip missed ticks rather than bursting
                    task.next_due = now + task.interval
            task.runs += 1
            ran += 1
            try:
                task.callback(now)
            except Exception as e:
                task.failures += 1
                log("error", "tick_failed", task=task.name, error=str(e))
        return ran

    def stop(self) -> None:
        self._stopped = True

    def run_forever(self) -> None:
        """Sleep until the next deadline, run what is due, repeat until stop()."""
        self._stopped = False
        while not self._stopped:
            deadline = self.next_deadline()
            if deadline is None:
                break
            delay = deadline - self.clock()
            if delay > 0:
                self.sleep(delay)
            self.run_pending()
