"""
Fixed-interval scheduling of the sidecar's periodic work.

The `Scheduler` owns a set of named `PeriodicTask`s (materialization and
eviction in production). `run_forever` gives every task its own loop on the
asyncio event loop and runs task bodies in worker threads, so a slow tick of
one task never delays the other. Each loop sleeps until the task's next
deadline on the scheduler clock, so the period does not stretch by the time the
body takes. `run_due` applies the same deadlines synchronously; together with
an injected clock and sleep function they let tests drive the schedule without
waiting.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class PeriodicTask:
    name: str
    interval: float
    action: Callable[[], Any]
    next_run: float = 0.0
    runs: int = 0
    failures: int = 0


class Scheduler:
    """
    Runs named tasks at fixed intervals.

    Attributes:
        clock: Monotonic time source every task deadline is measured against.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.clock = clock
        self._sleep = sleep
        self._tasks: Dict[str, PeriodicTask] = {}

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    def add_task(self, name: str, interval: float, action: Callable[[], Any]) -> PeriodicTask:
        """
        Registers ``action`` to run every ``interval`` seconds.

        The first run happens one interval after registration.
        """
        if interval <= 0:
            raise ValueError(f"interval for {name!r} must be positive, got {interval}")
        if name in self._tasks:
            raise ValueError(f"task {name!r} already scheduled")
        task = PeriodicTask(name=name, interval=interval, action=action, next_run=self.clock() + interval)
        self._tasks[name] = task
        return task

    def _fire(self, task: PeriodicTask) -> None:
        task.runs += 1
        try:
            task.action()
        except Exception as exc:
            task.failures += 1
            LOGGER.error("Periodic task %s failed: %s", task.name, exc, exc_info=True)

    def run_due(self, now: Optional[float] = None) -> List[str]:
        """
        Fires every task whose deadline is at or before ``now``.

        A task that fell several intervals behind runs once and is rescheduled
        one interval after ``now``; missed ticks are dropped, not replayed.

        Returns:
            Names of the tasks that ran, in registration order.
        """
        reference = self.clock() if now is None else now
        fired = []
        for task in self._tasks.values():
            if not self._claim_tick(task, reference):
                continue
            self._fire(task)
            fired.append(task.name)
        return fired

    @staticmethod
    def _claim_tick(task: PeriodicTask, now: float) -> bool:
        """
        Moves the deadline of ``task`` forward if it is due at ``now``.

        Deadlines stay on the ``interval`` grid regardless of how long the
        task body takes; when the task is more than one interval late the
        grid restarts from ``now``.
        """
        if task.next_run > now:
            return False
        task.next_run += task.interval
        if task.next_run <= now:
            task.next_run = now + task.interval
        return True

    async def _task_loop(self, task: PeriodicTask) -> None:
        while True:
            delay = task.next_run - self.clock()
            if delay > 0:
                await self._sleep(delay)
            if not self._claim_tick(task, self.clock()):
                continue
            await asyncio.to_thread(self._fire, task)

    async def run_forever(self) -> None:
        """Runs all tasks until cancelled or until the sleep function raises."""
        if not self._tasks:
            raise RuntimeError("no tasks scheduled")
        LOGGER.info(
            "Scheduler started: %s",
            ", ".join(f"{task.name} every {task.interval:g}s" for task in self._tasks.values()),
        )
        loops = [
            asyncio.create_task(self._task_loop(task), name=f"periodic:{task.name}")
            for task in self._tasks.values()
        ]
        try:
            await asyncio.gather(*loops)
        finally:
            for loop_task in loops:
                loop_task.cancel()
            for loop_task in loops:
                with suppress(asyncio.CancelledError, Exception):
                    await loop_task


__all__ = ["PeriodicTask", "Scheduler"]
