"""
Cooperative timer scheduler.

Debounced field writes and the periodic validity recheck are explicit tasks in
an arena keyed by name instead of ambient timers. Each key holds at most one
pending task; scheduling under an existing key replaces the earlier task. The
clock is injectable so timer races can be replayed deterministically.
"""

import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class ManualClock:
    """Clock that only moves when advanced."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@dataclass
class ScheduledTask:
    key: str
    due: float
    callback: Callable[[], Any]
    interval: Optional[float] = None
    token: Optional[int] = None
    seq: int = 0
    cancelled: bool = field(default=False, compare=False)

    @property
    def is_periodic(self) -> bool:
        return self.interval is not None


class Scheduler:
    """Arena of pending timer tasks keyed by name."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self._tasks: Dict[str, ScheduledTask] = {}
        self._seq = itertools.count()

    def call_later(self, key: str, delay: float, callback: Callable[[], Any],
                   token: Optional[int] = None) -> ScheduledTask:
        """
        Schedule callback after delay seconds, replacing any task under key.

        Args:
            key: Slot name; one pending task per slot
            delay: Delay in seconds
            callback: Zero-argument callable
            token: Optional generation marker stored with the task

        Returns:
            The scheduled task
        """
        self.cancel(key)
        task = ScheduledTask(key=key, due=self.clock() + delay, callback=callback,
                             token=token, seq=next(self._seq))
        self._tasks[key] = task
        return task

    def call_every(self, key: str, interval: float, callback: Callable[[], Any]) -> ScheduledTask:
        """Schedule callback every interval seconds until cancelled."""
        self.cancel(key)
        task = ScheduledTask(key=key, due=self.clock() + interval, callback=callback,
                             interval=interval, seq=next(self._seq))
        self._tasks[key] = task
        return task

    def cancel(self, key: str) -> bool:
        """Cancel the task under key. Returns True if one was pending."""
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancelled = True
        return True

    def cancel_prefix(self, prefix: str) -> int:
        """Cancel every task whose key starts with prefix."""
        keys = [key for key in self._tasks if key.startswith(prefix)]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def pending(self, key: str) -> Optional[ScheduledTask]:
        return self._tasks.get(key)

    def pending_keys(self) -> List[str]:
        return sorted(self._tasks)

    def run_now(self, key: str) -> bool:
        """Run the task under key immediately. One-shot tasks are consumed."""
        task = self._tasks.get(key)
        if task is None:
            return False
        self._execute(task)
        return True

    def run_due(self) -> int:
        """
        Run every task whose deadline has passed, in deadline order.

        Tasks scheduled or cancelled by a running callback take effect
        immediately. A periodic task runs at most once per call.

        Returns:
            Number of callbacks executed
        """
        now = self.clock()
        due = sorted((t for t in self._tasks.values() if t.due <= now),
                     key=lambda t: (t.due, t.seq))
        executed = 0
        for task in due:
            if task.cancelled or self._tasks.get(task.key) is not task:
                continue
            self._execute(task)
            executed += 1
        return executed

    def _execute(self, task: ScheduledTask) -> None:
        if task.is_periodic:
            task.due = self.clock() + task.interval
        else:
            self._tasks.pop(task.key, None)
        try:
            task.callback()
        except Exception as e:
            logger.error(f"Scheduled task '{task.key}' failed: {e}", exc_info=True)
