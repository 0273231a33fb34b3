"""Rescheduling of actions that are not yet due."""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from kar_actions.exceptions import SchedulingError

if TYPE_CHECKING:
    from collections.abc import Callable

    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action
    from kar_actions.core.models import ActionOutcome
    from kar_actions.engine.executor import ActionExecutionEngine

__all__ = ["LocalRescheduler", "cron_for_period"]

logger = logging.getLogger(__name__)


def cron_for_period(period: timedelta | float) -> str:
    """Derive a cron expression firing once per period at minute granularity.

    Args:
        period: The recurrence period, as a timedelta or in seconds.

    Returns:
        A Quartz-style cron expression such as ``"0 0/5 * * * ?"``.

    Raises:
        SchedulingError: If the period is shorter than one minute.

    Example:
        >>> cron_for_period(timedelta(minutes=15))
        '0 0/15 * * * ?'
    """
    seconds = period.total_seconds() if isinstance(period, timedelta) else float(period)
    if seconds < 60:
        msg = f"Period of {seconds:g}s is shorter than one minute"
        raise SchedulingError(msg)
    return f"0 0/{int(seconds // 60)} * * * ?"


class LocalRescheduler:
    """In-process rescheduler using the running event loop's timers.

    The delay until the due time is rounded up to the next whole minute. When
    the timer fires, ``engine.execute(context, action)`` runs as a new task on
    the same loop. Deferred work does not survive a process restart.

    Attributes:
        clock: Source of the current time, timezone-aware.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._handles: dict[tuple[str, str], asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[ActionOutcome]] = set()

    @staticmethod
    def delay_seconds(now: datetime, due_at: datetime) -> int:
        """Seconds from ``now`` to ``due_at``, rounded up to whole minutes."""
        remaining = (due_at - now).total_seconds()
        if remaining <= 0:
            return 0
        return math.ceil(remaining / 60) * 60

    def schedule(
        self,
        engine: ActionExecutionEngine,
        context: ProcessingContext,
        action: Action,
        due_at: datetime,
    ) -> None:
        """Arrange a re-execution of ``action`` at ``due_at``.

        A second schedule for the same run and action replaces the first.
        Must be called from within a running event loop.
        """
        key = (context.correlation_id, action.action_id)
        delay = self.delay_seconds(self.clock(), due_at)
        loop = asyncio.get_running_loop()

        previous = self._handles.pop(key, None)
        if previous is not None:
            previous.cancel()

        logger.info("Rescheduling action %s of run %s in %d seconds", action.action_id, context.correlation_id, delay)
        self._handles[key] = loop.call_later(delay, self._fire, key, engine, context, action)

    def _fire(
        self,
        key: tuple[str, str],
        engine: ActionExecutionEngine,
        context: ProcessingContext,
        action: Action,
    ) -> None:
        self._handles.pop(key, None)
        task = asyncio.ensure_future(engine.execute(context, action))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[ActionOutcome]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Deferred action execution failed", exc_info=task.exception())

    @property
    def pending(self) -> int:
        """Number of timers that have not fired yet."""
        return len(self._handles)

    @property
    def tasks(self) -> set[asyncio.Task[ActionOutcome]]:
        return set(self._tasks)

    def cancel_all(self) -> None:
        """Cancel every pending timer and running deferred execution."""
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        for task in self._tasks:
            task.cancel()
