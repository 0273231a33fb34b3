"""Timing evaluation for deferred actions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from kar_actions.core.types import TimingState

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action

__all__ = ["TimingDecision", "TimingEvaluator", "utc_now"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TimingDecision:
    """Whether an action is due, and when it becomes due.

    Attributes:
        state: ``DUE`` or ``NOT_YET_DUE``.
        due_at: The resolved due time; None for actions without timing.
    """

    state: TimingState
    due_at: datetime | None = None

    @property
    def is_due(self) -> bool:
        return self.state == TimingState.DUE


class TimingEvaluator:
    """Decides whether an action must be deferred.

    The evaluator is a pure function of the action's timing constraints, the
    trigger time and the clock. It has no side effects, so calling it again
    with the same inputs yields the same decision. Arranging the later
    re-invocation belongs to a rescheduler, not to this class.

    Example:
        >>> evaluator = TimingEvaluator(clock=lambda: fixed_now)
        >>> decision = evaluator.evaluate(action, context)
        >>> decision.is_due
        False
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize the evaluator.

        Args:
            clock: Source of the current time, timezone-aware.
        """
        self.clock = clock

    def due_at(self, action: Action, context: ProcessingContext) -> datetime | None:
        """Resolve the latest due time over all of the action's constraints."""
        if not action.timing:
            return None
        trigger_time = context.notification.trigger_time
        return max(constraint.resolve(trigger_time) for constraint in action.timing)

    def evaluate(self, action: Action, context: ProcessingContext) -> TimingDecision:
        """Decide whether ``action`` is due now.

        Args:
            action: The action about to execute.
            context: The run's processing context.

        Returns:
            The timing decision.
        """
        due_at = self.due_at(action, context)
        if due_at is None or due_at <= self.clock():
            return TimingDecision(TimingState.DUE, due_at)
        return TimingDecision(TimingState.NOT_YET_DUE, due_at)
