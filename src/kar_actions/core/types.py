"""Core type definitions for kar-actions.

This module defines the fundamental enums and type aliases used throughout
the action engine.
"""

from __future__ import annotations

import sys
from enum import Enum
from typing import Any, TypeAlias

# StrEnum backport for Python < 3.11
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, Enum):
        """String enumeration compatibility for Python < 3.11."""

        def __str__(self) -> str:
            return str(self.value)


__all__ = [
    "ActionStatus",
    "ActionType",
    "Resource",
    "TimingState",
]


class ActionType(StrEnum):
    """Kind tag of an action within a knowledge artifact.

    The value is the code used in knowledge artifact definitions and is also
    the prefix of raw payload file names written on persistence.
    """

    CHECK_TRIGGER_CODES = "check-trigger-codes"
    CHECK_PARTICIPANTS = "check-participants"
    EVALUATE_CONDITION = "evaluate-condition"
    CREATE_REPORT = "create-report"
    VALIDATE_REPORT = "validate-report"
    SUBMIT_REPORT = "submit-report"
    DEIDENTIFY_REPORT = "deidentify-report"
    EVALUATE_MEASURE = "evaluate-measure"
    INITIATE_REPORTING_WORKFLOW = "initiate-reporting-workflow"
    EXECUTE_REPORTING_WORKFLOW = "execute-reporting-workflow"
    TERMINATE_REPORTING_WORKFLOW = "terminate-reporting-workflow"
    COMPLETE_REPORTING = "complete-reporting"


class ActionStatus(StrEnum):
    """Status of one execution attempt of an action.

    Attributes:
        SCHEDULED: Deferred by timing; the action will be reconsidered later.
        IN_PROGRESS: The action is currently executing.
        COMPLETED: The action ran. A false condition still completes.
        FAILED: An unrecoverable error stopped the action.
        CANCELED: The action was withdrawn before it ran.
    """

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further ledger entry is expected for this attempt."""
        return self in {ActionStatus.COMPLETED, ActionStatus.FAILED, ActionStatus.CANCELED}


class TimingState(StrEnum):
    """Outcome of a timing evaluation."""

    DUE = "due"
    NOT_YET_DUE = "not-yet-due"


Resource: TypeAlias = dict[str, Any]
"""A clinical resource in FHIR JSON form (carries ``resourceType`` and ``id``)."""
