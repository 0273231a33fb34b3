"""Exception hierarchy for kar-actions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kar_actions.core.models import LogicalKey

__all__ = (
    "ActionGraphError",
    "ActionNotFoundError",
    "ArtifactIntegrityError",
    "ContextConstructionError",
    "KarActionsError",
    "QueryError",
    "RecoverableQueryError",
    "RegistryFrozenError",
    "ReportCreatorNotFoundError",
    "SchedulingError",
)


class KarActionsError(Exception):
    """Base exception for all kar-actions errors.

    All exceptions raised by kar-actions inherit from this class, so callers
    can catch every engine-related error with a single except clause.
    """


class ContextConstructionError(KarActionsError):
    """Raised when a processing context cannot be built from trigger metadata.

    This is fatal for the run: no action executes without a context.

    Attributes:
        missing: Names of the trigger attributes that were absent.
    """

    def __init__(self, missing: list[str]) -> None:
        """Initialize the exception with the missing attribute names.

        Args:
            missing: Names of the trigger attributes that were absent.
        """
        self.missing = missing
        super().__init__(f"Cannot build processing context, missing: {', '.join(missing)}")


class ActionGraphError(KarActionsError):
    """Raised when a knowledge artifact's action graph is invalid.

    This occurs when the combined sub-action and related-action edges form a
    cycle, or when a related action points at an unknown action id.

    Attributes:
        errors: List of validation error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        """Initialize the exception with validation errors.

        Args:
            errors: List of validation error messages.
        """
        self.errors = errors
        super().__init__(f"Action graph validation failed: {'; '.join(errors)}")


class ActionNotFoundError(KarActionsError):
    """Raised when an action id cannot be resolved in a knowledge artifact.

    Attributes:
        action_id: The id that was looked up.
    """

    def __init__(self, action_id: str) -> None:
        self.action_id = action_id
        super().__init__(f"Action '{action_id}' not found")


class RegistryFrozenError(KarActionsError):
    """Raised when a report creator is registered after the registry was frozen."""

    def __init__(self, profile: str) -> None:
        self.profile = profile
        super().__init__(f"Cannot register profile '{profile}': report creator registry is frozen")


class ReportCreatorNotFoundError(KarActionsError):
    """Raised by strict registry access when no creator serves a profile.

    Attributes:
        profile: The output profile identifier.
    """

    def __init__(self, profile: str) -> None:
        self.profile = profile
        super().__init__(f"No report creator registered for profile '{profile}'")


class QueryError(KarActionsError):
    """Raised by a query service when a fetch fails.

    A plain ``QueryError`` is treated as transport-fatal for the action that
    issued it. See :class:`RecoverableQueryError` for the soft variant.

    Attributes:
        query_key: The named query or data requirement that failed.
    """

    def __init__(self, query_key: str, reason: str | None = None) -> None:
        self.query_key = query_key
        self.reason = reason
        msg = f"Query '{query_key}' failed"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class RecoverableQueryError(QueryError):
    """Raised when a fetch failed but the action may continue with zero resources."""


class ArtifactIntegrityError(KarActionsError):
    """Raised when a persisted artifact version is inconsistent.

    Version numbers are assigned under a per-key lock, so this only happens when
    another writer bypassed the lock. It requires manual reconciliation.

    Attributes:
        logical_key: The logical report key of the message.
        expected_version: The version that was assigned.
        actual_version: The version reported by the store, if any.
    """

    def __init__(
        self,
        logical_key: LogicalKey,
        expected_version: int,
        actual_version: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.logical_key = logical_key
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = f"Version conflict for {logical_key}: expected {expected_version}"
        if actual_version is not None:
            msg += f", found {actual_version}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class SchedulingError(KarActionsError):
    """Raised when a deferred action cannot be scheduled for re-invocation."""
