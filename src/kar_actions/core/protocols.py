"""Core protocols for kar-actions.

This module defines the Protocol-based interfaces of the collaborators the
action engine calls. Using Protocol allows duck typing while maintaining type
safety, and every collaborator is passed to the engine explicitly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action, DataRequirement, QueryFilter
    from kar_actions.core.models import LogicalKey, PublicHealthMessage
    from kar_actions.core.types import Resource
    from kar_actions.engine.executor import ActionExecutionEngine


__all__ = ["CorrelationSink", "MessageStore", "QueryService", "ReportCreator", "Rescheduler"]


@runtime_checkable
class QueryService(Protocol):
    """Access to the external clinical record system.

    Every method writes what it fetched into the processing context, keyed by
    query key or data requirement id. A failure that should leave the action
    running raises :class:`~kar_actions.exceptions.RecoverableQueryError`;
    anything else is treated as transport-fatal for the calling action.
    """

    async def execute_query(
        self,
        context: ProcessingContext,
        query_key: str,
        query_filter: QueryFilter,
    ) -> list[Resource]:
        """Run one named query and store its results under ``query_key``.

        Args:
            context: The run's processing context.
            query_key: Key the results are stored under.
            query_filter: The query to run.

        Returns:
            The resources fetched.
        """
        ...

    async def get_filtered_data(
        self,
        context: ProcessingContext,
        requirements: Sequence[DataRequirement],
    ) -> None:
        """Fetch resources for each requirement by resource type and profile.

        Args:
            context: The run's processing context.
            requirements: The action's declared input requirements.
        """
        ...

    async def load_jurisdiction_data(self, context: ProcessingContext) -> None:
        """Fetch the reference data downstream report logic needs.

        Args:
            context: The run's processing context.
        """
        ...


@runtime_checkable
class ReportCreator(Protocol):
    """Strategy that synthesizes one artifact type from gathered resources.

    Creators are registered under output profile identifiers in a
    :class:`~kar_actions.engine.registry.ReportCreatorRegistry`.
    """

    async def create_report(
        self,
        context: ProcessingContext,
        query_service: QueryService,
        resources: list[Resource],
        requirement_id: str,
        profile: str,
        action: Action,
    ) -> Resource | None:
        """Create a report.

        Args:
            context: The run's processing context.
            query_service: Query collaborator for additional targeted fetches.
            resources: Working set gathered by the action.
            requirement_id: Output requirement being satisfied.
            profile: Profile the creator was selected by.
            action: The action producing the report.

        Returns:
            The report resource, or None when there is nothing to emit.
        """
        ...


@runtime_checkable
class MessageStore(Protocol):
    """Storage contract for public health messages."""

    async def get_max_version(self, logical_key: LogicalKey) -> int:
        """Highest stored version for a logical report key, 0 when none exists."""
        ...

    async def save(self, message: PublicHealthMessage) -> PublicHealthMessage:
        """Store a message and return the stored copy."""
        ...

    async def find(self, search_params: dict[str, str]) -> list[PublicHealthMessage]:
        """Search stored messages by named parameters."""
        ...


@runtime_checkable
class CorrelationSink(Protocol):
    """Receives document identifiers of persisted reports for request tracing."""

    def add_document_id(self, document_id: str) -> None:
        """Record a persisted document identifier."""
        ...


@runtime_checkable
class Rescheduler(Protocol):
    """Arranges a future re-invocation of a deferred action."""

    def schedule(
        self,
        engine: ActionExecutionEngine,
        context: ProcessingContext,
        action: Action,
        due_at: datetime,
    ) -> None:
        """Schedule ``engine.execute(context, action)`` at ``due_at``."""
        ...
