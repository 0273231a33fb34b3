"""Knowledge artifact and action definitions.

This module provides the in-memory structures of a loaded knowledge artifact:
the action tree, the data requirements each action declares, its timing
constraints and its condition.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, TypeAlias

from kar_actions.core.types import ActionType
from kar_actions.exceptions import ActionGraphError, ActionNotFoundError

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext

__all__ = [
    "Action",
    "Condition",
    "DataRequirement",
    "KnowledgeArtifact",
    "QueryFilter",
    "RelatedAction",
    "TimingConstraint",
]


Condition: TypeAlias = "str | Callable[[ProcessingContext], bool]"
"""Condition expression: a string expression or a predicate over the context."""


@dataclass(frozen=True)
class QueryFilter:
    """A named query against the external record system.

    Attributes:
        resource_type: Resource type the query returns.
        query: Search string understood by the query service.
        related_requirement_id: Optional data requirement the results belong to.
    """

    resource_type: str
    query: str
    related_requirement_id: str | None = None


@dataclass
class DataRequirement:
    """A declared input or output of an action.

    Attributes:
        requirement_id: Identifier the resolved resources are stored under.
        resource_type: Target resource type.
        profiles: Profile identifiers. On outputs these select report creators.
        query_key: Optional named query that resolves this requirement.
    """

    requirement_id: str
    resource_type: str
    profiles: list[str] = field(default_factory=list)
    query_key: str | None = None

    @property
    def has_profile(self) -> bool:
        return bool(self.profiles)


@dataclass(frozen=True)
class TimingConstraint:
    """When an action becomes due.

    Attributes:
        offset: Delay relative to the trigger time.
        due_at: Absolute due time. Takes precedence over ``offset``.
        period: Optional recurrence period used by reschedulers.
    """

    offset: timedelta = timedelta(0)
    due_at: datetime | None = None
    period: timedelta | None = None

    def resolve(self, trigger_time: datetime) -> datetime:
        """Return the absolute due time for a run triggered at ``trigger_time``."""
        if self.due_at is not None:
            return self.due_at
        return trigger_time + self.offset


@dataclass(frozen=True)
class RelatedAction:
    """Reference to an independent next-step triggered by an action's completion.

    Attributes:
        action_id: Id of the related action within the same knowledge artifact.
        relationship: Relationship code, ``after-end`` unless stated otherwise.
    """

    action_id: str
    relationship: str = "after-end"


@dataclass
class Action:
    """A node of a knowledge artifact's action graph.

    Attributes:
        action_id: Unique identifier within the knowledge artifact.
        action_type: Kind tag of the action.
        description: Human-readable description.
        timing: Timing constraints; the latest due time wins.
        condition: Optional condition gating sub and related actions.
        input_data: Declared input data requirements.
        output_data: Declared outputs; profiles select report creators.
        queries: Custom named queries, keyed by query key.
        sub_actions: Owned child actions in declaration order.
        related_actions: Independent next-steps, resolved by id.

    Example:
        >>> action = Action(
        ...     action_id="create-eicr",
        ...     action_type=ActionType.CREATE_REPORT,
        ...     input_data=[DataRequirement("conditions", "Condition")],
        ...     output_data=[DataRequirement("eicr", "Bundle", profiles=[EICR_PROFILE])],
        ... )
    """

    action_id: str
    action_type: ActionType
    description: str = ""
    timing: list[TimingConstraint] = field(default_factory=list)
    condition: Condition | None = None
    input_data: list[DataRequirement] = field(default_factory=list)
    output_data: list[DataRequirement] = field(default_factory=list)
    queries: dict[str, QueryFilter] = field(default_factory=dict)
    sub_actions: list[Action] = field(default_factory=list)
    related_actions: list[RelatedAction] = field(default_factory=list)

    def walk(self) -> Iterator[Action]:
        """Yield this action and every owned descendant, depth-first."""
        yield self
        for sub_action in self.sub_actions:
            yield from sub_action.walk()


@dataclass
class KnowledgeArtifact:
    """A versioned, loaded knowledge artifact.

    The action graph is validated on construction; a cyclic graph or a related
    action pointing at an unknown id raises :class:`ActionGraphError`.

    Attributes:
        kar_id: Identifier of the knowledge artifact.
        version: Version of the knowledge artifact.
        actions: Top-level actions.
        default_queries: Default named queries keyed by data requirement id.
        name: Human-readable name.
    """

    kar_id: str
    version: str
    actions: list[Action]
    default_queries: dict[str, QueryFilter] = field(default_factory=dict)
    name: str = ""
    _index: dict[str, Action] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        errors: list[str] = []
        pending = list(reversed(self.actions))
        while pending:
            action = pending.pop()
            existing = self._index.get(action.action_id)
            if existing is action:
                # Shared sub-action of a DAG, or an ancestor; the graph check reports cycles.
                continue
            if existing is not None:
                errors.append(f"Duplicate action id '{action.action_id}'")
                continue
            self._index[action.action_id] = action
            pending.extend(reversed(action.sub_actions))

        if errors:
            raise ActionGraphError(errors)

        from kar_actions.engine.graph import ActionGraph

        errors = ActionGraph.from_artifact(self).validate()
        if errors:
            raise ActionGraphError(errors)

    @property
    def version_unique_id(self) -> str:
        """Identifier of this exact artifact version, recorded on every report."""
        return f"{self.kar_id}|{self.version}"

    def get_action(self, action_id: str) -> Action:
        """Look up an action anywhere in the tree.

        Raises:
            ActionNotFoundError: If no action has this id.
        """
        try:
            return self._index[action_id]
        except KeyError:
            raise ActionNotFoundError(action_id) from None

    def has_action(self, action_id: str) -> bool:
        return action_id in self._index

    def iter_actions(self) -> Iterator[Action]:
        """Yield every action of the artifact in declaration order."""
        yield from self._index.values()

    def default_queries_for(self, action: Action) -> dict[str, QueryFilter]:
        """Return the named queries to run for an action.

        Default queries of the artifact apply to the action's input requirement
        ids; the action's own custom queries override them by key.

        Args:
            action: The action about to resolve its data.

        Returns:
            Mapping of query key to filter, empty when nothing applies.
        """
        queries: dict[str, QueryFilter] = {}
        for requirement in action.input_data:
            key = requirement.query_key or requirement.requirement_id
            if key in self.default_queries:
                queries[key] = self.default_queries[key]
        queries.update(action.queries)
        return queries
