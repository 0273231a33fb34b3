"""Per-run processing context and status ledger.

This module provides the ProcessingContext dataclass which carries state and
correlation metadata through every action of one run, and the append-only
StatusLedger that records what happened.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from kar_actions.exceptions import ContextConstructionError

if TYPE_CHECKING:
    from kar_actions.core.definition import KnowledgeArtifact
    from kar_actions.core.models import PublicHealthMessage
    from kar_actions.core.types import ActionStatus, Resource

__all__ = [
    "ActionStatusEntry",
    "NotificationContext",
    "ProcessingContext",
    "StatusLedger",
    "TriggerMatch",
]


@dataclass(frozen=True)
class NotificationContext:
    """Metadata of the clinical event that started a run.

    Attributes:
        id: Identifier of the notification.
        patient_id: Subject of the run.
        notification_resource_type: Resource type of the triggering resource.
        notification_resource_id: Id of the triggering resource.
        fhir_server_base_url: Base URL of the record system the data lives in.
        trigger_time: When the event was received; timing offsets count from here.
    """

    id: UUID
    patient_id: str
    notification_resource_type: str
    notification_resource_id: str
    fhir_server_base_url: str = ""
    trigger_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class TriggerMatch:
    """Result of matching one trigger path against the gathered data.

    Attributes:
        path: The trigger path or value set that was checked.
        matched: Whether any code matched.
        codes: The matched codes.
    """

    path: str
    matched: bool
    codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class ActionStatusEntry:
    """One ledger row: the status of one attempt of one action.

    Attributes:
        sequence: Execution sequence number, strictly increasing within a run.
        action_id: The action the status belongs to.
        status: Status of the attempt.
        recorded_at: When the entry was appended.
        error: Error message for failed attempts.
    """

    sequence: int
    action_id: str
    status: ActionStatus
    recorded_at: datetime
    error: str | None = None


class StatusLedger:
    """Append-only record of action statuses for one run.

    Entries are never removed or replaced; a re-attempt of an action appends a
    new entry. The ledger is owned by a single run and is not thread-safe.

    Example:
        >>> ledger = StatusLedger()
        >>> ledger.append(1, "root", ActionStatus.SCHEDULED)
        >>> len(ledger)
        1
    """

    __slots__ = ("_entries",)

    def __init__(self) -> None:
        self._entries: list[ActionStatusEntry] = []

    def append(
        self,
        sequence: int,
        action_id: str,
        status: ActionStatus,
        error: str | None = None,
    ) -> ActionStatusEntry:
        """Append a status entry.

        Args:
            sequence: Execution sequence number; must exceed every prior entry.
            action_id: The action the status belongs to.
            status: Status of the attempt.
            error: Optional error message.

        Returns:
            The appended entry.

        Raises:
            ValueError: If ``sequence`` does not increase.
        """
        if self._entries and sequence <= self._entries[-1].sequence:
            msg = f"Ledger sequence must increase: {sequence} <= {self._entries[-1].sequence}"
            raise ValueError(msg)

        entry = ActionStatusEntry(
            sequence=sequence,
            action_id=action_id,
            status=status,
            recorded_at=datetime.now(timezone.utc),
            error=error,
        )
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> tuple[ActionStatusEntry, ...]:
        """Snapshot of all entries in sequence order."""
        return tuple(self._entries)

    def for_action(self, action_id: str) -> list[ActionStatusEntry]:
        """All entries recorded for an action, oldest first."""
        return [entry for entry in self._entries if entry.action_id == action_id]

    def latest(self, action_id: str) -> ActionStatusEntry | None:
        """The most recent entry for an action, or None if it never ran."""
        for entry in reversed(self._entries):
            if entry.action_id == action_id:
                return entry
        return None

    def __iter__(self) -> Iterator[ActionStatusEntry]:
        return iter(tuple(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"StatusLedger(entries={len(self._entries)})"


@dataclass
class ProcessingContext:
    """Mutable state threaded through every action of one run.

    A ProcessingContext is created once per triggering event and owned by that
    run. It is mutated only by the engine and its collaborators and must never
    be shared across concurrent runs.

    Attributes:
        notification: Metadata of the triggering event.
        knowledge_artifact: The artifact whose actions are executing.
        correlation_id: Correlation identifier propagated to persisted reports.
        request_id: Request identifier propagated to persisted reports.
        resources_by_id: Resources retrieved per data requirement or query key.
        action_outputs: Outputs produced per action id.
        outputs_by_id: Outputs produced per output requirement id.
        ledger: Append-only status ledger of the run.
        trigger_match_status: Trigger matches recorded while checking codes.
        submitted_payload: Document payload of the most recently persisted report.
        last_message: The most recently persisted report.
        active_actions: Action ids currently on the execution call stack.
        data: Free-form scratch space for collaborators.
    """

    notification: NotificationContext
    knowledge_artifact: KnowledgeArtifact
    correlation_id: str = field(default_factory=lambda: str(uuid4()))
    request_id: str = field(default_factory=lambda: str(uuid4()))
    resources_by_id: dict[str, list[Resource]] = field(default_factory=dict)
    action_outputs: dict[str, list[Resource]] = field(default_factory=dict)
    outputs_by_id: dict[str, list[Resource]] = field(default_factory=dict)
    ledger: StatusLedger = field(default_factory=StatusLedger)
    trigger_match_status: list[TriggerMatch] = field(default_factory=list)
    submitted_payload: str | None = None
    last_message: PublicHealthMessage | None = None
    active_actions: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    _sequence: int = field(default=0, init=False, repr=False)

    @classmethod
    def create(
        cls,
        *,
        knowledge_artifact: KnowledgeArtifact | None,
        patient_id: str | None,
        notification_resource_type: str | None,
        notification_resource_id: str | None,
        notification_id: UUID | None = None,
        fhir_server_base_url: str = "",
        trigger_time: datetime | None = None,
        correlation_id: str | None = None,
        request_id: str | None = None,
    ) -> ProcessingContext:
        """Build a context from trigger metadata.

        Args:
            knowledge_artifact: The artifact to execute.
            patient_id: Subject of the run.
            notification_resource_type: Resource type of the triggering resource.
            notification_resource_id: Id of the triggering resource.
            notification_id: Id of the notification; generated when omitted.
            fhir_server_base_url: Base URL of the record system.
            trigger_time: Event time; defaults to now.
            correlation_id: Correlation id; generated when omitted.
            request_id: Request id; generated when omitted.

        Returns:
            A fresh ProcessingContext.

        Raises:
            ContextConstructionError: If any required trigger attribute is missing.
        """
        required = {
            "knowledge_artifact": knowledge_artifact,
            "patient_id": patient_id,
            "notification_resource_type": notification_resource_type,
            "notification_resource_id": notification_resource_id,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ContextConstructionError(missing)

        notification = NotificationContext(
            id=notification_id or uuid4(),
            patient_id=patient_id,  # type: ignore[arg-type]
            notification_resource_type=notification_resource_type,  # type: ignore[arg-type]
            notification_resource_id=notification_resource_id,  # type: ignore[arg-type]
            fhir_server_base_url=fhir_server_base_url,
            trigger_time=trigger_time or datetime.now(timezone.utc),
        )
        return cls(
            notification=notification,
            knowledge_artifact=knowledge_artifact,  # type: ignore[arg-type]
            correlation_id=correlation_id or str(uuid4()),
            request_id=request_id or str(uuid4()),
        )

    def add_resources(self, requirement_id: str, resources: list[Resource]) -> None:
        """Store resources under a requirement id, skipping duplicates.

        An empty list still records the requirement as resolved.
        """
        group = self.resources_by_id.setdefault(requirement_id, [])
        seen = {_resource_key(resource) for resource in group}
        for resource in resources:
            key = _resource_key(resource)
            if key not in seen:
                seen.add(key)
                group.append(resource)

    def get_resources_by_id(self, requirement_id: str) -> list[Resource] | None:
        """Resources stored for a requirement id, or None if it was never resolved."""
        return self.resources_by_id.get(requirement_id)

    def add_action_output(self, action_id: str, output: Resource) -> None:
        self.action_outputs.setdefault(action_id, []).append(output)

    def add_action_output_by_id(self, requirement_id: str, output: Resource) -> None:
        self.outputs_by_id.setdefault(requirement_id, []).append(output)

    def next_execution_sequence(self) -> int:
        """Advance and return the run's execution sequence counter."""
        self._sequence += 1
        return self._sequence

    def add_action_status(
        self,
        action_id: str,
        status: ActionStatus,
        error: str | None = None,
    ) -> ActionStatusEntry:
        """Append a ledger entry under the next execution sequence number."""
        return self.ledger.append(self.next_execution_sequence(), action_id, status, error)

    @property
    def current_trigger_match_status(self) -> list[TriggerMatch]:
        return self.trigger_match_status

    def has_matched_trigger(self) -> bool:
        return any(match.matched for match in self.trigger_match_status)


def _resource_key(resource: Resource) -> tuple[str, str] | int:
    resource_id = resource.get("id")
    if resource_id is None:
        return id(resource)
    return (str(resource.get("resourceType", "")), str(resource_id))
