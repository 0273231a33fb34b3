"""Concrete data models for kar-actions.

This module provides the runtime records produced by the engine: the outcome
of an action execution and the public health message built from a report.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, NamedTuple
from uuid import UUID

from kar_actions.core.types import ActionStatus

if TYPE_CHECKING:
    from kar_actions.core.context import StatusLedger
    from kar_actions.core.types import Resource


__all__ = ["ActionOutcome", "LogicalKey", "PublicHealthMessage"]


class LogicalKey(NamedTuple):
    """Scope of report version numbering: same patient, artifact and trigger."""

    patient_id: str
    kar_unique_id: str
    notified_resource_type: str
    notified_resource_id: str


@dataclass(frozen=True)
class PublicHealthMessage:
    """A versioned report record ready for persistence and transmission.

    Instances are immutable. Persisting a message returns a copy carrying the
    assigned version number and storage id; corrections are new versions.

    Attributes:
        fhir_server_base_url: Record system the report was built from.
        patient_id: Subject of the report.
        encounter_id: Triggering encounter, or ``"Unknown"`` for other triggers.
        notified_resource_id: Id of the triggering resource.
        notified_resource_type: Type of the triggering resource.
        notification_id: Id of the triggering notification.
        x_correlation_id: Correlation identifier of the run.
        x_request_id: Request identifier of the run.
        submitted_fhir_data: Structured report serialized as JSON.
        submitted_cda_data: Raw document payload.
        submitted_message_type: Event code of the report's message header.
        submitted_data_id: Id of the document reference carrying the payload.
        submitted_message_id: Id of the message header.
        initiating_action: Kind of the action that created the report.
        kar_unique_id: Knowledge artifact version that produced the report.
        submitted_version_number: Version within the logical report key.
        trigger_match_status: Bitmask of matched trigger paths.
        id: Storage id, set once persisted.
        created_at: Storage timestamp, set once persisted.
    """

    fhir_server_base_url: str
    patient_id: str
    encounter_id: str
    notified_resource_id: str
    notified_resource_type: str
    notification_id: str
    x_correlation_id: str
    x_request_id: str
    submitted_fhir_data: str
    submitted_cda_data: str
    submitted_message_type: str
    submitted_data_id: str
    submitted_message_id: str
    initiating_action: str
    kar_unique_id: str
    submitted_version_number: int = 0
    trigger_match_status: int = 0
    id: UUID | None = None
    created_at: datetime | None = None

    @property
    def logical_key(self) -> LogicalKey:
        return LogicalKey(
            patient_id=self.patient_id,
            kar_unique_id=self.kar_unique_id,
            notified_resource_type=self.notified_resource_type,
            notified_resource_id=self.notified_resource_id,
        )

    @property
    def is_persisted(self) -> bool:
        return self.id is not None

    def with_version(self, version: int) -> PublicHealthMessage:
        """Return a copy carrying a version number."""
        return replace(self, submitted_version_number=version)


@dataclass
class ActionOutcome:
    """Result of executing one action, including its descendants.

    Attributes:
        action_id: The executed action.
        status: Final status of this attempt.
        ledger: The run's status ledger.
        due_at: When a scheduled action becomes due.
        error: Error message for failed attempts.
        artifacts: Report outputs produced by this action.
        messages: Public health messages persisted by this action.
        sub_outcomes: Outcomes of owned sub-actions.
        related_outcomes: Outcomes of related actions.
        condition_met: Whether the condition gate opened.
    """

    action_id: str
    status: ActionStatus
    ledger: StatusLedger
    due_at: datetime | None = None
    error: str | None = None
    artifacts: list[Resource] = field(default_factory=list)
    messages: list[PublicHealthMessage] = field(default_factory=list)
    sub_outcomes: list[ActionOutcome] = field(default_factory=list)
    related_outcomes: list[ActionOutcome] = field(default_factory=list)
    condition_met: bool = False

    @property
    def is_scheduled(self) -> bool:
        return self.status == ActionStatus.SCHEDULED

    @property
    def failed_sub_actions(self) -> list[str]:
        """Ids of owned descendants whose attempt failed.

        Related actions are not owned, so their failures are not listed here.
        """
        failed: list[str] = []
        for outcome in self.sub_outcomes:
            if outcome.status == ActionStatus.FAILED:
                failed.append(outcome.action_id)
            failed.extend(outcome.failed_sub_actions)
        return failed

    def iter_outcomes(self) -> list[ActionOutcome]:
        """This outcome and every nested outcome, depth-first."""
        outcomes = [self]
        for outcome in (*self.sub_outcomes, *self.related_outcomes):
            outcomes.extend(outcome.iter_outcomes())
        return outcomes
