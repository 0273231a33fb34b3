"""SQLAlchemy models for report and ledger persistence.

This module defines the database models:
- PublicHealthMessageModel: Versioned public health messages, never updated
- ActionStatusModel: Archived status ledger rows of processing runs
"""

from __future__ import annotations

from datetime import datetime

from advanced_alchemy.base import UUIDAuditBase
from sqlalchemy import DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from kar_actions.core.types import ActionStatus

__all__ = ["ActionStatusModel", "PublicHealthMessageModel"]


class PublicHealthMessageModel(UUIDAuditBase):
    """Persisted public health message.

    Rows are immutable: a correction is stored as a new row with the next
    version number of the same logical report key. The unique index on the
    logical key plus version rejects a second writer of the same version.

    Attributes:
        fhir_server_base_url: Record system the report was built from.
        patient_id: Subject of the report.
        encounter_id: Triggering encounter or ``"Unknown"``.
        notified_resource_id: Id of the triggering resource.
        notified_resource_type: Type of the triggering resource.
        notification_id: Id of the triggering notification.
        x_correlation_id: Correlation identifier of the run.
        x_request_id: Request identifier of the run.
        submitted_fhir_data: Structured report as JSON text.
        submitted_cda_data: Raw document payload.
        submitted_message_type: Message header event code.
        submitted_data_id: Document reference id.
        submitted_message_id: Message header id.
        submitted_version_number: Version within the logical report key.
        initiating_action: Kind of action that created the report.
        kar_unique_id: Knowledge artifact version that produced the report.
        trigger_match_status: Bitmask of matched trigger paths.
    """

    __tablename__ = "ph_messages"
    __table_args__ = (
        Index(
            "ix_ph_messages_logical_key_version",
            "patient_id",
            "kar_unique_id",
            "notified_resource_type",
            "notified_resource_id",
            "submitted_version_number",
            unique=True,
        ),
        Index("ix_ph_messages_patient_id", "patient_id"),
        Index("ix_ph_messages_submitted_data_id", "submitted_data_id"),
        Index("ix_ph_messages_x_request_id", "x_request_id"),
    )

    fhir_server_base_url: Mapped[str] = mapped_column(String(500), default="")
    patient_id: Mapped[str] = mapped_column(String(255))
    encounter_id: Mapped[str] = mapped_column(String(255))
    notified_resource_id: Mapped[str] = mapped_column(String(255))
    notified_resource_type: Mapped[str] = mapped_column(String(100))
    notification_id: Mapped[str] = mapped_column(String(255))
    x_correlation_id: Mapped[str] = mapped_column(String(255))
    x_request_id: Mapped[str] = mapped_column(String(255))
    submitted_fhir_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_cda_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_message_type: Mapped[str] = mapped_column(String(255))
    submitted_data_id: Mapped[str] = mapped_column(String(255))
    submitted_message_id: Mapped[str] = mapped_column(String(255))
    submitted_version_number: Mapped[int] = mapped_column(Integer)
    initiating_action: Mapped[str] = mapped_column(String(100))
    kar_unique_id: Mapped[str] = mapped_column(String(500))
    trigger_match_status: Mapped[int] = mapped_column(Integer, default=0)


class ActionStatusModel(UUIDAuditBase):
    """Archived ledger entry of a processing run.

    Attributes:
        notification_id: Id of the triggering notification.
        x_correlation_id: Correlation identifier of the run.
        patient_id: Subject of the run.
        kar_unique_id: Knowledge artifact version executed.
        sequence: Execution sequence number within the run.
        action_id: The action the status belongs to.
        status: Status of the attempt.
        error: Error message for failed attempts.
        recorded_at: When the entry was appended to the in-memory ledger.
    """

    __tablename__ = "kar_action_statuses"
    __table_args__ = (
        Index("ix_action_statuses_run_sequence", "x_correlation_id", "sequence", unique=True),
        Index("ix_action_statuses_notification_id", "notification_id"),
        Index("ix_action_statuses_action_id", "action_id"),
    )

    notification_id: Mapped[str] = mapped_column(String(255))
    x_correlation_id: Mapped[str] = mapped_column(String(255))
    patient_id: Mapped[str] = mapped_column(String(255))
    kar_unique_id: Mapped[str] = mapped_column(String(500))
    sequence: Mapped[int] = mapped_column(Integer)
    action_id: Mapped[str] = mapped_column(String(255))
    status: Mapped[ActionStatus] = mapped_column(
        Enum(ActionStatus, native_enum=False, length=50, values_callable=lambda enum: [item.value for item in enum]),
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
