"""Initial kar-actions tables.

Revision ID: 001_initial_kar_action_tables
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_kar_action_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the message and ledger tables."""
    op.create_table(
        "ph_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("fhir_server_base_url", sa.String(length=500), nullable=False),
        sa.Column("patient_id", sa.String(length=255), nullable=False),
        sa.Column("encounter_id", sa.String(length=255), nullable=False),
        sa.Column("notified_resource_id", sa.String(length=255), nullable=False),
        sa.Column("notified_resource_type", sa.String(length=100), nullable=False),
        sa.Column("notification_id", sa.String(length=255), nullable=False),
        sa.Column("x_correlation_id", sa.String(length=255), nullable=False),
        sa.Column("x_request_id", sa.String(length=255), nullable=False),
        sa.Column("submitted_fhir_data", sa.Text(), nullable=True),
        sa.Column("submitted_cda_data", sa.Text(), nullable=True),
        sa.Column("submitted_message_type", sa.String(length=255), nullable=False),
        sa.Column("submitted_data_id", sa.String(length=255), nullable=False),
        sa.Column("submitted_message_id", sa.String(length=255), nullable=False),
        sa.Column("submitted_version_number", sa.Integer(), nullable=False),
        sa.Column("initiating_action", sa.String(length=100), nullable=False),
        sa.Column("kar_unique_id", sa.String(length=500), nullable=False),
        sa.Column("trigger_match_status", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ph_messages_logical_key_version",
        "ph_messages",
        ["patient_id", "kar_unique_id", "notified_resource_type", "notified_resource_id", "submitted_version_number"],
        unique=True,
    )
    op.create_index("ix_ph_messages_patient_id", "ph_messages", ["patient_id"])
    op.create_index("ix_ph_messages_submitted_data_id", "ph_messages", ["submitted_data_id"])
    op.create_index("ix_ph_messages_x_request_id", "ph_messages", ["x_request_id"])

    op.create_table(
        "kar_action_statuses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("notification_id", sa.String(length=255), nullable=False),
        sa.Column("x_correlation_id", sa.String(length=255), nullable=False),
        sa.Column("patient_id", sa.String(length=255), nullable=False),
        sa.Column("kar_unique_id", sa.String(length=500), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("action_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_action_statuses_run_sequence",
        "kar_action_statuses",
        ["x_correlation_id", "sequence"],
        unique=True,
    )
    op.create_index("ix_action_statuses_notification_id", "kar_action_statuses", ["notification_id"])
    op.create_index("ix_action_statuses_action_id", "kar_action_statuses", ["action_id"])


def downgrade() -> None:
    """Drop the message and ledger tables."""
    op.drop_index("ix_action_statuses_action_id", table_name="kar_action_statuses")
    op.drop_index("ix_action_statuses_notification_id", table_name="kar_action_statuses")
    op.drop_index("ix_action_statuses_run_sequence", table_name="kar_action_statuses")
    op.drop_table("kar_action_statuses")

    op.drop_index("ix_ph_messages_x_request_id", table_name="ph_messages")
    op.drop_index("ix_ph_messages_submitted_data_id", table_name="ph_messages")
    op.drop_index("ix_ph_messages_patient_id", table_name="ph_messages")
    op.drop_index("ix_ph_messages_logical_key_version", table_name="ph_messages")
    op.drop_table("ph_messages")
