"""Repository implementations for report and ledger persistence.

This module provides async repositories over the persistence models using
advanced-alchemy's repository pattern.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, func, select

from kar_actions.persistence.models import ActionStatusModel, PublicHealthMessageModel

if TYPE_CHECKING:
    from collections.abc import Sequence

    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.models import LogicalKey

__all__ = ["ActionStatusRepository", "PublicHealthMessageRepository", "SEARCH_PARAMETERS"]

logger = logging.getLogger(__name__)

SEARCH_PARAMETERS: dict[str, str] = {
    "fhirServerBaseUrl": "fhir_server_base_url",
    "patientId": "patient_id",
    "encounterId": "encounter_id",
    "notifiedResourceId": "notified_resource_id",
    "notifiedResourceType": "notified_resource_type",
    "notificationId": "notification_id",
    "xCorrelationId": "x_correlation_id",
    "xRequestId": "x_request_id",
    "submittedDataId": "submitted_data_id",
    "submittedMessageId": "submitted_message_id",
    "karUniqueId": "kar_unique_id",
    "version": "submitted_version_number",
}
"""Accepted search parameter names mapped to model attributes."""


class PublicHealthMessageRepository(SQLAlchemyAsyncRepository[PublicHealthMessageModel]):
    """Repository for public health message records.

    Messages are only ever added; there is no update path.
    """

    model_type = PublicHealthMessageModel

    def _logical_key_conditions(self, logical_key: LogicalKey) -> list[Any]:
        return [
            PublicHealthMessageModel.patient_id == logical_key.patient_id,
            PublicHealthMessageModel.kar_unique_id == logical_key.kar_unique_id,
            PublicHealthMessageModel.notified_resource_type == logical_key.notified_resource_type,
            PublicHealthMessageModel.notified_resource_id == logical_key.notified_resource_id,
        ]

    async def get_max_version(self, logical_key: LogicalKey) -> int:
        """Get the highest version stored for a logical report key.

        Args:
            logical_key: Patient, knowledge artifact and trigger of the report.

        Returns:
            The highest version number, 0 when no message exists.
        """
        stmt = select(func.max(PublicHealthMessageModel.submitted_version_number)).where(
            and_(*self._logical_key_conditions(logical_key))
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def find_by_logical_key(self, logical_key: LogicalKey) -> Sequence[PublicHealthMessageModel]:
        """All versions of a logical report, oldest first."""
        stmt = (
            select(PublicHealthMessageModel)
            .where(and_(*self._logical_key_conditions(logical_key)))
            .order_by(PublicHealthMessageModel.submitted_version_number)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_by_search_params(self, search_params: dict[str, str]) -> Sequence[PublicHealthMessageModel]:
        """Find messages matching every given search parameter.

        Args:
            search_params: Parameter name to value. Names are those of
                :data:`SEARCH_PARAMETERS`; unknown names are ignored.

        Returns:
            Matching messages ordered by creation time.

        Example:
            >>> await repo.find_by_search_params({"patientId": "p1", "version": "2"})
        """
        conditions = []
        for name, value in search_params.items():
            attribute = SEARCH_PARAMETERS.get(name)
            if attribute is None:
                logger.debug("Ignoring unknown message search parameter %s", name)
                continue
            column = getattr(PublicHealthMessageModel, attribute)
            if attribute == "submitted_version_number":
                conditions.append(column == int(value))
            else:
                conditions.append(column == value)

        stmt = select(PublicHealthMessageModel).order_by(PublicHealthMessageModel.created_at)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        result = await self.session.execute(stmt)
        return result.scalars().all()


class ActionStatusRepository(SQLAlchemyAsyncRepository[ActionStatusModel]):
    """Repository for archived status ledger rows."""

    model_type = ActionStatusModel

    async def get_last_sequence(self, correlation_id: str) -> int:
        stmt = select(func.max(ActionStatusModel.sequence)).where(ActionStatusModel.x_correlation_id == correlation_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() or 0

    async def archive(self, context: ProcessingContext) -> list[ActionStatusModel]:
        """Append the run's ledger entries that are not archived yet.

        Archiving is append-only and can be repeated after a deferred action
        runs; entries already stored for the run are left untouched.

        Args:
            context: The run's processing context.

        Returns:
            The newly added rows.
        """
        last_sequence = await self.get_last_sequence(context.correlation_id)
        rows = [
            ActionStatusModel(
                notification_id=str(context.notification.id),
                x_correlation_id=context.correlation_id,
                patient_id=context.notification.patient_id,
                kar_unique_id=context.knowledge_artifact.version_unique_id,
                sequence=entry.sequence,
                action_id=entry.action_id,
                status=entry.status,
                error=entry.error,
                recorded_at=entry.recorded_at,
            )
            for entry in context.ledger
            if entry.sequence > last_sequence
        ]
        if not rows:
            return []
        return list(await self.add_many(rows))

    async def find_by_run(self, correlation_id: str) -> Sequence[ActionStatusModel]:
        """Archived entries of one run in sequence order."""
        stmt = (
            select(ActionStatusModel)
            .where(ActionStatusModel.x_correlation_id == correlation_id)
            .order_by(ActionStatusModel.sequence)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_by_notification(self, notification_id: str) -> Sequence[ActionStatusModel]:
        """Archived entries of every run of a notification in sequence order."""
        stmt = (
            select(ActionStatusModel)
            .where(ActionStatusModel.notification_id == notification_id)
            .order_by(ActionStatusModel.x_correlation_id, ActionStatusModel.sequence)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
