"""Message store implementations.

This module provides the in-memory store used for development and single
process deployments, and the SQLAlchemy-backed store for durable persistence.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

from advanced_alchemy.exceptions import IntegrityError as RepositoryIntegrityError
from sqlalchemy.exc import IntegrityError

from kar_actions.core.models import PublicHealthMessage
from kar_actions.exceptions import ArtifactIntegrityError
from kar_actions.persistence.models import PublicHealthMessageModel
from kar_actions.persistence.repositories import SEARCH_PARAMETERS, PublicHealthMessageRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from kar_actions.core.models import LogicalKey

__all__ = ["InMemoryMessageStore", "SQLAlchemyMessageStore", "message_from_model", "message_to_model"]

logger = logging.getLogger(__name__)

_MESSAGE_FIELDS = [field.name for field in fields(PublicHealthMessage) if field.name not in {"id", "created_at"}]


def message_to_model(message: PublicHealthMessage) -> PublicHealthMessageModel:
    """Convert a message to a new, unsaved model row."""
    return PublicHealthMessageModel(**{name: getattr(message, name) for name in _MESSAGE_FIELDS})


def message_from_model(model: PublicHealthMessageModel) -> PublicHealthMessage:
    """Convert a stored model row to a message."""
    values = {name: getattr(model, name) for name in _MESSAGE_FIELDS}
    values["submitted_fhir_data"] = values["submitted_fhir_data"] or ""
    values["submitted_cda_data"] = values["submitted_cda_data"] or ""
    return PublicHealthMessage(**values, id=model.id, created_at=model.created_at)


class InMemoryMessageStore:
    """Message store keeping every version in process memory.

    Attributes:
        messages: Stored messages in insertion order.
    """

    def __init__(self) -> None:
        self.messages: list[PublicHealthMessage] = []

    async def get_max_version(self, logical_key: LogicalKey) -> int:
        versions = [message.submitted_version_number for message in self.messages if message.logical_key == logical_key]
        return max(versions, default=0)

    async def save(self, message: PublicHealthMessage) -> PublicHealthMessage:
        """Store a message.

        Raises:
            ArtifactIntegrityError: If the version already exists for the key.
        """
        for existing in self.messages:
            if (
                existing.logical_key == message.logical_key
                and existing.submitted_version_number == message.submitted_version_number
            ):
                raise ArtifactIntegrityError(
                    message.logical_key,
                    message.submitted_version_number,
                    existing.submitted_version_number,
                    reason="version already stored",
                )
        stored = replace(message, id=uuid4(), created_at=datetime.now(timezone.utc))
        self.messages.append(stored)
        return stored

    async def find(self, search_params: dict[str, str]) -> list[PublicHealthMessage]:
        results = []
        for message in self.messages:
            matches = True
            for name, value in search_params.items():
                attribute = SEARCH_PARAMETERS.get(name)
                if attribute is not None and str(getattr(message, attribute)) != str(value):
                    matches = False
                    break
            if matches:
                results.append(message)
        return results


class SQLAlchemyMessageStore:
    """Message store backed by a relational database.

    Each call opens its own session from the session maker, so one store can
    serve many concurrent runs.

    Attributes:
        session_maker: Factory for async sessions.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def get_max_version(self, logical_key: LogicalKey) -> int:
        async with self.session_maker() as session:
            return await PublicHealthMessageRepository(session=session).get_max_version(logical_key)

    async def save(self, message: PublicHealthMessage) -> PublicHealthMessage:
        """Insert a message row.

        Raises:
            ArtifactIntegrityError: If the database rejects the version as a duplicate.
        """
        async with self.session_maker() as session:
            repository = PublicHealthMessageRepository(session=session)
            try:
                model = await repository.add(message_to_model(message))
                stored = message_from_model(model)
                await session.commit()
            except (IntegrityError, RepositoryIntegrityError) as exc:
                await session.rollback()
                raise ArtifactIntegrityError(
                    message.logical_key,
                    message.submitted_version_number,
                    reason=str(exc),
                ) from exc
            return stored

    async def find(self, search_params: dict[str, str]) -> list[PublicHealthMessage]:
        async with self.session_maker() as session:
            models = await PublicHealthMessageRepository(session=session).find_by_search_params(search_params)
            return [message_from_model(model) for model in models]
