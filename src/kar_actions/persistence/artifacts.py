"""Versioned artifact persistence.

This module converts document-bearing reports into public health messages,
assigns version numbers per logical report key and stores them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from kar_actions.core.models import PublicHealthMessage
from kar_actions.exceptions import ArtifactIntegrityError
from kar_actions.persistence.audit import PayloadFileSink
from kar_actions.reports.base import BaseReportCreator, decode_attachment, find_message_header_and_document_references

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext, TriggerMatch
    from kar_actions.core.models import LogicalKey
    from kar_actions.core.protocols import CorrelationSink, MessageStore
    from kar_actions.core.types import Resource

__all__ = ["ArtifactPersistence", "KeyedLock", "encode_trigger_match_status"]

logger = logging.getLogger(__name__)


def encode_trigger_match_status(matches: list[TriggerMatch]) -> int:
    """Encode trigger matches as a bitmask; bit ``i`` is set when match ``i`` matched."""
    status = 0
    for position, match in enumerate(matches):
        if match.matched:
            status |= 1 << position
    return status


class KeyedLock:
    """One asyncio lock per key, discarded once no task holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class ArtifactPersistence:
    """Stores reports as versioned, immutable public health messages.

    Version numbers are ``max_version(logical key) + 1``, computed at
    persistence time while holding a per-key lock through the save, so
    concurrent runs for the same patient, artifact and trigger never share a
    version. The storage layer's unique index backs this up across processes.

    Attributes:
        store: The message store.
        file_sink: Optional raw payload file writer.
        correlation_sink: Optional receiver of persisted document ids.
    """

    def __init__(
        self,
        store: MessageStore,
        file_sink: PayloadFileSink | None = None,
        correlation_sink: CorrelationSink | None = None,
    ) -> None:
        self.store = store
        self.file_sink = file_sink
        self.correlation_sink = correlation_sink
        self._locks = KeyedLock()

    async def max_version(self, logical_key: LogicalKey) -> int:
        return await self.store.get_max_version(logical_key)

    async def persist(
        self,
        context: ProcessingContext,
        message: PublicHealthMessage,
        file_name: str | None = None,
    ) -> PublicHealthMessage:
        """Version and store a message.

        Args:
            context: The run's processing context.
            message: The unversioned message.
            file_name: Name for the raw payload copy, written once the record
                is stored; skipped when None or when no file sink is configured.

        Returns:
            The stored message carrying its version and storage id.

        Raises:
            ArtifactIntegrityError: If the store reports a different version
                than the one assigned, or rejects it as a duplicate.
        """
        logical_key = message.logical_key
        async with self._locks.hold(logical_key):
            version = await self.max_version(logical_key) + 1
            stored = await self.store.save(message.with_version(version))
            if stored.submitted_version_number != version:
                raise ArtifactIntegrityError(logical_key, version, stored.submitted_version_number)
            if self.file_sink is not None and file_name:
                await asyncio.to_thread(self.file_sink.write, file_name, stored)

        context.submitted_payload = stored.submitted_cda_data
        context.last_message = stored
        if self.correlation_sink is not None:
            self.correlation_sink.add_document_id(stored.submitted_data_id)

        logger.info(
            "Public health message created with submitted data id %s version %d",
            stored.submitted_data_id,
            stored.submitted_version_number,
        )
        return stored

    async def persist_document_bundle(
        self,
        context: ProcessingContext,
        action_type: str,
        output: Resource,
    ) -> list[PublicHealthMessage]:
        """Persist one message per document reference of a report bundle.

        Document references without content, and bundles without a message
        header, are logged and skipped.

        Args:
            context: The run's processing context.
            action_type: Kind of the action that created the report.
            output: The document-bearing report bundle.

        Returns:
            The stored messages, in document order.
        """
        header, document_references = find_message_header_and_document_references(output)
        stored: list[PublicHealthMessage] = []

        for document_reference in document_references:
            logger.info("Found document reference %s that needs to be saved", document_reference.get("id"))
            if not document_reference.get("content"):
                logger.info("Document reference does not have any document content")
                continue

            payload = decode_attachment(document_reference)
            if payload is None or header is None:
                logger.info("Document reference attachment is empty, nothing to save")
                continue

            message = self.build_message(context, action_type, output, header, document_reference, payload)
            subject_id = BaseReportCreator.subject_id(document_reference.get("subject"))
            file_name = PayloadFileSink.file_name(action_type, subject_id, message.submitted_data_id)
            stored.append(await self.persist(context, message, file_name))

        return stored

    def build_message(
        self,
        context: ProcessingContext,
        action_type: str,
        output: Resource,
        header: Resource,
        document_reference: Resource,
        payload: str,
    ) -> PublicHealthMessage:
        """Build an unversioned message from a report and the run context."""
        notification = context.notification
        encounter_id = "Unknown"
        if notification.notification_resource_type == "Encounter":
            encounter_id = notification.notification_resource_id
        return PublicHealthMessage(
            fhir_server_base_url=notification.fhir_server_base_url,
            patient_id=notification.patient_id,
            encounter_id=encounter_id,
            notified_resource_id=notification.notification_resource_id,
            notified_resource_type=notification.notification_resource_type,
            notification_id=str(notification.id),
            x_correlation_id=context.correlation_id,
            x_request_id=context.request_id,
            submitted_fhir_data=json.dumps(output),
            submitted_cda_data=payload,
            submitted_message_type=header.get("eventCoding", {}).get("code", ""),
            submitted_data_id=str(document_reference.get("id", "")),
            submitted_message_id=str(header.get("id", "")),
            initiating_action=action_type,
            kar_unique_id=context.knowledge_artifact.version_unique_id,
            trigger_match_status=encode_trigger_match_status(context.current_trigger_match_status),
        )
