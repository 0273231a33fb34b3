"""Audit side channels: raw payload files and correlation tracing."""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kar_actions.core.models import PublicHealthMessage

__all__ = ["LoggingCorrelationSink", "PayloadFileSink", "current_document_ids"]

logger = logging.getLogger(__name__)

current_document_ids: ContextVar[tuple[str, ...]] = ContextVar("current_document_ids", default=())
"""Document ids persisted in the current task, for request tracing."""


class PayloadFileSink:
    """Writes raw document payloads to a directory for audit.

    Each payload is written under a deterministic name built from the action
    kind, subject id and document id, with a JSON sidecar carrying the version
    and correlation identifiers of the matching stored record.

    Attributes:
        directory: Target directory, created on first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    @staticmethod
    def file_name(action_type: str, subject_id: str, document_id: str) -> str:
        return f"{action_type}_{subject_id}_{document_id}.xml"

    def write(self, file_name: str, message: PublicHealthMessage) -> Path:
        """Write a message's document payload and its reconciliation sidecar.

        Args:
            file_name: Name of the payload file.
            message: The versioned message the payload belongs to.

        Returns:
            Path of the payload file.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / file_name
        logger.debug("Saving document payload to %s", path)
        path.write_text(message.submitted_cda_data, encoding="utf-8")

        sidecar = {
            "submittedDataId": message.submitted_data_id,
            "submittedVersionNumber": message.submitted_version_number,
            "xCorrelationId": message.x_correlation_id,
            "xRequestId": message.x_request_id,
            "patientId": message.patient_id,
            "karUniqueId": message.kar_unique_id,
        }
        path.with_suffix(".json").write_text(json.dumps(sidecar, indent=2), encoding="utf-8")
        return path


class LoggingCorrelationSink:
    """Correlation sink that tags the current task and logs document ids."""

    def add_document_id(self, document_id: str) -> None:
        current_document_ids.set((*current_document_ids.get(), document_id))
        logger.info("Correlated persisted document %s", document_id)
