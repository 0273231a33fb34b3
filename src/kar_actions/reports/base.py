"""Base report creator and report inspection helpers."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action
    from kar_actions.core.protocols import QueryService
    from kar_actions.core.types import Resource

__all__ = [
    "DOCUMENT_CONTENT_TYPES",
    "BaseReportCreator",
    "decode_attachment",
    "find_message_header_and_document_references",
    "has_document_payload",
]

logger = logging.getLogger(__name__)

DOCUMENT_CONTENT_TYPES = frozenset({"application/xml", "text/xml", "application/cda+xml"})


def _entries(resource: Resource) -> list[Resource]:
    if resource.get("resourceType") != "Bundle":
        return []
    return [entry["resource"] for entry in resource.get("entry", []) if isinstance(entry.get("resource"), dict)]


def _document_attachment(document_reference: Resource) -> dict[str, Any] | None:
    content = document_reference.get("content") or []
    if not content:
        return None
    return content[0].get("attachment")


def has_document_payload(resource: Resource) -> bool:
    """Whether a report carries a document payload that must be persisted.

    A report is document-bearing when it is a bundle holding at least one
    DocumentReference whose first attachment is XML with inline data.
    """
    for entry in _entries(resource):
        if entry.get("resourceType") != "DocumentReference":
            continue
        attachment = _document_attachment(entry)
        if attachment and attachment.get("data") and attachment.get("contentType") in DOCUMENT_CONTENT_TYPES:
            return True
    return False


def find_message_header_and_document_references(
    resource: Resource,
) -> tuple[Resource | None, list[Resource]]:
    """Split a report bundle into its message header and document references.

    Args:
        resource: The report bundle.

    Returns:
        The first MessageHeader (or None) and every DocumentReference, in order.
    """
    header: Resource | None = None
    document_references: list[Resource] = []
    for entry in _entries(resource):
        resource_type = entry.get("resourceType")
        if resource_type == "MessageHeader" and header is None:
            header = entry
        elif resource_type == "DocumentReference":
            document_references.append(entry)
    return header, document_references


def decode_attachment(document_reference: Resource) -> str | None:
    """Return the decoded text payload of a document reference, if any."""
    attachment = _document_attachment(document_reference)
    if not attachment or not attachment.get("data"):
        return None
    return base64.b64decode(attachment["data"]).decode("utf-8")


class BaseReportCreator:
    """Base implementation with common functionality for report creators.

    Subclass this and implement :meth:`create_report`. The helpers build the
    FHIR shapes shared by every report type.
    """

    name: str = "report"
    """Short name used in log messages."""

    async def create_report(
        self,
        context: ProcessingContext,
        query_service: QueryService,
        resources: list[Resource],
        requirement_id: str,
        profile: str,
        action: Action,
    ) -> Resource | None:
        """Create the report. Must be implemented by subclasses.

        Raises:
            NotImplementedError: Must be implemented by subclasses.
        """
        msg = f"Report creator {self.name} must implement create_report()"
        raise NotImplementedError(msg)

    @staticmethod
    def new_id() -> str:
        return str(uuid4())

    @staticmethod
    def patient_reference(context: ProcessingContext) -> dict[str, str]:
        return {"reference": f"Patient/{context.notification.patient_id}"}

    @staticmethod
    def subject_id(reference: dict[str, Any] | None) -> str:
        """Id part of a ``Type/id`` reference."""
        if not reference or not reference.get("reference"):
            return "Unknown"
        return str(reference["reference"]).rsplit("/", 1)[-1]

    def build_bundle(
        self,
        bundle_type: str,
        entries: list[Resource],
        profile: str | None = None,
    ) -> Resource:
        bundle: Resource = {
            "resourceType": "Bundle",
            "id": self.new_id(),
            "type": bundle_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "entry": [
                {"fullUrl": f"urn:uuid:{entry.get('id', self.new_id())}", "resource": entry} for entry in entries
            ],
        }
        if profile:
            bundle["meta"] = {"profile": [profile]}
        return bundle

    def build_message_header(
        self,
        context: ProcessingContext,
        event_code: str,
        focus: list[Resource],
    ) -> Resource:
        return {
            "resourceType": "MessageHeader",
            "id": self.new_id(),
            "eventCoding": {
                "system": "http://hl7.org/fhir/us/medmorph/CodeSystem/us-ph-messageheader-message-types",
                "code": event_code,
            },
            "source": {"endpoint": context.notification.fhir_server_base_url},
            "focus": [{"reference": f"{item['resourceType']}/{item['id']}"} for item in focus],
        }

    def build_document_reference(
        self,
        context: ProcessingContext,
        payload: str,
        content_type: str = "application/xml",
    ) -> Resource:
        return {
            "resourceType": "DocumentReference",
            "id": self.new_id(),
            "status": "current",
            "subject": self.patient_reference(context),
            "date": datetime.now(timezone.utc).isoformat(),
            "content": [
                {
                    "attachment": {
                        "contentType": content_type,
                        "data": base64.b64encode(payload.encode("utf-8")).decode("ascii"),
                    }
                }
            ],
        }
