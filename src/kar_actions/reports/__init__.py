"""Built-in report creators for kar-actions."""

from __future__ import annotations

from kar_actions.reports.base import (
    BaseReportCreator,
    decode_attachment,
    find_message_header_and_document_references,
    has_document_payload,
)
from kar_actions.reports.document import CDA_EICR_PROFILE, DocumentReportCreator
from kar_actions.reports.fhir import FHIR_CONTENT_BUNDLE_PROFILE, FhirReportCreator

__all__ = [
    "CDA_EICR_PROFILE",
    "FHIR_CONTENT_BUNDLE_PROFILE",
    "BaseReportCreator",
    "DocumentReportCreator",
    "FhirReportCreator",
    "decode_attachment",
    "find_message_header_and_document_references",
    "has_document_payload",
]
