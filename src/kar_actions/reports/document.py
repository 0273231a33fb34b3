"""Document-bearing report creator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from xml.etree import ElementTree

from kar_actions.exceptions import RecoverableQueryError
from kar_actions.reports.base import BaseReportCreator

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action, QueryFilter
    from kar_actions.core.protocols import QueryService
    from kar_actions.core.types import Resource

__all__ = ["CDA_EICR_PROFILE", "DocumentReportCreator"]

logger = logging.getLogger(__name__)

CDA_EICR_PROFILE = "http://hl7.org/fhir/us/ecr/StructureDefinition/eicr-cda-document"
CDA_NAMESPACE = "urn:hl7-org:v3"


class DocumentReportCreator(BaseReportCreator):
    """Builds a message bundle carrying an XML clinical document.

    The bundle holds a MessageHeader and one DocumentReference whose attachment
    is the document rendered from the working set. Such reports are routed to
    artifact persistence by the engine.

    Example:
        >>> creator = DocumentReportCreator(
        ...     supplemental_queries={"immunizations": QueryFilter("Immunization", "patient={patient}")}
        ... )
        >>> registry.register(creator, CDA_EICR_PROFILE)
    """

    name = "document"

    def __init__(
        self,
        event_code: str = "cancer-report-message",
        supplemental_queries: dict[str, QueryFilter] | None = None,
    ) -> None:
        """Initialize the creator.

        Args:
            event_code: Message header event code for produced reports.
            supplemental_queries: Targeted queries run before assembly; their
                results are added to the document.
        """
        self.event_code = event_code
        self.supplemental_queries = supplemental_queries or {}

    async def create_report(
        self,
        context: ProcessingContext,
        query_service: QueryService,
        resources: list[Resource],
        requirement_id: str,
        profile: str,
        action: Action,
    ) -> Resource | None:
        """Create a document-bearing message bundle.

        Returns:
            The message bundle, or None when neither the working set nor the
            supplemental queries produced any resource.
        """
        gathered = list(resources)
        for query_key, query_filter in self.supplemental_queries.items():
            try:
                gathered.extend(await query_service.execute_query(context, query_key, query_filter))
            except RecoverableQueryError as exc:
                logger.warning("Supplemental query %s for %s returned no data: %s", query_key, requirement_id, exc)

        if not gathered:
            logger.info("No resources available for %s, no document created", requirement_id)
            return None

        payload = self.render_document(context, gathered, action)
        document_reference = self.build_document_reference(context, payload)
        header = self.build_message_header(context, self.event_code, [document_reference])
        return self.build_bundle("message", [header, document_reference], profile=profile)

    def render_document(self, context: ProcessingContext, resources: list[Resource], action: Action) -> str:
        """Render the working set as a minimal XML clinical document."""
        ElementTree.register_namespace("", CDA_NAMESPACE)
        root = ElementTree.Element(f"{{{CDA_NAMESPACE}}}ClinicalDocument")
        ElementTree.SubElement(root, f"{{{CDA_NAMESPACE}}}id", root=self.new_id())
        ElementTree.SubElement(
            root,
            f"{{{CDA_NAMESPACE}}}setId",
            extension=context.notification.notification_resource_id,
            root=context.knowledge_artifact.version_unique_id,
        )

        target = ElementTree.SubElement(root, f"{{{CDA_NAMESPACE}}}recordTarget")
        ElementTree.SubElement(target, f"{{{CDA_NAMESPACE}}}patientRole", extension=context.notification.patient_id)

        body = ElementTree.SubElement(root, f"{{{CDA_NAMESPACE}}}component")
        section = ElementTree.SubElement(body, f"{{{CDA_NAMESPACE}}}section", code=str(action.action_type))
        for resource in resources:
            ElementTree.SubElement(
                section,
                f"{{{CDA_NAMESPACE}}}entry",
                typeCode=str(resource.get("resourceType", "Unknown")),
                reference=str(resource.get("id", "")),
            )

        return ElementTree.tostring(root, encoding="unicode")
