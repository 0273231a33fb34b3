"""Structured-only report creator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kar_actions.reports.base import BaseReportCreator

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action
    from kar_actions.core.protocols import QueryService
    from kar_actions.core.types import Resource

__all__ = ["FHIR_CONTENT_BUNDLE_PROFILE", "FhirReportCreator"]

logger = logging.getLogger(__name__)

FHIR_CONTENT_BUNDLE_PROFILE = "http://hl7.org/fhir/us/medmorph/StructureDefinition/us-ph-content-bundle"


class FhirReportCreator(BaseReportCreator):
    """Collects the working set into a structured content bundle.

    The bundle has no document payload, so the engine records it as an action
    output without persisting a public health message.
    """

    name = "fhir"

    async def create_report(
        self,
        context: ProcessingContext,
        query_service: QueryService,
        resources: list[Resource],
        requirement_id: str,
        profile: str,
        action: Action,
    ) -> Resource | None:
        if not resources:
            return None
        logger.debug("Bundling %d resources for %s", len(resources), requirement_id)
        return self.build_bundle("collection", list(resources), profile=profile)
