"""Resolution of an action's data requirements through the query service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kar_actions.exceptions import RecoverableQueryError

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action
    from kar_actions.core.protocols import QueryService
    from kar_actions.core.types import Resource

__all__ = ["DataRequirementResolver"]

logger = logging.getLogger(__name__)


class DataRequirementResolver:
    """Turns declared requirements into fetched resources stored in the context.

    Named queries (the artifact's defaults for the action's inputs, overridden
    by the action's custom queries) take precedence. Without named queries the
    declared input requirements are fetched by type and profile. Every
    requirement and query key ends up recorded in the context, with an empty
    list when nothing came back.

    Attributes:
        query_service: The external query collaborator.
    """

    def __init__(self, query_service: QueryService) -> None:
        self.query_service = query_service

    async def resolve(self, context: ProcessingContext, action: Action) -> list[Resource]:
        """Fetch the action's data and build its working set.

        Args:
            context: The run's processing context.
            action: The action resolving its inputs.

        Returns:
            Resources of every requirement or query key that resolved to at
            least one resource. Empty groups are dropped, not treated as errors.

        Raises:
            QueryError: If the query service failed in a transport-fatal way.
        """
        queries = context.knowledge_artifact.default_queries_for(action)
        keys: list[str] = []

        if queries:
            logger.info("Executing %d named queries for action %s", len(queries), action.action_id)
            # Run in declaration order; no query may depend on another one's results.
            for query_key, query_filter in queries.items():
                keys.append(query_key)
                try:
                    await self.query_service.execute_query(context, query_key, query_filter)
                except RecoverableQueryError as exc:
                    logger.warning("Query %s for action %s returned no data: %s", query_key, action.action_id, exc)
        elif action.input_data:
            logger.info(
                "Fetching %d input requirements for action %s by resource type",
                len(action.input_data),
                action.action_id,
            )
            try:
                await self.query_service.get_filtered_data(context, action.input_data)
            except RecoverableQueryError as exc:
                logger.warning("Input data for action %s could not be fetched: %s", action.action_id, exc)
        else:
            logger.debug("Action %s declares no data requirements, nothing to fetch", action.action_id)
            return []

        keys.extend(requirement.requirement_id for requirement in action.input_data)
        working_set: list[Resource] = []
        seen: set[int] = set()

        for key in dict.fromkeys(keys):
            resources = context.get_resources_by_id(key)
            if resources is None:
                context.add_resources(key, [])
                logger.debug("Requirement %s of action %s resolved to zero resources", key, action.action_id)
                continue
            if not resources:
                logger.debug("Requirement %s of action %s resolved to zero resources", key, action.action_id)
                continue
            for resource in resources:
                if id(resource) not in seen:
                    seen.add(id(resource))
                    working_set.append(resource)

        await self.load_reference_data(context, action)
        return working_set

    async def load_reference_data(self, context: ProcessingContext, action: Action) -> None:
        """Merge jurisdiction data needed by downstream report logic."""
        try:
            await self.query_service.load_jurisdiction_data(context)
        except RecoverableQueryError as exc:
            logger.warning("Jurisdiction data for action %s unavailable: %s", action.action_id, exc)
