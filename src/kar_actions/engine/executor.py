"""Recursive action execution engine.

This module provides the engine that walks a knowledge artifact's action tree
for one triggering event: timing, data resolution, report generation,
condition gate, sub and related fan-out, and status recording.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from kar_actions.core.models import ActionOutcome
from kar_actions.core.types import ActionStatus
from kar_actions.engine.conditions import ConditionEvaluator
from kar_actions.engine.resolver import DataRequirementResolver
from kar_actions.engine.timing import TimingEvaluator
from kar_actions.exceptions import ActionNotFoundError, ArtifactIntegrityError
from kar_actions.reports.base import has_document_payload

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action
    from kar_actions.core.protocols import QueryService, Rescheduler
    from kar_actions.core.types import Resource
    from kar_actions.engine.registry import ReportCreatorRegistry
    from kar_actions.persistence.artifacts import ArtifactPersistence

__all__ = ["ActionExecutionEngine"]

logger = logging.getLogger(__name__)


class ActionExecutionEngine:
    """Executes actions of a knowledge artifact against one processing context.

    All collaborators are passed in explicitly. A run is driven by awaiting
    :meth:`execute` on the root action; sub-actions and related actions are
    executed depth-first on the same task, so a run never interleaves with
    itself. Separate runs may execute concurrently as long as each owns its
    own :class:`~kar_actions.core.context.ProcessingContext`.

    Attributes:
        query_service: Access to the external record system.
        registry: Report creators keyed by output profile.
        persistence: Optional versioned artifact persistence.
        timing: Timing evaluator.
        conditions: Condition evaluator.
        rescheduler: Optional collaborator re-invoking deferred actions.
        resolver: Data requirement resolver over the query service.
    """

    def __init__(
        self,
        query_service: QueryService,
        registry: ReportCreatorRegistry,
        persistence: ArtifactPersistence | None = None,
        timing: TimingEvaluator | None = None,
        conditions: ConditionEvaluator | None = None,
        rescheduler: Rescheduler | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            query_service: The query collaborator.
            registry: The report creator registry.
            persistence: Persistence for document-bearing reports. Without it
                document reports are kept in the context only.
            timing: Timing evaluator; defaults to one on the wall clock.
            conditions: Condition evaluator.
            rescheduler: Receives actions that are not yet due.
        """
        self.query_service = query_service
        self.registry = registry
        self.persistence = persistence
        self.timing = timing or TimingEvaluator()
        self.conditions = conditions or ConditionEvaluator()
        self.rescheduler = rescheduler
        self.resolver = DataRequirementResolver(query_service)

    async def execute(self, context: ProcessingContext, action: Action) -> ActionOutcome:
        """Execute an action and, depending on its condition, its descendants.

        Args:
            context: The run's processing context.
            action: The action to execute.

        Returns:
            The outcome of the action, with nested outcomes for every
            sub-action and related action that ran.

        Raises:
            ArtifactIntegrityError: If persisting a report violated version
                integrity. The action is recorded ``FAILED`` first.

        Example:
            >>> engine = ActionExecutionEngine(query_service, registry, persistence)
            >>> outcome = await engine.execute(context, artifact.actions[0])
            >>> outcome.status
            <ActionStatus.COMPLETED: 'completed'>
        """
        if action.action_id in context.active_actions:
            error = f"Action '{action.action_id}' is already executing in this run"
            logger.error(error)
            context.add_action_status(action.action_id, ActionStatus.FAILED, error)
            return ActionOutcome(action.action_id, ActionStatus.FAILED, context.ledger, error=error)

        decision = self.timing.evaluate(action, context)
        if not decision.is_due:
            logger.info("Action %s is not yet due, scheduled for %s", action.action_id, decision.due_at)
            context.add_action_status(action.action_id, ActionStatus.SCHEDULED)
            if self.rescheduler is not None and decision.due_at is not None:
                self.rescheduler.schedule(self, context, action, decision.due_at)
            return ActionOutcome(action.action_id, ActionStatus.SCHEDULED, context.ledger, due_at=decision.due_at)

        context.active_actions.append(action.action_id)
        try:
            return await self._run(context, action)
        finally:
            context.active_actions.pop()

    async def _run(self, context: ProcessingContext, action: Action) -> ActionOutcome:
        logger.info("Executing action %s of type %s", action.action_id, action.action_type)
        outcome = ActionOutcome(action.action_id, ActionStatus.IN_PROGRESS, context.ledger)

        try:
            working_set = await self.resolver.resolve(context, action)
        except Exception as exc:
            logger.exception("Data resolution failed for action %s", action.action_id)
            return self._finish(context, outcome, ActionStatus.FAILED, str(exc))

        try:
            await self.generate_outputs(context, action, working_set, outcome)
        except ArtifactIntegrityError as exc:
            self._finish(context, outcome, ActionStatus.FAILED, str(exc))
            raise
        except Exception as exc:
            logger.exception("Output generation failed for action %s", action.action_id)
            return self._finish(context, outcome, ActionStatus.FAILED, str(exc))

        outcome.condition_met = self.conditions.evaluate(action, context)
        if outcome.condition_met:
            for sub_action in action.sub_actions:
                outcome.sub_outcomes.append(await self.execute(context, sub_action))
        else:
            logger.info("Condition of action %s is false, skipping sub and related actions", action.action_id)

        self._finish(context, outcome, ActionStatus.COMPLETED)

        if outcome.condition_met:
            for related in action.related_actions:
                outcome.related_outcomes.append(await self.execute_related(context, action, related.action_id))
        return outcome

    def _finish(
        self,
        context: ProcessingContext,
        outcome: ActionOutcome,
        status: ActionStatus,
        error: str | None = None,
    ) -> ActionOutcome:
        outcome.status = status
        outcome.error = error
        context.add_action_status(outcome.action_id, status, error)
        return outcome

    async def execute_related(self, context: ProcessingContext, action: Action, related_id: str) -> ActionOutcome:
        """Execute a related action referenced by id from ``action``."""
        try:
            related_action = context.knowledge_artifact.get_action(related_id)
        except ActionNotFoundError as exc:
            logger.error("Related action %s of action %s does not exist", related_id, action.action_id)
            context.add_action_status(related_id, ActionStatus.FAILED, str(exc))
            return ActionOutcome(related_id, ActionStatus.FAILED, context.ledger, error=str(exc))
        return await self.execute(context, related_action)

    async def generate_outputs(
        self,
        context: ProcessingContext,
        action: Action,
        working_set: list[Resource],
        outcome: ActionOutcome,
    ) -> None:
        """Create a report for every profile of every output requirement.

        Unregistered profiles and failing creators are logged and produce no
        artifact; they do not affect the other output requirements.

        Raises:
            ArtifactIntegrityError: If a document report could not be
                persisted with a consistent version.
        """
        for requirement in action.output_data:
            for profile in requirement.profiles:
                creator = self.registry.lookup(profile)
                if creator is None:
                    logger.warning(
                        "No report creator registered for profile %s of output %s, skipping",
                        profile,
                        requirement.requirement_id,
                    )
                    continue

                try:
                    output = await creator.create_report(
                        context,
                        self.query_service,
                        working_set,
                        requirement.requirement_id,
                        profile,
                        action,
                    )
                except Exception:
                    logger.exception(
                        "Report creator for profile %s failed in action %s", profile, action.action_id
                    )
                    continue

                if not output:
                    logger.info("Report creator for profile %s produced no output", profile)
                    continue

                context.add_action_output(action.action_id, output)
                context.add_action_output_by_id(requirement.requirement_id, output)
                outcome.artifacts.append(output)

                if has_document_payload(output):
                    if self.persistence is None:
                        logger.warning(
                            "No persistence configured, document report of %s kept in context", action.action_id
                        )
                        continue
                    outcome.messages.extend(
                        await self.persistence.persist_document_bundle(context, str(action.action_type), output)
                    )
                else:
                    logger.info(
                        "Report %s of action %s is structured only, not persisted",
                        output.get("id"),
                        action.action_id,
                    )
