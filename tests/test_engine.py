"""Tests for the action execution engine.

Covers timing precedence, condition suppression, ledger ordering, output
generation and the error propagation policy.
"""

from __future__ import annotations

import json
from datetime import timedelta

import pytest

from kar_actions.core.definition import Action, DataRequirement, RelatedAction, TimingConstraint
from kar_actions.core.types import ActionStatus, ActionType
from kar_actions.exceptions import ArtifactIntegrityError, QueryError, RecoverableQueryError
from kar_actions.persistence.store import InMemoryMessageStore
from kar_actions.reports import CDA_EICR_PROFILE, FHIR_CONTENT_BUNDLE_PROFILE, DocumentReportCreator, FhirReportCreator
from tests.conftest import (
    TRIGGER_TIME,
    MockQueryService,
    RecordingReportCreator,
    make_artifact,
    make_context,
    resource,
)

REPORT_PROFILE = "urn:test:report"


def ledger_rows(context) -> list[tuple[int, str, ActionStatus]]:
    return [(entry.sequence, entry.action_id, entry.status) for entry in context.ledger]


def data_action(action_id: str, **kwargs) -> Action:
    """Action requiring conditions and producing a test report."""
    kwargs.setdefault("input_data", [DataRequirement(f"{action_id}-conditions", "Condition")])
    kwargs.setdefault("output_data", [DataRequirement(f"{action_id}-report", "Bundle", profiles=[REPORT_PROFILE])])
    return Action(action_id=action_id, action_type=kwargs.pop("action_type", ActionType.CREATE_REPORT), **kwargs)


class RecordingRescheduler:
    def __init__(self) -> None:
        self.scheduled = []

    def schedule(self, engine, context, action, due_at) -> None:
        self.scheduled.append((action.action_id, due_at))


@pytest.mark.unit
@pytest.mark.asyncio
class TestTimingPrecedence:
    """Tests for actions that are not yet due."""

    async def test_scheduled_root_records_single_entry(self, make_engine, registry) -> None:
        """Test a root due in 10 minutes only records SCHEDULED."""
        creator = RecordingReportCreator(output={"resourceType": "Bundle", "id": "b1"})
        registry.register(creator, REPORT_PROFILE)
        root = data_action(
            "root",
            timing=[TimingConstraint(offset=timedelta(minutes=10))],
            sub_actions=[data_action("child")],
        )
        context = make_context(make_artifact(root))
        service = MockQueryService(data={"root-conditions": [resource("Condition", "c1")]})
        rescheduler = RecordingRescheduler()

        outcome = await make_engine(service, rescheduler=rescheduler).execute(context, root)

        assert outcome.status == ActionStatus.SCHEDULED
        assert outcome.is_scheduled
        assert outcome.due_at == TRIGGER_TIME + timedelta(minutes=10)
        assert ledger_rows(context) == [(1, "root", ActionStatus.SCHEDULED)]
        assert service.calls == []
        assert creator.calls == []
        assert context.resources_by_id == {}
        assert context.action_outputs == {}
        assert rescheduler.scheduled == [("root", TRIGGER_TIME + timedelta(minutes=10))]

    async def test_reexecution_after_due_appends(self, make_engine, clock) -> None:
        """Test re-running a deferred action appends to the ledger."""
        root = data_action("root", output_data=[], timing=[TimingConstraint(offset=timedelta(minutes=10))])
        context = make_context(make_artifact(root))
        engine = make_engine(MockQueryService())

        await engine.execute(context, root)
        first_entry = context.ledger.entries[0]
        clock.now = TRIGGER_TIME + timedelta(minutes=11)
        outcome = await engine.execute(context, root)

        assert outcome.status == ActionStatus.COMPLETED
        assert context.ledger.entries[0] == first_entry
        assert ledger_rows(context) == [(1, "root", ActionStatus.SCHEDULED), (2, "root", ActionStatus.COMPLETED)]

    async def test_scheduled_sub_action(self, make_engine) -> None:
        """Test a deferred sub-action does not stop its parent from completing."""
        root = Action(
            action_id="root",
            action_type=ActionType.INITIATE_REPORTING_WORKFLOW,
            sub_actions=[
                Action(
                    action_id="submit",
                    action_type=ActionType.SUBMIT_REPORT,
                    timing=[TimingConstraint(offset=timedelta(hours=1))],
                )
            ],
        )
        context = make_context(make_artifact(root))

        outcome = await make_engine(MockQueryService()).execute(context, root)

        assert outcome.status == ActionStatus.COMPLETED
        assert outcome.sub_outcomes[0].is_scheduled
        assert ledger_rows(context) == [(1, "submit", ActionStatus.SCHEDULED), (2, "root", ActionStatus.COMPLETED)]


@pytest.mark.unit
@pytest.mark.asyncio
class TestConditionGate:
    """Tests for condition suppression and ledger order."""

    async def test_false_condition_suppresses_descendants(self, make_engine, registry) -> None:
        """Test a false condition skips sub and related actions but completes."""
        creator = RecordingReportCreator(output={"resourceType": "Bundle", "id": "b1"})
        registry.register(creator, REPORT_PROFILE)
        root = Action(
            action_id="root",
            action_type=ActionType.CHECK_TRIGGER_CODES,
            condition="false",
            sub_actions=[data_action("child")],
            related_actions=[RelatedAction("follow-up")],
        )
        context = make_context(make_artifact(root, data_action("follow-up")))
        service = MockQueryService(data={"child-conditions": [resource("Condition", "c1")]})

        outcome = await make_engine(service).execute(context, root)

        assert outcome.status == ActionStatus.COMPLETED
        assert not outcome.condition_met
        assert ledger_rows(context) == [(1, "root", ActionStatus.COMPLETED)]
        assert service.calls == []
        assert creator.calls == []
        assert outcome.sub_outcomes == []
        assert outcome.related_outcomes == []

    async def test_ledger_order_sub_parent_related(self, make_engine) -> None:
        """Test sub-action, then parent, then related action are recorded in order."""
        root = Action(
            action_id="root",
            action_type=ActionType.CHECK_TRIGGER_CODES,
            condition="true",
            sub_actions=[Action(action_id="create", action_type=ActionType.CREATE_REPORT)],
            related_actions=[RelatedAction("submit")],
        )
        submit = Action(action_id="submit", action_type=ActionType.SUBMIT_REPORT)
        context = make_context(make_artifact(root, submit))

        outcome = await make_engine(MockQueryService()).execute(context, root)

        assert ledger_rows(context) == [
            (1, "create", ActionStatus.COMPLETED),
            (2, "root", ActionStatus.COMPLETED),
            (3, "submit", ActionStatus.COMPLETED),
        ]
        assert [item.action_id for item in outcome.iter_outcomes()] == ["root", "create", "submit"]
        assert context.active_actions == []

    async def test_shared_sub_action_runs_per_parent(self, make_engine) -> None:
        """Test a sub-action owned by two parents runs under each of them."""
        shared = Action(action_id="shared", action_type=ActionType.CREATE_REPORT)
        first = Action(action_id="first", action_type=ActionType.CHECK_TRIGGER_CODES, sub_actions=[shared])
        second = Action(action_id="second", action_type=ActionType.CHECK_TRIGGER_CODES, sub_actions=[shared])
        root = Action(action_id="root", action_type=ActionType.EXECUTE_REPORTING_WORKFLOW, sub_actions=[first, second])
        context = make_context(make_artifact(root))

        await make_engine(MockQueryService()).execute(context, root)

        assert [row[1] for row in ledger_rows(context)] == ["shared", "first", "shared", "second", "root"]

    async def test_condition_sees_resolved_data(self, make_engine) -> None:
        """Test the gate is evaluated after the action's data is resolved."""
        root = data_action(
            "root",
            output_data=[],
            condition="root-conditions",
            sub_actions=[Action(action_id="child", action_type=ActionType.CREATE_REPORT)],
        )
        context = make_context(make_artifact(root))
        service = MockQueryService(data={"root-conditions": [resource("Condition", "c1")]})

        outcome = await make_engine(service).execute(context, root)

        assert outcome.condition_met
        assert [row[1] for row in ledger_rows(context)] == ["child", "root"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestOutputGeneration:
    """Tests for report creator dispatch."""

    async def test_working_set_contains_only_resolved_requirements(self, make_engine, registry) -> None:
        """Test creators receive R1's resources only and R2 is recorded empty."""
        creator = RecordingReportCreator()
        registry.register(creator, REPORT_PROFILE)
        action = data_action(
            "report",
            input_data=[DataRequirement("R1", "Condition"), DataRequirement("R2", "Observation")],
        )
        context = make_context(make_artifact(action))
        r1 = [resource("Condition", "c1"), resource("Condition", "c2")]

        await make_engine(MockQueryService(data={"R1": r1})).execute(context, action)

        assert creator.calls[0]["resources"] == r1
        assert context.get_resources_by_id("R2") == []

    async def test_missing_registry_entry_is_non_fatal(self, make_engine, registry) -> None:
        """Test an unregistered profile does not affect sibling outputs."""
        registry.register(FhirReportCreator(), FHIR_CONTENT_BUNDLE_PROFILE)
        action = data_action(
            "report",
            output_data=[
                DataRequirement("unregistered", "Bundle", profiles=["urn:nobody"]),
                DataRequirement("content", "Bundle", profiles=[FHIR_CONTENT_BUNDLE_PROFILE]),
            ],
        )
        context = make_context(make_artifact(action))
        service = MockQueryService(data={"report-conditions": [resource("Condition", "c1")]})

        outcome = await make_engine(service).execute(context, action)

        assert outcome.status == ActionStatus.COMPLETED
        assert "unregistered" not in context.outputs_by_id
        assert len(context.outputs_by_id["content"]) == 1
        assert context.action_outputs["report"] == outcome.artifacts

    async def test_creator_failure_is_non_fatal(self, make_engine, registry) -> None:
        """Test a raising creator yields no artifact and siblings still run."""
        registry.register(RecordingReportCreator(error=RuntimeError("boom")), "urn:broken")
        working = RecordingReportCreator(output={"resourceType": "Bundle", "id": "ok"})
        registry.register(working, "urn:working")
        action = data_action(
            "report",
            output_data=[DataRequirement("out", "Bundle", profiles=["urn:broken", "urn:working"])],
        )
        context = make_context(make_artifact(action))

        outcome = await make_engine(MockQueryService()).execute(context, action)

        assert outcome.status == ActionStatus.COMPLETED
        assert context.outputs_by_id["out"] == [{"resourceType": "Bundle", "id": "ok"}]
        assert len(working.calls) == 1

    async def test_structured_output_not_persisted(self, make_engine, registry, message_store) -> None:
        """Test outputs without a document are recorded but not persisted."""
        registry.register(FhirReportCreator(), REPORT_PROFILE)
        action = data_action("report")
        context = make_context(make_artifact(action))
        service = MockQueryService(data={"report-conditions": [resource("Condition", "c1")]})

        outcome = await make_engine(service).execute(context, action)

        assert len(outcome.artifacts) == 1
        assert outcome.messages == []
        assert message_store.messages == []

    async def test_document_output_is_persisted(self, make_engine, registry, message_store) -> None:
        """Test document reports become versioned public health messages."""
        registry.register(DocumentReportCreator(), CDA_EICR_PROFILE)
        action = data_action(
            "create-eicr",
            output_data=[DataRequirement("eicr", "Bundle", profiles=[CDA_EICR_PROFILE])],
        )
        artifact = make_artifact(action)
        service = MockQueryService(data={"create-eicr-conditions": [resource("Condition", "c1")]})
        engine = make_engine(service)

        first_context = make_context(artifact)
        first = await engine.execute(first_context, action)
        second = await engine.execute(make_context(artifact), action)

        message = first.messages[0]
        assert message.submitted_version_number == 1
        assert second.messages[0].submitted_version_number == 2
        assert message.encounter_id == "enc-1"
        assert message.kar_unique_id == "kar-cancer|1.0.0"
        assert message.initiating_action == "create-report"
        assert message.submitted_message_type == "cancer-report-message"
        assert message.x_correlation_id == first_context.correlation_id
        assert json.loads(message.submitted_fhir_data)["type"] == "message"
        assert first_context.last_message == message
        assert first_context.submitted_payload == message.submitted_cda_data
        assert len(message_store.messages) == 2

    async def test_document_output_without_persistence(self, make_engine, registry) -> None:
        """Test document reports stay in the context when persistence is absent."""
        registry.register(DocumentReportCreator(), REPORT_PROFILE)
        action = data_action("report")
        context = make_context(make_artifact(action))
        service = MockQueryService(data={"report-conditions": [resource("Condition", "c1")]})

        outcome = await make_engine(service, persistence=None).execute(context, action)

        assert outcome.status == ActionStatus.COMPLETED
        assert outcome.messages == []
        assert len(context.outputs_by_id["report-report"]) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestErrorPropagation:
    """Tests for the engine's error policy."""

    async def test_fatal_query_error_fails_action_only(self, make_engine) -> None:
        """Test a transport-fatal query fails the action while siblings continue."""
        root = Action(
            action_id="root",
            action_type=ActionType.EXECUTE_REPORTING_WORKFLOW,
            sub_actions=[data_action("broken", output_data=[]), data_action("healthy", output_data=[])],
        )
        context = make_context(make_artifact(root))
        service = MockQueryService(errors={"broken-conditions": QueryError("broken-conditions", "503")})

        outcome = await make_engine(service).execute(context, root)

        assert outcome.status == ActionStatus.COMPLETED
        assert outcome.failed_sub_actions == ["broken"]
        assert ledger_rows(context) == [
            (1, "broken", ActionStatus.FAILED),
            (2, "healthy", ActionStatus.COMPLETED),
            (3, "root", ActionStatus.COMPLETED),
        ]
        assert "503" in context.ledger.latest("broken").error

    async def test_recoverable_query_error_completes(self, make_engine) -> None:
        """Test a recoverable query failure counts as zero resources."""
        action = data_action("report", output_data=[])
        context = make_context(make_artifact(action))
        service = MockQueryService(errors={"report-conditions": RecoverableQueryError("report-conditions")})

        outcome = await make_engine(service).execute(context, action)

        assert outcome.status == ActionStatus.COMPLETED
        assert context.get_resources_by_id("report-conditions") == []

    async def test_integrity_violation_propagates(self, make_engine, registry) -> None:
        """Test an inconsistent stored version fails the action and reaches the caller."""

        class DriftingStore(InMemoryMessageStore):
            async def save(self, message):
                stored = await super().save(message)
                return stored.with_version(stored.submitted_version_number + 5)

        from kar_actions.persistence.artifacts import ArtifactPersistence

        registry.register(DocumentReportCreator(), CDA_EICR_PROFILE)
        action = data_action("eicr", output_data=[DataRequirement("eicr", "Bundle", profiles=[CDA_EICR_PROFILE])])
        context = make_context(make_artifact(action))
        service = MockQueryService(data={"eicr-conditions": [resource("Condition", "c1")]})
        engine = make_engine(service, persistence=ArtifactPersistence(store=DriftingStore()))

        with pytest.raises(ArtifactIntegrityError, match="expected 1, found 6"):
            await engine.execute(context, action)

        assert ledger_rows(context) == [(1, "eicr", ActionStatus.FAILED)]
        assert context.active_actions == []

    async def test_storage_failure_fails_action_only(self, make_engine, registry) -> None:
        """Test an unavailable store fails the persisting action while siblings continue."""

        class UnavailableStore(InMemoryMessageStore):
            async def save(self, message):
                raise ConnectionError("database unavailable")

        from kar_actions.persistence.artifacts import ArtifactPersistence

        registry.register(DocumentReportCreator(), CDA_EICR_PROFILE)
        root = Action(
            action_id="root",
            action_type=ActionType.EXECUTE_REPORTING_WORKFLOW,
            sub_actions=[
                data_action("eicr", output_data=[DataRequirement("eicr", "Bundle", profiles=[CDA_EICR_PROFILE])]),
                data_action("sibling", output_data=[]),
            ],
        )
        context = make_context(make_artifact(root))
        service = MockQueryService(data={"eicr-conditions": [resource("Condition", "c1")]})
        engine = make_engine(service, persistence=ArtifactPersistence(store=UnavailableStore()))

        outcome = await engine.execute(context, root)

        assert outcome.status == ActionStatus.COMPLETED
        assert outcome.failed_sub_actions == ["eicr"]
        assert ledger_rows(context) == [
            (1, "eicr", ActionStatus.FAILED),
            (2, "sibling", ActionStatus.COMPLETED),
            (3, "root", ActionStatus.COMPLETED),
        ]
        assert "database unavailable" in context.ledger.latest("eicr").error
        assert context.active_actions == []

    async def test_reentrant_execution_fails(self, make_engine, registry) -> None:
        """Test executing an action already on the call stack records FAILED."""
        reentrant_outcomes = []

        class ReentrantCreator:
            async def create_report(self, context, query_service, resources, requirement_id, profile, action):
                reentrant_outcomes.append(await engine.execute(context, action))

        registry.register(ReentrantCreator(), REPORT_PROFILE)
        action = data_action("report")
        context = make_context(make_artifact(action))
        engine = make_engine(MockQueryService())

        outcome = await engine.execute(context, action)

        assert outcome.status == ActionStatus.COMPLETED
        assert reentrant_outcomes[0].status == ActionStatus.FAILED
        assert ledger_rows(context) == [(1, "report", ActionStatus.FAILED), (2, "report", ActionStatus.COMPLETED)]
