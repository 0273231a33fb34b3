"""Shared test fixtures for kar-actions test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import pytest

from kar_actions.core.context import ProcessingContext
from kar_actions.core.definition import Action, DataRequirement, KnowledgeArtifact
from kar_actions.core.types import ActionType
from kar_actions.engine.executor import ActionExecutionEngine
from kar_actions.engine.registry import ReportCreatorRegistry
from kar_actions.engine.timing import TimingEvaluator
from kar_actions.persistence.artifacts import ArtifactPersistence
from kar_actions.persistence.store import InMemoryMessageStore

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from kar_actions.core.definition import QueryFilter
    from kar_actions.core.types import Resource


TRIGGER_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class MockQueryService:
    """Query service serving canned resources and recording every call.

    Requirements without canned data are left unresolved, so the resolver has
    to record them as empty itself.
    """

    def __init__(
        self,
        data: dict[str, list[Resource]] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        self.data = data or {}
        self.errors = errors or {}
        self.calls: list[tuple[str, str]] = []

    def _raise_for(self, key: str) -> None:
        if key in self.errors:
            raise self.errors[key]

    async def execute_query(
        self,
        context: ProcessingContext,
        query_key: str,
        query_filter: QueryFilter,
    ) -> list[Resource]:
        self.calls.append(("execute_query", query_key))
        self._raise_for(query_key)
        resources = list(self.data.get(query_key, []))
        if query_key in self.data:
            context.add_resources(query_key, resources)
        return resources

    async def get_filtered_data(
        self,
        context: ProcessingContext,
        requirements: Sequence[DataRequirement],
    ) -> None:
        for requirement in requirements:
            self.calls.append(("get_filtered_data", requirement.requirement_id))
            self._raise_for(requirement.requirement_id)
            if requirement.requirement_id in self.data:
                context.add_resources(requirement.requirement_id, list(self.data[requirement.requirement_id]))

    async def load_jurisdiction_data(self, context: ProcessingContext) -> None:
        self.calls.append(("load_jurisdiction_data", ""))
        self._raise_for("jurisdiction")


class RecordingReportCreator:
    """Report creator returning a fixed output and recording its inputs."""

    def __init__(self, output: Resource | None = None, error: Exception | None = None) -> None:
        self.output = output
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def create_report(
        self,
        context: ProcessingContext,
        query_service: Any,
        resources: list[Resource],
        requirement_id: str,
        profile: str,
        action: Action,
    ) -> Resource | None:
        self.calls.append(
            {
                "action_id": action.action_id,
                "requirement_id": requirement_id,
                "profile": profile,
                "resources": list(resources),
            }
        )
        if self.error is not None:
            raise self.error
        return self.output


class MutableClock:
    """Clock returning a settable time."""

    def __init__(self, now: datetime = TRIGGER_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def resource(resource_type: str, resource_id: str) -> Resource:
    """Build a minimal FHIR-shaped resource."""
    return {"resourceType": resource_type, "id": resource_id}


def make_artifact(*actions: Action, **kwargs: Any) -> KnowledgeArtifact:
    """Wrap actions in a knowledge artifact."""
    return KnowledgeArtifact(kar_id="kar-cancer", version="1.0.0", actions=list(actions), **kwargs)


def make_context(artifact: KnowledgeArtifact, **kwargs: Any) -> ProcessingContext:
    """Build a processing context for an encounter trigger."""
    values: dict[str, Any] = {
        "knowledge_artifact": artifact,
        "patient_id": "patient-1",
        "notification_resource_type": "Encounter",
        "notification_resource_id": "enc-1",
        "fhir_server_base_url": "https://ehr.example.org/fhir",
        "trigger_time": TRIGGER_TIME,
    }
    values.update(kwargs)
    return ProcessingContext.create(**values)


@pytest.fixture
def clock() -> MutableClock:
    """Clock fixed at the trigger time."""
    return MutableClock()


@pytest.fixture
def query_service() -> MockQueryService:
    """Query service without canned data."""
    return MockQueryService()


@pytest.fixture
def registry() -> ReportCreatorRegistry:
    """Empty report creator registry."""
    return ReportCreatorRegistry()


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    """In-memory message store."""
    return InMemoryMessageStore()


@pytest.fixture
def persistence(message_store: InMemoryMessageStore) -> ArtifactPersistence:
    """Artifact persistence over the in-memory store."""
    return ArtifactPersistence(store=message_store)


@pytest.fixture
def make_engine(
    registry: ReportCreatorRegistry,
    persistence: ArtifactPersistence,
    clock: MutableClock,
) -> Callable[..., ActionExecutionEngine]:
    """Factory building an engine around a query service.

    Returns:
        Callable taking the query service and optional engine keyword arguments.
    """

    def factory(query_service: MockQueryService, **kwargs: Any) -> ActionExecutionEngine:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("persistence", persistence)
        kwargs.setdefault("timing", TimingEvaluator(clock=clock))
        return ActionExecutionEngine(query_service=query_service, **kwargs)

    return factory


@pytest.fixture
def simple_action() -> Action:
    """Report action with two input requirements and one output."""
    return Action(
        action_id="create-report",
        action_type=ActionType.CREATE_REPORT,
        input_data=[
            DataRequirement("conditions", "Condition"),
            DataRequirement("medications", "MedicationRequest"),
        ],
        output_data=[DataRequirement("report", "Bundle", profiles=["urn:test:report"])],
    )


@pytest.fixture
def simple_artifact(simple_action: Action) -> KnowledgeArtifact:
    """Knowledge artifact holding the simple action."""
    return make_artifact(simple_action)


@pytest.fixture
def sample_context(simple_artifact: KnowledgeArtifact) -> ProcessingContext:
    """Processing context for the simple artifact."""
    return make_context(simple_artifact)
