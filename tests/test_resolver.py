"""Tests for data requirement resolution."""

from __future__ import annotations

import pytest

from kar_actions.core.definition import Action, DataRequirement, QueryFilter
from kar_actions.core.types import ActionType
from kar_actions.engine.resolver import DataRequirementResolver
from kar_actions.exceptions import QueryError, RecoverableQueryError
from tests.conftest import MockQueryService, make_artifact, make_context, resource


def report_action(**kwargs) -> Action:
    kwargs.setdefault(
        "input_data",
        [DataRequirement("R1", "Condition"), DataRequirement("R2", "Observation")],
    )
    return Action(action_id="report", action_type=ActionType.CREATE_REPORT, **kwargs)


@pytest.mark.unit
@pytest.mark.asyncio
class TestDataRequirementResolver:
    """Tests for building the working set."""

    async def test_working_set_excludes_empty_requirements(self) -> None:
        """Test R1 with two resources and R2 with none yields only R1's resources."""
        action = report_action()
        context = make_context(make_artifact(action))
        r1 = [resource("Condition", "c1"), resource("Condition", "c2")]
        service = MockQueryService(data={"R1": r1})

        working_set = await DataRequirementResolver(service).resolve(context, action)

        assert working_set == r1
        assert context.get_resources_by_id("R2") == []
        assert ("load_jurisdiction_data", "") in service.calls

    async def test_named_queries_take_precedence(self) -> None:
        """Test default and custom named queries replace requirement fetching."""
        action = report_action(queries={"labs": QueryFilter("Observation", "category=laboratory")})
        artifact = make_artifact(action, default_queries={"R1": QueryFilter("Condition", "patient={patient}")})
        context = make_context(artifact)
        service = MockQueryService(data={"R1": [resource("Condition", "c1")], "labs": [resource("Observation", "o1")]})

        working_set = await DataRequirementResolver(service).resolve(context, action)

        assert service.calls[:2] == [("execute_query", "R1"), ("execute_query", "labs")]
        assert not any(call[0] == "get_filtered_data" for call in service.calls)
        assert [item["id"] for item in working_set] == ["c1", "o1"]
        assert context.get_resources_by_id("R2") == []

    async def test_no_requirements_no_fetch(self) -> None:
        """Test an action without queries or inputs fetches nothing."""
        action = report_action(input_data=[])
        context = make_context(make_artifact(action))
        service = MockQueryService()

        assert await DataRequirementResolver(service).resolve(context, action) == []
        assert service.calls == []

    async def test_recoverable_query_error_is_zero_resources(self) -> None:
        """Test a recoverable failure leaves the requirement empty."""
        action = report_action(queries={"labs": QueryFilter("Observation", "")})
        context = make_context(make_artifact(action))
        service = MockQueryService(
            data={"R1": [resource("Condition", "c1")]},
            errors={"labs": RecoverableQueryError("labs", "timeout")},
        )

        working_set = await DataRequirementResolver(service).resolve(context, action)

        assert working_set == []
        assert context.get_resources_by_id("labs") == []

    async def test_recoverable_reference_data_error(self) -> None:
        """Test missing jurisdiction data does not fail resolution."""
        action = report_action()
        context = make_context(make_artifact(action))
        service = MockQueryService(
            data={"R1": [resource("Condition", "c1")]},
            errors={"jurisdiction": RecoverableQueryError("jurisdiction")},
        )

        working_set = await DataRequirementResolver(service).resolve(context, action)

        assert len(working_set) == 1

    async def test_fatal_query_error_propagates(self) -> None:
        """Test transport-fatal failures reach the engine."""
        action = report_action()
        context = make_context(make_artifact(action))
        service = MockQueryService(errors={"R1": QueryError("R1", "connection refused")})

        with pytest.raises(QueryError, match="connection refused"):
            await DataRequirementResolver(service).resolve(context, action)

    async def test_shared_resources_appear_once(self) -> None:
        """Test a resource stored under two keys is in the working set once."""
        action = report_action()
        context = make_context(make_artifact(action))
        shared = resource("Condition", "c1")
        service = MockQueryService(data={"R1": [shared], "R2": [shared]})

        working_set = await DataRequirementResolver(service).resolve(context, action)

        assert len(working_set) == 1
