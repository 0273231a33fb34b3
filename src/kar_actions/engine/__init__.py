"""Action execution engine and its evaluators.

This module provides the recursive execution engine together with the timing
and condition evaluators, the data requirement resolver, the report creator
registry and action graph validation.
"""

from __future__ import annotations

from kar_actions.engine.conditions import ConditionEvaluator
from kar_actions.engine.executor import ActionExecutionEngine
from kar_actions.engine.graph import ActionGraph
from kar_actions.engine.registry import ReportCreatorRegistry
from kar_actions.engine.resolver import DataRequirementResolver
from kar_actions.engine.timing import TimingDecision, TimingEvaluator

__all__ = [
    "ActionExecutionEngine",
    "ActionGraph",
    "ConditionEvaluator",
    "DataRequirementResolver",
    "ReportCreatorRegistry",
    "TimingDecision",
    "TimingEvaluator",
]
