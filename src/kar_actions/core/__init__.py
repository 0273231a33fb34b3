"""Core domain module for kar-actions.

This module exports the building blocks of a run: action definitions, the
processing context and status ledger, runtime records, types and the
collaborator protocols.
"""

from __future__ import annotations

from kar_actions.core.context import (
    ActionStatusEntry,
    NotificationContext,
    ProcessingContext,
    StatusLedger,
    TriggerMatch,
)
from kar_actions.core.definition import (
    Action,
    Condition,
    DataRequirement,
    KnowledgeArtifact,
    QueryFilter,
    RelatedAction,
    TimingConstraint,
)
from kar_actions.core.models import ActionOutcome, LogicalKey, PublicHealthMessage
from kar_actions.core.protocols import CorrelationSink, MessageStore, QueryService, ReportCreator, Rescheduler
from kar_actions.core.types import ActionStatus, ActionType, Resource, TimingState

__all__ = [
    "Action",
    "ActionOutcome",
    "ActionStatus",
    "ActionStatusEntry",
    "ActionType",
    "Condition",
    "CorrelationSink",
    "DataRequirement",
    "KnowledgeArtifact",
    "LogicalKey",
    "MessageStore",
    "NotificationContext",
    "ProcessingContext",
    "PublicHealthMessage",
    "QueryFilter",
    "QueryService",
    "RelatedAction",
    "ReportCreator",
    "Rescheduler",
    "Resource",
    "StatusLedger",
    "TimingConstraint",
    "TimingState",
    "TriggerMatch",
]
