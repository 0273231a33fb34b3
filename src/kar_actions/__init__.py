"""kar-actions - Execution engine for computable clinical knowledge artifacts.

This package walks the action tree of a knowledge artifact for one clinical
trigger event: it defers actions that are not yet due, gathers the data each
action requires, creates regulatory reports through pluggable report
creators, and persists document reports with per-patient version numbers.

Key Features:
    - Recursive action execution with timing and condition gates
    - Append-only status ledger per run
    - Report creator registry keyed by output profile
    - Linearized version assignment per logical report key
    - SQLAlchemy persistence and a Litestar plugin

Example:
    >>> from kar_actions import ActionExecutionEngine, ProcessingContext
    >>>
    >>> context = ProcessingContext.create(
    ...     knowledge_artifact=artifact,
    ...     patient_id="patient-1",
    ...     notification_resource_type="Encounter",
    ...     notification_resource_id="enc-1",
    ... )
    >>> outcome = await ActionExecutionEngine(query_service, registry).execute(context, artifact.actions[0])
"""

from __future__ import annotations

from kar_actions.__metadata__ import __project__, __version__
from kar_actions.core import (
    Action,
    ActionOutcome,
    ActionStatus,
    ActionType,
    DataRequirement,
    KnowledgeArtifact,
    ProcessingContext,
    PublicHealthMessage,
    QueryFilter,
    RelatedAction,
    StatusLedger,
    TimingConstraint,
)
from kar_actions.engine import ActionExecutionEngine, ReportCreatorRegistry
from kar_actions.exceptions import (
    ActionGraphError,
    ActionNotFoundError,
    ArtifactIntegrityError,
    ContextConstructionError,
    KarActionsError,
    QueryError,
    RecoverableQueryError,
    RegistryFrozenError,
    ReportCreatorNotFoundError,
    SchedulingError,
)
from kar_actions.persistence import ArtifactPersistence
from kar_actions.plugin import ActionEnginePlugin, ActionEnginePluginConfig

__all__ = (
    "Action",
    "ActionEnginePlugin",
    "ActionEnginePluginConfig",
    "ActionExecutionEngine",
    "ActionGraphError",
    "ActionNotFoundError",
    "ActionOutcome",
    "ActionStatus",
    "ActionType",
    "ArtifactIntegrityError",
    "ArtifactPersistence",
    "ContextConstructionError",
    "DataRequirement",
    "KarActionsError",
    "KnowledgeArtifact",
    "ProcessingContext",
    "PublicHealthMessage",
    "QueryError",
    "QueryFilter",
    "RecoverableQueryError",
    "RegistryFrozenError",
    "RelatedAction",
    "ReportCreatorNotFoundError",
    "ReportCreatorRegistry",
    "SchedulingError",
    "StatusLedger",
    "TimingConstraint",
    "__project__",
    "__version__",
)
