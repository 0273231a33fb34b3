"""Versioned report persistence for kar-actions.

This module provides artifact persistence with per-key version assignment,
message stores, SQLAlchemy models and repositories, and audit sinks.
"""

from __future__ import annotations

from kar_actions.persistence.artifacts import ArtifactPersistence, KeyedLock, encode_trigger_match_status
from kar_actions.persistence.audit import LoggingCorrelationSink, PayloadFileSink, current_document_ids
from kar_actions.persistence.models import ActionStatusModel, PublicHealthMessageModel
from kar_actions.persistence.repositories import (
    SEARCH_PARAMETERS,
    ActionStatusRepository,
    PublicHealthMessageRepository,
)
from kar_actions.persistence.store import (
    InMemoryMessageStore,
    SQLAlchemyMessageStore,
    message_from_model,
    message_to_model,
)

__all__ = [
    "SEARCH_PARAMETERS",
    "ActionStatusModel",
    "ActionStatusRepository",
    "ArtifactPersistence",
    "InMemoryMessageStore",
    "KeyedLock",
    "LoggingCorrelationSink",
    "PayloadFileSink",
    "PublicHealthMessageModel",
    "PublicHealthMessageRepository",
    "SQLAlchemyMessageStore",
    "current_document_ids",
    "encode_trigger_match_status",
    "message_from_model",
    "message_to_model",
]
