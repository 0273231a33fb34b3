"""Litestar plugin for action engine integration.

This module provides the ActionEnginePlugin, which builds the report creator
registry, artifact persistence and execution engine once at application start
and exposes them through Litestar dependency injection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from litestar.di import Provide
from litestar.exceptions import ImproperlyConfiguredException
from litestar.plugins import InitPluginProtocol

from kar_actions.engine.executor import ActionExecutionEngine
from kar_actions.engine.registry import ReportCreatorRegistry
from kar_actions.engine.timing import TimingEvaluator
from kar_actions.persistence.artifacts import ArtifactPersistence
from kar_actions.persistence.audit import LoggingCorrelationSink, PayloadFileSink
from kar_actions.persistence.store import InMemoryMessageStore

if TYPE_CHECKING:
    from litestar.config.app import AppConfig

    from kar_actions.core.protocols import MessageStore, QueryService, ReportCreator, Rescheduler

__all__ = ["ActionEnginePlugin", "ActionEnginePluginConfig"]


@dataclass
class ActionEnginePluginConfig:
    """Configuration for the ActionEnginePlugin.

    Attributes:
        query_service: The query collaborator. Required unless ``engine`` is given.
        registry: Optional pre-configured ReportCreatorRegistry. If not
            provided, a new one will be created.
        report_creators: Creators to register on app startup, keyed by
            output profile.
        persistence: Optional pre-configured ArtifactPersistence. If not
            provided, one is built from ``message_store`` and
            ``payload_directory``.
        message_store: Store used when building persistence. Defaults to an
            in-memory store.
        payload_directory: Directory for raw payload audit copies. No copies
            are written when None.
        rescheduler: Optional collaborator for actions that are not yet due.
        engine: Optional pre-configured ActionExecutionEngine.
        freeze_registry: Whether to close the registry for registration once
            the app is initialized. Defaults to True.
        dependency_key_registry: The key used for dependency injection of
            the registry. Defaults to "report_creator_registry".
        dependency_key_engine: The key used for dependency injection of the
            engine. Defaults to "action_engine".
        dependency_key_persistence: The key used for dependency injection of
            the persistence. Defaults to "artifact_persistence".
    """

    query_service: QueryService | None = None
    registry: ReportCreatorRegistry | None = None
    report_creators: dict[str, ReportCreator] = field(default_factory=dict)
    persistence: ArtifactPersistence | None = None
    message_store: MessageStore | None = None
    payload_directory: str | Path | None = None
    rescheduler: Rescheduler | None = None
    engine: ActionExecutionEngine | None = None
    freeze_registry: bool = True
    dependency_key_registry: str = "report_creator_registry"
    dependency_key_engine: str = "action_engine"
    dependency_key_persistence: str = "artifact_persistence"


class ActionEnginePlugin(InitPluginProtocol):
    """Litestar plugin wiring the action engine into an application.

    The plugin registers no routes; trigger endpoints belong to the host
    application, which receives the engine through dependency injection.

    Example:
        Basic usage::

            from litestar import Litestar, post
            from kar_actions import ActionEnginePlugin, ActionEnginePluginConfig
            from kar_actions.reports import CDA_EICR_PROFILE, DocumentReportCreator

            app = Litestar(
                plugins=[
                    ActionEnginePlugin(
                        config=ActionEnginePluginConfig(
                            query_service=MyQueryService(),
                            report_creators={CDA_EICR_PROFILE: DocumentReportCreator()},
                        )
                    )
                ]
            )

        Using in a route handler::

            @post("/notifications")
            async def notify(data: Notification, action_engine: ActionExecutionEngine) -> dict:
                context = ProcessingContext.create(...)
                outcome = await action_engine.execute(context, artifact.actions[0])
                return {"status": outcome.status}
    """

    __slots__ = ("_config", "_engine", "_persistence", "_registry")

    def __init__(self, config: ActionEnginePluginConfig | None = None) -> None:
        """Initialize the plugin.

        Args:
            config: Optional configuration for the plugin.
        """
        self._config = config or ActionEnginePluginConfig()
        self._registry: ReportCreatorRegistry | None = None
        self._persistence: ArtifactPersistence | None = None
        self._engine: ActionExecutionEngine | None = None

    @property
    def registry(self) -> ReportCreatorRegistry:
        """Get the report creator registry.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._registry is None:
            msg = "ActionEnginePlugin has not been initialized. Access registry after app startup."
            raise RuntimeError(msg)
        return self._registry

    @property
    def persistence(self) -> ArtifactPersistence:
        """Get the artifact persistence.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._persistence is None:
            msg = "ActionEnginePlugin has not been initialized. Access persistence after app startup."
            raise RuntimeError(msg)
        return self._persistence

    @property
    def engine(self) -> ActionExecutionEngine:
        """Get the execution engine.

        Raises:
            RuntimeError: If accessed before plugin initialization.
        """
        if self._engine is None:
            msg = "ActionEnginePlugin has not been initialized. Access engine after app startup."
            raise RuntimeError(msg)
        return self._engine

    def on_app_init(self, app_config: AppConfig) -> AppConfig:
        """Build the engine and register its dependency providers.

        Args:
            app_config: The Litestar application configuration.

        Returns:
            The modified application configuration.

        Raises:
            ImproperlyConfiguredException: If neither a query service nor an
                engine is configured.
        """
        config = self._config

        self._registry = config.engine.registry if config.engine else config.registry or ReportCreatorRegistry()
        for profile, creator in config.report_creators.items():
            self._registry.register(creator, profile)

        self._persistence = config.persistence or (config.engine.persistence if config.engine else None)
        if self._persistence is None:
            self._persistence = ArtifactPersistence(
                store=config.message_store or InMemoryMessageStore(),
                file_sink=PayloadFileSink(Path(config.payload_directory)) if config.payload_directory else None,
                correlation_sink=LoggingCorrelationSink(),
            )

        if config.engine is not None:
            self._engine = config.engine
        elif config.query_service is None:
            msg = "ActionEnginePluginConfig requires a query_service when no engine is provided"
            raise ImproperlyConfiguredException(msg)
        else:
            self._engine = ActionExecutionEngine(
                query_service=config.query_service,
                registry=self._registry,
                persistence=self._persistence,
                timing=TimingEvaluator(),
                rescheduler=config.rescheduler,
            )

        if config.freeze_registry:
            self._registry.freeze()

        def provide_registry() -> ReportCreatorRegistry:
            return self._registry  # type: ignore[return-value]

        def provide_persistence() -> ArtifactPersistence:
            return self._persistence  # type: ignore[return-value]

        def provide_engine() -> ActionExecutionEngine:
            return self._engine  # type: ignore[return-value]

        app_config.dependencies[config.dependency_key_registry] = Provide(provide_registry, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_persistence] = Provide(provide_persistence, sync_to_thread=False)
        app_config.dependencies[config.dependency_key_engine] = Provide(provide_engine, sync_to_thread=False)

        return app_config
