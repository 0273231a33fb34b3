"""Report creator registry keyed by output profile.

This module provides the strategy table the engine dispatches report
generation through.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from kar_actions.exceptions import RegistryFrozenError, ReportCreatorNotFoundError

if TYPE_CHECKING:
    from kar_actions.core.protocols import ReportCreator

__all__ = ["ReportCreatorRegistry"]


class ReportCreatorRegistry:
    """Registry mapping output profile identifiers to report creators.

    The registry is populated at process start and frozen before runs begin.
    Once frozen it is read-only, so concurrent lookups need no locking.

    Attributes:
        _creators: Map of profile identifier to report creator.
        _frozen: Whether registration is closed.
    """

    def __init__(self) -> None:
        """Initialize an empty report creator registry."""
        self._creators: dict[str, ReportCreator] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, creator: ReportCreator, *profiles: str) -> None:
        """Register a creator under one or more profile identifiers.

        A later registration for the same profile replaces the earlier one.

        Args:
            creator: The report creator.
            *profiles: Profile identifiers the creator serves.

        Raises:
            RegistryFrozenError: If the registry was already frozen.
            ValueError: If no profile is given.

        Example:
            >>> registry = ReportCreatorRegistry()
            >>> registry.register(DocumentReportCreator(), EICR_PROFILE)
        """
        if not profiles:
            msg = "At least one profile is required to register a report creator"
            raise ValueError(msg)

        for profile in profiles:
            if self._frozen:
                raise RegistryFrozenError(profile)
            self._creators[profile] = creator

    def freeze(self) -> None:
        """Close the registry for registration."""
        self._frozen = True

    def lookup(self, profile: str) -> ReportCreator | None:
        """Retrieve the creator for a profile.

        Args:
            profile: The output profile identifier.

        Returns:
            The registered creator, or None when the profile is unregistered.
        """
        return self._creators.get(profile)

    def get(self, profile: str) -> ReportCreator:
        """Retrieve the creator for a profile, failing when it is unregistered.

        Raises:
            ReportCreatorNotFoundError: If no creator serves the profile.
        """
        creator = self.lookup(profile)
        if creator is None:
            raise ReportCreatorNotFoundError(profile)
        return creator

    def has_profile(self, profile: str) -> bool:
        return profile in self._creators

    def list_profiles(self) -> list[str]:
        return list(self._creators)

    def unregister(self, profile: str) -> None:
        """Remove a profile from the registry.

        Raises:
            RegistryFrozenError: If the registry was already frozen.
        """
        if self._frozen:
            raise RegistryFrozenError(profile)
        self._creators.pop(profile, None)

    def __len__(self) -> int:
        return len(self._creators)

    def __contains__(self, profile: object) -> bool:
        return profile in self._creators
