"""Action graph operations and validation.

This module provides a graph view over a knowledge artifact's actions with two
distinct edge sets: owned sub-actions and triggered related actions.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kar_actions.core.definition import KnowledgeArtifact

__all__ = ["ActionGraph"]


class ActionGraph:
    """Graph representation of a knowledge artifact's action tree.

    Attributes:
        artifact: The knowledge artifact this graph represents.
        _children: Owned sub-action ids per action id, in declaration order.
        _related: Related action ids per action id, in declaration order.
        _parents: Reverse adjacency over both edge sets.
    """

    def __init__(self, artifact: KnowledgeArtifact) -> None:
        """Initialize an action graph from a knowledge artifact.

        Args:
            artifact: The knowledge artifact to represent as a graph.
        """
        self.artifact = artifact
        self._children: dict[str, list[str]] = {}
        self._related: dict[str, list[str]] = {}
        self._parents: dict[str, list[str]] = {}
        self._build_adjacency()

    def _build_adjacency(self) -> None:
        """Build adjacency lists from sub-action and related-action edges."""
        for action in self.artifact.iter_actions():
            self._children[action.action_id] = [sub.action_id for sub in action.sub_actions]
            self._related[action.action_id] = [ref.action_id for ref in action.related_actions]
            self._parents.setdefault(action.action_id, [])

        for source, targets in (*self._children.items(), *self._related.items()):
            for target in targets:
                self._parents.setdefault(target, []).append(source)

    @classmethod
    def from_artifact(cls, artifact: KnowledgeArtifact) -> ActionGraph:
        """Create an action graph from a knowledge artifact.

        Example:
            >>> graph = ActionGraph.from_artifact(artifact)
        """
        return cls(artifact)

    def get_sub_actions(self, action_id: str) -> list[str]:
        return self._children.get(action_id, [])

    def get_related_actions(self, action_id: str) -> list[str]:
        return self._related.get(action_id, [])

    def get_predecessors(self, action_id: str) -> list[str]:
        """Actions that own or trigger the given action."""
        return self._parents.get(action_id, [])

    def successors(self, action_id: str) -> list[str]:
        """Targets of both edge sets, sub-actions first."""
        return [*self.get_sub_actions(action_id), *self.get_related_actions(action_id)]

    def is_leaf(self, action_id: str) -> bool:
        return not self.successors(action_id)

    def validate(self) -> list[str]:
        """Validate the combined graph structure.

        Checks:
        - Related actions reference known action ids
        - The combined sub-action and related-action edges are acyclic

        Returns:
            List of validation error messages. Empty list if valid.

        Example:
            >>> errors = graph.validate()
            >>> if errors:
            ...     raise ActionGraphError(errors)
        """
        errors = []

        for source, targets in self._related.items():
            for target in targets:
                if target not in self._children:
                    errors.append(f"Action '{source}' references unknown related action '{target}'")

        cycle = self.find_cycle()
        if cycle:
            errors.append(f"Action graph contains a cycle: {' -> '.join(cycle)}")

        return errors

    def topological_order(self) -> list[str] | None:
        """Order action ids so every edge points forward.

        Returns:
            Topologically ordered action ids, or None when the graph is cyclic.
        """
        in_degree = {action_id: 0 for action_id in self._children}
        for action_id in self._children:
            for target in self.successors(action_id):
                if target in in_degree:
                    in_degree[target] += 1

        queue = deque(action_id for action_id, degree in in_degree.items() if degree == 0)
        order: list[str] = []

        while queue:
            current = queue.popleft()
            order.append(current)
            for target in self.successors(current):
                if target not in in_degree:
                    continue
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    queue.append(target)

        if len(order) != len(in_degree):
            return None
        return order

    def find_cycle(self) -> list[str]:
        """Return one cycle as a closed path of action ids, or an empty list."""
        if self.topological_order() is not None:
            return []

        visiting: list[str] = []
        done: set[str] = set()

        def visit(action_id: str) -> list[str]:
            if action_id in visiting:
                return [*visiting[visiting.index(action_id) :], action_id]
            if action_id in done or action_id not in self._children:
                return []
            visiting.append(action_id)
            for target in self.successors(action_id):
                found = visit(target)
                if found:
                    return found
            visiting.pop()
            done.add(action_id)
            return []

        for action_id in self._children:
            found = visit(action_id)
            if found:
                return found
        return []

    def get_action_depth(self, action_id: str) -> int:
        """Minimum number of edges from any top-level action, -1 if unreachable."""
        roots = [action.action_id for action in self.artifact.actions]
        visited = {root: 0 for root in roots}
        queue = deque(roots)

        while queue:
            current = queue.popleft()
            if current == action_id:
                return visited[current]
            for target in self.successors(current):
                if target not in visited:
                    visited[target] = visited[current] + 1
                    queue.append(target)

        return -1
