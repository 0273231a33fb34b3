"""Condition evaluation for action gates."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kar_actions.core.context import ProcessingContext
    from kar_actions.core.definition import Action

__all__ = ["ConditionEvaluator"]

logger = logging.getLogger(__name__)

_OR = re.compile(r"\s+or\s+")
_AND = re.compile(r"\s+and\s+")

TRIGGER_MATCHED = "trigger-matched"


class ConditionEvaluator:
    """Boolean gate consulted after an action's data is available.

    Conditions are either predicates over the processing context or string
    expressions. A string expression is built from:

    - ``true`` / ``false``
    - ``trigger-matched``: any trigger match was recorded in the run
    - a data requirement or output id: its resource group is non-empty
    - ``not <term>``, and ``and`` / ``or`` chains (``and`` binds tighter)

    Evaluation never raises. A missing resource group or a failing predicate
    evaluates to False.
    """

    def evaluate(self, action: Action, context: ProcessingContext) -> bool:
        """Evaluate the action's condition against the context.

        Args:
            action: The action whose gate is being checked.
            context: The run's processing context.

        Returns:
            True when the condition holds or the action has none.
        """
        condition = action.condition
        if condition is None:
            return True

        try:
            if callable(condition):
                return bool(condition(context))
            return self.evaluate_expression(condition, context)
        except Exception:
            logger.exception("Condition of action %s failed to evaluate, treating as false", action.action_id)
            return False

    def evaluate_expression(self, expression: str, context: ProcessingContext) -> bool:
        """Evaluate a string condition expression."""
        expression = expression.strip()
        if not expression:
            return False
        return any(
            all(self._evaluate_term(term, context) for term in _AND.split(clause))
            for clause in _OR.split(expression)
        )

    def _evaluate_term(self, term: str, context: ProcessingContext) -> bool:
        term = term.strip()
        negated = False
        while term.startswith("not "):
            negated = not negated
            term = term[4:].strip()

        value = self._evaluate_atom(term, context)
        return not value if negated else value

    def _evaluate_atom(self, atom: str, context: ProcessingContext) -> bool:
        lowered = atom.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        if lowered == TRIGGER_MATCHED:
            return context.has_matched_trigger()

        resources = context.get_resources_by_id(atom) or context.outputs_by_id.get(atom)
        return bool(resources)
