"""Routing condition schemas."""

from __future__ import annotations

import ast
from enum import Enum
from typing import Any, Optional

from pydantic import Field

from .base import SchemaBase


class ConditionType(str, Enum):
    """Routing predicate kinds attached to edges and loop exits.

    - ALWAYS: unconditional transition.
    - STATE_CHECK: compare ``state[state_key]`` with ``value`` using ``operator``.
    - ARTIFACT_EXISTS: the artifact path has been produced.
    - ARTIFACT_VALID: the artifact path exists and validated (optionally against
      a specific schema id).
    - ITERATION_LIMIT: true once the counter stored under ``counter_key`` has
      reached ``max_iterations``.
    - CUSTOM_EXPRESSION: boolean expression evaluated in a read-only sandbox
      over ``state``, ``artifacts`` and ``current_node_id``.
    """

    ALWAYS = "always"
    STATE_CHECK = "state-check"
    ARTIFACT_EXISTS = "artifact-exists"
    ARTIFACT_VALID = "artifact-valid"
    ITERATION_LIMIT = "iteration-limit"
    CUSTOM_EXPRESSION = "custom-expression"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not-equals"
    GREATER_THAN = "greater-than"
    LESS_THAN = "less-than"
    CONTAINS = "contains"
    EXISTS = "exists"


class RoutingCondition(SchemaBase):
    """Tagged routing predicate.

    Only the fields relevant to ``type`` are consulted; the rest stay at their
    defaults. Evaluation lives in ``runtime.condition_evaluator``.
    """

    type: ConditionType = Field(default=ConditionType.ALWAYS, description="Predicate kind")
    state_key: Optional[str] = Field(default=None, description="State key read by state-check conditions")
    operator: ConditionOperator = Field(default=ConditionOperator.EQUALS, description="Comparison used by state-check conditions")
    value: Any = Field(default=None, description="Comparison operand for state-check conditions")
    artifact_path: Optional[str] = Field(default=None, description="Artifact path for artifact-exists/artifact-valid")
    artifact_schema: Optional[str] = Field(default=None, description="Schema id the artifact must validate against")
    max_iterations: int = Field(default=10, description="Threshold for iteration-limit conditions")
    counter_key: Optional[str] = Field(default=None, description="State key holding the iteration counter")
    expression: Optional[str] = Field(default=None, description="Boolean expression for custom-expression conditions")
    label: Optional[str] = Field(default=None, description="Display label")
    description: Optional[str] = Field(default=None, description="Human readable explanation")

    def referenced_state_key(self) -> Optional[str]:
        """State key this condition reads, if any."""
        if self.type == ConditionType.STATE_CHECK:
            return self.state_key
        if self.type == ConditionType.ITERATION_LIMIT:
            return self.counter_key
        return None

    def referenced_artifact_path(self) -> Optional[str]:
        """Artifact path this condition reads, if any."""
        if self.type in (ConditionType.ARTIFACT_EXISTS, ConditionType.ARTIFACT_VALID):
            return self.artifact_path
        return None


def expression_syntax_error(expression: Optional[str]) -> Optional[str]:
    """Return a syntax error message for ``expression``, or None when it parses."""
    if not expression or not expression.strip():
        return "expression is empty"
    try:
        ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        return e.msg or "invalid syntax"
    except (ValueError, MemoryError, RecursionError) as e:
        return f"expression cannot be parsed ({type(e).__name__})"
    return None
