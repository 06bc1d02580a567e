"""Routing condition evaluation.

Evaluation is pure: it reads a state snapshot and the latest artifact
versions and never mutates either. Unknown state keys are treated as absent.
Custom expressions run through ``simpleeval`` over deep copies of a fixed
read-only context, so a user-authored predicate cannot reach host objects or
change simulation state.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from simpleeval import EvalWithCompoundTypes, InvalidExpression

from workflow_engine.exceptions import ConditionEvaluationError
from workflow_engine.schemas import (
    ConditionOperator,
    ConditionType,
    RoutingCondition,
    ValidationStatus,
    VersionedArtifact,
    expression_syntax_error,
)

logger = logging.getLogger(__name__)

SAFE_FUNCTIONS = {
    "len": len,
    "min": min,
    "max": max,
    "abs": abs,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
}


@dataclass(frozen=True)
class ConditionResult:
    satisfied: bool
    reason: str
    error: Optional[ConditionEvaluationError] = None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


class ConditionEvaluator:
    """Evaluates routing conditions against a state snapshot and artifact set."""

    def evaluate(
        self,
        condition: RoutingCondition,
        state: Mapping[str, Any],
        artifacts: Mapping[str, VersionedArtifact],
        current_node_id: Optional[str] = None,
    ) -> bool:
        return self.explain(condition, state, artifacts, current_node_id).satisfied

    def explain(
        self,
        condition: RoutingCondition,
        state: Mapping[str, Any],
        artifacts: Mapping[str, VersionedArtifact],
        current_node_id: Optional[str] = None,
    ) -> ConditionResult:
        """Evaluate ``condition`` and describe why it held or not."""
        ctype = condition.type
        if ctype == ConditionType.ALWAYS:
            return ConditionResult(True, "always")
        if ctype == ConditionType.STATE_CHECK:
            return self._state_check(condition, state)
        if ctype == ConditionType.ARTIFACT_EXISTS:
            path = condition.artifact_path
            found = bool(path) and path in artifacts
            return ConditionResult(found, f"artifact {path!r} {'exists' if found else 'missing'}")
        if ctype == ConditionType.ARTIFACT_VALID:
            return self._artifact_valid(condition, artifacts)
        if ctype == ConditionType.ITERATION_LIMIT:
            key = condition.counter_key
            counter = _as_number(state.get(key, 0)) if key else 0.0
            if counter is None:
                return ConditionResult(False, f"counter {key!r} is not numeric")
            reached = counter >= condition.max_iterations
            return ConditionResult(
                reached, f"counter {key!r}={int(counter)} vs limit {condition.max_iterations}"
            )
        if ctype == ConditionType.CUSTOM_EXPRESSION:
            return self._custom_expression(condition, state, artifacts, current_node_id)
        return ConditionResult(False, f"unsupported condition type {ctype}")

    def _state_check(self, condition: RoutingCondition, state: Mapping[str, Any]) -> ConditionResult:
        key = condition.state_key
        op = condition.operator
        present = key is not None and key in state
        actual = state.get(key) if present else None

        if op == ConditionOperator.EXISTS:
            ok = present and actual is not None
            return ConditionResult(ok, f"{key!r} {'exists' if ok else 'absent'}")
        if op == ConditionOperator.NOT_EQUALS:
            ok = not present or actual != condition.value
            return ConditionResult(ok, f"{key!r}={actual!r} not-equals {condition.value!r}")
        if not present:
            return ConditionResult(False, f"{key!r} absent")
        if op == ConditionOperator.EQUALS:
            ok = actual == condition.value
            return ConditionResult(ok, f"{key!r}={actual!r} equals {condition.value!r}")
        if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            left, right = _as_number(actual), _as_number(condition.value)
            if left is None or right is None:
                return ConditionResult(False, f"{key!r}={actual!r} not comparable with {condition.value!r}")
            ok = left > right if op == ConditionOperator.GREATER_THAN else left < right
            return ConditionResult(ok, f"{key!r}={actual!r} {op.value} {condition.value!r}")
        if op == ConditionOperator.CONTAINS:
            if isinstance(actual, str):
                ok = str(condition.value) in actual
            elif isinstance(actual, (list, tuple)):
                ok = condition.value in actual
            else:
                ok = False
            return ConditionResult(ok, f"{key!r} contains {condition.value!r}")
        return ConditionResult(False, f"unsupported operator {op}")

    def _artifact_valid(self, condition: RoutingCondition, artifacts: Mapping[str, VersionedArtifact]) -> ConditionResult:
        path = condition.artifact_path
        artifact = artifacts.get(path) if path else None
        if artifact is None:
            return ConditionResult(False, f"artifact {path!r} missing")
        if artifact.validation_status != ValidationStatus.VALID:
            return ConditionResult(False, f"artifact {path!r} is {artifact.validation_status.value}")
        if condition.artifact_schema and artifact.schema_id != condition.artifact_schema:
            return ConditionResult(
                False, f"artifact {path!r} uses schema {artifact.schema_id!r}, expected {condition.artifact_schema!r}"
            )
        return ConditionResult(True, f"artifact {path!r} valid")

    def _custom_expression(
        self,
        condition: RoutingCondition,
        state: Mapping[str, Any],
        artifacts: Mapping[str, VersionedArtifact],
        current_node_id: Optional[str],
    ) -> ConditionResult:
        expression = (condition.expression or "").strip()
        syntax_error = expression_syntax_error(expression)
        if syntax_error:
            return self._degraded(expression, syntax_error)

        names = build_expression_context(state, artifacts, current_node_id)
        evaluator = EvalWithCompoundTypes(names=names, functions=dict(SAFE_FUNCTIONS))
        try:
            value = bool(evaluator.eval(expression))
        except (InvalidExpression, Exception) as e:
            return self._degraded(expression, str(e) or type(e).__name__)
        return ConditionResult(value, f"expression {expression!r} -> {value}")

    @staticmethod
    def _degraded(expression: str, message: str) -> ConditionResult:
        error = ConditionEvaluationError(expression, message)
        logger.warning("Condition evaluated as false: %s", error)
        return ConditionResult(False, str(error), error)


def build_expression_context(
    state: Mapping[str, Any],
    artifacts: Mapping[str, VersionedArtifact],
    current_node_id: Optional[str],
) -> Dict[str, Any]:
    """Names visible to custom expressions. Everything is a detached copy."""
    artifact_view = {
        path: {
            "version": a.version,
            "hash": a.hash,
            "validation_status": a.validation_status.value,
            "critical": a.critical,
            "schema_id": a.schema_id,
        }
        for path, a in artifacts.items()
    }
    return {
        "state": copy.deepcopy(dict(state)),
        "artifacts": artifact_view,
        "current_node_id": current_node_id,
        "current_node": current_node_id,
    }


_default_evaluator = ConditionEvaluator()


def evaluate(
    condition: RoutingCondition,
    state: Mapping[str, Any],
    artifacts: Optional[Mapping[str, VersionedArtifact]] = None,
    current_node_id: Optional[str] = None,
) -> bool:
    """Evaluate a routing condition; never raises on well-typed input."""
    return _default_evaluator.evaluate(condition, state, artifacts or {}, current_node_id)


_TEMPLATES: Dict[str, RoutingCondition] = {
    "tests-pass": RoutingCondition(
        type=ConditionType.STATE_CHECK,
        state_key="tests_passed",
        operator=ConditionOperator.EQUALS,
        value=True,
        label="Tests pass",
    ),
    "critique-approved": RoutingCondition(
        type=ConditionType.STATE_CHECK,
        state_key="critique_status",
        operator=ConditionOperator.EQUALS,
        value="approved",
        label="Critique approved",
    ),
    "has-artifact": RoutingCondition(
        type=ConditionType.ARTIFACT_EXISTS,
        artifact_path="output.json",
        label="Artifact exists",
    ),
    "max-3-iterations": RoutingCondition(
        type=ConditionType.ITERATION_LIMIT,
        max_iterations=3,
        counter_key="iteration_count",
        label="Max 3 iterations",
    ),
    "max-5-iterations": RoutingCondition(
        type=ConditionType.ITERATION_LIMIT,
        max_iterations=5,
        counter_key="iteration_count",
        label="Max 5 iterations",
    ),
    "quality-threshold": RoutingCondition(
        type=ConditionType.CUSTOM_EXPRESSION,
        expression="state.get('quality_score', 0) >= 0.8",
        label="Quality above threshold",
    ),
}

CONDITION_TEMPLATES = tuple(_TEMPLATES)


def condition_template(name: str, **overrides: Any) -> RoutingCondition:
    """Return a fresh copy of a named template, optionally overriding fields."""
    if name not in _TEMPLATES:
        raise KeyError(f"Condition template '{name}' is not defined")
    return _TEMPLATES[name].model_copy(update=overrides, deep=True)
