"""Tests for routing condition evaluation."""

import logging

import pytest

from workflow_engine.exceptions import ConditionEvaluationError
from workflow_engine.runtime.artifact_store import ArtifactVersionStore
from workflow_engine.runtime.condition_evaluator import (
    CONDITION_TEMPLATES,
    ConditionEvaluator,
    condition_template,
    evaluate,
)
from workflow_engine.schemas import ConditionOperator, ConditionType, RoutingCondition


def state_check(key, operator, value=None):
    return RoutingCondition(type=ConditionType.STATE_CHECK, state_key=key, operator=operator, value=value)


def expression(text):
    return RoutingCondition(type=ConditionType.CUSTOM_EXPRESSION, expression=text)


# ==================== FIXTURES ====================

@pytest.fixture
def store():
    return ArtifactVersionStore()


@pytest.fixture
def artifacts(store):
    store.put("out.json", {"ok": True}, schema_id="json-output")
    store.put("out.json", {"ok": True, "n": 2}, schema_id="json-output")
    store.put("bad.json", "not an object", schema_id="json-output")
    return store.latest_artifacts()


class TestStateChecks:
    """state-check operators."""

    def test_always(self):
        assert evaluate(RoutingCondition(), {}) is True

    def test_equals(self):
        condition = state_check("status", ConditionOperator.EQUALS, "approved")
        assert evaluate(condition, {"status": "approved"})
        assert not evaluate(condition, {"status": "rejected"})

    def test_absent_key_is_false_for_comparisons(self):
        for operator in (ConditionOperator.EQUALS, ConditionOperator.GREATER_THAN,
                         ConditionOperator.LESS_THAN, ConditionOperator.CONTAINS):
            assert not evaluate(state_check("missing", operator, 1), {})

    def test_not_equals_absent_key_is_true(self):
        assert evaluate(state_check("missing", ConditionOperator.NOT_EQUALS, "x"), {})
        assert not evaluate(state_check("k", ConditionOperator.NOT_EQUALS, "x"), {"k": "x"})

    def test_numeric_comparison_coerces_numeric_strings(self):
        assert evaluate(state_check("score", ConditionOperator.GREATER_THAN, 3), {"score": "5"})
        assert evaluate(state_check("score", ConditionOperator.LESS_THAN, "10"), {"score": 2.5})

    def test_numeric_comparison_rejects_non_numbers(self):
        assert not evaluate(state_check("score", ConditionOperator.GREATER_THAN, 3), {"score": "high"})
        assert not evaluate(state_check("flag", ConditionOperator.GREATER_THAN, 0), {"flag": True})

    def test_contains(self):
        condition = state_check("tags", ConditionOperator.CONTAINS, "urgent")
        assert evaluate(condition, {"tags": ["urgent", "bug"]})
        assert evaluate(condition, {"tags": "very urgent"})
        assert not evaluate(condition, {"tags": 42})

    def test_exists_requires_non_null(self):
        condition = state_check("draft", ConditionOperator.EXISTS)
        assert evaluate(condition, {"draft": ""})
        assert not evaluate(condition, {"draft": None})
        assert not evaluate(condition, {})


class TestArtifactConditions:

    def test_artifact_exists(self, artifacts):
        condition = RoutingCondition(type=ConditionType.ARTIFACT_EXISTS, artifact_path="out.json")
        assert evaluate(condition, {}, artifacts)
        assert not evaluate(condition, {}, {})

    def test_artifact_valid(self, artifacts):
        valid = RoutingCondition(type=ConditionType.ARTIFACT_VALID, artifact_path="out.json")
        invalid = RoutingCondition(type=ConditionType.ARTIFACT_VALID, artifact_path="bad.json")
        assert evaluate(valid, {}, artifacts)
        assert not evaluate(invalid, {}, artifacts)

    def test_artifact_valid_checks_schema_id(self, artifacts):
        condition = RoutingCondition(
            type=ConditionType.ARTIFACT_VALID, artifact_path="out.json", artifact_schema="test-results"
        )
        result = ConditionEvaluator().explain(condition, {}, artifacts)
        assert not result.satisfied
        assert "test-results" in result.reason


class TestIterationLimit:

    @pytest.mark.parametrize("counter,expected", [(2, False), (3, True), (4, True)])
    def test_limit(self, counter, expected):
        condition = RoutingCondition(type=ConditionType.ITERATION_LIMIT, counter_key="i", max_iterations=3)
        assert evaluate(condition, {"i": counter}) is expected

    def test_missing_counter_counts_as_zero(self):
        condition = RoutingCondition(type=ConditionType.ITERATION_LIMIT, counter_key="i", max_iterations=1)
        assert not evaluate(condition, {})


class TestCustomExpressions:
    """Sandboxed expressions."""

    def test_reads_state_and_node(self):
        condition = expression("state['score'] > 0.5 and current_node_id == 'review'")
        assert evaluate(condition, {"score": 0.9}, current_node_id="review")
        assert not evaluate(condition, {"score": 0.9}, current_node_id="draft")

    def test_attribute_style_access(self):
        assert evaluate(expression("state.score >= 1"), {"score": 1})

    def test_reads_artifact_view(self, artifacts):
        assert evaluate(expression("artifacts['out.json']['version'] == 2"), {}, artifacts)

    def test_syntax_error_is_false_with_error(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = ConditionEvaluator().explain(expression("state['x'] >"), {}, {})
        assert result.satisfied is False
        assert isinstance(result.error, ConditionEvaluationError)
        assert "evaluated as false" in caplog.text

    def test_unknown_name_is_false(self):
        result = ConditionEvaluator().explain(expression("undefined_name > 1"), {}, {})
        assert not result.satisfied
        assert result.error is not None

    @pytest.mark.parametrize("text", [
        "int(1e400) > 0",
        "2.0 ** 5000 > 1",
        "-" * 200000 + "1",
    ])
    def test_runtime_failures_are_false(self, text):
        """Overflow and parser exhaustion degrade to False instead of raising."""
        result = ConditionEvaluator().explain(expression(text), {}, {})
        assert result.satisfied is False
        assert isinstance(result.error, ConditionEvaluationError)

    def test_empty_expression_is_false(self):
        assert not evaluate(expression("   "), {"x": 1})

    def test_expression_cannot_mutate_state(self):
        state = {"items": [1, 2], "flag": False}
        evaluate(expression("state['items'].append(3) or state.update({'flag': True})"), state)
        assert state == {"items": [1, 2], "flag": False}

    def test_quality_template(self):
        condition = condition_template("quality-threshold")
        assert evaluate(condition, {"quality_score": 0.85})
        assert not evaluate(condition, {})


class TestTemplates:

    def test_names(self):
        assert "tests-pass" in CONDITION_TEMPLATES
        assert "max-3-iterations" in CONDITION_TEMPLATES

    def test_template_returns_copy_with_overrides(self):
        first = condition_template("max-3-iterations", counter_key="loop_iteration")
        second = condition_template("max-3-iterations")
        assert first.counter_key == "loop_iteration"
        assert second.counter_key == "iteration_count"

    def test_unknown_template(self):
        with pytest.raises(KeyError):
            condition_template("nope")

    def test_tests_pass_template(self):
        assert evaluate(condition_template("tests-pass"), {"tests_passed": True})
