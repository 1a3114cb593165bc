"""
Unit tests for the condition evaluator.

Covers operator semantics, defaults for empty nodes, fail-closed handling of
unknown operators and malformed trees, and purity across repeated calls.
"""

from __future__ import annotations

import pytest

from ecan.systems.gate.conditions import ConditionEvaluator
from ecan.systems.gate.types import (
    ConditionExpression,
    MemoryState,
    TaskCondition,
    parse_condition,
)


# ─── Fixtures ─────────────────────────────────────────────────────


def leaf(prerequisite: str) -> TaskCondition:
    return TaskCondition(prerequisite=prerequisite)


def expr(operator: str, *children, threshold: int | None = None) -> ConditionExpression:
    return ConditionExpression(operator=operator, conditions=list(children), threshold=threshold)


@pytest.fixture
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


@pytest.fixture
def state() -> MemoryState:
    return MemoryState(completed_topics={"a", "b"})


# ─── Tests: Leaves ────────────────────────────────────────────────


class TestLeaf:
    def test_satisfied_when_topic_completed(self, evaluator, state):
        assert evaluator.evaluate(leaf("a"), state) is True

    def test_unsatisfied_when_topic_missing(self, evaluator, state):
        assert evaluator.evaluate(leaf("z"), state) is False


# ─── Tests: Operators ─────────────────────────────────────────────


class TestOperators:
    def test_empty_and_is_true(self, evaluator, state):
        assert evaluator.evaluate(expr("and"), state) is True

    def test_empty_or_is_false(self, evaluator, state):
        assert evaluator.evaluate(expr("or"), state) is False

    def test_and_requires_every_child(self, evaluator, state):
        assert evaluator.evaluate(expr("and", leaf("a"), leaf("b")), state) is True
        assert evaluator.evaluate(expr("and", leaf("a"), leaf("z")), state) is False

    def test_or_requires_any_child(self, evaluator, state):
        assert evaluator.evaluate(expr("or", leaf("z"), leaf("b")), state) is True
        assert evaluator.evaluate(expr("or", leaf("y"), leaf("z")), state) is False

    def test_not_without_inner_is_vacuously_true(self, evaluator, state):
        assert evaluator.evaluate(ConditionExpression(operator="not"), state) is True

    def test_not_negates_inner(self, evaluator, state):
        assert evaluator.evaluate(
            ConditionExpression(operator="not", condition=leaf("a")), state
        ) is False
        assert evaluator.evaluate(
            ConditionExpression(operator="not", condition=leaf("z")), state
        ) is True

    def test_threshold_defaults_to_majority(self, evaluator, state):
        node = expr("threshold", leaf("a"), leaf("b"), leaf("z"))
        assert evaluator.evaluate(node, state) is True

    def test_threshold_majority_not_met(self, evaluator, state):
        node = expr("threshold", leaf("a"), leaf("y"), leaf("z"))
        assert evaluator.evaluate(node, state) is False

    def test_explicit_threshold(self, evaluator, state):
        node = expr("threshold", leaf("a"), leaf("b"), leaf("z"), threshold=3)
        assert evaluator.evaluate(node, state) is False
        node = expr("threshold", leaf("a"), leaf("y"), leaf("z"), threshold=1)
        assert evaluator.evaluate(node, state) is True

    def test_explicit_zero_threshold_is_honoured(self, evaluator, state):
        node = expr("threshold", leaf("y"), leaf("z"), threshold=0)
        assert evaluator.evaluate(node, state) is True

    def test_empty_threshold_is_false(self, evaluator, state):
        assert evaluator.evaluate(expr("threshold", threshold=0), state) is False

    def test_nested_expressions(self, evaluator, state):
        node = expr(
            "and",
            leaf("a"),
            expr("or", leaf("z"), ConditionExpression(operator="not", condition=leaf("y"))),
        )
        assert evaluator.evaluate(node, state) is True


# ─── Tests: Failure Handling ──────────────────────────────────────


class TestFailClosed:
    def test_unknown_operator_is_false(self, evaluator, state):
        outcome = evaluator.evaluate_detailed(expr("xor", leaf("a")), state)
        assert outcome.satisfied is False
        assert outcome.error is None

    def test_malformed_child_is_false_with_error(self, evaluator, state):
        node = ConditionExpression.model_construct(
            operator="and", conditions=[42], condition=None, threshold=None
        )
        outcome = evaluator.evaluate_detailed(node, state)
        assert outcome.satisfied is False
        assert outcome.error is not None

    def test_malformed_root_never_raises(self, evaluator, state):
        assert evaluator.evaluate({"operator": "and"}, state) is False
        assert evaluator.evaluate(None, state) is False

    def test_malformed_threshold_value(self, evaluator, state):
        node = ConditionExpression.model_construct(
            operator="threshold", conditions=[leaf("a")], condition=None, threshold="two"
        )
        outcome = evaluator.evaluate_detailed(node, state)
        assert outcome.satisfied is False
        assert outcome.error is not None


# ─── Tests: Purity ────────────────────────────────────────────────


class TestPurity:
    def test_repeated_evaluation_is_stable(self, evaluator, state):
        node = expr(
            "threshold",
            leaf("a"),
            expr("or", leaf("z"), leaf("b")),
            ConditionExpression(operator="not", condition=leaf("a")),
        )
        before = node.model_dump()
        topics = set(state.completed_topics)
        first = evaluator.evaluate(node, state)
        second = evaluator.evaluate(node, state)
        assert first == second
        assert node.model_dump() == before
        assert state.completed_topics == topics

    def test_debug_mode_gives_same_answer(self, state):
        node = expr("and", leaf("a"), leaf("b"))
        assert ConditionEvaluator(debug=True).evaluate(node, state) is True


# ─── Tests: Parsing ───────────────────────────────────────────────


class TestParseCondition:
    def test_parses_nested_mapping(self, evaluator, state):
        node = parse_condition({
            "operator": "or",
            "conditions": [
                {"type": "deferred", "prerequisite": "z"},
                {"operator": "and", "conditions": [{"type": "deferred", "prerequisite": "a"}]},
            ],
        })
        assert isinstance(node, ConditionExpression)
        assert isinstance(node.conditions[1], ConditionExpression)
        assert evaluator.evaluate(node, state) is True

    def test_parses_leaf(self):
        node = parse_condition({"type": "deferred", "prerequisite": "a"})
        assert isinstance(node, TaskCondition)
        assert node.prerequisite == "a"

    def test_unknown_operator_survives_parsing(self, evaluator, state):
        node = parse_condition({"operator": "nand", "conditions": []})
        assert evaluator.evaluate(node, state) is False
