"""action_condition operators."""

import pytest

from services.automation.conditions import evaluate_condition, get_nested_value, resolve_field


CONTEXT = {
    "trigger_data": {"stage": "won", "amount": "1500", "tags": ["vip"], "owner": None},
    "ai_result": "Customer is happy",
}


def test_get_nested_value_walks_dicts_and_lists():
    data = {"items": [{"name": "a"}], "result": {"status": "ok"}}
    assert get_nested_value(data, "result.status") == "ok"
    assert get_nested_value(data, "items.0.name") == "a"
    assert get_nested_value(data, "items.3.name") is None
    assert get_nested_value(data, "nope.deeper") is None


def test_resolve_field_uses_context_paths_only_for_known_roots():
    assert resolve_field("trigger_data.stage", CONTEXT) == "won"
    assert resolve_field("stage.won", CONTEXT) == "stage.won"
    assert resolve_field("won", CONTEXT) == "won"
    assert resolve_field(12, CONTEXT) == 12


@pytest.mark.parametrize("operator,value,expected", [
    ("eq", "won", True),
    ("eq", "lost", False),
    ("neq", "lost", True),
    ("in", ["won", "lost"], True),
    ("not_in", ["lost"], True),
    ("starts_with", "wo", True),
    ("ends_with", "on", True),
    ("matches", "^w.n$", True),
    ("contains", "o", True),
])
def test_string_operators(operator, value, expected):
    condition = {"field": "trigger_data.stage", "operator": operator, "value": value}
    assert evaluate_condition(condition, CONTEXT) is expected


def test_numeric_comparison_accepts_numeric_strings():
    assert evaluate_condition({"field": "trigger_data.amount", "operator": "gt", "value": 1000}, CONTEXT)
    assert evaluate_condition({"field": "trigger_data.amount", "operator": "lte", "value": "1500"}, CONTEXT)
    assert evaluate_condition({"field": "trigger_data.amount", "operator": "eq", "value": 1500}, CONTEXT)
    assert not evaluate_condition({"field": "trigger_data.amount", "operator": "lt", "value": 100}, CONTEXT)


def test_existence_and_emptiness():
    assert evaluate_condition({"field": "trigger_data.owner", "operator": "not_exists"}, CONTEXT)
    assert evaluate_condition({"field": "trigger_data.owner", "operator": "is_empty"}, CONTEXT)
    assert evaluate_condition({"field": "trigger_data.tags", "operator": "is_not_empty"}, CONTEXT)
    assert evaluate_condition({"field": "ai_result", "operator": "exists"}, CONTEXT)


def test_templated_field_value_is_compared_directly():
    # After template resolution the field already holds the value
    assert evaluate_condition({"field": "won", "operator": "eq", "value": "won"}, CONTEXT)


def test_operator_defaults_to_eq():
    assert evaluate_condition({"field": "trigger_data.stage", "value": "won"}, CONTEXT)


def test_unknown_operator_and_bad_regex_are_false():
    assert not evaluate_condition({"field": "trigger_data.stage", "operator": "approx", "value": "won"}, CONTEXT)
    assert not evaluate_condition({"field": "trigger_data.stage", "operator": "matches", "value": "("}, CONTEXT)
