"""Condition evaluation for ``action_condition`` nodes.

A condition node carries ``{field, operator, value}``. ``field`` is either a
dot path into the execution context (``trigger_data.stage``) or an already
resolved value when the node used a ``{{...}}`` template.

Supported operators:
- eq / neq: (in)equality, with numeric strings compared as numbers
- gt / lt / gte / lte: ordered comparison
- contains / not_contains: substring, list or key membership
- exists / not_exists: value is (not) None
- is_empty / is_not_empty: None, "", [], {}
- matches: regex search
- in / not_in: list membership
- starts_with / ends_with: string prefix/suffix
"""

import re
from typing import Any, Dict, Mapping

from core.logging import get_logger

logger = get_logger(__name__)

ConditionDict = Dict[str, Any]

# Dot path made only of identifiers; anything else is treated as a literal
_FIELD_PATH = re.compile(r'^\w+(?:\.\w+)*$')


def get_nested_value(data: Mapping[str, Any], field_path: str) -> Any:
    """Get a nested value using dot notation (``items.0.name``).

    Returns None when any segment is missing.
    """
    if not data or not field_path:
        return None

    current: Any = data
    for part in field_path.split('.'):
        if current is None:
            return None
        if part.isdigit() and isinstance(current, (list, tuple)):
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        elif isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
    return current


def resolve_field(field: Any, context: Mapping[str, Any]) -> Any:
    """Turn the node's ``field`` into the value under test.

    A string that looks like a dot path and whose root exists in the context
    is looked up; every other value is compared as is.
    """
    if isinstance(field, str) and _FIELD_PATH.match(field):
        root = field.split('.', 1)[0]
        if root in context:
            return get_nested_value(context, field)
    return field


def evaluate_condition(condition: ConditionDict, context: Mapping[str, Any]) -> bool:
    """Evaluate a condition against the execution context.

    Unknown operators and comparison errors evaluate to False.
    """
    if not condition:
        return True

    operator = condition.get("operator") or "eq"
    target_value = condition.get("value")
    actual_value = resolve_field(condition.get("field"), context)

    try:
        result = _evaluate_operator(operator, actual_value, target_value)
    except Exception as e:
        logger.warning("Condition evaluation error", operator=operator, error=str(e))
        return False

    logger.debug("Condition evaluated", operator=operator, actual=actual_value,
                 target=target_value, result=result)
    return result


def _evaluate_operator(operator: str, actual: Any, target: Any) -> bool:
    if operator == "eq":
        return _loose_equals(actual, target)

    elif operator == "neq":
        return not _loose_equals(actual, target)

    elif operator == "gt":
        return _safe_compare(actual, target, lambda a, b: a > b)

    elif operator == "lt":
        return _safe_compare(actual, target, lambda a, b: a < b)

    elif operator == "gte":
        return _safe_compare(actual, target, lambda a, b: a >= b)

    elif operator == "lte":
        return _safe_compare(actual, target, lambda a, b: a <= b)

    elif operator == "contains":
        if actual is None:
            return False
        if isinstance(actual, str):
            return str(target) in actual
        if isinstance(actual, (list, tuple, Mapping)):
            return target in actual
        return False

    elif operator == "not_contains":
        return not _evaluate_operator("contains", actual, target)

    elif operator == "exists":
        return actual is not None

    elif operator == "not_exists":
        return actual is None

    elif operator == "is_empty":
        if actual is None:
            return True
        if isinstance(actual, (str, list, tuple, Mapping)):
            return len(actual) == 0
        return False

    elif operator == "is_not_empty":
        return not _evaluate_operator("is_empty", actual, target)

    elif operator == "matches":
        if actual is None or target is None:
            return False
        try:
            return bool(re.search(str(target), str(actual)))
        except re.error:
            logger.warning("Invalid regex pattern", pattern=target)
            return False

    elif operator == "in":
        if not isinstance(target, (list, tuple)):
            return _loose_equals(actual, target)
        return any(_loose_equals(actual, item) for item in target)

    elif operator == "not_in":
        return not _evaluate_operator("in", actual, target)

    elif operator == "starts_with":
        if actual is None or target is None:
            return False
        return str(actual).startswith(str(target))

    elif operator == "ends_with":
        if actual is None or target is None:
            return False
        return str(actual).endswith(str(target))

    logger.warning("Unknown operator", operator=operator)
    return False


def _loose_equals(actual: Any, target: Any) -> bool:
    """Equality that treats ``"42"`` and ``42`` as equal (templates stringify)."""
    if actual == target:
        return True
    if actual is None or target is None or isinstance(actual, bool) or isinstance(target, bool):
        return False
    try:
        return float(actual) == float(target)
    except (ValueError, TypeError):
        return False


def _safe_compare(actual: Any, target: Any, comparator) -> bool:
    """Compare numerically when possible, else as strings."""
    if actual is None or target is None:
        return False

    try:
        return comparator(float(actual), float(target))
    except (ValueError, TypeError):
        pass

    try:
        return comparator(str(actual), str(target))
    except (ValueError, TypeError):
        return False


OPERATORS = frozenset([
    "eq", "neq", "gt", "lt", "gte", "lte",
    "contains", "not_contains", "exists", "not_exists",
    "is_empty", "is_not_empty", "matches", "in", "not_in",
    "starts_with", "ends_with",
])
