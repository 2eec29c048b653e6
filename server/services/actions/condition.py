"""Condition action - gates the rest of the run on a field comparison."""

from typing import Any, Dict

from models.workflow import ConditionConfig
from services.automation.conditions import OPERATORS, evaluate_condition, resolve_field
from services.automation.exceptions import ActionValidationError
from services.actions.base import Tenant


async def handle_condition(config: ConditionConfig, context: Dict[str, Any],
                           tenant: Tenant) -> Dict[str, Any]:
    """Store ``condition_result``; the executor stops the run when it is False."""
    if config.operator not in OPERATORS:
        raise ActionValidationError(f"Unknown condition operator: {config.operator}")

    condition = {"field": config.field, "operator": config.operator, "value": config.value}
    passed = evaluate_condition(condition, context)
    return {
        "condition_result": {
            "passed": passed,
            "field": config.field,
            "actual": resolve_field(config.field, context),
            "operator": config.operator,
            "value": config.value,
        }
    }
