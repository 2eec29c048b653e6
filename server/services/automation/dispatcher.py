"""Event dispatcher - turns domain events into ``run-automation`` jobs."""

from typing import Any, Dict, Optional

from constants import EVENT_VERBS, RUN_AUTOMATION_QUEUE, TRIGGER_EVENT
from core.database import Database
from core.logging import get_logger
from models.database import AutomationRule
from models.workflow import WorkflowDefinition
from services.automation.state import DispatchResult
from services.job_queue import JobQueue

logger = get_logger(__name__)

# Irregular plurals; everything else drops a trailing "s"
_SINGULAR = {
    "companies": "company",
    "activities": "activity",
    "contact_notes": "contact_note",
    "deal_notes": "deal_note",
}


def event_name_for(resource: str, verb: str) -> str:
    """``<singular-resource>.<verb>``, e.g. (``deals``, ``created``) -> ``deal.created``."""
    if verb not in EVENT_VERBS:
        raise ValueError(f"Unknown event verb: {verb}")
    name = resource.strip().lower()
    singular = _SINGULAR.get(name)
    if singular is None:
        singular = name[:-1] if name.endswith("s") else name
    return f"{singular}.{verb}"


def rule_event(rule: AutomationRule) -> Optional[str]:
    """Event name of the rule's first trigger_event node, if any."""
    try:
        definition = WorkflowDefinition.from_stored(rule.workflow_definition)
    except ValueError:
        logger.warning("Skipping rule with invalid workflow definition", rule_id=rule.id)
        return None
    node = definition.first_node_of_type(TRIGGER_EVENT)
    if node is None:
        return None
    return node.data.get("event")


class EventDispatcher:
    """Matches events to a tenant's enabled rules and enqueues one job per match."""

    def __init__(self, database: Database, job_queue: JobQueue):
        self.database = database
        self.job_queue = job_queue

    async def fire_event(self, event_name: str, payload: Optional[Dict[str, Any]],
                         sales_id: int) -> DispatchResult:
        """Enqueue a run for every matching rule. Never raises."""
        result = DispatchResult(event_name=event_name)
        try:
            rules = await self.database.get_enabled_rules(sales_id)
            for rule in rules:
                if rule_event(rule) != event_name:
                    continue
                job_id = await self.job_queue.enqueue(RUN_AUTOMATION_QUEUE, {
                    "ruleId": rule.id,
                    "salesId": sales_id,
                    "triggerData": payload or {},
                })
                result.matched_rule_ids.append(rule.id)
                result.job_ids.append(job_id)
        except Exception as e:
            result.error = str(e) or e.__class__.__name__
            logger.error("[automation] fireEvent error", event=event_name, sales_id=sales_id,
                         error=result.error)
            return result

        if result.matched_rule_ids:
            logger.info("Event dispatched", event=event_name, sales_id=sales_id,
                        rule_ids=result.matched_rule_ids)
        return result
