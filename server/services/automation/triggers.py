"""Trigger registry - keeps one cron registration per scheduled rule.

A rule is scheduled when it is enabled and its first ``trigger_schedule``
node carries a ``cron`` field. The registration is named
``rule-schedule-<ruleId>``; every tick enqueues a job on the queue of the
same name, whose worker runs the rule with an empty trigger payload.
"""

from typing import Dict, List, Optional

from pydantic import ValidationError

from constants import TRIGGER_SCHEDULE, schedule_name_for
from core.database import Database
from core.logging import get_logger
from models.database import AutomationRule
from models.workflow import WorkflowDefinition, WorkflowNode
from services.automation.exceptions import SchedulingError
from services.automation.state import ScheduleInfo
from services.job_queue import JobHandler, JobQueue

logger = get_logger(__name__)


def find_schedule_trigger(definition: WorkflowDefinition) -> Optional[WorkflowNode]:
    """The first trigger_schedule node, if it has a cron. Later ones are ignored."""
    node = definition.first_node_of_type(TRIGGER_SCHEDULE)
    if node is None or not node.data.get("cron"):
        return None
    return node


class TriggerRegistry:
    """Reconciles cron registrations with the persisted rules."""

    def __init__(self, database: Database, job_queue: JobQueue, timezone: str = "UTC"):
        self.database = database
        self.job_queue = job_queue
        self.timezone = timezone
        self._job_handler: Optional[JobHandler] = None
        self._schedules: Dict[int, ScheduleInfo] = {}

    def set_job_handler(self, handler: JobHandler) -> None:
        """Handler attached to every schedule queue."""
        self._job_handler = handler

    # =========================================================================
    # RECONCILIATION
    # =========================================================================

    async def load_schedule_rules(self) -> int:
        """Register schedules for all enabled rules. Returns how many were scheduled."""
        rules = await self.database.get_enabled_rules()
        scheduled = 0
        for rule in rules:
            if await self.register_rule(rule):
                scheduled += 1
        logger.info("Loaded schedule rules", enabled_rules=len(rules), scheduled=scheduled)
        return scheduled

    async def register_rule(self, rule: AutomationRule) -> Optional[ScheduleInfo]:
        """Schedule a rule if it has a cron trigger. Errors are logged, not raised."""
        if not rule.enabled:
            return None

        try:
            definition = WorkflowDefinition.from_stored(rule.workflow_definition)
        except ValidationError as e:
            logger.error("Rule has an invalid workflow definition", rule_id=rule.id, error=str(e))
            return None

        node = find_schedule_trigger(definition)
        if node is None:
            return None

        schedule_name = schedule_name_for(rule.id)
        cron = str(node.data["cron"])
        timezone = node.data.get("timezone") or self.timezone
        payload = {"ruleId": rule.id, "salesId": rule.sales_id, "triggerData": {}}

        try:
            await self.job_queue.schedule(schedule_name, cron, payload, timezone=timezone)
        except SchedulingError as e:
            logger.error("Failed to register schedule", rule_id=rule.id, cron=cron, error=str(e))
            return None

        if self._job_handler is not None:
            await self.job_queue.register_worker(schedule_name, self._job_handler)

        info = ScheduleInfo(rule_id=rule.id, schedule_name=schedule_name, cron=cron,
                            timezone=timezone, node_id=node.id)
        self._schedules[rule.id] = info
        logger.info("Rule scheduled", rule_id=rule.id, cron=cron, timezone=timezone)
        return info

    async def _unschedule(self, rule_id: int) -> bool:
        self._schedules.pop(rule_id, None)
        return await self.job_queue.unschedule(schedule_name_for(rule_id))

    async def unregister(self, rule_id: int) -> bool:
        """Drop a rule's schedule and its worker. Missing schedules are fine.

        A run already in progress on the worker finishes before this returns.
        """
        removed = await self._unschedule(rule_id)
        await self.job_queue.unregister_worker(schedule_name_for(rule_id))
        return removed

    async def reload_rule(self, rule_id: int) -> Optional[ScheduleInfo]:
        """Re-read a rule and reconcile its schedule. Idempotent.

        Only the cron entry is replaced while the rule stays scheduled; its
        worker, and any run it is executing, is left alone.
        """
        await self._unschedule(rule_id)
        rule = await self.database.get_rule(rule_id)
        info = await self.register_rule(rule) if rule is not None else None
        if info is None:
            await self.job_queue.unregister_worker(schedule_name_for(rule_id))
            logger.info("Rule unscheduled", rule_id=rule_id)
        return info

    async def remove_rule(self, rule_id: int) -> bool:
        """Unschedule a deleted rule."""
        removed = await self.unregister(rule_id)
        logger.info("Rule removed from scheduler", rule_id=rule_id, had_schedule=removed)
        return removed

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def get_schedule(self, rule_id: int) -> Optional[ScheduleInfo]:
        return self._schedules.get(rule_id)

    def get_schedules(self) -> List[ScheduleInfo]:
        return list(self._schedules.values())

    def clear(self) -> None:
        """Forget all registrations (the job queue drops them on stop)."""
        self._schedules.clear()
