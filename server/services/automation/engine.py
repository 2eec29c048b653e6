"""Automation engine - owns the job queue and wires triggers to runs.

Built once by the DI container. Event dispatch and manual triggers enqueue
``run-automation`` jobs; cron schedules enqueue on their own queues. Every
job ends in ``run_automation``, which records a run around one workflow
execution.
"""

from typing import Any, Dict, List, Optional

from constants import RUN_AUTOMATION_QUEUE
from core.config import Settings
from core.database import Database
from core.logging import get_logger
from models.database import AutomationRun
from services.actions.base import Tenant
from services.automation.dispatcher import EventDispatcher
from services.automation.exceptions import RuleNotFoundError, TenantNotFoundError
from services.automation.executor import WorkflowExecutor
from services.automation.recorder import RunRecorder
from services.automation.state import DispatchResult, ScheduleInfo
from services.automation.triggers import TriggerRegistry
from services.job_queue import Job, JobQueue

logger = get_logger(__name__)


class AutomationEngine:
    """Entry point for event, schedule and manual automation runs."""

    def __init__(self, settings: Settings, database: Database, job_queue: JobQueue,
                 executor: WorkflowExecutor, recorder: RunRecorder,
                 triggers: TriggerRegistry, dispatcher: EventDispatcher):
        self.settings = settings
        self.database = database
        self.job_queue = job_queue
        self.executor = executor
        self.recorder = recorder
        self.triggers = triggers
        self.dispatcher = dispatcher
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the queue, attach the run worker and load cron rules."""
        if self._started:
            return

        await self.job_queue.start()
        self.triggers.set_job_handler(self.handle_jobs)
        await self.job_queue.register_worker(
            RUN_AUTOMATION_QUEUE,
            self.handle_jobs,
            concurrency=self.settings.automation_concurrency,
        )
        await self.triggers.load_schedule_rules()
        # Restored jobs of rules that lost their schedule
        await self.job_queue.drop_unattended()

        self._started = True
        logger.info("[automation-engine] started", concurrency=self.settings.automation_concurrency)

    async def stop(self) -> None:
        if not self._started:
            return
        await self.job_queue.stop()
        self.triggers.clear()
        self._started = False
        logger.info("[automation-engine] stopped")

    # =========================================================================
    # JOBS
    # =========================================================================

    async def handle_jobs(self, jobs: List[Job]) -> None:
        """Worker handler for ``run-automation`` and schedule queues.

        Workflow failures are recorded on the run; only infrastructure errors
        (such as a failed run insert) propagate so the queue retries the job.
        """
        for job in jobs:
            data = job.data
            await self.run_automation(
                int(data["ruleId"]),
                int(data["salesId"]),
                data.get("triggerData") or {},
            )

    async def run_automation(self, rule_id: int, sales_id: int,
                             trigger_data: Optional[Dict[str, Any]] = None) -> Optional[AutomationRun]:
        """Execute a rule once and record the run.

        Returns None when the rule no longer exists for the tenant.
        """
        rule = await self.database.get_rule(rule_id, sales_id)
        if rule is None:
            logger.warning("Rule not found, dropping job", rule_id=rule_id, sales_id=sales_id)
            return None

        async def execution() -> Dict[str, Any]:
            sales = await self.database.get_sales(sales_id)
            if sales is None:
                raise TenantNotFoundError(sales_id)
            return await self.executor.execute(
                rule.workflow_definition, trigger_data or {}, Tenant.from_sales(sales)
            )

        return await self.recorder.record(rule.id, sales_id, execution)

    async def trigger_rule_now(self, rule_id: int, sales_id: int) -> str:
        """Enqueue an immediate run with an empty payload.

        Raises:
            RuleNotFoundError: If the rule does not belong to the tenant
        """
        rule = await self.database.get_rule(rule_id, sales_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)

        job_id = await self.job_queue.enqueue(RUN_AUTOMATION_QUEUE, {
            "ruleId": rule.id,
            "salesId": sales_id,
            "triggerData": {},
        })
        logger.info("Rule triggered manually", rule_id=rule_id, sales_id=sales_id, job_id=job_id)
        return job_id

    # =========================================================================
    # EVENTS AND RULE LIFECYCLE
    # =========================================================================

    async def fire_event(self, event_name: str, payload: Optional[Dict[str, Any]],
                         sales_id: int) -> DispatchResult:
        return await self.dispatcher.fire_event(event_name, payload, sales_id)

    async def reload_rule(self, rule_id: int) -> Optional[ScheduleInfo]:
        """Call after a rule is created, enabled, disabled or edited."""
        return await self.triggers.reload_rule(rule_id)

    async def delete_rule(self, rule_id: int, sales_id: int) -> bool:
        """Delete a rule and drop its schedule."""
        if await self.database.get_rule(rule_id, sales_id) is None:
            return False
        await self.triggers.remove_rule(rule_id)
        deleted = await self.database.delete_rule(rule_id, sales_id)
        logger.info("Rule deleted", rule_id=rule_id, sales_id=sales_id)
        return deleted

    def validate_workflow(self, workflow_definition: Dict[str, Any]) -> List[str]:
        return self.executor.validate_workflow(workflow_definition)

    async def list_runs(self, rule_id: int, sales_id: int, limit: int = 20) -> List[AutomationRun]:
        """Runs of a tenant's rule, newest first.

        Raises:
            RuleNotFoundError: If the rule does not belong to the tenant
        """
        if await self.database.get_rule(rule_id, sales_id) is None:
            raise RuleNotFoundError(rule_id)
        return await self.database.list_runs(rule_id, limit)
