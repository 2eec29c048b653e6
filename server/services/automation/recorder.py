"""Run recorder - persists the ``running -> success | error`` lifecycle of a run."""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from constants import RUN_STATUS_ERROR, RUN_STATUS_SUCCESS
from core.database import Database
from core.logging import get_logger, log_execution_time, run_log_context
from models.database import AutomationRun, utcnow
from services.automation.exceptions import InvalidRunTransition, WorkflowExecutionError

logger = get_logger(__name__)

RUN_CANCELLED_ERROR = "Run cancelled"

Execution = Callable[[], Awaitable[Dict[str, Any]]]


def json_safe(value: Any) -> Any:
    """Round-trip through JSON so the value fits a JSON column."""
    return json.loads(json.dumps(value, default=str))


class RunRecorder:
    """Opens a run row, executes, and closes the row exactly once.

    Failures of the execution are recorded on the run and never re-raised.
    """

    def __init__(self, database: Database, run_timeout: Optional[float] = None):
        self.database = database
        self.run_timeout = run_timeout

    async def open_run(self, rule_id: int, sales_id: int) -> AutomationRun:
        return await self.database.create_run(rule_id, sales_id)

    async def complete_run(self, run: AutomationRun, result: Dict[str, Any]) -> None:
        await self._close(run, RUN_STATUS_SUCCESS, result, None)
        await self.database.set_rule_run_status(run.rule_id, RUN_STATUS_SUCCESS, run_at=utcnow())

    async def fail_run(self, run: AutomationRun, error: str,
                       result: Optional[Dict[str, Any]] = None) -> None:
        # last_run_at only tracks successful runs
        await self._close(run, RUN_STATUS_ERROR, result, error)
        await self.database.set_rule_run_status(run.rule_id, RUN_STATUS_ERROR)

    async def _close(self, run: AutomationRun, status: str,
                     result: Optional[Dict[str, Any]], error: Optional[str]) -> None:
        payload = json_safe(result) if result is not None else None
        if not await self.database.finish_run(run.id, status, payload, error):
            current = await self.database.get_run(run.id)
            raise InvalidRunTransition(run.id, current.status if current else "missing", status)
        run.status = status

    async def _close_after_failure(self, run: AutomationRun, error: str,
                                   result: Optional[Dict[str, Any]] = None) -> None:
        """``fail_run`` for paths where the workflow already ran: never raises."""
        try:
            await self.fail_run(run, error, result)
        except InvalidRunTransition as e:
            logger.warning("Run already closed", error=str(e))
        except Exception as e:
            logger.error("Run could not be closed", error_type=type(e).__name__, error=str(e))

    async def record(self, rule_id: int, sales_id: int, execution: Execution) -> AutomationRun:
        """Run ``execution`` inside a recorded run.

        If the run row cannot be inserted, the error propagates and nothing
        executes. Once the row exists, every outcome closes it: failures of
        the execution or of the closing writes are recorded, not raised, so a
        job queue never repeats an executed workflow. Cancellation closes the
        run as ``error`` and is then re-raised. Returns the closed run as
        stored.
        """
        run = await self.open_run(rule_id, sales_id)
        start_time = time.time()

        with run_log_context(run_id=run.id, rule_id=rule_id, sales_id=sales_id):
            logger.info("Run started")
            try:
                if self.run_timeout:
                    result = await asyncio.wait_for(execution(), timeout=self.run_timeout)
                else:
                    result = await execution()
            except asyncio.CancelledError:
                logger.warning("Run cancelled")
                await asyncio.shield(self._close_after_failure(run, RUN_CANCELLED_ERROR))
                raise
            except asyncio.TimeoutError:
                logger.error("Run timed out", timeout=self.run_timeout)
                await self._close_after_failure(run, f"Run timed out after {self.run_timeout:g}s")
            except WorkflowExecutionError as e:
                logger.error("Run failed", node_id=e.node_id, node_type=e.node_type, error=str(e))
                await self._close_after_failure(run, str(e), e.context)
            except Exception as e:
                logger.error("Run failed", error_type=type(e).__name__, error=str(e))
                await self._close_after_failure(run, str(e) or e.__class__.__name__)
            else:
                try:
                    await self.complete_run(run, result)
                except Exception as e:
                    logger.error("Run result not saved", error_type=type(e).__name__, error=str(e))
                    await self._close_after_failure(run, f"Run result could not be saved: {e}")
                else:
                    log_execution_time(logger, "automation_run", start_time, time.time(), status=run.status)

            try:
                stored = await self.database.get_run(run.id)
            except Exception as e:
                logger.warning("Closed run could not be re-read", error=str(e))
                stored = None
        return stored or run
