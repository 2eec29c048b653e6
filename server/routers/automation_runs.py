"""Automation run routes - run history and manual triggering."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from core.container import container
from core.database import Database
from core.logging import get_logger
from services.automation.engine import AutomationEngine
from services.automation.exceptions import AutomationError, RuleNotFoundError

logger = get_logger(__name__)
router = APIRouter(prefix="/api/automation-runs", tags=["automation"])

DEFAULT_RUN_LIMIT = 20
MAX_RUN_LIMIT = 100


class TriggerRequest(BaseModel):
    rule_id: Optional[Any] = Field(default=None, alias="ruleId")


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_limit(limit: Optional[str]) -> int:
    """Default 20, capped at 100; unparsable values fall back to the default."""
    parsed = _parse_int(limit) if limit is not None else None
    if not parsed or parsed < 1:
        return DEFAULT_RUN_LIMIT
    return min(parsed, MAX_RUN_LIMIT)


async def get_sales_id(
    x_sales_id: Optional[str] = Header(default=None, alias="X-Sales-Id"),
    database: Database = Depends(lambda: container.database())
) -> int:
    """Resolve the tenant from the ``X-Sales-Id`` header."""
    sales_id = _parse_int(x_sales_id)
    if sales_id is None:
        raise HTTPException(status_code=401, detail="X-Sales-Id header required")
    if await database.get_sales(sales_id) is None:
        raise HTTPException(status_code=404, detail="User not found in CRM")
    return sales_id


@router.get("")
async def list_automation_runs(
    ruleId: Optional[str] = None,
    limit: Optional[str] = None,
    sales_id: int = Depends(get_sales_id),
    engine: AutomationEngine = Depends(lambda: container.automation_engine())
) -> List[Dict[str, Any]]:
    """Runs of one of the caller's rules, newest first."""
    if not ruleId:
        raise HTTPException(status_code=400, detail="ruleId query param required")
    rule_id = _parse_int(ruleId)
    if rule_id is None:
        raise HTTPException(status_code=400, detail="Invalid ruleId")

    try:
        runs = await engine.list_runs(rule_id, sales_id, parse_limit(limit))
    except RuleNotFoundError:
        raise HTTPException(status_code=404, detail="Rule not found")

    return [run.model_dump(mode="json") for run in runs]


@router.post("/trigger")
async def trigger_automation_rule(
    request: TriggerRequest,
    sales_id: int = Depends(get_sales_id),
    engine: AutomationEngine = Depends(lambda: container.automation_engine())
) -> Dict[str, Any]:
    """Run a rule now with an empty trigger payload."""
    rule_id = _parse_int(request.rule_id)
    if not rule_id:
        raise HTTPException(status_code=400, detail="ruleId required")

    try:
        job_id = await engine.trigger_rule_now(rule_id, sales_id)
    except AutomationError as e:
        logger.warning("Manual trigger rejected", rule_id=rule_id, sales_id=sales_id, error=str(e))
        raise HTTPException(status_code=400, detail=str(e))

    return {"ok": True, "jobId": job_id}
