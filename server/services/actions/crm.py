"""CRM action - tenant-scoped writes to contacts, tasks, deals and notes.

Params use the camelCase keys of the workflow editor (``contactId``,
``dueDate``...). Every sub-action validates its params before touching the
database; numeric ids that arrive as strings (templates always produce
strings) are coerced to integers.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import TypeAdapter, ValidationError

from core.database import Database
from core.logging import get_logger
from models.database import utcnow
from models.workflow import CrmConfig
from services.automation.exceptions import ActionValidationError, RecordNotFoundError
from services.actions.base import Tenant

logger = get_logger(__name__)

_DATETIME = TypeAdapter(datetime)

CrmHandler = Callable[[Dict[str, Any], Tenant, Database], Awaitable[Any]]


# =============================================================================
# PARAM COERCION
# =============================================================================

def coerce_id(value: Any, name: str) -> int:
    """Coerce an id param to int, rejecting booleans and non-numeric text."""
    if isinstance(value, bool):
        raise ActionValidationError(f"{name} must be a numeric id, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    raise ActionValidationError(f"{name} must be a numeric id, got {value!r}")


def _require_id(params: Dict[str, Any], key: str, action: str) -> int:
    value = params.get(key)
    if value is None or value == "" or value == 0:
        raise ActionValidationError(f"{action} requires a {key}")
    return coerce_id(value, key)


def _optional_id(params: Dict[str, Any], key: str) -> Optional[int]:
    value = params.get(key)
    if value is None or value == "":
        return None
    return coerce_id(value, key)


def _optional_datetime(params: Dict[str, Any], key: str) -> Optional[datetime]:
    value = params.get(key)
    if value is None or value == "":
        return None
    try:
        return _DATETIME.validate_python(value)
    except ValidationError as e:
        raise ActionValidationError(f"{key} is not a valid date: {value!r}") from e


def _optional_int(params: Dict[str, Any], key: str) -> Optional[int]:
    value = params.get(key)
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError) as e:
        raise ActionValidationError(f"{key} must be a number, got {value!r}") from e


def _pick(params: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """Copy present camelCase params onto their column names."""
    return {column: params[key] for key, column in mapping.items() if key in params}


def _row(record) -> Dict[str, Any]:
    return record.model_dump(mode="json")


async def _require_contact(db: Database, contact_id: int, tenant: Tenant) -> None:
    if await db.get_contact(contact_id, tenant.id) is None:
        raise RecordNotFoundError("Contact", contact_id)


async def _require_deal(db: Database, deal_id: int, tenant: Tenant) -> None:
    if await db.get_deal(deal_id, tenant.id) is None:
        raise RecordNotFoundError("Deal", deal_id)


# =============================================================================
# SUB-ACTIONS
# =============================================================================

async def create_task(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    contact_id = _require_id(params, "contactId", "create_task")
    due_date = _optional_datetime(params, "dueDate")
    await _require_contact(db, contact_id, tenant)

    task = await db.create_task(
        tenant.id, contact_id,
        text=params.get("text") or "",
        type=params.get("type") or "Todo",
        due_date=due_date,
    )
    return _row(task)


async def update_task(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    task_id = _require_id(params, "taskId", "update_task")
    fields = _pick(params, {"text": "text", "type": "type"})
    if "dueDate" in params:
        fields["due_date"] = _optional_datetime(params, "dueDate")
    if "doneDate" in params:
        fields["done_date"] = _optional_datetime(params, "doneDate")
    elif params.get("done") in (True, "true"):
        fields["done_date"] = utcnow()

    task = await db.update_task(task_id, tenant.id, **fields)
    if task is None:
        raise RecordNotFoundError("Task", task_id)
    return _row(task)


async def create_contact(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    now = utcnow()
    contact = await db.create_contact(
        tenant.id,
        first_name=params.get("firstName"),
        last_name=params.get("lastName"),
        email=params.get("email"),
        title=params.get("title"),
        background=params.get("background"),
        company_id=_optional_id(params, "companyId"),
        status=params.get("status") or "cold",
        first_seen=now,
        last_seen=now,
    )
    return _row(contact)


async def update_contact(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    contact_id = _require_id(params, "contactId", "update_contact")
    fields = _pick(params, {
        "firstName": "first_name",
        "lastName": "last_name",
        "email": "email",
        "title": "title",
        "status": "status",
        "background": "background",
    })
    fields["last_seen"] = utcnow()

    contact = await db.update_contact(contact_id, tenant.id, **fields)
    if contact is None:
        raise RecordNotFoundError("Contact", contact_id)
    return _row(contact)


async def create_deal(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    name = params.get("name")
    if not name:
        raise ActionValidationError("create_deal requires a name")
    contact_ids = params.get("contactIds")
    if contact_ids is not None:
        if not isinstance(contact_ids, list):
            contact_ids = [contact_ids]
        contact_ids = [coerce_id(value, "contactIds") for value in contact_ids]

    deal = await db.create_deal(
        tenant.id, name,
        stage=params.get("stage") or "opportunity",
        category=params.get("category"),
        description=params.get("description"),
        amount=_optional_int(params, "amount"),
        company_id=_optional_id(params, "companyId"),
        contact_ids=contact_ids,
    )
    return _row(deal)


async def update_deal(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    deal_id = _require_id(params, "dealId", "update_deal")
    fields = _pick(params, {
        "name": "name",
        "stage": "stage",
        "category": "category",
        "description": "description",
    })
    if "amount" in params:
        fields["amount"] = _optional_int(params, "amount")

    deal = await db.update_deal(deal_id, tenant.id, **fields)
    if deal is None:
        raise RecordNotFoundError("Deal", deal_id)
    return _row(deal)


async def create_note(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    contact_id = _require_id(params, "contactId", "create_note")
    await _require_contact(db, contact_id, tenant)

    note = await db.create_contact_note(
        tenant.id, contact_id,
        text=params.get("text") or "",
        status=params.get("status") or "none",
        date=utcnow(),
    )
    return _row(note)


async def create_deal_note(params: Dict[str, Any], tenant: Tenant, db: Database) -> Dict[str, Any]:
    deal_id = _require_id(params, "dealId", "create_deal_note")
    await _require_deal(db, deal_id, tenant)

    note = await db.create_deal_note(
        tenant.id, deal_id,
        text=params.get("text") or "",
        type=params.get("type"),
        date=utcnow(),
    )
    return _row(note)


CRM_ACTIONS: Dict[str, CrmHandler] = {
    "create_task": create_task,
    "update_task": update_task,
    "create_contact": create_contact,
    "update_contact": update_contact,
    "create_deal": create_deal,
    "update_deal": update_deal,
    "create_note": create_note,
    "create_deal_note": create_deal_note,
}


async def handle_crm(config: CrmConfig, context: Dict[str, Any], tenant: Tenant,
                     *, database: Database) -> Dict[str, Any]:
    """Dispatch on ``config.action`` and store the written row as ``crm_result``."""
    handler = CRM_ACTIONS.get(config.action)
    if handler is None:
        raise ActionValidationError(f"Unknown CRM action: {config.action}")

    logger.info("[CRM] Executing action", action=config.action, sales_id=tenant.id)
    record = await handler(config.params, tenant, database)
    return {"crm_result": record}
