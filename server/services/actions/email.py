"""Email action - sends through the gateway's transactional email endpoint."""

from typing import Any, Dict

from core.logging import get_logger
from models.workflow import EmailConfig
from services.automation.exceptions import ActionValidationError
from services.actions.base import Tenant
from services.actions.gateway import BasicsClient

logger = get_logger(__name__)


async def handle_email(config: EmailConfig, context: Dict[str, Any], tenant: Tenant,
                       *, client: BasicsClient) -> Dict[str, Any]:
    if not config.to:
        raise ActionValidationError("action_email requires a 'to' address")

    logger.info("[Email] Sending", to=config.to, sales_id=tenant.id)
    response = await client.post(
        tenant, "/v1/email/send",
        {"to": config.to, "subject": config.subject, "body": config.body},
        service="email", failure="Email send failed",
    )
    return {"email_result": {"sent": True, "to": config.to, "subject": config.subject,
                             "response": response}}
