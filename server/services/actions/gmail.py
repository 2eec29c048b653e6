"""Gmail actions - read matching messages and send mail from the user's account."""

from typing import Any, Dict

from core.logging import get_logger
from models.workflow import GmailReadConfig, GmailSendConfig
from services.automation.exceptions import ActionValidationError
from services.actions.base import Tenant
from services.actions.gateway import BasicsClient

logger = get_logger(__name__)


async def handle_gmail_read(config: GmailReadConfig, context: Dict[str, Any], tenant: Tenant,
                            *, client: BasicsClient) -> Dict[str, Any]:
    """Search the mailbox; stores the ``messages`` list as ``gmail_messages``."""
    data = await client.post(
        tenant, "/v1/execute/gmail/read",
        {"query": config.query, "maxResults": config.max_results},
        service="gmail", failure="Gmail read failed",
    )
    messages = (data or {}).get("messages") or []
    logger.info("[Gmail] Read messages", count=len(messages), sales_id=tenant.id)
    return {"gmail_messages": messages}


async def handle_gmail_send(config: GmailSendConfig, context: Dict[str, Any], tenant: Tenant,
                            *, client: BasicsClient) -> Dict[str, Any]:
    if not config.to:
        raise ActionValidationError("action_gmail_send requires a 'to' address")

    response = await client.post(
        tenant, "/v1/execute/gmail/send",
        {"to": config.to, "subject": config.subject, "body": config.body},
        service="gmail", failure="Gmail send failed",
    )
    return {"gmail_send_result": {"sent": True, "to": config.to, "response": response}}
