"""Slack action."""

from typing import Any, Dict

from models.workflow import SlackConfig
from services.automation.exceptions import ActionValidationError
from services.actions.base import Tenant
from services.actions.gateway import BasicsClient


async def handle_slack(config: SlackConfig, context: Dict[str, Any], tenant: Tenant,
                       *, client: BasicsClient) -> Dict[str, Any]:
    if not config.channel:
        raise ActionValidationError("action_slack requires a channel")

    data = await client.post(
        tenant, "/v1/execute/slack/message",
        {"channel": config.channel, "text": config.message},
        service="slack", failure="Slack message failed",
    )
    return {"slack_result": data}
