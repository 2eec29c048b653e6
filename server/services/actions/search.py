"""Web search action."""

from typing import Any, Dict

from models.workflow import WebSearchConfig
from services.automation.exceptions import ActionValidationError
from services.actions.base import Tenant
from services.actions.gateway import BasicsClient


async def handle_web_search(config: WebSearchConfig, context: Dict[str, Any], tenant: Tenant,
                            *, client: BasicsClient) -> Dict[str, Any]:
    if not config.query:
        raise ActionValidationError("action_web_search requires a query")

    data = await client.post(
        tenant, "/v1/execute/web/search",
        {"query": config.query, "numResults": config.num_results},
        service="web_search", failure="Web search failed",
    )
    return {"web_results": (data or {}).get("results") or []}
