"""Action executors package - one handler per action node type.

- email.py: Transactional email
- ai.py: AI task (chat completion) and the tool-calling CRM agent
- search.py: Web search
- crm.py: Tenant-scoped CRM writes (tasks, contacts, deals, notes)
- slack.py: Slack message
- gmail.py: Gmail read and send
- condition.py: Field comparison gate

Handlers share the contract ``(config, context, tenant) -> partial context
update``; services they depend on are bound with ``functools.partial`` when
the registry is built.
"""

from functools import partial
from typing import Dict, Iterable, List, Optional

from constants import (
    ACTION_EMAIL,
    ACTION_AI,
    ACTION_WEB_SEARCH,
    ACTION_CRM,
    ACTION_SLACK,
    ACTION_GMAIL_READ,
    ACTION_GMAIL_SEND,
    ACTION_AI_AGENT,
    ACTION_CONDITION,
    ACTION_OUTPUT_KEYS,
    TRIGGER_NODE_TYPES,
)
from core.config import Settings
from core.database import Database
from core.logging import get_logger
from services.actions.base import ActionExecutor, Tenant
from services.actions.gateway import BasicsClient
from services.actions.email import handle_email
from services.actions.ai import handle_ai_task, handle_ai_agent, ChatModelFactory
from services.actions.search import handle_web_search
from services.actions.crm import handle_crm
from services.actions.slack import handle_slack
from services.actions.gmail import handle_gmail_read, handle_gmail_send
from services.actions.condition import handle_condition

logger = get_logger(__name__)


class ActionRegistry:
    """Dispatch table from action node type to executor."""

    def __init__(self, settings: Settings, database: Database,
                 client: Optional[BasicsClient] = None,
                 chat_model_factory: Optional[ChatModelFactory] = None):
        self.settings = settings
        self.database = database
        self.client = client or BasicsClient(settings.basicos_api_url, settings.action_timeout)
        self.chat_model_factory = chat_model_factory
        self._executors = self._build_executor_registry()

    def _build_executor_registry(self) -> Dict[str, ActionExecutor]:
        """Build executor registry with service dependencies bound via partial."""
        return {
            ACTION_EMAIL: partial(handle_email, client=self.client),
            ACTION_AI: partial(handle_ai_task, client=self.client, settings=self.settings),
            ACTION_WEB_SEARCH: partial(handle_web_search, client=self.client),
            ACTION_CRM: partial(handle_crm, database=self.database),
            ACTION_SLACK: partial(handle_slack, client=self.client),
            ACTION_GMAIL_READ: partial(handle_gmail_read, client=self.client),
            ACTION_GMAIL_SEND: partial(handle_gmail_send, client=self.client),
            ACTION_AI_AGENT: partial(handle_ai_agent, database=self.database, settings=self.settings,
                                     model_factory=self.chat_model_factory),
            ACTION_CONDITION: handle_condition,
        }

    def register(self, node_type: str, executor: ActionExecutor) -> None:
        """Register or replace the executor for a node type."""
        self._executors[node_type] = executor

    def get(self, node_type: str) -> Optional[ActionExecutor]:
        return self._executors.get(node_type)

    def supports(self, node_type: str) -> bool:
        return node_type in self._executors or node_type in TRIGGER_NODE_TYPES

    def output_key(self, node_type: str) -> Optional[str]:
        return ACTION_OUTPUT_KEYS.get(node_type)

    def unsupported_types(self, node_types: Iterable[str]) -> List[str]:
        """Node types in a definition that would be skipped at run time."""
        return sorted({t for t in node_types if not self.supports(t)})

    @property
    def node_types(self) -> List[str]:
        return sorted(self._executors)


__all__ = [
    'ActionRegistry',
    'ActionExecutor',
    'BasicsClient',
    'Tenant',
]
