"""Pydantic models for workflow definitions and per-node configuration.

The persisted JSON shape ``{nodes: [{id, type, position, data}], edges: [{id,
source, target}]}`` is kept stable; ``data`` stays a plain mapping on the
wire and is validated against a node-kind model when a definition is loaded.
"""

from typing import Literal, Optional, Dict, Any, List, Union
from pydantic import BaseModel, Field, field_validator, model_validator

from constants import (
    TRIGGER_EVENT,
    TRIGGER_SCHEDULE,
    ACTION_EMAIL,
    ACTION_AI,
    ACTION_WEB_SEARCH,
    ACTION_CRM,
    ACTION_SLACK,
    ACTION_GMAIL_READ,
    ACTION_GMAIL_SEND,
    ACTION_AI_AGENT,
    ACTION_CONDITION,
)


# =============================================================================
# GRAPH
# =============================================================================

class NodePosition(BaseModel):
    x: float = 0
    y: float = 0


class WorkflowNode(BaseModel):
    """A node in a workflow graph. ``position`` is presentation-only."""
    model_config = {"extra": "allow"}

    id: str
    type: str
    position: NodePosition = Field(default_factory=NodePosition)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v if v is not None else {}


class WorkflowEdge(BaseModel):
    model_config = {"extra": "allow"}

    id: str = ""
    source: str
    target: str


class WorkflowDefinition(BaseModel):
    """Directed graph of trigger and action nodes embedded in a rule."""
    nodes: List[WorkflowNode] = Field(default_factory=list)
    edges: List[WorkflowEdge] = Field(default_factory=list)

    @field_validator("nodes", "edges", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v if v is not None else []

    @model_validator(mode="after")
    def check_unique_node_ids(self):
        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise ValueError(f"Duplicate node id: {node.id}")
            seen.add(node.id)
        return self

    @classmethod
    def from_stored(cls, raw: Optional[Dict[str, Any]]) -> "WorkflowDefinition":
        """Build from the JSON column of a rule row (tolerates NULL)."""
        return cls.model_validate(raw or {})

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def first_node_of_type(self, node_type: str) -> Optional[WorkflowNode]:
        """First node of a type in insertion order (only the first trigger is honored)."""
        return next((n for n in self.nodes if n.type == node_type), None)

    def dangling_edges(self) -> List[WorkflowEdge]:
        """Edges whose source or target is not a node of this graph."""
        ids = set(self.node_ids())
        return [e for e in self.edges if e.source not in ids or e.target not in ids]


# =============================================================================
# NODE CONFIG MODELS
# =============================================================================

class BaseNodeConfig(BaseModel):
    """Base class for all node configs."""
    model_config = {"extra": "allow", "populate_by_name": True}


class TriggerEventConfig(BaseNodeConfig):
    type: Literal["trigger_event"]
    event: str = ""


class TriggerScheduleConfig(BaseNodeConfig):
    type: Literal["trigger_schedule"]
    cron: str = ""
    timezone: Optional[str] = None
    label: Optional[str] = None


class EmailConfig(BaseNodeConfig):
    type: Literal["action_email"]
    to: str = ""
    subject: str = ""
    body: str = ""


class AITaskConfig(BaseNodeConfig):
    type: Literal["action_ai"]
    prompt: str = ""
    model: Optional[str] = None


class WebSearchConfig(BaseNodeConfig):
    type: Literal["action_web_search"]
    query: str = ""
    num_results: int = Field(default=5, alias="numResults", ge=1, le=50)


class CrmConfig(BaseNodeConfig):
    type: Literal["action_crm"]
    action: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v if v is not None else {}


class SlackConfig(BaseNodeConfig):
    type: Literal["action_slack"]
    channel: str = ""
    message: str = ""


class GmailReadConfig(BaseNodeConfig):
    type: Literal["action_gmail_read"]
    query: str = "is:unread"
    max_results: int = Field(default=5, alias="maxResults", ge=1, le=100)


class GmailSendConfig(BaseNodeConfig):
    type: Literal["action_gmail_send"]
    to: str = ""
    subject: str = ""
    body: str = ""


class AIAgentConfig(BaseNodeConfig):
    type: Literal["action_ai_agent"]
    objective: str = ""
    model: Optional[str] = None
    max_steps: int = Field(default=6, alias="maxSteps", ge=1, le=25)


class ConditionConfig(BaseNodeConfig):
    type: Literal["action_condition"]
    field: Any = None
    operator: str = "eq"
    value: Any = None


NodeConfig = Union[
    TriggerEventConfig,
    TriggerScheduleConfig,
    EmailConfig,
    AITaskConfig,
    WebSearchConfig,
    CrmConfig,
    SlackConfig,
    GmailReadConfig,
    GmailSendConfig,
    AIAgentConfig,
    ConditionConfig,
]

NODE_CONFIG_MODELS: Dict[str, type] = {
    TRIGGER_EVENT: TriggerEventConfig,
    TRIGGER_SCHEDULE: TriggerScheduleConfig,
    ACTION_EMAIL: EmailConfig,
    ACTION_AI: AITaskConfig,
    ACTION_WEB_SEARCH: WebSearchConfig,
    ACTION_CRM: CrmConfig,
    ACTION_SLACK: SlackConfig,
    ACTION_GMAIL_READ: GmailReadConfig,
    ACTION_GMAIL_SEND: GmailSendConfig,
    ACTION_AI_AGENT: AIAgentConfig,
    ACTION_CONDITION: ConditionConfig,
}


def validate_node_config(node_type: str, data: Dict[str, Any]) -> BaseNodeConfig:
    """Validate node data using the model registered for its type.

    Unknown node types fall back to BaseNodeConfig so the executor can log
    and skip them instead of rejecting the whole definition.

    Raises:
        pydantic.ValidationError: If data is invalid for a known node type
    """
    payload = {**(data or {}), "type": node_type}
    model = NODE_CONFIG_MODELS.get(node_type)
    if model is None:
        return BaseNodeConfig(**payload)
    return model.model_validate(payload)
