"""AI actions - single chat completion and the tool-calling CRM agent.

The agent runs a LangGraph state machine against the gateway's
OpenAI-compatible ``/v1`` endpoint:

    START -> agent -> (tool calls?) -> tools -> agent -> ... -> END

Each agent step is one model call; ``maxSteps`` bounds the number of steps.
"""

import json
import operator
import time
from typing import Any, Annotated, Callable, Dict, List, Optional, Sequence, TypedDict

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import StructuredTool
from langchain_openai import ChatOpenAI
from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field

from core.config import Settings
from core.database import Database
from core.logging import get_logger, log_execution_time
from models.workflow import AITaskConfig, AIAgentConfig
from services.automation.exceptions import ActionValidationError, ExternalServiceError
from services.actions.base import Tenant
from services.actions.gateway import BasicsClient

logger = get_logger(__name__)

AGENT_SYSTEM_PROMPT = (
    "You are a CRM automation agent. You have access to CRM data and can "
    "perform actions on behalf of the user."
)

# (settings, tenant, model name) -> chat model
ChatModelFactory = Callable[[Settings, Tenant, str], BaseChatModel]


# =============================================================================
# AI TASK
# =============================================================================

async def handle_ai_task(config: AITaskConfig, context: Dict[str, Any], tenant: Tenant,
                         *, client: BasicsClient, settings: Settings) -> Dict[str, Any]:
    """One chat completion; the first choice's content becomes ``ai_result``."""
    if not config.prompt:
        raise ActionValidationError("action_ai requires a prompt")

    model = config.model or settings.ai_default_model
    data = await client.post(
        tenant, "/v1/chat/completions",
        {
            "model": model,
            "messages": [{"role": "user", "content": config.prompt}],
            "stream": False,
        },
        service="ai", failure="AI request failed",
    )

    choices = (data or {}).get("choices") or []
    content = ""
    if choices:
        content = ((choices[0] or {}).get("message") or {}).get("content") or ""
    return {"ai_result": content}


# =============================================================================
# CRM TOOLS
# =============================================================================

class SearchSchema(BaseModel):
    query: str = Field(description="Search query (name or email)")


class CreateTaskSchema(BaseModel):
    text: str = Field(description="Task description")
    contactId: int = Field(description="Contact ID to associate task with")
    type: str = Field(default="task", description="Task type")


class UpdateDealSchema(BaseModel):
    dealId: int = Field(description="Deal ID")
    stage: str = Field(description="New stage value")


def build_crm_tools(database: Database, tenant: Tenant) -> List[StructuredTool]:
    """CRM tools bound to one tenant; every read and write is scoped to it."""

    async def get_contacts(query: str) -> List[Dict[str, Any]]:
        rows = await database.search_contacts(tenant.id, query)
        return [row.model_dump(mode="json") for row in rows]

    async def get_deals(query: str) -> List[Dict[str, Any]]:
        rows = await database.search_deals(tenant.id, query)
        return [row.model_dump(mode="json") for row in rows]

    async def create_task(text: str, contactId: int, type: str = "task") -> Dict[str, Any]:
        if await database.get_contact(contactId, tenant.id) is None:
            return {"error": f"Contact {contactId} not found"}
        task = await database.create_task(tenant.id, contactId, text=text, type=type)
        return task.model_dump(mode="json")

    async def update_deal(dealId: int, stage: str) -> Dict[str, Any]:
        deal = await database.update_deal(dealId, tenant.id, stage=stage)
        if deal is None:
            return {"error": f"Deal {dealId} not found"}
        return deal.model_dump(mode="json")

    return [
        StructuredTool.from_function(
            coroutine=get_contacts, name="getContacts",
            description="Search CRM contacts by name or email", args_schema=SearchSchema,
        ),
        StructuredTool.from_function(
            coroutine=get_deals, name="getDeals",
            description="Search CRM deals by name", args_schema=SearchSchema,
        ),
        StructuredTool.from_function(
            coroutine=create_task, name="createTask",
            description="Create a task in the CRM for a contact", args_schema=CreateTaskSchema,
        ),
        StructuredTool.from_function(
            coroutine=update_deal, name="updateDeal",
            description="Update a deal's stage", args_schema=UpdateDealSchema,
        ),
    ]


# =============================================================================
# LANGGRAPH AGENT
# =============================================================================

class AgentState(TypedDict):
    """State for the agent loop; messages accumulate via operator.add."""
    messages: Annotated[Sequence[BaseMessage], operator.add]
    pending_tool_calls: List[Dict[str, Any]]
    iteration: int
    max_iterations: int
    should_continue: bool


def create_agent_node(chat_model):
    async def agent_node(state: AgentState) -> Dict[str, Any]:
        iteration = state.get("iteration", 0)
        response = await chat_model.ainvoke(list(state["messages"]))

        pending_tool_calls = list(getattr(response, "tool_calls", None) or [])
        logger.debug("[Agent] Step completed", iteration=iteration + 1,
                     tool_calls=[tc.get("name") for tc in pending_tool_calls])

        return {
            "messages": [response],
            "pending_tool_calls": pending_tool_calls,
            "iteration": iteration + 1,
            "max_iterations": state.get("max_iterations", 6),
            "should_continue": bool(pending_tool_calls),
        }

    return agent_node


def create_tool_node(tools: List[StructuredTool]):
    tools_by_name = {tool.name: tool for tool in tools}

    async def tool_node(state: AgentState) -> Dict[str, Any]:
        tool_messages = []

        for tool_call in state.get("pending_tool_calls", []):
            tool_name = tool_call.get("name", "unknown")
            tool_args = tool_call.get("args", {})
            tool = tools_by_name.get(tool_name)

            try:
                if tool is None:
                    result: Any = {"error": f"Unknown tool: {tool_name}"}
                else:
                    result = await tool.ainvoke(tool_args)
            except Exception as e:
                logger.warning("[Agent] Tool failed", tool=tool_name, error=str(e))
                result = {"error": str(e)}

            tool_messages.append(ToolMessage(
                content=json.dumps(result, default=str),
                tool_call_id=tool_call.get("id") or "",
                name=tool_name
            ))

        return {"messages": tool_messages, "pending_tool_calls": []}

    return tool_node


def should_continue(state: AgentState) -> str:
    """Route to tools while the model asks for them and steps remain."""
    if state.get("should_continue", False):
        if state.get("iteration", 0) < state.get("max_iterations", 6):
            return "tools"
    return "end"


def build_agent_graph(chat_model, tools: List[StructuredTool]):
    """Compile the agent/tools loop."""
    graph = StateGraph(AgentState)

    model_with_tools = chat_model.bind_tools(tools) if tools else chat_model
    graph.add_node("agent", create_agent_node(model_with_tools))
    graph.set_entry_point("agent")

    if tools:
        graph.add_node("tools", create_tool_node(tools))
        graph.add_conditional_edges("agent", should_continue, {"tools": "tools", "end": END})
        graph.add_edge("tools", "agent")
    else:
        graph.add_edge("agent", END)

    return graph.compile()


def default_chat_model(settings: Settings, tenant: Tenant, model: str) -> BaseChatModel:
    """ChatOpenAI pointed at the gateway's OpenAI-compatible API."""
    return ChatOpenAI(
        model=model,
        api_key=tenant.api_key,
        base_url=f"{settings.basicos_api_url}/v1",
        timeout=settings.action_timeout,
        max_retries=0,
    )


def _final_text(messages: Sequence[BaseMessage]) -> str:
    for message in reversed(messages):
        if isinstance(message, AIMessage):
            content = message.content
            if isinstance(content, str):
                return content
            # Content blocks
            return "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
    return ""


async def handle_ai_agent(config: AIAgentConfig, context: Dict[str, Any], tenant: Tenant,
                          *, database: Database, settings: Settings,
                          model_factory: Optional[ChatModelFactory] = None) -> Dict[str, Any]:
    """Run the CRM agent toward ``objective``; final text becomes ``ai_agent_result``."""
    if not config.objective:
        raise ActionValidationError("action_ai_agent requires an objective")
    if not tenant.api_key and model_factory is None:
        raise ActionValidationError("action_ai_agent requires a Basics API key")

    model_name = config.model or settings.ai_agent_default_model
    chat_model = (model_factory or default_chat_model)(settings, tenant, model_name)
    agent = build_agent_graph(chat_model, build_crm_tools(database, tenant))

    initial_state: AgentState = {
        "messages": [SystemMessage(content=AGENT_SYSTEM_PROMPT), HumanMessage(content=config.objective)],
        "pending_tool_calls": [],
        "iteration": 0,
        "max_iterations": config.max_steps,
        "should_continue": False,
    }

    start_time = time.time()
    try:
        final_state = await agent.ainvoke(
            initial_state, config={"recursion_limit": 2 * config.max_steps + 2}
        )
    except Exception as e:
        raise ExternalServiceError("ai_agent", f"AI agent failed: {e}") from e

    log_execution_time(logger, "ai_agent", start_time, time.time(),
                       model=model_name, steps=final_state.get("iteration"), sales_id=tenant.id)
    return {"ai_agent_result": _final_text(final_state["messages"])}
