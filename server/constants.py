"""Centralized constants for node types, context keys and queue names.

Single source of truth for the node type tags stored in workflow JSON.
"""

from typing import Dict, FrozenSet

# =============================================================================
# TRIGGER NODE TYPES
# =============================================================================

TRIGGER_EVENT = 'trigger_event'
TRIGGER_SCHEDULE = 'trigger_schedule'

TRIGGER_NODE_TYPES: FrozenSet[str] = frozenset([
    TRIGGER_EVENT,
    TRIGGER_SCHEDULE,
])

# =============================================================================
# ACTION NODE TYPES
# =============================================================================

ACTION_EMAIL = 'action_email'
ACTION_AI = 'action_ai'
ACTION_WEB_SEARCH = 'action_web_search'
ACTION_CRM = 'action_crm'
ACTION_SLACK = 'action_slack'
ACTION_GMAIL_READ = 'action_gmail_read'
ACTION_GMAIL_SEND = 'action_gmail_send'
ACTION_AI_AGENT = 'action_ai_agent'
ACTION_CONDITION = 'action_condition'

# Context key each action contributes; keys are shared, not namespaced per node
ACTION_OUTPUT_KEYS: Dict[str, str] = {
    ACTION_EMAIL: 'email_result',
    ACTION_AI: 'ai_result',
    ACTION_WEB_SEARCH: 'web_results',
    ACTION_CRM: 'crm_result',
    ACTION_SLACK: 'slack_result',
    ACTION_GMAIL_READ: 'gmail_messages',
    ACTION_GMAIL_SEND: 'gmail_send_result',
    ACTION_AI_AGENT: 'ai_agent_result',
    ACTION_CONDITION: 'condition_result',
}

ACTION_NODE_TYPES: FrozenSet[str] = frozenset(ACTION_OUTPUT_KEYS)

KNOWN_NODE_TYPES: FrozenSet[str] = TRIGGER_NODE_TYPES | ACTION_NODE_TYPES

# =============================================================================
# CONTEXT
# =============================================================================

CONTEXT_TRIGGER_DATA = 'trigger_data'
CONTEXT_SALES_ID = 'sales_id'
CONTEXT_STEPS = '_steps'

# =============================================================================
# RUNS
# =============================================================================

RUN_STATUS_RUNNING = 'running'
RUN_STATUS_SUCCESS = 'success'
RUN_STATUS_ERROR = 'error'

RUN_TERMINAL_STATUSES: FrozenSet[str] = frozenset([
    RUN_STATUS_SUCCESS,
    RUN_STATUS_ERROR,
])

# =============================================================================
# JOB QUEUE
# =============================================================================

RUN_AUTOMATION_QUEUE = 'run-automation'
SCHEDULE_NAME_PREFIX = 'rule-schedule-'

JOB_STATUS_PENDING = 'pending'
JOB_STATUS_DONE = 'done'
JOB_STATUS_FAILED = 'failed'    # gave up after max attempts
JOB_STATUS_DROPPED = 'dropped'  # its queue lost its worker


def schedule_name_for(rule_id: int) -> str:
    """Deterministic cron registration name for a rule."""
    return f"{SCHEDULE_NAME_PREFIX}{rule_id}"


# =============================================================================
# EVENTS
# =============================================================================

EVENT_VERBS: FrozenSet[str] = frozenset([
    'created',
    'updated',
    'deleted',
    'completed',
])
