"""Automation engine package - rule scheduling, event dispatch and recorded runs.

- engine.py: AutomationEngine (job queue ownership, run_automation, trigger_rule_now)
- executor.py: Topological ordering and sequential node dispatch
- recorder.py: running -> success | error run lifecycle
- triggers.py: Per-rule cron registrations
- dispatcher.py: fire_event -> run-automation jobs
- conditions.py: action_condition operators
- state.py: StepTrace, DispatchResult, ScheduleInfo
- exceptions.py: AutomationError hierarchy

Import the engine from ``services.automation.engine``; this package only
re-exports leaf modules so action executors can import the exceptions.
"""

from .exceptions import (
    AutomationError,
    ActionValidationError,
    ExternalServiceError,
    RecordNotFoundError,
    CyclicWorkflowError,
    InvalidWorkflowError,
    WorkflowExecutionError,
    SchedulingError,
    InvalidRunTransition,
    RuleNotFoundError,
    TenantNotFoundError,
)
from .state import StepTrace, DispatchResult, ScheduleInfo

__all__ = [
    'AutomationError',
    'ActionValidationError',
    'ExternalServiceError',
    'RecordNotFoundError',
    'CyclicWorkflowError',
    'InvalidWorkflowError',
    'WorkflowExecutionError',
    'SchedulingError',
    'InvalidRunTransition',
    'RuleNotFoundError',
    'TenantNotFoundError',
    'StepTrace',
    'DispatchResult',
    'ScheduleInfo',
]
