"""Automation engine exception hierarchy."""

from typing import Any, Dict, List, Optional


class AutomationError(Exception):
    """Base exception for all automation errors."""


class ActionValidationError(AutomationError):
    """Action config rejected before any side effect."""


class ExternalServiceError(AutomationError):
    """Non-2xx response or network failure from a downstream integration."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.status_code = status_code
        super().__init__(message)


class RecordNotFoundError(AutomationError):
    """Tenant-scoped record lookup failed."""

    def __init__(self, resource: str, record_id: Any):
        self.resource = resource
        self.record_id = record_id
        super().__init__(f"{resource} {record_id} not found")


class CyclicWorkflowError(AutomationError):
    """Workflow graph contains a cycle; lists the nodes that can never run."""

    def __init__(self, node_ids: List[str]):
        self.node_ids = list(node_ids)
        super().__init__(f"Workflow contains a cycle involving nodes: {', '.join(self.node_ids)}")


class InvalidWorkflowError(AutomationError):
    """Workflow definition failed structural validation."""


class WorkflowExecutionError(AutomationError):
    """A node failed; carries the context accumulated before the failure.

    The message is the underlying error's message so it can be stored
    verbatim as the run's error.
    """

    def __init__(self, node_id: str, node_type: str, cause: BaseException,
                 context: Dict[str, Any]):
        self.node_id = node_id
        self.node_type = node_type
        self.cause = cause
        self.context = context
        super().__init__(str(cause) or cause.__class__.__name__)


class SchedulingError(AutomationError):
    """Cron registration or removal failed at the job-queue layer."""

    def __init__(self, schedule_name: str, message: str):
        self.schedule_name = schedule_name
        super().__init__(f"[{schedule_name}] {message}")


class InvalidRunTransition(AutomationError):
    """Attempted to move a run out of a terminal state."""

    def __init__(self, run_id: int, current: str, target: str):
        self.run_id = run_id
        self.current = current
        self.target = target
        super().__init__(f"Run {run_id} cannot transition from {current} to {target}")


class RuleNotFoundError(AutomationError):
    """Rule missing or owned by another tenant."""

    def __init__(self, rule_id: int):
        self.rule_id = rule_id
        super().__init__(f"Rule {rule_id} not found")


class TenantNotFoundError(AutomationError):
    def __init__(self, sales_id: int):
        self.sales_id = sales_id
        super().__init__(f"Sales user {sales_id} not found")
