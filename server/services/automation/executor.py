"""Workflow executor - topological ordering plus sequential node dispatch.

Nodes run one at a time in Kahn order. Each node's ``data`` is resolved
against the shared execution context, validated against its config model and
handed to the action registry; the returned partial update is merged into the
context (keys are overwritten, not namespaced). A per-node trace is kept
under ``_steps``.
"""

from collections import defaultdict, deque
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from constants import (
    ACTION_CONDITION,
    CONTEXT_SALES_ID,
    CONTEXT_STEPS,
    CONTEXT_TRIGGER_DATA,
    TRIGGER_NODE_TYPES,
    TRIGGER_SCHEDULE,
)
from core.logging import get_logger
from models.database import utcnow
from models.workflow import WorkflowDefinition, WorkflowNode, validate_node_config
from services.actions import ActionRegistry
from services.actions.base import Tenant
from services.automation.exceptions import (
    ActionValidationError,
    CyclicWorkflowError,
    InvalidWorkflowError,
    WorkflowExecutionError,
)
from services.automation.state import StepTrace
from services.job_queue import build_cron_trigger
from services.template_resolver import find_placeholders, resolve

logger = get_logger(__name__)


def is_trigger_node(node_type: str) -> bool:
    return node_type in TRIGGER_NODE_TYPES


def compute_execution_order(definition: WorkflowDefinition) -> Tuple[List[str], List[str]]:
    """Kahn's algorithm over the definition's edges.

    The queue is FIFO and seeded with zero in-degree nodes in node order;
    neighbors are visited in edge order. Edges that reference unknown nodes
    are ignored.

    Returns:
        (order, excluded): executable node ids and the ids left behind by a cycle
    """
    node_ids = definition.node_ids()
    known = set(node_ids)

    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}
    adjacency: Dict[str, List[str]] = defaultdict(list)

    for edge in definition.edges:
        if edge.source in known and edge.target in known:
            adjacency[edge.source].append(edge.target)
            in_degree[edge.target] += 1

    queue = deque(node_id for node_id in node_ids if in_degree[node_id] == 0)
    order: List[str] = []

    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for neighbor in adjacency[node_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    placed = set(order)
    excluded = [node_id for node_id in node_ids if node_id not in placed]
    return order, excluded


def _format_validation_error(node: WorkflowNode, error: ValidationError) -> str:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'data'}: {err['msg']}"
        for err in error.errors()
    )
    return f"Invalid {node.type} config on node {node.id}: {details}"


class WorkflowExecutor:
    """Runs workflow definitions against the action registry."""

    def __init__(self, registry: ActionRegistry):
        self.registry = registry

    # =========================================================================
    # VALIDATION
    # =========================================================================

    def load_definition(self, raw: Union[WorkflowDefinition, Mapping[str, Any], None]) -> WorkflowDefinition:
        """Deserialize a stored definition.

        Raises:
            InvalidWorkflowError: If the JSON does not match the workflow shape
        """
        if isinstance(raw, WorkflowDefinition):
            return raw
        try:
            return WorkflowDefinition.from_stored(dict(raw) if raw else None)
        except ValidationError as e:
            raise InvalidWorkflowError(f"Invalid workflow definition: {e.errors()[0]['msg']}") from e

    def validate_workflow(self, raw: Union[WorkflowDefinition, Mapping[str, Any], None]) -> List[str]:
        """Validate a definition before it is saved.

        Checks structure, dangling edges, cycles, schedule crons and the config
        of every node whose data holds no templates (templated fields can only
        be checked once resolved at run time).

        Returns:
            Warnings for node types that would be skipped at run time

        Raises:
            InvalidWorkflowError: Structural or config problems
            CyclicWorkflowError: The graph has a cycle
        """
        definition = self.load_definition(raw)

        dangling = definition.dangling_edges()
        if dangling:
            described = ", ".join(f"{e.source}->{e.target}" for e in dangling)
            raise InvalidWorkflowError(f"Edges reference unknown nodes: {described}")

        _, excluded = compute_execution_order(definition)
        if excluded:
            raise CyclicWorkflowError(excluded)

        for node in definition.nodes:
            if node.type == TRIGGER_SCHEDULE and node.data.get("cron"):
                try:
                    build_cron_trigger(node.data["cron"], node.data.get("timezone") or "UTC")
                except Exception as e:
                    raise InvalidWorkflowError(f"Invalid cron on node {node.id}: {e}") from e

            if not self.registry.supports(node.type) or find_placeholders(node.data):
                continue
            try:
                validate_node_config(node.type, node.data)
            except ValidationError as e:
                raise InvalidWorkflowError(_format_validation_error(node, e)) from e

        return [
            f"Unsupported node type '{node_type}' will be skipped"
            for node_type in self.registry.unsupported_types(n.type for n in definition.nodes)
        ]

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute(self, raw: Union[WorkflowDefinition, Mapping[str, Any], None],
                      trigger_payload: Optional[Dict[str, Any]], tenant: Tenant) -> Dict[str, Any]:
        """Execute a workflow and return the final execution context.

        Raises:
            InvalidWorkflowError: The stored definition cannot be parsed
            CyclicWorkflowError: Before any node runs, if the graph has a cycle
            WorkflowExecutionError: A node failed; carries the partial context
        """
        definition = self.load_definition(raw)
        trigger_data = trigger_payload or {}

        if not definition.nodes:
            return {CONTEXT_TRIGGER_DATA: trigger_data}

        order, excluded = compute_execution_order(definition)
        if excluded:
            raise CyclicWorkflowError(excluded)

        context: Dict[str, Any] = {
            CONTEXT_TRIGGER_DATA: trigger_data,
            CONTEXT_SALES_ID: tenant.id,
        }
        steps: List[StepTrace] = []

        logger.info("Executing workflow", sales_id=tenant.id, node_count=len(order))

        for node_id in order:
            node = definition.get_node(node_id)
            trace = StepTrace(node_id=node.id, node_type=node.type, started_at=utcnow())

            if is_trigger_node(node.type):
                trace.finished_at = utcnow()
                steps.append(trace)
                continue

            executor = self.registry.get(node.type)
            if executor is None:
                logger.warning("DispatchWarning: unknown node type, skipping",
                               node_id=node.id, node_type=node.type)
                trace.skipped = True
                trace.finished_at = utcnow()
                steps.append(trace)
                continue

            try:
                update = await self._run_node(node, executor, context, tenant)
            except Exception as e:
                trace.error = str(e) or e.__class__.__name__
                trace.finished_at = utcnow()
                steps.append(trace)
                logger.error("Node failed", node_id=node.id, node_type=node.type, error=trace.error)
                raise WorkflowExecutionError(
                    node.id, node.type, e, self._snapshot(context, steps)
                ) from e

            context.update(update)
            trace.output_key = self.registry.output_key(node.type)
            trace.output = update.get(trace.output_key) if trace.output_key else None
            trace.finished_at = utcnow()
            steps.append(trace)

            if node.type == ACTION_CONDITION and not self._condition_passed(update):
                logger.info("Condition not met, stopping run", node_id=node.id)
                break

        return self._snapshot(context, steps)

    async def _run_node(self, node: WorkflowNode, executor, context: Dict[str, Any],
                        tenant: Tenant) -> Mapping[str, Any]:
        data = resolve(node.data, context)
        try:
            config = validate_node_config(node.type, data)
        except ValidationError as e:
            raise ActionValidationError(_format_validation_error(node, e)) from e

        update = await executor(config, context, tenant)
        return update or {}

    @staticmethod
    def _condition_passed(update: Mapping[str, Any]) -> bool:
        result = update.get("condition_result")
        if isinstance(result, Mapping):
            return bool(result.get("passed"))
        return bool(result)

    @staticmethod
    def _snapshot(context: Dict[str, Any], steps: List[StepTrace]) -> Dict[str, Any]:
        return {**context, CONTEXT_STEPS: [step.to_dict() for step in steps]}
