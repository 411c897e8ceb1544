"""Workflow engine: registry, guard, traversal and dispatch behind one facade."""

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from ..config import AppConfig
from ..models.core import (
    AgentDescriptor, AuditEventType, CreateWorkflowResult, DescriptionWorkflowResult, NodeOutcome,
    NodeResult, Workflow, WorkflowNode, WorkflowPlan, WorkflowResult, WorkflowTemplate
)
from .context import ExecutionContext
from .dispatcher import BranchDispatcher
from .exceptions import WorkflowEngineError
from .guard import ExecutionGuard
from .interfaces import AgentLookup, AgentRunner, AuditSink, WorkflowPlanner
from .logging import get_logger, logging_context
from .retry import RetryController
from .templates import workflow_templates
from .workflow_registry import NodeSpec, WorkflowRegistry

logger = get_logger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class WorkflowEngine:
    """Engine for creating and executing agent workflows.

    One instance is constructed by the host process and owns the only shared
    mutable state: the workflow registry and the in-flight execution set.
    """

    def __init__(self, agent_runner: AgentRunner, agent_lookup: AgentLookup,
                 audit_sink: Optional[AuditSink] = None, config: Optional[AppConfig] = None,
                 sleep: Optional[Callable[[float], None]] = None, planner: Optional[WorkflowPlanner] = None):
        """Initialize the workflow engine.

        Args:
            agent_runner: Executes one agent task per attempt
            agent_lookup: Validates agent references at creation time
            audit_sink: Optional best-effort event recorder
            config: Engine settings; defaults to AppConfig()
            sleep: Sleep function used between retries; defaults to time.sleep
            planner: Optional planner used by create_from_description
        """
        config = config or AppConfig()
        self.registry = WorkflowRegistry(agent_lookup, audit_sink)
        self.guard = ExecutionGuard()
        self.retry_controller = RetryController(agent_runner, config.retry_backoff_base_ms, sleep)
        self.dispatcher = BranchDispatcher(self.execute_node)
        self.max_traversal_steps = config.max_traversal_steps
        self.planner = planner

        logger.info(
            f"WorkflowEngine initialized with retry_backoff_base_ms={config.retry_backoff_base_ms}, "
            f"max_traversal_steps={config.max_traversal_steps}"
        )

    def create_workflow(self, owner_id: Any, name: str, description: str,
                        nodes: Sequence[NodeSpec]) -> CreateWorkflowResult:
        """Create a workflow; failures are returned, never raised."""
        try:
            workflow_id = self.registry.create_workflow(str(owner_id), name, description, nodes)
            return CreateWorkflowResult(success=True, workflow_id=workflow_id)
        except WorkflowEngineError as e:
            logger.warning(f"Workflow '{name}' rejected: {e.message}")
            return CreateWorkflowResult(success=False, error=e.message, error_code=e.error_code)
        except Exception as e:
            logger.error(f"Unexpected error while creating workflow '{name}': {str(e)}", exc_info=True)
            return CreateWorkflowResult(success=False, error=str(e) or "Failed to create workflow")

    def create_from_description(self, owner_id: Any, description: str,
                                agents: Sequence[Union[AgentDescriptor, Dict[str, Any]]]) -> DescriptionWorkflowResult:
        """
        Ask the planner for a plan and build a chained workflow from it.

        The planned agents become nodes ``node_0 .. node_n`` linked in order
        with the plan's connection type. When the planner cannot build the
        workflow, only its explanation and the missing agents are returned.

        Args:
            owner_id: Owner of the new workflow
            description: Free-text description of the wanted workflow
            agents: Agents the owner can use, offered to the planner

        Returns:
            DescriptionWorkflowResult; failures are returned, never raised
        """
        if self.planner is None:
            return DescriptionWorkflowResult(success=False, error="No workflow planner configured")

        try:
            offered = [AgentDescriptor.model_validate(agent) for agent in agents]
            raw_plan = self.planner.plan(description, offered)
            plan = raw_plan if isinstance(raw_plan, WorkflowPlan) else WorkflowPlan.model_validate(raw_plan)
        except Exception as e:
            logger.warning(f"Planning failed for owner {owner_id}: {str(e)}")
            return DescriptionWorkflowResult(success=False, error=str(e) or "Failed to plan workflow")

        if not plan.can_build or not plan.used_agent_refs:
            return DescriptionWorkflowResult(
                success=True,
                plan=plan.plan_text or "This workflow needs additional agents.",
                suggested_agents=plan.missing_agents
            )

        names = {str(agent.agent_ref): agent.name for agent in offered}
        refs = plan.used_agent_refs
        nodes = [
            {
                "id": f"node_{i}",
                "agent_ref": ref,
                "name": names.get(str(ref), f"Agent {ref}"),
                "edge_type": plan.connection_type,
                "next_ids": [f"node_{i + 1}"] if i < len(refs) - 1 else []
            }
            for i, ref in enumerate(refs)
        ]

        created = self.create_workflow(owner_id, description[:40], description, nodes)
        return DescriptionWorkflowResult(
            success=created.success,
            plan=plan.plan_text,
            workflow_id=created.workflow_id,
            suggested_agents=plan.missing_agents,
            error=created.error
        )

    def execute_workflow(self, workflow_id: str, owner_id: Any, initial_input: Any = None) -> WorkflowResult:
        """
        Execute a workflow from its start node.

        Args:
            workflow_id: ID of the workflow to execute
            owner_id: Caller; must own the workflow
            initial_input: Input handed to the start node

        Returns:
            WorkflowResult; every failure, expected or not, is reported in it.
            Runs refused before starting carry the error class in ``error_code``.
        """
        owner_id = str(owner_id)
        try:
            workflow = self.registry.require_owned(workflow_id, owner_id)
            context = ExecutionContext(workflow, owner_id, self.max_traversal_steps)
            self.guard.enter(workflow_id)
        except WorkflowEngineError as e:
            logger.warning(f"Workflow {workflow_id} not started: {e.message}")
            return WorkflowResult(workflow_id=workflow_id, success=False, error=e.message, error_code=e.error_code)

        started = time.monotonic()
        with logging_context(workflow_id=workflow_id, owner_id=owner_id):
            try:
                return self._run(context, initial_input, started)
            except Exception as e:
                logger.error(f"Workflow execution failed for {workflow_id}: {str(e)}", exc_info=True)
                return WorkflowResult(
                    workflow_id=workflow_id,
                    success=False,
                    node_results=context.log.snapshot(),
                    total_execution_time_ms=_elapsed_ms(started),
                    error=str(e) or "Workflow execution failed"
                )
            finally:
                self.guard.exit(workflow_id)

    def _run(self, context: ExecutionContext, initial_input: Any, started: float) -> WorkflowResult:
        workflow = context.workflow
        self.registry.mark_run(workflow.id, datetime.utcnow())
        logger.info(f"Starting workflow: {workflow.name}")

        outcome = self.execute_node(context, workflow.start_node_id, initial_input)
        total_ms = _elapsed_ms(started)

        self.registry.record_event(
            context.owner_id,
            f'Workflow "{workflow.name}" completed',
            {
                "type": AuditEventType.WORKFLOW_COMPLETED.value,
                "workflow_id": workflow.id,
                "success": outcome.success,
                "execution_time_ms": total_ms
            }
        )
        logger.info(f"Workflow {workflow.name} finished: success={outcome.success}, {total_ms}ms")

        return WorkflowResult(
            workflow_id=workflow.id,
            success=outcome.success,
            node_results=context.log.snapshot(),
            total_execution_time_ms=total_ms,
            final_output=outcome.output,
            error=outcome.error
        )

    def execute_node(self, context: ExecutionContext, node_id: str, node_input: Any, depth: int = 0) -> NodeOutcome:
        """
        Execute one node and, on success, its successors.

        Args:
            context: Execution context of the current run
            node_id: ID of the node to execute
            node_input: Input passed to the node's agent
            depth: Number of nodes above this one on the current path

        Returns:
            NodeOutcome of this node or of its dispatched continuation
        """
        node = context.workflow.find_node(node_id)
        if node is None:
            logger.warning(f"Node {node_id} not found in workflow {context.workflow.id}")
            return NodeOutcome(success=False, error=f"Node {node_id} not found")

        if not context.within_depth(depth):
            logger.error(f"Traversal depth limit of {context.max_depth} reached at node {node_id}")
            return NodeOutcome(
                success=False,
                error=f"Traversal depth limit of {context.max_depth} exceeded at node {node_id}"
            )

        # Worker threads start without fields, so the workflow ones are set per node
        with logging_context(workflow_id=context.workflow.id, owner_id=context.owner_id, node_id=node_id):
            return self._run_node(context, node, node_input, depth)

    def _run_node(self, context: ExecutionContext, node: WorkflowNode, node_input: Any, depth: int) -> NodeOutcome:
        started = time.monotonic()
        retry_outcome = self.retry_controller.run(
            node, context.owner_id, {"input": node_input, "workflow_id": context.workflow.id}
        )

        context.log.append(NodeResult(
            node_id=node.id,
            agent_ref=node.agent_ref,
            success=retry_outcome.success,
            output=retry_outcome.output,
            execution_time_ms=_elapsed_ms(started),
            error=retry_outcome.error,
            retries=retry_outcome.retries
        ))

        if not retry_outcome.success:
            logger.warning(f"Node {node.name} failed: {retry_outcome.error}")
            return NodeOutcome(success=False, error=retry_outcome.error)

        logger.info(f"Node {node.name} completed")
        if not node.next_ids:
            return NodeOutcome(success=True, output=retry_outcome.output)

        return self.dispatcher.dispatch(context, node, retry_outcome.output, depth)

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Get a workflow by ID, or None."""
        return self.registry.get_workflow(workflow_id)

    def get_user_workflows(self, owner_id: Any) -> List[Workflow]:
        """Get all workflows of an owner."""
        return self.registry.get_user_workflows(str(owner_id))

    def delete_workflow(self, workflow_id: str, owner_id: Any) -> bool:
        """Delete an owned workflow; False if missing or not owned."""
        return self.registry.delete_workflow(workflow_id, str(owner_id))

    def set_workflow_active(self, workflow_id: str, owner_id: Any, is_active: bool) -> bool:
        """Toggle an owned workflow's active flag; False if missing or not owned."""
        try:
            self.registry.set_active(workflow_id, str(owner_id), is_active)
            return True
        except WorkflowEngineError as e:
            logger.warning(f"Cannot change active flag of {workflow_id}: {e.message}")
            return False

    def is_running(self, workflow_id: str) -> bool:
        """Check whether an execution of the workflow is in flight."""
        return self.guard.is_running(workflow_id)

    def get_workflow_templates(self) -> List[WorkflowTemplate]:
        """Get starter workflow definitions."""
        return workflow_templates()
