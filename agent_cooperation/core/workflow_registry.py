"""Workflow Registry for workflow definition handling."""

import threading
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from ..models.core import AuditEventType, Workflow, WorkflowNode
from .exceptions import AccessDeniedError, NotFoundError, WorkflowValidationError
from .interfaces import AgentLookup, AuditSink
from .logging import get_logger

logger = get_logger(__name__)

NodeSpec = Union[WorkflowNode, Dict[str, Any]]


class WorkflowRegistry:
    """Owns workflow definitions keyed by ID."""

    def __init__(self, agent_lookup: AgentLookup, audit_sink: Optional[AuditSink] = None):
        """Initialize the registry.

        Args:
            agent_lookup: Service used to validate node agent references
            audit_sink: Optional best-effort event recorder
        """
        self.agent_lookup = agent_lookup
        self.audit_sink = audit_sink
        self._workflows: Dict[str, Workflow] = {}
        self._lock = threading.RLock()

    def create_workflow(self, owner_id: str, name: str, description: str, nodes: Sequence[NodeSpec]) -> str:
        """
        Validate and register a new workflow.

        Args:
            owner_id: Owner of the new workflow
            name: Workflow name
            description: Workflow description
            nodes: Ordered node definitions; the first one is the start node

        Returns:
            str: Unique workflow identifier

        Raises:
            WorkflowValidationError: If the node list is empty or malformed
            NotFoundError: If a node references an agent the owner cannot resolve
        """
        logger.info(f"Creating workflow '{name}' for owner {owner_id}")

        if not nodes:
            raise WorkflowValidationError("Workflow must have at least one node", workflow_name=name)

        parsed_nodes = self._parse_nodes(nodes, name)

        for node in parsed_nodes:
            if not self.agent_lookup.resolve(node.agent_ref, owner_id):
                logger.warning(f"Agent {node.agent_ref} not found for owner {owner_id}")
                raise NotFoundError(
                    f"Agent {node.agent_ref} not found",
                    resource_type="agent", resource_id=node.agent_ref
                )

        workflow_id = self._generate_unique_id(owner_id)
        workflow = Workflow(
            id=workflow_id,
            name=name,
            description=description,
            owner_id=owner_id,
            nodes=parsed_nodes,
            start_node_id=parsed_nodes[0].id,
            is_active=False,
            created_at=datetime.utcnow()
        )

        with self._lock:
            self._workflows[workflow_id] = workflow

        self.record_event(
            owner_id,
            f'Workflow "{name}" created with {len(parsed_nodes)} nodes',
            {"type": AuditEventType.WORKFLOW_CREATED.value, "workflow_id": workflow_id, "node_count": len(parsed_nodes)}
        )

        logger.info(f"Successfully created workflow '{name}' with ID: {workflow_id}")
        return workflow_id

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        """Return the workflow with the given ID, or None."""
        with self._lock:
            return self._workflows.get(workflow_id)

    def get_user_workflows(self, owner_id: str) -> List[Workflow]:
        """Return all workflows owned by the given owner, oldest first."""
        with self._lock:
            return [w for w in self._workflows.values() if w.owner_id == owner_id]

    def delete_workflow(self, workflow_id: str, owner_id: str) -> bool:
        """
        Delete a workflow owned by the caller.

        Returns:
            bool: True if deleted, False if missing or owned by someone else
        """
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None or workflow.owner_id != owner_id:
                logger.warning(f"Workflow '{workflow_id}' not deleted for owner {owner_id}")
                return False
            del self._workflows[workflow_id]

        logger.info(f"Deleted workflow {workflow_id}")
        return True

    def set_active(self, workflow_id: str, owner_id: str, is_active: bool) -> Workflow:
        """Toggle the active flag of an owned workflow.

        Raises:
            NotFoundError: If the workflow does not exist
            AccessDeniedError: If the caller is not the owner
        """
        with self._lock:
            workflow = self.require_owned(workflow_id, owner_id)
            workflow.is_active = is_active
        logger.info(f"Workflow {workflow_id} is_active={is_active}")
        return workflow

    def mark_run(self, workflow_id: str, when: datetime) -> None:
        """Record the start time of the latest execution."""
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is not None:
                workflow.last_run = when

    def require_owned(self, workflow_id: str, owner_id: str) -> Workflow:
        """Return the workflow, checking existence and ownership.

        Raises:
            NotFoundError: If the workflow does not exist
            AccessDeniedError: If the caller is not the owner
        """
        workflow = self.get_workflow(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow not found", resource_type="workflow", resource_id=workflow_id)
        if workflow.owner_id != owner_id:
            raise AccessDeniedError("Access denied", workflow_id=workflow_id, owner_id=owner_id)
        return workflow

    def record_event(self, owner_id: str, text: str, metadata: Dict[str, Any]) -> None:
        """Append an audit event; failures are logged and never propagate."""
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.append_event(owner_id, text, metadata)
        except Exception as e:
            logger.warning(f"Failed to record audit event '{metadata.get('type')}': {str(e)}")

    @staticmethod
    def _parse_nodes(nodes: Sequence[NodeSpec], name: str) -> List[WorkflowNode]:
        try:
            parsed = [
                node if isinstance(node, WorkflowNode) else WorkflowNode.model_validate(node)
                for node in nodes
            ]
        except ValidationError as e:
            errors = [err["msg"] for err in e.errors()]
            raise WorkflowValidationError(
                f"Invalid node definition: {'; '.join(errors)}",
                validation_errors=errors, workflow_name=name
            ) from e

        node_ids = [node.id for node in parsed]
        if len(node_ids) != len(set(node_ids)):
            raise WorkflowValidationError("All node IDs must be unique", workflow_name=name)

        return parsed

    @staticmethod
    def _generate_unique_id(owner_id: str) -> str:
        """Owner and millisecond timestamp, plus a random suffix for same-tick creations."""
        return f"wf_{owner_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
