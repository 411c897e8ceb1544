"""Core Pydantic models for the agent cooperation engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


AgentRef = Union[int, str]


class EdgeType(str, Enum):
    """Dispatch policy applied to a node's successors."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    FAN_OUT = "fan-out"
    FAN_IN = "fan-in"


class AuditEventType(str, Enum):
    """Enumeration of audit event types."""
    WORKFLOW_CREATED = "workflow_created"
    WORKFLOW_COMPLETED = "workflow_completed"


class WorkflowNode(BaseModel):
    """One step of a workflow: an agent reference plus its successors."""
    id: str = Field(..., description="Unique identifier for the node within its workflow")
    agent_ref: AgentRef = Field(..., description="Opaque reference to the agent to run")
    name: str = Field(..., description="Human readable node name")
    # Unrecognised strings are kept and dispatched as sequential.
    edge_type: Union[EdgeType, str] = Field(default=EdgeType.SEQUENTIAL, description="How next_ids are interpreted")
    next_ids: List[str] = Field(default_factory=list, description="Ordered successor node IDs")
    condition: Optional[str] = Field(None, description="Condition used by conditional nodes")
    max_retries: int = Field(default=0, description="Retries allowed after the first attempt")
    timeout_ms: Optional[int] = Field(None, description="Reserved; not enforced by the engine")

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        """Ensure node ID is not blank."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value.strip()

    @field_validator('edge_type', mode='before')
    @classmethod
    def normalize_edge_type(cls, edge_type):
        """Map known edge type strings onto EdgeType members."""
        if edge_type is None:
            return EdgeType.SEQUENTIAL
        try:
            return EdgeType(edge_type)
        except ValueError:
            return edge_type

    @field_validator('next_ids', mode='before')
    @classmethod
    def default_next_ids(cls, next_ids):
        """Treat a missing successor list as empty."""
        return next_ids if next_ids is not None else []

    @field_validator('max_retries')
    @classmethod
    def validate_max_retries(cls, max_retries):
        """Ensure retries are non-negative."""
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        return max_retries

    @field_validator('timeout_ms')
    @classmethod
    def validate_timeout(cls, timeout_ms):
        """Ensure timeout is positive if specified."""
        if timeout_ms is not None and timeout_ms <= 0:
            raise ValueError("timeout_ms must be a positive integer")
        return timeout_ms


class Workflow(BaseModel):
    """An owned, named graph of nodes."""
    id: str = Field(..., description="Opaque workflow identifier")
    name: str = Field(..., description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    owner_id: str = Field(..., description="Identifier of the owning user")
    nodes: List[WorkflowNode] = Field(..., description="Ordered list of nodes")
    start_node_id: str = Field(..., description="ID of the node traversal starts at")
    is_active: bool = Field(default=False, description="Whether the workflow is enabled")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    last_run: Optional[datetime] = Field(None, description="Start time of the most recent execution")

    @model_validator(mode='after')
    def validate_start_node(self):
        """The start node must be one of the workflow's nodes."""
        if self.start_node_id not in {node.id for node in self.nodes}:
            raise ValueError(f"Start node '{self.start_node_id}' does not exist in nodes")
        return self

    def find_node(self, node_id: str) -> Optional[WorkflowNode]:
        """Return the node with the given ID, or None."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class NodeResult(BaseModel):
    """Recorded outcome of one node invocation in the per-execution log."""
    node_id: str
    agent_ref: AgentRef
    success: bool
    output: Any = None
    execution_time_ms: int = 0
    error: Optional[str] = None
    retries: int = 0


class WorkflowResult(BaseModel):
    """Terminal aggregate returned by an execution."""
    workflow_id: str
    success: bool
    node_results: List[NodeResult] = Field(default_factory=list)
    total_execution_time_ms: int = 0
    final_output: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = Field(None, description="Error class when the run was refused before starting")


class NodeOutcome(BaseModel):
    """Value passed back up the recursive traversal."""
    success: bool
    output: Any = None
    error: Optional[str] = None


class AgentExecutionData(BaseModel):
    """Nested task-execution payload returned by an Agent Runner."""
    success: bool = False
    execution_result: Any = Field(default=None, validation_alias=AliasChoices("execution_result", "executionResult"))
    message: Optional[str] = None


class AgentRunResult(BaseModel):
    """Top-level Agent Runner response."""
    success: bool = False
    data: Optional[AgentExecutionData] = None
    error: Optional[str] = None


class CreateWorkflowResult(BaseModel):
    """Outcome of a create call; failures carry an error instead of raising."""
    success: bool
    workflow_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class WorkflowTemplate(BaseModel):
    """A starter workflow definition."""
    name: str
    description: str
    nodes: List[WorkflowNode]


class WorkflowSummary(BaseModel):
    """Summary information about a workflow."""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    description: str = Field(..., description="Workflow description")
    owner_id: str = Field(..., description="Owner ID")
    is_active: bool = Field(..., description="Whether the workflow is enabled")
    created_at: datetime = Field(..., description="Creation timestamp")
    last_run: Optional[datetime] = Field(None, description="Most recent execution start")
    node_count: int = Field(..., description="Number of nodes in the workflow")

    @classmethod
    def from_workflow(cls, workflow: Workflow) -> "WorkflowSummary":
        return cls(
            id=workflow.id,
            name=workflow.name,
            description=workflow.description,
            owner_id=workflow.owner_id,
            is_active=workflow.is_active,
            created_at=workflow.created_at,
            last_run=workflow.last_run,
            node_count=len(workflow.nodes)
        )


class AgentDescriptor(BaseModel):
    """An agent offered to a workflow planner."""
    agent_ref: AgentRef
    name: str
    description: str = ""


class WorkflowPlan(BaseModel):
    """A planner's proposal for building a workflow out of existing agents."""
    can_build: bool = Field(default=False, validation_alias=AliasChoices("can_build", "canBuild"))
    plan_text: str = Field(default="", validation_alias=AliasChoices("plan_text", "planText"))
    steps: List[str] = Field(default_factory=list)
    used_agent_refs: List[AgentRef] = Field(
        default_factory=list, validation_alias=AliasChoices("used_agent_refs", "usedAgentIds")
    )
    connection_type: Union[EdgeType, str] = Field(
        default=EdgeType.SEQUENTIAL, validation_alias=AliasChoices("connection_type", "connectionType")
    )
    missing_agents: List[str] = Field(
        default_factory=list, validation_alias=AliasChoices("missing_agents", "missingAgents")
    )


class DescriptionWorkflowResult(BaseModel):
    """Outcome of building a workflow from a free-text description."""
    success: bool
    plan: Optional[str] = None
    workflow_id: Optional[str] = None
    suggested_agents: List[str] = Field(default_factory=list)
    error: Optional[str] = None
