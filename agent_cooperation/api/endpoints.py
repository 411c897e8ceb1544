"""FastAPI REST endpoints for the agent cooperation engine."""

from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from ..core.agent_registry import AgentRegistry
from ..core.exceptions import WorkflowEngineError, create_error_response
from ..core.execution_engine import WorkflowEngine
from ..core.logging import get_logger
from ..core.middleware import status_code_for_error
from ..models.core import (
    AgentDescriptor,
    DescriptionWorkflowResult,
    Workflow,
    WorkflowNode,
    WorkflowResult,
    WorkflowSummary,
    WorkflowTemplate
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["workflow"])

# error_code of a returned result -> HTTP status
ERROR_CODE_STATUS = {
    "WorkflowValidationError": status.HTTP_400_BAD_REQUEST,
    "AccessDeniedError": status.HTTP_403_FORBIDDEN,
    "NotFoundError": status.HTTP_404_NOT_FOUND,
    "AlreadyRunningError": status.HTTP_409_CONFLICT,
}


def get_engine(request: Request) -> WorkflowEngine:
    """Dependency to get the workflow engine."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow engine not initialized"
        )
    return engine


def get_agent_registry(request: Request) -> AgentRegistry:
    """Dependency to get the agent registry."""
    registry = getattr(request.app.state, "agent_registry", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Agent registry not initialized"
        )
    return registry


def get_owner_id(x_owner_id: str = Header(..., alias="X-Owner-ID")) -> str:
    """Dependency to get the calling owner from the X-Owner-ID header."""
    if not x_owner_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "MissingOwner", "message": "X-Owner-ID header cannot be empty"}
        )
    return x_owner_id.strip()


def _raise_http(error: WorkflowEngineError):
    raise HTTPException(status_code=status_code_for_error(error), detail=create_error_response(error))


# Request/Response models
class CreateWorkflowRequest(BaseModel):
    """Request model for creating a workflow."""
    name: str = Field(..., description="Workflow name")
    description: str = Field(default="", description="Workflow description")
    nodes: List[Dict[str, Any]] = Field(..., description="Node definitions; the first node is the start node")


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="Identifier of the created workflow")
    message: str = Field(..., description="Success message")


class ExecuteWorkflowRequest(BaseModel):
    """Request model for executing a workflow."""
    input: Any = Field(default=None, description="Input handed to the start node")


class DescribeWorkflowRequest(BaseModel):
    """Request model for planning a workflow from text."""
    description: str = Field(..., min_length=1, description="What the workflow should do")


class ActiveStateResponse(BaseModel):
    """Response model for activation changes."""
    workflow_id: str
    is_active: bool


# Endpoints

@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new workflow"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
) -> CreateWorkflowResponse:
    """
    Create a workflow owned by the caller.

    Raises:
        HTTPException: 400 for invalid definitions, 404 for unknown agents
    """
    logger.info(f"Creating workflow '{request.name}' for owner {owner_id}")

    result = engine.create_workflow(owner_id, request.name, request.description, request.nodes)
    if not result.success:
        raise HTTPException(
            status_code=ERROR_CODE_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail={
                "error": result.error_code or "InternalError",
                "message": result.error
            }
        )

    return CreateWorkflowResponse(
        workflow_id=result.workflow_id,
        message=f"Workflow '{request.name}' created successfully"
    )


@router.post(
    "/workflows/from-description",
    response_model=DescriptionWorkflowResult,
    summary="Plan and create a workflow from a description"
)
def create_workflow_from_description(
    request: DescribeWorkflowRequest,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine),
    registry: AgentRegistry = Depends(get_agent_registry)
) -> DescriptionWorkflowResult:
    """
    Let the configured planner chain the caller's agents into a workflow.

    Raises:
        HTTPException: 503 if no planner is configured
    """
    if engine.planner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "PlannerUnavailable", "message": "No workflow planner configured"}
        )

    agents = [
        AgentDescriptor(agent_ref=ref, name=ref, description=description)
        for ref, description in registry.list_agents(owner_id).items()
    ]
    return engine.create_from_description(owner_id, request.description, agents)


@router.get("/workflows", response_model=List[WorkflowSummary], summary="List the caller's workflows")
async def list_workflows(
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
) -> List[WorkflowSummary]:
    return [WorkflowSummary.from_workflow(w) for w in engine.get_user_workflows(owner_id)]


@router.get("/workflows/{workflow_id}", response_model=Workflow, summary="Get a workflow")
async def get_workflow(
    workflow_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
) -> Workflow:
    """Return a workflow the caller owns."""
    try:
        return engine.registry.require_owned(workflow_id, owner_id)
    except WorkflowEngineError as e:
        _raise_http(e)


@router.delete(
    "/workflows/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a workflow"
)
async def delete_workflow(
    workflow_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
):
    """Delete a workflow; missing and foreign workflows both answer 404."""
    if not engine.delete_workflow(workflow_id, owner_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "WorkflowNotFound",
                "message": f"Workflow with ID '{workflow_id}' not found",
                "details": {"workflow_id": workflow_id}
            }
        )
    logger.info(f"Deleted workflow {workflow_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _set_active(engine: WorkflowEngine, workflow_id: str, owner_id: str, is_active: bool) -> ActiveStateResponse:
    try:
        engine.registry.set_active(workflow_id, owner_id, is_active)
    except WorkflowEngineError as e:
        _raise_http(e)
    return ActiveStateResponse(workflow_id=workflow_id, is_active=is_active)


@router.post("/workflows/{workflow_id}/activate", response_model=ActiveStateResponse)
async def activate_workflow(
    workflow_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
) -> ActiveStateResponse:
    return _set_active(engine, workflow_id, owner_id, True)


@router.post("/workflows/{workflow_id}/deactivate", response_model=ActiveStateResponse)
async def deactivate_workflow(
    workflow_id: str,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
) -> ActiveStateResponse:
    return _set_active(engine, workflow_id, owner_id, False)


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=WorkflowResult,
    summary="Execute a workflow",
    description="Run the workflow synchronously and return its aggregated result"
)
def execute_workflow(
    workflow_id: str,
    request: Optional[ExecuteWorkflowRequest] = None,
    owner_id: str = Depends(get_owner_id),
    engine: WorkflowEngine = Depends(get_engine)
) -> WorkflowResult:
    """
    Execute a workflow.

    Declared as a plain function so FastAPI runs the blocking traversal in its
    thread pool.

    Raises:
        HTTPException: 404/403 if the workflow is missing or foreign, 409 if it is running
    """
    initial_input = request.input if request is not None else None
    result = engine.execute_workflow(workflow_id, owner_id, initial_input)

    # Set only when the run was refused, e.g. by a concurrent execution
    if result.error_code is not None:
        raise HTTPException(
            status_code=ERROR_CODE_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail={"error": result.error_code, "message": result.error}
        )
    return result


@router.get("/templates", response_model=List[WorkflowTemplate], summary="List starter workflow templates")
async def list_templates(engine: WorkflowEngine = Depends(get_engine)) -> List[WorkflowTemplate]:
    return engine.get_workflow_templates()


@router.get("/agents", summary="List agents available to the caller")
async def list_agents(
    owner_id: str = Depends(get_owner_id),
    registry: AgentRegistry = Depends(get_agent_registry)
) -> Dict[str, Any]:
    agents = registry.list_agents(owner_id)
    return {"agents": agents, "total_count": len(agents)}


@router.get("/audit", summary="List the caller's audit events")
async def list_audit_events(
    request: Request,
    event_type: Optional[str] = None,
    limit: int = 100,
    owner_id: str = Depends(get_owner_id)
) -> Dict[str, Any]:
    """Return recorded audit events, newest first; empty when auditing is disabled."""
    audit_sink = getattr(request.app.state, "audit_sink", None)
    if audit_sink is None:
        return {"events": [], "total_count": 0}

    try:
        events = audit_sink.list_events(owner_id, event_type=event_type, limit=limit)
    except WorkflowEngineError as e:
        _raise_http(e)
    return {"events": events, "total_count": len(events)}
