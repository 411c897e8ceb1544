"""Data models for the agent cooperation engine."""

from .core import (
    AgentRef,
    EdgeType,
    AuditEventType,
    WorkflowNode,
    Workflow,
    NodeResult,
    WorkflowResult,
    NodeOutcome,
    AgentExecutionData,
    AgentRunResult,
    CreateWorkflowResult,
    WorkflowTemplate,
    WorkflowSummary,
    AgentDescriptor,
    WorkflowPlan,
    DescriptionWorkflowResult,
)

__all__ = [
    "AgentRef",
    "EdgeType",
    "AuditEventType",
    "WorkflowNode",
    "Workflow",
    "NodeResult",
    "WorkflowResult",
    "NodeOutcome",
    "AgentExecutionData",
    "AgentRunResult",
    "CreateWorkflowResult",
    "WorkflowTemplate",
    "WorkflowSummary",
    "AgentDescriptor",
    "WorkflowPlan",
    "DescriptionWorkflowResult",
]
