"""Collaborator interfaces consumed by the workflow engine."""

from typing import Any, Dict, List, Protocol, Union

from ..models.core import AgentDescriptor, AgentRef, AgentRunResult, WorkflowPlan


class AgentRunner(Protocol):
    """Executes one agent task and reports a structured outcome.

    Implementations must tolerate being called again for the same task, since
    the retry controller re-invokes failed attempts.
    """

    def invoke(self, agent_ref: AgentRef, owner_id: str, context: Dict[str, Any]) -> Union[AgentRunResult, Dict[str, Any]]:
        ...


class AgentLookup(Protocol):
    """Checks that an agent reference exists for an owner."""

    def resolve(self, agent_ref: AgentRef, owner_id: str) -> bool:
        ...


class AuditSink(Protocol):
    """Best-effort recorder of workflow events."""

    def append_event(self, owner_id: str, text: str, metadata: Dict[str, Any]) -> None:
        ...


class WorkflowPlanner(Protocol):
    """Turns a free-text request into a plan over the owner's agents.

    Typically backed by a language model; dict plans are validated into
    ``WorkflowPlan`` and accept the camelCase keys such models tend to emit.
    """

    def plan(self, description: str, agents: List[AgentDescriptor]) -> Union[WorkflowPlan, Dict[str, Any]]:
        ...
