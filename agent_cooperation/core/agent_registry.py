"""Agent Registry: in-process agents usable as Agent Lookup and Agent Runner."""

import inspect
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from ..models.core import AgentExecutionData, AgentRef, AgentRunResult
from .exceptions import AgentRegistryError, NotFoundError
from .logging import get_logger

logger = get_logger(__name__)

AgentKey = Tuple[Optional[str], str]


class AgentRegistry:
    """Registry of Python callables that workflow nodes reference as agents.

    An agent is registered either for one owner or shared with every owner
    (``owner_id=None``). Owner-scoped agents shadow shared ones with the same
    reference. Agents are called as ``function(input)``, with a ``workflow_id``
    keyword when their signature accepts one or takes ``**kwargs``. The
    return value becomes the execution result, and an ``AgentRunResult`` may be
    returned to report a failure explicitly.
    """

    def __init__(self):
        self._agents: Dict[AgentKey, Callable] = {}
        self._descriptions: Dict[AgentKey, str] = {}
        self._takes_workflow_id: Dict[AgentKey, bool] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _key(agent_ref: AgentRef, owner_id: Optional[Any]) -> AgentKey:
        return (str(owner_id) if owner_id is not None else None, str(agent_ref).strip())

    def register_agent(self, agent_ref: AgentRef, function: Callable, description: str = "",
                       owner_id: Optional[Any] = None) -> None:
        """Register a Python function as an agent.

        Args:
            agent_ref: Reference nodes use to address the agent
            function: Callable taking the node input, optionally a workflow_id keyword
            description: Optional description of the agent's purpose
            owner_id: Owner the agent belongs to; None shares it with everyone

        Raises:
            AgentRegistryError: If the reference is taken or the function is invalid
        """
        if agent_ref is None or not str(agent_ref).strip():
            raise AgentRegistryError("Agent reference cannot be empty")

        if not callable(function):
            raise AgentRegistryError(f"Agent '{agent_ref}' must be callable", agent_ref=agent_ref)

        try:
            parameters = list(inspect.signature(function).parameters.values())
        except (ValueError, TypeError) as e:
            raise AgentRegistryError(f"Cannot inspect function signature for agent '{agent_ref}': {e}")

        positional_kinds = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD,
                            inspect.Parameter.VAR_POSITIONAL)
        if not any(p.kind in positional_kinds for p in parameters):
            raise AgentRegistryError(
                f"Agent '{agent_ref}' must accept the node input as its first argument",
                agent_ref=agent_ref
            )
        # The first positional slot always receives the node input
        takes_workflow_id = any(
            p.kind is inspect.Parameter.VAR_KEYWORD
            or (p.name == "workflow_id" and (p.kind is inspect.Parameter.KEYWORD_ONLY
                                             or (p.kind is inspect.Parameter.POSITIONAL_OR_KEYWORD and i > 0)))
            for i, p in enumerate(parameters)
        )

        key = self._key(agent_ref, owner_id)
        with self._lock:
            if key in self._agents:
                raise AgentRegistryError(f"Agent '{agent_ref}' is already registered", agent_ref=agent_ref)
            self._agents[key] = function
            self._descriptions[key] = description.strip() if description else ""
            self._takes_workflow_id[key] = takes_workflow_id

        scope = f"owner {owner_id}" if owner_id is not None else "all owners"
        logger.info(f"Registered agent '{agent_ref}' for {scope}")

    def unregister_agent(self, agent_ref: AgentRef, owner_id: Optional[Any] = None) -> bool:
        """Remove an agent; False if it was not registered."""
        key = self._key(agent_ref, owner_id)
        with self._lock:
            if key not in self._agents:
                return False
            del self._agents[key]
            self._descriptions.pop(key, None)
            self._takes_workflow_id.pop(key, None)
        logger.info(f"Unregistered agent '{agent_ref}'")
        return True

    def get_agent(self, agent_ref: AgentRef, owner_id: Any) -> Callable:
        """Return the agent visible to the owner.

        Raises:
            NotFoundError: If neither an owned nor a shared agent matches
        """
        with self._lock:
            return self._agents[self._find_key(agent_ref, owner_id)]

    def _find_key(self, agent_ref: AgentRef, owner_id: Any) -> AgentKey:
        with self._lock:
            for key in (self._key(agent_ref, owner_id), self._key(agent_ref, None)):
                if key in self._agents:
                    return key
        raise NotFoundError(f"Agent {agent_ref} not found", resource_type="agent", resource_id=agent_ref)

    def resolve(self, agent_ref: AgentRef, owner_id: Any) -> bool:
        """Check that the owner can use the agent."""
        try:
            self.get_agent(agent_ref, owner_id)
            return True
        except NotFoundError:
            return False

    def list_agents(self, owner_id: Optional[Any] = None) -> Dict[str, str]:
        """List agents visible to an owner (shared ones when owner_id is None)."""
        owner_key = str(owner_id) if owner_id is not None else None
        with self._lock:
            visible = {ref: desc for (owner, ref), desc in self._descriptions.items() if owner is None}
            if owner_key is not None:
                visible.update({ref: desc for (owner, ref), desc in self._descriptions.items() if owner == owner_key})
        return visible

    def invoke(self, agent_ref: AgentRef, owner_id: Any, context: Dict[str, Any]) -> AgentRunResult:
        """Run an agent; lookup errors and agent exceptions become failed results."""
        try:
            with self._lock:
                key = self._find_key(agent_ref, owner_id)
                function = self._agents[key]
                takes_workflow_id = self._takes_workflow_id[key]
        except NotFoundError as e:
            return AgentRunResult(success=False, error=e.message)

        kwargs = {"workflow_id": context.get("workflow_id")} if takes_workflow_id else {}

        try:
            result = function(context.get("input"), **kwargs)
        except Exception as e:
            logger.warning(f"Agent '{agent_ref}' raised {type(e).__name__}: {str(e)}")
            return AgentRunResult(success=False, error=str(e) or type(e).__name__)

        if isinstance(result, AgentRunResult):
            return result
        return AgentRunResult(
            success=True,
            data=AgentExecutionData(success=True, execution_result=result)
        )
