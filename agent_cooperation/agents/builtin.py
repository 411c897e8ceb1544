"""Built-in agents shared by every owner."""

from datetime import datetime
from typing import Any, Dict, Optional

from ..core.agent_registry import AgentRegistry
from ..core.exceptions import AgentRegistryError
from ..core.logging import get_logger

logger = get_logger(__name__)


def echo_agent(node_input: Any, workflow_id: Optional[str] = None, **kwargs) -> Any:
    """Return the node input unchanged."""
    logger.debug(f"Echo agent called in workflow {workflow_id}")
    return node_input


def notify_agent(node_input: Any, workflow_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
    """
    Produce a notification record for the received input.

    Args:
        node_input: Payload to notify about
        workflow_id: Workflow the notification belongs to

    Returns:
        Dictionary describing the notification
    """
    logger.info(f"Notification from workflow {workflow_id}: {node_input}")
    return {
        "notified": True,
        "workflow_id": workflow_id,
        "payload": node_input,
        "sent_at": datetime.utcnow().isoformat()
    }


def balance_check_agent(node_input: Any, workflow_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
    """
    Compare a balance against a minimum.

    Expects a dictionary with ``balance`` and optionally ``min_balance``
    (defaults to 0). The output keeps both values so that conditions such as
    ``balance < min_balance`` can be evaluated against it.
    """
    if not isinstance(node_input, dict) or "balance" not in node_input:
        raise ValueError("balance_check requires an input with a 'balance' field")

    balance = float(node_input["balance"])
    min_balance = float(node_input.get("min_balance", 0))

    result = {
        "balance": balance,
        "min_balance": min_balance,
        "low": balance < min_balance
    }
    logger.debug(f"Balance check result: {result}")
    return result


def count_items_agent(node_input: Any, workflow_id: Optional[str] = None, **kwargs) -> Dict[str, Any]:
    """Count the items of a list input; ``{"items": [...]}`` is accepted too."""
    items = node_input.get("items", []) if isinstance(node_input, dict) else node_input
    if items is None:
        items = []
    if not isinstance(items, (list, tuple)):
        raise ValueError("count_items requires a list input")
    return {"count": len(items), "items": list(items)}


BUILTIN_AGENTS = [
    ("echo", echo_agent, "Returns its input unchanged"),
    ("notify", notify_agent, "Records a notification for its input"),
    ("balance_check", balance_check_agent, "Compares a balance against a minimum balance"),
    ("count_items", count_items_agent, "Counts the items of a list"),
]


def register_builtin_agents(registry: AgentRegistry) -> None:
    """Register the built-in agents as shared agents, skipping existing ones."""
    for agent_ref, function, description in BUILTIN_AGENTS:
        if registry.resolve(agent_ref, None):
            logger.info(f"Agent already exists: {agent_ref}")
            continue
        try:
            registry.register_agent(agent_ref, function, description)
        except AgentRegistryError as e:
            logger.warning(f"Failed to register agent {agent_ref}: {e.message}")

    logger.info("Built-in agents registration completed")
