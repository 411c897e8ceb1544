"""Starter workflow definitions built on the bundled agents."""

from typing import List

from ..models.core import EdgeType, WorkflowNode, WorkflowTemplate


def workflow_templates() -> List[WorkflowTemplate]:
    """Return the starter templates.

    Agent references point at the agents in ``agent_cooperation.agents.builtin``;
    owners replace them with their own agents before creating a workflow.
    """
    return [
        WorkflowTemplate(
            name="Price Monitor -> Alert",
            description="Watch a price feed and notify when it changes",
            nodes=[
                WorkflowNode(id="monitor", agent_ref="echo", name="Price Monitor",
                             edge_type=EdgeType.SEQUENTIAL, next_ids=["alert"]),
                WorkflowNode(id="alert", agent_ref="notify", name="Notifier"),
            ]
        ),
        WorkflowTemplate(
            name="Multi-Source Compare",
            description="Query two price sources, gather both quotes and send them on",
            nodes=[
                WorkflowNode(id="prices", agent_ref="echo", name="Price Request",
                             edge_type=EdgeType.SEQUENTIAL, next_ids=["source_a", "source_b", "compare"]),
                WorkflowNode(id="source_a", agent_ref="echo", name="Source A Price"),
                WorkflowNode(id="source_b", agent_ref="echo", name="Source B Price"),
                # fan-in gathers source_a/source_b outputs and forwards them to notify
                WorkflowNode(id="compare", agent_ref="echo", name="Compare Prices",
                             edge_type=EdgeType.FAN_IN, next_ids=["notify", "source_a", "source_b"]),
                WorkflowNode(id="notify", agent_ref="notify", name="Send Alert"),
            ]
        ),
        WorkflowTemplate(
            name="Balance Check -> Decision",
            description="Check a balance and alert when it drops below the minimum",
            nodes=[
                WorkflowNode(id="check", agent_ref="balance_check", name="Balance Checker",
                             edge_type=EdgeType.CONDITIONAL, condition="balance < min_balance",
                             next_ids=["alert", "ok"]),
                WorkflowNode(id="alert", agent_ref="notify", name="Low Balance Alert"),
                WorkflowNode(id="ok", agent_ref="echo", name="Balance OK Log"),
            ]
        ),
    ]
