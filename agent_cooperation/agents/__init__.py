"""Bundled agents for the agent cooperation engine."""

from .builtin import (
    echo_agent,
    notify_agent,
    balance_check_agent,
    count_items_agent,
    register_builtin_agents
)

__all__ = [
    "echo_agent",
    "notify_agent",
    "balance_check_agent",
    "count_items_agent",
    "register_builtin_agents"
]
