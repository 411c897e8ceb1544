"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    WorkflowValidationError,
    NotFoundError,
    AccessDeniedError,
    AlreadyRunningError,
    AgentExecutionError,
    ConditionEvaluationError,
    AgentRegistryError,
    StorageError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .agent_registry import AgentRegistry
from .conditions import evaluate_condition, parse_condition
from .execution_engine import WorkflowEngine

__all__ = [
    "WorkflowEngineError",
    "WorkflowValidationError",
    "NotFoundError",
    "AccessDeniedError",
    "AlreadyRunningError",
    "AgentExecutionError",
    "ConditionEvaluationError",
    "AgentRegistryError",
    "StorageError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "AgentRegistry",
    "evaluate_condition",
    "parse_condition",
    "WorkflowEngine",
]
