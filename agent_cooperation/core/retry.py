"""Per-node retry controller around Agent Runner invocations."""

import time
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from ..models.core import AgentRunResult, WorkflowNode
from .exceptions import AgentExecutionError
from .interfaces import AgentRunner
from .logging import get_logger, RetryLogger

logger = get_logger(__name__)

DEFAULT_FAILURE_MESSAGE = "Agent execution failed"


class RetryOutcome:
    """Final result of one node's attempt-set."""

    def __init__(self, success: bool, output: Any = None, error: Optional[str] = None,
                 retries: int = 0, attempts: int = 1):
        self.success = success
        self.output = output
        self.error = error
        self.retries = retries
        self.attempts = attempts

    def __repr__(self):
        return (f"RetryOutcome(success={self.success}, retries={self.retries}, "
                f"attempts={self.attempts}, error={self.error!r})")


class RetryController:
    """Runs a node's agent up to ``max_retries + 1`` times with linear backoff.

    The delay after the n-th failed attempt is ``backoff_base_ms * n``.
    """

    def __init__(self, agent_runner: AgentRunner, backoff_base_ms: int = 1000,
                 sleep: Optional[Callable[[float], None]] = None):
        """Initialize the retry controller.

        Args:
            agent_runner: Runner used for every attempt
            backoff_base_ms: Base delay multiplied by the number of attempts made
            sleep: Sleep function taking seconds; defaults to time.sleep
        """
        self.agent_runner = agent_runner
        self.backoff_base_ms = backoff_base_ms
        self._sleep = sleep or time.sleep
        self._retry_logger = RetryLogger("node")

    def run(self, node: WorkflowNode, owner_id: str, context: Dict[str, Any]) -> RetryOutcome:
        """
        Invoke the node's agent until it succeeds or attempts run out.

        Args:
            node: Node whose agent is invoked
            owner_id: Owner on whose behalf the agent runs
            context: Runner context ({"input": ..., "workflow_id": ...})

        Returns:
            RetryOutcome carrying the output or the last failure message
        """
        max_attempts = node.max_retries + 1
        last_error = DEFAULT_FAILURE_MESSAGE

        for attempt in range(max_attempts):
            logger.info(f"Executing node: {node.name} (agent {node.agent_ref}), attempt {attempt + 1}/{max_attempts}")
            try:
                output = self._invoke_once(node, owner_id, context, attempt)
            except AgentExecutionError as e:
                last_error = e.raw_message
                attempts_made = attempt + 1
                if attempts_made < max_attempts:
                    delay_ms = self.backoff_base_ms * attempts_made
                    self._retry_logger.log_retry_attempt(node.name, last_error, attempts_made, max_attempts, delay_ms)
                    self._sleep(delay_ms / 1000.0)
                continue

            if attempt > 0:
                self._retry_logger.log_retry_success(node.name, attempt + 1)
            return RetryOutcome(True, output=output, retries=attempt, attempts=attempt + 1)

        self._retry_logger.log_retry_exhausted(node.name, last_error, max_attempts)
        return RetryOutcome(False, error=last_error, retries=max_attempts - 1, attempts=max_attempts)

    def _invoke_once(self, node: WorkflowNode, owner_id: str, context: Dict[str, Any], attempt: int) -> Any:
        """Run a single attempt; raise AgentExecutionError unless both success flags are set."""
        try:
            raw_result = self.agent_runner.invoke(node.agent_ref, owner_id, context)
        except Exception as e:
            raise AgentExecutionError(
                str(e) or type(e).__name__,
                agent_ref=node.agent_ref, node_id=node.id, attempt=attempt
            ) from e

        result = self._coerce_result(raw_result, node, attempt)

        if result.success and result.data is not None and result.data.success:
            return result.data.execution_result

        message = result.error or (result.data.message if result.data else None) or DEFAULT_FAILURE_MESSAGE
        raise AgentExecutionError(message, agent_ref=node.agent_ref, node_id=node.id, attempt=attempt)

    @staticmethod
    def _coerce_result(raw_result: Any, node: WorkflowNode, attempt: int) -> AgentRunResult:
        if isinstance(raw_result, AgentRunResult):
            return raw_result
        try:
            return AgentRunResult.model_validate(raw_result)
        except ValidationError as e:
            raise AgentExecutionError(
                f"Invalid agent runner response: {e.error_count()} validation error(s)",
                agent_ref=node.agent_ref, node_id=node.id, attempt=attempt
            ) from e
