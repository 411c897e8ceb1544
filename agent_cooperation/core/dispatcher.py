"""Branch dispatcher: decides which successors run, and with what input."""

from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional

from ..models.core import EdgeType, NodeOutcome, WorkflowNode
from .conditions import evaluate_condition
from .context import ExecutionContext
from .logging import get_logger

logger = get_logger(__name__)

ExecuteNode = Callable[[ExecutionContext, str, Any, int], NodeOutcome]


def with_index(value: Any, index: int) -> Any:
    """Merge a fan-out position into the upstream output."""
    if value is None:
        return {"index": index}
    if isinstance(value, dict):
        return {**value, "index": index}
    return {"input": value, "index": index}


class BranchDispatcher:
    """Interprets a node's edge type over its ``next_ids``."""

    def __init__(self, execute_node: ExecuteNode):
        """Initialize the dispatcher.

        Args:
            execute_node: Traversal callback used to run each chosen successor
        """
        self._execute_node = execute_node

    def dispatch(self, context: ExecutionContext, node: WorkflowNode, output: Any, depth: int = 0) -> NodeOutcome:
        """
        Run the successors of a completed node.

        Args:
            context: Execution context of the current run
            node: Node that just completed
            output: That node's output, the default input for successors
            depth: Depth of that node; successors run at depth + 1

        Returns:
            Outcome of the continuation, or the node's own outcome when the
            edge type does not continue a single chain
        """
        next_ids = node.next_ids
        if not next_ids:
            return NodeOutcome(success=True, output=output)

        edge_type = node.edge_type
        child_depth = depth + 1
        logger.debug(f"Dispatching {edge_type} from node {node.id} to {next_ids}")

        if edge_type == EdgeType.PARALLEL:
            return self._dispatch_concurrently(context, node, output, [output] * len(next_ids), child_depth)
        if edge_type == EdgeType.FAN_OUT:
            inputs = [with_index(output, index) for index in range(len(next_ids))]
            return self._dispatch_concurrently(context, node, output, inputs, child_depth)
        if edge_type == EdgeType.CONDITIONAL:
            return self._dispatch_conditional(context, node, output, child_depth)
        if edge_type == EdgeType.FAN_IN:
            return self._dispatch_fan_in(context, node, child_depth)

        # sequential, loop and unrecognised edge types
        return self._dispatch_sequential(context, node, output, child_depth)

    def _dispatch_sequential(self, context: ExecutionContext, node: WorkflowNode, output: Any,
                             depth: int) -> NodeOutcome:
        last: Optional[NodeOutcome] = None
        first_failure: Optional[NodeOutcome] = None

        for next_id in node.next_ids:
            last = self._execute_node(context, next_id, output, depth)
            if not last.success and first_failure is None:
                first_failure = last

        if first_failure is not None:
            return NodeOutcome(success=False, output=last.output, error=first_failure.error)
        return last

    def _dispatch_concurrently(self, context: ExecutionContext, node: WorkflowNode,
                               output: Any, inputs: List[Any], depth: int) -> NodeOutcome:
        next_ids = node.next_ids
        with ThreadPoolExecutor(max_workers=len(next_ids), thread_name_prefix=f"node-{node.id}") as pool:
            futures = [
                pool.submit(self._execute_node, context, next_id, branch_input, depth)
                for next_id, branch_input in zip(next_ids, inputs)
            ]
            wait(futures)

        errors = [future.exception() for future in futures if future.exception() is not None]
        if errors:
            logger.error(f"{len(errors)} branch(es) of node {node.id} raised unexpectedly")
            raise errors[0]

        failed = [next_id for next_id, future in zip(next_ids, futures) if not future.result().success]
        if failed:
            logger.info(f"Branches {failed} of node {node.id} failed")

        return NodeOutcome(success=True, output=output)

    def _dispatch_conditional(self, context: ExecutionContext, node: WorkflowNode, output: Any,
                              depth: int) -> NodeOutcome:
        holds = evaluate_condition(node.condition, output)
        index = 0 if holds else 1
        logger.info(f"Condition '{node.condition}' on node {node.id} is {holds}")

        if index >= len(node.next_ids):
            return NodeOutcome(success=True, output=output)
        return self._execute_node(context, node.next_ids[index], output, depth)

    def _dispatch_fan_in(self, context: ExecutionContext, node: WorkflowNode, depth: int) -> NodeOutcome:
        collected = context.log.outputs_for(node.next_ids)
        logger.info(f"Fan-in at node {node.id} collected {len(collected)} output(s)")
        return self._execute_node(context, node.next_ids[0], collected, depth)
