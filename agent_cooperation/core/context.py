"""Per-execution state shared by every branch of one workflow run."""

import threading
from typing import Any, Iterable, List

from ..models.core import NodeResult, Workflow


class ExecutionLog:
    """Ordered log of NodeResults in completion order.

    Sibling branches append from worker threads, so access is locked.
    """

    def __init__(self):
        self._results: List[NodeResult] = []
        self._lock = threading.Lock()

    def append(self, result: NodeResult) -> None:
        with self._lock:
            self._results.append(result)

    def snapshot(self) -> List[NodeResult]:
        with self._lock:
            return list(self._results)

    def outputs_for(self, node_ids: Iterable[str]) -> List[Any]:
        """Outputs of logged results whose node is in node_ids, in log order."""
        wanted = set(node_ids)
        return [result.output for result in self.snapshot() if result.node_id in wanted]

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


class ExecutionContext:
    """The workflow, its caller, the result log and the depth bound of one execution.

    Depth counts nodes along one path from the start node, independent of how
    many siblings run. A cycle ends once its path reaches ``max_depth``.
    """

    def __init__(self, workflow: Workflow, owner_id: str, max_depth: int):
        self.workflow = workflow
        self.owner_id = owner_id
        self.log = ExecutionLog()
        self.max_depth = max_depth

    def within_depth(self, depth: int) -> bool:
        return depth < self.max_depth
