"""Execution guard enforcing at most one in-flight execution per workflow."""

import threading
from contextlib import contextmanager
from typing import Iterator, List, Set

from .exceptions import AlreadyRunningError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionGuard:
    """Tracks in-flight workflow IDs."""

    def __init__(self):
        self._running: Set[str] = set()
        self._lock = threading.RLock()

    def enter(self, workflow_id: str) -> None:
        """Mark a workflow as running.

        Raises:
            AlreadyRunningError: If the workflow is already in flight
        """
        with self._lock:
            if workflow_id in self._running:
                raise AlreadyRunningError("Workflow is already running", workflow_id=workflow_id)
            self._running.add(workflow_id)
        logger.debug(f"Workflow {workflow_id} marked in-flight")

    def exit(self, workflow_id: str) -> None:
        """Clear the in-flight marker; a no-op if it is not set."""
        with self._lock:
            self._running.discard(workflow_id)
        logger.debug(f"Workflow {workflow_id} released")

    @contextmanager
    def hold(self, workflow_id: str) -> Iterator[None]:
        """Hold the in-flight marker for the duration of the block."""
        self.enter(workflow_id)
        try:
            yield
        finally:
            self.exit(workflow_id)

    def is_running(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._running

    def running(self) -> List[str]:
        """Return the IDs of all in-flight workflows."""
        with self._lock:
            return sorted(self._running)
