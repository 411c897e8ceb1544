"""Pytest configuration and fixtures."""

import threading
from typing import Any, Dict, List, Tuple

import pytest

from agent_cooperation.config import get_testing_config
from agent_cooperation.core.execution_engine import WorkflowEngine
from agent_cooperation.models.core import AgentExecutionData, AgentRunResult


def ok(value: Any = None) -> AgentRunResult:
    """Successful runner response carrying value."""
    return AgentRunResult(success=True, data=AgentExecutionData(success=True, execution_result=value))


def fail(message: str = "boom") -> AgentRunResult:
    """Failed runner response with a top-level error."""
    return AgentRunResult(success=False, error=message)


class ScriptedRunner:
    """Agent Runner whose responses are scripted per agent reference.

    A script is a list of responses consumed one per call; the last one repeats.
    A response may be a runner result (model or dict), an exception to raise, or
    a callable receiving the node input and returning a response. Unscripted
    agents echo their input.
    """

    def __init__(self):
        self.calls: List[Tuple[Any, str, Any]] = []
        self._scripts: Dict[Any, List[Any]] = {}
        self._lock = threading.Lock()

    def script(self, agent_ref, *responses):
        self._scripts[agent_ref] = list(responses)

    def invoke(self, agent_ref, owner_id, context):
        node_input = context.get("input")
        with self._lock:
            self.calls.append((agent_ref, owner_id, node_input))
            script = self._scripts.get(agent_ref)
            if not script:
                response = ok(node_input)
            elif len(script) > 1:
                response = script.pop(0)
            else:
                response = script[0]

        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(node_input)
        return response

    def calls_for(self, agent_ref) -> List[Any]:
        """Inputs the agent was invoked with, in call order."""
        with self._lock:
            return [node_input for ref, _, node_input in self.calls if ref == agent_ref]


class StaticLookup:
    """Agent Lookup resolving every reference except the denied ones."""

    def __init__(self, denied=()):
        self.denied = set(denied)
        self.calls: List[Tuple[Any, str]] = []

    def resolve(self, agent_ref, owner_id):
        self.calls.append((agent_ref, owner_id))
        return agent_ref not in self.denied


class RecordingAudit:
    """Audit sink keeping events in memory."""

    def __init__(self):
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def append_event(self, owner_id, text, metadata):
        self.events.append((owner_id, text, metadata))

    def types(self) -> List[str]:
        return [metadata.get("type") for _, _, metadata in self.events]


class SleepRecorder:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float):
        self.delays.append(seconds)


def node(node_id: str, agent_ref: Any = None, edge_type: str = "sequential", next_ids=None, **extra) -> Dict[str, Any]:
    """Node definition dict; the agent reference defaults to the node ID."""
    return {
        "id": node_id,
        "agent_ref": agent_ref if agent_ref is not None else node_id,
        "name": extra.pop("name", node_id.upper()),
        "edge_type": edge_type,
        "next_ids": next_ids or [],
        **extra
    }


@pytest.fixture
def runner():
    return ScriptedRunner()


@pytest.fixture
def lookup():
    return StaticLookup(denied={"ghost"})


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def testing_config():
    return get_testing_config()


@pytest.fixture
def engine(runner, lookup, audit, sleeper, testing_config):
    """Create a WorkflowEngine wired to scripted collaborators."""
    return WorkflowEngine(runner, lookup, audit_sink=audit, config=testing_config, sleep=sleeper)


@pytest.fixture
def create(engine):
    """Create a workflow for owner 'u1' and return its ID."""
    def _create(*nodes, owner_id="u1", name="Test Workflow"):
        result = engine.create_workflow(owner_id, name, "test", list(nodes))
        assert result.success, result.error
        return result.workflow_id
    return _create
