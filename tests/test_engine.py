"""Tests for the workflow engine: creation, guarding, traversal and dispatch."""

import threading
import time

import pytest

from agent_cooperation.config import AppConfig
from agent_cooperation.core.execution_engine import WorkflowEngine
from agent_cooperation.models.core import EdgeType

from conftest import ScriptedRunner, SleepRecorder, StaticLookup, fail, node, ok


class TestCreateWorkflow:
    """Workflow creation through the engine facade."""

    def test_create_sets_defaults(self, engine):
        result = engine.create_workflow("u1", "Flow", "desc", [node("a", next_ids=["b"]), node("b")])

        assert result.success is True
        workflow = engine.get_workflow(result.workflow_id)
        assert workflow.start_node_id == "a"
        assert workflow.is_active is False
        assert workflow.owner_id == "u1"
        assert workflow.last_run is None
        assert [n.id for n in workflow.nodes] == ["a", "b"]

    def test_empty_nodes_fail_and_register_nothing(self, engine):
        result = engine.create_workflow("u1", "Empty", "", [])

        assert result.success is False
        assert result.error == "Workflow must have at least one node"
        assert result.error_code == "WorkflowValidationError"
        assert engine.get_user_workflows("u1") == []

    def test_unknown_agent_aborts_creation(self, engine, audit):
        result = engine.create_workflow("u1", "Flow", "", [node("a"), node("b", agent_ref="ghost")])

        assert result.success is False
        assert result.error == "Agent ghost not found"
        assert result.error_code == "NotFoundError"
        assert engine.get_user_workflows("u1") == []
        assert audit.events == []

    def test_lookup_is_scoped_to_owner(self, engine, lookup):
        engine.create_workflow(9, "Flow", "", [node("a", agent_ref=5)])

        assert lookup.calls == [(5, "9")]

    def test_duplicate_node_ids_rejected(self, engine):
        result = engine.create_workflow("u1", "Flow", "", [node("a"), node("a")])

        assert result.success is False
        assert result.error_code == "WorkflowValidationError"

    def test_malformed_node_rejected(self, engine):
        result = engine.create_workflow("u1", "Flow", "", [{"id": "a", "name": "A", "max_retries": -1, "agent_ref": "x"}])

        assert result.success is False
        assert "max_retries" in result.error

    def test_ids_unique_within_same_tick(self, engine):
        ids = {engine.create_workflow("u1", f"Flow {i}", "", [node("a")]).workflow_id for i in range(50)}

        assert len(ids) == 50
        assert all(workflow_id.startswith("wf_u1_") for workflow_id in ids)

    def test_creation_is_audited(self, engine, audit):
        result = engine.create_workflow("u1", "Flow", "", [node("a")])

        owner_id, text, metadata = audit.events[0]
        assert owner_id == "u1"
        assert "Flow" in text
        assert metadata["type"] == "workflow_created"
        assert metadata["workflow_id"] == result.workflow_id

    def test_audit_failure_does_not_fail_creation(self, runner, lookup, testing_config):
        class BrokenAudit:
            def append_event(self, owner_id, text, metadata):
                raise ConnectionError("audit offline")

        engine = WorkflowEngine(runner, lookup, audit_sink=BrokenAudit(), config=testing_config)
        result = engine.create_workflow("u1", "Flow", "", [node("a")])

        assert result.success is True
        assert engine.get_workflow(result.workflow_id) is not None


class TestWorkflowQueries:
    """Reads, listing, deletion and activation."""

    def test_get_unknown_returns_none(self, engine):
        assert engine.get_workflow("wf_missing") is None

    def test_get_user_workflows_filters_by_owner(self, engine, create):
        first = create(node("a"), owner_id="u1")
        second = create(node("a"), owner_id="u1")
        create(node("a"), owner_id="u2")

        assert [w.id for w in engine.get_user_workflows("u1")] == [first, second]
        assert len(engine.get_user_workflows("u2")) == 1
        assert engine.get_user_workflows("u3") == []

    def test_delete_by_owner(self, engine, create):
        workflow_id = create(node("a"))

        assert engine.delete_workflow(workflow_id, "u1") is True
        assert engine.get_workflow(workflow_id) is None

    def test_delete_by_other_owner_is_noop(self, engine, create):
        workflow_id = create(node("a"))

        assert engine.delete_workflow(workflow_id, "u2") is False
        assert engine.get_workflow(workflow_id) is not None

    def test_delete_unknown_returns_false(self, engine, create):
        create(node("a"))

        assert engine.delete_workflow("wf_missing", "u1") is False
        assert len(engine.get_user_workflows("u1")) == 1

    def test_set_workflow_active(self, engine, create):
        workflow_id = create(node("a"))

        assert engine.set_workflow_active(workflow_id, "u1", True) is True
        assert engine.get_workflow(workflow_id).is_active is True
        assert engine.set_workflow_active(workflow_id, "u2", False) is False
        assert engine.get_workflow(workflow_id).is_active is True

    def test_templates(self, engine):
        templates = engine.get_workflow_templates()

        assert len(templates) == 3
        for template in templates:
            result = engine.create_workflow("u1", template.name, template.description, template.nodes)
            assert result.success, result.error


class TestExecutionGuarding:
    """Preconditions checked before traversal and the in-flight marker."""

    def test_unknown_workflow(self, engine, runner):
        result = engine.execute_workflow("wf_missing", "u1")

        assert result.success is False
        assert result.error == "Workflow not found"
        assert result.error_code == "NotFoundError"
        assert runner.calls == []

    def test_foreign_owner_denied(self, engine, runner, create):
        workflow_id = create(node("a"))

        result = engine.execute_workflow(workflow_id, "u2")

        assert result.success is False
        assert result.error == "Access denied"
        assert result.error_code == "AccessDeniedError"
        assert runner.calls == []

    def test_already_running_makes_no_runner_calls(self, engine, runner, create):
        workflow_id = create(node("a"))
        engine.guard.enter(workflow_id)

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert result.error == "Workflow is already running"
        assert result.error_code == "AlreadyRunningError"
        assert result.node_results == []
        assert runner.calls == []
        assert engine.is_running(workflow_id) is True

    def test_concurrent_execution_of_same_workflow(self, engine, runner, create):
        started = threading.Event()
        release = threading.Event()

        def blocking(node_input):
            started.set()
            release.wait(5)
            return ok(node_input)

        runner.script("slow", blocking)
        workflow_id = create(node("a", agent_ref="slow"))
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.execute_workflow(workflow_id, "u1")))
        worker.start()
        assert started.wait(5)

        second = engine.execute_workflow(workflow_id, "u1")
        release.set()
        worker.join(5)

        assert second.error == "Workflow is already running"
        assert len(runner.calls) == 1
        assert results[0].success is True
        assert engine.is_running(workflow_id) is False

    def test_different_workflows_run_independently(self, engine, runner, create):
        release = threading.Event()
        started = threading.Event()

        def blocking(node_input):
            started.set()
            release.wait(5)
            return ok(node_input)

        runner.script("slow", blocking)
        slow_id = create(node("a", agent_ref="slow"))
        fast_id = create(node("b"))
        worker = threading.Thread(target=engine.execute_workflow, args=(slow_id, "u1"))
        worker.start()
        assert started.wait(5)

        fast = engine.execute_workflow(fast_id, "u1")
        release.set()
        worker.join(5)

        assert fast.success is True

    def test_marker_cleared_after_success(self, engine, create):
        workflow_id = create(node("a"))

        engine.execute_workflow(workflow_id, "u1")

        assert engine.is_running(workflow_id) is False
        assert engine.execute_workflow(workflow_id, "u1").success is True

    def test_marker_cleared_after_node_failure(self, engine, runner, create):
        runner.script("a", fail("broken"))
        workflow_id = create(node("a"))

        assert engine.execute_workflow(workflow_id, "u1").success is False
        assert engine.is_running(workflow_id) is False

    def test_marker_cleared_after_unexpected_error(self, engine, create, monkeypatch):
        workflow_id = create(node("a", next_ids=["b"]), node("b"))

        def explode(*args, **kwargs):
            raise RuntimeError("dispatcher crashed")

        monkeypatch.setattr(engine.dispatcher, "dispatch", explode)

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert result.error == "dispatcher crashed"
        assert [r.node_id for r in result.node_results] == ["a"]
        assert engine.is_running(workflow_id) is False


class TestTraversal:
    """Results, retries and failure propagation."""

    def test_single_node_success(self, engine, runner, create, audit):
        runner.script("a", ok({"price": 10}))
        workflow_id = create(node("a"))

        result = engine.execute_workflow(workflow_id, "u1", {"symbol": "TON"})

        assert result.success is True
        assert result.workflow_id == workflow_id
        assert result.final_output == {"price": 10}
        assert runner.calls == [("a", "u1", {"symbol": "TON"})]
        assert result.node_results[0].agent_ref == "a"
        assert result.node_results[0].execution_time_ms >= 0
        assert result.total_execution_time_ms >= 0
        assert audit.types() == ["workflow_created", "workflow_completed"]
        assert engine.get_workflow(workflow_id).last_run is not None

    def test_retry_then_success_end_to_end(self, engine, runner, create):
        runner.script("a", fail("flaky"), fail("flaky"), ok("A"))
        runner.script("b", ok("B"))
        workflow_id = create(node("a", next_ids=["b"], max_retries=2), node("b"))

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is True
        assert result.node_results[0].node_id == "a"
        assert result.node_results[0].retries == 2
        assert len(runner.calls_for("a")) == 3
        assert runner.calls_for("b") == ["A"]
        assert result.final_output == "B"

    def test_single_failure_end_to_end(self, engine, runner, create):
        runner.script("a", fail("agent exploded"))
        workflow_id = create(node("a", max_retries=0))

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert result.error == "agent exploded"
        assert len(result.node_results) == 1
        assert result.node_results[0].success is False
        assert result.node_results[0].retries == 0
        assert result.node_results[0].error == "agent exploded"

    def test_failed_node_does_not_traverse_successors(self, engine, runner, create):
        runner.script("a", fail())
        workflow_id = create(node("a", next_ids=["b"]), node("b"))

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert runner.calls_for("b") == []

    def test_backoff_uses_configured_base(self, runner, lookup):
        sleeper = SleepRecorder()
        engine = WorkflowEngine(runner, lookup, config=AppConfig(retry_backoff_base_ms=1000), sleep=sleeper)
        runner.script("a", fail(), fail(), ok())
        workflow_id = engine.create_workflow("u1", "Flow", "", [node("a", max_retries=2)]).workflow_id

        engine.execute_workflow(workflow_id, "u1")

        assert sleeper.delays == [1.0, 2.0]

    def test_missing_successor_is_reported(self, engine, runner, create):
        workflow_id = create(node("a", next_ids=["nowhere"]))

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert result.error == "Node nowhere not found"
        assert [r.node_id for r in result.node_results] == ["a"]
        assert len(runner.calls) == 1

    def test_cycle_is_stopped_by_depth_limit(self, engine, runner, create, testing_config):
        workflow_id = create(node("a", next_ids=["b"]), node("b", next_ids=["a"]))

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert result.error == f"Traversal depth limit of {testing_config.max_traversal_steps} exceeded at node a"
        assert len(result.node_results) == testing_config.max_traversal_steps
        assert engine.is_running(workflow_id) is False

    @pytest.mark.parametrize("edge_type", ["sequential", "parallel"])
    def test_wide_acyclic_graph_is_not_limited(self, runner, lookup, edge_type):
        engine = WorkflowEngine(runner, lookup, config=AppConfig(retry_backoff_base_ms=0))
        leaves = [f"k{i}" for i in range(300)]
        workflow_id = engine.create_workflow(
            "u1", "Wide", "", [node("root", edge_type=edge_type, next_ids=leaves)] + [node(leaf) for leaf in leaves]
        ).workflow_id

        result = engine.execute_workflow(workflow_id, "u1", "x")

        assert result.success is True
        assert len(result.node_results) == 301

    def test_chain_up_to_depth_limit_completes(self, runner, lookup):
        engine = WorkflowEngine(runner, lookup, config=AppConfig(retry_backoff_base_ms=0, max_traversal_steps=20))
        chain = [node(f"n{i}", next_ids=[f"n{i + 1}"] if i < 19 else []) for i in range(20)]
        workflow_id = engine.create_workflow("u1", "Chain", "", chain).workflow_id

        result = engine.execute_workflow(workflow_id, "u1", "x")

        assert result.success is True
        assert len(result.node_results) == 20


class TestSequentialDispatch:
    """Sequential, loop and unrecognised edge types."""

    def test_every_successor_gets_same_input(self, engine, runner, create):
        runner.script("a", ok("from-a"))
        runner.script("b", ok("from-b"))
        runner.script("c", ok("from-c"))
        workflow_id = create(node("a", next_ids=["b", "c"]), node("b"), node("c"))

        result = engine.execute_workflow(workflow_id, "u1")

        assert runner.calls_for("b") == ["from-a"]
        assert runner.calls_for("c") == ["from-a"]
        assert result.final_output == "from-c"
        assert [r.node_id for r in result.node_results] == ["a", "b", "c"]

    def test_failed_successor_fails_workflow_but_siblings_run(self, engine, runner, create):
        runner.script("b", fail("b failed"))
        workflow_id = create(node("a", next_ids=["b", "c"]), node("b"), node("c"))

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is False
        assert result.error == "b failed"
        assert len(runner.calls_for("c")) == 1

    @pytest.mark.parametrize("edge_type", ["loop", "round-robin"])
    def test_loop_and_unknown_types_dispatch_sequentially(self, engine, runner, create, edge_type):
        workflow_id = create(node("a", edge_type=edge_type, next_ids=["b", "c"]), node("b"), node("c"))

        result = engine.execute_workflow(workflow_id, "u1", "x")

        assert result.success is True
        assert [r.node_id for r in result.node_results] == ["a", "b", "c"]
        assert len(runner.calls_for("b")) == 1


class TestParallelDispatch:
    """Parallel and fan-out edge types."""

    def test_parallel_children_receive_same_input(self, engine, runner, create):
        runner.script("a", ok({"v": 1}))
        workflow_id = create(
            node("a", edge_type="parallel", next_ids=["x", "y", "z"]), node("x"), node("y"), node("z")
        )

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is True
        assert result.final_output == {"v": 1}
        for child in ("x", "y", "z"):
            assert runner.calls_for(child) == [{"v": 1}]
        assert sorted(r.node_id for r in result.node_results) == ["a", "x", "y", "z"]

    def test_parallel_children_run_concurrently(self, engine, runner, create):
        barrier = threading.Barrier(3, timeout=5)

        def rendezvous(node_input):
            barrier.wait()
            return ok(node_input)

        for child in ("x", "y", "z"):
            runner.script(child, rendezvous)
        workflow_id = create(
            node("a", edge_type="parallel", next_ids=["x", "y", "z"]), node("x"), node("y"), node("z")
        )

        result = engine.execute_workflow(workflow_id, "u1")

        assert all(r.success for r in result.node_results)
        assert not barrier.broken

    def test_parallel_result_reflects_only_parent(self, engine, runner, create):
        runner.script("y", fail("y failed"))
        workflow_id = create(
            node("a", edge_type="parallel", next_ids=["x", "y"]), node("x"), node("y")
        )

        result = engine.execute_workflow(workflow_id, "u1", "in")

        assert result.success is True
        assert result.final_output == "in"
        failed = [r for r in result.node_results if not r.success]
        assert [r.node_id for r in failed] == ["y"]

    def test_fan_out_adds_index(self, engine, runner, create):
        runner.script("a", ok({"batch": "b1"}))
        workflow_id = create(
            node("a", edge_type="fan-out", next_ids=["x", "y", "z"]), node("x"), node("y"), node("z")
        )

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is True
        assert runner.calls_for("x") == [{"batch": "b1", "index": 0}]
        assert runner.calls_for("y") == [{"batch": "b1", "index": 1}]
        assert runner.calls_for("z") == [{"batch": "b1", "index": 2}]
        assert len(result.node_results) == 4

    def test_fan_out_wraps_scalar_output(self, engine, runner, create):
        runner.script("a", ok(7))
        workflow_id = create(node("a", edge_type="fan-out", next_ids=["x", "y"]), node("x"), node("y"))

        engine.execute_workflow(workflow_id, "u1")

        assert runner.calls_for("x") == [{"input": 7, "index": 0}]
        assert runner.calls_for("y") == [{"input": 7, "index": 1}]


class TestConditionalDispatch:
    """Exactly one branch runs for conditional nodes."""

    @pytest.fixture
    def conditional_workflow(self, create):
        return create(
            node("check", edge_type="conditional", condition="a > b", next_ids=["yes", "no"]),
            node("yes"),
            node("no")
        )

    def test_true_branch(self, engine, runner, conditional_workflow):
        result = engine.execute_workflow(conditional_workflow, "u1", {"a": 5, "b": 3})

        assert len(runner.calls_for("yes")) == 1
        assert runner.calls_for("no") == []
        assert result.final_output == {"a": 5, "b": 3}

    def test_false_branch(self, engine, runner, conditional_workflow):
        engine.execute_workflow(conditional_workflow, "u1", {"a": 3, "b": 5})

        assert runner.calls_for("yes") == []
        assert len(runner.calls_for("no")) == 1

    def test_unresolved_paths_take_false_branch(self, engine, runner, conditional_workflow):
        engine.execute_workflow(conditional_workflow, "u1", {"unrelated": 1})

        assert runner.calls_for("yes") == []
        assert len(runner.calls_for("no")) == 1

    def test_missing_false_target_ends_branch(self, engine, runner, create):
        workflow_id = create(
            node("check", edge_type="conditional", condition="ready", next_ids=["yes"]), node("yes")
        )

        result = engine.execute_workflow(workflow_id, "u1", {"ready": False})

        assert result.success is True
        assert result.final_output == {"ready": False}
        assert runner.calls_for("yes") == []


class TestFanInDispatch:
    """Fan-in collects already-logged sibling outputs."""

    def test_fan_in_collects_outputs_in_log_order(self, engine, runner, create):
        runner.script("left", ok("r1"))
        runner.script("right", ok("r2"))
        runner.script("gather", ok("g"))
        workflow_id = create(
            node("root", next_ids=["left", "right", "gather"]),
            node("left"),
            node("right"),
            node("gather", edge_type="fan-in", next_ids=["report", "right", "left"]),
            node("report")
        )

        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is True
        assert runner.calls_for("report") == [["r1", "r2"]]
        assert [r.node_id for r in result.node_results] == ["root", "left", "right", "gather", "report"]

    def test_fan_in_without_logged_siblings_passes_empty_list(self, engine, runner, create):
        workflow_id = create(node("gather", edge_type="fan-in", next_ids=["report"]), node("report"))

        engine.execute_workflow(workflow_id, "u1", "ignored")

        assert runner.calls_for("report") == [[]]

    def test_template_multi_source_compare(self, engine, runner):
        template = engine.get_workflow_templates()[1]
        workflow_id = engine.create_workflow("u1", template.name, "", template.nodes).workflow_id

        result = engine.execute_workflow(workflow_id, "u1", {"pair": "TON/USDT"})

        assert result.success is True
        assert runner.calls_for("notify") == [[{"pair": "TON/USDT"}, {"pair": "TON/USDT"}]]


def test_edge_type_strings_are_normalized(engine, create):
    workflow_id = create(node("a", edge_type="fan-out"), node("b", edge_type="custom"))
    workflow = engine.get_workflow(workflow_id)

    assert workflow.nodes[0].edge_type is EdgeType.FAN_OUT
    assert workflow.nodes[1].edge_type == "custom"


class ScriptedPlanner:
    """Workflow planner returning a fixed plan, or raising it when it is an exception."""

    def __init__(self, plan):
        self._plan = plan
        self.requests = []

    def plan(self, description, agents):
        self.requests.append((description, agents))
        if isinstance(self._plan, Exception):
            raise self._plan
        return self._plan


class TestCreateFromDescription:
    """Workflows assembled from a planner's proposal."""

    AGENTS = [
        {"agent_ref": "a", "name": "Fetcher", "description": "Fetches prices"},
        {"agent_ref": "b", "name": "Notifier", "description": "Sends alerts"},
    ]

    def make_engine(self, runner, lookup, testing_config, plan):
        planner = ScriptedPlanner(plan)
        return WorkflowEngine(runner, lookup, config=testing_config, planner=planner), planner

    def test_planned_agents_are_chained(self, runner, lookup, testing_config):
        engine, planner = self.make_engine(runner, lookup, testing_config, {
            "canBuild": True,
            "planText": "Fetch, then alert",
            "usedAgentIds": ["a", "b", "c"],
            "connectionType": "sequential",
            "missingAgents": ["a price chart agent"]
        })
        description = "Watch the TON price and alert me when it moves more than five percent"

        result = engine.create_from_description("u1", description, self.AGENTS)

        assert result.success is True
        assert result.plan == "Fetch, then alert"
        assert result.suggested_agents == ["a price chart agent"]
        workflow = engine.get_workflow(result.workflow_id)
        assert workflow.name == description[:40]
        assert workflow.description == description
        assert [n.id for n in workflow.nodes] == ["node_0", "node_1", "node_2"]
        assert [n.next_ids for n in workflow.nodes] == [["node_1"], ["node_2"], []]
        assert [n.name for n in workflow.nodes] == ["Fetcher", "Notifier", "Agent c"]
        assert [a.name for a in planner.requests[0][1]] == ["Fetcher", "Notifier"]

    def test_planned_workflow_executes(self, runner, lookup, testing_config):
        engine, _ = self.make_engine(runner, lookup, testing_config, {
            "canBuild": True, "usedAgentIds": ["a", "b"], "connectionType": "sequential"
        })
        runner.script("a", ok("price"))

        workflow_id = engine.create_from_description("u1", "Price alert", self.AGENTS).workflow_id
        result = engine.execute_workflow(workflow_id, "u1")

        assert result.success is True
        assert runner.calls_for("b") == ["price"]

    def test_unbuildable_plan_only_suggests_agents(self, runner, lookup, testing_config):
        engine, _ = self.make_engine(runner, lookup, testing_config, {
            "canBuild": False, "missingAgents": ["an exchange agent"]
        })

        result = engine.create_from_description("u1", "Trade for me", self.AGENTS)

        assert result.success is True
        assert result.workflow_id is None
        assert result.plan == "This workflow needs additional agents."
        assert result.suggested_agents == ["an exchange agent"]
        assert engine.get_user_workflows("u1") == []

    def test_unknown_planned_agent_fails_creation(self, runner, lookup, testing_config):
        engine, _ = self.make_engine(runner, lookup, testing_config, {
            "canBuild": True, "planText": "p", "usedAgentIds": ["a", "ghost"]
        })

        result = engine.create_from_description("u1", "Flow", self.AGENTS)

        assert result.success is False
        assert result.error == "Agent ghost not found"
        assert result.plan == "p"

    def test_planner_error_is_reported(self, runner, lookup, testing_config):
        engine, _ = self.make_engine(runner, lookup, testing_config, RuntimeError("model unavailable"))

        result = engine.create_from_description("u1", "Flow", self.AGENTS)

        assert result.success is False
        assert result.error == "model unavailable"

    def test_without_planner(self, engine):
        result = engine.create_from_description("u1", "Flow", self.AGENTS)

        assert result.success is False
        assert result.error == "No workflow planner configured"
