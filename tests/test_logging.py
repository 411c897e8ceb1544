"""Tests for structured logging and scoped workflow context."""

import asyncio
import json
import logging
import sys
import threading

from agent_cooperation.core.context import ExecutionContext
from agent_cooperation.core.logging import (
    StructuredFormatter, WorkflowContextFilter, current_logging_context, log_with_context, logging_context
)

from conftest import node


def make_record(message="hello", **extra_fields):
    record = logging.LogRecord("agent_cooperation.test", logging.INFO, __file__, 10, message, None, None)
    if extra_fields:
        record.extra_fields = extra_fields
    return record


class TestStructuredFormatter:

    def test_outputs_json_with_extra_fields(self):
        output = json.loads(StructuredFormatter().format(make_record(workflow_id="wf_1")))

        assert output["message"] == "hello"
        assert output["level"] == "INFO"
        assert output["workflow_id"] == "wf_1"

    def test_includes_exception(self):
        try:
            raise ValueError("broken")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        output = json.loads(StructuredFormatter().format(record))

        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "broken"


class TestWorkflowContextFilter:

    def test_context_is_added_to_records(self):
        context_filter = WorkflowContextFilter()
        context_filter.set_context(workflow_id="wf_1", node_id="a")
        record = make_record()

        context_filter.filter(record)

        assert record.extra_fields == {"workflow_id": "wf_1", "node_id": "a"}

    def test_context_is_per_thread(self):
        context_filter = WorkflowContextFilter()
        context_filter.set_context(workflow_id="main")
        seen = {}

        def worker():
            record = make_record()
            context_filter.filter(record)
            seen["worker"] = dict(record.extra_fields)

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen["worker"] == {}

    def test_clear_context(self):
        context_filter = WorkflowContextFilter()
        context_filter.set_context(workflow_id="wf_1")
        context_filter.clear_context()
        record = make_record()

        context_filter.filter(record)

        assert record.extra_fields == {}


def test_log_with_context(caplog):
    logger = logging.getLogger("agent_cooperation.test")

    with caplog.at_level(logging.INFO, logger="agent_cooperation.test"):
        log_with_context(logger, logging.INFO, "retrying", node="a", attempt=1)

    fields = caplog.records[-1].extra_fields
    assert fields["node"] == "a"
    assert fields["attempt"] == 1


class TestScopedContext:
    """Fields added with logging_context are scoped to the block and the task."""

    def test_previous_fields_are_restored(self):
        before = current_logging_context()

        with logging_context(workflow_id="wf_1", node_id="parent"):
            with logging_context(node_id="child"):
                assert current_logging_context()["node_id"] == "child"
                assert current_logging_context()["workflow_id"] == "wf_1"
            assert current_logging_context()["node_id"] == "parent"

        assert current_logging_context() == before

    def test_concurrent_tasks_keep_their_own_fields(self):
        async def handle(request_id):
            with logging_context(request_id=request_id):
                await asyncio.sleep(0)
                return current_logging_context()["request_id"]

        async def serve():
            return await asyncio.gather(handle("r1"), handle("r2"), handle("r3"))

        assert asyncio.run(serve()) == ["r1", "r2", "r3"]

    def test_engine_restores_caller_node_after_child(self, engine, create):
        workflow_id = create(node("a", next_ids=["b"]), node("b"))
        workflow = engine.get_workflow(workflow_id)
        context = ExecutionContext(workflow, "u1", max_depth=10)

        with logging_context(node_id="caller"):
            engine.execute_node(context, "a", "x")
            assert current_logging_context()["node_id"] == "caller"
