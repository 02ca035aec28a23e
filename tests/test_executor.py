"""Tests for run scheduling, failure propagation and cancellation."""

import asyncio
import threading

import pytest

from mediaflow.engine.executor import BLOCKED_MESSAGE, RunState, Scheduler
from mediaflow.engine.planner import RunScope
from mediaflow.engine.session import WorkflowSession
from mediaflow.errors import (
    CancellationError,
    NodeOperationError,
    RunInProgressError,
    WorkflowError,
    WorkflowValidationError,
)

from conftest import IMAGE


class TestFullRun:
    """Tests for running the whole workflow."""

    def test_chain_completes_in_dependency_order(self, session, describe_chain):
        result = asyncio.run(session.execute())

        assert result.state == RunState.COMPLETED
        assert result.success
        assert sorted(result.completed) == sorted(describe_chain.values())
        assert result.completed.index(describe_chain["llm"]) > result.completed.index(describe_chain["image"])
        assert result.completed.index(describe_chain["llm"]) > result.completed.index(describe_chain["prompt"])
        assert result.completed[-1] == describe_chain["output"]
        assert result.failed == {}
        assert result.blocked == []
        assert result.total_nodes == 4

    def test_outputs_are_written_to_node_data(self, session, describe_chain):
        asyncio.run(session.execute())

        llm = session.graph.get_node(describe_chain["llm"])
        assert llm.data["outputText"] == "described 1 image(s)"
        assert llm.data["outputImages"] == [IMAGE]
        assert llm.status == "complete"
        assert llm.data["error"] is None

        out = session.graph.get_node(describe_chain["output"])
        assert out.data["image"] == IMAGE

    def test_async_operations_are_awaited(self, describe_chain, session):
        async def fake_llm(inputs, config):
            await asyncio.sleep(0)
            return {"text": "async text"}

        session.scheduler.operations["llmGenerate"] = fake_llm
        result = asyncio.run(session.execute())

        assert result.success
        assert session.graph.get_node(describe_chain["llm"]).data["outputText"] == "async text"

    def test_operation_receives_snapshots(self, session, describe_chain):
        def mutating_llm(inputs, config):
            inputs["image"].append("mutated")
            config["model"] = "mutated"
            return {"text": "ok"}

        session.scheduler.operations["llmGenerate"] = mutating_llm
        asyncio.run(session.execute())

        llm = session.graph.get_node(describe_chain["llm"])
        assert llm.data["model"] == "gemini-3-flash"
        assert session.graph.get_node(describe_chain["image"]).data["image"] == IMAGE

    def test_events_are_published(self, session, describe_chain):
        events = []
        session.subscribe(events.append)

        asyncio.run(session.execute())

        types = [event["type"] for event in events]
        assert types[0] == "run_started"
        assert types[-1] == "run_finished"
        statuses = [
            event["status"] for event in events
            if event["type"] == "node_status" and event["node_id"] == describe_chain["llm"]
        ]
        assert statuses == ["loading", "complete"]


class TestFailurePropagation:
    """Tests for failed nodes blocking their dependents."""

    def test_failed_node_blocks_downstream(self, session, describe_chain, recorder):
        def failing_llm(inputs, config):
            raise NodeOperationError("Quota exceeded")

        session.scheduler.operations["llmGenerate"] = failing_llm
        result = asyncio.run(session.execute())

        assert result.state == RunState.FAILED
        assert result.failed == {describe_chain["llm"]: "Quota exceeded"}
        assert result.blocked == [describe_chain["output"]]
        assert "output" not in recorder.calls

        graph = session.graph
        assert graph.get_node(describe_chain["image"]).status == "complete"
        assert graph.get_node(describe_chain["llm"]).status == "error"
        assert graph.get_node(describe_chain["llm"]).data["error"] == "Quota exceeded"
        assert graph.get_node(describe_chain["output"]).status == "error"
        assert graph.get_node(describe_chain["output"]).data["error"] == BLOCKED_MESSAGE

    def test_error_key_in_result_fails_node(self, session, describe_chain):
        session.scheduler.operations["llmGenerate"] = lambda inputs, config: {"error": "Bad prompt"}
        result = asyncio.run(session.execute())

        assert result.failed == {describe_chain["llm"]: "Bad prompt"}

    def test_independent_branches_keep_running(self, session, describe_chain):
        def failing_llm(inputs, config):
            raise RuntimeError("boom")

        session.scheduler.operations["llmGenerate"] = failing_llm
        music = session.add_node("musicGenerate", data={"prompt": "lofi"})
        session.scheduler.operations["musicGenerate"] = lambda inputs, config: {"audio": "music.mp3"}

        result = asyncio.run(session.execute())

        assert music in result.completed
        assert session.graph.get_node(music).data["outputAudio"] == "music.mp3"

    def test_raise_for_state_reports_first_failure(self, session, describe_chain):
        session.scheduler.operations["llmGenerate"] = lambda inputs, config: {"error": "Bad prompt"}
        result = asyncio.run(session.execute())

        with pytest.raises(NodeOperationError) as exc_info:
            result.raise_for_state()
        assert exc_info.value.node_id == describe_chain["llm"]

    def test_failed_upstream_outside_scope_blocks_node(self, session, describe_chain, recorder):
        session.scheduler.operations["llmGenerate"] = lambda inputs, config: {"error": "Bad prompt"}
        asyncio.run(session.execute())
        recorder.calls.clear()

        result = asyncio.run(session.regenerate_node(describe_chain["output"]))

        assert result.blocked == [describe_chain["output"]]
        assert result.state == RunState.FAILED
        assert recorder.calls == []


class TestScopedRuns:
    """Tests for from-node and single-node runs."""

    def test_regenerate_runs_only_that_node(self, session, describe_chain, recorder):
        asyncio.run(session.execute())
        recorder.calls.clear()

        result = asyncio.run(session.regenerate_node(describe_chain["output"]))

        assert result.success
        assert result.completed == [describe_chain["output"]]
        assert recorder.calls == ["output"]
        assert session.graph.get_node(describe_chain["output"]).data["image"] == IMAGE

    def test_from_node_runs_node_and_descendants(self, session, describe_chain, recorder):
        asyncio.run(session.execute())
        recorder.calls.clear()

        result = asyncio.run(session.execute(RunScope.from_node(describe_chain["llm"])))

        assert result.completed == [describe_chain["llm"], describe_chain["output"]]
        assert recorder.calls == ["llmGenerate", "output"]

    def test_never_run_upstream_blocks_regenerate(self, session, describe_chain, recorder):
        result = asyncio.run(session.regenerate_node(describe_chain["output"]))

        assert result.state == RunState.FAILED
        assert result.blocked == [describe_chain["output"]]
        assert recorder.calls == []
        assert session.graph.get_node(describe_chain["output"]).data["error"] == (
            f'Waiting on upstream "{describe_chain["llm"]}"'
        )

    def test_idle_upstream_outside_scope_blocks_branch(self, session, describe_chain, recorder):
        result = asyncio.run(session.execute(RunScope.from_node(describe_chain["image"])))

        assert result.completed == [describe_chain["image"]]
        assert result.blocked == [describe_chain["llm"], describe_chain["output"]]
        assert recorder.calls == []
        graph = session.graph
        assert graph.get_node(describe_chain["prompt"]).status == "idle"
        assert graph.get_node(describe_chain["llm"]).data["error"] == f'Waiting on upstream "{describe_chain["prompt"]}"'
        assert graph.get_node(describe_chain["output"]).data["error"] == BLOCKED_MESSAGE

    def test_failure_in_scope_with_finished_upstream_outside(self, session, describe_chain, recorder):
        asyncio.run(session.execute())
        recorder.calls.clear()
        session.scheduler.operations["imageInput"] = lambda inputs, config: {"error": "Unreadable image"}

        result = asyncio.run(session.execute(RunScope.from_node(describe_chain["image"])))

        assert result.failed == {describe_chain["image"]: "Unreadable image"}
        assert result.blocked == [describe_chain["llm"], describe_chain["output"]]
        assert recorder.calls == []
        graph = session.graph
        assert graph.get_node(describe_chain["prompt"]).status == "complete"
        assert graph.get_node(describe_chain["llm"]).data["error"] == BLOCKED_MESSAGE


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_no_node_starts_after_cancel(self, session):
        def cancelling_prompt(inputs, config):
            session.cancel()
            return {"text": config["prompt"]}

        session.scheduler.operations["prompt"] = cancelling_prompt
        session.scheduler.operations["speechGenerate"] = lambda inputs, config: {"audio": "speech.mp3"}
        prompt = session.add_node("prompt", data={"prompt": "Hello"})
        speech = session.add_node("speechGenerate")
        out = session.add_node("output")
        session.connect(prompt, "text", speech, "text")
        session.connect(speech, "audio", out, "audio")

        result = asyncio.run(session.execute())

        assert result.state == RunState.CANCELLED
        assert result.completed == [prompt]
        assert result.skipped == [speech, out]
        assert session.graph.get_node(speech).status == "idle"
        with pytest.raises(CancellationError):
            result.raise_for_state()

    def test_in_flight_nodes_finish_after_cancel(self):
        session = WorkflowSession(max_concurrency=2)

        async def prompt_op(inputs, config):
            if config["prompt"] == "first":
                session.cancel()
            else:
                await asyncio.sleep(0.01)
            return {"text": config["prompt"]}

        session.scheduler.operations["prompt"] = prompt_op
        first = session.add_node("prompt", data={"prompt": "first"})
        second = session.add_node("prompt", data={"prompt": "second"})
        third = session.add_node("prompt", data={"prompt": "third"})

        result = asyncio.run(session.execute())

        assert result.state == RunState.CANCELLED
        assert sorted(result.completed) == sorted([first, second])
        assert result.skipped == [third]
        assert session.graph.get_node(second).status == "complete"
        assert session.graph.get_node(third).status == "idle"
        assert not session.is_running

    def test_cancel_without_run_returns_false(self, session):
        assert session.cancel() is False


class TestPauses:
    """Tests for stopping at paused edges and resuming."""

    @pytest.fixture
    def paused_chain(self, session, describe_chain):
        edge = session.graph.incoming_edges(describe_chain["output"])[0]
        session.toggle_edge_pause(edge.id)
        return describe_chain

    def test_run_stops_before_paused_edge_target(self, session, paused_chain, recorder):
        result = asyncio.run(session.execute())

        assert result.state == RunState.PAUSED
        assert result.paused_at == paused_chain["output"]
        assert result.skipped == [paused_chain["output"]]
        assert paused_chain["llm"] in result.completed
        assert recorder.calls == ["llmGenerate"]
        assert session.scheduler.paused_at == paused_chain["output"]
        assert session.status()["paused_at"] == paused_chain["output"]
        assert session.graph.get_node(paused_chain["output"]).status == "idle"
        result.raise_for_state()

    def test_resume_runs_paused_node_and_descendants(self, session, paused_chain, recorder):
        asyncio.run(session.execute())
        recorder.calls.clear()

        result = asyncio.run(session.resume())

        assert result.state == RunState.COMPLETED
        assert result.completed == [paused_chain["output"]]
        assert recorder.calls == ["output"]
        assert session.scheduler.paused_at is None

    def test_starting_elsewhere_still_pauses(self, session, paused_chain, recorder):
        asyncio.run(session.execute())
        recorder.calls.clear()

        result = asyncio.run(session.execute(RunScope.from_node(paused_chain["llm"])))

        assert result.state == RunState.PAUSED
        assert result.completed == [paused_chain["llm"]]
        assert recorder.calls == ["llmGenerate"]

    def test_resume_without_pause(self, session, describe_chain):
        with pytest.raises(WorkflowError, match="No paused run"):
            asyncio.run(session.resume())

    def test_regenerate_ignores_pause(self, session, describe_chain, recorder):
        edge = session.graph.incoming_edges(describe_chain["llm"])[1]
        session.toggle_edge_pause(edge.id)
        asyncio.run(session.execute())
        assert recorder.calls == []

        result = asyncio.run(session.regenerate_node(describe_chain["llm"]))

        assert result.state == RunState.COMPLETED
        assert result.completed == [describe_chain["llm"]]
        assert session.scheduler.paused_at == describe_chain["llm"]

        resumed = asyncio.run(session.resume())
        assert resumed.completed == [describe_chain["llm"], describe_chain["output"]]


class TestAdmission:
    """Tests for run admission."""

    def test_second_run_is_refused(self, session, describe_chain):
        run = session.scheduler.start()
        try:
            with pytest.raises(RunInProgressError):
                session.scheduler.start()
            with pytest.raises(RunInProgressError):
                asyncio.run(session.regenerate_node(describe_chain["output"]))
        finally:
            asyncio.run(session.scheduler.run(run))

        assert not session.is_running
        assert session.scheduler.last_result.run_id == run.run_id

    def test_structural_edits_refused_during_run(self, session, describe_chain):
        run = session.scheduler.start()
        try:
            with pytest.raises(RunInProgressError):
                session.remove_node(describe_chain["output"])
            with pytest.raises(RunInProgressError):
                session.connect(describe_chain["image"], "image", describe_chain["output"], "image")
        finally:
            asyncio.run(session.scheduler.run(run))

    def test_invalid_workflow_is_refused(self, session):
        session.add_node("llmGenerate")

        with pytest.raises(WorkflowValidationError) as exc_info:
            asyncio.run(session.execute())

        assert exc_info.value.errors == ['LLM node "llmGenerate-1" missing text or context input']
        assert not session.is_running

    def test_empty_workflow_is_refused(self, session):
        with pytest.raises(WorkflowValidationError) as exc_info:
            asyncio.run(session.execute())
        assert exc_info.value.errors == ["Workflow is empty"]

    def test_max_concurrency_must_be_positive(self, session):
        with pytest.raises(ValueError):
            Scheduler(session.graph, max_concurrency=0)


class TestConcurrency:
    """Tests for the in-flight limit."""

    def test_in_flight_never_exceeds_limit(self):
        lock = threading.Lock()
        state = {"current": 0, "peak": 0}

        async def slow_prompt(inputs, config):
            with lock:
                state["current"] += 1
                state["peak"] = max(state["peak"], state["current"])
            await asyncio.sleep(0.01)
            with lock:
                state["current"] -= 1
            return {"text": config["prompt"]}

        session = WorkflowSession(max_concurrency=2, operations={"prompt": slow_prompt})
        for i in range(6):
            session.add_node("prompt", data={"prompt": f"prompt {i}"})

        result = asyncio.run(session.execute())

        assert result.success
        assert len(result.completed) == 6
        assert state["peak"] == 2
