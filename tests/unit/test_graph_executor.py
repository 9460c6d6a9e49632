# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for GraphExecutor: routing, fail-soft nodes and loop detection."""

from datetime import datetime

import pytest

from stagegraph.core.errors import LoopDetectedError, RouteNotFoundError
from stagegraph.framework.executor import (
    ExecutionStatus,
    ExecutorConfig,
    LoopDetection,
    LoopGuard,
)
from stagegraph.framework.graph import END, START, StateGraph
from stagegraph.framework.state import base_workflow_schema
from stagegraph.framework.supervisor import TeamRouter


# =============================================================================
# Node functions
# =============================================================================


def init_node(state):
    return {**state, "stage": "initialized"}


def transform_node(state):
    return {**state, "x": state["x"] * 2}


def finalize_node(state):
    return {**state, "stage": "completed"}


def failing_node(state):
    state["partial"] = True
    raise ValueError("kaboom")


def mark(name):
    def node(state):
        return {**state, "visited": list(state.get("visited", [])) + [name]}

    node.__name__ = name
    return node


def linear_pipeline():
    graph = StateGraph(name="linear")
    graph.add_node("init", init_node)
    graph.add_node("transform", transform_node)
    graph.add_node("finalize", finalize_node)
    graph.add_edge(START, "init")
    graph.add_edge("init", "transform")
    graph.add_edge("transform", "finalize")
    graph.add_edge("finalize", END)
    return graph


# =============================================================================
# Scenarios
# =============================================================================


class TestLinearPipeline:
    """START -> init -> transform -> finalize -> END."""

    @pytest.mark.asyncio
    async def test_execute_returns_final_state(self):
        final_state = await linear_pipeline().compile().execute({"x": 2})

        assert final_state == {"x": 4, "stage": "completed"}

    @pytest.mark.asyncio
    async def test_invoke_reports_history(self):
        result = await linear_pipeline().compile().invoke({"x": 2})

        assert result.status == ExecutionStatus.COMPLETED
        assert result.completed
        assert result.abort_reason is None
        assert result.node_history == ["init", "transform", "finalize"]
        assert result.steps == 3
        assert result.errors == []
        assert result.duration >= 0

    @pytest.mark.asyncio
    async def test_initial_state_not_mutated(self):
        def mutating(state):
            state["x"] = 99
            return state

        graph = StateGraph()
        graph.add_node("mutate", mutating)
        graph.set_entry_point("mutate")
        graph.set_finish_point("mutate")
        initial = {"x": 1}

        final_state = await graph.compile().execute(initial)

        assert final_state["x"] == 99
        assert initial == {"x": 1}

    @pytest.mark.asyncio
    async def test_async_nodes_and_resolvers(self):
        async def fetch(state):
            return {**state, "fetched": True}

        async def choose(state):
            return "done" if state.get("fetched") else None

        graph = StateGraph()
        graph.add_node("fetch", fetch)
        graph.add_node("done", mark("done"))
        graph.set_entry_point("fetch")
        graph.add_conditional_edge("fetch", choose)
        graph.set_finish_point("done")

        final_state = await graph.compile().execute({})

        assert final_state["fetched"] is True
        assert final_state["visited"] == ["done"]

    @pytest.mark.asyncio
    async def test_schema_seeds_defaults(self):
        graph = StateGraph(schema=base_workflow_schema())
        graph.add_node("noop", lambda s: s)
        graph.set_entry_point("noop")
        graph.set_finish_point("noop")

        final_state = await graph.compile().execute({"stage": "received"})

        assert final_state["stage"] == "received"
        assert final_state["messages"] == []
        assert final_state["errors"] == []
        assert final_state["progress"] == 0


class TestSupervisorDispatch:
    """Supervisor sets routing.team; a TeamRouter picks the team entry."""

    def build(self):
        graph = StateGraph(name="supervisor")
        graph.add_node("supervisor", lambda s: {**s, "routing": {"team": s["requested"]}})
        graph.add_node("teamA_entry", mark("teamA_entry"))
        graph.add_node("teamB_entry", mark("teamB_entry"))
        graph.set_entry_point("supervisor")
        graph.add_conditional_edge(
            "supervisor", TeamRouter({"teamA": "teamA_entry", "teamB": "teamB_entry"})
        )
        graph.set_finish_point("teamA_entry")
        graph.set_finish_point("teamB_entry")
        return graph.compile()

    @pytest.mark.asyncio
    async def test_unknown_team_reaches_end(self):
        result = await self.build().invoke({"requested": "unknown"})

        assert result.completed
        assert result.node_history == ["supervisor"]
        assert "visited" not in result.state

    @pytest.mark.asyncio
    async def test_known_team_dispatched(self):
        result = await self.build().invoke({"requested": "teamB"})

        assert result.completed
        assert result.node_history == ["supervisor", "teamB_entry"]
        assert result.state["visited"] == ["teamB_entry"]


class TestFailSoft:
    """A raising node is recorded and skipped."""

    def build(self, config=None):
        graph = StateGraph()
        graph.add_node("before", mark("before"))
        graph.add_node("boom", failing_node)
        graph.add_node("after", mark("after"))
        graph.set_entry_point("before")
        graph.add_edge("before", "boom")
        graph.add_edge("boom", "after")
        graph.set_finish_point("after")
        return graph.compile(config)

    @pytest.mark.asyncio
    async def test_error_recorded_and_run_continues(self):
        result = await self.build().invoke({})

        assert result.completed
        assert result.node_history == ["before", "boom", "after"]
        assert result.state["visited"] == ["before", "after"]

        assert len(result.state["errors"]) == 1
        record = result.state["errors"][0]
        assert record["step"] == "boom"
        assert record["error"] == "kaboom"
        assert datetime.fromisoformat(record["timestamp"]).tzinfo is not None

    @pytest.mark.asyncio
    async def test_failed_node_changes_discarded(self):
        final_state = await self.build().execute({})

        assert "partial" not in final_state

    @pytest.mark.asyncio
    async def test_failed_node_changes_discarded_without_isolation(self):
        executor = self.build(ExecutorConfig(isolate_node_state=False))

        final_state = await executor.execute({"x": 1})

        assert "partial" not in final_state
        assert final_state["x"] == 1
        assert final_state["visited"] == ["before", "after"]
        assert [e["step"] for e in final_state["errors"]] == ["boom"]

    @pytest.mark.asyncio
    async def test_typed_errors_on_result(self):
        result = await self.build().invoke({})

        assert len(result.errors) == 1
        assert result.errors[0].step == "boom"
        assert result.errors[0].exception_type == "ValueError"

    @pytest.mark.asyncio
    async def test_existing_errors_preserved(self):
        earlier = {"step": "upstream", "error": "old", "timestamp": "2025-01-01T00:00:00+00:00"}

        final_state = await self.build().execute({"errors": [earlier]})

        assert [e["step"] for e in final_state["errors"]] == ["upstream", "boom"]

    @pytest.mark.asyncio
    async def test_non_mapping_return_is_failure(self):
        graph = StateGraph()
        graph.add_node("broken", lambda s: None)
        graph.add_node("after", mark("after"))
        graph.set_entry_point("broken")
        graph.add_edge("broken", "after")
        graph.set_finish_point("after")

        final_state = await graph.compile().execute({})

        assert final_state["errors"][0]["step"] == "broken"
        assert "expected a mapping" in final_state["errors"][0]["error"]
        assert final_state["visited"] == ["after"]

    @pytest.mark.asyncio
    async def test_failure_logged(self, caplog):
        await self.build().invoke({})

        assert "Node 'boom' failed" in caplog.text


class TestStructuralAborts:
    """Missing routes end the run without raising."""

    @pytest.mark.asyncio
    async def test_no_outgoing_edge(self):
        graph = StateGraph()
        graph.add_node("dead_end", mark("dead_end"))
        graph.set_entry_point("dead_end")

        result = await graph.compile().invoke({})

        assert result.status == ExecutionStatus.ABORTED
        assert isinstance(result.abort_reason, RouteNotFoundError)
        assert result.abort_reason.source == "dead_end"
        assert result.state["visited"] == ["dead_end"]

    @pytest.mark.asyncio
    async def test_no_start_edge(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))

        result = await graph.compile().invoke({"x": 1})

        assert result.aborted
        assert result.state == {"x": 1}
        assert result.node_history == []

    @pytest.mark.asyncio
    async def test_unknown_target(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.set_entry_point("a")
        graph.add_conditional_edge("a", lambda s: "ghost")

        result = await graph.compile().invoke({})

        assert result.aborted
        assert result.abort_reason.target == "ghost"

    @pytest.mark.asyncio
    async def test_resolver_returning_start_aborts(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.set_entry_point("a")
        graph.add_conditional_edge("a", lambda s: START)

        result = await graph.compile().invoke({})

        assert isinstance(result.abort_reason, RouteNotFoundError)

    @pytest.mark.asyncio
    async def test_raising_resolver_aborts(self):
        def bad_resolver(state):
            raise KeyError("routing")

        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.set_entry_point("a")
        graph.add_conditional_edge("a", bad_resolver)

        result = await graph.compile().invoke({})

        assert result.aborted
        assert isinstance(result.abort_reason.cause, KeyError)

    @pytest.mark.asyncio
    async def test_execute_returns_state_on_abort(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.set_entry_point("a")

        final_state = await graph.compile().execute({})

        assert final_state == {"visited": ["a"]}


class TestEdgeResolution:
    """Edges resolve in registration order; None defers."""

    @pytest.mark.asyncio
    async def test_none_falls_through_to_next_edge(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.add_node("b", mark("b"))
        graph.set_entry_point("a")
        graph.add_conditional_edge("a", lambda s: None)
        graph.add_edge("a", "b")
        graph.set_finish_point("b")

        final_state = await graph.compile().execute({})

        assert final_state["visited"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_first_direct_edge_wins(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.add_node("b", mark("b"))
        graph.add_node("c", mark("c"))
        graph.set_entry_point("a")
        graph.add_edge("a", "b")
        graph.add_edge("a", "c")
        graph.set_finish_point("b")
        graph.set_finish_point("c")

        final_state = await graph.compile().execute({})

        assert final_state["visited"] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_branch_mapping(self):
        graph = StateGraph()
        graph.add_node("classify", lambda s: {**s, "label": "urgent"})
        graph.add_node("escalate", mark("escalate"))
        graph.set_entry_point("classify")
        graph.add_conditional_edge("classify", lambda s: s["label"], {"urgent": "escalate"})
        graph.set_finish_point("escalate")

        final_state = await graph.compile().execute({})

        assert final_state["visited"] == ["escalate"]


class TestLoopDetection:
    """Termination under both loop detection strategies."""

    def ping_pong(self, config=None):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.add_node("b", mark("b"))
        graph.set_entry_point("a")
        graph.add_edge("a", "b")
        graph.add_conditional_edge("b", lambda s: "a")
        return graph.compile(config)

    def rework_loop(self, config=None):
        """supervisor -> work -> review -> supervisor -> END."""

        def supervisor(state):
            return {**state, "passes": state.get("passes", 0) + 1}

        graph = StateGraph()
        graph.add_node("supervisor", supervisor)
        graph.add_node("work", lambda s: {**s, "done": True})
        graph.add_node("review", mark("review"))
        graph.set_entry_point("supervisor")
        graph.add_conditional_edge("supervisor", lambda s: END if s.get("done") else "work")
        graph.add_edge("work", "review")
        graph.add_edge("review", "supervisor")
        return graph.compile(config)

    @pytest.mark.asyncio
    async def test_repeated_transition_aborts(self):
        result = await self.ping_pong().invoke({})

        assert result.aborted
        assert isinstance(result.abort_reason, LoopDetectedError)
        assert (result.abort_reason.source, result.abort_reason.target) == ("a", "b")
        assert result.node_history == ["a", "b", "a"]

    @pytest.mark.asyncio
    async def test_node_mode_aborts_on_revisit(self):
        config = ExecutorConfig(loop_detection=LoopDetection.NODE)

        result = await self.ping_pong(config).invoke({})

        assert result.aborted
        assert result.abort_reason.target == "a"
        assert result.node_history == ["a", "b"]

    @pytest.mark.asyncio
    async def test_transition_mode_allows_rework_loop(self):
        result = await self.rework_loop().invoke({})

        assert result.completed
        assert result.node_history == ["supervisor", "work", "review", "supervisor"]
        assert result.state["passes"] == 2

    @pytest.mark.asyncio
    async def test_node_mode_rejects_rework_loop(self):
        config = ExecutorConfig(loop_detection=LoopDetection.NODE)

        result = await self.rework_loop(config).invoke({})

        assert result.aborted
        assert result.node_history == ["supervisor", "work", "review"]

    @pytest.mark.asyncio
    async def test_self_loop_terminates(self):
        graph = StateGraph()
        graph.add_node("spin", mark("spin"))
        graph.set_entry_point("spin")
        graph.add_conditional_edge("spin", lambda s: "spin")

        result = await graph.compile().invoke({})

        assert result.aborted
        assert result.state["visited"] == ["spin", "spin"]

    @pytest.mark.asyncio
    async def test_abort_is_logged(self, caplog):
        await self.ping_pong().invoke({})

        assert "aborted" in caplog.text


class TestLoopGuard:
    """Tests for LoopGuard directly."""

    def test_transition_mode(self):
        guard = LoopGuard(LoopDetection.TRANSITION)

        assert guard.check(START, "a") is None
        assert guard.check("b", "a") is None
        assert isinstance(guard.check(START, "a"), LoopDetectedError)

    def test_node_mode_ignores_end(self):
        guard = LoopGuard(LoopDetection.NODE)

        assert guard.check("a", END) is None
        assert guard.check("b", END) is None
        assert guard.check(START, "a") is None
        assert guard.check("b", "a") is not None


class TestTransitionHandlers:
    """Post-node hooks run inside the failure boundary."""

    @pytest.mark.asyncio
    async def test_handler_sees_each_transition(self):
        seen = []

        def record(previous, new_state, node_name):
            seen.append((node_name, previous.get("x"), new_state.get("x")))
            return new_state

        graph = linear_pipeline()
        graph.add_transition_handler(record)

        await graph.compile().execute({"x": 2})

        assert seen == [("init", 2, 2), ("transform", 2, 4), ("finalize", 4, 4)]

    @pytest.mark.asyncio
    async def test_async_handler_can_modify_state(self):
        async def stamp(previous, new_state, node_name):
            return {**new_state, "last_node": node_name}

        graph = linear_pipeline()
        graph.add_transition_handler(stamp)

        final_state = await graph.compile().execute({"x": 2})

        assert final_state["last_node"] == "finalize"

    @pytest.mark.asyncio
    async def test_raising_handler_counts_as_node_failure(self):
        def picky(previous, new_state, node_name):
            if node_name == "transform":
                raise RuntimeError("handler failed")
            return new_state

        graph = linear_pipeline()
        graph.add_transition_handler(picky)

        final_state = await graph.compile().execute({"x": 2})

        assert final_state["x"] == 2
        assert final_state["stage"] == "completed"
        assert final_state["errors"][0]["step"] == "transform"
        assert final_state["errors"][0]["error"] == "handler failed"


class TestStream:
    """Tests for GraphExecutor.stream()."""

    @pytest.mark.asyncio
    async def test_yields_each_step(self):
        steps = [step async for step in linear_pipeline().compile().stream({"x": 2})]

        assert [s.node for s in steps] == ["init", "transform", "finalize"]
        assert steps[1].state["x"] == 4
        assert steps[-1].state["stage"] == "completed"
        assert not any(s.failed for s in steps)

    @pytest.mark.asyncio
    async def test_failed_step_flagged(self):
        graph = StateGraph()
        graph.add_node("boom", failing_node)
        graph.set_entry_point("boom")
        graph.set_finish_point("boom")

        steps = [step async for step in graph.compile().stream({})]

        assert len(steps) == 1
        assert steps[0].failed
        assert steps[0].error.step == "boom"
        assert steps[0].state["errors"][0]["step"] == "boom"

    @pytest.mark.asyncio
    async def test_stream_stops_on_abort(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.set_entry_point("a")

        steps = [step async for step in graph.compile().stream({})]

        assert [s.node for s in steps] == ["a"]

    @pytest.mark.asyncio
    async def test_result_reports_abort(self):
        graph = StateGraph()
        graph.add_node("a", mark("a"))
        graph.set_entry_point("a")

        stream = graph.compile().stream({})
        assert stream.result is None
        steps = [step async for step in stream]

        assert len(steps) == 1
        assert stream.result.status == ExecutionStatus.ABORTED
        assert isinstance(stream.result.abort_reason, RouteNotFoundError)
        assert stream.result.node_history == ["a"]

    @pytest.mark.asyncio
    async def test_result_reports_completion(self):
        stream = linear_pipeline().compile().stream({"x": 2})

        async for _ in stream:
            pass

        assert stream.result.completed
        assert stream.result.steps == 3
        assert stream.result.state["x"] == 4
