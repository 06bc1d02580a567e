"""Tests for the workflow simulator.

Covers routing, bounded loops, fan-out joins, timing analysis and the
interactive pause/resume/cancel lifecycle.
"""

import pytest

from tests.helpers.graphs import (
    branch_graph,
    edge,
    fan_out_graph,
    linear_graph,
    node,
    review_loop_graph,
)
from workflow_engine.exceptions import SimulationNotFoundError
from workflow_engine.runtime.simulator import STEP_BUDGET_EXCEEDED, WorkflowSimulator, start_simulation
from workflow_engine.schemas import (
    AgentRole,
    BottleneckImpact,
    BottleneckType,
    ConditionType,
    EventType,
    RoutingCondition,
    SimulationConfig,
    SimulationMode,
    SimulationStatus,
    WorkflowGraph,
)
from workflow_engine.telemetry import TelemetryBus


# ==================== FIXTURES ====================

@pytest.fixture
def telemetry():
    return TelemetryBus()


@pytest.fixture
def simulator(telemetry):
    return WorkflowSimulator(telemetry=telemetry)


def run(graph, **config):
    return start_simulation(graph, SimulationConfig(**config))


# ==================== ROUTING ====================

class TestRouting:
    """Edge selection by condition and priority."""

    def test_linear_graph(self):
        result = run(linear_graph())
        assert result.status == SimulationStatus.COMPLETED
        assert result.execution_order == ["a", "b", "c"]
        assert [s.step_number for s in result.steps] == [1, 2, 3]
        assert result.coverage_percentage == 100.0

    def test_branch_taken_when_state_matches(self):
        """Condition holds, so the priority-0 edge wins over the fallback."""
        result = run(branch_graph(), mock_inputs={"ok": True})
        assert result.execution_order == ["A", "B"]
        assert result.nodes_skipped == ["C"]
        assert result.coverage_percentage < 100
        assert result.coverage_percentage == pytest.approx(66.67)
        assert result.bottlenecks == []
        assert result.status == SimulationStatus.COMPLETED

    def test_branch_falls_through_when_state_differs(self):
        result = run(branch_graph(), mock_inputs={"ok": False})
        assert result.execution_order == ["A", "C"]
        assert result.edges_traversed == ["A->C"]

    def test_routing_decisions_recorded(self):
        result = run(branch_graph(), mock_inputs={"ok": True})
        routing = {d.edge_id: d for d in result.steps[0].routing}
        assert routing["A->B"].satisfied and routing["A->B"].taken
        assert routing["A->C"].satisfied and not routing["A->C"].taken
        assert result.steps[0].next_nodes == ["B"]

    def test_mock_outputs_feed_later_conditions(self):
        graph = WorkflowGraph(
            nodes=[node("A"), node("B"), node("C")],
            edges=[
                edge("A", "B", condition=RoutingCondition(
                    type=ConditionType.CUSTOM_EXPRESSION, expression="state['score'] > 5")),
                edge("A", "C", priority=1),
            ],
        )
        result = run(graph, mock_outputs={"A": {"score": 9}})
        assert result.execution_order == ["A", "B"]
        assert result.final_state["score"] == 9

    def test_degraded_expression_warns_on_step(self):
        graph = WorkflowGraph(
            nodes=[node("A"), node("B"), node("C")],
            edges=[
                edge("A", "B", condition=RoutingCondition(
                    type=ConditionType.CUSTOM_EXPRESSION, expression="missing_name == 1")),
                edge("A", "C", priority=1),
            ],
        )
        result = run(graph)
        assert result.execution_order == ["A", "C"]
        assert any("A->B" in w for w in result.steps[0].warnings)

    def test_overflowing_expression_marks_edge_false(self):
        graph = WorkflowGraph(
            nodes=[node("A"), node("B")],
            edges=[edge("A", "B", condition=RoutingCondition(
                type=ConditionType.CUSTOM_EXPRESSION, expression="int(1e400) > 0"))],
        )
        result = run(graph)
        assert result.status == SimulationStatus.COMPLETED
        assert result.execution_order == ["A"]
        assert not result.steps[0].routing[0].satisfied
        assert any("A->B" in w for w in result.steps[0].warnings)

    def test_mock_inputs_are_not_mutated(self):
        inputs = {"ok": True}
        run(branch_graph(), mock_inputs=inputs, mock_outputs={"A": {"ok": False}})
        assert inputs == {"ok": True}


# ==================== LOOPS ====================

class TestLoops:
    """Bounded loop iteration and exit."""

    def test_exit_condition_satisfied_on_first_pass(self):
        result = run(review_loop_graph(), mock_outputs={"review": {"approved": True}})
        assert result.execution_order == ["start", "draft", "review", "done"]
        assert result.loop_iterations == {"revise": 1}
        assert result.warnings == []

    def test_max_iterations_forces_exit(self):
        """An exit condition that never holds stops at max_iterations."""
        result = run(review_loop_graph(max_iterations=3))
        assert result.status == SimulationStatus.COMPLETED
        assert len(result.steps) == 8
        assert result.execution_order.count("draft") == 3
        assert result.execution_order[-1] == "done"
        assert result.loop_iterations["revise"] == 3
        assert any("max_iterations" in w for w in result.warnings)

        limits = [b for b in result.bottlenecks if b.type == BottleneckType.LOOP_LIMIT]
        assert len(limits) == 1
        assert limits[0].node_id == "review"
        assert limits[0].impact == BottleneckImpact.HIGH

    def test_forced_exit_routing_reason(self):
        result = run(review_loop_graph(max_iterations=2))
        last_review = [s for s in result.steps if s.node_id == "review"][-1]
        decisions = {d.edge_id: d for d in last_review.routing}
        assert decisions["review->done"].taken
        assert decisions["review->done"].reason == "forced exit at max_iterations"
        assert not decisions["review->draft"].taken

    def test_iteration_limit_exit_condition(self):
        exit_condition = RoutingCondition(
            type=ConditionType.ITERATION_LIMIT, counter_key="revise_iteration", max_iterations=2
        )
        result = run(review_loop_graph(max_iterations=5, exit_condition=exit_condition))
        assert result.execution_order == ["start", "draft", "review", "draft", "review", "done"]
        assert result.warnings == []
        assert result.final_state["revise_iteration"] == 2

    def test_steps_record_iteration_counter(self):
        result = run(review_loop_graph(max_iterations=2))
        drafts = [s for s in result.steps if s.node_id == "draft"]
        assert [s.loop_iterations for s in drafts] == [{"revise": 1}, {"revise": 2}]

    def test_step_budget_exceeded(self):
        result = run(review_loop_graph(max_iterations=100), max_steps=5)
        assert result.status == SimulationStatus.FAILED
        assert result.failure_reason == STEP_BUDGET_EXCEEDED
        assert len(result.steps) == 5


# ==================== ANALYSIS ====================

class TestFanOutAnalysis:
    """Joins, parallel blocks and the critical path."""

    def test_join_waits_for_every_branch(self):
        result = run(fan_out_graph())
        assert result.execution_order == ["lead", "w1", "w2", "w3", "merge"]
        merge = result.steps[-1]
        assert merge.depends_on == [2, 3, 4]
        assert result.execution_order.count("merge") == 1

    def test_join_waits_for_longer_branch(self):
        """A fans out to a three-hop branch and a one-hop branch meeting at D."""
        graph = WorkflowGraph(
            nodes=[
                node("A", AgentRole.ORCHESTRATOR),
                node("B"), node("C"), node("E"),
                node("F", outputs=["f.out"]),
                node("D", inputs=["f.out"]),
            ],
            edges=[
                edge("A", "B"), edge("A", "C"),
                edge("B", "E"), edge("E", "F"),
                edge("F", "D"), edge("C", "D"),
            ],
        )
        result = run(graph)
        assert result.execution_order == ["A", "B", "C", "E", "F", "D"]
        join = result.steps[-1]
        assert join.depends_on == [3, 5]
        assert "f.out" in join.inputs
        assert join.warnings == []
        assert result.critical_path == ["A", "B", "E", "F", "D"]
        assert result.total_estimated_time_ms == 14000

    def test_parallel_block(self):
        result = run(fan_out_graph())
        assert len(result.parallel_blocks) == 1
        block = result.parallel_blocks[0]
        assert block.node_ids == ["w1", "w2", "w3"]
        assert block.level == 1
        assert result.peak_parallelism == 3

    def test_concurrency_limit_caps_peak(self):
        result = run(fan_out_graph(), concurrency_limit=2)
        assert result.peak_parallelism == 2
        assert result.parallel_blocks[0].size == 3

    def test_critical_path(self):
        result = run(fan_out_graph())
        assert result.critical_path == ["lead", "w1", "merge"]
        assert result.total_estimated_time_ms == 7000

    def test_slow_branch_becomes_critical_and_bottleneck(self):
        result = run(fan_out_graph(), time_estimates={"w2": 20000})
        assert result.critical_path == ["lead", "w2", "merge"]
        assert result.total_estimated_time_ms == 24000
        slow = [b for b in result.bottlenecks if b.type == BottleneckType.SLOW_NODE]
        assert [b.node_id for b in slow] == ["w2"]
        assert slow[0].impact == BottleneckImpact.HIGH

    def test_critical_path_grows_with_time_estimates(self):
        base = run(linear_graph())
        slower = run(linear_graph(), time_estimates={"b": 10000})
        assert slower.total_estimated_time_ms > base.total_estimated_time_ms
        assert base.total_estimated_time_ms == 9000

    def test_sequential_trace_peak_is_one(self):
        result = run(linear_graph())
        assert result.parallel_blocks == []
        assert result.peak_parallelism == 1

    def test_token_and_cost_estimates(self):
        result = run(linear_graph(), token_estimates={"a": 1000}, cost_per_token=0.001)
        first = result.steps[0]
        assert first.estimated_tokens == 1000
        assert first.estimated_cost == pytest.approx(1.0)
        # "Handle b." is 9 characters: ceil(9 / 4) + 500
        assert result.steps[1].estimated_tokens == 503
        assert result.total_estimated_tokens == 1000 + 503 + 503


# ==================== ARTIFACTS ====================

class TestArtifacts:

    def test_outputs_become_inputs_downstream(self):
        graph = WorkflowGraph(
            nodes=[node("a", outputs=["draft.md"]), node("b", inputs=["draft.md"], outputs=["final.md"])],
            edges=[edge("a", "b")],
        )
        result = run(graph)
        first, second = result.steps
        assert len(first.output_artifacts) == 1
        assert second.input_artifacts == first.output_artifacts
        assert "draft.md" in second.inputs
        assert result.final_state["draft.md"] is True

    def test_mock_artifacts_seed_inputs(self):
        graph = WorkflowGraph(nodes=[node("a", inputs=["brief.md"])])
        result = run(graph, mock_artifacts={"brief.md": "Write a poem"})
        assert result.steps[0].inputs == {"brief.md": "Write a poem"}
        assert result.steps[0].warnings == []

    def test_missing_input_warns(self):
        graph = WorkflowGraph(nodes=[node("a", inputs=["ghost.md"])])
        result = run(graph)
        assert result.steps[0].warnings == ["Input 'ghost.md' is not available"]


# ==================== LIFECYCLE ====================

class TestLifecycle:
    """Modes, pause/resume and cancel."""

    def test_invalid_graph_fails_without_steps(self):
        graph = WorkflowGraph(nodes=[node("a")], edges=[edge("a", "ghost")])
        result = run(graph)
        assert result.status == SimulationStatus.FAILED
        assert result.steps == []
        assert result.validation_errors

    def test_breakpoint_pauses_before_node(self, simulator):
        config = SimulationConfig(mode=SimulationMode.BREAKPOINTS, breakpoints=["B"], mock_inputs={"ok": True})
        paused = simulator.start_simulation(branch_graph(), config)
        assert paused.status == SimulationStatus.PAUSED
        assert paused.paused_at == "B"
        assert len(paused.steps) == 1

        finished = simulator.resume(paused.simulation_id)
        assert finished.status == SimulationStatus.COMPLETED
        assert len(finished.steps) == 2
        assert finished.paused_at is None

    def test_breakpoints_ignored_in_fast_forward(self):
        result = run(branch_graph(), breakpoints=["B"], mock_inputs={"ok": True})
        assert result.status == SimulationStatus.COMPLETED

    def test_step_by_step(self, simulator):
        config = SimulationConfig(mode=SimulationMode.STEP_BY_STEP)
        result = simulator.start_simulation(linear_graph(), config)
        seen = []
        while result.status == SimulationStatus.PAUSED:
            seen.append(len(result.steps))
            result = simulator.resume(result.simulation_id)
        assert seen == [1, 2, 3]
        assert result.status == SimulationStatus.COMPLETED
        assert result.execution_order == ["a", "b", "c"]

    def test_cancel_keeps_partial_steps(self, simulator):
        paused = simulator.start_simulation(linear_graph(), SimulationConfig(mode=SimulationMode.STEP_BY_STEP))
        cancelled = simulator.cancel(paused.simulation_id)
        assert cancelled.status == SimulationStatus.CANCELLED
        assert len(cancelled.steps) == 1

        # Terminal states stay put.
        assert simulator.resume(paused.simulation_id).status == SimulationStatus.CANCELLED
        assert simulator.cancel(paused.simulation_id).status == SimulationStatus.CANCELLED

    def test_unknown_simulation(self, simulator):
        with pytest.raises(SimulationNotFoundError):
            simulator.resume("sim-missing")
        with pytest.raises(SimulationNotFoundError):
            simulator.cancel("sim-missing")
        assert simulator.get_simulation("sim-missing") is None

    def test_iter_steps(self, simulator):
        steps = list(simulator.iter_steps(linear_graph()))
        assert [s.node_id for s in steps] == ["a", "b", "c"]
        (simulation_id,) = simulator.list_simulations()
        assert simulator.get_simulation(simulation_id).status == SimulationStatus.COMPLETED

    def test_discard(self, simulator):
        result = simulator.start_simulation(linear_graph())
        simulator.discard(result.simulation_id)
        assert simulator.list_simulations() == []

    def test_runs_are_deterministic(self):
        first = run(review_loop_graph(), mock_outputs={"draft": {"words": 10}})
        second = run(review_loop_graph(), mock_outputs={"draft": {"words": 10}})
        assert first.simulation_id != second.simulation_id
        assert [s.model_dump() for s in first.steps] == [s.model_dump() for s in second.steps]
        assert first.critical_path == second.critical_path
        assert first.coverage_percentage == second.coverage_percentage


class TestTelemetry:

    def test_events_for_completed_run(self, simulator, telemetry):
        result = simulator.start_simulation(linear_graph())
        names = [e.payload["event"] for e in telemetry.events]
        assert names == [
            "simulation_started",
            "step_completed",
            "step_completed",
            "step_completed",
            "simulation_completed",
        ]
        steps = telemetry.events_of(EventType.STEP, result.simulation_id)
        assert [e.node_id for e in steps] == ["a", "b", "c"]

    def test_failure_emits_error_event(self, simulator, telemetry):
        simulator.start_simulation(review_loop_graph(max_iterations=50), SimulationConfig(max_steps=3))
        (failure,) = telemetry.events_of(EventType.ERROR)
        assert failure.payload["reason"] == STEP_BUDGET_EXCEEDED

    def test_pause_and_resume_events(self, simulator, telemetry):
        config = SimulationConfig(mode=SimulationMode.BREAKPOINTS, breakpoints=["b"])
        paused = simulator.start_simulation(linear_graph(), config)
        simulator.resume(paused.simulation_id)
        names = [e.payload["event"] for e in telemetry.events]
        assert "simulation_paused" in names
        assert names.index("simulation_resumed") > names.index("simulation_paused")
