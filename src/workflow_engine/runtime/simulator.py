"""Execution simulator.

Walks a validated workflow graph under mock inputs without invoking any
agent, producing a step trace with cost/time estimates, the critical path,
parallel blocks and a bottleneck report.

Traversal is a generator, so step-by-step and breakpoint runs hand control
back to the caller between steps. Results depend only on the graph and the
config: re-running a simulation yields identical steps, critical path and
coverage.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, Iterator, List, Optional, Set, Tuple, Union
from zoneinfo import ZoneInfo

from workflow_engine.dag import WorkflowDAG
from workflow_engine.exceptions import SimulationNotFoundError
from workflow_engine.runtime import simulation_analysis as analysis
from workflow_engine.runtime.artifact_store import ArtifactVersionStore
from workflow_engine.runtime.condition_evaluator import ConditionEvaluator
from workflow_engine.schemas import (
    AgentNode,
    AgentRole,
    Bottleneck,
    BottleneckImpact,
    BottleneckType,
    Edge,
    LoopConfig,
    LoopRole,
    RoutingDecision,
    SimulationConfig,
    SimulationMode,
    SimulationResult,
    SimulationStatus,
    SimulationStep,
    ValidationReport,
    ValidationStatus,
    WorkflowGraph,
)
from workflow_engine.telemetry import TelemetryBus
from workflow_engine.utils.token_utils import estimate_cost, estimate_node_tokens
from workflow_engine.validator import loops_for_edge, validate

logger = logging.getLogger(__name__)

STEP_BUDGET_EXCEEDED = "step budget exceeded"

ROLE_BASE_TIME_MS: Dict[AgentRole, int] = {
    AgentRole.ORCHESTRATOR: 2000,
    AgentRole.ARCHITECT: 5000,
    AgentRole.CRITIC: 3000,
    AgentRole.RED_TEAM: 4000,
    AgentRole.RESEARCHER: 6000,
    AgentRole.CODER: 8000,
    AgentRole.TESTER: 5000,
    AgentRole.WRITER: 4000,
    AgentRole.WORKER: 3000,
    AgentRole.FINALIZER: 2000,
    AgentRole.LOOP_CONTROLLER: 1000,
}
DEFAULT_BASE_TIME_MS = 3000

VisitKey = Tuple[str, Tuple[Tuple[str, int], ...]]


def _now_iso() -> str:
    return datetime.now(ZoneInfo("UTC")).isoformat()


@dataclass
class _Token:
    """A pending arrival at a node in one loop-iteration context."""
    node_id: str
    key: VisitKey
    predecessors: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class _Breakpoint:
    node_id: str


class SimulationRun:
    """Traversal state of one simulation.

    ``advance()`` runs until the mode asks for a pause or the trace ends;
    ``cancel()`` stops it. ``result`` is rebuilt from the steps recorded so
    far, so paused and cancelled runs expose a consistent partial result.
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        config: SimulationConfig,
        simulation_id: str,
        telemetry: TelemetryBus,
        evaluator: Optional[ConditionEvaluator] = None,
        report: Optional[ValidationReport] = None,
    ):
        self.graph = graph
        self.config = config
        self.simulation_id = simulation_id
        self.telemetry = telemetry
        self.evaluator = evaluator or ConditionEvaluator()
        self.report = report or validate(graph)
        self.dag = WorkflowDAG(graph)

        self.status = SimulationStatus.RUNNING
        self.failure_reason: Optional[str] = None
        self.paused_at: Optional[str] = None
        self.started_at = _now_iso()
        self.finished_at: Optional[str] = None

        self.steps: List[SimulationStep] = []
        self.state: Dict[str, Any] = copy.deepcopy(dict(config.mock_inputs))
        self.store = ArtifactVersionStore()
        self.loop_counters: Dict[str, int] = {}
        self.loop_peaks: Dict[str, int] = {}
        self.loop_bottlenecks: List[Bottleneck] = []
        self.warnings: List[str] = []
        self.edges_traversed: List[str] = []

        self._queue: Deque[_Token] = deque()
        self._pending: Dict[VisitKey, _Token] = {}
        self._executed: Dict[VisitKey, int] = {}
        self._forward_reach: Dict[str, Set[str]] = {}
        self._loops_by_member: Dict[str, List[LoopConfig]] = {}
        for loop in graph.loops:
            for member in loop.members:
                self._loops_by_member.setdefault(member, []).append(loop)
        self._edge_order = {e.edge_id: i for i, e in enumerate(graph.edges)}
        self._trace: Optional[Iterator[Union[SimulationStep, _Breakpoint]]] = None

        if not self.report.valid:
            self._finish(SimulationStatus.FAILED, f"Workflow validation failed with {len(self.report.errors)} error(s)")
        else:
            self._trace = self._traverse()

    # Control

    def advance(self) -> SimulationResult:
        """Run until the next pause point or the end of the trace."""
        if self.status.is_terminal:
            return self.result
        self.status = SimulationStatus.RUNNING
        self.paused_at = None
        for item in self._trace:
            if isinstance(item, _Breakpoint):
                self._pause(item.node_id, f"breakpoint at {item.node_id}")
                return self.result
            if self.config.mode == SimulationMode.STEP_BY_STEP:
                self._pause(item.node_id, "step")
                return self.result
        if self.failure_reason:
            self._finish(SimulationStatus.FAILED, self.failure_reason)
        else:
            self._finish(SimulationStatus.COMPLETED)
        return self.result

    def iter_steps(self) -> Iterator[SimulationStep]:
        """Yield every remaining step, ignoring pause points."""
        if self.status.is_terminal:
            return
        self.status = SimulationStatus.RUNNING
        for item in self._trace:
            if isinstance(item, SimulationStep):
                yield item
        if self.failure_reason:
            self._finish(SimulationStatus.FAILED, self.failure_reason)
        else:
            self._finish(SimulationStatus.COMPLETED)

    def cancel(self) -> SimulationResult:
        if not self.status.is_terminal:
            if self._trace is not None:
                self._trace.close()
            self._finish(SimulationStatus.CANCELLED)
        return self.result

    def _pause(self, node_id: str, reason: str) -> None:
        self.status = SimulationStatus.PAUSED
        self.paused_at = node_id
        self.telemetry.simulation_paused(self.simulation_id, node_id, reason)

    def _finish(self, status: SimulationStatus, reason: Optional[str] = None) -> None:
        self.status = status
        self.failure_reason = reason
        self.paused_at = None
        self.finished_at = _now_iso()
        if status == SimulationStatus.COMPLETED:
            result = self.result
            self.telemetry.simulation_completed(self.simulation_id, {
                "steps": len(result.steps),
                "total_estimated_time_ms": result.total_estimated_time_ms,
                "total_estimated_cost": result.total_estimated_cost,
                "coverage_percentage": result.coverage_percentage,
            })
        elif status == SimulationStatus.FAILED:
            logger.warning("Simulation %s failed: %s", self.simulation_id, reason)
            self.telemetry.simulation_failed(self.simulation_id, reason or "")
        else:
            self.telemetry.simulation_cancelled(self.simulation_id, len(self.steps))

    # Traversal

    def _traverse(self) -> Iterator[Union[SimulationStep, _Breakpoint]]:
        for path, content in self.config.mock_artifacts.items():
            self.store.put(path, content, created_by="mock", validation_status=ValidationStatus.VALID)

        for entry in self.dag.entry_points():
            for loop in self._loops_by_member.get(entry, []):
                if loop.entry_node_id == entry:
                    self._set_counter(loop, 1)
            self._enqueue(entry, None)

        breakpoints = set(self.config.breakpoints) if self.config.mode == SimulationMode.BREAKPOINTS else set()
        while self._queue:
            if len(self.steps) >= self.config.max_steps:
                self.failure_reason = STEP_BUDGET_EXCEEDED
                logger.warning("Simulation %s stopped after %d steps", self.simulation_id, len(self.steps))
                return
            token = self._next_ready()
            if token.node_id in breakpoints:
                yield _Breakpoint(token.node_id)
            del self._pending[token.key]
            step = self._execute(token)
            self.steps.append(step)
            self._executed[token.key] = step.step_number
            self.telemetry.step_completed(self.simulation_id, step.node_id, step.step_number, step.next_nodes)
            yield step

    def _next_ready(self) -> _Token:
        """Pop the first token that no other queued token can still reach.

        Joins wait until every live branch that leads to them has arrived;
        return edges are ignored so a loop body never blocks its own entry.
        """
        for _ in range(len(self._queue)):
            token = self._queue[0]
            if not any(self._can_reach(other.node_id, token.node_id) for other in self._queue if other is not token):
                return self._queue.popleft()
            self._queue.rotate(-1)
        return self._queue.popleft()

    def _can_reach(self, source: str, target: str) -> bool:
        if source == target:
            return False
        reach = self._forward_reach.get(source)
        if reach is None:
            reach = self._forward_reach[source] = self.dag.reachable_from([source], include_return=False)
        return target in reach

    def _loop_signature(self, node_id: str) -> Tuple[Tuple[str, int], ...]:
        loops = self._loops_by_member.get(node_id, [])
        return tuple(sorted((loop.loop_id, self.loop_counters.get(loop.loop_id, 0)) for loop in loops))

    def _set_counter(self, loop: LoopConfig, value: int) -> None:
        self.loop_counters[loop.loop_id] = value
        self.loop_peaks[loop.loop_id] = max(self.loop_peaks.get(loop.loop_id, 0), value)
        self.state[loop.counter_key] = value

    def _enqueue(self, node_id: str, predecessor: Optional[int]) -> None:
        key: VisitKey = (node_id, self._loop_signature(node_id))
        if key in self._executed:
            # Join onto a step that already ran in this iteration context.
            step = self.steps[self._executed[key] - 1]
            if predecessor is not None and predecessor not in step.depends_on and predecessor != step.step_number:
                step.depends_on.append(predecessor)
            return
        token = self._pending.get(key)
        if token is None:
            token = _Token(node_id=node_id, key=key)
            self._pending[key] = token
            self._queue.append(token)
        if predecessor is not None and predecessor not in token.predecessors:
            token.predecessors.append(predecessor)

    def _execute(self, token: _Token) -> SimulationStep:
        node = self.dag.get_node(token.node_id)
        step_number = len(self.steps) + 1
        warnings: List[str] = []

        inputs: Dict[str, Any] = {}
        input_artifacts: List[str] = []
        for name in node.inputs:
            artifact = self.store.get_latest(name)
            if artifact is not None and self.store.is_usable(artifact):
                inputs[name] = copy.deepcopy(artifact.content)
                input_artifacts.append(artifact.artifact_id)
            elif artifact is not None:
                warnings.append(f"Input '{name}' is a critical artifact that has not been validated")
            elif name in self.state:
                inputs[name] = copy.deepcopy(self.state[name])
            else:
                warnings.append(f"Input '{name}' is not available")

        produced = self._mock_output(node)
        output_artifacts: List[str] = []
        for path in node.outputs:
            content = produced.get(path, produced)
            artifact = self.store.put(
                path,
                content,
                derived_from=input_artifacts,
                created_by=node.node_id,
                validation_status=ValidationStatus.VALID,
            )
            output_artifacts.append(artifact.artifact_id)
            self.state[path] = True
        self.state.update(copy.deepcopy(self.config.mock_outputs.get(node.node_id, {})))

        time_ms = self.config.time_estimates.get(
            node.node_id, ROLE_BASE_TIME_MS.get(node.role, DEFAULT_BASE_TIME_MS)
        )
        tokens = self.config.token_estimates.get(node.node_id, estimate_node_tokens(node.prompt_template))

        step = SimulationStep(
            step_number=step_number,
            node_id=node.node_id,
            node_name=node.name or node.node_id,
            role=node.role.value,
            inputs=inputs,
            input_artifacts=input_artifacts,
            outputs=produced,
            output_artifacts=output_artifacts,
            execution_time_ms=time_ms,
            estimated_tokens=tokens,
            estimated_cost=estimate_cost(tokens, self.config.cost_per_token),
            depends_on=list(token.predecessors),
            loop_iterations={loop_id: count for loop_id, count in token.key[1]},
            warnings=warnings,
        )
        self._route(node, step)
        logger.debug("Step %d: %s -> %s", step_number, node.node_id, step.next_nodes)
        return step

    def _mock_output(self, node: AgentNode) -> Dict[str, Any]:
        if node.node_id in self.config.mock_outputs:
            return copy.deepcopy(self.config.mock_outputs[node.node_id])
        return {"result": f"Mock output from {node.name or node.node_id}", "status": "success"}

    def _route(self, node: AgentNode, step: SimulationStep) -> None:
        """Pick the outgoing edges to follow and enqueue their targets."""
        outgoing = self.dag.get_outbound_edges(node.node_id)
        artifacts = self.store.latest_artifacts()

        loop_status: Dict[str, str] = {}
        for edge in outgoing:
            if edge.loop_role not in (LoopRole.RETURN, LoopRole.EXIT):
                continue
            for loop in loops_for_edge(edge, self.graph.loops):
                if loop.loop_id in loop_status:
                    continue
                counter = self.loop_counters.get(loop.loop_id, 0)
                if self.evaluator.evaluate(loop.exit_condition, self.state, artifacts, node.node_id):
                    loop_status[loop.loop_id] = "exit"
                elif counter >= loop.max_iterations:
                    loop_status[loop.loop_id] = "forced-exit"
                else:
                    loop_status[loop.loop_id] = "continue"

        decisions: Dict[str, RoutingDecision] = {}
        candidates: List[Edge] = []
        returning: Set[str] = set()
        for edge in outgoing:
            owner = self._owner(edge)
            status = loop_status.get(owner.loop_id) if owner else None
            if edge.loop_role == LoopRole.RETURN and status != "continue":
                decisions[edge.edge_id] = RoutingDecision(
                    edge_id=edge.edge_id, target=edge.target, satisfied=False,
                    reason=f"loop {status or 'inactive'}")
                continue
            if edge.loop_role == LoopRole.EXIT and status == "forced-exit":
                decisions[edge.edge_id] = RoutingDecision(
                    edge_id=edge.edge_id, target=edge.target, satisfied=True,
                    reason="forced exit at max_iterations")
                candidates.append(edge)
                continue
            result = self.evaluator.explain(edge.condition, self.state, artifacts, node.node_id)
            decisions[edge.edge_id] = RoutingDecision(
                edge_id=edge.edge_id, target=edge.target, satisfied=result.satisfied, reason=result.reason)
            if result.error is not None:
                step.warnings.append(f"Edge '{edge.edge_id}': {result.error}")
            if result.satisfied:
                candidates.append(edge)
                if edge.loop_role == LoopRole.RETURN and owner:
                    returning.add(owner.loop_id)

        # A loop that goes round again does not also leave.
        chosen = []
        for edge in candidates:
            owner = self._owner(edge)
            if edge.loop_role == LoopRole.EXIT and owner and owner.loop_id in returning:
                decisions[edge.edge_id].reason = "suppressed: loop continues"
                continue
            chosen.append(edge)

        if not node.fans_out and chosen:
            chosen = [min(chosen, key=lambda e: (e.priority, self._edge_order[e.edge_id]))]

        for loop_id, status in loop_status.items():
            if status == "forced-exit":
                self._record_loop_limit(loop_id, node.node_id, step, has_exit=any(
                    e.loop_role == LoopRole.EXIT for e in chosen))

        for edge in chosen:
            decisions[edge.edge_id].taken = True
            self._update_counters(edge)
            self._enqueue(edge.target, step.step_number)
            step.next_nodes.append(edge.target)
            if edge.edge_id not in self.edges_traversed:
                self.edges_traversed.append(edge.edge_id)
        step.routing = [decisions[e.edge_id] for e in outgoing]

    def _owner(self, edge: Edge) -> Optional[LoopConfig]:
        owners = loops_for_edge(edge, self.graph.loops)
        return owners[0] if len(owners) == 1 else None

    def _update_counters(self, edge: Edge) -> None:
        for loop in self._loops_by_member.get(edge.target, []):
            if loop.entry_node_id != edge.target:
                continue
            if edge.loop_role == LoopRole.RETURN and edge.source in loop.members:
                self._set_counter(loop, self.loop_counters.get(loop.loop_id, 0) + 1)
            elif edge.source not in loop.members:
                self._set_counter(loop, 1)

    def _record_loop_limit(self, loop_id: str, node_id: str, step: SimulationStep, has_exit: bool) -> None:
        loop = self.graph.get_loop(loop_id)
        message = (
            f"Loop '{loop_id}' reached max_iterations ({loop.max_iterations}) without satisfying "
            f"its exit condition; {'forcing exit' if has_exit else 'stopping at ' + node_id}"
        )
        step.warnings.append(message)
        self.warnings.append(message)
        if not any(b.node_id == node_id and b.type == BottleneckType.LOOP_LIMIT for b in self.loop_bottlenecks):
            self.loop_bottlenecks.append(Bottleneck(
                node_id=node_id,
                type=BottleneckType.LOOP_LIMIT,
                impact=BottleneckImpact.HIGH,
                reason=message,
                suggestion="Check the exit condition or raise max_iterations",
            ))

    # Results

    def _parallel_eligible(self) -> Set[int]:
        by_number = {s.step_number: s for s in self.steps}
        eligible = set()
        for step in self.steps:
            node = self.dag.nodes[step.node_id]
            if node.config.parallel:
                eligible.add(step.step_number)
                continue
            for dep in step.depends_on:
                parent = by_number.get(dep)
                if parent and self.dag.nodes[parent.node_id].fans_out and len(parent.next_nodes) > 1:
                    eligible.add(step.step_number)
                    break
        return eligible

    @property
    def result(self) -> SimulationResult:
        steps = [s.model_copy(deep=True) for s in self.steps]
        by_number = {s.step_number: s for s in steps}
        path, total_time = analysis.critical_path(steps)
        blocks, peak = analysis.parallel_blocks(steps, self._parallel_eligible(), self.config.concurrency_limit)

        visited: List[str] = []
        for step in steps:
            if step.node_id not in visited:
                visited.append(step.node_id)
        reachable = self.dag.reachable_from(self.dag.entry_points()) if self.report.valid else set()

        bottlenecks = list(self.loop_bottlenecks)
        bottlenecks += analysis.critical_path_bottlenecks(steps, path, self.config.bottleneck_threshold)
        bottlenecks += analysis.structural_bottlenecks(self.dag, visited)

        return SimulationResult(
            simulation_id=self.simulation_id,
            workflow_id=self.graph.workflow_id,
            status=self.status,
            mode=self.config.mode,
            failure_reason=self.failure_reason,
            steps=steps,
            execution_order=[s.node_id for s in steps],
            critical_path=[by_number[n].node_id for n in path],
            parallel_blocks=blocks,
            peak_parallelism=peak,
            total_estimated_time_ms=total_time,
            total_estimated_tokens=sum(s.estimated_tokens for s in steps),
            total_estimated_cost=sum(s.estimated_cost for s in steps),
            bottlenecks=bottlenecks,
            nodes_visited=visited,
            nodes_skipped=[n for n in self.dag.order if n not in visited],
            edges_traversed=list(self.edges_traversed),
            coverage_percentage=analysis.coverage_percentage(visited, reachable),
            loop_iterations=dict(self.loop_peaks),
            final_state=copy.deepcopy(self.state),
            paused_at=self.paused_at,
            validation_errors=list(self.report.errors),
            validation_warnings=list(self.report.warnings),
            warnings=list(self.warnings),
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


class WorkflowSimulator:
    """Starts simulations and keeps paused ones available for resume/cancel."""

    def __init__(self, telemetry: Optional[TelemetryBus] = None, evaluator: Optional[ConditionEvaluator] = None):
        self.telemetry = telemetry or TelemetryBus()
        self.evaluator = evaluator or ConditionEvaluator()
        self._runs: Dict[str, SimulationRun] = {}

    def _create_run(self, graph: WorkflowGraph, config: Optional[SimulationConfig]) -> SimulationRun:
        config = config or SimulationConfig()
        simulation_id = f"sim-{uuid.uuid4().hex[:12]}"
        self.telemetry.simulation_started(simulation_id, graph.workflow_id, config.mode.value)
        run = SimulationRun(graph, config, simulation_id, self.telemetry, self.evaluator)
        self._runs[simulation_id] = run
        return run

    def start_simulation(self, graph: WorkflowGraph, config: Optional[SimulationConfig] = None) -> SimulationResult:
        """Validate and simulate ``graph``.

        Fast-forward runs to the end. Step-by-step returns a PAUSED result
        after the first step and breakpoint mode pauses before each breakpoint
        node; continue with ``resume`` or stop with ``cancel``.

        Returns:
            SimulationResult. Validation errors yield status FAILED without
            any step; exhausting ``max_steps`` yields FAILED with reason
            "step budget exceeded".
        """
        return self._create_run(graph, config).advance()

    def iter_steps(self, graph: WorkflowGraph, config: Optional[SimulationConfig] = None) -> Iterator[SimulationStep]:
        """Generator form: yields each step; the final result stays available
        through ``get_simulation`` once the generator is exhausted."""
        run = self._create_run(graph, config)
        yield from run.iter_steps()

    def _get_run(self, simulation_id: str) -> SimulationRun:
        if simulation_id not in self._runs:
            raise SimulationNotFoundError(simulation_id)
        return self._runs[simulation_id]

    def resume(self, simulation_id: str) -> SimulationResult:
        run = self._get_run(simulation_id)
        if run.status == SimulationStatus.PAUSED:
            self.telemetry.simulation_resumed(simulation_id)
        return run.advance()

    def cancel(self, simulation_id: str) -> SimulationResult:
        return self._get_run(simulation_id).cancel()

    def get_simulation(self, simulation_id: str) -> Optional[SimulationResult]:
        run = self._runs.get(simulation_id)
        return run.result if run else None

    def list_simulations(self) -> List[str]:
        return list(self._runs)

    def discard(self, simulation_id: str) -> None:
        self._runs.pop(simulation_id, None)


def start_simulation(graph: WorkflowGraph, config: Optional[SimulationConfig] = None) -> SimulationResult:
    """Run a simulation to completion (or its first pause) with a private simulator."""
    return WorkflowSimulator().start_simulation(graph, config)
