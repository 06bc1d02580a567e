"""Post-traversal analysis of a simulation trace.

All functions are pure over the recorded steps: a step's ``depends_on`` list
forms a DAG (loops are already unrolled to their realized iteration count),
on which the critical path, dependency levels and parallel blocks are
computed.
"""

from __future__ import annotations

from collections import defaultdict, deque
from statistics import mean
from typing import Dict, Iterable, List, Optional, Set, Tuple

from workflow_engine.dag import WorkflowDAG
from workflow_engine.schemas import (
    Bottleneck,
    BottleneckImpact,
    BottleneckType,
    ParallelBlock,
    SimulationStep,
)

SYNCHRONIZATION_EDGE_THRESHOLD = 3
FAN_OUT_EDGE_THRESHOLD = 3


def topological_order(steps: List[SimulationStep]) -> List[int]:
    """Step numbers with every dependency before its dependents.

    Ties resolve by step number. Should a join ever close a cycle, the
    remaining steps are appended in step order.
    """
    known = {s.step_number for s in steps}
    indegree = {s.step_number: 0 for s in steps}
    dependents: Dict[int, List[int]] = defaultdict(list)
    for step in steps:
        for dep in set(step.depends_on):
            if dep in known:
                indegree[step.step_number] += 1
                dependents[dep].append(step.step_number)

    ready = deque(sorted(n for n, d in indegree.items() if d == 0))
    order: List[int] = []
    while ready:
        current = ready.popleft()
        order.append(current)
        for nxt in sorted(dependents[current]):
            indegree[nxt] -= 1
            if indegree[nxt] == 0:
                ready.append(nxt)
    if len(order) < len(steps):
        placed = set(order)
        order.extend(s.step_number for s in steps if s.step_number not in placed)
    return order


def dependency_levels(steps: List[SimulationStep]) -> Dict[int, int]:
    """Longest dependency hop count from a root for every step."""
    by_number = {s.step_number: s for s in steps}
    levels: Dict[int, int] = {}
    for number in topological_order(steps):
        deps = [levels[d] for d in by_number[number].depends_on if d in levels]
        levels[number] = 1 + max(deps) if deps else 0
    return levels


def critical_path(steps: List[SimulationStep]) -> Tuple[List[int], int]:
    """Longest cumulative-time path through the step DAG.

    Returns:
        (step numbers along the path, total time in ms)
    """
    if not steps:
        return [], 0
    by_number = {s.step_number: s for s in steps}
    finish: Dict[int, int] = {}
    best_pred: Dict[int, Optional[int]] = {}
    for number in topological_order(steps):
        step = by_number[number]
        pred, pred_finish = None, 0
        for dep in sorted(set(step.depends_on)):
            if dep in finish and finish[dep] > pred_finish:
                pred, pred_finish = dep, finish[dep]
        finish[number] = pred_finish + step.execution_time_ms
        best_pred[number] = pred

    end = min(finish, key=lambda n: (-finish[n], n))
    path = []
    current: Optional[int] = end
    while current is not None:
        path.append(current)
        current = best_pred[current]
    path.reverse()
    return path, finish[end]


def schedule(steps: List[SimulationStep]) -> Dict[int, Tuple[int, int]]:
    """Earliest (start, finish) in ms for every step under unlimited concurrency."""
    by_number = {s.step_number: s for s in steps}
    times: Dict[int, Tuple[int, int]] = {}
    for number in topological_order(steps):
        step = by_number[number]
        start = max((times[d][1] for d in step.depends_on if d in times), default=0)
        times[number] = (start, start + step.execution_time_ms)
    return times


def parallel_blocks(
    steps: List[SimulationStep],
    eligible: Set[int],
    concurrency_limit: Optional[int] = None,
) -> Tuple[List[ParallelBlock], int]:
    """Group mutually independent parallel-eligible steps.

    Steps on the same dependency level have no path between them. Each level
    holding two or more eligible steps forms a block. The peak is the largest
    block (1 for a non-empty sequential trace), capped by ``concurrency_limit``.
    """
    if not steps:
        return [], 0
    by_number = {s.step_number: s for s in steps}
    levels = dependency_levels(steps)
    grouped: Dict[int, List[int]] = defaultdict(list)
    for number in sorted(eligible):
        if number in levels:
            grouped[levels[number]].append(number)

    blocks = []
    for level in sorted(grouped):
        members = grouped[level]
        if len(members) < 2:
            continue
        blocks.append(ParallelBlock(
            block_id=f"block-{len(blocks) + 1}",
            level=level,
            step_numbers=members,
            node_ids=[by_number[n].node_id for n in members],
        ))
    peak = max((b.size for b in blocks), default=1)
    if concurrency_limit is not None and concurrency_limit > 0:
        peak = min(peak, concurrency_limit)
    return blocks, peak


def _ratio_bottleneck(
    step: SimulationStep,
    value: float,
    comparators: List[float],
    threshold: float,
    kind: BottleneckType,
    unit: str,
) -> Optional[Bottleneck]:
    if not comparators:
        return None
    baseline = mean(comparators)
    if baseline <= 0 or value <= threshold * baseline:
        return None
    ratio = value / baseline
    impact = BottleneckImpact.HIGH if ratio >= 2 * threshold else BottleneckImpact.MEDIUM
    return Bottleneck(
        node_id=step.node_id,
        type=kind,
        impact=impact,
        reason=(
            f"Estimated {unit} {value:g} is {ratio:.1f}x the mean of "
            f"{len(comparators)} sibling step(s) ({baseline:g})"
        ),
        suggestion="Split the work, lower the thinking depth or run it in parallel with its siblings",
    )


def critical_path_bottlenecks(
    steps: List[SimulationStep],
    path: Iterable[int],
    threshold: float,
) -> List[Bottleneck]:
    """Flag critical-path steps far above the mean of their siblings.

    Siblings are the other steps on the same dependency level; a step alone
    on its level is compared against every other step of the trace.
    """
    by_number = {s.step_number: s for s in steps}
    levels = dependency_levels(steps)
    found: List[Bottleneck] = []
    seen = set()
    for number in path:
        step = by_number[number]
        others = [s for s in steps if s.step_number != number and levels.get(s.step_number) == levels[number]]
        if not others:
            others = [s for s in steps if s.step_number != number]
        checks = (
            (step.execution_time_ms, [s.execution_time_ms for s in others], BottleneckType.SLOW_NODE, "time (ms)"),
            (step.estimated_tokens, [s.estimated_tokens for s in others], BottleneckType.TOKEN_HEAVY, "tokens"),
        )
        for value, comparators, kind, unit in checks:
            if (step.node_id, kind) in seen:
                continue
            bottleneck = _ratio_bottleneck(step, value, comparators, threshold, kind, unit)
            if bottleneck:
                seen.add((step.node_id, kind))
                found.append(bottleneck)
    return found


def structural_bottlenecks(dag: WorkflowDAG, visited: Iterable[str]) -> List[Bottleneck]:
    """Synchronization points and wide fan-outs among visited nodes."""
    found = []
    for node_id in visited:
        incoming = len(dag.get_inbound_edges(node_id))
        outgoing = len(dag.get_outbound_edges(node_id))
        if incoming > SYNCHRONIZATION_EDGE_THRESHOLD:
            found.append(Bottleneck(
                node_id=node_id,
                type=BottleneckType.SYNCHRONIZATION_POINT,
                impact=BottleneckImpact.MEDIUM,
                reason=f"Node waits for {incoming} incoming edges",
                suggestion="Consider async aggregation or partial results",
            ))
        if outgoing > FAN_OUT_EDGE_THRESHOLD:
            found.append(Bottleneck(
                node_id=node_id,
                type=BottleneckType.HIGH_FAN_OUT,
                impact=BottleneckImpact.LOW,
                reason=f"Node fans out to {outgoing} outgoing edges",
                suggestion="Consider a hierarchical structure to reduce coordination overhead",
            ))
    return found


def coverage_percentage(visited: Iterable[str], reachable: Set[str]) -> float:
    """Distinct visited nodes over nodes reachable from the entry points."""
    if not reachable:
        return 0.0
    covered = len(set(visited) & reachable)
    return round(covered / len(reachable) * 100, 2)
