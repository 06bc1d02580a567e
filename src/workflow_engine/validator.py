"""Workflow graph validation.

``validate(graph)`` never raises for malformed graphs and never mutates its
input. Every problem becomes a classified ``ValidationFinding``:

- ERROR findings (dangling references, loop inconsistencies, bad timeout
  ordering, undeclared cycles) make the graph unsimulatable.
- WARNING findings (unreachable nodes, dead conditions, ambiguous priorities)
  are advisory.
- INFO findings are improvement suggestions.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Dict, Iterable, List, Optional, Set

from .dag import WorkflowDAG
from .schemas import (
    AgentRole,
    ConditionType,
    Edge,
    FallbackStrategy,
    FindingCategory,
    LoopConfig,
    LoopRole,
    RoutingCondition,
    Severity,
    ValidationFinding,
    ValidationReport,
    WorkflowGraph,
    expression_syntax_error,
)

MAX_RECOMMENDED_RETRY_ATTEMPTS = 10
MIN_HALF_OPEN_TIMEOUT_MS = 1000


def loops_for_edge(edge: Edge, loops: Iterable[LoopConfig]) -> List[LoopConfig]:
    """Loops a loop-role edge belongs to.

    An explicit ``loop_id`` names the loop directly. Otherwise membership is
    inferred from the endpoints: entry edges point at the loop entry from
    outside, iterate edges stay among members, return edges go from a member
    to the entry, exit edges leave from a member.
    """
    loops = list(loops)
    if edge.loop_role == LoopRole.NONE:
        return []
    if edge.loop_id:
        return [loop for loop in loops if loop.loop_id == edge.loop_id]

    matches = []
    for loop in loops:
        members = loop.members
        role = edge.loop_role
        if role == LoopRole.ENTRY:
            hit = edge.target == loop.entry_node_id and edge.source not in members
        elif role == LoopRole.ITERATE:
            hit = edge.source in members and edge.target in members
        elif role == LoopRole.RETURN:
            hit = edge.target == loop.entry_node_id and edge.source in members
        else:
            hit = edge.source in members and edge.target not in members
        if hit:
            matches.append(loop)
    return matches


class GraphValidator:
    """Collects findings for one graph. Use ``validate()`` for the common case."""

    def __init__(self, graph: WorkflowGraph):
        self.graph = graph
        self.dag = WorkflowDAG(graph)
        self.findings: List[ValidationFinding] = []

    def run(self) -> ValidationReport:
        if not self.graph.nodes and not self.graph.edges and not self.graph.loops:
            return ValidationReport.from_findings([])

        self._check_identity()
        self._check_nodes()
        self._check_structure()
        self._check_loops()
        self._check_conditions()
        self._check_edge_policies()
        self._check_priorities()
        self._check_inputs()
        self._suggest()
        return ValidationReport.from_findings(self.findings)

    def _add(
        self,
        code: str,
        category: FindingCategory,
        severity: Severity,
        message: str,
        node_id: Optional[str] = None,
        edge_id: Optional[str] = None,
        loop_id: Optional[str] = None,
    ) -> None:
        self.findings.append(
            ValidationFinding(
                code=code,
                category=category,
                severity=severity,
                message=message,
                node_id=node_id,
                edge_id=edge_id,
                loop_id=loop_id,
            )
        )

    def _check_identity(self) -> None:
        node_counts = Counter(n.node_id for n in self.graph.nodes)
        for node_id, count in node_counts.items():
            if count > 1:
                self._add("duplicate_node", FindingCategory.STRUCTURAL, Severity.ERROR,
                          f"Node id '{node_id}' is declared {count} times", node_id=node_id)
        edge_counts = Counter(e.edge_id for e in self.graph.edges)
        for edge_id, count in edge_counts.items():
            if count > 1:
                self._add("duplicate_edge", FindingCategory.STRUCTURAL, Severity.ERROR,
                          f"Edge id '{edge_id}' is declared {count} times", edge_id=edge_id)
        loop_counts = Counter(loop.loop_id for loop in self.graph.loops)
        for loop_id, count in loop_counts.items():
            if count > 1:
                self._add("duplicate_loop", FindingCategory.LOOP, Severity.ERROR,
                          f"Loop id '{loop_id}' is declared {count} times", loop_id=loop_id)

    def _check_nodes(self) -> None:
        for node in self.graph.nodes:
            if not node.name:
                self._add("missing_name", FindingCategory.NODE, Severity.WARNING,
                          f"Node '{node.node_id}' has no name", node_id=node.node_id)
            if not node.prompt_template:
                self._add("missing_prompt", FindingCategory.NODE, Severity.WARNING,
                          f"Node '{node.node_id}' has an empty prompt template", node_id=node.node_id)
            if node.config.timeout_ms is not None and node.config.timeout_ms <= 0:
                self._add("invalid_timeout", FindingCategory.NODE, Severity.ERROR,
                          f"Node '{node.node_id}' timeout must be positive", node_id=node.node_id)
            if node.config.retries is not None and node.config.retries < 0:
                self._add("invalid_retries", FindingCategory.NODE, Severity.ERROR,
                          f"Node '{node.node_id}' retry count cannot be negative", node_id=node.node_id)

    def _check_structure(self) -> None:
        nodes = self.dag.nodes
        for edge in self.graph.edges:
            for end, node_id in (("source", edge.source), ("target", edge.target)):
                if node_id not in nodes:
                    self._add("dangling_edge", FindingCategory.STRUCTURAL, Severity.ERROR,
                              f"Edge '{edge.edge_id}' {end} '{node_id}' does not exist",
                              edge_id=edge.edge_id)
            if edge.source == edge.target and edge.loop_role == LoopRole.NONE:
                self._add("self_loop", FindingCategory.STRUCTURAL, Severity.ERROR,
                          f"Edge '{edge.edge_id}' connects '{edge.source}' to itself outside a declared loop",
                          node_id=edge.source, edge_id=edge.edge_id)

        if not nodes:
            return

        cycle = self.dag.find_cycle()
        if cycle:
            self._add("circular_dependency", FindingCategory.STRUCTURAL, Severity.ERROR,
                      "Circular dependency without a return edge: " + " -> ".join(cycle),
                      node_id=cycle[0])

        entries = self.dag.entry_points()
        if not entries:
            self._add("no_entry_point", FindingCategory.STRUCTURAL, Severity.ERROR,
                      "Workflow has no entry point (every node has an incoming edge)")
            return

        reachable = self.dag.reachable_from(entries)
        for node_id in self.dag.order:
            if node_id not in reachable:
                self._add("unreachable_node", FindingCategory.STRUCTURAL, Severity.WARNING,
                          f"Node '{node_id}' is unreachable from any entry point", node_id=node_id)

        terminals = self.dag.terminal_nodes()
        for node_id in terminals:
            if not nodes[node_id].is_terminal_role and len(nodes) > 1:
                self._add("dead_end", FindingCategory.STRUCTURAL, Severity.WARNING,
                          f"Node '{node_id}' has no outgoing edge and is not a terminal role",
                          node_id=node_id)
        if not terminals:
            self._add("no_exit_point", FindingCategory.STRUCTURAL, Severity.WARNING,
                      "Workflow has no terminal node")

    def _check_loops(self) -> None:
        nodes = self.dag.nodes
        for edge in self.graph.edges:
            if edge.loop_role == LoopRole.NONE:
                continue
            owners = loops_for_edge(edge, self.graph.loops)
            if not owners:
                self._add("loop_edge_unowned", FindingCategory.LOOP, Severity.ERROR,
                          f"Edge '{edge.edge_id}' has loop role '{edge.loop_role.value}' but belongs to no declared loop",
                          edge_id=edge.edge_id, loop_id=edge.loop_id)
                continue
            if len(owners) > 1:
                names = ", ".join(loop.loop_id for loop in owners)
                self._add("loop_edge_ambiguous", FindingCategory.LOOP, Severity.ERROR,
                          f"Edge '{edge.edge_id}' matches several loops ({names}); set loop_id",
                          edge_id=edge.edge_id)
                continue
            self._check_loop_edge_shape(edge, owners[0])

        for loop in self.graph.loops:
            for label, node_id in (("entry", loop.entry_node_id), ("exit", loop.exit_node_id)):
                if node_id not in nodes:
                    self._add("loop_endpoint_missing", FindingCategory.LOOP, Severity.ERROR,
                              f"Loop '{loop.loop_id}' {label} node '{node_id}' does not exist",
                              loop_id=loop.loop_id)
            for node_id in loop.body_node_ids:
                if node_id not in nodes:
                    self._add("loop_body_missing", FindingCategory.LOOP, Severity.ERROR,
                              f"Loop '{loop.loop_id}' body node '{node_id}' does not exist",
                              loop_id=loop.loop_id)
            if loop.max_iterations < 1:
                self._add("loop_max_iterations", FindingCategory.LOOP, Severity.ERROR,
                          f"Loop '{loop.loop_id}' max_iterations must be at least 1",
                          loop_id=loop.loop_id)

            members = {m for m in loop.members if m in nodes}
            if loop.entry_node_id in nodes:
                inner = self._reachable_within(loop.entry_node_id, members)
                for node_id in sorted(members - inner):
                    self._add("loop_body_unreachable", FindingCategory.LOOP, Severity.ERROR,
                              f"Loop '{loop.loop_id}' member '{node_id}' is not reachable from the entry inside the loop",
                              node_id=node_id, loop_id=loop.loop_id)

            has_return = any(
                e.loop_role == LoopRole.RETURN and loop in loops_for_edge(e, self.graph.loops)
                for e in self.graph.edges
            )
            if not has_return:
                self._add("loop_without_return", FindingCategory.LOOP, Severity.WARNING,
                          f"Loop '{loop.loop_id}' has no return edge and will run at most once",
                          loop_id=loop.loop_id)

    def _check_loop_edge_shape(self, edge: Edge, loop: LoopConfig) -> None:
        members = loop.members
        role = edge.loop_role
        problem = None
        if role in (LoopRole.ITERATE, LoopRole.RETURN):
            if edge.source not in members or edge.target not in members:
                problem = f"{role.value} edge '{edge.edge_id}' leaves loop '{loop.loop_id}'"
            elif role == LoopRole.RETURN and edge.target != loop.entry_node_id:
                problem = f"return edge '{edge.edge_id}' must target loop entry '{loop.entry_node_id}'"
        elif role == LoopRole.ENTRY and edge.target != loop.entry_node_id:
            problem = f"entry edge '{edge.edge_id}' must target loop entry '{loop.entry_node_id}'"
        elif role == LoopRole.EXIT and edge.source not in members:
            problem = f"exit edge '{edge.edge_id}' must leave from a member of loop '{loop.loop_id}'"
        if problem:
            self._add("loop_edge_escapes", FindingCategory.LOOP, Severity.ERROR,
                      problem[0].upper() + problem[1:], edge_id=edge.edge_id, loop_id=loop.loop_id)

    def _reachable_within(self, start: str, members: Set[str]) -> Set[str]:
        seen = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for edge in self.dag.get_outbound_edges(current):
                if edge.target in members and edge.target not in seen:
                    seen.add(edge.target)
                    stack.append(edge.target)
        return seen

    def _produced_upstream(self, node_ids: Set[str]) -> Set[str]:
        produced: Set[str] = set()
        for node_id in node_ids:
            node = self.dag.nodes.get(node_id)
            if node:
                produced.update(node.outputs)
        for loop in self.graph.loops:
            produced.update((loop.counter_key, loop.state_key))
        return produced

    def _check_conditions(self) -> None:
        for edge in self.graph.edges:
            if edge.source not in self.dag.nodes:
                continue
            upstream = self.dag.ancestors(edge.source)
            self._check_condition(edge.condition, upstream, f"Edge '{edge.edge_id}'",
                                  edge_id=edge.edge_id)
        for loop in self.graph.loops:
            if loop.entry_node_id not in self.dag.nodes:
                continue
            upstream = self.dag.ancestors(loop.entry_node_id) | {
                m for m in loop.members if m in self.dag.nodes
            }
            self._check_condition(loop.exit_condition, upstream,
                                  f"Loop '{loop.loop_id}' exit condition", loop_id=loop.loop_id)

    def _check_condition(
        self,
        condition: RoutingCondition,
        upstream: Set[str],
        owner: str,
        edge_id: Optional[str] = None,
        loop_id: Optional[str] = None,
    ) -> None:
        produced = self._produced_upstream(upstream)
        if condition.type == ConditionType.CUSTOM_EXPRESSION:
            error = expression_syntax_error(condition.expression)
            if error:
                self._add("invalid_expression", FindingCategory.CONDITION, Severity.WARNING,
                          f"{owner} expression is invalid ({error}) and will evaluate as false",
                          edge_id=edge_id, loop_id=loop_id)
            return

        state_key = condition.referenced_state_key()
        artifact_path = condition.referenced_artifact_path()
        if condition.type == ConditionType.STATE_CHECK and not state_key:
            self._add("incomplete_condition", FindingCategory.CONDITION, Severity.WARNING,
                      f"{owner} state-check has no state key", edge_id=edge_id, loop_id=loop_id)
        elif state_key and state_key not in produced:
            self._add("dead_condition", FindingCategory.CONDITION, Severity.WARNING,
                      f"{owner} checks state key '{state_key}' that no upstream node produces",
                      edge_id=edge_id, loop_id=loop_id)
        if condition.type in (ConditionType.ARTIFACT_EXISTS, ConditionType.ARTIFACT_VALID) and not artifact_path:
            self._add("incomplete_condition", FindingCategory.CONDITION, Severity.WARNING,
                      f"{owner} artifact condition has no path", edge_id=edge_id, loop_id=loop_id)
        elif artifact_path and artifact_path not in produced:
            self._add("dead_condition", FindingCategory.CONDITION, Severity.WARNING,
                      f"{owner} checks artifact '{artifact_path}' that no upstream node produces",
                      edge_id=edge_id, loop_id=loop_id)

    def _check_edge_policies(self) -> None:
        edge_ids = {e.edge_id for e in self.graph.edges}
        for edge in self.graph.edges:
            policy = edge.resilience
            if policy is None:
                continue
            eid = edge.edge_id
            retry = policy.retry
            if retry is not None:
                if retry.max_attempts < 1:
                    self._add("retry_attempts", FindingCategory.POLICY, Severity.ERROR,
                              f"Edge '{eid}' retry max_attempts must be at least 1", edge_id=eid)
                elif retry.max_attempts > MAX_RECOMMENDED_RETRY_ATTEMPTS:
                    self._add("retry_attempts", FindingCategory.POLICY, Severity.WARNING,
                              f"Edge '{eid}' retries more than {MAX_RECOMMENDED_RETRY_ATTEMPTS} times", edge_id=eid)
                if retry.backoff_coefficient < 1:
                    self._add("retry_backoff", FindingCategory.POLICY, Severity.ERROR,
                              f"Edge '{eid}' backoff coefficient must be at least 1", edge_id=eid)
                if retry.initial_interval_ms > retry.max_interval_ms:
                    self._add("retry_interval", FindingCategory.POLICY, Severity.ERROR,
                              f"Edge '{eid}' initial retry interval exceeds the maximum interval", edge_id=eid)

            breaker = policy.circuit_breaker
            if breaker is not None and breaker.enabled:
                if not 0 <= breaker.failure_threshold <= 1:
                    self._add("circuit_threshold", FindingCategory.POLICY, Severity.ERROR,
                              f"Edge '{eid}' circuit breaker threshold must be between 0 and 1", edge_id=eid)
                if breaker.half_open_timeout_ms < MIN_HALF_OPEN_TIMEOUT_MS:
                    self._add("circuit_half_open", FindingCategory.POLICY, Severity.WARNING,
                              f"Edge '{eid}' half-open timeout below {MIN_HALF_OPEN_TIMEOUT_MS}ms may cause flapping",
                              edge_id=eid)

            fallback = policy.fallback
            if (fallback is not None and fallback.enabled
                    and fallback.strategy == FallbackStrategy.ALTERNATIVE_AGENT):
                if not fallback.fallback_edge_id:
                    self._add("fallback_edge", FindingCategory.POLICY, Severity.ERROR,
                              f"Edge '{eid}' alternative-agent fallback needs a fallback edge", edge_id=eid)
                elif fallback.fallback_edge_id not in edge_ids:
                    self._add("fallback_edge", FindingCategory.POLICY, Severity.ERROR,
                              f"Edge '{eid}' fallback edge '{fallback.fallback_edge_id}' does not exist",
                              edge_id=eid)

            timeout = policy.timeout
            if timeout is not None:
                if timeout.response_timeout_ms > timeout.execution_timeout_ms:
                    self._add("timeout_order", FindingCategory.TIMEOUT, Severity.ERROR,
                              f"Edge '{eid}' response timeout ({timeout.response_timeout_ms}ms) exceeds "
                              f"execution timeout ({timeout.execution_timeout_ms}ms)", edge_id=eid)
                if (timeout.total_timeout_ms is not None
                        and timeout.execution_timeout_ms > timeout.total_timeout_ms):
                    self._add("timeout_total", FindingCategory.TIMEOUT, Severity.WARNING,
                              f"Edge '{eid}' execution timeout exceeds total timeout", edge_id=eid)

    def _check_priorities(self) -> None:
        groups: Dict[str, Dict[int, List[str]]] = defaultdict(lambda: defaultdict(list))
        for edge in self.graph.edges:
            if edge.loop_role in (LoopRole.RETURN, LoopRole.EXIT):
                continue
            groups[edge.source][edge.priority].append(edge.edge_id)
        for source, by_priority in groups.items():
            node = self.dag.nodes.get(source)
            if node is not None and node.fans_out:
                continue
            for priority, edge_ids in by_priority.items():
                if len(edge_ids) > 1:
                    self._add("duplicate_priority", FindingCategory.PRIORITY, Severity.WARNING,
                              f"Node '{source}' has edges {', '.join(edge_ids)} with the same priority {priority}; "
                              "declaration order breaks the tie", node_id=source)

    def _check_inputs(self) -> None:
        for node in self.graph.nodes:
            if not node.inputs or node.node_id not in self.dag.nodes:
                continue
            produced = self._produced_upstream(self.dag.ancestors(node.node_id, include_self=False))
            missing = [name for name in node.inputs if name not in produced]
            if missing:
                self._add("missing_input", FindingCategory.NODE, Severity.WARNING,
                          f"Node '{node.node_id}' expects inputs no upstream node produces: {', '.join(missing)}",
                          node_id=node.node_id)

    def _suggest(self) -> None:
        nodes = self.graph.nodes
        roles = {n.role for n in nodes}
        if len(nodes) > 5 and AgentRole.ORCHESTRATOR not in roles:
            self._add("suggest_orchestrator", FindingCategory.SUGGESTION, Severity.INFO,
                      "Consider adding an orchestrator to coordinate this many agents")
        if len(nodes) > 2 and AgentRole.CRITIC not in roles:
            self._add("suggest_critic", FindingCategory.SUGGESTION, Severity.INFO,
                      "Consider adding a critic agent for quality assurance")
        if len(nodes) > 1 and AgentRole.FINALIZER not in roles:
            self._add("suggest_finalizer", FindingCategory.SUGGESTION, Severity.INFO,
                      "Consider adding a finalizer agent to consolidate outputs")

        by_dependencies: Dict[tuple, List[str]] = defaultdict(list)
        for node_id in self.dag.order:
            incoming = self.dag.get_inbound_edges(node_id)
            if not incoming or any(e.condition.type != ConditionType.ALWAYS for e in incoming):
                continue
            key = tuple(sorted({e.source for e in incoming}))
            by_dependencies[key].append(node_id)
        for deps, group in by_dependencies.items():
            if len(group) > 1 and not all(self.dag.nodes[n].config.parallel for n in group):
                self._add("suggest_parallel", FindingCategory.SUGGESTION, Severity.INFO,
                          f"Nodes {', '.join(group)} share dependencies ({', '.join(deps)}) and could run in parallel")


def validate(graph: WorkflowGraph) -> ValidationReport:
    """Validate a workflow graph and return classified findings.

    Args:
        graph: The graph to check. Never mutated.

    Returns:
        ValidationReport with ``valid`` False when any ERROR finding exists.
    """
    return GraphValidator(graph).run()
