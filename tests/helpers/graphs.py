"""Workflow graph builders shared by the tests."""

from __future__ import annotations

from typing import Optional

from workflow_engine.schemas import (
    AgentNode,
    AgentRole,
    ConditionOperator,
    ConditionType,
    Edge,
    LoopConfig,
    LoopRole,
    NodeConfig,
    RoutingCondition,
    WorkflowGraph,
)


def node(node_id: str, role: AgentRole = AgentRole.WORKER, **kwargs) -> AgentNode:
    kwargs.setdefault("name", node_id.title())
    kwargs.setdefault("prompt_template", f"Handle {node_id}.")
    return AgentNode(node_id=node_id, role=role, **kwargs)


def edge(source: str, target: str, edge_id: Optional[str] = None, **kwargs) -> Edge:
    return Edge(edge_id=edge_id or f"{source}->{target}", source=source, target=target, **kwargs)


def state_equals(key: str, value) -> RoutingCondition:
    return RoutingCondition(
        type=ConditionType.STATE_CHECK, state_key=key, operator=ConditionOperator.EQUALS, value=value
    )


def linear_graph(*node_ids: str) -> WorkflowGraph:
    ids = node_ids or ("a", "b", "c")
    return WorkflowGraph(
        workflow_id="linear",
        nodes=[node(n) for n in ids],
        edges=[edge(s, t) for s, t in zip(ids, ids[1:])],
    )


def branch_graph() -> WorkflowGraph:
    """A -> B when state.ok is true, otherwise A -> C."""
    return WorkflowGraph(
        workflow_id="branch",
        nodes=[node("A"), node("B"), node("C")],
        edges=[
            edge("A", "B", condition=state_equals("ok", True), priority=0),
            edge("A", "C", priority=1),
        ],
    )


def review_loop_graph(
    max_iterations: int = 3,
    exit_condition: Optional[RoutingCondition] = None,
) -> WorkflowGraph:
    """start -> [draft -> review] -> done, returning from review to draft."""
    return WorkflowGraph(
        workflow_id="review-loop",
        nodes=[
            node("start"),
            node("draft", AgentRole.WRITER),
            node("review", AgentRole.CRITIC),
            node("done", AgentRole.FINALIZER),
        ],
        edges=[
            edge("start", "draft", loop_role=LoopRole.ENTRY),
            edge("draft", "review", loop_role=LoopRole.ITERATE),
            edge("review", "draft", loop_role=LoopRole.RETURN),
            edge("review", "done", loop_role=LoopRole.EXIT),
        ],
        loops=[
            LoopConfig(
                loop_id="revise",
                entry_node_id="draft",
                exit_node_id="review",
                exit_condition=exit_condition or state_equals("approved", True),
                max_iterations=max_iterations,
            )
        ],
    )


def fan_out_graph() -> WorkflowGraph:
    """An orchestrator fanning out to three workers that join at a finalizer."""
    workers = ["w1", "w2", "w3"]
    return WorkflowGraph(
        workflow_id="fan-out",
        nodes=[node("lead", AgentRole.ORCHESTRATOR)]
        + [node(w, config=NodeConfig(parallel=True)) for w in workers]
        + [node("merge", AgentRole.FINALIZER)],
        edges=[edge("lead", w) for w in workers] + [edge(w, "merge") for w in workers],
    )
