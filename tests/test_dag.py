"""Tests for WorkflowDAG adjacency and traversal helpers."""

import pytest

from tests.helpers.graphs import edge, fan_out_graph, linear_graph, node, review_loop_graph
from workflow_engine.dag import WorkflowDAG
from workflow_engine.schemas import WorkflowGraph


# ==================== FIXTURES ====================

@pytest.fixture
def loop_dag():
    return WorkflowDAG(review_loop_graph())


@pytest.fixture
def fan_dag():
    return WorkflowDAG(fan_out_graph())


class TestAdjacency:
    """Adjacency maps keep declaration order and skip dangling edges."""

    def test_outbound_in_declaration_order(self, fan_dag):
        assert [e.target for e in fan_dag.get_outbound_edges("lead")] == ["w1", "w2", "w3"]

    def test_inbound_edges(self, fan_dag):
        assert [e.source for e in fan_dag.get_inbound_edges("merge")] == ["w1", "w2", "w3"]

    def test_dangling_edges_are_not_indexed(self):
        graph = WorkflowGraph(nodes=[node("a")], edges=[edge("a", "ghost")])
        dag = WorkflowDAG(graph)
        assert dag.get_outbound_edges("a") == []
        assert dag.get_inbound_edges("ghost") == []

    def test_get_node_unknown_raises(self, fan_dag):
        with pytest.raises(KeyError):
            fan_dag.get_node("missing")


class TestTraversal:

    def test_entry_points_ignore_return_edges(self, loop_dag):
        assert loop_dag.entry_points() == ["start"]

    def test_terminal_nodes(self, loop_dag):
        assert loop_dag.terminal_nodes() == ["done"]

    def test_reachable_from(self, loop_dag):
        assert loop_dag.reachable_from(["draft"]) == {"draft", "review", "done"}

    def test_ancestors(self, fan_dag):
        assert fan_dag.ancestors("merge") == {"lead", "w1", "w2", "w3", "merge"}
        assert fan_dag.ancestors("merge", include_self=False) == {"lead", "w1", "w2", "w3"}

    def test_ancestors_inside_loop_exclude_self_when_asked(self, loop_dag):
        assert "draft" not in loop_dag.ancestors("draft", include_self=False)


class TestCycles:

    def test_return_edges_do_not_form_cycles(self, loop_dag):
        assert loop_dag.find_cycle() is None

    def test_linear_has_no_cycle(self):
        assert WorkflowDAG(linear_graph()).find_cycle() is None

    def test_undeclared_cycle_found(self):
        graph = WorkflowGraph(
            nodes=[node("a"), node("b"), node("c")],
            edges=[edge("a", "b"), edge("b", "c"), edge("c", "b")],
        )
        cycle = WorkflowDAG(graph).find_cycle()
        assert cycle == ["b", "c", "b"]
