"""Tests for schema defaults, helpers and the schema registry."""

import pytest

from tests.helpers.graphs import linear_graph, node, review_loop_graph
from workflow_engine.schemas import (
    SCHEMA_REGISTRY,
    AgentNode,
    AgentRole,
    ConditionType,
    Edge,
    LoopConfig,
    LoopRole,
    NodeConfig,
    SimulationStatus,
    TimeoutPolicy,
    expression_syntax_error,
    get_schema_json,
)


class TestSchemaRegistry:
    """Tests for SCHEMA_REGISTRY and get_schema_json."""

    def test_registry_names(self):
        assert {"agent_node", "edge", "loop_config", "workflow_graph", "simulation_result"} <= set(SCHEMA_REGISTRY)

    def test_json_schema_export(self):
        schema = get_schema_json("agent_node")
        assert "node_id" in schema["properties"]
        assert "node_id" in schema["required"]

    def test_unknown_schema(self):
        with pytest.raises(KeyError):
            get_schema_json("nonexistent")


class TestDefaults:

    def test_edge_defaults(self):
        e = Edge(edge_id="e", source="a", target="b")
        assert e.condition.type == ConditionType.ALWAYS
        assert e.priority == 0
        assert e.loop_role == LoopRole.NONE
        assert not e.is_loop_edge

    def test_node_defaults(self):
        n = AgentNode(node_id="n")
        assert n.role == AgentRole.WORKER
        assert n.name == ""
        assert not n.fans_out

    def test_fans_out(self):
        assert AgentNode(node_id="o", role=AgentRole.ORCHESTRATOR).fans_out
        assert AgentNode(node_id="p", config=NodeConfig(parallel=True)).fans_out
        assert AgentNode(node_id="f", role=AgentRole.FINALIZER).is_terminal_role

    def test_loop_keys(self):
        loop = LoopConfig(loop_id="review", entry_node_id="a", exit_node_id="b", body_node_ids=["c"])
        assert loop.counter_key == "review_iteration"
        assert loop.state_key == "review_state"
        assert loop.members == {"a", "b", "c"}
        assert LoopConfig(loop_id="x", entry_node_id="a", exit_node_id="a", iteration_state_key="n").counter_key == "n"

    def test_timeout_defaults(self):
        policy = TimeoutPolicy()
        assert policy.response_timeout_ms <= policy.execution_timeout_ms
        assert policy.total_timeout_ms == 120000

    def test_whitespace_stripped(self):
        assert AgentNode(node_id="  draft ", name=" Draft ").node_id == "draft"

    def test_permissive_construction(self):
        n = AgentNode(node_id="n", config=NodeConfig(timeout_ms=-5, retries=-1))
        assert n.config.timeout_ms == -5


class TestWorkflowGraph:

    def test_lookup_helpers(self):
        graph = linear_graph()
        assert graph.get_node("b").name == "B"
        assert graph.get_node("zzz") is None
        assert [e.target for e in graph.outgoing_edges("a")] == ["b"]
        assert [e.source for e in graph.incoming_edges("c")] == ["b"]
        assert graph.get_edge("a->b").target == "b"

    def test_node_map_first_declaration_wins(self):
        graph = linear_graph()
        graph.nodes.append(node("a", name="Shadow"))
        assert graph.node_map()["a"].name == "A"

    def test_remove_node_returns_copy(self):
        graph = linear_graph()
        trimmed = graph.remove_node("b")
        assert [n.node_id for n in trimmed.nodes] == ["a", "c"]
        assert trimmed.edges == []
        assert len(graph.nodes) == 3

    def test_remove_loop_entry_drops_loop(self):
        graph = review_loop_graph()
        loop = graph.loops[0]
        assert graph.remove_node(loop.entry_node_id).loops == []


class TestMisc:

    @pytest.mark.parametrize("status,terminal", [
        (SimulationStatus.RUNNING, False),
        (SimulationStatus.PAUSED, False),
        (SimulationStatus.COMPLETED, True),
        (SimulationStatus.FAILED, True),
        (SimulationStatus.CANCELLED, True),
    ])
    def test_terminal_statuses(self, status, terminal):
        assert status.is_terminal is terminal

    def test_expression_syntax(self):
        assert expression_syntax_error("state['x'] > 1") is None
        assert expression_syntax_error("  ") == "expression is empty"
        assert expression_syntax_error("state[") is not None
