"""Workflow graph and loop schemas."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import Field

from .base import SchemaBase
from .condition import RoutingCondition
from .edge import Edge
from .node import AgentNode


class OrchestrationMode(str, Enum):
    SEQUENTIAL = "sequential"
    ORCHESTRATOR = "orchestrator"
    PARALLEL = "parallel"
    STATE_MACHINE = "state-machine"


class LoopConfig(SchemaBase):
    """A bounded loop: repeat the body until ``exit_condition`` holds.

    Loop members are the entry node, the body nodes and the exit node. The
    counter stored under ``iteration_state_key`` is 1 on the first pass and
    grows by one on every return to the entry; ``max_iterations`` caps it.

    Fields:
        loop_id: Unique identifier.
        entry_node_id: First node of every iteration.
        exit_node_id: Member from which the loop is left.
        body_node_ids: Remaining members.
        exit_condition: Repeat until this is true.
        max_iterations: Hard safety cap.
    """

    loop_id: str
    name: Optional[str] = Field(default=None, description="Display name")
    entry_node_id: str = Field(..., description="First node of every iteration")
    exit_node_id: str = Field(..., description="Member from which the loop is left")
    body_node_ids: List[str] = Field(default_factory=list, description="Other nodes inside the loop")
    exit_condition: RoutingCondition = Field(default_factory=RoutingCondition, description="Repeat until this condition is true")
    max_iterations: int = Field(default=10, description="Hard cap on iterations")
    iteration_state_key: Optional[str] = Field(default=None, description="State key holding the iteration counter")
    loop_state_key: Optional[str] = Field(default=None, description="State key for loop-scoped state")

    @property
    def counter_key(self) -> str:
        return self.iteration_state_key or f"{self.loop_id}_iteration"

    @property
    def state_key(self) -> str:
        return self.loop_state_key or f"{self.loop_id}_state"

    @property
    def members(self) -> Set[str]:
        return {self.entry_node_id, self.exit_node_id, *self.body_node_ids}


class WorkflowGraph(SchemaBase):
    """The aggregate the editor hands to the engine.

    Construction accepts dangling references and other structural problems so
    that the validator can report them. All helpers are read-only except
    ``remove_node``, which returns a new graph.

    Fields:
        workflow_id: Unique identifier.
        name: Display name.
        mode: Execution mode hint (per OrchestrationMode).
        nodes: Agent nodes in declaration order.
        edges: Directed edges in declaration order (order breaks priority ties).
        loops: Declared bounded loops.
    """

    workflow_id: str = Field(default="workflow", description="Unique identifier")
    name: Optional[str] = Field(default=None, description="Display name")
    description: Optional[str] = Field(default=None, description="What the workflow accomplishes")
    mode: OrchestrationMode = Field(default=OrchestrationMode.SEQUENTIAL, description="Execution mode")
    nodes: List[AgentNode] = Field(default_factory=list, description="Agent nodes")
    edges: List[Edge] = Field(default_factory=list, description="Directed edges")
    loops: List[LoopConfig] = Field(default_factory=list, description="Bounded loops")

    def node_map(self) -> Dict[str, AgentNode]:
        """Map node_id -> node; the first declaration wins on duplicates."""
        result: Dict[str, AgentNode] = {}
        for node in self.nodes:
            result.setdefault(node.node_id, node)
        return result

    def get_node(self, node_id: str) -> Optional[AgentNode]:
        return self.node_map().get(node_id)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        for edge in self.edges:
            if edge.edge_id == edge_id:
                return edge
        return None

    def get_loop(self, loop_id: str) -> Optional[LoopConfig]:
        for loop in self.loops:
            if loop.loop_id == loop_id:
                return loop
        return None

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def remove_node(self, node_id: str) -> "WorkflowGraph":
        """Return a copy without the node, its incident edges and loops using it."""
        nodes = [n for n in self.nodes if n.node_id != node_id]
        edges = [e for e in self.edges if node_id not in (e.source, e.target)]
        loops = []
        for loop in self.loops:
            if node_id in (loop.entry_node_id, loop.exit_node_id):
                continue
            if node_id in loop.body_node_ids:
                loop = loop.model_copy(
                    update={"body_node_ids": [n for n in loop.body_node_ids if n != node_id]}
                )
            loops.append(loop)
        return self.model_copy(update={"nodes": nodes, "edges": edges, "loops": loops}, deep=True)
