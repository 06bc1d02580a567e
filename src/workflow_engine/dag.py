"""Adjacency structures over a workflow graph.

Provides efficient successor/predecessor lookups, entry point inference,
reachability and cycle detection for the validator and the simulator.
"""

from typing import Dict, Iterable, List, Optional, Set

from .schemas.edge import Edge, LoopRole
from .schemas.node import AgentNode
from .schemas.workflow import WorkflowGraph


class WorkflowDAG:
    """Read-only adjacency view of a WorkflowGraph.

    Edges whose endpoints are unknown are kept out of the adjacency maps so
    that traversals never step onto a dangling id. ``return`` edges are the
    only edges allowed to close a cycle; helpers that need the forward
    structure ignore them.

    The view maintains:
    - nodes: Dictionary mapping node_id to AgentNode (first declaration wins)
    - adjacency: node_id -> outgoing edges in declaration order
    - reverse: node_id -> incoming edges in declaration order
    """

    def __init__(self, graph: WorkflowGraph):
        self.graph = graph
        self.nodes: Dict[str, AgentNode] = graph.node_map()
        self.order: List[str] = list(self.nodes)
        self.adjacency = self._build_adjacency()
        self.reverse = self._build_reverse()

    def _build_adjacency(self) -> Dict[str, List[Edge]]:
        """Build adjacency map: node_id -> list of outbound edges.

        Returns:
            Dictionary mapping each node_id to the edges that originate from
            it and point at a known node.
        """
        adj: Dict[str, List[Edge]] = {node_id: [] for node_id in self.nodes}
        for edge in self.graph.edges:
            if edge.source in adj and edge.target in self.nodes:
                adj[edge.source].append(edge)
        return adj

    def _build_reverse(self) -> Dict[str, List[Edge]]:
        rev: Dict[str, List[Edge]] = {node_id: [] for node_id in self.nodes}
        for edges in self.adjacency.values():
            for edge in edges:
                rev[edge.target].append(edge)
        return rev

    def get_node(self, node_id: str) -> AgentNode:
        """Get node by ID.

        Raises:
            KeyError: If the node ID does not exist in the graph.
        """
        if node_id not in self.nodes:
            raise KeyError(f"Node {node_id} not found in graph")
        return self.nodes[node_id]

    def get_outbound_edges(self, node_id: str) -> List[Edge]:
        return self.adjacency.get(node_id, [])

    def get_inbound_edges(self, node_id: str) -> List[Edge]:
        return self.reverse.get(node_id, [])

    def entry_points(self) -> List[str]:
        """Nodes without incoming forward edges, in declaration order.

        ``return`` edges close loops and do not count as dependencies.
        """
        entries = []
        for node_id in self.order:
            forward = [
                e for e in self.reverse[node_id]
                if e.loop_role != LoopRole.RETURN and e.source != node_id
            ]
            if not forward:
                entries.append(node_id)
        return entries

    def terminal_nodes(self) -> List[str]:
        return [node_id for node_id in self.order if not self.adjacency[node_id]]

    def reachable_from(self, starts: Iterable[str], include_return: bool = True) -> Set[str]:
        """All nodes reachable from ``starts`` (inclusive)."""
        seen: Set[str] = set()
        stack = [s for s in starts if s in self.nodes]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            for edge in self.adjacency[current]:
                if not include_return and edge.loop_role == LoopRole.RETURN:
                    continue
                if edge.target not in seen:
                    stack.append(edge.target)
        return seen

    def ancestors(self, node_id: str, include_self: bool = True) -> Set[str]:
        """Every node with a path to ``node_id`` (loops included)."""
        seen: Set[str] = set()
        stack = [node_id] if node_id in self.nodes else []
        while stack:
            current = stack.pop()
            for edge in self.reverse[current]:
                if edge.source not in seen:
                    seen.add(edge.source)
                    stack.append(edge.source)
        if include_self and node_id in self.nodes:
            seen.add(node_id)
        elif not include_self:
            seen.discard(node_id)
        return seen

    def find_cycle(self) -> Optional[List[str]]:
        """Return one cycle formed by non-``return`` edges, or None.

        Self-loops are reported by the validator separately and skipped here.
        """
        state: Dict[str, int] = {node_id: 0 for node_id in self.nodes}
        path: List[str] = []

        def dfs(node_id: str) -> Optional[List[str]]:
            state[node_id] = 1
            path.append(node_id)
            for edge in self.adjacency[node_id]:
                if edge.loop_role == LoopRole.RETURN or edge.target == node_id:
                    continue
                if state[edge.target] == 1:
                    start = path.index(edge.target)
                    return path[start:] + [edge.target]
                if state[edge.target] == 0:
                    found = dfs(edge.target)
                    if found:
                        return found
            path.pop()
            state[node_id] = 2
            return None

        for node_id in self.order:
            if state[node_id] == 0:
                found = dfs(node_id)
                if found:
                    return found
        return None
