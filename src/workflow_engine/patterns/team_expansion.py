"""Hierarchical team trees and their expansion into workflow graphs.

A team is a tree: a leader delegates to members, and any member may lead a
sub-team of its own. ``TeamTree`` stores the members in a flat arena keyed
by id, with parent and child references by id, so edits never chase nested
structures. ``expand_team_to_graph`` turns the tree into a ``WorkflowGraph``
with one node per member and one edge per leader -> member link.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional

from workflow_engine.exceptions import TeamStructureError
from workflow_engine.schemas import AgentNode, AgentRole, Edge, NodeConfig, WorkflowGraph

NODE_WIDTH = 300
NODE_HEIGHT = 200
HORIZONTAL_SPACING = 50

LEADER_CAPABILITIES = ("team orchestration", "delegation")

LEADERSHIP_BLOCK = """

---

## TEAM LEADERSHIP RESPONSIBILITIES

As the leader of the {team} team ({count} member{plural}), you are responsible for:

### 1. ORCHESTRATION
- Break your objectives down into sub-tasks for your team members
- Distribute work according to member capabilities

### 2. DELEGATION
- Assign each task to the most suitable member with clear success criteria
- Track which member is working on which task

### 3. VALIDATION
- Check each member's output against the quality bar and request revisions

### 4. AGGREGATION
- Combine the members' outputs into one result for your own leader
"""


@dataclass
class TeamMember:
    member_id: str
    name: str
    role: AgentRole = AgentRole.WORKER
    specialization: str = ""
    capabilities: List[str] = field(default_factory=list)
    prompt_template: str = ""
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)


_STRUCTURAL_FIELDS = {"member_id", "parent_id", "child_ids"}


class TeamTree:
    """Arena of team members with parent/child links by id.

    Args:
        max_depth: Deepest level allowed below the root (root is depth 0).
        max_team_size: Most direct members a single leader may have.
    """

    def __init__(self, max_depth: Optional[int] = None, max_team_size: Optional[int] = None):
        self.max_depth = max_depth
        self.max_team_size = max_team_size
        self.root_id: Optional[str] = None
        self._members: Dict[str, TeamMember] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._members)

    def __contains__(self, member_id: object) -> bool:
        return member_id in self._members

    def _next_id(self) -> str:
        while True:
            candidate = f"member-{next(self._ids)}"
            if candidate not in self._members:
                return candidate

    def add_member(
        self,
        name: str,
        parent_id: Optional[str] = None,
        *,
        member_id: Optional[str] = None,
        role: AgentRole = AgentRole.WORKER,
        specialization: str = "",
        capabilities: Optional[List[str]] = None,
        prompt_template: str = "",
    ) -> TeamMember:
        """Add a member under ``parent_id``, or as the root when no parent is given.

        Raises:
            TeamStructureError: On a second root, an unknown parent, a
                duplicate id, or when a depth or team size limit is exceeded.
        """
        if member_id is not None and member_id in self._members:
            raise TeamStructureError("duplicate member id", member_id)
        if parent_id is None:
            if self.root_id is not None:
                raise TeamStructureError("team already has a leader; pass parent_id")
        else:
            parent = self._members.get(parent_id)
            if parent is None:
                raise TeamStructureError("unknown parent", parent_id)
            if self.max_depth is not None and self.depth(parent_id) + 1 > self.max_depth:
                raise TeamStructureError(f"maximum depth {self.max_depth} exceeded", parent_id)
            if self.max_team_size is not None and len(parent.child_ids) >= self.max_team_size:
                raise TeamStructureError(f"team size limit {self.max_team_size} reached", parent_id)

        member = TeamMember(
            member_id=member_id or self._next_id(),
            name=name,
            role=role,
            specialization=specialization,
            capabilities=list(capabilities or []),
            prompt_template=prompt_template,
            parent_id=parent_id,
        )
        self._members[member.member_id] = member
        if parent_id is None:
            self.root_id = member.member_id
        else:
            self._members[parent_id].child_ids.append(member.member_id)
        return member

    def update_member(self, member_id: str, **changes: Any) -> TeamMember:
        """Change descriptive fields of a member. Tree links cannot be edited here."""
        member = self.get_member(member_id)
        blocked = _STRUCTURAL_FIELDS.intersection(changes)
        if blocked:
            raise TeamStructureError(f"cannot update {', '.join(sorted(blocked))}", member_id)
        try:
            updated = replace(member, **changes)
        except TypeError as e:
            raise TeamStructureError(str(e), member_id) from e
        self._members[member_id] = updated
        return updated

    def remove_member(self, member_id: str) -> List[str]:
        """Remove a member and its whole sub-team. Returns the removed ids."""
        member = self.get_member(member_id)
        removed = [m.member_id for m in self.walk(member_id)]
        for mid in removed:
            del self._members[mid]
        if member.parent_id is None:
            self.root_id = None
        else:
            self._members[member.parent_id].child_ids.remove(member_id)
        return removed

    def get_member(self, member_id: str) -> TeamMember:
        member = self._members.get(member_id)
        if member is None:
            raise TeamStructureError("unknown member", member_id)
        return member

    def children(self, member_id: str) -> List[TeamMember]:
        return [self._members[cid] for cid in self.get_member(member_id).child_ids]

    def parent(self, member_id: str) -> Optional[TeamMember]:
        parent_id = self.get_member(member_id).parent_id
        return self._members[parent_id] if parent_id else None

    def depth(self, member_id: str) -> int:
        depth = 0
        current = self.get_member(member_id)
        while current.parent_id is not None:
            depth += 1
            current = self._members[current.parent_id]
        return depth

    def walk(self, start_id: Optional[str] = None) -> Iterator[TeamMember]:
        """Pre-order traversal from ``start_id`` (default: the root)."""
        start = start_id or self.root_id
        if start is None:
            return
        stack = [start]
        while stack:
            member = self._members[stack.pop()]
            yield member
            stack.extend(reversed(member.child_ids))

    @classmethod
    def from_nested(
        cls,
        data: Dict[str, Any],
        max_depth: Optional[int] = None,
        max_team_size: Optional[int] = None,
    ) -> "TeamTree":
        """Build a tree from nested dicts.

        Each dict takes ``name`` and optionally ``id``, ``role``,
        ``specialization``, ``capabilities``, ``prompt_template`` and
        ``members`` (a list of nested dicts).
        """
        tree = cls(max_depth=max_depth, max_team_size=max_team_size)

        def add(entry: Dict[str, Any], parent_id: Optional[str]) -> None:
            if "name" not in entry:
                raise TeamStructureError("member without a name", entry.get("id"))
            member = tree.add_member(
                entry["name"],
                parent_id,
                member_id=entry.get("id"),
                role=AgentRole(entry.get("role", AgentRole.WORKER.value)),
                specialization=entry.get("specialization", ""),
                capabilities=entry.get("capabilities"),
                prompt_template=entry.get("prompt_template", ""),
            )
            for child in entry.get("members", []):
                add(child, member.member_id)

        add(data, None)
        return tree


def _subtree_widths(tree: TeamTree, node_width: int, spacing: int) -> Dict[str, int]:
    widths: Dict[str, int] = {}
    for member in reversed(list(tree.walk())):
        if not member.child_ids:
            widths[member.member_id] = node_width
        else:
            children = sum(widths[cid] for cid in member.child_ids)
            widths[member.member_id] = max(node_width, children + spacing * (len(member.child_ids) - 1))
    return widths


def _leader_prompt(member: TeamMember, member_count: int) -> str:
    block = LEADERSHIP_BLOCK.format(
        team=member.specialization or member.name,
        count=member_count,
        plural="" if member_count == 1 else "s",
    )
    return (member.prompt_template or f"You lead the {member.name} team.") + block


def expand_team_to_graph(
    tree: TeamTree,
    workflow_id: str = "team-workflow",
    name: Optional[str] = None,
    node_width: int = NODE_WIDTH,
    node_height: int = NODE_HEIGHT,
    spacing: int = HORIZONTAL_SPACING,
) -> WorkflowGraph:
    """Expand a team tree into a workflow graph.

    Members with a sub-team become parallel orchestrators whose prompt gains
    a leadership block and whose capabilities gain team orchestration and
    delegation. Each member sits centred above its sub-team; positions are
    stored in ``metadata["position"]``.

    Raises:
        TeamStructureError: If the tree has no members.
    """
    if tree.root_id is None:
        raise TeamStructureError("team has no members")

    widths = _subtree_widths(tree, node_width, spacing)
    lefts: Dict[str, int] = {tree.root_id: 0}
    nodes: List[AgentNode] = []
    edges: List[Edge] = []

    for member in tree.walk():
        mid = member.member_id
        depth = tree.depth(mid)
        left = lefts[mid]
        child_left = left + max(0, (widths[mid] - (sum(widths[c] for c in member.child_ids)
                                                   + spacing * max(0, len(member.child_ids) - 1))) // 2)
        for cid in member.child_ids:
            lefts[cid] = child_left
            child_left += widths[cid] + spacing

        leads = bool(member.child_ids)
        capabilities = list(member.capabilities)
        if leads:
            capabilities += [c for c in LEADER_CAPABILITIES if c not in capabilities]
        nodes.append(AgentNode(
            node_id=mid,
            name=member.name,
            role=AgentRole.ORCHESTRATOR if leads else member.role,
            config=NodeConfig(parallel=leads),
            prompt_template=_leader_prompt(member, len(member.child_ids)) if leads else member.prompt_template,
            domain=member.specialization or None,
            capabilities=capabilities,
            metadata={
                "position": {"x": left + (widths[mid] - node_width) // 2, "y": depth * node_height},
                "depth": depth,
                "team_parent": member.parent_id,
                "layout": {"width": node_width, "height": node_height, "spacing": spacing},
            },
        ))
        for cid in member.child_ids:
            edges.append(Edge(edge_id=f"{mid}->{cid}", source=mid, target=cid, label="delegates"))

    return WorkflowGraph(
        workflow_id=workflow_id,
        name=name or tree.get_member(tree.root_id).name,
        nodes=nodes,
        edges=edges,
    )
