"""Pattern helpers for the Workflow Engine."""

from .team_expansion import TeamMember, TeamTree, expand_team_to_graph

__all__ = ["TeamMember", "TeamTree", "expand_team_to_graph"]
