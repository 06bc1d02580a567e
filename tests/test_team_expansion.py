"""Tests for hierarchical team trees and their graph expansion."""

import pytest

from workflow_engine.exceptions import TeamStructureError
from workflow_engine.patterns import TeamTree, expand_team_to_graph
from workflow_engine.runtime.simulator import start_simulation
from workflow_engine.schemas import AgentRole, SimulationStatus
from workflow_engine.validator import validate


# ==================== FIXTURES ====================

@pytest.fixture
def research_team():
    """Leader with two members; the writer leads an editor sub-team."""
    return TeamTree.from_nested({
        "id": "lead",
        "name": "Research",
        "specialization": "market research",
        "members": [
            {"id": "analyst", "name": "Analyst", "role": "researcher", "capabilities": ["statistics"]},
            {
                "id": "writer",
                "name": "Writer",
                "role": "writer",
                "prompt_template": "Write the report.",
                "members": [{"id": "editor", "name": "Editor", "role": "critic"}],
            },
        ],
    })


class TestTeamTree:
    """Arena edits and structural limits."""

    def test_from_nested(self, research_team):
        assert len(research_team) == 4
        assert research_team.root_id == "lead"
        assert [m.member_id for m in research_team.walk()] == ["lead", "analyst", "writer", "editor"]
        assert research_team.depth("editor") == 2
        assert research_team.parent("editor").member_id == "writer"
        assert [m.member_id for m in research_team.children("lead")] == ["analyst", "writer"]

    def test_generated_ids(self):
        tree = TeamTree()
        lead = tree.add_member("Lead")
        member = tree.add_member("Member", lead.member_id)
        assert (lead.member_id, member.member_id) == ("member-1", "member-2")
        assert "member-2" in tree

    def test_second_root_rejected(self):
        tree = TeamTree()
        tree.add_member("Lead")
        with pytest.raises(TeamStructureError):
            tree.add_member("Other lead")

    def test_unknown_parent_and_duplicate_id(self):
        tree = TeamTree()
        tree.add_member("Lead", member_id="lead")
        with pytest.raises(TeamStructureError):
            tree.add_member("Orphan", "nobody")
        with pytest.raises(TeamStructureError):
            tree.add_member("Twin", "lead", member_id="lead")

    def test_depth_limit(self):
        tree = TeamTree(max_depth=1)
        tree.add_member("Lead", member_id="lead")
        tree.add_member("Member", "lead", member_id="member")
        with pytest.raises(TeamStructureError) as exc:
            tree.add_member("Too deep", "member")
        assert exc.value.member_id == "member"

    def test_team_size_limit(self):
        tree = TeamTree(max_team_size=2)
        tree.add_member("Lead", member_id="lead")
        tree.add_member("One", "lead")
        tree.add_member("Two", "lead")
        with pytest.raises(TeamStructureError):
            tree.add_member("Three", "lead")

    def test_update_member(self, research_team):
        updated = research_team.update_member("analyst", name="Data Analyst", specialization="pricing")
        assert updated.name == "Data Analyst"
        assert research_team.get_member("analyst").specialization == "pricing"

    def test_update_cannot_move_member(self, research_team):
        with pytest.raises(TeamStructureError):
            research_team.update_member("editor", parent_id="lead")
        with pytest.raises(TeamStructureError):
            research_team.update_member("editor", nickname="ed")

    def test_remove_cascades(self, research_team):
        removed = research_team.remove_member("writer")
        assert removed == ["writer", "editor"]
        assert len(research_team) == 2
        assert [m.member_id for m in research_team.children("lead")] == ["analyst"]

    def test_remove_root_empties_tree(self, research_team):
        research_team.remove_member("lead")
        assert research_team.root_id is None
        assert len(research_team) == 0
        assert list(research_team.walk()) == []

    def test_unknown_member(self, research_team):
        with pytest.raises(TeamStructureError):
            research_team.get_member("ghost")


class TestExpansion:
    """Team tree -> workflow graph."""

    def test_nodes_and_edges(self, research_team):
        graph = expand_team_to_graph(research_team, workflow_id="research")
        assert graph.workflow_id == "research"
        assert graph.name == "Research"
        assert [n.node_id for n in graph.nodes] == ["lead", "analyst", "writer", "editor"]
        assert [e.edge_id for e in graph.edges] == ["lead->analyst", "lead->writer", "writer->editor"]
        assert all(e.label == "delegates" for e in graph.edges)

    def test_leaders_become_parallel_orchestrators(self, research_team):
        nodes = expand_team_to_graph(research_team).node_map()
        for leader in ("lead", "writer"):
            assert nodes[leader].role == AgentRole.ORCHESTRATOR
            assert nodes[leader].config.parallel
            assert "delegation" in nodes[leader].capabilities
        assert nodes["analyst"].role == AgentRole.RESEARCHER
        assert nodes["analyst"].capabilities == ["statistics"]
        assert not nodes["analyst"].config.parallel

    def test_leadership_prompt(self, research_team):
        nodes = expand_team_to_graph(research_team).node_map()
        assert nodes["lead"].prompt_template.startswith("You lead the Research team.")
        assert "market research team (2 members)" in nodes["lead"].prompt_template
        assert nodes["writer"].prompt_template.startswith("Write the report.")
        assert "(1 member)" in nodes["writer"].prompt_template
        assert nodes["editor"].prompt_template == ""

    def test_layout_centres_leaders(self):
        tree = TeamTree()
        tree.add_member("Lead", member_id="lead")
        tree.add_member("Left", "lead", member_id="left")
        tree.add_member("Right", "lead", member_id="right")
        nodes = expand_team_to_graph(tree).node_map()
        assert nodes["lead"].metadata["position"] == {"x": 175, "y": 0}
        assert nodes["left"].metadata["position"] == {"x": 0, "y": 200}
        assert nodes["right"].metadata["position"] == {"x": 350, "y": 200}
        assert nodes["right"].metadata["team_parent"] == "lead"
        assert nodes["right"].metadata["depth"] == 1

    def test_empty_tree(self):
        with pytest.raises(TeamStructureError):
            expand_team_to_graph(TeamTree())

    def test_expanded_graph_validates_and_simulates(self, research_team):
        graph = expand_team_to_graph(research_team)
        assert validate(graph).valid
        result = start_simulation(graph)
        assert result.status == SimulationStatus.COMPLETED
        assert result.execution_order == ["lead", "analyst", "writer", "editor"]
        assert result.peak_parallelism == 2
