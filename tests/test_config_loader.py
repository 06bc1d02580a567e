"""Tests for engine.yaml / workflow.yaml loading."""

import pytest

from tests.helpers.graphs import review_loop_graph
from workflow_engine.config_loader import (
    EngineConfig,
    dump_workflow,
    load_engine_config,
    load_workflow_manifest,
    parse_engine_config,
    parse_workflow,
)
from workflow_engine.exceptions import ManifestLoadError, SchemaValidationError
from workflow_engine.schemas import AgentRole, LoopRole, ResolutionPolicy, SimulationMode

ENGINE_YAML = """
simulation:
  mode: breakpoints
  breakpoints: [review]
  max_steps: 200
conflicts:
  policy: aggressive
  thresholds:
    critical_field_ratio: 0.75
artifact_schemas:
  - schema_id: summary
    name: Summary
    json_schema:
      type: object
      required: [text]
telemetry:
  max_events: 500
"""

WORKFLOW_YAML = """
workflow_id: review
name: Review pipeline
nodes:
  - node_id: draft
    name: Draft
    role: writer
    prompt_template: Write a draft.
  - node_id: review
    name: Review
    role: critic
    prompt_template: Review the draft.
edges:
  - edge_id: draft-review
    source: draft
    target: review
    priority: 1
"""


# ==================== FIXTURES ====================

@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "engine.yaml").write_text(ENGINE_YAML)
    (tmp_path / "workflow.yaml").write_text(WORKFLOW_YAML)
    return tmp_path


class TestLoadEngineConfig:
    """Tests for load_engine_config()."""

    def test_full_config(self, config_dir):
        config = load_engine_config(config_dir)
        assert config.simulation.mode == SimulationMode.BREAKPOINTS
        assert config.simulation.breakpoints == ["review"]
        assert config.simulation.max_steps == 200
        assert config.resolution_policy == ResolutionPolicy.AGGRESSIVE
        assert config.severity_thresholds.critical_field_ratio == 0.75
        assert config.severity_thresholds.high_region_count == 1
        assert config.artifact_schemas["summary"].json_schema["required"] == ["text"]
        assert config.max_events == 500
        assert config.workflow.workflow_id == "review"
        assert config.workflow.nodes[0].role == AgentRole.WRITER

    def test_empty_directory_uses_defaults(self, tmp_path):
        config = load_engine_config(tmp_path)
        assert config == EngineConfig()
        assert config.workflow is None

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ManifestLoadError):
            load_engine_config(tmp_path / "nope")

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "engine.yaml").write_text("simulation: [unclosed")
        with pytest.raises(ManifestLoadError) as exc:
            load_engine_config(tmp_path)
        assert "Invalid YAML" in str(exc.value)

    def test_empty_file(self, tmp_path):
        (tmp_path / "engine.yaml").write_text("")
        with pytest.raises(ManifestLoadError) as exc:
            load_engine_config(tmp_path)
        assert exc.value.message == "Empty file"


class TestParseEngineConfig:

    def test_unknown_policy(self):
        with pytest.raises(SchemaValidationError) as exc:
            parse_engine_config({"conflicts": {"policy": "yolo"}})
        assert exc.value.field_path == "conflicts.policy"

    def test_bad_simulation_field(self):
        with pytest.raises(SchemaValidationError) as exc:
            parse_engine_config({"simulation": {"max_steps": "lots"}})
        assert exc.value.field_path == "simulation.max_steps"

    def test_invalid_json_schema(self):
        data = {"artifact_schemas": [{"schema_id": "bad", "json_schema": {"type": "nonsense"}}]}
        with pytest.raises(SchemaValidationError) as exc:
            parse_engine_config(data)
        assert exc.value.field_path == "artifact_schemas.0.json_schema"

    def test_schema_entry_needs_fields(self):
        with pytest.raises(SchemaValidationError):
            parse_engine_config({"artifact_schemas": [{"name": "no id"}]})

    @pytest.mark.parametrize("value", [0, -3, "many"])
    def test_max_events_must_be_positive(self, value):
        with pytest.raises(SchemaValidationError):
            parse_engine_config({"telemetry": {"max_events": value}})

    def test_root_must_be_mapping(self):
        with pytest.raises(SchemaValidationError):
            parse_engine_config(["not", "a", "mapping"])


class TestWorkflowManifest:

    def test_load_from_file_and_directory(self, config_dir):
        from_dir = load_workflow_manifest(config_dir)
        from_file = load_workflow_manifest(config_dir / "workflow.yaml")
        assert from_dir == from_file
        assert from_dir.edges[0].priority == 1

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ManifestLoadError) as exc:
            load_workflow_manifest(tmp_path)
        assert exc.value.message == "File not found"

    def test_invalid_node(self):
        with pytest.raises(SchemaValidationError) as exc:
            parse_workflow({"nodes": [{"name": "no id"}]})
        assert exc.value.field_path == "nodes.0.node_id"

    def test_dangling_edges_still_load(self):
        graph = parse_workflow({"nodes": [{"node_id": "a"}], "edges": [{"edge_id": "e", "source": "a", "target": "b"}]})
        assert graph.edges[0].target == "b"

    def test_dump_reads_back(self, tmp_path):
        graph = review_loop_graph()
        path = tmp_path / "loop.yaml"
        path.write_text(dump_workflow(graph))
        loaded = load_workflow_manifest(path)
        assert loaded == graph
        assert loaded.edges[2].loop_role == LoopRole.RETURN
