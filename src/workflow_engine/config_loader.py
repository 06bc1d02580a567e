"""Configuration loader for Workflow Engine manifests.

Two YAML files live in a config directory:

- ``engine.yaml`` (optional): simulation defaults, conflict policy,
  severity thresholds, extra artifact schemas, telemetry limits.
- ``workflow.yaml`` (optional here, required by ``load_workflow_manifest``):
  a serialized ``WorkflowGraph``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import ValidationError

from workflow_engine import __version__
from workflow_engine.exceptions import ManifestLoadError, SchemaValidationError
from workflow_engine.schemas import (
    ArtifactSchema,
    ResolutionPolicy,
    SeverityThresholds,
    SimulationConfig,
    WorkflowGraph,
)

ENGINE_MANIFEST = "engine.yaml"
WORKFLOW_MANIFEST = "workflow.yaml"

PathLike = Union[str, Path]


@dataclass(frozen=True)
class EngineConfig:
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    resolution_policy: ResolutionPolicy = ResolutionPolicy.CONSERVATIVE
    severity_thresholds: SeverityThresholds = field(default_factory=SeverityThresholds)
    artifact_schemas: Dict[str, ArtifactSchema] = field(default_factory=dict)
    max_events: Optional[int] = None
    workflow: Optional[WorkflowGraph] = None
    version: str = __version__


def _read_yaml(path: Path, required: bool = True) -> Optional[Any]:
    if not path.exists():
        if required:
            raise ManifestLoadError(path.name, "File not found")
        return None
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ManifestLoadError(path.name, f"Invalid YAML: {e}")
    except OSError as e:
        raise ManifestLoadError(path.name, str(e))
    if data is None:
        raise ManifestLoadError(path.name, "Empty file")
    return data


def _from_validation_error(file_name: str, error: ValidationError, prefix: str = "") -> SchemaValidationError:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    field_path = ".".join(p for p in (prefix, location) if p) or "<root>"
    return SchemaValidationError(file_name, field_path, first.get("msg", str(error)))


def parse_workflow(data: Any, file_name: str = WORKFLOW_MANIFEST) -> WorkflowGraph:
    """Build a ``WorkflowGraph`` from a decoded manifest payload."""
    if not isinstance(data, dict):
        raise SchemaValidationError(file_name, "<root>", "workflow manifest must be a mapping")
    try:
        return WorkflowGraph.model_validate(data)
    except ValidationError as e:
        raise _from_validation_error(file_name, e)


def load_workflow_manifest(path: PathLike) -> WorkflowGraph:
    """Load a workflow graph from a YAML file, or from ``workflow.yaml`` in a directory."""
    path = Path(path)
    if path.is_dir():
        path = path / WORKFLOW_MANIFEST
    return parse_workflow(_read_yaml(path), path.name)


def _parse_schemas(entries: Any, file_name: str) -> Dict[str, ArtifactSchema]:
    if not isinstance(entries, list):
        raise SchemaValidationError(file_name, "artifact_schemas", "must be a list")
    schemas: Dict[str, ArtifactSchema] = {}
    for i, entry in enumerate(entries):
        location = f"artifact_schemas.{i}"
        if not isinstance(entry, dict) or "schema_id" not in entry or "json_schema" not in entry:
            raise SchemaValidationError(file_name, location, "needs schema_id and json_schema")
        try:
            Draft202012Validator.check_schema(entry["json_schema"])
        except SchemaError as e:
            raise SchemaValidationError(file_name, f"{location}.json_schema", e.message)
        schemas[entry["schema_id"]] = ArtifactSchema(
            schema_id=entry["schema_id"],
            name=entry.get("name", entry["schema_id"]),
            json_schema=entry["json_schema"],
            version=str(entry.get("version", "1.0.0")),
            description=entry.get("description", ""),
        )
    return schemas


def parse_engine_config(data: Dict[str, Any], file_name: str = ENGINE_MANIFEST) -> EngineConfig:
    """Build an ``EngineConfig`` from a decoded ``engine.yaml`` payload."""
    if not isinstance(data, dict):
        raise SchemaValidationError(file_name, "<root>", "engine manifest must be a mapping")

    try:
        simulation = SimulationConfig.model_validate(data.get("simulation") or {})
    except ValidationError as e:
        raise _from_validation_error(file_name, e, "simulation")

    conflicts = data.get("conflicts") or {}
    try:
        policy = ResolutionPolicy(conflicts.get("policy", ResolutionPolicy.CONSERVATIVE.value))
    except ValueError:
        allowed = ", ".join(p.value for p in ResolutionPolicy)
        raise SchemaValidationError(file_name, "conflicts.policy", f"must be one of {allowed}")
    try:
        thresholds = SeverityThresholds.model_validate(conflicts.get("thresholds") or {})
    except ValidationError as e:
        raise _from_validation_error(file_name, e, "conflicts.thresholds")

    schemas = _parse_schemas(data.get("artifact_schemas") or [], file_name)

    max_events = (data.get("telemetry") or {}).get("max_events")
    if max_events is not None and (not isinstance(max_events, int) or max_events < 1):
        raise SchemaValidationError(file_name, "telemetry.max_events", "must be a positive integer")

    return EngineConfig(
        simulation=simulation,
        resolution_policy=policy,
        severity_thresholds=thresholds,
        artifact_schemas=schemas,
        max_events=max_events,
    )


def load_engine_config(config_dir: PathLike) -> EngineConfig:
    """Load ``engine.yaml`` and ``workflow.yaml`` from a directory.

    Both files are optional; defaults apply when ``engine.yaml`` is absent.

    Raises:
        ManifestLoadError: If a file is unreadable, empty or not valid YAML.
        SchemaValidationError: If a file's content does not match its schema.
    """
    config_dir = Path(config_dir)
    if not config_dir.is_dir():
        raise ManifestLoadError(str(config_dir), "Config directory not found")

    engine_data = _read_yaml(config_dir / ENGINE_MANIFEST, required=False)
    config = parse_engine_config(engine_data) if engine_data is not None else EngineConfig()

    workflow_data = _read_yaml(config_dir / WORKFLOW_MANIFEST, required=False)
    if workflow_data is None:
        return config
    return replace(config, workflow=parse_workflow(workflow_data))


def dump_workflow(graph: WorkflowGraph) -> str:
    """Serialize a workflow graph to YAML that ``load_workflow_manifest`` reads back."""
    return yaml.safe_dump(graph.to_manifest(), sort_keys=False)
