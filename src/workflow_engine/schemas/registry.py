"""Registry of exportable workflow records."""

from __future__ import annotations

from typing import Any, Dict, Type

from .base import SchemaBase
from .conflict import ArtifactConflict, ConflictResolution
from .edge import Edge
from .event import Event
from .node import AgentNode
from .simulation import SimulationConfig, SimulationResult
from .validation import ValidationReport
from .workflow import LoopConfig, WorkflowGraph


SCHEMA_REGISTRY: Dict[str, Type[SchemaBase]] = {
    "agent_node": AgentNode,
    "edge": Edge,
    "loop_config": LoopConfig,
    "workflow_graph": WorkflowGraph,
    "validation_report": ValidationReport,
    "simulation_config": SimulationConfig,
    "simulation_result": SimulationResult,
    "artifact_conflict": ArtifactConflict,
    "conflict_resolution": ConflictResolution,
    "event": Event,
}


def get_schema_json(name: str) -> Dict[str, Any]:
    """JSON Schema of a registered record, e.g. for editor-side validation."""
    model = SCHEMA_REGISTRY.get(name)
    if model is None:
        raise KeyError(f"Unknown schema '{name}'; known: {', '.join(sorted(SCHEMA_REGISTRY))}")
    return model.model_json_schema()
