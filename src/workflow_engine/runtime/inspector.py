"""Read-only inspector over simulations, artifacts and conflicts.

Returns plain dictionaries shaped for the editor's review surfaces (step
timeline, critical-path summary, artifact lineage, conflict review). Nothing
here mutates engine state.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from workflow_engine.runtime import simulation_analysis as analysis
from workflow_engine.runtime.artifact_store import ArtifactVersionStore
from workflow_engine.runtime.conflict_resolver import ConflictResolver
from workflow_engine.runtime.simulator import WorkflowSimulator
from workflow_engine.schemas import ArtifactLineage, SimulationResult


class Inspector:
    """Read-only queries across the simulator, version store and resolver."""

    def __init__(
        self,
        simulator: WorkflowSimulator,
        store: Optional[ArtifactVersionStore] = None,
        resolver: Optional[ConflictResolver] = None,
    ):
        """Initialize the inspector.

        Args:
            simulator: Simulator whose runs are inspected
            store: Artifact version store, if artifact queries are needed
            resolver: Conflict resolver, if conflict queries are needed
        """
        self.simulator = simulator
        self.store = store
        self.resolver = resolver

    def get_simulation(self, simulation_id: str) -> Optional[SimulationResult]:
        return self.simulator.get_simulation(simulation_id)

    def get_timeline(self, simulation_id: str) -> Dict[str, Any]:
        """Step timeline with earliest start/finish offsets.

        Returns:
            {
                "simulation_id": str,
                "status": str,
                "entries": [{"step", "node_id", "role", "start_ms", "end_ms",
                             "on_critical_path", "warnings"}],
                "total_time_ms": int
            }
            or an empty dict for an unknown id.
        """
        result = self.simulator.get_simulation(simulation_id)
        if result is None:
            return {}
        times = analysis.schedule(result.steps)
        path, _ = analysis.critical_path(result.steps)
        on_path = set(path)
        entries = []
        for step in result.steps:
            start, end = times.get(step.step_number, (0, step.execution_time_ms))
            entries.append({
                "step": step.step_number,
                "node_id": step.node_id,
                "role": step.role,
                "start_ms": start,
                "end_ms": end,
                "on_critical_path": step.step_number in on_path,
                "warnings": list(step.warnings),
            })
        entries.sort(key=lambda e: (e["start_ms"], e["step"]))
        return {
            "simulation_id": simulation_id,
            "status": result.status.value,
            "entries": entries,
            "total_time_ms": result.total_estimated_time_ms,
        }

    def get_critical_path_summary(self, simulation_id: str) -> Dict[str, Any]:
        result = self.simulator.get_simulation(simulation_id)
        if result is None:
            return {}
        return {
            "simulation_id": simulation_id,
            "nodes": list(result.critical_path),
            "total_time_ms": result.total_estimated_time_ms,
            "peak_parallelism": result.peak_parallelism,
            "bottlenecks": [
                {
                    "node_id": b.node_id,
                    "type": b.type.value,
                    "impact": b.impact.value,
                    "reason": b.reason,
                }
                for b in result.bottlenecks
            ],
        }

    def get_artifact_history(self, path: str) -> Dict[str, Any]:
        if self.store is None:
            return {"path": path, "versions": []}
        history = self.store.history(path)
        return {
            "path": path,
            "current_version": history.current_version,
            "versions": [
                {
                    "artifact_id": a.artifact_id,
                    "version": a.version,
                    "hash": a.hash,
                    "created_by": a.created_by,
                    "created_at": a.created_at,
                    "validation_status": a.validation_status.value,
                    "previous_version": a.previous_version,
                }
                for a in history.versions
            ],
            "heads": [a.artifact_id for a in self.store.heads(path)],
        }

    def get_artifact_lineage(self, artifact_id: str) -> Dict[str, Any]:
        """Nested ``derived_from`` tree: parents backward, children forward."""
        if self.store is None:
            return {}
        lineage = self.store.lineage(artifact_id)
        if lineage is None:
            return {}
        return _lineage_dict(lineage)

    def get_conflicts(self, path: Optional[str] = None, unresolved_only: bool = False) -> List[Dict[str, Any]]:
        """Conflict review rows, oldest first."""
        if self.resolver is None:
            return []
        rows = []
        for conflict in self.resolver.list_conflicts(
            artifact_path=path, resolved=False if unresolved_only else None
        ):
            resolution = conflict.resolution
            rows.append({
                "conflict_id": conflict.conflict_id,
                "artifact_path": conflict.artifact_path,
                "type": conflict.type.value,
                "severity": conflict.severity.value,
                "regions": [r.location for r in conflict.regions],
                "resolved": conflict.resolved,
                "strategy": resolution.strategy.value if resolution else None,
                "resolved_by": resolution.resolved_by if resolution else None,
                "rejections": [r.reason for r in conflict.rejections],
            })
        return rows


def _lineage_dict(lineage: ArtifactLineage) -> Dict[str, Any]:
    return {
        "artifact_id": lineage.artifact.artifact_id,
        "path": lineage.artifact.path,
        "version": lineage.artifact.version,
        "parents": [_lineage_dict(p) for p in lineage.parents],
        "children": [_lineage_dict(c) for c in lineage.children],
    }
