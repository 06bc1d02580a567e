"""Workflow engine facade.

Wires the validator, simulator, artifact version store and conflict resolver
around one telemetry bus, configured from ``engine.yaml``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Optional, Union

from workflow_engine.config_loader import EngineConfig, load_engine_config
from workflow_engine.patterns.team_expansion import TeamTree, expand_team_to_graph
from workflow_engine.runtime.artifact_store import ArtifactVersionStore
from workflow_engine.runtime.conflict_resolver import ConflictResolver
from workflow_engine.runtime.inspector import Inspector
from workflow_engine.runtime.simulator import WorkflowSimulator
from workflow_engine.schemas import (
    ArtifactConflict,
    ResolutionStrategy,
    SimulationConfig,
    SimulationResult,
    ValidationReport,
    VersionedArtifact,
    WorkflowGraph,
)
from workflow_engine.telemetry import TelemetryBus
from workflow_engine.validator import validate


class WorkflowEngine:
    """Entry point for editor-facing operations.

    Usage:
        engine = WorkflowEngine.from_config_dir("config/")
        report = engine.validate()
        result = engine.simulate()
    """

    def __init__(self, config: Optional[EngineConfig] = None, telemetry: Optional[TelemetryBus] = None):
        self.config = config or EngineConfig()
        self.telemetry = telemetry or TelemetryBus(max_events=self.config.max_events)
        self.workflow: Optional[WorkflowGraph] = self.config.workflow

        self.store = ArtifactVersionStore(schemas=self.config.artifact_schemas)
        self.store.subscribe(
            lambda artifact: self.telemetry.artifact_stored(artifact.artifact_id, artifact.path, artifact.version)
        )
        self.resolver = ConflictResolver(
            self.store,
            policy=self.config.resolution_policy,
            thresholds=self.config.severity_thresholds,
            telemetry=self.telemetry,
        )
        self.simulator = WorkflowSimulator(telemetry=self.telemetry)
        self.inspector = Inspector(self.simulator, self.store, self.resolver)

    @classmethod
    def from_config_dir(cls, config_dir: Union[str, Path]) -> "WorkflowEngine":
        return cls(load_engine_config(config_dir))

    def _graph(self, graph: Optional[WorkflowGraph]) -> WorkflowGraph:
        graph = graph or self.workflow
        if graph is None:
            raise ValueError("No workflow given and none loaded from configuration")
        return graph

    def load_workflow(self, graph: WorkflowGraph) -> ValidationReport:
        """Make ``graph`` the engine's current workflow and validate it."""
        self.workflow = graph
        return validate(graph)

    def validate(self, graph: Optional[WorkflowGraph] = None) -> ValidationReport:
        return validate(self._graph(graph))

    def simulate(
        self,
        graph: Optional[WorkflowGraph] = None,
        config: Optional[SimulationConfig] = None,
    ) -> SimulationResult:
        """Simulate a workflow with ``config`` or the configured simulation defaults."""
        return self.simulator.start_simulation(self._graph(graph), config or self.config.simulation)

    def resume(self, simulation_id: str) -> SimulationResult:
        return self.simulator.resume(simulation_id)

    def cancel(self, simulation_id: str) -> SimulationResult:
        return self.simulator.cancel(simulation_id)

    def put_artifact(self, path: str, content: Any, **kwargs: Any) -> VersionedArtifact:
        """Store an artifact version; divergent writes are detected as conflicts."""
        return self.store.put(path, content, **kwargs)

    def resolve_conflict(
        self,
        conflict_id: str,
        strategy: Optional[ResolutionStrategy] = None,
        **kwargs: Any,
    ) -> ArtifactConflict:
        return self.resolver.resolve(conflict_id, strategy, **kwargs)

    def list_conflicts(self, artifact_path: Optional[str] = None, unresolved_only: bool = False) -> List[ArtifactConflict]:
        return self.resolver.list_conflicts(artifact_path, resolved=False if unresolved_only else None)

    def expand_team(self, tree: TeamTree, **kwargs: Any) -> WorkflowGraph:
        """Expand a team tree into a workflow and make it the current one."""
        graph = expand_team_to_graph(tree, **kwargs)
        self.workflow = graph
        return graph
