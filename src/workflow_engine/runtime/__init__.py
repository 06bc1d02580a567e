"""Runtime exports and helpers."""

from workflow_engine.runtime.artifact_store import (
    COMMON_SCHEMAS,
    ArtifactVersionStore,
    build_artifact_uri,
    content_hash,
    parse_artifact_uri,
)
from workflow_engine.runtime.condition_evaluator import (
    CONDITION_TEMPLATES,
    ConditionEvaluator,
    ConditionResult,
    condition_template,
    evaluate,
)
from workflow_engine.runtime.conflict_resolver import ConflictResolver
from workflow_engine.runtime.inspector import Inspector
from workflow_engine.runtime.simulator import SimulationRun, WorkflowSimulator, start_simulation

__all__ = [
    "COMMON_SCHEMAS",
    "ArtifactVersionStore",
    "build_artifact_uri",
    "content_hash",
    "parse_artifact_uri",
    "CONDITION_TEMPLATES",
    "ConditionEvaluator",
    "ConditionResult",
    "condition_template",
    "evaluate",
    "ConflictResolver",
    "Inspector",
    "SimulationRun",
    "WorkflowSimulator",
    "start_simulation",
]
