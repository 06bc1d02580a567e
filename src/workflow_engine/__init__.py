"""Workflow Engine package root.

The public API surface includes the WorkflowEngine facade, the validator,
simulator, artifact store and conflict resolver, and the schema types
exposed in ``workflow_engine.schemas``.
"""

__version__ = "0.0.1"

from workflow_engine.engine import WorkflowEngine  # noqa: E402,F401
from workflow_engine.patterns import TeamTree, expand_team_to_graph  # noqa: E402,F401
from workflow_engine.runtime import (  # noqa: E402,F401
    ArtifactVersionStore,
    ConflictResolver,
    Inspector,
    WorkflowSimulator,
    evaluate,
    start_simulation,
)
from workflow_engine.schemas import *  # noqa: E402,F401,F403
from workflow_engine.schemas import __all__ as SCHEMA_EXPORTS  # noqa: E402
from workflow_engine.telemetry import TelemetryBus  # noqa: E402,F401
from workflow_engine.validator import validate  # noqa: E402,F401

__all__ = [
    "__version__",
    "WorkflowEngine",
    "TeamTree",
    "expand_team_to_graph",
    "ArtifactVersionStore",
    "ConflictResolver",
    "Inspector",
    "WorkflowSimulator",
    "evaluate",
    "start_simulation",
    "TelemetryBus",
    "validate",
] + SCHEMA_EXPORTS
