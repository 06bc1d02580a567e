"""
Exceptions raised by the Workflow Engine.

Structural graph problems, degraded conditions and simulation aborts are
reported as data (validation findings, simulation status). The exceptions
below cover configuration loading and programmer-error inputs such as
unknown ids.
"""


class EngineError(Exception):
    """Root of every error raised by ``workflow_engine``."""


class ManifestLoadError(EngineError):
    """A YAML manifest is missing, unreadable or empty."""

    def __init__(self, file_name: str, message: str):
        self.file_name = file_name
        self.message = message
        super().__init__(f"Cannot load {file_name}: {message}")


class SchemaValidationError(EngineError):
    """A manifest parsed but a field holds an unusable value."""

    def __init__(self, file_name: str, field_path: str, message: str):
        self.file_name = file_name
        self.field_path = field_path
        self.message = message
        super().__init__(f"{file_name}: invalid value at '{field_path}': {message}")


class ConditionEvaluationError(EngineError):
    """A custom routing expression could not be parsed or evaluated.

    Never escapes the condition evaluator; the failing condition evaluates
    to False and the error is attached to the evaluation result.
    """

    def __init__(self, expression: str, message: str):
        self.expression = expression
        self.message = message
        super().__init__(f"Cannot evaluate expression {expression!r}: {message}")


class ArtifactNotFoundError(EngineError):
    """Referenced artifact version does not exist in the store."""

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Artifact {artifact_id} not found")


class ConflictNotFoundError(EngineError):
    """Resolve or lookup on a conflict id the resolver never issued."""

    def __init__(self, conflict_id: str):
        self.conflict_id = conflict_id
        super().__init__(f"Conflict {conflict_id} not found")


class ConflictResolutionError(EngineError):
    """A resolution attempt was rejected; the conflict stays unresolved."""

    def __init__(self, conflict_id: str, message: str):
        self.conflict_id = conflict_id
        self.message = message
        super().__init__(f"Cannot resolve conflict {conflict_id}: {message}")


class SimulationNotFoundError(EngineError):
    """Resume/cancel on an unknown simulation id."""

    def __init__(self, simulation_id: str):
        self.simulation_id = simulation_id
        super().__init__(f"Simulation {simulation_id} not found")


class TeamStructureError(EngineError):
    """Invalid edit of a hierarchical team tree."""

    def __init__(self, message: str, member_id: str = None):
        self.message = message
        self.member_id = member_id
        if member_id:
            super().__init__(f"Team structure error at member {member_id}: {message}")
        else:
            super().__init__(f"Team structure error: {message}")
