"""Schema exports."""

from .artifact import (
    ArtifactLineage,
    ArtifactSchema,
    ArtifactUri,
    ContentType,
    ValidationStatus,
    VersionComparison,
    VersionedArtifact,
    VersionHistory,
)
from .base import SchemaBase, Severity
from .condition import ConditionOperator, ConditionType, RoutingCondition, expression_syntax_error
from .conflict import (
    ArtifactConflict,
    ArtifactDiff,
    ChangeKind,
    ChangeSide,
    ConflictRegion,
    ConflictResolution,
    ConflictSeverity,
    ConflictStats,
    ConflictType,
    FieldChange,
    MergeOutcome,
    RegionKind,
    RejectedResolution,
    ResolutionPolicy,
    ResolutionStrategy,
    SeverityThresholds,
)
from .edge import (
    BackoffType,
    CircuitBreakerPolicy,
    CommunicationPolicy,
    Edge,
    FallbackPolicy,
    FallbackStrategy,
    LoopRole,
    MessageType,
    ResiliencePolicy,
    ResourceLimits,
    RetryPolicy,
    SchemaValidationPolicy,
    SerializationFormat,
    TimeoutPolicy,
)
from .event import Event, EventType
from .node import AgentNode, AgentRole, FailureAction, NodeConfig, ThinkingMode
from .registry import SCHEMA_REGISTRY, get_schema_json
from .simulation import (
    Bottleneck,
    BottleneckImpact,
    BottleneckType,
    ParallelBlock,
    RoutingDecision,
    SimulationConfig,
    SimulationMode,
    SimulationResult,
    SimulationStatus,
    SimulationStep,
)
from .validation import FindingCategory, ValidationFinding, ValidationReport
from .workflow import LoopConfig, OrchestrationMode, WorkflowGraph

__all__ = [
    "AgentNode",
    "AgentRole",
    "ArtifactConflict",
    "ArtifactDiff",
    "ArtifactLineage",
    "ArtifactSchema",
    "ArtifactUri",
    "BackoffType",
    "Bottleneck",
    "BottleneckImpact",
    "BottleneckType",
    "ChangeKind",
    "ChangeSide",
    "CircuitBreakerPolicy",
    "CommunicationPolicy",
    "ConditionOperator",
    "ConditionType",
    "ConflictRegion",
    "ConflictResolution",
    "ConflictSeverity",
    "ConflictStats",
    "ConflictType",
    "ContentType",
    "Edge",
    "Event",
    "EventType",
    "FailureAction",
    "FallbackPolicy",
    "FallbackStrategy",
    "FieldChange",
    "FindingCategory",
    "LoopConfig",
    "LoopRole",
    "MergeOutcome",
    "MessageType",
    "NodeConfig",
    "OrchestrationMode",
    "ParallelBlock",
    "RegionKind",
    "RejectedResolution",
    "ResiliencePolicy",
    "ResolutionPolicy",
    "ResolutionStrategy",
    "ResourceLimits",
    "RetryPolicy",
    "RoutingCondition",
    "RoutingDecision",
    "SCHEMA_REGISTRY",
    "SchemaBase",
    "SchemaValidationPolicy",
    "SerializationFormat",
    "Severity",
    "SeverityThresholds",
    "SimulationConfig",
    "SimulationMode",
    "SimulationResult",
    "SimulationStatus",
    "SimulationStep",
    "ThinkingMode",
    "TimeoutPolicy",
    "ValidationFinding",
    "ValidationReport",
    "ValidationStatus",
    "VersionComparison",
    "VersionedArtifact",
    "VersionHistory",
    "WorkflowGraph",
    "expression_syntax_error",
    "get_schema_json",
]
