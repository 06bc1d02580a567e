"""Artifact conflict schemas."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import SchemaBase


class ConflictType(str, Enum):
    CONCURRENT_WRITE = "concurrent-write"
    SCHEMA = "schema"
    TYPE_MISMATCH = "type-mismatch"
    METADATA = "metadata"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RegionKind(str, Enum):
    FIELD = "field"
    WHOLE_CONTENT = "whole-content"


class ChangeSide(str, Enum):
    """Which side diverged from the common ancestor in a region."""
    CURRENT = "current"
    INCOMING = "incoming"
    BOTH = "both"


class ConflictRegion(SchemaBase):
    kind: RegionKind
    location: str = Field(..., description="Field name, or '$' for the whole content")
    current: Any = None
    incoming: Any = None
    base: Any = None
    has_base: bool = Field(default=False, description="Base value known (False when no ancestor or field absent)")
    changed_by: ChangeSide = ChangeSide.BOTH

    @property
    def overlaps(self) -> bool:
        return self.changed_by == ChangeSide.BOTH


class ResolutionStrategy(str, Enum):
    AUTO_MERGE = "auto-merge"
    LAST_WRITE_WINS = "last-write-wins"
    FIRST_WRITE_WINS = "first-write-wins"
    MERGE_BOTH = "merge-both"
    MANUAL = "manual"
    AGENT_PRIORITY = "agent-priority"


class MergeOutcome(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"  # some regions fell back to last-write-wins


class ConflictResolution(SchemaBase):
    strategy: ResolutionStrategy
    outcome: MergeOutcome = MergeOutcome.SUCCESS
    merged_content: Any = None
    merged_version_id: Optional[str] = Field(default=None, description="Version written to the store for the merge")
    overlapping_regions: List[ConflictRegion] = Field(default_factory=list, description="Regions both sides changed, settled by last-write-wins")
    accepted_version_id: Optional[str] = None
    rejected_version_ids: List[str] = Field(default_factory=list)
    resolved_by: str = "system"
    resolved_at: str = ""
    rationale: str = ""

    @property
    def residual_regions(self) -> int:
        return len(self.overlapping_regions)


class RejectedResolution(SchemaBase):
    strategy: ResolutionStrategy
    reason: str
    attempted_by: str = "system"
    attempted_at: str = ""


class ArtifactConflict(SchemaBase):
    """Divergence between two versions of one artifact path.

    Neither version descends from the other through ``previous_version``.
    Stays unresolved until ``resolution`` is set; rejected attempts are kept
    in ``rejections``.
    """

    conflict_id: str
    artifact_path: str
    type: ConflictType
    severity: ConflictSeverity
    current_version_id: str
    incoming_version_id: str
    base_version_id: Optional[str] = Field(default=None, description="Nearest common ancestor")
    current_version: int
    incoming_version: int
    regions: List[ConflictRegion] = Field(default_factory=list)
    description: str = ""
    detected_at: str = ""
    resolution: Optional[ConflictResolution] = None
    rejections: List[RejectedResolution] = Field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return self.resolution is not None


class ResolutionPolicy(str, Enum):
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"
    LAST_WRITE_WINS_ALWAYS = "last-write-wins-always"


class SeverityThresholds(SchemaBase):
    """Tunable severity classification defaults."""

    critical_field_ratio: float = Field(default=0.5, description="Share of fields in conflict above which severity is critical")
    high_region_count: int = Field(default=1, description="Region count above which severity is high")


class ConflictStats(SchemaBase):
    total: int = 0
    resolved: int = 0
    unresolved: int = 0
    by_severity: Dict[str, int] = Field(default_factory=dict)
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_strategy: Dict[str, int] = Field(default_factory=dict)


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


class FieldChange(SchemaBase):
    location: str
    kind: ChangeKind
    old: Any = None
    new: Any = None


class ArtifactDiff(SchemaBase):
    from_version_id: str
    to_version_id: str
    changes: List[FieldChange] = Field(default_factory=list)

    def count(self, kind: ChangeKind) -> int:
        return sum(1 for c in self.changes if c.kind == kind)
