"""Artifact version schemas."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


class ContentType(str, Enum):
    """Shape of artifact content; decides how conflicts are diffed."""
    STRUCTURED = "structured"  # dict, diffed per top-level field
    SEQUENCE = "sequence"
    TEXT = "text"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class VersionedArtifact:
    """Immutable version of an artifact path.

    Editing produces a new version linked through ``previous_version``.
    ``derived_from`` lists the artifact versions this one was computed from.
    """
    artifact_id: str
    path: str
    version: int
    hash: str
    size: int
    content: Any
    content_type: ContentType = ContentType.OPAQUE
    derived_from: Tuple[str, ...] = ()
    previous_version: Optional[str] = None
    created_by: Optional[str] = None  # producing agent / node id
    created_at: str = ""  # ISO-8601
    schema_id: Optional[str] = None
    validation_status: ValidationStatus = ValidationStatus.UNKNOWN
    validation_errors: Tuple[str, ...] = ()
    critical: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_structured(self) -> bool:
        return self.content_type == ContentType.STRUCTURED


@dataclass
class VersionHistory:
    path: str
    versions: List[VersionedArtifact] = field(default_factory=list)
    current_version: int = 0
    total_versions: int = 0

    @property
    def latest(self) -> Optional[VersionedArtifact]:
        return self.versions[-1] if self.versions else None


@dataclass
class ArtifactLineage:
    """Lineage tree: parents follow ``derived_from`` backward, children forward."""
    artifact: VersionedArtifact
    parents: List["ArtifactLineage"] = field(default_factory=list)
    children: List["ArtifactLineage"] = field(default_factory=list)


@dataclass
class ArtifactSchema:
    schema_id: str
    name: str
    json_schema: Dict[str, Any]
    version: str = "1.0.0"
    description: str = ""


@dataclass
class ArtifactUri:
    """Parsed ``artifact://agent/path?version=N&schema=ID`` reference."""
    agent: str
    path: str
    version: Optional[int] = None
    schema_id: Optional[str] = None


@dataclass
class VersionComparison:
    older: VersionedArtifact
    newer: VersionedArtifact
    hash_changed: bool
    size_delta: int
    versions_apart: int
