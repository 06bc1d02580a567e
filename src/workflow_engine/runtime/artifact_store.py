"""Content-addressed, append-only artifact version store.

Every ``put`` creates a new immutable ``VersionedArtifact``. Version numbers
per path start at 1 and grow by exactly one per put; the hash depends only on
content. Versions link to their predecessor through ``previous_version`` and
to their inputs through ``derived_from``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
import re
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qs, quote, urlencode, urlparse
from zoneinfo import ZoneInfo

from jsonschema import Draft202012Validator

from workflow_engine.exceptions import ArtifactNotFoundError
from workflow_engine.schemas import (
    ArtifactLineage,
    ArtifactSchema,
    ArtifactUri,
    ContentType,
    ValidationStatus,
    VersionComparison,
    VersionedArtifact,
    VersionHistory,
)

logger = logging.getLogger(__name__)

ARTIFACT_URI_SCHEME = "artifact"

COMMON_SCHEMAS: Dict[str, ArtifactSchema] = {
    "json-output": ArtifactSchema(
        schema_id="json-output",
        name="JSON Output",
        description="Generic structured output",
        json_schema={"type": "object"},
    ),
    "markdown-document": ArtifactSchema(
        schema_id="markdown-document",
        name="Markdown Document",
        description="Free-form markdown text",
        json_schema={"type": "string", "minLength": 1},
    ),
    "code-artifact": ArtifactSchema(
        schema_id="code-artifact",
        name="Code Artifact",
        description="Source code with its language",
        json_schema={
            "type": "object",
            "properties": {
                "language": {"type": "string"},
                "code": {"type": "string"},
                "filename": {"type": "string"},
            },
            "required": ["language", "code"],
        },
    ),
    "test-results": ArtifactSchema(
        schema_id="test-results",
        name="Test Results",
        description="Aggregated test run outcome",
        json_schema={
            "type": "object",
            "properties": {
                "passed": {"type": "integer", "minimum": 0},
                "failed": {"type": "integer", "minimum": 0},
                "skipped": {"type": "integer", "minimum": 0},
                "failures": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["passed", "failed"],
        },
    ),
    "design-document": ArtifactSchema(
        schema_id="design-document",
        name="Design Document",
        description="Titled document made of sections",
        json_schema={
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "sections": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"heading": {"type": "string"}, "body": {"type": "string"}},
                        "required": ["heading"],
                    },
                },
            },
            "required": ["title", "sections"],
        },
    ),
}


def _now_iso() -> str:
    return datetime.now(ZoneInfo("UTC")).isoformat()


def detect_content_type(content: Any) -> ContentType:
    if isinstance(content, dict):
        return ContentType.STRUCTURED
    if isinstance(content, (list, tuple)):
        return ContentType.SEQUENCE
    if isinstance(content, str):
        return ContentType.TEXT
    return ContentType.OPAQUE


def canonical_bytes(content: Any) -> bytes:
    """Stable byte form of content: raw text, or sorted-key compact JSON."""
    if isinstance(content, str):
        return content.encode("utf-8")
    return json.dumps(content, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def content_hash(content: Any) -> str:
    return hashlib.sha256(canonical_bytes(content)).hexdigest()


def _sanitize(path: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", path)


def build_artifact_uri(agent: str, path: str, version: Optional[int] = None, schema_id: Optional[str] = None) -> str:
    """Build ``artifact://agent/path?version=N&schema=ID``."""
    query = {}
    if version is not None:
        query["version"] = str(version)
    if schema_id:
        query["schema"] = schema_id
    uri = f"{ARTIFACT_URI_SCHEME}://{quote(agent)}/{quote(path.lstrip('/'))}"
    if query:
        uri += "?" + urlencode(query)
    return uri


def parse_artifact_uri(uri: str) -> Optional[ArtifactUri]:
    """Parse an artifact URI; returns None for anything else."""
    parsed = urlparse(uri)
    if parsed.scheme != ARTIFACT_URI_SCHEME or not parsed.netloc or not parsed.path.strip("/"):
        return None
    query = parse_qs(parsed.query)
    version = None
    if "version" in query:
        try:
            version = int(query["version"][0])
        except ValueError:
            return None
    return ArtifactUri(
        agent=parsed.netloc,
        path=parsed.path.lstrip("/"),
        version=version,
        schema_id=query.get("schema", [None])[0],
    )


class ArtifactVersionStore:
    """Append-only version history keyed by artifact path.

    ``put`` and the read operations are serialized by a re-entrant lock, so
    concurrent writers to one path still get contiguous version numbers.
    Listeners registered with ``subscribe`` are called after each put.
    """

    def __init__(self, schemas: Optional[Mapping[str, ArtifactSchema]] = None, include_common_schemas: bool = True):
        # artifact_id -> VersionedArtifact
        self._artifacts: Dict[str, VersionedArtifact] = {}
        # path -> [artifact_id] in version order
        self._paths: Dict[str, List[str]] = {}
        # artifact_id -> ids derived from it
        self._derived_children: Dict[str, List[str]] = {}
        self._schemas: Dict[str, ArtifactSchema] = {}
        self._listeners: List[Callable[[VersionedArtifact], None]] = []
        self._lock = threading.RLock()

        if include_common_schemas:
            self._schemas.update(COMMON_SCHEMAS)
        if schemas:
            self._schemas.update(schemas)

    # Schemas

    def register_schema(self, schema: ArtifactSchema) -> None:
        self._schemas[schema.schema_id] = schema

    def get_schema(self, schema_id: str) -> Optional[ArtifactSchema]:
        return self._schemas.get(schema_id)

    def validate_content(self, content: Any, schema_id: str) -> Tuple[bool, List[str]]:
        """Validate content against a registered schema.

        Returns:
            (is_valid, error messages ordered by location)

        Raises:
            KeyError: If the schema id is not registered.
        """
        if schema_id not in self._schemas:
            raise KeyError(f"Schema '{schema_id}' is not registered")
        validator = Draft202012Validator(self._schemas[schema_id].json_schema)
        errors = sorted(validator.iter_errors(content), key=lambda e: list(e.absolute_path))
        messages = []
        for error in errors:
            location = "/".join(str(p) for p in error.absolute_path) or "$"
            messages.append(f"{location}: {error.message}")
        return not messages, messages

    # Writes

    def subscribe(self, listener: Callable[[VersionedArtifact], None]) -> None:
        self._listeners.append(listener)

    def put(
        self,
        path: str,
        content: Any,
        derived_from: Optional[List[str]] = None,
        *,
        created_by: Optional[str] = None,
        schema_id: Optional[str] = None,
        critical: bool = False,
        previous_version_id: Optional[str] = None,
        validation_status: Optional[ValidationStatus] = None,
        content_type: Optional[ContentType] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> VersionedArtifact:
        """Store a new version of ``path`` and return it.

        Args:
            path: Logical artifact name, stable across versions.
            content: Artifact content; copied on write.
            derived_from: Ids of artifact versions this one was computed from.
            created_by: Producing agent or node id.
            schema_id: Registered schema; when set, content is validated and
                ``validation_status`` becomes valid or invalid.
            critical: Critical artifacts are only usable once valid.
            previous_version_id: Version this one edits. Defaults to the latest
                version of the path; naming an older version creates a branch.
            validation_status: Status to record when no schema is given.
            content_type: Overrides the type detected from the content.

        Raises:
            ArtifactNotFoundError: If a derived_from or previous version id is unknown.
            ValueError: If previous_version_id belongs to another path.
            KeyError: If schema_id is not registered.
        """
        derived = tuple(derived_from or ())
        with self._lock:
            for parent_id in derived:
                if parent_id not in self._artifacts:
                    raise ArtifactNotFoundError(parent_id)

            history_ids = self._paths.get(path, [])
            if previous_version_id is None:
                previous = history_ids[-1] if history_ids else None
            else:
                prior = self._artifacts.get(previous_version_id)
                if prior is None:
                    raise ArtifactNotFoundError(previous_version_id)
                if prior.path != path:
                    raise ValueError(
                        f"Version {previous_version_id} belongs to '{prior.path}', not '{path}'"
                    )
                previous = previous_version_id

            errors: List[str] = []
            if schema_id is not None:
                ok, errors = self.validate_content(content, schema_id)
                status = ValidationStatus.VALID if ok else ValidationStatus.INVALID
            else:
                status = validation_status or ValidationStatus.UNKNOWN

            raw = canonical_bytes(content)
            digest = hashlib.sha256(raw).hexdigest()
            version = len(history_ids) + 1
            artifact = VersionedArtifact(
                artifact_id=self._unique_id(path, version, digest),
                path=path,
                version=version,
                hash=digest,
                size=len(raw),
                content=copy.deepcopy(content),
                content_type=content_type or detect_content_type(content),
                derived_from=derived,
                previous_version=previous,
                created_by=created_by,
                created_at=_now_iso(),
                schema_id=schema_id,
                validation_status=status,
                validation_errors=tuple(errors),
                critical=critical,
                metadata=dict(metadata or {}),
            )
            self._artifacts[artifact.artifact_id] = artifact
            self._paths.setdefault(path, []).append(artifact.artifact_id)
            for parent_id in derived:
                self._derived_children.setdefault(parent_id, []).append(artifact.artifact_id)

        logger.debug("Stored %s (%s, %d bytes)", artifact.artifact_id, status.value, artifact.size)
        for listener in list(self._listeners):
            listener(artifact)
        return artifact

    def _unique_id(self, path: str, version: int, digest: str) -> str:
        """``artifact-<path>-v<n>-<hash>``, qualified by a path hash when sanitizing collides."""
        artifact_id = f"artifact-{_sanitize(path)}-v{version}-{digest[:8]}"
        if artifact_id in self._artifacts:
            artifact_id += "-" + hashlib.sha256(path.encode("utf-8")).hexdigest()[:8]
        return artifact_id

    # Reads

    def get(self, artifact_id: str) -> Optional[VersionedArtifact]:
        return self._artifacts.get(artifact_id)

    def require(self, artifact_id: str) -> VersionedArtifact:
        artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(artifact_id)
        return artifact

    def paths(self) -> List[str]:
        return list(self._paths)

    def history(self, path: str) -> VersionHistory:
        """All versions of ``path`` in version order (empty for unknown paths)."""
        with self._lock:
            versions = [self._artifacts[aid] for aid in self._paths.get(path, [])]
        return VersionHistory(
            path=path,
            versions=versions,
            current_version=versions[-1].version if versions else 0,
            total_versions=len(versions),
        )

    def get_latest(self, path: str) -> Optional[VersionedArtifact]:
        ids = self._paths.get(path)
        return self._artifacts[ids[-1]] if ids else None

    def get_version(self, path: str, version: int) -> Optional[VersionedArtifact]:
        ids = self._paths.get(path, [])
        if 1 <= version <= len(ids):
            return self._artifacts[ids[version - 1]]
        return None

    def latest_artifacts(self) -> Dict[str, VersionedArtifact]:
        """path -> latest version, for every known path."""
        with self._lock:
            return {path: self._artifacts[ids[-1]] for path, ids in self._paths.items()}

    @staticmethod
    def is_usable(artifact: VersionedArtifact) -> bool:
        """Critical artifacts are usable downstream only once valid."""
        return not artifact.critical or artifact.validation_status == ValidationStatus.VALID

    def lineage(self, artifact_id: str) -> Optional[ArtifactLineage]:
        """Tree of ``derived_from`` parents and derived children of an artifact."""
        artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            return None
        return ArtifactLineage(
            artifact=artifact,
            parents=[self._ancestry(pid) for pid in artifact.derived_from],
            children=[self._descendants(cid) for cid in self._derived_children.get(artifact_id, [])],
        )

    def _ancestry(self, artifact_id: str) -> ArtifactLineage:
        artifact = self._artifacts[artifact_id]
        return ArtifactLineage(
            artifact=artifact,
            parents=[self._ancestry(pid) for pid in artifact.derived_from],
        )

    def _descendants(self, artifact_id: str) -> ArtifactLineage:
        return ArtifactLineage(
            artifact=self._artifacts[artifact_id],
            children=[self._descendants(cid) for cid in self._derived_children.get(artifact_id, [])],
        )

    def version_chain(self, artifact_id: str) -> List[str]:
        """The artifact id followed by its ``previous_version`` ancestors."""
        chain = []
        current = artifact_id
        while current is not None and current in self._artifacts:
            chain.append(current)
            current = self._artifacts[current].previous_version
        return chain

    def is_ancestor(self, ancestor_id: str, descendant_id: str) -> bool:
        """True when ``ancestor_id`` is in the strict previous-version chain of ``descendant_id``."""
        return ancestor_id in self.version_chain(descendant_id)[1:]

    def common_ancestor(self, first_id: str, second_id: str) -> Optional[VersionedArtifact]:
        """Nearest version shared by both previous-version chains."""
        first_chain = set(self.version_chain(first_id))
        for candidate in self.version_chain(second_id):
            if candidate in first_chain:
                return self._artifacts[candidate]
        return None

    def heads(self, path: str) -> List[VersionedArtifact]:
        """Versions of ``path`` that no later version of the same path builds on."""
        ids = self._paths.get(path, [])
        superseded = set()
        for aid in ids:
            artifact = self._artifacts[aid]
            if artifact.previous_version:
                superseded.add(artifact.previous_version)
            superseded.update(artifact.derived_from)
        return [self._artifacts[aid] for aid in ids if aid not in superseded]

    def compare_versions(self, first_id: str, second_id: str) -> VersionComparison:
        first, second = self.require(first_id), self.require(second_id)
        older, newer = (first, second) if first.version <= second.version else (second, first)
        return VersionComparison(
            older=older,
            newer=newer,
            hash_changed=older.hash != newer.hash,
            size_delta=newer.size - older.size,
            versions_apart=newer.version - older.version,
        )

    def clear(self) -> None:
        """Clear all versions (useful for testing). Schemas and listeners stay."""
        with self._lock:
            self._artifacts.clear()
            self._paths.clear()
            self._derived_children.clear()
