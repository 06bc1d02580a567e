"""Artifact conflict detection and resolution.

Two versions of one path conflict when neither appears in the other's
``previous_version`` chain. Detection diffs both against their nearest common
ancestor; resolution writes the outcome back to the store as a new version
derived from both sides, so the divergence closes.

Rejected resolution attempts (invalid manual content, missing rankings,
incompatible shapes) are recorded on the conflict and leave it unresolved.
Only unknown conflict ids and double resolution raise.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from workflow_engine.exceptions import ConflictNotFoundError, ConflictResolutionError
from workflow_engine.runtime.artifact_store import ArtifactVersionStore
from workflow_engine.schemas import (
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
    VersionedArtifact,
)
from workflow_engine.telemetry import TelemetryBus

logger = logging.getLogger(__name__)

WHOLE_CONTENT = "$"


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def _now_iso() -> str:
    return datetime.now(ZoneInfo("UTC")).isoformat()


def _field(content: Any, key: str) -> Any:
    if isinstance(content, dict):
        return content.get(key, MISSING)
    return MISSING


def _ordered_keys(*contents: Any) -> List[str]:
    keys: List[str] = []
    for content in contents:
        if isinstance(content, dict):
            keys.extend(k for k in content if k not in keys)
    return keys


def _public(value: Any) -> Any:
    return None if value is MISSING else value


def _changed_by(current: Any, incoming: Any, base: Any, has_base: bool) -> ChangeSide:
    if not has_base:
        return ChangeSide.BOTH
    cur_changed = current != base
    inc_changed = incoming != base
    if cur_changed and not inc_changed:
        return ChangeSide.CURRENT
    if inc_changed and not cur_changed:
        return ChangeSide.INCOMING
    return ChangeSide.BOTH


class ConflictResolver:
    """Detects divergent artifact versions and resolves them.

    With ``auto_detect`` the resolver subscribes to the store and checks
    every put against the other heads of the same path.
    """

    def __init__(
        self,
        store: ArtifactVersionStore,
        policy: ResolutionPolicy = ResolutionPolicy.CONSERVATIVE,
        thresholds: Optional[SeverityThresholds] = None,
        telemetry: Optional[TelemetryBus] = None,
        auto_detect: bool = True,
    ):
        self.store = store
        self.policy = policy
        self.thresholds = thresholds or SeverityThresholds()
        self.telemetry = telemetry
        self._conflicts: Dict[str, ArtifactConflict] = {}
        self._by_pair: Dict[frozenset, str] = {}
        self._lock = threading.RLock()
        if auto_detect:
            store.subscribe(self._on_put)

    def _on_put(self, artifact: VersionedArtifact) -> None:
        for head in self.store.heads(artifact.path):
            if head.artifact_id != artifact.artifact_id:
                self.detect(head.artifact_id, artifact.artifact_id)

    # Detection

    def detect(self, current_id: str, incoming_id: str) -> Optional[ArtifactConflict]:
        """Return the conflict between two versions, or None if one descends from the other.

        Raises:
            ArtifactNotFoundError: If either id is unknown.
            ValueError: If the versions belong to different paths.
        """
        current = self.store.require(current_id)
        incoming = self.store.require(incoming_id)
        if current.path != incoming.path:
            raise ValueError(f"Cannot compare '{current.path}' with '{incoming.path}'")
        if current_id == incoming_id:
            return None
        if self.store.is_ancestor(current_id, incoming_id) or self.store.is_ancestor(incoming_id, current_id):
            return None

        with self._lock:
            pair = frozenset((current_id, incoming_id))
            if pair in self._by_pair:
                return self._conflicts[self._by_pair[pair]]

            base = self.store.common_ancestor(current_id, incoming_id)
            conflict_type = self._classify_type(current, incoming)
            regions = self._regions(current, incoming, base, conflict_type)
            severity = self._classify_severity(current, incoming, base, conflict_type, regions)
            conflict = ArtifactConflict(
                conflict_id=f"conflict-{uuid.uuid4().hex[:12]}",
                artifact_path=current.path,
                type=conflict_type,
                severity=severity,
                current_version_id=current_id,
                incoming_version_id=incoming_id,
                base_version_id=base.artifact_id if base else None,
                current_version=current.version,
                incoming_version=incoming.version,
                regions=regions,
                description=(
                    f"Versions {current.version} and {incoming.version} of '{current.path}' "
                    f"diverged{' from version ' + str(base.version) if base else ''} "
                    f"in {len(regions)} region(s)"
                ),
                detected_at=_now_iso(),
            )
            self._conflicts[conflict.conflict_id] = conflict
            self._by_pair[pair] = conflict.conflict_id

        logger.info("Conflict %s on %s (%s, %s)", conflict.conflict_id, conflict.artifact_path,
                    conflict.type.value, conflict.severity.value)
        if self.telemetry:
            self.telemetry.conflict_detected(conflict.conflict_id, conflict.artifact_path, conflict.severity.value)
        return conflict

    @staticmethod
    def _classify_type(current: VersionedArtifact, incoming: VersionedArtifact) -> ConflictType:
        if current.schema_id != incoming.schema_id:
            return ConflictType.SCHEMA
        if current.content_type != incoming.content_type:
            return ConflictType.TYPE_MISMATCH
        if current.hash == incoming.hash:
            return ConflictType.METADATA
        return ConflictType.CONCURRENT_WRITE

    @staticmethod
    def _regions(
        current: VersionedArtifact,
        incoming: VersionedArtifact,
        base: Optional[VersionedArtifact],
        conflict_type: ConflictType,
    ) -> List[ConflictRegion]:
        if current.hash == incoming.hash:
            return []
        base_content = base.content if base else MISSING
        if current.is_structured and incoming.is_structured:
            regions = []
            for key in _ordered_keys(current.content, incoming.content):
                cur, inc = _field(current.content, key), _field(incoming.content, key)
                if cur == inc:
                    continue
                bval = _field(base_content, key)
                has_base = base is not None and base.is_structured
                regions.append(ConflictRegion(
                    kind=RegionKind.FIELD,
                    location=key,
                    current=_public(cur),
                    incoming=_public(inc),
                    base=_public(bval),
                    has_base=has_base and bval is not MISSING,
                    changed_by=_changed_by(cur, inc, bval, has_base),
                ))
            return regions
        has_base = base is not None and conflict_type != ConflictType.TYPE_MISMATCH
        return [ConflictRegion(
            kind=RegionKind.WHOLE_CONTENT,
            location=WHOLE_CONTENT,
            current=current.content,
            incoming=incoming.content,
            base=_public(base_content),
            has_base=has_base,
            changed_by=_changed_by(current.content, incoming.content, base_content, has_base),
        )]

    def _classify_severity(
        self,
        current: VersionedArtifact,
        incoming: VersionedArtifact,
        base: Optional[VersionedArtifact],
        conflict_type: ConflictType,
        regions: List[ConflictRegion],
    ) -> ConflictSeverity:
        if current.critical or incoming.critical:
            return ConflictSeverity.CRITICAL
        if conflict_type in (ConflictType.SCHEMA, ConflictType.TYPE_MISMATCH):
            return ConflictSeverity.CRITICAL
        if not regions:
            return ConflictSeverity.LOW
        if regions[0].kind == RegionKind.FIELD:
            total = len(_ordered_keys(current.content, incoming.content, base.content if base else None))
            if total and len(regions) / total > self.thresholds.critical_field_ratio:
                return ConflictSeverity.CRITICAL
        if len(regions) > self.thresholds.high_region_count:
            return ConflictSeverity.HIGH
        return ConflictSeverity.MEDIUM

    # Resolution

    def select_strategy(self, conflict: ArtifactConflict, policy: Optional[ResolutionPolicy] = None) -> ResolutionStrategy:
        """Default strategy for a conflict under a resolution policy."""
        policy = policy or self.policy
        if policy == ResolutionPolicy.LAST_WRITE_WINS_ALWAYS:
            return ResolutionStrategy.LAST_WRITE_WINS
        if policy == ResolutionPolicy.AGGRESSIVE:
            if conflict.severity == ConflictSeverity.CRITICAL or conflict.type in (
                ConflictType.SCHEMA, ConflictType.TYPE_MISMATCH
            ):
                return ResolutionStrategy.MANUAL
            return ResolutionStrategy.AUTO_MERGE
        if conflict.type == ConflictType.METADATA:
            return ResolutionStrategy.LAST_WRITE_WINS
        if conflict.severity == ConflictSeverity.LOW:
            return ResolutionStrategy.AUTO_MERGE
        return ResolutionStrategy.MANUAL

    def resolve(
        self,
        conflict_id: str,
        strategy: Optional[ResolutionStrategy] = None,
        *,
        resolved_by: str = "system",
        manual_content: Any = None,
        agent_priority: Optional[Dict[str, int]] = None,
        policy: Optional[ResolutionPolicy] = None,
    ) -> ArtifactConflict:
        """Resolve a conflict and write the outcome as a new artifact version.

        Args:
            conflict_id: Id returned by detection.
            strategy: Strategy to apply; chosen by the policy when omitted.
            resolved_by: Who resolved it (user, agent or "system").
            manual_content: Literal content for the manual strategy.
            agent_priority: producer id -> rank (higher wins) for agent-priority.
            policy: Overrides the resolver's policy for strategy selection.

        Returns:
            The conflict. ``resolution`` is set on success; on a rejected
            attempt it stays None and a ``RejectedResolution`` is appended.

        Raises:
            ConflictNotFoundError: If the id is unknown.
            ConflictResolutionError: If the conflict is already resolved.
        """
        with self._lock:
            conflict = self._conflicts.get(conflict_id)
            if conflict is None:
                raise ConflictNotFoundError(conflict_id)
            if conflict.resolved:
                raise ConflictResolutionError(conflict_id, "already resolved")

            strategy = strategy or self.select_strategy(conflict, policy)
            current = self.store.require(conflict.current_version_id)
            incoming = self.store.require(conflict.incoming_version_id)
            try:
                resolution = self._apply(conflict, strategy, current, incoming, manual_content, agent_priority)
            except ConflictResolutionError as e:
                conflict.rejections.append(RejectedResolution(
                    strategy=strategy, reason=e.message, attempted_by=resolved_by, attempted_at=_now_iso(),
                ))
                logger.warning("Rejected %s resolution of %s: %s", strategy.value, conflict_id, e.message)
                if self.telemetry:
                    self.telemetry.resolution_rejected(conflict_id, strategy.value, e.message)
                return conflict

            newer, older = self._by_recency(current, incoming)
            merged = self.store.put(
                conflict.artifact_path,
                resolution.merged_content,
                derived_from=[current.artifact_id, incoming.artifact_id],
                created_by=resolved_by,
                schema_id=self._declared_schema(current, incoming),
                critical=current.critical or incoming.critical,
                previous_version_id=newer.artifact_id,
                metadata={"resolved_conflict": conflict_id, "strategy": strategy.value},
            )
            resolution.merged_version_id = merged.artifact_id
            resolution.resolved_by = resolved_by
            resolution.resolved_at = _now_iso()
            conflict.resolution = resolution

        if self.telemetry:
            self.telemetry.conflict_resolved(conflict_id, strategy.value, resolved_by)
        return conflict

    @staticmethod
    def _by_recency(current: VersionedArtifact, incoming: VersionedArtifact) -> Tuple[VersionedArtifact, VersionedArtifact]:
        """(newer, older) by version number."""
        if current.version >= incoming.version:
            return current, incoming
        return incoming, current

    def _declared_schema(self, current: VersionedArtifact, incoming: VersionedArtifact) -> Optional[str]:
        newer, older = self._by_recency(current, incoming)
        return newer.schema_id or older.schema_id

    def _apply(
        self,
        conflict: ArtifactConflict,
        strategy: ResolutionStrategy,
        current: VersionedArtifact,
        incoming: VersionedArtifact,
        manual_content: Any,
        agent_priority: Optional[Dict[str, int]],
    ) -> ConflictResolution:
        newer, older = self._by_recency(current, incoming)
        cid = conflict.conflict_id

        if strategy == ResolutionStrategy.AUTO_MERGE:
            return self._auto_merge(conflict, current, incoming, newer)

        if strategy in (ResolutionStrategy.LAST_WRITE_WINS, ResolutionStrategy.FIRST_WRITE_WINS):
            winner, loser = (newer, older) if strategy == ResolutionStrategy.LAST_WRITE_WINS else (older, newer)
            return ConflictResolution(
                strategy=strategy,
                merged_content=winner.content,
                accepted_version_id=winner.artifact_id,
                rejected_version_ids=[loser.artifact_id],
                rationale=f"Kept version {winner.version}",
            )

        if strategy == ResolutionStrategy.MERGE_BOTH:
            cur, inc = current.content, incoming.content
            if isinstance(cur, dict) and isinstance(inc, dict):
                merged = {**cur, **inc}
            elif isinstance(cur, (list, tuple)) and isinstance(inc, (list, tuple)):
                merged = list(cur) + list(inc)
            elif isinstance(cur, str) and isinstance(inc, str):
                merged = f"{cur}\n\n{inc}"
            else:
                raise ConflictResolutionError(
                    cid, "merge-both needs two objects, two sequences or two strings")
            return ConflictResolution(strategy=strategy, merged_content=merged,
                                      rationale="Combined both versions")

        if strategy == ResolutionStrategy.MANUAL:
            if manual_content is None:
                raise ConflictResolutionError(cid, "manual resolution requires content")
            schema_id = self._declared_schema(current, incoming)
            if schema_id:
                ok, errors = self.store.validate_content(manual_content, schema_id)
                if not ok:
                    raise ConflictResolutionError(
                        cid, f"content fails schema '{schema_id}': {'; '.join(errors)}")
            return ConflictResolution(strategy=strategy, merged_content=manual_content,
                                      rejected_version_ids=[current.artifact_id, incoming.artifact_id],
                                      rationale="Content supplied by resolver")

        if strategy == ResolutionStrategy.AGENT_PRIORITY:
            if not agent_priority:
                raise ConflictResolutionError(cid, "agent-priority resolution requires a priority ranking")
            cur_rank = agent_priority.get(current.created_by or "")
            inc_rank = agent_priority.get(incoming.created_by or "")
            if cur_rank is None and inc_rank is None:
                raise ConflictResolutionError(
                    cid, f"no ranking for producers {current.created_by!r} and {incoming.created_by!r}")
            cur_rank = float("-inf") if cur_rank is None else cur_rank
            inc_rank = float("-inf") if inc_rank is None else inc_rank
            if cur_rank == inc_rank:
                winner, loser, why = newer, older, "equal priority, kept the newer version"
            elif cur_rank > inc_rank:
                winner, loser, why = current, incoming, f"{current.created_by} outranks {incoming.created_by}"
            else:
                winner, loser, why = incoming, current, f"{incoming.created_by} outranks {current.created_by}"
            return ConflictResolution(
                strategy=strategy,
                merged_content=winner.content,
                accepted_version_id=winner.artifact_id,
                rejected_version_ids=[loser.artifact_id],
                rationale=why,
            )

        raise ConflictResolutionError(cid, f"unsupported strategy {strategy}")

    def _auto_merge(
        self,
        conflict: ArtifactConflict,
        current: VersionedArtifact,
        incoming: VersionedArtifact,
        newer: VersionedArtifact,
    ) -> ConflictResolution:
        """Take each side's independent changes; overlaps fall back to last-write-wins."""
        base = self.store.get(conflict.base_version_id) if conflict.base_version_id else None
        regions = {r.location: r for r in conflict.regions}
        overlapping: List[ConflictRegion] = []

        def pick(cur: Any, inc: Any, base_value: Any, known_base: bool, location: str) -> Any:
            if cur == inc:
                return cur
            if known_base and cur == base_value:
                return inc
            if known_base and inc == base_value:
                return cur
            region = regions.get(location) or ConflictRegion(
                kind=RegionKind.FIELD if location != WHOLE_CONTENT else RegionKind.WHOLE_CONTENT,
                location=location, current=_public(cur), incoming=_public(inc),
            )
            overlapping.append(region)
            return cur if newer is current else inc

        if current.is_structured and incoming.is_structured:
            # without an ancestor every field counts as added by its writer
            base_content = base.content if base is not None and base.is_structured else {}
            merged: Any = {}
            for key in _ordered_keys(current.content, incoming.content):
                value = pick(
                    _field(current.content, key),
                    _field(incoming.content, key),
                    _field(base_content, key),
                    True,
                    key,
                )
                if value is not MISSING:
                    merged[key] = value
        else:
            merged = pick(
                current.content,
                incoming.content,
                base.content if base is not None else MISSING,
                base is not None,
                WHOLE_CONTENT,
            )

        return ConflictResolution(
            strategy=ResolutionStrategy.AUTO_MERGE,
            outcome=MergeOutcome.FALLBACK if overlapping else MergeOutcome.SUCCESS,
            merged_content=merged,
            overlapping_regions=overlapping,
            rationale=(
                f"{len(overlapping)} overlapping region(s) settled by last-write-wins"
                if overlapping else "Independent changes merged"
            ),
        )

    def auto_resolve(self, policy: Optional[ResolutionPolicy] = None, resolved_by: str = "policy") -> List[ArtifactConflict]:
        """Resolve every open conflict whose policy strategy is not manual."""
        resolved = []
        for conflict in self.list_conflicts(resolved=False):
            strategy = self.select_strategy(conflict, policy)
            if strategy == ResolutionStrategy.MANUAL:
                continue
            outcome = self.resolve(conflict.conflict_id, strategy, resolved_by=resolved_by)
            if outcome.resolved:
                resolved.append(outcome)
        return resolved

    # Queries

    def get_conflict(self, conflict_id: str) -> Optional[ArtifactConflict]:
        return self._conflicts.get(conflict_id)

    def list_conflicts(
        self,
        artifact_path: Optional[str] = None,
        resolved: Optional[bool] = None,
        severity: Optional[ConflictSeverity] = None,
    ) -> List[ArtifactConflict]:
        result = []
        for conflict in self._conflicts.values():
            if artifact_path is not None and conflict.artifact_path != artifact_path:
                continue
            if resolved is not None and conflict.resolved != resolved:
                continue
            if severity is not None and conflict.severity != severity:
                continue
            result.append(conflict)
        return result

    def stats(self) -> ConflictStats:
        conflicts = list(self._conflicts.values())
        resolved = [c for c in conflicts if c.resolved]
        return ConflictStats(
            total=len(conflicts),
            resolved=len(resolved),
            unresolved=len(conflicts) - len(resolved),
            by_severity=dict(Counter(c.severity.value for c in conflicts)),
            by_type=dict(Counter(c.type.value for c in conflicts)),
            by_strategy=dict(Counter(c.resolution.strategy.value for c in resolved)),
        )

    def clear_resolved(self) -> int:
        """Forget resolved conflicts; returns how many were removed."""
        with self._lock:
            done = [cid for cid, c in self._conflicts.items() if c.resolved]
            for cid in done:
                del self._conflicts[cid]
            self._by_pair = {pair: cid for pair, cid in self._by_pair.items() if cid in self._conflicts}
        return len(done)

    def calculate_diff(self, from_id: str, to_id: str) -> ArtifactDiff:
        """Per-field changes from one version to another."""
        old = self.store.require(from_id)
        new = self.store.require(to_id)
        changes: List[FieldChange] = []
        if old.is_structured and new.is_structured:
            for key in _ordered_keys(old.content, new.content):
                before, after = _field(old.content, key), _field(new.content, key)
                if before is MISSING:
                    kind = ChangeKind.ADDED
                elif after is MISSING:
                    kind = ChangeKind.REMOVED
                elif before != after:
                    kind = ChangeKind.MODIFIED
                else:
                    kind = ChangeKind.UNCHANGED
                changes.append(FieldChange(location=key, kind=kind, old=_public(before), new=_public(after)))
        else:
            kind = ChangeKind.UNCHANGED if old.hash == new.hash else ChangeKind.MODIFIED
            changes.append(FieldChange(location=WHOLE_CONTENT, kind=kind, old=old.content, new=new.content))
        return ArtifactDiff(from_version_id=from_id, to_version_id=to_id, changes=changes)
