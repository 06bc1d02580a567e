"""Telemetry/event bus."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from workflow_engine.schemas import Event, EventType


EventListener = Callable[[Event], None]


def _now_iso() -> str:
    """Generate ISO-8601 timestamp."""
    return datetime.now(ZoneInfo("UTC")).isoformat()


@dataclass
class TelemetryBus:
    events: List[Event] = field(default_factory=list)
    max_events: Optional[int] = None

    def __post_init__(self):
        self._listeners: List[EventListener] = []
        self._sequence = len(self.events)

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: Event) -> None:
        """Record event and dispatch it to listeners.

        Args:
            event: Event to emit
        """
        self.events.append(event)
        if self.max_events is not None and len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]
        for listener in list(self._listeners):
            listener(event)

    def _event(self, name: str, type: EventType, simulation_id: Optional[str] = None,
               node_id: Optional[str] = None, **payload: Any) -> None:
        # Sequence survives max_events trimming, so ids stay unique.
        sequence = self._sequence
        self._sequence += 1
        self.emit(Event(
            event_id=f"{name}-{sequence}",
            simulation_id=simulation_id,
            node_id=node_id,
            type=type,
            timestamp=_now_iso(),
            payload={"event": name, **payload},
        ))

    def events_of(self, type: EventType, simulation_id: Optional[str] = None) -> List[Event]:
        return [
            e for e in self.events
            if e.type == type and (simulation_id is None or e.simulation_id == simulation_id)
        ]

    # Simulation Events
    def simulation_started(self, simulation_id: str, workflow_id: str, mode: str) -> None:
        self._event("simulation_started", EventType.SIMULATION, simulation_id, workflow_id=workflow_id, mode=mode)

    def step_completed(self, simulation_id: str, node_id: str, step_number: int, next_nodes: List[str]) -> None:
        self._event("step_completed", EventType.STEP, simulation_id, node_id,
                    step_number=step_number, next_nodes=list(next_nodes))

    def simulation_paused(self, simulation_id: str, node_id: Optional[str], reason: str) -> None:
        self._event("simulation_paused", EventType.SIMULATION, simulation_id, node_id, reason=reason)

    def simulation_resumed(self, simulation_id: str) -> None:
        self._event("simulation_resumed", EventType.SIMULATION, simulation_id)

    def simulation_completed(self, simulation_id: str, summary: Dict[str, Any]) -> None:
        self._event("simulation_completed", EventType.SIMULATION, simulation_id, **summary)

    def simulation_failed(self, simulation_id: str, reason: str) -> None:
        self._event("simulation_failed", EventType.ERROR, simulation_id, reason=reason)

    def simulation_cancelled(self, simulation_id: str, steps: int) -> None:
        self._event("simulation_cancelled", EventType.SIMULATION, simulation_id, steps=steps)

    # Artifact / Conflict Events
    def artifact_stored(self, artifact_id: str, path: str, version: int) -> None:
        self._event("artifact_stored", EventType.ARTIFACT, artifact_id=artifact_id, path=path, version=version)

    def conflict_detected(self, conflict_id: str, path: str, severity: str) -> None:
        self._event("conflict_detected", EventType.CONFLICT, conflict_id=conflict_id, path=path, severity=severity)

    def conflict_resolved(self, conflict_id: str, strategy: str, resolved_by: str) -> None:
        self._event("conflict_resolved", EventType.CONFLICT, conflict_id=conflict_id,
                    strategy=strategy, resolved_by=resolved_by)

    def resolution_rejected(self, conflict_id: str, strategy: str, reason: str) -> None:
        self._event("resolution_rejected", EventType.CONFLICT, conflict_id=conflict_id,
                    strategy=strategy, reason=reason)
