"""Telemetry event records emitted by simulations, the artifact store and the resolver."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import Field

from .base import SchemaBase


class EventType(str, Enum):
    SIMULATION = "simulation"
    STEP = "step"
    ARTIFACT = "artifact"
    CONFLICT = "conflict"
    ERROR = "error"


class Event(SchemaBase):
    """One telemetry record; ``payload["event"]`` names what happened."""

    event_id: str
    simulation_id: Optional[str] = Field(default=None)
    node_id: Optional[str] = Field(default=None)
    type: EventType
    timestamp: Optional[str] = Field(default=None)
    payload: Dict[str, Any]
    metadata: Dict[str, Any] = Field(default_factory=dict)
