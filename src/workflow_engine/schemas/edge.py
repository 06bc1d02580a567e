"""Edge schemas and the declarative policies they carry."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import Field

from .base import SchemaBase
from .condition import RoutingCondition


class LoopRole(str, Enum):
    """Position of an edge inside a declared loop.

    - ENTRY: from outside the loop into its entry node (starts iteration 1).
    - ITERATE: between two members of the loop.
    - RETURN: from a member back to the entry node (next iteration).
    - EXIT: from a member to a node outside the loop.
    - NONE: ordinary edge.
    """

    ENTRY = "entry"
    ITERATE = "iterate"
    RETURN = "return"
    EXIT = "exit"
    NONE = "none"


class BackoffType(str, Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RetryPolicy(SchemaBase):
    max_attempts: int = Field(default=3, description="Total attempts including the first")
    backoff_type: BackoffType = Field(default=BackoffType.EXPONENTIAL, description="Delay growth between attempts")
    initial_interval_ms: int = Field(default=1000, description="Delay before the first retry")
    backoff_coefficient: float = Field(default=2.0, description="Multiplier applied per attempt")
    max_interval_ms: int = Field(default=100000, description="Upper bound for a single delay")
    jitter: bool = Field(default=True, description="Randomize delays")


class CircuitBreakerPolicy(SchemaBase):
    enabled: bool = Field(default=False)
    failure_threshold: float = Field(default=0.5, description="Failure ratio (0..1) that opens the circuit")
    half_open_timeout_ms: int = Field(default=30000, description="Wait before probing an open circuit")
    success_threshold: int = Field(default=2, description="Successful probes needed to close the circuit")


class FallbackStrategy(str, Enum):
    CACHED_DATA = "cached-data"
    DEFAULT_VALUE = "default-value"
    SKIP = "skip"
    ALTERNATIVE_AGENT = "alternative-agent"


class FallbackPolicy(SchemaBase):
    enabled: bool = Field(default=False)
    strategy: FallbackStrategy = Field(default=FallbackStrategy.SKIP)
    fallback_edge_id: Optional[str] = Field(default=None, description="Edge taken by the alternative-agent strategy")
    fallback_value: Any = Field(default=None, description="Value used by the default-value strategy")


class TimeoutPolicy(SchemaBase):
    """Three-tier timeout. Response must not exceed execution."""

    execution_timeout_ms: int = Field(default=30000)
    response_timeout_ms: int = Field(default=25000)
    total_timeout_ms: Optional[int] = Field(default=120000, description="Including retries")


class ResiliencePolicy(SchemaBase):
    retry: Optional[RetryPolicy] = Field(default=None)
    circuit_breaker: Optional[CircuitBreakerPolicy] = Field(default=None)
    fallback: Optional[FallbackPolicy] = Field(default=None)
    timeout: Optional[TimeoutPolicy] = Field(default=None)


class MessageType(str, Enum):
    SYNC = "sync"
    ASYNC = "async"
    STREAMING = "streaming"
    EVENT_DRIVEN = "event-driven"


class SerializationFormat(str, Enum):
    JSON = "json"
    MSGPACK = "msgpack"
    PROTOBUF = "protobuf"


class SchemaValidationPolicy(SchemaBase):
    enabled: bool = Field(default=False)
    schema_id: Optional[str] = Field(default=None)
    schema_version: Optional[str] = Field(default=None)
    strict_mode: bool = Field(default=False)


class CommunicationPolicy(SchemaBase):
    message_type: MessageType = Field(default=MessageType.SYNC)
    serialization: SerializationFormat = Field(default=SerializationFormat.JSON)
    schema_validation: Optional[SchemaValidationPolicy] = Field(default=None)


class ResourceLimits(SchemaBase):
    max_concurrent_traversals: Optional[int] = Field(default=None)
    max_memory_mb: Optional[int] = Field(default=None)
    max_tokens: Optional[int] = Field(default=None, description="Token budget for the traversal")


class Edge(SchemaBase):
    """A directed edge between two agent nodes.

    Edges are declarative policy holders: the engine validates and simulates
    against them but never executes them.

    Fields:
        edge_id: Unique identifier within the graph.
        source: Source node id.
        target: Target node id.
        condition: Routing predicate, ``always`` by default.
        priority: Tie-break among eligible outgoing edges; lower value wins.
        loop_role: Position inside a declared loop (per LoopRole).
        loop_id: Explicit loop membership; inferred from endpoints when omitted.
    """

    edge_id: str
    source: str
    target: str
    condition: RoutingCondition = Field(default_factory=RoutingCondition, description="Routing predicate")
    priority: int = Field(default=0, description="Lower value wins among eligible edges")
    loop_role: LoopRole = Field(default=LoopRole.NONE, description="Position inside a declared loop")
    loop_id: Optional[str] = Field(default=None, description="Loop this edge belongs to")
    label: Optional[str] = Field(default=None, description="Display label")
    resilience: Optional[ResiliencePolicy] = Field(default=None, description="Retry, circuit breaker, fallback and timeout policy")
    communication: Optional[CommunicationPolicy] = Field(default=None, description="Message exchange policy")
    resource_limits: Optional[ResourceLimits] = Field(default=None, description="Traversal resource limits")

    @property
    def is_loop_edge(self) -> bool:
        return self.loop_role != LoopRole.NONE
