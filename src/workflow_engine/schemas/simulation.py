"""Simulation configuration and result schemas."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import SchemaBase

DEFAULT_COST_PER_TOKEN = 0.000015
DEFAULT_MAX_STEPS = 1000
DEFAULT_BOTTLENECK_THRESHOLD = 2.0


class SimulationMode(str, Enum):
    FAST_FORWARD = "fast-forward"
    STEP_BY_STEP = "step-by-step"
    BREAKPOINTS = "breakpoints"


class SimulationStatus(str, Enum):
    """Simulation lifecycle.

    RUNNING -> PAUSED <-> RUNNING -> COMPLETED | FAILED | CANCELLED.
    Terminal states never change again.
    """

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SimulationStatus.COMPLETED, SimulationStatus.FAILED, SimulationStatus.CANCELLED)


class SimulationConfig(SchemaBase):
    mode: SimulationMode = Field(default=SimulationMode.FAST_FORWARD)
    breakpoints: List[str] = Field(default_factory=list, description="Node ids that pause the trace before they run")
    mock_inputs: Dict[str, Any] = Field(default_factory=dict, description="Initial state snapshot")
    mock_outputs: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="node_id -> content the node produces; also merged into state")
    mock_artifacts: Dict[str, Any] = Field(default_factory=dict, description="artifact path -> seeded content")
    time_estimates: Dict[str, int] = Field(default_factory=dict, description="node_id -> execution time override (ms)")
    token_estimates: Dict[str, int] = Field(default_factory=dict, description="node_id -> token estimate override")
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, description="Safety cap on executed steps")
    cost_per_token: float = Field(default=DEFAULT_COST_PER_TOKEN, description="USD per token")
    bottleneck_threshold: float = Field(default=DEFAULT_BOTTLENECK_THRESHOLD, description="Multiple of the sibling mean that flags a bottleneck")
    concurrency_limit: Optional[int] = Field(default=None, description="Caps the reported peak parallelism; advisory only")


class RoutingDecision(SchemaBase):
    edge_id: str
    target: str
    satisfied: bool
    taken: bool = False
    reason: str = ""


class SimulationStep(SchemaBase):
    """One executed node in the trace.

    Steps hold no wall-clock data, so two runs with the same inputs produce
    identical step lists.
    """

    step_number: int
    node_id: str
    node_name: str
    role: str
    inputs: Dict[str, Any] = Field(default_factory=dict)
    input_artifacts: List[str] = Field(default_factory=list, description="Artifact version ids consumed")
    outputs: Dict[str, Any] = Field(default_factory=dict)
    output_artifacts: List[str] = Field(default_factory=list, description="Artifact version ids produced")
    execution_time_ms: int = 0
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    next_nodes: List[str] = Field(default_factory=list)
    routing: List[RoutingDecision] = Field(default_factory=list)
    depends_on: List[int] = Field(default_factory=list, description="Step numbers this step waited for")
    loop_iterations: Dict[str, int] = Field(default_factory=dict, description="loop_id -> counter when the step ran")
    warnings: List[str] = Field(default_factory=list)


class ParallelBlock(SchemaBase):
    block_id: str
    level: int = Field(..., description="Dependency depth shared by the steps")
    step_numbers: List[int] = Field(default_factory=list)
    node_ids: List[str] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.step_numbers)


class BottleneckType(str, Enum):
    SLOW_NODE = "slow-node"
    TOKEN_HEAVY = "token-heavy"
    SYNCHRONIZATION_POINT = "synchronization-point"
    HIGH_FAN_OUT = "high-fan-out"
    LOOP_LIMIT = "loop-limit"


class BottleneckImpact(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Bottleneck(SchemaBase):
    node_id: str
    type: BottleneckType
    impact: BottleneckImpact = BottleneckImpact.MEDIUM
    reason: str
    suggestion: Optional[str] = None


class SimulationResult(SchemaBase):
    simulation_id: str
    workflow_id: str
    status: SimulationStatus = SimulationStatus.RUNNING
    mode: SimulationMode = SimulationMode.FAST_FORWARD
    failure_reason: Optional[str] = None
    steps: List[SimulationStep] = Field(default_factory=list)
    execution_order: List[str] = Field(default_factory=list)
    critical_path: List[str] = Field(default_factory=list)
    parallel_blocks: List[ParallelBlock] = Field(default_factory=list)
    peak_parallelism: int = 0
    total_estimated_time_ms: int = 0
    total_estimated_tokens: int = 0
    total_estimated_cost: float = 0.0
    bottlenecks: List[Bottleneck] = Field(default_factory=list)
    nodes_visited: List[str] = Field(default_factory=list)
    nodes_skipped: List[str] = Field(default_factory=list)
    edges_traversed: List[str] = Field(default_factory=list)
    coverage_percentage: float = 0.0
    loop_iterations: Dict[str, int] = Field(default_factory=dict, description="loop_id -> highest counter reached")
    final_state: Dict[str, Any] = Field(default_factory=dict)
    paused_at: Optional[str] = Field(default=None, description="Node id of the last step before a pause")
    validation_errors: List[str] = Field(default_factory=list)
    validation_warnings: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
