"""Agent node schemas."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import SchemaBase


class AgentRole(str, Enum):
    """Closed set of agent archetypes.

    The role drives simulation estimates (base execution time) and a few
    validator rules: FINALIZER is the terminal role and is allowed to have no
    outgoing edges; ORCHESTRATOR delegates to every satisfied outgoing edge.
    """

    ORCHESTRATOR = "orchestrator"
    ARCHITECT = "architect"
    CRITIC = "critic"
    RED_TEAM = "red-team"
    RESEARCHER = "researcher"
    CODER = "coder"
    TESTER = "tester"
    WRITER = "writer"
    WORKER = "worker"
    FINALIZER = "finalizer"
    LOOP_CONTROLLER = "loop-controller"


TERMINAL_ROLES = frozenset({AgentRole.FINALIZER})
FAN_OUT_ROLES = frozenset({AgentRole.ORCHESTRATOR})


class ThinkingMode(str, Enum):
    MINIMAL = "minimal"
    BALANCED = "balanced"
    EXTENDED = "extended"


class FailureAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"


class NodeConfig(SchemaBase):
    thinking_mode: ThinkingMode = Field(default=ThinkingMode.BALANCED, description="Reasoning depth")
    parallel: bool = Field(default=False, description="Node may run concurrently with independent siblings and fans out to every satisfied edge")
    timeout_ms: Optional[int] = Field(default=None, description="Maximum execution time in milliseconds")
    retries: Optional[int] = Field(default=None, description="Retry count on failure")


class AgentNode(SchemaBase):
    """A unit of work in the workflow graph.

    Nodes are deliberately permissive at construction: negative timeouts,
    missing names and the like are accepted and reported by the validator.

    Fields:
        node_id: Unique identifier within the graph.
        name: Display label.
        role: Agent archetype (per AgentRole).
        config: Thinking depth, parallel eligibility, timeout and retries.
        inputs: Artifact paths consumed (order irrelevant).
        outputs: Artifact paths produced (order irrelevant).
        prompt_template: Opaque prompt text; only its length is used for estimates.
        success_criteria: Opaque acceptance text.
        on_failure: Failure handling hint for executors.
        metadata: Free-form data such as layout hints.
    """

    node_id: str
    name: str = Field(default="", description="Display label")
    role: AgentRole = Field(default=AgentRole.WORKER, description="Agent archetype (per AgentRole)")
    config: NodeConfig = Field(default_factory=NodeConfig, description="Execution configuration")
    inputs: List[str] = Field(default_factory=list, description="Artifact paths consumed by the node")
    outputs: List[str] = Field(default_factory=list, description="Artifact paths produced by the node")
    prompt_template: str = Field(default="", description="Opaque prompt text")
    success_criteria: Optional[str] = Field(default=None, description="Opaque acceptance text")
    on_failure: FailureAction = Field(default=FailureAction.RETRY, description="Failure handling hint")
    description: Optional[str] = Field(default=None, description="Short description")
    domain: Optional[str] = Field(default=None, description="Specialization area")
    capabilities: List[str] = Field(default_factory=list, description="Declared capabilities")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form metadata (layout hints, hierarchy info)")

    @property
    def is_terminal_role(self) -> bool:
        return self.role in TERMINAL_ROLES

    @property
    def fans_out(self) -> bool:
        """Whether the node spawns one branch per satisfied outgoing edge."""
        return self.config.parallel or self.role in FAN_OUT_ROLES
