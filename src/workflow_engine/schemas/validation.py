"""Validation report schemas."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import Field

from .base import SchemaBase, Severity


class FindingCategory(str, Enum):
    STRUCTURAL = "structural"
    LOOP = "loop"
    CONDITION = "condition"
    TIMEOUT = "timeout"
    POLICY = "policy"
    PRIORITY = "priority"
    NODE = "node"
    SUGGESTION = "suggestion"


class ValidationFinding(SchemaBase):
    """One classified validator observation.

    ERROR findings are fatal to simulation; WARNING findings are advisory;
    INFO findings are improvement suggestions.
    """

    code: str = Field(..., description="Stable machine-readable code, e.g. 'dangling_edge'")
    category: FindingCategory
    severity: Severity
    message: str
    node_id: Optional[str] = Field(default=None)
    edge_id: Optional[str] = Field(default=None)
    loop_id: Optional[str] = Field(default=None)


class ValidationReport(SchemaBase):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    findings: List[ValidationFinding] = Field(default_factory=list)

    @classmethod
    def from_findings(cls, findings: List[ValidationFinding]) -> "ValidationReport":
        errors = [f.message for f in findings if f.severity in (Severity.ERROR, Severity.CRITICAL)]
        warnings = [f.message for f in findings if f.severity == Severity.WARNING]
        suggestions = [f.message for f in findings if f.severity == Severity.INFO]
        return cls(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            suggestions=suggestions,
            findings=list(findings),
        )

    def findings_by_code(self, code: str) -> List[ValidationFinding]:
        return [f for f in self.findings if f.code == code]
