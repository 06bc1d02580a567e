"""Shared pydantic base for workflow records."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class SchemaBase(BaseModel):
    """Every workflow record accepts field aliases and trims string input."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    def to_manifest(self) -> Dict[str, Any]:
        """JSON-compatible dict without default values, as written to YAML manifests."""
        return self.model_dump(mode="json", exclude_defaults=True)


class Severity(str, Enum):
    """Finding severity; ERROR and CRITICAL make a report invalid."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
