"""Typed error hierarchy for pipeline runs.

Every failure a caller can observe is a `PipelineError`, so sinks and the CLI
only need to handle one base type.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline failures."""

    kind = "PipelineError"


class SourceError(PipelineError):
    """The document source failed or became unreachable mid-stream."""

    kind = "SourceError"


class ExpressionError(PipelineError):
    """An expression hit an undefined operation (e.g. divide by zero)."""

    kind = "ExpressionError"

    def __init__(self, operator: str, message: str) -> None:
        super().__init__(f"{operator}: {message}")
        self.operator = operator


class StageConfigurationError(PipelineError):
    """A pipeline description is malformed and cannot be executed."""

    kind = "StageConfigurationError"


class FacetError(PipelineError):
    """One facet sub-pipeline failed while its siblings completed."""

    kind = "FacetError"

    def __init__(self, facet: str, cause: Exception) -> None:
        super().__init__(f"facet {facet!r} failed: {cause}")
        self.facet = facet
        self.cause = cause

    def to_marker(self) -> dict[str, Any]:
        """Return the error marker stored in the facet's result slot."""
        return {
            "error": getattr(self.cause, "kind", type(self.cause).__name__),
            "facet": self.facet,
            "message": str(self.cause),
        }


def is_error_marker(value: Any) -> bool:
    """Return True if a facet slot holds an error marker instead of data."""
    return isinstance(value, dict) and "error" in value and "facet" in value
