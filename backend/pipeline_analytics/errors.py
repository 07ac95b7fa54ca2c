"""
Exception hierarchy for the analytics engine.

Lifecycle errors (NotFound, InvalidTransition, DuplicateProposal) are surfaced
to the caller. Collaborator errors (StoreUnavailable, Advisor*) carry the
pipeline id and operation so the caller can decide whether to retry.
Insufficient data is never an exception: detectors return an empty list.
"""

from __future__ import annotations

from typing import Any


class AnalyticsError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


# ── Lifecycle ────────────────────────────────────────────────────────────────

class LifecycleError(AnalyticsError):
    """Base for optimization lifecycle errors."""


class NotFound(LifecycleError):
    """The referenced candidate (or run) does not exist."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"{resource} not found: {resource_id}",
            {"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class InvalidTransition(LifecycleError):
    """A lifecycle rule was violated. State is left unchanged."""

    def __init__(self, optimization_id: str, current: str, requested: str):
        super().__init__(
            f"Cannot transition optimization {optimization_id} from '{current}' to '{requested}'",
            {"optimization_id": optimization_id, "current": current, "requested": requested},
        )
        self.optimization_id = optimization_id
        self.current = current
        self.requested = requested


class DuplicateProposal(LifecycleError):
    """A near-identical pending candidate already exists for the pipeline."""

    def __init__(self, pipeline_config_id: str, optimization_type: str, existing_id: str):
        super().__init__(
            f"Pending {optimization_type} optimization {existing_id} already covers this proposal",
            {
                "pipeline_config_id": pipeline_config_id,
                "optimization_type": optimization_type,
                "existing_id": existing_id,
            },
        )
        self.existing_id = existing_id


# ── Collaborators ────────────────────────────────────────────────────────────

class StoreUnavailable(AnalyticsError):
    """The run or optimization store could not be reached."""

    def __init__(self, pipeline_config_id: str | None, operation: str, cause: Exception | None = None):
        super().__init__(
            f"Store unavailable during {operation}",
            {"pipeline_config_id": pipeline_config_id, "operation": operation,
             "cause": repr(cause) if cause else None},
        )
        self.pipeline_config_id = pipeline_config_id
        self.operation = operation


class AdvisorError(AnalyticsError):
    """Base for advisor failures. Never fatal to an aggregation pass."""


class AdvisorTimeout(AdvisorError):
    def __init__(self, pipeline_config_id: str, timeout: float):
        super().__init__(
            f"Advisor did not answer within {timeout:.1f}s",
            {"pipeline_config_id": pipeline_config_id, "timeout": timeout},
        )


class AdvisorUnavailable(AdvisorError):
    def __init__(self, pipeline_config_id: str, reason: str):
        super().__init__(
            f"Advisor unavailable: {reason}",
            {"pipeline_config_id": pipeline_config_id},
        )
