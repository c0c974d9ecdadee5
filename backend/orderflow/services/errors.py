# Overview: Workflow error taxonomy and the structured result returned by service operations.

"""
Workflow errors are domain failures, not technical ones: the caller asked
for something the current state does not allow. Coordinator operations
catch them, roll back, and hand them back inside a ServiceResult so that
callers never see an uncontrolled abort.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class WorkflowError(ValueError):
    """Base class for reported workflow failures."""

    code = "workflow_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidTransition(WorkflowError):
    """Requested status change is not permitted from the current status."""

    code = "invalid_transition"


class InvalidState(WorkflowError):
    """Operation preconditions are not met (e.g. invoicing an order with no lines)."""

    code = "invalid_state"


class GenerationExhausted(WorkflowError):
    """No unique reference/number could be generated within the retry budget."""

    code = "generation_exhausted"


class ConcurrencyConflict(WorkflowError):
    """A competing transaction won the race on the same entity."""

    code = "concurrency_conflict"


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[WorkflowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "ServiceResult":
        return cls(value=value)

    @classmethod
    def failure(cls, error: WorkflowError) -> "ServiceResult":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the reported error."""
        if self.error is not None:
            raise self.error
        return self.value

    def __bool__(self) -> bool:
        return self.ok
