"""
Exceptions raised by the relationship engine.

Cycle Guard rejections are NOT exceptions: they come back as a
MutationResult with a reason. Everything here is either a missing
entity or a fault that aborted a recompute before the derived set swap.
"""

from enum import Enum
from typing import Any, Dict, Optional

GENERIC_RETRY_MESSAGE = "Something went wrong updating the family tree. Please try again."


class ErrorCategory(str, Enum):
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SNAPSHOT = "inconsistent_snapshot"
    DATABASE = "database"
    INTERNAL = "internal"


class KinfolkError(Exception):
    """
    Base exception for engine errors.

    Carries an HTTP status code, a category for log filtering and a
    context dict; chain with `raise ... from e` to keep the cause.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        category: ErrorCategory = ErrorCategory.INTERNAL,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.category = category
        self.context = context or {}
        self.original_error = original_error

        full_message = message
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            full_message = f"{message} [{context_str}]"
        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        """Body for API responses. 5xx errors never leak internals."""
        if self.status_code >= 500:
            return {
                "error": GENERIC_RETRY_MESSAGE,
                "category": self.category.value,
                "retryable": self.retryable,
            }
        result = {
            "error": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = self.context
        return result


class PersonNotFoundError(KinfolkError):
    """Raised when an id does not match any Person (404)."""

    def __init__(self, person_id: Any, original_error: Optional[Exception] = None):
        super().__init__(
            message=f"Person not found: {person_id}",
            status_code=404,
            category=ErrorCategory.NOT_FOUND,
            context={"person_id": person_id},
            original_error=original_error,
        )


class PersonInUseError(KinfolkError):
    """Raised when deleting a Person who still has parent facts (409)."""

    def __init__(self, person_id: Any, fact_count: int):
        super().__init__(
            message="Remove this person's family connections before deleting them",
            status_code=409,
            category=ErrorCategory.CONFLICT,
            context={"person_id": person_id, "fact_count": fact_count},
        )


class InconsistentSnapshotError(KinfolkError):
    """A fact references a person missing from the snapshot; recompute aborted."""

    retryable = True

    def __init__(self, missing_ids, original_error: Optional[Exception] = None):
        missing = sorted(missing_ids, key=str)
        super().__init__(
            message="Parent facts reference unknown people",
            status_code=500,
            category=ErrorCategory.SNAPSHOT,
            context={"missing_ids": missing},
            original_error=original_error,
        )
        self.missing_ids = missing


class ReconcileError(KinfolkError):
    """The derived set swap failed and was rolled back (503)."""

    retryable = True

    def __init__(self, message: str = "Derived relationship swap failed", original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            status_code=503,
            category=ErrorCategory.DATABASE,
            original_error=original_error,
        )
