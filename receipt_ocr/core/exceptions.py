"""Exception hierarchy for the receipt extraction pipeline.

Every error raised by the pipeline inherits from BaseError and carries a
structured payload (error code, category, retryability) so that failed items
can be recorded and reported without losing context.

Only InvalidConfiguration aborts a run. All other errors are item-level:
the controller converts them into failed outcomes at the fan-out boundary.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Error categories for classification and reporting."""

    CONFIGURATION = "configuration"
    EXTERNAL_SERVICE = "external_service"
    RESPONSE_FORMAT = "response_format"
    STORAGE = "storage"
    TIMEOUT = "timeout"


class BaseError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        error_code: Application-specific error code
        category: Error category for classification
        details: Additional context (dict)
        retryable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory,
        details: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.category = category
        self.details = details or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable error record.

        Returns:
            Dict containing standardized error information
        """
        return {
            "code": self.error_code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidConfiguration(BaseError):
    """Batch or parallelism parameters are invalid.

    Raised before any work starts; a run never begins with a bad
    configuration.

    Args:
        message: Description of the problem
        field: Name of the offending parameter
    """

    def __init__(self, message: str, field: str, **kwargs):
        additional_details = kwargs.pop("details", {})
        additional_details["field"] = field
        super().__init__(
            message=message,
            error_code="INVALID_CONFIGURATION",
            category=ErrorCategory.CONFIGURATION,
            details=additional_details,
            retryable=False,
        )
        self.field = field


class InferenceError(BaseError):
    """The inference service call for one item failed.

    Use TransientInferenceError or PermanentInferenceError rather than this
    class directly; ``transient`` decides retryability.

    Args:
        message: Error description
        transient: Whether a later attempt may succeed
        error_type: Short failure kind ("timeout", "rate_limit", "http_error", ...)
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        error_type: str = "error",
        details: Optional[dict[str, Any]] = None,
    ):
        additional_details = dict(details or {})
        additional_details["error_type"] = error_type
        super().__init__(
            message=message,
            error_code=f"INFERENCE_{error_type.upper()}",
            category=ErrorCategory.EXTERNAL_SERVICE,
            details=additional_details,
            retryable=transient,
        )
        self.transient = transient
        self.error_type = error_type


class TransientInferenceError(InferenceError):
    """External service hiccup (timeout, throttling, 5xx). Candidate for retry."""

    def __init__(self, message: str, error_type: str = "unavailable", **kwargs):
        super().__init__(message, transient=True, error_type=error_type, **kwargs)


class PermanentInferenceError(InferenceError):
    """Unrecoverable for this item (bad request, unreadable source document)."""

    def __init__(self, message: str, error_type: str = "rejected", **kwargs):
        super().__init__(message, transient=False, error_type=error_type, **kwargs)


class MalformedResponseError(BaseError):
    """A successful invocation returned a payload that cannot be interpreted.

    Args:
        message: What was wrong with the payload
        details: Additional context (e.g. a truncated excerpt of the payload)
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            error_code="MALFORMED_RESPONSE",
            category=ErrorCategory.RESPONSE_FORMAT,
            details=kwargs.pop("details", {}),
            retryable=False,
        )


class PersistenceError(BaseError):
    """Writing one item's record to storage failed.

    Isolated to that item; records persisted earlier are untouched.

    Args:
        item_id: Identifier of the item being written
        path: Destination path
        reason: Underlying I/O error message
    """

    def __init__(self, item_id: str, path: str, reason: str):
        super().__init__(
            message=f"Failed to persist record for item {item_id}",
            error_code="PERSISTENCE_FAILED",
            category=ErrorCategory.STORAGE,
            details={"item_id": item_id, "path": path, "reason": reason},
            retryable=False,
        )


class ItemTimeoutError(BaseError):
    """An item did not finish within its per-item deadline."""

    def __init__(self, item_id: str, timeout_seconds: float):
        super().__init__(
            message=f"Item {item_id} exceeded {timeout_seconds:g}s",
            error_code="ITEM_TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"item_id": item_id, "timeout_seconds": timeout_seconds},
            retryable=True,
        )
