"""Data model of a batch run: work items, batches, outcomes, run result."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from receipt_ocr.core.exceptions import BaseError


class FailureStage(str, Enum):
    """Where in the per-item chain a failure happened."""

    INVOCATION = "invocation"
    TRANSFORMATION = "transformation"
    PERSISTENCE = "persistence"
    TIMEOUT = "timeout"


class ItemState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkItem:
    """One unit of input: a unique identifier plus where to read it from."""

    item_id: str
    source_ref: str


@dataclass(frozen=True)
class Batch:
    """Contiguous slice of the run's work items, tagged with its position."""

    index: int
    items: tuple[WorkItem, ...]

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class ErrorDetail:
    stage: FailureStage
    error_code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, stage: FailureStage, exc: BaseException) -> "ErrorDetail":
        """Build the failure record for ``exc`` raised during ``stage``.

        Pipeline errors keep their code and retryability; anything else is
        recorded as UNEXPECTED_ERROR with its type name.
        """
        if isinstance(exc, BaseError):
            return cls(
                stage=stage,
                error_code=exc.error_code,
                message=exc.message,
                retryable=exc.retryable,
                details=dict(exc.details),
            )
        return cls(
            stage=stage,
            error_code="UNEXPECTED_ERROR",
            message=str(exc) or type(exc).__name__,
            details={"exception_type": type(exc).__name__},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage.value,
            "code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


@dataclass(frozen=True)
class Outcome:
    """Terminal result of one work item. Exactly one of record/error is set."""

    item: WorkItem
    record: Optional[BaseModel] = None
    error: Optional[ErrorDetail] = None
    attempts: int = 1
    duration_seconds: float = 0.0

    def __post_init__(self) -> None:
        if (self.record is None) == (self.error is None):
            raise ValueError(
                f"Outcome for {self.item.item_id} must carry either a record or an error"
            )

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def state(self) -> ItemState:
        return ItemState.SUCCEEDED if self.succeeded else ItemState.FAILED


@dataclass
class RunResult:
    """Aggregated outcomes of a run.

    ``succeeded`` and ``failed`` are keyed by item id and never share a key.
    Items that never started because the run was cancelled are listed in
    ``skipped``. ``failed_item_ids`` follows input order so the result does
    not depend on which task finished first.
    """

    run_id: str
    item_order: dict[str, int] = field(default_factory=dict, repr=False)
    succeeded: dict[str, BaseModel] = field(default_factory=dict)
    failed: dict[str, ErrorDetail] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    batches_total: int = 0
    batches_completed: int = 0
    cancelled: bool = False
    timings: dict[str, float] = field(default_factory=dict)

    def record(self, outcome: Outcome) -> None:
        item_id = outcome.item.item_id
        if item_id in self.succeeded or item_id in self.failed:
            raise ValueError(f"Outcome for item {item_id} already recorded")
        if outcome.succeeded:
            self.succeeded[item_id] = outcome.record
        else:
            self.failed[item_id] = outcome.error

    def _position(self, item_id: str) -> tuple[int, str]:
        return (self.item_order.get(item_id, len(self.item_order)), item_id)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def failed_item_ids(self) -> list[str]:
        return sorted(self.failed, key=self._position)

    @property
    def succeeded_item_ids(self) -> list[str]:
        return sorted(self.succeeded, key=self._position)

    def summary(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "succeeded_count": self.succeeded_count,
            "failed_count": self.failed_count,
            "failed_item_ids": self.failed_item_ids,
            "failures": {
                item_id: self.failed[item_id].to_dict() for item_id in self.failed_item_ids
            },
            "skipped_item_ids": list(self.skipped),
            "batches_completed": self.batches_completed,
            "batches_total": self.batches_total,
            "cancelled": self.cancelled,
            "timings": dict(self.timings),
        }
