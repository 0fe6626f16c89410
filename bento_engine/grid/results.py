"""
Result values returned by grid mutations.

Grid mutations are optimistic: local state changes first and storage is
reconciled afterwards. A storage failure is an expected outcome, so it is
reported as a value the caller inspects rather than an exception it must catch.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class OperationStatus(str, Enum):
    """Outcome of a grid mutation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class OperationResult(Generic[T]):
    """
    Outcome of one grid mutation.

    Attributes
    ----------
    status:
        Whether the mutation reached storage.
    value:
        Operation-specific payload (for example the persisted item id).
    error:
        The failure cause when ``status`` is FAILED.
    """

    status: OperationStatus
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.SUCCEEDED

    @property
    def message(self) -> str:
        """Human-readable failure cause, or an empty string on success."""
        return "" if self.error is None else str(self.error)

    @classmethod
    def success(cls, value: T | None = None) -> OperationResult[T]:
        return cls(status=OperationStatus.SUCCEEDED, value=value)

    @classmethod
    def failure(cls, error: BaseException) -> OperationResult[T]:
        return cls(status=OperationStatus.FAILED, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "value": self.value, "error": self.message or None}
