"""
Domain exceptions for the bento engine.

Notes
-----
Core engine logic does not raise generic exceptions for expected failure modes.
Every expected failure maps to a domain exception with a clear meaning. Grid
operations that fail for ordinary reasons (a storage write rejected, a reload
that could not complete) are reported as OperationResult values instead; the
exceptions below surface only at module boundaries or for programming errors.
"""

from __future__ import annotations


class BentoError(RuntimeError):
    """Base exception for all bento engine domain failures."""


class GridInvariantError(BentoError):
    """Raised when a grid computation would break a layout invariant."""


class CollisionBoundExceededError(GridInvariantError):
    """
    Raised when collision resolution does not settle within its iteration bound.

    This is a programming-error class. A well-formed grid always settles; seeing
    this error means the solver received inconsistent input.
    """


class InvalidLayoutError(GridInvariantError):
    """Raised when a committed layout overflows the columns or overlaps itself."""


class PersistenceError(BentoError):
    """Raised when a storage adapter cannot read or write state."""


class ItemNotFoundError(PersistenceError):
    """Raised when an item id is not present in the store."""


class StoreSchemaError(PersistenceError):
    """Raised when the on-disk store schema is newer than this engine supports."""


class SnapshotError(BentoError):
    """Raised for snapshot (published configuration) failures."""


class SnapshotIOError(SnapshotError):
    """Raised when a snapshot cannot be read or written."""


class SnapshotValidationError(SnapshotError):
    """Raised when a snapshot payload does not match the expected schema."""


class PublishError(BentoError):
    """Raised when a publish run cannot complete."""


class RepositoryApiError(PublishError):
    """
    Raised when the hosting provider answers with an error status.

    Attributes
    ----------
    status:
        HTTP status code returned by the provider.
    """

    def __init__(self, message: str, *, status: int) -> None:
        super().__init__(message)
        self.status = status


class RepositoryUnreachableError(PublishError):
    """Raised when the hosting provider cannot be reached at all."""


class DeploymentFailedError(PublishError):
    """Raised when the hosting provider reports a failed deployment."""


class DeploymentTimeoutError(PublishError):
    """Raised when a deployment does not reach a terminal state in time."""
