"""
Serialized, deduplicated processing of item creation requests.

Creation is the one grid mutation that must not interleave: each new card is
placed against the grid as left by the previous one. Requests therefore go into
a FIFO that a single asyncio task drains one at a time.

Identical requests (same type and same key content fields) that arrive while an
earlier one is still queued or in flight share the earlier request's pending
result instead of creating a second card.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..data_models import GridRect, ItemRequest
from .results import OperationResult
from .solver import ViewportHint

logger = logging.getLogger(__name__)

# Content fields that identify "the same card" for duplicate detection.
OPERATION_KEY_FIELDS: tuple[str, ...] = ("url", "text", "owner", "repo", "userId", "username", "title")


def operation_id(request: ItemRequest) -> str:
    """
    Derive a stable id for a creation request.

    The id is a SHA-256 over the canonical JSON of the item type and the key
    content fields present in the request.
    """
    key: dict[str, Any] = {"type": request.type.value}
    for name in OPERATION_KEY_FIELDS:
        if name in request.content:
            key[name] = request.content[name]
    canonical = json.dumps(key, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class QueuedOperation:
    """
    One accepted creation request.

    Attributes
    ----------
    op_id:
        Deduplication key (see :func:`operation_id`).
    request:
        The creation request.
    preferred:
        Optional rectangle the caller would like (for example a drop target).
    viewport:
        Optional visible row range used for placement.
    """

    op_id: str
    request: ItemRequest
    preferred: GridRect | None = None
    viewport: ViewportHint | None = None


CreationHandler = Callable[[QueuedOperation], Awaitable[OperationResult[str]]]


class OperationQueue:
    """
    FIFO of creation requests drained by one asyncio task.

    Parameters
    ----------
    handler:
        Coroutine that performs one creation and returns its result. Exceptions
        it raises are delivered to every caller waiting on that operation.
    """

    def __init__(self, handler: CreationHandler) -> None:
        self._handler = handler
        self._pending: deque[QueuedOperation] = deque()
        self._results: dict[str, asyncio.Future[OperationResult[str]]] = {}
        self._in_flight: str | None = None
        self._drain_task: asyncio.Task[None] | None = None

    @property
    def pending_count(self) -> int:
        """Number of accepted operations not yet started."""
        return len(self._pending)

    @property
    def in_flight(self) -> str | None:
        """Id of the operation currently being processed, if any."""
        return self._in_flight

    def is_known(self, op_id: str) -> bool:
        """Return True if ``op_id`` is queued or in flight."""
        return op_id in self._results

    def submit(
        self,
        request: ItemRequest,
        *,
        preferred: GridRect | None = None,
        viewport: ViewportHint | None = None,
    ) -> asyncio.Future[OperationResult[str]]:
        """
        Accept a creation request.

        Returns
        -------
        asyncio.Future[OperationResult[str]]
            Resolves with the creation result. A duplicate of a queued or
            in-flight request receives that request's future.
        """
        op_id = operation_id(request)
        existing = self._results.get(op_id)
        if existing is not None:
            logger.debug("Duplicate creation request %s joined pending operation", op_id[:12])
            return existing

        loop = asyncio.get_running_loop()
        future: asyncio.Future[OperationResult[str]] = loop.create_future()
        self._results[op_id] = future
        self._pending.append(
            QueuedOperation(op_id=op_id, request=request, preferred=preferred, viewport=viewport)
        )
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())
        return future

    async def join(self) -> None:
        """Wait until every accepted operation has been processed."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        while self._pending:
            op = self._pending.popleft()
            future = self._results[op.op_id]
            self._in_flight = op.op_id
            try:
                result = await self._handler(op)
            except asyncio.CancelledError:
                future.cancel()
                self._cancel_pending()
                raise
            except Exception as exc:
                logger.error("Creation of %s item failed: %s", op.request.type.value, exc)
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._in_flight = None
                self._results.pop(op.op_id, None)

    def _cancel_pending(self) -> None:
        while self._pending:
            op = self._pending.popleft()
            future = self._results.pop(op.op_id, None)
            if future is not None:
                future.cancel()
