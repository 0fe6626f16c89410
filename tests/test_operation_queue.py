from __future__ import annotations

import asyncio

import pytest

from bento_engine.data_models import ItemRequest, ItemType
from bento_engine.grid.queue import OperationQueue, QueuedOperation, operation_id
from bento_engine.grid.results import OperationResult


def test_operation_id_uses_type_and_key_fields() -> None:
    a = ItemRequest(ItemType.LINK, {"url": "https://example.org", "title": "x", "note": "ignored"})
    b = ItemRequest(ItemType.LINK, {"title": "x", "url": "https://example.org", "note": "different"})
    c = ItemRequest(ItemType.TEXT, {"url": "https://example.org", "title": "x"})
    assert operation_id(a) == operation_id(b)
    assert operation_id(a) != operation_id(c)


def test_duplicate_requests_share_one_operation() -> None:
    calls: list[QueuedOperation] = []

    async def handler(op: QueuedOperation) -> OperationResult[str]:
        calls.append(op)
        await asyncio.sleep(0)
        return OperationResult.success(f"id-{len(calls)}")

    async def scenario() -> tuple[OperationResult[str], OperationResult[str]]:
        queue = OperationQueue(handler)
        request = ItemRequest(ItemType.LINK, {"url": "https://example.org"})
        first = queue.submit(request)
        second = queue.submit(request)
        assert first is second
        assert queue.pending_count == 1
        results = await asyncio.gather(first, second)
        await queue.join()
        assert not queue.is_known(operation_id(request))
        return results[0], results[1]

    first, second = asyncio.run(scenario())
    assert len(calls) == 1
    assert first.value == second.value == "id-1"


def test_operations_run_one_at_a_time_in_order() -> None:
    order: list[str] = []
    active = 0

    async def handler(op: QueuedOperation) -> OperationResult[str]:
        nonlocal active
        active += 1
        assert active == 1
        order.append(op.request.content["text"])
        await asyncio.sleep(0)
        active -= 1
        return OperationResult.success(op.request.content["text"])

    async def scenario() -> None:
        queue = OperationQueue(handler)
        futures = [queue.submit(ItemRequest(ItemType.TEXT, {"text": t})) for t in ("a", "b", "c")]
        await queue.join()
        assert [f.result().value for f in futures] == ["a", "b", "c"]

    asyncio.run(scenario())
    assert order == ["a", "b", "c"]


def test_handler_error_reaches_caller_and_queue_continues() -> None:
    async def handler(op: QueuedOperation) -> OperationResult[str]:
        if op.request.content["text"] == "bad":
            raise RuntimeError("handler exploded")
        return OperationResult.success("fine")

    async def scenario() -> OperationResult[str]:
        queue = OperationQueue(handler)
        bad = queue.submit(ItemRequest(ItemType.TEXT, {"text": "bad"}))
        good = queue.submit(ItemRequest(ItemType.TEXT, {"text": "good"}))
        with pytest.raises(RuntimeError, match="exploded"):
            await bad
        return await good

    assert asyncio.run(scenario()).value == "fine"
