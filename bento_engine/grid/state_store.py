"""
Authoritative in-memory grid state for one editing session.

Every mutation is optimistic: the in-memory item list changes first and the
active PersistenceAdapter is reconciled afterwards. Adapter calls run through
``asyncio.to_thread`` and are the suspension points of this module; between
them the item list is always consistent.

Failure policy
--------------
- Creation: the placeholder is removed, shifted siblings are restored and the
  result is a failure carrying the cause.
- Update and delete: the failure is logged and returned; local state is kept.
- Grid invariant violations (GridInvariantError) are programming errors and
  propagate as exceptions.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import replace
from typing import Any, Callable, Mapping, Sequence, TypeVar

from ..data_models import (
    TEMP_ID_PREFIX,
    BentoItem,
    DualLayout,
    GridRect,
    ItemPatch,
    ItemRequest,
    ItemType,
    LayoutMode,
)
from ..errors import BentoError, InvalidLayoutError, ItemNotFoundError
from ..persistence.api import PersistenceAdapter
from .queue import OperationQueue, QueuedOperation
from .results import OperationResult
from .solver import (
    DEFAULT_TUNING,
    Placement,
    SolverTuning,
    ViewportHint,
    find_free_cell,
    find_free_cell_for_columns,
    find_overlaps,
    resolve_collisions,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GridStateStore:
    """
    Holds the item list and the active breakpoint, and applies mutations.

    Parameters
    ----------
    adapter:
        Storage backend chosen for the session.
    mode:
        Initially active breakpoint.
    tuning:
        Solver heuristics.
    """

    def __init__(
        self,
        adapter: PersistenceAdapter,
        *,
        mode: LayoutMode = LayoutMode.WIDE,
        tuning: SolverTuning = DEFAULT_TUNING,
    ) -> None:
        self._adapter = adapter
        self._mode = mode
        self._tuning = tuning
        self._items: list[BentoItem] = []
        self._temp_ids = itertools.count(1)
        self._queue = OperationQueue(self._create)

    @property
    def adapter(self) -> PersistenceAdapter:
        return self._adapter

    @property
    def mode(self) -> LayoutMode:
        return self._mode

    @property
    def items(self) -> tuple[BentoItem, ...]:
        return tuple(self._items)

    @property
    def queue(self) -> OperationQueue:
        return self._queue

    def get_item(self, item_id: str) -> BentoItem | None:
        return next((item for item in self._items if item.id == item_id), None)

    def layout(self, mode: LayoutMode | None = None) -> dict[str, GridRect]:
        """Return ``id -> rectangle`` for a breakpoint (default: the active one)."""
        active = mode or self._mode
        return {item.id: item.rect(active) for item in self._items}

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)

    def _replace_item(self, item: BentoItem) -> None:
        for index, existing in enumerate(self._items):
            if existing.id == item.id:
                self._items[index] = item
                return

    def _apply_rects(self, mode: LayoutMode, rects: Mapping[str, GridRect]) -> None:
        self._items = [
            item.with_rect(mode, rects[item.id]) if item.id in rects else item for item in self._items
        ]

    def _persisted_layouts(self, ids: Sequence[str]) -> dict[str, DualLayout]:
        layouts: dict[str, DualLayout] = {}
        for item_id in ids:
            item = self.get_item(item_id)
            if item is not None and not item.is_temporary:
                layouts[item_id] = item.layout
        return layouts

    def _merge_reloaded(self, stored: Sequence[BentoItem]) -> list[BentoItem]:
        """Stored items plus local placeholders still waiting for creation."""
        placeholders = [item for item in self._items if item.is_temporary]
        return list(stored) + placeholders

    async def load(self) -> OperationResult[int]:
        """Fetch items from the adapter. On failure the current items are kept."""
        try:
            stored = await self._call(self._adapter.get_items)
        except BentoError as exc:
            logger.warning("Loading items from %s failed: %s", self._adapter.get_adapter_name(), exc)
            return OperationResult.failure(exc)
        self._items = self._merge_reloaded(stored)
        return OperationResult.success(len(stored))

    def find_existing(self, request: ItemRequest) -> BentoItem | None:
        """
        Return an item that makes ``request`` redundant, if any.

        A link with an already present URL, a repository with an already
        present owner/repo, and a second need board are redundant. Placeholders
        are skipped; an identical request still in flight is joined by the
        operation queue instead.
        """
        content = request.content
        for item in self._items:
            if item.type is not request.type or item.is_temporary:
                continue
            if request.type is ItemType.LINK:
                url = content.get("url")
                if url and item.content.get("url") == url:
                    return item
            elif request.type is ItemType.REPOSITORY:
                owner, repo = content.get("owner"), content.get("repo")
                if (
                    owner
                    and repo
                    and item.content.get("owner") == owner
                    and item.content.get("repo") == repo
                ):
                    return item
            elif request.type is ItemType.NEED_BOARD:
                return item
        return None

    async def add_item(
        self,
        request: ItemRequest,
        *,
        preferred: GridRect | None = None,
        viewport: ViewportHint | None = None,
    ) -> OperationResult[str]:
        """
        Create a new card through the operation queue.

        Parameters
        ----------
        request:
            What to create.
        preferred:
            Optional target rectangle in the active breakpoint. Used when it fits
            and is free; otherwise the solver chooses.
        viewport:
            Optional visible row range for placement.

        Returns
        -------
        OperationResult[str]
            On success the persisted item id (or the id of the existing item
            that made the request redundant).
        """
        existing = self.find_existing(request)
        if existing is not None:
            logger.info("Skipping %s creation; %s already present", request.type.value, existing.id)
            return OperationResult.success(existing.id)
        future = self._queue.submit(request, preferred=preferred, viewport=viewport)
        return await asyncio.shield(future)

    async def drain(self) -> None:
        """Wait until all queued creations have finished."""
        await self._queue.join()

    def _place(self, op: QueuedOperation, w: int, h: int) -> Placement:
        columns = self._mode.columns
        current = self.layout()
        preferred = op.preferred
        if preferred is not None:
            candidate = replace(preferred, w=min(w, columns), h=h)
            if candidate.fits(columns) and not any(candidate.overlaps(r) for r in current.values()):
                return Placement(position=candidate)
        return find_free_cell(current, w, h, columns, op.viewport, self._tuning)

    async def _create(self, op: QueuedOperation) -> OperationResult[str]:
        existing = self.find_existing(op.request)
        if existing is not None:
            return OperationResult.success(existing.id)

        request = op.request
        w, h = request.resolved_size()
        mode = self._mode
        placement = self._place(op, w, h)
        other_rect = find_free_cell_for_columns(self.layout(mode.other), w, h, mode.other.columns)
        try:
            placeholder = BentoItem(
                id=f"{TEMP_ID_PREFIX}{next(self._temp_ids)}",
                type=request.type,
                content=dict(request.content),
                layout=DualLayout(wide=placement.position, narrow=other_rect)
                if mode is LayoutMode.WIDE
                else DualLayout(wide=other_rect, narrow=placement.position),
                image_transform=request.image_transform,
            )
        except ValueError as exc:
            return OperationResult.failure(exc)

        before = self.layout(mode)
        previous = {key: before[key] for key in placement.shifted}
        self._apply_rects(mode, placement.shifted)
        self._items.append(placeholder)
        logger.debug("Placed %s at %s (%s shifted)", placeholder.id, placement.position, len(previous))

        try:
            stored = await self._call(self._adapter.add_item, placeholder)
        except BentoError as exc:
            self._rollback_creation(placeholder.id, mode, placement.shifted, previous)
            logger.warning("Creating %s item failed: %s", request.type.value, exc)
            return OperationResult.failure(exc)

        siblings = self._persisted_layouts(list(placement.shifted))
        if siblings:
            try:
                await self._call(self._adapter.update_layouts, siblings)
            except BentoError as exc:
                self._rollback_creation(placeholder.id, mode, placement.shifted, previous)
                await self._discard_stored(stored.id)
                logger.warning("Persisting shifted items for new %s failed: %s", request.type.value, exc)
                return OperationResult.failure(exc)

        current = self.get_item(placeholder.id)
        if current is None:
            # Deleted locally while the write was in flight.
            await self._discard_stored(stored.id)
            return OperationResult.success(stored.id)

        final = current.with_id(stored.id)
        self._replace_item_by_id(placeholder.id, final)
        if final.content != stored.content or final.layout != stored.layout:
            try:
                await self._call(
                    self._adapter.update_item,
                    stored.id,
                    content=final.content,
                    layout=final.layout,
                    image_transform=final.image_transform,
                )
            except BentoError as exc:
                logger.warning("Syncing local edits of %s failed: %s", stored.id, exc)
        return OperationResult.success(stored.id)

    def _replace_item_by_id(self, old_id: str, item: BentoItem) -> None:
        self._items = [item if existing.id == old_id else existing for existing in self._items]

    def _rollback_creation(
        self,
        placeholder_id: str,
        mode: LayoutMode,
        shifted: Mapping[str, GridRect],
        previous: Mapping[str, GridRect],
    ) -> None:
        self._items = [item for item in self._items if item.id != placeholder_id]
        restore = {
            key: rect
            for key, rect in previous.items()
            if (item := self.get_item(key)) is not None and item.rect(mode) == shifted[key]
        }
        self._apply_rects(mode, restore)

    async def _discard_stored(self, item_id: str) -> None:
        try:
            await self._call(self._adapter.delete_item, item_id)
        except BentoError as exc:
            logger.warning("Could not remove orphaned item %s: %s", item_id, exc)

    async def change_layout_mode(self, mode: LayoutMode) -> OperationResult[LayoutMode]:
        """
        Switch the active breakpoint.

        Items are reloaded from the adapter and shown with their stored
        placement for ``mode``; nothing is recomputed. When the reload fails the
        current items are kept and the failure is returned.
        """
        if mode is self._mode:
            return OperationResult.success(mode)
        self._mode = mode
        try:
            stored = await self._call(self._adapter.get_items)
        except BentoError as exc:
            logger.warning("Reload after switching to %s failed: %s", mode.value, exc)
            return OperationResult.failure(exc)
        self._items = self._merge_reloaded(stored)
        return OperationResult.success(mode)

    async def commit_layout(
        self, positions: Mapping[str, GridRect], mode: LayoutMode
    ) -> OperationResult[list[str]]:
        """
        Accept a settled layout after a drag or resize in the UI.

        Parameters
        ----------
        positions:
            ``id -> rectangle`` for some or all items at ``mode``.
        mode:
            Breakpoint the positions belong to.

        Returns
        -------
        OperationResult[list[str]]
            Ids whose placement changed and was persisted, in one batched write.

        Raises
        ------
        InvalidLayoutError
            If a rectangle overflows the columns or the settled layout overlaps.
        """
        known = self.layout(mode)
        unknown = sorted(set(positions) - set(known))
        if unknown:
            logger.debug("Ignoring layout entries for unknown ids: %s", unknown)
        for item_id, rect in positions.items():
            if item_id in known and not rect.fits(mode.columns):
                raise InvalidLayoutError(
                    f"Item {item_id} at x={rect.x} w={rect.w} overflows {mode.columns} columns"
                )

        changed = {
            item_id: rect
            for item_id, rect in positions.items()
            if item_id in known and known[item_id] != rect
        }
        settled = {**known, **changed}
        overlaps = find_overlaps(settled)
        if overlaps:
            raise InvalidLayoutError(f"Committed layout overlaps: {overlaps}")

        self._apply_rects(mode, changed)
        persist = self._persisted_layouts(sorted(changed))
        if not persist:
            return OperationResult.success([])
        try:
            await self._call(self._adapter.update_layouts, persist)
        except BentoError as exc:
            logger.warning("Persisting layout of %s item(s) failed: %s", len(persist), exc)
            return OperationResult.failure(exc)
        return OperationResult.success(sorted(persist))

    async def update_item(self, item_id: str, patch: ItemPatch) -> OperationResult[str]:
        """
        Apply a content, size, position or crop change to one item.

        A size or position change pushes overlapping items down in the active
        breakpoint. A size change also re-places the item in the other
        breakpoint; both placements are persisted in the same update.
        Temporary items are updated locally only.
        """
        item = self.get_item(item_id)
        if item is None:
            return OperationResult.failure(ItemNotFoundError(f"Unknown item id: {item_id}"))

        mode = self._mode
        updated = item
        try:
            if patch.content is not None:
                updated = updated.with_content(patch.content)
            if patch.image_transform is not None:
                updated = replace(updated, image_transform=patch.image_transform)
        except ValueError as exc:
            return OperationResult.failure(exc)

        moved: dict[str, GridRect] = {}
        geometry_changed = patch.changes_size or patch.changes_position
        if geometry_changed:
            rect = patch.apply_geometry(item.rect(mode), mode.columns)
            updated = updated.with_rect(mode, rect)
            moved = resolve_collisions(
                item_id, {**self.layout(mode), item_id: rect}, mode.columns, self._tuning
            )
            if patch.changes_size:
                others = {k: r for k, r in self.layout(mode.other).items() if k != item_id}
                updated = updated.with_rect(
                    mode.other,
                    find_free_cell_for_columns(others, rect.w, rect.h, mode.other.columns),
                )

        self._replace_item(updated)
        self._apply_rects(mode, moved)

        try:
            if not updated.is_temporary:
                await self._call(
                    self._adapter.update_item,
                    item_id,
                    content=patch.content,
                    layout=updated.layout if geometry_changed else None,
                    image_transform=patch.image_transform,
                )
            siblings = self._persisted_layouts(sorted(moved))
            if siblings:
                await self._call(self._adapter.update_layouts, siblings)
        except BentoError as exc:
            logger.warning("Persisting update of %s failed: %s", item_id, exc)
            return OperationResult.failure(exc)
        return OperationResult.success(item_id)

    async def delete_item(self, item_id: str) -> OperationResult[str]:
        """Remove an item locally, then from storage. Failures are not rolled back."""
        item = self.get_item(item_id)
        if item is None:
            return OperationResult.failure(ItemNotFoundError(f"Unknown item id: {item_id}"))
        self._items = [existing for existing in self._items if existing.id != item_id]
        if item.is_temporary:
            return OperationResult.success(item_id)
        try:
            await self._call(self._adapter.delete_item, item_id)
        except BentoError as exc:
            logger.warning("Deleting %s failed: %s", item_id, exc)
            return OperationResult.failure(exc)
        return OperationResult.success(item_id)
