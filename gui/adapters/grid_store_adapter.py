"""Qt adapter for the engine GridStateStore.

The engine owns grid state and persistence. The GUI talks to this adapter via
signals/slots so that placement, collision resolution and storage writes never
block the UI thread.

Threading model
--------------
- A single worker QObject lives on a dedicated QThread.
- The worker owns the session adapter, the GridStateStore and a private asyncio
  event loop; each slot runs one store coroutine to completion on that loop.
- The GUI communicates with the worker via queued Qt signals, so requests are
  handled one at a time in arrival order.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Mapping

from PySide6.QtCore import QObject, Qt, QThread, Signal, Slot

from bento_engine.data_models import GridRect, ItemPatch, ItemRequest, ItemType, LayoutMode
from bento_engine.errors import BentoError
from bento_engine.grid.results import OperationResult
from bento_engine.grid.solver import ViewportHint
from bento_engine.grid.state_store import GridStateStore
from bento_engine.persistence.factory import SessionMode, open_session_adapter


class GridStoreWorker(QObject):
    """Worker that owns the GridStateStore and runs in a background thread."""

    items_changed = Signal(object)  # tuple[BentoItem, ...]
    operation_finished = Signal(str, object)  # operation name, OperationResult
    mode_changed = Signal(str)  # LayoutMode value
    error = Signal(str, str)  # operation name, message

    def __init__(
        self,
        session_mode: SessionMode,
        site_prefix: str,
        data_root: Path | None,
        snapshot_source: str | None = None,
        layout_mode: LayoutMode = LayoutMode.WIDE,
    ) -> None:
        super().__init__()
        session = open_session_adapter(
            session_mode,
            site_prefix=site_prefix,
            data_root=data_root,
            snapshot_source=snapshot_source,
        )
        self._store = GridStateStore(session.adapter, mode=layout_mode)
        self._loop = asyncio.new_event_loop()

    @property
    def store(self) -> GridStateStore:
        return self._store

    def _run(self, name: str, coro: Awaitable[OperationResult[Any]]) -> None:
        try:
            result = self._loop.run_until_complete(coro)
            self._loop.run_until_complete(self._store.drain())
        except (BentoError, ValueError) as e:
            self.error.emit(name, str(e))
            return
        if not result.ok:
            self.error.emit(name, result.message)
        self.operation_finished.emit(name, result)
        self.items_changed.emit(self._store.items)

    @Slot()
    def load(self) -> None:
        """Load items from the session adapter."""
        self._run("load", self._store.load())

    @Slot(object)
    def add_item(self, payload: object) -> None:
        """Create a card from a mapping with type, content and optional w/h/viewport."""
        try:
            assert isinstance(payload, Mapping)
            request = ItemRequest(
                type=ItemType(payload["type"]),
                content=dict(payload.get("content") or {}),
                w=payload.get("w"),
                h=payload.get("h"),
            )
            viewport = payload.get("viewport")
            hint = (
                ViewportHint.from_pixels(viewport["scroll_px"], viewport["height_px"])
                if isinstance(viewport, Mapping)
                else None
            )
        except (AssertionError, KeyError, ValueError) as e:
            self.error.emit("add", f"Invalid add request: {e}")
            return
        self._run("add", self._store.add_item(request, viewport=hint))

    @Slot(str, object)
    def on_update(self, item_id: str, patch: object) -> None:
        """Apply a patch mapping to one card."""
        try:
            assert isinstance(patch, Mapping)
            item_patch = ItemPatch.from_dict(patch)
        except (AssertionError, ValueError) as e:
            self.error.emit("update", f"Invalid patch: {e}")
            return
        self._run("update", self._store.update_item(item_id, item_patch))

    @Slot(str)
    def on_delete(self, item_id: str) -> None:
        """Delete one card."""
        self._run("delete", self._store.delete_item(item_id))

    @Slot(object, str)
    def on_layout_commit(self, positions: object, mode: str) -> None:
        """Persist a settled layout: mapping of id to {x, y, w, h}."""
        try:
            assert isinstance(positions, Mapping)
            rects = {str(k): GridRect.from_dict(v) for k, v in positions.items()}
            layout_mode = LayoutMode(mode)
        except (AssertionError, ValueError) as e:
            self.error.emit("layout", f"Invalid layout: {e}")
            return
        self._run("layout", self._store.commit_layout(rects, layout_mode))

    @Slot(str)
    def on_layout_mode_change(self, mode: str) -> None:
        """Switch breakpoint and reload stored placements."""
        try:
            layout_mode = LayoutMode(mode)
        except ValueError as e:
            self.error.emit("mode", str(e))
            return
        self._run("mode", self._store.change_layout_mode(layout_mode))
        self.mode_changed.emit(self._store.mode.value)

    def close(self) -> None:
        """Close the private event loop. Call only after the thread has stopped."""
        self._loop.close()


class GridStoreAdapter(QObject):
    """Qt adapter that marshals GridStateStore calls onto a worker thread."""

    # Requests (GUI emits these; wired as queued connections to worker slots)
    request_load = Signal()
    request_add = Signal(object)
    request_update = Signal(str, object)
    request_delete = Signal(str)
    request_layout_commit = Signal(object, str)
    request_layout_mode_change = Signal(str)

    # Results (worker emits; adapter forwards)
    items_changed = Signal(object)
    operation_finished = Signal(str, object)
    mode_changed = Signal(str)
    error = Signal(str, str)

    def __init__(
        self,
        session_mode: SessionMode,
        site_prefix: str,
        data_root: Path | None = None,
        snapshot_source: str | None = None,
    ) -> None:
        super().__init__()

        self._thread = QThread()
        self._worker = GridStoreWorker(
            session_mode=session_mode,
            site_prefix=site_prefix,
            data_root=data_root,
            snapshot_source=snapshot_source,
        )
        self._worker.moveToThread(self._thread)

        # Queue requests onto worker thread.
        self.request_load.connect(self._worker.load, type=Qt.ConnectionType.QueuedConnection)
        self.request_add.connect(self._worker.add_item, type=Qt.ConnectionType.QueuedConnection)
        self.request_update.connect(
            self._worker.on_update, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_delete.connect(
            self._worker.on_delete, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_layout_commit.connect(
            self._worker.on_layout_commit, type=Qt.ConnectionType.QueuedConnection
        )
        self.request_layout_mode_change.connect(
            self._worker.on_layout_mode_change, type=Qt.ConnectionType.QueuedConnection
        )

        # Forward results to GUI.
        self._worker.items_changed.connect(self.items_changed)
        self._worker.operation_finished.connect(self.operation_finished)
        self._worker.mode_changed.connect(self.mode_changed)
        self._worker.error.connect(self.error)

        self._thread.start()

    def shutdown(self) -> None:
        """Stop the worker thread cleanly."""
        self._thread.quit()
        self._thread.wait()
        self._worker.close()
