"""
PersistenceAdapter public API.

This module defines the storage surface the grid state store, the session
factory and the publish pipeline are allowed to call. Callers never depend on
SQLite or on the snapshot file format; they speak only in typed domain objects.

Notes
-----
- Adapter methods are synchronous. The grid state store runs them off the event
  loop (``asyncio.to_thread``), which makes every call a suspension point.
- A read-only adapter accepts every mutation and silently ignores it. Callers
  that must not lose writes (the publish pipeline) check ``read_only`` first.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from ..data_models import BentoItem, DualLayout, ImageTransform, ProfileConfig, ProfileFields


class PersistenceAdapter(Protocol):
    """
    Storage backend for one profile.

    Attributes
    ----------
    read_only:
        True when mutations are accepted but have no effect.
    """

    read_only: bool

    def get_profile(self) -> ProfileFields | None:
        """
        Return the stored profile header.

        Returns
        -------
        ProfileFields | None
            The profile, or None if nothing has been stored yet.
        """
        raise NotImplementedError

    def update_profile(self, patch: Mapping[str, Any]) -> None:
        """
        Merge ``patch`` into the stored profile.

        Parameters
        ----------
        patch:
            Field values keyed by attribute name or snapshot (camelCase) name.

        Raises
        ------
        ValueError
            If a key names no profile field.
        PersistenceError
            If the write fails.
        """
        raise NotImplementedError

    def get_items(self) -> Sequence[BentoItem]:
        """Return all stored items in stored order."""
        raise NotImplementedError

    def add_item(self, item: BentoItem) -> BentoItem:
        """
        Store a new item.

        Parameters
        ----------
        item:
            The item to store. Its ``id`` is ignored; the adapter issues one.

        Returns
        -------
        BentoItem
            The stored item carrying its adapter-issued id.
        """
        raise NotImplementedError

    def update_item(
        self,
        item_id: str,
        *,
        content: Mapping[str, Any] | None = None,
        layout: DualLayout | None = None,
        image_transform: ImageTransform | None = None,
    ) -> None:
        """
        Update one stored item.

        Parameters
        ----------
        item_id:
            Id of the item to update.
        content:
            Shallow-merged into the stored content when given.
        layout:
            Replaces both breakpoint placements when given.
        image_transform:
            Replaces the crop state when given.

        Raises
        ------
        ItemNotFoundError
            If ``item_id`` is not stored.
        """
        raise NotImplementedError

    def update_layouts(self, layouts: Mapping[str, DualLayout]) -> None:
        """
        Replace the placements of several items in one write.

        Ids that are no longer stored are skipped.
        """
        raise NotImplementedError

    def delete_item(self, item_id: str) -> None:
        """Remove an item. Removing an id that is not stored is not an error."""
        raise NotImplementedError

    def get_metadata(self) -> dict[str, Any]:
        """Return the stored metadata record (``version``, ``lastModified``, ...)."""
        raise NotImplementedError

    def update_metadata(self, changes: Mapping[str, Any]) -> None:
        """Merge ``changes`` into the stored metadata record."""
        raise NotImplementedError

    def export_config(self) -> ProfileConfig:
        """
        Return a complete snapshot of the stored state.

        Raises
        ------
        SnapshotIOError
            If the adapter has no state to export.
        """
        raise NotImplementedError

    def import_config(self, config: ProfileConfig) -> None:
        """Replace the stored profile, items and metadata with ``config``."""
        raise NotImplementedError

    def is_available(self) -> bool:
        """Return True if the adapter can currently serve reads."""
        raise NotImplementedError

    def get_adapter_name(self) -> str:
        """Return a short name for diagnostics."""
        raise NotImplementedError
