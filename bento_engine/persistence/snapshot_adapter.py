"""
Read-only PersistenceAdapter backed by a published snapshot.

The snapshot is loaded once, on first use, and served from memory. Every
mutation is accepted and ignored so that rendering code can stay identical
between an editable session and a published one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from ..data_models import BentoItem, DualLayout, ImageTransform, ProfileConfig, ProfileFields
from ..errors import SnapshotError, SnapshotIOError
from ..http import HttpTransport
from .api import PersistenceAdapter
from .snapshot_io import read_snapshot

logger = logging.getLogger(__name__)

ADAPTER_NAME = "snapshot"
NOOP_ITEM_ID = "noop"


@dataclass(slots=True)
class SnapshotAdapter(PersistenceAdapter):
    """
    Snapshot-backed, read-only adapter.

    Parameters
    ----------
    source:
        Path or URL of the snapshot file.
    transport:
        Optional HTTP transport for URL sources.

    Notes
    -----
    A snapshot that cannot be loaded is logged as a warning; the adapter then
    reports ``is_available() == False`` and serves empty reads.
    """

    source: str | Path
    transport: HttpTransport | None = None
    read_only: bool = field(default=True, init=False)
    _config: ProfileConfig | None = field(default=None, init=False, repr=False)
    _loaded: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_config(cls, config: ProfileConfig, *, source: str | Path = "<memory>") -> SnapshotAdapter:
        """Build an adapter around an already loaded snapshot."""
        adapter = cls(source=source)
        adapter._config = config
        adapter._loaded = True
        return adapter

    @property
    def config(self) -> ProfileConfig | None:
        """The loaded snapshot, or None if it could not be loaded."""
        self._ensure_loaded()
        return self._config

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        try:
            self._config = read_snapshot(self.source, transport=self.transport)
        except SnapshotError as exc:
            logger.warning("Snapshot unavailable (%s); serving empty state", exc)
            self._config = None

    def _ignore(self, operation: str) -> None:
        logger.debug("Ignoring %s on read-only snapshot %s", operation, self.source)

    def get_profile(self) -> ProfileFields | None:
        """See PersistenceAdapter.get_profile."""
        config = self.config
        return None if config is None else config.profile

    def update_profile(self, patch: Mapping[str, Any]) -> None:
        """No-op."""
        self._ignore("update_profile")

    def get_items(self) -> Sequence[BentoItem]:
        """See PersistenceAdapter.get_items."""
        config = self.config
        return [] if config is None else list(config.items)

    def add_item(self, item: BentoItem) -> BentoItem:
        """No-op; returns the item under the placeholder id ``noop``."""
        self._ignore("add_item")
        return item.with_id(NOOP_ITEM_ID)

    def update_item(
        self,
        item_id: str,
        *,
        content: Mapping[str, Any] | None = None,
        layout: DualLayout | None = None,
        image_transform: ImageTransform | None = None,
    ) -> None:
        """No-op."""
        self._ignore("update_item")

    def update_layouts(self, layouts: Mapping[str, DualLayout]) -> None:
        """No-op."""
        self._ignore("update_layouts")

    def delete_item(self, item_id: str) -> None:
        """No-op."""
        self._ignore("delete_item")

    def get_metadata(self) -> dict[str, Any]:
        """See PersistenceAdapter.get_metadata."""
        config = self.config
        return {} if config is None else config.metadata.to_dict()

    def update_metadata(self, changes: Mapping[str, Any]) -> None:
        """No-op."""
        self._ignore("update_metadata")

    def export_config(self) -> ProfileConfig:
        """
        Return the loaded snapshot unchanged.

        Raises
        ------
        SnapshotIOError
            If the snapshot could not be loaded.
        """
        config = self.config
        if config is None:
            raise SnapshotIOError(f"No snapshot loaded from {self.source}")
        return config

    def import_config(self, config: ProfileConfig) -> None:
        """No-op."""
        self._ignore("import_config")

    def is_available(self) -> bool:
        """See PersistenceAdapter.is_available."""
        return self.config is not None

    def get_adapter_name(self) -> str:
        """See PersistenceAdapter.get_adapter_name."""
        return ADAPTER_NAME
