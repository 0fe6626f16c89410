"""
SQLite implementation of the live PersistenceAdapter.

This module owns the on-disk format of an editable profile. State is kept as
three JSON blobs under namespaced keys::

    <site-prefix>:profile:profile
    <site-prefix>:profile:bento-items
    <site-prefix>:profile:metadata

Every mutation is one ``BEGIN IMMEDIATE`` transaction that reads the whole
collection, changes it and writes it back. Two writers can therefore never
interleave inside a read-modify-write cycle.

Threading
---------
sqlite3 connections are opened per call and never shared across threads, so an
adapter instance may be used from ``asyncio.to_thread`` workers.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from ..clock import Clock, SystemClock
from ..data_models import (
    EXPORT_VERSION,
    BentoItem,
    DualLayout,
    ImageTransform,
    ProfileConfig,
    ProfileFields,
    SnapshotMetadata,
    datetime_from_iso_utc,
    datetime_to_iso_utc,
)
from ..errors import ItemNotFoundError, PersistenceError, StoreSchemaError
from ..paths import resolve_site_paths, validate_site_prefix
from .api import PersistenceAdapter
from .schema import CURRENT_SCHEMA_VERSION, SCHEMA_V1
from .snapshot_io import settle_narrow_layouts

logger = logging.getLogger(__name__)

ADAPTER_NAME = "sqlite"


def _namespace(site_prefix: str) -> str:
    return f"{site_prefix}:profile"


def _read_blob(conn: sqlite3.Connection, key: str) -> Any:
    row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    try:
        return json.loads(str(row["value"]))
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"Stored value under {key!r} is not valid JSON") from exc


def _write_blob(conn: sqlite3.Connection, key: str, value: Any, stamp: str) -> None:
    conn.execute(
        "INSERT INTO kv(key, value, updated_at) VALUES(?, ?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
        (key, json.dumps(value, sort_keys=True), stamp),
    )


def _with_layout(item: BentoItem, layout: DualLayout) -> BentoItem:
    return replace(item, layout=layout)


def _with_transform(item: BentoItem, transform: ImageTransform) -> BentoItem:
    return replace(item, image_transform=transform)


def _schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT value FROM store_meta WHERE key = 'schema_version'").fetchone()
    return int(row["value"]) if row is not None else 1


def _ensure_schema(conn: sqlite3.Connection) -> None:
    """
    Bring the DB schema up to CURRENT_SCHEMA_VERSION.

    Notes
    -----
    Version 1 stored items with a single (wide) layout and had no per-row
    timestamps. Version 2 adds ``kv.updated_at`` and rewrites every stored item
    list so each item carries both breakpoint placements.
    """
    version = _schema_version(conn)
    if version > CURRENT_SCHEMA_VERSION:
        raise StoreSchemaError(
            f"Store schema version {version} is newer than supported ({CURRENT_SCHEMA_VERSION})"
        )

    cols = conn.execute("PRAGMA table_info(kv)").fetchall()
    col_names = {str(r["name"]) for r in cols}
    if "updated_at" not in col_names:
        conn.execute("ALTER TABLE kv ADD COLUMN updated_at TEXT NULL")

    if version < 2:
        rows = conn.execute("SELECT key, value FROM kv WHERE key LIKE '%:bento-items'").fetchall()
        for row in rows:
            raw = json.loads(str(row["value"]))
            items = settle_narrow_layouts([BentoItem.from_dict(item) for item in raw or []])
            upgraded = [item.to_dict() for item in items]
            conn.execute(
                "UPDATE kv SET value = ? WHERE key = ?",
                (json.dumps(upgraded, sort_keys=True), row["key"]),
            )
        if rows:
            logger.info("Migrated %s item collection(s) to schema 2", len(rows))

    conn.execute(
        "INSERT INTO store_meta(key, value) VALUES('schema_version', ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (str(CURRENT_SCHEMA_VERSION),),
    )


@dataclass(frozen=True, slots=True)
class SqliteLiveAdapter(PersistenceAdapter):
    """
    SQLite-backed live store.

    Parameters
    ----------
    db_path:
        Path to the SQLite database. Created if absent.
    site_prefix:
        Namespace of the stored keys.
    clock:
        Time source for ``lastModified`` stamps and issued ids.
    """

    db_path: Path
    site_prefix: str
    clock: Clock = field(default_factory=SystemClock)
    read_only: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        validate_site_prefix(self.site_prefix)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(SCHEMA_V1)
            conn.execute("BEGIN IMMEDIATE")
            try:
                _ensure_schema(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open live store {self.db_path}: {exc}") from exc
        finally:
            conn.close()

    @property
    def profile_key(self) -> str:
        return f"{_namespace(self.site_prefix)}:profile"

    @property
    def items_key(self) -> str:
        return f"{_namespace(self.site_prefix)}:bento-items"

    @property
    def metadata_key(self) -> str:
        return f"{_namespace(self.site_prefix)}:metadata"

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            raise PersistenceError(f"Live store write failed: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"Live store read failed: {exc}") from exc
        finally:
            conn.close()

    def _now_iso(self) -> str:
        return datetime_to_iso_utc(self.clock.now())

    def _new_id(self) -> str:
        millis = int(self.clock.now().timestamp() * 1000)
        return f"{millis}-{uuid.uuid4().hex[:9]}"

    def _load_items(self, conn: sqlite3.Connection) -> list[BentoItem]:
        raw = _read_blob(conn, self.items_key) or []
        try:
            return [BentoItem.from_dict(item) for item in raw]
        except (ValueError, TypeError) as exc:
            raise PersistenceError(f"Stored items are malformed: {exc}") from exc

    def _save_items(self, conn: sqlite3.Connection, items: Sequence[BentoItem], stamp: str) -> None:
        _write_blob(conn, self.items_key, [item.to_dict() for item in items], stamp)

    def _touch(self, conn: sqlite3.Connection, stamp: str) -> None:
        metadata = _read_blob(conn, self.metadata_key) or {}
        metadata.setdefault("version", EXPORT_VERSION)
        metadata["lastModified"] = stamp
        _write_blob(conn, self.metadata_key, metadata, stamp)

    def get_profile(self) -> ProfileFields | None:
        """See PersistenceAdapter.get_profile."""
        with self._reader() as conn:
            raw = _read_blob(conn, self.profile_key)
        return None if raw is None else ProfileFields.from_dict(raw)

    def update_profile(self, patch: Mapping[str, Any]) -> None:
        """See PersistenceAdapter.update_profile."""
        stamp = self._now_iso()
        with self._transaction() as conn:
            raw = _read_blob(conn, self.profile_key)
            current = ProfileFields() if raw is None else ProfileFields.from_dict(raw)
            _write_blob(conn, self.profile_key, current.merged(patch).to_dict(), stamp)
            self._touch(conn, stamp)

    def get_items(self) -> Sequence[BentoItem]:
        """See PersistenceAdapter.get_items."""
        with self._reader() as conn:
            return self._load_items(conn)

    def add_item(self, item: BentoItem) -> BentoItem:
        """See PersistenceAdapter.add_item."""
        stored = item.with_id(self._new_id())
        stamp = self._now_iso()
        with self._transaction() as conn:
            items = self._load_items(conn)
            items.append(stored)
            self._save_items(conn, items, stamp)
            self._touch(conn, stamp)
        logger.debug("Stored %s item %s", stored.type.value, stored.id)
        return stored

    def update_item(
        self,
        item_id: str,
        *,
        content: Mapping[str, Any] | None = None,
        layout: DualLayout | None = None,
        image_transform: ImageTransform | None = None,
    ) -> None:
        """See PersistenceAdapter.update_item."""
        stamp = self._now_iso()
        with self._transaction() as conn:
            items = self._load_items(conn)
            for index, item in enumerate(items):
                if item.id != item_id:
                    continue
                if content is not None:
                    item = item.with_content(content)
                if layout is not None:
                    item = _with_layout(item, layout)
                if image_transform is not None:
                    item = _with_transform(item, image_transform)
                items[index] = item
                break
            else:
                raise ItemNotFoundError(f"Unknown item id: {item_id}")
            self._save_items(conn, items, stamp)
            self._touch(conn, stamp)

    def update_layouts(self, layouts: Mapping[str, DualLayout]) -> None:
        """See PersistenceAdapter.update_layouts."""
        if not layouts:
            return
        stamp = self._now_iso()
        with self._transaction() as conn:
            items = self._load_items(conn)
            known = {item.id for item in items}
            missing = sorted(set(layouts) - known)
            if missing:
                logger.debug("Skipping layout updates for unknown ids: %s", missing)
            items = [
                _with_layout(item, layouts[item.id]) if item.id in layouts else item
                for item in items
            ]
            self._save_items(conn, items, stamp)
            self._touch(conn, stamp)

    def delete_item(self, item_id: str) -> None:
        """See PersistenceAdapter.delete_item."""
        stamp = self._now_iso()
        with self._transaction() as conn:
            items = self._load_items(conn)
            remaining = [item for item in items if item.id != item_id]
            if len(remaining) == len(items):
                logger.debug("Delete of unknown item id %s ignored", item_id)
                return
            self._save_items(conn, remaining, stamp)
            self._touch(conn, stamp)

    def get_metadata(self) -> dict[str, Any]:
        """See PersistenceAdapter.get_metadata."""
        with self._reader() as conn:
            raw = _read_blob(conn, self.metadata_key)
        return dict(raw or {})

    def update_metadata(self, changes: Mapping[str, Any]) -> None:
        """See PersistenceAdapter.update_metadata."""
        stamp = self._now_iso()
        with self._transaction() as conn:
            metadata = _read_blob(conn, self.metadata_key) or {}
            metadata.update(changes)
            _write_blob(conn, self.metadata_key, metadata, stamp)

    def export_config(self) -> ProfileConfig:
        """
        See PersistenceAdapter.export_config.

        The exported metadata is stamped with the current time.
        """
        with self._reader() as conn:
            raw_profile = _read_blob(conn, self.profile_key)
            items = self._load_items(conn)
        return ProfileConfig(
            profile=ProfileFields() if raw_profile is None else ProfileFields.from_dict(raw_profile),
            items=tuple(items),
            metadata=SnapshotMetadata(version=EXPORT_VERSION, last_modified=self.clock.now()),
        )

    def import_config(self, config: ProfileConfig) -> None:
        """
        See PersistenceAdapter.import_config.

        The snapshot's own metadata (including ``lastModified``) is stored
        unchanged so later staleness checks compare against it. Overlapping
        narrow placements are settled before they are written.
        """
        stamp = self._now_iso()
        items = settle_narrow_layouts(config.items)
        with self._transaction() as conn:
            existing = _read_blob(conn, self.metadata_key) or {}
            existing.update(config.metadata.to_dict())
            _write_blob(conn, self.profile_key, config.profile.to_dict(), stamp)
            self._save_items(conn, items, stamp)
            _write_blob(conn, self.metadata_key, existing, stamp)
        logger.info("Imported %s item(s) into %s", len(items), self.items_key)

    def last_modified(self) -> datetime | None:
        """Return the stored ``lastModified`` as a datetime, or None if never written."""
        value = self.get_metadata().get("lastModified")
        return None if not value else datetime_from_iso_utc(str(value))

    def is_available(self) -> bool:
        """See PersistenceAdapter.is_available."""
        try:
            with self._reader() as conn:
                conn.execute("SELECT 1").fetchone()
        except PersistenceError:
            return False
        return True

    def get_adapter_name(self) -> str:
        """See PersistenceAdapter.get_adapter_name."""
        return ADAPTER_NAME


def open_live_adapter(
    site_prefix: str,
    data_root: Path | None = None,
    *,
    clock: Clock | None = None,
) -> SqliteLiveAdapter:
    """
    Convenience constructor resolving the store path for a site prefix.

    Parameters
    ----------
    site_prefix:
        Namespace of the site.
    data_root:
        Optional override for the data root.
    clock:
        Optional time source (defaults to the system clock).
    """
    paths = resolve_site_paths(site_prefix=site_prefix, data_root=data_root)
    return SqliteLiveAdapter(
        db_path=paths.store_path, site_prefix=site_prefix, clock=clock or SystemClock()
    )
