from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import pytest

from bento_engine.clock import FixedClock, ManualClock
from bento_engine.data_models import (
    BentoItem,
    DualLayout,
    GridRect,
    ImageTransform,
    ItemType,
)
from bento_engine.errors import ItemNotFoundError, StoreSchemaError
from bento_engine.grid.solver import find_overlaps
from bento_engine.persistence.schema import CURRENT_SCHEMA_VERSION, SCHEMA_V1
from bento_engine.persistence.sqlite_store import SqliteLiveAdapter, open_live_adapter

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _item(item_id: str, x: int = 0, y: int = 0, item_type: ItemType = ItemType.TEXT) -> BentoItem:
    return BentoItem(
        id=item_id,
        type=item_type,
        content={"text": item_id},
        layout=DualLayout.from_wide(GridRect(x=x, y=y, w=1, h=2)),
    )


def test_add_item_issues_stable_id_and_stamps_metadata(tmp_path: Path) -> None:
    adapter = SqliteLiveAdapter(db_path=tmp_path / "s.sqlite", site_prefix="site", clock=FixedClock(T0))

    stored = adapter.add_item(_item("tmp-1"))

    assert not stored.is_temporary
    assert stored.id.startswith(f"{int(T0.timestamp() * 1000)}-")
    assert adapter.get_items() == [stored]
    assert adapter.get_metadata() == {"version": "1.0.0", "lastModified": "2025-03-01T12:00:00.000Z"}
    assert adapter.last_modified() == T0


def test_update_item_merges_content_and_replaces_layout(tmp_path: Path) -> None:
    adapter = SqliteLiveAdapter(db_path=tmp_path / "s.sqlite", site_prefix="site")
    stored = adapter.add_item(
        BentoItem(
            id="tmp-1",
            type=ItemType.LINK,
            content={"url": "https://example.org", "title": "old"},
            layout=DualLayout.from_wide(GridRect(0, 0, 2, 2)),
        )
    )
    layout = DualLayout(wide=GridRect(2, 0, 2, 2), narrow=GridRect(0, 2, 2, 2))

    adapter.update_item(stored.id, content={"title": "new"}, layout=layout, image_transform=ImageTransform(2.0))

    (item,) = adapter.get_items()
    assert item.content == {"url": "https://example.org", "title": "new"}
    assert item.layout == layout
    assert item.image_transform == ImageTransform(scale=2.0)

    with pytest.raises(ItemNotFoundError):
        adapter.update_item("missing", content={"title": "x"})


def test_update_layouts_skips_unknown_and_delete_is_idempotent(tmp_path: Path) -> None:
    adapter = SqliteLiveAdapter(db_path=tmp_path / "s.sqlite", site_prefix="site")
    a = adapter.add_item(_item("tmp-1"))
    b = adapter.add_item(_item("tmp-2", x=1))
    moved = DualLayout.from_wide(GridRect(1, 2, 1, 2))

    adapter.update_layouts({b.id: moved, "ghost": moved})
    assert [i.layout for i in adapter.get_items()] == [a.layout, moved]

    adapter.delete_item(a.id)
    adapter.delete_item(a.id)
    assert [i.id for i in adapter.get_items()] == [b.id]


def test_metadata_updates_do_not_bump_last_modified(tmp_path: Path) -> None:
    clock = ManualClock(T0)
    adapter = SqliteLiveAdapter(db_path=tmp_path / "s.sqlite", site_prefix="site", clock=clock)
    adapter.add_item(_item("tmp-1"))

    clock.advance(3600)
    adapter.update_metadata({"lastPublished": "2025-03-01T13:00:00.000Z"})
    assert adapter.last_modified() == T0

    adapter.update_profile({"name": "Ada"})
    assert adapter.last_modified() == clock.now()


def test_sites_are_isolated_and_export_imports_into_another(tmp_path: Path) -> None:
    db = tmp_path / "s.sqlite"
    source = SqliteLiveAdapter(db_path=db, site_prefix="alpha", clock=FixedClock(T0))
    target = SqliteLiveAdapter(db_path=db, site_prefix="beta")
    source.update_profile({"name": "Ada", "socialLinks": {"github": "ada"}})
    source.add_item(_item("tmp-1"))

    assert target.get_items() == []
    assert target.get_profile() is None

    config = source.export_config()
    assert config.metadata.version == "1.0.0"
    target.import_config(config)

    assert target.get_items() == source.get_items()
    profile = target.get_profile()
    assert profile is not None and profile.name == "Ada"
    assert target.last_modified() == T0


def test_open_live_adapter_resolves_store_path(tmp_path: Path) -> None:
    adapter = open_live_adapter("my-site", tmp_path)
    assert adapter.db_path == (tmp_path / "stores" / "my-site.sqlite").resolve()
    assert adapter.is_available()
    assert adapter.get_adapter_name() == "sqlite"
    assert adapter.read_only is False


def _legacy_db(path: Path, items: list[dict[str, object]], schema_version: int | None = None) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA_V1)
        conn.execute(
            "INSERT INTO kv(key, value) VALUES(?, ?)",
            ("site:profile:bento-items", json.dumps(items)),
        )
        if schema_version is not None:
            conn.execute(
                "INSERT INTO store_meta(key, value) VALUES('schema_version', ?)", (str(schema_version),)
            )
        conn.commit()
    finally:
        conn.close()


def test_schema_one_store_is_migrated_to_dual_layouts(tmp_path: Path) -> None:
    db = tmp_path / "legacy.sqlite"
    _legacy_db(
        db,
        [
            {"id": "1", "type": "link", "content": {"url": "u"}, "layout": {"x": 2, "y": 0, "w": 2, "h": 2}},
            {"id": "2", "type": "text", "content": {"text": "t"}, "layout": {"x": 0, "y": 0, "w": 2, "h": 2}},
        ],
    )

    adapter = SqliteLiveAdapter(db_path=db, site_prefix="site")

    narrow = {item.id: item.layout.narrow for item in adapter.get_items()}
    assert narrow == {"1": GridRect(0, 2, 2, 2), "2": GridRect(0, 0, 2, 2)}
    assert find_overlaps(narrow) == []

    conn = sqlite3.connect(db)
    try:
        version = conn.execute("SELECT value FROM store_meta WHERE key = 'schema_version'").fetchone()[0]
        columns = {row[1] for row in conn.execute("PRAGMA table_info(kv)").fetchall()}
        raw = json.loads(conn.execute("SELECT value FROM kv WHERE key = 'site:profile:bento-items'").fetchone()[0])
    finally:
        conn.close()
    assert int(version) == CURRENT_SCHEMA_VERSION
    assert "updated_at" in columns
    assert raw[0]["layout"] == {"x": 2, "y": 0, "w": 2, "h": 2}
    assert raw[0]["responsiveLayout"]["narrow"] == {"x": 0, "y": 2, "w": 2, "h": 2}


def test_newer_schema_is_refused(tmp_path: Path) -> None:
    db = tmp_path / "future.sqlite"
    _legacy_db(db, [], schema_version=CURRENT_SCHEMA_VERSION + 1)
    with pytest.raises(StoreSchemaError):
        SqliteLiveAdapter(db_path=db, site_prefix="site")
