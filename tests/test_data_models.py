from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bento_engine.data_models import (
    BentoItem,
    CardSize,
    DualLayout,
    GridRect,
    ImageTransform,
    ItemPatch,
    ItemRequest,
    ItemType,
    ProfileConfig,
    ProfileFields,
    SnapshotMetadata,
    datetime_from_iso_utc,
    datetime_to_iso_utc,
    need_board_dimensions,
)


def test_grid_rect_rejects_empty_and_negative() -> None:
    with pytest.raises(ValueError):
        GridRect(x=0, y=0, w=0, h=1)
    with pytest.raises(ValueError):
        GridRect(x=-1, y=0, w=1, h=1)


def test_grid_rect_overlap_is_strict_about_edges() -> None:
    a = GridRect(x=0, y=0, w=1, h=2)
    assert not a.overlaps(GridRect(x=1, y=0, w=1, h=2))
    assert not a.overlaps(GridRect(x=0, y=2, w=1, h=2))
    assert a.overlaps(GridRect(x=0, y=1, w=2, h=2))


def test_clamped_pulls_wide_rect_into_two_columns() -> None:
    assert GridRect(x=2, y=3, w=2, h=2).clamped(2) == GridRect(x=0, y=3, w=2, h=2)
    assert GridRect(x=3, y=0, w=1, h=2).clamped(2) == GridRect(x=1, y=0, w=1, h=2)
    assert GridRect(x=0, y=0, w=4, h=1).clamped(2) == GridRect(x=0, y=0, w=2, h=1)


def test_item_without_responsive_layout_derives_narrow_placement() -> None:
    item = BentoItem.from_dict(
        {"id": "1", "type": "link", "content": {"url": "u"}, "layout": {"x": 2, "y": 1, "w": 2, "h": 2}}
    )
    assert item.layout.wide == GridRect(x=2, y=1, w=2, h=2)
    assert item.layout.narrow == GridRect(x=0, y=1, w=2, h=2)


def test_item_dict_keeps_wide_rect_as_plain_layout() -> None:
    layout = DualLayout(wide=GridRect(2, 0, 1, 2), narrow=GridRect(0, 4, 1, 2))
    item = BentoItem(id="a", type=ItemType.IMAGE, content={}, layout=layout, image_transform=ImageTransform(1.5))
    payload = item.to_dict()
    assert payload["layout"] == {"x": 2, "y": 0, "w": 1, "h": 2}
    assert payload["responsiveLayout"]["narrow"] == {"x": 0, "y": 4, "w": 1, "h": 2}
    assert payload["imageTransform"] == {"scale": 1.5, "x": 0.0, "y": 0.0}
    assert BentoItem.from_dict(payload) == item


def test_image_transform_only_on_image_bearing_types() -> None:
    layout = DualLayout.from_wide(GridRect(0, 0, 1, 2))
    with pytest.raises(ValueError, match="not valid on text"):
        BentoItem(id="a", type=ItemType.TEXT, content={}, layout=layout, image_transform=ImageTransform())


def test_default_sizes_per_type() -> None:
    assert ItemRequest(ItemType.TEXT).resolved_size() == (1, 2)
    assert ItemRequest(ItemType.LINK).resolved_size() == (2, 2)
    assert ItemRequest(ItemType.SECTION_TITLE).resolved_size() == (4, 1)
    assert ItemRequest(ItemType.NEED_BOARD, {"size": "large"}).resolved_size() == (2, 4)
    assert ItemRequest(ItemType.NEED_BOARD).resolved_size() == (4, 2)
    assert ItemRequest(ItemType.TEXT, w=2).resolved_size() == (2, 2)
    assert ItemRequest(ItemType.LINK, w=1, h=1).resolved_size() == (1, 1)


@pytest.mark.parametrize("size", [{"w": 0}, {"h": 0}, {"w": -1}, {"h": -3}])
def test_sizes_below_one_are_rejected(size: dict[str, int]) -> None:
    with pytest.raises(ValueError, match="at least 1"):
        ItemRequest(ItemType.TEXT, {"text": "a"}, **size)
    with pytest.raises(ValueError, match="at least 1"):
        ItemPatch.from_dict(size)


def test_need_board_aliases() -> None:
    assert need_board_dimensions("Vertical") == (2, 4)
    assert need_board_dimensions("horizontal") == (4, 2)
    assert need_board_dimensions(None) == (4, 2)


def test_patch_geometry_fits_columns() -> None:
    current = GridRect(x=3, y=0, w=1, h=2)
    patch = ItemPatch(card_size=CardSize.LARGE)
    assert patch.apply_geometry(current, 4) == GridRect(x=2, y=0, w=2, h=4)

    too_wide = ItemPatch(w=4)
    assert too_wide.apply_geometry(current, 2) == GridRect(x=0, y=0, w=2, h=2)


def test_patch_from_dict_accepts_snapshot_spelling() -> None:
    patch = ItemPatch.from_dict({"cardSize": "horizontal", "imageTransform": {"scale": 2}})
    assert patch.card_size is CardSize.HORIZONTAL
    assert patch.image_transform == ImageTransform(scale=2.0)
    assert patch.changes_size and not patch.changes_position


def test_profile_merge_accepts_both_spellings_and_rejects_unknown() -> None:
    profile = ProfileFields().merged({"name": "Ada", "researchInterests": ["maths"], "event_tag_ids": ["e1"]})
    assert profile.name == "Ada"
    assert profile.research_interests == ("maths",)
    assert profile.to_dict()["eventTagIds"] == ["e1"]
    assert profile.username == "anonymous"

    with pytest.raises(ValueError, match="Unknown profile field"):
        profile.merged({"nickname": "x"})


def test_timestamps_use_millisecond_utc_format() -> None:
    dt = datetime(2024, 1, 2, 3, 4, 5, 678900, tzinfo=timezone.utc)
    assert datetime_to_iso_utc(dt) == "2024-01-02T03:04:05.678Z"
    assert datetime_from_iso_utc("2024-01-02T03:04:05.678Z") == dt.replace(microsecond=678000)
    with pytest.raises(ValueError):
        datetime_to_iso_utc(datetime(2024, 1, 1))


def test_profile_config_requires_top_level_sections() -> None:
    with pytest.raises(ValueError, match="bentoGrid"):
        ProfileConfig.from_dict({"profile": {}, "metadata": {"version": "1.0.0", "lastModified": "2024-01-01T00:00:00Z"}})

    config = ProfileConfig(
        profile=ProfileFields(name="Ada"),
        items=(),
        metadata=SnapshotMetadata(version="1.0.0", last_modified=datetime(2024, 5, 1, tzinfo=timezone.utc)),
    )
    payload = config.to_dict()
    assert payload["bentoGrid"] == {"items": []}
    assert payload["metadata"] == {"version": "1.0.0", "lastModified": "2024-05-01T00:00:00.000Z"}
    assert ProfileConfig.from_dict(payload) == config
