"""Data models for the bento engine.

This module defines the canonical, typed representation of profile grid items
and of the published snapshot (ProfileConfig). The snapshot is the only artifact
that leaves a session; every store and adapter speaks in these types.

The models in this module are intentionally standard-library-only (dataclasses)
to keep the core engine lightweight and deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Self

EXPORT_VERSION = "1.0.0"
ENRICHED_VERSION = "1.0.1"

TEMP_ID_PREFIX = "tmp-"


class ItemType(str, Enum):
    """Closed set of card types a grid can hold."""

    LINK = "link"
    TEXT = "text"
    IMAGE = "image"
    REPOSITORY = "repository"
    PERSON = "person"
    SECTION_TITLE = "section_title"
    NEED_BOARD = "need-board"


IMAGE_BEARING_TYPES = frozenset({ItemType.IMAGE, ItemType.LINK})


class LayoutMode(str, Enum):
    """Responsive breakpoints. Each item keeps an independent rectangle per mode."""

    WIDE = "wide"
    NARROW = "narrow"

    @property
    def columns(self) -> int:
        """Number of grid columns at this breakpoint."""
        return 4 if self is LayoutMode.WIDE else 2

    @property
    def other(self) -> LayoutMode:
        """The breakpoint that is not this one."""
        return LayoutMode.NARROW if self is LayoutMode.WIDE else LayoutMode.WIDE


class CardSize(str, Enum):
    """Named size presets a card may be switched to from the toolbar."""

    SMALL = "small"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    LARGE = "large"
    SQUARE = "square"

    @property
    def dimensions(self) -> tuple[int, int]:
        """Return (w, h) in grid cells."""
        return _CARD_SIZE_DIMENSIONS[self]


_CARD_SIZE_DIMENSIONS: dict[CardSize, tuple[int, int]] = {
    CardSize.SMALL: (1, 2),
    CardSize.HORIZONTAL: (2, 2),
    CardSize.VERTICAL: (1, 4),
    CardSize.LARGE: (2, 4),
    CardSize.SQUARE: (2, 4),
}

DEFAULT_ITEM_SIZES: dict[ItemType, tuple[int, int]] = {
    ItemType.LINK: (2, 2),
    ItemType.TEXT: (1, 2),
    ItemType.IMAGE: (1, 2),
    ItemType.REPOSITORY: (2, 2),
    ItemType.PERSON: (2, 2),
    ItemType.SECTION_TITLE: (4, 1),
}

_NEED_BOARD_SQUARE_ALIASES = frozenset({"square", "vertical", "large"})


def resolve_need_board_size(size: object) -> str:
    """
    Normalize a need board size name.

    Parameters
    ----------
    size:
        Raw size value from item content. Anything unrecognized is horizontal.

    Returns
    -------
    str
        Either ``"horizontal"`` or ``"square"``.
    """
    normalized = size.lower() if isinstance(size, str) else ""
    if normalized in _NEED_BOARD_SQUARE_ALIASES:
        return "square"
    return "horizontal"


def need_board_dimensions(size: object) -> tuple[int, int]:
    """Return (w, h) for a need board of the given (possibly aliased) size."""
    return (2, 4) if resolve_need_board_size(size) == "square" else (4, 2)


def default_item_size(item_type: ItemType, content: Mapping[str, Any]) -> tuple[int, int]:
    """Return the default (w, h) for a new item of the given type."""
    if item_type is ItemType.NEED_BOARD:
        return need_board_dimensions(content.get("size"))
    return DEFAULT_ITEM_SIZES[item_type]


def utc_now() -> datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.now(tz=timezone.utc)


def datetime_to_iso_utc(dt: datetime) -> str:
    """Serialize a datetime as a UTC ISO-8601 string with millisecond precision.

    Parameters
    ----------
    dt
        A timezone-aware datetime.

    Returns
    -------
    str
        Timestamp in the form ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    Raises
    ------
    ValueError
        If `dt` is naive (has no timezone).
    """

    if dt.tzinfo is None:
        raise ValueError("datetime must be timezone-aware")
    utc = dt.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def datetime_from_iso_utc(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as an aware UTC datetime.

    Naive timestamps are interpreted as UTC.

    Raises
    ------
    ValueError
        If parsing fails.
    """

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _require_keys(payload: Mapping[str, Any], keys: set[str], *, context: str) -> None:
    missing = keys.difference(payload.keys())
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ValueError(f"Missing required keys in {context}: {missing_str}")


def _as_int(value: Any, *, context: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{context} must be a number, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{context} must be a whole number, got {value!r}")
    return int(value)


@dataclass(frozen=True, slots=True)
class GridRect:
    """
    A rectangle on the grid, measured in cells.

    Attributes
    ----------
    x, y:
        Top-left cell. Both are zero or greater.
    w, h:
        Width and height in cells. Both are at least one.
    """

    x: int
    y: int
    w: int
    h: int

    def __post_init__(self) -> None:
        if self.w < 1 or self.h < 1:
            raise ValueError(f"Grid size must be at least 1x1, got {self.w}x{self.h}")
        if self.x < 0 or self.y < 0:
            raise ValueError(f"Grid position must be non-negative, got ({self.x}, {self.y})")

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    def overlaps(self, other: GridRect) -> bool:
        """Return True if the two rectangles share at least one cell."""
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )

    def overlaps_columns(self, other: GridRect) -> bool:
        """Return True if the two rectangles share at least one column."""
        return max(self.x, other.x) < min(self.right, other.right)

    def fits(self, columns: int) -> bool:
        """Return True if the rectangle lies within ``columns`` columns."""
        return self.right <= columns

    def moved(self, *, x: int | None = None, y: int | None = None) -> GridRect:
        return replace(self, x=self.x if x is None else x, y=self.y if y is None else y)

    def resized(self, w: int, h: int) -> GridRect:
        return replace(self, w=w, h=h)

    def clamped(self, columns: int) -> GridRect:
        """Return the rectangle narrowed and shifted so it fits ``columns`` columns."""
        w = min(self.w, columns)
        x = min(self.x, columns - w)
        return replace(self, x=x, w=w)

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "w": self.w, "h": self.h}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`GridRect` from a mapping."""
        _require_keys(payload, {"x", "y", "w", "h"}, context="GridRect")
        return cls(
            x=_as_int(payload["x"], context="x"),
            y=_as_int(payload["y"], context="y"),
            w=_as_int(payload["w"], context="w"),
            h=_as_int(payload["h"], context="h"),
        )


@dataclass(frozen=True, slots=True)
class DualLayout:
    """Independent placements of one item at both breakpoints."""

    wide: GridRect
    narrow: GridRect

    @classmethod
    def from_wide(cls, wide: GridRect) -> Self:
        """Derive a narrow placement by clamping the wide one into two columns."""
        return cls(wide=wide, narrow=wide.clamped(LayoutMode.NARROW.columns))

    def for_mode(self, mode: LayoutMode) -> GridRect:
        return self.wide if mode is LayoutMode.WIDE else self.narrow

    def with_mode(self, mode: LayoutMode, rect: GridRect) -> DualLayout:
        if mode is LayoutMode.WIDE:
            return replace(self, wide=rect)
        return replace(self, narrow=rect)

    def to_dict(self) -> dict[str, Any]:
        return {"wide": self.wide.to_dict(), "narrow": self.narrow.to_dict()}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct a :class:`DualLayout` from a mapping."""
        _require_keys(payload, {"wide", "narrow"}, context="DualLayout")
        return cls(wide=GridRect.from_dict(payload["wide"]), narrow=GridRect.from_dict(payload["narrow"]))


@dataclass(frozen=True, slots=True)
class ImageTransform:
    """Crop state of an image-bearing card."""

    scale: float = 1.0
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {"scale": self.scale, "x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct an :class:`ImageTransform`; missing fields use defaults."""
        return cls(
            scale=float(payload.get("scale", 1.0)),
            x=float(payload.get("x", 0.0)),
            y=float(payload.get("y", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class BentoItem:
    """
    A single card on the grid.

    Attributes
    ----------
    id:
        Stable identifier once persisted. Items still waiting for storage carry a
        temporary id starting with ``tmp-``.
    type:
        Card type.
    content:
        Type-specific payload. The engine treats it as opaque apart from the
        few key fields used for duplicate detection and enrichment.
    layout:
        Placement at both breakpoints.
    image_transform:
        Optional crop state; only valid on image-bearing types.
    """

    id: str
    type: ItemType
    content: Mapping[str, Any]
    layout: DualLayout
    image_transform: ImageTransform | None = None

    def __post_init__(self) -> None:
        if self.image_transform is not None and self.type not in IMAGE_BEARING_TYPES:
            raise ValueError(f"image_transform is not valid on {self.type.value} items")

    @property
    def is_temporary(self) -> bool:
        return self.id.startswith(TEMP_ID_PREFIX)

    def rect(self, mode: LayoutMode) -> GridRect:
        return self.layout.for_mode(mode)

    def with_rect(self, mode: LayoutMode, rect: GridRect) -> BentoItem:
        return replace(self, layout=self.layout.with_mode(mode, rect))

    def with_id(self, item_id: str) -> BentoItem:
        return replace(self, id=item_id)

    def with_content(self, patch: Mapping[str, Any]) -> BentoItem:
        """Return a copy whose content is shallow-merged with ``patch``."""
        merged = dict(self.content)
        merged.update(patch)
        return replace(self, content=merged)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the snapshot item payload."""
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "content": dict(self.content),
            "layout": self.layout.wide.to_dict(),
            "responsiveLayout": self.layout.to_dict(),
        }
        if self.image_transform is not None:
            payload["imageTransform"] = self.image_transform.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """
        Construct a :class:`BentoItem` from a snapshot item payload.

        Payloads written before per-breakpoint layouts existed carry only
        ``layout``; their narrow placement is derived by clamping. Clamped
        neighbours can collide, so whole collections are passed through
        ``snapshot_io.settle_narrow_layouts`` when loaded.
        """
        _require_keys(payload, {"id", "type", "layout"}, context="BentoItem")
        responsive = payload.get("responsiveLayout")
        if isinstance(responsive, Mapping):
            layout = DualLayout.from_dict(responsive)
        else:
            layout = DualLayout.from_wide(GridRect.from_dict(payload["layout"]))
        transform_raw = payload.get("imageTransform")
        content = payload.get("content") or {}
        if not isinstance(content, Mapping):
            raise ValueError(f"content of item {payload['id']!r} must be an object")
        return cls(
            id=str(payload["id"]),
            type=ItemType(payload["type"]),
            content=dict(content),
            layout=layout,
            image_transform=ImageTransform.from_dict(transform_raw)
            if isinstance(transform_raw, Mapping)
            else None,
        )


@dataclass(frozen=True, slots=True)
class ItemRequest:
    """
    A request to create a new card.

    Attributes
    ----------
    type:
        Card type to create.
    content:
        Initial content payload.
    w, h:
        Optional explicit size, at least 1. Missing values fall back to the
        type default.
    image_transform:
        Optional initial crop state.
    """

    type: ItemType
    content: Mapping[str, Any] = field(default_factory=dict)
    w: int | None = None
    h: int | None = None
    image_transform: ImageTransform | None = None

    def __post_init__(self) -> None:
        for name, value in (("w", self.w), ("h", self.h)):
            if value is not None and value < 1:
                raise ValueError(f"Item {name} must be at least 1, got {value}")

    def resolved_size(self) -> tuple[int, int]:
        """Return (w, h), applying per-type defaults for missing values."""
        default_w, default_h = default_item_size(self.type, self.content)
        return (
            default_w if self.w is None else self.w,
            default_h if self.h is None else self.h,
        )


@dataclass(frozen=True, slots=True)
class ItemPatch:
    """
    A partial update of an existing card.

    Geometry fields apply to the active breakpoint. ``card_size`` is an
    alternative to explicit ``w``/``h``; explicit values win when both are set.
    """

    content: Mapping[str, Any] | None = None
    card_size: CardSize | None = None
    x: int | None = None
    y: int | None = None
    w: int | None = None
    h: int | None = None
    image_transform: ImageTransform | None = None

    def __post_init__(self) -> None:
        for name, value in (("w", self.w), ("h", self.h)):
            if value is not None and value < 1:
                raise ValueError(f"Patch {name} must be at least 1, got {value}")

    @property
    def changes_size(self) -> bool:
        return self.card_size is not None or self.w is not None or self.h is not None

    @property
    def changes_position(self) -> bool:
        return self.x is not None or self.y is not None

    def apply_geometry(self, current: GridRect, columns: int) -> GridRect:
        """
        Return ``current`` with this patch's geometry applied.

        The width is capped at ``columns`` and x is pulled left so the result
        always fits.
        """
        w, h = current.w, current.h
        if self.card_size is not None:
            w, h = self.card_size.dimensions
        if self.w is not None:
            w = self.w
        if self.h is not None:
            h = self.h
        w = min(w, columns)
        x = current.x if self.x is None else self.x
        y = current.y if self.y is None else self.y
        x = max(0, min(x, columns - w))
        return GridRect(x=x, y=max(0, y), w=w, h=h)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct an :class:`ItemPatch` from a loosely-typed mapping (CLI, GUI)."""
        size = payload.get("card_size", payload.get("cardSize"))
        transform = payload.get("image_transform", payload.get("imageTransform"))

        def _opt_int(key: str) -> int | None:
            value = payload.get(key)
            return None if value is None else _as_int(value, context=key)

        return cls(
            content=payload.get("content"),
            card_size=CardSize(size) if size is not None else None,
            x=_opt_int("x"),
            y=_opt_int("y"),
            w=_opt_int("w"),
            h=_opt_int("h"),
            image_transform=ImageTransform.from_dict(transform)
            if isinstance(transform, Mapping)
            else None,
        )


_PROFILE_KEYS: dict[str, str] = {
    "name": "name",
    "avatar": "avatar",
    "bio": "bio",
    "username": "username",
    "social_links": "socialLinks",
    "title": "title",
    "institution": "institution",
    "location": "location",
    "website": "website",
    "research_interests": "researchInterests",
    "event_tag_ids": "eventTagIds",
    "seeking_items": "seekingItems",
    "offering_items": "offeringItems",
}

_LIST_FIELDS = frozenset({"research_interests", "event_tag_ids", "seeking_items", "offering_items"})


@dataclass(frozen=True, slots=True)
class ProfileFields:
    """Profile header shown above the grid."""

    name: str | None = None
    avatar: str | None = None
    bio: str | None = None
    username: str = "anonymous"
    social_links: Mapping[str, str] | None = None
    title: str | None = None
    institution: str | None = None
    location: str | None = None
    website: str | None = None
    research_interests: tuple[str, ...] = ()
    event_tag_ids: tuple[str, ...] = ()
    seeking_items: tuple[str, ...] = ()
    offering_items: tuple[str, ...] = ()

    def merged(self, patch: Mapping[str, Any]) -> ProfileFields:
        """
        Return a copy with ``patch`` applied.

        Keys may use either the Python attribute name or the snapshot
        (camelCase) spelling.

        Raises
        ------
        ValueError
            If a key names no profile field.
        """
        by_snapshot_key = {v: k for k, v in _PROFILE_KEYS.items()}
        changes: dict[str, Any] = {}
        for key, value in patch.items():
            attr = key if key in _PROFILE_KEYS else by_snapshot_key.get(key)
            if attr is None:
                raise ValueError(f"Unknown profile field: {key}")
            if attr in _LIST_FIELDS:
                value = tuple(str(v) for v in (value or ()))
            elif attr == "social_links" and value is not None:
                value = {str(k): str(v) for k, v in dict(value).items()}
            elif attr == "username":
                value = str(value) if value else "anonymous"
            changes[attr] = value
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for attr, key in _PROFILE_KEYS.items():
            value = getattr(self, attr)
            if attr in _LIST_FIELDS:
                value = list(value)
            elif attr == "social_links" and value is not None:
                value = dict(value)
            payload[key] = value
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ProfileFields:
        """Construct :class:`ProfileFields` from a snapshot profile payload."""
        known = {k: v for k, v in payload.items() if k in _PROFILE_KEYS.values()}
        return cls().merged(known)


@dataclass(frozen=True, slots=True)
class SnapshotMetadata:
    """
    Snapshot bookkeeping.

    Attributes
    ----------
    version:
        Snapshot format version.
    last_modified:
        When the state was last changed. Decides staleness between a live store
        and a published snapshot.
    enriched_from:
        Set when the publish pipeline refreshed repository metadata.
    """

    version: str
    last_modified: datetime
    enriched_from: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "version": self.version,
            "lastModified": datetime_to_iso_utc(self.last_modified),
        }
        if self.enriched_from is not None:
            payload["enrichedFrom"] = self.enriched_from
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """Construct :class:`SnapshotMetadata` from a mapping."""
        _require_keys(payload, {"version", "lastModified"}, context="metadata")
        enriched = payload.get("enrichedFrom")
        return cls(
            version=str(payload["version"]),
            last_modified=datetime_from_iso_utc(str(payload["lastModified"])),
            enriched_from=str(enriched) if enriched is not None else None,
        )


@dataclass(frozen=True, slots=True)
class ProfileConfig:
    """
    The complete, self-contained snapshot of one profile.

    Created by export; consumed by import and by the read-only snapshot adapter.
    """

    profile: ProfileFields
    items: tuple[BentoItem, ...]
    metadata: SnapshotMetadata

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON snapshot schema."""
        return {
            "profile": self.profile.to_dict(),
            "bentoGrid": {"items": [item.to_dict() for item in self.items]},
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Self:
        """
        Construct a :class:`ProfileConfig` from a snapshot payload.

        Raises
        ------
        ValueError
            If required keys are missing or a field has the wrong shape.
        """
        _require_keys(payload, {"profile", "bentoGrid", "metadata"}, context="ProfileConfig")
        grid = payload["bentoGrid"]
        if not isinstance(grid, Mapping):
            raise ValueError("bentoGrid must be an object")
        raw_items = grid.get("items") or []
        if not isinstance(raw_items, list):
            raise ValueError("bentoGrid.items must be a list")
        return cls(
            profile=ProfileFields.from_dict(payload["profile"] or {}),
            items=tuple(BentoItem.from_dict(item) for item in raw_items),
            metadata=SnapshotMetadata.from_dict(payload["metadata"]),
        )
