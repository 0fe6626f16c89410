"""
Placement and collision resolution for the two-breakpoint grid.

All functions here are pure: they take the current rectangles keyed by item id
and return new rectangles. Nothing is mutated and nothing is persisted.

Invariants
----------
- Every returned rectangle fits inside the requested column count.
- Given a non-overlapping input, the combined result (placed item plus shifted
  or moved items) is non-overlapping as well.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from ..data_models import GridRect
from ..errors import CollisionBoundExceededError, InvalidLayoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SolverTuning:
    """
    Tunable constants of the viewport heuristics.

    Attributes
    ----------
    row_height_px:
        Rendered height of one grid row.
    vertical_margin_px:
        Gap rendered below each row.
    insertion_divisor:
        When the visible rows are full, the new card is inserted this fraction
        of the way down the viewport (``row_count // insertion_divisor``).
    collision_iteration_limit:
        Lower bound on how many push-down steps one colliding item may take.
    """

    row_height_px: float = 67.5
    vertical_margin_px: float = 40.0
    insertion_divisor: int = 4
    collision_iteration_limit: int = 100

    @property
    def total_row_height_px(self) -> float:
        return self.row_height_px + self.vertical_margin_px


DEFAULT_TUNING = SolverTuning()


@dataclass(frozen=True, slots=True)
class ViewportHint:
    """The range of grid rows currently visible to the user."""

    first_row: int
    row_count: int

    @classmethod
    def from_pixels(
        cls,
        scroll_offset_px: float,
        viewport_height_px: float,
        tuning: SolverTuning = DEFAULT_TUNING,
    ) -> ViewportHint:
        """
        Convert pixel scroll state into grid rows.

        Parameters
        ----------
        scroll_offset_px:
            Vertical scroll offset of the page.
        viewport_height_px:
            Height of the visible area.
        tuning:
            Row geometry used for the conversion.
        """
        row_px = tuning.total_row_height_px
        return cls(
            first_row=max(0, math.floor(scroll_offset_px / row_px)),
            row_count=max(0, math.floor(viewport_height_px / row_px)),
        )


@dataclass(frozen=True, slots=True)
class Placement:
    """
    Result of placing a new card.

    Attributes
    ----------
    position:
        Rectangle chosen for the new card.
    shifted:
        Existing items that had to move down to make room, with their new
        rectangles. Empty when a free cell was found.
    """

    position: GridRect
    shifted: Mapping[str, GridRect] = field(default_factory=dict)


def layout_bottom(rects: Mapping[str, GridRect]) -> int:
    """Return the first row below every rectangle (0 for an empty grid)."""
    return max((r.bottom for r in rects.values()), default=0)


def find_overlaps(rects: Mapping[str, GridRect]) -> list[tuple[str, str]]:
    """
    Return every pair of ids whose rectangles overlap.

    Pairs are reported once, in input order.
    """
    ids = list(rects)
    pairs: list[tuple[str, str]] = []
    for i, first in enumerate(ids):
        for second in ids[i + 1 :]:
            if rects[first].overlaps(rects[second]):
                pairs.append((first, second))
    return pairs


def _is_free(candidate: GridRect, occupied: Mapping[str, GridRect]) -> bool:
    return not any(candidate.overlaps(r) for r in occupied.values())


def _scan_rows(
    existing: Mapping[str, GridRect],
    w: int,
    h: int,
    columns: int,
    rows: range,
) -> GridRect | None:
    for y in rows:
        for x in range(0, columns - w + 1):
            candidate = GridRect(x=x, y=y, w=w, h=h)
            if _is_free(candidate, existing):
                return candidate
    return None


def find_free_cell_for_columns(
    existing: Mapping[str, GridRect],
    width: int,
    height: int,
    columns: int,
) -> GridRect:
    """
    Find the first free rectangle scanning rows top to bottom, columns left to right.

    Parameters
    ----------
    existing:
        Current rectangles keyed by item id.
    width, height:
        Requested size. The width is capped at ``columns``.
    columns:
        Column count of the breakpoint.

    Returns
    -------
    GridRect
        The first free rectangle. Row ``layout_bottom(existing)`` is always
        free, so this never fails.
    """
    w = min(width, columns)
    bottom = layout_bottom(existing)
    found = _scan_rows(existing, w, height, columns, range(0, bottom + 1))
    if found is None:
        return GridRect(x=0, y=bottom, w=w, h=height)
    return found


def settle_layout(
    ordered: Sequence[tuple[str, GridRect]],
    columns: int,
) -> dict[str, GridRect]:
    """
    Make a possibly overlapping layout valid for ``columns`` columns.

    Rectangles are visited in the given order. One that fits and overlaps
    nothing accepted so far keeps its place; any other one is re-placed at the
    first free cell.

    Returns
    -------
    dict[str, GridRect]
        Rectangles of every id, in visiting order. No two overlap.
    """
    settled: dict[str, GridRect] = {}
    moved = 0
    for key, rect in ordered:
        if rect.fits(columns) and _is_free(rect, settled):
            settled[key] = rect
            continue
        settled[key] = find_free_cell_for_columns(settled, rect.w, rect.h, columns)
        moved += 1
    if moved:
        logger.debug("Settled %s overlapping rectangle(s) into %s columns", moved, columns)
    return settled


def _choose_cut_row(existing: Mapping[str, GridRect], target: int) -> int:
    """Move ``target`` up until no rectangle straddles it."""
    cut = target
    while cut > 0 and any(r.y < cut < r.bottom for r in existing.values()):
        cut -= 1
    return cut


def _shift_below(
    existing: Mapping[str, GridRect],
    inserted: GridRect,
) -> dict[str, GridRect]:
    """
    Push down every item that the inserted card (or a pushed item) would hit.

    Only items starting at or below ``inserted.y`` are eligible. Each moves down
    by ``inserted.h`` so relative order among moved items is preserved.
    """
    eligible = {k: r for k, r in existing.items() if r.y >= inserted.y}
    moved: dict[str, GridRect] = {}
    frontier = [k for k, r in eligible.items() if r.overlaps_columns(inserted)]
    for key in frontier:
        moved[key] = eligible[key].moved(y=eligible[key].y + inserted.h)

    changed = True
    while changed:
        changed = False
        for key, rect in eligible.items():
            if key in moved:
                continue
            if rect.overlaps(inserted) or any(rect.overlaps(m) for m in moved.values()):
                moved[key] = rect.moved(y=rect.y + inserted.h)
                changed = True
    return moved


def find_free_cell(
    existing: Mapping[str, GridRect],
    width: int,
    height: int,
    columns: int,
    viewport: ViewportHint | None = None,
    tuning: SolverTuning = DEFAULT_TUNING,
) -> Placement:
    """
    Place a new card, preferring the rows the user can currently see.

    Parameters
    ----------
    existing:
        Current rectangles keyed by item id.
    width, height:
        Requested size. The width is capped at ``columns``.
    columns:
        Column count of the active breakpoint.
    viewport:
        Visible row range. Without it the placement is the plain first-fit scan
        of :func:`find_free_cell_for_columns`.
    tuning:
        Heuristic constants.

    Returns
    -------
    Placement
        The chosen rectangle plus any items shifted to make room.

    Notes
    -----
    When no free cell exists inside the visible rows, the card is inserted at
    column 0 a quarter of the way down the viewport. The insertion row moves up
    to the nearest row boundary that no item straddles, and every item the new
    card would hit (directly or through a pushed item) moves down by the card's
    height.
    """
    if viewport is None:
        return Placement(position=find_free_cell_for_columns(existing, width, height, columns))

    w = min(width, columns)
    first = max(0, viewport.first_row)
    last = viewport.first_row + viewport.row_count - height
    found = _scan_rows(existing, w, height, columns, range(first, last + 1))
    if found is not None:
        return Placement(position=found)

    divisor = max(1, tuning.insertion_divisor)
    target = max(0, viewport.first_row + viewport.row_count // divisor)
    cut = _choose_cut_row(existing, target)
    inserted = GridRect(x=0, y=cut, w=w, h=height)
    shifted = _shift_below(existing, inserted)
    logger.debug(
        "Viewport full; inserting %sx%s at row %s (target %s), shifting %s item(s)",
        w,
        height,
        cut,
        target,
        len(shifted),
    )
    return Placement(position=inserted, shifted=shifted)


def resolve_collisions(
    changed_id: str,
    rects: Mapping[str, GridRect],
    columns: int,
    tuning: SolverTuning = DEFAULT_TUNING,
) -> dict[str, GridRect]:
    """
    Push items that overlap a moved or resized item down until nothing overlaps.

    Parameters
    ----------
    changed_id:
        Id of the item whose rectangle just changed. Its rectangle in ``rects``
        is the new one and is never moved.
    rects:
        All rectangles of the breakpoint keyed by id, including the changed one.
    columns:
        Column count of the breakpoint.
    tuning:
        Supplies the iteration bound.

    Returns
    -------
    dict[str, GridRect]
        New rectangles of the items that moved. Unmoved items are omitted.

    Raises
    ------
    InvalidLayoutError
        If the changed rectangle does not fit the column count.
    CollisionBoundExceededError
        If one item needs more push-down steps than the bound allows.
    """
    changed = rects[changed_id]
    if not changed.fits(columns):
        raise InvalidLayoutError(
            f"Item {changed_id} at x={changed.x} w={changed.w} overflows {columns} columns"
        )

    current = dict(rects)
    colliders = sorted(
        (key for key, r in rects.items() if key != changed_id and r.overlaps(changed)),
        key=lambda key: (rects[key].y, rects[key].x),
    )
    bound = max(tuning.collision_iteration_limit, len(rects))
    moved: dict[str, GridRect] = {}

    for key in colliders:
        candidate = current[key].moved(y=changed.bottom)
        for _ in range(bound):
            blocker = next(
                (r for other, r in current.items() if other != key and candidate.overlaps(r)),
                None,
            )
            if blocker is None:
                break
            candidate = candidate.moved(y=blocker.bottom)
        else:
            raise CollisionBoundExceededError(
                f"Collision resolution for {key} did not settle within {bound} steps"
            )
        current[key] = candidate
        moved[key] = candidate

    if moved:
        logger.debug("Resolved collisions around %s; moved %s", changed_id, sorted(moved))
    return moved
