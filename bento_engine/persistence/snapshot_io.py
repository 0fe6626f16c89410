"""
Snapshot I/O.

A snapshot (ProfileConfig) is read from a local file or fetched from a URL, and
written atomically (temp file + replace) so a reader never sees a partial file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Sequence
from urllib.parse import urlparse

from ..data_models import BentoItem, LayoutMode, ProfileConfig
from ..errors import PublishError, SnapshotIOError, SnapshotValidationError
from ..grid.solver import settle_layout
from ..http import HttpTransport, UrllibTransport

SNAPSHOT_FILENAME = "profile-config.json"


@dataclass(frozen=True, slots=True)
class SnapshotWriteOptions:
    """Options controlling snapshot serialization."""

    pretty: bool = True
    indent: int = 2
    sort_keys: bool = False
    ensure_ascii: bool = False


def is_remote_source(source: str | Path) -> bool:
    """Return True if ``source`` is an http(s) URL."""
    return isinstance(source, str) and urlparse(source).scheme in {"http", "https"}


def settle_narrow_layouts(items: Sequence[BentoItem]) -> tuple[BentoItem, ...]:
    """
    Return ``items`` with overlap-free narrow placements.

    Snapshots that carry only the wide ``layout`` get their narrow rectangle by
    clamping, which stacks side-by-side cards on the same cell. Items are
    visited in wide reading order (row, then column); a narrow rectangle that
    collides with an earlier one is moved to the first free cell. Item order
    is unchanged.
    """
    columns = LayoutMode.NARROW.columns
    reading_order = sorted(items, key=lambda item: (item.layout.wide.y, item.layout.wide.x))
    settled = settle_layout([(item.id, item.layout.narrow) for item in reading_order], columns)
    return tuple(
        item
        if settled[item.id] == item.layout.narrow
        else item.with_rect(LayoutMode.NARROW, settled[item.id])
        for item in items
    )


def parse_snapshot(payload: Any, *, origin: str) -> ProfileConfig:
    """
    Validate a decoded snapshot payload and settle its narrow placements.

    Raises
    ------
    SnapshotValidationError
        If the payload does not match the snapshot schema.
    """
    if not isinstance(payload, Mapping):
        raise SnapshotValidationError(f"Snapshot is not a JSON object: {origin}")
    try:
        config = ProfileConfig.from_dict(payload)
    except (ValueError, TypeError, KeyError) as exc:
        raise SnapshotValidationError(f"Snapshot validation failed: {origin} ({exc})") from exc
    return replace(config, items=settle_narrow_layouts(config.items))


def read_snapshot(source: str | Path, *, transport: HttpTransport | None = None) -> ProfileConfig:
    """
    Read and validate a snapshot from a file path or an http(s) URL.

    Parameters
    ----------
    source:
        Local path or URL.
    transport:
        HTTP transport for URLs (defaults to urllib).

    Raises
    ------
    SnapshotIOError
        If the snapshot cannot be read or is not JSON.
    SnapshotValidationError
        If the JSON does not match the snapshot schema.
    """
    if is_remote_source(source):
        url = str(source)
        try:
            response = (transport or UrllibTransport()).request("GET", url)
        except PublishError as exc:
            raise SnapshotIOError(f"Failed to fetch snapshot: {url} ({exc})") from exc
        if not response.ok:
            raise SnapshotIOError(f"Failed to fetch snapshot: {url} (HTTP {response.status})")
        if response.body is None:
            raise SnapshotIOError(f"Invalid JSON in snapshot: {url}")
        return parse_snapshot(response.body, origin=url)

    path = Path(source)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise SnapshotIOError(f"Failed to read snapshot: {path}") from exc
    except json.JSONDecodeError as exc:
        raise SnapshotIOError(f"Invalid JSON in snapshot: {path}") from exc
    return parse_snapshot(payload, origin=str(path))


def dumps_snapshot(config: ProfileConfig, *, options: SnapshotWriteOptions | None = None) -> str:
    """Serialize a snapshot deterministically."""
    opts = options or SnapshotWriteOptions()
    if opts.pretty:
        return (
            json.dumps(
                config.to_dict(),
                indent=opts.indent,
                sort_keys=opts.sort_keys,
                ensure_ascii=opts.ensure_ascii,
            )
            + "\n"
        )
    return json.dumps(
        config.to_dict(),
        separators=(",", ":"),
        sort_keys=opts.sort_keys,
        ensure_ascii=opts.ensure_ascii,
    )


def write_snapshot_atomic(
    path: Path,
    config: ProfileConfig,
    *,
    options: SnapshotWriteOptions | None = None,
) -> None:
    """
    Write a snapshot atomically to disk.

    Raises
    ------
    SnapshotIOError
        If the file cannot be written.
    """
    path = path.expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    text = dumps_snapshot(config, options=options)

    try:
        with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
            handle.write(text)
        os.replace(temp_path, path)
    except OSError as exc:
        try:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise SnapshotIOError(f"Failed to write snapshot: {path} ({exc!s})") from exc
