"""
Session adapter selection.

The active adapter is chosen exactly once, at session start, from the build
flag and the requested mode. An edit session on a published site starts from
the published snapshot: the live store is seeded when it is empty and
re-seeded when it is older than the snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..clock import Clock
from ..errors import BentoError
from ..http import HttpTransport
from .api import PersistenceAdapter
from .snapshot_adapter import SnapshotAdapter
from .sqlite_store import SqliteLiveAdapter, open_live_adapter

logger = logging.getLogger(__name__)


class SessionMode(str, Enum):
    """How the current session reads and writes profile state."""

    PUBLISHED = "published"
    EDIT_ON_PUBLISHED = "edit_on_published"
    EDIT = "edit"


class RequestedMode(str, Enum):
    """Mode asked for by the caller (the ``?mode=`` query of the page)."""

    EDIT = "edit"
    PREVIEW = "preview"


class SeedOutcome(str, Enum):
    """Result of seeding a live store from a snapshot."""

    SEEDED = "seeded"
    RESEEDED_STALE = "reseeded_stale"
    SKIPPED_UP_TO_DATE = "skipped_up_to_date"
    SKIPPED_NO_DATA = "skipped_no_data"
    FAILED = "failed"


def resolve_session_mode(published_build: bool, requested: RequestedMode | str | None) -> SessionMode:
    """
    Decide the session mode.

    Parameters
    ----------
    published_build:
        True when running as a deployed, published site.
    requested:
        Explicit mode from the caller, if any.

    Returns
    -------
    SessionMode
        ``edit`` on a published build gives EDIT_ON_PUBLISHED; a published build
        or ``preview`` gives PUBLISHED; anything else gives EDIT.
    """
    mode = RequestedMode(requested) if requested else None
    if mode is RequestedMode.EDIT:
        return SessionMode.EDIT_ON_PUBLISHED if published_build else SessionMode.EDIT
    if published_build or mode is RequestedMode.PREVIEW:
        return SessionMode.PUBLISHED
    return SessionMode.EDIT


def seed_live_from_snapshot(live: SqliteLiveAdapter, snapshot: SnapshotAdapter) -> SeedOutcome:
    """
    Seed (or re-seed) a live store from a published snapshot.

    Rules
    -----
    - A snapshot without items is never used to seed.
    - An empty live store is seeded.
    - A non-empty live store is re-seeded only when it has a ``lastModified``
      and the snapshot's ``lastModified`` is strictly later. Local edits
      without a timestamp are kept.

    Failures are logged and reported as FAILED; they never abort the session.
    """
    try:
        config = snapshot.config
        if config is None or not config.items:
            logger.info("Snapshot has no items; leaving live store untouched")
            return SeedOutcome.SKIPPED_NO_DATA

        if live.get_items():
            local_modified = live.last_modified()
            if local_modified is None or config.metadata.last_modified <= local_modified:
                return SeedOutcome.SKIPPED_UP_TO_DATE
            live.import_config(config)
            logger.info(
                "Live store older than snapshot (%s < %s); re-seeded",
                local_modified,
                config.metadata.last_modified,
            )
            return SeedOutcome.RESEEDED_STALE

        live.import_config(config)
        logger.info("Seeded empty live store with %s item(s)", len(config.items))
        return SeedOutcome.SEEDED
    except BentoError as exc:
        logger.warning("Seeding live store from snapshot failed: %s", exc)
        return SeedOutcome.FAILED


@dataclass(frozen=True, slots=True)
class SessionAdapter:
    """
    The adapter chosen for a session.

    Attributes
    ----------
    mode:
        Resolved session mode.
    adapter:
        The adapter every caller in the session must use.
    seed_outcome:
        Seeding result for EDIT_ON_PUBLISHED sessions, otherwise None.
    """

    mode: SessionMode
    adapter: PersistenceAdapter
    seed_outcome: SeedOutcome | None = None


def open_session_adapter(
    mode: SessionMode,
    *,
    site_prefix: str,
    data_root: Path | None = None,
    snapshot_source: str | Path | None = None,
    clock: Clock | None = None,
    transport: HttpTransport | None = None,
) -> SessionAdapter:
    """
    Open the adapter for a session.

    Parameters
    ----------
    mode:
        Resolved session mode.
    site_prefix:
        Namespace of the live store.
    data_root:
        Optional data root override.
    snapshot_source:
        Path or URL of the published snapshot. Required for PUBLISHED; optional
        for EDIT_ON_PUBLISHED (seeding is skipped without it).
    clock:
        Time source for the live store.
    transport:
        HTTP transport for URL snapshot sources.

    Raises
    ------
    ValueError
        If PUBLISHED is requested without a snapshot source.
    """
    if mode is SessionMode.PUBLISHED:
        if snapshot_source is None:
            raise ValueError("A published session needs a snapshot source.")
        return SessionAdapter(mode=mode, adapter=SnapshotAdapter(snapshot_source, transport))

    live = open_live_adapter(site_prefix, data_root, clock=clock)
    if mode is SessionMode.EDIT_ON_PUBLISHED and snapshot_source is not None:
        outcome = seed_live_from_snapshot(live, SnapshotAdapter(snapshot_source, transport))
        return SessionAdapter(mode=mode, adapter=live, seed_outcome=outcome)
    return SessionAdapter(mode=mode, adapter=live)
