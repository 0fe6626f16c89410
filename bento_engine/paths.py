"""
Filesystem path policy.

This module is the single choke point for deciding where the engine reads and
writes local state:

- Runtime data lives under a data root (default: %LOCALAPPDATA%\\bento on
  Windows, $XDG_DATA_HOME/bento elsewhere).
- Each site prefix gets its own live store database under ``stores/``.
- Site prefixes are also used as storage key namespaces, so they are restricted
  to a conservative character set.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import BentoError

DATA_ROOT_ENV = "BENTO_DATA_ROOT"
DEFAULT_SITE_PREFIX = "bento"

_SITE_PREFIX_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


class SafetyViolationError(BentoError):
    """Raised when a path or namespace is blocked by safety policy."""


@dataclass(frozen=True, slots=True)
class SitePaths:
    """
    Concrete resolved paths for one site prefix.

    Attributes
    ----------
    data_root:
        Root directory for all engine runtime data.
    store_path:
        SQLite database holding the live store for the site.
    exports_root:
        Default directory for exported snapshots.
    settings_path:
        Engine settings file (shared by all sites under the data root).
    """

    data_root: Path
    store_path: Path
    exports_root: Path
    settings_path: Path


def default_data_root() -> Path:
    """
    Resolve the default data root.

    Preference order:
    1) $BENTO_DATA_ROOT if set
    2) %LOCALAPPDATA% then %APPDATA% (Windows)
    3) $XDG_DATA_HOME, else ~/.local/share
    """
    override = os.environ.get(DATA_ROOT_ENV)
    if override:
        return Path(override)

    local = os.environ.get("LOCALAPPDATA")
    if local:
        return Path(local) / "bento"

    roaming = os.environ.get("APPDATA")
    if roaming:
        return Path(roaming) / "bento"

    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "bento"
    return Path.home() / ".local" / "share" / "bento"


def validate_site_prefix(site_prefix: str) -> str:
    """
    Validate and normalize a site prefix.

    Raises
    ------
    SafetyViolationError
        If the prefix is empty or contains characters outside [A-Za-z0-9_.-].
    """
    prefix = site_prefix.strip()
    if not prefix:
        raise SafetyViolationError("Site prefix must not be empty.")
    if prefix in {".", ".."} or not _SITE_PREFIX_RE.match(prefix):
        raise SafetyViolationError(f"Site prefix contains invalid characters: {prefix!r}")
    return prefix


def resolve_site_paths(site_prefix: str, data_root: Path | None = None) -> SitePaths:
    """
    Resolve all filesystem paths for a site prefix.

    Parameters
    ----------
    site_prefix:
        Namespace of the site. Must pass :func:`validate_site_prefix`.
    data_root:
        Optional override for the data root.

    Returns
    -------
    SitePaths
        Resolved paths. Nothing is created on disk.
    """
    prefix = validate_site_prefix(site_prefix)
    root = (data_root or default_data_root()).expanduser().resolve()
    store_path = (root / "stores" / f"{prefix}.sqlite").resolve()
    if root not in store_path.parents:
        raise SafetyViolationError(f"Store path escapes data root: {store_path}")
    return SitePaths(
        data_root=root,
        store_path=store_path,
        exports_root=root / "exports",
        settings_path=root / "settings.json",
    )
