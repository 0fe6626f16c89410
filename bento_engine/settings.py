from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from .grid.solver import SolverTuning
from .paths import DEFAULT_SITE_PREFIX, default_data_root

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"

ENV_SITE_PREFIX = "BENTO_SITE_PREFIX"
ENV_PUBLISHED = "BENTO_PUBLISHED"
ENV_SNAPSHOT_SOURCE = "BENTO_SNAPSHOT_SOURCE"
ENV_GITHUB_TOKEN = "BENTO_GITHUB_TOKEN"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """
    Persisted engine settings.

    Notes
    -----
    Tokens are never part of this object. They come from the environment or
    the command line for the duration of one run.
    """

    site_prefix: str = DEFAULT_SITE_PREFIX
    snapshot_source: str | None = None
    publish_repository: str | None = None
    publish_branch: str | None = None
    published_build: bool = False
    tuning: SolverTuning = field(default_factory=SolverTuning)

    @staticmethod
    def defaults() -> "EngineSettings":
        return EngineSettings()

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_prefix": self.site_prefix,
            "snapshot_source": self.snapshot_source,
            "publish_repository": self.publish_repository,
            "publish_branch": self.publish_branch,
            "published_build": self.published_build,
            "tuning": {
                "row_height_px": self.tuning.row_height_px,
                "vertical_margin_px": self.tuning.vertical_margin_px,
                "insertion_divisor": self.tuning.insertion_divisor,
                "collision_iteration_limit": self.tuning.collision_iteration_limit,
            },
        }


def settings_path(data_root: Path | None) -> Path:
    root = default_data_root() if data_root is None else data_root
    return root / SETTINGS_FILENAME


def _opt_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _tuning_from(payload: object) -> SolverTuning:
    if not isinstance(payload, dict):
        return SolverTuning()
    base = SolverTuning()
    return SolverTuning(
        row_height_px=float(payload.get("row_height_px", base.row_height_px)),
        vertical_margin_px=float(payload.get("vertical_margin_px", base.vertical_margin_px)),
        insertion_divisor=max(1, int(payload.get("insertion_divisor", base.insertion_divisor))),
        collision_iteration_limit=max(
            1, int(payload.get("collision_iteration_limit", base.collision_iteration_limit))
        ),
    )


def load_settings(*, data_root: Path | None) -> EngineSettings:
    """
    Load engine settings from disk.

    Parameters
    ----------
    data_root:
        Engine data root. If None, the default is used.

    Returns
    -------
    EngineSettings
        Loaded settings, or defaults if missing/unreadable.
    """
    path = settings_path(data_root)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return EngineSettings.defaults()
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings.defaults()
    if not isinstance(payload, dict):
        logger.warning("Ignoring settings file %s: not a JSON object", path)
        return EngineSettings.defaults()

    try:
        return EngineSettings(
            site_prefix=_opt_str(payload.get("site_prefix")) or DEFAULT_SITE_PREFIX,
            snapshot_source=_opt_str(payload.get("snapshot_source")),
            publish_repository=_opt_str(payload.get("publish_repository")),
            publish_branch=_opt_str(payload.get("publish_branch")),
            published_build=bool(payload.get("published_build", False)),
            tuning=_tuning_from(payload.get("tuning")),
        )
    except (TypeError, ValueError) as exc:
        logger.warning("Ignoring malformed settings file %s: %s", path, exc)
        return EngineSettings.defaults()


def save_settings(*, data_root: Path | None, settings: EngineSettings) -> None:
    """
    Save engine settings to disk.

    Parameters
    ----------
    data_root:
        Engine data root. If None, the default is used.
    settings:
        Settings to persist.
    """
    path = settings_path(data_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2, sort_keys=True), encoding="utf-8")


def apply_environment(settings: EngineSettings, environ: Mapping[str, str] | None = None) -> EngineSettings:
    """Overlay ``BENTO_*`` environment variables on loaded settings."""
    env = os.environ if environ is None else environ
    changes: dict[str, Any] = {}
    prefix = _opt_str(env.get(ENV_SITE_PREFIX))
    if prefix:
        changes["site_prefix"] = prefix
    source = _opt_str(env.get(ENV_SNAPSHOT_SOURCE))
    if source:
        changes["snapshot_source"] = source
    published = env.get(ENV_PUBLISHED)
    if published is not None:
        changes["published_build"] = published.strip().lower() in _TRUE_VALUES
    return replace(settings, **changes) if changes else settings


def github_token_from_env(environ: Mapping[str, str] | None = None) -> str | None:
    """Return the publish token from ``BENTO_GITHUB_TOKEN`` (or ``GITHUB_TOKEN``)."""
    env = os.environ if environ is None else environ
    return _opt_str(env.get(ENV_GITHUB_TOKEN)) or _opt_str(env.get("GITHUB_TOKEN"))
