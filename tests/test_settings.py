from __future__ import annotations

from pathlib import Path

from bento_engine.grid.solver import SolverTuning
from bento_engine.settings import (
    EngineSettings,
    apply_environment,
    github_token_from_env,
    load_settings,
    save_settings,
)


def test_missing_settings_file_gives_defaults(tmp_path: Path) -> None:
    assert load_settings(data_root=tmp_path) == EngineSettings.defaults()


def test_settings_round_trip(tmp_path: Path) -> None:
    settings = EngineSettings(
        site_prefix="portfolio",
        snapshot_source="https://ada.github.io/profile-config.json",
        publish_repository="ada/ada.github.io",
        published_build=True,
        tuning=SolverTuning(insertion_divisor=3),
    )
    save_settings(data_root=tmp_path, settings=settings)
    assert load_settings(data_root=tmp_path) == settings


def test_corrupt_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{oops", encoding="utf-8")
    assert load_settings(data_root=tmp_path) == EngineSettings.defaults()

    (tmp_path / "settings.json").write_text('["not", "an", "object"]', encoding="utf-8")
    assert load_settings(data_root=tmp_path) == EngineSettings.defaults()


def test_environment_overrides() -> None:
    env = {"BENTO_SITE_PREFIX": "preview", "BENTO_PUBLISHED": "Yes", "BENTO_SNAPSHOT_SOURCE": " s.json "}
    settings = apply_environment(EngineSettings.defaults(), env)
    assert settings.site_prefix == "preview"
    assert settings.published_build is True
    assert settings.snapshot_source == "s.json"

    assert apply_environment(settings, {"BENTO_PUBLISHED": "0"}).published_build is False
    assert apply_environment(settings, {}) is settings


def test_token_lookup_order() -> None:
    assert github_token_from_env({"BENTO_GITHUB_TOKEN": "a", "GITHUB_TOKEN": "b"}) == "a"
    assert github_token_from_env({"GITHUB_TOKEN": "b"}) == "b"
    assert github_token_from_env({"BENTO_GITHUB_TOKEN": "  "}) is None
