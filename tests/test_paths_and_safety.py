from __future__ import annotations

from pathlib import Path

import pytest

from bento_engine.paths import (
    SafetyViolationError,
    default_data_root,
    resolve_site_paths,
    validate_site_prefix,
)


@pytest.mark.parametrize("prefix", ["", "   ", ".", "..", "a/b", "..\\x", "-lead", "has space"])
def test_site_prefix_rejects_unsafe_values(prefix: str) -> None:
    with pytest.raises(SafetyViolationError):
        validate_site_prefix(prefix)


def test_site_prefix_is_trimmed() -> None:
    assert validate_site_prefix("  my.site_1 ") == "my.site_1"


def test_resolve_site_paths_stays_under_data_root(tmp_path: Path) -> None:
    paths = resolve_site_paths("portfolio", tmp_path)
    root = tmp_path.resolve()
    assert paths.data_root == root
    assert paths.store_path == root / "stores" / "portfolio.sqlite"
    assert paths.exports_root == root / "exports"
    assert paths.settings_path == root / "settings.json"
    assert not paths.store_path.exists()


def test_default_data_root_honours_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BENTO_DATA_ROOT", str(tmp_path / "custom"))
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))
    assert default_data_root() == tmp_path / "custom"


def test_default_data_root_prefers_local_appdata(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("BENTO_DATA_ROOT", raising=False)
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path / "Local"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "Roaming"))
    assert default_data_root() == tmp_path / "Local" / "bento"


def test_default_data_root_falls_back_to_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("BENTO_DATA_ROOT", "LOCALAPPDATA", "APPDATA"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    assert default_data_root() == tmp_path / "xdg" / "bento"
