from __future__ import annotations

import json
from pathlib import Path

import pytest

from config import DEFAULT_KEYWORD, CaptionSettings, JsonConfigStore


def test_config_read_write(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    path = tmp_path / "config.json"
    store = JsonConfigStore(path=path)

    assert store.get_api_key() == ""
    assert store.get_keyword() == DEFAULT_KEYWORD

    store.set_api_key("abc")
    store.set_keyword("呢")

    reloaded = JsonConfigStore(path=path)
    assert reloaded.get_api_key() == "abc"
    assert reloaded.get_keyword() == "呢"


def test_api_key_falls_back_to_environment(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("DASHSCOPE_API_KEY", "from-env")
    store = JsonConfigStore(path=tmp_path / "config.json")

    assert store.get_api_key() == "from-env"


def test_config_invalid_json_fallback(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    path = tmp_path / "config.json"
    path.write_text("{invalid", encoding="utf-8")

    settings = JsonConfigStore(path=path).load_settings()

    assert settings == CaptionSettings()


def test_load_settings_reads_durations(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"listen_s": 3, "drain_s": "0.5", "gap_s": "soon"}), encoding="utf-8")

    settings = JsonConfigStore(path=path).load_settings()

    assert settings.listen_s == 3.0
    assert settings.drain_s == 0.5
    assert settings.gap_s == 1.0


def test_load_settings_rejects_negative_values(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.delenv("DASHSCOPE_API_KEY", raising=False)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"listen_s": -1}), encoding="utf-8")

    assert JsonConfigStore(path=path).load_settings().listen_s == 5.0


def test_settings_validation() -> None:
    with pytest.raises(ValueError):
        CaptionSettings(drain_s=-0.1)
    with pytest.raises(ValueError):
        CaptionSettings(keyword="")
    with pytest.raises(ValueError):
        CaptionSettings(camera_rotation=45)
