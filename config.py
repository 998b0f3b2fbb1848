"""Simple JSON-based config store and the runtime settings it produces."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

DEFAULT_KEYWORD = "吗"


@dataclass(frozen=True)
class CaptionSettings:
    listen_s: float = 5.0
    drain_s: float = 1.0
    gap_s: float = 1.0
    keyword: str = DEFAULT_KEYWORD
    restart_backoff_s: float = 0.75
    restart_delay_s: float = 0.3
    sample_rate: int = 16000
    model_source: str = "model"
    camera_index: int = 0
    camera_rotation: int = 0
    utterance_s: float = 4.0
    api_key: str = ""

    def __post_init__(self) -> None:
        for name in ("listen_s", "drain_s", "gap_s", "restart_backoff_s", "restart_delay_s", "utterance_s"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        if not self.keyword:
            raise ValueError("keyword must not be empty")
        if self.camera_rotation % 90:
            raise ValueError("camera_rotation must be a multiple of 90")


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "livecaption" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "")) or os.getenv("DASHSCOPE_API_KEY", "")

    def set_api_key(self, key: str) -> None:
        self.set("api_key", key)

    def get_keyword(self) -> str:
        data = self._read_all()
        return str(data.get("keyword") or DEFAULT_KEYWORD)

    def set_keyword(self, keyword: str) -> None:
        self.set("keyword", keyword)

    def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def load_settings(self) -> CaptionSettings:
        """Build settings from the stored values; bad entries fall back to defaults."""
        data = self._read_all()
        defaults = CaptionSettings()
        values: dict[str, Any] = {}
        for f in fields(CaptionSettings):
            default = getattr(defaults, f.name)
            raw = data.get(f.name, default)
            try:
                values[f.name] = type(default)(raw)
            except (TypeError, ValueError):
                values[f.name] = default
        values["api_key"] = self.get_api_key()
        values["keyword"] = self.get_keyword()
        try:
            return CaptionSettings(**values)
        except ValueError:
            return defaults

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
