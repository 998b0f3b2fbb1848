"""Copies the packaged speech model to a writable location."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

UUID_FILE = "uuid"


class ModelAssetStore:
    def __init__(self, source_dir: Path | str, target_root: Path | None = None, name: str = "model") -> None:
        self._source = Path(source_dir)
        self._target_root = target_root or Path.home() / ".local" / "share" / "livecaption"
        self._name = name

    @property
    def target(self) -> Path:
        return self._target_root / self._name

    def sync(self) -> Path:
        """Mirror the source model into the target directory.

        Copying is skipped when both sides carry the same ``uuid`` marker.
        Raises ``OSError`` on any filesystem failure.
        """
        if not self._source.is_dir():
            raise FileNotFoundError(f"model source not found: {self._source}")
        target = self.target
        source_id = _read_uuid(self._source)
        if source_id and target.is_dir() and _read_uuid(target) == source_id:
            logger.debug("model %s up to date at %s", source_id, target)
            return target

        if target.exists():
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self._source, target)
        logger.info("model copied %s -> %s", self._source, target)
        return target


def _read_uuid(directory: Path) -> str:
    path = directory / UUID_FILE
    if not path.is_file():
        return ""
    return path.read_text(encoding="utf-8").strip()
