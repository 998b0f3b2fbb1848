"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class SessionState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    STOPPING = "STOPPING"
    RELEASED = "RELEASED"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass(frozen=True)
class Hypothesis:
    text: str
    is_final: bool
    utterance: int = 0


class Frame:
    """A captured, orientation-corrected image.

    The pixel buffer is dropped by ``discard()``; any later read is a bug.
    """

    def __init__(self, image: Any) -> None:
        self._image = image

    @property
    def image(self) -> Any:
        if self._image is None:
            raise RuntimeError("frame was discarded")
        return self._image

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def discarded(self) -> bool:
        return self._image is None

    def discard(self) -> None:
        self._image = None


@dataclass
class CaptionState:
    text: str = ""

    def clear(self) -> None:
        self.text = ""

    def offer(self, hypothesis: Hypothesis) -> bool:
        """Keep the latest non-blank final hypothesis; partials are ignored."""
        if not hypothesis.is_final or not hypothesis.text.strip():
            return False
        self.text = hypothesis.text
        return True


@dataclass(frozen=True)
class PublishedView:
    frame: Optional[Frame] = None
    caption: str = ""
    loading: bool = True


@dataclass(frozen=True)
class KeywordEvent:
    """Zero-payload trigger marker."""
