"""Protocol interfaces for the external collaborators of the orchestration loops."""

from __future__ import annotations

from pathlib import Path
from queue import Queue
from typing import Callable, Protocol

from models import AudioFrame, Frame, Hypothesis

HypothesisSink = Callable[[Hypothesis], None]
ErrorSink = Callable[[Exception], None]
EndSink = Callable[[], None]


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class RecognitionStream(Protocol):
    """One recognizer handle that can be started and stopped repeatedly.

    ``start`` raises ``SessionStartError`` when listening cannot begin. After a
    successful start the stream reports through the three sinks, from any
    thread: hypotheses, then either ``on_end`` (utterance completed or stop
    drained) or ``on_error`` (terminal error, including timeouts).
    """

    def start(self, on_hypothesis: HypothesisSink, on_error: ErrorSink, on_end: EndSink) -> None: ...

    def stop(self) -> None: ...

    def release(self) -> None: ...


class Camera(Protocol):
    def capture(self) -> Frame: ...

    def close(self) -> None: ...


class AssetStore(Protocol):
    def sync(self) -> Path: ...
