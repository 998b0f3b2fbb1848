"""Offline recognition backed by a Vosk model.

``load_engine`` turns a model directory into a reference-counted
``EngineHandle``; ``VoskSpeechStream`` is the listening handle the caption
cycle drives. Audio comes from the microphone recorder on its own thread and
the Kaldi recognizer runs on a worker thread, so every sink call happens off
the orchestration loop.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from queue import Empty, Queue
from typing import Any, Optional

from errors import ModelLoadError, RecognitionTerminalError, RecognitionTimeout, SessionStartError
from interfaces import EndSink, ErrorSink, HypothesisSink, Recorder
from models import AudioFrame, Hypothesis
from recorder import SoundDeviceRecorder

try:
    import vosk
except Exception:  # pragma: no cover
    vosk = None  # type: ignore

logger = logging.getLogger(__name__)


class EngineHandle:
    """Shared ownership of a loaded model.

    The creator holds the first reference. Each stream built on the engine
    acquires one more, and the model is dropped when the count reaches zero.
    """

    def __init__(self, model: Any, path: str = "") -> None:
        self._model = model
        self.path = path
        self._refs = 1
        self._lock = threading.Lock()

    @property
    def model(self) -> Any:
        if self._model is None:
            raise RuntimeError("engine was released")
        return self._model

    @property
    def closed(self) -> bool:
        return self._model is None

    @property
    def refs(self) -> int:
        return self._refs

    def acquire(self) -> "EngineHandle":
        with self._lock:
            if self._model is None:
                raise RuntimeError("engine was released")
            self._refs += 1
        return self

    def release(self) -> None:
        with self._lock:
            if self._model is None:
                return
            self._refs -= 1
            if self._refs > 0:
                return
            model, self._model = self._model, None
        logger.info("speech model released (%s)", self.path)
        del model


def load_engine(path: Path | str) -> EngineHandle:
    if vosk is None:
        raise ModelLoadError("vosk is not installed")
    try:
        model = vosk.Model(str(path))
    except Exception as exc:
        raise ModelLoadError(f"{path}: {exc}") from exc
    logger.info("speech model loaded from %s", path)
    return EngineHandle(model, str(path))


class VoskSpeechStream:
    def __init__(
        self,
        engine: EngineHandle,
        sample_rate: int = 16000,
        recorder: Optional[Recorder] = None,
        timeout_s: Optional[float] = None,
        queue_maxsize: int = 50,
    ) -> None:
        self._engine = engine.acquire()
        self._sample_rate = sample_rate
        self._recorder = recorder or SoundDeviceRecorder(sample_rate=sample_rate)
        self._timeout_s = timeout_s
        self._queue_maxsize = queue_maxsize
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()
        self._released = False

    def start(self, on_hypothesis: HypothesisSink, on_error: ErrorSink, on_end: EndSink) -> None:
        if self._released:
            raise SessionStartError("stream was released")
        if self._thread is not None and self._thread.is_alive():
            # Previous attempt is still draining its final result.
            self._thread.join(timeout=0.5)
            if self._thread.is_alive():
                raise SessionStartError("previous recognition still running")
        try:
            recognizer = vosk.KaldiRecognizer(self._engine.model, float(self._sample_rate))
        except Exception as exc:
            raise SessionStartError(f"recognizer init failed: {exc}") from exc

        audio_queue: Queue[AudioFrame | None] = Queue(maxsize=self._queue_maxsize)
        self._cancel.clear()
        try:
            self._recorder.start(audio_queue)
        except Exception as exc:
            raise SessionStartError(f"microphone unavailable: {exc}") from exc

        self._thread = threading.Thread(
            target=self._worker,
            args=(recognizer, audio_queue, on_hypothesis, on_error, on_end),
            name="vosk-stream",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        # The worker drains what is queued and reports the final result.
        self._recorder.stop()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._cancel.set()
        try:
            self._recorder.stop()
        finally:
            if self._thread is not None and self._thread is not threading.current_thread():
                self._thread.join(timeout=0.5)
            self._engine.release()

    def _worker(
        self,
        recognizer: Any,
        audio_queue: Queue[AudioFrame | None],
        on_hypothesis: HypothesisSink,
        on_error: ErrorSink,
        on_end: EndSink,
    ) -> None:
        started = time.monotonic()
        try:
            while not self._cancel.is_set():
                if self._timeout_s is not None and time.monotonic() - started > self._timeout_s:
                    self._recorder.stop()
                    on_error(RecognitionTimeout(f"no result within {self._timeout_s:.1f}s"))
                    return
                try:
                    frame = audio_queue.get(timeout=0.2)
                except Empty:
                    continue
                if frame is None:
                    break
                if recognizer.AcceptWaveform(frame.pcm16_bytes):
                    text = _text_of(recognizer.Result(), "text")
                    if text:
                        on_hypothesis(Hypothesis(text=text, is_final=True))
                else:
                    partial = _text_of(recognizer.PartialResult(), "partial")
                    if partial:
                        on_hypothesis(Hypothesis(text=partial, is_final=False))

            if self._cancel.is_set():
                return
            text = _text_of(recognizer.FinalResult(), "text")
            if text:
                on_hypothesis(Hypothesis(text=text, is_final=True))
        except Exception as exc:
            logger.exception("vosk recognition failed")
            on_error(RecognitionTerminalError(str(exc)))
            return
        on_end()


def _text_of(payload: str, key: str) -> str:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        logger.warning("unparsable recognizer result: %r", payload)
        return ""
    return str(data.get(key, "")).strip()
