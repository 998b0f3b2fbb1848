"""Cloud recognition stream using DashScope qwen3-asr-flash.

The keyword loop listens in short utterances: audio is collected from the
microphone for at most ``utterance_s`` seconds, converted to a WAV payload and
sent to the model with ``stream=True``. Every streamed chunk becomes a partial
hypothesis, the last one is repeated as the final hypothesis, and the stream
then reports end-of-utterance so the session can restart listening.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import threading
import wave
from queue import Empty, Queue
from typing import Optional

from errors import (
    ASR_PROTOCOL_ERROR,
    AUTH_FAILED,
    NETWORK_ERROR,
    RecognitionTerminalError,
    SessionStartError,
)
from interfaces import EndSink, ErrorSink, HypothesisSink, Recorder
from models import AudioFrame, Hypothesis
from recorder import SoundDeviceRecorder

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


class DashscopeRecognizerAdapter:
    def __init__(
        self,
        api_key: str,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        utterance_s: float = 4.0,
        recorder: Optional[Recorder] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s
        self._utterance_s = utterance_s
        self._recorder = recorder or SoundDeviceRecorder()
        self._thread: Optional[threading.Thread] = None
        self._timer: Optional[threading.Timer] = None
        self._stop_event = threading.Event()
        self._released = False

    def start(self, on_hypothesis: HypothesisSink, on_error: ErrorSink, on_end: EndSink) -> None:
        if self._released:
            raise SessionStartError("stream was released")
        if self._thread is not None and self._thread.is_alive():
            raise SessionStartError("recognizer busy")
        if dashscope is None:
            raise SessionStartError("dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise SessionStartError("No API key configured", code=AUTH_FAILED)

        audio_queue: Queue[AudioFrame | None] = Queue()
        self._stop_event.clear()
        try:
            self._recorder.start(audio_queue)
        except Exception as exc:
            raise SessionStartError(f"microphone unavailable: {exc}") from exc

        self._thread = threading.Thread(
            target=self._worker,
            args=(api_key, audio_queue, on_hypothesis, on_error, on_end),
            name="dashscope-stream",
            daemon=True,
        )
        self._thread.start()
        self._timer = threading.Timer(self._utterance_s, self._end_utterance)
        self._timer.daemon = True
        self._timer.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._cancel_timer()
        self._recorder.stop()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.stop()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=0.5)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _end_utterance(self) -> None:
        self._recorder.stop()

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()

    def _worker(
        self,
        api_key: str,
        audio_queue: Queue[AudioFrame | None],
        on_hypothesis: HypothesisSink,
        on_error: ErrorSink,
        on_end: EndSink,
    ) -> None:
        """Consume audio frames until the end-of-audio marker, then recognise."""
        pcm = bytearray()
        sample_rate = 16000
        channels = 1

        while not self._stop_event.is_set():
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                continue
            if frame is None:
                break
            pcm.extend(frame.pcm16_bytes)
            sample_rate = frame.sample_rate
            channels = frame.channels

        if self._stop_event.is_set():
            return
        if not pcm:
            on_end()
            return

        wav_b64 = _pcm_to_wav_base64(bytes(pcm), sample_rate, channels)
        try:
            latest = self._recognize_stream(api_key, wav_b64, on_hypothesis)
        except RecognitionTerminalError as exc:
            on_error(exc)
            return
        if latest is None:
            return
        on_hypothesis(Hypothesis(text=latest, is_final=True))
        on_end()

    def _recognize_stream(
        self, api_key: str, wav_base64: str, on_hypothesis: HypothesisSink
    ) -> Optional[str]:
        """Stream partial results; returns the last text, or None when stopped."""
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_base64}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False},
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest = ""
            for chunk in response:
                if self._stop_event.is_set():
                    return None
                text = self._extract_text(chunk)
                if text:
                    latest = text
                    on_hypothesis(Hypothesis(text=text, is_final=False))
        except Exception as exc:
            raise self._to_error(exc) from exc
        return latest

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if not isinstance(chunk, dict):
            return ""
        choices = chunk.get("output", {}).get("choices", [])
        if not choices:
            return ""
        content = choices[0].get("message", {}).get("content", [])
        if not content or not isinstance(content[0], dict):
            return ""
        return str(content[0].get("text", ""))

    def _to_error(self, exc: Exception) -> RecognitionTerminalError:
        """Map an SDK/network exception to a terminal recognition error."""
        message = str(exc)
        low = message.lower()
        if "401" in low or "auth" in low or "api key" in low:
            return RecognitionTerminalError(message, code=AUTH_FAILED, retryable=False)
        if "timeout" in low or "network" in low or "connection" in low:
            return RecognitionTerminalError(message, code=NETWORK_ERROR)
        return RecognitionTerminalError(message, code=ASR_PROTOCOL_ERROR)
