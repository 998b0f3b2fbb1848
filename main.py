"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional

from assets import ModelAssetStore
from bootstrap import EngineLoader, ModelBootstrap
from camera import OpenCVCamera
from caption_cycle import CaptionCycle
from config import CaptionSettings, JsonConfigStore
from interfaces import AssetStore, Camera, RecognitionStream
from keyword_listener import KeywordTriggerLoop
from models import PublishedView
from publication import KeywordEvents, ViewPublisher
from recognition_session import RecognitionSession, RestartPolicy
from recognizer import DashscopeRecognizerAdapter
from recorder import SoundDeviceRecorder
from vosk_engine import EngineHandle, VoskSpeechStream, load_engine

logger = logging.getLogger(__name__)

CaptionStreamFactory = Callable[[EngineHandle], RecognitionStream]


def configure_logging(log_file: Optional[Path] = None, level: int = logging.INFO) -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(logging.DEBUG)
    fmt = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(fmt)
    root.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=5 * 1024 * 1024, backupCount=2, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)


class LiveCaptionService:
    """Wires bootstrap, the caption cycle and the keyword loop on one event loop."""

    def __init__(
        self,
        settings: CaptionSettings,
        target_aspect: float,
        asset_store: AssetStore,
        camera: Camera,
        keyword_stream: RecognitionStream,
        caption_stream_factory: CaptionStreamFactory,
        loader: EngineLoader = load_engine,
        publisher: Optional[ViewPublisher] = None,
        on_keyword: Optional[Callable[[], None]] = None,
    ) -> None:
        self.settings = settings
        self.publisher = publisher or ViewPublisher()
        self._camera = camera
        self._keyword_stream = keyword_stream
        self._caption_stream_factory = caption_stream_factory
        self._on_keyword = on_keyword
        self._target_aspect = target_aspect
        self.bootstrap = ModelBootstrap(asset_store, loader, self.publisher)
        self._engine: Optional[EngineHandle] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="camera")
        self.events: Optional[KeywordEvents] = None
        self.cycle: Optional[CaptionCycle] = None
        self.keywords: Optional[KeywordTriggerLoop] = None

    async def run(self, stop: asyncio.Event) -> None:
        self.events = KeywordEvents()
        keyword_session = RecognitionSession(
            self._keyword_stream,
            RestartPolicy.continuous_restart(self.settings.restart_delay_s, self.settings.restart_backoff_s),
            name="keyword",
        )
        self.keywords = KeywordTriggerLoop(keyword_session, self.events, self.settings.keyword)
        self.cycle = CaptionCycle(
            self.bootstrap,
            self._make_caption_session,
            self._camera,
            self.publisher,
            self.settings,
            self._target_aspect,
            executor=self._executor,
        )

        bootstrap_task = asyncio.create_task(self.bootstrap.run(), name="bootstrap")
        self.cycle.start()
        self.keywords.activate()
        consumer = asyncio.create_task(self._consume_keywords(), name="keyword-consumer")
        try:
            await stop.wait()
        finally:
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
            await self.shutdown()
            if bootstrap_task.done() and not bootstrap_task.cancelled():
                self._engine = bootstrap_task.result()
            else:
                bootstrap_task.cancel()
            # Streams dropped their references in shutdown(); this is the last one.
            if self._engine is not None:
                self._engine.release()

    async def shutdown(self) -> None:
        """Release both sessions, cancel capture, free the camera."""
        if self.keywords is not None:
            self.keywords.release()
        if self.cycle is not None:
            await self.cycle.close()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._camera.close()

    def _make_caption_session(self, engine: EngineHandle) -> RecognitionSession:
        return RecognitionSession(self._caption_stream_factory(engine), RestartPolicy.fixed_window(), name="caption")

    async def _consume_keywords(self) -> None:
        assert self.events is not None
        while True:
            await self.events.next()
            if self._on_keyword is not None:
                self._on_keyword()


class ServiceThread(threading.Thread):
    """Runs a LiveCaptionService on a private asyncio loop."""

    def __init__(self, service: LiveCaptionService) -> None:
        super().__init__(name="livecaption-service", daemon=True)
        self.service = service
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._ready = threading.Event()

    def run(self) -> None:
        asyncio.run(self._main())

    async def _main(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._ready.set()
        await self.service.run(self._stop_event)

    def stop(self, timeout_s: float = 5.0) -> None:
        if not self._ready.wait(timeout=timeout_s):
            return
        assert self._loop is not None and self._stop_event is not None
        try:
            self._loop.call_soon_threadsafe(self._stop_event.set)
        except RuntimeError:
            return
        self.join(timeout=timeout_s)


def build_service(settings: CaptionSettings, target_aspect: float, on_keyword: Callable[[], None]) -> LiveCaptionService:
    def caption_stream(engine: EngineHandle) -> RecognitionStream:
        return VoskSpeechStream(engine, sample_rate=settings.sample_rate)

    keyword_stream = DashscopeRecognizerAdapter(
        api_key=settings.api_key,
        utterance_s=settings.utterance_s,
        recorder=SoundDeviceRecorder(sample_rate=settings.sample_rate),
    )
    return LiveCaptionService(
        settings=settings,
        target_aspect=target_aspect,
        asset_store=ModelAssetStore(settings.model_source),
        camera=OpenCVCamera(settings.camera_index, settings.camera_rotation),
        keyword_stream=keyword_stream,
        caption_stream_factory=caption_stream,
        on_keyword=on_keyword,
    )


def main() -> int:
    try:
        from PySide6.QtCore import QObject, Signal
        from PySide6.QtWidgets import QApplication
    except Exception as exc:  # pragma: no cover
        raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

    from overlay import CaptionWindow, ask_keyword_action

    class UIBridge(QObject):
        view_signal = Signal(object)
        keyword_signal = Signal()

    configure_logging(Path.home() / ".local" / "state" / "livecaption" / "app.log")
    settings = JsonConfigStore().load_settings()

    app = QApplication(sys.argv)
    window = CaptionWindow()
    bridge = UIBridge()

    screen = app.primaryScreen()
    geom = screen.availableGeometry() if screen is not None else None
    aspect = geom.width() / geom.height() if geom is not None and geom.height() else 9 / 16

    # Callbacks arrive on the service thread; signals hand them to the Qt thread.
    service = build_service(settings, aspect, on_keyword=bridge.keyword_signal.emit)
    service.publisher.subscribe(bridge.view_signal.emit)

    def on_view(view: PublishedView) -> None:
        window.show_view(view)

    def on_keyword() -> None:
        # The choice is only logged; neither answer triggers a follow-up action.
        ask_keyword_action(
            window,
            settings.keyword,
            lambda accepted: logger.info("keyword prompt %s", "accepted" if accepted else "rejected"),
        )

    bridge.view_signal.connect(on_view)
    bridge.keyword_signal.connect(on_keyword)
    window.show_view(service.publisher.snapshot())
    window.showFullScreen()

    worker = ServiceThread(service)
    worker.start()
    app.aboutToQuit.connect(worker.stop)
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
