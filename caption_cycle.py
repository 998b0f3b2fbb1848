"""Timed listen -> capture -> publish loop behind the photo + caption view."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from typing import Callable, Optional

from bootstrap import ModelBootstrap
from camera import crop_to_aspect
from config import CaptionSettings
from errors import CaptureError
from interfaces import Camera
from models import CaptionState, Frame, Hypothesis
from publication import ViewPublisher
from recognition_session import RecognitionSession
from vosk_engine import EngineHandle

logger = logging.getLogger(__name__)

SessionFactory = Callable[[EngineHandle], RecognitionSession]


class CaptionCycle:
    """Runs ``AwaitEngine -> InitialCapture -> (listen, drain, capture) forever``.

    The cycle owns the displayed frame; it is only ever replaced, and the
    replaced frame is discarded once the new view is out.
    """

    def __init__(
        self,
        bootstrap: ModelBootstrap,
        session_factory: SessionFactory,
        camera: Camera,
        publisher: ViewPublisher,
        settings: CaptionSettings,
        target_aspect: float,
        executor: Optional[Executor] = None,
    ) -> None:
        self._bootstrap = bootstrap
        self._session_factory = session_factory
        self._camera = camera
        self._publisher = publisher
        self._settings = settings
        self._target_aspect = target_aspect
        self._executor = executor
        self._session: Optional[RecognitionSession] = None
        self._task: Optional[asyncio.Task] = None
        self._frame: Optional[Frame] = None
        self._closed = False
        self.caption = CaptionState()
        self.cycles = 0

    @property
    def session(self) -> Optional[RecognitionSession]:
        return self._session

    @property
    def frame(self) -> Optional[Frame]:
        return self._frame

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run(), name="caption-cycle")
        return self._task

    async def run(self) -> None:
        engine = await self._bootstrap.wait()
        if engine is None:
            logger.warning("caption cycle not started: no speech engine")
            return
        if self._closed:
            return
        self._session = self._session_factory(engine)

        await self._capture_and_publish()
        await asyncio.sleep(self._settings.gap_s)
        while True:
            await self.run_once()

    async def run_once(self) -> None:
        session = self._session
        if session is None:
            raise RuntimeError("run_once() before the engine is ready")

        self.caption.clear()
        session.start(self._on_hypothesis, self._on_terminal_error)
        logger.debug("listen window open (%.1fs)", self._settings.listen_s)
        try:
            await asyncio.sleep(self._settings.listen_s)
        finally:
            session.stop()

        await asyncio.sleep(self._settings.drain_s)
        # Finals landing after the drain window belong to no cycle.
        caption = self.caption.text
        await self._capture_and_publish(caption)
        self.cycles += 1
        await asyncio.sleep(self._settings.gap_s)

    async def close(self, timeout_s: float = 2.0) -> None:
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout_s)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
        if self._session is not None:
            self._session.release()
        if self._frame is not None:
            self._frame.discard()
            self._frame = None

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _on_hypothesis(self, hypothesis: Hypothesis) -> None:
        if self.caption.offer(hypothesis):
            logger.debug("caption candidate: %s", hypothesis.text)

    def _on_terminal_error(self, exc: Exception) -> None:
        logger.info("listen window ended early, no caption this cycle: %s", exc)

    async def _capture_and_publish(self, caption: Optional[str] = None) -> bool:
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(self._executor, self._camera.capture)
        except CaptureError as exc:
            logger.warning("photo capture failed: %s", exc)
            return False
        except Exception:
            logger.exception("photo capture failed")
            return False
        if self._closed:
            raw.discard()
            return False

        cropped = Frame(crop_to_aspect(raw.image, self._target_aspect))
        raw.discard()
        previous, self._frame = self._frame, cropped
        if caption is not None:
            view = self._publisher.publish(frame=cropped, caption=caption)
            logger.info("photo and caption updated: %r", view.caption)
        else:
            self._publisher.publish(frame=cropped)
        if previous is not None:
            previous.discard()
        return True
