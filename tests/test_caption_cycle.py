from __future__ import annotations

import asyncio
import time
from pathlib import Path

import numpy as np
import pytest

from bootstrap import ModelBootstrap
from caption_cycle import CaptionCycle
from config import CaptionSettings
from errors import CaptureError
from models import Frame, Hypothesis, SessionState
from publication import ViewPublisher
from recognition_session import RecognitionSession, RestartPolicy
from vosk_engine import EngineHandle

SETTINGS = CaptionSettings(listen_s=0.08, drain_s=0.06, gap_s=0.02)


class ScriptedStream:
    """Replays one script of (delay, text, is_final) per start() call."""

    def __init__(self, scripts: list[list[tuple[float, str, bool]]]) -> None:
        self.scripts = list(scripts)
        self.starts = 0
        self.stops = 0
        self.released = False

    def start(self, on_hypothesis, on_error, on_end) -> None:  # noqa: ANN001
        self.starts += 1
        script = self.scripts.pop(0) if self.scripts else []
        loop = asyncio.get_running_loop()
        for delay, text, final in script:
            loop.call_later(delay, on_hypothesis, Hypothesis(text=text, is_final=final))

    def stop(self) -> None:
        self.stops += 1

    def release(self) -> None:
        self.released = True


class FakeCamera:
    def __init__(self, shape: tuple[int, int] = (100, 200), fail_on: set[int] | None = None) -> None:
        self.shape = shape
        self.fail_on = fail_on or set()
        self.captures = 0
        self.closed = False

    def capture(self) -> Frame:
        self.captures += 1
        if self.captures in self.fail_on:
            raise CaptureError("shutter jammed")
        image = np.full((*self.shape, 3), self.captures, dtype=np.uint8)
        return Frame(image)

    def close(self) -> None:
        self.closed = True


class FakeAssets:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    def sync(self) -> Path:
        if self.error is not None:
            raise self.error
        return Path("/tmp/model")


def _cycle(
    stream: ScriptedStream,
    camera: FakeCamera,
    publisher: ViewPublisher,
    assets: FakeAssets | None = None,
    aspect: float = 1.0,
) -> tuple[CaptionCycle, ModelBootstrap]:
    bootstrap = ModelBootstrap(assets or FakeAssets(), lambda path: EngineHandle(object(), path), publisher)
    cycle = CaptionCycle(
        bootstrap,
        lambda engine: RecognitionSession(stream, RestartPolicy.fixed_window(), name="caption"),
        camera,
        publisher,
        SETTINGS,
        target_aspect=aspect,
    )
    return cycle, bootstrap


async def _run_until(cycle: CaptionCycle, bootstrap: ModelBootstrap, cycles: int, timeout: float = 3.0) -> None:
    await bootstrap.run()
    cycle.start()

    async def _wait() -> None:
        while cycle.cycles < cycles:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_wait(), timeout)


@pytest.mark.asyncio
async def test_published_caption_is_last_final_hypothesis() -> None:
    stream = ScriptedStream([[(0.01, "hel", False), (0.02, "hello", True), (0.04, "hello wor", False)]])
    camera = FakeCamera()
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, camera, publisher)

    await _run_until(cycle, bootstrap, 1)
    view = publisher.snapshot()
    await cycle.close()

    assert view.caption == "hello"
    assert view.loading is False
    assert view.frame is not None


@pytest.mark.asyncio
async def test_later_final_replaces_earlier_final() -> None:
    stream = ScriptedStream([[(0.01, "one", True), (0.03, "two", True)]])
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, FakeCamera(), publisher)

    await _run_until(cycle, bootstrap, 1)
    caption = publisher.snapshot().caption
    await cycle.close()

    assert caption == "two"


@pytest.mark.asyncio
async def test_caption_cleared_when_window_has_no_final() -> None:
    stream = ScriptedStream([[(0.01, "hello", True)], [(0.01, "partial only", False)]])
    publisher = ViewPublisher()
    captions: list[str] = []
    publisher.subscribe(lambda view: captions.append(view.caption))
    cycle, bootstrap = _cycle(stream, FakeCamera(), publisher)

    await _run_until(cycle, bootstrap, 2)
    await cycle.close()

    assert "hello" in captions
    assert captions[-1] == ""


@pytest.mark.asyncio
async def test_final_arriving_during_drain_is_published() -> None:
    late = SETTINGS.listen_s + SETTINGS.drain_s / 2
    stream = ScriptedStream([[(late, "just in time", True)]])
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, FakeCamera(), publisher)

    await _run_until(cycle, bootstrap, 1)
    caption = publisher.snapshot().caption
    await cycle.close()

    assert caption == "just in time"


class DelayedCamera(FakeCamera):
    def __init__(self, delay_s: float) -> None:
        super().__init__()
        self.delay_s = delay_s

    def capture(self) -> Frame:
        time.sleep(self.delay_s)
        return super().capture()


@pytest.mark.asyncio
async def test_final_arriving_after_drain_is_dropped() -> None:
    after_drain = SETTINGS.listen_s + SETTINGS.drain_s + 0.03
    stream = ScriptedStream([[(0.01, "in window", True), (after_drain, "too late", True)]])
    publisher = ViewPublisher()
    captions: list[str] = []
    cycle, bootstrap = _cycle(stream, DelayedCamera(0.1), publisher)
    publisher.subscribe(lambda view: captions.append(view.caption))

    await _run_until(cycle, bootstrap, 1)
    await cycle.close()

    assert captions[-1] == "in window"
    assert "too late" not in captions


@pytest.mark.asyncio
async def test_session_is_stopped_after_every_window() -> None:
    stream = ScriptedStream([])
    cycle, bootstrap = _cycle(stream, FakeCamera(), ViewPublisher())

    await _run_until(cycle, bootstrap, 2)
    assert cycle.session is not None
    await cycle.close()

    assert stream.starts >= 2
    assert stream.stops >= 2
    assert stream.released is True
    assert cycle.session.state == SessionState.RELEASED


@pytest.mark.asyncio
async def test_frame_is_cropped_to_target_aspect() -> None:
    stream = ScriptedStream([])
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, FakeCamera(shape=(100, 200)), publisher, aspect=0.5)

    await _run_until(cycle, bootstrap, 1)
    frame = publisher.snapshot().frame
    assert frame is not None
    size = (frame.height, frame.width)
    await cycle.close()

    assert size == (100, 50)


@pytest.mark.asyncio
async def test_capture_failure_keeps_previous_view() -> None:
    # Capture 1 is the initial one, capture 2 belongs to the first cycle.
    stream = ScriptedStream([[(0.01, "hello", True)]])
    camera = FakeCamera(fail_on={2})
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, camera, publisher)

    await bootstrap.run()
    cycle.start()
    while camera.captures < 1 or publisher.snapshot().frame is None:
        await asyncio.sleep(0.005)
    before = publisher.snapshot()
    while camera.captures < 2:
        await asyncio.sleep(0.005)
    await asyncio.sleep(0.01)
    after = publisher.snapshot()
    await cycle.close()

    assert after.frame is before.frame
    assert after.caption == before.caption == ""


@pytest.mark.asyncio
async def test_initial_capture_failure_does_not_abort_cycle() -> None:
    stream = ScriptedStream([[(0.01, "hello", True)]])
    camera = FakeCamera(fail_on={1})
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, camera, publisher)

    await _run_until(cycle, bootstrap, 1)
    view = publisher.snapshot()
    await cycle.close()

    assert view.frame is not None
    assert view.caption == "hello"


@pytest.mark.asyncio
async def test_previous_frame_is_discarded_on_replacement() -> None:
    stream = ScriptedStream([])
    publisher = ViewPublisher()
    frames: list[Frame] = []
    publisher.subscribe(lambda view: frames.append(view.frame))
    cycle, bootstrap = _cycle(stream, FakeCamera(), publisher)

    await _run_until(cycle, bootstrap, 2)
    current = cycle.frame
    await cycle.close()

    published = [f for f in frames if f is not None]
    assert len(published) >= 3
    assert all(f.discarded for f in published)
    assert current is published[-1]
    with pytest.raises(RuntimeError):
        _ = published[0].image


@pytest.mark.asyncio
async def test_bootstrap_failure_never_starts_cycle() -> None:
    stream = ScriptedStream([])
    camera = FakeCamera()
    publisher = ViewPublisher()
    cycle, bootstrap = _cycle(stream, camera, publisher, assets=FakeAssets(OSError("disk full")))

    await bootstrap.run()
    task = cycle.start()
    await asyncio.wait_for(task, 1.0)
    view = publisher.snapshot()

    assert camera.captures == 0
    assert stream.starts == 0
    assert view.frame is None
    assert view.loading is False
    assert "disk full" in view.caption


@pytest.mark.asyncio
async def test_close_mid_capture_discards_late_result() -> None:
    release_capture = asyncio.Event()
    publisher = ViewPublisher()

    class SlowCamera(FakeCamera):
        def capture(self) -> Frame:
            frame = super().capture()
            if self.captures == 2:
                # Blocks the worker thread until the test lets it go.
                asyncio.run_coroutine_threadsafe(release_capture.wait(), loop).result(timeout=2)
            return frame

    loop = asyncio.get_running_loop()
    camera = SlowCamera()
    cycle, bootstrap = _cycle(ScriptedStream([]), camera, publisher)
    await bootstrap.run()
    cycle.start()
    while camera.captures < 2:
        await asyncio.sleep(0.005)
    before = publisher.snapshot()

    await cycle.close()
    release_capture.set()
    await asyncio.sleep(0.05)

    assert publisher.snapshot() is before
    assert cycle.frame is None


@pytest.mark.asyncio
async def test_run_once_before_engine_ready_raises() -> None:
    cycle, _ = _cycle(ScriptedStream([]), FakeCamera(), ViewPublisher())

    with pytest.raises(RuntimeError, match="engine is ready"):
        await cycle.run_once()
