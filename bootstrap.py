"""One-shot preparation of the speech engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from errors import AssetSyncError, BootstrapError, ModelLoadError
from interfaces import AssetStore
from publication import ViewPublisher
from vosk_engine import EngineHandle

logger = logging.getLogger(__name__)

EngineLoader = Callable[[str], EngineHandle]


class ModelBootstrap:
    def __init__(self, asset_store: AssetStore, loader: EngineLoader, publisher: ViewPublisher) -> None:
        self._asset_store = asset_store
        self._loader = loader
        self._publisher = publisher
        self._done: Optional[asyncio.Future] = None
        self._started = False
        self.error: Optional[BootstrapError] = None

    def bootstrap(self) -> EngineHandle:
        """Blocking: sync the model asset, then load it."""
        try:
            path = self._asset_store.sync()
        except OSError as exc:
            raise AssetSyncError(str(exc)) from exc
        try:
            return self._loader(str(path))
        except ModelLoadError:
            raise
        except Exception as exc:
            raise ModelLoadError(f"{path}: {exc}") from exc

    async def run(self) -> Optional[EngineHandle]:
        done = self._future()
        if self._started:
            return await self.wait()
        self._started = True
        work = asyncio.ensure_future(asyncio.to_thread(self.bootstrap))
        try:
            engine = await asyncio.shield(work)
        except BootstrapError as exc:
            logger.error("model bootstrap failed: %s", exc, exc_info=exc.__cause__)
            self.error = exc
            self._publisher.publish(frame=None, caption=exc.user_message, loading=False)
            done.set_result(None)
            return None
        except asyncio.CancelledError:
            # The load thread cannot be interrupted; free whatever it produces.
            work.add_done_callback(_release_abandoned)
            done.cancel()
            raise
        self._publisher.publish(loading=False)
        done.set_result(engine)
        return engine

    async def wait(self) -> Optional[EngineHandle]:
        """Suspend until ``run`` finished; None means bootstrap failed."""
        return await asyncio.shield(self._future())

    def _future(self) -> asyncio.Future:
        if self._done is None:
            self._done = asyncio.get_running_loop().create_future()
        return self._done


def _release_abandoned(work: asyncio.Future) -> None:
    if work.cancelled() or work.exception() is not None:
        return
    logger.info("releasing speech engine loaded after teardown")
    work.result().release()
