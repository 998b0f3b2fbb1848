"""Channels read by the presentation layer."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import replace
from typing import Callable, List, Optional

from models import Frame, KeywordEvent, PublishedView

logger = logging.getLogger(__name__)

ViewCallback = Callable[[PublishedView], None]

_UNSET = object()


class ViewPublisher:
    """Single-value slot holding the latest ``PublishedView``.

    Each publish swaps in a new immutable snapshot, so readers see either the
    old pair or the new one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._view = PublishedView(frame=None, caption="", loading=True)
        self._subscribers: List[ViewCallback] = []

    def snapshot(self) -> PublishedView:
        with self._lock:
            return self._view

    def publish(
        self,
        frame: Optional[Frame] | object = _UNSET,
        caption: str | object = _UNSET,
        loading: bool | object = _UNSET,
    ) -> PublishedView:
        changes = {
            name: value
            for name, value in (("frame", frame), ("caption", caption), ("loading", loading))
            if value is not _UNSET
        }
        with self._lock:
            self._view = replace(self._view, **changes)
            view = self._view
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(view)
            except Exception:
                logger.exception("view subscriber failed")
        return view

    def subscribe(self, callback: ViewCallback) -> None:
        with self._lock:
            self._subscribers.append(callback)


class KeywordEvents:
    """Single-slot trigger stream; a new event merges into an unconsumed one."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[KeywordEvent] = asyncio.Queue(maxsize=1)

    @property
    def pending(self) -> bool:
        return not self._queue.empty()

    def emit(self) -> bool:
        try:
            self._queue.put_nowait(KeywordEvent())
        except asyncio.QueueFull:
            return False
        return True

    async def next(self) -> KeywordEvent:
        return await self._queue.get()
