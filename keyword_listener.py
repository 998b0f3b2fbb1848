"""Continuous keyword spotting over a self-restarting recognition session."""

from __future__ import annotations

import logging
from typing import Optional

from config import DEFAULT_KEYWORD
from models import Hypothesis, SessionState
from publication import KeywordEvents
from recognition_session import RecognitionSession

logger = logging.getLogger(__name__)


class KeywordTriggerLoop:
    """Emits one ``KeywordEvent`` per utterance whose text contains the keyword.

    Partial and final hypotheses are both scanned; once an utterance has
    triggered, later hypotheses of that utterance are ignored.
    """

    def __init__(self, session: RecognitionSession, events: KeywordEvents, keyword: str = DEFAULT_KEYWORD) -> None:
        if not session.policy.continuous:
            raise ValueError("keyword loop needs a continuous restart policy")
        self._session = session
        self._events = events
        self._keyword = keyword
        self._fired_utterance: Optional[int] = None
        self.triggers = 0

    @property
    def keyword(self) -> str:
        return self._keyword

    @property
    def active(self) -> bool:
        return self._session.state in (SessionState.LISTENING, SessionState.STOPPING)

    def activate(self) -> None:
        self._session.start(self._on_hypothesis)

    def deactivate(self) -> None:
        self._session.stop()

    def release(self) -> None:
        self._session.release()

    def _on_hypothesis(self, hypothesis: Hypothesis) -> None:
        if hypothesis.utterance == self._fired_utterance:
            return
        if self._keyword not in hypothesis.text:
            return
        self._fired_utterance = hypothesis.utterance
        self.triggers += 1
        buffered = self._events.emit()
        logger.info("keyword %r heard in %r%s", self._keyword, hypothesis.text, "" if buffered else " (coalesced)")
