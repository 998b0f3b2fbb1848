"""State-machine wrapper that keeps a recognition stream listening.

A ``RecognitionSession`` owns the start/stop surface of one
``RecognitionStream``. The stream reports from its own threads; every report is
re-posted onto the session's event loop, so hypotheses and state transitions
for one session are handled sequentially on a single context.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from errors import RecognitionTerminalError, SessionStartError
from interfaces import RecognitionStream
from models import Hypothesis, SessionState

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
HypothesisCallback = Callable[[Hypothesis], None]
TerminalErrorCallback = Callable[[Exception], None]


@dataclass(frozen=True)
class RestartPolicy:
    continuous: bool = False
    restart_delay_s: float = 0.3
    retry_backoff_s: float = 0.75

    @classmethod
    def fixed_window(cls) -> "RestartPolicy":
        return cls(continuous=False)

    @classmethod
    def continuous_restart(
        cls, restart_delay_s: float = 0.3, retry_backoff_s: float = 0.75
    ) -> "RestartPolicy":
        return cls(continuous=True, restart_delay_s=restart_delay_s, retry_backoff_s=retry_backoff_s)


class RecognitionSession:
    def __init__(
        self,
        stream: RecognitionStream,
        policy: RestartPolicy | None = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        name: str = "session",
        on_state_change: Optional[StateCallback] = None,
    ) -> None:
        self._stream = stream
        self._policy = policy or RestartPolicy.fixed_window()
        self._loop = loop
        self._name = name
        self._on_state_change = on_state_change

        self._state = SessionState.IDLE
        self._generation = 0
        self._on_hypothesis: Optional[HypothesisCallback] = None
        self._on_terminal_error: Optional[TerminalErrorCallback] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self.restart_attempts = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def policy(self) -> RestartPolicy:
        return self._policy

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None

    def start(
        self,
        on_hypothesis: HypothesisCallback,
        on_terminal_error: Optional[TerminalErrorCallback] = None,
    ) -> None:
        if self._state == SessionState.RELEASED:
            logger.warning("%s: start() after release ignored", self._name)
            return
        if self._state == SessionState.LISTENING or self.restart_pending:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._on_hypothesis = on_hypothesis
        self._on_terminal_error = on_terminal_error
        self._transition(SessionState.LISTENING)
        self._begin()

    def stop(self) -> None:
        if self._state == SessionState.STOPPING and self.restart_pending:
            self._cancel_restart()
            self._transition(SessionState.IDLE)
            return
        if self._state != SessionState.LISTENING:
            return
        self._transition(SessionState.STOPPING)
        self._safe_stop_stream()
        self._transition(SessionState.IDLE)

    def release(self) -> None:
        if self._state == SessionState.RELEASED:
            return
        self.stop()
        self._cancel_restart()
        self._transition(SessionState.RELEASED)
        self._on_hypothesis = None
        self._on_terminal_error = None
        try:
            self._stream.release()
        except Exception:
            logger.exception("%s: stream release failed", self._name)

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------

    def _begin(self) -> None:
        self._generation += 1
        generation = self._generation
        try:
            self._stream.start(
                on_hypothesis=lambda h: self._post(self._handle_hypothesis, generation, h),
                on_error=lambda exc: self._post(self._handle_terminal, generation, exc),
                on_end=lambda: self._post(self._handle_end, generation),
            )
        except Exception as exc:
            error = exc if isinstance(exc, SessionStartError) else SessionStartError(str(exc))
            logger.warning("%s: start failed: %s", self._name, error)
            self._after_failure(error, self._policy.retry_backoff_s)
            return
        logger.debug("%s: listening (utterance %d)", self._name, generation)

    def _post(self, handler: Callable[..., None], *args: object) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(handler, *args)
        except RuntimeError:
            # Loop shut down between the check and the call.
            logger.debug("%s: event after loop shutdown dropped", self._name)

    def _handle_hypothesis(self, generation: int, hypothesis: Hypothesis) -> None:
        if generation != self._generation or self._state == SessionState.RELEASED:
            return
        callback = self._on_hypothesis
        if callback is None:
            return
        callback(Hypothesis(text=hypothesis.text, is_final=hypothesis.is_final, utterance=generation))

    def _handle_terminal(self, generation: int, exc: Exception) -> None:
        if generation != self._generation or self._state != SessionState.LISTENING:
            return
        if not isinstance(exc, RecognitionTerminalError):
            exc = RecognitionTerminalError(str(exc))
        logger.info("%s: recognition ended with error: %s", self._name, exc)
        self._after_failure(exc, self._policy.restart_delay_s)

    def _handle_end(self, generation: int) -> None:
        if generation != self._generation or self._state != SessionState.LISTENING:
            return
        if not self._policy.continuous:
            # Fixed-window streams only end after stop(); nothing to do.
            return
        self._transition(SessionState.STOPPING)
        self._schedule_restart(self._policy.restart_delay_s)

    def _after_failure(self, exc: Exception, delay: float) -> None:
        self._transition(SessionState.STOPPING)
        self._safe_stop_stream()
        if self._policy.continuous:
            self._schedule_restart(delay)
            return
        self._transition(SessionState.IDLE)
        callback = self._on_terminal_error
        if callback is not None:
            callback(exc)

    def _schedule_restart(self, delay: float) -> None:
        assert self._loop is not None
        self.restart_attempts += 1
        logger.debug("%s: restart #%d in %.2fs", self._name, self.restart_attempts, delay)
        self._restart_handle = self._loop.call_later(delay, self._restart)

    def _restart(self) -> None:
        self._restart_handle = None
        if self._state != SessionState.STOPPING:
            return
        self._transition(SessionState.LISTENING)
        self._begin()

    def _cancel_restart(self) -> None:
        handle, self._restart_handle = self._restart_handle, None
        if handle is not None:
            handle.cancel()

    def _safe_stop_stream(self) -> None:
        try:
            self._stream.stop()
        except Exception as exc:
            logger.debug("%s: stream stop failed: %s", self._name, exc)

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("%s: %s -> %s", self._name, from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
