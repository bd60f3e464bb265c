"""Background 1 Hz clock that drives a timed quiz session."""

from __future__ import annotations

import logging
from threading import Event, Thread, current_thread
from typing import Protocol

from quiz_engine.constants.quiz_constants import TICK_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class Tickable(Protocol):
    def tick(self) -> int | None: ...

    @property
    def is_in_progress(self) -> bool: ...


class SessionTimer:
    """Calls ``session.tick()`` once per interval until the session finishes.

    The timer stops by itself when the session leaves the in-progress state;
    ``stop()`` may be called from any thread, including the timer thread.
    """

    def __init__(self, session: Tickable, interval: float = TICK_INTERVAL_SECONDS) -> None:
        self._session = session
        self._interval = interval
        self._stopped = Event()
        self._thread: Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = Thread(target=self._run, name="quiz-session-timer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        thread = self._thread
        if thread is not None and thread is not current_thread() and thread.is_alive():
            thread.join(timeout=self._interval * 2)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            if not self._session.is_in_progress:
                break
            try:
                self._session.tick()
            except Exception:
                logger.exception("Session tick failed; stopping timer.")
                break
        self._stopped.set()
