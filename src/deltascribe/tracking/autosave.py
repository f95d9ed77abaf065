"""Debounced auto-save of the content being edited."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    stop_when_event_set,
    wait_incrementing,
)

from deltascribe.config import Settings
from deltascribe.errors import PersistenceError

logger = logging.getLogger(__name__)

PersistFn = Callable[[str], None]


class AutoSaver:
    """Persists content after a quiet period with no new mutations.

    Every ``schedule`` call restarts the quiet-period timer. Failures are
    retried a few times, then logged and left for the next window; they never
    reach the caller. ``save_now`` bypasses the timer and does raise.

    Only one write runs at a time. A timer that fires while another write is
    in flight does not wait for it: it re-arms itself for another quiet
    period. Once closed, a timer that still fires does nothing and an
    auto-save that is retrying stops at its next attempt.
    """

    def __init__(
        self,
        persist: PersistFn,
        *,
        quiet_period: float = 2.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self._persist = persist
        self._quiet_period = quiet_period
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._timer_factory = timer_factory

        self._state_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._closed = threading.Event()
        self._saving = False
        self.last_saved_at: datetime | None = None
        self.last_error: Exception | None = None

    @classmethod
    def from_settings(cls, persist: PersistFn, settings: Settings, **kwargs) -> AutoSaver:
        return cls(
            persist,
            quiet_period=settings.autosave_quiet_period,
            retry_attempts=settings.autosave_retry_attempts,
            retry_delay=settings.autosave_retry_delay,
            **kwargs,
        )

    @property
    def is_saving(self) -> bool:
        return self._saving

    @property
    def pending(self) -> bool:
        return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def schedule(self, content: str) -> None:
        """(Re)start the quiet-period timer for ``content``."""
        with self._state_lock:
            if self._closed.is_set():
                return
            self._cancel_timer()
            self._generation += 1
            timer = self._timer_factory(
                self._quiet_period, self._fire, args=(content, self._generation)
            )
            timer.daemon = True
            self._timer = timer
        timer.start()

    def cancel(self) -> None:
        """Drop any pending auto-save."""
        with self._state_lock:
            self._cancel_timer()
            self._generation += 1

    def save_now(self, content: str) -> None:
        """Persist immediately, superseding any pending auto-save.

        Raises:
            PersistenceError: the write failed after all retries.
        """
        self.cancel()
        with self._write_lock:
            self._write(content)

    def close(self) -> None:
        """Stop accepting work; a timer firing later becomes a no-op."""
        with self._state_lock:
            self._closed.set()
            self._cancel_timer()
            self._generation += 1

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _is_current(self, generation: int) -> bool:
        with self._state_lock:
            return not self._closed.is_set() and generation == self._generation

    def _fire(self, content: str, generation: int) -> None:
        if not self._write_lock.acquire(blocking=False):
            if self._is_current(generation):
                logger.debug("Save in progress; auto-save deferred")
                self.schedule(content)
            return
        try:
            with self._state_lock:
                if self._closed.is_set() or generation != self._generation:
                    return
                self._timer = None
            try:
                self._write(content, auto=True)
            except PersistenceError as exc:
                if self._closed.is_set():
                    logger.info("Auto-save stopped retrying after close: %s", exc)
                else:
                    logger.error("Auto-save gave up until the next quiet period: %s", exc)
        finally:
            self._write_lock.release()

    def _write(self, content: str, *, auto: bool = False) -> None:
        stop = stop_after_attempt(self._retry_attempts)
        if auto:
            stop = stop_any(stop, stop_when_event_set(self._closed))
        self._saving = True
        try:
            for attempt in Retrying(
                stop=stop,
                wait=wait_incrementing(start=self._retry_delay, increment=self._retry_delay),
                retry=retry_if_exception_type(PersistenceError),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    if auto and self._closed.is_set():
                        return
                    self._persist(content)
        except PersistenceError as exc:
            self.last_error = exc
            raise
        finally:
            self._saving = False
        self.last_error = None
        self.last_saved_at = datetime.now()


def _log_retry(retry_state) -> None:
    logger.warning(
        "Save attempt %d failed (%s); retrying",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
    )
