"""Cancellable repeating task used for periodic quote refresh.

Runs a callback every ``interval_s`` seconds on a dedicated daemon
``threading.Thread``.  The wait between runs is interruptible, so
``stop()`` takes effect immediately instead of after the next tick.

Usage::

    task = RepeatingTask(engine.refresh, interval_s=45.0, name="quotewatch-poll")
    task.start()
    ...
    task.stop()
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class RepeatingTask:
    """Calls *callback* every *interval_s* seconds until stopped.

    The first call happens one interval after ``start()``.  Exceptions
    raised by the callback are logged and recorded; they never end the
    loop.
    """

    def __init__(
        self,
        callback: Callable[[], Any],
        interval_s: float,
        name: str = "quotewatch-poller",
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s!r}")
        self._callback = callback
        self._interval_s = float(interval_s)
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Observable status
        self.run_count: int = 0
        self.last_run_ts: float = 0.0
        self.last_error: str = ""

    # ── Thread lifecycle ────────────────────────────────────

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def interval_s(self) -> float:
        return self._interval_s

    def start(self) -> None:
        """Start the background thread (idempotent while running)."""
        if self.is_alive and not self._stop_event.is_set():
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(self._stop_event,),
            name=self._name,
            daemon=True,
        )
        self._thread.start()
        logger.info("%s started (interval=%.1fs)", self._name, self.interval_s)

    def stop(self) -> None:
        """Signal the thread to stop (non-blocking, idempotent)."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.info("%s stop requested", self._name)

    def join(self, timeout: float | None = None) -> None:
        """Wait for the thread to exit; no-op from inside the callback."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)

    # ── Internal loop ───────────────────────────────────────

    def _run_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            # Wait for the interval (interruptible by stop_event)
            if stop_event.wait(timeout=self.interval_s):
                break
            try:
                self._callback()
            except Exception as exc:
                logger.exception("%s callback failed", self._name)
                self.last_error = f"{type(exc).__name__}: {exc}"
            else:
                self.last_error = ""
            self.run_count += 1
            self.last_run_ts = time.time()
        logger.info("%s loop exited", self._name)
