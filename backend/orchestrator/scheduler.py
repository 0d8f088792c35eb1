"""Fixed-cadence frame loop."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from common.config.scanner import DEFAULT_FREQUENCY_HZ, FRAME_CLOCK_HZ

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class FrameCadence:
    """Decides which clock timestamps become ticks.

    The first timestamp always fires. Each firing advances the deadline by
    one period from the previous deadline rather than from the timestamp,
    so a slow clock does not accumulate drift.
    """

    def __init__(self, frequency: float | None = None):
        self.frequency = frequency or DEFAULT_FREQUENCY_HZ
        self.period_ms = 1000.0 / self.frequency
        self._next: float | None = None

    def reset(self) -> None:
        self._next = None

    def should_fire(self, timestamp_ms: float) -> bool:
        if self._next is None:
            self._next = timestamp_ms
        if timestamp_ms >= self._next:
            self._next += self.period_ms
            return True
        return False


class FrameLoop:
    def __init__(
        self,
        tick: Callable[[], None],
        frequency: float | None = None,
        clock: Callable[[], float] | None = None,
        frame_interval: float | None = None,
    ):
        self._tick = tick
        self._cadence = FrameCadence(frequency)
        self._clock = clock or _monotonic_ms
        # One presentation interval between clock reads.
        self._frame_interval = frame_interval if frame_interval is not None else 1.0 / FRAME_CLOCK_HZ
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def frequency(self) -> float:
        return self._cadence.frequency

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> None:
        """Run a single tick on the calling thread; tick errors propagate to the caller."""
        self._tick()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._cadence.reset()
        self._thread = threading.Thread(target=self._loop, name="scan-frame-loop", daemon=True)
        self._thread.start()
        logger.info("Frame loop started at %.1f Hz", self._cadence.frequency)

    def stop(self, join: bool = True) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        if join and thread is not threading.current_thread():
            thread.join(timeout=5)
        self._thread = None
        logger.info("Frame loop stopped")

    def _safe_tick(self) -> None:
        try:
            self._tick()
        except Exception:
            logger.exception("Frame tick failed")

    def _loop(self) -> None:
        while not self._stop_event.wait(self._frame_interval):
            if self._cadence.should_fire(self._clock()):
                self._safe_tick()
