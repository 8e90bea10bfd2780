from __future__ import annotations

import sys
import threading
from typing import TextIO

from orderwindow.domain.models import format_clock
from orderwindow.trader.market_clock import Clock

_YELLOW = "\033[33m"
_RESET = "\033[0m"


class ClockDisplay:
    """Console ticker showing the trading-timezone clock once per second."""

    def __init__(self, clock: Clock, stream: TextIO | None = None, interval_seconds: float = 1.0):
        self.clock = clock
        self.stream = stream or sys.stdout
        self.interval_seconds = float(interval_seconds)
        self._stop_evt = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_evt.clear()
        self._thread = threading.Thread(target=self._loop, name="clock-display", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_evt.set()
        if self._thread:
            self._thread.join(timeout=2.0)
            self._thread = None
            # Leave the cursor on a fresh line after the last carriage-return update.
            self.stream.write("\n")
            self.stream.flush()

    def _loop(self) -> None:
        while not self._stop_evt.wait(self.interval_seconds):
            self.stream.write(f"\r{_YELLOW}[SYSTEM TIME] {format_clock(self.clock.now())}{_RESET}    ")
            self.stream.flush()
