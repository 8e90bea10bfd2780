from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable

from orderwindow.domain.errors import MarketTimeUnavailable
from orderwindow.trader.market_clock import Clock

# (remaining-ms threshold, poll delay ms): coarse while far away, tight near the boundary.
POLL_SCHEDULE_MS: tuple[tuple[float, float], ...] = (
    (1000.0, 100.0),
    (100.0, 10.0),
    (5.0, 2.0),
)
FINAL_POLL_MS = 1.0
# Delay after a failed remote clock read before trying again.
CLOCK_ERROR_RETRY_MS = 100.0


def poll_delay_ms(remaining_ms: float) -> float:
    """Pick the next poll delay so that overshoot past the deadline stays small."""
    for threshold, delay in POLL_SCHEDULE_MS:
        if remaining_ms > threshold:
            return min(delay, remaining_ms)
    return FINAL_POLL_MS


def wait_until(
    deadline: datetime,
    clock: Clock,
    stop_event: threading.Event,
    *,
    on_clock_error: Callable[[MarketTimeUnavailable], None] | None = None,
) -> bool:
    """
    Block until `clock.now() >= deadline`, polling at an adaptive cadence.

    Returns True if `stop_event` was set before the deadline was reached.
    A failed clock read skips that polling cycle.
    """
    while not stop_event.is_set():
        try:
            now = clock.now()
        except MarketTimeUnavailable as e:
            if on_clock_error is not None:
                on_clock_error(e)
            if stop_event.wait(CLOCK_ERROR_RETRY_MS / 1000.0):
                return True
            continue

        remaining_ms = (deadline - now).total_seconds() * 1000.0
        if remaining_ms <= 0:
            return False
        if stop_event.wait(poll_delay_ms(remaining_ms) / 1000.0):
            return True
    return True
