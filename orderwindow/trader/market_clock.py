from __future__ import annotations

import threading
import time
from datetime import datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from orderwindow.domain.errors import MarketTimeUnavailable
from orderwindow.ports.broker import MarketTimePort


class Clock(Protocol):
    tz: ZoneInfo

    def now(self) -> datetime: ...


class TradingClock:
    """Local wall clock in the fixed trading timezone. Stateless; safe to share."""

    def __init__(self, tz: ZoneInfo | str):
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz

    def now(self) -> datetime:
        return datetime.now(tz=self.tz)


class RemoteMarketClock:
    """
    Broker market time, tracked as an offset against the local monotonic clock.

    Only the first reading blocks. After that the offset is re-measured at most
    every `resync_ms` on a background thread while `now()` keeps extrapolating
    from the previous anchor. A failed refresh raises MarketTimeUnavailable from
    the next `now()` call, and the call after that schedules a new refresh.
    """

    def __init__(self, client: MarketTimePort, url: str, tz: ZoneInfo, *, resync_ms: int = 1000):
        self.client = client
        self.url = url
        self.tz = tz
        self.resync_ms = int(resync_ms)
        self._lock = threading.Lock()
        self._anchor_remote_ms: float | None = None
        self._anchor_mono: float = 0.0
        self._refresh_thread: threading.Thread | None = None
        self._refresh_error: MarketTimeUnavailable | None = None

    def _measure(self) -> tuple[float, float]:
        t0 = time.monotonic()
        remote_ms = self.client.fetch_epoch_millis(self.url)
        t1 = time.monotonic()
        # The remote reading is taken to correspond to the request midpoint.
        return t0 + (t1 - t0) / 2.0, float(remote_ms)

    def _refresh(self) -> None:
        anchor = error = None
        try:
            anchor = self._measure()
        except MarketTimeUnavailable as e:
            error = e
        finally:
            with self._lock:
                if anchor is not None:
                    self._anchor_mono, self._anchor_remote_ms = anchor
                self._refresh_error = error
                self._refresh_thread = None

    def _start_refresh(self) -> None:
        t = threading.Thread(target=self._refresh, name="market-time-sync", daemon=True)
        self._refresh_thread = t
        t.start()

    def now(self) -> datetime:
        with self._lock:
            if self._anchor_remote_ms is None:
                self._anchor_mono, self._anchor_remote_ms = self._measure()
            else:
                error, self._refresh_error = self._refresh_error, None
                if error is not None:
                    raise error
                stale = (time.monotonic() - self._anchor_mono) * 1000.0 >= self.resync_ms
                if stale and self._refresh_thread is None:
                    self._start_refresh()
            elapsed_ms = (time.monotonic() - self._anchor_mono) * 1000.0
            epoch_ms = self._anchor_remote_ms + elapsed_ms
        return datetime.fromtimestamp(epoch_ms / 1000.0, tz=self.tz)
