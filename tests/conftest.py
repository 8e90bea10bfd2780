import threading
import time
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from orderwindow.domain.errors import AuthenticationFailed, MarketTimeUnavailable, OrderSubmissionFailed

TEHRAN = ZoneInfo("Asia/Tehran")


class FakeAuth:
    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()
        self._lock = threading.Lock()

    def login(self, login_url, username, password):
        with self._lock:
            self.calls.append((login_url, username))
        if username in self.fail_for:
            raise AuthenticationFailed(f"Authentication failed: bad credentials for {username}")
        return f"token-{username}"


class FakeOrders:
    def __init__(self):
        self.calls: list[tuple[str, str, dict]] = []
        self.fail_every: int | None = None
        self._lock = threading.Lock()

    def submit(self, order_url, token, order):
        with self._lock:
            self.calls.append((order_url, token, order.to_payload()))
            n = len(self.calls)
        if self.fail_every and n % self.fail_every == 0:
            raise OrderSubmissionFailed("Order failed: rejected by broker")
        return {"status": "accepted", "n": n}


class SlowOrders:
    """Order client that takes `delay` seconds per call and records when each call started."""

    def __init__(self, delay: float):
        self.delay = delay
        self.started: list[datetime] = []
        self.started_mono: list[float] = []
        self._lock = threading.Lock()

    def submit(self, order_url, token, order):
        with self._lock:
            self.started.append(datetime.now(tz=TEHRAN))
            self.started_mono.append(time.monotonic())
        time.sleep(self.delay)
        return {"status": "accepted"}


class FakeMarketTime:
    def __init__(self, epoch_ms: int):
        self.epoch_ms = epoch_ms
        self.calls = 0
        self.fail = False
        self.delay = 0.0

    def fetch_epoch_millis(self, market_time_url):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise MarketTimeUnavailable("Market time unavailable: timeout")
        return self.epoch_ms


class FixedClock:
    def __init__(self, current: datetime):
        self.tz = current.tzinfo
        self.current = current

    def now(self):
        return self.current


def dotted(dt: datetime) -> str:
    return f"{dt.hour:02d}.{dt.minute:02d}.{dt.second:02d}.{dt.microsecond // 1000:03d}"


def base_account(**overrides) -> dict:
    raw = {
        "username": "alice",
        "password": "secret",
        "login_url": "https://broker.test/login",
        "order_url": "https://broker.test/order",
        "isin": "IRO1TEST0001",
        "quantity": 10,
        "price": 1000,
        "order_side": 1,
        "request_interval_ms": 100,
        "start_time": "10.00.00.000",
        "stop_time": "10.00.05.000",
        "max_quantity": 100,
        "min_total_cost": 5000,
    }
    raw.update(overrides)
    return raw


def window_from_now(start_in_ms: int, length_ms: int) -> tuple[str, str]:
    """Start/stop specs relative to the real Tehran clock, truncated to whole milliseconds."""
    now = datetime.now(tz=TEHRAN)
    start = now + timedelta(milliseconds=start_in_ms)
    start = start.replace(microsecond=(start.microsecond // 1000) * 1000)
    stop = start + timedelta(milliseconds=length_ms)
    return dotted(start), dotted(stop)


@pytest.fixture
def tz():
    return TEHRAN


@pytest.fixture
def fake_auth():
    return FakeAuth()


@pytest.fixture
def fake_orders():
    return FakeOrders()


@pytest.fixture
def make_account():
    return base_account


@pytest.fixture
def make_window():
    return window_from_now


@pytest.fixture
def make_fixed_clock():
    def _make(hour, minute, second, millisecond=0):
        return FixedClock(datetime(2026, 10, 18, hour, minute, second, millisecond * 1000, tzinfo=TEHRAN))

    return _make


@pytest.fixture
def make_market_time():
    return FakeMarketTime


@pytest.fixture
def make_slow_orders():
    return SlowOrders
