"""
Per-account scheduling state machine.

Initializing -> Authenticated -> Waiting -> Trading -> Stopped, with Failed
reachable from setup (invalid config, bad time format, failed login).

Trading ticks run on a fixed cadence measured against the monotonic clock.
Each tick hands its order to a small thread pool so a slow broker response never
delays the next tick. A tick that finds every worker busy is dropped, not
queued, and each call re-checks the window right before it goes out. Every
attempt is independent (no dedupe, no retry).
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Mapping

from orderwindow.domain.errors import (
    AuthenticationFailed,
    ConfigInvalid,
    InvalidTimeFormat,
    MarketTimeUnavailable,
    OrderSubmissionFailed,
)
from orderwindow.domain.models import AccountConfig, Session, SessionStatus, format_clock
from orderwindow.domain.time_window import WindowState, resolve, window_state
from orderwindow.ports.broker import AuthPort, MarketTimePort, OrderPort
from orderwindow.trader.market_clock import Clock, RemoteMarketClock
from orderwindow.trader.timing import wait_until
from orderwindow.utils.account_config import validate_account
from orderwindow.utils.event_log import EventLog

logger = logging.getLogger(__name__)

# Upper bound on concurrently in-flight order calls per account.
MAX_INFLIGHT_ORDERS = 8


class AccountScheduler:
    def __init__(
        self,
        account_key: str,
        raw_config: Mapping[str, Any],
        event_log: EventLog,
        *,
        auth_client: AuthPort,
        order_client: OrderPort,
        clock: Clock,
        market_time_client: MarketTimePort | None = None,
        max_inflight: int = MAX_INFLIGHT_ORDERS,
    ) -> None:
        self.account_key = account_key
        self.raw_config = dict(raw_config or {})
        self.event_log = event_log
        self.auth_client = auth_client
        self.order_client = order_client
        self.clock = clock
        self.market_time_client = market_time_client
        # 0 submits inline on the scheduling thread.
        self.max_inflight = int(max_inflight)

        self.session = Session(account_key=account_key)
        self.start_instant: datetime | None = None
        self.stop_instant: datetime | None = None

        self._halt = threading.Event()
        self._deadline_timer: threading.Timer | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._slots: threading.BoundedSemaphore | None = None
        self._counter_lock = threading.Lock()
        self.done = threading.Event()

    # -------------------
    # Control
    # -------------------

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def config(self) -> AccountConfig | None:
        return self.session.config

    def request_stop(self) -> None:
        """Operator interrupt: no new order call starts after this returns."""
        self.session.interrupted = True
        self._halt.set()
        self._cancel_deadline()

    def run(self) -> SessionStatus:
        """Drive the session to a terminal state. Never raises for expected failures."""
        try:
            self._run()
        except Exception as e:
            # Anything unexpected is fatal to this session only.
            logger.exception(f"[{self.account_key}] Unexpected scheduler failure")
            self._fail(f"Fatal error: {type(e).__name__}: {e}")
        finally:
            self._cancel_deadline()
            self.done.set()
        return self.session.status

    # -------------------
    # Phases
    # -------------------

    def _run(self) -> None:
        self.log_info("Initializing trader")
        try:
            cfg = validate_account(self.raw_config)
        except (ConfigInvalid, InvalidTimeFormat) as e:
            self._fail(f"Fatal error: {e}")
            return
        self.session.config = cfg
        if self.market_time_client is not None and cfg.market_time_url:
            self.clock = RemoteMarketClock(self.market_time_client, cfg.market_time_url, self.clock.tz)

        if self._halt.is_set():
            self._finish()
            return

        try:
            token = self.auth_client.login(cfg.login_url, cfg.username, cfg.password)
        except AuthenticationFailed as e:
            self._fail(f"Fatal error: {e}")
            return
        self.session.auth_token = token
        self.session.transition(SessionStatus.AUTHENTICATED)
        self.log_info("Authentication successful")

        if self._halt.is_set():
            self._finish()
            return

        now = self._read_clock_blocking()
        if now is None:
            self._finish()
            return
        self.resolve_window(now)
        self._arm_deadline(now)

        self.session.transition(SessionStatus.WAITING)
        self.log_info(f"Waiting until {format_clock(self.start_instant)}")
        halted = wait_until(self.start_instant, self.clock, self._halt, on_clock_error=self._on_clock_error)
        if halted:
            self._finish()
            return

        self.session.transition(SessionStatus.TRADING)
        self.log_info(f"Trading window open until {format_clock(self.stop_instant)}")
        self._trade()
        self._finish()

    def resolve_window(self, now: datetime) -> None:
        """Resolve start/stop against `now`'s calendar day. Both instants share that day."""
        cfg = self.session.config
        if cfg is None:
            raise RuntimeError("resolve_window() called before the config was validated")
        today = now.astimezone(self.clock.tz).date()
        self.start_instant = resolve(cfg.start_time, today, self.clock.tz)
        self.stop_instant = resolve(cfg.stop_time, today, self.clock.tz)
        if self.stop_instant <= self.start_instant:
            # Windows crossing midnight are not supported.
            logger.warning(
                f"[{self.account_key}] Stop {cfg.stop_time.format()} is not after start "
                f"{cfg.start_time.format()}; the window is empty"
            )

    def _trade(self) -> None:
        interval_s = self.session.config.request_interval_ms / 1000.0
        if self.max_inflight > 0:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_inflight,
                thread_name_prefix=f"orders-{self.account_key}",
            )
            self._slots = threading.BoundedSemaphore(self.max_inflight)
        try:
            next_due = time.monotonic()
            while self.tick():
                next_due += interval_s
                delay = next_due - time.monotonic()
                if delay < 0:
                    # Behind schedule: realign, no catch-up burst.
                    next_due = time.monotonic()
                    delay = 0.0
                if self._halt.wait(delay):
                    break
        finally:
            if self._executor is not None:
                # In-flight calls finish and are logged; nothing queued may start.
                self._executor.shutdown(wait=True, cancel_futures=True)
                self._executor = None
                self._slots = None

    def tick(self) -> bool:
        """
        One trading tick. Returns False once the window is closed or a stop was requested.
        """
        if self._halt.is_set():
            return False
        try:
            now = self.clock.now()
        except MarketTimeUnavailable as e:
            self._on_clock_error(e)
            return True

        if window_state(now, self.start_instant, self.stop_instant) is not WindowState.OPEN:
            return False

        if self._executor is None:
            self._submit_order(self._next_attempt(), now)
            return True

        # Every worker busy: drop this tick rather than queue it behind a slow broker.
        if not self._slots.acquire(blocking=False):
            logger.warning(
                f"[{self.account_key}] Skipped tick at {format_clock(now)}: "
                f"{self.max_inflight} order call(s) still in flight"
            )
            return True
        try:
            self._executor.submit(self._pooled_submit, self._next_attempt(), now)
        except RuntimeError:
            # Executor already shut down.
            self._slots.release()
            return False
        return True

    def _next_attempt(self) -> int:
        with self._counter_lock:
            self.session.order_counter += 1
            return self.session.order_counter

    def _pooled_submit(self, attempt: int, tick_time: datetime) -> None:
        try:
            self._submit_order(attempt, tick_time)
        finally:
            self._slots.release()

    def _may_submit(self) -> bool:
        """Last check before the network call: not halted and the window still open."""
        if self._halt.is_set():
            return False
        try:
            now = self.clock.now()
        except MarketTimeUnavailable as e:
            self._on_clock_error(e)
            return False
        return window_state(now, self.start_instant, self.stop_instant) is WindowState.OPEN

    def _submit_order(self, attempt: int, tick_time: datetime) -> None:
        if not self._may_submit():
            logger.debug(f"[{self.account_key}] Skipping order #{attempt}: window closed or stop requested")
            return
        cfg = self.session.config
        try:
            body = self.order_client.submit(cfg.order_url, self.session.auth_token, cfg.order_spec())
        except OrderSubmissionFailed as e:
            self.log_error(f"Order #{attempt} error: {e}")
            return
        except Exception as e:
            # Steady-state failures never stop the schedule.
            self.log_error(f"Order #{attempt} error: {type(e).__name__}: {e}")
            return
        self.log_success(f"Order #{attempt} executed at {format_clock(tick_time)} | {json.dumps(body, default=str)}")

    # -------------------
    # Internal
    # -------------------

    def _read_clock_blocking(self) -> datetime | None:
        while not self._halt.is_set():
            try:
                return self.clock.now()
            except MarketTimeUnavailable as e:
                self._on_clock_error(e)
                if self._halt.wait(0.1):
                    break
        return None

    def _arm_deadline(self, now: datetime) -> None:
        remaining = max(0.0, (self.stop_instant - now).total_seconds())
        timer = threading.Timer(remaining, self._on_deadline)
        timer.daemon = True
        timer.name = f"deadline-{self.account_key}"
        self._deadline_timer = timer
        timer.start()

    def _on_deadline(self) -> None:
        logger.debug(f"[{self.account_key}] Stop deadline reached")
        self._halt.set()

    def _cancel_deadline(self) -> None:
        timer = self._deadline_timer
        if timer is not None:
            timer.cancel()

    def _on_clock_error(self, e: MarketTimeUnavailable) -> None:
        self.log_error(str(e))

    def _fail(self, message: str) -> None:
        self.log_error(message)
        if not self.session.status.is_terminal:
            self.session.transition(SessionStatus.FAILED)

    def _finish(self) -> None:
        if self.session.status.is_terminal:
            return
        self.session.transition(SessionStatus.STOPPED)
        if self.session.interrupted:
            self.log_info(f"Interrupted; trading stopped after {self.session.order_counter} order(s)")
        else:
            self.log_info(f"Trading period ended after {self.session.order_counter} order(s)")

    def log_info(self, message: str) -> None:
        self.event_log.info(self.account_key, message)

    def log_success(self, message: str) -> None:
        self.event_log.success(self.account_key, message)

    def log_error(self, message: str) -> None:
        self.event_log.error(self.account_key, message)
