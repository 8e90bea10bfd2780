import argparse
import logging
import signal
import sys
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable

import yaml

from orderwindow.broker.client import AuthClient, BrokerHttp, MarketTimeClient, OrderClient
from orderwindow.ports.broker import AuthPort, MarketTimePort, OrderPort
from orderwindow.domain.models import SessionStatus
from orderwindow.trader.clock_display import ClockDisplay
from orderwindow.trader.market_clock import Clock, TradingClock
from orderwindow.trader.scheduler import MAX_INFLIGHT_ORDERS, AccountScheduler
from orderwindow.utils.config_loader import RunConfig, load_config
from orderwindow.utils.event_log import EVENTS_LOGGER_NAME, ColorFormatter, EventLog

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

# Join timeout (seconds); keeps the main thread responsive to signals.
_JOIN_QUANTUM = 0.1


@dataclass
class RunResult:
    statuses: dict[str, SessionStatus] = field(default_factory=dict)
    log_path: Path | None = None
    interrupted: bool = False

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        if any(s is not SessionStatus.STOPPED for s in self.statuses.values()):
            return EXIT_FAILED
        return EXIT_OK


@dataclass
class BrokerClients:
    auth: AuthPort
    orders: OrderPort
    market_time: MarketTimePort | None = None
    http: BrokerHttp | None = None


def default_clients_factory(timeout: float) -> Callable[[str], BrokerClients]:
    def _build(_account_key: str) -> BrokerClients:
        http = BrokerHttp(timeout=timeout)
        return BrokerClients(
            auth=AuthClient(http),
            orders=OrderClient(http),
            market_time=MarketTimeClient(http),
            http=http,
        )

    return _build


class Orchestrator:
    """Runs one scheduler per account on its own thread and flushes the event log once."""

    def __init__(
        self,
        run_config: RunConfig,
        *,
        clock: Clock | None = None,
        clients_factory: Callable[[str], BrokerClients] | None = None,
        event_log: EventLog | None = None,
        max_inflight: int = MAX_INFLIGHT_ORDERS,
    ) -> None:
        self.run_config = run_config
        self.clock = clock or TradingClock(run_config.tz)
        self.clients_factory = clients_factory or default_clients_factory(run_config.http_timeout_seconds)
        self.event_log = event_log or EventLog(self.clock.tz)
        self.max_inflight = int(max_inflight)

        self.schedulers: dict[str, AccountScheduler] = {}
        self._clients: list[BrokerClients] = []
        self._interrupted = threading.Event()
        self._display: ClockDisplay | None = None

    def _build_schedulers(self) -> None:
        for key, raw in self.run_config.accounts.items():
            clients = self.clients_factory(key)
            self._clients.append(clients)
            self.schedulers[key] = AccountScheduler(
                key,
                raw,
                self.event_log,
                auth_client=clients.auth,
                order_client=clients.orders,
                market_time_client=clients.market_time,
                clock=self.clock,
                max_inflight=self.max_inflight,
            )

    def interrupt(self, signum: int | None = None, _frame=None) -> None:
        """Stop every active session. Safe to call more than once."""
        if signum is not None:
            logger.warning(f"Received signal {signum}, stopping all sessions...")
        self._interrupted.set()
        for sched in self.schedulers.values():
            sched.request_stop()

    def _install_signal_handlers(self) -> dict[int, object]:
        previous: dict[int, object] = {}
        if threading.current_thread() is not threading.main_thread():
            return previous
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, self.interrupt)
        return previous

    def run(self, *, install_signal_handlers: bool = True) -> RunResult:
        self._build_schedulers()
        previous = self._install_signal_handlers() if install_signal_handlers else {}
        if self.run_config.display_clock:
            self._display = ClockDisplay(self.clock)
            self._display.start()

        result = RunResult()
        threads: list[threading.Thread] = []
        try:
            self.event_log.info(None, f"Starting {len(self.schedulers)} session(s)")
            for key, sched in self.schedulers.items():
                t = threading.Thread(target=sched.run, name=f"session-{key}", daemon=True)
                threads.append(t)
                t.start()

            for t in threads:
                while t.is_alive():
                    t.join(_JOIN_QUANTUM)
        except KeyboardInterrupt:
            self.interrupt()
            for t in threads:
                t.join()
        finally:
            if self._display is not None:
                self._display.stop()
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            for clients in self._clients:
                if clients.http is not None:
                    clients.http.close()

            result.statuses = {k: s.status for k, s in self.schedulers.items()}
            result.interrupted = self._interrupted.is_set()
            failed = any(s is SessionStatus.FAILED for s in result.statuses.values())
            self.event_log.info(None, f"Run complete: {_summarise(result.statuses)}")
            result.log_path = self.event_log.flush(self.run_config.log_dir, failed=failed)
        return result


def _summarise(statuses: dict[str, SessionStatus]) -> str:
    return ", ".join(f"{k}={s.value}" for k, s in statuses.items()) or "no sessions"


def run_accounts(run_config: RunConfig, **kwargs) -> RunResult:
    install = kwargs.pop("install_signal_handlers", True)
    return Orchestrator(run_config, **kwargs).run(install_signal_handlers=install)


def configure_logging(level: int = logging.INFO, *, use_colour: bool | None = None) -> None:
    # Configure logging (idempotent; safe if configured elsewhere).
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    events = logging.getLogger(EVENTS_LOGGER_NAME)
    if events.handlers:
        return
    if use_colour is None:
        use_colour = sys.stdout.isatty()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter("%(message)s", use_colour=use_colour))
    events.addHandler(handler)
    events.setLevel(logging.INFO)
    events.propagate = False


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Fire time-windowed orders for one or more accounts.")
    parser.add_argument("--config", default=None, help="Accounts file (YAML or JSON). Default: config/accounts.yaml")
    parser.add_argument("--log-dir", default=None, help="Directory for the run's event log file.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        run_config = load_config(args.config)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Could not load configuration: {e}")
        raise SystemExit(EXIT_FAILED)

    if args.log_dir:
        run_config = replace(run_config, log_dir=args.log_dir)

    result = run_accounts(run_config)
    logger.info(f"Event log written to {result.log_path}")
    raise SystemExit(result.exit_code)


if __name__ == "__main__":
    main()
