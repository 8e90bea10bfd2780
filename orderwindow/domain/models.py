from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Broker-defined marker for a day order; validity date is always null for it.
VALIDITY_TYPE_DAY = 1


def format_clock(dt: datetime) -> str:
    """HH:MM:SS.mmm"""
    return dt.strftime("%H:%M:%S.") + f"{dt.microsecond // 1000:03d}"


class SessionStatus(str, Enum):
    INITIALIZING = "Initializing"
    AUTHENTICATED = "Authenticated"
    WAITING = "Waiting"
    TRADING = "Trading"
    STOPPED = "Stopped"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.STOPPED, SessionStatus.FAILED)


class EventLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TimeOfDay:
    hours: int
    minutes: int
    seconds: int
    milliseconds: int

    def format(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}:{self.seconds:02d}.{self.milliseconds:03d}"


@dataclass(frozen=True)
class OrderSpec:
    instrument_id: str
    quantity: int
    price: int
    order_side: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "isin": self.instrument_id,
            "quantity": int(self.quantity),
            "price": int(self.price),
            "validityType": VALIDITY_TYPE_DAY,
            "validityDate": None,
            "orderSide": int(self.order_side),
        }


@dataclass(frozen=True)
class AccountConfig:
    username: str
    password: str
    login_url: str
    order_url: str
    instrument_id: str
    quantity: int
    price: int
    order_side: int
    request_interval_ms: int
    start_time: TimeOfDay
    stop_time: TimeOfDay
    max_quantity: int
    min_total_cost: int
    market_time_url: str | None = None

    @property
    def total_cost(self) -> int:
        return self.quantity * self.price

    def order_spec(self) -> OrderSpec:
        return OrderSpec(
            instrument_id=self.instrument_id,
            quantity=self.quantity,
            price=self.price,
            order_side=self.order_side,
        )

    def to_dict(self) -> dict[str, Any]:
        # Never includes the password.
        return {
            "username": self.username,
            "login_url": self.login_url,
            "order_url": self.order_url,
            "market_time_url": self.market_time_url,
            "instrument_id": self.instrument_id,
            "quantity": self.quantity,
            "price": self.price,
            "order_side": self.order_side,
            "request_interval_ms": self.request_interval_ms,
            "start_time": self.start_time.format(),
            "stop_time": self.stop_time.format(),
            "max_quantity": self.max_quantity,
            "min_total_cost": self.min_total_cost,
        }


@dataclass(frozen=True)
class LogEvent:
    timestamp: datetime
    level: EventLevel
    account_key: str | None
    message: str

    def format(self) -> str:
        parts = [f"[{format_clock(self.timestamp)}]", f"[{self.level.value.upper()}]"]
        if self.account_key:
            parts.append(f"[{self.account_key}]")
        parts.append(self.message)
        return " ".join(parts)


@dataclass
class Session:
    """Runtime state of one account's run. Owned by a single scheduler."""

    account_key: str
    config: AccountConfig | None = None
    auth_token: str | None = None
    status: SessionStatus = SessionStatus.INITIALIZING
    order_counter: int = 0
    interrupted: bool = False
    history: list[SessionStatus] = field(default_factory=lambda: [SessionStatus.INITIALIZING])

    def transition(self, status: SessionStatus) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"Session {self.account_key} already terminal ({self.status.value})")
        self.status = status
        self.history.append(status)
