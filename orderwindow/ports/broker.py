from __future__ import annotations

from typing import Any, Protocol

from orderwindow.domain.models import OrderSpec


class AuthPort(Protocol):
    def login(self, login_url: str, username: str, password: str) -> str: ...


class OrderPort(Protocol):
    def submit(self, order_url: str, token: str, order: OrderSpec) -> Any: ...


class MarketTimePort(Protocol):
    def fetch_epoch_millis(self, market_time_url: str) -> int: ...
