from __future__ import annotations

from typing import Any, Mapping

from orderwindow.domain.errors import ConfigInvalid
from orderwindow.domain.models import AccountConfig
from orderwindow.domain.time_window import parse_time_of_day

# Canonical field -> accepted keys (snake_case first, then the legacy env/users.json names).
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "username": ("username", "USER_NAME"),
    "password": ("password", "PASS_WORD"),
    "login_url": ("login_url", "LOGIN_URL"),
    "order_url": ("order_url", "ORDER_URL"),
    "market_time_url": ("market_time_url", "MARKET_TIME_URL"),
    "instrument_id": ("instrument_id", "isin", "ISIN"),
    "quantity": ("quantity", "QUANTITY"),
    "price": ("price", "PRICE"),
    "order_side": ("order_side", "ORDER_SIDE"),
    "request_interval_ms": ("request_interval_ms", "REQUEST_INTERVAL"),
    "start_time": ("start_time", "ORDER_START_TIME"),
    "stop_time": ("stop_time", "ORDER_STOP_TIME"),
    "max_quantity": ("max_quantity", "MAX_QUANTITY"),
    "min_total_cost": ("min_total_cost", "MIN_TOTAL_COST"),
}

REQUIRED_FIELDS = [
    "username",
    "password",
    "request_interval_ms",
    "instrument_id",
    "quantity",
    "price",
    "order_side",
    "start_time",
    "stop_time",
    "login_url",
    "order_url",
    "max_quantity",
    "min_total_cost",
]

_INT_FIELDS = ["quantity", "price", "order_side", "request_interval_ms", "max_quantity", "min_total_cost"]


def normalise_account(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    """Map alias keys onto canonical field names. Unknown keys are dropped."""
    out: dict[str, Any] = {}
    if not raw:
        return out
    for canonical, aliases in FIELD_ALIASES.items():
        for key in aliases:
            if key in raw and raw[key] is not None and raw[key] != "":
                out[canonical] = raw[key]
                break
    return out


def _to_int(field: str, v: Any) -> int:
    if isinstance(v, bool):
        raise ConfigInvalid(f"{field} must be an integer; got {v!r}")
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        if not v.is_integer():
            raise ConfigInvalid(f"{field} must be an integer; got {v!r}")
        return int(v)
    try:
        return int(str(v).strip())
    except ValueError as exc:
        raise ConfigInvalid(f"{field} must be an integer; got {v!r}") from exc


def validate_account(raw: Mapping[str, Any] | None) -> AccountConfig:
    """
    Check an account's settings before any network call is made.

    Raises ConfigInvalid for missing/inconsistent values and InvalidTimeFormat
    for unparseable start/stop times.
    """
    values = normalise_account(raw)
    for field in REQUIRED_FIELDS:
        if field not in values:
            raise ConfigInvalid(f"Missing {field}")

    ints = {k: _to_int(k, values[k]) for k in _INT_FIELDS}

    if ints["request_interval_ms"] <= 0:
        raise ConfigInvalid(f"request_interval_ms must be > 0; got {ints['request_interval_ms']}")
    if ints["quantity"] > ints["max_quantity"]:
        raise ConfigInvalid("Quantity exceeds maximum allowed")
    if ints["quantity"] * ints["price"] < ints["min_total_cost"]:
        raise ConfigInvalid("Total cost below minimum required")

    start = parse_time_of_day(values["start_time"])
    stop = parse_time_of_day(values["stop_time"])

    market_time_url = values.get("market_time_url")
    return AccountConfig(
        username=str(values["username"]),
        password=str(values["password"]),
        login_url=str(values["login_url"]),
        order_url=str(values["order_url"]),
        market_time_url=str(market_time_url) if market_time_url else None,
        instrument_id=str(values["instrument_id"]),
        quantity=ints["quantity"],
        price=ints["price"],
        order_side=ints["order_side"],
        request_interval_ms=ints["request_interval_ms"],
        start_time=start,
        stop_time=stop,
        max_quantity=ints["max_quantity"],
        min_total_cost=ints["min_total_cost"],
    )
