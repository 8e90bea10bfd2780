import pytest

from orderwindow.domain.errors import ConfigInvalid, InvalidTimeFormat
from orderwindow.domain.models import TimeOfDay
from orderwindow.utils.account_config import normalise_account, validate_account


def test_validate_accepts_consistent_account(make_account):
    cfg = validate_account(make_account())
    assert cfg.quantity == 10
    assert cfg.total_cost == 10_000
    assert cfg.start_time == TimeOfDay(10, 0, 0, 0)
    assert cfg.market_time_url is None


def test_validate_accepts_legacy_upper_case_keys():
    raw = {
        "USER_NAME": "bob",
        "PASS_WORD": "pw",
        "LOGIN_URL": "https://broker.test/login",
        "ORDER_URL": "https://broker.test/order",
        "ISIN": "IRO1TEST0001",
        "QUANTITY": "5",
        "PRICE": "2000",
        "ORDER_SIDE": "2",
        "REQUEST_INTERVAL": "250",
        "ORDER_START_TIME": "08.45.00.000",
        "ORDER_STOP_TIME": "084502000",
        "MAX_QUANTITY": "10",
        "MIN_TOTAL_COST": "10000",
    }
    cfg = validate_account(raw)
    assert cfg.username == "bob"
    assert cfg.order_side == 2
    assert cfg.request_interval_ms == 250
    assert cfg.stop_time == TimeOfDay(8, 45, 2, 0)


@pytest.mark.parametrize(
    "quantity,price,max_quantity,min_total_cost",
    [(10, 1000, 10, 10_000), (1, 5000, 1, 5000), (50, 200, 100, 0)],
)
def test_validate_accepts_boundary_values(make_account, quantity, price, max_quantity, min_total_cost):
    raw = make_account(quantity=quantity, price=price, max_quantity=max_quantity, min_total_cost=min_total_cost)
    assert validate_account(raw).quantity == quantity


def test_validate_rejects_quantity_above_maximum(make_account):
    with pytest.raises(ConfigInvalid, match=r"Quantity exceeds maximum allowed"):
        validate_account(make_account(quantity=101))


def test_validate_rejects_total_cost_below_minimum(make_account):
    with pytest.raises(ConfigInvalid, match=r"Total cost below minimum required"):
        validate_account(make_account(quantity=4, price=1000, min_total_cost=5000))


def test_validate_reports_missing_field(make_account):
    raw = make_account()
    del raw["order_url"]
    with pytest.raises(ConfigInvalid, match=r"Missing order_url"):
        validate_account(raw)


@pytest.mark.parametrize("interval", [0, -100])
def test_validate_rejects_non_positive_interval(make_account, interval):
    with pytest.raises(ConfigInvalid, match=r"request_interval_ms"):
        validate_account(make_account(request_interval_ms=interval))


def test_validate_rejects_non_integer_values(make_account):
    with pytest.raises(ConfigInvalid, match=r"price must be an integer"):
        validate_account(make_account(price="12.5"))


def test_validate_rejects_bad_start_time(make_account):
    with pytest.raises(InvalidTimeFormat):
        validate_account(make_account(start_time="25.00.00.000"))


def test_normalise_prefers_snake_case_and_drops_unknown_keys():
    out = normalise_account({"username": "a", "USER_NAME": "b", "colour": "blue"})
    assert out == {"username": "a"}
