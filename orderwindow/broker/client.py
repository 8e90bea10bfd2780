import logging
from typing import Any

import requests

from orderwindow.domain.errors import AuthenticationFailed, MarketTimeUnavailable, OrderSubmissionFailed
from orderwindow.domain.models import OrderSpec

logger = logging.getLogger(__name__)

# Request timeout in seconds
HTTP_REQUEST_TIMEOUT = 10.0


def describe_error(exc: BaseException) -> str:
    """
    Prefer the broker's own `message` field from an error body, else the exception text.
    """
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
    return str(exc) or type(exc).__name__


class BrokerHttp:
    """
    Shared `requests.Session` wrapper for the broker's REST endpoints.
    One instance per account so connection pools are never shared across sessions.
    """

    def __init__(self, session: requests.Session | None = None, timeout: float = HTTP_REQUEST_TIMEOUT):
        self.session = session or requests.Session()
        self.session.headers.setdefault("Content-Type", "application/json")
        self.timeout = float(timeout)

    def post_json(self, url: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
        resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_json(self, url: str) -> Any:
        resp = self.session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def close(self) -> None:
        self.session.close()


class AuthClient:
    def __init__(self, http: BrokerHttp):
        self.http = http

    def login(self, login_url: str, username: str, password: str) -> str:
        """
        Exchange credentials for a bearer token (`data.accessToken`).

        Single attempt; any failure raises AuthenticationFailed.
        """
        try:
            body = self.http.post_json(login_url, {"username": username, "password": password})
        except (requests.RequestException, ValueError) as e:
            raise AuthenticationFailed(f"Authentication failed: {describe_error(e)}", cause=e) from e

        token = None
        if isinstance(body, dict):
            data = body.get("data")
            if isinstance(data, dict):
                token = data.get("accessToken")
        if not token or not isinstance(token, str):
            raise AuthenticationFailed("Authentication failed: response has no data.accessToken")
        logger.debug(f"Obtained access token for {username}")
        return token


class OrderClient:
    def __init__(self, http: BrokerHttp):
        self.http = http

    def submit(self, order_url: str, token: str, order: OrderSpec) -> Any:
        """Send one order. Returns the broker's response body."""
        try:
            return self.http.post_json(
                order_url,
                order.to_payload(),
                headers={"Authorization": f"Bearer {token}"},
            )
        except (requests.RequestException, ValueError) as e:
            raise OrderSubmissionFailed(f"Order failed: {describe_error(e)}", cause=e) from e


class MarketTimeClient:
    def __init__(self, http: BrokerHttp):
        self.http = http

    def fetch_epoch_millis(self, market_time_url: str) -> int:
        """Read the broker's market clock (`data.time`, epoch milliseconds)."""
        try:
            body = self.http.get_json(market_time_url)
        except (requests.RequestException, ValueError) as e:
            raise MarketTimeUnavailable(f"Market time unavailable: {describe_error(e)}", cause=e) from e
        try:
            return int(body["data"]["time"])
        except (KeyError, TypeError, ValueError) as e:
            raise MarketTimeUnavailable("Market time unavailable: response has no data.time", cause=e) from e
