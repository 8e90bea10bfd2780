from __future__ import annotations


class OrderWindowError(Exception):
    """Base class for all scheduling/execution failures."""


class ConfigInvalid(OrderWindowError):
    """Raised when an account's settings are missing or inconsistent."""


class InvalidTimeFormat(OrderWindowError):
    """Raised when a start/stop time-of-day cannot be parsed."""


class _CausedError(OrderWindowError):
    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class AuthenticationFailed(_CausedError):
    """Login call failed or returned a body without an access token."""


class OrderSubmissionFailed(_CausedError):
    """A single order call failed. Recovered locally by the scheduler."""


class MarketTimeUnavailable(_CausedError):
    """The remote market time could not be fetched for one polling cycle."""
