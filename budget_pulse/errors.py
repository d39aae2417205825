"""Error kinds raised by the Budget Pulse pipeline."""

from __future__ import annotations

from typing import Any, Optional


class BudgetPulseError(Exception):
    """Base class for every error raised by this package."""


class NetworkFailure(BudgetPulseError):
    """Transport-level failure talking to the Budget API."""


class RequestTimeout(NetworkFailure):
    """The request exceeded its time bound."""


class UpstreamError(BudgetPulseError):
    """The Budget API answered with a non-2xx status."""

    def __init__(self, status: int, body: Any = None, url: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        self.url = url
        message = f"Budget API returned HTTP {status}"
        if url:
            message = f"{message} for {url}"
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429


class ParseFailure(BudgetPulseError, ValueError):
    """A response body did not have the expected shape."""


class AggregationError(BudgetPulseError):
    """The aggregation pass could not produce a progress list."""
