"""Typed exception hierarchy for upstream brokerage errors.

Provides structured exceptions for differentiated error handling
(auth errors vs transient network errors vs data issues). Every subtype
is an ``UpstreamError``, which the transaction fetcher retries at chunk
granularity.
"""

import httpx


class UpstreamError(Exception):
    """Base exception for all brokerage API failures.

    Carries the provider name so callers can identify which upstream failed.
    """

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)

    @property
    def retriable(self) -> bool:
        return True


class UpstreamAuthError(UpstreamError):
    """Credentials missing, expired, or invalid (HTTP 401/403)."""

    @property
    def retriable(self) -> bool:
        return False


class UpstreamConnectionError(UpstreamError):
    """Network failures: timeouts, DNS resolution, connection refused.

    Retriable by default.
    """

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        self._retriable = retriable
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        return self._retriable


class UpstreamAPIError(UpstreamError):
    """HTTP 4xx/5xx responses from the brokerage API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class UpstreamDataError(UpstreamError):
    """Malformed or unparseable response from the brokerage API."""

    @property
    def retriable(self) -> bool:
        return False


# Raised by clients that do not wrap their transport errors.
UPSTREAM_FAILURES = (UpstreamError, httpx.HTTPError, ConnectionError, TimeoutError)
