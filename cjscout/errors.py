"""Exceptions raised by the discovery pipeline."""

from __future__ import annotations


class CJError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(CJError):
    """Missing or unusable credentials. Aborts the run."""


class UpstreamError(CJError):
    """Transient upstream failure: timeout, 5xx, malformed payload."""

    def __init__(self, message: str, status_code: int = 0, code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class AuthenticationError(UpstreamError):
    """Access token rejected by the upstream."""


class RateLimitError(UpstreamError):
    """Upstream reported a QPS / rate-limit violation."""


class RateLimitTimeout(CJError):
    """RateLimiter.acquire gave up before a slot was free."""

