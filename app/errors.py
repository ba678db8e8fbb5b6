"""Exception hierarchy for kino.pub interactions."""

from __future__ import annotations


class KinoPubError(RuntimeError):
    """Base error raised for failed kino.pub requests."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 0,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthFailure(KinoPubError):
    """Credentials are missing, expired, or were rejected.

    Terminal until the device flow is completed again.
    """

    def __init__(self, message: str, *, error_code: str | None = None) -> None:
        super().__init__(message, status_code=401, error_code=error_code)


class RateLimited(KinoPubError):
    """The service kept answering 429 after every retry."""


class ServerError(KinoPubError):
    """The service kept answering 5xx after every retry."""


class NetworkError(KinoPubError):
    """The request never produced a response (timeout, DNS, reset)."""


class ApiError(KinoPubError):
    """A non-retryable 4xx answer or a malformed response body."""


class InputValidationError(ValueError):
    """A suggestion line or user rating could not be accepted."""
