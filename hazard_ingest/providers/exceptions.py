"""Custom exceptions for provider and pipeline failures."""

from __future__ import annotations


class IngestError(Exception):
    """Base exception for anticipated ingestion failures."""


class FetchError(IngestError):
    """Raised when an outbound HTTP request cannot produce a 2xx response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        last_error: str | None = None,
        attempts: int = 0,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.last_error = last_error
        self.attempts = attempts


class NetworkError(FetchError):
    """Raised when connection errors or timeouts exhaust the attempt budget."""


class RateLimited(FetchError):
    """Raised when the provider keeps answering 429 until attempts run out."""


class ServerError(FetchError):
    """Raised when 5xx responses exhaust the attempt budget."""


class ClientError(FetchError):
    """Raised on a non-429 4xx response; never retried."""


class ResponseParseError(IngestError):
    """Raised when a provider payload does not match its expected schema."""


class PartialDataError(IngestError):
    """Raised when a paginated fetch fails before yielding any data."""
