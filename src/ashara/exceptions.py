"""Exceptions raised by the ashara REST pipeline."""

from __future__ import annotations

from typing import Any, Mapping


class AsharaError(Exception):
    """Base exception for all ashara failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: int | str | None = None,
        body: object = None,
        headers: Mapping[str, str] | None = None,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.body = body
        self.headers = dict(headers) if headers is not None else {}
        self.retry_after = retry_after
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.status_code is None or self.error_code is None:
            return str(self.args[0])
        return f"{self.args[0]} (code {self.error_code})"


class AsharaValidationError(AsharaError):
    """Raised for invalid client configuration, routes or options."""


class AsharaEncodingError(AsharaError):
    """Raised when a payload or attachment cannot be turned into request bytes."""


class AsharaAttachmentError(AsharaEncodingError):
    """Raised when the metadata of an attachment cannot be read."""

    def __init__(self, message: str, *, index: int, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.index = index


class AsharaTransportError(AsharaError):
    """Raised for transport-level failures like DNS, TCP and TLS errors."""


class AsharaTimeoutError(AsharaTransportError):
    """Raised when an attempt or a whole call exceeds its timeout."""


class AsharaHTTPError(AsharaError):
    """Raised for non-success responses the API will not change its mind about."""


class AsharaAuthError(AsharaHTTPError):
    """Raised for authentication and authorization failures."""


class AsharaRateLimitError(AsharaHTTPError):
    """Describes an HTTP 429 response.

    Rate limits are absorbed by the retry loop, so this only reaches callers
    as the cause of :class:`AsharaRetriesExhaustedError`.
    """

    def __init__(self, message: str, *, is_global: bool = False, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.is_global = is_global


class AsharaRetriesExhaustedError(AsharaError):
    """Raised when every attempt of a request ended in a retryable failure."""

    def __init__(self, message: str, *, attempts: int, cause: BaseException | None = None) -> None:
        super().__init__(message, cause=cause)
        self.attempts = attempts


class AsharaCancelledError(AsharaError):
    """Raised when the caller's cancel event fires before the request finished."""
