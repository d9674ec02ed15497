"""Synchronous and asynchronous REST clients for the Discord HTTP API."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from typing import Any, BinaryIO, Mapping, Sequence

import httpx
from pydantic import ValidationError

from .buffers import MIN_SIZE_CLASS, BufferPool
from .exceptions import (
    AsharaAuthError,
    AsharaCancelledError,
    AsharaHTTPError,
    AsharaRateLimitError,
    AsharaRetriesExhaustedError,
    AsharaTimeoutError,
    AsharaTransportError,
    AsharaValidationError,
)
from .gate import AsyncRateGate, RateGate
from .models import ErrorResponse, RateLimitResponse
from .outcomes import AttemptOutcome, RetryableFailure, Success, SuccessEmpty, TerminalFailure
from .payload import EncodedBody, FileAttachment, PayloadCodec
from .request_options import Request, RequestOptions
from .security import authorization_header, parse_retry_after, sanitize_headers, validate_base_url

VERSION = "0.1.0"
DEFAULT_API_URL = "https://discord.com/api/v10"
USER_AGENT = f"DiscordBot (ashara, {VERSION})"
HTTP_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"})

logger = logging.getLogger(__name__)


def _normalize_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {str(key): str(value) for key, value in headers.items()}


def _decode_body(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


class _BaseRestClient:
    default_base_url = DEFAULT_API_URL
    default_timeout = 3.0
    default_max_attempts = 3
    default_rate_limit_margin = 5.0
    retry_unit = 0.00025

    def __init__(
        self,
        *,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = default_timeout,
        max_attempts: int = default_max_attempts,
        rate_limit_margin: float = default_rate_limit_margin,
        headers: Mapping[str, str] | None = None,
        follow_redirects: bool = True,
        allow_http: bool = False,
        json_buffer_size: int = MIN_SIZE_CLASS,
        token_env_var: str = "ASHARA_BOT_TOKEN",
        base_url_env_var: str = "ASHARA_API_BASE_URL",
    ) -> None:
        self.base_url = (base_url or os.getenv(base_url_env_var) or self.default_base_url).rstrip("/")
        try:
            validate_base_url(self.base_url, allow_http=allow_http)
        except ValueError as exc:
            raise AsharaValidationError(str(exc), cause=exc) from exc

        token = token or os.getenv(token_env_var)
        if not token:
            raise AsharaValidationError(f"a bot token is required (pass token= or set {token_env_var})")
        if timeout <= 0:
            raise AsharaValidationError("timeout must be greater than 0")
        if max_attempts < 1:
            raise AsharaValidationError("max_attempts must be at least 1")
        if rate_limit_margin < 0:
            raise AsharaValidationError("rate_limit_margin must be non-negative")

        self.timeout = float(timeout)
        self.max_attempts = int(max_attempts)
        self.rate_limit_margin = float(rate_limit_margin)
        self.codec = PayloadCodec(BufferPool(min_size=max(json_buffer_size, MIN_SIZE_CLASS)))
        self._default_headers = {
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "Authorization": authorization_header(token),
        }
        if headers:
            self._default_headers.update(_normalize_headers(headers))

        self._client_kwargs = {
            "base_url": self.base_url,
            "timeout": httpx.Timeout(self.timeout),
            "follow_redirects": follow_redirects,
            "trust_env": False,
        }

    @staticmethod
    def _path(route: str) -> str:
        if "://" in route:
            raise AsharaValidationError("Full URLs are not allowed as a route")
        if not route.startswith("/"):
            raise AsharaValidationError("Route must be absolute and start with '/'")
        if "\x00" in route:
            raise AsharaValidationError("Invalid route characters")
        return route

    def _build_request(
        self,
        method: str,
        route: str,
        payload: Any,
        files: Sequence[FileAttachment | BinaryIO] | None,
    ) -> Request:
        method = method.upper()
        if method not in HTTP_METHODS:
            raise AsharaValidationError(f"Unsupported HTTP method: {method}")
        return Request(method=method, route=self._path(route), payload=payload, files=tuple(files or ()))

    def _headers(self, request_options: RequestOptions, body: EncodedBody) -> dict[str, str]:
        merged = dict(self._default_headers)
        if body.content_type:
            merged["Content-Type"] = body.content_type
        if request_options.headers:
            merged.update(_normalize_headers(request_options.headers))
        return merged

    def _attempt_timeout(self, request_options: RequestOptions) -> float:
        timeout = request_options.timeout if request_options.timeout is not None else self.timeout
        if timeout <= 0:
            raise AsharaValidationError("timeout must be greater than 0")
        return float(timeout)

    def _max_attempts(self, request_options: RequestOptions) -> int:
        attempts = request_options.max_attempts if request_options.max_attempts is not None else self.max_attempts
        if attempts < 1:
            raise AsharaValidationError("max_attempts must be at least 1")
        return int(attempts)

    def _backoff_delay(self, attempt: int) -> float:
        return self.retry_unit * attempt

    def _log_attempt(self, request: Request, attempt: int, headers: Mapping[str, str]) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s %s attempt %d headers=%s",
                request.method,
                request.route,
                attempt,
                sanitize_headers(headers),
            )

    @staticmethod
    def _transport_failure(request: Request, exc: httpx.TransportError) -> RetryableFailure:
        if isinstance(exc, httpx.TimeoutException):
            error: AsharaTransportError = AsharaTimeoutError("Request timed out", cause=exc)
        else:
            error = AsharaTransportError(f"Failed to process request: {exc}", cause=exc)
        logger.debug("%s %s failed in transport: %r", request.method, request.route, exc)
        return RetryableFailure(str(error), error)

    @staticmethod
    def _redirect_failure(request: Request, exc: httpx.TooManyRedirects) -> TerminalFailure:
        logger.debug("%s %s redirected too many times: %r", request.method, request.route, exc)
        return TerminalFailure(AsharaHTTPError(f"Redirect limit exceeded for {request.route}: {exc}", cause=exc))

    @staticmethod
    def _build_failure(request: Request, exc: Exception) -> RetryableFailure:
        logger.debug("%s %s could not be built: %r", request.method, request.route, exc)
        error = AsharaTransportError(f"Failed to initialize request: {exc}", cause=exc)
        return RetryableFailure(str(error), error)

    @staticmethod
    def _read_failure(response: httpx.Response, exc: httpx.HTTPError) -> TerminalFailure:
        return TerminalFailure(
            AsharaTransportError(
                f"Failed to read response body: {exc}",
                status_code=response.status_code,
                headers=response.headers,
                cause=exc,
            )
        )

    def _rate_limit(self, response: httpx.Response, content: bytes) -> tuple[float, AsharaRateLimitError]:
        """Return how long to close the gate and the error describing this 429."""
        try:
            parsed = RateLimitResponse.model_validate_json(content)
        except ValidationError:
            parsed = RateLimitResponse()
        if "retry_after" not in parsed.model_fields_set:
            parsed = parsed.model_copy(update={"retry_after": parse_retry_after(response.headers) or 0.0})
        error = AsharaRateLimitError(
            parsed.message or "Rate limited",
            status_code=response.status_code,
            body=content,
            headers=response.headers,
            retry_after=parsed.retry_after,
            is_global=parsed.is_global,
        )
        return parsed.retry_after + self.rate_limit_margin, error

    @staticmethod
    def _classify(response: httpx.Response, content: bytes) -> AttemptOutcome:
        if response.is_success:
            return Success(content)

        status_line = f"{response.status_code} {response.reason_phrase}".strip()
        error_code = None
        try:
            error_code = ErrorResponse.model_validate_json(content).code
        except ValidationError:
            pass

        error_cls = AsharaAuthError if response.status_code in {401, 403} else AsharaHTTPError
        return TerminalFailure(
            error_cls(
                f"{status_line} :: {_decode_body(content)}",
                status_code=response.status_code,
                error_code=error_code,
                body=content,
                headers=response.headers,
            )
        )

    def _exhausted(self, request: Request, attempts: int, failure: RetryableFailure) -> AsharaRetriesExhaustedError:
        logger.warning(
            "%s %s failed after %d attempts: %s",
            request.method,
            request.route,
            attempts,
            failure.reason,
        )
        return AsharaRetriesExhaustedError(
            f"Failed to make http request in set limit of attempts to {request.method} :: {request.route} "
            "(check internet connection and/or app credentials)",
            attempts=attempts,
            cause=failure.error,
        )


class RestClient(_BaseRestClient):
    """Synchronous client; safe to share between threads."""

    def __init__(
        self,
        *,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = _BaseRestClient.default_timeout,
        max_attempts: int = _BaseRestClient.default_max_attempts,
        rate_limit_margin: float = _BaseRestClient.default_rate_limit_margin,
        headers: Mapping[str, str] | None = None,
        follow_redirects: bool = True,
        allow_http: bool = False,
        json_buffer_size: int = MIN_SIZE_CLASS,
        httpx_client: httpx.Client | None = None,
        rate_gate: RateGate | None = None,
    ) -> None:
        super().__init__(
            token=token,
            base_url=base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            rate_limit_margin=rate_limit_margin,
            headers=headers,
            follow_redirects=follow_redirects,
            allow_http=allow_http,
            json_buffer_size=json_buffer_size,
        )
        self._httpx = httpx_client or httpx.Client(**self._client_kwargs)
        self.rate_gate = rate_gate or RateGate()

    def __enter__(self) -> "RestClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._httpx.close()

    def execute(
        self,
        method: str,
        route: str,
        payload: Any = None,
        files: Sequence[FileAttachment | BinaryIO] | None = None,
        *,
        options: RequestOptions | None = None,
    ) -> bytes:
        """Send a request and return the response body (``b""`` for 204).

        Transport failures and rate limits are retried; any other non-2xx
        response raises immediately.
        """
        request_options = options or RequestOptions()
        request = self._build_request(method, route, payload, files)
        body = self.codec.encode(request.payload, request.files)
        headers = self._headers(request_options, body)
        timeout = self._attempt_timeout(request_options)
        max_attempts = self._max_attempts(request_options)
        cancel_event = request_options.cancel_event

        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise AsharaCancelledError(f"Request to {request.method} :: {request.route} cancelled")
            self.rate_gate.wait(cancel_event)
            self._log_attempt(request, attempt + 1, headers)

            outcome = self._attempt(request, body, headers, timeout, cancel_event)
            if isinstance(outcome, (Success, SuccessEmpty)):
                return outcome.body
            if isinstance(outcome, TerminalFailure):
                raise outcome.error

            attempt += 1
            if attempt >= max_attempts:
                raise self._exhausted(request, attempt, outcome)
            delay = self._backoff_delay(attempt)
            logger.debug("Retrying %s %s in %.6fs: %s", request.method, request.route, delay, outcome.reason)
            if cancel_event is None:
                time.sleep(delay)
            elif cancel_event.wait(delay):
                raise AsharaCancelledError(f"Request to {request.method} :: {request.route} cancelled")

    def _attempt(
        self,
        request: Request,
        body: EncodedBody,
        headers: Mapping[str, str],
        timeout: float,
        cancel_event: threading.Event | None = None,
    ) -> AttemptOutcome:
        try:
            http_request = self._httpx.build_request(
                request.method,
                request.route,
                content=body.content or None,
                headers=headers,
                timeout=timeout,
            )
        except (httpx.InvalidURL, ValueError, TypeError) as exc:
            return self._build_failure(request, exc)

        try:
            response = self._httpx.send(http_request, stream=True)
        except httpx.TransportError as exc:
            return self._transport_failure(request, exc)
        except httpx.TooManyRedirects as exc:
            return self._redirect_failure(request, exc)

        try:
            if response.status_code == 204:
                return SuccessEmpty()
            content = response.read()
        except httpx.HTTPError as exc:
            return self._read_failure(response, exc)
        finally:
            response.close()

        if response.status_code == 429:
            delay, error = self._rate_limit(response, content)
            self.rate_gate.mark_unavailable(delay)
            self.rate_gate.wait(cancel_event)
            return RetryableFailure("rate limit", error)
        return self._classify(response, content)

    def ping(self, *, options: RequestOptions | None = None) -> float:
        """Return the seconds it took the API to answer ``GET /gateway``."""
        start = time.perf_counter()
        self.execute("GET", "/gateway", options=options)
        return time.perf_counter() - start


class AsyncRestClient(_BaseRestClient):
    """Asynchronous client; share one instance between tasks."""

    def __init__(
        self,
        *,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = _BaseRestClient.default_timeout,
        max_attempts: int = _BaseRestClient.default_max_attempts,
        rate_limit_margin: float = _BaseRestClient.default_rate_limit_margin,
        headers: Mapping[str, str] | None = None,
        follow_redirects: bool = True,
        allow_http: bool = False,
        json_buffer_size: int = MIN_SIZE_CLASS,
        httpx_client: httpx.AsyncClient | None = None,
        rate_gate: AsyncRateGate | None = None,
    ) -> None:
        super().__init__(
            token=token,
            base_url=base_url,
            timeout=timeout,
            max_attempts=max_attempts,
            rate_limit_margin=rate_limit_margin,
            headers=headers,
            follow_redirects=follow_redirects,
            allow_http=allow_http,
            json_buffer_size=json_buffer_size,
        )
        self._httpx = httpx_client or httpx.AsyncClient(**self._client_kwargs)
        self.rate_gate = rate_gate or AsyncRateGate()

    async def __aenter__(self) -> "AsyncRestClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._httpx.aclose()

    async def execute(
        self,
        method: str,
        route: str,
        payload: Any = None,
        files: Sequence[FileAttachment | BinaryIO] | None = None,
        *,
        options: RequestOptions | None = None,
    ) -> bytes:
        request_options = options or RequestOptions()
        request = self._build_request(method, route, payload, files)
        body = self.codec.encode(request.payload, request.files)
        headers = self._headers(request_options, body)
        timeout = self._attempt_timeout(request_options)
        max_attempts = self._max_attempts(request_options)

        if request_options.total_timeout is None:
            return await self._execute(request, body, headers, timeout, max_attempts)
        if request_options.total_timeout <= 0:
            raise AsharaValidationError("total_timeout must be greater than 0")
        try:
            return await asyncio.wait_for(
                self._execute(request, body, headers, timeout, max_attempts),
                request_options.total_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise AsharaTimeoutError(
                f"Request to {request.method} :: {request.route} did not finish "
                f"within {request_options.total_timeout}s",
                cause=exc,
            ) from exc

    async def _execute(
        self,
        request: Request,
        body: EncodedBody,
        headers: Mapping[str, str],
        timeout: float,
        max_attempts: int,
    ) -> bytes:
        attempt = 0
        while True:
            await self.rate_gate.wait()
            self._log_attempt(request, attempt + 1, headers)

            outcome = await self._attempt(request, body, headers, timeout)
            if isinstance(outcome, (Success, SuccessEmpty)):
                return outcome.body
            if isinstance(outcome, TerminalFailure):
                raise outcome.error

            attempt += 1
            if attempt >= max_attempts:
                raise self._exhausted(request, attempt, outcome)
            delay = self._backoff_delay(attempt)
            logger.debug("Retrying %s %s in %.6fs: %s", request.method, request.route, delay, outcome.reason)
            await asyncio.sleep(delay)

    async def _attempt(
        self,
        request: Request,
        body: EncodedBody,
        headers: Mapping[str, str],
        timeout: float,
    ) -> AttemptOutcome:
        try:
            http_request = self._httpx.build_request(
                request.method,
                request.route,
                content=body.content or None,
                headers=headers,
                timeout=timeout,
            )
        except (httpx.InvalidURL, ValueError, TypeError) as exc:
            return self._build_failure(request, exc)

        try:
            response = await self._httpx.send(http_request, stream=True)
        except httpx.TransportError as exc:
            return self._transport_failure(request, exc)
        except httpx.TooManyRedirects as exc:
            return self._redirect_failure(request, exc)

        try:
            if response.status_code == 204:
                return SuccessEmpty()
            content = await response.aread()
        except httpx.HTTPError as exc:
            return self._read_failure(response, exc)
        finally:
            await response.aclose()

        if response.status_code == 429:
            delay, error = self._rate_limit(response, content)
            self.rate_gate.mark_unavailable(delay)
            await self.rate_gate.wait()
            return RetryableFailure("rate limit", error)
        return self._classify(response, content)

    async def ping(self, *, options: RequestOptions | None = None) -> float:
        start = time.perf_counter()
        await self.execute("GET", "/gateway", options=options)
        return time.perf_counter() - start

