"""Helpers for base URL validation, credentials and rate-limit headers."""

from __future__ import annotations

import math
from typing import Mapping
from urllib.parse import urlparse

SENSITIVE_HEADERS = {"authorization", "x-audit-log-reason"}
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}
TOKEN_PREFIXES = ("Bot ", "Bearer ")
RETRY_AFTER_HEADERS = ("Retry-After", "X-RateLimit-Reset-After")


def sanitize_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return headers with sensitive values redacted for logging."""
    return {key: "[REDACTED]" if key.lower() in SENSITIVE_HEADERS else value for key, value in headers.items()}


def validate_base_url(url: str, *, allow_http: bool = False) -> None:
    """Reject base URLs without a host, with odd schemes, or plain HTTP to a remote host."""
    if "\x00" in url:
        raise ValueError("Invalid base_url")
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError("base_url must include scheme and host")
    if parsed.scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported base_url scheme: {parsed.scheme}")
    if parsed.scheme == "http" and not allow_http and (parsed.hostname or "").lower() not in LOCAL_HOSTS:
        raise ValueError("Non-HTTPS base_url is not allowed without allow_http=True")


def authorization_header(token: str) -> str:
    """Prefix a raw bot token with ``Bot `` unless it already carries a scheme."""
    token = token.strip()
    if token.startswith(TOKEN_PREFIXES):
        return token
    return f"Bot {token}"


def parse_retry_after(headers: Mapping[str, str]) -> float | None:
    """Read a delay in seconds from the rate-limit headers, if any."""
    for name in RETRY_AFTER_HEADERS:
        raw = headers.get(name)
        if raw is None:
            continue
        try:
            value = float(raw.strip())
        except ValueError:
            continue
        if math.isfinite(value):
            return max(0.0, value)
    return None
