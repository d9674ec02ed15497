from __future__ import annotations

import pytest

from ashara.security import authorization_header, parse_retry_after, sanitize_headers, validate_base_url


@pytest.mark.parametrize(
    ("token", "expected"),
    [("abc", "Bot abc"), ("Bot abc", "Bot abc"), ("Bearer xyz", "Bearer xyz"), ("  abc ", "Bot abc")],
)
def test_authorization_header(token: str, expected: str) -> None:
    assert authorization_header(token) == expected


def test_parse_retry_after_prefers_retry_after_header() -> None:
    assert parse_retry_after({"Retry-After": "3", "X-RateLimit-Reset-After": "1.5"}) == 3.0
    assert parse_retry_after({"X-RateLimit-Reset-After": "1.5"}) == 1.5


@pytest.mark.parametrize("raw", ["soon", "inf", "nan"])
def test_parse_retry_after_ignores_unusable_values(raw: str) -> None:
    assert parse_retry_after({"Retry-After": raw}) is None


def test_parse_retry_after_clamps_negative_values() -> None:
    assert parse_retry_after({"Retry-After": "-4"}) == 0.0


def test_sanitize_headers_redacts_credentials() -> None:
    headers = {"Authorization": "Bot secret", "User-Agent": "DiscordBot"}

    assert sanitize_headers(headers) == {"Authorization": "[REDACTED]", "User-Agent": "DiscordBot"}


@pytest.mark.parametrize(
    "url",
    ["discord.com/api", "ftp://discord.com/api", "http://discord.com/api", "https://discord.com/\x00"],
)
def test_validate_base_url_rejects_unsafe_urls(url: str) -> None:
    with pytest.raises(ValueError):
        validate_base_url(url)


def test_validate_base_url_allows_local_http() -> None:
    validate_base_url("http://localhost:8080/api")
    validate_base_url("http://discord.test/api", allow_http=True)
