from __future__ import annotations

import asyncio
import io

import httpx
import pytest

from ashara.client import AsyncRestClient
from ashara.exceptions import (
    AsharaHTTPError,
    AsharaRateLimitError,
    AsharaRetriesExhaustedError,
    AsharaTimeoutError,
    AsharaValidationError,
)
from ashara.gate import AsyncRateGate
from ashara.payload import FileAttachment
from ashara.request_options import RequestOptions

BASE_URL = "https://api.example.com"


def make_client(handler, **kwargs) -> AsyncRestClient:
    transport = httpx.MockTransport(handler)
    return AsyncRestClient(
        token="secret-token",
        base_url=BASE_URL,
        httpx_client=httpx.AsyncClient(base_url=BASE_URL, transport=transport),
        **kwargs,
    )


def rate_limited(retry_after: float) -> httpx.Response:
    return httpx.Response(429, json={"message": "You are being rate limited.", "retry_after": retry_after, "global": True})


def test_async_execute_returns_body() -> None:
    async def scenario() -> bytes:
        async with make_client(lambda request: httpx.Response(200, content=b'{"id":"1"}')) as client:
            return await client.execute("GET", "/users/1")

    assert asyncio.run(scenario()) == b'{"id":"1"}'


def test_async_no_content_returns_empty_bytes() -> None:
    async def scenario() -> bytes:
        async with make_client(lambda request: httpx.Response(204)) as client:
            return await client.execute("DELETE", "/channels/1/messages/2")

    assert asyncio.run(scenario()) == b""


def test_async_application_error_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, content=b'{"message":"Invalid Form Body","code":50035}')

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.execute("POST", "/channels/1/messages", {"content": ""})

    with pytest.raises(AsharaHTTPError) as exc_info:
        asyncio.run(scenario())

    assert len(calls) == 1
    assert exc_info.value.status_code == 400
    assert exc_info.value.error_code == 50035


def test_async_transport_failures_exhaust_budget() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.execute("GET", "/gateway")

    with pytest.raises(AsharaRetriesExhaustedError) as exc_info:
        asyncio.run(scenario())

    assert len(calls) == 3
    assert exc_info.value.attempts == 3


def test_async_rate_limit_closes_gate_with_margin(clock) -> None:
    gate = AsyncRateGate(clock=clock, sleep=clock.async_sleep)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(clock.now)
        if len(calls) == 1:
            return rate_limited(2.0)
        return httpx.Response(200, content=b"done")

    async def scenario() -> bytes:
        async with make_client(handler, rate_gate=gate) as client:
            return await client.execute("GET", "/gateway")

    assert asyncio.run(scenario()) == b"done"
    assert gate.deadline == pytest.approx(107.0)
    assert clock.sleeps == [pytest.approx(7.0)]
    assert calls[1] >= 107.0


def test_async_repeated_rate_limits_surface_as_exhausted(clock) -> None:
    gate = AsyncRateGate(clock=clock, sleep=clock.async_sleep)

    async def scenario() -> None:
        async with make_client(lambda request: rate_limited(1.0), rate_gate=gate, max_attempts=2) as client:
            await client.execute("GET", "/gateway")

    with pytest.raises(AsharaRetriesExhaustedError) as exc_info:
        asyncio.run(scenario())

    assert isinstance(exc_info.value.cause, AsharaRateLimitError)
    assert exc_info.value.cause.is_global is True
    assert clock.sleeps == [pytest.approx(6.0), pytest.approx(6.0)]


def test_async_concurrent_requests_survive_rate_limit() -> None:
    served: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        first = not served
        served.append(request.url.path)
        if first:
            return rate_limited(0.05)
        return httpx.Response(200, content=request.url.path.encode())

    async def scenario() -> list[bytes]:
        async with make_client(handler, rate_limit_margin=0.0) as client:
            return await asyncio.wait_for(
                asyncio.gather(*(client.execute("GET", f"/channels/{i}") for i in range(10))),
                timeout=10,
            )

    results = asyncio.run(scenario())

    assert results == [f"/channels/{i}".encode() for i in range(10)]
    assert len(served) == 11


def test_async_requests_wait_for_closed_gate() -> None:
    served_at: list[float] = []

    async def scenario() -> float:
        loop = asyncio.get_running_loop()

        def handler(request: httpx.Request) -> httpx.Response:
            served_at.append(loop.time())
            return httpx.Response(204)

        async with make_client(handler) as client:
            client.rate_gate.mark_unavailable(0.2)
            gated_from = loop.time()
            await asyncio.gather(*(client.execute("GET", "/gateway") for _ in range(10)))
            return gated_from

    gated_from = asyncio.run(scenario())

    assert len(served_at) == 10
    assert min(served_at) - gated_from >= 0.19


def test_async_multipart_is_resent_on_retry() -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        if len(bodies) == 1:
            raise httpx.ConnectError("blip", request=request)
        return httpx.Response(200, content=b"{}")

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.execute("POST", "/channels/1/messages", None, [FileAttachment("a.bin", io.BytesIO(b"abc"))])

    asyncio.run(scenario())

    assert len(bodies) == 2
    assert bodies[0] == bodies[1]


def test_async_total_timeout_aborts_call() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.execute("GET", "/gateway", options=RequestOptions(total_timeout=0.05))

    with pytest.raises(AsharaTimeoutError, match="did not finish"):
        asyncio.run(scenario())


def test_async_total_timeout_must_be_positive() -> None:
    async def scenario() -> None:
        async with make_client(lambda request: httpx.Response(204)) as client:
            await client.execute("GET", "/gateway", options=RequestOptions(total_timeout=0))

    with pytest.raises(AsharaValidationError):
        asyncio.run(scenario())


def test_async_cancelling_task_unblocks_gate_wait() -> None:
    async def scenario() -> None:
        async with make_client(lambda request: httpx.Response(204)) as client:
            client.rate_gate.mark_unavailable(30.0)
            task = asyncio.create_task(client.execute("GET", "/gateway"))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

    asyncio.run(asyncio.wait_for(scenario(), timeout=5))


def test_async_ping() -> None:
    async def scenario() -> float:
        async with make_client(lambda request: httpx.Response(200, content=b"{}")) as client:
            return await client.ping()

    assert asyncio.run(scenario()) >= 0


def test_async_redirect_loop_is_reported_without_retry() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(301, headers={"Location": f"{BASE_URL}/gateway/moved"})

    async def scenario() -> None:
        transport = httpx.MockTransport(handler)
        httpx_client = httpx.AsyncClient(base_url=BASE_URL, transport=transport, follow_redirects=True)
        async with AsyncRestClient(token="secret-token", base_url=BASE_URL, httpx_client=httpx_client) as client:
            await client.execute("GET", "/gateway")

    with pytest.raises(AsharaHTTPError, match="Redirect limit exceeded") as exc_info:
        asyncio.run(scenario())

    assert isinstance(exc_info.value.__cause__, httpx.TooManyRedirects)
    assert paths.count("/gateway") == 1
