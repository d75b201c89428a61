from __future__ import annotations

import asyncio
import time

import httpx
import pytest

import pyxis.engine.transport as transport_mod
from pyxis.exceptions import OptionsError, TransportError
from pyxis.engine.transport import Transport, extract_title, normalize_body, pick_user_agent
from pyxis.options import ProxyKind


def _fetch(transport: Transport, url: str, follow_redirects: bool = True):
    async def go():
        async with transport:
            return await transport.fetch(url, follow_redirects=follow_redirects)

    return asyncio.run(go())


def test_pick_user_agent_respects_explicit_value():
    assert pick_user_agent("MyAgent/1.0") == "MyAgent/1.0"


def test_pick_user_agent_random_uses_pool(monkeypatch):
    monkeypatch.setattr(transport_mod.random, "choice", lambda items: items[0])
    assert pick_user_agent("random") == transport_mod.USER_AGENTS[0]
    assert pick_user_agent(None) == transport_mod.USER_AGENTS[0]


def test_normalize_body_prefers_utf8_then_legacy_codecs():
    assert normalize_body("héllo".encode("utf-8")) == "héllo"
    assert normalize_body("中文标题".encode("gbk")) == "中文标题"
    assert normalize_body(b"") == ""


def test_extract_title_collapses_whitespace():
    assert extract_title("<html><TITLE>\n  Admin\n   Panel </TITLE></html>") == "Admin Panel"
    assert extract_title("<html><body>no title</body></html>") == ""


def test_transport_rejects_zero_timeout():
    with pytest.raises(OptionsError):
        Transport(timeout=0)


def test_transport_resolves_proxy_once():
    transport = Transport(proxy="socks5://127.0.0.1:1080")
    assert transport.proxy.kind is ProxyKind.SOCKS5
    assert Transport().proxy.kind is ProxyKind.NONE


def test_fetch_collects_status_headers_and_title():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Server": "nginx"}, text="<title>Example</title>")

    transport = Transport(retries=0, transport=httpx.MockTransport(handler), useragent="pyxis-test")
    result = _fetch(transport, "https://example.com")

    assert result.status_code == 200
    assert result.title == "Example"
    assert result.headers["server"] == "nginx"
    assert result.content_length == len(b"<title>Example</title>")
    assert result.raw_headers.startswith(b"HTTP/1.1 200 OK\r\n")
    assert result.raw_response.endswith(b"\r\n\r\n<title>Example</title>")
    assert not result.truncated


def test_fetch_sends_configured_user_agent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(204)

    _fetch(Transport(retries=0, transport=httpx.MockTransport(handler), useragent="pyxis-test"), "http://example.com")
    assert seen["ua"] == "pyxis-test"


def test_fetch_caps_body_size():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"A" * 100)

    transport = Transport(retries=0, max_body_size=10, transport=httpx.MockTransport(handler))
    result = _fetch(transport, "http://example.com")
    assert result.raw_body == b"A" * 10
    assert result.truncated
    assert result.content_length == 100


def test_fetch_follows_redirects_when_asked():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/":
            return httpx.Response(302, headers={"Location": "/home"})
        return httpx.Response(200, text="<title>Home</title>")

    transport = Transport(retries=0, transport=httpx.MockTransport(handler))
    result = _fetch(transport, "http://example.com/")
    assert result.url.endswith("/home")
    assert result.title == "Home"

    transport = Transport(retries=0, transport=httpx.MockTransport(handler))
    result = _fetch(transport, "http://example.com/", follow_redirects=False)
    assert result.status_code == 302


def test_fetch_returns_error_statuses_without_retry():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url)
        return httpx.Response(503)

    result = _fetch(Transport(retries=3, transport=httpx.MockTransport(handler)), "http://example.com")
    assert result.status_code == 503
    assert len(calls) == 1


def test_fetch_retries_connection_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url)
        if len(calls) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text="ok")

    transport = Transport(retries=1, retry_wait_min=0, transport=httpx.MockTransport(handler))
    result = _fetch(transport, "http://example.com")
    assert result.status_code == 200
    assert len(calls) == 2


def test_fetch_raises_after_retries_exhausted():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url)
        raise httpx.ConnectError("connection refused", request=request)

    transport = Transport(retries=2, retry_wait_min=0, transport=httpx.MockTransport(handler))
    with pytest.raises(TransportError, match="ConnectError"):
        _fetch(transport, "http://example.com")
    assert len(calls) == 3


def test_fetch_empty_url_is_an_error():
    with pytest.raises(TransportError):
        _fetch(Transport(retries=0, transport=httpx.MockTransport(lambda r: httpx.Response(200))), "")


def test_backoff_stays_within_ceiling():
    transport = Transport(retry_wait_min=1.0, retry_wait_max=4.0)
    for attempt in range(6):
        assert 0 <= transport._backoff(attempt) <= 4.0


def test_fetch_deadline_covers_slow_body():
    async def drip(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await reader.readuntil(b"\r\n\r\n")
        writer.write(b"HTTP/1.1 200 OK\r\nContent-Length: 12\r\n\r\n")
        try:
            for _ in range(12):
                writer.write(b"x")
                await writer.drain()
                await asyncio.sleep(0.4)
        except ConnectionError:
            pass
        finally:
            writer.close()

    async def go() -> float:
        server = await asyncio.start_server(drip, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        started = time.monotonic()
        try:
            async with Transport(timeout=1, retries=0) as transport:
                with pytest.raises(TransportError, match="TimeoutError"):
                    await transport.fetch(f"http://127.0.0.1:{port}/")
        finally:
            server.close()
        return time.monotonic() - started

    assert asyncio.run(go()) < 2.5


def test_fetch_without_client_is_an_error(monkeypatch):
    transport = Transport(retries=0, transport=httpx.MockTransport(lambda r: httpx.Response(200)))

    async def no_open():
        return transport

    monkeypatch.setattr(transport, "open", no_open)
    with pytest.raises(TransportError, match="closed"):
        asyncio.run(transport.fetch("http://example.com"))
