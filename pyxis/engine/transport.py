from __future__ import annotations

"""Retrying HTTP transport used by the prober and the favicon hasher.

One `Transport` owns one `httpx.AsyncClient`. It is created by the caller
(normally `Runner`) and passed to whatever needs to fetch, so there is no
module-level client state.

TLS verification is disabled on purpose: pyxis maps what answers on a port,
it does not judge certificates. Pass `verify=True` to opt back in.
"""

import asyncio
import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import httpx

from ..exceptions import OptionsError, TransportError
from ..options import DEFAULT_RETRIES, DEFAULT_TIMEOUT, ProxyConfig, ProxyKind

MAX_BODY_SIZE = 2 * 1024 * 1024
DEFAULT_MAX_REDIRECTS = 10
DEFAULT_RETRY_WAIT_MIN = 1.0
DEFAULT_RETRY_WAIT_MAX = 10.0

# Tried in order when the body is not valid UTF-8.
LEGACY_ENCODINGS: Tuple[str, ...] = (
    "gb18030",
    "gbk",
    "hz",
    "big5",
    "euc_jp",
    "shift_jis",
    "euc_kr",
    "iso8859_1",
    "iso8859_2",
    "cp1251",
    "cp1252",
)

TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:124.0) Gecko/20100101 Firefox/124.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14.4; rv:124.0) Gecko/20100101 Firefox/124.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
]

logger = logging.getLogger("pyxis")


def pick_user_agent(useragent: Optional[str]) -> str:
    if useragent and useragent.strip().lower() != "random":
        return useragent.strip()
    return random.choice(USER_AGENTS)


def normalize_body(raw: bytes) -> str:
    """Decode a response body to text.

    Valid UTF-8 wins; otherwise the first legacy codec that decodes strictly
    is used, and as a last resort undecodable bytes are replaced.
    """
    if not raw:
        return ""
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    for encoding in LEGACY_ENCODINGS:
        try:
            return raw.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return raw.decode("utf-8", errors="replace")


def extract_title(text: str) -> str:
    if not text:
        return ""
    match = TITLE_RE.search(text)
    if not match:
        return ""
    return re.sub(r"\s+", " ", match.group(1)).strip()


def _error_text(exc: BaseException) -> str:
    message = str(exc).strip()
    return f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__


@dataclass
class FetchResult:
    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    raw_body: bytes = b""
    raw_headers: bytes = b""
    raw_response: bytes = b""
    title: str = ""
    response_time: int = 0
    content_length: int = 0
    http_version: str = "HTTP/1.1"
    truncated: bool = False


class Transport:
    """Async HTTP client with retry, redirect and proxy policy baked in.

    Use as an async context manager, or call `open()`/`aclose()` explicitly.
    `transport` lets tests (or embedding code) swap the network layer, e.g.
    with `httpx.MockTransport`.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        proxy: Union[ProxyConfig, str, None] = None,
        verify: bool = False,
        useragent: Optional[str] = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        max_body_size: int = MAX_BODY_SIZE,
        retry_wait_min: float = DEFAULT_RETRY_WAIT_MIN,
        retry_wait_max: float = DEFAULT_RETRY_WAIT_MAX,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if timeout <= 0:
            raise OptionsError("timeout: cannot be zero")
        self.timeout = float(timeout)
        self.retries = max(0, int(retries))
        self.proxy = proxy if isinstance(proxy, ProxyConfig) else ProxyConfig.parse(proxy)
        self.verify = verify
        self.headers = {"User-Agent": pick_user_agent(useragent)}
        self.max_redirects = max_redirects
        self.max_body_size = max_body_size
        self.retry_wait_min = retry_wait_min
        self.retry_wait_max = retry_wait_max
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        kwargs = {
            "http2": True,
            "verify": self.verify,
            "timeout": httpx.Timeout(self.timeout),
            # Connections are not reused across hosts.
            "limits": httpx.Limits(max_keepalive_connections=0),
            "max_redirects": self.max_redirects,
            "headers": self.headers,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.proxy.kind in (ProxyKind.HTTP, ProxyKind.SOCKS5):
            # httpx routes socks5:// through its SOCKS transport for both
            # plain and TLS-upgraded connections.
            kwargs["proxy"] = self.proxy.url
        return httpx.AsyncClient(**kwargs)

    async def open(self) -> "Transport":
        if self._client is None:
            self._client = self._build_client()
        return self

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def __aenter__(self) -> "Transport":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _backoff(self, attempt: int) -> float:
        ceiling = min(self.retry_wait_max, self.retry_wait_min * (2 ** attempt))
        return random.uniform(0, ceiling) if ceiling > 0 else 0.0

    async def fetch(self, url: str, follow_redirects: bool = True) -> FetchResult:
        """GET `url`, retrying transport failures with jittered backoff.

        Any HTTP status is a valid answer and is returned as-is; only
        connection-level failures are retried. Raises `TransportError` once
        all attempts are spent.
        """
        if not url:
            raise TransportError("no target specified")
        await self.open()
        client = self._client
        if client is None:
            raise TransportError("transport is closed")

        attempts = self.retries + 1
        last_error: Optional[BaseException] = None
        for attempt in range(attempts):
            try:
                # One deadline for the whole exchange, body included.
                return await asyncio.wait_for(self._fetch_once(client, url, follow_redirects), timeout=self.timeout)
            except httpx.UnsupportedProtocol as exc:
                raise TransportError(_error_text(exc)) from exc
            except (httpx.TransportError, asyncio.TimeoutError) as exc:
                last_error = exc
                if attempt + 1 >= attempts:
                    break
                delay = self._backoff(attempt)
                logger.debug("retry %d/%d for %s in %.2fs (%s)", attempt + 1, self.retries, url, delay, _error_text(exc))
                await asyncio.sleep(delay)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise TransportError(_error_text(exc)) from exc

        raise TransportError(_error_text(last_error) if last_error else f"request failed: {url}") from last_error

    async def _fetch_once(self, client: httpx.AsyncClient, url: str, follow_redirects: bool) -> FetchResult:
        started = time.perf_counter()
        async with client.stream("GET", url, follow_redirects=follow_redirects) as response:
            response_time = int((time.perf_counter() - started) * 1000)
            chunks: List[bytes] = []
            size = 0
            truncated = False
            async for chunk in response.aiter_bytes():
                remaining = self.max_body_size - size
                if len(chunk) > remaining:
                    chunks.append(chunk[:remaining])
                    size += remaining
                    truncated = True
                    break
                chunks.append(chunk)
                size += len(chunk)
            raw_body = b"".join(chunks)

        http_version = response.http_version or "HTTP/1.1"
        status_line = f"{http_version} {response.status_code} {response.reason_phrase}".rstrip()
        header_lines = [status_line.encode("latin-1", errors="replace")]
        header_lines.extend(name + b": " + value for name, value in response.headers.raw)
        raw_headers = b"\r\n".join(header_lines) + b"\r\n"

        content_length = len(raw_body)
        declared = response.headers.get("Content-Length")
        if declared and declared.strip().isdigit():
            content_length = int(declared.strip())

        body = normalize_body(raw_body)
        return FetchResult(
            url=str(response.url),
            status_code=response.status_code,
            headers={key: value for key, value in response.headers.items()},
            body=body,
            raw_body=raw_body,
            raw_headers=raw_headers,
            raw_response=raw_headers + b"\r\n" + raw_body,
            title=extract_title(body),
            response_time=response_time,
            content_length=content_length,
            http_version=http_version,
            truncated=truncated,
        )
