from __future__ import annotations

"""Scheme/port detection for a single host line.

Input can be a full URL, `host:port` or a bare host. Explicit schemes are
fetched as given; anything else goes through HTTPS first, then HTTP, with the
nginx "plain HTTP request was sent to HTTPS port" page treated as proof that
the port speaks TLS.
"""

import asyncio
import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

from ..exceptions import ClassificationError, ScanError, TransportError
from ..result import ScanOutcome
from .cdn import CDNClassifier
from .favicon import FaviconHasher
from .fingerprint import Evidence, FingerprintDispatcher
from .transport import FetchResult, Transport

HTTP_PREFIX = "http://"
HTTPS_PREFIX = "https://"
HTTPS_PORT_MARKER = "<title>400 The plain HTTP request was sent to HTTPS port</title>"

logger = logging.getLogger("pyxis")


def split_host_port(host: str) -> Tuple[str, Optional[int]]:
    """Parse `host[:port]` the way `http://` + host would be parsed."""
    parsed = urlparse(HTTP_PREFIX + host)
    hostname = parsed.hostname or ""
    try:
        port = parsed.port
    except ValueError as exc:
        raise ScanError(f"invalid port in {host!r}") from exc
    return hostname, port


def _host_for_url(hostname: str) -> str:
    return f"[{hostname}]" if ":" in hostname else hostname


class Prober:
    def __init__(
        self,
        transport: Transport,
        classifier: CDNClassifier,
        favicon_hasher: Optional[FaviconHasher] = None,
        dispatcher: Optional[FingerprintDispatcher] = None,
        cdn_only: bool = False,
    ):
        self.transport = transport
        self.classifier = classifier
        self.favicon_hasher = favicon_hasher or FaviconHasher(transport)
        self.dispatcher = dispatcher or FingerprintDispatcher()
        self.cdn_only = cdn_only

    async def probe(self, host: str) -> ScanOutcome:
        """Scan one host line and return an enriched outcome.

        Raises `ScanError` when no scheme/port combination answers.
        """
        host = (host or "").strip()
        if not host:
            raise ScanError("host is empty")

        if self.cdn_only:
            return await self._probe_cdn_only(host)

        lowered = host.lower()
        if lowered.startswith(HTTPS_PREFIX):
            fetched = await self._fetch(host)
            if fetched is None:
                raise ScanError("scan host failed")
            return await self._finish(fetched, full_url=host, host=urlparse(host).hostname or "", port=443, tls=True)

        if lowered.startswith(HTTP_PREFIX):
            fetched = await self._fetch(host)
            if fetched is None:
                raise ScanError("scan host failed")
            return await self._finish(fetched, full_url=host, host=urlparse(host).hostname or "", port=80, tls=False)

        hostname, port = split_host_port(host)
        if not hostname:
            raise ScanError(f"invalid host {host!r}")

        if port == 80:
            fetched = await self._fetch(HTTP_PREFIX + host)
            if fetched is None:
                raise ScanError("scan host failed")
            return await self._finish(fetched, full_url=HTTP_PREFIX + host, host=hostname, port=80, tls=False)

        if port == 443:
            fetched = await self._fetch(HTTPS_PREFIX + host)
            if fetched is None:
                raise ScanError("scan host failed")
            return await self._finish(fetched, full_url=HTTPS_PREFIX + host, host=hostname, port=443, tls=True)

        return await self._disambiguate(host, hostname, port)

    async def _disambiguate(self, host: str, hostname: str, port: Optional[int]) -> ScanOutcome:
        suffix = f":{port}" if port is not None else ""
        url_host = _host_for_url(hostname)

        fetched = await self._fetch(HTTPS_PREFIX + host)
        if fetched is not None:
            return await self._finish(
                fetched,
                full_url=f"{HTTPS_PREFIX}{url_host}{suffix}",
                host=hostname,
                port=port if port is not None else 443,
                tls=True,
            )

        fetched = await self._fetch(HTTP_PREFIX + host)
        if fetched is None:
            raise ScanError("scan host failed")

        if HTTPS_PORT_MARKER in fetched.body:
            return await self._finish(
                fetched,
                full_url=f"{HTTPS_PREFIX}{url_host}{suffix}",
                host=hostname,
                port=port if port is not None else 443,
                tls=True,
            )
        return await self._finish(
            fetched,
            full_url=f"{HTTP_PREFIX}{url_host}{suffix}",
            host=hostname,
            port=port if port is not None else 80,
            tls=False,
        )

    async def _probe_cdn_only(self, host: str) -> ScanOutcome:
        lowered = host.lower()
        if lowered.startswith((HTTP_PREFIX, HTTPS_PREFIX)):
            hostname = urlparse(host).hostname or ""
            key = host
        else:
            hostname, _ = split_host_port(host)
            key = hostname
        if not hostname:
            raise ScanError(f"invalid host {host!r}")

        try:
            ip, cdn = await self.classifier.classify(hostname)
        except ClassificationError as exc:
            raise ScanError(str(exc)) from exc
        return ScanOutcome(full_url=key, host=hostname, ip=ip, cdn=cdn)

    async def _fetch(self, url: str) -> Optional[FetchResult]:
        try:
            return await self.transport.fetch(url)
        except TransportError as exc:
            logger.debug("%s: %s", url, exc)
            return None

    async def _classify(self, hostname: str) -> Tuple[str, str]:
        try:
            return await self.classifier.classify(hostname)
        except ClassificationError as exc:
            logger.warning("Failed to get CDN info for %s: %s", hostname, exc)
            return "", ""

    async def _finish(self, fetched: FetchResult, full_url: str, host: str, port: int, tls: bool) -> ScanOutcome:
        outcome = ScanOutcome(
            full_url=full_url,
            host=host,
            port=port,
            tls=tls,
            title=fetched.title,
            body=fetched.body,
            raw_body=fetched.raw_body,
            raw_headers=fetched.raw_headers,
            raw_response=fetched.raw_response,
            headers=dict(fetched.headers),
            status_code=fetched.status_code,
            content_length=fetched.content_length,
            response_time=fetched.response_time,
        )

        (outcome.ip, outcome.cdn), outcome.favicon_hash = await asyncio.gather(
            self._classify(host),
            self.favicon_hasher.hash(full_url, fetched.body),
        )
        outcome.fingerprint = await self.dispatcher.identify(
            Evidence(
                target=full_url,
                body=fetched.body,
                raw=fetched.raw_response,
                raw_headers=fetched.raw_headers,
                favicon_hash=outcome.favicon_hash,
                status=fetched.status_code,
                headers=dict(fetched.headers),
            )
        )
        return outcome
