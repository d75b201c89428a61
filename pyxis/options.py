from __future__ import annotations

"""Runtime options for pyxis.

`Options` is built once (CLI, Python API or environment), validated with
`Options.validate()` and then treated as read-only by every engine component.
Config layering is CLI > environment (`PYXIS_*`, `.env` supported) > defaults.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote, urlparse

from dotenv import load_dotenv

from .exceptions import OptionsError

DEFAULT_RETRIES = 1
DEFAULT_TIMEOUT = 10.0
DEFAULT_CDN_TIMEOUT = 3.0
DEFAULT_FINGERPRINT_TIMEOUT = 5.0

HOST_TEMP_PREFIX = "pyxis-host-temp-"

logger = logging.getLogger("pyxis")


class ProxyKind(str, Enum):
    NONE = "none"
    HTTP = "http"
    SOCKS5 = "socks5"


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy selection resolved once from a proxy URL.

    `kind` tells the transport which dial strategy to use; `address` is
    `host:port` and credentials are kept separately so they can be re-embedded
    (percent-encoded) when the proxy URL is rebuilt.
    """

    kind: ProxyKind = ProxyKind.NONE
    scheme: str = ""
    address: str = ""
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ProxyConfig":
        text = (raw or "").strip()
        if not text:
            return cls()

        parsed = urlparse(text)
        scheme = (parsed.scheme or "").lower()
        if scheme in {"http", "https"}:
            kind = ProxyKind.HTTP
        elif scheme in {"socks5", "socks5h"}:
            kind = ProxyKind.SOCKS5
        else:
            raise OptionsError(f"unsupported proxy type: {scheme or '-'} (supported: http, https, socks5)")

        try:
            port = parsed.port
        except ValueError as exc:
            raise OptionsError(f"invalid proxy port in {text!r}") from exc
        host = parsed.hostname
        if not host:
            raise OptionsError(f"invalid proxy address: {text!r}")

        address = f"[{host}]" if ":" in host else host
        if port:
            address = f"{address}:{port}"

        username = unquote(parsed.username) if parsed.username else None
        password = unquote(parsed.password) if parsed.password else None
        return cls(kind=kind, scheme=scheme, address=address, username=username, password=password)

    @property
    def auth(self) -> Optional[Tuple[str, str]]:
        if self.username is None:
            return None
        return self.username, self.password or ""

    @property
    def url(self) -> Optional[str]:
        if self.kind is ProxyKind.NONE:
            return None
        credentials = ""
        if self.username is not None:
            credentials = quote(self.username, safe="")
            if self.password:
                credentials += ":" + quote(self.password, safe="")
            credentials += "@"
        return f"{self.scheme}://{credentials}{self.address}"


def auto_rate_limit(cpu_count: Optional[int] = None) -> int:
    """Conservative default rate limit keyed by CPU core count."""
    cores = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    if cores <= 2:
        return 10
    if cores <= 4:
        return 20
    if cores <= 8:
        return 30
    if cores <= 16:
        return 40
    return 50


@dataclass(frozen=True)
class Options:
    hosts: List[str] = field(default_factory=list)
    hosts_file: Optional[str] = None

    retries: int = DEFAULT_RETRIES
    timeout: float = DEFAULT_TIMEOUT
    rate_limit: Optional[int] = None
    proxy: Optional[str] = None
    dns_server: Optional[str] = None
    useragent: Optional[str] = None

    cdn_only: bool = False
    lb_heuristic: bool = True

    output: Optional[str] = None
    silent: bool = False
    clear: bool = False

    @property
    def proxy_config(self) -> ProxyConfig:
        return ProxyConfig.parse(self.proxy)

    def validate(self) -> "Options":
        """Return a checked copy with derived defaults filled in.

        Raises `OptionsError` for anything that must stop the run before the
        first host is scheduled.
        """
        if not self.hosts and not self.hosts_file:
            raise OptionsError("no input list provided")
        if self.hosts_file and not Path(self.hosts_file).is_file():
            raise OptionsError(f"hosts file not found: {self.hosts_file}")
        if self.timeout is None or self.timeout <= 0:
            raise OptionsError("timeout: cannot be zero")
        if self.retries is None or self.retries < 0:
            raise OptionsError("retries: cannot be negative")
        if self.rate_limit is not None and self.rate_limit <= 0:
            raise OptionsError("rate: cannot be zero")

        ProxyConfig.parse(self.proxy)

        rate_limit = self.rate_limit
        if rate_limit is None:
            rate_limit = auto_rate_limit()
            logger.info("Auto-adjusted rate limit to %d based on %d CPU cores", rate_limit, os.cpu_count() or 1)

        return replace(self, hosts=list(self.hosts), rate_limit=rate_limit)


def load_env_settings(dotenv_path: Optional[str] = None) -> Dict[str, Any]:
    """Read `PYXIS_*` overrides from the environment (and a `.env` file).

    Unparseable values are ignored with a warning so a stray variable never
    blocks a scan; only keys that are present end up in the returned dict.
    """
    load_dotenv(dotenv_path)

    settings: Dict[str, Any] = {}

    def _number(name: str, cast: Any) -> Optional[Any]:
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            return None
        try:
            return cast(raw.strip())
        except ValueError:
            logger.warning("Ignoring invalid %s=%r", name, raw)
            return None

    retries = _number("PYXIS_RETRIES", int)
    if retries is not None:
        settings["retries"] = retries
    timeout = _number("PYXIS_TIMEOUT", float)
    if timeout is not None:
        settings["timeout"] = timeout
    rate_limit = _number("PYXIS_RATE", int)
    if rate_limit is not None:
        settings["rate_limit"] = rate_limit

    proxy = (os.getenv("PYXIS_PROXY") or "").strip()
    if proxy:
        settings["proxy"] = proxy
    dns_server = (os.getenv("PYXIS_DNS") or "").strip()
    if dns_server:
        settings["dns_server"] = dns_server
    return settings
