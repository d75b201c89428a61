from __future__ import annotations

"""CDN / load-balancer classification for scanned hosts.

Two collaborators are pluggable:
- a checker answering "is this IP inside a known provider range?"
- a resolver mapping a domain to its A/AAAA addresses

Defaults are the built-in CIDR table and a dnspython resolver.
"""

import asyncio
import ipaddress
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import dns.exception
import dns.resolver

from ..exceptions import ClassificationError
from ..options import DEFAULT_CDN_TIMEOUT

LOAD_BALANCER_PROVIDER = "Load Balancer"

CDN_PROVIDERS: Dict[str, Tuple[str, ...]] = {
    "Cloudflare": (
        "103.21.244.0/22", "103.22.200.0/22", "103.31.4.0/22", "104.16.0.0/12", "108.162.192.0/18",
        "131.0.72.0/22", "141.101.64.0/18", "162.158.0.0/15", "172.64.0.0/13", "173.245.48.0/20",
        "188.114.96.0/20", "190.93.240.0/20", "197.234.240.0/22", "198.41.128.0/17",
    ),
    "Akamai": (
        "23.32.0.0/11", "104.64.0.0/10", "184.24.0.0/13", "184.50.0.0/15", "184.84.0.0/14",
        "2.16.0.0/13", "95.100.0.0/15", "23.0.0.0/12", "96.16.0.0/15", "72.246.0.0/15",
    ),
    "Amazon CloudFront": (
        "54.182.0.0/16", "54.192.0.0/16", "54.230.0.0/16", "54.239.128.0/18", "54.239.192.0/19",
        "99.84.0.0/16", "205.251.192.0/19", "52.124.128.0/17", "204.246.164.0/22", "204.246.168.0/22",
        "204.246.174.0/23", "204.246.176.0/20", "13.32.0.0/15", "13.224.0.0/14", "13.35.0.0/16",
        "204.246.172.0/24", "204.246.173.0/24",
    ),
    "Fastly": (
        "23.235.32.0/20", "43.249.72.0/22", "103.244.50.0/24", "103.245.222.0/23", "103.245.224.0/24",
        "104.156.80.0/20", "146.75.0.0/16", "151.101.0.0/16", "157.52.64.0/18", "167.82.0.0/17",
        "167.82.128.0/20", "167.82.160.0/20", "167.82.224.0/20", "172.111.64.0/18", "185.31.16.0/22",
        "199.27.72.0/21", "199.232.0.0/16",
    ),
    "Google": (
        "34.64.0.0/10", "34.128.0.0/10", "35.184.0.0/13", "35.192.0.0/14", "35.196.0.0/15",
        "35.198.0.0/16", "35.199.0.0/17", "35.199.128.0/18", "35.200.0.0/13", "35.208.0.0/12",
        "35.224.0.0/12", "35.240.0.0/13", "64.233.160.0/19", "66.102.0.0/20", "66.249.64.0/19",
        "70.32.128.0/19", "72.14.192.0/18", "74.125.0.0/16", "108.177.0.0/17", "142.250.0.0/15",
        "172.217.0.0/16", "173.194.0.0/16", "209.85.128.0/17", "216.58.192.0/19", "216.239.32.0/19",
    ),
    "Microsoft Azure": (
        "13.64.0.0/11", "13.96.0.0/13", "13.104.0.0/14", "20.33.0.0/16", "20.34.0.0/15",
        "20.36.0.0/14", "20.40.0.0/13", "20.48.0.0/12", "20.64.0.0/10", "20.128.0.0/16",
        "20.135.0.0/16", "20.136.0.0/16", "20.143.0.0/16", "20.144.0.0/14", "20.150.0.0/15",
        "20.152.0.0/16", "20.153.0.0/16", "20.157.0.0/16", "20.158.0.0/15", "20.160.0.0/12",
        "20.176.0.0/14", "20.180.0.0/14", "20.184.0.0/13", "20.192.0.0/10",
    ),
}

logger = logging.getLogger("pyxis")


def is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address((value or "").strip())
    except ValueError:
        return False
    return True


def is_cidr(value: str) -> bool:
    text = (value or "").strip()
    if "/" not in text:
        return False
    try:
        ipaddress.ip_network(text, strict=False)
    except ValueError:
        return False
    return True


def format_cdn_label(is_cdn: bool, provider: str) -> str:
    if not is_cdn:
        return ""
    if provider and "," not in provider:
        return f"CDN:{provider}"
    return "CDN"


@dataclass
class CDNCheckResult:
    ips: List[str] = field(default_factory=list)
    is_cdn: bool = False
    provider: str = ""

    @property
    def label(self) -> str:
        return format_cdn_label(self.is_cdn, self.provider)


class CIDRChecker:
    """Known-provider lookup over a `{provider: [cidr, ...]}` table.

    Providers are checked in table order and the first containing range
    wins; ranges are assumed not to overlap between providers.
    """

    def __init__(self, providers: Optional[Dict[str, Iterable[str]]] = None):
        table = providers if providers is not None else CDN_PROVIDERS
        self._networks: List[Tuple[str, List[Union[ipaddress.IPv4Network, ipaddress.IPv6Network]]]] = []
        for provider, cidrs in table.items():
            networks = []
            for cidr in cidrs:
                try:
                    networks.append(ipaddress.ip_network(cidr, strict=False))
                except ValueError:
                    logger.debug("skipping invalid CIDR %r for %s", cidr, provider)
            self._networks.append((provider, networks))

    def is_cdn(self, ip: str) -> Tuple[bool, str]:
        try:
            address = ipaddress.ip_address((ip or "").strip())
        except ValueError:
            return False, ""
        for provider, networks in self._networks:
            for network in networks:
                if address.version == network.version and address in network:
                    return True, provider
        return False, ""


class DNSResolver:
    """Blocking A/AAAA resolver; meant to run inside an executor."""

    def __init__(self, nameserver: Optional[str] = None, timeout: float = DEFAULT_CDN_TIMEOUT):
        self.nameserver = nameserver
        self.timeout = timeout

    def _resolver(self) -> dns.resolver.Resolver:
        if self.nameserver:
            resolver = dns.resolver.Resolver(configure=False)
            resolver.nameservers = [self.nameserver]
        else:
            resolver = dns.resolver.Resolver()
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout
        return resolver

    def __call__(self, domain: str) -> List[str]:
        resolver = self._resolver()
        ips: List[str] = []
        errors: List[str] = []
        for qtype in ("A", "AAAA"):
            try:
                answers = resolver.resolve(domain, qtype)
            except (dns.resolver.NXDOMAIN, dns.resolver.YXDOMAIN) as exc:
                raise ClassificationError(f"{domain}: {exc.__class__.__name__}") from exc
            except (dns.resolver.NoAnswer, dns.resolver.NoNameservers, dns.exception.Timeout) as exc:
                errors.append(exc.__class__.__name__)
                continue
            for rr in answers:
                ip_text = str(rr).strip()
                if is_ip(ip_text) and ip_text not in ips:
                    ips.append(ip_text)
        if not ips:
            reason = ", ".join(errors) or "no addresses"
            raise ClassificationError(f"{domain}: {reason}")
        return ips


class CDNClassifier:
    """Resolve a host and label it `CDN:<provider>`, `CDN` or `""`.

    When `lb_heuristic` is on, a domain answering with exactly two distinct
    addresses and no provider match is labelled as a load balancer. This is
    a coarse signal (plain DNS round-robin looks the same) and is reported
    under its own provider name so it can be told apart from a range match.
    """

    def __init__(
        self,
        checker: Optional[CIDRChecker] = None,
        resolver: Optional[Callable[[str], List[str]]] = None,
        timeout: float = DEFAULT_CDN_TIMEOUT,
        lb_heuristic: bool = True,
        io_executor: Optional[Executor] = None,
    ):
        self.checker = checker or CIDRChecker()
        self.resolver = resolver or DNSResolver(timeout=timeout)
        self.timeout = timeout
        self.lb_heuristic = lb_heuristic
        self.io_executor = io_executor

    def check_ip(self, ip: str) -> CDNCheckResult:
        is_cdn, provider = self.checker.is_cdn(ip)
        return CDNCheckResult(ips=[ip], is_cdn=is_cdn, provider=provider)

    async def check_domain(self, domain: str) -> CDNCheckResult:
        loop = asyncio.get_running_loop()
        try:
            resolved = await asyncio.wait_for(
                loop.run_in_executor(self.io_executor, self.resolver, domain),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ClassificationError(f"{domain}: resolution timed out after {self.timeout:.1f}s") from exc
        except ClassificationError:
            raise
        except Exception as exc:
            raise ClassificationError(f"{domain}: {exc.__class__.__name__}: {exc}") from exc

        ips: List[str] = []
        for ip in resolved or []:
            if ip not in ips:
                ips.append(ip)
        if not ips:
            raise ClassificationError(f"{domain}: no addresses")

        result = CDNCheckResult(ips=ips)
        for ip in ips:
            is_cdn, provider = self.checker.is_cdn(ip)
            if is_cdn:
                result.is_cdn = True
                result.provider = provider
                break

        if not result.is_cdn and self.lb_heuristic and len(ips) == 2:
            result.is_cdn = True
            result.provider = LOAD_BALANCER_PROVIDER
        return result

    async def classify(self, host: str) -> Tuple[str, str]:
        """Return `(comma-joined ips, label)` for `host`.

        Raises `ClassificationError`; callers decide whether that fails the
        scan (CDN-only mode) or just leaves the fields empty.
        """
        host = (host or "").strip().strip("[]")
        if not host:
            raise ClassificationError("host cannot be empty")
        if is_ip(host):
            result = self.check_ip(host)
        else:
            result = await self.check_domain(host)
        return ",".join(result.ips), result.label
