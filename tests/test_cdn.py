from __future__ import annotations

import asyncio
import time

import dns.resolver
import pytest

from pyxis.engine.cdn import (
    CDNClassifier,
    CIDRChecker,
    DNSResolver,
    LOAD_BALANCER_PROVIDER,
    format_cdn_label,
    is_cidr,
    is_ip,
)
from pyxis.exceptions import ClassificationError


def _classify(classifier: CDNClassifier, host: str):
    return asyncio.run(classifier.classify(host))


def test_format_cdn_label():
    assert format_cdn_label(False, "Cloudflare") == ""
    assert format_cdn_label(True, "Cloudflare") == "CDN:Cloudflare"
    assert format_cdn_label(True, "A, B") == "CDN"
    assert format_cdn_label(True, "") == "CDN"


def test_ip_and_cidr_helpers():
    assert is_ip("10.0.0.1")
    assert is_ip("2001:db8::1")
    assert not is_ip("example.com")
    assert is_cidr("10.0.0.0/24")
    assert not is_cidr("10.0.0.1")
    assert not is_cidr("example.com/24")


def test_cidr_checker_builtin_table():
    checker = CIDRChecker()
    assert checker.is_cdn("104.16.1.1") == (True, "Cloudflare")
    assert checker.is_cdn("151.101.1.1") == (True, "Fastly")
    assert checker.is_cdn("192.0.2.10") == (False, "")
    assert checker.is_cdn("garbage") == (False, "")


def test_cidr_checker_custom_table_skips_invalid_ranges():
    checker = CIDRChecker({"Edge": ["not-a-cidr", "192.0.2.0/24"], "V6": ["2001:db8::/32"]})
    assert checker.is_cdn("192.0.2.7") == (True, "Edge")
    assert checker.is_cdn("2001:db8::5") == (True, "V6")


def test_classify_ip_skips_dns():
    def resolver(domain):
        raise AssertionError("resolver must not be called for IPs")

    classifier = CDNClassifier(resolver=resolver)
    assert _classify(classifier, "104.16.1.1") == ("104.16.1.1", "CDN:Cloudflare")
    assert _classify(classifier, "192.0.2.1") == ("192.0.2.1", "")


def test_classify_domain_dedups_and_first_match_wins():
    classifier = CDNClassifier(resolver=lambda d: ["192.0.2.1", "192.0.2.1", "151.101.1.1", "104.16.1.1"])
    ips, label = _classify(classifier, "www.example.com")
    assert ips == "192.0.2.1,151.101.1.1,104.16.1.1"
    assert label == "CDN:Fastly"


def test_two_unmatched_addresses_look_like_load_balancer():
    classifier = CDNClassifier(resolver=lambda d: ["192.0.2.1", "192.0.2.2"])
    assert _classify(classifier, "example.com") == ("192.0.2.1,192.0.2.2", f"CDN:{LOAD_BALANCER_PROVIDER}")

    classifier = CDNClassifier(resolver=lambda d: ["192.0.2.1", "192.0.2.2"], lb_heuristic=False)
    assert _classify(classifier, "example.com") == ("192.0.2.1,192.0.2.2", "")


def test_one_or_three_unmatched_addresses_are_plain():
    assert _classify(CDNClassifier(resolver=lambda d: ["192.0.2.1"]), "example.com")[1] == ""
    three = CDNClassifier(resolver=lambda d: ["192.0.2.1", "192.0.2.2", "192.0.2.3"])
    assert _classify(three, "example.com")[1] == ""


def test_classify_errors():
    with pytest.raises(ClassificationError):
        _classify(CDNClassifier(resolver=lambda d: []), "example.com")
    with pytest.raises(ClassificationError):
        _classify(CDNClassifier(resolver=lambda d: ["192.0.2.1"]), "  ")

    def broken(domain):
        raise OSError("resolver down")

    with pytest.raises(ClassificationError, match="resolver down"):
        _classify(CDNClassifier(resolver=broken), "example.com")


def test_classify_times_out():
    def slow(domain):
        time.sleep(0.5)
        return ["192.0.2.1"]

    with pytest.raises(ClassificationError, match="timed out"):
        _classify(CDNClassifier(resolver=slow, timeout=0.05), "example.com")


class _FakeAnswer:
    def __init__(self, values):
        self.values = values

    def __iter__(self):
        return iter(self.values)


def _fake_resolver_class(answers, calls):
    class FakeResolver:
        def __init__(self, configure=True):
            calls.append(("init", configure))
            self.nameservers = []

        def resolve(self, domain, qtype):
            calls.append((domain, qtype, list(self.nameservers)))
            result = answers.get(qtype)
            if isinstance(result, Exception):
                raise result
            return _FakeAnswer(result)

    return FakeResolver


def test_dns_resolver_collects_a_and_aaaa(monkeypatch):
    calls = []
    answers = {"A": ["192.0.2.1", "192.0.2.1"], "AAAA": ["2001:db8::1"]}
    monkeypatch.setattr(dns.resolver, "Resolver", _fake_resolver_class(answers, calls))

    resolver = DNSResolver(nameserver="9.9.9.9", timeout=1.0)
    assert resolver("example.com") == ["192.0.2.1", "2001:db8::1"]
    assert calls[0] == ("init", False)
    assert calls[1] == ("example.com", "A", ["9.9.9.9"])


def test_dns_resolver_tolerates_missing_aaaa(monkeypatch):
    answers = {"A": ["192.0.2.1"], "AAAA": dns.resolver.NoAnswer()}
    monkeypatch.setattr(dns.resolver, "Resolver", _fake_resolver_class(answers, []))
    assert DNSResolver()("example.com") == ["192.0.2.1"]


def test_dns_resolver_nxdomain_is_a_classification_error(monkeypatch):
    answers = {"A": dns.resolver.NXDOMAIN(), "AAAA": dns.resolver.NXDOMAIN()}
    monkeypatch.setattr(dns.resolver, "Resolver", _fake_resolver_class(answers, []))
    with pytest.raises(ClassificationError, match="NXDOMAIN"):
        DNSResolver()("missing.example")
