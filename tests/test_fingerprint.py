from __future__ import annotations

import asyncio
import threading

import pytest

from pyxis.engine.fingerprint import Evidence, FingerprintDispatcher, NullFingerprintEngine, fingerprint_concurrency, join_tags


def _identify(dispatcher: FingerprintDispatcher, evidence: Evidence) -> str:
    try:
        return asyncio.run(dispatcher.identify(evidence))
    finally:
        dispatcher.close()


@pytest.mark.parametrize(
    "rate,cores,expected",
    [
        (10, 2, 1),
        (160, 2, 2),
        (300, 4, 5),
        (500, 8, 10),
        (400, 12, 10),
        (350, 16, 10),
        (300, 32, 10),
    ],
)
def test_fingerprint_concurrency_scales_with_rate_and_cores(rate, cores, expected):
    assert fingerprint_concurrency(rate, cpu_count=cores) == expected


def test_join_tags():
    assert join_tags(["nginx", " WordPress ", ""]) == "nginx,WordPress"
    assert join_tags([]) == ""
    assert join_tags(None) == ""


def test_null_engine_matches_nothing():
    assert NullFingerprintEngine().identify(Evidence(target="http://x")) == []
    assert _identify(FingerprintDispatcher(), Evidence(target="http://x")) == ""


def test_dispatcher_accepts_object_engine():
    class Engine:
        def __init__(self):
            self.seen = []

        def identify(self, evidence):
            self.seen.append(evidence)
            return ["nginx", "WordPress"]

    engine = Engine()
    evidence = Evidence(target="https://example.com", status=200, favicon_hash="116323821")
    assert _identify(FingerprintDispatcher(engine), evidence) == "nginx,WordPress"
    assert engine.seen == [evidence]


def test_dispatcher_accepts_plain_callable():
    dispatcher = FingerprintDispatcher(lambda evidence: [f"status-{evidence.status}"])
    assert _identify(dispatcher, Evidence(target="http://x", status=403)) == "status-403"


def test_dispatcher_engine_errors_become_empty():
    def engine(evidence):
        raise RuntimeError("rule compile failed")

    assert _identify(FingerprintDispatcher(engine), Evidence(target="http://x")) == ""


def test_dispatcher_drops_late_results():
    release = threading.Event()
    finished = threading.Event()

    def engine(evidence):
        release.wait(5)
        finished.set()
        return ["late"]

    dispatcher = FingerprintDispatcher(engine, timeout=0.05)
    try:
        assert asyncio.run(dispatcher.identify(Evidence(target="http://slow"))) == ""
    finally:
        release.set()
        dispatcher.close()
    assert finished.wait(5)
