from __future__ import annotations

"""Scan outcome record and the shared, lock-guarded result store."""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

SUCCESS = 0
FAILED = 1


@dataclass
class ScanOutcome:
    """Everything learned about one host in one scan attempt."""

    full_url: str = ""
    host: str = ""
    port: int = 0
    tls: bool = False
    ip: str = ""
    title: str = ""
    body: str = ""
    raw_body: bytes = b""
    raw_headers: bytes = b""
    raw_response: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    status_code: int = 0
    content_length: int = 0
    response_time: int = 0
    favicon_hash: str = ""
    fingerprint: str = ""
    cdn: str = ""
    flag: int = SUCCESS

    @classmethod
    def failed(cls, host: str) -> "ScanOutcome":
        return cls(full_url=host, host=host, flag=FAILED)

    @property
    def ok(self) -> bool:
        return self.flag == SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fullurl": self.full_url,
            "host": self.host,
            "ip": self.ip,
            "port": self.port,
            "tls": self.tls,
            "title": self.title,
            "statuscode": self.status_code,
            "contentlength": self.content_length,
            "responsetime": self.response_time,
            "faviconhash": self.favicon_hash,
            "fingerprint": self.fingerprint,
            "cdn": self.cdn,
            "flag": self.flag,
        }


class ResultStore:
    """Map of canonical URL (or host in CDN-only mode) to `ScanOutcome`.

    Writers are the scan tasks, the reader is the output stage. A single lock
    serializes both; iteration works on a snapshot so the lock is never held
    while a caller consumes results.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hosts: Dict[str, ScanOutcome] = {}

    def set(self, key: str, outcome: ScanOutcome) -> None:
        with self._lock:
            self._hosts[key] = outcome

    def add(self, outcome: ScanOutcome) -> None:
        self.set(outcome.host, outcome)

    def extend(self, outcomes: List[ScanOutcome]) -> None:
        with self._lock:
            for outcome in outcomes:
                self._hosts[outcome.host] = outcome

    def get(self, key: str) -> Optional[ScanOutcome]:
        with self._lock:
            return self._hosts.get(key)

    def has_results(self) -> bool:
        with self._lock:
            return len(self._hosts) > 0

    def results(self) -> List[ScanOutcome]:
        with self._lock:
            return list(self._hosts.values())

    def __iter__(self) -> Iterator[ScanOutcome]:
        return iter(self.results())

    def __len__(self) -> int:
        with self._lock:
            return len(self._hosts)
