from __future__ import annotations

"""Bounded, deadline-guarded calls into a fingerprint engine.

The engine itself is external: any object with `identify(evidence)` (or a
plain callable) returning a list of tag strings. Matching is CPU-bound, so it
runs in a small thread pool sized well below the scan concurrency.
"""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..options import DEFAULT_FINGERPRINT_TIMEOUT

logger = logging.getLogger("pyxis")


@dataclass
class Evidence:
    target: str
    body: str = ""
    raw: bytes = b""
    raw_headers: bytes = b""
    favicon_hash: str = ""
    status: int = 0
    headers: Dict[str, str] = field(default_factory=dict)


class NullFingerprintEngine:
    """Engine used when none is configured; never matches anything."""

    def identify(self, evidence: Evidence) -> List[str]:
        return []


def fingerprint_concurrency(rate_limit: int, cpu_count: Optional[int] = None) -> int:
    cores = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    if cores <= 2:
        divisor = 80
    elif cores <= 4:
        divisor = 60
    elif cores <= 8:
        divisor = 50
    elif cores <= 12:
        divisor = 40
    elif cores <= 16:
        divisor = 35
    else:
        divisor = 30
    return max(1, int(rate_limit) // divisor)


def join_tags(tags: Optional[Iterable[Any]]) -> str:
    if not tags:
        return ""
    return ",".join(str(tag).strip() for tag in tags if str(tag).strip())


class FingerprintDispatcher:
    def __init__(
        self,
        engine: Any = None,
        max_workers: int = 1,
        timeout: float = DEFAULT_FINGERPRINT_TIMEOUT,
    ):
        self.engine = engine if engine is not None else NullFingerprintEngine()
        self.max_workers = max(1, int(max_workers))
        self.timeout = timeout
        self._executor: Optional[ThreadPoolExecutor] = None

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pyxis-fingerprint")
        return self._executor

    def _call_engine(self, evidence: Evidence) -> List[str]:
        identify = getattr(self.engine, "identify", self.engine)
        try:
            return list(identify(evidence) or [])
        except Exception as exc:
            logger.debug("fingerprint engine failed for %s: %s", evidence.target, exc)
            return []

    async def identify(self, evidence: Evidence) -> str:
        """Comma-joined tags, or `""` if the engine misses the deadline.

        On timeout the worker thread is left to finish on its own; its late
        result is dropped. It keeps its pool slot until then, so a stuck engine
        throttles fingerprinting rather than the scan.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._pool(), self._call_engine, evidence)
        try:
            tags = await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.debug("fingerprint timed out after %.1fs for %s", self.timeout, evidence.target)
            return ""
        return join_tags(tags)

    def close(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False)
