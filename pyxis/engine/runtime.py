from __future__ import annotations

"""Scan orchestration for pyxis.

This module contains the runtime used by both CLI and Python API:
- host intake (`Runner._preprocess_hosts`)
- rate-limited, bounded-concurrency fan-out over the prober
- the completion listener feeding the shared `ResultStore`
- sync helpers (`_run_coro_sync`, `PYXIS`)

Keep logic in this file side-effect free where possible, because it is imported
from both `pyxis/cli.py` and external user scripts.
"""

import asyncio
import enum
import logging
import os
import shutil
import signal
import sys
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..exceptions import ScanError
from ..options import DEFAULT_CDN_TIMEOUT, DEFAULT_FINGERPRINT_TIMEOUT, HOST_TEMP_PREFIX, Options
from ..result import ResultStore, ScanOutcome
from .cdn import CDNClassifier, DNSResolver, is_cidr
from .favicon import FaviconHasher
from .fingerprint import FingerprintDispatcher, fingerprint_concurrency
from .prober import Prober
from .transport import Transport

logger = logging.getLogger("pyxis")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s", "%H:%M:%S"))
    logger.addHandler(handler)


def fmt_td(td: Optional[timedelta]) -> str:
    if td is None:
        return "-"
    total_seconds = int(td.total_seconds())
    hours, rem = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


class Phase(enum.IntEnum):
    IDLE = 0
    SCANNING = 1
    DONE = 2


class PhaseState:
    """Run phase that only moves forward (IDLE -> SCANNING -> DONE)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = Phase.IDLE

    @property
    def value(self) -> Phase:
        with self._lock:
            return self._value

    def set(self, phase: Phase) -> bool:
        with self._lock:
            if phase < self._value:
                return False
            self._value = phase
            return True

    def is_(self, phase: Phase) -> bool:
        return self.value == phase


class RateLimiter:
    """Ticker handing out one start permit every `1 / rate` seconds.

    Missed ticks are not banked: a slow consumer does not get a burst later.
    """

    def __init__(self, rate: int):
        self.interval = 1.0 / max(1, int(rate))
        self._next: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None

    async def wait(self) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            now = time.monotonic()
            if self._next is None:
                self._next = now + self.interval
            delay = self._next - now
            if delay > 0:
                await asyncio.sleep(delay)
            self._next = max(self._next, time.monotonic()) + self.interval


class Runner:
    """Drive one scan over a host list and collect outcomes.

    Collaborators are built from `options` unless injected; the injected
    objects let tests (or embedding code) swap the network, DNS and
    fingerprint layers.
    """

    def __init__(
        self,
        options: Options,
        transport: Optional[Transport] = None,
        classifier: Optional[CDNClassifier] = None,
        fingerprint_engine: Any = None,
        favicon_hasher: Optional[FaviconHasher] = None,
        limiter: Optional[RateLimiter] = None,
        on_result: Optional[Callable[[ScanOutcome], None]] = None,
    ):
        self.options = options.validate()
        rate_limit = int(self.options.rate_limit or 1)

        self.transport = transport or Transport(
            timeout=self.options.timeout,
            retries=self.options.retries,
            proxy=self.options.proxy_config,
            useragent=self.options.useragent,
        )
        self.io_executor = ThreadPoolExecutor(
            max_workers=max(16, min(256, rate_limit * 2)),
            thread_name_prefix="pyxis-io",
        )
        self.classifier = classifier or CDNClassifier(
            resolver=DNSResolver(nameserver=self.options.dns_server, timeout=DEFAULT_CDN_TIMEOUT),
            timeout=DEFAULT_CDN_TIMEOUT,
            lb_heuristic=self.options.lb_heuristic,
            io_executor=self.io_executor,
        )
        self.dispatcher = FingerprintDispatcher(
            engine=fingerprint_engine,
            max_workers=fingerprint_concurrency(rate_limit),
            timeout=DEFAULT_FINGERPRINT_TIMEOUT,
        )
        self.prober = Prober(
            self.transport,
            self.classifier,
            favicon_hasher=favicon_hasher or FaviconHasher(self.transport),
            dispatcher=self.dispatcher,
            cdn_only=self.options.cdn_only,
        )
        self.limiter = limiter or RateLimiter(rate_limit)
        self.on_result = on_result

        self.result = ResultStore()
        self.phase = PhaseState()
        self.active_tasks = 0
        self.peak_tasks = 0
        self.host_temp_file: Optional[str] = None

        self._rate_limit = rate_limit
        self._stopping = False
        self._done: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._signal_installed = False

    def stop(self) -> None:
        """Stop taking new hosts; in-flight scans still finish."""
        if not self._stopping:
            self._stopping = True
            logger.warning("Interrupt received, finishing in-flight hosts")
        # A second Ctrl-C falls through to the default KeyboardInterrupt.
        self._remove_signal_handler()

    def _remove_signal_handler(self) -> None:
        if self._signal_installed and self._loop is not None:
            self._signal_installed = False
            self._loop.remove_signal_handler(signal.SIGINT)

    async def run(self) -> ResultStore:
        """Scan every input host and return the populated result store.

        Per-host failures end up in the store with `flag=1`; nothing raised
        by a single host stops the run.
        """
        loop = self._loop = asyncio.get_running_loop()
        self._done = asyncio.Event()
        hosts: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=self._rate_limit * 2)
        outcomes: "asyncio.Queue[Optional[ScanOutcome]]" = asyncio.Queue()

        try:
            loop.add_signal_handler(signal.SIGINT, self.stop)
            self._signal_installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            pass

        try:
            async with self.transport:
                producer = asyncio.create_task(self._preprocess_hosts(hosts))
                listener = asyncio.create_task(self._listen(outcomes))
                try:
                    await self._start(hosts, outcomes)
                    await self._done.wait()
                finally:
                    if not producer.done():
                        producer.cancel()
                    await asyncio.gather(producer, listener, return_exceptions=True)
        finally:
            self._remove_signal_handler()
            self.close()
        return self.result

    def close(self) -> None:
        self.dispatcher.close()
        self.io_executor.shutdown(wait=False)
        self._remove_temp_file()

    def _remove_temp_file(self) -> None:
        path, self.host_temp_file = self.host_temp_file, None
        if not path:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove temporary host file %s: %s", path, exc)

    def _write_host_temp_file(self) -> str:
        handle = tempfile.NamedTemporaryFile(
            "w",
            prefix=HOST_TEMP_PREFIX,
            suffix=".txt",
            delete=False,
            encoding="utf-8",
        )
        self.host_temp_file = handle.name
        with handle:
            for host in self.options.hosts:
                handle.write(f"{host}\n")
            if self.options.hosts_file:
                with open(self.options.hosts_file, "r", encoding="utf-8", errors="replace") as source:
                    shutil.copyfileobj(source, handle)
                handle.write("\n")
        return handle.name

    async def _preprocess_hosts(self, queue: "asyncio.Queue[Optional[str]]") -> None:
        """Feed de-duplicated, scannable host lines into `queue`.

        Terminates the queue with `None`, also after I/O errors, so the
        scheduler can never wait forever.
        """
        seen: set[str] = set()
        try:
            loop = asyncio.get_running_loop()
            path = await loop.run_in_executor(self.io_executor, self._write_host_temp_file)
            with open(path, "r", encoding="utf-8") as fh:
                for line in fh:
                    if self._stopping:
                        break
                    target = line.strip()
                    if not target or target.startswith("#"):
                        continue
                    if is_cidr(target):
                        logger.debug("skipping CIDR input %s", target)
                        continue
                    if target in seen:
                        continue
                    seen.add(target)
                    await queue.put(target)
        except Exception as exc:
            logger.error("Could not prepare host list: %s", exc)
        await queue.put(None)

    async def _start(
        self,
        hosts: "asyncio.Queue[Optional[str]]",
        outcomes: "asyncio.Queue[Optional[ScanOutcome]]",
    ) -> None:
        self.phase.set(Phase.SCANNING)
        pool = asyncio.Semaphore(self._rate_limit)
        tasks: set[asyncio.Task] = set()
        try:
            while not self._stopping:
                host = await hosts.get()
                if host is None or self._stopping:
                    break
                await self.limiter.wait()
                await pool.acquire()
                task = asyncio.create_task(self._scan_task(host, pool, outcomes))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            await outcomes.put(None)

    async def _scan_task(
        self,
        host: str,
        pool: asyncio.Semaphore,
        outcomes: "asyncio.Queue[Optional[ScanOutcome]]",
    ) -> None:
        self.active_tasks += 1
        self.peak_tasks = max(self.peak_tasks, self.active_tasks)
        try:
            try:
                outcome = await self.prober.probe(host)
            except ScanError as exc:
                logger.warning("%s: %s", host, exc)
                outcome = ScanOutcome.failed(host)
            except Exception as exc:
                message = str(exc).strip()
                err = f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__
                logger.warning("%s: %s", host, err)
                outcome = ScanOutcome.failed(host)
            await outcomes.put(outcome)
        finally:
            self.active_tasks -= 1
            pool.release()

    async def _listen(self, outcomes: "asyncio.Queue[Optional[ScanOutcome]]") -> None:
        try:
            while True:
                outcome = await outcomes.get()
                if outcome is None:
                    break
                self.result.set(outcome.full_url or outcome.host, outcome)
                if self.on_result:
                    try:
                        self.on_result(outcome)
                    except Exception as exc:
                        logger.debug("result callback failed: %s", exc)
        finally:
            self.phase.set(Phase.DONE)
            if self._done is not None:
                self._done.set()


def _run_coro_sync(coro: Any) -> Any:
    """Run async code from sync callers (CLI and public API).

    If already inside an event loop, execute in a helper thread to avoid
    `RuntimeError: asyncio.run() cannot be called from a running event loop`.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    outcome: Dict[str, Any] = {}

    def target() -> None:
        try:
            outcome["result"] = asyncio.run(coro)
        except Exception as exc:  # pragma: no cover - fallback path
            outcome["error"] = exc

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    thread.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")


def PYXIS(
    hosts: Union[str, Iterable[str], None] = None,
    hosts_file: Optional[str] = None,
    retries: Optional[int] = None,
    timeout: Optional[float] = None,
    rate_limit: Optional[int] = None,
    proxy: Optional[str] = None,
    dns_server: Optional[str] = None,
    useragent: Optional[str] = None,
    cdn_only: bool = False,
    lb_heuristic: bool = True,
    fingerprint_engine: Any = None,
    on_result: Optional[Callable[[ScanOutcome], None]] = None,
) -> List[ScanOutcome]:
    """Public synchronous Python API entrypoint.

    Example:
    `PYXIS(["example.com", "10.0.0.5:8443"], timeout=6)`

    Raises `OptionsError` for invalid settings; per-host failures are
    returned as outcomes with `flag=1`.
    """
    if hosts is None:
        host_list: List[str] = []
    elif isinstance(hosts, str):
        host_list = [hosts]
    else:
        host_list = list(hosts)

    settings: Dict[str, Any] = {
        "hosts": host_list,
        "hosts_file": hosts_file,
        "dns_server": dns_server,
        "useragent": useragent,
        "cdn_only": cdn_only,
        "lb_heuristic": lb_heuristic,
    }
    if retries is not None:
        settings["retries"] = retries
    if timeout is not None:
        settings["timeout"] = timeout
    if rate_limit is not None:
        settings["rate_limit"] = rate_limit
    if proxy:
        settings["proxy"] = proxy

    runner = Runner(Options(**settings), fingerprint_engine=fingerprint_engine, on_result=on_result)
    store = _run_coro_sync(runner.run())
    return store.results()
