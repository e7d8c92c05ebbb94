"""Background sampler for process CPU and memory.

Measuring CPU percent needs two readings some time apart, and asking the
OS on every request would put a syscall (or worse, a sleep) on the hot
path.  So the sampler runs on its own:

  construction  → one immediate sample (the cache is never empty for long)
  start()       → daemon thread, one sample every `interval` seconds
  stop()        → thread exits at its next wake-up, joined

Request handling only ever reads `sampler.latest`, a reference to an
immutable ResourceSample, swapped under a lock.  Readers can never see a
half-written reading, and they never wait on a sample in progress.

FAILURE POLICY: STALE BEATS MISSING
--------------------------------------
If a sample fails (process table unreadable, permissions, psutil hiccup)
the failure is logged and the PREVIOUS reading stays in place.  The next
tick supersedes it; there are no retries.  Nothing ever reaches the
request path.
"""

from __future__ import annotations

import functools
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass

import psutil

from prom_bundle.core.errors import SamplingFailure

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 15.0


@dataclass(frozen=True, slots=True)
class ResourceSample:
    cpu: float = 0.0  # percent of one core, may exceed 100 on multi-core
    memory: int = 0  # resident set size, bytes


SampleFn = Callable[[int], ResourceSample]


@functools.lru_cache(maxsize=8)
def _process(pid: int) -> psutil.Process:
    # cpu_percent(interval=None) compares against the previous call on the
    # SAME Process object, so keep one per pid.
    return psutil.Process(pid)


def psutil_sample(pid: int) -> ResourceSample:
    """Read CPU percent and RSS of ``pid`` through psutil."""
    proc = _process(pid)
    with proc.oneshot():
        return ResourceSample(
            cpu=proc.cpu_percent(interval=None),
            memory=proc.memory_info().rss,
        )


class ResourceSampler:
    def __init__(
        self,
        pid: int | None = None,
        interval: float = DEFAULT_INTERVAL,
        sample_fn: SampleFn | None = None,
    ) -> None:
        self.pid = pid if pid is not None else os.getpid()
        self.interval = interval
        self._sample_fn = sample_fn or psutil_sample
        self._lock = threading.Lock()
        self._latest = ResourceSample()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.sample_now()

    @property
    def latest(self) -> ResourceSample:
        with self._lock:
            return self._latest

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sample_now(self) -> bool:
        """Take one sample; return False (and keep the old one) on failure."""
        try:
            sample = self._sample_fn(self.pid)
        except Exception as exc:
            failure = SamplingFailure(f"sampling pid {self.pid} failed: {exc!r}")
            logger.warning(
                "%s, keeping previous reading", failure, extra={"pid": self.pid}
            )
            return False
        with self._lock:
            self._latest = sample
        return True

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="prom-bundle-sampler", daemon=True
        )
        self._thread.start()
        logger.debug(
            "sampler started interval=%.1fs",
            self.interval,
            extra={"pid": self.pid},
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None:
            thread.join(timeout)
            logger.debug("sampler stopped", extra={"pid": self.pid})

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.sample_now()

    def __enter__(self) -> ResourceSampler:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
