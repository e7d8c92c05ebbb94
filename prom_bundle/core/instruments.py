"""Metric instruments: Gauge and Histogram.

Both instruments are prometheus_client *custom collectors*: they keep
their own state and hand a MetricFamily to the CollectorRegistry when it
asks (collect()).  prometheus_client then does the text rendering, so
the exposition format is the library's, not ours.

WHY NOT prometheus_client.Gauge / Histogram DIRECTLY
------------------------------------------------------
The stock classes keep one lock per value cell.  A scrape that lands in
the middle of Histogram.observe() can read the new _sum next to the old
bucket counts.  Here every instrument has ONE lock:

  observe()  → takes the lock once, updates buckets + count + sum
  collect()  → takes the lock once, copies every cell, renders outside

so a rendered block is always a single instant's state.  The stock
histogram would also emit a *_created series per label set, which is
noise for a request-duration histogram.

LABELS
-------
Label names are fixed when the instrument is created.  Every update must
supply exactly those keys, otherwise LabelMismatchError is raised.  Values are rendered with str(), so
status_code=200 and status_code="200" land in the same series.

HISTOGRAM BUCKETS ARE CUMULATIVE
----------------------------------
With bounds [0.003, 0.03, 0.1, 0.3, 1.5, 10], observe(0.05) increments
0.1, 0.3, 1.5, 10 and +Inf, and leaves 0.003 and 0.03 alone.  A bucket
for a larger bound can therefore never hold fewer observations than a
bucket for a smaller one.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field

from prometheus_client.core import GaugeMetricFamily, HistogramMetricFamily, Metric
from prometheus_client.utils import floatToGoString

from prom_bundle.core.errors import ConfigurationError, LabelMismatchError

Labels = Mapping[str, object]

DEFAULT_BUCKETS: tuple[float, ...] = (0.003, 0.03, 0.1, 0.3, 1.5, 10.0)


def validate_buckets(buckets: Sequence[float]) -> tuple[float, ...]:
    """Return ``buckets`` sorted ascending, rejecting empty, duplicate or non-finite bounds."""
    bounds = sorted(float(b) for b in buckets)
    if not bounds:
        raise ConfigurationError("histogram needs at least one bucket bound")
    if any(not math.isfinite(b) for b in bounds):
        raise ConfigurationError(f"histogram bucket bounds must be finite, got {bounds}")
    if len(set(bounds)) != len(bounds):
        raise ConfigurationError(f"histogram bucket bounds must be unique, got {bounds}")
    return tuple(bounds)


class Instrument:
    """Common base: name, help text, ordered label names, one lock."""

    kind = "untyped"

    def __init__(
        self, name: str, documentation: str, labelnames: Sequence[str] = ()
    ) -> None:
        self.name = name
        self.documentation = documentation
        self.labelnames: tuple[str, ...] = tuple(labelnames)
        self._lock = threading.Lock()

    def _key(self, labels: Labels | None) -> tuple[str, ...]:
        labels = labels or {}
        if set(labels) != set(self.labelnames):
            raise LabelMismatchError(self.name, self.labelnames, set(labels))
        return tuple(str(labels[n]) for n in self.labelnames)

    def update(self, value: float, labels: Labels | None = None) -> None:
        raise NotImplementedError

    def _family(self) -> Metric:
        raise NotImplementedError

    def describe(self) -> list[Metric]:
        # Lets CollectorRegistry learn our series names without a collect().
        return [self._family()]

    def collect(self) -> Iterator[Metric]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, labelnames={self.labelnames!r})"


class Gauge(Instrument):
    """Last-write-wins scalar, one per label combination."""

    kind = "gauge"

    def __init__(
        self, name: str, documentation: str, labelnames: Sequence[str] = ()
    ) -> None:
        super().__init__(name, documentation, labelnames)
        self._values: dict[tuple[str, ...], float] = {}

    def set(self, value: float, labels: Labels | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = float(value)

    def update(self, value: float, labels: Labels | None = None) -> None:
        self.set(value, labels)

    def get(self, labels: Labels | None = None) -> float | None:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key)

    def _family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(
            self.name, self.documentation, labels=list(self.labelnames)
        )

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            rows = list(self._values.items())
        family = self._family()
        for key, value in rows:
            family.add_metric(list(key), value)
        yield family


@dataclass
class _HistogramCell:
    buckets: list[int]
    count: int = 0
    sum: float = 0.0


@dataclass(frozen=True)
class HistogramSnapshot:
    """Point-in-time copy of one label combination of a histogram."""

    buckets: tuple[tuple[float, int], ...]
    count: int
    sum: float


class Histogram(Instrument):
    """Cumulative bucketed histogram with running sum and count."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        buckets: Sequence[float] = DEFAULT_BUCKETS,
    ) -> None:
        super().__init__(name, documentation, labelnames)
        self.buckets = validate_buckets(buckets)
        self._cells: dict[tuple[str, ...], _HistogramCell] = {}

    def observe(self, value: float, labels: Labels | None = None) -> None:
        key = self._key(labels)
        value = float(value)
        with self._lock:
            cell = self._cells.get(key)
            if cell is None:
                cell = _HistogramCell(buckets=[0] * len(self.buckets))
                self._cells[key] = cell
            for i, bound in enumerate(self.buckets):
                if value <= bound:
                    cell.buckets[i] += 1
            cell.count += 1
            cell.sum += value

    def update(self, value: float, labels: Labels | None = None) -> None:
        self.observe(value, labels)

    def start_timer(self, labels: Labels | None = None) -> PendingObservation:
        """Start timing; the returned handle observes the elapsed time on stop()."""
        return PendingObservation(self, dict(labels or {}))

    def snapshot(self, labels: Labels | None = None) -> HistogramSnapshot | None:
        key = self._key(labels)
        with self._lock:
            cell = self._cells.get(key)
            if cell is None:
                return None
            return HistogramSnapshot(
                buckets=tuple(zip(self.buckets, cell.buckets)),
                count=cell.count,
                sum=cell.sum,
            )

    def _family(self) -> HistogramMetricFamily:
        return HistogramMetricFamily(
            self.name, self.documentation, labels=list(self.labelnames)
        )

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            rows = [
                (key, list(cell.buckets), cell.count, cell.sum)
                for key, cell in self._cells.items()
            ]
        family = self._family()
        for key, counts, count, total in rows:
            buckets = [
                (floatToGoString(bound), n) for bound, n in zip(self.buckets, counts)
            ]
            buckets.append(("+Inf", count))
            family.add_metric(list(key), buckets, total)
        yield family


@dataclass
class PendingObservation:
    """A running histogram timer.

    ``labels`` stays mutable until stop(): the interceptor starts the
    timer before the handler runs and only learns the status code after,
    so it fills the label in and then stops.

    stop() observes exactly once.  A second call does nothing and returns
    None, so a completion path that runs twice cannot double-count.
    """

    histogram: Histogram
    labels: dict[str, object]
    started_at: float = field(default_factory=time.monotonic)
    _stopped: bool = field(default=False, init=False, repr=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> float | None:
        with self._lock:
            if self._stopped:
                return None
            self._stopped = True
        elapsed = time.monotonic() - self.started_at
        self.histogram.observe(elapsed, self.labels)
        return elapsed

    def __enter__(self) -> PendingObservation:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
