"""The metric catalog: every metric prom-bundle knows how to produce.

This module defines all metrics in one place, a single inventory of
everything the middleware can measure.  The catalog is CLOSED: the
allow/deny lists select from it, but nothing outside it can be added
at runtime.

THE CATALOG
-------------

  up                             gauge      1 while the process serves traffic
  http_request_duration_seconds  histogram  request latency by status code
  process_cpu                    gauge      CPU percent of this process
  process_memory                 gauge      resident memory (RSS) in bytes
  process_load1/5/15             gauge      host load averages

THE TWO METRIC TYPES WE USE
------------------------------

1. GAUGE: a number that goes UP and DOWN.  Each write replaces the
   previous value.  CPU percent at the last sample, memory right now,
   the load average are all snapshots of current state.

2. HISTOGRAM: groups observations into "buckets" by value.
   From the bucket counts Prometheus can estimate percentiles:

     histogram_quantile(0.99, rate(http_request_duration_seconds_bucket[5m]))
     → "99% of requests completed in under X seconds"

   The default buckets (3ms … 10s) are deliberately coarse: six bounds
   times every status code is the whole series budget.

WHY FACTORIES, NOT MODULE-LEVEL METRICS
------------------------------------------
Instruments are built per middleware instance, and only when selected.
A factory per catalog entry lets the registry decide whether to call it.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Sequence

from prom_bundle.core.instruments import DEFAULT_BUCKETS, Gauge, Histogram, Instrument


class MetricName(str, enum.Enum):
    UP = "up"
    HTTP_REQUEST_DURATION = "http_request_duration_seconds"
    PROCESS_CPU = "process_cpu"
    PROCESS_MEMORY = "process_memory"
    PROCESS_LOAD1 = "process_load1"
    PROCESS_LOAD5 = "process_load5"
    PROCESS_LOAD15 = "process_load15"


CATALOG: tuple[str, ...] = tuple(m.value for m in MetricName)

LOAD_AVERAGE_METRICS: tuple[MetricName, ...] = (
    MetricName.PROCESS_LOAD1,
    MetricName.PROCESS_LOAD5,
    MetricName.PROCESS_LOAD15,
)


def duration_label_names(
    *, include_method: bool = False, include_path: bool = False
) -> tuple[str, ...]:
    """Labels of the duration histogram, in exposition order."""
    names = ["status_code"]
    if include_method:
        names.append("method")
    if include_path:
        names.append("path")
    return tuple(names)


def metric_factories(
    *,
    buckets: Sequence[float] = DEFAULT_BUCKETS,
    include_method: bool = False,
    include_path: bool = False,
    duration_metric_name: str | None = None,
) -> dict[MetricName, Callable[[], Instrument]]:
    """Map every catalog entry to a zero-argument instrument factory."""
    labelnames = duration_label_names(
        include_method=include_method, include_path=include_path
    )
    return {
        MetricName.UP: lambda: Gauge("up", "1 = up, 0 = not up"),
        MetricName.HTTP_REQUEST_DURATION: lambda: Histogram(
            duration_metric_name or MetricName.HTTP_REQUEST_DURATION.value,
            "duration histogram of http responses labeled with status code",
            labelnames,
            buckets=buckets,
        ),
        MetricName.PROCESS_CPU: lambda: Gauge(
            "process_cpu", "process CPU usage in percent"
        ),
        MetricName.PROCESS_MEMORY: lambda: Gauge(
            "process_memory", "process resident memory in bytes"
        ),
        MetricName.PROCESS_LOAD1: lambda: Gauge(
            "process_load1", "1-minute load average of the host"
        ),
        MetricName.PROCESS_LOAD5: lambda: Gauge(
            "process_load5", "5-minute load average of the host"
        ),
        MetricName.PROCESS_LOAD15: lambda: Gauge(
            "process_load15", "15-minute load average of the host"
        ),
    }
