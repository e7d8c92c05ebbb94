"""Prometheus middleware: instruments requests and serves /metrics.

Every request takes exactly one of three branches:

  1. SCRAPE      path matches metrics_path (and autoregister is on)
                 → 200 with the exposition text; the app never sees it
  2. EXCLUDED    path matches an exclude_paths pattern
                 → passed straight to the app, nothing recorded
  3. INSTRUMENTED everything else
                 → duration timer started, resource gauges refreshed,
                   app called, timer stopped with the final status code

THE TIMER IS STOPPED IN A `finally`
-------------------------------------
The status code is only known after the app responds, so the timer is
started with status_code=0 and the label is filled in afterwards:

  pending = histogram.start_timer({"status_code": 0})
  try:
      response = await call_next(request)      # 200, 404, …
      status_code = response.status_code
  except Exception:
      status_code = 500                        # the app blew up
      raise
  finally:
      pending.labels["status_code"] = status_code
      pending.stop()

The `finally` runs on success, on an exception AND when the task is
cancelled (client went away → asyncio.CancelledError, which is not an
Exception).  In that last case status_code is still 0.

call_next() returns once the app has sent its headers; the body may
still be streaming.  So when the response has a body_iterator, the
timer is handed over to a wrapper around it and stopped there instead:
after the last chunk with the response status, with 500 when the body
raises, and with 0 when the client goes away mid-body.  Either way
every started timer is stopped exactly once.

TWO WAYS TO INSTALL IT
------------------------

  app.add_middleware(PrometheusMiddleware, allow=["up"])

  bundle = prom_bundle(exclude_paths=["/health"])
  app.middleware("http")(bundle)

The second form needs prom_bundle() to be CALLED first.  Passing the
factory itself (app.middleware("http")(prom_bundle)) makes Starlette
call it with (request, call_next).  That is caught and answered with a
500 page explaining the mistake, instead of an obscure crash.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Awaitable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.types import ASGIApp

from prom_bundle.core.config import BundleOptions
from prom_bundle.core.errors import ConfigurationError, MisuseError
from prom_bundle.core.instruments import Gauge, Histogram, PendingObservation
from prom_bundle.core.metrics import (
    CATALOG,
    LOAD_AVERAGE_METRICS,
    MetricName,
    metric_factories,
)
from prom_bundle.core.paths import normalize_path
from prom_bundle.core.patterns import matches, select_metric_names
from prom_bundle.core.registry import MetricRegistry
from prom_bundle.core.sampler import ResourceSampler, SampleFn

logger = logging.getLogger(__name__)

_MISUSE_PAGE = (
    "<h1>500 Error</h1>\n"
    "<p>Unexpected request argument passed to prom_bundle.\n"
    "<p>Did you pass prom_bundle to app.middleware() "
    "without calling it as a function first?"
)


class PrometheusBundle:
    """The interceptor: a registry of selected instruments plus dispatch logic.

    Instances are async ``(request, call_next)`` callables, the shape
    Starlette expects from an HTTP middleware function.
    """

    def __init__(
        self, options: BundleOptions, *, sample_fn: SampleFn | None = None
    ) -> None:
        self.options = options
        active = select_metric_names(CATALOG, options.allow, options.deny)
        self.registry = MetricRegistry(active)

        factories = metric_factories(
            buckets=options.buckets,
            include_method=options.include_method,
            include_path=options.include_path,
            duration_metric_name=options.metric_name_override,
        )
        for name in MetricName:
            self.registry.register(name, factories[name])

        self._up: Gauge | None = self.registry.get(MetricName.UP)
        self._duration: Histogram | None = self.registry.get(
            MetricName.HTTP_REQUEST_DURATION
        )
        self._cpu: Gauge | None = self.registry.get(MetricName.PROCESS_CPU)
        self._memory: Gauge | None = self.registry.get(MetricName.PROCESS_MEMORY)
        self._loads: list[Gauge | None] = [
            self.registry.get(name) for name in LOAD_AVERAGE_METRICS
        ]

        self.sampler: ResourceSampler | None = None
        if self._cpu is not None or self._memory is not None:
            self.sampler = ResourceSampler(
                interval=options.sample_interval, sample_fn=sample_fn
            )
            self.sampler.start()

        if self._up is not None:
            self._up.set(1)

        logger.info(
            "prom-bundle ready with %d metric(s): %s",
            len(self.registry),
            ", ".join(self.registry.names()),
            extra={"metrics": self.registry.names()},
        )

    # -- request handling -------------------------------------------------

    async def __call__(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path

        if self.options.autoregister and self.is_scrape_path(path):
            return self.scrape_response()

        if matches(path, self.options.exclude_paths):
            return await call_next(request)

        pending = None
        if self._duration is not None:
            pending = self._duration.start_timer(self._initial_labels(request))

        self._record_resources()

        status_code = 0
        try:
            response = await call_next(request)
            status_code = response.status_code
            body = getattr(response, "body_iterator", None)
            if pending is not None and body is not None:
                # Headers are out but the body still streams; time it too.
                response.body_iterator = _stop_after_body(body, pending, status_code)
                pending = None
        except Exception:
            status_code = 500
            raise
        finally:
            if pending is not None:
                pending.labels["status_code"] = status_code
                pending.stop()

        return response

    def is_scrape_path(self, path: str) -> bool:
        return matches(path, (self.options.metrics_path,))

    def scrape_response(self) -> Response:
        """Refresh the point-in-time gauges and render the registry."""
        self._record_resources()
        return Response(
            content=self.registry.serialize(),
            media_type=self.registry.content_type,
        )

    def _initial_labels(self, request: Request) -> dict[str, object]:
        labels: dict[str, object] = {"status_code": 0}
        if self.options.include_method:
            labels["method"] = request.method
        if self.options.include_path:
            labels["path"] = normalize_path(request.url.path)
        return labels

    def _record_resources(self) -> None:
        if self.sampler is not None:
            sample = self.sampler.latest
            if self._cpu is not None:
                self._cpu.set(sample.cpu)
            if self._memory is not None:
                self._memory.set(sample.memory)

        if any(gauge is not None for gauge in self._loads):
            loads = _load_average()
            if loads is not None:
                for gauge, value in zip(self._loads, loads):
                    if gauge is not None:
                        gauge.set(value)

    # -- lifecycle --------------------------------------------------------

    def close(self) -> None:
        """Stop background sampling and report the process as not up."""
        if self.sampler is not None:
            self.sampler.stop()
        if self._up is not None:
            self._up.set(0)

    @asynccontextmanager
    async def lifespan(self, _app: Any = None) -> AsyncIterator[None]:
        """Lifespan hook: ``FastAPI(lifespan=bundle.lifespan)``."""
        try:
            yield
        finally:
            self.close()


async def _stop_after_body(
    body: AsyncIterator[Any], pending: PendingObservation, status_code: int
) -> AsyncIterator[Any]:
    """Yield ``body``, then stop ``pending`` once it is sent, fails or is closed."""
    outcome = 0
    try:
        async for chunk in body:
            yield chunk
        outcome = status_code
    except Exception:
        outcome = 500
        raise
    finally:
        pending.labels["status_code"] = outcome
        pending.stop()


def _load_average() -> tuple[float, float, float] | None:
    getloadavg = getattr(os, "getloadavg", None)
    if getloadavg is None:
        return None
    try:
        return getloadavg()
    except OSError:
        return None


async def _misuse_response(request: Request) -> Response:
    error = MisuseError(
        "prom_bundle was called with a request; call prom_bundle(...) first "
        "and install the result"
    )
    logger.error(
        "%s", error, extra={"method": request.method, "path": request.url.path}
    )
    return HTMLResponse(_MISUSE_PAGE, status_code=500)


def prom_bundle(
    options: BundleOptions | Mapping[str, Any] | None = None,
    *misuse_args: Any,
    sample_fn: SampleFn | None = None,
    **kwargs: Any,
) -> PrometheusBundle | Awaitable[Response]:
    """Build a PrometheusBundle from BundleOptions, a mapping, or keywords.

    Raises ConfigurationError for conflicting, removed or unknown options.
    When handed a Request (the factory installed as middleware by mistake)
    it returns an awaitable 500 page instead.
    """
    if isinstance(options, Request):
        return _misuse_response(options)
    if misuse_args:
        raise ConfigurationError("prom_bundle takes a single options argument")

    if isinstance(options, BundleOptions):
        if kwargs:
            raise ConfigurationError(
                "pass either BundleOptions or keyword options, not both"
            )
    else:
        options = BundleOptions.from_mapping({**(options or {}), **kwargs})
    return PrometheusBundle(options, sample_fn=sample_fn)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """prom-bundle as a middleware class, for ``app.add_middleware``.

    Pass a prebuilt ``bundle=`` to keep a handle on its registry,
    otherwise the keyword options are handed to prom_bundle().
    """

    def __init__(
        self,
        app: ASGIApp,
        bundle: PrometheusBundle | None = None,
        **options: Any,
    ) -> None:
        if bundle is None:
            bundle = prom_bundle(**options)
        elif options:
            raise ConfigurationError("pass either bundle or options, not both")
        self.bundle = bundle
        super().__init__(app, dispatch=bundle)
