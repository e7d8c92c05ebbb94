"""Prometheus metrics endpoint, as a FastAPI router.

With the default autoregister=True the middleware answers /metrics on
its own and this router is not needed.  Turn autoregister off when the
endpoint should live somewhere the application controls, behind its
own auth dependency, on a separate router prefix, and so on:

  bundle = prom_bundle(autoregister=False, exclude_paths=["/internal/metrics"])
  app.include_router(make_metrics_router(bundle, "/internal/metrics"))

Excluding the path keeps scrapes out of the request-duration histogram.

The response is plain text in Prometheus exposition format, NOT JSON:

  # HELP up 1 = up, 0 = not up
  # TYPE up gauge
  up 1.0
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response

from prom_bundle.middleware.metrics import PrometheusBundle


def make_metrics_router(bundle: PrometheusBundle, path: str = "/metrics") -> APIRouter:
    router = APIRouter(tags=["observability"])

    @router.get(path, include_in_schema=False)
    async def metrics() -> Response:
        """Expose the bundle's metrics in text exposition format."""
        return bundle.scrape_response()

    return router
