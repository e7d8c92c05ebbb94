"""Demo application: a small FastAPI app instrumented by prom-bundle.

RUN:  uvicorn prom_bundle.main:app

Every PROM_* environment variable (see core/config.py) shapes the
middleware, e.g.

  PROM_ALLOW=up,re:^http_ uvicorn prom_bundle.main:app
  PROM_INCLUDE_PATH=true PROM_EXCLUDE_PATHS=/health uvicorn prom_bundle.main:app
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException

from prom_bundle.api.metrics_endpoint import make_metrics_router
from prom_bundle.core.config import BundleOptions, load_options, load_settings
from prom_bundle.core.logging import setup_logging
from prom_bundle.core.sampler import SampleFn
from prom_bundle.middleware.metrics import PrometheusMiddleware, prom_bundle

SETTINGS = load_settings()

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


def create_app(
    options: BundleOptions | None = None, *, sample_fn: SampleFn | None = None
) -> FastAPI:
    bundle = prom_bundle(options or load_options(), sample_fn=sample_fn)

    # The lifespan stops the sampler thread when the server shuts down.
    app = FastAPI(title="prom-bundle demo", lifespan=bundle.lifespan)
    app.add_middleware(PrometheusMiddleware, bundle=bundle)
    app.state.prom_bundle = bundle

    if not bundle.options.autoregister:
        metrics_path = bundle.options.metrics_path
        app.include_router(
            make_metrics_router(
                bundle, metrics_path if isinstance(metrics_path, str) else "/metrics"
            )
        )

    @app.get("/")
    async def index() -> dict[str, str]:
        return {"hello": "world"}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/items/{item_id}")
    async def get_item(item_id: int) -> dict[str, int]:
        if item_id <= 0:
            raise HTTPException(status_code=404, detail="item not found")
        return {"id": item_id}

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("boom")

    return app


app = create_app()

logger.info(
    "prom-bundle demo started  log_level=%s metrics=%s",
    SETTINGS.log_level,
    ",".join(app.state.prom_bundle.registry.names()),
)
