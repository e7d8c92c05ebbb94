from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import prom_bundle` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from prom_bundle.core.sampler import ResourceSample  # noqa: E402
from prom_bundle.middleware.metrics import (  # noqa: E402
    PrometheusBundle,
    PrometheusMiddleware,
    prom_bundle,
)

FAKE_SAMPLE = ResourceSample(cpu=12.5, memory=4096)


def fake_sample(pid: int) -> ResourceSample:
    """Deterministic stand-in for psutil, so tests never depend on host load."""
    return FAKE_SAMPLE


def build_app(bundle: PrometheusBundle) -> FastAPI:
    """A tiny app with one route per outcome the middleware cares about."""
    app = FastAPI()
    app.add_middleware(PrometheusMiddleware, bundle=bundle)

    @app.get("/")
    async def index() -> dict[str, str]:
        return {"hello": "world"}

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/users/{user_id}")
    async def get_user(user_id: int) -> dict[str, int]:
        return {"id": user_id}

    @app.get("/missing")
    async def missing() -> None:
        raise HTTPException(status_code=404, detail="nope")

    @app.get("/teapot")
    async def teapot() -> PlainTextResponse:
        return PlainTextResponse("short and stout", status_code=418)

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("boom")

    return app


@pytest.fixture
def make_bundle() -> Iterator[Callable[..., PrometheusBundle]]:
    """Factory for bundles with a fake sampler; all are closed after the test."""
    created: list[PrometheusBundle] = []

    def _make(**options: object) -> PrometheusBundle:
        bundle = prom_bundle(sample_fn=fake_sample, **options)
        assert isinstance(bundle, PrometheusBundle)
        created.append(bundle)
        return bundle

    yield _make

    for bundle in created:
        bundle.close()


@pytest.fixture
def bundle(make_bundle: Callable[..., PrometheusBundle]) -> PrometheusBundle:
    return make_bundle()


@pytest.fixture
def client(bundle: PrometheusBundle) -> TestClient:
    return TestClient(build_app(bundle), raise_server_exceptions=False)
