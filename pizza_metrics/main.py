from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from pizza_metrics.config import Settings, get_settings
from pizza_metrics.observability.exporter import MetricsExporter
from pizza_metrics.observability.logging import configure_logging
from pizza_metrics.observability.metrics import InMemoryMetrics, get_metrics, set_metrics
from pizza_metrics.observability.middleware import RequestContextMiddleware


def create_app(settings: Settings | None = None, metrics: InMemoryMetrics | None = None) -> FastAPI:
    settings = settings or get_settings()
    if metrics is None:
        metrics = get_metrics()
        metrics.active_user_ttl_s = settings.metrics_active_user_ttl_s
    else:
        set_metrics(metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.log_level)
        exporter: MetricsExporter | None = None
        if settings.exporter_enabled:
            exporter = MetricsExporter(metrics, settings)
            exporter.start()
        else:
            structlog.get_logger("metrics").info("metrics.exporter_disabled")
        app.state.exporter = exporter
        try:
            yield
        finally:
            if exporter is not None:
                await exporter.stop(final_flush=True)

    app = FastAPI(title="Pizza Service", version="0.1.0", lifespan=lifespan)
    app.state.metrics = metrics
    app.add_middleware(
        RequestContextMiddleware,
        metrics=metrics,
        order_path=settings.metrics_order_path,
        auth_path=settings.metrics_auth_path,
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
