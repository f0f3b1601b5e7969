from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import Body, HTTPException
from httpx import ASGITransport, AsyncClient

from pizza_metrics.config import Settings, get_settings
from pizza_metrics.main import create_app
from pizza_metrics.observability.errors import SamplingError
from pizza_metrics.observability.metrics import InMemoryMetrics, reset_metrics


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSampler:
    def __init__(self, cpu: float | None = 12.5, memory: float | None = 40.25) -> None:
        self.cpu = cpu
        self.memory = memory

    def cpu_percent(self) -> float:
        if self.cpu is None:
            raise SamplingError("cpu")
        return self.cpu

    def memory_percent(self) -> float:
        if self.memory is None:
            raise SamplingError("memory")
        return self.memory


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_SOURCE", "pizza-test")
    monkeypatch.setenv("METRICS_URL", "https://metrics.test/otlp/v1/metrics")
    monkeypatch.setenv("METRICS_API_KEY", "test-key")
    monkeypatch.setenv("METRICS_PUSH_PERIOD_MS", "50")
    get_settings.cache_clear()
    reset_metrics()

    yield

    reset_metrics()
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics(clock: FakeClock) -> InMemoryMetrics:
    return InMemoryMetrics(clock=clock)


@pytest.fixture
def sampler() -> FakeSampler:
    return FakeSampler()


@pytest.fixture
def service_app(settings: Settings, metrics: InMemoryMetrics):
    """The instrumented app plus stand-ins for the order and auth routes."""

    app = create_app(settings=settings, metrics=metrics)

    @app.post("/api/order")
    async def create_order(payload: dict = Body(...)) -> dict:
        if payload.get("fail"):
            raise HTTPException(status_code=500, detail="Failed to fulfill order at factory")
        return {"order": payload, "jwt": "factory-jwt"}

    @app.put("/api/auth")
    async def login(payload: dict = Body(...)) -> dict:
        if payload.get("password") != "a":
            raise HTTPException(status_code=404, detail="unknown user")
        return {"user": {"email": payload.get("email")}, "token": "t"}

    @app.post("/api/auth")
    async def register(payload: dict = Body(...)) -> dict:
        if not payload.get("email"):
            raise HTTPException(status_code=400, detail="name, email, and password are required")
        return {"user": {"email": payload["email"]}, "token": "t"}

    @app.get("/api/franchise")
    async def list_franchises() -> list:
        return []

    @app.delete("/api/franchise/{franchise_id}")
    async def delete_franchise(franchise_id: int) -> dict:
        return {"message": f"franchise {franchise_id} deleted"}

    return app


@pytest.fixture
async def api_client(service_app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=service_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
