from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import MutableHeaders

from pizza_metrics.observability.metrics import TRACKED_METHODS, InMemoryMetrics, get_metrics

logger = structlog.get_logger("metrics")

DEFAULT_ORDER_PATH = "/api/order"
DEFAULT_AUTH_PATH = "/api/auth"


@dataclass(frozen=True)
class RequestEvent:
    """A finished HTTP exchange, as seen by the metrics hook."""

    method: str
    path: str
    status_code: int
    body: Any
    elapsed_ms: float


def _order_revenue(body: Any) -> float:
    items = body.get("items") if isinstance(body, dict) else None
    if not isinstance(items, list):
        return 0.0

    total = 0.0
    for item in items:
        price = item.get("price") if isinstance(item, dict) else None
        # bool is an int subclass; a `true` price is not a price.
        if isinstance(price, (int, float)) and not isinstance(price, bool) and math.isfinite(price):
            total += price
    return total


def _auth_user(body: Any) -> str | None:
    email = body.get("email") if isinstance(body, dict) else None
    return email if isinstance(email, str) and email else None


def record_request_event(
    metrics: InMemoryMetrics,
    event: RequestEvent,
    order_path: str = DEFAULT_ORDER_PATH,
    auth_path: str = DEFAULT_AUTH_PATH,
) -> None:
    """Classify one finished request and fold it into ``metrics``.

    The verb count and the business record (order or auth) are independent;
    a request may produce one of each.
    """

    method = event.method.upper()
    ok = event.status_code == 200

    if method in TRACKED_METHODS:
        metrics.record_request(method, event.elapsed_ms)

    if event.path == order_path and method == "POST":
        metrics.record_order(ok, event.elapsed_ms, _order_revenue(event.body) if ok else 0.0)
    elif event.path == auth_path and method in ("POST", "PUT"):
        metrics.record_auth(ok, _auth_user(event.body) if ok else None)


def _parse_body(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


class RequestContextMiddleware:
    """Adds request_id context, access logs, and request/business metrics.

    The request body is only buffered for the order and auth paths, where the
    hook needs the item prices or the user's email.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        metrics: InMemoryMetrics | None = None,
        order_path: str = DEFAULT_ORDER_PATH,
        auth_path: str = DEFAULT_AUTH_PATH,
    ) -> None:
        self.app = app
        self._metrics = metrics
        self.order_path = order_path
        self.auth_path = auth_path
        self._body_paths = {order_path, auth_path}

    @property
    def metrics(self) -> InMemoryMetrics:
        return self._metrics if self._metrics is not None else get_metrics()

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        path = scope.get("path") or ""
        method = scope.get("method") or ""

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=path,
            method=method,
        )

        start = perf_counter()
        status_code: int = 500
        body_chunks: list[bytes] = []
        capture_body = path in self._body_paths

        async def receive_wrapper() -> dict[str, Any]:
            message = await receive()
            if message.get("type") == "http.request":
                body_chunks.append(message.get("body", b""))
            return message

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive_wrapper if capture_body else receive, send_wrapper)
        finally:
            elapsed_ms = (perf_counter() - start) * 1000.0

            # Update metrics first so they update even if logging misbehaves.
            event = RequestEvent(
                method=method,
                path=path,
                status_code=status_code,
                body=_parse_body(b"".join(body_chunks)) if capture_body else None,
                elapsed_ms=elapsed_ms,
            )
            try:
                record_request_event(self.metrics, event, order_path=self.order_path, auth_path=self.auth_path)
            except Exception:  # noqa: BLE001 - metrics must never break a response
                logger.exception("metrics.hook_failed")

            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                elapsed_ms=round(elapsed_ms, 2),
            )

            structlog.contextvars.clear_contextvars()
