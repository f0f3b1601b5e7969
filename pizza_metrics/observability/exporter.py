from __future__ import annotations

import asyncio

import httpx
import structlog

from pizza_metrics.config import Settings
from pizza_metrics.observability.document import ExportDocument, MetricDocumentBuilder
from pizza_metrics.observability.errors import SamplingError, TransmissionError
from pizza_metrics.observability.metrics import InMemoryMetrics, WindowSnapshot
from pizza_metrics.observability.resources import ResourceSampler, Sampler

logger = structlog.get_logger("metrics")


def _http_metrics(builder: MetricDocumentBuilder, snapshot: WindowSnapshot) -> None:
    counts = snapshot.request_counts_by_verb
    builder.append("get_requests", counts["GET"], "sum", "1")
    builder.append("put_requests", counts["PUT"], "sum", "1")
    builder.append("post_requests", counts["POST"], "sum", "1")
    builder.append("delete_requests", counts["DELETE"], "sum", "1")
    builder.append_series("request_latency", snapshot.request_latencies, "sum", "ms")


def _system_metrics(builder: MetricDocumentBuilder, sampler: Sampler) -> None:
    for name, read in (("cpu_usage", sampler.cpu_percent), ("memory_usage", sampler.memory_percent)):
        try:
            value = read()
        except SamplingError as exc:
            logger.warning("metrics.sample_failed", metric=name, error=str(exc))
            continue
        builder.append(name, value, "gauge", "%")


def _user_metrics(builder: MetricDocumentBuilder, snapshot: WindowSnapshot) -> None:
    builder.append("active_users", snapshot.active_user_count, "sum", "1")


def _purchase_metrics(builder: MetricDocumentBuilder, snapshot: WindowSnapshot) -> None:
    builder.append("pizza_purchases", snapshot.order_success_count, "sum", "1")
    builder.append("pizza_errors", snapshot.order_failure_count, "sum", "1")
    builder.append("revenue", snapshot.revenue, "sum", "1")
    builder.append_series("pizza_creation_latency", snapshot.order_latencies, "sum", "ms")


def _auth_metrics(builder: MetricDocumentBuilder, snapshot: WindowSnapshot) -> None:
    builder.append("auth_success", snapshot.auth_success_count, "sum", "1")
    builder.append("auth_failure", snapshot.auth_failure_count, "sum", "1")


def build_document(snapshot: WindowSnapshot, sampler: Sampler, source: str) -> ExportDocument:
    builder = MetricDocumentBuilder(source)
    _http_metrics(builder, snapshot)
    _system_metrics(builder, sampler)
    _user_metrics(builder, snapshot)
    _purchase_metrics(builder, snapshot)
    _auth_metrics(builder, snapshot)
    return builder.to_document()


def _log_failed_flush(task: asyncio.Task[bool]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("metrics.flush_failed", error=f"{type(exc).__name__}: {exc}")


class MetricsExporter:
    """Periodically snapshots the aggregator and pushes the window to the backend.

    Snapshot, reset and document build run synchronously; the HTTP push is the
    only await, so requests finishing during a push land in the next window.
    A failed push is logged and dropped; there is no retry or requeue.
    """

    def __init__(
        self,
        metrics: InMemoryMetrics,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        sampler: Sampler | None = None,
    ) -> None:
        self.metrics = metrics
        self.settings = settings
        self.sampler = sampler if sampler is not None else ResourceSampler()
        self._client = client
        self._owns_client = client is None
        self._flushing = False
        self._timer: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[bool] | None = None

    @property
    def flushing(self) -> bool:
        return self._flushing

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.metrics_push_timeout_s)
        return self._client

    def build_document(self) -> ExportDocument:
        """Take the window (resetting the aggregator) and render it."""

        snapshot = self.metrics.snapshot_and_reset()
        return build_document(snapshot, self.sampler, self.settings.metrics_source)

    async def _send(self, body: str) -> None:
        headers = {
            "Authorization": f"Bearer {self.settings.metrics_api_key}",
            "Content-Type": "application/json",
        }
        # InvalidURL and header encoding errors are not HTTPError subclasses.
        try:
            resp = await self._get_client().post(
                self.settings.metrics_url,
                content=body.encode("utf-8"),
                headers=headers,
                timeout=self.settings.metrics_push_timeout_s,
            )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as exc:
            raise TransmissionError(f"{type(exc).__name__}: {exc}") from exc

        if not resp.is_success:
            raise TransmissionError(f"HTTP {resp.status_code}", status_code=resp.status_code, body=resp.text)

    async def push(self, document: ExportDocument) -> bool:
        try:
            await self._send(document.to_json())
        except TransmissionError as exc:
            logger.error(
                "metrics.push_failed",
                error=str(exc),
                status_code=exc.status_code,
                response=exc.body,
                url=self.settings.metrics_url,
            )
            return False

        logger.info("metrics.pushed", metric_count=len(document.metrics))
        return True

    async def flush(self) -> bool:
        """Run one snapshot → build → push cycle.

        Returns ``False`` (without touching the aggregator) if a flush is
        already in progress, or if the push failed.
        """

        if self._flushing:
            logger.warning("metrics.flush_skipped", reason="flush_in_progress")
            return False

        self._flushing = True
        try:
            try:
                document = self.build_document()
            except Exception:  # noqa: BLE001 - a bad window must not stop the schedule
                logger.exception("metrics.build_failed")
                return False
            return await self.push(document)
        finally:
            self._flushing = False

    def tick(self) -> asyncio.Task[bool] | None:
        """Start a flush in the background unless one is still running."""

        if self._flushing or (self._inflight is not None and not self._inflight.done()):
            logger.warning("metrics.flush_skipped", reason="flush_in_progress")
            return None
        self._inflight = asyncio.create_task(self.flush())
        self._inflight.add_done_callback(_log_failed_flush)
        return self._inflight

    async def _run(self) -> None:
        period = self.settings.push_period_s
        while True:
            await asyncio.sleep(period)
            self.tick()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run())
        logger.info(
            "metrics.exporter_started",
            period_ms=self.settings.metrics_push_period_ms,
            source=self.settings.metrics_source,
        )

    async def stop(self, final_flush: bool = False) -> None:
        """Stop scheduling new flushes.

        An in-flight push is allowed to finish; ``final_flush`` sends the
        trailing partial window before the client is closed.
        """

        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        if self._inflight is not None:
            # wait() never re-raises; a failed flush was already logged by its callback.
            await asyncio.wait([self._inflight])
            self._inflight = None

        if final_flush:
            await self.flush()

        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

        logger.info("metrics.exporter_stopped")
