"""OTLP/JSON-shaped export document.

The wire shape is ``resourceMetrics[].scopeMetrics[].metrics[]``; each metric
carries exactly one of ``sum`` or ``gauge``. Models are frozen and serialize
with camelCase aliases to match the backend's field names.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

MetricType = Literal["sum", "gauge"]

CUMULATIVE = "AGGREGATION_TEMPORALITY_CUMULATIVE"


class _Base(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class AnyValue(_Base):
    string_value: str


class KeyValue(_Base):
    key: str
    value: AnyValue


class NumberDataPoint(_Base):
    as_double: float
    time_unix_nano: int
    attributes: tuple[KeyValue, ...] = ()


class SumData(_Base):
    data_points: tuple[NumberDataPoint, ...]
    aggregation_temporality: Literal["AGGREGATION_TEMPORALITY_CUMULATIVE"] = CUMULATIVE
    is_monotonic: Literal[True] = True


class GaugeData(_Base):
    data_points: tuple[NumberDataPoint, ...]


class SumMetric(_Base):
    name: str
    unit: str
    sum: SumData

    @property
    def data_points(self) -> tuple[NumberDataPoint, ...]:
        return self.sum.data_points


class GaugeMetric(_Base):
    name: str
    unit: str
    gauge: GaugeData

    @property
    def data_points(self) -> tuple[NumberDataPoint, ...]:
        return self.gauge.data_points


Metric = Union[SumMetric, GaugeMetric]


class ScopeMetrics(_Base):
    metrics: tuple[Metric, ...] = ()


class ResourceMetrics(_Base):
    scope_metrics: tuple[ScopeMetrics, ...] = ()


class ExportDocument(_Base):
    resource_metrics: tuple[ResourceMetrics, ...] = ()

    @property
    def metrics(self) -> tuple[Metric, ...]:
        return tuple(m for rm in self.resource_metrics for sm in rm.scope_metrics for m in sm.metrics)

    def get(self, name: str) -> Metric | None:
        for metric in self.metrics:
            if metric.name == name:
                return metric
        return None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class MetricDocumentBuilder:
    """Accumulates metric records for one export.

    Every data point is stamped with the builder's construction time and the
    configured source label, so ``to_document()`` is stable across calls.
    """

    def __init__(self, source: str, time_unix_nano: int | None = None) -> None:
        self.source = source
        self.time_unix_nano = time.time_ns() if time_unix_nano is None else time_unix_nano
        self._attributes = (KeyValue(key="source", value=AnyValue(string_value=source)),)
        self._metrics: list[Metric] = []

    def append(self, name: str, value: float, metric_type: MetricType, unit: str) -> None:
        self.append_series(name, [value], metric_type, unit)

    def append_series(self, name: str, values: Iterable[float], metric_type: MetricType, unit: str) -> None:
        if metric_type not in ("sum", "gauge"):
            raise ValueError(f"Unknown metric type {metric_type!r}")

        points = tuple(
            NumberDataPoint(as_double=float(v), time_unix_nano=self.time_unix_nano, attributes=self._attributes)
            for v in values
        )
        if not points:
            return

        if metric_type == "sum":
            self._metrics.append(SumMetric(name=name, unit=unit, sum=SumData(data_points=points)))
        else:
            self._metrics.append(GaugeMetric(name=name, unit=unit, gauge=GaugeData(data_points=points)))

    def __len__(self) -> int:
        return len(self._metrics)

    def to_document(self) -> ExportDocument:
        scope = ScopeMetrics(metrics=tuple(self._metrics))
        return ExportDocument(resource_metrics=(ResourceMetrics(scope_metrics=(scope,)),))
