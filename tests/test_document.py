import json

import pytest

from pizza_metrics.observability.document import GaugeMetric, MetricDocumentBuilder, SumMetric


def _metrics(builder: MetricDocumentBuilder) -> list[dict]:
    wire = builder.to_document().to_wire()
    return wire["resourceMetrics"][0]["scopeMetrics"][0]["metrics"]


def test_empty_series_is_omitted() -> None:
    builder = MetricDocumentBuilder("pizza", time_unix_nano=1)
    builder.append_series("request_latency", [], "sum", "ms")
    builder.append("get_requests", 0, "sum", "1")

    names = [m["name"] for m in _metrics(builder)]
    assert names == ["get_requests"]
    assert builder.to_document().get("request_latency") is None


def test_sum_record_is_cumulative_and_monotonic() -> None:
    builder = MetricDocumentBuilder("pizza", time_unix_nano=1)
    builder.append("revenue", 9.99, "sum", "1")

    [record] = _metrics(builder)
    assert record["unit"] == "1"
    assert "gauge" not in record
    assert record["sum"]["aggregationTemporality"] == "AGGREGATION_TEMPORALITY_CUMULATIVE"
    assert record["sum"]["isMonotonic"] is True


def test_gauge_record_has_no_sum_flags() -> None:
    builder = MetricDocumentBuilder("pizza", time_unix_nano=1)
    builder.append("cpu_usage", 37.5, "gauge", "%")

    [record] = _metrics(builder)
    assert "sum" not in record
    assert set(record["gauge"]) == {"dataPoints"}


def test_data_points_carry_value_time_and_source() -> None:
    builder = MetricDocumentBuilder("pizza-east", time_unix_nano=1_700_000_000_123_000_000)
    builder.append_series("request_latency", [12, 48.5], "sum", "ms")

    [record] = _metrics(builder)
    assert record["sum"]["dataPoints"] == [
        {
            "asDouble": 12.0,
            "timeUnixNano": 1_700_000_000_123_000_000,
            "attributes": [{"key": "source", "value": {"stringValue": "pizza-east"}}],
        },
        {
            "asDouble": 48.5,
            "timeUnixNano": 1_700_000_000_123_000_000,
            "attributes": [{"key": "source", "value": {"stringValue": "pizza-east"}}],
        },
    ]


def test_default_timestamp_is_nanoseconds_now() -> None:
    import time

    before = time.time_ns()
    builder = MetricDocumentBuilder("pizza")
    after = time.time_ns()

    assert before <= builder.time_unix_nano <= after


def test_to_document_is_stable_between_calls() -> None:
    builder = MetricDocumentBuilder("pizza")
    builder.append("get_requests", 3, "sum", "1")
    builder.append("memory_usage", 51.2, "gauge", "%")

    first = builder.to_document()
    assert builder.to_document() == first

    builder.append("auth_success", 1, "sum", "1")
    assert builder.to_document() != first
    assert len(first.metrics) == 2


def test_records_are_tagged_variants() -> None:
    builder = MetricDocumentBuilder("pizza", time_unix_nano=1)
    builder.append("auth_failure", 2, "sum", "1")
    builder.append("cpu_usage", 4.0, "gauge", "%")

    doc = builder.to_document()
    assert isinstance(doc.get("auth_failure"), SumMetric)
    assert isinstance(doc.get("cpu_usage"), GaugeMetric)
    assert doc.get("cpu_usage").data_points[0].as_double == 4.0


def test_document_serializes_to_wire_json() -> None:
    builder = MetricDocumentBuilder("pizza", time_unix_nano=5)
    builder.append("pizza_purchases", 1, "sum", "1")

    payload = json.loads(builder.to_document().to_json())
    assert payload == {
        "resourceMetrics": [
            {
                "scopeMetrics": [
                    {
                        "metrics": [
                            {
                                "name": "pizza_purchases",
                                "unit": "1",
                                "sum": {
                                    "dataPoints": [
                                        {
                                            "asDouble": 1.0,
                                            "timeUnixNano": 5,
                                            "attributes": [{"key": "source", "value": {"stringValue": "pizza"}}],
                                        }
                                    ],
                                    "aggregationTemporality": "AGGREGATION_TEMPORALITY_CUMULATIVE",
                                    "isMonotonic": True,
                                },
                            }
                        ]
                    }
                ]
            }
        ]
    }


def test_unknown_metric_type_is_rejected() -> None:
    builder = MetricDocumentBuilder("pizza")
    with pytest.raises(ValueError):
        builder.append("weird", 1, "histogram", "1")  # type: ignore[arg-type]


def test_metric_type_can_be_passed_by_keyword() -> None:
    builder = MetricDocumentBuilder("pizza", time_unix_nano=1)
    builder.append("memory_usage", 61.0, metric_type="gauge", unit="%")
    builder.append_series("request_latency", [4, 8], metric_type="sum", unit="ms")

    doc = builder.to_document()
    assert isinstance(doc.get("memory_usage"), GaugeMetric)
    assert len(doc.get("request_latency").data_points) == 2
