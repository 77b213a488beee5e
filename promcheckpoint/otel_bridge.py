"""Pull MetricRecords out of the OpenTelemetry SDK."""
import logging
from typing import Iterator, List, Optional

from opentelemetry.sdk.metrics.export import (
    Gauge,
    Histogram,
    HistogramDataPoint,
    InMemoryMetricReader,
    Metric,
    MetricsData,
    NumberDataPoint,
    Sum,
)

from promcheckpoint.records import (
    HistogramBucket,
    HistogramSnapshot,
    LastValueSnapshot,
    MetricDescriptor,
    MetricKind,
    MetricRecord,
    SumSnapshot,
    ValueType,
)

logger = logging.getLogger(__name__)


def _value_type(value) -> ValueType:
    return ValueType.INT if isinstance(value, int) else ValueType.DOUBLE


def _descriptor(metric: Metric, kind: MetricKind, value_type: ValueType) -> MetricDescriptor:
    return MetricDescriptor(
        name=metric.name,
        description=metric.description or "",
        unit=metric.unit or "",
        metric_kind=kind,
        value_type=value_type,
    )


def _from_sum(metric: Metric) -> Iterator[MetricRecord]:
    kind = MetricKind.COUNTER if metric.data.is_monotonic else MetricKind.UP_DOWN_COUNTER
    point: NumberDataPoint
    for point in metric.data.data_points:
        yield MetricRecord(
            descriptor=_descriptor(metric, kind, _value_type(point.value)),
            labels=dict(point.attributes or {}),
            aggregator=SumSnapshot(point.value),
            timestamp_ns=point.time_unix_nano,
        )


def _from_gauge(metric: Metric) -> Iterator[MetricRecord]:
    point: NumberDataPoint
    for point in metric.data.data_points:
        yield MetricRecord(
            descriptor=_descriptor(metric, MetricKind.VALUE_OBSERVER, _value_type(point.value)),
            labels=dict(point.attributes or {}),
            aggregator=LastValueSnapshot(point.value, point.time_unix_nano),
            timestamp_ns=point.time_unix_nano,
        )


def _from_histogram(metric: Metric) -> Iterator[MetricRecord]:
    point: HistogramDataPoint
    for point in metric.data.data_points:
        # bucket_counts carries one extra overflow slot past the last bound;
        # zip drops it and the snapshot derives it from count.
        buckets = tuple(
            HistogramBucket(bound, count)
            for bound, count in zip(point.explicit_bounds, point.bucket_counts)
        )
        yield MetricRecord(
            descriptor=_descriptor(metric, MetricKind.VALUE_RECORDER, _value_type(point.sum)),
            labels=dict(point.attributes or {}),
            aggregator=HistogramSnapshot(buckets=buckets, sum=point.sum, count=point.count),
            timestamp_ns=point.time_unix_nano,
        )


_CONVERTERS = {
    Sum: _from_sum,
    Gauge: _from_gauge,
    Histogram: _from_histogram,
}


def records_from_metrics_data(metrics_data: Optional[MetricsData]) -> Iterator[MetricRecord]:
    """Convert SDK metrics data into MetricRecords, one per data point."""
    if metrics_data is None:
        return

    for resource_metrics in metrics_data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                converter = _CONVERTERS.get(type(metric.data))
                if converter is None:
                    logger.warning(
                        f"Skipping metric '{metric.name}': unsupported data type "
                        f"{type(metric.data).__name__}"
                    )
                    continue
                yield from converter(metric)


class OTelMetricSource:
    """Metric source backed by an SDK InMemoryMetricReader."""

    def __init__(self, reader: InMemoryMetricReader):
        self.reader = reader

    def collect(self) -> List[MetricRecord]:
        """Collect the SDK's current metrics as MetricRecords."""
        records = list(records_from_metrics_data(self.reader.get_metrics_data()))
        logger.debug(f"Collected {len(records)} records from OpenTelemetry SDK")
        return records
