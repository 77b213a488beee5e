"""Data structures for metric records and per-cycle checkpoints."""
import bisect
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from types import MappingProxyType
from typing import ClassVar, Iterable, Iterator, Tuple, Union

from promcheckpoint.errors import InvalidSnapshotError
from promcheckpoint.labels import Fingerprint, label_fingerprint, sanitize_metric_name


class MetricKind(Enum):
    """Instrument kinds produced by the instrumentation runtime."""
    COUNTER = "counter"
    UP_DOWN_COUNTER = "up_down_counter"
    VALUE_RECORDER = "value_recorder"
    SUM_OBSERVER = "sum_observer"
    UP_DOWN_SUM_OBSERVER = "up_down_sum_observer"
    VALUE_OBSERVER = "value_observer"


class ValueType(Enum):
    INT = "int"
    DOUBLE = "double"


class AggregatorKind(Enum):
    """Discriminant of the aggregator snapshot union."""
    SUM = "sum"
    LAST_VALUE = "last_value"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class MetricDescriptor:
    """Static description of an instrument."""
    name: str
    description: str = ""
    unit: str = ""
    metric_kind: MetricKind = MetricKind.COUNTER
    value_type: ValueType = ValueType.DOUBLE


@dataclass(frozen=True)
class SumSnapshot:
    """Accumulated sum for one cycle."""
    value: Union[int, float] = 0

    kind: ClassVar[AggregatorKind] = AggregatorKind.SUM


@dataclass(frozen=True)
class LastValueSnapshot:
    """Most recent observation and when it was taken."""
    value: Union[int, float] = 0
    timestamp_ns: int = 0

    kind: ClassVar[AggregatorKind] = AggregatorKind.LAST_VALUE


@dataclass(frozen=True)
class HistogramBucket:
    """Observations in (previous boundary, boundary]."""
    boundary: float
    count: int


@dataclass(frozen=True)
class HistogramSnapshot:
    """
    Explicit-bucket histogram.

    Bucket counts are per bucket, not cumulative. Observations above the
    last boundary are not listed; they are ``count`` minus the bucket total.
    """
    buckets: Tuple[HistogramBucket, ...] = ()
    sum: Union[int, float] = 0
    count: int = 0

    kind: ClassVar[AggregatorKind] = AggregatorKind.HISTOGRAM

    def __post_init__(self):
        buckets = tuple(
            b if isinstance(b, HistogramBucket) else HistogramBucket(*b)
            for b in self.buckets
        )
        object.__setattr__(self, "buckets", buckets)

        previous = None
        for bucket in buckets:
            if math.isnan(bucket.boundary):
                raise InvalidSnapshotError("Histogram boundary cannot be NaN")
            if previous is not None and bucket.boundary <= previous:
                raise InvalidSnapshotError(
                    f"Histogram boundaries must be strictly increasing, "
                    f"got {bucket.boundary} after {previous}"
                )
            if bucket.count < 0:
                raise InvalidSnapshotError(
                    f"Negative count {bucket.count} for boundary {bucket.boundary}"
                )
            previous = bucket.boundary

        total = sum(b.count for b in buckets)
        if total > self.count:
            raise InvalidSnapshotError(
                f"Bucket counts ({total}) exceed observation count ({self.count})"
            )

    @property
    def boundaries(self) -> Tuple[float, ...]:
        return tuple(b.boundary for b in self.buckets)

    def cumulative_buckets(self) -> Iterator[Tuple[float, int]]:
        """
        Yield (boundary, cumulative count) in ascending boundary order.

        The last pair is always (inf, count). An explicit infinite
        boundary is folded into that terminal pair.
        """
        running = 0
        for bucket in self.buckets:
            if math.isinf(bucket.boundary) and bucket.boundary > 0:
                break
            running += bucket.count
            yield bucket.boundary, running
        yield math.inf, self.count

    @classmethod
    def from_observations(cls, boundaries: Iterable[float], values: Iterable[float]) -> "HistogramSnapshot":
        """Build a snapshot by bucketing raw observations."""
        boundaries = list(boundaries)
        counts = [0] * len(boundaries)
        total = 0
        observed = 0
        for value in values:
            idx = bisect.bisect_left(boundaries, value)
            if idx < len(counts):
                counts[idx] += 1
            total += value
            observed += 1
        return cls(
            buckets=tuple(HistogramBucket(b, c) for b, c in zip(boundaries, counts)),
            sum=total,
            count=observed,
        )


AggregatorSnapshot = Union[SumSnapshot, LastValueSnapshot, HistogramSnapshot]

TOTAL_SUFFIX = "_total"

# Sum aggregations of these kinds are exposed as counters; every other sum is a gauge.
_COUNTER_KINDS = frozenset({
    MetricKind.COUNTER,
    MetricKind.UP_DOWN_COUNTER,
    MetricKind.SUM_OBSERVER,
})


def prometheus_type(descriptor: MetricDescriptor, aggregator_kind: AggregatorKind) -> str:
    """Map an instrument and its aggregation to an exposition TYPE."""
    if aggregator_kind == AggregatorKind.SUM:
        return "counter" if descriptor.metric_kind in _COUNTER_KINDS else "gauge"
    if aggregator_kind == AggregatorKind.LAST_VALUE:
        return "gauge"
    return "histogram"


def family_name(descriptor: MetricDescriptor, aggregator_kind: AggregatorKind) -> str:
    """
    Name a metric is exposed under, before any namespace prefix.

    Distinct instrument names that sanitize to the same text, or counters
    that differ only by a trailing ``_total``, share one family.
    """
    name = sanitize_metric_name(descriptor.name)
    if prometheus_type(descriptor, aggregator_kind) == "counter" and not name.endswith(TOTAL_SUFFIX):
        name += TOTAL_SUFFIX
    return name


@dataclass(frozen=True)
class MetricRecord:
    """One instrument's aggregated value for one label set in one cycle."""
    descriptor: MetricDescriptor
    labels: Mapping
    aggregator: AggregatorSnapshot
    timestamp_ns: int = field(default_factory=time.time_ns)

    def __post_init__(self):
        # Read-only copy; insertion order is kept for display.
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))

    @cached_property
    def fingerprint(self) -> Fingerprint:
        """Canonical series identity, independent of label order."""
        return label_fingerprint(self.labels)


@dataclass(frozen=True)
class MetricCheckpoint:
    """All merged series for one metric name."""
    descriptor: MetricDescriptor
    records: Tuple[MetricRecord, ...]


class CheckpointSet(Mapping):
    """
    Immutable per-cycle snapshot: metric name -> MetricCheckpoint.

    Iteration follows the order in which metric names were first seen.
    """

    def __init__(self, metrics: Iterable[MetricCheckpoint] = ()):
        self._metrics = MappingProxyType(
            {metric.descriptor.name: metric for metric in metrics}
        )

    def __getitem__(self, name: str) -> MetricCheckpoint:
        return self._metrics[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._metrics)

    def __len__(self) -> int:
        return len(self._metrics)

    def __repr__(self) -> str:
        return f"CheckpointSet({list(self._metrics)})"

    def records(self) -> Iterator[MetricRecord]:
        """Iterate every merged record in checkpoint order."""
        for metric in self._metrics.values():
            yield from metric.records

    @property
    def series_count(self) -> int:
        return sum(len(metric.records) for metric in self._metrics.values())
