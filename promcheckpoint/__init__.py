"""Metric checkpointing and Prometheus text exposition rendering."""
from promcheckpoint.batcher import LabelsBatcher
from promcheckpoint.errors import (
    BoundaryMismatchError,
    CheckpointError,
    ConflictingDescriptorError,
    CycleAbortedError,
    InvalidSnapshotError,
)
from promcheckpoint.records import (
    AggregatorKind,
    CheckpointSet,
    HistogramBucket,
    HistogramSnapshot,
    LastValueSnapshot,
    MetricCheckpoint,
    MetricDescriptor,
    MetricKind,
    MetricRecord,
    SumSnapshot,
    ValueType,
)
from promcheckpoint.serializer import PrometheusSerializer

__all__ = [
    "AggregatorKind",
    "BoundaryMismatchError",
    "CheckpointError",
    "CheckpointSet",
    "ConflictingDescriptorError",
    "CycleAbortedError",
    "HistogramBucket",
    "HistogramSnapshot",
    "InvalidSnapshotError",
    "LabelsBatcher",
    "LastValueSnapshot",
    "MetricCheckpoint",
    "MetricDescriptor",
    "MetricKind",
    "MetricRecord",
    "PrometheusSerializer",
    "SumSnapshot",
    "ValueType",
]
