"""Prometheus text exposition rendering for checkpoints and records."""
import logging
import math
from typing import Iterable, List, Mapping, Optional, Tuple

from promcheckpoint.config import SerializerConfig
from promcheckpoint.labels import (
    escape_help,
    escape_label_value,
    format_value,
    sanitize_label_key,
    sanitize_metric_name,
)
from promcheckpoint.records import (
    TOTAL_SUFFIX,
    AggregatorKind,
    CheckpointSet,
    MetricCheckpoint,
    MetricDescriptor,
    MetricRecord,
    prometheus_type,
)

# Histogram buckets carry their own "le" label.
_BUCKET_LABEL = "le"


def _format_boundary(boundary: float) -> str:
    if math.isinf(boundary):
        return "+Inf" if boundary > 0 else "-Inf"
    return format_value(boundary)


def _render_labels(labels: Mapping, reserved: Iterable[str] = ()) -> List[str]:
    # First occurrence wins when several keys sanitize to the same name.
    seen = set(reserved)
    pairs = []
    for key, val in labels.items():
        key = sanitize_label_key(key)
        if key in seen:
            continue
        seen.add(key)
        pairs.append(f'{key}="{escape_label_value(val)}"')
    return pairs


def _stringify(
    name: str,
    label_pairs: List[str],
    value,
    timestamp_ms: Optional[int],
    extra_labels: Iterable[Tuple[str, str]] = (),
) -> str:
    pairs = label_pairs + [f'{key}="{val}"' for key, val in extra_labels]

    line = name
    if pairs:
        line += "{" + ",".join(pairs) + "}"
    line += f" {format_value(value)}"
    if timestamp_ms is not None:
        line += f" {timestamp_ms}"
    return line + "\n"


class PrometheusSerializer:
    """
    Render metric data in the Prometheus text exposition format.

    The serializer holds configuration only; every call is a pure function
    of its arguments.

    Args:
        prefix: Optional namespace prepended as ``<prefix>_`` to metric names
        append_timestamp: Whether value lines end with a millisecond timestamp
        logger: Receives naming-convention diagnostics; silent by default
    """

    def __init__(
        self,
        prefix: Optional[str] = None,
        append_timestamp: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.prefix = f"{prefix}_" if prefix else ""
        self.append_timestamp = append_timestamp
        self.logger = logger

    @classmethod
    def from_config(cls, config: SerializerConfig, logger: Optional[logging.Logger] = None) -> "PrometheusSerializer":
        return cls(
            prefix=config.prefix,
            append_timestamp=config.append_timestamp,
            logger=logger,
        )

    def export_name(self, descriptor: MetricDescriptor, aggregator_kind: AggregatorKind) -> str:
        """Full exposed name for a metric group, prefix and suffix included."""
        name = sanitize_metric_name(f"{self.prefix}{descriptor.name}")
        return self._enforce_naming_convention(name, descriptor, aggregator_kind)

    def serialize(self, checkpoint_set: CheckpointSet) -> str:
        """Render every metric group with its HELP and TYPE header."""
        return "".join(
            self._serialize_metric(metric) for metric in checkpoint_set.values()
        )

    def _serialize_metric(self, metric: MetricCheckpoint) -> str:
        if not metric.records:
            return ""

        descriptor = metric.descriptor
        aggregator_kind = metric.records[0].aggregator.kind
        name = self.export_name(descriptor, aggregator_kind)
        help_text = escape_help(descriptor.description or "description missing")

        lines: List[str] = [
            f"# HELP {name} {help_text}\n",
            f"# TYPE {name} {prometheus_type(descriptor, aggregator_kind)}\n",
        ]
        lines.extend(self.serialize_record(name, record) for record in metric.records)
        return "".join(lines)

    def serialize_record(self, export_name: str, record: MetricRecord) -> str:
        """Render the value lines for a single record, without a header."""
        aggregator = record.aggregator
        name = self._enforce_naming_convention(export_name, record.descriptor, aggregator.kind)
        timestamp_ms = record.timestamp_ns // 1_000_000 if self.append_timestamp else None

        if aggregator.kind == AggregatorKind.HISTOGRAM:
            labels = _render_labels(record.labels, reserved=(_BUCKET_LABEL,))
            lines = [
                _stringify(f"{name}_count", labels, aggregator.count, timestamp_ms),
                _stringify(f"{name}_sum", labels, aggregator.sum, timestamp_ms),
            ]
            for boundary, cumulative in aggregator.cumulative_buckets():
                lines.append(_stringify(
                    f"{name}_bucket",
                    labels,
                    cumulative,
                    timestamp_ms,
                    ((_BUCKET_LABEL, _format_boundary(boundary)),),
                ))
            return "".join(lines)

        return _stringify(name, _render_labels(record.labels), aggregator.value, timestamp_ms)

    def _enforce_naming_convention(
        self, name: str, descriptor: MetricDescriptor, aggregator_kind: AggregatorKind
    ) -> str:
        if prometheus_type(descriptor, aggregator_kind) != "counter":
            return name
        if name.endswith(TOTAL_SUFFIX):
            return name
        if self.logger is not None:
            self.logger.debug(
                f"Counter '{name}' does not end with '{TOTAL_SUFFIX}'; "
                f"exporting it as '{name}{TOTAL_SUFFIX}'"
            )
        return f"{name}{TOTAL_SUFFIX}"
