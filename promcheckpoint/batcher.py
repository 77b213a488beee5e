"""Per-cycle grouping and merging of metric records."""
import logging
from dataclasses import replace
from typing import Callable, Dict, Optional

from promcheckpoint.errors import (
    BoundaryMismatchError,
    CheckpointError,
    ConflictingDescriptorError,
    CycleAbortedError,
)
from promcheckpoint.labels import Fingerprint
from promcheckpoint.records import (
    AggregatorKind,
    AggregatorSnapshot,
    CheckpointSet,
    HistogramBucket,
    HistogramSnapshot,
    LastValueSnapshot,
    MetricCheckpoint,
    MetricDescriptor,
    MetricRecord,
    SumSnapshot,
    family_name,
)

logger = logging.getLogger(__name__)


def _merge_sum(name: str, current: SumSnapshot, incoming: SumSnapshot) -> SumSnapshot:
    return SumSnapshot(current.value + incoming.value)


def _merge_last_value(
    name: str, current: LastValueSnapshot, incoming: LastValueSnapshot
) -> LastValueSnapshot:
    # Ties go to the record processed later.
    if incoming.timestamp_ns >= current.timestamp_ns:
        return incoming
    return current


def _merge_histogram(
    name: str, current: HistogramSnapshot, incoming: HistogramSnapshot
) -> HistogramSnapshot:
    if current.boundaries != incoming.boundaries:
        raise BoundaryMismatchError(name, current.boundaries, incoming.boundaries)
    return HistogramSnapshot(
        buckets=tuple(
            HistogramBucket(a.boundary, a.count + b.count)
            for a, b in zip(current.buckets, incoming.buckets)
        ),
        sum=current.sum + incoming.sum,
        count=current.count + incoming.count,
    )


_MERGERS: Dict[AggregatorKind, Callable[[str, AggregatorSnapshot, AggregatorSnapshot], AggregatorSnapshot]] = {
    AggregatorKind.SUM: _merge_sum,
    AggregatorKind.LAST_VALUE: _merge_last_value,
    AggregatorKind.HISTOGRAM: _merge_histogram,
}


class _MetricGroup:
    """Accumulated series for one exposed metric family."""

    def __init__(self, descriptor: MetricDescriptor, aggregator_kind: AggregatorKind):
        self.descriptor = descriptor
        self.aggregator_kind = aggregator_kind
        # Insertion-ordered: first-seen label set first.
        self.series: Dict[Fingerprint, MetricRecord] = {}


class LabelsBatcher:
    """
    Merge one collection cycle's records into a checkpoint set.

    Records sharing an exposed metric name and label set collapse into a
    single series. Instrument names that differ only in characters the
    exposition format cannot carry, or counters named with and without a
    trailing ``_total``, report under one family. Families, and label sets
    within a family, keep the order in which they were first processed.

    A batcher serves a single cycle. After ``process`` raises, the cycle is
    considered aborted and ``checkpoint`` refuses to produce output until
    ``reset`` is called.
    """

    def __init__(self):
        # Keyed by exposed family name; _names maps each raw name to its family.
        self._groups: Dict[str, _MetricGroup] = {}
        self._names: Dict[str, _MetricGroup] = {}
        self._failure: Optional[CheckpointError] = None

    @property
    def has_metric(self) -> bool:
        """Whether any record has been accepted this cycle."""
        return bool(self._groups)

    def process(self, record: MetricRecord) -> None:
        """Add a record to the cycle, merging it into an existing series if needed."""
        try:
            self._process(record)
        except CheckpointError as e:
            if self._failure is None:
                self._failure = e
            logger.warning(f"Rejected record for metric '{record.descriptor.name}': {e}")
            raise

    def _process(self, record: MetricRecord) -> None:
        descriptor = record.descriptor
        name = descriptor.name
        kind = record.aggregator.kind
        family = family_name(descriptor, kind)

        # A raw name belongs to one family, and a family to one kind.
        for existing in (self._groups.get(family), self._names.get(name)):
            if existing is not None:
                self._check_compatible(name, existing, descriptor, kind)

        group = self._groups.get(family)
        if group is None:
            group = _MetricGroup(descriptor, kind)
            group.series[record.fingerprint] = record
            self._groups[family] = group
            self._names[name] = group
            return
        self._names[name] = group

        current = group.series.get(record.fingerprint)
        if current is None:
            group.series[record.fingerprint] = record
            return

        merged = _MERGERS[kind](name, current.aggregator, record.aggregator)
        group.series[record.fingerprint] = replace(
            current,
            aggregator=merged,
            timestamp_ns=max(current.timestamp_ns, record.timestamp_ns),
        )

    @staticmethod
    def _check_compatible(
        name: str, group: _MetricGroup, descriptor: MetricDescriptor, kind: AggregatorKind
    ) -> None:
        existing = group.descriptor
        if (existing.metric_kind != descriptor.metric_kind
                or existing.value_type != descriptor.value_type):
            raise ConflictingDescriptorError(
                name,
                f"{existing.name}: {existing.metric_kind.name}/{existing.value_type.name}",
                f"{descriptor.name}: {descriptor.metric_kind.name}/{descriptor.value_type.name}",
            )
        if group.aggregator_kind != kind:
            raise ConflictingDescriptorError(name, group.aggregator_kind.name, kind.name)

    def checkpoint(self) -> CheckpointSet:
        """Snapshot the accumulated series. Internal state is left intact."""
        if self._failure is not None:
            raise CycleAbortedError(
                f"Collection cycle aborted: {self._failure}"
            ) from self._failure

        return CheckpointSet(
            MetricCheckpoint(group.descriptor, tuple(group.series.values()))
            for group in self._groups.values()
        )

    def reset(self) -> None:
        """Discard all accumulated state, including a recorded failure."""
        self._groups.clear()
        self._names.clear()
        self._failure = None
