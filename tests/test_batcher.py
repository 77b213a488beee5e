#!/usr/bin/env python3
"""Tests for grouping and merging records within one collection cycle."""
import pytest

from promcheckpoint.batcher import LabelsBatcher
from promcheckpoint.errors import (
    BoundaryMismatchError,
    ConflictingDescriptorError,
    CycleAbortedError,
)
from promcheckpoint.records import (
    HistogramSnapshot,
    LastValueSnapshot,
    MetricDescriptor,
    MetricKind,
    MetricRecord,
    SumSnapshot,
    ValueType,
)

COUNTER = MetricDescriptor("requests_total", "Requests", metric_kind=MetricKind.COUNTER)
GAUGE = MetricDescriptor("temperature", "Temperature", metric_kind=MetricKind.VALUE_OBSERVER)
RECORDER = MetricDescriptor("latency", "Latency", metric_kind=MetricKind.VALUE_RECORDER)


def counter_record(labels, value, timestamp_ns=1_000_000):
    return MetricRecord(COUNTER, labels, SumSnapshot(value), timestamp_ns)


def gauge_record(labels, value, timestamp_ns):
    return MetricRecord(GAUGE, labels, LastValueSnapshot(value, timestamp_ns), timestamp_ns)


def histogram_record(labels, values, boundaries=(1, 10, 100)):
    return MetricRecord(
        RECORDER, labels, HistogramSnapshot.from_observations(boundaries, values), 1_000_000
    )


def test_empty_cycle():
    batcher = LabelsBatcher()
    assert not batcher.has_metric
    checkpoint = batcher.checkpoint()
    assert len(checkpoint) == 0


def test_distinct_label_sets_keep_first_seen_order():
    batcher = LabelsBatcher()
    batcher.process(counter_record({"val": "2"}, 1))
    batcher.process(counter_record({"val": "1"}, 1))
    batcher.process(counter_record({"val": "3"}, 1))

    records = batcher.checkpoint()["requests_total"].records
    assert [r.labels["val"] for r in records] == ["2", "1", "3"]
    assert batcher.has_metric


def test_metric_names_keep_first_seen_order():
    batcher = LabelsBatcher()
    batcher.process(gauge_record({}, 1, 10))
    batcher.process(counter_record({}, 1))
    batcher.process(gauge_record({"room": "a"}, 2, 10))

    assert list(batcher.checkpoint()) == ["temperature", "requests_total"]


def test_sums_are_added():
    """Bound instances sharing a label set collapse into one series."""
    batcher = LabelsBatcher()
    batcher.process(counter_record({"region": "us", "az": "a"}, 2, timestamp_ns=5_000_000))
    batcher.process(counter_record({"az": "a", "region": "us"}, 3, timestamp_ns=9_000_000))
    batcher.process(counter_record({"region": "eu", "az": "a"}, 1))

    records = batcher.checkpoint()["requests_total"].records
    assert len(records) == 2
    merged = records[0]
    assert merged.aggregator.value == 5
    assert merged.timestamp_ns == 9_000_000
    # Display order comes from the first record seen.
    assert list(merged.labels) == ["region", "az"]


def test_last_value_later_timestamp_wins():
    batcher = LabelsBatcher()
    batcher.process(gauge_record({"room": "a"}, 20, 200))
    batcher.process(gauge_record({"room": "a"}, 10, 100))
    assert batcher.checkpoint()["temperature"].records[0].aggregator.value == 20

    batcher.process(gauge_record({"room": "a"}, 30, 300))
    assert batcher.checkpoint()["temperature"].records[0].aggregator.value == 30


def test_last_value_tie_goes_to_later_record():
    batcher = LabelsBatcher()
    batcher.process(gauge_record({}, 1, 100))
    batcher.process(gauge_record({}, 2, 100))
    assert batcher.checkpoint()["temperature"].records[0].aggregator.value == 2


def test_histograms_merge_bucket_wise():
    batcher = LabelsBatcher()
    batcher.process(histogram_record({"val": "1"}, [5]))
    batcher.process(histogram_record({"val": "1"}, [50]))
    batcher.process(histogram_record({"val": "1"}, [120]))
    batcher.process(histogram_record({"val": "2"}, [5]))

    first, second = batcher.checkpoint()["latency"].records
    assert [b.count for b in first.aggregator.buckets] == [0, 1, 1]
    assert first.aggregator.count == 3
    assert first.aggregator.sum == 175
    assert list(first.aggregator.cumulative_buckets())[-1][1] == 3
    assert second.aggregator.count == 1


def test_sanitized_label_keys_share_a_series():
    batcher = LabelsBatcher()
    batcher.process(counter_record({"account-id": "1"}, 1))
    batcher.process(counter_record({"account_id": "1"}, 1))

    records = batcher.checkpoint()["requests_total"].records
    assert len(records) == 1
    assert records[0].aggregator.value == 2


def test_checkpoint_does_not_clear_state():
    batcher = LabelsBatcher()
    batcher.process(counter_record({}, 1))
    first = batcher.checkpoint()
    batcher.process(counter_record({}, 1))
    second = batcher.checkpoint()

    assert first["requests_total"].records[0].aggregator.value == 1
    assert second["requests_total"].records[0].aggregator.value == 2


def test_reset_clears_state():
    batcher = LabelsBatcher()
    batcher.process(counter_record({}, 1))
    batcher.reset()
    assert not batcher.has_metric
    assert len(batcher.checkpoint()) == 0


def test_mismatched_boundaries_abort_cycle():
    batcher = LabelsBatcher()
    batcher.process(histogram_record({"val": "1"}, [5]))

    with pytest.raises(BoundaryMismatchError) as exc_info:
        batcher.process(histogram_record({"val": "1"}, [5], boundaries=(1, 5, 50)))
    assert exc_info.value.name == "latency"

    with pytest.raises(CycleAbortedError) as exc_info:
        batcher.checkpoint()
    assert isinstance(exc_info.value.__cause__, BoundaryMismatchError)


def test_failed_merge_leaves_existing_series_untouched():
    batcher = LabelsBatcher()
    batcher.process(histogram_record({}, [5]))
    with pytest.raises(BoundaryMismatchError):
        batcher.process(histogram_record({}, [5], boundaries=(2,)))

    batcher_state = batcher._groups["latency"].series
    (record,) = batcher_state.values()
    assert record.aggregator.count == 1


def test_conflicting_metric_kind():
    batcher = LabelsBatcher()
    batcher.process(counter_record({}, 1))

    up_down = MetricDescriptor("requests_total", metric_kind=MetricKind.UP_DOWN_COUNTER)
    with pytest.raises(ConflictingDescriptorError) as exc_info:
        batcher.process(MetricRecord(up_down, {"other": "labels"}, SumSnapshot(1), 0))
    assert "COUNTER" in str(exc_info.value)

    with pytest.raises(CycleAbortedError):
        batcher.checkpoint()


def test_conflicting_value_type():
    batcher = LabelsBatcher()
    batcher.process(counter_record({}, 1))

    as_int = MetricDescriptor("requests_total", metric_kind=MetricKind.COUNTER, value_type=ValueType.INT)
    with pytest.raises(ConflictingDescriptorError):
        batcher.process(MetricRecord(as_int, {}, SumSnapshot(1), 0))


def test_conflicting_aggregator_kind():
    batcher = LabelsBatcher()
    batcher.process(counter_record({}, 1))
    with pytest.raises(ConflictingDescriptorError):
        batcher.process(MetricRecord(COUNTER, {}, LastValueSnapshot(1, 0), 0))


def test_reset_recovers_from_failure():
    batcher = LabelsBatcher()
    batcher.process(counter_record({}, 1))
    with pytest.raises(ConflictingDescriptorError):
        batcher.process(MetricRecord(COUNTER, {}, LastValueSnapshot(1, 0), 0))

    batcher.reset()
    batcher.process(counter_record({}, 4))
    assert batcher.checkpoint()["requests_total"].records[0].aggregator.value == 4


def test_counter_names_with_and_without_total_share_a_family():
    requests = MetricDescriptor("requests", "A", metric_kind=MetricKind.COUNTER)
    batcher = LabelsBatcher()
    batcher.process(MetricRecord(requests, {"code": "200"}, SumSnapshot(1), 0))
    batcher.process(MetricRecord(COUNTER, {"code": "200"}, SumSnapshot(2), 0))
    batcher.process(MetricRecord(COUNTER, {"code": "500"}, SumSnapshot(4), 0))

    checkpoint = batcher.checkpoint()
    assert list(checkpoint) == ["requests"]
    records = checkpoint["requests"].records
    assert [r.aggregator.value for r in records] == [3, 4]


def test_names_that_sanitize_alike_share_a_family():
    dashed = MetricDescriptor("http-requests", metric_kind=MetricKind.VALUE_OBSERVER)
    underscored = MetricDescriptor("http_requests", metric_kind=MetricKind.VALUE_OBSERVER)
    batcher = LabelsBatcher()
    batcher.process(MetricRecord(dashed, {}, LastValueSnapshot(1, 10), 10))
    batcher.process(MetricRecord(underscored, {}, LastValueSnapshot(2, 20), 20))

    checkpoint = batcher.checkpoint()
    assert len(checkpoint) == 1
    assert checkpoint["http-requests"].records[0].aggregator.value == 2


def test_gauge_colliding_with_counter_family_is_rejected():
    requests = MetricDescriptor("requests", metric_kind=MetricKind.COUNTER)
    gauge = MetricDescriptor("requests_total", metric_kind=MetricKind.VALUE_OBSERVER)
    batcher = LabelsBatcher()
    batcher.process(MetricRecord(requests, {}, SumSnapshot(1), 0))

    with pytest.raises(ConflictingDescriptorError) as exc_info:
        batcher.process(MetricRecord(gauge, {}, LastValueSnapshot(1, 0), 0))
    assert exc_info.value.name == "requests_total"
    assert len(batcher._groups) == 1
