"""Collection cycle driver: source -> batcher -> serializer."""
import logging
import threading
import time
from typing import Iterable, Optional, Protocol

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from promcheckpoint.batcher import LabelsBatcher
from promcheckpoint.config import Config, SerializerConfig
from promcheckpoint.errors import CheckpointError
from promcheckpoint.records import MetricRecord
from promcheckpoint.serializer import PrometheusSerializer

logger = logging.getLogger(__name__)


class MetricSource(Protocol):
    """Anything that can hand over one cycle's worth of records."""

    def collect(self) -> Iterable[MetricRecord]:
        ...


class SelfMetrics:
    """Self-monitoring metrics for the exporter."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.cycles_total = Counter(
            f"{prefix}cycles_total",
            "Total number of completed collection cycles",
            registry=registry
        )

        self.cycle_errors_total = Counter(
            f"{prefix}cycle_errors_total",
            "Total number of aborted collection cycles",
            ["error"],
            registry=registry
        )

        self.cycle_duration_seconds = Histogram(
            f"{prefix}cycle_duration_seconds",
            "Duration of each collection cycle in seconds",
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry
        )

        self.checkpoint_series = Gauge(
            f"{prefix}checkpoint_series",
            "Number of series in the last checkpoint",
            registry=registry
        )

    def record_cycle(self, duration: float, series: int):
        """Record a completed cycle."""
        self.cycles_total.inc()
        self.cycle_duration_seconds.observe(duration)
        self.checkpoint_series.set(series)

    def record_cycle_error(self, error: str):
        """Record an aborted cycle."""
        self.cycle_errors_total.labels(error=error).inc()


class PrometheusExporter:
    """Runs collection cycles and renders them as exposition text."""

    def __init__(
        self,
        source: MetricSource,
        serializer_config: Optional[SerializerConfig] = None,
        registry: Optional[CollectorRegistry] = None,
        self_metrics_prefix: str = "promcheckpoint_",
    ):
        self.source = source
        self.serializer = PrometheusSerializer.from_config(
            serializer_config or SerializerConfig(),
            logger=logging.getLogger(f"{__name__}.naming"),
        )
        # Use a custom registry to avoid exporting default Python/process metrics
        self.self_metrics = SelfMetrics(
            registry=registry or CollectorRegistry(),
            prefix=self_metrics_prefix,
        )
        self.cycle_count = 0
        self._count_lock = threading.Lock()

    @classmethod
    def from_config(cls, source: MetricSource, config: Config) -> "PrometheusExporter":
        return cls(
            source,
            serializer_config=config.serializer,
            self_metrics_prefix=config.scrape.self_metrics_prefix,
        )

    def collect_cycle(self) -> str:
        """
        Run one collection cycle and return its exposition text.

        Each cycle gets a fresh batcher, so a failed cycle leaves nothing
        behind for the next one.

        Raises:
            CheckpointError: The records of this cycle were invalid or could not be merged
        """
        cycle_start = time.perf_counter()
        batcher = LabelsBatcher()

        try:
            for record in self.source.collect():
                batcher.process(record)
            checkpoint = batcher.checkpoint()
        except CheckpointError as e:
            logger.error(f"Discarding collection cycle: {e}")
            self.self_metrics.record_cycle_error(type(e).__name__)
            raise

        text = self.serializer.serialize(checkpoint)

        # Scrapes can run concurrently in the server threadpool.
        with self._count_lock:
            self.cycle_count += 1
            cycle = self.cycle_count
        self.self_metrics.record_cycle(time.perf_counter() - cycle_start, checkpoint.series_count)
        logger.debug(
            f"Cycle {cycle}: {len(checkpoint)} metrics, "
            f"{checkpoint.series_count} series"
        )
        return text

    def self_metrics_text(self) -> str:
        """Render the exporter's own metrics."""
        return generate_latest(self.self_metrics.registry).decode('utf-8')
