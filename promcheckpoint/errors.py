"""Errors raised while building a checkpoint."""


class CheckpointError(ValueError):
    """Fatal configuration error detected during a collection cycle."""


class ConflictingDescriptorError(CheckpointError):
    """Two records share a metric name but disagree on what the metric is."""

    def __init__(self, name: str, existing, incoming):
        self.name = name
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"Conflicting definitions for metric '{name}': "
            f"{existing} vs {incoming}"
        )


class BoundaryMismatchError(CheckpointError):
    """Histogram snapshots for one series use different bucket boundaries."""

    def __init__(self, name: str, existing, incoming):
        self.name = name
        self.existing = tuple(existing)
        self.incoming = tuple(incoming)
        super().__init__(
            f"Histogram boundaries differ for metric '{name}': "
            f"{list(self.existing)} vs {list(self.incoming)}"
        )


class CycleAbortedError(CheckpointError):
    """A checkpoint was requested from a cycle that already failed."""


class InvalidSnapshotError(CheckpointError):
    """An aggregator snapshot violates its own invariants."""
