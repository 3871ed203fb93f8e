"""Min/max aggregation of build time metrics across repeated runs.

Each observed build contributes one :class:`AggregatedMetric` per time
leaf, carrying the absolute time and its share of the whole build.  Runs
are folded together leaf-wise with :meth:`AggregatedMetric.combine`, so
both the best case and the worst case (noise) stay visible.  Percentages
are computed once per build and then reduced like the times; they are
never re-derived from already aggregated values.
"""

from __future__ import annotations

from dataclasses import dataclass

from buildbench.metrics import MetricsContainer, PhaseMetric, TimeInterval


@dataclass(frozen=True)
class AggregatedMetric:
    """Observed range of one time metric."""

    min_time: TimeInterval
    max_time: TimeInterval
    min_percentage: float
    max_percentage: float

    @classmethod
    def of(cls, time: TimeInterval, whole_build_ms: float) -> AggregatedMetric:
        """Aggregate of a single observation."""
        percentage = percentage_of(time, whole_build_ms)
        return cls(time, time, percentage, percentage)

    def combine(self, other: AggregatedMetric) -> AggregatedMetric:
        return AggregatedMetric(
            min_time=min(self.min_time, other.min_time),
            max_time=max(self.max_time, other.max_time),
            min_percentage=min(self.min_percentage, other.min_percentage),
            max_percentage=max(self.max_percentage, other.max_percentage),
        )


def percentage_of(time: TimeInterval, whole_build_ms: float) -> float:
    """Share of the whole build, in percent.  0.0 if the build time is unknown."""
    if whole_build_ms <= 0:
        return 0.0
    return time.as_ms / whole_build_ms * 100


def whole_build_ms(time_metrics: MetricsContainer[TimeInterval]) -> float:
    """Whole-build duration in milliseconds, 0.0 if it was not recorded."""
    whole = time_metrics.get_value(PhaseMetric.BUILD)
    return float(whole.as_ms) if whole is not None else 0.0


def aggregate_time_metrics(
    time_metrics: MetricsContainer[TimeInterval],
) -> MetricsContainer[AggregatedMetric]:
    """Convert one build's time metrics into an aggregable container."""
    whole_ms = whole_build_ms(time_metrics)
    return time_metrics.map(lambda time: AggregatedMetric.of(time, whole_ms))


def merge_aggregates(
    previous: MetricsContainer[AggregatedMetric] | None,
    current: MetricsContainer[AggregatedMetric],
) -> MetricsContainer[AggregatedMetric]:
    """Fold *current* into a running aggregate (which may not exist yet)."""
    if previous is None:
        return current
    return previous.merge(current, AggregatedMetric.combine)
