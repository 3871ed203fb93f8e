"""Benchmark result data structures and serialization.

Hierarchy::

    ScenarioResult (one iteration of one scenario)
      → step_results: list[StepResult]
        → step: Step
        → build_result: BuildResult
          → time_metrics: MetricsContainer[TimeInterval]
          → performance_metrics: MetricsContainer[int]

Outcomes handed to progress listeners are either :class:`Success` or
:class:`Failure`.

Serialized records (JSON results file)::

    BenchmarkDescription  — one per scenario iteration
      → steps: list[BenchmarkStep]
        → results: list[BenchmarkResult]  (metricName, metricValue)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, TypeVar, Union

from buildbench.dsl import Step
from buildbench.metrics import MetricsContainer, TimeInterval

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    """A failed step or scenario with a human-readable reason."""

    reason: str
    error: BaseException | None = None

    @classmethod
    def from_exception(cls, error: BaseException) -> Failure:
        return cls(reason=f"{type(error).__name__}: {error}", error=error)


Outcome = Union[Success[T], Failure]


# ---------------------------------------------------------------------------
# Build / step / scenario results
# ---------------------------------------------------------------------------


@dataclass
class BuildResult:
    """Measurements of one build."""

    time_metrics: MetricsContainer[TimeInterval] = field(default_factory=MetricsContainer)
    performance_metrics: MetricsContainer[int] = field(default_factory=MetricsContainer)

    @property
    def is_empty(self) -> bool:
        return not self.time_metrics and not self.performance_metrics


@dataclass
class StepResult:
    step: Step
    build_result: BuildResult
    number: int | None = None  # 1-based position in the scenario, daemon stops included


@dataclass
class ScenarioResult:
    """Results of one scenario iteration, in step order."""

    step_results: list[StepResult] = field(default_factory=list)

    @property
    def measured(self) -> list[tuple[int, StepResult]]:
        """``(1-based step number, result)`` for measured steps only.

        Results that carry no ``number`` are numbered by position.
        """
        return [
            (result.number if result.number is not None else index, result)
            for index, result in enumerate(self.step_results, start=1)
            if result.step.is_measured
        ]


# ---------------------------------------------------------------------------
# Metric formatting and flattening
# ---------------------------------------------------------------------------


def format_metric_value(value: object) -> str:
    """Render a metric value the way result files store it."""
    if isinstance(value, TimeInterval):
        return str(value.as_ms)
    return str(value)


def is_reportable(value: object) -> bool:
    """Zero counters carry no information; zero times still do."""
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value != 0
    return True


def reportable_metrics(build_result: BuildResult) -> list[tuple[str, object]]:
    """Dotted-name metrics of one build: time metrics, then performance metrics."""
    flat: list[tuple[str, object]] = []
    flat.extend(build_result.time_metrics.flatten())
    flat.extend(build_result.performance_metrics.flatten())
    return [(name, value) for name, value in flat if is_reportable(value)]


# ---------------------------------------------------------------------------
# Serialized records
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkResult:
    metric_name: str
    metric_value: str

    def to_dict(self) -> dict[str, Any]:
        return {"metricName": self.metric_name, "metricValue": self.metric_value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkResult:
        return cls(metric_name=data["metricName"], metric_value=str(data["metricValue"]))


@dataclass
class BenchmarkStep:
    step: int  # 1-based step number within the scenario
    results: list[BenchmarkResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "results": [r.to_dict() for r in self.results]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkStep:
        return cls(
            step=data["step"],
            results=[BenchmarkResult.from_dict(r) for r in data.get("results", [])],
        )


@dataclass
class BenchmarkDescription:
    """One scenario iteration as stored in the JSON results file."""

    display_name: str
    iteration: int  # 1-based
    steps: list[BenchmarkStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "displayName": self.display_name,
            "iteration": self.iteration,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkDescription:
        return cls(
            display_name=data["displayName"],
            iteration=data["iteration"],
            steps=[BenchmarkStep.from_dict(s) for s in data.get("steps", [])],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def describe_scenario_result(
    scenario_name: str,
    iteration: int,
    result: ScenarioResult,
    *,
    tracked_metrics: frozenset[str] | None = None,
) -> BenchmarkDescription:
    """Build the serialized record for one successful scenario iteration."""
    steps: list[BenchmarkStep] = []
    for step_number, step_result in result.measured:
        steps.append(
            BenchmarkStep(
                step=step_number,
                results=[
                    BenchmarkResult(metric_name=name, metric_value=format_metric_value(value))
                    for name, value in reportable_metrics(step_result.build_result)
                    if tracked_metrics is None or name in tracked_metrics
                ],
            )
        )
    return BenchmarkDescription(display_name=scenario_name, iteration=iteration, steps=steps)


def load_results_json(path: Path) -> list[BenchmarkDescription]:
    """Load a JSON results file written by the file-based reporter.

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If the file is not a JSON array.
    """
    if not path.exists():
        raise FileNotFoundError(f"Results file not found: {path}")
    data = json.loads(path.read_text())
    if not isinstance(data, list):
        raise ValueError(f"Results file must contain a JSON array, got {type(data).__name__}")
    return [BenchmarkDescription.from_dict(item) for item in data]
