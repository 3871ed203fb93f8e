"""Decoding of the per-build metrics file.

Builds run by :class:`~buildbench.executor.CommandBuildExecutor` are told
(through ``BUILDBENCH_METRICS_FILE``) where to write detailed timings.  A
build plugin or init script writes JSON of this shape::

    {
      "phases": {"BUILD": 5300, "CONFIGURATION": 1200, "EXECUTION": 4100},
      "instrumentation_ms": 40,
      "parent_metric": {"COMPILE_KOTLIN": "GRADLE_TASK"},
      "tasks": [
        {
          "path": ":core:compileKotlin",
          "type": "org.jetbrains.kotlin.gradle.tasks.KotlinCompile_Decorated",
          "did_work": true,
          "time_ms": 2100,
          "build_times_ms": {"GRADLE_TASK": 2100, "COMPILE_KOTLIN": 1800},
          "performance_metrics": {"SOURCE_LINES_NUMBER": 5120}
        }
      ]
    }

All times are milliseconds.  Task data is grouped per task type; the
root metric of each task (the one without a parent) is renamed after the
type so that every type forms its own subtree under
``COMPILATION_TASKS`` or ``NON_COMPILATION_TASKS``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from buildbench.metrics import (
    ZERO_TIME,
    MetricsContainer,
    PhaseMetric,
    TimeInterval,
    ValueMetric,
)

log = logging.getLogger("buildbench")

COMPILE_TASK_TYPES = frozenset(
    {"JavaCompile", "KotlinCompile", "KotlinCompileCommon", "Kotlin2JsCompile"}
)
PERFORMANCE_METRICS_KEY = "Performance metrics"
BUILD_SRC_COMPILE_TASK = ":buildSrc:compileKotlin"
INSTRUMENTATION_METRIC = "Not null instrumentation"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class TaskData:
    """Measurements of one executed task."""

    path: str
    type_name: str = "unknown"
    did_work: bool = True
    time_ms: int = 0
    build_times_ms: dict[str, int] = field(default_factory=dict)
    performance_metrics: dict[str, int] = field(default_factory=dict)

    @property
    def group_name(self) -> str:
        """Short task type name, or the task name when the type is unknown."""
        if self.type_name == "unknown":
            return task_name_from_path(self.path)
        return short_task_type_name(self.type_name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskData:
        if not isinstance(data, dict) or "path" not in data:
            raise ValueError(f"Task entry must be a mapping with a 'path': {data!r}")
        return cls(
            path=str(data["path"]),
            type_name=str(data.get("type", "unknown")),
            did_work=bool(data.get("did_work", True)),
            time_ms=int(data.get("time_ms", 0)),
            build_times_ms={str(k): int(v) for k, v in data.get("build_times_ms", {}).items()},
            performance_metrics={
                str(k): int(v) for k, v in data.get("performance_metrics", {}).items()
            },
        )


@dataclass
class BuildMetricsData:
    """Decoded content of a metrics file."""

    phases: dict[str, int] = field(default_factory=dict)
    parent_metric: dict[str, str] = field(default_factory=dict)
    tasks: list[TaskData] = field(default_factory=list)
    instrumentation_ms: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildMetricsData:
        if not isinstance(data, dict):
            raise ValueError(f"Metrics file must hold a JSON object, got {type(data).__name__}")
        return cls(
            phases={str(k): int(v) for k, v in data.get("phases", {}).items()},
            parent_metric={str(k): str(v) for k, v in data.get("parent_metric", {}).items()},
            tasks=[TaskData.from_dict(t) for t in data.get("tasks", [])],
            instrumentation_ms=int(data.get("instrumentation_ms", 0)),
        )


def load_build_metrics(path: Path) -> BuildMetricsData | None:
    """Read a metrics file.  Returns None if the build did not write one.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the content cannot be decoded.
    """
    if not path.exists() or path.stat().st_size == 0:
        return None
    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid metrics file {path}: {exc}") from exc
    try:
        return BuildMetricsData.from_dict(raw)
    except (TypeError, AttributeError) as exc:
        raise ValueError(f"Malformed metrics file {path}: {exc}") from exc


def short_task_type_name(fq_name: str) -> str:
    """``org.gradle.api.tasks.compile.JavaCompile_Decorated`` → ``JavaCompile``."""
    short = fq_name.rsplit(".", 1)[-1]
    return short.removesuffix("_Decorated")


def task_name_from_path(task_path: str) -> str:
    """``:core:compileKotlin`` → ``compileKotlin``."""
    return task_path.rsplit(":", 1)[-1]


# ---------------------------------------------------------------------------
# Conversion to metrics containers
# ---------------------------------------------------------------------------


def add_phase_metrics(
    time_metrics: MetricsContainer[TimeInterval],
    data: BuildMetricsData,
) -> None:
    """Record the well-known phase timings present in *data*."""
    phases = data.phases
    for phase in (
        PhaseMetric.BUILD,
        PhaseMetric.CONFIGURATION,
        PhaseMetric.EXECUTION,
    ):
        if phase.value in phases:
            time_metrics[phase] = TimeInterval.ms(phases[phase.value])

    before = phases.get(PhaseMetric.UP_TO_DATE_CHECKS_BEFORE_TASK.value)
    after = phases.get(PhaseMetric.UP_TO_DATE_CHECKS_AFTER_TASK.value)
    if before is not None or after is not None:
        time_metrics[PhaseMetric.UP_TO_DATE_CHECKS] = TimeInterval.ms((before or 0) + (after or 0))
        time_metrics[PhaseMetric.UP_TO_DATE_CHECKS_BEFORE_TASK] = TimeInterval.ms(before or 0)
        time_metrics[PhaseMetric.UP_TO_DATE_CHECKS_AFTER_TASK] = TimeInterval.ms(after or 0)

    first_test = phases.get(PhaseMetric.FIRST_TEST_EXECUTION_WAITING.value)
    if first_test is not None:
        time_metrics[PhaseMetric.FIRST_TEST_EXECUTION_WAITING] = TimeInterval.ms(first_test)


def add_task_execution_data(
    time_metrics: MetricsContainer[TimeInterval],
    performance_metrics: MetricsContainer[int],
    data: BuildMetricsData,
) -> None:
    """Group task measurements per task type and attach them to the containers."""
    compilation_time = ZERO_TIME
    non_compilation_time = ZERO_TIME

    groups: dict[str, list[TaskData]] = {}
    for task in data.tasks:
        groups.setdefault(task.group_name, []).append(task)

    for type_name in sorted(groups):

        def root_to_type(name: str, type_name: str = type_name) -> str:
            return type_name if name not in data.parent_metric else name

        aggregated_ms: dict[str, int] = {}
        aggregated_performance: dict[str, int] = {}
        time_for_type = ZERO_TIME

        for task in groups[type_name]:
            if not task.did_work:
                continue
            time_for_type += TimeInterval.ms(task.time_ms)
            for metric_name, value in task.build_times_ms.items():
                if value <= 0:
                    continue
                name = root_to_type(metric_name)
                aggregated_ms[name] = aggregated_ms.get(name, 0) + value
            for metric_name, value in task.performance_metrics.items():
                if value <= 0:
                    continue
                aggregated_performance[metric_name] = (
                    aggregated_performance.get(metric_name, 0) + value
                )

        type_times: MetricsContainer[TimeInterval] = MetricsContainer()
        for metric_name, ms in aggregated_ms.items():
            parent = data.parent_metric.get(metric_name)
            type_times.set(
                metric_name,
                ValueMetric(TimeInterval.ms(ms)),
                root_to_type(parent) if parent is not None else None,
            )
        if type_name == "JavaCompile" and data.instrumentation_ms > 0:
            type_times.set(
                INSTRUMENTATION_METRIC,
                ValueMetric(TimeInterval.ms(data.instrumentation_ms)),
                type_name,
            )

        if type_name in COMPILE_TASK_TYPES:
            compilation_time += time_for_type
            parent_phase = PhaseMetric.COMPILATION_TASKS
        else:
            non_compilation_time += time_for_type
            parent_phase = PhaseMetric.NON_COMPILATION_TASKS
        time_metrics.set(type_name, type_times, parent_phase)

        if aggregated_performance:
            type_performance: MetricsContainer[int] = MetricsContainer()
            type_performance.set(type_name, ValueMetric(0))
            for metric_name, value in aggregated_performance.items():
                type_performance.set(metric_name, ValueMetric(value), type_name)
            performance_metrics.set(type_name, type_performance, PERFORMANCE_METRICS_KEY)

    build_src_ms = sum(t.time_ms for t in data.tasks if t.path == BUILD_SRC_COMPILE_TASK)
    build_src_time = TimeInterval.ms(build_src_ms)
    compilation_time += build_src_time
    time_metrics[PhaseMetric.BUILD_SRC_COMPILE] = build_src_time
    time_metrics[PhaseMetric.COMPILATION_TASKS] = compilation_time
    time_metrics[PhaseMetric.NON_COMPILATION_TASKS] = non_compilation_time
    performance_metrics.set(PERFORMANCE_METRICS_KEY, ValueMetric(0))


def apply_build_metrics(
    time_metrics: MetricsContainer[TimeInterval],
    performance_metrics: MetricsContainer[int],
    data: BuildMetricsData,
) -> None:
    """Fill both containers from a decoded metrics file."""
    add_phase_metrics(time_metrics, data)
    if data.tasks:
        add_task_execution_data(time_metrics, performance_metrics, data)
    log.debug(
        "Decoded build metrics: %d phase(s), %d task(s)",
        len(data.phases),
        len(data.tasks),
    )
