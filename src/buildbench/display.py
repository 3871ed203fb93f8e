"""Console progress output.

:class:`ConsoleBenchmarkListener` prints an indented trace of the run,
each measured step's metrics, and at the end the min/max range of every
time metric across all runs.
"""

from __future__ import annotations

from typing import IO, Any, Sequence

import click

from buildbench.aggregate import (
    AggregatedMetric,
    aggregate_time_metrics,
    merge_aggregates,
    percentage_of,
    whole_build_ms,
)
from buildbench.dsl import Scenario, Step
from buildbench.formatting import format_ms, format_pct
from buildbench.listeners import BenchmarksProgressListener
from buildbench.metrics import MetricsContainer, TimeInterval
from buildbench.results import Failure, Outcome, ScenarioResult, StepResult

INDENT = "    "
SCENARIO_SEPARATOR = "=============="


class ConsoleBenchmarkListener(BenchmarksProgressListener):
    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream
        self.aggregated: MetricsContainer[AggregatedMetric] | None = None
        self._indent = 0
        self._step_number = 0

    def _p(self, text: str = "") -> None:
        click.echo(INDENT * self._indent + text if text else "", file=self.stream)

    def _enter(self, _name: str = "") -> None:
        self._indent += 1

    def _exit(self, _name: str = "") -> None:
        self._indent -= 1

    # -- callbacks ----------------------------------------------------------

    def scenario_started(self, scenario: Scenario) -> None:
        self._step_number = 0
        self._p(f"Scenario '{scenario.name}'")

    def scenario_finished(self, scenario: Scenario, result: Outcome[ScenarioResult]) -> None:
        if isinstance(result, Failure):
            self._p(f"Scenario failed: {result.reason}")
        self._p(SCENARIO_SEPARATOR)

    def step_started(self, step: Step) -> None:
        self._step_number += 1
        self._p(f"Step #{self._step_number}")

    def task_execution_started(self, tasks: Sequence[str]) -> None:
        self._enter()
        self._p("Executing tasks: " + ", ".join(f"'{t}'" for t in tasks))
        self._exit()

    def cleanup_started(self) -> None:
        self._p("Cleaning up after last scenario")

    def cleanup_finished(self) -> None:
        self._p("Cleanup finished")

    def step_finished(self, step: Step, result: Outcome[StepResult]) -> None:
        self._enter()
        try:
            if isinstance(result, Failure):
                self._p(f"Step failed: {result.reason}")
            elif not step.is_measured:
                self._p("Step is not measured!")
            else:
                self._print_step_result(result.value)
        finally:
            self._exit()

    def all_finished(self) -> None:
        self._p()
        self._p()
        self._p("All runs:")
        if self.aggregated is None:
            self._p("No measured builds finished successfully.")
            return

        def visit(name: str, value: AggregatedMetric) -> None:
            self._p(
                f"{name}: {value.min_time.as_ms} - {value.max_time.as_ms} ms, "
                f"{format_pct(value.min_percentage)}% - {format_pct(value.max_percentage)}%"
            )

        self.aggregated.walk(visit, on_enter=self._enter, on_exit=self._exit)

    # -- helpers ------------------------------------------------------------

    def _print_step_result(self, result: StepResult) -> None:
        time_metrics = result.build_result.time_metrics
        whole_ms = whole_build_ms(time_metrics)

        def visit(name: str, value: Any) -> None:
            if isinstance(value, TimeInterval):
                if value.as_ns > 0:
                    self._p(
                        f"{name}: {format_ms(value)} "
                        f"({format_pct(percentage_of(value, whole_ms))}%)"
                    )
            else:
                self._p(f"{name}: {value}")

        time_metrics.walk(visit, on_enter=self._enter, on_exit=self._exit)
        result.build_result.performance_metrics.walk(
            visit, on_enter=self._enter, on_exit=self._exit
        )

        self.aggregated = merge_aggregates(self.aggregated, aggregate_time_metrics(time_metrics))
