"""Progress listener interface and fan-out.

Listeners receive lifecycle callbacks from the
:class:`~buildbench.evaluator.BenchmarkEvaluator`.  All methods of
:class:`BenchmarksProgressListener` are no-ops, so sinks override only
what they need.  Callbacks are synchronous: a listener that raises stops
the run.
"""

from __future__ import annotations

from typing import Sequence

from buildbench.dsl import Scenario, Step
from buildbench.results import Outcome, ScenarioResult, StepResult


class BenchmarksProgressListener:
    """Base class for progress sinks."""

    def start_benchmarks(self) -> None:
        pass

    def scenario_started(self, scenario: Scenario) -> None:
        pass

    def scenario_finished(self, scenario: Scenario, result: Outcome[ScenarioResult]) -> None:
        pass

    def step_started(self, step: Step) -> None:
        pass

    def step_finished(self, step: Step, result: Outcome[StepResult]) -> None:
        pass

    def task_execution_started(self, tasks: Sequence[str]) -> None:
        pass

    def cleanup_started(self) -> None:
        pass

    def cleanup_finished(self) -> None:
        pass

    def all_finished(self) -> None:
        pass


class CompositeBenchmarksProgressListener(BenchmarksProgressListener):
    """Forwards every callback to its listeners, in registration order."""

    def __init__(self) -> None:
        self.listeners: list[BenchmarksProgressListener] = []

    def add(self, listener: BenchmarksProgressListener) -> None:
        self.listeners.append(listener)

    def start_benchmarks(self) -> None:
        for listener in self.listeners:
            listener.start_benchmarks()

    def scenario_started(self, scenario: Scenario) -> None:
        for listener in self.listeners:
            listener.scenario_started(scenario)

    def scenario_finished(self, scenario: Scenario, result: Outcome[ScenarioResult]) -> None:
        for listener in self.listeners:
            listener.scenario_finished(scenario, result)

    def step_started(self, step: Step) -> None:
        for listener in self.listeners:
            listener.step_started(step)

    def step_finished(self, step: Step, result: Outcome[StepResult]) -> None:
        for listener in self.listeners:
            listener.step_finished(step, result)

    def task_execution_started(self, tasks: Sequence[str]) -> None:
        for listener in self.listeners:
            listener.task_execution_started(tasks)

    def cleanup_started(self) -> None:
        for listener in self.listeners:
            listener.cleanup_started()

    def cleanup_finished(self) -> None:
        for listener in self.listeners:
            listener.cleanup_finished()

    def all_finished(self) -> None:
        for listener in self.listeners:
            listener.all_finished()
