"""Benchmark execution engine.

Drives a :class:`~buildbench.dsl.Suite` through the change applier and a
build executor:

1. Suite validation
2. Per scenario, per iteration: cleanup of what the previous iteration left
   applied, then the steps in order
3. Progress notification of every listener
4. Teardown: revert whatever is still applied, close the executor

A failing step aborts only the current iteration; the run continues with
the next iteration after cleanup.  A revert step with nothing to revert
is a malformed suite and stops the run.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Callable

from buildbench.changes import ChangesApplier
from buildbench.dsl import CLEAN_TASK, Scenario, Step, StopDaemon, Suite, step_kind
from buildbench.executor import BuildExecutionError, BuildExecutor, MetricsExtractionError
from buildbench.listeners import BenchmarksProgressListener, CompositeBenchmarksProgressListener
from buildbench.results import (
    BuildResult,
    Failure,
    Outcome,
    ScenarioResult,
    StepResult,
    Success,
)
from buildbench.validation import validate_suite

log = logging.getLogger("buildbench")

# (scenario name, step label, iteration) → binary sink for the build output.
BuildLogsProvider = Callable[[str, str, int], "BinaryIO | None"]

CLEANUP_LABEL = "cleanup"


def _no_build_logs(scenario_name: str, step_label: str, iteration: int) -> BinaryIO | None:
    return None


def derive_cleanup_tasks(scenario: Scenario, suite: Suite) -> tuple[str, ...]:
    """Tasks the scenario's steps run, in first-seen order, minus ``clean``."""
    tasks: list[str] = []
    for step in scenario.steps:
        for task in suite.tasks_for(step):
            if task != CLEAN_TASK and task not in tasks:
                tasks.append(task)
    return tuple(tasks)


class BenchmarkEvaluator:
    """Runs every scenario of a suite against one project directory.

    Usage::

        evaluator = BenchmarkEvaluator(project_dir, CommandBuildExecutor(project_dir))
        evaluator.add_listener(ConsoleBenchmarkListener())
        evaluator.run_benchmarks(suite)
    """

    def __init__(
        self,
        project_dir: Path,
        executor: BuildExecutor,
        *,
        build_logs_provider: BuildLogsProvider | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.executor = executor
        self.build_logs_provider: BuildLogsProvider = build_logs_provider or _no_build_logs
        self.listeners = CompositeBenchmarksProgressListener()
        self.changes = ChangesApplier(project_dir)

    def add_listener(self, listener: BenchmarksProgressListener) -> None:
        self.listeners.add(listener)

    def run_benchmarks(self, suite: Suite) -> None:
        """Run the whole suite.

        Raises:
            ValueError: If the suite is invalid.
            NothingToRevertError: If a revert step has nothing to revert.
        """
        errors = validate_suite(suite, self.project_dir)
        fatal = [e for e in errors if e.severity == "error"]
        for w in (e for e in errors if e.severity == "warning"):
            log.warning("Suite warning: %s: %s", w.field, w.message)
        if fatal:
            messages = [f"  {e.field}: {e.message}" for e in fatal]
            raise ValueError("Invalid benchmark suite:\n" + "\n".join(messages))

        self.executor.open()
        try:
            self.listeners.start_benchmarks()
            prev_scenario: Scenario | None = None
            prev_iteration = 0
            for scenario in suite.scenarios:
                for iteration in range(1, scenario.repeat + 1):
                    if prev_scenario is not None and self.changes.has_applied_changes:
                        self._cleanup(suite, prev_scenario, prev_iteration, scenario)
                    self._run_iteration(suite, scenario, iteration)
                    prev_scenario = scenario
                    prev_iteration = iteration
            self.listeners.all_finished()
        finally:
            try:
                self.changes.revert_applied_changes()
            except Exception:  # noqa: BLE001
                log.error("Failed to revert changes at teardown", exc_info=True)
            self.executor.close()

    # -- cleanup ------------------------------------------------------------

    def _cleanup(
        self,
        suite: Suite,
        prev_scenario: Scenario,
        prev_iteration: int,
        scenario: Scenario,
    ) -> None:
        self.listeners.cleanup_started()
        self.changes.revert_applied_changes()
        if prev_scenario.cleanup_tasks is not None:
            tasks = prev_scenario.cleanup_tasks
        else:
            tasks = derive_cleanup_tasks(scenario, suite)

        if not tasks:
            log.info("No cleanup tasks after '%s' #%d", prev_scenario.name, prev_iteration)
        else:
            log.debug("Cleanup after '%s' #%d: %s", prev_scenario.name, prev_iteration, tasks)
            output = self.build_logs_provider(prev_scenario.name, CLEANUP_LABEL, prev_iteration)
            try:
                self.executor.execute(
                    tasks,
                    jdk=scenario.jdk,
                    arguments=scenario.arguments,
                    output=output,
                    alternate_compiler_tasks=scenario.alternate_compiler_tasks,
                )
            except Exception as exc:  # noqa: BLE001
                log.warning("Cleanup build after '%s' failed: %s", prev_scenario.name, exc)
            finally:
                if output is not None:
                    output.close()
        self.listeners.cleanup_finished()

    # -- iteration ----------------------------------------------------------

    def _run_iteration(self, suite: Suite, scenario: Scenario, iteration: int) -> None:
        log.debug("Scenario '%s' iteration %d", scenario.name, iteration)
        self.listeners.scenario_started(scenario)
        step_results: list[StepResult] = []

        for index, step in enumerate(scenario.steps):
            if isinstance(step, StopDaemon):
                self.executor.restart_connection()
                continue

            number = index + 1
            self.listeners.step_started(step)
            outcome = self._run_step(suite, scenario, iteration, step, number)
            self.listeners.step_finished(step, outcome)
            if isinstance(outcome, Failure):
                self.listeners.scenario_finished(
                    scenario,
                    Failure(f"Step {number} failed: {outcome.reason}", error=outcome.error),
                )
                return
            step_results.append(outcome.value)

        self.listeners.scenario_finished(scenario, Success(ScenarioResult(step_results)))

    def _run_step(
        self,
        suite: Suite,
        scenario: Scenario,
        iteration: int,
        step: Step,
        number: int,
    ) -> Outcome[StepResult]:
        if not self.changes.apply_step_changes(step):
            return Failure(f"Could not apply changes of step {number}")

        tasks = suite.tasks_for(step)
        log.debug("Step %d (%s): %s", number, step_kind(step), ", ".join(tasks))
        self.listeners.task_execution_started(tasks)
        output = self.build_logs_provider(scenario.name, str(number), iteration)
        try:
            build_result = self.executor.execute(
                tasks,
                jdk=scenario.jdk,
                arguments=scenario.arguments,
                output=output,
                alternate_compiler_tasks=scenario.alternate_compiler_tasks,
            )
        except MetricsExtractionError as exc:
            return Failure.from_exception(exc)
        except BuildExecutionError as exc:
            if not step.is_expected_to_fail:
                return Failure.from_exception(exc)
            log.debug("Step %d failed as expected: %s", number, exc)
            build_result = exc.partial_result or BuildResult()
        except Exception as exc:  # noqa: BLE001
            if not step.is_expected_to_fail:
                log.error("Unexpected error running step %d", number, exc_info=True)
                return Failure.from_exception(exc)
            log.debug("Step %d failed as expected: %s", number, exc, exc_info=True)
            build_result = BuildResult()
        finally:
            if output is not None:
                output.close()

        return Success(StepResult(step=step, build_result=build_result, number=number))
