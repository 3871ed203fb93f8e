"""TeamCity reporting.

Two progress listeners report to a TeamCity build:

- :class:`TeamCityParametersReporter` prints service messages, setting one
  build parameter and one statistic value per metric.
- :class:`TeamCityFileReporter` still prints test and progress messages,
  but writes the metrics to a JSON results file instead.

Both report each scenario iteration as a TeamCity test named after the
scenario.
"""

from __future__ import annotations

import enum
import logging
import re
from pathlib import Path
from typing import IO, Sequence

import click

from buildbench.dsl import Scenario, Step
from buildbench.listeners import BenchmarksProgressListener
from buildbench.results import (
    Failure,
    Outcome,
    ScenarioResult,
    StepResult,
    describe_scenario_result,
    format_metric_value,
    reportable_metrics,
)

log = logging.getLogger("buildbench")

_NON_WORD_OR_DOT = re.compile(r"[^\w.]")


# ---------------------------------------------------------------------------
# Service messages
# ---------------------------------------------------------------------------


class MessageStatus(enum.Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    FAILURE = "FAILURE"
    ERROR = "ERROR"


def escape_tc(value: str) -> str:
    """Escape a value for use inside a ``##teamcity[...]`` attribute."""
    return (
        value.replace("|", "||")
        .replace("\n", "|n")
        .replace("\r", "|r")
        .replace("'", "|'")
        .replace("[", "|[")
        .replace("]", "|]")
    )


def special_characters_to_underscore(key: str) -> str:
    """Make *key* usable as a parameter or statistic name."""
    return _NON_WORD_OR_DOT.sub("_", key)


class ServiceMessages:
    """Writes ``##teamcity[...]`` lines to a text stream (stdout by default)."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.stream = stream

    def emit(self, name: str, /, **attributes: str) -> None:
        attrs = " ".join(f"{key}='{escape_tc(value)}'" for key, value in attributes.items())
        click.echo(f"##teamcity[{name} {attrs}]", file=self.stream)

    def set_parameter(self, key: str, value: str) -> None:
        self.emit("setParameter", name=key, value=value)

    def report_statistic(self, key: str, value: str) -> None:
        self.emit("buildStatisticValue", key=key, value=value)

    def message(self, text: str, status: MessageStatus = MessageStatus.NORMAL) -> None:
        self.emit("message", text=text, status=status.value)

    def test_started(self, name: str) -> None:
        self.emit("testStarted", name=name)

    def test_failed(self, name: str, message: str) -> None:
        self.emit("testFailed", name=name, message=message)

    def test_finished(self, name: str) -> None:
        self.emit("testFinished", name=name)


# ---------------------------------------------------------------------------
# Reporters
# ---------------------------------------------------------------------------


class TeamCityResultReporter(BenchmarksProgressListener):
    """Progress messages and per-iteration tests shared by both reporters."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self.messages = ServiceMessages(stream)
        self._current_scenario: Scenario | None = None
        self.current_scenario_run = 0  # 0-based iteration of the current scenario

    def scenario_started(self, scenario: Scenario) -> None:
        self.messages.test_started(scenario.name)
        if self._current_scenario is scenario:
            self.current_scenario_run += 1
        else:
            self._current_scenario = scenario
            self.current_scenario_run = 0

    def scenario_finished(self, scenario: Scenario, result: Outcome[ScenarioResult]) -> None:
        if isinstance(result, Failure):
            self.messages.test_failed(scenario.name, result.reason)
        else:
            self.report_scenario_result(scenario, result.value)
        self.messages.test_finished(scenario.name)

    def report_scenario_result(self, scenario: Scenario, result: ScenarioResult) -> None:
        raise NotImplementedError

    def task_execution_started(self, tasks: Sequence[str]) -> None:
        self.messages.message("Executing tasks: " + ", ".join(f"'{t}'" for t in tasks))

    def step_finished(self, step: Step, result: Outcome[StepResult]) -> None:
        if isinstance(result, Failure):
            self.messages.message(
                f"Step finished with error: {result.reason}", MessageStatus.FAILURE
            )
        else:
            self.messages.message("Step finished")

    def cleanup_started(self) -> None:
        self.messages.message("Cleanup after last scenario is started")

    def cleanup_finished(self) -> None:
        self.messages.message("Cleanup after last scenario is finished")


class TeamCityParametersReporter(TeamCityResultReporter):
    """Reports every metric as a build statistic value.

    Tracked metrics are also exposed as ``env.br.*`` build parameters.
    """

    def report_scenario_result(self, scenario: Scenario, result: ScenarioResult) -> None:
        self.messages.set_parameter(
            f"env.br.{special_characters_to_underscore(scenario.name)}.display_name",
            scenario.name,
        )
        iteration = self.current_scenario_run + 1
        for step_number, step_result in result.measured:
            for metric_name, value in reportable_metrics(step_result.build_result):
                formatted = format_metric_value(value)
                key = special_characters_to_underscore(
                    f"{scenario.name}.iter-{iteration}.step-{step_number}.{metric_name}"
                )
                if scenario.is_tracked(metric_name):
                    self.messages.set_parameter(f"env.br.{key}", formatted)
                self.messages.report_statistic(key, formatted)


class TeamCityFileReporter(TeamCityResultReporter):
    """Writes one JSON record per successful scenario iteration.

    The file is a JSON array, written incrementally: ``[`` when the run
    starts, comma-separated records, ``]`` when it finishes.  A run that
    stops early leaves an unterminated array behind.
    """

    def __init__(self, results_file: Path, stream: IO[str] | None = None) -> None:
        super().__init__(stream)
        self.results_file = results_file
        self._output: IO[str] | None = None
        self._is_first_record = True

    def start_benchmarks(self) -> None:
        self.results_file.parent.mkdir(parents=True, exist_ok=True)
        self._output = open(self.results_file, "w", encoding="utf-8")  # noqa: SIM115
        self._output.write("[\n")

    def report_scenario_result(self, scenario: Scenario, result: ScenarioResult) -> None:
        if self._output is None:
            log.warning("Results file is not open; dropping result of '%s'", scenario.name)
            return
        description = describe_scenario_result(
            scenario.name,
            self.current_scenario_run + 1,
            result,
            tracked_metrics=scenario.tracked_metrics,
        )
        if not self._is_first_record:
            self._output.write(",\n")
        self._is_first_record = False
        self._output.write(description.to_json())
        self._output.flush()

    def all_finished(self) -> None:
        if self._output is None:
            return
        try:
            self._output.write("\n]\n")
        except OSError:
            log.error("Could not finish results file %s", self.results_file, exc_info=True)
        finally:
            self._output.close()
            self._output = None
        log.info("Results written to %s", self.results_file)
