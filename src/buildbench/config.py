"""Run configuration and YAML suite loading.

Handles:
- Loading benchmark suites from YAML files into :class:`~buildbench.dsl.Suite`.
- The resolved settings of one ``buildbench run`` (:class:`RunConfig`).
- Choosing how results are reported from the CI environment.
- Naming the per-build log files written next to the results.
"""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Mapping

import yaml

from buildbench.dsl import (
    ChangeableFile,
    ScenarioBuilder,
    SimpleStepBuilder,
    StepBuilder,
    Suite,
    SuiteBuilder,
)

log = logging.getLogger("buildbench")

REPORTING_CONSOLE = "console"
REPORTING_TEAMCITY = "teamcity"
REPORTING_TEAMCITY_FILE = "teamcity-file"
REPORTING_MODES = (REPORTING_CONSOLE, REPORTING_TEAMCITY, REPORTING_TEAMCITY_FILE)


# ---------------------------------------------------------------------------
# RunConfig
# ---------------------------------------------------------------------------


def reporting_mode_from_env(env: Mapping[str, str] | None = None) -> str:
    """Pick the reporter for the current environment.

    Under TeamCity (``TEAMCITY_VERSION`` set) results go to service
    messages, or to a JSON file when ``USE_FILE_BASED_TC_REPORTING`` is
    ``true``.  Everywhere else they are printed to the console.
    """
    env = os.environ if env is None else env
    if not env.get("TEAMCITY_VERSION"):
        return REPORTING_CONSOLE
    if env.get("USE_FILE_BASED_TC_REPORTING", "").lower() == "true":
        return REPORTING_TEAMCITY_FILE
    return REPORTING_TEAMCITY


@dataclass
class RunConfig:
    """Resolved configuration for a benchmark run."""

    project_dir: Path
    suite_path: Path
    results_dir: Path = field(default_factory=lambda: Path("build/benchmark-results"))

    build_command: list[str] = field(default_factory=lambda: ["./gradlew"])
    stop_command: list[str] | None = None
    timeout: int | None = None  # Per-build timeout in seconds

    reporting_mode: str = ""  # Empty = detect from environment
    timestamp: str = ""  # Auto-generated if empty

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = time.strftime("%Y-%m-%d-%H-%M-%S")
        if not self.reporting_mode:
            self.reporting_mode = reporting_mode_from_env()
        if self.reporting_mode not in REPORTING_MODES:
            raise ValueError(
                f"Unknown reporting mode '{self.reporting_mode}'. "
                f"Expected one of: {', '.join(REPORTING_MODES)}"
            )

    @property
    def results_json_path(self) -> Path:
        """JSON array written by the file-based TeamCity reporter."""
        return self.results_dir / f"{self.timestamp}.result.json"

    @property
    def compact_results_path(self) -> Path:
        return self.results_dir / f"{self.timestamp}.result.bin"

    def build_log_path(self, scenario_name: str, step_label: str, iteration: int) -> Path:
        return self.results_dir / build_log_file_name(
            self.timestamp, scenario_name, step_label, iteration
        )


def build_log_file_name(
    timestamp: str, scenario_name: str, step_label: str, iteration: int
) -> str:
    """``<time>-build-<scenario>-#<iteration>-<step>.log`` with a file-safe scenario name."""
    safe_name = re.sub(r"[^\w.-]", "_", scenario_name)
    return f"{timestamp}-build-{safe_name}-#{iteration}-{step_label}.log"


class FileBuildLogsProvider:
    """Opens one log file per build under the results directory."""

    def __init__(self, config: RunConfig) -> None:
        self.config = config

    def __call__(self, scenario_name: str, step_label: str, iteration: int) -> BinaryIO:
        path = self.config.build_log_path(scenario_name, step_label, iteration)
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "wb")  # noqa: SIM115


# ---------------------------------------------------------------------------
# YAML suite loading
# ---------------------------------------------------------------------------

_SCENARIO_KEYS = frozenset(
    {
        "name",
        "repeat",
        "jdk",
        "arguments",
        "tracked_metrics",
        "cleanup_tasks",
        "expect_slow_build",
        "alternate_compiler_tasks",
        "steps",
    }
)
_STEP_SETTINGS = frozenset({"tasks", "measured", "expect_failure"})


def load_suite_data(suite_path: Path) -> dict[str, Any]:
    """Load a suite definition from a YAML file.

    Suite format::

        default_tasks: [assemble]
        default_jdk: /usr/lib/jvm/java-17
        default_arguments: ["--parallel"]
        default_tracked_metrics: [BUILD.EXECUTION]
        changes_dir: changes

        changeable_files:
          util: core/src/main/kotlin/Util.kt
          build_script:
            target: core/build.gradle.kts
            changes_dir: script-changes

        scenarios:
          - name: add private function
            repeat: 5
            steps:
              - change_files: {util: add_private_function}
              - revert_last_step: {}
          - name: clean build
            cleanup_tasks: []
            steps:
              - tasks: [clean, assemble]
              - stop_daemon: true

    Returns:
        The parsed YAML as a dict.
    """
    if not suite_path.exists():
        raise FileNotFoundError(f"Suite not found: {suite_path}")

    data = yaml.safe_load(suite_path.read_text())

    if not isinstance(data, dict):
        raise ValueError(f"Suite must be a YAML mapping, got {type(data).__name__}")

    return data


def load_suite_file(suite_path: Path) -> Suite:
    """Load and build a suite.  A relative ``changes_dir`` is resolved
    against the directory holding the suite file.

    Raises:
        FileNotFoundError: If *suite_path* does not exist.
        ValueError: If the content does not describe a suite.
    """
    data = load_suite_data(suite_path)
    suite = suite_from_data(data, base_dir=suite_path.resolve().parent)
    log.debug("Loaded suite %s: %d scenario(s)", suite_path, len(suite.scenarios))
    return suite


def suite_from_data(data: Mapping[str, Any], *, base_dir: Path | None = None) -> Suite:
    """Build a Suite from a parsed YAML mapping."""
    base_dir = base_dir or Path.cwd()
    builder = SuiteBuilder(changes_dir=_resolve(data.get("changes_dir", "changes"), base_dir))

    if "default_tasks" in data:
        builder.default_tasks(*_string_list(data["default_tasks"], "default_tasks"))
    if data.get("default_jdk"):
        builder.default_jdk(data["default_jdk"])
    if "default_arguments" in data:
        builder.default_arguments(*_string_list(data["default_arguments"], "default_arguments"))
    if data.get("default_tracked_metrics") is not None:
        builder.default_tracked_metrics(
            _string_list(data["default_tracked_metrics"], "default_tracked_metrics")
        )

    files_data = data.get("changeable_files") or {}
    if not isinstance(files_data, dict):
        raise ValueError("Suite 'changeable_files' must be a mapping of name -> target file")
    files: dict[str, ChangeableFile] = {}
    for name, file_data in files_data.items():
        if file_data is None or isinstance(file_data, str):
            files[name] = builder.changeable_file(name, file_data)
        elif isinstance(file_data, dict):
            changes_dir = file_data.get("changes_dir")
            files[name] = builder.changeable_file(
                name,
                file_data.get("target"),
                changes_dir=_resolve(changes_dir, base_dir) if changes_dir else None,
            )
        else:
            raise ValueError(
                f"Changeable file '{name}' must be a path or a mapping, "
                f"got {type(file_data).__name__}"
            )

    scenarios_data = data.get("scenarios") or []
    if not isinstance(scenarios_data, list):
        raise ValueError("Suite 'scenarios' must be a list")
    for scenario_data in scenarios_data:
        _add_scenario(builder, scenario_data, files, base_dir)

    return builder.build()


def _add_scenario(
    builder: SuiteBuilder,
    data: Any,
    files: dict[str, ChangeableFile],
    base_dir: Path,
) -> None:
    if not isinstance(data, dict) or not data.get("name"):
        raise ValueError(f"Each scenario must be a mapping with a 'name', got {data!r}")
    name = str(data["name"])
    unknown = set(data) - _SCENARIO_KEYS
    if unknown:
        raise ValueError(f"Scenario '{name}': unknown key(s): {', '.join(sorted(unknown))}")

    def configure(scenario: ScenarioBuilder) -> None:
        if "repeat" in data:
            scenario.repeat(int(data["repeat"]))
        if data.get("jdk"):
            scenario.jdk(data["jdk"])
        if "arguments" in data:
            scenario.arguments(*_string_list(data["arguments"], f"{name}.arguments"))
        if "tracked_metrics" in data:
            tracked = data["tracked_metrics"]
            scenario.tracked_metrics(
                None if tracked is None else _string_list(tracked, f"{name}.tracked_metrics")
            )
        if data.get("cleanup_tasks") is not None:
            scenario.cleanup_tasks(*_string_list(data["cleanup_tasks"], f"{name}.cleanup_tasks"))
        if data.get("expect_slow_build"):
            scenario.expect_slow_build(str(data["expect_slow_build"]))
        if "alternate_compiler_tasks" in data:
            scenario.alternate_compiler_tasks(
                *_string_list(data["alternate_compiler_tasks"], f"{name}.alternate_compiler_tasks")
            )

        steps = data.get("steps") or []
        if not isinstance(steps, list):
            raise ValueError(f"Scenario '{name}': 'steps' must be a list")
        for number, step_data in enumerate(steps, start=1):
            _add_step(scenario, step_data, files, base_dir, f"{name} step {number}")

    builder.scenario(name, configure)


def _add_step(
    scenario: ScenarioBuilder,
    data: Any,
    files: dict[str, ChangeableFile],
    base_dir: Path,
    where: str,
) -> None:
    if not isinstance(data, dict):
        raise ValueError(f"Scenario '{where}': a step must be a mapping, got {data!r}")

    if "stop_daemon" in data:
        if len(data) != 1:
            raise ValueError(f"Scenario '{where}': 'stop_daemon' takes no other settings")
        if data["stop_daemon"]:
            scenario.stop_daemon()
        return

    if "revert_last_step" in data:
        if len(data) != 1:
            raise ValueError(
                f"Scenario '{where}': put revert settings under 'revert_last_step'"
            )
        settings = data["revert_last_step"] or {}
        if settings is True:
            settings = {}
        if not isinstance(settings, dict):
            raise ValueError(f"Scenario '{where}': 'revert_last_step' must be a mapping")
        _check_step_keys(settings, _STEP_SETTINGS, where)
        scenario.revert_last_step(lambda step: _configure_step(step, settings, where))
        return

    _check_step_keys(data, _STEP_SETTINGS | {"change_files"}, where)
    changes = data.get("change_files") or {}
    if not isinstance(changes, dict):
        raise ValueError(f"Scenario '{where}': 'change_files' must be a mapping of file -> change")

    def configure(step: SimpleStepBuilder) -> None:
        _configure_step(step, data, where)
        for file_name, change in changes.items():
            if file_name not in files:
                raise ValueError(f"Scenario '{where}': unknown changeable file '{file_name}'")
            if isinstance(change, str):
                step.change_file(files[file_name], change)
            elif isinstance(change, dict) and change.get("type"):
                source = change.get("source")
                content = change.get("content")
                step.change_file(
                    files[file_name],
                    str(change["type"]),
                    source=_resolve(source, base_dir) if source else None,
                    content=content.encode() if content is not None else None,
                )
            else:
                raise ValueError(
                    f"Scenario '{where}': change of '{file_name}' must be a type name "
                    "or a mapping with a 'type'"
                )

    scenario.step(configure)


def _configure_step(step: StepBuilder, data: Mapping[str, Any], where: str) -> None:
    if data.get("tasks") is not None:
        step.run_tasks(*_string_list(data["tasks"], f"{where}.tasks"))
    if "measured" in data:
        step.measured(bool(data["measured"]))
    if "expect_failure" in data:
        step.expect_build_to_fail(bool(data["expect_failure"]))


def _check_step_keys(data: Mapping[str, Any], allowed: frozenset[str], where: str) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Scenario '{where}': unknown step key(s): {', '.join(sorted(unknown))}")


def _string_list(value: Any, what: str) -> list[str]:
    """Accept a single string or a list of scalars."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value]
    raise ValueError(f"'{what}' must be a string or a list, got {type(value).__name__}")


def _resolve(path: str | Path, base_dir: Path) -> Path:
    resolved = Path(path).expanduser()
    return resolved if resolved.is_absolute() else base_dir / resolved
