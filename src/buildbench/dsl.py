"""Benchmark suite model and its fluent builders.

A :class:`Suite` is an immutable description of what to benchmark::

    Suite
      → scenarios: tuple[Scenario]
        → steps: tuple[SimpleStep | RevertLastStep | StopDaemon]
          → file_changes: tuple[FileChange]   (SimpleStep only)
      → changeable_files: tuple[ChangeableFile]

Suites are declared through builders whose setters return the builder::

    builder = SuiteBuilder()
    util = builder.changeable_file("util", "src/main/kotlin/Util.kt")
    builder.default_tasks("assemble").scenario(
        "add private function",
        lambda s: s.repeat(5)
        .step(lambda st: st.change_file(util, "add_private_function"))
        .revert_last_step(),
    )
    benchmarks = builder.build()

Defaults (JDK, arguments, tracked metrics) are resolved when the suite is
built, not when it runs.  The builders do not check that step sequences
make sense; see :mod:`buildbench.validation`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Union

from buildbench.metrics import REQUIRED_TRACKED_METRICS

CLEAN_TASK = "clean"
DEFAULT_CHANGES_DIR = Path("changes")


# ---------------------------------------------------------------------------
# File changes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChangeableFile:
    """A project file that scenarios may rewrite.

    ``target_file`` is relative to the project root.  Content variants live
    under ``changes_dir/<name>/``.
    """

    name: str
    target_file: str
    changes_dir: Path = DEFAULT_CHANGES_DIR

    def variant_path(self, type_of_change: str) -> Path:
        """Default location of the content for *type_of_change*."""
        suffix = PurePosixPath(self.target_file).suffix
        return self.changes_dir / self.name / f"{type_of_change}{suffix}"


TypeOfChange = str


@dataclass(frozen=True)
class FileChange:
    """One edit: write new content over a changeable file."""

    changeable_file: ChangeableFile
    type_of_change: TypeOfChange
    source: Path | None = None
    content: bytes | None = None

    @property
    def content_source(self) -> Path:
        return self.source or self.changeable_file.variant_path(self.type_of_change)

    def read_content(self) -> bytes:
        """Bytes to write, from inline content or the variant file."""
        if self.content is not None:
            return self.content
        return self.content_source.read_bytes()

    def __str__(self) -> str:
        return f"{self.changeable_file.target_file} ({self.type_of_change})"


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SimpleStep:
    """Apply file changes, then build."""

    file_changes: tuple[FileChange, ...] = ()
    tasks: tuple[str, ...] | None = None
    is_measured: bool = True
    is_expected_to_fail: bool = False


@dataclass(frozen=True)
class RevertLastStep:
    """Undo the most recent still-applied step, then build."""

    tasks: tuple[str, ...] | None = None
    is_measured: bool = True
    is_expected_to_fail: bool = False


@dataclass(frozen=True)
class StopDaemon:
    """Restart the build executor's persistent connection."""

    tasks: tuple[str, ...] | None = field(default=None, init=False)
    is_measured: bool = field(default=False, init=False)
    is_expected_to_fail: bool = field(default=False, init=False)


Step = Union[SimpleStep, RevertLastStep, StopDaemon]


def step_kind(step: Step) -> str:
    """Short human-readable label for a step variant."""
    if isinstance(step, SimpleStep):
        return "step"
    if isinstance(step, RevertLastStep):
        return "revert last step"
    if isinstance(step, StopDaemon):
        return "stop daemon"
    raise TypeError(f"Unknown step type: {type(step).__name__}")


# ---------------------------------------------------------------------------
# Scenario / Suite
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Scenario:
    """A named, repeatable sequence of steps."""

    name: str
    steps: tuple[Step, ...] = ()
    repeat: int = 1
    jdk: Path | None = None
    arguments: tuple[str, ...] = ()
    tracked_metrics: frozenset[str] | None = None  # None = report everything
    cleanup_tasks: tuple[str, ...] | None = None  # None = derive from steps
    expected_slow_build_reason: str | None = None
    alternate_compiler_tasks: frozenset[str] = frozenset()

    def is_tracked(self, metric_name: str) -> bool:
        return self.tracked_metrics is None or metric_name in self.tracked_metrics


@dataclass(frozen=True)
class Suite:
    """Everything a benchmark run needs to know, frozen."""

    scenarios: tuple[Scenario, ...] = ()
    default_tasks: tuple[str, ...] = ()
    default_jdk: Path | None = None
    default_arguments: tuple[str, ...] = ()
    changeable_files: tuple[ChangeableFile, ...] = ()

    def tasks_for(self, step: Step) -> tuple[str, ...]:
        """The step's own tasks, or the suite defaults."""
        return step.tasks if step.tasks is not None else self.default_tasks


def with_required_metrics(names: Iterable[str] | None) -> frozenset[str] | None:
    """Tracked metric set including the always-required names."""
    if names is None:
        return None
    return frozenset(names) | REQUIRED_TRACKED_METRICS


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


class StepBuilder:
    """Common settings of measured steps."""

    def __init__(self) -> None:
        self._tasks: tuple[str, ...] | None = None
        self._is_measured = True
        self._is_expected_to_fail = False

    def run_tasks(self, *tasks: str) -> StepBuilder:
        self._tasks = tuple(tasks)
        return self

    def measured(self, value: bool = True) -> StepBuilder:
        self._is_measured = value
        return self

    def do_not_measure(self) -> StepBuilder:
        return self.measured(False)

    def expect_build_to_fail(self, value: bool = True) -> StepBuilder:
        self._is_expected_to_fail = value
        return self


class RevertStepBuilder(StepBuilder):
    """Builder for a step that undoes the previous one."""

    def build(self) -> Step:
        return RevertLastStep(
            tasks=self._tasks,
            is_measured=self._is_measured,
            is_expected_to_fail=self._is_expected_to_fail,
        )


class SimpleStepBuilder(StepBuilder):
    """Builder for a step that changes files."""

    def __init__(self) -> None:
        super().__init__()
        self._file_changes: list[FileChange] = []

    def change_file(
        self,
        changeable_file: ChangeableFile,
        type_of_change: TypeOfChange,
        *,
        content: bytes | None = None,
        source: Path | str | None = None,
    ) -> SimpleStepBuilder:
        self._file_changes.append(
            FileChange(
                changeable_file=changeable_file,
                type_of_change=type_of_change,
                source=Path(source) if source is not None else None,
                content=content,
            )
        )
        return self

    def build(self) -> Step:
        return SimpleStep(
            file_changes=tuple(self._file_changes),
            tasks=self._tasks,
            is_measured=self._is_measured,
            is_expected_to_fail=self._is_expected_to_fail,
        )


class ScenarioBuilder:
    """Builder for one :class:`Scenario`."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._repeat = 1
        self._jdk: Path | None = None
        self._arguments: list[str] | None = None
        self._tracked_metrics: frozenset[str] | None = None
        self._tracked_metrics_set = False
        self._cleanup_tasks: list[str] | None = None
        self._expected_slow_build_reason: str | None = None
        self._alternate_compiler_tasks: frozenset[str] = frozenset()
        self._steps: list[Step] = []

    def repeat(self, times: int) -> ScenarioBuilder:
        if times < 1:
            raise ValueError(f"Scenario '{self.name}': repeat must be at least 1 (got {times}).")
        self._repeat = times
        return self

    def jdk(self, path: str | Path | None) -> ScenarioBuilder:
        self._jdk = Path(path) if path is not None else None
        return self

    def arguments(self, *arguments: str) -> ScenarioBuilder:
        if self._arguments is None:
            self._arguments = []
        self._arguments.extend(arguments)
        return self

    def tracked_metrics(self, names: Iterable[str] | None) -> ScenarioBuilder:
        self._tracked_metrics = with_required_metrics(names)
        self._tracked_metrics_set = True
        return self

    def expect_slow_build(self, reason: str) -> ScenarioBuilder:
        self._expected_slow_build_reason = reason
        return self

    def cleanup_tasks(self, *task_names: str) -> ScenarioBuilder:
        # Calling with no names still makes the list explicit: run no cleanup build.
        if self._cleanup_tasks is None:
            self._cleanup_tasks = []
        self._cleanup_tasks.extend(task_names)
        return self

    def alternate_compiler_tasks(self, *task_names: str) -> ScenarioBuilder:
        self._alternate_compiler_tasks = frozenset(task_names)
        return self

    def step(
        self, configure: Callable[[SimpleStepBuilder], object] | None = None
    ) -> ScenarioBuilder:
        builder = SimpleStepBuilder()
        if configure is not None:
            configure(builder)
        self._steps.append(builder.build())
        return self

    def revert_last_step(
        self, configure: Callable[[StepBuilder], object] | None = None
    ) -> ScenarioBuilder:
        builder = RevertStepBuilder()
        if configure is not None:
            configure(builder)
        self._steps.append(builder.build())
        return self

    def stop_daemon(self) -> ScenarioBuilder:
        self._steps.append(StopDaemon())
        return self

    def build(
        self,
        *,
        default_jdk: Path | None = None,
        default_arguments: tuple[str, ...] = (),
        default_tracked_metrics: frozenset[str] | None = None,
    ) -> Scenario:
        return Scenario(
            name=self.name,
            steps=tuple(self._steps),
            repeat=self._repeat,
            jdk=self._jdk if self._jdk is not None else default_jdk,
            arguments=(
                tuple(self._arguments) if self._arguments is not None else default_arguments
            ),
            tracked_metrics=(
                self._tracked_metrics if self._tracked_metrics_set else default_tracked_metrics
            ),
            cleanup_tasks=(
                tuple(self._cleanup_tasks) if self._cleanup_tasks is not None else None
            ),
            expected_slow_build_reason=self._expected_slow_build_reason,
            alternate_compiler_tasks=self._alternate_compiler_tasks,
        )


class SuiteBuilder:
    """Builder for a :class:`Suite`."""

    def __init__(self, *, changes_dir: str | Path = DEFAULT_CHANGES_DIR) -> None:
        self._changes_dir = Path(changes_dir)
        self._scenarios: list[ScenarioBuilder] = []
        self._default_tasks: tuple[str, ...] = ()
        self._default_jdk: Path | None = None
        self._default_arguments: list[str] = []
        self._default_tracked_metrics: frozenset[str] | None = None
        self._changeable_files: list[ChangeableFile] = []

    def scenario(
        self,
        name: str,
        configure: Callable[[ScenarioBuilder], object] | None = None,
    ) -> SuiteBuilder:
        builder = ScenarioBuilder(name)
        if configure is not None:
            configure(builder)
        self._scenarios.append(builder)
        return self

    def default_tasks(self, *tasks: str) -> SuiteBuilder:
        self._default_tasks = tuple(tasks)
        return self

    def default_jdk(self, path: str | Path | None) -> SuiteBuilder:
        self._default_jdk = Path(path) if path is not None else None
        return self

    def default_arguments(self, *arguments: str) -> SuiteBuilder:
        self._default_arguments.extend(arguments)
        return self

    def default_tracked_metrics(self, names: Iterable[str] | None) -> SuiteBuilder:
        self._default_tracked_metrics = with_required_metrics(names)
        return self

    def changeable_file(
        self,
        name: str,
        target_file: str | None = None,
        *,
        changes_dir: str | Path | None = None,
    ) -> ChangeableFile:
        """Declare a file scenarios may rewrite and return its handle.

        *target_file* defaults to *name*.
        """
        changeable = ChangeableFile(
            name=name,
            target_file=target_file or name,
            changes_dir=Path(changes_dir) if changes_dir is not None else self._changes_dir,
        )
        self._changeable_files.append(changeable)
        return changeable

    def build(self) -> Suite:
        default_arguments = tuple(self._default_arguments)
        return Suite(
            scenarios=tuple(
                builder.build(
                    default_jdk=self._default_jdk,
                    default_arguments=default_arguments,
                    default_tracked_metrics=self._default_tracked_metrics,
                )
                for builder in self._scenarios
            ),
            default_tasks=self._default_tasks,
            default_jdk=self._default_jdk,
            default_arguments=default_arguments,
            changeable_files=tuple(self._changeable_files),
        )


def suite(
    configure: Callable[[SuiteBuilder], object],
    *,
    changes_dir: str | Path = DEFAULT_CHANGES_DIR,
) -> Suite:
    """Declare and build a suite in one call."""
    builder = SuiteBuilder(changes_dir=changes_dir)
    configure(builder)
    return builder.build()
