"""Build executors.

:class:`BuildExecutor` is the interface the evaluator drives: run a list
of tasks and return a :class:`~buildbench.results.BuildResult`, or raise
:class:`BuildExecutionError`.  How the numbers are produced is the
executor's business.

:class:`CommandBuildExecutor` runs the project's build tool as a
subprocess.  It measures wall-clock time itself and, when the build writes
one, decodes the detailed metrics file (see :mod:`buildbench.build_metrics`).
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Sequence

from buildbench.build_metrics import apply_build_metrics, load_build_metrics
from buildbench.metrics import MetricsContainer, PhaseMetric, TimeInterval
from buildbench.results import BuildResult

log = logging.getLogger("buildbench")

ENV_METRICS_FILE = "BUILDBENCH_METRICS_FILE"
ENV_ALTERNATE_COMPILER_TASKS = "BUILDBENCH_ALTERNATE_COMPILER_TASKS"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class BuildExecutionError(Exception):
    """The build failed.

    ``partial_result`` holds whatever was measured before the failure, so
    that steps expected to fail can still be reported.
    """

    def __init__(
        self,
        message: str,
        *,
        partial_result: BuildResult | None = None,
        exit_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.partial_result = partial_result
        self.exit_code = exit_code


class MetricsExtractionError(BuildExecutionError):
    """The build finished but its measurements could not be decoded."""


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


class BuildExecutor:
    """Runs builds for the evaluator.

    Subclasses holding a persistent connection (a build daemon) set it up
    in :meth:`open` and tear it down in :meth:`close`.
    """

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def restart_connection(self) -> None:
        """Drop the persistent connection and start a fresh one."""
        self.close()
        self.open()

    def execute(
        self,
        tasks: Sequence[str],
        *,
        jdk: Path | None = None,
        arguments: Sequence[str] = (),
        output: BinaryIO | None = None,
        alternate_compiler_tasks: frozenset[str] = frozenset(),
    ) -> BuildResult:
        """Run *tasks* and return the measurements.

        Raises:
            BuildExecutionError: If the build fails.
            MetricsExtractionError: If the measurements cannot be read.
        """
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Subprocess executor
# ---------------------------------------------------------------------------


@dataclass
class ProcessRun:
    """Outcome of one build process."""

    wall_time: TimeInterval
    exit_code: int
    timed_out: bool = False


class CommandBuildExecutor(BuildExecutor):
    """Runs ``command + arguments + tasks`` inside the project directory.

    Usage::

        executor = CommandBuildExecutor(
            Path("~/src/project").expanduser(),
            command=["./gradlew"],
            stop_command=["./gradlew", "--stop"],
        )
    """

    def __init__(
        self,
        project_dir: Path,
        command: Sequence[str] = ("./gradlew",),
        *,
        stop_command: Sequence[str] | None = None,
        timeout: int | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.command = list(command)
        self.stop_command = list(stop_command) if stop_command else None
        self.timeout = timeout
        self.env = dict(env or {})

    def close(self) -> None:
        if self.stop_command:
            self._stop_daemons(self.stop_command)

    def restart_connection(self) -> None:
        log.info("Restarting build daemon...")
        if self.stop_command:
            self._stop_daemons(self.stop_command)
        else:
            log.debug("No stop command configured; nothing to restart")

    def build_command(self, tasks: Sequence[str], arguments: Sequence[str]) -> list[str]:
        return [*self.command, *arguments, *tasks]

    def build_env(
        self,
        *,
        jdk: Path | None,
        metrics_file: Path,
        alternate_compiler_tasks: frozenset[str],
    ) -> dict[str, str]:
        """Environment for one build: inherited env, overrides, then our variables."""
        env = dict(os.environ)
        env.update(self.env)
        if jdk is not None:
            env["JAVA_HOME"] = str(jdk)
        env[ENV_METRICS_FILE] = str(metrics_file)
        if alternate_compiler_tasks:
            env[ENV_ALTERNATE_COMPILER_TASKS] = ",".join(sorted(alternate_compiler_tasks))
        return env

    def execute(
        self,
        tasks: Sequence[str],
        *,
        jdk: Path | None = None,
        arguments: Sequence[str] = (),
        output: BinaryIO | None = None,
        alternate_compiler_tasks: frozenset[str] = frozenset(),
    ) -> BuildResult:
        fd, metrics_name = tempfile.mkstemp(prefix="buildbench-", suffix="-metrics.json")
        os.close(fd)
        metrics_file = Path(metrics_name)
        try:
            command = self.build_command(tasks, arguments)
            env = self.build_env(
                jdk=jdk,
                metrics_file=metrics_file,
                alternate_compiler_tasks=alternate_compiler_tasks,
            )
            log.debug("Running build: %s", " ".join(command))
            run = run_build_process(
                command,
                cwd=self.project_dir,
                env=env,
                output=output,
                timeout=self.timeout,
            )

            result = BuildResult()
            result.time_metrics[PhaseMetric.BUILD] = run.wall_time
            self._read_metrics(metrics_file, result.time_metrics, result.performance_metrics)

            if run.timed_out:
                raise BuildExecutionError(
                    f"Build timed out after {self.timeout}s",
                    partial_result=result,
                    exit_code=run.exit_code,
                )
            if run.exit_code != 0:
                raise BuildExecutionError(
                    f"Build failed with exit code {run.exit_code}",
                    partial_result=result,
                    exit_code=run.exit_code,
                )
            return result
        finally:
            metrics_file.unlink(missing_ok=True)

    def _read_metrics(
        self,
        metrics_file: Path,
        time_metrics: MetricsContainer[TimeInterval],
        performance_metrics: MetricsContainer[int],
    ) -> None:
        try:
            data = load_build_metrics(metrics_file)
        except (OSError, ValueError) as exc:
            raise MetricsExtractionError(f"Could not read build metrics: {exc}") from exc
        if data is not None:
            apply_build_metrics(time_metrics, performance_metrics, data)

    def _stop_daemons(self, stop_command: Sequence[str]) -> None:
        log.info("Stopping build daemons...")
        try:
            subprocess.run(
                list(stop_command),
                cwd=str(self.project_dir),
                env={**os.environ, **self.env},
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            log.warning("Failed to stop build daemons: %s", exc)


def run_build_process(
    command: Sequence[str],
    *,
    cwd: Path,
    env: dict[str, str] | None = None,
    output: BinaryIO | None = None,
    timeout: int | None = None,
) -> ProcessRun:
    """Run a build command, timing it and streaming its output to *output*.

    stdout and stderr are merged, as a build log reads best interleaved.
    Output is copied chunk by chunk while the build runs, so the log of a
    hanging build shows how far it got.  On timeout the whole process
    group is killed.

    Raises:
        OSError: If the command cannot be started.
    """
    wall_start = time.monotonic()
    proc = subprocess.Popen(
        list(command),
        cwd=str(cwd),
        env=env,
        stdout=subprocess.PIPE if output is not None else subprocess.DEVNULL,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )
    pump: threading.Thread | None = None
    if output is not None and proc.stdout is not None:
        pump = threading.Thread(
            target=_copy_output, args=(proc.stdout, output), name="build-output", daemon=True
        )
        pump.start()

    timed_out = False
    try:
        exit_code = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_group(proc.pid)
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        exit_code = -1
    wall_time = TimeInterval.seconds(time.monotonic() - wall_start)

    if pump is not None:
        # A grandchild outside the process group may still hold the pipe open.
        pump.join(timeout=_OUTPUT_DRAIN_TIMEOUT)
        if pump.is_alive():
            log.warning("Build output still open after exit; log may be incomplete")

    return ProcessRun(wall_time=wall_time, exit_code=exit_code, timed_out=timed_out)


_OUTPUT_CHUNK_SIZE = 64 * 1024
_OUTPUT_DRAIN_TIMEOUT = 5


def _copy_output(source: BinaryIO, sink: BinaryIO) -> None:
    """Copy *source* to *sink* until EOF.  Keeps draining if *sink* fails."""
    sink_ok = True
    try:
        while True:
            chunk = source.read1(_OUTPUT_CHUNK_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                break
            if not sink_ok:
                continue
            try:
                sink.write(chunk)
                sink.flush()
            except (OSError, ValueError) as exc:
                log.warning("Could not write build output: %s", exc)
                sink_ok = False
    finally:
        source.close()


def _kill_process_group(pid: int) -> None:
    """Attempt to kill the entire process group on timeout."""
    try:
        os.killpg(os.getpgid(pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        pass
