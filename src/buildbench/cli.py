"""CLI entry point for buildbench.

Subcommands:
    buildbench run        Run a benchmark suite against a project
    buildbench validate   Check a suite without building anything
    buildbench show       Display a JSON results file
    buildbench export     Export a compact results file to CSV/markdown
"""

from __future__ import annotations

import logging
import shlex
import time
from pathlib import Path

import click

from buildbench import __version__
from buildbench.config import (
    REPORTING_MODES,
    REPORTING_TEAMCITY,
    REPORTING_TEAMCITY_FILE,
    FileBuildLogsProvider,
    RunConfig,
    load_suite_file,
)
from buildbench.dsl import Suite
from buildbench.formatting import format_duration, format_table
from buildbench.logging import setup_logging

log = logging.getLogger("buildbench")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """buildbench: benchmark incremental builds under controlled file edits."""


def _load_suite_or_exit(suite_path: Path) -> Suite:
    try:
        return load_suite_file(suite_path)
    except (FileNotFoundError, ValueError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command()
@click.argument("suite_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--project-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Root of the project to build.",
)
@click.option(
    "--results-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("build/benchmark-results"),
    show_default=True,
    help="Where results and build logs are written.",
)
@click.option(
    "--build-command",
    type=str,
    default="./gradlew",
    show_default=True,
    help="Build tool invocation; arguments and tasks are appended.",
)
@click.option(
    "--stop-command",
    type=str,
    default=None,
    help="Command that stops build daemons (e.g. './gradlew --stop').",
)
@click.option("--timeout", type=int, default=None, help="Per-build timeout in seconds.")
@click.option(
    "--reporter",
    type=click.Choice(["auto", *REPORTING_MODES]),
    default="auto",
    show_default=True,
    help="Result reporting; 'auto' detects TeamCity from the environment.",
)
@click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
@click.option("-q", "--quiet", is_flag=True, help="Only show warnings and errors.")
@click.option("--log-file", type=click.Path(path_type=Path), default=None)
def run(
    suite_path: Path,
    project_dir: Path,
    results_dir: Path,
    build_command: str,
    stop_command: str | None,
    timeout: int | None,
    reporter: str,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Run the benchmark suite SUITE_PATH against a project.

    \b
    Examples:
        buildbench run suite.yaml --project-dir ~/src/app
        buildbench run suite.yaml --project-dir ~/src/app \\
            --stop-command "./gradlew --stop" --timeout 1800
    """
    from buildbench.compact import CompactResultsWriter
    from buildbench.display import ConsoleBenchmarkListener
    from buildbench.evaluator import BenchmarkEvaluator
    from buildbench.executor import CommandBuildExecutor
    from buildbench.teamcity import TeamCityFileReporter, TeamCityParametersReporter

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    try:
        config = RunConfig(
            project_dir=project_dir,
            suite_path=suite_path,
            results_dir=results_dir,
            build_command=shlex.split(build_command),
            stop_command=shlex.split(stop_command) if stop_command else None,
            timeout=timeout,
            reporting_mode="" if reporter == "auto" else reporter,
        )
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    suite = _load_suite_or_exit(suite_path)

    executor = CommandBuildExecutor(
        config.project_dir,
        config.build_command,
        stop_command=config.stop_command,
        timeout=config.timeout,
    )
    evaluator = BenchmarkEvaluator(
        config.project_dir,
        executor,
        build_logs_provider=FileBuildLogsProvider(config),
    )
    if config.reporting_mode == REPORTING_TEAMCITY:
        evaluator.add_listener(TeamCityParametersReporter())
    elif config.reporting_mode == REPORTING_TEAMCITY_FILE:
        evaluator.add_listener(TeamCityFileReporter(config.results_json_path))
    else:
        evaluator.add_listener(ConsoleBenchmarkListener())
    evaluator.add_listener(CompactResultsWriter(config.compact_results_path))

    log.info(
        "Running %d scenario(s) against %s (reporter: %s)",
        len(suite.scenarios),
        config.project_dir,
        config.reporting_mode,
    )
    start = time.monotonic()
    try:
        evaluator.run_benchmarks(suite)
    except ValueError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        click.echo("\nBenchmark interrupted.", err=True)
        raise SystemExit(130)  # noqa: B904

    log.info("Finished in %s", format_duration(time.monotonic() - start))
    log.info("Results saved to: %s", config.results_dir)


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


@main.command()
@click.argument("suite_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path),
    required=True,
    help="Root of the project the suite targets.",
)
def validate(suite_path: Path, project_dir: Path) -> None:
    """Check SUITE_PATH for errors without touching the project."""
    from buildbench.validation import validate_suite

    suite = _load_suite_or_exit(suite_path)
    errors = validate_suite(suite, project_dir)
    for e in errors:
        label = "Warning" if e.severity == "warning" else "Error"
        click.echo(f"{label}: {e.field}: {e.message}", err=True)

    if any(e.severity == "error" for e in errors):
        raise SystemExit(1)

    n_steps = sum(len(s.steps) for s in suite.scenarios)
    n_runs = sum(len(s.steps) * s.repeat for s in suite.scenarios)
    click.echo(
        f"Suite is valid: {len(suite.scenarios)} scenario(s), {n_steps} step(s), "
        f"{n_runs} step run(s) in total."
    )


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("result_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def show(result_file: Path) -> None:
    """Display a JSON results file written by the file-based reporter."""
    from buildbench.results import load_results_json

    try:
        descriptions = load_results_json(result_file)
    except (ValueError, KeyError) as exc:
        click.echo(f"Error: cannot read {result_file}: {exc}", err=True)
        raise SystemExit(1) from exc

    if not descriptions:
        click.echo("No results.")
        return

    for description in descriptions:
        click.echo(f"Scenario '{description.display_name}' #{description.iteration}")
        rows = [
            [str(step.step), result.metric_name, result.metric_value]
            for step in description.steps
            for result in step.results
        ]
        if rows:
            click.echo(format_table(["Step", "Metric", "Value"], rows, alignments=["r", "l", "r"]))
        else:
            click.echo("  (no measured steps)")
        click.echo()


# ---------------------------------------------------------------------------
# export
# ---------------------------------------------------------------------------


@main.command()
@click.argument("compact_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "markdown"]),
    default="csv",
    show_default=True,
)
@click.option("-o", "--output", type=click.Path(path_type=Path), default=None)
def export(compact_file: Path, fmt: str, output: Path | None) -> None:
    """Export a compact results file (.result.bin) to CSV or Markdown."""
    from buildbench.compact import export_csv, export_markdown, load_compact_results

    records = load_compact_results(compact_file)
    text = export_csv(records) if fmt == "csv" else export_markdown(records)

    if output is not None:
        output.write_text(text)
        click.echo(f"Exported {len(records)} record(s) to {output}")
    else:
        click.echo(text, nl=False)
