"""Compact results file and its exports.

:class:`CompactResultsWriter` records every scenario iteration, failed
ones included, as one line of gzip-compressed JSON::

    {"scenario": "add function", "iteration": 1, "status": "ok", "reason": "",
     "steps": [{"step": 1, "metrics": {"BUILD": "5300", "BUILD.EXECUTION": "4100"}}]}

Time metrics are stored in milliseconds.  The file is readable while the
run is still in progress up to the last flushed record.

Exports:

- CSV: one row per scenario x iteration x step x metric (long format).
- Markdown: per scenario, step and metric, the min and max over the
  successful iterations.
"""

from __future__ import annotations

import csv
import gzip
import io
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

from buildbench.dsl import Scenario
from buildbench.formatting import format_markdown_table
from buildbench.listeners import BenchmarksProgressListener
from buildbench.results import (
    Failure,
    Outcome,
    ScenarioResult,
    format_metric_value,
    reportable_metrics,
)

log = logging.getLogger("buildbench")

STATUS_OK = "ok"
STATUS_FAILED = "failed"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class CompactStep:
    step: int
    metrics: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "metrics": dict(self.metrics)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompactStep:
        return cls(
            step=int(data["step"]),
            metrics={str(k): str(v) for k, v in data.get("metrics", {}).items()},
        )


@dataclass
class CompactRecord:
    """One scenario iteration."""

    scenario: str
    iteration: int  # 1-based
    status: str = STATUS_OK
    reason: str = ""
    steps: list[CompactStep] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "iteration": self.iteration,
            "status": self.status,
            "reason": self.reason,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CompactRecord:
        return cls(
            scenario=data["scenario"],
            iteration=int(data["iteration"]),
            status=data.get("status", STATUS_OK),
            reason=data.get("reason", ""),
            steps=[CompactStep.from_dict(s) for s in data.get("steps", [])],
        )

    def to_jsonl_line(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_jsonl_line(cls, line: str) -> CompactRecord:
        return cls.from_dict(json.loads(line))


def record_from_outcome(
    scenario_name: str,
    iteration: int,
    result: Outcome[ScenarioResult],
) -> CompactRecord:
    if isinstance(result, Failure):
        return CompactRecord(
            scenario=scenario_name,
            iteration=iteration,
            status=STATUS_FAILED,
            reason=result.reason,
        )
    steps = [
        CompactStep(
            step=step_number,
            metrics={
                name: format_metric_value(value)
                for name, value in reportable_metrics(step_result.build_result)
            },
        )
        for step_number, step_result in result.value.measured
    ]
    return CompactRecord(scenario=scenario_name, iteration=iteration, steps=steps)


# ---------------------------------------------------------------------------
# Writer / loader
# ---------------------------------------------------------------------------


class CompactResultsWriter(BenchmarksProgressListener):
    """Appends one record per scenario iteration to a gzip JSON-lines file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._output: IO[str] | None = None
        self._iterations: dict[str, int] = {}
        self.records_written = 0

    def start_benchmarks(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._output = gzip.open(self.path, "wt", encoding="utf-8")  # noqa: SIM115

    def scenario_started(self, scenario: Scenario) -> None:
        self._iterations[scenario.name] = self._iterations.get(scenario.name, 0) + 1

    def scenario_finished(self, scenario: Scenario, result: Outcome[ScenarioResult]) -> None:
        if self._output is None:
            return
        record = record_from_outcome(scenario.name, self._iterations.get(scenario.name, 1), result)
        self._output.write(record.to_jsonl_line() + "\n")
        self._output.flush()
        self.records_written += 1

    def all_finished(self) -> None:
        if self._output is not None:
            self._output.close()
            self._output = None
            log.info("Compact results written to %s (%d records)", self.path, self.records_written)


def load_compact_results(path: Path) -> list[CompactRecord]:
    """Load every record of a compact results file.

    Malformed lines are skipped with a warning; a run that was interrupted
    mid-write loses at most its last record.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"Compact results file not found: {path}")

    records: list[CompactRecord] = []
    with gzip.open(path, "rt", encoding="utf-8") as f:
        try:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(CompactRecord.from_jsonl_line(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                    log.warning("Skipping malformed record at %s:%d: %s", path, line_number, exc)
        except EOFError:
            log.warning("Compact results file %s is truncated", path)
    return records


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


def export_csv(records: list[CompactRecord]) -> str:
    """Export records as CSV (long format).

    Columns:
        scenario, iteration, status, step, metric, value
    Failed iterations get one row with empty step/metric/value columns.
    """
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["scenario", "iteration", "status", "step", "metric", "value"])

    for r in records:
        if not r.steps:
            writer.writerow([r.scenario, r.iteration, r.status, "", "", ""])
            continue
        for step in r.steps:
            for metric, value in step.metrics.items():
                writer.writerow([r.scenario, r.iteration, r.status, step.step, metric, value])

    return output.getvalue()


def _numeric(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def export_markdown(records: list[CompactRecord]) -> str:
    """Export a min/max summary table per scenario as Markdown."""
    lines: list[str] = ["# Build benchmark results", ""]
    if not records:
        lines.append("No results.")
        return "\n".join(lines) + "\n"

    scenarios: dict[str, list[CompactRecord]] = {}
    for r in records:
        scenarios.setdefault(r.scenario, []).append(r)

    for name, runs in scenarios.items():
        ok_runs = [r for r in runs if r.ok]
        lines.append(f"## {name}")
        lines.append("")
        lines.append(f"Iterations: {len(runs)} ({len(runs) - len(ok_runs)} failed)")
        lines.append("")

        ranges: dict[tuple[int, str], list[float]] = {}
        for r in ok_runs:
            for step in r.steps:
                for metric, value in step.metrics.items():
                    number = _numeric(value)
                    if number is not None:
                        ranges.setdefault((step.step, metric), []).append(number)

        if ranges:
            rows = [
                [str(step), metric, f"{min(values):g}", f"{max(values):g}", str(len(values))]
                for (step, metric), values in ranges.items()
            ]
            lines.append(format_markdown_table(["Step", "Metric", "Min", "Max", "Runs"], rows))
        else:
            lines.append("No successful measurements.")

        failures = [r for r in runs if not r.ok]
        if failures:
            lines.append("")
            for r in failures:
                lines.append(f"- iteration {r.iteration} failed: {r.reason}")
        lines.append("")

    return "\n".join(lines)
