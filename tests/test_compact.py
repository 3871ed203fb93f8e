"""Tests for buildbench.compact — compact results file and exports."""

from __future__ import annotations

import csv
import gzip
import io
import tempfile
import unittest
from pathlib import Path

from bench_test_helpers import make_build_result

from buildbench.compact import (
    STATUS_FAILED,
    CompactRecord,
    CompactResultsWriter,
    CompactStep,
    export_csv,
    export_markdown,
    load_compact_results,
    record_from_outcome,
)
from buildbench.dsl import Scenario, SimpleStep
from buildbench.results import Failure, ScenarioResult, StepResult, Success


def _scenario_result(build_ms: int, **kwargs: int) -> Success[ScenarioResult]:
    return Success(
        ScenarioResult(
            [
                StepResult(SimpleStep(is_measured=False), make_build_result(50)),
                StepResult(SimpleStep(), make_build_result(build_ms, **kwargs)),
            ]
        )
    )


class TestRecordFromOutcome(unittest.TestCase):
    def test_success_keeps_measured_steps(self) -> None:
        record = record_from_outcome("s", 2, _scenario_result(1000, configuration_ms=300))
        self.assertTrue(record.ok)
        self.assertEqual(record.iteration, 2)
        self.assertEqual(
            record.steps, [CompactStep(2, {"BUILD": "1000", "BUILD.CONFIGURATION": "300"})]
        )

    def test_failure(self) -> None:
        record = record_from_outcome("s", 1, Failure("Step 1 failed: boom"))
        self.assertEqual(record.status, STATUS_FAILED)
        self.assertEqual(record.reason, "Step 1 failed: boom")
        self.assertEqual(record.steps, [])


class TestWriterAndLoader(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "results" / "run.result.bin"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_writes_every_iteration(self) -> None:
        first = Scenario(name="first")
        second = Scenario(name="second")
        writer = CompactResultsWriter(self.path)
        writer.start_benchmarks()
        for scenario, outcome in (
            (first, _scenario_result(1000)),
            (first, Failure("nope")),
            (second, _scenario_result(2000)),
        ):
            writer.scenario_started(scenario)
            writer.scenario_finished(scenario, outcome)
        writer.all_finished()

        self.assertEqual(writer.records_written, 3)
        records = load_compact_results(self.path)
        self.assertEqual(
            [(r.scenario, r.iteration, r.status) for r in records],
            [("first", 1, "ok"), ("first", 2, "failed"), ("second", 1, "ok")],
        )
        self.assertEqual(records[2].steps[0].metrics, {"BUILD": "2000"})

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_compact_results(self.path)

    def test_malformed_lines_skipped(self) -> None:
        good = CompactRecord("s", 1).to_jsonl_line()
        self.path.parent.mkdir(parents=True)
        with gzip.open(self.path, "wt", encoding="utf-8") as f:
            f.write(good + "\n\nnot json\n" + '{"iteration": 1}\n' + good + "\n")
        with self.assertLogs("buildbench", level="WARNING") as logs:
            records = load_compact_results(self.path)
        self.assertEqual(len(records), 2)
        self.assertEqual(len(logs.records), 2)

    def test_truncated_file_warns(self) -> None:
        self.path.parent.mkdir(parents=True)
        data = gzip.compress(
            "\n".join(CompactRecord("s", i).to_jsonl_line() for i in range(1, 50)).encode()
        )
        self.path.write_bytes(data[:-12])
        with self.assertLogs("buildbench", level="WARNING") as logs:
            load_compact_results(self.path)
        self.assertIn("truncated", logs.output[-1])


class TestExports(unittest.TestCase):
    RECORDS = [
        CompactRecord("s", 1, steps=[CompactStep(1, {"BUILD": "1000", "LINES": "10"})]),
        CompactRecord("s", 2, steps=[CompactStep(1, {"BUILD": "1500", "LINES": "10"})]),
        CompactRecord("s", 3, status=STATUS_FAILED, reason="Step 1 failed: boom"),
        CompactRecord("t", 1, status=STATUS_FAILED, reason="timeout"),
    ]

    def test_csv(self) -> None:
        rows = list(csv.reader(io.StringIO(export_csv(self.RECORDS))))
        self.assertEqual(rows[0], ["scenario", "iteration", "status", "step", "metric", "value"])
        self.assertEqual(rows[1], ["s", "1", "ok", "1", "BUILD", "1000"])
        self.assertEqual(len(rows), 1 + 4 + 2)
        self.assertEqual(rows[-1], ["t", "1", "failed", "", "", ""])

    def test_markdown(self) -> None:
        text = export_markdown(self.RECORDS)
        self.assertTrue(text.startswith("# Build benchmark results\n"))
        self.assertIn("## s", text)
        self.assertIn("Iterations: 3 (1 failed)", text)
        self.assertIn("| Step | Metric | Min | Max | Runs |", text)
        self.assertIn("| 1 | BUILD | 1000 | 1500 | 2 |", text)
        self.assertIn("- iteration 3 failed: Step 1 failed: boom", text)
        self.assertIn("## t", text)
        self.assertIn("No successful measurements.", text)

    def test_markdown_empty(self) -> None:
        self.assertIn("No results.", export_markdown([]))


if __name__ == "__main__":
    unittest.main()
