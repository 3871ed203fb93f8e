"""Tests for buildbench.cli — Click CLI."""

from __future__ import annotations

import logging
import shlex
import sys
import tempfile
import unittest
from pathlib import Path

from click.testing import CliRunner

from bench_test_helpers import make_build_result, write_project

from buildbench.cli import main
from buildbench.compact import (
    CompactRecord,
    CompactResultsWriter,
    CompactStep,
    load_compact_results,
)
from buildbench.dsl import Scenario, SimpleStep
from buildbench.results import ScenarioResult, StepResult, Success, describe_scenario_result

SUITE_YAML = """\
default_tasks: [assemble]
changeable_files:
  a: a.txt
scenarios:
  - name: edit
    repeat: 2
    steps:
      - change_files: {a: edit}
      - revert_last_step: {}
"""

# Stand-in build tool: records the content of a.txt at build time.
FAKE_BUILD = "import pathlib; p = pathlib.Path('a.txt'); print('building with', p.read_text())"


class CliTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        write_project(
            self.root,
            {
                "project/a.txt": "original",
                "suite/suite.yaml": SUITE_YAML,
                "suite/changes/a/edit.txt": "edited",
            },
        )
        self.project = self.root / "project"
        self.suite = self.root / "suite" / "suite.yaml"
        self.runner = CliRunner()

    def tearDown(self) -> None:
        logging.getLogger("buildbench").handlers.clear()
        self._tmp.cleanup()


class TestHelp(unittest.TestCase):
    def test_group_help(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        self.assertEqual(result.exit_code, 0)
        for command in ("run", "validate", "show", "export"):
            self.assertIn(command, result.output)

    def test_run_help(self) -> None:
        result = CliRunner().invoke(main, ["run", "--help"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("--project-dir", result.output)
        self.assertIn("--reporter", result.output)


class TestValidate(CliTestCase):
    def test_valid(self) -> None:
        result = self.runner.invoke(
            main, ["validate", str(self.suite), "--project-dir", str(self.project)]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn(
            "Suite is valid: 1 scenario(s), 2 step(s), 4 step run(s) in total.", result.output
        )

    def test_invalid(self) -> None:
        self.suite.write_text(SUITE_YAML.replace("{a: edit}", "{a: missing}"))
        result = self.runner.invoke(
            main, ["validate", str(self.suite), "--project-dir", str(self.project)]
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error: scenarios.edit.steps[1]:", result.output)

    def test_unloadable_suite(self) -> None:
        self.suite.write_text("just a string\n")
        result = self.runner.invoke(
            main, ["validate", str(self.suite), "--project-dir", str(self.project)]
        )
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Error:", result.output)


class TestRun(CliTestCase):
    def invoke_run(self, *extra: str):  # type: ignore[no-untyped-def]
        return self.runner.invoke(
            main,
            [
                "run",
                str(self.suite),
                "--project-dir",
                str(self.project),
                "--results-dir",
                str(self.root / "results"),
                "--build-command",
                shlex.join([sys.executable, "-c", FAKE_BUILD]),
                "--reporter",
                "console",
                "-q",
                *extra,
            ],
        )

    def test_run_with_console_reporter(self) -> None:
        result = self.invoke_run()
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Scenario 'edit'", result.output)
        self.assertIn("All runs:", result.output)
        self.assertEqual((self.project / "a.txt").read_text(), "original")

        (compact,) = (self.root / "results").glob("*.result.bin")
        records = load_compact_results(compact)
        self.assertEqual([(r.iteration, r.status) for r in records], [(1, "ok"), (2, "ok")])

        logs = sorted((self.root / "results").glob("*.log"))
        self.assertTrue(logs)
        first_step_log = [p for p in logs if p.name.endswith("-edit-#1-1.log")]
        self.assertEqual(len(first_step_log), 1)
        self.assertIn(b"building with edited", first_step_log[0].read_bytes())

    def test_run_with_file_reporter(self) -> None:
        result = self.invoke_run("--reporter", "teamcity-file")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("##teamcity[testStarted name='edit']", result.output)
        (results_json,) = (self.root / "results").glob("*.result.json")

        shown = self.runner.invoke(main, ["show", str(results_json)])
        self.assertEqual(shown.exit_code, 0, shown.output)
        self.assertIn("Scenario 'edit' #2", shown.output)
        self.assertIn("BUILD", shown.output)

    def test_invalid_suite_exits(self) -> None:
        self.suite.write_text(SUITE_YAML.replace("{a: edit}", "{a: missing}"))
        result = self.invoke_run()
        self.assertEqual(result.exit_code, 1)
        self.assertIn("Invalid", result.output)
        self.assertEqual((self.project / "a.txt").read_text(), "original")


class TestShow(CliTestCase):
    def test_show_records(self) -> None:
        description = describe_scenario_result(
            "edit", 1, ScenarioResult([StepResult(SimpleStep(), make_build_result(1234))])
        )
        path = self.root / "r.result.json"
        path.write_text("[\n" + description.to_json() + "\n]\n")
        result = self.runner.invoke(main, ["show", str(path)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Scenario 'edit' #1", result.output)
        self.assertIn("1234", result.output)

    def test_show_empty(self) -> None:
        path = self.root / "r.result.json"
        path.write_text("[\n\n]\n")
        result = self.runner.invoke(main, ["show", str(path)])
        self.assertEqual(result.exit_code, 0)
        self.assertIn("No results.", result.output)

    def test_show_bad_file(self) -> None:
        path = self.root / "r.result.json"
        path.write_text('{"not": "a list"}')
        result = self.runner.invoke(main, ["show", str(path)])
        self.assertEqual(result.exit_code, 1)


class TestExport(CliTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.compact = self.root / "r.result.bin"
        writer = CompactResultsWriter(self.compact)
        scenario = Scenario(name="edit")
        writer.start_benchmarks()
        writer.scenario_started(scenario)
        writer.scenario_finished(
            scenario, Success(ScenarioResult([StepResult(SimpleStep(), make_build_result(900))]))
        )
        writer.all_finished()

    def test_csv_to_stdout(self) -> None:
        result = self.runner.invoke(main, ["export", str(self.compact)])
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("scenario,iteration,status,step,metric,value", result.output)
        self.assertIn("edit,1,ok,1,BUILD,900", result.output)

    def test_markdown_to_file(self) -> None:
        out = self.root / "summary.md"
        result = self.runner.invoke(
            main, ["export", str(self.compact), "--format", "markdown", "-o", str(out)]
        )
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Exported 1 record(s)", result.output)
        self.assertIn("| 1 | BUILD | 900 | 900 | 1 |", out.read_text())

    def test_records_match_loader(self) -> None:
        self.assertEqual(
            load_compact_results(self.compact),
            [CompactRecord("edit", 1, steps=[CompactStep(1, {"BUILD": "900"})])],
        )


if __name__ == "__main__":
    unittest.main()
