"""Tests for buildbench.build_metrics — metrics file decoding."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from buildbench.build_metrics import (
    BUILD_SRC_COMPILE_TASK,
    INSTRUMENTATION_METRIC,
    PERFORMANCE_METRICS_KEY,
    BuildMetricsData,
    TaskData,
    apply_build_metrics,
    load_build_metrics,
    short_task_type_name,
    task_name_from_path,
)
from buildbench.metrics import MetricsContainer, TimeInterval


def _decode(raw: dict) -> tuple[MetricsContainer[TimeInterval], MetricsContainer[int]]:
    times: MetricsContainer[TimeInterval] = MetricsContainer()
    perf: MetricsContainer[int] = MetricsContainer()
    apply_build_metrics(times, perf, BuildMetricsData.from_dict(raw))
    return times, perf


class TestNames(unittest.TestCase):
    def test_short_task_type_name(self) -> None:
        self.assertEqual(
            short_task_type_name("org.gradle.api.tasks.compile.JavaCompile_Decorated"),
            "JavaCompile",
        )
        self.assertEqual(short_task_type_name("Plain"), "Plain")

    def test_task_name_from_path(self) -> None:
        self.assertEqual(task_name_from_path(":core:compileKotlin"), "compileKotlin")

    def test_group_name_unknown_type(self) -> None:
        self.assertEqual(TaskData(path=":a:custom").group_name, "custom")


class TestLoad(unittest.TestCase):
    def test_missing_or_empty_file_is_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metrics.json"
            self.assertIsNone(load_build_metrics(path))
            path.write_text("")
            self.assertIsNone(load_build_metrics(path))

    def test_invalid_json_raises_value_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metrics.json"
            path.write_text("[1, 2")
            with self.assertRaises(ValueError):
                load_build_metrics(path)

    def test_non_object_raises_value_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metrics.json"
            path.write_text(json.dumps([1, 2]))
            with self.assertRaises(ValueError):
                load_build_metrics(path)

    def test_task_without_path_raises_value_error(self) -> None:
        with self.assertRaises(ValueError):
            BuildMetricsData.from_dict({"tasks": [{"type": "JavaCompile"}]})


class TestPhases(unittest.TestCase):
    def test_phases_and_up_to_date_checks(self) -> None:
        times, _ = _decode(
            {
                "phases": {
                    "BUILD": 5000,
                    "CONFIGURATION": 1000,
                    "EXECUTION": 4000,
                    "UP_TO_DATE_CHECKS_BEFORE_TASK": 30,
                    "UP_TO_DATE_CHECKS_AFTER_TASK": 20,
                }
            }
        )
        flat = dict(times.flatten())
        self.assertEqual(flat["BUILD"], TimeInterval.ms(5000))
        self.assertEqual(flat["BUILD.CONFIGURATION"], TimeInterval.ms(1000))
        self.assertEqual(flat["BUILD.EXECUTION.UP_TO_DATE_CHECKS"], TimeInterval.ms(50))
        self.assertEqual(
            flat["BUILD.EXECUTION.UP_TO_DATE_CHECKS.UP_TO_DATE_CHECKS_BEFORE_TASK"],
            TimeInterval.ms(30),
        )


class TestTaskGrouping(unittest.TestCase):
    RAW = {
        "phases": {"BUILD": 10000, "EXECUTION": 9000},
        "parent_metric": {"COMPILE_KOTLIN": "GRADLE_TASK"},
        "instrumentation_ms": 40,
        "tasks": [
            {
                "path": ":core:compileKotlin",
                "type": "org.jetbrains.kotlin.gradle.tasks.KotlinCompile_Decorated",
                "time_ms": 2000,
                "build_times_ms": {"GRADLE_TASK": 2000, "COMPILE_KOTLIN": 1500},
                "performance_metrics": {"SOURCE_LINES_NUMBER": 500},
            },
            {
                "path": ":app:compileKotlin",
                "type": "org.jetbrains.kotlin.gradle.tasks.KotlinCompile_Decorated",
                "time_ms": 1000,
                "build_times_ms": {"GRADLE_TASK": 1000, "COMPILE_KOTLIN": 700},
                "performance_metrics": {"SOURCE_LINES_NUMBER": 300},
            },
            {
                "path": ":app:compileJava",
                "type": "org.gradle.api.tasks.compile.JavaCompile_Decorated",
                "time_ms": 800,
                "build_times_ms": {"GRADLE_TASK": 800},
            },
            {
                "path": ":app:jar",
                "type": "org.gradle.jvm.tasks.Jar_Decorated",
                "time_ms": 100,
                "build_times_ms": {"GRADLE_TASK": 100},
            },
            {
                "path": ":app:processResources",
                "type": "org.gradle.language.jvm.tasks.ProcessResources_Decorated",
                "did_work": False,
                "time_ms": 5,
                "build_times_ms": {"GRADLE_TASK": 5},
            },
            {
                "path": BUILD_SRC_COMPILE_TASK,
                "type": "org.jetbrains.kotlin.gradle.tasks.KotlinCompile_Decorated",
                "did_work": False,
                "time_ms": 300,
            },
        ],
    }

    def setUp(self) -> None:
        self.times, self.perf = _decode(self.RAW)
        self.flat_times = dict(self.times.flatten())
        self.flat_perf = dict(self.perf.flatten())

    def test_compile_types_summed_under_compilation_tasks(self) -> None:
        prefix = "BUILD.EXECUTION.COMPILATION_TASKS"
        self.assertEqual(self.flat_times[prefix], TimeInterval.ms(2000 + 1000 + 800 + 300))
        self.assertEqual(self.flat_times[f"{prefix}.KotlinCompile"], TimeInterval.ms(3000))
        self.assertEqual(
            self.flat_times[f"{prefix}.KotlinCompile.COMPILE_KOTLIN"], TimeInterval.ms(2200)
        )
        self.assertEqual(self.flat_times[f"{prefix}.JavaCompile"], TimeInterval.ms(800))
        self.assertEqual(
            self.flat_times[f"{prefix}.JavaCompile.{INSTRUMENTATION_METRIC}"], TimeInterval.ms(40)
        )
        self.assertEqual(self.flat_times[f"{prefix}.BUILD_SRC_COMPILE"], TimeInterval.ms(300))

    def test_other_types_under_non_compilation_tasks(self) -> None:
        prefix = "BUILD.EXECUTION.NON_COMPILATION_TASKS"
        self.assertEqual(self.flat_times[prefix], TimeInterval.ms(100))
        self.assertEqual(self.flat_times[f"{prefix}.Jar"], TimeInterval.ms(100))

    def test_tasks_that_did_no_work_are_skipped(self) -> None:
        self.assertFalse(any("ProcessResources." in name for name in self.flat_times))

    def test_performance_metrics_per_type(self) -> None:
        key = f"{PERFORMANCE_METRICS_KEY}.KotlinCompile.SOURCE_LINES_NUMBER"
        self.assertEqual(self.flat_perf[key], 800)
        self.assertNotIn(f"{PERFORMANCE_METRICS_KEY}.Jar", self.flat_perf)


if __name__ == "__main__":
    unittest.main()
