"""Tests for buildbench.formatting — shared text formatting helpers."""

from __future__ import annotations

import unittest

from buildbench.formatting import (
    format_duration,
    format_markdown_table,
    format_ms,
    format_pct,
    format_table,
)
from buildbench.metrics import TimeInterval


class TestFormatDuration(unittest.TestCase):
    def test_seconds(self) -> None:
        self.assertEqual(format_duration(8.0), "8s")

    def test_minutes(self) -> None:
        self.assertEqual(format_duration(83.0), "1m 23s")

    def test_hours(self) -> None:
        self.assertEqual(format_duration(4354.0), "1h 12m 34s")

    def test_just_under_minute(self) -> None:
        self.assertEqual(format_duration(59.9), "59s")


class TestMetricValues(unittest.TestCase):
    def test_format_ms(self) -> None:
        self.assertEqual(format_ms(TimeInterval.ms(1500)), "1500 ms")
        self.assertEqual(format_ms(7), "7 ms")

    def test_format_pct(self) -> None:
        self.assertEqual(format_pct(12.345), "12.3")
        self.assertEqual(format_pct(100), "100.0")
        self.assertEqual(format_pct(0.0), "0.0")


class TestFormatTable(unittest.TestCase):
    def test_alignment(self) -> None:
        text = format_table(
            ["Name", "Value"], [["alpha", "100"], ["beta", "200"]], alignments=["l", "r"]
        )
        self.assertEqual(
            text.splitlines(),
            [
                "  Name   Value",
                "  -----  -----",
                "  alpha    100",
                "  beta     200",
            ],
        )

    def test_short_rows_padded(self) -> None:
        text = format_table(["A", "B"], [["x"]], indent=0)
        self.assertEqual(text.splitlines()[-1], "x")

    def test_empty_headers(self) -> None:
        self.assertEqual(format_table([], [["x"]]), "")


class TestFormatMarkdownTable(unittest.TestCase):
    def test_basic(self) -> None:
        text = format_markdown_table(["Metric", "Value"], [["BUILD", "10"], ["a|b", "2"]])
        self.assertEqual(
            text.splitlines(),
            [
                "| Metric | Value |",
                "|---|---|",
                "| BUILD | 10 |",
                "| a\\|b | 2 |",
            ],
        )


if __name__ == "__main__":
    unittest.main()
