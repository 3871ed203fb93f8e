"""buildbench — Benchmark incremental builds under reproducible file edits."""

__version__ = "0.1.0"
