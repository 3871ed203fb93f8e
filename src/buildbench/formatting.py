"""Shared text formatting helpers for buildbench."""

from __future__ import annotations

from buildbench.metrics import TimeInterval


def format_ms(value: TimeInterval | int) -> str:
    """``TimeInterval.ms(1500)`` → ``'1500 ms'``."""
    ms = value.as_ms if isinstance(value, TimeInterval) else value
    return f"{ms} ms"


def format_pct(value: float) -> str:
    """One decimal, no sign: ``12.345`` → ``'12.3'``."""
    return f"{value:.1f}"


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration.

    Examples: ``'8s'``, ``'1m 23s'``, ``'1h 12m 34s'``. Always whole seconds
    (truncated, not rounded).
    """
    total = int(seconds)
    if total >= 3600:
        h = total // 3600
        m = (total % 3600) // 60
        s = total % 60
        return f"{h}h {m:2d}m {s:2d}s"
    if total >= 60:
        m = total // 60
        s = total % 60
        return f"{m}m {s:2d}s"
    return f"{total}s"


def format_table(
    headers: list[str],
    rows: list[list[str]],
    *,
    alignments: list[str] | None = None,
    indent: int = 2,
) -> str:
    """Format rows as an aligned text table.

    Column widths come from the content.  Columns marked ``'r'`` in
    *alignments* are right-aligned; short rows are padded with blanks.
    """
    if not headers:
        return ""

    ncols = len(headers)
    aligns = list(alignments or [])
    aligns += ["l"] * (ncols - len(aligns))

    cells = [(list(row) + [""] * ncols)[:ncols] for row in rows]
    widths = [max([len(headers[i])] + [len(row[i]) for row in cells]) for i in range(ncols)]

    def line(row: list[str]) -> str:
        parts = [
            row[i].rjust(widths[i]) if aligns[i] == "r" else row[i].ljust(widths[i])
            for i in range(ncols)
        ]
        return " " * indent + "  ".join(parts).rstrip()

    out = [line(list(headers)), " " * indent + "  ".join("-" * w for w in widths)]
    out.extend(line(row) for row in cells)
    return "\n".join(out)


def format_markdown_table(headers: list[str], rows: list[list[str]]) -> str:
    """Format rows as a GitHub-flavoured markdown table."""

    def escape(cell: str) -> str:
        return cell.replace("|", "\\|")

    out = [
        "| " + " | ".join(escape(h) for h in headers) + " |",
        "|" + "|".join("---" for _ in headers) + "|",
    ]
    for row in rows:
        out.append("| " + " | ".join(escape(c) for c in row) + " |")
    return "\n".join(out)
