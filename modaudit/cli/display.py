from __future__ import annotations

from typing import Sequence

from ..scanner.models import ScanReport, ScanResult


def format_bytes(size: int) -> str:
    """Represent file sizes with a readable binary unit."""
    step = 1024.0
    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    value = float(size)
    for unit in units:
        if value < step or unit == units[-1]:
            return f"{value:.2f} {unit}"
        value /= step
    return f"{value:.2f} PB"


def format_rows(header: Sequence[str], rows: Sequence[Sequence[str]]) -> str:
    """Build an aligned two-space padded table for readability."""
    col_widths = [len(part) for part in header]
    for row in rows:
        for idx, part in enumerate(row):
            col_widths[idx] = max(col_widths[idx], len(part))

    def join(parts: Sequence[str]) -> str:
        return "  ".join(part.ljust(col_widths[idx]) for idx, part in enumerate(parts)).rstrip()

    line = join(header)
    return "\n".join([line, "-" * len(line), *(join(row) for row in rows)])


def describe_integrity(result: ScanResult) -> str:
    verdict = result.integrity
    if verdict is None:
        return "n/a"
    if verdict.expected_size == 0:
        return f"{verdict.status.value} (size unknown)"
    if verdict.delta == 0:
        return verdict.status.value
    return f"{verdict.status.value} ({verdict.delta:+d} B)"


def render_report(report: ScanReport) -> list[str]:
    rows = []
    for result in report.results:
        match = result.remote_match
        resolved = f"{match.name} {match.version}".strip() if match.matched else "-"
        findings = ", ".join(result.finding.sorted_tokens) if result.finding else ""
        if result.error:
            findings = f"unreadable: {result.error}"
        rows.append(
            (
                result.record.filename,
                format_bytes(result.record.size_bytes),
                resolved,
                match.match_tag,
                describe_integrity(result),
                findings,
            )
        )

    lines = [format_rows(("ARCHIVE", "SIZE", "RESOLVED AS", "MATCH", "INTEGRITY", "SIGNATURES"), rows)]
    counts = report.classification.counts
    lines.append("")
    lines.append(
        f"Verified: {counts['verified']}  Unknown: {counts['unknown']}  "
        f"Suspicious: {counts['suspicious']}  Tampered: {counts['tampered']}"
    )
    return lines
