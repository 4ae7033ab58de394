"""Tests for report formatting helpers (display.py)."""

from __future__ import annotations

from pathlib import Path

from modaudit.cli.display import describe_integrity, format_bytes, format_rows, render_report
from modaudit.scanner.integrity import audit_integrity
from modaudit.scanner.models import (
    ArchiveRecord,
    MatchType,
    RemoteMatch,
    ScanReport,
    ScanResult,
    SignatureFinding,
)


def _result(name: str, size: int, match: RemoteMatch, tokens=()) -> ScanResult:
    path = Path("/mods") / name
    result = ScanResult(record=ArchiveRecord(path=path, size_bytes=size, sha1="a", sha256="b"), remote_match=match)
    result.integrity = audit_integrity(size, match.expected_size)
    if tokens:
        result.finding = SignatureFinding(archive=path, tokens=frozenset(tokens))
    return result


def test_format_bytes_units():
    """Sizes should use binary units."""
    assert format_bytes(512) == "512.00 B"
    assert format_bytes(2048) == "2.00 KB"
    assert format_bytes(5 * 1024 * 1024) == "5.00 MB"


def test_format_rows_aligns_columns():
    """Columns should be padded to the widest cell."""
    table = format_rows(("A", "LONGER"), [("value", "x"), ("v", "y")])
    lines = table.splitlines()

    assert lines[0] == "A      LONGER"
    assert set(lines[1]) == {"-"}
    assert lines[2] == "value  x"


def test_describe_integrity_variants():
    """Integrity wording should cover exact, drifted and unknown sizes."""
    exact = _result("a.jar", 100, RemoteMatch(name="A", expected_size=100, match_type=MatchType.EXACT_HASH))
    drift = _result("b.jar", 3148, RemoteMatch(name="B", expected_size=1100, match_type=MatchType.EXACT_HASH))
    unknown = _result("c.jar", 10, RemoteMatch.no_match())

    assert describe_integrity(exact) == "Verified"
    assert describe_integrity(drift) == "Tampered (+2048 B)"
    assert describe_integrity(unknown) == "Verified (size unknown)"


def test_render_report_lists_archives_and_counts():
    """The report should list every archive and the bucket counts."""
    report = ScanReport()
    for result in (
        _result(
            "examplemod.jar",
            2048,
            RemoteMatch(
                name="Example Mod",
                version="1.2.0",
                expected_size=2048,
                loader="fabric",
                match_type=MatchType.LATEST_VERSION,
            ),
        ),
        _result("evil.jar", 900, RemoteMatch.no_match(), tokens={"KillAura", "AutoTotem"}),
    ):
        report.results.append(result)
        report.classification.add(result)

    lines = render_report(report)
    table = "\n".join(lines)

    assert lines[0].startswith("ARCHIVE")
    assert "Example Mod 1.2.0" in table
    assert "LatestVersion(fabric)" in table
    assert "AutoTotem, KillAura" in table
    assert lines[-1] == "Verified: 1  Unknown: 1  Suspicious: 1  Tampered: 0"
