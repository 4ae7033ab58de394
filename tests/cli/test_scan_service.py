"""Tests for the scan pipeline (scan_service.py).

These tests verify:
- the end-to-end classification of resolved, drifted and suspicious archives
- deep scans only run for unresolved archives
- failures in one archive never abort the run
- results keep input order under parallel workers
"""

from __future__ import annotations

from pathlib import Path

import pytest

import modaudit.cli.services.scan_service as scan_service_module
from modaudit.cli.archive_utils import classify_origin
from modaudit.cli.services.registry_client import RegistryProject
from modaudit.cli.services.scan_service import ScanService
from modaudit.config.settings import ScannerSettings
from modaudit.scanner.errors import CorpusCompileError, InputPathError
from modaudit.scanner.models import ArchiveStage, IntegrityStatus, MatchType, Provenance
from modaudit.scanner.signatures import SignatureScanner, default_corpus

EXAMPLE_PROJECT = RegistryProject(id="proj-1", slug="examplemod", title="Example Mod")


def _service(registry, **kwargs) -> ScanService:
    settings = kwargs.pop("settings", None) or ScannerSettings(max_workers=4)
    return ScanService(
        settings,
        registry=registry,
        scanner=SignatureScanner(default_corpus(), prefer_strings_utility=False),
        **kwargs,
    )


def _hash_registry(fake_registry_factory, version_factory, archive: Path, sha1: str, expected_size: int):
    version = version_factory(
        "ver-2", "proj-1", "1.2.0", ["fabric"], [(archive.name, expected_size)], sha1=sha1
    )
    return fake_registry_factory(
        by_hash={sha1: version},
        projects={"proj-1": EXAMPLE_PROJECT},
        versions={"proj-1": [version]},
    )


def test_hash_match_with_exact_size_is_verified(
    make_jar, fabric_manifest, fake_registry_factory, version_factory, sha1_for
):
    """An exact hash and size should be verified only."""
    archive = make_jar("examplemod-1.2.0.jar", {"fabric.mod.json": fabric_manifest})
    registry = _hash_registry(
        fake_registry_factory, version_factory, archive, sha1_for(archive), archive.stat().st_size
    )

    report = _service(registry).scan_archives([archive])

    result = report.results[0]
    assert result.stage is ArchiveStage.CLASSIFIED
    assert result.metadata.mod_id == "examplemod"
    assert result.remote_match.match_type is MatchType.EXACT_HASH
    assert result.integrity.status is IntegrityStatus.VERIFIED
    assert result.finding is None
    assert report.classification.verified == [archive]
    assert report.classification.tampered == []
    assert report.classification.counts == {"verified": 1, "unknown": 0, "suspicious": 0, "tampered": 0}


def test_oversized_archive_is_verified_and_tampered(
    make_jar, fabric_manifest, fake_registry_factory, version_factory, sha1_for
):
    """A grown archive should be both verified and tampered."""
    archive = make_jar("examplemod-1.2.0.jar", {"fabric.mod.json": fabric_manifest})
    actual = archive.stat().st_size
    registry = _hash_registry(fake_registry_factory, version_factory, archive, sha1_for(archive), actual - 2048)

    report = _service(registry).scan_archives([archive])

    verdict = report.results[0].integrity
    assert verdict.delta == 2048
    assert verdict.status is IntegrityStatus.TAMPERED
    assert report.classification.verified == [archive]
    assert report.classification.tampered == [archive]


def test_small_drift_is_modified_not_tampered(
    make_jar, fabric_manifest, fake_registry_factory, version_factory, sha1_for
):
    """Small drift should not land in the tampered bucket."""
    archive = make_jar("examplemod-1.2.0.jar", {"fabric.mod.json": fabric_manifest})
    actual = archive.stat().st_size
    registry = _hash_registry(fake_registry_factory, version_factory, archive, sha1_for(archive), actual + 100)

    report = _service(registry).scan_archives([archive])

    assert report.results[0].integrity.status is IntegrityStatus.MODIFIED
    assert report.classification.tampered == []


def test_unresolved_cheat_archive_is_unknown_and_suspicious(make_jar, fake_registry_factory):
    """An unknown cheat jar should be unknown and suspicious."""
    archive = make_jar(
        "totally-legit.jar",
        {
            "com/evil/AutoTotem.class": b"\xca\xfe\xba\xbe\x00\x00\x00\x34",
            "com/evil/Payload.class": b"\xca\xfe\xba\xbe" + b"Lmeteordevelopment/meteorclient/MeteorClient;" * 4,
        },
    )

    report = _service(fake_registry_factory()).scan_archives([archive])

    result = report.results[0]
    assert result.stage is ArchiveStage.CLASSIFIED
    assert result.remote_match.match_type is MatchType.NO_MATCH
    assert result.integrity.status is IntegrityStatus.VERIFIED
    assert {"AutoTotem", "MeteorClient"} <= set(result.finding.tokens)
    assert report.classification.unknown == [archive]
    assert report.classification.suspicious == [archive]
    assert report.classification.verified == []


def test_deep_scan_skipped_for_registry_match(
    make_jar, fabric_manifest, fake_registry_factory, version_factory, monkeypatch
):
    """Registry matches should only get the shallow pass."""
    archive = make_jar("examplemod.jar", {"fabric.mod.json": fabric_manifest})
    version = version_factory("ver-2", "proj-1", "1.2.0", ["fabric"])
    registry = fake_registry_factory(projects={"examplemod": EXAMPLE_PROJECT}, versions={"proj-1": [version]})
    service = _service(registry)
    deep_calls = []
    monkeypatch.setattr(service.scanner, "deep_scan", lambda record, data: deep_calls.append(record) or set())

    report = service.scan_archives([archive])

    assert report.results[0].remote_match.match_tag == "LatestVersion(fabric)"
    assert deep_calls == []


def test_deep_scan_runs_for_unresolved_archive(make_jar, fake_registry_factory, monkeypatch):
    """Unresolved archives should get the deep pass."""
    archive = make_jar("unknown.jar", {"a.txt": "hello"})
    service = _service(fake_registry_factory())
    deep_calls = []
    monkeypatch.setattr(service.scanner, "deep_scan", lambda record, data: deep_calls.append(record.path) or set())

    service.scan_archives([archive])

    assert deep_calls == [archive]


def test_unreadable_archive_does_not_abort_the_run(make_jar, fake_registry_factory, tmp_path):
    """An unreadable path should not stop other archives."""
    good = make_jar("good.jar", {"a.txt": "hello"})
    broken = tmp_path / "broken.jar"
    broken.mkdir()

    report = _service(fake_registry_factory()).scan_archives([broken, good])

    failed, ok = report.results
    assert failed.error and "Unable to read" in failed.error
    assert failed.stage is ArchiveStage.CLASSIFIED
    assert not failed.is_resolved
    assert ok.error is None
    assert report.classification.unknown == [broken, good]


def test_results_keep_input_order_with_parallel_workers(make_jar, fake_registry_factory):
    """Results should follow input order, not completion order."""
    archives = [make_jar(f"mod-{index}.jar", {f"entry{index}.txt": "x" * index}) for index in range(8)]
    ordered = list(reversed(archives))

    report = _service(fake_registry_factory()).scan_archives(ordered)

    assert [result.record.path for result in report.results] == ordered
    assert report.classification.unknown == ordered


def test_repeated_runs_are_identical(make_jar, fake_registry_factory):
    """The same inputs should give the same report."""
    archives = [
        make_jar("a.jar", {"com/x/KillAura.class": b"\xca\xfe"}),
        make_jar("b.jar", {"readme.txt": "nothing to see"}),
    ]
    service = _service(fake_registry_factory())

    def snapshot(report):
        return [(r.record.sha256, r.remote_match, r.finding, r.integrity) for r in report.results]

    assert snapshot(service.scan_archives(archives)) == snapshot(service.scan_archives(archives))


def test_corpus_compile_failure_is_fatal(fake_registry_factory, monkeypatch):
    """A broken corpus should fail before any archive is read."""
    def broken_corpus():
        raise CorpusCompileError("Signature corpus failed to compile: bad pattern")

    monkeypatch.setattr(scan_service_module, "default_corpus", broken_corpus)

    with pytest.raises(CorpusCompileError):
        ScanService(ScannerSettings(), registry=fake_registry_factory())


def test_provenance_is_passed_through(make_jar, fake_registry_factory):
    """Provenance should be carried into the result untouched."""
    archive = make_jar("mod.jar", {"a.txt": "x"})
    service = _service(
        fake_registry_factory(),
        provenance_lookup=lambda path: classify_origin("https://cdn.modrinth.com/data/abc/mod.jar"),
    )

    result = service.scan_archives([archive]).results[0]

    assert result.provenance.label == "Modrinth"


def test_provenance_lookup_failure_defaults_to_unknown(make_jar, fake_registry_factory):
    """A failing provenance lookup should fall back to Unknown."""
    archive = make_jar("mod.jar", {"a.txt": "x"})

    def failing_lookup(path):
        raise PermissionError("no xattrs")

    result = _service(fake_registry_factory(), provenance_lookup=failing_lookup).scan_archives([archive]).results[0]

    assert result.provenance == Provenance()


def test_run_scans_directory(make_jar, fake_registry_factory, tmp_path):
    """run() should scan every archive in a directory."""
    make_jar("b.jar", {"a.txt": "x"})
    make_jar("a.jar.disabled", {"a.txt": "y"})
    (tmp_path / "notes.txt").write_text("ignore me")

    report = _service(fake_registry_factory()).run(tmp_path)

    assert [result.record.filename for result in report.results] == ["a.jar.disabled", "b.jar"]


def test_run_missing_target_raises(fake_registry_factory, tmp_path):
    """run() should raise for a missing target."""
    with pytest.raises(InputPathError):
        _service(fake_registry_factory()).run(tmp_path / "missing")


def test_empty_directory_gives_empty_report(fake_registry_factory, tmp_path):
    """An empty directory should give an empty report."""
    report = _service(fake_registry_factory()).run(tmp_path)

    assert report.results == []
    assert report.classification.counts["unknown"] == 0


def test_corrupt_entry_does_not_abort_the_run(make_jar, fabric_manifest, corrupt_entry, fake_registry_factory):
    """A jar with corrupt entries should not stop other archives."""
    good = make_jar("good.jar", {"a.txt": "hello"})
    bad = make_jar(
        "bad.jar",
        {"fabric.mod.json": fabric_manifest, "com/evil/AutoTotem.class": b"\xca\xfe\xba\xbe" * 16},
    )
    corrupt_entry(bad, "fabric.mod.json")
    corrupt_entry(bad, "com/evil/AutoTotem.class")

    report = _service(fake_registry_factory()).scan_archives([bad, good])

    broken, ok = report.results
    assert [result.record.path for result in report.results] == [bad, good]
    assert broken.stage is ArchiveStage.CLASSIFIED
    assert broken.metadata.mod_id == ""
    assert "AutoTotem" in broken.finding.tokens
    assert ok.stage is ArchiveStage.CLASSIFIED
    assert ok.error is None


def test_unexpected_failure_is_isolated_to_its_archive(make_jar, fake_registry_factory, monkeypatch):
    """Any per-archive failure should become an error result."""
    good = make_jar("good.jar", {"a.txt": "hello"})
    bad = make_jar("bad.jar", {"a.txt": "goodbye"})
    bad_bytes = bad.read_bytes()
    service = _service(fake_registry_factory())
    extract = service.extractor.extract

    def failing_extract(data):
        if data == bad_bytes:
            raise ValueError("unexpected manifest layout")
        return extract(data)

    monkeypatch.setattr(service.extractor, "extract", failing_extract)

    report = service.scan_archives([bad, good])

    broken, ok = report.results
    assert broken.error == "unexpected manifest layout"
    assert broken.record.sha1
    assert broken.stage is ArchiveStage.CLASSIFIED
    assert ok.error is None
    assert report.classification.unknown == [bad, good]


def test_strings_timeout_comes_from_its_own_setting(fake_registry_factory):
    """The strings timeout should not reuse the HTTP timeout."""
    settings = ScannerSettings(request_timeout=2.0, strings_timeout=30.0)

    service = ScanService(settings, registry=fake_registry_factory())

    assert service.scanner.strings_timeout == 30.0
