from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from ..config.settings import ScannerSettings
from ..scanner.errors import ScanError
from ..scanner.models import ScanReport, ScanResult
from .archive_utils import read_download_origin
from .display import render_report
from .services.scan_service import ScanService


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Resolve mod archives against the registry and scan them for known cheat/malware signatures."
    )
    parser.add_argument(
        "target",
        type=Path,
        help="Path to a mod archive or a directory of archives.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit the scan report as JSON instead of a formatted table.",
    )
    parser.add_argument("--workers", type=int, help="Number of archives processed in parallel.")
    parser.add_argument("--timeout", type=float, help="Per-request registry timeout in seconds.")
    parser.add_argument("--registry-url", help="Base URL of the registry API.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log output (-v for info, -vv for debug).",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    settings = ScannerSettings.from_env()
    if args.workers is not None:
        settings.max_workers = max(1, args.workers)
    if args.timeout is not None:
        settings.request_timeout = args.timeout
    if args.registry_url:
        settings.registry_url = args.registry_url.rstrip("/")

    try:
        with ScanService(settings, provenance_lookup=read_download_origin) as service:
            report = service.run(args.target)
    except ScanError as exc:
        payload = {"error": exc.code, "message": str(exc)}
        print(json.dumps(payload), file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(serialize_report(report), indent=2))
    else:
        for line in render_report(report):
            print(line)
    return 0


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def serialize_report(report: ScanReport) -> Dict[str, Any]:
    classification = report.classification
    return {
        "summary": classification.counts,
        "classification": {
            "verified": [str(path) for path in classification.verified],
            "unknown": [str(path) for path in classification.unknown],
            "suspicious": [str(path) for path in classification.suspicious],
            "tampered": [str(path) for path in classification.tampered],
        },
        "archives": [_serialize_result(result) for result in report.results],
    }


def _serialize_result(result: ScanResult) -> Dict[str, Any]:
    record = result.record
    metadata = result.metadata
    match = result.remote_match
    payload: Dict[str, Any] = {
        "path": str(record.path),
        "size_bytes": record.size_bytes,
        "sha1": record.sha1,
        "sha256": record.sha256,
        "stage": result.stage.value,
        "metadata": {
            "loader": metadata.loader,
            "id": metadata.mod_id,
            "name": metadata.name,
            "version": metadata.version,
            "description": metadata.description,
            "authors": list(metadata.authors),
            "license": metadata.license,
            "entrypoints": list(metadata.entrypoints),
            "depends": dict(metadata.depends),
            "recommends": dict(metadata.recommends),
            "conflicts": dict(metadata.conflicts),
        },
        "remote_match": {
            "project_id": match.project_id,
            "slug": match.slug,
            "name": match.name,
            "expected_size": match.expected_size,
            "version": match.version,
            "url": match.url,
            "loader": match.loader,
            "match_type": match.match_tag,
            "is_latest_version": match.is_latest_version,
        },
        "integrity": None,
        "signatures": result.finding.sorted_tokens if result.finding else None,
        "provenance": {"label": result.provenance.label, "source_url": result.provenance.source_url},
    }
    if result.integrity is not None:
        payload["integrity"] = {
            "expected_size": result.integrity.expected_size,
            "actual_size": result.integrity.actual_size,
            "delta": result.integrity.delta,
            "status": result.integrity.status.value,
        }
    if result.error:
        payload["error"] = result.error
    return payload


if __name__ == "__main__":
    sys.exit(main())
