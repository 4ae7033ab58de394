from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ...config.settings import ScannerSettings
from ...scanner.errors import ArchiveReadError
from ...scanner.integrity import audit_integrity
from ...scanner.metadata import ArchiveMetadataExtractor
from ...scanner.models import (
    ArchiveRecord,
    ArchiveStage,
    MatchType,
    Provenance,
    ScanReport,
    ScanResult,
)
from ...scanner.parser import load_archive
from ...scanner.signatures import SignatureCorpus, SignatureScanner, default_corpus
from ..archive_utils import discover_archives
from .identity_service import IdentityResolver, Registry, SecondaryDatabase
from .registry_client import RegistryClient
from .secondary_db_client import SecondaryDbClient

logger = logging.getLogger(__name__)

ProvenanceLookup = Callable[[Path], Provenance]


class ScanService:
    """Drive every archive through extract, resolve, audit, scan and classify.

    Archives are independent, so they are processed on a bounded thread
    pool. Results are joined in input order once all workers finish; the
    classification buckets are only written during that join.
    """

    def __init__(
        self,
        settings: Optional[ScannerSettings] = None,
        *,
        registry: Optional[Registry] = None,
        secondary_db: Optional[SecondaryDatabase] = None,
        corpus: Optional[SignatureCorpus] = None,
        extractor: Optional[ArchiveMetadataExtractor] = None,
        scanner: Optional[SignatureScanner] = None,
        provenance_lookup: Optional[ProvenanceLookup] = None,
    ) -> None:
        self.settings = settings or ScannerSettings()
        self._owned_clients: List[RegistryClient | SecondaryDbClient] = []

        if scanner is None:
            # Corpus compile errors are fatal and surface before any archive is touched.
            scanner = SignatureScanner(
                corpus or default_corpus(),
                max_entry_bytes=self.settings.max_entry_bytes,
                prefer_strings_utility=self.settings.prefer_strings_utility,
                strings_timeout=self.settings.strings_timeout,
            )
        self.scanner = scanner

        if registry is None:
            client = RegistryClient(
                self.settings.registry_url,
                timeout=self.settings.request_timeout,
                user_agent=self.settings.user_agent,
                search_limit=self.settings.search_limit,
            )
            self._owned_clients.append(client)
            registry = client
        if secondary_db is None and self.settings.secondary_db_url:
            secondary_client = SecondaryDbClient(
                self.settings.secondary_db_url,
                timeout=self.settings.request_timeout,
            )
            self._owned_clients.append(secondary_client)
            secondary_db = secondary_client

        self.resolver = IdentityResolver(registry, secondary_db)
        self.extractor = extractor or ArchiveMetadataExtractor()
        self.provenance_lookup = provenance_lookup

    def close(self) -> None:
        for client in self._owned_clients:
            client.close()
        self._owned_clients.clear()

    def __enter__(self) -> "ScanService":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def run(self, target: Path) -> ScanReport:
        """Scan a single archive or every archive in a directory.

        Raises:
            InputPathError: if the target cannot be read at all.
        """
        archives = discover_archives(target)
        logger.info("Scanning %d archive(s) from %s", len(archives), target)
        return self.scan_archives(archives)

    def scan_archives(self, paths: Sequence[Path]) -> ScanReport:
        if not paths:
            return ScanReport()
        workers = max(1, min(self.settings.max_workers, len(paths)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="modaudit") as pool:
            # map() yields in submission order regardless of completion order.
            results = list(pool.map(self.scan_archive, paths))

        report = ScanReport()
        for result in results:
            report.results.append(result)
            report.classification.add(result)
        return report

    def scan_archive(self, path: Path) -> ScanResult:
        provenance = self._lookup_provenance(path)
        try:
            record, data = load_archive(path)
        except ArchiveReadError as exc:
            logger.warning("Skipping %s: %s", path, exc)
            return _unreadable_result(
                ArchiveRecord(path=path, size_bytes=0, sha1="", sha256=""), provenance, str(exc)
            )

        try:
            return self._process(record, data, provenance)
        except Exception as exc:
            # Failures stay isolated to this archive.
            logger.exception("Scan of %s failed", record.filename)
            return _unreadable_result(record, provenance, str(exc))

    def _process(self, record: ArchiveRecord, data: bytes, provenance: Provenance) -> ScanResult:
        result = ScanResult(record=record, provenance=provenance)

        result.metadata = self.extractor.extract(data)
        result.advance(ArchiveStage.METADATA_EXTRACTED)

        result.remote_match = self.resolver.resolve(record, result.metadata)
        result.advance(ArchiveStage.RESOLVED if result.remote_match.matched else ArchiveStage.UNRESOLVED)

        result.integrity = audit_integrity(
            record.size_bytes,
            result.remote_match.expected_size,
            threshold=self.settings.tamper_threshold_bytes,
        )
        result.advance(ArchiveStage.AUDITED)

        deep = result.remote_match.match_type is MatchType.NO_MATCH
        result.finding = self.scanner.scan(record, data, deep=deep)
        result.advance(ArchiveStage.SCANNED)

        result.advance(ArchiveStage.CLASSIFIED)
        if result.finding is not None:
            logger.info("%s matched signatures: %s", record.filename, ", ".join(result.finding.sorted_tokens))
        return result

    def _lookup_provenance(self, path: Path) -> Provenance:
        if self.provenance_lookup is None:
            return Provenance()
        try:
            return self.provenance_lookup(path)
        except OSError as exc:
            logger.debug("Provenance lookup failed for %s: %s", path, exc)
            return Provenance()


def _unreadable_result(record: ArchiveRecord, provenance: Provenance, error: str) -> ScanResult:
    result = ScanResult(
        record=record,
        provenance=provenance,
        error=error,
    )
    for stage in (
        ArchiveStage.METADATA_EXTRACTED,
        ArchiveStage.UNRESOLVED,
        ArchiveStage.AUDITED,
        ArchiveStage.SCANNED,
        ArchiveStage.CLASSIFIED,
    ):
        result.advance(stage)
    return result
