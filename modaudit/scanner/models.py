from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional


@dataclass(frozen=True, slots=True)
class ArchiveRecord:
    path: Path
    size_bytes: int
    sha1: str
    sha256: str

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(slots=True)
class ModMetadata:
    """
    Identity fields read from the manifests embedded in an archive.

    Every field defaults to an empty value so callers never have to guard
    against missing manifests; ``loader`` records which manifest won.
    """

    loader: str = ""
    mod_id: str = ""
    name: str = ""
    version: str = ""
    description: str = ""
    authors: List[str] = field(default_factory=list)
    license: str = ""
    entrypoints: List[str] = field(default_factory=list)
    depends: Dict[str, str] = field(default_factory=dict)
    recommends: Dict[str, str] = field(default_factory=dict)
    conflicts: Dict[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.loader or self.mod_id or self.name or self.version)


class MatchType(str, Enum):
    EXACT_HASH = "ExactHash"
    EXACT_FILENAME = "ExactFilename"
    LATEST_VERSION = "LatestVersion"
    SECONDARY_DB = "SecondaryDB"
    NO_MATCH = "NoMatch"


@dataclass(frozen=True, slots=True)
class RemoteMatch:
    project_id: str = ""
    slug: str = ""
    name: str = ""
    expected_size: int = 0
    version: str = ""
    version_id: str = ""
    url: str = ""
    loader: str = ""
    match_type: MatchType = MatchType.NO_MATCH
    is_latest_version: bool = False

    @classmethod
    def no_match(cls) -> "RemoteMatch":
        return cls()

    @property
    def matched(self) -> bool:
        return bool(self.name) and self.match_type is not MatchType.NO_MATCH

    @property
    def match_tag(self) -> str:
        """Render the match type the way reports show it, e.g. ``LatestVersion(fabric)``."""
        if self.match_type is MatchType.LATEST_VERSION:
            return f"{self.match_type.value}({self.loader})"
        return self.match_type.value


class IntegrityStatus(str, Enum):
    VERIFIED = "Verified"
    MODIFIED = "Modified"
    TAMPERED = "Tampered"


@dataclass(frozen=True, slots=True)
class IntegrityVerdict:
    expected_size: int
    actual_size: int
    delta: int
    status: IntegrityStatus


@dataclass(frozen=True, slots=True)
class SignatureFinding:
    archive: Path
    tokens: FrozenSet[str]

    @property
    def sorted_tokens(self) -> List[str]:
        return sorted(self.tokens, key=str.lower)


@dataclass(frozen=True, slots=True)
class Provenance:
    """Where the OS says a file came from. Opaque to the pipeline."""

    label: str = "Unknown"
    source_url: str = ""


class ArchiveStage(str, Enum):
    PENDING = "Pending"
    METADATA_EXTRACTED = "MetadataExtracted"
    RESOLVED = "Resolved"
    UNRESOLVED = "Unresolved"
    AUDITED = "Audited"
    SCANNED = "Scanned"
    CLASSIFIED = "Classified"


_STAGE_TRANSITIONS: Dict[ArchiveStage, FrozenSet[ArchiveStage]] = {
    ArchiveStage.PENDING: frozenset({ArchiveStage.METADATA_EXTRACTED}),
    ArchiveStage.METADATA_EXTRACTED: frozenset({ArchiveStage.RESOLVED, ArchiveStage.UNRESOLVED}),
    ArchiveStage.RESOLVED: frozenset({ArchiveStage.AUDITED}),
    ArchiveStage.UNRESOLVED: frozenset({ArchiveStage.AUDITED}),
    ArchiveStage.AUDITED: frozenset({ArchiveStage.SCANNED}),
    ArchiveStage.SCANNED: frozenset({ArchiveStage.CLASSIFIED}),
    ArchiveStage.CLASSIFIED: frozenset(),
}


@dataclass(slots=True)
class ScanResult:
    record: ArchiveRecord
    metadata: ModMetadata = field(default_factory=ModMetadata)
    remote_match: RemoteMatch = field(default_factory=RemoteMatch)
    integrity: Optional[IntegrityVerdict] = None
    finding: Optional[SignatureFinding] = None
    provenance: Provenance = field(default_factory=Provenance)
    stage: ArchiveStage = ArchiveStage.PENDING
    error: Optional[str] = None

    def advance(self, stage: ArchiveStage) -> None:
        if stage not in _STAGE_TRANSITIONS[self.stage]:
            raise ValueError(f"Illegal stage transition {self.stage.value} -> {stage.value}")
        self.stage = stage

    @property
    def is_resolved(self) -> bool:
        return self.remote_match.matched

    @property
    def is_tampered(self) -> bool:
        return self.integrity is not None and self.integrity.status is IntegrityStatus.TAMPERED


@dataclass(slots=True)
class ClassificationSets:
    """
    Result buckets for one scan run.

    Buckets overlap: an archive can be verified, suspicious and tampered at
    the same time. Paths keep the order in which results were added.
    """

    verified: List[Path] = field(default_factory=list)
    unknown: List[Path] = field(default_factory=list)
    suspicious: List[Path] = field(default_factory=list)
    tampered: List[Path] = field(default_factory=list)

    def add(self, result: ScanResult) -> None:
        path = result.record.path
        if result.is_resolved:
            self.verified.append(path)
        else:
            self.unknown.append(path)
        if result.finding is not None:
            self.suspicious.append(path)
        if result.is_tampered:
            self.tampered.append(path)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "verified": len(self.verified),
            "unknown": len(self.unknown),
            "suspicious": len(self.suspicious),
            "tampered": len(self.tampered),
        }


@dataclass(slots=True)
class ScanReport:
    results: List[ScanResult] = field(default_factory=list)
    classification: ClassificationSets = field(default_factory=ClassificationSets)
