"""Resolve a mod archive to its registry identity.

Resolution is an ordered chain of lookup strategies. Each strategy is a
function ``(ArchiveRecord, ModMetadata) -> RemoteMatch | None`` and the
first one that returns a match wins; later strategies are never called.

1. exact SHA-1 fingerprint lookup
2. manifest mod id (direct project lookup, then scored text search)
3. filename heuristics (slug candidates, then top search hit)

Archives that survive the chain unresolved can still be named by the
secondary hash database, if one is configured.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, Tuple

from ...scanner.models import ArchiveRecord, MatchType, ModMetadata, RemoteMatch
from ..archive_utils import FilenameHints, normalize_filename
from .registry_client import (
    Found,
    NotFound,
    RegistryProject,
    RegistryResult,
    RegistryVersion,
    SearchHit,
)

logger = logging.getLogger(__name__)

DEFAULT_LOADER = "fabric"

# Search ranking weights for the mod id fallback.
SCORE_EXACT_SLUG = 100
SCORE_EXACT_PROJECT_ID = 100
SCORE_EXACT_TITLE = 80
SCORE_TITLE_CONTAINS = 50
SCORE_SLUG_CONTAINS = 40

ResolutionStrategy = Callable[[ArchiveRecord, ModMetadata], Optional[RemoteMatch]]


class Registry(Protocol):
    def lookup_by_hash(self, sha1: str) -> RegistryResult[RegistryVersion]: ...

    def get_project(self, project: str) -> RegistryResult[RegistryProject]: ...

    def list_versions(self, project: str) -> RegistryResult[List[RegistryVersion]]: ...

    def search_projects(self, query: str) -> RegistryResult[List[SearchHit]]: ...


class SecondaryDatabase(Protocol):
    def lookup(self, sha256: str) -> RegistryResult[str]: ...


def first_match(strategies: Sequence[ResolutionStrategy]) -> ResolutionStrategy:
    """Combine strategies so the first non-empty match short-circuits the rest."""

    def _resolve(record: ArchiveRecord, metadata: ModMetadata) -> Optional[RemoteMatch]:
        for strategy in strategies:
            match = strategy(record, metadata)
            if match is not None and match.matched:
                return match
        return None

    return _resolve


def preferred_loader(filename: str, metadata: ModMetadata) -> str:
    """Filename hints beat the manifest's loader, which beats the default."""
    lowered = filename.lower()
    if "fabric" in lowered:
        return "fabric"
    if "neoforge" in lowered:
        return "neoforge"
    if "forge" in lowered:
        return "forge"
    if metadata.loader:
        return metadata.loader.lower()
    return DEFAULT_LOADER


def score_search_hit(hit: SearchHit, query: str) -> int:
    wanted = query.lower()
    slug = hit.slug.lower()
    title = hit.title.lower()
    score = 0
    if slug == wanted:
        score += SCORE_EXACT_SLUG
    elif wanted in slug:
        score += SCORE_SLUG_CONTAINS
    if hit.project_id == query:
        score += SCORE_EXACT_PROJECT_ID
    if title == wanted:
        score += SCORE_EXACT_TITLE
    elif wanted in title:
        score += SCORE_TITLE_CONTAINS
    return score


def pick_best_hit(hits: Iterable[SearchHit], query: str) -> Optional[SearchHit]:
    """Highest-scoring hit; on a tie the earlier hit is kept. Zero scores never win."""
    best: Optional[SearchHit] = None
    best_score = 0
    for hit in hits:
        score = score_search_hit(hit, query)
        if score > best_score:
            best, best_score = hit, score
    return best


def select_version(versions: Sequence[RegistryVersion], loader: str) -> Tuple[RegistryVersion, str]:
    """Newest version supporting ``loader``, else the newest version overall.

    Returns the version and the loader it is reported under.
    """
    for version in versions:
        if version.supports(loader):
            return version, loader
    head = versions[0]
    if head.supports(loader) or not head.loaders:
        return head, loader
    return head, head.loaders[0].lower()


class IdentityResolver:
    """Map an archive and its manifest metadata to a :class:`RemoteMatch`.

    Never raises for remote failures: a transport error or a missing
    resource just makes the current tier come up empty.
    """

    def __init__(self, registry: Registry, secondary_db: Optional[SecondaryDatabase] = None):
        self.registry = registry
        self.secondary_db = secondary_db
        self.strategies: Tuple[ResolutionStrategy, ...] = (
            self.match_by_hash,
            self.match_by_mod_id,
            self.match_by_filename,
        )
        self._chain = first_match(self.strategies)

    def resolve(self, record: ArchiveRecord, metadata: ModMetadata) -> RemoteMatch:
        match = self._chain(record, metadata)
        if match is None:
            match = self.match_secondary(record, metadata)
        if match is None:
            logger.info("No registry identity for %s", record.filename)
            return RemoteMatch.no_match()
        logger.info("Resolved %s as %s via %s", record.filename, match.name, match.match_tag)
        return match

    def match_by_hash(self, record: ArchiveRecord, metadata: ModMetadata) -> Optional[RemoteMatch]:
        if not record.sha1:
            return None
        result = self.registry.lookup_by_hash(record.sha1)
        if not isinstance(result, Found):
            logger.debug("Hash lookup for %s came up empty: %s", record.filename, result)
            return None

        version = result.value
        project = self._fetch_project(version.project_id) or RegistryProject(id=version.project_id)
        file = version.file_with_hash(record.sha1) or version.primary_file()

        is_latest = False
        versions = self.registry.list_versions(version.project_id)
        if isinstance(versions, Found) and versions.value:
            is_latest = versions.value[0].id == version.id

        loader = preferred_loader(record.filename, metadata)
        if not version.supports(loader) and version.loaders:
            loader = version.loaders[0].lower()

        return RemoteMatch(
            project_id=project.id,
            slug=project.slug,
            name=project.title or version.name or project.id,
            expected_size=file.size if file else 0,
            version=version.version_number,
            version_id=version.id,
            url=project.page_url,
            loader=loader,
            match_type=MatchType.EXACT_HASH,
            is_latest_version=is_latest,
        )

    def match_by_mod_id(self, record: ArchiveRecord, metadata: ModMetadata) -> Optional[RemoteMatch]:
        if not metadata.mod_id:
            return None
        loader = preferred_loader(record.filename, metadata)

        result = self.registry.get_project(metadata.mod_id)
        if isinstance(result, Found):
            project: Optional[RegistryProject] = result.value
        elif isinstance(result, NotFound):
            project = self._search_by_score(metadata.mod_id)
        else:
            logger.debug("Project lookup for %s failed: %s", metadata.mod_id, result.message)
            return None
        if project is None:
            return None

        versions = self._fetch_versions(project.id)
        if not versions:
            return None
        version, version_loader = select_version(versions, loader)
        return _latest_version_match(project, version, version_loader, is_latest=version.id == versions[0].id)

    def match_by_filename(self, record: ArchiveRecord, metadata: ModMetadata) -> Optional[RemoteMatch]:
        hints = normalize_filename(record.filename)
        loader = preferred_loader(record.filename, metadata)

        candidates: List[str] = []
        for candidate in (hints.base_slug, hints.raw_name):
            if candidate and candidate not in candidates:
                candidates.append(candidate)

        for slug in candidates:
            versions = self._fetch_versions(slug)
            if not versions:
                continue
            project = self._fetch_project(slug) or RegistryProject(
                id=versions[0].project_id, slug=slug, title=slug
            )
            return _match_from_versions(project, versions, hints, loader)

        if not hints.base_slug:
            return None
        search = self.registry.search_projects(hints.base_slug)
        if not isinstance(search, Found) or not search.value:
            return None
        top = search.value[0]
        versions = self._fetch_versions(top.project_id)
        if not versions:
            return None
        project = RegistryProject(id=top.project_id, slug=top.slug, title=top.title)
        return _match_from_versions(project, versions, hints, loader)

    def match_secondary(self, record: ArchiveRecord, metadata: ModMetadata) -> Optional[RemoteMatch]:
        if self.secondary_db is None or not record.sha256:
            return None
        result = self.secondary_db.lookup(record.sha256)
        if not isinstance(result, Found):
            return None
        return RemoteMatch(name=result.value, match_type=MatchType.SECONDARY_DB)

    def _search_by_score(self, query: str) -> Optional[RegistryProject]:
        result = self.registry.search_projects(query)
        if not isinstance(result, Found):
            return None
        hit = pick_best_hit(result.value, query)
        if hit is None:
            return None
        return RegistryProject(id=hit.project_id, slug=hit.slug, title=hit.title)

    def _fetch_project(self, project: str) -> Optional[RegistryProject]:
        result = self.registry.get_project(project)
        return result.value if isinstance(result, Found) else None

    def _fetch_versions(self, project: str) -> List[RegistryVersion]:
        result = self.registry.list_versions(project)
        return result.value if isinstance(result, Found) else []


def _match_from_versions(
    project: RegistryProject,
    versions: Sequence[RegistryVersion],
    hints: FilenameHints,
    loader: str,
) -> RemoteMatch:
    wanted = {hints.normalized, hints.original}
    for version in versions:
        for file in version.files:
            if file.filename in wanted:
                return RemoteMatch(
                    project_id=project.id,
                    slug=project.slug,
                    name=project.title or project.slug or project.id,
                    expected_size=file.size,
                    version=version.version_number,
                    version_id=version.id,
                    url=project.page_url,
                    loader=loader if version.supports(loader) or not version.loaders else version.loaders[0].lower(),
                    match_type=MatchType.EXACT_FILENAME,
                    is_latest_version=version.id == versions[0].id,
                )
    version, version_loader = select_version(versions, loader)
    return _latest_version_match(project, version, version_loader, is_latest=version.id == versions[0].id)


def _latest_version_match(
    project: RegistryProject,
    version: RegistryVersion,
    loader: str,
    *,
    is_latest: bool,
) -> RemoteMatch:
    file = version.primary_file()
    return RemoteMatch(
        project_id=project.id,
        slug=project.slug,
        name=project.title or project.slug or project.id,
        expected_size=file.size if file else 0,
        version=version.version_number,
        version_id=version.id,
        url=project.page_url,
        loader=loader,
        match_type=MatchType.LATEST_VERSION,
        is_latest_version=is_latest,
    )
