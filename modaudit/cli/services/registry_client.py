"""HTTP client for the mod registry (Modrinth v2 compatible).

Only the read endpoints the identity resolver needs are wrapped:
- GET /version_file/{sha1}?algorithm=sha1 - version owning a file hash
- GET /project/{id|slug} - project title and slug
- GET /project/{id|slug}/version - versions, newest first
- GET /search?query=... - ranked project hits

No method raises on network or payload problems. Each returns a tagged
result (``Found``, ``NotFound`` or ``TransportError``) and the caller
decides what to do with it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from ...config.settings import DEFAULT_REGISTRY_URL, DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROJECT_PAGE_URL = "https://modrinth.com/mod/{slug}"


@dataclass(frozen=True, slots=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class NotFound:
    pass


@dataclass(frozen=True, slots=True)
class TransportError:
    message: str
    status_code: Optional[int] = None


RegistryResult = Union[Found[T], NotFound, TransportError]


class RegistryFile(BaseModel):
    filename: str
    size: int = 0
    primary: bool = False
    url: str = ""
    hashes: Dict[str, str] = Field(default_factory=dict)


class RegistryVersion(BaseModel):
    id: str
    project_id: str
    version_number: str = ""
    name: str = ""
    loaders: List[str] = Field(default_factory=list)
    files: List[RegistryFile] = Field(default_factory=list)

    def supports(self, loader: str) -> bool:
        wanted = loader.lower()
        return any(candidate.lower() == wanted for candidate in self.loaders)

    def primary_file(self) -> Optional[RegistryFile]:
        for file in self.files:
            if file.primary:
                return file
        return self.files[0] if self.files else None

    def file_with_hash(self, sha1: str) -> Optional[RegistryFile]:
        for file in self.files:
            if file.hashes.get("sha1", "").lower() == sha1.lower():
                return file
        return None


class RegistryProject(BaseModel):
    id: str
    slug: str = ""
    title: str = ""

    @property
    def page_url(self) -> str:
        return PROJECT_PAGE_URL.format(slug=self.slug or self.id)


class SearchHit(BaseModel):
    project_id: str
    slug: str = ""
    title: str = ""


class SearchResponse(BaseModel):
    hits: List[SearchHit] = Field(default_factory=list)


_VERSION_LIST = TypeAdapter(List[RegistryVersion])


class RegistryClient:
    """Read-only registry client.

    Example usage:
        with RegistryClient("https://api.modrinth.com/v2") as client:
            result = client.lookup_by_hash(record.sha1)
            if isinstance(result, Found):
                print(result.value.version_number)
    """

    DEFAULT_TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        search_limit: int = 10,
    ):
        self.base_url = (base_url or DEFAULT_REGISTRY_URL).rstrip("/")
        self.timeout = timeout
        self.user_agent = user_agent
        self.search_limit = search_limit
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> httpx.Client:
        # Workers share one client; creation must not race.
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=self.base_url,
                    timeout=self.timeout,
                    headers={"User-Agent": self.user_agent},
                )
            return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "RegistryClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def lookup_by_hash(self, sha1: str) -> RegistryResult[RegistryVersion]:
        return self._get(
            f"/version_file/{quote(sha1, safe='')}",
            params={"algorithm": "sha1"},
            model=RegistryVersion,
        )

    def get_project(self, project: str) -> RegistryResult[RegistryProject]:
        return self._get(f"/project/{quote(project, safe='')}", model=RegistryProject)

    def list_versions(self, project: str) -> RegistryResult[List[RegistryVersion]]:
        result = self._request(f"/project/{quote(project, safe='')}/version")
        if not isinstance(result, Found):
            return result
        try:
            return Found(_VERSION_LIST.validate_python(result.value))
        except ValidationError as exc:
            logger.debug("Malformed version list for %s: %s", project, exc)
            return TransportError(f"Malformed version list for {project}")

    def search_projects(self, query: str) -> RegistryResult[List[SearchHit]]:
        result = self._get(
            "/search",
            params={"query": query, "limit": self.search_limit},
            model=SearchResponse,
        )
        if isinstance(result, Found):
            return Found(result.value.hits)
        return result

    def _get(
        self,
        path: str,
        *,
        model: Type[BaseModel],
        params: Optional[Dict[str, Any]] = None,
    ) -> RegistryResult[Any]:
        result = self._request(path, params=params)
        if not isinstance(result, Found):
            return result
        try:
            return Found(model.model_validate(result.value))
        except ValidationError as exc:
            logger.debug("Malformed %s payload from %s: %s", model.__name__, path, exc)
            return TransportError(f"Malformed {model.__name__} payload from {path}")

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> RegistryResult[Any]:
        try:
            response = self._get_client().get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.debug("Registry request %s timed out: %s", path, exc)
            return TransportError(f"Request to registry timed out: {exc}")
        except httpx.HTTPError as exc:
            logger.debug("Registry request %s failed: %s", path, exc)
            return TransportError(f"Unable to reach registry at {self.base_url}: {exc}")

        if response.status_code == 404:
            return NotFound()
        if response.status_code != 200:
            return TransportError(
                f"Registry returned HTTP {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            return Found(response.json())
        except ValueError as exc:
            logger.debug("Registry returned invalid JSON for %s: %s", path, exc)
            return TransportError(f"Invalid JSON from registry for {path}")
