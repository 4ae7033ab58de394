"""
Pytest configuration and fixtures
"""
from __future__ import annotations

import hashlib
import json
import struct
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

import pytest

from modaudit.cli.services.registry_client import (
    Found,
    NotFound,
    RegistryProject,
    RegistryVersion,
    SearchHit,
    TransportError,
)

EntryContent = Union[str, bytes]


def sha1_of(path: Path) -> str:
    return hashlib.sha1(path.read_bytes()).hexdigest()


def make_version(
    version_id: str,
    project_id: str,
    number: str,
    loaders: List[str],
    files: List[Tuple[str, int]] | None = None,
    *,
    sha1: str = "",
) -> RegistryVersion:
    """Build a registry version; the first file is primary and carries ``sha1``."""
    file_specs = files or [(f"{project_id}-{number}.jar", 1000)]
    return RegistryVersion.model_validate(
        {
            "id": version_id,
            "project_id": project_id,
            "version_number": number,
            "name": f"{project_id} {number}",
            "loaders": loaders,
            "files": [
                {
                    "filename": filename,
                    "size": size,
                    "primary": index == 0,
                    "hashes": {"sha1": sha1} if index == 0 and sha1 else {},
                }
                for index, (filename, size) in enumerate(file_specs)
            ],
        }
    )


class FakeRegistry:
    """In-memory registry that records every call made against it."""

    def __init__(
        self,
        *,
        by_hash: Optional[Dict[str, RegistryVersion]] = None,
        projects: Optional[Dict[str, RegistryProject]] = None,
        versions: Optional[Dict[str, List[RegistryVersion]]] = None,
        search: Optional[Dict[str, List[SearchHit]]] = None,
        failing: bool = False,
    ) -> None:
        self.by_hash = by_hash or {}
        self.projects = projects or {}
        self.versions = versions or {}
        self.search = search or {}
        self.failing = failing
        self.calls: List[Tuple[str, str]] = []

    def _lookup(self, operation: str, key: str, table: Mapping):
        self.calls.append((operation, key))
        if self.failing:
            return TransportError("registry offline")
        if key in table:
            return Found(table[key])
        return NotFound()

    def lookup_by_hash(self, sha1: str):
        return self._lookup("lookup_by_hash", sha1, self.by_hash)

    def get_project(self, project: str):
        return self._lookup("get_project", project, self.projects)

    def list_versions(self, project: str):
        return self._lookup("list_versions", project, self.versions)

    def search_projects(self, query: str):
        result = self._lookup("search_projects", query, self.search)
        if isinstance(result, NotFound):
            return Found([])
        return result

    def operations(self) -> List[str]:
        return [operation for operation, _ in self.calls]


@pytest.fixture
def make_jar(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a zip archive from ``{entry_name: content}``."""

    def _make(name: str, entries: Mapping[str, EntryContent]) -> Path:
        archive = tmp_path / name
        with zipfile.ZipFile(archive, "w", zipfile.ZIP_DEFLATED) as zf:
            for entry_name, content in entries.items():
                zf.writestr(entry_name, content)
        return archive

    return _make


@pytest.fixture
def corrupt_entry() -> Callable[[Path, str], Path]:
    """Overwrite the start of an entry's compressed data so inflating it fails."""

    def _corrupt(archive: Path, entry_name: str) -> Path:
        with zipfile.ZipFile(archive) as zf:
            offset = zf.getinfo(entry_name).header_offset
        payload = bytearray(archive.read_bytes())
        name_length, extra_length = struct.unpack_from("<HH", payload, offset + 26)
        data_start = offset + 30 + name_length + extra_length
        payload[data_start : data_start + 4] = b"\xff\xff\xff\xff"
        archive.write_bytes(bytes(payload))
        return archive

    return _corrupt


@pytest.fixture
def fabric_manifest() -> str:
    return json.dumps(
        {
            "schemaVersion": 1,
            "id": "examplemod",
            "version": "1.2.0",
            "name": "Example Mod",
            "description": "Adds examples.",
            "authors": ["Alice", {"name": "Bob", "contact": {}}],
            "license": "MIT",
            "entrypoints": {"main": ["com.example.ExampleMod"], "client": ["com.example.ExampleClient"]},
            "depends": {"fabricloader": ">=0.14", "minecraft": ["1.20", "1.20.1"]},
            "recommends": {"modmenu": "*"},
            "breaks": {"optifabric": "*"},
        }
    )


@pytest.fixture
def fake_registry_factory() -> Callable[..., FakeRegistry]:
    return FakeRegistry


@pytest.fixture
def version_factory() -> Callable[..., RegistryVersion]:
    return make_version


@pytest.fixture
def sha1_for() -> Callable[[Path], str]:
    return sha1_of
