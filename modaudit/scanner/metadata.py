from __future__ import annotations

import json
import logging
import re
import zipfile
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ArchiveReadError, MalformedMetadataError
from .models import ModMetadata
from .parser import iter_entries, open_zip, read_entry_text

logger = logging.getLogger(__name__)

FABRIC_MANIFEST = "fabric.mod.json"
FORGE_MANIFESTS: Tuple[Tuple[str, str], ...] = (
    ("META-INF/mods.toml", "forge"),
    ("META-INF/neoforge.mods.toml", "neoforge"),
)
PACKAGING_MANIFEST = "META-INF/MANIFEST.MF"

_MAX_MANIFEST_BYTES = 1024 * 1024

# Forge manifests are only loosely TOML in the wild, so fields are pulled by pattern.
_TOML_MULTILINE = r"'''(?P<multi>.*?)'''"
_TOML_QUOTED = r"\"(?P<quoted>(?:[^\"\\\n]|\\.)*)\""
_TOML_LITERAL = r"'(?P<literal>[^'\n]*)'"
_FORGE_BLOCK_HEADER = re.compile(r"^\s*\[\[?\s*([A-Za-z0-9_.\-]+)\s*\]\]?\s*$", re.MULTILINE)
_FORGE_DEPENDENCY_HEADER = re.compile(r"^dependencies\.([A-Za-z0-9_\-]+)$")
_UNRESOLVED_PLACEHOLDER = re.compile(r"^\$\{[^}]*\}$")


def _toml_field(key: str) -> re.Pattern[str]:
    return re.compile(
        rf"^\s*{re.escape(key)}\s*=\s*(?:{_TOML_MULTILINE}|{_TOML_QUOTED}|{_TOML_LITERAL})",
        re.MULTILINE | re.DOTALL,
    )


_FORGE_FIELDS = {
    "mod_id": _toml_field("modId"),
    "name": _toml_field("displayName"),
    "version": _toml_field("version"),
    "description": _toml_field("description"),
    "authors": _toml_field("authors"),
    "license": _toml_field("license"),
    "version_range": _toml_field("versionRange"),
}


class ArchiveMetadataExtractor:
    """Read the embedded manifests of a mod archive into a :class:`ModMetadata`.

    Loader manifests are checked in priority order and the first one that
    parses wins. The mixin config and the packaging manifest then only fill
    fields that are still empty. Nothing here raises to the caller: a broken
    manifest simply contributes no fields.
    """

    def extract(self, data: bytes) -> ModMetadata:
        try:
            archive_zip = open_zip(data)
        except ArchiveReadError as exc:
            logger.debug("Metadata extraction skipped: %s", exc)
            return ModMetadata()
        with archive_zip:
            return self.extract_from_zip(archive_zip)

    def extract_from_zip(self, archive_zip: zipfile.ZipFile) -> ModMetadata:
        metadata = ModMetadata()
        entries = dict(iter_entries(archive_zip))

        loader_readers: List[Tuple[str, Callable[[str, ModMetadata], None]]] = [
            (FABRIC_MANIFEST, self._apply_fabric_manifest),
        ]
        for manifest_name, loader in FORGE_MANIFESTS:
            loader_readers.append((manifest_name, partial(self._apply_forge_manifest, loader=loader)))

        for manifest_name, reader in loader_readers:
            info = entries.get(manifest_name)
            if info is None:
                continue
            text = _read_manifest(archive_zip, info)
            if text is None:
                continue
            try:
                reader(text, metadata)
            except MalformedMetadataError as exc:
                logger.debug("Ignoring %s: %s", manifest_name, exc)
                continue
            break

        if not metadata.mod_id:
            for name, info in entries.items():
                if not _is_mixin_config(name):
                    continue
                text = _read_manifest(archive_zip, info)
                fallback_id = _mixin_fallback_id(text) if text is not None else ""
                if fallback_id:
                    metadata.mod_id = fallback_id
                    break

        info = entries.get(PACKAGING_MANIFEST)
        if info is not None:
            text = _read_manifest(archive_zip, info)
            if text is not None:
                self._apply_packaging_manifest(text, metadata)

        return metadata

    def _apply_fabric_manifest(self, text: str, metadata: ModMetadata) -> None:
        try:
            document = json.loads(text.lstrip("\ufeff"), strict=False)
        except json.JSONDecodeError as exc:
            raise MalformedMetadataError(f"invalid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise MalformedMetadataError("manifest root is not an object")

        metadata.loader = "fabric"
        metadata.mod_id = _as_text(document.get("id"))
        metadata.name = _as_text(document.get("name"))
        metadata.version = _as_text(document.get("version"))
        metadata.description = _as_text(document.get("description"))
        metadata.authors = _fabric_people(document.get("authors"))

        license_value = document.get("license")
        if isinstance(license_value, list):
            metadata.license = ", ".join(_as_text(item) for item in license_value if _as_text(item))
        else:
            metadata.license = _as_text(license_value)

        entrypoints = document.get("entrypoints")
        if isinstance(entrypoints, dict):
            metadata.entrypoints = sorted(str(key) for key in entrypoints)

        metadata.depends = _fabric_dependency_map(document.get("depends"))
        metadata.recommends = _fabric_dependency_map(document.get("recommends"))
        conflicts = _fabric_dependency_map(document.get("breaks"))
        conflicts.update(_fabric_dependency_map(document.get("conflicts")))
        metadata.conflicts = conflicts

    def _apply_forge_manifest(self, text: str, metadata: ModMetadata, loader: str) -> None:
        blocks = _split_toml_blocks(text)
        mods_block = next((body for header, body in blocks if header == "mods"), None)
        if mods_block is None:
            raise MalformedMetadataError("no [[mods]] section")

        mod_id = _forge_field(mods_block, "mod_id")
        if not mod_id:
            raise MalformedMetadataError("[[mods]] section has no modId")

        metadata.loader = loader
        metadata.mod_id = mod_id
        metadata.name = _forge_field(mods_block, "name")
        metadata.version = _forge_field(mods_block, "version")
        metadata.description = _forge_field(mods_block, "description").strip()
        authors = _forge_field(mods_block, "authors")
        metadata.authors = [part.strip() for part in re.split(r",| and ", authors) if part.strip()]

        preamble = next((body for header, body in blocks if header == ""), "")
        metadata.license = _forge_field(preamble, "license") or _forge_field(mods_block, "license")

        depends: Dict[str, str] = {}
        for header, body in blocks:
            match = _FORGE_DEPENDENCY_HEADER.match(header)
            if not match:
                continue
            dependency_id = _forge_field(body, "mod_id")
            if dependency_id:
                depends[dependency_id] = _forge_field(body, "version_range") or "*"
        metadata.depends = depends

    def _apply_packaging_manifest(self, text: str, metadata: ModMetadata) -> None:
        attributes = parse_manifest_attributes(text)
        title = attributes.get("Implementation-Title") or attributes.get("Specification-Title", "")
        version = attributes.get("Implementation-Version") or attributes.get("Specification-Version", "")
        if not metadata.name and title:
            metadata.name = title
        if not metadata.version and version:
            metadata.version = version


def parse_manifest_attributes(text: str) -> Dict[str, str]:
    """Parse ``Key: Value`` lines of a JAR manifest, honouring continuation lines."""
    attributes: Dict[str, str] = {}
    last_key: Optional[str] = None
    for raw_line in text.splitlines():
        if raw_line.startswith(" ") and last_key is not None:
            attributes[last_key] += raw_line[1:]
            continue
        line = raw_line.strip()
        if not line or ":" not in line:
            last_key = None
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        # Main section wins over per-entry sections.
        if key in attributes:
            last_key = None
            continue
        attributes[key] = value.strip()
        last_key = key
    return attributes


def _read_manifest(archive_zip: zipfile.ZipFile, info: zipfile.ZipInfo) -> Optional[str]:
    if info.file_size > _MAX_MANIFEST_BYTES:
        logger.debug("Manifest %s too large (%d bytes)", info.filename, info.file_size)
        return None
    try:
        return read_entry_text(archive_zip, info)
    except ArchiveReadError as exc:
        logger.debug("Skipping manifest: %s", exc)
        return None


def _is_mixin_config(name: str) -> bool:
    if "/" in name:
        return False
    lowered = name.lower()
    return lowered.endswith(".mixins.json") or (lowered.startswith("mixins.") and lowered.endswith(".json"))


def _mixin_fallback_id(text: str) -> str:
    try:
        document = json.loads(text.lstrip("\ufeff"), strict=False)
    except json.JSONDecodeError:
        return ""
    if not isinstance(document, dict):
        return ""
    segments = [part for part in _as_text(document.get("package")).split(".") if part]
    if len(segments) < 2:
        return ""
    return segments[-2]


def _split_toml_blocks(text: str) -> List[Tuple[str, str]]:
    # Returns (header, body) pairs; the text before the first header has header "".
    blocks: List[Tuple[str, str]] = []
    position = 0
    header = ""
    for match in _FORGE_BLOCK_HEADER.finditer(text):
        blocks.append((header, text[position:match.start()]))
        header = match.group(1)
        position = match.end()
    blocks.append((header, text[position:]))
    return blocks


def _forge_field(block: str, field_name: str) -> str:
    match = _FORGE_FIELDS[field_name].search(block)
    if not match:
        return ""
    value = next((group for group in match.group("multi", "quoted", "literal") if group is not None), "")
    if _UNRESOLVED_PLACEHOLDER.match(value.strip()):
        return ""
    return value


def _fabric_people(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    people: List[str] = []
    for item in value:
        if isinstance(item, dict):
            name = _as_text(item.get("name"))
        else:
            name = _as_text(item)
        if name:
            people.append(name)
    return people


def _fabric_dependency_map(value: Any) -> Dict[str, str]:
    if not isinstance(value, dict):
        return {}
    dependencies: Dict[str, str] = {}
    for key, constraint in value.items():
        if isinstance(constraint, list):
            dependencies[str(key)] = " || ".join(_as_text(item) for item in constraint)
        else:
            dependencies[str(key)] = _as_text(constraint) or "*"
    return dependencies


def _as_text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value)
