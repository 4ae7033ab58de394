from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple
from urllib.parse import urlparse

from ..scanner.errors import InputPathError
from ..scanner.models import Provenance

_ARCHIVE_SUFFIXES: Tuple[str, ...] = (".jar", ".zip")
# Suffixes launchers and users append to park a mod without deleting it.
_TEMP_SUFFIXES: Tuple[str, ...] = (".disabled", ".old", ".bak", ".backup", ".tmp", ".temp")
_LOADER_QUALIFIERS: Tuple[str, ...] = ("-fabric", "-forge", "_fabric", "_forge")

_COPY_MARKER = re.compile(r"\s*\(\d+\)$")
_VERSION_SUFFIX = re.compile(r"[-_ ](?:mc|v)?\d+(?:\.\d+)*(?:[-+_.][0-9A-Za-z.+_\-]*)?$", re.IGNORECASE)

_XDG_ORIGIN_ATTRIBUTE = "user.xdg.origin.url"
_ZONE_IDENTIFIER_STREAM = ":Zone.Identifier"

_KNOWN_ORIGINS: Tuple[Tuple[str, str], ...] = (
    ("modrinth.com", "Modrinth"),
    ("curseforge.com", "CurseForge"),
    ("forgecdn.net", "CurseForge"),
    ("github.com", "GitHub"),
    ("githubusercontent.com", "GitHub"),
    ("discordapp.com", "Discord"),
    ("discordapp.net", "Discord"),
    ("discord.com", "Discord"),
)


@dataclass(frozen=True, slots=True)
class FilenameHints:
    original: str
    normalized: str
    raw_name: str
    base_slug: str


def discover_archives(target: Path) -> List[Path]:
    """Return the archives to scan, sorted by file name.

    A file target is returned as-is; a directory yields every jar/zip it
    contains, including ones parked under a temp/backup suffix.

    Raises:
        InputPathError: if the target is missing or cannot be listed.
    """
    resolved = Path(target).expanduser()
    if resolved.is_file():
        return [resolved]
    if not resolved.exists():
        raise InputPathError(f"{resolved} does not exist")
    if not resolved.is_dir():
        raise InputPathError(f"{resolved} is neither a directory nor an archive")

    try:
        with os.scandir(resolved) as entries:
            archives = [Path(entry.path) for entry in entries if entry.is_file() and is_archive_name(entry.name)]
    except OSError as exc:
        raise InputPathError(f"Unable to list {resolved}: {exc}") from exc
    return sorted(archives, key=lambda path: path.name.lower())


def is_archive_name(filename: str) -> bool:
    return strip_temp_suffixes(filename).lower().endswith(_ARCHIVE_SUFFIXES)


def strip_temp_suffixes(filename: str) -> str:
    stripped = filename
    changed = True
    while changed:
        changed = False
        for suffix in _TEMP_SUFFIXES:
            if stripped.lower().endswith(suffix) and len(stripped) > len(suffix):
                stripped = stripped[: -len(suffix)]
                changed = True
    return stripped


def normalize_filename(filename: str) -> FilenameHints:
    """Derive the slug candidates used by the filename lookup tier.

    ``sodium-fabric-0.5.8+mc1.20.1.jar.disabled`` becomes the normalized
    filename ``sodium-fabric-0.5.8+mc1.20.1.jar``, the raw name
    ``sodium-fabric-0.5.8+mc1.20.1`` and the base slug ``sodium``.
    """
    normalized = strip_temp_suffixes(filename)
    raw_name = normalized
    for suffix in _ARCHIVE_SUFFIXES:
        if raw_name.lower().endswith(suffix):
            raw_name = raw_name[: -len(suffix)]
            break

    base = _COPY_MARKER.sub("", raw_name)
    base = _VERSION_SUFFIX.sub("", base)
    stripped = True
    while stripped:
        stripped = False
        for qualifier in _LOADER_QUALIFIERS:
            if base.lower().endswith(qualifier) and len(base) > len(qualifier):
                base = base[: -len(qualifier)]
                stripped = True
    base_slug = re.sub(r"[\s_]+", "-", base.strip()).lower()
    return FilenameHints(original=filename, normalized=normalized, raw_name=raw_name, base_slug=base_slug)


def classify_origin(source_url: str) -> Provenance:
    """Map a download URL onto one of the known distribution sources."""
    if not source_url:
        return Provenance()
    host = (urlparse(source_url).hostname or "").lower()
    for domain, label in _KNOWN_ORIGINS:
        if host == domain or host.endswith("." + domain):
            return Provenance(label=label, source_url=source_url)
    return Provenance(label="Unknown", source_url=source_url)


def read_download_origin(path: Path) -> Provenance:
    """Recover the download URL the OS recorded for ``path``.

    Browsers on Linux store it in the ``user.xdg.origin.url`` extended
    attribute; Windows keeps a ``HostUrl=`` line in the ``Zone.Identifier``
    alternate data stream. Anything else is reported as unknown.
    """
    getxattr = getattr(os, "getxattr", None)
    if getxattr is not None:
        try:
            raw = getxattr(path, _XDG_ORIGIN_ATTRIBUTE)
        except OSError:
            raw = b""
        if raw:
            return classify_origin(raw.decode("utf-8", errors="replace").strip())

    try:
        zone_info = Path(f"{path}{_ZONE_IDENTIFIER_STREAM}").read_text(encoding="utf-8", errors="replace")
    except OSError:
        return Provenance()
    for line in zone_info.splitlines():
        key, _, value = line.partition("=")
        if key.strip() == "HostUrl":
            return classify_origin(value.strip())
    return Provenance()
