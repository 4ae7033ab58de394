from __future__ import annotations

import hashlib
import io
import logging
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Iterator, Tuple

from .errors import ArchiveReadError
from .models import ArchiveRecord

logger = logging.getLogger(__name__)


def load_archive(path: Path) -> Tuple[ArchiveRecord, bytes]:
    """Read an archive once and fingerprint its full content.

    Returns the immutable record together with the raw bytes so later stages
    do not have to touch the filesystem again.
    """
    archive = Path(path)
    try:
        data = archive.read_bytes()
    except OSError as exc:
        raise ArchiveReadError(f"Unable to read {archive}: {exc}") from exc

    sha1, sha256 = _calculate_digests(data)
    record = ArchiveRecord(path=archive, size_bytes=len(data), sha1=sha1, sha256=sha256)
    logger.debug("Loaded %s (%d bytes, sha1=%s)", archive.name, record.size_bytes, sha1)
    return record, data


def _calculate_digests(data: bytes) -> Tuple[str, str]:
    return hashlib.sha1(data).hexdigest(), hashlib.sha256(data).hexdigest()


def open_zip(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as exc:
        raise ArchiveReadError(f"Zip is corrupted or unsafe: {exc}") from exc


def iter_entries(archive_zip: zipfile.ZipFile) -> Iterator[Tuple[str, zipfile.ZipInfo]]:
    """Yield ``(normalized_path, info)`` for every file entry, skipping unsafe names."""
    for info in archive_zip.infolist():
        if info.is_dir():
            continue
        normalized = normalize_entry(info.filename)
        if normalized is None:
            logger.debug("Skipping unsafe archive entry %r", info.filename)
            continue
        yield normalized, info


def normalize_entry(filename: str) -> str | None:
    # Reject absolute paths or traversal attempts; return cleaned archive path.
    path = PurePosixPath(filename.replace("\\", "/"))
    if path.is_absolute():
        return None
    if any(part == ".." for part in path.parts):
        return None
    cleaned = path.as_posix()
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned


def read_entry_bytes(archive_zip: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
    """Decompress one entry.

    Raises:
        ArchiveReadError: if the entry data is truncated, corrupt or encrypted.
    """
    try:
        with archive_zip.open(info) as file_obj:
            return file_obj.read()
    except (zipfile.BadZipFile, zlib.error, RuntimeError, OSError, EOFError, NotImplementedError) as exc:
        raise ArchiveReadError(f"Unable to read entry {info.filename}: {exc}") from exc


def read_entry_text(archive_zip: zipfile.ZipFile, info: zipfile.ZipInfo) -> str:
    """Decode an entry as UTF-8, replacing undecodable bytes."""
    return read_entry_bytes(archive_zip, info).decode("utf-8", errors="replace")
