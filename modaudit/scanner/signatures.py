from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional, Set, Tuple

from .errors import ArchiveReadError, CorpusCompileError
from .models import ArchiveRecord, SignatureFinding
from .parser import iter_entries, open_zip, read_entry_bytes

logger = logging.getLogger(__name__)

_DEFAULT_MAX_ENTRY_BYTES = 16 * 1024 * 1024
_CONTENT_SUFFIXES: Tuple[str, ...] = (".class", ".json")
_PACKAGING_MANIFEST = "META-INF/MANIFEST.MF"
_SEP = r"[\s_\-]?"

# "velocity" is an ordinary word; only flag it next to a cheat-settings suffix.
VELOCITY_SUFFIXES = ("hack", "module", "cheat", "bypass", "packet", "horizontal", "vertical", "amount", "factor", "setting")


@dataclass(frozen=True, slots=True)
class SignaturePattern:
    token: str
    pattern: str


DEFAULT_SIGNATURES: Tuple[SignaturePattern, ...] = (
    # Combat and movement modules.
    SignaturePattern("KillAura", rf"kill{_SEP}aura"),
    SignaturePattern("AutoTotem", rf"auto{_SEP}totem"),
    SignaturePattern("AutoCrystal", rf"auto{_SEP}crystal"),
    SignaturePattern("CrystalAura", rf"crystal{_SEP}aura"),
    SignaturePattern("AnchorAura", rf"anchor{_SEP}aura"),
    SignaturePattern("BedAura", rf"bed{_SEP}aura"),
    SignaturePattern("TriggerBot", rf"trigger{_SEP}bot"),
    SignaturePattern("AimAssist", rf"aim{_SEP}assist"),
    SignaturePattern("AutoClicker", rf"auto{_SEP}clicker"),
    SignaturePattern("BowAimbot", rf"bow{_SEP}aim{_SEP}bot"),
    SignaturePattern("AntiKnockback", rf"anti{_SEP}knock{_SEP}back"),
    SignaturePattern("NoFall", rf"no{_SEP}fall(?:damage|module|hack|packet)"),
    SignaturePattern("Nuker", r"nuker"),
    SignaturePattern("velocity", rf"velocity[\s_.\-]*(?:{'|'.join(VELOCITY_SUFFIXES)})"),
    # Cheat clients and their package roots.
    SignaturePattern("MeteorClient", rf"meteor{_SEP}client|meteordevelopment"),
    SignaturePattern("Wurst", r"wurstclient|net[/.]wurst"),
    SignaturePattern("Aristois", r"aristois"),
    SignaturePattern("LiquidBounce", rf"liquid{_SEP}bounce|net[/.]ccbluex"),
    SignaturePattern("RusherHack", rf"rusher{_SEP}hack"),
    SignaturePattern("ThunderHack", rf"thunder{_SEP}hack"),
    SignaturePattern("BleachHack", rf"bleach{_SEP}hack"),
    SignaturePattern("ImpactClient", rf"impact{_SEP}client"),
    # Known malware families and droppers.
    SignaturePattern("fractureiser", r"fractureiser"),
    SignaturePattern("NekoClient", rf"neko{_SEP}client|dev[/.]neko[/.]nekoinjector"),
    SignaturePattern("Skyrage", r"skyrage"),
    SignaturePattern("TokenGrabber", rf"token{_SEP}grabber|token{_SEP}logger"),
    SignaturePattern("DiscordWebhook", r"discord(?:app)?\.com/api/webhooks"),
    SignaturePattern("SessionStealer", rf"session{_SEP}stealer"),
    # Native obfuscators favoured by paid clients.
    SignaturePattern("JNIC", r"dev[/.]jnic[/.]"),
)


@dataclass(frozen=True)
class SignatureCorpus:
    """Compiled signature table, built once and shared read-only between scanners."""

    patterns: Tuple[Tuple[str, re.Pattern[str]], ...]
    combined: re.Pattern[str]

    def token_for_group(self, group_name: str) -> str:
        return self.patterns[int(group_name[1:])][0]

    @property
    def tokens(self) -> Tuple[str, ...]:
        return tuple(token for token, _ in self.patterns)


def compile_corpus(signatures: Iterable[SignaturePattern] = DEFAULT_SIGNATURES) -> SignatureCorpus:
    """Compile every signature individually and as one alternation.

    Raises:
        CorpusCompileError: if any pattern is invalid or the corpus is empty.
    """
    compiled = []
    alternatives = []
    try:
        for index, signature in enumerate(signatures):
            compiled.append((signature.token, re.compile(signature.pattern, re.IGNORECASE)))
            alternatives.append(f"(?P<p{index}>{signature.pattern})")
        if not compiled:
            raise CorpusCompileError("Signature corpus is empty")
        combined = re.compile("|".join(alternatives), re.IGNORECASE)
    except re.error as exc:
        raise CorpusCompileError(f"Signature corpus failed to compile: {exc}") from exc
    return SignatureCorpus(patterns=tuple(compiled), combined=combined)


@lru_cache(maxsize=None)
def default_corpus() -> SignatureCorpus:
    return compile_corpus(DEFAULT_SIGNATURES)


class SignatureScanner:
    """Match the signature corpus against archive content.

    The shallow pass looks at the archive as one blob of text and runs on
    every archive. The deep pass opens the zip and inspects entry names and
    the text of class, json and manifest entries; the pipeline only runs it
    for archives without a registry identity.
    """

    def __init__(
        self,
        corpus: SignatureCorpus,
        *,
        max_entry_bytes: int = _DEFAULT_MAX_ENTRY_BYTES,
        prefer_strings_utility: bool = True,
        strings_timeout: float = 10.0,
    ) -> None:
        self.corpus = corpus
        self.max_entry_bytes = max_entry_bytes
        self.strings_timeout = strings_timeout
        self._strings_path = shutil.which("strings") if prefer_strings_utility else None

    def scan(self, record: ArchiveRecord, data: bytes, *, deep: bool) -> Optional[SignatureFinding]:
        tokens = self.shallow_scan(record, data)
        if deep:
            tokens |= self.deep_scan(record, data)
        if not tokens:
            return None
        return SignatureFinding(archive=record.path, tokens=frozenset(tokens))

    def shallow_scan(self, record: ArchiveRecord, data: bytes) -> Set[str]:
        text = self._extract_strings(record) or data.decode("latin-1")
        return self.match_text(text)

    def match_text(self, text: str) -> Set[str]:
        return {token for token, pattern in self.corpus.patterns if pattern.search(text)}

    def deep_scan(self, record: ArchiveRecord, data: bytes) -> Set[str]:
        tokens: Set[str] = set()
        try:
            with open_zip(data) as archive_zip:
                for name, info in iter_entries(archive_zip):
                    self._collect(name, tokens)
                    if not _has_textual_content(name):
                        continue
                    if info.file_size > self.max_entry_bytes:
                        logger.debug("%s: %s too large for content scan", record.filename, name)
                        continue
                    self._collect(read_entry_bytes(archive_zip, info).decode("latin-1"), tokens)
        except ArchiveReadError as exc:
            logger.warning("Deep scan aborted for %s: %s", record.filename, exc)
            return set()
        return tokens

    def _collect(self, text: str, tokens: Set[str]) -> None:
        for match in self.corpus.combined.finditer(text):
            if match.lastgroup:
                tokens.add(self.corpus.token_for_group(match.lastgroup))

    def _extract_strings(self, record: ArchiveRecord) -> str:
        if self._strings_path is None:
            return ""
        try:
            completed = subprocess.run(
                [self._strings_path, "-a", str(record.path)],
                capture_output=True,
                timeout=self.strings_timeout,
                check=True,
            )
        except (subprocess.SubprocessError, OSError) as exc:
            logger.debug("strings failed for %s, decoding raw bytes instead: %s", record.filename, exc)
            return ""
        return completed.stdout.decode("latin-1")


def _has_textual_content(name: str) -> bool:
    return name.lower().endswith(_CONTENT_SUFFIXES) or name == _PACKAGING_MANIFEST
