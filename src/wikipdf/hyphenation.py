"""Soft-hyphen insertion for rendered HTML."""

from __future__ import annotations

import functools
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

LOG = logging.getLogger("wikipdf")

DICTIONARY_ENV = "WIKIPDF_HYPHEN_DICTIONARY"
DEFAULT_DICTIONARY_NAME = "hyph_de_DE.dic"
DEFAULT_MIN_WORD_LENGTH = 3
SOFT_HYPHEN = "&shy;"
BREAK_MARKER = "="
PLACEHOLDER_PREFIX = "\ue000WIKIPDF_PROTECTED_"
PLACEHOLDER_SUFFIX = "\ue001"

WORD_LETTERS = "A-Za-zÄÖÜäöüß"

STYLE_SCRIPT_RE = re.compile(r"<(style|script)\b[^>]*>.*?</\1\s*>", re.DOTALL | re.IGNORECASE)
TABLE_TAG_RE = re.compile(r"<(/?)table\b[^>]*>", re.IGNORECASE)
# The caption wrapper always closes on the line it opens; nested spans may precede its close.
CAPTION_BLOCK_RE = re.compile(r"<span class=\"table-caption\">[^\n]*</span>", re.IGNORECASE)
ENTITY_RE = r"&(?:#[0-9]+|#[xX][0-9A-Fa-f]+|[A-Za-z][A-Za-z0-9]*);"
TAG_RE = r"<[^>]+>"

Lookup = Callable[[str], Optional[str]]


@dataclass
class HyphenationConfig:
    dictionary_path: Optional[Path] = None
    min_word_length: int = DEFAULT_MIN_WORD_LENGTH
    blacklist: Tuple[str, ...] = field(default_factory=tuple)
    protect_tables: bool = True


@dataclass
class Segment:
    kind: str
    text: str


def default_dictionary_path() -> Path:
    override = os.environ.get(DICTIONARY_ENV)
    if override is not None and override.strip():
        return Path(override.strip()).expanduser()
    return Path(__file__).resolve().parent / "dictionaries" / DEFAULT_DICTIONARY_NAME


def _bundled_dictionary_path() -> Optional[Path]:
    try:
        import pyphen  # type: ignore
    except Exception:
        return None
    bundled = pyphen.LANGUAGES.get("de_DE")
    return Path(bundled) if bundled else None


def resolve_dictionary_path(path: Optional[Path] = None) -> Path:
    """Return the dictionary to load.

    An explicit path or ``WIKIPDF_HYPHEN_DICTIONARY`` is used as given. Otherwise
    the package-local ``dictionaries/hyph_de_DE.dic`` wins when present, and the
    German dictionary bundled with pyphen is used when it is not.
    """
    if path is not None:
        return Path(path)
    local = default_dictionary_path()
    if os.environ.get(DICTIONARY_ENV, "").strip() or local.is_file():
        return local
    bundled = _bundled_dictionary_path()
    return bundled if bundled is not None else local


def _load_pyphen_lookup(path: Path) -> Lookup:
    try:
        import pyphen  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"pyphen not available: {exc}") from exc

    if not path.is_file():
        raise FileNotFoundError(f"Hyphenation dictionary not found: {path}")

    dic = pyphen.Pyphen(filename=str(path))

    def lookup(word: str) -> Optional[str]:
        hyphenated = dic.inserted(word, hyphen=BREAK_MARKER)
        if not hyphenated or BREAK_MARKER not in hyphenated:
            return None
        return hyphenated

    return lookup


class DictionaryHandle:
    """Lazily loaded, process-wide hyphenation dictionary.

    The loader runs at most once; a failed load is remembered so the engine
    stays in pass-through mode without retrying on every document.
    """

    def __init__(self, path: Optional[Path] = None, loader: Optional[Callable[[Path], Lookup]] = None) -> None:
        self._path = path
        self._loader = loader or _load_pyphen_lookup
        self._lock = threading.Lock()
        self._initialized = False
        self._lookup: Optional[Lookup] = None
        self._error: Optional[str] = None

    @property
    def path(self) -> Path:
        return resolve_dictionary_path(self._path)

    @property
    def error(self) -> Optional[str]:
        return self._error

    def _ensure_loaded(self, logger: logging.Logger) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            path = self.path
            try:
                self._lookup = self._loader(path)
                logger.debug("Loaded hyphenation dictionary: %s", path)
            except Exception as exc:
                self._lookup = None
                self._error = str(exc)
                logger.error("Unable to load hyphenation dictionary %s: %s", path, exc)
            self._initialized = True

    def get_lookup(self, logger: Optional[logging.Logger] = None) -> Optional[Lookup]:
        self._ensure_loaded(logger or LOG)
        return self._lookup

    def lookup(self, word: str) -> Optional[str]:
        fn = self.get_lookup()
        if fn is None:
            return None
        return fn(word)


_HANDLES: Dict[Optional[Path], DictionaryHandle] = {}
_HANDLES_LOCK = threading.Lock()


def get_dictionary_handle(path: Optional[Path] = None) -> DictionaryHandle:
    key = Path(path) if path is not None else None
    handle = _HANDLES.get(key)
    if handle is None:
        with _HANDLES_LOCK:
            handle = _HANDLES.get(key)
            if handle is None:
                handle = DictionaryHandle(key)
                _HANDLES[key] = handle
    return handle


def reset_dictionary_handles() -> None:
    with _HANDLES_LOCK:
        _HANDLES.clear()


class _ProtectedBlocks:
    def __init__(self, html: str) -> None:
        prefix = PLACEHOLDER_PREFIX
        while prefix in html:
            prefix += PLACEHOLDER_PREFIX[0]
        self.prefix = prefix
        self.suffix = PLACEHOLDER_SUFFIX
        self.blocks: List[str] = []
        self.pattern = re.compile(re.escape(self.prefix) + r"[0-9]+" + re.escape(self.suffix))

    def token(self, index: int) -> str:
        return f"{self.prefix}{index}{self.suffix}"

    def protect(self, pattern: re.Pattern, html: str) -> str:
        def repl(match: re.Match) -> str:
            self.blocks.append(match.group(0))
            return self.token(len(self.blocks) - 1)

        return pattern.sub(repl, html)

    def protect_spans(self, spans: List[Tuple[int, int]], html: str) -> str:
        parts: List[str] = []
        pos = 0
        for start, end in spans:
            parts.append(html[pos:start])
            self.blocks.append(html[start:end])
            parts.append(self.token(len(self.blocks) - 1))
            pos = end
        parts.append(html[pos:])
        return "".join(parts)

    def restore(self, html: str) -> Optional[str]:
        # Later blocks may contain earlier tokens (a table holding a blacklisted term).
        for index in range(len(self.blocks) - 1, -1, -1):
            token = self.token(index)
            if html.count(token) != 1:
                return None
            html = html.replace(token, self.blocks[index])
        return html


def _blacklist_pattern(term: str) -> re.Pattern:
    # Only whole words outside of tags; tag and attribute names stay intact.
    return re.compile(rf"(?<!\w){re.escape(term)}(?!\w)(?![^<>]*>)", re.IGNORECASE)


def _table_spans(html: str) -> List[Tuple[int, int]]:
    """Outermost ``<table>…</table>`` ranges, honouring nested tables."""
    spans: List[Tuple[int, int]] = []
    depth = 0
    start = 0
    for match in TABLE_TAG_RE.finditer(html):
        if match.group(1):
            if depth == 0:
                continue
            depth -= 1
            if depth == 0:
                spans.append((start, match.end()))
        else:
            if depth == 0:
                start = match.start()
            depth += 1
    return spans


def tokenize_html(html: str, placeholder_re: Optional[re.Pattern] = None) -> List[Segment]:
    alternatives = [f"(?P<tag>{TAG_RE})", f"(?P<entity>{ENTITY_RE})"]
    if placeholder_re is not None:
        alternatives.append(f"(?P<protected>{placeholder_re.pattern})")
    splitter = re.compile("|".join(alternatives))

    segments: List[Segment] = []
    pos = 0
    for match in splitter.finditer(html):
        if match.start() > pos:
            segments.append(Segment("text", html[pos : match.start()]))
        segments.append(Segment(match.lastgroup or "tag", match.group(0)))
        pos = match.end()
    if pos < len(html):
        segments.append(Segment("text", html[pos:]))
    return segments


@functools.lru_cache(maxsize=None)
def _word_pattern(min_word_length: int) -> re.Pattern:
    return re.compile(rf"\b([{WORD_LETTERS}]{{{max(1, min_word_length)},}})\b")


def hyphenate_text(text: str, lookup: Lookup, min_word_length: int = DEFAULT_MIN_WORD_LENGTH) -> str:
    word_re = _word_pattern(int(min_word_length))

    def repl(match: re.Match) -> str:
        word = match.group(1)
        hyphenated = lookup(word)
        if not hyphenated:
            return word
        if hyphenated.replace(BREAK_MARKER, "") != word:
            return word
        return hyphenated.replace(BREAK_MARKER, SOFT_HYPHEN)

    return word_re.sub(repl, text)


def insert_soft_hyphens(
    html: str,
    *,
    config: Optional[HyphenationConfig] = None,
    lookup: Optional[Lookup] = None,
    handle: Optional[DictionaryHandle] = None,
    logger: Optional[logging.Logger] = None,
) -> str:
    """Insert ``&shy;`` break points into the running text of ``html``.

    Markup, character entities, ``<style>``/``<script>`` elements, blacklisted
    terms and (with ``protect_tables``) tables and caption spans are passed
    through byte for byte. Without a usable dictionary the input is returned
    unchanged.
    """
    if html is None:
        raise TypeError("html must be a string, not None")
    log = logger or LOG
    cfg = config or HyphenationConfig()

    if lookup is None:
        if handle is None:
            handle = get_dictionary_handle(cfg.dictionary_path)
        lookup = handle.get_lookup(log)
        if lookup is None:
            log.debug("Hyphenation skipped: no dictionary available")
            return html

    protected = _ProtectedBlocks(html)
    work = protected.protect(STYLE_SCRIPT_RE, html)
    for term in cfg.blacklist:
        if term and term.strip():
            work = protected.protect(_blacklist_pattern(term.strip()), work)
    if cfg.protect_tables:
        work = protected.protect_spans(_table_spans(work), work)
        work = protected.protect(CAPTION_BLOCK_RE, work)

    parts: List[str] = []
    for segment in tokenize_html(work, protected.pattern):
        if segment.kind == "text":
            parts.append(hyphenate_text(segment.text, lookup, cfg.min_word_length))
        else:
            parts.append(segment.text)

    restored = protected.restore("".join(parts))
    if restored is None:
        log.error("Hyphenation placeholder mismatch; returning HTML unchanged")
        return html
    return restored
