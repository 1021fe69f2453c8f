"""Core pipeline for wikipdf."""

from __future__ import annotations

import enum
import logging
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from .hyphenation import DICTIONARY_ENV, HyphenationConfig, insert_soft_hyphens

LOG = logging.getLogger("wikipdf")

MIN_LEN_ENV = "WIKIPDF_HYPHEN_MIN_LEN"
BLACKLIST_ENV = "WIKIPDF_HYPHEN_BLACKLIST"
DISABLE_HYPHENATION_ENV = "WIKIPDF_DISABLE_HYPHENATION"
DISABLE_CAPTIONS_ENV = "WIKIPDF_DISABLE_CAPTIONS"

LINE_BREAK = "<br>"
PAGE_BREAK = "<div style='page-break-before: always;'></div>"
CAPTION_OPEN = '<span class="table-caption">'
CAPTION_CLOSE = "</span>"
CODE_FENCE = "```"
TOC_MARKERS = ("[TOC]", "[[_TOC_]]")
MAX_HEADLINE_LEVEL = 6

# "#" runs followed by a non-space character; digits are work-item references.
HEADLINE_SPACING_RE = re.compile(r"^(#+)(?![\d#])(\S)(.*)$")
WORK_ITEM_RE = re.compile(r"^#+\d")
HTML_TABLE_START = "<table"
HTML_HEADING_RE = re.compile(r"^<h[1-6]\b", re.IGNORECASE)
HTML_BLOCK_RE = re.compile(r"^</?(div|table|ul|ol|pre|blockquote)\b", re.IGNORECASE)
HTML_BLANK_MARKER = "<br></p>"


@dataclass
class PipelineConfig:
    hyphenate: bool = True
    insert_captions: bool = True
    hyphenation: HyphenationConfig = field(default_factory=HyphenationConfig)
    verbose: bool = False
    debug: bool = False


class LineKind(enum.Enum):
    CODE_FENCE = "code-fence"
    TABLE_ROW = "table-row"
    BLANK = "blank"
    HEADLINE = "headline"
    TOC_MARKER = "toc-marker"
    TEXT = "text"


@dataclass(frozen=True)
class NormalizerState:
    in_code_block: bool = False
    in_table: bool = False
    table_has_caption: bool = False
    top_level_open: bool = False
    toc_seen: bool = False


def _env_flag_enabled(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "off", "no"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid value for {name}: {raw!r} is not an integer") from exc
    if value <= 0:
        raise ValueError(f"Invalid value for {name}: must be > 0")
    return value


def load_config_from_env(verbose: bool = False, debug: bool = False) -> PipelineConfig:
    dictionary = os.environ.get(DICTIONARY_ENV)
    blacklist_raw = os.environ.get(BLACKLIST_ENV) or ""
    blacklist = tuple(term.strip() for term in blacklist_raw.split(",") if term.strip())
    hyphenation = HyphenationConfig(
        dictionary_path=Path(dictionary.strip()).expanduser() if dictionary and dictionary.strip() else None,
        min_word_length=_env_int(MIN_LEN_ENV, HyphenationConfig().min_word_length),
        blacklist=blacklist,
    )
    return PipelineConfig(
        hyphenate=not _env_flag_enabled(os.environ.get(DISABLE_HYPHENATION_ENV)),
        insert_captions=not _env_flag_enabled(os.environ.get(DISABLE_CAPTIONS_ENV)),
        hyphenation=hyphenation,
        verbose=verbose,
        debug=debug,
    )


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_wikipdf_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_wikipdf_logger(level)


# --- markdown normalizer -----------------------------------------------------


def is_code_fence(line: str) -> bool:
    return line.strip().startswith(CODE_FENCE)


def is_table_row(line: str) -> bool:
    stripped = line.rstrip()
    return stripped.startswith("|") and stripped.endswith("|")


def is_headline(line: str) -> bool:
    trimmed = line.strip()
    return trimmed.startswith("#") and not WORK_ITEM_RE.match(trimmed)


def has_toc_marker(line: str) -> bool:
    return any(marker in line for marker in TOC_MARKERS)


def get_headline_level(line: str) -> int:
    if not is_headline(line):
        return 0
    trimmed = line.strip()
    level = len(trimmed) - len(trimmed.lstrip("#"))
    return min(level, MAX_HEADLINE_LEVEL)


def classify_line(line: str) -> LineKind:
    if is_code_fence(line):
        return LineKind.CODE_FENCE
    if not line.strip():
        return LineKind.BLANK
    if has_toc_marker(line):
        return LineKind.TOC_MARKER
    if is_table_row(line):
        return LineKind.TABLE_ROW
    if is_headline(line):
        return LineKind.HEADLINE
    return LineKind.TEXT


def fix_headline_spacing(markdown: str) -> str:
    lines = markdown.split("\n")
    in_code_block = False
    output: List[str] = []
    for line in lines:
        if is_code_fence(line):
            in_code_block = not in_code_block
            output.append(line)
            continue
        output.append(line if in_code_block else HEADLINE_SPACING_RE.sub(r"\1 \2\3", line))
    return "\n".join(output)


def _is_decorated(state: NormalizerState, line: str) -> bool:
    return (
        not state.in_code_block
        and not state.in_table
        and bool(line.strip())
        and not has_toc_marker(line)
    )


def next_state(state: NormalizerState, line: str) -> NormalizerState:
    """Return the scan state after ``line`` has been consumed.

    ``table_has_caption`` is only cleared here; the scan driver sets it once
    the caption rewrite has actually happened.
    """
    kind = classify_line(line)

    if kind is LineKind.CODE_FENCE:
        return replace(state, in_code_block=not state.in_code_block, in_table=False, table_has_caption=False)
    if state.in_code_block:
        return state

    if kind is LineKind.TOC_MARKER:
        state = replace(state, toc_seen=True)

    if kind is LineKind.TABLE_ROW:
        state = replace(state, in_table=True)
    elif state.in_table and kind is not LineKind.BLANK:
        state = replace(state, in_table=False, table_has_caption=False)

    if kind is LineKind.HEADLINE and not state.toc_seen and _is_decorated(state, line):
        state = replace(state, top_level_open=get_headline_level(line) > 1)
    return state


class _LineBuilder:
    """Append-only output with the last emitted line held back for rewrites."""

    def __init__(self) -> None:
        self._lines: List[str] = []
        self._last: Optional[str] = None

    @property
    def last(self) -> Optional[str]:
        return self._last

    def emit(self, line: str) -> None:
        if self._last is not None:
            self._lines.append(self._last)
        self._last = line

    def rewrite_last(self, line: str) -> None:
        self._last = line

    def build(self) -> str:
        lines = list(self._lines)
        if self._last is not None:
            lines.append(self._last)
        return "\n".join(lines)


def _is_caption_candidate(line: Optional[str]) -> bool:
    if line is None or not line.strip():
        return False
    if CAPTION_OPEN in line:
        return False
    return classify_line(line) is LineKind.TEXT


def _wrap_caption(line: str) -> str:
    return f"{CAPTION_OPEN}{line}{CAPTION_CLOSE}"


def normalize_markdown_with_state(markdown: str, top_level_open: bool = False) -> Tuple[str, bool]:
    if markdown is None:
        raise TypeError("markdown must be a string, not None")

    lines = [line.rstrip() for line in fix_headline_spacing(markdown).split("\n")]
    state = NormalizerState(top_level_open=top_level_open)
    builder = _LineBuilder()

    for idx, line in enumerate(lines):
        next_line = lines[idx + 1] if idx + 1 < len(lines) else ""
        previous = state
        state = next_state(previous, line)

        if previous.in_code_block or is_code_fence(line):
            builder.emit(line)
            continue

        if state.in_table and not previous.in_table:
            if _is_caption_candidate(builder.last):
                builder.rewrite_last(_wrap_caption(builder.last or ""))
                state = replace(state, table_has_caption=True)
            if builder.last is not None and builder.last.strip():
                builder.emit("")
            builder.emit(line)
            continue

        decorated = _is_decorated(state, line)
        if decorated and is_headline(line) and not state.toc_seen:
            if get_headline_level(line) == 1 and previous.top_level_open:
                builder.emit(PAGE_BREAK)
                builder.emit("")

        opens_table = is_table_row(next_line) and not state.in_table
        builder.emit(f"{line}{LINE_BREAK}" if decorated and not opens_table else line)

    return builder.build(), state.top_level_open


def normalize_markdown(markdown: str) -> str:
    """Rewrite Azure DevOps wiki markdown for HTML/PDF rendering.

    Adds the space after ``#`` in headlines (work items such as ``#123`` are
    left alone), appends ``<br>`` to text lines outside code blocks, tables
    and TOC markers, marks the line directly above a table as its caption and
    inserts a page break before a top-level headline that closes a section
    with sub-headings.
    """
    text, _ = normalize_markdown_with_state(markdown)
    return text


def normalize_markdown_pages(pages: Iterable[str], top_level_open: bool = False) -> Tuple[List[str], bool]:
    output: List[str] = []
    for page in pages:
        text, top_level_open = normalize_markdown_with_state(page, top_level_open)
        output.append(text)
    return output, top_level_open


# --- html caption post-processor -------------------------------------------


def _html_caption_index(lines: List[str]) -> Optional[int]:
    idx = len(lines) - 1
    while idx >= 0 and not lines[idx].strip():
        idx -= 1
    return idx if idx >= 0 else None


def _skip_html_caption(line: str, respect_blank_markers: bool) -> bool:
    if CAPTION_OPEN in line:
        return True
    trimmed = line.lstrip()
    if HTML_HEADING_RE.match(trimmed):
        return True
    if HTML_BLOCK_RE.match(trimmed):
        return True
    if respect_blank_markers and line.rstrip().endswith(HTML_BLANK_MARKER):
        return True
    return False


def insert_table_captions(html: str, *, respect_blank_markers: bool = True) -> str:
    if html is None:
        raise TypeError("html must be a string, not None")

    output: List[str] = []
    for line in html.split("\n"):
        if line.lstrip().startswith(HTML_TABLE_START):
            idx = _html_caption_index(output)
            if idx is not None and not _skip_html_caption(output[idx], respect_blank_markers):
                output[idx] = _wrap_caption(output[idx])
        output.append(line)
    return "\n".join(output)


# --- pipeline ----------------------------------------------------------------


Renderer = Callable[[str], str]


def _render(render: Renderer, markdown: str) -> str:
    try:
        html = render(markdown)
    except Exception as exc:
        raise RuntimeError(f"Markdown rendering failed: {exc}") from exc
    if not isinstance(html, str):
        raise RuntimeError(f"Markdown renderer returned {type(html).__name__}, expected str")
    return html


def postprocess_html(html: str, config: Optional[PipelineConfig] = None) -> str:
    cfg = config or PipelineConfig()
    if cfg.insert_captions:
        html = insert_table_captions(html)
    elif cfg.verbose:
        LOG.info("Table captions disabled; HTML captions not inserted.")
    if cfg.hyphenate:
        html = insert_soft_hyphens(html, config=cfg.hyphenation, logger=LOG)
    elif cfg.verbose:
        LOG.info("Hyphenation disabled; soft hyphens not inserted.")
    return html


def run_pipeline(markdown: str, render: Renderer, config: Optional[PipelineConfig] = None) -> str:
    html, _ = _run_page(markdown, render, config or PipelineConfig(), False)
    return html


def _run_page(markdown: str, render: Renderer, config: PipelineConfig, top_level_open: bool) -> Tuple[str, bool]:
    normalized, top_level_open = normalize_markdown_with_state(markdown, top_level_open)
    LOG.debug("Normalized markdown (%d chars -> %d chars)", len(markdown), len(normalized))
    html = _render(render, normalized)
    return postprocess_html(html, config), top_level_open


def export_pages(pages: Iterable[str], render: Renderer, config: Optional[PipelineConfig] = None) -> List[str]:
    cfg = config or PipelineConfig()
    page_list = list(pages)
    outputs: List[str] = []
    top_level_open = False
    for idx, page in enumerate(page_list, start=1):
        html, top_level_open = _run_page(page, render, cfg, top_level_open)
        outputs.append(html)
        if cfg.verbose:
            LOG.info("Processed page [%d/%d]", idx, len(page_list))
    return outputs
