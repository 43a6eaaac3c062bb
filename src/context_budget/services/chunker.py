"""Structure-aware chunking of oversized documents.

Documents are cut at headings first, then at paragraph breaks, then at line
breaks — never inside a line.  Adjacent small pieces are merged back together
greedily so fragments use their budget well.  Every fragment carries a short
header restating the document name and section title so it still reads on
its own.

Fragment ``content`` is always an exact slice of the parent: joining the
fragments of a document in ``sequence_index`` order gives back the original
text byte for byte.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from context_budget.domain.entities import CandidateDocument, ChunkedFragment
from context_budget.services.token_estimator import TokenEstimator

logger = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+\S")
_FENCE_RE = re.compile(r"^\s{0,3}(```|~~~)")

# Worst-case part number used when sizing pieces before numbering is known
_PART_PLACEHOLDER = 99_999
_MAX_HEADER_TITLE = 60


@dataclass(frozen=True, slots=True)
class Section:
    """A heading (or the preamble before the first heading) and its lines."""

    title: str
    lines: list[str]

    @property
    def text(self) -> str:
        return "".join(self.lines)

    @property
    def heading(self) -> str | None:
        if self.lines and _HEADING_RE.match(self.lines[0]):
            return self.lines[0].rstrip("\n")
        return None

    @property
    def body(self) -> str:
        return "".join(self.lines[1:] if self.heading is not None else self.lines)


def split_sections(text: str) -> list[Section]:
    """Split markdown-ish *text* at heading lines (outside code fences)."""
    sections: list[Section] = []
    title = ""
    current: list[str] = []
    in_fence = False

    for line in text.splitlines(keepends=True):
        if _FENCE_RE.match(line):
            in_fence = not in_fence
        elif not in_fence and _HEADING_RE.match(line):
            if current:
                sections.append(Section(title=title, lines=current))
            current = []
            title = line.strip().lstrip("#").strip()
        current.append(line)

    if current:
        sections.append(Section(title=title, lines=current))
    return sections


def split_paragraphs(lines: list[str]) -> list[list[str]]:
    """Group lines into paragraphs; trailing blank lines stay with their paragraph."""
    paragraphs: list[list[str]] = []
    current: list[str] = []
    for line in lines:
        if current and line.strip() and not current[-1].strip():
            paragraphs.append(current)
            current = []
        current.append(line)
    if current:
        paragraphs.append(current)
    return paragraphs


@dataclass(slots=True)
class _Piece:
    text: str
    title: str
    tokens: int
    oversized: bool = False


@dataclass(frozen=True, slots=True)
class ChunkResult:
    """Fragments of one document plus any unsplittable overflow."""

    document_id: str
    fragments: list[ChunkedFragment] = field(default_factory=list)

    @property
    def overflow_fragments(self) -> list[ChunkedFragment]:
        return [f for f in self.fragments if f.over_budget]


class ChunkingEngine:
    """Split documents into fragments that each fit ``max_fragment_tokens``."""

    def __init__(self, estimator: TokenEstimator) -> None:
        self._estimator = estimator

    # ── Public API ──────────────────────────────────────────────────────

    def split(self, document: CandidateDocument, max_fragment_tokens: int) -> ChunkResult:
        """Return the ordered fragments of *document*.

        A single line that exceeds the budget on its own is emitted as an
        ``over_budget`` fragment instead of being dropped.
        """
        if not document.content:
            return ChunkResult(document_id=document.id)

        max_fragment_tokens = max(1, max_fragment_tokens)
        with_headers = self._header_cost(document.name, "", _PART_PLACEHOLDER) * 2 < max_fragment_tokens

        pieces: list[_Piece] = []
        for section in split_sections(document.content):
            budget = self._content_budget(document.name, section.title, max_fragment_tokens, with_headers)
            pieces.extend(self._decompose(section, budget))

        fragments = self._merge(document, pieces, max_fragment_tokens, with_headers)
        result = ChunkResult(document_id=document.id, fragments=fragments)

        if result.overflow_fragments:
            logger.warning(
                "Document %s has %d line(s) larger than the %d-token fragment budget",
                document.id,
                len(result.overflow_fragments),
                max_fragment_tokens,
            )
        logger.debug(
            "Split %s into %d fragment(s) (max %d tokens each)",
            document.id,
            len(fragments),
            max_fragment_tokens,
        )
        return result

    # ── Decomposition ───────────────────────────────────────────────────

    def _decompose(self, section: Section, budget: int) -> list[_Piece]:
        """Section → paragraphs → lines, stopping at the first level that fits."""
        text = section.text
        tokens = self._estimator.estimate(text)
        if tokens <= budget:
            return [_Piece(text=text, title=section.title, tokens=tokens)]

        pieces: list[_Piece] = []
        for paragraph in split_paragraphs(section.lines):
            para_text = "".join(paragraph)
            para_tokens = self._estimator.estimate(para_text)
            if para_tokens <= budget:
                pieces.append(_Piece(text=para_text, title=section.title, tokens=para_tokens))
                continue
            for line in paragraph:
                line_tokens = self._estimator.estimate(line)
                pieces.append(
                    _Piece(
                        text=line,
                        title=section.title,
                        tokens=line_tokens,
                        oversized=line_tokens > budget,
                    )
                )
        return pieces

    # ── Merging ─────────────────────────────────────────────────────────

    def _merge(
        self,
        document: CandidateDocument,
        pieces: list[_Piece],
        max_fragment_tokens: int,
        with_headers: bool,
    ) -> list[ChunkedFragment]:
        fragments: list[ChunkedFragment] = []
        current: list[_Piece] = []
        current_tokens = 0

        def flush(over_budget: bool = False) -> None:
            nonlocal current, current_tokens
            if not current:
                return
            index = len(fragments)
            title = current[0].title
            header = self._header(document.name, title, index + 1) if with_headers else ""
            content = "".join(p.text for p in current)
            estimated = self._estimator.estimate(f"{header}\n{content}" if header else content)
            fragments.append(
                ChunkedFragment(
                    parent_document_id=document.id,
                    sequence_index=index,
                    content=content,
                    context_header=header,
                    section_title=title,
                    estimated_tokens=estimated,
                    over_budget=over_budget or estimated > max_fragment_tokens,
                )
            )
            current = []
            current_tokens = 0

        for piece in pieces:
            if piece.oversized:
                flush()
                current = [piece]
                flush(over_budget=True)
                continue

            title = current[0].title if current else piece.title
            allowed = self._content_budget(document.name, title, max_fragment_tokens, with_headers)
            if current and current_tokens + piece.tokens > allowed:
                flush()
            current.append(piece)
            current_tokens += piece.tokens

        flush()
        return fragments

    # ── Headers ─────────────────────────────────────────────────────────

    @staticmethod
    def _header(name: str, title: str, part: int) -> str:
        title = title if len(title) <= _MAX_HEADER_TITLE else title[: _MAX_HEADER_TITLE - 1] + "…"
        if title:
            return f"[{name} § {title} · part {part}]"
        return f"[{name} · part {part}]"

    def _header_cost(self, name: str, title: str, part: int) -> int:
        # Rendered as header + "\n" + content
        return self._estimator.estimate(self._header(name, title, part) + "\n")

    def _content_budget(
        self, name: str, title: str, max_fragment_tokens: int, with_headers: bool
    ) -> int:
        if not with_headers:
            return max_fragment_tokens
        return max(1, max_fragment_tokens - self._header_cost(name, title, _PART_PLACEHOLDER))
