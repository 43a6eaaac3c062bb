"""Multi-technique document compression.

Every technique returns a :class:`CompressedSurrogate` whose estimate stays
within ``target_tokens × slack``.  Anything that overshoots is hard-truncated
once; there is no retry loop.

The AI-assisted technique is the only one with a failure mode.  It reports
failure as a :class:`CompressionFailure` value, and :meth:`Compressor.compress`
degrades such failures to the structural summary, recording the failure on
the surrogate it returns.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import Counter
from typing import Callable

from context_budget.domain.entities import (
    CandidateDocument,
    CompressedSurrogate,
    CompressionFailure,
    CompressionTechnique,
    FailureReason,
    PriorityClass,
)
from context_budget.domain.exceptions import TextGenerationError
from context_budget.domain.ports.text_generator import TextGenerator
from context_budget.services.chunker import split_sections
from context_budget.services.redaction import redact
from context_budget.services.token_estimator import TokenEstimator, truncate_to_budget

logger = logging.getLogger(__name__)

# ── Constants ───────────────────────────────────────────────────────────────

DEFAULT_SLACK = 1.1
DEFAULT_AI_TIMEOUT_SECONDS = 20.0

_MAX_KEYWORDS = 20
_MAX_KEY_SENTENCES = 10
_MIN_SENTENCE_TOKENS = 10
_MAX_SENTENCE_TOKENS = 200
_MAX_TEMPLATE_SECTIONS = 5
_SECTION_PREVIEW_CHARS = 100

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")
_WORD_RE = re.compile(r"[a-z0-9][a-z0-9'\-]*")
_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+")

_STOP_WORDS: frozenset[str] = frozenset(
    {
        "about", "above", "after", "again", "against", "also", "been", "before",
        "being", "below", "between", "both", "could", "does", "doing", "down",
        "during", "each", "from", "further", "have", "having", "here", "hers",
        "herself", "himself", "into", "itself", "just", "more", "most", "must",
        "myself", "only", "other", "ourselves", "over", "same", "shall", "should",
        "some", "such", "than", "that", "their", "theirs", "them", "themselves",
        "then", "there", "these", "they", "this", "those", "through", "under",
        "until", "very", "were", "what", "when", "where", "which", "while", "whom",
        "will", "with", "would", "your", "yours", "yourself", "yourselves",
    }
)

_AI_TIERS = frozenset({PriorityClass.CRITICAL, PriorityClass.HIGH})


# ── Text helpers ────────────────────────────────────────────────────────────


def split_sentences(text: str) -> list[str]:
    """Line-aware sentence split; list markers are dropped, blank lines ignored."""
    sentences: list[str] = []
    for line in text.splitlines():
        line = _LIST_MARKER_RE.sub("", line).strip()
        if not line or line.startswith("#"):
            continue
        sentences.extend(s.strip() for s in _SENTENCE_END_RE.split(line) if s.strip())
    return sentences


def extract_keywords(text: str, limit: int = _MAX_KEYWORDS) -> list[tuple[str, int]]:
    """Most frequent words longer than three characters, stop-words excluded.

    Ties are broken alphabetically so the output is deterministic.
    """
    counts = Counter(
        word
        for word in _WORD_RE.findall(text.lower())
        if len(word) > 3 and word not in _STOP_WORDS
    )
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]


# ── Compressor ──────────────────────────────────────────────────────────────


class Compressor:
    """Produce compression surrogates for candidate documents.

    Parameters
    ----------
    estimator:
        Token estimator shared with the rest of the run.
    text_generator:
        External summariser for ``ai-semantic-summary``; ``None`` disables it.
    ai_timeout:
        Per-call timeout in seconds for the summariser.
    slack:
        Allowed overshoot factor over the requested target.
    clock:
        Monotonic clock matching the deadlines passed to :meth:`compress`.
    """

    def __init__(
        self,
        estimator: TokenEstimator,
        text_generator: TextGenerator | None = None,
        *,
        ai_timeout: float = DEFAULT_AI_TIMEOUT_SECONDS,
        slack: float = DEFAULT_SLACK,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._estimator = estimator
        self._generator = text_generator
        self._ai_timeout = ai_timeout
        self._slack = slack
        self._clock = clock

    # ── Public API ──────────────────────────────────────────────────────

    async def compress(
        self,
        document: CandidateDocument,
        target_tokens: int,
        technique: CompressionTechnique,
        *,
        allow_ai: bool = True,
        deadline: float | None = None,
    ) -> CompressedSurrogate:
        """Compress *document* to roughly *target_tokens* with *technique*.

        ``allow_ai=False`` turns the AI technique into a plain structural
        summary (no failure recorded).  *deadline* is an absolute time on
        :attr:`clock` after which no summariser call is started.
        """
        effective = self.resolve_technique(document, technique, allow_ai=allow_ai)

        if effective is not CompressionTechnique.AI_SEMANTIC_SUMMARY:
            return self.compress_locally(
                document, target_tokens, effective, requested=technique
            )

        outcome = await self.try_semantic_summary(document, target_tokens, deadline=deadline)
        if isinstance(outcome, CompressionFailure):
            logger.warning(
                "AI summary for %s failed (%s) — using structural summary",
                document.id,
                outcome.reason.value,
            )
            return self.compress_locally(
                document,
                target_tokens,
                CompressionTechnique.STRUCTURAL_SUMMARY,
                requested=technique,
                failure=outcome,
            )
        return outcome

    def resolve_technique(
        self,
        document: CandidateDocument,
        technique: CompressionTechnique,
        *,
        allow_ai: bool = True,
    ) -> CompressionTechnique:
        """Map ``hybrid`` and disabled AI onto a concrete technique."""
        if technique is CompressionTechnique.HYBRID:
            if document.tier in _AI_TIERS:
                technique = CompressionTechnique.AI_SEMANTIC_SUMMARY
            else:
                return CompressionTechnique.KEYWORD_EXTRACTION
        if technique is CompressionTechnique.AI_SEMANTIC_SUMMARY and not allow_ai:
            return CompressionTechnique.STRUCTURAL_SUMMARY
        return technique

    def compress_locally(
        self,
        document: CandidateDocument,
        target_tokens: int,
        technique: CompressionTechnique,
        *,
        requested: CompressionTechnique | None = None,
        failure: CompressionFailure | None = None,
    ) -> CompressedSurrogate:
        """Run one of the local, always-available techniques."""
        target_tokens = max(0, target_tokens)
        if technique is CompressionTechnique.KEYWORD_EXTRACTION:
            text = self.keyword_extraction(document, target_tokens)
        elif technique is CompressionTechnique.TEMPLATE_EXTRACTION:
            text = self.template_extraction(document, target_tokens)
        else:
            technique = CompressionTechnique.STRUCTURAL_SUMMARY
            text = self.structural_summary(document, target_tokens)
        return self._finalize(document, text, target_tokens, technique, requested or technique, failure)

    async def try_semantic_summary(
        self,
        document: CandidateDocument,
        target_tokens: int,
        *,
        deadline: float | None = None,
    ) -> CompressedSurrogate | CompressionFailure:
        """Ask the external summariser; never raises."""
        if self._generator is None:
            return CompressionFailure(document.id, FailureReason.UNAVAILABLE, "no text generator configured")

        timeout = self._ai_timeout
        bounded_by_deadline = False
        if deadline is not None:
            remaining = deadline - self._now()
            if remaining <= 0:
                return CompressionFailure(document.id, FailureReason.RUN_DEADLINE, "run deadline passed")
            if remaining < timeout:
                timeout = remaining
                bounded_by_deadline = True

        redacted = redact(document.content)
        if redacted.redaction_count:
            logger.warning(
                "Redacted %d sensitive value(s) from %s before summarisation",
                redacted.redaction_count,
                document.id,
            )

        try:
            summary = await asyncio.wait_for(
                self._generator.summarize(redacted.clean_text, target_tokens, timeout=timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            reason = FailureReason.RUN_DEADLINE if bounded_by_deadline else FailureReason.TIMEOUT
            return CompressionFailure(document.id, reason, f"no response within {timeout:.1f}s")
        except TextGenerationError as exc:
            return CompressionFailure(document.id, FailureReason.ERROR, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.debug("Summariser raised for %s", document.id, exc_info=True)
            return CompressionFailure(document.id, FailureReason.ERROR, f"{type(exc).__name__}: {exc}")

        if not summary or not summary.strip():
            return CompressionFailure(document.id, FailureReason.ERROR, "empty summary")

        technique = CompressionTechnique.AI_SEMANTIC_SUMMARY
        return self._finalize(document, summary.strip(), target_tokens, technique, technique, None)

    # ── Local techniques ────────────────────────────────────────────────

    def structural_summary(self, document: CandidateDocument, target_tokens: int) -> str:
        """All headings verbatim plus the first N sentences of every section.

        N grows one sentence at a time across all sections until the next
        sentence would not fit.
        """
        sections = split_sections(document.content)
        headings = [s.heading for s in sections]
        sentences = [split_sentences(s.body) for s in sections]
        chosen: list[list[str]] = [[] for _ in sections]

        used = sum(self._estimator.estimate(h + "\n\n") for h in headings if h)
        depth = 0
        while True:
            added = False
            for index, section_sentences in enumerate(sentences):
                if depth >= len(section_sentences):
                    continue
                sentence = section_sentences[depth]
                cost = self._estimator.estimate(sentence + " ")
                if used + cost > target_tokens:
                    continue
                chosen[index].append(sentence)
                used += cost
                added = True
            if not added:
                break
            depth += 1

        blocks: list[str] = []
        for heading, picked in zip(headings, chosen):
            parts = [p for p in (heading, " ".join(picked)) if p]
            if parts:
                blocks.append("\n".join(parts))
        return "\n\n".join(blocks)

    def keyword_extraction(self, document: CandidateDocument, target_tokens: int) -> str:
        """Frequency-ranked keywords plus the most representative sentences."""
        keywords = extract_keywords(document.content)
        weights = dict(keywords)

        candidates: list[tuple[float, int, str]] = []
        for position, sentence in enumerate(split_sentences(document.content)):
            tokens = self._estimator.estimate(sentence)
            if not _MIN_SENTENCE_TOKENS <= tokens <= _MAX_SENTENCE_TOKENS:
                continue
            words = _WORD_RE.findall(sentence.lower())
            if not words:
                continue
            score = sum(weights.get(w, 0) for w in words) / len(words)
            candidates.append((score, position, sentence))

        # Best first; earlier position wins ties
        candidates.sort(key=lambda c: (-c[0], c[1]))
        selected = candidates[:_MAX_KEY_SENTENCES]
        words_only = [w for w, _ in keywords]

        def render(picked: list[tuple[float, int, str]], kw: list[str]) -> str:
            lines = [f"# {document.name} ({document.document_type})"]
            if kw:
                lines.append(f"**Keywords:** {', '.join(kw)}")
            if picked:
                lines.append("")
                lines.append("## Key Sentences")
                lines.extend(f"- {s}" for _, _, s in sorted(picked, key=lambda c: c[1]))
            return "\n".join(lines)

        text = render(selected, words_only)
        while selected and self._estimator.estimate(text) > target_tokens:
            selected = selected[:-1]
            text = render(selected, words_only)
        while words_only and self._estimator.estimate(text) > target_tokens:
            words_only = words_only[:-1]
            text = render(selected, words_only)
        return text

    def template_extraction(self, document: CandidateDocument, target_tokens: int) -> str:
        """Compact record of metadata fields and the leading key sections."""
        key_sections: list[str] = []
        for section in split_sections(document.content):
            if section.heading is None:
                continue
            preview = " ".join(section.body.split())
            if len(preview) > _SECTION_PREVIEW_CHARS:
                preview = preview[:_SECTION_PREVIEW_CHARS].rstrip() + "…"
            key_sections.append(f"- {section.title}: {preview}" if preview else f"- {section.title}")
            if len(key_sections) >= _MAX_TEMPLATE_SECTIONS:
                break

        header = [
            f"# {document.name}",
            f"**Type:** {document.document_type} | **Category:** {document.category}",
            f"**Status:** {document.status.value} | **Quality:** {document.quality_score:g}%",
            f"**Last Modified:** {document.last_modified.isoformat()}",
        ]

        def render(sections: list[str]) -> str:
            if not sections:
                return "\n".join(header)
            return "\n".join([*header, "", "## Key Sections", *sections])

        text = render(key_sections)
        while key_sections and self._estimator.estimate(text) > target_tokens:
            key_sections = key_sections[:-1]
            text = render(key_sections)
        return text

    # ── Internals ───────────────────────────────────────────────────────

    def _finalize(
        self,
        document: CandidateDocument,
        text: str,
        target_tokens: int,
        technique: CompressionTechnique,
        requested: CompressionTechnique,
        failure: CompressionFailure | None,
    ) -> CompressedSurrogate:
        truncated = False
        estimated = self._estimator.estimate(text)
        if estimated > target_tokens * self._slack:
            text = truncate_to_budget(text, target_tokens, self._estimator)
            estimated = self._estimator.estimate(text)
            truncated = True
            logger.debug(
                "%s output for %s overshot %d tokens — truncated",
                technique.value,
                document.id,
                target_tokens,
            )

        return CompressedSurrogate(
            document_id=document.id,
            technique=technique,
            requested_technique=requested,
            content=text,
            original_tokens=document.tokens or self._estimator.estimate(document.content),
            estimated_tokens=estimated,
            truncated=truncated,
            failure=failure,
        )

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock()
        return asyncio.get_running_loop().time()
