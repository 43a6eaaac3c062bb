"""Packing strategies — one coroutine per :class:`LoadStrategy`.

All strategies share the same signature and write into a
:class:`PackingSession`, which owns the running token count for a single
allocation run.  The session refuses any admission that would push usage
past the ceiling, so the budget invariant holds regardless of strategy.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from context_budget.domain.entities import (
    AllocationWarning,
    CandidateDocument,
    ChunkedFragment,
    CompressedSurrogate,
    CompressionTechnique,
    FailureReason,
    IncludedItem,
    ItemOrigin,
    LoadStrategy,
    PriorityClass,
    StrategyOverrides,
    WarningCode,
)
from context_budget.services.chunker import ChunkingEngine
from context_budget.services.compressor import Compressor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PackingOptions:
    """Tunable thresholds used while packing."""

    summarize_share: float = 0.3
    fragment_share: float = 0.1
    compression_technique: CompressionTechnique = CompressionTechnique.HYBRID
    ai_concurrency: int = 4
    compression_slack: float = 1.1


@dataclass(slots=True)
class PackingSession:
    """Mutable state of one packing pass; discarded with the run."""

    ceiling: int
    chunker: ChunkingEngine
    compressor: Compressor
    options: PackingOptions = field(default_factory=PackingOptions)
    overrides: StrategyOverrides = field(default_factory=StrategyOverrides)
    deadline: float | None = None
    used: int = 0
    included: list[IncludedItem] = field(default_factory=list)
    excluded: list[str] = field(default_factory=list)
    warnings: list[AllocationWarning] = field(default_factory=list)

    @property
    def remaining(self) -> int:
        return max(0, self.ceiling - self.used)

    @property
    def full(self) -> bool:
        return self.used >= self.ceiling

    # ── Admission ───────────────────────────────────────────────────────

    def fits(self, tokens: int) -> bool:
        return tokens <= self.remaining

    def admit_whole(self, doc: CandidateDocument) -> None:
        self._admit(
            IncludedItem(
                document_id=doc.id,
                name=doc.name,
                origin=ItemOrigin.WHOLE,
                content=doc.content,
                estimated_tokens=doc.tokens,
                priority_class=doc.tier,
                relevance_score=doc.relevance_score or 0.0,
            )
        )

    def admit_fragments(self, doc: CandidateDocument, fragments: Sequence[ChunkedFragment]) -> None:
        self._admit(
            IncludedItem(
                document_id=doc.id,
                name=doc.name,
                origin=ItemOrigin.FRAGMENTED,
                content="".join(f.render() for f in fragments),
                estimated_tokens=sum(f.estimated_tokens for f in fragments),
                priority_class=doc.tier,
                relevance_score=doc.relevance_score or 0.0,
                fragments=tuple(fragments),
            )
        )

    def admit_surrogate(self, doc: CandidateDocument, surrogate: CompressedSurrogate) -> None:
        self._admit(
            IncludedItem(
                document_id=doc.id,
                name=doc.name,
                origin=ItemOrigin.COMPRESSED,
                content=surrogate.content,
                estimated_tokens=surrogate.estimated_tokens,
                priority_class=doc.tier,
                relevance_score=doc.relevance_score or 0.0,
                surrogate=surrogate,
            )
        )

    def exclude(self, doc: CandidateDocument, code: WarningCode, message: str) -> None:
        self.excluded.append(doc.id)
        self.warn(code, doc.id, message)
        logger.debug("Excluded %s: %s", doc.id, message)

    def warn(self, code: WarningCode, document_id: str | None, message: str) -> None:
        self.warnings.append(AllocationWarning(code=code, document_id=document_id, message=message))

    def _admit(self, item: IncludedItem) -> None:
        if not self.fits(item.estimated_tokens):
            raise ValueError(
                f"Admitting {item.document_id} ({item.estimated_tokens} tokens) "
                f"would exceed the ceiling ({self.remaining} remaining)"
            )
        self.included.append(item)
        self.used += item.estimated_tokens


PackingStrategy = Callable[[Sequence[CandidateDocument], PackingSession], Awaitable[None]]


# ── Shared steps ────────────────────────────────────────────────────────────


def _admit_or_skip(doc: CandidateDocument, session: PackingSession) -> bool:
    """Admit whole if it fits; otherwise skip it and keep going."""
    if session.fits(doc.tokens):
        session.admit_whole(doc)
        return True
    if session.full:
        session.exclude(
            doc,
            WarningCode.EXCLUDED_CEILING_REACHED,
            f"Utilization ceiling of {session.ceiling} tokens reached; '{doc.name}' not loaded.",
        )
    else:
        session.exclude(
            doc,
            WarningCode.EXCLUDED_OVER_BUDGET,
            f"'{doc.name}' needs {doc.tokens} tokens but only {session.remaining} remain.",
        )
    return False


# ── Strategies ──────────────────────────────────────────────────────────────


async def pack_full(documents: Sequence[CandidateDocument], session: PackingSession) -> None:
    """Admit every document in ranked order (the selector guarantees they fit)."""
    for doc in documents:
        session.admit_whole(doc)


async def pack_prioritized(documents: Sequence[CandidateDocument], session: PackingSession) -> None:
    """Best-effort bin packing in ranked order.

    A document too large for the remaining budget is skipped, not treated as
    a stop signal, so smaller lower-ranked documents can still use the space.
    """
    for doc in documents:
        _admit_or_skip(doc, session)


async def pack_chunked(documents: Sequence[CandidateDocument], session: PackingSession) -> None:
    """Whole documents first, then a leading run of fragments for the rest.

    The whole pass is the same best-effort skip as :func:`pack_prioritized`,
    so fragments only ever use space that no whole document could take.
    Deferred documents are chunked in ranked order.
    """
    fragment_cap = max(1, int(session.ceiling * session.options.fragment_share))

    deferred: list[CandidateDocument] = []
    for doc in documents:
        if session.fits(doc.tokens):
            session.admit_whole(doc)
        else:
            deferred.append(doc)

    for doc in deferred:
        if session.full:
            _admit_or_skip(doc, session)
            continue

        result = session.chunker.split(doc, min(session.remaining, fragment_cap))
        overflow = result.overflow_fragments
        if overflow:
            session.warn(
                WarningCode.UNSPLITTABLE_OVERFLOW,
                doc.id,
                f"'{doc.name}' has {len(overflow)} line(s) over the fragment budget that cannot "
                f"be split further (largest {max(f.estimated_tokens for f in overflow)} tokens).",
            )

        # Fragments stay contiguous: stop at the first one that does not fit
        admitted: list[ChunkedFragment] = []
        budget_left = session.remaining
        for fragment in result.fragments:
            if fragment.estimated_tokens > budget_left:
                break
            admitted.append(fragment)
            budget_left -= fragment.estimated_tokens

        if not admitted:
            session.exclude(
                doc,
                WarningCode.EXCLUDED_OVER_BUDGET,
                f"No fragment of '{doc.name}' fits the {session.remaining} remaining tokens.",
            )
            continue

        session.admit_fragments(doc, admitted)
        session.warn(
            WarningCode.DOCUMENT_CHUNKED,
            doc.id,
            f"'{doc.name}' ({doc.tokens} tokens) split into {len(result.fragments)} fragment(s); "
            f"{len(admitted)} loaded.",
        )


async def pack_summarized(documents: Sequence[CandidateDocument], session: PackingSession) -> None:
    """Compress oversized documents tier by tier, then admit in ranked order.

    Compression for one priority tier runs as a single concurrent batch; the
    tier is packed only after every call in the batch has settled.
    """
    for tier in PriorityClass:
        tier_docs = [d for d in documents if d.tier is tier]
        if not tier_docs:
            continue

        plan = _plan_tier(tier_docs, session)
        surrogates = await _compress_batch(plan, session)

        for (doc, target), surrogate in zip(plan, surrogates):
            if surrogate is None:
                _admit_or_skip(doc, session)
            elif session.fits(surrogate.estimated_tokens):
                session.admit_surrogate(doc, surrogate)
                _warn_compressed(doc, surrogate, target, session)
            else:
                session.exclude(
                    doc,
                    WarningCode.EXCLUDED_OVER_BUDGET,
                    f"Compressed '{doc.name}' still needs {surrogate.estimated_tokens} tokens "
                    f"but only {session.remaining} remain.",
                )


def _plan_tier(
    docs: Sequence[CandidateDocument], session: PackingSession
) -> list[tuple[CandidateDocument, int | None]]:
    """Decide, per document, whether to compress and to what target.

    Projected usage charges compressed documents at ``target × slack`` so the
    plan never promises more room than the batch can actually produce.
    """
    plan: list[tuple[CandidateDocument, int | None]] = []
    projected = session.remaining
    share = session.options.summarize_share
    slack = session.options.compression_slack

    for doc in docs:
        threshold = projected * share
        if doc.tokens <= threshold:
            plan.append((doc, None))
            projected -= doc.tokens
            continue
        target = int(threshold)
        if target < 1:
            plan.append((doc, None))
            continue
        plan.append((doc, target))
        projected -= math.ceil(target * slack)
    return plan


async def _compress_batch(
    plan: Sequence[tuple[CandidateDocument, int | None]], session: PackingSession
) -> list[CompressedSurrogate | None]:
    semaphore = asyncio.Semaphore(max(1, session.options.ai_concurrency))
    allow_ai = session.overrides.enable_ai_summarization
    technique = session.overrides.compression_technique or session.options.compression_technique

    async def _one(doc: CandidateDocument, target: int | None) -> CompressedSurrogate | None:
        if target is None:
            return None
        async with semaphore:
            return await session.compressor.compress(
                doc, target, technique, allow_ai=allow_ai, deadline=session.deadline
            )

    return list(await asyncio.gather(*(_one(doc, target) for doc, target in plan)))


def _warn_compressed(
    doc: CandidateDocument,
    surrogate: CompressedSurrogate,
    target: int | None,
    session: PackingSession,
) -> None:
    suffix = " (truncated)" if surrogate.truncated else ""
    failure = surrogate.failure
    if failure is None:
        session.warn(
            WarningCode.DOCUMENT_COMPRESSED,
            doc.id,
            f"'{doc.name}' compressed from {doc.tokens} to {surrogate.estimated_tokens} tokens "
            f"(target {target}) using {surrogate.technique.value}{suffix}.",
        )
    elif failure.reason is FailureReason.RUN_DEADLINE:
        session.warn(
            WarningCode.AI_SUMMARY_SKIPPED,
            doc.id,
            f"Run deadline reached before '{doc.name}' could be summarised by AI; "
            f"used {surrogate.technique.value} instead{suffix}.",
        )
    else:
        session.warn(
            WarningCode.AI_SUMMARY_FALLBACK,
            doc.id,
            f"AI summary of '{doc.name}' failed ({failure.reason.value}: {failure.detail}); "
            f"used {surrogate.technique.value} instead{suffix}.",
        )


STRATEGY_TABLE: dict[LoadStrategy, PackingStrategy] = {
    LoadStrategy.FULL_LOAD: pack_full,
    LoadStrategy.PRIORITIZED_LOAD: pack_prioritized,
    LoadStrategy.CHUNKED_LOAD: pack_chunked,
    LoadStrategy.SUMMARIZED_LOAD: pack_summarized,
}
