"""Strategy selection — a pure decision over aggregate corpus statistics."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from context_budget.domain.entities import (
    CandidateDocument,
    LoadStrategy,
    PriorityClass,
    StrategyOverrides,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_DOCUMENT_THRESHOLD = 10

_PRIORITY_TIERS = frozenset({PriorityClass.CRITICAL, PriorityClass.HIGH})


@dataclass(frozen=True, slots=True)
class CorpusProfile:
    """Shape of a ranked corpus — all the selector ever looks at."""

    required_tokens: int
    document_count: int
    priority_tokens: int
    priority_count: int
    largest_document_tokens: int

    @classmethod
    def of(cls, documents: Sequence[CandidateDocument]) -> CorpusProfile:
        priority_docs = [d for d in documents if d.tier in _PRIORITY_TIERS]
        return cls(
            required_tokens=sum(d.tokens for d in documents),
            document_count=len(documents),
            priority_tokens=sum(d.tokens for d in priority_docs),
            priority_count=len(priority_docs),
            largest_document_tokens=max((d.tokens for d in documents), default=0),
        )

    @property
    def has_dominant_document(self) -> bool:
        """The largest document outweighs the rest of the corpus combined."""
        return self.largest_document_tokens > self.required_tokens - self.largest_document_tokens


def select_strategy(
    profile: CorpusProfile,
    available_budget: int,
    *,
    chunk_document_threshold: int = DEFAULT_CHUNK_DOCUMENT_THRESHOLD,
    overrides: StrategyOverrides | None = None,
) -> LoadStrategy:
    """Pick a packing strategy; the first matching rule wins.

    1. Everything fits → full-load.
    2. The critical + high share (at least one document) fits → prioritized-load.
    3. Many documents, or one document that outweighs all the others → chunked-load.
    4. Otherwise → summarized-load.

    Rule 3 looks only at the shape of the corpus, so for a fixed corpus the
    choice between chunked-load and summarized-load never changes with the
    budget.
    """
    overrides = overrides or StrategyOverrides()

    if profile.required_tokens <= available_budget:
        strategy = LoadStrategy.FULL_LOAD
    elif profile.priority_count >= 1 and profile.priority_tokens <= available_budget:
        strategy = LoadStrategy.PRIORITIZED_LOAD
    elif overrides.enable_chunking and (
        profile.document_count > chunk_document_threshold
        or profile.has_dominant_document
    ):
        strategy = LoadStrategy.CHUNKED_LOAD
    else:
        strategy = LoadStrategy.SUMMARIZED_LOAD

    logger.debug(
        "Strategy %s (required=%d, available=%d, documents=%d, priority=%d/%d)",
        strategy.value,
        profile.required_tokens,
        available_budget,
        profile.document_count,
        profile.priority_count,
        profile.priority_tokens,
    )
    return strategy
