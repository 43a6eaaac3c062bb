"""Relevance prioritisation — admission-control ordering of the corpus.

Each document gets a coarse priority class from its type and a continuous
relevance score from its metadata.  The resulting order is the backbone of
every packing strategy, so it must be fully deterministic.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Sequence

from context_budget.domain.entities import CandidateDocument, DocumentStatus, PriorityClass
from context_budget.services.token_estimator import CharRatioEstimator, TokenEstimator

logger = logging.getLogger(__name__)

# ── Heuristic tables ────────────────────────────────────────────────────────

_PRIORITY_BY_TYPE: dict[str, PriorityClass] = {
    "project-charter": PriorityClass.CRITICAL,
    "requirements-specification": PriorityClass.CRITICAL,
    "technical-specification": PriorityClass.CRITICAL,
    "risk-register": PriorityClass.HIGH,
    "stakeholder-register": PriorityClass.HIGH,
    "benefits-realization-plan": PriorityClass.HIGH,
    "project-plan": PriorityClass.MEDIUM,
    "communication-plan": PriorityClass.MEDIUM,
    "quality-plan": PriorityClass.MEDIUM,
}

# Upstream documents that feed a given target document type
RELATED_TYPES: dict[str, frozenset[str]] = {
    "benefits-realization-plan": frozenset(
        {
            "strategic-business-case",
            "project-charter",
            "requirements-specification",
            "stakeholder-register",
            "risk-register",
        }
    ),
    "technical-specification": frozenset(
        {
            "requirements-specification",
            "architecture-document",
            "project-charter",
            "risk-register",
        }
    ),
    "project-charter": frozenset(
        {"strategic-business-case", "stakeholder-register", "requirements-specification"}
    ),
    "risk-register": frozenset(
        {"project-charter", "requirements-specification", "stakeholder-register"}
    ),
}

_PUBLISHED_STATUSES = frozenset({DocumentStatus.APPROVED, DocumentStatus.PUBLISHED})
_STATUS_BONUS = 20.0
_RELATED_TYPE_BONUS = 50.0


def _normalise_type(document_type: str) -> str:
    return document_type.strip().lower().replace("_", "-").replace(" ", "-")


def priority_for(document_type: str) -> PriorityClass:
    """Look up the priority class; unknown types are ``LOW``."""
    return _PRIORITY_BY_TYPE.get(_normalise_type(document_type), PriorityClass.LOW)


def _recency_bonus(last_modified: datetime, now: datetime) -> float:
    """+10 within 30 days, +5 within 90 days, else nothing."""
    if last_modified.tzinfo is None:
        last_modified = last_modified.replace(tzinfo=timezone.utc)
    age_days = (now - last_modified).total_seconds() / 86_400
    if age_days < 30:
        return 10.0
    if age_days < 90:
        return 5.0
    return 0.0


def relevance_score(
    document: CandidateDocument,
    now: datetime,
    target_document_type: str | None = None,
) -> float:
    """quality + status bonus + recency bonus (+ related-type bonus)."""
    score = max(0.0, min(100.0, float(document.quality_score)))
    if document.status in _PUBLISHED_STATUSES:
        score += _STATUS_BONUS
    score += _recency_bonus(document.last_modified, now)

    if target_document_type:
        related = RELATED_TYPES.get(_normalise_type(target_document_type), frozenset())
        if _normalise_type(document.document_type) in related:
            score += _RELATED_TYPE_BONUS
    return score


def sort_key(document: CandidateDocument) -> tuple[int, float, str]:
    """Class first, then relevance descending, then id ascending."""
    return (document.tier.rank, -(document.relevance_score or 0.0), document.id)


# ── Public API ──────────────────────────────────────────────────────────────


def rank(
    documents: Iterable[CandidateDocument],
    *,
    now: datetime | None = None,
    target_document_type: str | None = None,
    estimator: TokenEstimator | None = None,
) -> list[CandidateDocument]:
    """Return annotated copies of *documents* in admission order.

    Parameters
    ----------
    documents:
        The corpus snapshot; never mutated.
    now:
        Reference time for the recency bonus (defaults to the current UTC time).
    target_document_type:
        Type of the document being generated; its known upstream types get a
        relevance boost.
    estimator:
        Token estimator used to fill ``estimated_tokens``.
    """
    now = now or datetime.now(timezone.utc)
    estimator = estimator or CharRatioEstimator()

    ranked = [
        replace(
            doc,
            estimated_tokens=estimator.estimate(doc.content),
            priority_class=priority_for(doc.document_type),
            relevance_score=relevance_score(doc, now, target_document_type),
        )
        for doc in documents
    ]
    ranked.sort(key=sort_key)

    logger.debug(
        "Ranked %d document(s): %s",
        len(ranked),
        ", ".join(f"{d.id}={d.tier.value}/{d.relevance_score:.0f}" for d in ranked[:10]),
    )
    return ranked


def tokens_by_priority(documents: Sequence[CandidateDocument]) -> dict[PriorityClass, int]:
    """Sum of estimated tokens per priority class."""
    totals = {cls: 0 for cls in PriorityClass}
    for doc in documents:
        totals[doc.tier] += doc.tokens
    return totals
