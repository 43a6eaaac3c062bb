"""Allocation reporting — turn a finished packing session into a result."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from context_budget.domain.entities import (
    AllocationResult,
    AllocationWarning,
    CandidateDocument,
    LoadStrategy,
    ProviderBudget,
    WarningCode,
)
from context_budget.services.packing import PackingSession
from context_budget.services.reference_graph import build_reference_graph, missing_references

logger = logging.getLogger(__name__)


def build_result(
    *,
    strategy: LoadStrategy,
    session: PackingSession,
    budget: ProviderBudget,
    ranked: Sequence[CandidateDocument],
    generated_at: datetime,
    suggested: ProviderBudget | None = None,
) -> AllocationResult:
    """Assemble the immutable :class:`AllocationResult` for one run.

    *suggested* is a configured model large enough to load the whole corpus
    uncompressed; it is only reported, never switched to.
    """
    warnings = list(session.warnings)
    warnings.extend(_reference_warnings(session, ranked))

    used = sum(item.estimated_tokens for item in session.included)
    required = sum(doc.tokens for doc in ranked)
    input_budget = budget.input_token_budget
    utilization = round(used / input_budget * 100, 2) if input_budget > 0 else 0.0
    reduction = max(0.0, round((required - used) / required * 100, 2)) if required > 0 else 0.0

    result = AllocationResult(
        strategy_used=strategy,
        included_items=tuple(session.included),
        excluded_document_ids=tuple(session.excluded),
        total_tokens_used=used,
        utilization_percentage=utilization,
        warnings=tuple(warnings),
        generated_at=generated_at,
        input_token_budget=input_budget,
        token_ceiling=session.ceiling,
        estimated_input_cost=round(used / 1000 * budget.cost_per_1k_tokens, 6),
        required_tokens=required,
        reduction_percentage=reduction,
        suggested_model=f"{suggested.provider_id}/{suggested.model_id}" if suggested else None,
    )
    if suggested is not None:
        logger.info(
            "Corpus needs %d tokens; %s/%s (%d input tokens) would load it whole",
            required,
            suggested.provider_id,
            suggested.model_id,
            suggested.input_token_budget,
        )

    logger.info(
        "Allocation finished: %s, %d included / %d excluded, %d/%d tokens (%.1f%%), %d warning(s)",
        strategy.value,
        len(result.included_items),
        len(result.excluded_document_ids),
        used,
        input_budget,
        utilization,
        len(result.warnings),
    )
    return result


def _reference_warnings(
    session: PackingSession, ranked: Sequence[CandidateDocument]
) -> list[AllocationWarning]:
    if not session.included or not session.excluded:
        return []

    names = {doc.id: doc.name for doc in ranked}
    graph = build_reference_graph(ranked)
    included_ids = [item.document_id for item in session.included]

    return [
        AllocationWarning(
            code=WarningCode.MISSING_REFERENCE,
            document_id=source,
            message=f"'{names[source]}' references '{names[target]}', which was excluded.",
        )
        for source, target in missing_references(graph, included_ids, session.excluded)
    ]


def summarize_warnings(result: AllocationResult) -> list[str]:
    """Human-readable one-liners, e.g. ``"3 documents excluded due to budget"``."""
    counts: dict[WarningCode, int] = {}
    for warning in result.warnings:
        counts[warning.code] = counts.get(warning.code, 0) + 1

    phrases = {
        WarningCode.EXCLUDED_OVER_BUDGET: "excluded due to budget",
        WarningCode.EXCLUDED_CEILING_REACHED: "excluded after the utilization ceiling was reached",
        WarningCode.DOCUMENT_CHUNKED: "loaded as fragments",
        WarningCode.UNSPLITTABLE_OVERFLOW: "with lines too long to split",
        WarningCode.DOCUMENT_COMPRESSED: "compressed",
        WarningCode.AI_SUMMARY_FALLBACK: "summarised locally after the AI summary failed",
        WarningCode.AI_SUMMARY_SKIPPED: "summarised locally because the run timed out",
        WarningCode.MISSING_REFERENCE: "referencing an excluded document",
    }
    lines: list[str] = []
    for code in WarningCode:
        count = counts.get(code, 0)
        if count:
            noun = "document" if count == 1 else "documents"
            lines.append(f"{count} {noun} {phrases[code]}")
    return lines
