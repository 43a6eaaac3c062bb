"""Budget allocation use case — the main orchestration pipeline.

:class:`BudgetAllocator` is the single entry point for the core.  It depends
only on the :class:`TextGenerator` port and the pure service modules; the
interface layer injects the concrete generator at runtime.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Sequence

from context_budget.domain.entities import (
    AllocationRequest,
    AllocationResult,
    CandidateDocument,
    CompressionTechnique,
    ProviderBudget,
)
from context_budget.domain.exceptions import ConfigurationError
from context_budget.domain.ports.text_generator import TextGenerator
from context_budget.services.budget_resolver import ProviderBudgetResolver
from context_budget.services.chunker import ChunkingEngine
from context_budget.services.compressor import Compressor
from context_budget.services.packing import STRATEGY_TABLE, PackingOptions, PackingSession
from context_budget.services.prioritizer import rank, tokens_by_priority
from context_budget.services.reporter import build_result
from context_budget.services.strategy_selector import CorpusProfile, select_strategy
from context_budget.services.token_estimator import (
    CachingEstimator,
    CharRatioEstimator,
    TokenEstimator,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AllocatorConfig:
    """Tunable thresholds for one allocator instance."""

    chunk_document_threshold: int = 10
    summarize_share: float = 0.3
    fragment_share: float = 0.1
    compression_technique: CompressionTechnique = CompressionTechnique.HYBRID
    ai_concurrency: int = 4
    ai_call_timeout_seconds: float = 20.0
    run_timeout_seconds: float = 60.0
    cache_entries: int = 4096
    compression_slack: float = 1.1

    def packing_options(self) -> PackingOptions:
        return PackingOptions(
            summarize_share=self.summarize_share,
            fragment_share=self.fragment_share,
            compression_technique=self.compression_technique,
            ai_concurrency=self.ai_concurrency,
            compression_slack=self.compression_slack,
        )


# ── Run phases ──────────────────────────────────────────────────────────────


class AllocationPhase(str, Enum):
    IDLE = "idle"
    RANKING = "ranking"
    STRATEGY_SELECTED = "strategy-selected"
    PACKING = "packing"
    FINALIZED = "finalized"


_PHASE_ORDER = list(AllocationPhase)


class PhaseTracker:
    """Forward-only phase bookkeeping for a single run."""

    def __init__(self) -> None:
        self._history: list[AllocationPhase] = [AllocationPhase.IDLE]

    @property
    def current(self) -> AllocationPhase:
        return self._history[-1]

    @property
    def history(self) -> tuple[AllocationPhase, ...]:
        return tuple(self._history)

    def advance(self, phase: AllocationPhase) -> None:
        if _PHASE_ORDER.index(phase) <= _PHASE_ORDER.index(self.current):
            raise RuntimeError(f"Cannot move from {self.current.value} to {phase.value}")
        self._history.append(phase)


# ── Use case ────────────────────────────────────────────────────────────────


class BudgetAllocator:
    """Orchestrates the corpus → allocation result pipeline.

    Parameters
    ----------
    resolver:
        Table of provider/model token budgets.
    estimator:
        Token estimator; wrapped in a fresh bounded cache for every run.
    text_generator:
        External summariser used by ``ai-semantic-summary``; optional.
    config:
        Thresholds and concurrency limits.
    clock:
        Wall-clock source for recency scoring and ``generated_at``.
    """

    def __init__(
        self,
        resolver: ProviderBudgetResolver,
        *,
        estimator: TokenEstimator | None = None,
        text_generator: TextGenerator | None = None,
        config: AllocatorConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._resolver = resolver
        self._estimator = estimator or CharRatioEstimator()
        self._generator = text_generator
        self._config = config or AllocatorConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def resolver(self) -> ProviderBudgetResolver:
        return self._resolver

    @property
    def config(self) -> AllocatorConfig:
        return self._config

    # ── Public entry point ──────────────────────────────────────────────

    async def allocate(self, request: AllocationRequest) -> AllocationResult:
        """Run one allocation and return its auditable result.

        Raises :class:`ConfigurationError` for an unknown provider/model or
        an unusable budget; every other problem is reported as a warning.
        """
        phases = PhaseTracker()
        budget = self._resolver.resolve(request.provider_id, request.model_id)
        ceiling = _token_ceiling(budget, request.max_utilization_percentage)
        now = self._clock()

        estimator = CachingEstimator(self._estimator, max_entries=self._config.cache_entries)
        corpus = _dedupe(request.corpus)

        phases.advance(AllocationPhase.RANKING)
        ranked = rank(
            corpus,
            now=now,
            target_document_type=request.target_document_type,
            estimator=estimator,
        )
        logger.debug(
            "Tokens by priority: %s",
            ", ".join(f"{tier.value}={tokens}" for tier, tokens in tokens_by_priority(ranked).items()),
        )

        overrides = request.strategy_overrides
        profile = CorpusProfile.of(ranked)
        strategy = select_strategy(
            profile,
            ceiling,
            chunk_document_threshold=self._config.chunk_document_threshold,
            overrides=overrides,
        )
        phases.advance(AllocationPhase.STRATEGY_SELECTED)
        logger.info(
            "Allocating %d document(s) for %s/%s: %s within %d tokens",
            len(ranked),
            budget.provider_id,
            budget.model_id,
            strategy.value,
            ceiling,
        )

        phases.advance(AllocationPhase.PACKING)
        session = PackingSession(
            ceiling=ceiling,
            chunker=ChunkingEngine(estimator),
            compressor=self._compressor(estimator),
            options=self._config.packing_options(),
            overrides=overrides,
            deadline=asyncio.get_running_loop().time() + self._config.run_timeout_seconds,
        )
        await STRATEGY_TABLE[strategy](ranked, session)

        result = build_result(
            strategy=strategy,
            session=session,
            budget=budget,
            ranked=ranked,
            generated_at=now,
            suggested=self._larger_model(budget, profile, ceiling, request.max_utilization_percentage),
        )
        phases.advance(AllocationPhase.FINALIZED)
        logger.debug(
            "Estimator cache: %d hit(s), %d miss(es)", estimator.hits, estimator.misses
        )
        return result

    def _larger_model(
        self,
        budget: ProviderBudget,
        profile: CorpusProfile,
        ceiling: int,
        max_utilization_percentage: float,
    ) -> ProviderBudget | None:
        if profile.required_tokens <= ceiling:
            return None
        return self._resolver.smallest_fitting(
            profile.required_tokens, max_utilization_percentage, exclude=budget
        )

    def _compressor(self, estimator: TokenEstimator) -> Compressor:
        return Compressor(
            estimator,
            self._generator,
            ai_timeout=self._config.ai_call_timeout_seconds,
            slack=self._config.compression_slack,
        )


# ── Helpers ─────────────────────────────────────────────────────────────────


def _token_ceiling(budget: ProviderBudget, max_utilization_percentage: float) -> int:
    if budget.input_token_budget <= 0:
        raise ConfigurationError(
            f"Input token budget for {budget.provider_id}/{budget.model_id} must be positive, "
            f"got {budget.input_token_budget}."
        )
    if not 0 < max_utilization_percentage <= 100:
        raise ConfigurationError(
            f"max_utilization_percentage must be in (0, 100], got {max_utilization_percentage}."
        )
    ceiling = int(budget.input_token_budget * max_utilization_percentage / 100)
    if ceiling < 1:
        raise ConfigurationError(
            f"Utilization of {max_utilization_percentage}% leaves no usable tokens "
            f"out of {budget.input_token_budget}."
        )
    return ceiling


def _dedupe(corpus: Sequence[CandidateDocument]) -> list[CandidateDocument]:
    """Keep the first document for each id."""
    seen: set[str] = set()
    unique: list[CandidateDocument] = []
    for doc in corpus:
        if doc.id in seen:
            logger.warning("Duplicate document id %r ignored", doc.id)
            continue
        seen.add(doc.id)
        unique.append(doc)
    return unique
