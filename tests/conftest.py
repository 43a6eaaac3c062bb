"""Shared fixtures for the context budget test suite."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from context_budget.domain.entities import CandidateDocument, DocumentStatus, ProviderBudget
from context_budget.domain.exceptions import TextGenerationError
from context_budget.services.allocator import AllocatorConfig, BudgetAllocator
from context_budget.services.budget_resolver import ProviderBudgetResolver
from context_budget.services.token_estimator import CharRatioEstimator

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

_FILLER_LINE = "Line {n:04d} covers scope item details for the review board.\n"


def filler_text(tokens: int) -> str:
    """Plain prose that estimates to exactly *tokens* with the 4-chars rule."""
    length = tokens * 4
    lines: list[str] = []
    size = 0
    n = 0
    while size < length:
        line = _FILLER_LINE.format(n=n % 10_000)
        lines.append(line)
        size += len(line)
        n += 1
    return "".join(lines)[:length]


def make_document(
    doc_id: str,
    *,
    tokens: int = 100,
    content: str | None = None,
    name: str | None = None,
    document_type: str = "meeting-notes",
    quality_score: float = 50.0,
    status: DocumentStatus = DocumentStatus.DRAFT,
    age_days: int = 10,
    **derived: object,
) -> CandidateDocument:
    """Build a candidate; *derived* sets ranking fields directly."""
    doc = CandidateDocument(
        id=doc_id,
        name=name or f"Document {doc_id.upper()}",
        document_type=document_type,
        category="planning",
        content=content if content is not None else filler_text(tokens),
        quality_score=quality_score,
        status=status,
        last_modified=NOW - timedelta(days=age_days),
    )
    return replace(doc, **derived) if derived else doc


class FailingGenerator:
    """Text generator that always fails."""

    def __init__(self) -> None:
        self.calls = 0

    async def summarize(self, text: str, target_token_hint: int, *, timeout: float) -> str:
        self.calls += 1
        raise TextGenerationError("provider unavailable")


class EchoGenerator:
    """Text generator that returns a fixed summary and records its inputs."""

    def __init__(self, summary: str = "Scope approved. Budget confirmed.") -> None:
        self.summary = summary
        self.received: list[str] = []

    async def summarize(self, text: str, target_token_hint: int, *, timeout: float) -> str:
        self.received.append(text)
        return self.summary


class SlowGenerator:
    """Text generator that never answers in time."""

    def __init__(self, delay: float = 5.0) -> None:
        self.delay = delay

    async def summarize(self, text: str, target_token_hint: int, *, timeout: float) -> str:
        await asyncio.sleep(self.delay)
        return "too late"


TEST_BUDGETS = (
    ProviderBudget("test", "small", max_tokens=2_000, input_token_budget=1_000, output_token_reserve=400),
    ProviderBudget(
        "test",
        "medium",
        max_tokens=10_000,
        input_token_budget=5_000,
        output_token_reserve=2_000,
        cost_per_1k_tokens=0.01,
    ),
    ProviderBudget("test", "broken", max_tokens=100, input_token_budget=0, output_token_reserve=0),
)


@pytest.fixture
def estimator() -> CharRatioEstimator:
    return CharRatioEstimator()


@pytest.fixture
def resolver() -> ProviderBudgetResolver:
    return ProviderBudgetResolver(TEST_BUDGETS)


@pytest.fixture
def allocator(resolver: ProviderBudgetResolver) -> BudgetAllocator:
    return BudgetAllocator(resolver, clock=lambda: NOW)


@pytest.fixture
def make_allocator(resolver: ProviderBudgetResolver):
    """Factory for allocators with a custom generator or config."""

    def _make(text_generator=None, **config: object) -> BudgetAllocator:
        return BudgetAllocator(
            resolver,
            text_generator=text_generator,
            config=AllocatorConfig(**config),  # type: ignore[arg-type]
            clock=lambda: NOW,
        )

    return _make
