"""Tests for priority classes, relevance scoring and ranking order."""

from __future__ import annotations

import pytest

from conftest import NOW, make_document

from context_budget.domain.entities import DocumentStatus, PriorityClass
from context_budget.services.prioritizer import (
    priority_for,
    rank,
    relevance_score,
    tokens_by_priority,
)


class TestPriorityFor:
    """Document type → priority class."""

    @pytest.mark.parametrize(
        ("document_type", "expected"),
        [
            ("project-charter", PriorityClass.CRITICAL),
            ("Requirements Specification", PriorityClass.CRITICAL),
            ("risk_register", PriorityClass.HIGH),
            ("communication-plan", PriorityClass.MEDIUM),
            ("meeting-notes", PriorityClass.LOW),
            ("", PriorityClass.LOW),
        ],
    )
    def test_mapping(self, document_type: str, expected: PriorityClass):
        assert priority_for(document_type) is expected


class TestRelevanceScore:
    """quality + status + recency (+ related type)."""

    def test_base_is_quality(self):
        doc = make_document("doc-a", quality_score=40, age_days=200)
        assert relevance_score(doc, NOW) == 40

    def test_quality_is_clamped(self):
        high = make_document("doc-a", quality_score=250, age_days=200)
        low = make_document("doc-b", quality_score=-30, age_days=200)
        assert relevance_score(high, NOW) == 100
        assert relevance_score(low, NOW) == 0

    @pytest.mark.parametrize("status", [DocumentStatus.APPROVED, DocumentStatus.PUBLISHED])
    def test_status_bonus(self, status: DocumentStatus):
        doc = make_document("doc-a", quality_score=40, status=status, age_days=200)
        assert relevance_score(doc, NOW) == 60

    @pytest.mark.parametrize(("age_days", "bonus"), [(1, 10), (29, 10), (45, 5), (89, 5), (120, 0)])
    def test_recency_bonus(self, age_days: int, bonus: float):
        doc = make_document("doc-a", quality_score=40, age_days=age_days)
        assert relevance_score(doc, NOW) == 40 + bonus

    def test_related_type_bonus(self):
        doc = make_document("doc-a", document_type="risk-register", quality_score=40, age_days=200)
        assert relevance_score(doc, NOW, "technical-specification") == 90
        assert relevance_score(doc, NOW, "communication-plan") == 40


class TestRank:
    """Ordering is class first, then relevance, then id."""

    def test_orders_by_class_then_relevance_then_id(self):
        docs = [
            make_document("doc-low", document_type="meeting-notes", quality_score=99),
            make_document("doc-high", document_type="risk-register", quality_score=10),
            make_document("doc-crit-b", document_type="project-charter", quality_score=50),
            make_document("doc-crit-a", document_type="project-charter", quality_score=50),
            make_document("doc-crit-c", document_type="project-charter", quality_score=80),
        ]

        ranked = rank(docs, now=NOW)

        assert [d.id for d in ranked] == [
            "doc-crit-c",
            "doc-crit-a",
            "doc-crit-b",
            "doc-high",
            "doc-low",
        ]

    def test_fills_derived_fields_without_mutating_input(self, estimator):
        original = make_document("doc-a", tokens=250, document_type="quality-plan")

        (ranked,) = rank([original], now=NOW, estimator=estimator)

        assert ranked.estimated_tokens == 250
        assert ranked.priority_class is PriorityClass.MEDIUM
        assert ranked.relevance_score == 60
        assert original.estimated_tokens is None
        assert original.priority_class is None

    def test_is_deterministic(self):
        docs = [make_document(f"doc-{i}", quality_score=50) for i in range(20)]
        assert rank(docs, now=NOW) == rank(list(reversed(docs)), now=NOW)

    def test_tokens_by_priority(self, estimator):
        ranked = rank(
            [
                make_document("doc-a", tokens=100, document_type="project-charter"),
                make_document("doc-b", tokens=50, document_type="project-charter"),
                make_document("doc-c", tokens=70),
            ],
            now=NOW,
            estimator=estimator,
        )
        totals = tokens_by_priority(ranked)
        assert totals[PriorityClass.CRITICAL] == 150
        assert totals[PriorityClass.HIGH] == 0
        assert totals[PriorityClass.LOW] == 70
