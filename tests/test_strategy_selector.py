"""Tests for the strategy selection rules."""

from __future__ import annotations

import pytest

from conftest import NOW, make_document

from context_budget.domain.entities import LoadStrategy, PriorityClass, StrategyOverrides
from context_budget.services.prioritizer import rank
from context_budget.services.strategy_selector import CorpusProfile, select_strategy


def _profile(**kwargs: int) -> CorpusProfile:
    values = dict(
        required_tokens=0,
        document_count=0,
        priority_tokens=0,
        priority_count=0,
        largest_document_tokens=0,
    )
    values.update(kwargs)
    return CorpusProfile(**values)


class TestCorpusProfile:
    """Aggregate statistics over a ranked corpus."""

    def test_of_ranked_corpus(self, estimator):
        ranked = rank(
            [
                make_document("doc-a", tokens=500, document_type="project-charter"),
                make_document("doc-b", tokens=400, document_type="risk-register"),
                make_document("doc-c", tokens=2_000),
            ],
            now=NOW,
            estimator=estimator,
        )

        profile = CorpusProfile.of(ranked)

        assert profile == CorpusProfile(
            required_tokens=2_900,
            document_count=3,
            priority_tokens=900,
            priority_count=2,
            largest_document_tokens=2_000,
        )

    def test_of_empty_corpus(self):
        assert CorpusProfile.of([]) == _profile()


class TestSelectStrategy:
    """First matching rule wins."""

    def test_everything_fits(self):
        profile = _profile(required_tokens=900, document_count=3)
        assert select_strategy(profile, 900) is LoadStrategy.FULL_LOAD

    def test_empty_corpus_is_full_load(self):
        assert select_strategy(_profile(), 1) is LoadStrategy.FULL_LOAD

    def test_priority_share_fits(self):
        profile = _profile(
            required_tokens=2_900, document_count=3, priority_tokens=900, priority_count=2,
            largest_document_tokens=2_000,
        )
        assert select_strategy(profile, 900) is LoadStrategy.PRIORITIZED_LOAD

    def test_no_priority_documents_skips_prioritized(self):
        profile = _profile(required_tokens=1_500, document_count=3, largest_document_tokens=600)
        assert select_strategy(profile, 900) is LoadStrategy.SUMMARIZED_LOAD

    def test_many_documents_chunked(self):
        profile = _profile(required_tokens=5_000, document_count=11, largest_document_tokens=500)
        assert select_strategy(profile, 900) is LoadStrategy.CHUNKED_LOAD

    def test_single_oversized_document_chunked(self):
        profile = _profile(required_tokens=50_000, document_count=1, largest_document_tokens=50_000)
        assert select_strategy(profile, 4_500) is LoadStrategy.CHUNKED_LOAD

    def test_threshold_is_tunable(self):
        profile = _profile(required_tokens=5_000, document_count=11, largest_document_tokens=500)
        assert (
            select_strategy(profile, 900, chunk_document_threshold=20)
            is LoadStrategy.SUMMARIZED_LOAD
        )

    def test_chunking_disabled_falls_through_to_summarized(self):
        profile = _profile(required_tokens=50_000, document_count=1, largest_document_tokens=50_000)
        overrides = StrategyOverrides(enable_chunking=False)
        assert select_strategy(profile, 4_500, overrides=overrides) is LoadStrategy.SUMMARIZED_LOAD

    @pytest.mark.parametrize("tier", [PriorityClass.CRITICAL, PriorityClass.HIGH])
    def test_priority_share_too_large(self, tier: PriorityClass):
        doc = make_document("doc-a", tokens=1_000, priority_class=tier, estimated_tokens=1_000)
        profile = CorpusProfile.of([doc])
        assert select_strategy(profile, 900) is LoadStrategy.CHUNKED_LOAD

    def test_dominant_document_chunked_at_any_budget(self):
        profile = _profile(required_tokens=4_360, document_count=4, largest_document_tokens=2_500)
        assert profile.has_dominant_document
        for available in (2_700, 1_800, 900):
            assert select_strategy(profile, available) is LoadStrategy.CHUNKED_LOAD

    def test_large_but_not_dominant_document_summarized_at_any_budget(self):
        profile = _profile(required_tokens=1_500, document_count=3, largest_document_tokens=600)
        assert not profile.has_dominant_document
        for available in (900, 599, 100):
            assert select_strategy(profile, available) is LoadStrategy.SUMMARIZED_LOAD
