"""Tests for the packing session and the individual strategies."""

from __future__ import annotations

import pytest

from conftest import NOW, FailingGenerator, make_document

from context_budget.domain.entities import (
    CompressionTechnique,
    ItemOrigin,
    LoadStrategy,
    StrategyOverrides,
    WarningCode,
)
from context_budget.services.chunker import ChunkingEngine
from context_budget.services.compressor import Compressor
from context_budget.services.packing import (
    STRATEGY_TABLE,
    PackingOptions,
    PackingSession,
    pack_chunked,
    pack_prioritized,
    pack_summarized,
)
from context_budget.services.prioritizer import rank


def _session(estimator, ceiling: int, generator=None, **options) -> PackingSession:
    overrides = options.pop("overrides", StrategyOverrides())
    return PackingSession(
        ceiling=ceiling,
        chunker=ChunkingEngine(estimator),
        compressor=Compressor(estimator, generator),
        options=PackingOptions(**options),
        overrides=overrides,
    )


def _ranked(estimator, *docs):
    return rank(docs, now=NOW, estimator=estimator)


class TestPackingSession:
    """Admission bookkeeping."""

    def test_refuses_admission_past_ceiling(self, estimator):
        session = _session(estimator, 100)
        (doc,) = _ranked(estimator, make_document("doc-a", tokens=150))

        with pytest.raises(ValueError, match="exceed the ceiling"):
            session.admit_whole(doc)
        assert session.used == 0

    def test_tracks_usage(self, estimator):
        session = _session(estimator, 100)
        (doc,) = _ranked(estimator, make_document("doc-a", tokens=60))

        session.admit_whole(doc)

        assert session.used == 60
        assert session.remaining == 40
        assert not session.full


def test_strategy_table_covers_every_strategy():
    assert set(STRATEGY_TABLE) == set(LoadStrategy)


class TestPrioritized:
    """Best-effort skip packing."""

    @pytest.mark.asyncio
    async def test_skips_oversized_and_keeps_going(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=300, document_type="project-charter"),
            make_document("doc-b", tokens=800, document_type="risk-register"),
            make_document("doc-c", tokens=200),
        )
        session = _session(estimator, 600)

        await pack_prioritized(docs, session)

        assert [i.document_id for i in session.included] == ["doc-a", "doc-c"]
        assert session.excluded == ["doc-b"]
        assert session.warnings[0].code is WarningCode.EXCLUDED_OVER_BUDGET

    @pytest.mark.asyncio
    async def test_ceiling_reached_warning(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=600, document_type="project-charter"),
            make_document("doc-b", tokens=10),
        )
        session = _session(estimator, 600)

        await pack_prioritized(docs, session)

        assert session.excluded == ["doc-b"]
        assert session.warnings[0].code is WarningCode.EXCLUDED_CEILING_REACHED


class TestChunked:
    """Whole where possible, a contiguous fragment prefix otherwise."""

    @pytest.mark.asyncio
    async def test_fragments_form_a_leading_run(self, estimator):
        docs = _ranked(estimator, make_document("doc-a", tokens=3_000))
        session = _session(estimator, 1_000, fragment_share=0.1)

        await pack_chunked(docs, session)

        (item,) = session.included
        assert item.origin is ItemOrigin.FRAGMENTED
        assert [f.sequence_index for f in item.fragments] == list(range(len(item.fragments)))
        assert item.estimated_tokens == sum(f.estimated_tokens for f in item.fragments)
        assert all(f.estimated_tokens <= 100 for f in item.fragments)
        assert session.used <= 1_000
        assert session.warnings[-1].code is WarningCode.DOCUMENT_CHUNKED

    @pytest.mark.asyncio
    async def test_small_documents_stay_whole(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=200, document_type="project-charter"),
            make_document("doc-b", tokens=3_000),
        )
        session = _session(estimator, 1_000)

        await pack_chunked(docs, session)

        origins = {i.document_id: i.origin for i in session.included}
        assert origins == {"doc-a": ItemOrigin.WHOLE, "doc-b": ItemOrigin.FRAGMENTED}

    @pytest.mark.asyncio
    async def test_whole_documents_admitted_before_any_fragment(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=800, document_type="project-charter"),
            make_document("doc-b", tokens=300),
            make_document("doc-c", tokens=300),
        )
        session = _session(estimator, 700)

        await pack_chunked(docs, session)

        assert [(i.document_id, i.origin) for i in session.included] == [
            ("doc-b", ItemOrigin.WHOLE),
            ("doc-c", ItemOrigin.WHOLE),
            ("doc-a", ItemOrigin.FRAGMENTED),
        ]
        assert session.used <= 700
        assert session.excluded == []

    @pytest.mark.asyncio
    async def test_unsplittable_overflow_is_reported(self, estimator):
        content = "y" * 2_000 + "\n" + "short closing line\n"
        docs = _ranked(estimator, make_document("doc-a", content=content))
        session = _session(estimator, 300)

        await pack_chunked(docs, session)

        codes = [w.code for w in session.warnings]
        assert WarningCode.UNSPLITTABLE_OVERFLOW in codes
        assert session.excluded == ["doc-a"]
        assert session.used == 0


class TestSummarized:
    """Tiered compression before admission."""

    @pytest.mark.asyncio
    async def test_compresses_large_documents(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=600, document_type="project-plan"),
            make_document("doc-b", tokens=600, document_type="project-plan"),
            make_document("doc-c", tokens=600, document_type="project-plan"),
        )
        session = _session(estimator, 900)

        await pack_summarized(docs, session)

        assert len(session.included) == 3
        assert all(i.origin is ItemOrigin.COMPRESSED for i in session.included)
        assert all(
            i.surrogate.technique is CompressionTechnique.KEYWORD_EXTRACTION
            for i in session.included
        )
        assert session.used <= 900
        assert [w.code for w in session.warnings] == [WarningCode.DOCUMENT_COMPRESSED] * 3

    @pytest.mark.asyncio
    async def test_small_documents_are_not_compressed(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=50, document_type="project-plan"),
            make_document("doc-b", tokens=2_000, document_type="project-plan"),
        )
        session = _session(estimator, 900)

        await pack_summarized(docs, session)

        origins = {i.document_id: i.origin for i in session.included}
        assert origins["doc-a"] is ItemOrigin.WHOLE
        assert origins["doc-b"] is ItemOrigin.COMPRESSED

    @pytest.mark.asyncio
    async def test_ai_failure_warns_once_per_document(self, estimator):
        docs = _ranked(
            estimator,
            make_document("doc-a", tokens=600, document_type="project-charter"),
            make_document("doc-b", tokens=600, document_type="risk-register"),
        )
        generator = FailingGenerator()
        session = _session(estimator, 900, generator)

        await pack_summarized(docs, session)

        assert generator.calls == 2
        fallback = [w for w in session.warnings if w.code is WarningCode.AI_SUMMARY_FALLBACK]
        assert sorted(w.document_id for w in fallback) == ["doc-a", "doc-b"]
        assert len(session.warnings) == 2

    @pytest.mark.asyncio
    async def test_ai_disabled_by_override(self, estimator):
        docs = _ranked(estimator, make_document("doc-a", tokens=2_000, document_type="project-charter"))
        generator = FailingGenerator()
        session = _session(
            estimator,
            900,
            generator,
            overrides=StrategyOverrides(enable_ai_summarization=False),
        )

        await pack_summarized(docs, session)

        assert generator.calls == 0
        (item,) = session.included
        assert item.surrogate.technique is CompressionTechnique.STRUCTURAL_SUMMARY
        assert session.warnings[0].code is WarningCode.DOCUMENT_COMPRESSED
