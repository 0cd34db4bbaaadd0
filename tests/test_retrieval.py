"""Tests for retrieval components."""

from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from config.settings import AISettings
from database.models import KnowledgeEntry, utcnow
from inbox.errors import NotFound, UpstreamServiceError
from retrieval.context_builder import CONTEXT_DELIMITER, TRUNCATION_MARKER, ContextBuilder

from conftest import add_knowledge, list_knowledge_rows


def _entry(id, content, category=None):
    return SimpleNamespace(id=id, content=content, category=category, created_at=utcnow())


# ── Context Builder ───────────────────────────────────

class TestContextBuilder:
    def test_general_first_then_matches(self):
        builder = ContextBuilder(max_chars=1000)
        ctx = builder.build(
            general=[_entry("g1", "Open 10:00-20:00 daily", "general")],
            matches=[_entry("s1", "Botox 3,900 THB"), _entry("s2", "Filler 9,900 THB")],
            scores={"s1": 0.9, "s2": 0.7},
        )
        assert ctx.text == CONTEXT_DELIMITER.join(["Open 10:00-20:00 daily", "Botox 3,900 THB", "Filler 9,900 THB"])
        assert ctx.general_count == 1
        assert ctx.match_count == 2
        assert ctx.sources[1].score == 0.9

    def test_duplicates_and_blank_entries_skipped(self):
        builder = ContextBuilder(max_chars=1000)
        shared = _entry("x", "Shared entry", "general")
        ctx = builder.build(general=[shared, _entry("blank", "   ")], matches=[shared])
        assert ctx.text == "Shared entry"
        assert ctx.match_count == 0

    def test_truncation_marker(self):
        builder = ContextBuilder(max_chars=50)
        ctx = builder.build(general=[], matches=[_entry("s1", "a" * 200)])
        assert ctx.truncated
        assert len(ctx.text) == 50
        assert ctx.text.endswith(TRUNCATION_MARKER)

    def test_empty(self):
        ctx = ContextBuilder().build([], [])
        assert ctx.text == ""
        assert ctx.match_count == 0


# ── Knowledge Retriever ───────────────────────────────

@pytest.mark.asyncio
async def test_ranked_matches_above_threshold(started):
    await add_knowledge(started, "Clinic opens 10:00-20:00", category="General")
    low = await add_knowledge(started, "Laser hair removal 1,500 THB", category="laser", score=0.3)
    high = await add_knowledge(started, "Botox 3,900 THB per area", category="injectables", score=0.92)
    mid = await add_knowledge(started, "Botox promotion 2 areas 6,900 THB", category="promotion", score=0.81)

    result = await started.retriever.retrieve("botox price", AISettings(min_confidence=0.5))

    assert result.found
    assert not result.degraded
    assert result.context.general_count == 1
    assert [s.id for s in result.context.sources[1:]] == [high.id, mid.id]
    assert low.id not in result.context_text
    assert result.context_text.startswith("Clinic opens 10:00-20:00")


@pytest.mark.asyncio
async def test_general_entries_never_count_as_match(started):
    general = await add_knowledge(started, "We speak Thai and English", category="general", score=0.99)

    result = await started.retriever.retrieve("language", AISettings())

    assert not result.found
    assert result.context.general_count == 1
    assert result.context.sources[0].id == general.id


@pytest.mark.asyncio
async def test_general_entries_do_not_take_match_slots(started):
    await add_knowledge(started, "General: we are open daily", category="General", score=0.99)
    laser = await add_knowledge(started, "Laser toning 2,500 THB", category="laser", score=0.9)

    result = await started.retriever.retrieve("laser price", AISettings(match_count=1))

    assert result.found
    assert result.context.match_count == 1
    assert result.context.sources[-1].id == laser.id
    assert "Laser toning 2,500 THB" in result.context_text
    assert started.vector_index.queries[-1]["top_k"] == 2


@pytest.mark.asyncio
async def test_match_count_limits_results(started):
    for i in range(4):
        await add_knowledge(started, f"Treatment {i}", category="treatments", score=0.6 + i / 10)

    result = await started.retriever.retrieve("treatment", AISettings(match_count=2))

    assert result.context.match_count == 2
    assert started.vector_index.queries[-1]["top_k"] == 2
    assert "Treatment 3" in result.context_text
    assert "Treatment 0" not in result.context_text


@pytest.mark.asyncio
async def test_search_failure_degrades(started, fakes):
    await add_knowledge(started, "Open daily", category="general")
    await add_knowledge(started, "Botox 3,900 THB", category="injectables", score=0.9)
    fakes.index.fail_query = True

    result = await started.retriever.retrieve("botox", AISettings())

    assert result.degraded
    assert not result.found
    assert result.context_text == "Open daily"


@pytest.mark.asyncio
async def test_stale_vector_without_row_ignored(started, fakes):
    fakes.index.vectors["deleted-entry"] = ([0.1] * 8, {})
    fakes.index.scores["deleted-entry"] = 0.95

    result = await started.retriever.retrieve("anything", AISettings())

    assert not result.found


@pytest.mark.asyncio
async def test_context_cap_applies(started):
    await add_knowledge(started, "x" * 500, category="promotion", score=0.9)

    result = await started.retriever.retrieve("promo", AISettings(max_context_chars=100))

    assert result.found
    assert len(result.context_text) == 100
    assert result.context.truncated


@pytest.mark.asyncio
async def test_finetuned_mode_uses_recent_entries_only(started, fakes):
    old = await add_knowledge(started, "Old price list", category="pricing")
    await add_knowledge(started, "New year promotion 20% off", category="promotion")
    async with started.session_factory() as session:
        async with session.begin():
            await session.execute(
                update(KnowledgeEntry)
                .where(KnowledgeEntry.id == old.id)
                .values(created_at=utcnow() - timedelta(days=30))
            )

    result = await started.retriever.retrieve(
        "promo", AISettings(use_finetuned_model=True, recent_knowledge_days=7)
    )

    assert result.found
    assert result.context_text.startswith("Recent updates:")
    assert "New year promotion" in result.context_text
    assert "Old price list" not in result.context_text
    assert fakes.index.queries == []


@pytest.mark.asyncio
async def test_finetuned_mode_survives_huge_recency_window(started):
    await add_knowledge(started, "New year promotion 20% off", category="promotion")

    result = await started.retriever.retrieve(
        "promo", AISettings(use_finetuned_model=True, recent_knowledge_days=10**12)
    )

    assert result.found
    assert "New year promotion" in result.context_text


# ── Knowledge Store ───────────────────────────────────

@pytest.mark.asyncio
async def test_add_indexes_entry(started, fakes):
    entry = await started.knowledge_store.add("  Botox 3,900 THB  ", category="injectables")

    assert entry.content == "Botox 3,900 THB"
    assert entry.id in fakes.index.vectors
    assert fakes.index.vectors[entry.id][1]["category"] == "injectables"


@pytest.mark.asyncio
async def test_add_rejects_blank(started):
    with pytest.raises(ValueError):
        await started.knowledge_store.add("   ")


@pytest.mark.asyncio
async def test_failed_upsert_rolls_back_row(started, fakes):
    fakes.index.fail_upsert = True

    with pytest.raises(UpstreamServiceError):
        await started.knowledge_store.add("Botox 3,900 THB")

    assert await list_knowledge_rows(started) == []


@pytest.mark.asyncio
async def test_embedding_failure_stores_nothing(started, fakes):
    fakes.embedding.fail = True

    with pytest.raises(UpstreamServiceError):
        await started.knowledge_store.add("Botox 3,900 THB")

    assert await list_knowledge_rows(started) == []


@pytest.mark.asyncio
async def test_delete_removes_row_and_vector(started, fakes):
    entry = await started.knowledge_store.add("Temporary promotion")

    await started.knowledge_store.delete(entry.id)

    assert entry.id not in fakes.index.vectors
    with pytest.raises(NotFound):
        await started.knowledge_store.delete(entry.id)
