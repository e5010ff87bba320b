"""
Tests for the caller-facing InterlinkingService.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from geofora.config import Settings
from geofora.content import HttpContentProvider, InMemoryContentProvider
from geofora.errors import FeatureNotAvailable, InvalidArgument
from geofora.models import ApplyOutcome, StrategyPreview, StrategySummary
from geofora.plans import PlanType, SessionConfig
from geofora.relevance import AnthropicRelevanceScorer, KeywordRelevanceScorer
from geofora import service as service_module
from geofora.service import build_service, get_service
from tests.helpers import FORUM_ID, make_candidate, page, q


# ===================================================================
# Suggestions
# ===================================================================


class TestSuggestions:
    """get_bidirectional_suggestions"""

    @pytest.mark.asyncio
    async def test_ranks_forum_to_site(self, service, stub_relevance):
        candidates = await service.get_bidirectional_suggestions(
            [q(1), {"id": 10, "type": "answer"}], [page(1), page(2)], max_suggestions_per_item=1
        )
        assert len(candidates) == 2
        assert {c.source.type.value for c in candidates} == {"question", "answer"}
        assert all(c.target.type.value == "main_page" for c in candidates)
        assert stub_relevance.calls[0][2] == 1

    @pytest.mark.asyncio
    async def test_duplicate_refs_collapse(self, service, stub_relevance):
        await service.get_bidirectional_suggestions([q(1), q(1)], [page(1)])
        assert stub_relevance.calls[0][0] == [q(1)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cap", [0, -3, "3"])
    async def test_invalid_cap_before_io(self, service, stub_relevance, cap):
        with pytest.raises(InvalidArgument):
            await service.get_bidirectional_suggestions([q(1)], [page(1)], max_suggestions_per_item=cap)
        assert stub_relevance.calls == []

    @pytest.mark.asyncio
    async def test_wrong_pool_rejected(self, service):
        with pytest.raises(InvalidArgument):
            await service.get_bidirectional_suggestions([page(1)], [page(2)])
        with pytest.raises(InvalidArgument):
            await service.get_bidirectional_suggestions([q(1)], [q(2)])

    @pytest.mark.asyncio
    async def test_unknown_content(self, service):
        with pytest.raises(InvalidArgument):
            await service.get_bidirectional_suggestions([q(404)], [page(1)])

    @pytest.mark.asyncio
    async def test_empty_pools(self, service, stub_relevance):
        assert await service.get_bidirectional_suggestions([], [page(1)]) == []
        assert stub_relevance.calls == []


# ===================================================================
# Applying
# ===================================================================


class TestCreate:
    """create_bidirectional_interlinks"""

    @pytest.mark.asyncio
    async def test_manual_apply_invalidates_once(self, service, sink, registry):
        result = await service.create_bidirectional_interlinks(make_candidate(q(1), page(1)))
        assert result.outcome is ApplyOutcome.BOTH_CREATED
        assert all(not link.automatic for link in result.links)
        assert len(sink.calls) == 1
        assert ("target", "main_page", 1) in sink.stale
        assert len(registry) == 2

    @pytest.mark.asyncio
    async def test_reapply_skips_invalidation(self, service, sink):
        await service.create_bidirectional_interlinks(make_candidate(q(1), page(1)))
        await service.create_bidirectional_interlinks(make_candidate(q(1), page(1)))
        assert len(sink.calls) == 1


# ===================================================================
# Strategy and plans
# ===================================================================


class TestStrategy:
    """generate_interlinking_strategy"""

    @pytest.mark.asyncio
    async def test_preview_defaults_from_settings(self, service, stub_relevance):
        result = await service.generate_interlinking_strategy(FORUM_ID, preview_only=True)
        assert isinstance(result, StrategyPreview)
        assert stub_relevance.calls[0][2] == service.settings.per_item_cap

    @pytest.mark.asyncio
    async def test_commit_without_session(self, service, registry):
        result = await service.generate_interlinking_strategy(FORUM_ID, per_item_cap=1)
        assert isinstance(result, StrategySummary)
        assert result.succeeded_count == 5
        assert len(registry) == 10

    @pytest.mark.asyncio
    async def test_starter_plan_cannot_commit(self, service, registry):
        session = SessionConfig("s1", PlanType.STARTER)
        with pytest.raises(FeatureNotAvailable):
            await service.generate_interlinking_strategy(FORUM_ID, session=session)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_starter_plan_can_preview(self, service):
        session = SessionConfig("s1", PlanType.STARTER)
        result = await service.generate_interlinking_strategy(FORUM_ID, preview_only=True, session=session)
        assert isinstance(result, StrategyPreview)

    @pytest.mark.asyncio
    async def test_professional_plan_commits(self, service):
        plans = service.plans("s2")
        plans.set_selected_plan(PlanType.PROFESSIONAL)
        result = await service.generate_interlinking_strategy(FORUM_ID, session=plans.session())
        assert isinstance(result, StrategySummary)


# ===================================================================
# Read views
# ===================================================================


class TestReadViews:
    """Content listing, link listing, relevance, and stats."""

    @pytest.mark.asyncio
    async def test_interlinkable_content(self, service):
        items = await service.get_interlinkable_content("forum", limit=3, forum_id=FORUM_ID)
        assert len(items) == 3

    @pytest.mark.asyncio
    async def test_interlinkable_content_bad_source(self, service):
        with pytest.raises(InvalidArgument):
            await service.get_interlinkable_content("blog")

    @pytest.mark.asyncio
    async def test_links_for_source_and_target(self, service):
        await service.create_bidirectional_interlinks(make_candidate(q(1), page(1)))
        assert [l.target for l in await service.list_links_for_source("question", 1)] == [page(1)]
        assert [l.source for l in await service.list_links_for_target("question", 1)] == [page(1)]

    @pytest.mark.asyncio
    async def test_relevant_content_for_question(self, service):
        data = await service.get_relevant_content(q(1))
        assert data
        assert data[0]["title"] == "SEO Guide"
        assert all(row["type"] != "question" for row in data)
        assert all(row["relevance_score"] >= service_module.RELEVANT_MIN_SCORE for row in data)

    @pytest.mark.asyncio
    async def test_relevant_content_for_page_never_includes_itself(self, service):
        data = await service.get_relevant_content({"id": 1, "type": "main_page"}, limit=5)
        assert all(row["type"] == "question" for row in data)

    @pytest.mark.asyncio
    async def test_stats(self, service, registry):
        timestamps = [
            "2026-03-02T10:00:00+00:00",
            "2026-03-02T10:00:01+00:00",
            "2026-01-15T08:00:00+00:00",
        ]
        with patch("geofora.registry.now_iso", side_effect=timestamps):
            await registry.create(source=q(1), target=page(1), anchor_text="a", relevance_score=0.8, automatic=True)
            await registry.create(source=page(1), target=q(1), anchor_text="b", relevance_score=0.6, automatic=True)
            await registry.create(source=q(50), target=page(2), anchor_text="c", relevance_score=0.7, automatic=False)

        stats = await service.get_interlink_stats()
        assert stats["total"] == 3
        assert stats["automatic"] == 2
        assert stats["manual"] == 1
        assert {row["name"]: row["value"] for row in stats["link_types"]} == {
            "main_page to question": 1,
            "question to main_page": 2,
        }
        assert stats["growth"] == [{"month": "Jan", "links": 1}, {"month": "Mar", "links": 2}]
        assert stats["avg_relevance"] == 0.7

        scoped = await service.get_interlink_stats(FORUM_ID)
        assert scoped["total"] == 2
        assert scoped["forum_id"] == FORUM_ID


# ===================================================================
# Factory
# ===================================================================


class TestBuildService:
    """build_service / get_service"""

    def test_offline_defaults(self):
        service = build_service(Settings(data_dir=None))
        assert isinstance(service.content, InMemoryContentProvider)
        assert isinstance(service.relevance, KeywordRelevanceScorer)

    def test_http_and_anthropic(self, tmp_path):
        service = build_service(Settings(
            data_dir=tmp_path,
            anthropic_api_key="sk-test",
            content_api_url="https://forum.example.com",
        ))
        assert isinstance(service.content, HttpContentProvider)
        assert isinstance(service.relevance, AnthropicRelevanceScorer)

    def test_keyword_forced(self):
        service = build_service(Settings(data_dir=None, anthropic_api_key="sk-test", scorer="keyword"))
        assert isinstance(service.relevance, KeywordRelevanceScorer)

    @pytest.mark.asyncio
    async def test_registry_persists_under_data_dir(self, tmp_path):
        service = build_service(Settings(data_dir=tmp_path))
        await service.create_bidirectional_interlinks(make_candidate(q(1), page(1)))
        assert (tmp_path / "interlinks.json").exists()
        assert len(build_service(Settings(data_dir=tmp_path)).registry) == 2

    def test_get_service_singleton(self, monkeypatch):
        monkeypatch.setattr(service_module, "_service_instance", None)
        first = get_service(Settings(data_dir=None))
        assert get_service() is first
        monkeypatch.setattr(service_module, "_service_instance", None)

    @pytest.mark.asyncio
    async def test_close(self, service, stub_relevance):
        await service.close()
        assert stub_relevance.closed is True
