"""
Tests for the Candidate Scorer.

Covers the per-item cap, deterministic ordering and tie-breaks, pool
filtering, and the mapping of collaborator failures to ScoringUnavailable.
"""

from __future__ import annotations

import asyncio

import pytest

from geofora.errors import InvalidArgument, ScoringUnavailable
from geofora.models import LinkCandidate
from geofora.relevance import RelevanceScorer
from geofora.scorer import CandidateScorer
from tests.helpers import StubRelevanceScorer, make_item, page, q


def _targets():
    return [
        make_item(1, "main_page", "Pricing plans"),
        make_item(2, "main_page", "SEO"),
        make_item(3, "main_page", "SEO Guide"),
        make_item(4, "main_page", "Blog"),
    ]


class TestCap:
    """At most max_per_item candidates per source, scores non-increasing."""

    @pytest.mark.asyncio
    async def test_cap_per_source(self):
        sources = [make_item(i, "question", f"Question {i}") for i in range(1, 4)]
        stub = StubRelevanceScorer(default=0.7)
        candidates = await CandidateScorer(stub).score(sources, _targets(), max_per_item=2)

        per_source = {}
        for c in candidates:
            per_source.setdefault(c.source, []).append(c.relevance_score)
        assert len(candidates) == 6
        for scores in per_source.values():
            assert len(scores) <= 2
            assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_keeps_highest_scores(self):
        stub = StubRelevanceScorer({
            (q(1), page(1)): 0.2,
            (q(1), page(2)): 0.9,
            (q(1), page(3)): 0.5,
            (q(1), page(4)): 0.7,
        })
        candidates = await CandidateScorer(stub).score(
            [make_item(1, "question", "Q")], _targets(), max_per_item=2
        )
        assert [c.target for c in candidates] == [page(2), page(4)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cap", [0, -1, 1.5, True])
    async def test_invalid_cap(self, cap):
        stub = StubRelevanceScorer(default=0.5)
        with pytest.raises(InvalidArgument):
            await CandidateScorer(stub).score([make_item(1, "question", "Q")], _targets(), max_per_item=cap)
        assert stub.calls == []


class TestOrdering:
    """Tie-break: shorter target title, then lower target id."""

    @pytest.mark.asyncio
    async def test_shorter_title_wins_tie(self):
        stub = StubRelevanceScorer(default=0.8)
        candidates = await CandidateScorer(stub).score(
            [make_item(1, "question", "Q")], _targets(), max_per_item=4
        )
        assert [c.target_title for c in candidates] == ["SEO", "Blog", "SEO Guide", "Pricing plans"]

    @pytest.mark.asyncio
    async def test_equal_length_titles_lower_id_wins(self):
        targets = [make_item(9, "main_page", "Alph"), make_item(4, "main_page", "Zeta")]
        stub = StubRelevanceScorer(default=0.8)
        candidates = await CandidateScorer(stub).score(
            [make_item(1, "question", "Q")], targets, max_per_item=2
        )
        assert [c.target for c in candidates] == [page(4), page(9)]

    @pytest.mark.asyncio
    async def test_equal_length_titles_cap_keeps_lower_id(self):
        targets = [make_item(9, "main_page", "Alph"), make_item(4, "main_page", "Zeta")]
        stub = StubRelevanceScorer(default=0.8)
        candidates = await CandidateScorer(stub).score(
            [make_item(1, "question", "Q")], targets, max_per_item=1
        )
        assert [c.target_title for c in candidates] == ["Zeta"]

    @pytest.mark.asyncio
    async def test_deterministic_across_runs(self):
        sources = [make_item(i, "question", f"Question {i}") for i in range(1, 4)]
        stub = StubRelevanceScorer(default=0.5)
        scorer = CandidateScorer(stub)
        first = await scorer.score(sources, _targets(), max_per_item=3)
        second = await scorer.score(list(reversed(sources)), list(reversed(_targets())), max_per_item=3)
        assert [c.pair for c in first] == [c.pair for c in second]


class TestFiltering:
    """Candidates outside the contract are dropped."""

    @pytest.mark.asyncio
    async def test_drops_out_of_range_scores(self):
        stub = StubRelevanceScorer({(q(1), page(1)): 1.5, (q(1), page(2)): -0.1, (q(1), page(3)): 0.4})
        candidates = await CandidateScorer(stub).score([make_item(1, "question", "Q")], _targets(), 3)
        assert [c.target for c in candidates] == [page(3)]

    @pytest.mark.asyncio
    async def test_drops_targets_outside_pool(self):
        class Rogue(RelevanceScorer):
            name = "rogue"

            async def rank(self, source_items, target_items, max_per_item):
                return [
                    LinkCandidate(q(1), "Q", page(99), "Ghost", "ghost", 0.9),
                    LinkCandidate(q(1), "Q", q(1), "Q", "self", 0.9),
                    LinkCandidate(q(1), "Q", page(1), "Pricing plans", "pricing", 0.6),
                ]

        candidates = await CandidateScorer(Rogue()).score([make_item(1, "question", "Q")], _targets(), 3)
        assert [c.target for c in candidates] == [page(1)]

    @pytest.mark.asyncio
    async def test_duplicate_pairs_collapse_to_best(self):
        class Dupes(RelevanceScorer):
            async def rank(self, source_items, target_items, max_per_item):
                return [
                    LinkCandidate(q(1), "Q", page(1), "Pricing plans", "a", 0.5),
                    LinkCandidate(q(1), "Q", page(1), "Pricing plans", "b", 0.9),
                ]

        candidates = await CandidateScorer(Dupes()).score([make_item(1, "question", "Q")], _targets(), 3)
        assert len(candidates) == 1
        assert candidates[0].anchor_text == "b"

    @pytest.mark.asyncio
    async def test_empty_pool_skips_collaborator(self):
        stub = StubRelevanceScorer(default=0.5)
        assert await CandidateScorer(stub).score([], _targets(), 3) == []
        assert stub.calls == []

    @pytest.mark.asyncio
    async def test_include_reverse(self):
        stub = StubRelevanceScorer(default=0.5)
        sources = [make_item(1, "question", "Q")]
        candidates = await CandidateScorer(stub).score(sources, _targets()[:1], 3, include_reverse=True)
        assert {c.pair for c in candidates} == {(q(1), page(1)), (page(1), q(1))}
        assert len(stub.calls) == 2


class TestFailures:
    """Collaborator failures become ScoringUnavailable."""

    @pytest.mark.asyncio
    async def test_timeout(self):
        class Slow(RelevanceScorer):
            name = "slow"

            async def rank(self, source_items, target_items, max_per_item):
                await asyncio.sleep(5)
                return []

        with pytest.raises(ScoringUnavailable, match="timed out"):
            await CandidateScorer(Slow(), timeout=0.01).score([make_item(1, "question", "Q")], _targets(), 3)

    @pytest.mark.asyncio
    async def test_unexpected_error(self):
        class Broken(RelevanceScorer):
            async def rank(self, source_items, target_items, max_per_item):
                raise RuntimeError("connection reset")

        with pytest.raises(ScoringUnavailable, match="connection reset"):
            await CandidateScorer(Broken()).score([make_item(1, "question", "Q")], _targets(), 3)

    @pytest.mark.asyncio
    async def test_malformed_result(self):
        class Wrong(RelevanceScorer):
            async def rank(self, source_items, target_items, max_per_item):
                return [{"target": 1}]

        with pytest.raises(ScoringUnavailable, match="malformed"):
            await CandidateScorer(Wrong()).score([make_item(1, "question", "Q")], _targets(), 3)
