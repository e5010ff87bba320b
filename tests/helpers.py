"""
Builders and a deterministic relevance scorer shared across the test modules.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

from geofora.models import ContentItem, ContentRef, ContentType, LinkCandidate
from geofora.relevance import RelevanceScorer

FORUM_ID = 7


def make_item(
    content_id: int,
    content_type: str,
    title: str,
    content: str = "",
    forum_id: Optional[int] = None,
) -> ContentItem:
    return ContentItem(
        ref=ContentRef(id=content_id, type=ContentType.parse(content_type)),
        title=title,
        content=content,
        forum_id=forum_id,
    )


def q(content_id: int) -> ContentRef:
    return ContentRef(id=content_id, type=ContentType.QUESTION)


def page(content_id: int) -> ContentRef:
    return ContentRef(id=content_id, type=ContentType.MAIN_PAGE)


def make_candidate(
    source: ContentRef,
    target: ContentRef,
    score: float = 0.8,
    source_title: str = "Source title",
    target_title: str = "Target title",
    anchor_text: Optional[str] = None,
    bidirectional: bool = True,
) -> LinkCandidate:
    return LinkCandidate(
        source=source,
        source_title=source_title,
        target=target,
        target_title=target_title,
        anchor_text=anchor_text or target_title,
        relevance_score=score,
        bidirectional=bidirectional,
    )


# ---------------------------------------------------------------------------
# Relevance stub
# ---------------------------------------------------------------------------


class StubRelevanceScorer(RelevanceScorer):
    """
    Returns fixed scores for (source, target) pairs.

    Pairs missing from *scores* get *default*; ``None`` means no candidate.
    Every call is recorded in ``calls``.
    """

    name = "stub"

    def __init__(
        self,
        scores: Optional[Dict[Tuple[ContentRef, ContentRef], float]] = None,
        default: Optional[float] = None,
    ):
        self.scores = scores or {}
        self.default = default
        self.calls: List[Tuple[List[ContentRef], List[ContentRef], int]] = []
        self.closed = False

    async def rank(
        self,
        source_items: Sequence[ContentItem],
        target_items: Sequence[ContentItem],
        max_per_item: int,
    ) -> List[LinkCandidate]:
        self.calls.append(([s.ref for s in source_items], [t.ref for t in target_items], max_per_item))
        out: List[LinkCandidate] = []
        for source in source_items:
            for target in target_items:
                score = self.scores.get((source.ref, target.ref), self.default)
                if score is None:
                    continue
                out.append(
                    LinkCandidate(
                        source=source.ref,
                        source_title=source.title,
                        target=target.ref,
                        target_title=target.title,
                        anchor_text=target.title,
                        relevance_score=score,
                        bidirectional=source.ref.type.source is not target.ref.type.source,
                    )
                )
        return out

    async def close(self) -> None:
        self.closed = True

