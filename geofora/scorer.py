"""
Candidate Scorer: ranks and bounds link candidates between two content pools.

The scorer owns no state. It delegates relevance judgement to a
:class:`~geofora.relevance.RelevanceScorer`, then enforces the contract the
rest of the engine relies on:

- only pairs whose source is in the requesting pool and whose target is in
  the opposite pool survive;
- no self-links, no scores outside [0, 1], one candidate per (source, target);
- at most ``max_per_item`` candidates per source item;
- deterministic order: score descending, then shorter target title, then
  lower target id (then source identity, for a total order).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from geofora.errors import InvalidArgument, ScoringUnavailable
from geofora.models import ContentItem, ContentRef, LinkCandidate
from geofora.relevance import RelevanceScorer

logger = logging.getLogger("geofora.scorer")

DEFAULT_MAX_PER_ITEM = 3


def candidate_sort_key(candidate: LinkCandidate) -> Tuple:
    return (
        -candidate.relevance_score,
        len(candidate.target_title),
        candidate.target.id,
        candidate.target.type.value,
        candidate.source.type.value,
        candidate.source.id,
    )


class CandidateScorer:
    """
    Parameters
    ----------
    relevance : RelevanceScorer
        External relevance collaborator.
    timeout : float, optional
        Seconds allowed per collaborator call. ``None`` disables the limit.
    """

    def __init__(self, relevance: RelevanceScorer, timeout: Optional[float] = 30.0):
        self.relevance = relevance
        self.timeout = timeout

    async def _call(
        self,
        sources: Sequence[ContentItem],
        targets: Sequence[ContentItem],
        max_per_item: int,
    ) -> List[LinkCandidate]:
        if not sources or not targets:
            return []
        try:
            result = await asyncio.wait_for(
                self.relevance.rank(sources, targets, max_per_item),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ScoringUnavailable(
                f"Relevance scorer {self.relevance.name!r} timed out after {self.timeout}s"
            ) from exc
        except ScoringUnavailable:
            raise
        except Exception as exc:
            raise ScoringUnavailable(
                f"Relevance scorer {self.relevance.name!r} failed: {exc}"
            ) from exc
        if not isinstance(result, list) or not all(isinstance(c, LinkCandidate) for c in result):
            raise ScoringUnavailable(
                f"Relevance scorer {self.relevance.name!r} returned a malformed result"
            )
        return result

    @staticmethod
    def _filter(
        raw: List[LinkCandidate],
        sources: Dict[ContentRef, ContentItem],
        targets: Dict[ContentRef, ContentItem],
    ) -> List[LinkCandidate]:
        kept: List[LinkCandidate] = []
        for c in raw:
            if c.source not in sources or c.target not in targets:
                logger.debug("Dropping candidate %s -> %s outside its pools", c.source, c.target)
                continue
            if c.is_self_link:
                continue
            if not 0.0 <= c.relevance_score <= 1.0:
                logger.debug("Dropping candidate %s -> %s with score %r", c.source, c.target, c.relevance_score)
                continue
            kept.append(c)
        return kept

    async def score(
        self,
        pool_a: Sequence[ContentItem],
        pool_b: Sequence[ContentItem],
        max_per_item: int = DEFAULT_MAX_PER_ITEM,
        include_reverse: bool = False,
    ) -> List[LinkCandidate]:
        """
        Rank link candidates from *pool_a* into *pool_b*.

        Parameters
        ----------
        pool_a, pool_b : sequence of ContentItem
            Source and target pools.
        max_per_item : int
            Upper bound on candidates per source item. Must be >= 1.
        include_reverse : bool
            Also rank *pool_b* items as sources against *pool_a*.

        Raises
        ------
        InvalidArgument
            If ``max_per_item < 1``.
        ScoringUnavailable
            If the relevance collaborator times out, errors, or misbehaves.
        """
        if isinstance(max_per_item, bool) or not isinstance(max_per_item, int) or max_per_item < 1:
            raise InvalidArgument(f"max_per_item must be an integer >= 1, got {max_per_item!r}")

        a = {item.ref: item for item in pool_a}
        b = {item.ref: item for item in pool_b}

        raw = self._filter(await self._call(list(a.values()), list(b.values()), max_per_item), a, b)
        if include_reverse:
            raw += self._filter(await self._call(list(b.values()), list(a.values()), max_per_item), b, a)

        best: Dict[Tuple[ContentRef, ContentRef], LinkCandidate] = {}
        for c in raw:
            current = best.get(c.pair)
            if current is None or candidate_sort_key(c) < candidate_sort_key(current):
                best[c.pair] = c

        per_source: Dict[ContentRef, List[LinkCandidate]] = {}
        for c in best.values():
            per_source.setdefault(c.source, []).append(c)

        ranked: List[LinkCandidate] = []
        for group in per_source.values():
            group.sort(key=candidate_sort_key)
            ranked.extend(group[:max_per_item])
        ranked.sort(key=candidate_sort_key)

        logger.info(
            "Scored %d x %d items -> %d candidates (max %d per item, reverse=%s)",
            len(a), len(b), len(ranked), max_per_item, include_reverse,
        )
        return ranked
