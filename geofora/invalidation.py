"""
Cache/Invalidation Coordinator.

Read views over the Link Registry are keyed by content identity:

    ("source", type, id)    links whose source is the item
    ("target", type, id)    links whose target is the item
    ("relevant", type, id)  relevance suggestions computed for the item

After a batch of writes the coordinator computes the distinct set of view
keys touched and hands it to the cache sink in one call. Marking a key stale
twice has the same effect as marking it once.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, Iterable, List, Set, Tuple

from geofora.models import ContentRef, Interlink

logger = logging.getLogger("geofora.invalidation")

ViewKey = Tuple[str, str, int]

VIEW_SOURCE = "source"
VIEW_TARGET = "target"
VIEW_RELEVANT = "relevant"
VIEWS = (VIEW_SOURCE, VIEW_TARGET, VIEW_RELEVANT)


class CacheSink:
    """Interface for the read-side cache that receives stale markings."""

    async def mark_stale(self, keys: FrozenSet[ViewKey]) -> None:
        raise NotImplementedError


class InMemoryCacheSink(CacheSink):
    """Records stale keys in a set and counts sink calls."""

    def __init__(self) -> None:
        self.stale: Set[ViewKey] = set()
        self.calls: List[FrozenSet[ViewKey]] = []

    async def mark_stale(self, keys: FrozenSet[ViewKey]) -> None:
        self.calls.append(keys)
        self.stale |= keys

    def clear(self, keys: Iterable[ViewKey] = ()) -> None:
        """Drop staleness once a view has been refreshed (all views when empty)."""
        keys = set(keys)
        if keys:
            self.stale -= keys
        else:
            self.stale.clear()


class InvalidationCoordinator:
    """Computes minimal view-key sets and forwards them to a :class:`CacheSink`."""

    def __init__(self, sink: CacheSink):
        self.sink = sink

    @staticmethod
    def keys_for(affected: Iterable[ContentRef]) -> FrozenSet[ViewKey]:
        return frozenset(
            (view, ref.type.value, ref.id)
            for ref in set(affected)
            for view in VIEWS
        )

    @staticmethod
    def affected_by(links: Iterable[Interlink]) -> Set[ContentRef]:
        affected: Set[ContentRef] = set()
        for link in links:
            affected.add(link.source)
            affected.add(link.target)
        return affected

    async def invalidate(self, affected: Iterable[ContentRef]) -> FrozenSet[ViewKey]:
        """Mark every view of every affected item stale in a single sink call."""
        keys = self.keys_for(affected)
        if not keys:
            return keys
        await self.sink.mark_stale(keys)
        logger.info("Invalidated %d view keys", len(keys))
        return keys

    async def invalidate_links(self, links: Iterable[Interlink]) -> FrozenSet[ViewKey]:
        return await self.invalidate(self.affected_by(links))
