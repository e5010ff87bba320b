"""
Bidirectional Link Applier: materializes an accepted candidate as Interlinks.

The forward link (source -> target) always uses the candidate's anchor text.
For bidirectional candidates a reverse link (target -> source) is created
with an anchor derived locally from the source title (first 40 characters,
exact prefix). Both links carry the candidate's relevance score.

Before every write the applier checks the registry for an identical
(source, target) link under a per-pair lock, and reuses one if found. That
check is process-local: separate processes writing to a shared registry can
still race.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Tuple

from geofora.errors import InterlinkError, InvalidArgument, RegistryWriteFailed
from geofora.models import ApplyOutcome, ApplyResult, ContentRef, Interlink, LinkCandidate
from geofora.registry import LinkRegistry

logger = logging.getLogger("geofora.applier")


class BidirectionalLinkApplier:
    """
    Parameters
    ----------
    registry : LinkRegistry
        Where Interlinks are written.
    """

    def __init__(self, registry: LinkRegistry):
        self.registry = registry
        self._pair_locks: Dict[Tuple[ContentRef, ContentRef], asyncio.Lock] = {}
        self._pair_users: Dict[Tuple[ContentRef, ContentRef], int] = {}

    @asynccontextmanager
    async def _pair_lock(self, source: ContentRef, target: ContentRef):
        """Hold the lock for one (source, target) pair; drop it once unused."""
        key = (source, target)
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = self._pair_locks[key] = asyncio.Lock()
        self._pair_users[key] = self._pair_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._pair_users[key] -= 1
            if not self._pair_users[key]:
                del self._pair_users[key]
                del self._pair_locks[key]

    async def _write(
        self,
        source: ContentRef,
        target: ContentRef,
        anchor_text: str,
        relevance_score: float,
        automatic: bool,
        direction: str,
    ) -> Tuple[Interlink, bool]:
        """Return ``(link, created)``; *created* is False when an existing link was reused."""
        async with self._pair_lock(source, target):
            existing = await self.registry.find(source, target)
            if existing is not None:
                logger.debug("Reusing interlink #%d for %s -> %s", existing.id, source, target)
                return existing, False
            try:
                link = await self.registry.create(
                    source=source,
                    target=target,
                    anchor_text=anchor_text,
                    relevance_score=relevance_score,
                    automatic=automatic,
                )
            except RegistryWriteFailed as exc:
                exc.direction = direction
                raise
            except InterlinkError:
                raise
            except Exception as exc:
                raise RegistryWriteFailed(
                    f"Failed to write {direction} interlink {source} -> {target}: {exc}",
                    direction=direction,
                ) from exc
            return link, True

    async def apply(self, candidate: LinkCandidate, *, automatic: bool) -> ApplyResult:
        """
        Create the forward link and, when flagged, the reverse link.

        Parameters
        ----------
        candidate : LinkCandidate
            The accepted suggestion.
        automatic : bool
            True when invoked by the Strategy Orchestrator, False for a direct
            user action. Callers must choose explicitly.

        Returns
        -------
        ApplyResult
            ``both_created``, ``forward_only`` (not bidirectional), or
            ``reverse_failed`` (forward written, reverse write failed).

        Raises
        ------
        InvalidArgument
            If the candidate would link an item to itself.
        RegistryWriteFailed
            If the forward write fails. The reverse is then not attempted.
        """
        if candidate.is_self_link:
            raise InvalidArgument(f"Candidate links {candidate.source} to itself")

        forward, forward_created = await self._write(
            candidate.source,
            candidate.target,
            candidate.anchor_text,
            candidate.relevance_score,
            automatic,
            "forward",
        )
        created = [forward] if forward_created else []

        if not candidate.bidirectional:
            return ApplyResult(
                candidate=candidate,
                outcome=ApplyOutcome.FORWARD_ONLY,
                links=[forward],
                created=created,
            )

        reverse: Optional[Interlink] = None
        try:
            reverse, reverse_created = await self._write(
                candidate.target,
                candidate.source,
                candidate.reverse_anchor_text,
                candidate.relevance_score,
                automatic,
                "reverse",
            )
        except RegistryWriteFailed as exc:
            logger.warning(
                "Reverse interlink %s -> %s failed after forward #%d was written: %s",
                candidate.target, candidate.source, forward.id, exc,
            )
            return ApplyResult(
                candidate=candidate,
                outcome=ApplyOutcome.REVERSE_FAILED,
                links=[forward],
                created=created,
                error=str(exc),
            )

        if reverse_created:
            created.append(reverse)
        return ApplyResult(
            candidate=candidate,
            outcome=ApplyOutcome.BOTH_CREATED,
            links=[forward, reverse],
            created=created,
        )
