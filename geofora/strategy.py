"""
Strategy Orchestrator: runs interlinking across a whole forum.

    collecting -> scoring -> done_preview
                          -> applying -> invalidating -> done_committed

Collecting and scoring failures abort the run. During applying each
candidate is independent: failures are recorded on the summary and the run
continues. Invalidation fires once, after every apply task has finished, and
only if something was written.

A caller may pass an ``asyncio.Event``. It is checked at each phase boundary
and before each candidate's write. Writes that already happened are kept.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import List, Optional, Union

from geofora.applier import BidirectionalLinkApplier
from geofora.content import ContentProvider
from geofora.errors import (
    ContentUnavailable,
    InvalidArgument,
    RegistryWriteFailed,
    RunCancelled,
)
from geofora.invalidation import InvalidationCoordinator
from geofora.models import (
    ApplyOutcome,
    ApplyResult,
    ContentSource,
    LinkCandidate,
    StrategyPreview,
    StrategyRun,
    StrategySummary,
)
from geofora.scorer import CandidateScorer

logger = logging.getLogger("geofora.strategy")


class RunPhase(str, Enum):
    COLLECTING = "collecting"
    SCORING = "scoring"
    APPLYING = "applying"
    INVALIDATING = "invalidating"
    DONE_PREVIEW = "done_preview"
    DONE_COMMITTED = "done_committed"


class StrategyOrchestrator:
    """
    Parameters
    ----------
    content : ContentProvider
        Source of forum and main-site content.
    scorer : CandidateScorer
        Ranks candidates between the two pools.
    applier : BidirectionalLinkApplier
        Writes accepted candidates.
    coordinator : InvalidationCoordinator
        Invalidates read views after a committed batch.
    apply_concurrency : int
        Maximum candidates applied at once.
    """

    def __init__(
        self,
        content: ContentProvider,
        scorer: CandidateScorer,
        applier: BidirectionalLinkApplier,
        coordinator: InvalidationCoordinator,
        apply_concurrency: int = 5,
    ):
        self.content = content
        self.scorer = scorer
        self.applier = applier
        self.coordinator = coordinator
        self.apply_concurrency = max(1, apply_concurrency)

    @staticmethod
    def _enter(run: StrategyRun, phase: RunPhase) -> None:
        logger.info("Strategy run forum=%d preview=%s -> %s", run.forum_id, run.preview_only, phase.value)

    @staticmethod
    def _check_cancel(cancel_event: Optional[asyncio.Event], phase: RunPhase) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled(f"Strategy run cancelled before {phase.value}", phase=phase.value)

    async def _collect(self, run: StrategyRun):
        try:
            forum_items, site_items = await asyncio.gather(
                self.content.list_interlinkable(ContentSource.FORUM, run.limit, forum_id=run.forum_id),
                self.content.list_interlinkable(ContentSource.MAIN_SITE, run.limit),
            )
        except (ContentUnavailable, InvalidArgument):
            raise
        except Exception as exc:
            raise ContentUnavailable(f"Could not collect content for forum {run.forum_id}: {exc}") from exc
        logger.info(
            "Collected %d forum items and %d main-site items for forum %d",
            len(forum_items), len(site_items), run.forum_id,
        )
        return forum_items, site_items

    async def _apply_all(
        self,
        candidates: List[LinkCandidate],
        cancel_event: Optional[asyncio.Event],
    ) -> List[ApplyResult]:
        semaphore = asyncio.Semaphore(self.apply_concurrency)

        async def _apply_one(candidate: LinkCandidate) -> ApplyResult:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return ApplyResult(candidate=candidate, outcome=ApplyOutcome.SKIPPED, error="cancelled")
                try:
                    return await self.applier.apply(candidate, automatic=True)
                except (RegistryWriteFailed, InvalidArgument) as exc:
                    logger.warning("Candidate %s -> %s failed: %s", candidate.source, candidate.target, exc)
                    return ApplyResult(candidate=candidate, outcome=ApplyOutcome.FAILED, error=str(exc))

        return list(await asyncio.gather(*(_apply_one(c) for c in candidates)))

    async def run(
        self,
        run: StrategyRun,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Union[StrategyPreview, StrategySummary]:
        """
        Execute one strategy run.

        Returns
        -------
        StrategyPreview
            In preview mode: ranked candidates, nothing written.
        StrategySummary
            In commit mode: per-candidate outcomes and counts.

        Raises
        ------
        InvalidArgument
            On a bad cap or limit, before any I/O.
        ContentUnavailable
            If either content collaborator fails.
        ScoringUnavailable
            If the relevance collaborator fails.
        RunCancelled
            If cancelled before anything was written.
        """
        if run.per_item_cap < 1:
            raise InvalidArgument(f"per_item_cap must be >= 1, got {run.per_item_cap}")
        if run.limit < 1:
            raise InvalidArgument(f"limit must be >= 1, got {run.limit}")

        self._check_cancel(cancel_event, RunPhase.COLLECTING)
        self._enter(run, RunPhase.COLLECTING)
        forum_items, site_items = await self._collect(run)

        self._check_cancel(cancel_event, RunPhase.SCORING)
        self._enter(run, RunPhase.SCORING)
        candidates = await self.scorer.score(forum_items, site_items, max_per_item=run.per_item_cap)

        if run.preview_only:
            self._enter(run, RunPhase.DONE_PREVIEW)
            return StrategyPreview(forum_id=run.forum_id, candidates=candidates)

        self._check_cancel(cancel_event, RunPhase.APPLYING)
        self._enter(run, RunPhase.APPLYING)
        summary = StrategySummary(forum_id=run.forum_id)
        summary.results = await self._apply_all(candidates, cancel_event)
        summary.cancelled = summary.skipped_count > 0

        created = summary.created_links
        if created:
            self._enter(run, RunPhase.INVALIDATING)
            try:
                keys = await self.coordinator.invalidate_links(created)
            except Exception as exc:
                # Links stay committed; the stale cache is reported on the summary
                logger.error("Invalidation failed for forum %d after %d writes: %s", run.forum_id, len(created), exc)
                summary.invalidation_error = str(exc)
            else:
                summary.invalidated_keys = len(keys)

        self._enter(run, RunPhase.DONE_COMMITTED)
        logger.info(
            "Strategy run forum=%d: %d succeeded, %d partial, %d failed, %d skipped, %d links created",
            run.forum_id, summary.succeeded_count, summary.partial_count,
            summary.failed_count, summary.skipped_count, summary.created_count,
        )
        return summary
