"""
GEOFORA Interlinking Service
============================

Caller-facing operations for bidirectional interlinking between a forum's
AI-generated Q&A and the business's main site. Wires the content providers,
relevance scorer, link registry, applier, orchestrator, and invalidation
coordinator together.

Usage:
    from geofora.service import get_service

    service = get_service()
    preview = await service.generate_interlinking_strategy(forum_id=7, preview_only=True)
    for candidate in preview.candidates:
        print(candidate.source, "->", candidate.target, candidate.relevance_score)

    summary = await service.generate_interlinking_strategy(forum_id=7)
    print(summary.summary())
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from geofora.applier import BidirectionalLinkApplier
from geofora.config import Settings
from geofora.content import ContentProvider, HttpContentProvider, InMemoryContentProvider
from geofora.errors import ContentUnavailable, InvalidArgument
from geofora.invalidation import CacheSink, InMemoryCacheSink, InvalidationCoordinator
from geofora.models import (
    ApplyResult,
    ContentItem,
    ContentRef,
    ContentSource,
    ContentType,
    Interlink,
    LinkCandidate,
    StrategyPreview,
    StrategyRun,
    StrategySummary,
)
from geofora.plans import (
    FEATURE_ADVANCED_INTERLINKING,
    JsonFileKeyValueStore,
    KeyValueStore,
    MemoryKeyValueStore,
    PlanStore,
    SessionConfig,
)
from geofora.registry import LinkRegistry
from geofora.relevance import AnthropicRelevanceScorer, KeywordRelevanceScorer, RelevanceScorer
from geofora.scorer import CandidateScorer
from geofora.strategy import StrategyOrchestrator

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("geofora")
logger.setLevel(logging.INFO)

if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_handler)

log = logging.getLogger("geofora.service")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Keyword relevance needed for the "relevant content" read view
RELEVANT_MIN_SCORE = 0.2
RELEVANT_POOL_LIMIT = 100
STATS_POOL_LIMIT = 1000

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

RefLike = Union[ContentRef, Dict[str, Any]]


def _to_ref(value: RefLike) -> ContentRef:
    if isinstance(value, ContentRef):
        return value
    if isinstance(value, dict) and "id" in value and "type" in value:
        return ContentRef(id=int(value["id"]), type=ContentType.parse(value["type"]))
    raise InvalidArgument(f"Not a content reference: {value!r}")


def _refs_for(values: Iterable[RefLike], source: ContentSource) -> List[ContentRef]:
    refs: List[ContentRef] = []
    seen = set()
    for value in values:
        ref = _to_ref(value)
        if ref.type.source is not source:
            raise InvalidArgument(f"{ref} is not {source.value} content")
        if ref not in seen:
            seen.add(ref)
            refs.append(ref)
    return refs


class InterlinkingService:
    """
    Facade over the interlinking core.

    Parameters
    ----------
    content : ContentProvider
        Forum and main-site content collaborator.
    relevance : RelevanceScorer
        External relevance collaborator.
    registry : LinkRegistry
        Interlink store.
    sink : CacheSink
        Read-side cache that receives stale markings.
    settings : Settings, optional
        Defaults for limits, caps, timeouts, and concurrency.
    plan_store : KeyValueStore, optional
        Backing store for per-session plan selection.
    """

    def __init__(
        self,
        content: ContentProvider,
        relevance: RelevanceScorer,
        registry: LinkRegistry,
        sink: CacheSink,
        settings: Optional[Settings] = None,
        plan_store: Optional[KeyValueStore] = None,
    ):
        self.settings = settings or Settings(data_dir=None)
        self.content = content
        self.relevance = relevance
        self.registry = registry
        self.sink = sink
        self.kv_store = plan_store or MemoryKeyValueStore()
        self.scorer = CandidateScorer(relevance, timeout=self.settings.scoring_timeout)
        self.applier = BidirectionalLinkApplier(registry)
        self.coordinator = InvalidationCoordinator(sink)
        self.orchestrator = StrategyOrchestrator(
            content,
            self.scorer,
            self.applier,
            self.coordinator,
            apply_concurrency=self.settings.apply_concurrency,
        )
        self._keyword = relevance if isinstance(relevance, KeywordRelevanceScorer) else KeywordRelevanceScorer()

    # -- Sessions -----------------------------------------------------------

    def plans(self, session_id: str) -> PlanStore:
        return PlanStore(self.kv_store, session_id)

    # -- Content ------------------------------------------------------------

    async def get_interlinkable_content(
        self,
        source: Union[ContentSource, str],
        limit: int = 20,
        forum_id: Optional[int] = None,
    ) -> List[ContentItem]:
        source = ContentSource.parse(source)
        if limit < 1:
            raise InvalidArgument(f"limit must be >= 1, got {limit}")
        return await self.content.list_interlinkable(source, limit, forum_id=forum_id)

    async def _resolve(self, refs: Sequence[ContentRef]) -> List[ContentItem]:
        if not refs:
            return []
        try:
            return await self.content.get_items(refs)
        except (InvalidArgument, ContentUnavailable):
            raise
        except Exception as exc:
            raise ContentUnavailable(f"Could not resolve content: {exc}") from exc

    # -- Suggestions --------------------------------------------------------

    async def get_bidirectional_suggestions(
        self,
        forum_content_ids: Sequence[RefLike],
        main_site_content_ids: Sequence[RefLike],
        max_suggestions_per_item: int = 3,
        include_reverse: bool = False,
    ) -> List[LinkCandidate]:
        """
        Rank links from the given forum items to the given main-site pages.

        Raises
        ------
        InvalidArgument
            Bad cap, refs of the wrong kind, or unknown content.
        ContentUnavailable
            The content collaborator could not resolve titles.
        ScoringUnavailable
            The relevance collaborator failed.
        """
        if (
            isinstance(max_suggestions_per_item, bool)
            or not isinstance(max_suggestions_per_item, int)
            or max_suggestions_per_item < 1
        ):
            raise InvalidArgument(
                f"max_suggestions_per_item must be an integer >= 1, got {max_suggestions_per_item!r}"
            )
        forum_refs = _refs_for(forum_content_ids, ContentSource.FORUM)
        site_refs = _refs_for(main_site_content_ids, ContentSource.MAIN_SITE)

        forum_items, site_items = await asyncio.gather(self._resolve(forum_refs), self._resolve(site_refs))
        return await self.scorer.score(
            forum_items,
            site_items,
            max_per_item=max_suggestions_per_item,
            include_reverse=include_reverse,
        )

    # -- Applying -----------------------------------------------------------

    async def create_bidirectional_interlinks(
        self, candidate: LinkCandidate, automatic: bool = False
    ) -> ApplyResult:
        """Apply one candidate (a user action by default) and invalidate its views once."""
        result = await self.applier.apply(candidate, automatic=automatic)
        if result.created:
            await self.coordinator.invalidate_links(result.created)
        log.info(
            "Applied %s -> %s: %s (%d new links)",
            candidate.source, candidate.target, result.outcome.value, len(result.created),
        )
        return result

    # -- Strategy -----------------------------------------------------------

    async def generate_interlinking_strategy(
        self,
        forum_id: int,
        preview_only: bool = False,
        limit: Optional[int] = None,
        per_item_cap: Optional[int] = None,
        session: Optional[SessionConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Union[StrategyPreview, StrategySummary]:
        """
        Run the orchestrator over a forum.

        Committing requires a plan with advanced interlinking when a
        *session* is supplied; previews are always allowed.
        """
        if not preview_only and session is not None:
            session.require(FEATURE_ADVANCED_INTERLINKING)
        run = StrategyRun(
            forum_id=forum_id,
            preview_only=preview_only,
            per_item_cap=per_item_cap if per_item_cap is not None else self.settings.per_item_cap,
            limit=limit if limit is not None else self.settings.content_limit,
        )
        return await self.orchestrator.run(run, cancel_event=cancel_event)

    # -- Read views ---------------------------------------------------------

    async def list_links_for_source(self, content_type: Any, content_id: int) -> List[Interlink]:
        return await self.registry.list_by_source(content_type, content_id)

    async def list_links_for_target(self, content_type: Any, content_id: int) -> List[Interlink]:
        return await self.registry.list_by_target(content_type, content_id)

    async def get_relevant_content(self, ref: RefLike, limit: int = 5) -> List[Dict[str, Any]]:
        """
        Locally scored content worth linking from *ref*.

        Main-site pages are considered unless *ref* is itself a page;
        questions unless *ref* is a question.
        """
        if limit < 1:
            raise InvalidArgument(f"limit must be >= 1, got {limit}")
        ref = _to_ref(ref)
        (source,) = await self._resolve([ref])

        pool: List[ContentItem] = []
        if ref.type is not ContentType.MAIN_PAGE:
            pool += await self.content.list_interlinkable(ContentSource.MAIN_SITE, RELEVANT_POOL_LIMIT)
        if ref.type is not ContentType.QUESTION:
            forum = await self.content.list_interlinkable(ContentSource.FORUM, RELEVANT_POOL_LIMIT)
            pool += [item for item in forum if item.type is ContentType.QUESTION]

        scored = []
        for item in pool:
            if item.ref == ref:
                continue
            score = self._keyword.score_pair(source, item)
            if score >= RELEVANT_MIN_SCORE:
                scored.append((score, item))
        scored.sort(key=lambda si: (-si[0], len(si[1].title), si[1].id))
        return [
            {"id": item.id, "type": item.type.value, "title": item.title, "relevance_score": score}
            for score, item in scored[:limit]
        ]

    async def get_interlink_stats(self, forum_id: Optional[int] = None) -> Dict[str, Any]:
        """Link-type distribution and monthly growth, optionally scoped to one forum."""
        links = await self.registry.list_all()
        if forum_id is not None:
            forum_items = await self.content.list_interlinkable(
                ContentSource.FORUM, STATS_POOL_LIMIT, forum_id=forum_id
            )
            refs = {item.ref for item in forum_items}
            links = [l for l in links if l.source in refs or l.target in refs]

        type_counts: Dict[str, int] = {}
        month_counts: Dict[int, int] = {}
        for link in links:
            type_counts[link.link_type] = type_counts.get(link.link_type, 0) + 1
            created = link.created_datetime()
            if created is not None:
                month_counts[created.month] = month_counts.get(created.month, 0) + 1

        automatic = sum(1 for l in links if l.automatic)
        avg = sum(l.relevance_score for l in links) / len(links) if links else 0.0
        return {
            "forum_id": forum_id,
            "total": len(links),
            "automatic": automatic,
            "manual": len(links) - automatic,
            "avg_relevance": round(avg, 4),
            "link_types": [{"name": name, "value": count} for name, count in sorted(type_counts.items())],
            "growth": [
                {"month": MONTH_NAMES[month - 1], "links": month_counts[month]}
                for month in sorted(month_counts)
            ],
        }

    # -- Lifecycle ----------------------------------------------------------

    async def close(self) -> None:
        await self.content.close()
        await self.relevance.close()


# ---------------------------------------------------------------------------
# Factory / singleton accessor
# ---------------------------------------------------------------------------


def build_service(settings: Optional[Settings] = None) -> InterlinkingService:
    """Build a service from *settings* (environment by default)."""
    settings = settings or Settings.from_env()

    if settings.content_api_url:
        content: ContentProvider = HttpContentProvider(
            settings.content_api_url,
            token=settings.content_api_token,
            timeout=settings.http_timeout,
        )
    else:
        log.warning("GEOFORA_CONTENT_API_URL is not set; using an empty in-memory content provider")
        content = InMemoryContentProvider()

    if settings.resolved_scorer == "anthropic":
        relevance: RelevanceScorer = AnthropicRelevanceScorer(
            api_key=settings.anthropic_api_key,
            model=settings.model,
        )
    else:
        relevance = KeywordRelevanceScorer()

    plans_path = settings.plans_path
    service = InterlinkingService(
        content=content,
        relevance=relevance,
        registry=LinkRegistry(settings.registry_path),
        sink=InMemoryCacheSink(),
        settings=settings,
        plan_store=JsonFileKeyValueStore(plans_path) if plans_path else MemoryKeyValueStore(),
    )
    log.info(
        "Interlinking service ready (scorer=%s, content=%s, registry=%s)",
        relevance.name, type(content).__name__, settings.registry_path or "memory",
    )
    return service


_service_instance: Optional[InterlinkingService] = None


def get_service(settings: Optional[Settings] = None) -> InterlinkingService:
    """
    Get or create the singleton InterlinkingService.

    Parameters
    ----------
    settings : Settings, optional
        Only used on first call.
    """
    global _service_instance
    if _service_instance is None:
        _service_instance = build_service(settings)
    return _service_instance
