"""
Content Providers: the forum and main-site collaborators that own content.

The interlinking core never owns content. It asks a provider for the items
that can be interlinked and for the titles of specific references.

Two implementations ship here:

- :class:`InMemoryContentProvider` holds items in a dict (local runs, tests).
- :class:`HttpContentProvider` talks to the forum backend's REST API with
  aiohttp, retrying transient failures with exponential backoff.

Usage:
    provider = HttpContentProvider("https://forum.example.com", token="...")
    questions = await provider.list_interlinkable(ContentSource.FORUM, limit=20, forum_id=7)
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import aiohttp

from geofora.errors import ContentUnavailable, InvalidArgument
from geofora.models import ContentItem, ContentRef, ContentSource, ContentType

logger = logging.getLogger("geofora.content")

# HTTP retry behaviour
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# REST query values per content type
_LIST_TYPE_PARAM = {
    ContentType.QUESTION: "questions",
    ContentType.ANSWER: "answers",
    ContentType.MAIN_PAGE: "main-pages",
}
_ITEM_PATH = {
    ContentType.QUESTION: "api/questions/{id}",
    ContentType.ANSWER: "api/answers/{id}",
    ContentType.MAIN_PAGE: "api/main-pages/{id}",
}
_SOURCE_TYPES = {
    ContentSource.FORUM: (ContentType.QUESTION, ContentType.ANSWER),
    ContentSource.MAIN_SITE: (ContentType.MAIN_PAGE,),
}


def _check_limit(limit: int) -> None:
    if limit < 1:
        raise InvalidArgument(f"limit must be >= 1, got {limit}")


class ContentProvider:
    """Interface every content collaborator implements."""

    async def list_interlinkable(
        self,
        source: ContentSource,
        limit: int = 20,
        forum_id: Optional[int] = None,
    ) -> List[ContentItem]:
        raise NotImplementedError

    async def get_items(self, refs: Sequence[ContentRef]) -> List[ContentItem]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# In-memory provider
# ---------------------------------------------------------------------------


class InMemoryContentProvider(ContentProvider):
    """Content held in process. Items are returned in insertion order."""

    def __init__(self, items: Optional[Iterable[ContentItem]] = None):
        self._items: Dict[ContentRef, ContentItem] = {}
        for item in items or []:
            self.add(item)

    def add(self, item: ContentItem) -> None:
        self._items[item.ref] = item

    async def list_interlinkable(
        self,
        source: ContentSource,
        limit: int = 20,
        forum_id: Optional[int] = None,
    ) -> List[ContentItem]:
        source = ContentSource.parse(source)
        _check_limit(limit)
        types = _SOURCE_TYPES[source]
        matches = [
            item for item in self._items.values()
            if item.type in types
            and (forum_id is None or source is ContentSource.MAIN_SITE or item.forum_id == forum_id)
        ]
        return matches[:limit]

    async def get_items(self, refs: Sequence[ContentRef]) -> List[ContentItem]:
        missing = [str(ref) for ref in refs if ref not in self._items]
        if missing:
            raise InvalidArgument(f"Unknown content: {', '.join(missing)}")
        return [self._items[ref] for ref in refs]


# ---------------------------------------------------------------------------
# REST provider
# ---------------------------------------------------------------------------


class HttpContentProvider(ContentProvider):
    """
    Async REST client for the forum backend's content endpoints.

    Parameters
    ----------
    base_url : str
        Forum backend root, e.g. ``https://app.geofora.ai``.
    token : str
        Optional bearer token sent with every request.
    timeout : int
        Request timeout in seconds. Default 30.
    """

    def __init__(self, base_url: str, token: str = "", timeout: int = 30):
        if not base_url:
            raise InvalidArgument("HttpContentProvider requires a base_url")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Session management -------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {
                "User-Agent": "GEOFORA-Interlinker/1.0",
                "Accept": "application/json",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._session = aiohttp.ClientSession(
                headers=headers,
                connector=aiohttp.TCPConnector(limit=10, ttl_dns_cache=300),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # -- Core HTTP with retry -----------------------------------------------

    async def _request(
        self, path: str, params: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, Any]:
        """
        GET *path* with exponential backoff on transient errors.

        Returns ``(status, body)`` for 2xx and 404 responses.

        Raises
        ------
        ContentUnavailable
            On network errors or non-2xx responses after all retries.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        session = await self._get_session()
        query = {k: v for k, v in (params or {}).items() if v is not None}

        for attempt in range(MAX_RETRIES + 1):
            try:
                logger.debug("GET %s params=%s (attempt %d/%d)", url, query, attempt + 1, MAX_RETRIES + 1)
                async with session.get(url, params=query) as resp:
                    status = resp.status
                    try:
                        body = await resp.json(content_type=None)
                    except (json.JSONDecodeError, ValueError):
                        body = await resp.text()

                    if status == 404:
                        return status, body

                    if status in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        delay = RETRY_BASE_DELAY * (2 ** attempt)
                        retry_after = resp.headers.get("Retry-After")
                        if retry_after:
                            try:
                                delay = max(delay, float(retry_after))
                            except ValueError:
                                pass
                        logger.warning("Retryable error %d from %s, retrying in %.1fs", status, url, delay)
                        await asyncio.sleep(delay)
                        continue

                    if status >= 400:
                        raise ContentUnavailable(
                            f"HTTP {status} from {url}",
                            detail=str(body)[:500],
                        )
                    return status, body

            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if attempt < MAX_RETRIES:
                    delay = RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Network error on %s (%s), retrying in %.1fs: %s",
                        url, type(exc).__name__, delay, exc,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ContentUnavailable(
                    f"Network error after {MAX_RETRIES} retries for {url}: {exc}"
                ) from exc

        raise ContentUnavailable(f"Request to {url} failed after {MAX_RETRIES} retries")

    # -- Parsing ------------------------------------------------------------

    @staticmethod
    def _unwrap(body: Any, url_hint: str) -> Any:
        """Strip the ``{"success": ..., "data": ...}`` envelope."""
        if isinstance(body, dict) and "data" in body:
            if body.get("success") is False:
                raise ContentUnavailable(f"{url_hint} reported failure: {body.get('error', '')}")
            return body["data"]
        return body

    @staticmethod
    def _parse_item(raw: Any, ctype: ContentType, forum_id: Optional[int] = None) -> ContentItem:
        if not isinstance(raw, dict) or "id" not in raw:
            raise ContentUnavailable(f"Malformed {ctype.value} record: {raw!r}"[:300])
        title = raw.get("title")
        if not title and ctype is ContentType.ANSWER:
            title = f"Answer to question {raw.get('questionId', '?')}"
        raw_forum = raw.get("forumId", raw.get("forum_id", forum_id))
        try:
            return ContentItem(
                ref=ContentRef(id=int(raw["id"]), type=ctype),
                title=str(title or ""),
                content=str(raw.get("content") or ""),
                forum_id=int(raw_forum) if raw_forum is not None else None,
            )
        except (TypeError, ValueError, InvalidArgument) as exc:
            raise ContentUnavailable(f"Malformed {ctype.value} record: {exc}") from exc

    # -- Public API ---------------------------------------------------------

    async def list_interlinkable(
        self,
        source: ContentSource,
        limit: int = 20,
        forum_id: Optional[int] = None,
    ) -> List[ContentItem]:
        source = ContentSource.parse(source)
        _check_limit(limit)
        items: List[ContentItem] = []
        for ctype in _SOURCE_TYPES[source]:
            if len(items) >= limit:
                break
            params = {
                "type": _LIST_TYPE_PARAM[ctype],
                "limit": limit - len(items),
                "forumId": forum_id if source is ContentSource.FORUM else None,
            }
            status, body = await self._request("api/interlinking/content", params)
            if status == 404:
                raise ContentUnavailable(f"Content endpoint not found for {source.value}", source=source.value)
            data = self._unwrap(body, "content endpoint")
            if not isinstance(data, list):
                raise ContentUnavailable(
                    f"Expected a list of {ctype.value} records, got {type(data).__name__}",
                    source=source.value,
                )
            for raw in data:
                item = self._parse_item(raw, ctype, forum_id if source is ContentSource.FORUM else None)
                if item.type is ctype:
                    items.append(item)
        logger.info("Fetched %d interlinkable %s items", len(items), source.value)
        return items[:limit]

    async def get_items(self, refs: Sequence[ContentRef]) -> List[ContentItem]:
        async def _fetch(ref: ContentRef) -> ContentItem:
            status, body = await self._request(_ITEM_PATH[ref.type].format(id=ref.id))
            if status == 404:
                raise InvalidArgument(f"Unknown content: {ref}")
            return self._parse_item(self._unwrap(body, str(ref)), ref.type)

        return list(await asyncio.gather(*(_fetch(ref) for ref in refs)))
