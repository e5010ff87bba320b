"""
Relevance Scorers: the collaborators that judge which content should link where.

Every scorer implements ``rank(source_items, target_items, max_per_item)`` and
returns :class:`LinkCandidate` objects. The Candidate Scorer in
:mod:`geofora.scorer` then validates, orders, and bounds what comes back.

- :class:`KeywordRelevanceScorer` is offline and deterministic: keyword
  overlap, title overlap, and heuristic anchor text. No API calls.
- :class:`AnthropicRelevanceScorer` asks Claude for a ranked list per source
  item and parses the reply into a strict contract. A malformed reply raises
  :class:`ScoringUnavailable` instead of leaking half-filled candidates.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Sequence, Set

import anthropic

from geofora.errors import ScoringUnavailable
from geofora.models import ContentItem, ContentRef, ContentType, LinkCandidate

logger = logging.getLogger("geofora.relevance")

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Scoring weights for the keyword scorer
WEIGHT_KEYWORD_OVERLAP = 0.6
WEIGHT_TITLE_OVERLAP = 0.4

# Model scores arrive on a 0-100 scale; below this they are dropped
MODEL_MIN_SCORE = 50
MODEL_MAX_TOKENS = 1500
MODEL_TEMPERATURE = 0.2
EXCERPT_CHARS = 200

STOPWORDS: Set[str] = {
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "up", "about", "into", "through", "during",
    "before", "after", "above", "below", "between", "out", "off", "over",
    "under", "again", "further", "then", "once", "here", "there", "when",
    "where", "why", "how", "all", "both", "each", "few", "more", "most",
    "other", "some", "such", "no", "nor", "not", "only", "own", "same",
    "so", "than", "too", "very", "can", "will", "just", "should", "now",
    "also", "get", "got", "has", "had", "have", "do", "does", "did",
    "be", "been", "being", "am", "is", "are", "was", "were", "it", "its",
    "he", "she", "we", "they", "them", "his", "her", "our", "your", "my",
    "this", "that", "these", "those", "what", "which", "who", "whom",
    "if", "as", "you", "i", "me", "us", "him", "would", "could",
    "may", "might", "shall", "must", "need", "one", "two", "make",
    "like", "new", "best", "good", "great", "way", "use", "using",
}


# ---------------------------------------------------------------------------
# Keyword extraction (pure Python, no AI)
# ---------------------------------------------------------------------------


def _tokenize(text: str) -> List[str]:
    text = re.sub(r"[^a-z0-9\s\-]", " ", text.lower())
    return [t for t in text.split() if t not in STOPWORDS and len(t) > 2]


def extract_keywords(text: str, max_keywords: int = 20) -> List[str]:
    """
    Extract meaningful keywords from text.

    Tokenizes, lowercases, removes stopwords and short tokens,
    and returns the most frequent terms.
    """
    freq: Dict[str, int] = {}
    for token in _tokenize(text):
        freq[token] = freq.get(token, 0) + 1
    sorted_kw = sorted(freq.items(), key=lambda x: (-x[1], x[0]))
    return [kw for kw, _ in sorted_kw[:max_keywords]]


def item_keywords(item: ContentItem) -> List[str]:
    """Title tokens first, then the most frequent body terms, capped at 25."""
    seen: Set[str] = set()
    keywords: List[str] = []
    for term in _tokenize(item.title) + extract_keywords(item.content, max_keywords=30):
        if term not in seen:
            seen.add(term)
            keywords.append(term)
    return keywords[:25]


def _jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def suggest_anchor_text(target_title: str, target_keywords: List[str]) -> List[str]:
    """
    Generate up to five natural anchor text options for a link to *target_title*.

    Returns a ranked list from most natural to most generic.
    """
    anchors: List[str] = []
    seen: Set[str] = set()

    def _add(text: str) -> None:
        text = text.strip()
        key = text.lower()
        if key and key not in seen and len(text) > 2:
            seen.add(key)
            anchors.append(text)

    # Core phrase of the target title
    core = re.sub(
        r"^(how to|how do i|what is|the ultimate|a complete|beginner'?s?|your|the|a|an)\s+",
        "",
        target_title.lower(),
        flags=re.IGNORECASE,
    ).strip()
    core = re.sub(
        r"\s+(guide|tutorial|tips|tricks|review|explained|101|for beginners)\??$",
        "",
        core,
        flags=re.IGNORECASE,
    ).strip(" ?")
    if core:
        _add(core)

    if len(target_keywords) >= 2:
        _add(" ".join(target_keywords[:2]))

    if len(target_title) <= 60:
        _add(target_title)

    words = target_title.split()
    if len(words) > 4:
        _add(" ".join(words[:4]))

    for kw in target_keywords:
        if len(kw) > 3:
            _add(kw)
            break

    return anchors[:5]


# ---------------------------------------------------------------------------
# Scorer interface
# ---------------------------------------------------------------------------


class RelevanceScorer:
    """Interface for relevance collaborators."""

    name = "base"

    async def rank(
        self,
        source_items: Sequence[ContentItem],
        target_items: Sequence[ContentItem],
        max_per_item: int,
    ) -> List[LinkCandidate]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def _is_cross_site(a: ContentRef, b: ContentRef) -> bool:
    return a.type.source is not b.type.source


# ---------------------------------------------------------------------------
# Keyword scorer
# ---------------------------------------------------------------------------


class KeywordRelevanceScorer(RelevanceScorer):
    """
    Deterministic relevance from keyword and title overlap.

    Parameters
    ----------
    min_score : float
        Candidates scoring below this (0-1) are not returned.
    """

    name = "keyword"

    def __init__(self, min_score: float = 0.1):
        self.min_score = min_score

    def score_pair(self, source: ContentItem, target: ContentItem) -> float:
        kw_score = _jaccard(set(item_keywords(source)), set(item_keywords(target)))
        title_score = _jaccard(set(_tokenize(source.title)), set(_tokenize(target.title)))
        combined = WEIGHT_KEYWORD_OVERLAP * kw_score + WEIGHT_TITLE_OVERLAP * title_score
        return round(min(1.0, combined), 4)

    def build_candidate(self, source: ContentItem, target: ContentItem, score: float) -> LinkCandidate:
        target_kw = item_keywords(target)
        options = suggest_anchor_text(target.title, target_kw) or [target.title]
        body = source.content.lower()
        anchor = next((opt for opt in options if opt.lower() in body), options[0])

        common = sorted(set(item_keywords(source)) & set(target_kw))
        if common:
            context = f"Shared topics: {', '.join(common[:3])}"
        else:
            context = "Topically related content"

        return LinkCandidate(
            source=source.ref,
            source_title=source.title,
            target=target.ref,
            target_title=target.title,
            anchor_text=anchor,
            relevance_score=score,
            context_relevance=context,
            bidirectional=_is_cross_site(source.ref, target.ref),
        )

    async def rank(
        self,
        source_items: Sequence[ContentItem],
        target_items: Sequence[ContentItem],
        max_per_item: int,
    ) -> List[LinkCandidate]:
        candidates: List[LinkCandidate] = []
        for source in source_items:
            scored = []
            for target in target_items:
                if target.ref == source.ref:
                    continue
                score = self.score_pair(source, target)
                if score >= self.min_score:
                    scored.append((score, target))
            scored.sort(key=lambda st: (-st[0], len(st[1].title), st[1].id))
            for score, target in scored[:max_per_item]:
                candidates.append(self.build_candidate(source, target, score))
        logger.debug(
            "Keyword scorer ranked %d sources against %d targets -> %d candidates",
            len(source_items), len(target_items), len(candidates),
        )
        return candidates


# ---------------------------------------------------------------------------
# Anthropic scorer
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """You are an interlinking analysis tool for a content platform that has both a \
Q&A forum and a main website. You identify where a source item should link to existing items so \
that readers and search engines can move between related forum threads and site pages.

Respond with a single JSON object and nothing else:
{
  "suggestions": [
    {
      "contentId": number,        // id of the item to link to, from the provided list
      "contentType": string,      // "question", "answer", or "main_page"
      "title": string,            // title of that item
      "relevanceScore": number,   // 0-100
      "anchorText": string,       // exact substring of the source content to turn into the link
      "context": string,          // one sentence explaining the connection
      "bidirectional": boolean    // true if the target should also link back to the source
    }
  ]
}

Only suggest items from the provided list. Prefer fewer, stronger links (70+)."""


def extract_json(text: str) -> Any:
    """
    Extract a JSON object or array from a model response.

    Handles markdown code fences and preamble text around the payload.
    Returns ``None`` when nothing parseable is found.
    """
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1).strip())
        except json.JSONDecodeError:
            pass

    for start_char, end_char in [("{", "}"), ("[", "]")]:
        start_idx = text.find(start_char)
        if start_idx == -1:
            continue
        depth = 0
        for i in range(start_idx, len(text)):
            if text[i] == start_char:
                depth += 1
            elif text[i] == end_char:
                depth -= 1
                if depth == 0:
                    try:
                        return json.loads(text[start_idx : i + 1])
                    except json.JSONDecodeError:
                        break
    return None


def _require(entry: Dict[str, Any], key: str, kinds: tuple, index: int) -> Any:
    value = entry.get(key)
    if isinstance(value, bool) and bool not in kinds:
        value = None
    if not isinstance(value, kinds):
        raise ScoringUnavailable(
            f"Malformed scorer response: suggestion {index} field {key!r} "
            f"has type {type(value).__name__}"
        )
    return value


def parse_ranking_response(
    text: str,
    source: ContentItem,
    targets: Sequence[ContentItem],
    max_per_item: int,
    min_score: float = MODEL_MIN_SCORE,
) -> List[LinkCandidate]:
    """
    Turn a model reply into candidates for *source*.

    Raises
    ------
    ScoringUnavailable
        If the reply is not JSON, has no suggestion list, or a suggestion
        carries fields of the wrong type or a score outside 0-100.
    """
    payload = extract_json(text or "")
    if isinstance(payload, dict):
        entries = payload.get("suggestions", payload.get("interlinkingSuggestions"))
    else:
        entries = payload
    if not isinstance(entries, list):
        raise ScoringUnavailable(
            f"Malformed scorer response for {source.ref}: no suggestion list",
            detail=(text or "")[:300],
        )

    by_ref = {t.ref: t for t in targets}
    candidates: List[LinkCandidate] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ScoringUnavailable(f"Malformed scorer response: suggestion {index} is not an object")
        content_id = _require(entry, "contentId", (int,), index)
        content_type = _require(entry, "contentType", (str,), index)
        score = _require(entry, "relevanceScore", (int, float), index)
        anchor = _require(entry, "anchorText", (str,), index).strip()
        context = entry.get("context", "")
        bidirectional = entry.get("bidirectional")
        if not isinstance(context, str):
            raise ScoringUnavailable(f"Malformed scorer response: suggestion {index} field 'context'")
        if bidirectional is not None and not isinstance(bidirectional, bool):
            raise ScoringUnavailable(f"Malformed scorer response: suggestion {index} field 'bidirectional'")
        if not 0 <= score <= 100:
            raise ScoringUnavailable(f"Malformed scorer response: suggestion {index} score {score} outside 0-100")

        try:
            ref = ContentRef(id=content_id, type=ContentType.parse(content_type))
        except ValueError:
            logger.debug("Dropping suggestion %d with unknown type %r", index, content_type)
            continue
        target = by_ref.get(ref)
        if target is None or ref == source.ref:
            logger.debug("Dropping suggestion %d for unknown or self target %s", index, ref)
            continue
        if not anchor or score < min_score:
            continue

        candidates.append(
            LinkCandidate(
                source=source.ref,
                source_title=source.title,
                target=ref,
                target_title=target.title,
                anchor_text=anchor,
                relevance_score=round(score / 100.0, 4),
                context_relevance=context,
                bidirectional=bidirectional if bidirectional is not None else _is_cross_site(source.ref, ref),
            )
        )

    candidates.sort(key=lambda c: (-c.relevance_score, len(c.target_title), c.target.id))
    return candidates[:max_per_item]


class AnthropicRelevanceScorer(RelevanceScorer):
    """
    LLM-backed relevance via the Anthropic Messages API.

    Parameters
    ----------
    api_key : str
        Anthropic API key. Ignored when *client* is given.
    model : str
        Model identifier.
    max_concurrency : int
        Simultaneous requests, one per source item.
    client : anthropic.AsyncAnthropic, optional
        Pre-built client (tests inject a mock here).
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str = "",
        model: str = "claude-haiku-4-5-20251001",
        max_concurrency: int = 4,
        min_score: float = MODEL_MIN_SCORE,
        client: Optional[Any] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.min_score = min_score
        self._client = client
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))

    def _ensure_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ScoringUnavailable("ANTHROPIC_API_KEY is not set; cannot use the anthropic scorer")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    def _build_prompt(self, source: ContentItem, targets: Sequence[ContentItem], max_per_item: int) -> str:
        catalog = [
            {"id": t.id, "type": t.type.value, "title": t.title, "excerpt": t.excerpt(EXCERPT_CHARS)}
            for t in targets
            if t.ref != source.ref
        ]
        return (
            f"Source Content Title: {source.title}\n"
            f"Source Type: {source.type.value}\n"
            f"Source Content: {source.content}\n\n"
            f"Existing content items that could be linked to:\n{json.dumps(catalog)}\n\n"
            f"Return at most {max_per_item} suggestions."
        )

    async def _rank_one(
        self, source: ContentItem, targets: Sequence[ContentItem], max_per_item: int
    ) -> List[LinkCandidate]:
        client = self._ensure_client()
        async with self._semaphore:
            start = time.monotonic()
            try:
                response = await client.messages.create(
                    model=self.model,
                    max_tokens=MODEL_MAX_TOKENS,
                    temperature=MODEL_TEMPERATURE,
                    system=SYSTEM_PROMPT,
                    messages=[{"role": "user", "content": self._build_prompt(source, targets, max_per_item)}],
                )
            except anthropic.APIError as exc:
                logger.error("Relevance request for %s failed after %.1fs: %s", source.ref, time.monotonic() - start, exc)
                raise ScoringUnavailable(f"Anthropic API error while scoring {source.ref}: {exc}") from exc

        text = response.content[0].text if response.content else ""
        logger.debug("Relevance reply for %s: %d chars in %.1fs", source.ref, len(text), time.monotonic() - start)
        return parse_ranking_response(text, source, targets, max_per_item, self.min_score)

    async def rank(
        self,
        source_items: Sequence[ContentItem],
        target_items: Sequence[ContentItem],
        max_per_item: int,
    ) -> List[LinkCandidate]:
        if not source_items or not target_items:
            return []
        batches = await asyncio.gather(
            *(self._rank_one(source, target_items, max_per_item) for source in source_items)
        )
        return [candidate for batch in batches for candidate in batch]

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
