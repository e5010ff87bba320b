"""
Data model for the GEOFORA interlinking engine.

Content identities, ephemeral link candidates, persisted interlinks, and the
result records produced by applying candidates and running strategies.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from geofora.errors import InvalidArgument

# Reverse-direction anchors are an exact prefix of the source title
REVERSE_ANCHOR_MAX_CHARS = 40


def now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ContentType(str, Enum):
    QUESTION = "question"
    ANSWER = "answer"
    MAIN_PAGE = "main_page"

    @classmethod
    def parse(cls, value: Any) -> ContentType:
        """Parse a content type, accepting the REST spelling ``main-page``."""
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidArgument(
                f"Unknown content type {value!r}. "
                f"Expected one of: {', '.join(t.value for t in cls)}"
            ) from None

    @property
    def source(self) -> ContentSource:
        if self is ContentType.MAIN_PAGE:
            return ContentSource.MAIN_SITE
        return ContentSource.FORUM


class ContentSource(str, Enum):
    FORUM = "forum"
    MAIN_SITE = "main_site"

    @classmethod
    def parse(cls, value: Any) -> ContentSource:
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidArgument(
                f"Unknown content source {value!r}. Expected 'forum' or 'main_site'"
            ) from None


class ApplyOutcome(str, Enum):
    BOTH_CREATED = "both_created"
    FORWARD_ONLY = "forward_only"
    REVERSE_FAILED = "reverse_failed"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Content identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContentRef:
    """Identifies one piece of content owned by the forum or the main site."""

    id: int
    type: ContentType

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", ContentType.parse(self.type))
        if isinstance(self.id, bool) or not isinstance(self.id, int):
            raise InvalidArgument(f"Content id must be an integer, got {self.id!r}")

    @property
    def key(self) -> Tuple[str, int]:
        return (self.type.value, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContentRef:
        return cls(id=int(data["id"]), type=ContentType.parse(data["type"]))

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


@dataclass
class ContentItem:
    """A content reference together with the title and body used for scoring."""

    ref: ContentRef
    title: str
    content: str = ""
    forum_id: Optional[int] = None

    @property
    def id(self) -> int:
        return self.ref.id

    @property
    def type(self) -> ContentType:
        return self.ref.type

    def excerpt(self, length: int = 200) -> str:
        if len(self.content) <= length:
            return self.content
        return self.content[:length] + "..."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.ref.id,
            "type": self.ref.type.value,
            "title": self.title,
            "content": self.content,
            "forum_id": self.forum_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ContentItem:
        forum_id = data.get("forum_id", data.get("forumId"))
        return cls(
            ref=ContentRef(id=int(data["id"]), type=ContentType.parse(data["type"])),
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            forum_id=int(forum_id) if forum_id is not None else None,
        )


# ---------------------------------------------------------------------------
# Candidates and persisted links
# ---------------------------------------------------------------------------


@dataclass
class LinkCandidate:
    """A scored, unpersisted suggestion for an Interlink."""

    source: ContentRef
    source_title: str
    target: ContentRef
    target_title: str
    anchor_text: str
    relevance_score: float  # 0.0 to 1.0
    context_relevance: str = ""
    bidirectional: bool = False

    @property
    def pair(self) -> Tuple[ContentRef, ContentRef]:
        return (self.source, self.target)

    @property
    def is_self_link(self) -> bool:
        return self.source == self.target

    @property
    def reverse_anchor_text(self) -> str:
        """Anchor text for the target->source link: an exact title prefix."""
        return self.source_title[:REVERSE_ANCHOR_MAX_CHARS]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "source_title": self.source_title,
            "target": self.target.to_dict(),
            "target_title": self.target_title,
            "anchor_text": self.anchor_text,
            "relevance_score": self.relevance_score,
            "context_relevance": self.context_relevance,
            "bidirectional": self.bidirectional,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LinkCandidate:
        return cls(
            source=ContentRef.from_dict(data["source"]),
            source_title=str(data.get("source_title", "")),
            target=ContentRef.from_dict(data["target"]),
            target_title=str(data.get("target_title", "")),
            anchor_text=str(data.get("anchor_text", "")),
            relevance_score=float(data.get("relevance_score", 0.0)),
            context_relevance=str(data.get("context_relevance", "")),
            bidirectional=bool(data.get("bidirectional", False)),
        )


@dataclass(frozen=True)
class Interlink:
    """A persisted, directional link between two content items. Never mutated."""

    id: int
    source_type: ContentType
    source_id: int
    target_type: ContentType
    target_id: int
    anchor_text: str
    relevance_score: float
    automatic: bool = False
    created_at: str = field(default_factory=now_iso)

    @property
    def source(self) -> ContentRef:
        return ContentRef(id=self.source_id, type=self.source_type)

    @property
    def target(self) -> ContentRef:
        return ContentRef(id=self.target_id, type=self.target_type)

    @property
    def link_type(self) -> str:
        return f"{self.source_type.value} to {self.target_type.value}"

    def created_datetime(self) -> Optional[datetime]:
        try:
            dt = datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))
        except (ValueError, TypeError, AttributeError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["source_type"] = self.source_type.value
        data["target_type"] = self.target_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Interlink:
        return cls(
            id=int(data["id"]),
            source_type=ContentType.parse(data["source_type"]),
            source_id=int(data["source_id"]),
            target_type=ContentType.parse(data["target_type"]),
            target_id=int(data["target_id"]),
            anchor_text=str(data.get("anchor_text") or ""),
            relevance_score=float(data.get("relevance_score") or 0.0),
            automatic=bool(data.get("automatic", False)),
            created_at=str(data.get("created_at") or now_iso()),
        )


# ---------------------------------------------------------------------------
# Runs and results
# ---------------------------------------------------------------------------


@dataclass
class StrategyRun:
    """Execution context for one orchestration call. Not persisted."""

    forum_id: int
    preview_only: bool = False
    per_item_cap: int = 3
    limit: int = 20


@dataclass
class ApplyResult:
    """What happened when one candidate was applied."""

    candidate: LinkCandidate
    outcome: ApplyOutcome
    links: List[Interlink] = field(default_factory=list)
    created: List[Interlink] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def forward(self) -> Optional[Interlink]:
        return self.links[0] if self.links else None

    @property
    def reverse(self) -> Optional[Interlink]:
        return self.links[1] if len(self.links) > 1 else None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (ApplyOutcome.BOTH_CREATED, ApplyOutcome.FORWARD_ONLY)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate.to_dict(),
            "outcome": self.outcome.value,
            "links": [link.to_dict() for link in self.links],
            "created_ids": [link.id for link in self.created],
            "error": self.error,
        }


@dataclass
class StrategyPreview:
    """Result of a preview-mode run: ranked candidates, nothing written."""

    forum_id: int
    candidates: List[LinkCandidate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "forum_id": self.forum_id,
            "preview_only": True,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass
class StrategySummary:
    """Result of a commit-mode run."""

    forum_id: int
    results: List[ApplyResult] = field(default_factory=list)
    cancelled: bool = False
    invalidated_keys: int = 0
    invalidation_error: Optional[str] = None

    def _count(self, *outcomes: ApplyOutcome) -> int:
        return sum(1 for r in self.results if r.outcome in outcomes)

    @property
    def succeeded_count(self) -> int:
        return self._count(ApplyOutcome.BOTH_CREATED, ApplyOutcome.FORWARD_ONLY)

    @property
    def partial_count(self) -> int:
        return self._count(ApplyOutcome.REVERSE_FAILED)

    @property
    def failed_count(self) -> int:
        return self._count(ApplyOutcome.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(ApplyOutcome.SKIPPED)

    @property
    def created_links(self) -> List[Interlink]:
        return [link for r in self.results for link in r.created]

    @property
    def created_count(self) -> int:
        return len(self.created_links)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "forum_id": self.forum_id,
            "preview_only": False,
            "created_count": self.created_count,
            "succeeded_count": self.succeeded_count,
            "partial_count": self.partial_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "cancelled": self.cancelled,
            "invalidated_keys": self.invalidated_keys,
            "invalidation_error": self.invalidation_error,
            "results": [r.to_dict() for r in self.results],
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"=== Interlinking Strategy: forum {self.forum_id} ===",
            f"  Candidates applied:    {len(self.results)}",
            f"  Succeeded:             {self.succeeded_count}",
            f"  Forward only (reverse failed): {self.partial_count}",
            f"  Failed:                {self.failed_count}",
            f"  Skipped:               {self.skipped_count}",
            f"  Interlinks created:    {self.created_count}",
        ]
        if self.cancelled:
            lines.append("  Run was cancelled before all candidates were applied")
        return "\n".join(lines)
