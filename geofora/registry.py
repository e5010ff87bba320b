"""
Link Registry: the durable store of directional content-to-content links.

The registry owns every :class:`Interlink`. It assigns ids and timestamps,
rejects self-links, and never mutates a link once created. Uniqueness of
``(source, target)`` is not enforced here; callers check :meth:`find` first.

State is held in memory and, when a path is given, mirrored to a JSON file
after every write.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from geofora.errors import InvalidArgument, RegistryWriteFailed
from geofora.models import ContentRef, ContentType, Interlink, now_iso
from geofora.persistence import load_json, save_json

logger = logging.getLogger("geofora.registry")


class LinkRegistry:
    """
    In-process Interlink store with optional JSON persistence.

    Parameters
    ----------
    path : Path, optional
        JSON file to load from and persist to. ``None`` keeps links in memory only.
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._links: Dict[int, Interlink] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()
        if path is not None:
            self._load()

    # -- Persistence --------------------------------------------------------

    def _load(self) -> None:
        data = load_json(self._path, default={})
        for raw in data.get("interlinks", []):
            try:
                link = Interlink.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable interlink record %r: %s", raw, exc)
                continue
            self._links[link.id] = link
        stored_next = int(data.get("next_id", 1) or 1)
        self._next_id = max([stored_next] + [lid + 1 for lid in self._links])
        logger.info("Loaded %d interlinks from %s", len(self._links), self._path)

    def _persist(self) -> None:
        if self._path is None:
            return
        save_json(
            self._path,
            {
                "next_id": self._next_id,
                "interlinks": [link.to_dict() for link in self._links.values()],
            },
        )

    # -- Writes -------------------------------------------------------------

    async def create(
        self,
        *,
        source: ContentRef,
        target: ContentRef,
        anchor_text: str,
        relevance_score: float,
        automatic: bool,
    ) -> Interlink:
        """
        Persist a new Interlink and return it.

        Raises
        ------
        InvalidArgument
            If source and target are the same content item.
        RegistryWriteFailed
            If the link could not be persisted.
        """
        if source == target:
            raise InvalidArgument(f"Refusing to create self-link on {source}")

        async with self._lock:
            link = Interlink(
                id=self._next_id,
                source_type=source.type,
                source_id=source.id,
                target_type=target.type,
                target_id=target.id,
                anchor_text=anchor_text,
                relevance_score=float(relevance_score),
                automatic=automatic,
                created_at=now_iso(),
            )
            self._links[link.id] = link
            self._next_id += 1
            try:
                self._persist()
            except OSError as exc:
                del self._links[link.id]
                self._next_id -= 1
                raise RegistryWriteFailed(
                    f"Failed to persist interlink {source} -> {target}: {exc}"
                ) from exc

        logger.debug(
            "Created interlink #%d %s -> %s (score=%.2f automatic=%s)",
            link.id, source, target, link.relevance_score, automatic,
        )
        return link

    # -- Reads --------------------------------------------------------------

    async def get(self, link_id: int) -> Optional[Interlink]:
        return self._links.get(link_id)

    async def find(self, source: ContentRef, target: ContentRef) -> Optional[Interlink]:
        """Return the oldest link from *source* to *target*, if any."""
        for link in await self.list_by_source(source.type, source.id):
            if link.target == target:
                return link
        return None

    async def list_by_source(self, content_type: Any, content_id: int) -> List[Interlink]:
        ctype = ContentType.parse(content_type)
        return sorted(
            (l for l in self._links.values() if l.source_type is ctype and l.source_id == content_id),
            key=lambda l: l.id,
        )

    async def list_by_target(self, content_type: Any, content_id: int) -> List[Interlink]:
        ctype = ContentType.parse(content_type)
        return sorted(
            (l for l in self._links.values() if l.target_type is ctype and l.target_id == content_id),
            key=lambda l: l.id,
        )

    async def list_all(self) -> List[Interlink]:
        return sorted(self._links.values(), key=lambda l: l.id)

    def __len__(self) -> int:
        return len(self._links)
