"""
GEOFORA Interlinking API Server
===============================

FastAPI server exposing the interlinking engine over HTTP: suggestions,
applying candidates, whole-forum strategy runs, and the read views over the
link registry.

Run directly:
    python -m geofora.api
    uvicorn geofora.api:app --host 0.0.0.0 --port 8765

Port and CORS origins come from Settings.from_env() (GEOFORA_API_PORT,
GEOFORA_CORS_ORIGINS).
Callers identify their session with the ``X-Session-Id`` header; the plan
selected for that session gates commit-mode strategy runs.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from geofora.config import Settings
from geofora.errors import (
    ContentUnavailable,
    FeatureNotAvailable,
    InterlinkError,
    InvalidArgument,
    RegistryWriteFailed,
    RunCancelled,
    ScoringUnavailable,
)
from geofora.models import ContentRef, ContentType, LinkCandidate
from geofora.plans import PlanType, SessionConfig
from geofora.service import InterlinkingService, build_service

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# Records propagate to the "geofora" handler installed by geofora.service
logger = logging.getLogger("geofora.api")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

SETTINGS = Settings.from_env()

API_PORT = SETTINGS.api_port

ALLOWED_ORIGINS = SETTINGS.cors_origins

ERROR_STATUS = [
    (InvalidArgument, 400),
    (FeatureNotAvailable, 403),
    (RunCancelled, 409),
    (RegistryWriteFailed, 500),
    (ContentUnavailable, 502),
    (ScoringUnavailable, 503),
]

# ---------------------------------------------------------------------------
# Pydantic Models -- Requests
# ---------------------------------------------------------------------------


class ContentRefModel(BaseModel):
    id: int
    type: str = Field(..., description="question, answer, or main_page")


class SuggestionsRequest(BaseModel):
    forum_content_ids: List[ContentRefModel]
    main_site_content_ids: List[ContentRefModel]
    max_suggestions_per_item: int = 3
    include_reverse: bool = False


class CandidateModel(BaseModel):
    source: ContentRefModel
    source_title: str = ""
    target: ContentRefModel
    target_title: str = ""
    anchor_text: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    context_relevance: str = ""
    bidirectional: bool = False


class ApplyRequest(BaseModel):
    candidate: CandidateModel
    automatic: bool = False


class StrategyRequest(BaseModel):
    forum_id: int
    preview_only: bool = False
    limit: Optional[int] = None
    per_item_cap: Optional[int] = None


class PlanRequest(BaseModel):
    plan: str = Field(..., description="starter, professional, or enterprise")


# ---------------------------------------------------------------------------
# Pydantic Models -- Responses
# ---------------------------------------------------------------------------


class StatusResponse(BaseModel):
    status: str
    timestamp: str
    subsystems: Dict[str, str] = Field(default_factory=dict)
    version: str = "1.0.0"


# ---------------------------------------------------------------------------
# Application State
# ---------------------------------------------------------------------------


class AppState:
    """Holds the interlinking service for the running app."""

    def __init__(self) -> None:
        self.service: Optional[InterlinkingService] = None
        self.owns_service: bool = False
        self.start_time: float = 0.0


state = AppState()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service on startup unless one was injected; close it on shutdown."""
    logger.info("Starting GEOFORA interlinking API on port %d", API_PORT)
    state.start_time = time.monotonic()
    state.owns_service = state.service is None
    if state.owns_service:
        state.service = build_service(SETTINGS)
    yield

    logger.info("Shutting down GEOFORA interlinking API")
    if state.owns_service and state.service is not None:
        await state.service.close()
        state.service = None
        state.owns_service = False
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# FastAPI App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="GEOFORA Interlinking API",
    description="Bidirectional interlinking between forum Q&A and main-site pages.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_service() -> InterlinkingService:
    if state.service is None:
        raise HTTPException(503, "Interlinking service not initialized")
    return state.service


def _http_error(exc: InterlinkError) -> HTTPException:
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return HTTPException(status, str(exc))
    return HTTPException(500, str(exc))


def _session(service: InterlinkingService, session_id: Optional[str]) -> Optional[SessionConfig]:
    if not session_id:
        return None
    return service.plans(session_id).session()


def _ref(content_type: str, content_id: int) -> ContentRef:
    try:
        return ContentRef(id=content_id, type=ContentType.parse(content_type))
    except InvalidArgument as exc:
        raise HTTPException(400, str(exc))


# ===================================================================
# Health
# ===================================================================


@app.get("/health", response_model=StatusResponse, tags=["Health"])
async def health():
    """Server health check with subsystem status."""
    subs: Dict[str, str] = {}
    service = state.service
    if service is None:
        subs["service"] = "unavailable"
    else:
        subs["service"] = "ready"
        subs["scorer"] = service.relevance.name
        subs["content"] = type(service.content).__name__
        subs["links"] = str(len(service.registry))
    uptime = time.monotonic() - state.start_time if state.start_time else 0
    subs["uptime_seconds"] = f"{uptime:.0f}"
    return StatusResponse(status="ok", timestamp=_now_iso(), subsystems=subs)


# ===================================================================
# Suggestions and applying
# ===================================================================


@app.post("/api/interlinks/bidirectional", tags=["Interlinks"])
async def bidirectional_suggestions(req: SuggestionsRequest):
    """Rank links from forum items to main-site pages."""
    service = _require_service()
    try:
        candidates = await service.get_bidirectional_suggestions(
            [r.model_dump() for r in req.forum_content_ids],
            [r.model_dump() for r in req.main_site_content_ids],
            max_suggestions_per_item=req.max_suggestions_per_item,
            include_reverse=req.include_reverse,
        )
    except InterlinkError as exc:
        raise _http_error(exc)
    return {"success": True, "suggestions": [c.to_dict() for c in candidates]}


@app.post("/api/interlinks", status_code=201, tags=["Interlinks"])
async def apply_candidate(req: ApplyRequest):
    """Apply one candidate as a forward link and, if flagged, a reverse link."""
    service = _require_service()
    try:
        candidate = LinkCandidate.from_dict(req.candidate.model_dump())
        result = await service.create_bidirectional_interlinks(candidate, automatic=req.automatic)
    except InterlinkError as exc:
        raise _http_error(exc)
    return {"success": True, "result": result.to_dict()}


@app.post("/api/interlinks/strategy", tags=["Interlinks"])
async def interlinking_strategy(
    req: StrategyRequest,
    x_session_id: Optional[str] = Header(None),
):
    """Run the whole-forum strategy in preview or commit mode."""
    service = _require_service()
    try:
        outcome = await service.generate_interlinking_strategy(
            req.forum_id,
            preview_only=req.preview_only,
            limit=req.limit,
            per_item_cap=req.per_item_cap,
            session=_session(service, x_session_id),
        )
    except InterlinkError as exc:
        raise _http_error(exc)
    return {"success": True, **outcome.to_dict()}


# ===================================================================
# Read views
# ===================================================================


@app.get("/api/interlinks/content", tags=["Content"])
async def interlinkable_content(
    source: str = Query("forum"),
    limit: int = Query(20),
    forum_id: Optional[int] = Query(None, alias="forumId"),
):
    """List interlinkable content from the forum or the main site."""
    service = _require_service()
    try:
        items = await service.get_interlinkable_content(source, limit=limit, forum_id=forum_id)
    except InterlinkError as exc:
        raise _http_error(exc)
    return {"success": True, "data": [item.to_dict() for item in items]}


@app.get("/api/interlinks/source/{content_type}/{content_id}", tags=["Interlinks"])
async def links_for_source(content_type: str, content_id: int):
    service = _require_service()
    ref = _ref(content_type, content_id)
    links = await service.list_links_for_source(ref.type, ref.id)
    return {"success": True, "data": [link.to_dict() for link in links]}


@app.get("/api/interlinks/target/{content_type}/{content_id}", tags=["Interlinks"])
async def links_for_target(content_type: str, content_id: int):
    service = _require_service()
    ref = _ref(content_type, content_id)
    links = await service.list_links_for_target(ref.type, ref.id)
    return {"success": True, "data": [link.to_dict() for link in links]}


@app.get("/api/interlinks/relevant/{content_type}/{content_id}", tags=["Interlinks"])
async def relevant_content(content_type: str, content_id: int, limit: int = Query(5)):
    """Locally scored content worth linking from the given item."""
    service = _require_service()
    ref = _ref(content_type, content_id)
    try:
        data = await service.get_relevant_content(ref, limit=limit)
    except InterlinkError as exc:
        raise _http_error(exc)
    return {"success": True, "data": data}


@app.get("/api/interlinks/stats", tags=["Interlinks"])
async def interlink_stats(forum_id: Optional[int] = Query(None, alias="forumId")):
    service = _require_service()
    try:
        return await service.get_interlink_stats(forum_id)
    except InterlinkError as exc:
        raise _http_error(exc)


# ===================================================================
# Session plan
# ===================================================================


def _require_session_id(x_session_id: Optional[str]) -> str:
    if not x_session_id:
        raise HTTPException(400, "X-Session-Id header is required")
    return x_session_id


@app.get("/api/plan", tags=["Plans"])
async def get_plan(x_session_id: Optional[str] = Header(None)):
    service = _require_service()
    plan = service.plans(_require_session_id(x_session_id)).get_selected_plan()
    return {"plan": plan.value if plan else None}


@app.put("/api/plan", tags=["Plans"])
async def set_plan(req: PlanRequest, x_session_id: Optional[str] = Header(None)):
    service = _require_service()
    plan = PlanType.parse(req.plan)
    if plan is None:
        raise HTTPException(400, f"Unknown plan: {req.plan}")
    service.plans(_require_session_id(x_session_id)).set_selected_plan(plan)
    return {"plan": plan.value}


@app.delete("/api/plan", tags=["Plans"])
async def clear_plan(x_session_id: Optional[str] = Header(None)):
    service = _require_service()
    service.plans(_require_session_id(x_session_id)).clear_selected_plan()
    return {"plan": None}


# ===================================================================
# Entry Point
# ===================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "geofora.api:app",
        host="0.0.0.0",
        port=API_PORT,
        reload=False,
        log_level="info",
    )
