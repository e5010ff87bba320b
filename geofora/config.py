"""
Runtime configuration for the GEOFORA interlinking engine.

All settings come from environment variables, read once into a
:class:`Settings` instance that is passed explicitly to whatever needs it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data" / "interlinks"

# Anthropic model used by the LLM-backed relevance scorer
DEFAULT_MODEL = "claude-haiku-4-5-20251001"

DEFAULT_CONTENT_LIMIT = 20
DEFAULT_PER_ITEM_CAP = 3
DEFAULT_SCORING_TIMEOUT = 30.0
DEFAULT_HTTP_TIMEOUT = 30
DEFAULT_APPLY_CONCURRENCY = 5
DEFAULT_API_PORT = 8765

SCORER_CHOICES = ("auto", "anthropic", "keyword")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}") from None


@dataclass
class Settings:
    """Resolved configuration values."""

    anthropic_api_key: str = ""
    model: str = DEFAULT_MODEL
    scorer: str = "auto"
    scoring_timeout: float = DEFAULT_SCORING_TIMEOUT
    content_api_url: str = ""
    content_api_token: str = ""
    http_timeout: int = DEFAULT_HTTP_TIMEOUT
    data_dir: Optional[Path] = DEFAULT_DATA_DIR
    content_limit: int = DEFAULT_CONTENT_LIMIT
    per_item_cap: int = DEFAULT_PER_ITEM_CAP
    apply_concurrency: int = DEFAULT_APPLY_CONCURRENCY
    api_port: int = DEFAULT_API_PORT
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    def __post_init__(self) -> None:
        if self.scorer not in SCORER_CHOICES:
            raise ValueError(
                f"Unknown scorer {self.scorer!r}. Expected one of: {', '.join(SCORER_CHOICES)}"
            )

    @property
    def resolved_scorer(self) -> str:
        """Scorer to use once ``auto`` is resolved against the API key."""
        if self.scorer != "auto":
            return self.scorer
        return "anthropic" if self.anthropic_api_key else "keyword"

    @property
    def registry_path(self) -> Optional[Path]:
        if self.data_dir is None:
            return None
        return self.data_dir / "interlinks.json"

    @property
    def plans_path(self) -> Optional[Path]:
        if self.data_dir is None:
            return None
        return self.data_dir / "sessions.json"

    @classmethod
    def from_env(cls) -> Settings:
        data_dir_raw = os.getenv("GEOFORA_DATA_DIR", "")
        origins = os.getenv("GEOFORA_CORS_ORIGINS", "http://localhost:3000")
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            model=os.getenv("GEOFORA_MODEL", DEFAULT_MODEL),
            scorer=os.getenv("GEOFORA_SCORER", "auto").strip().lower() or "auto",
            scoring_timeout=_env_float("GEOFORA_SCORING_TIMEOUT", DEFAULT_SCORING_TIMEOUT),
            content_api_url=os.getenv("GEOFORA_CONTENT_API_URL", "").rstrip("/"),
            content_api_token=os.getenv("GEOFORA_CONTENT_API_TOKEN", ""),
            http_timeout=_env_int("GEOFORA_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            data_dir=Path(data_dir_raw) if data_dir_raw else DEFAULT_DATA_DIR,
            content_limit=_env_int("GEOFORA_CONTENT_LIMIT", DEFAULT_CONTENT_LIMIT),
            per_item_cap=_env_int("GEOFORA_PER_ITEM_CAP", DEFAULT_PER_ITEM_CAP),
            apply_concurrency=_env_int("GEOFORA_APPLY_CONCURRENCY", DEFAULT_APPLY_CONCURRENCY),
            api_port=_env_int("GEOFORA_API_PORT", DEFAULT_API_PORT),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
        )
