"""
Plan selection, scoped to a session and persisted through an injected store.

The selected plan travels with the request as a :class:`SessionConfig`;
nothing here is module-level state. Persistence goes through a
:class:`KeyValueStore` so the same code works in memory, on disk, or
against a shared store.

Usage:
    plans = PlanStore(JsonFileKeyValueStore(path), session_id="abc")
    plans.set_selected_plan(PlanType.PROFESSIONAL)
    session = plans.session()
    session.allows(FEATURE_ADVANCED_INTERLINKING)  # True
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional

from geofora.errors import FeatureNotAvailable
from geofora.persistence import load_json, save_json

logger = logging.getLogger("geofora.plans")

FEATURE_ADVANCED_INTERLINKING = "advanced_interlinking"

_KEY_PREFIX = "selected_plan:"


class PlanType(str, Enum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[PlanType]:
        """Parse a stored plan name; unknown values read as ``None``."""
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


PLAN_FEATURES: Dict[PlanType, FrozenSet[str]] = {
    PlanType.STARTER: frozenset(),
    PlanType.PROFESSIONAL: frozenset({FEATURE_ADVANCED_INTERLINKING}),
    PlanType.ENTERPRISE: frozenset({FEATURE_ADVANCED_INTERLINKING}),
}


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------


class KeyValueStore:
    """Minimal string key-value interface."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKeyValueStore(KeyValueStore):
    """A JSON object on disk, rewritten atomically on every change."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        value = load_json(self.path, default={}).get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = load_json(self.path, default={})
            data[key] = value
            save_json(self.path, data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = load_json(self.path, default={})
            if data.pop(key, None) is not None:
                save_json(self.path, data)


# ---------------------------------------------------------------------------
# Session-scoped plan selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionConfig:
    """Per-request configuration passed explicitly by the caller."""

    session_id: str
    plan: Optional[PlanType] = None

    def allows(self, feature: str) -> bool:
        if self.plan is None:
            return False
        return feature in PLAN_FEATURES[self.plan]

    def require(self, feature: str) -> None:
        if not self.allows(feature):
            plan_name = self.plan.value if self.plan else "none"
            raise FeatureNotAvailable(
                f"Plan {plan_name!r} does not include {feature}",
                plan=plan_name,
                feature=feature,
            )


class PlanStore:
    """Selected-plan accessor for one session."""

    def __init__(self, store: KeyValueStore, session_id: str):
        self.store = store
        self.session_id = session_id

    @property
    def _key(self) -> str:
        return f"{_KEY_PREFIX}{self.session_id}"

    def set_selected_plan(self, plan: PlanType) -> None:
        plan = PlanType(plan)
        self.store.set(self._key, plan.value)
        logger.debug("Session %s selected plan %s", self.session_id, plan.value)

    def get_selected_plan(self) -> Optional[PlanType]:
        return PlanType.parse(self.store.get(self._key))

    def clear_selected_plan(self) -> None:
        self.store.delete(self._key)

    def session(self) -> SessionConfig:
        return SessionConfig(session_id=self.session_id, plan=self.get_selected_plan())
