"""
Tests for environment-driven Settings.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from geofora.config import DEFAULT_DATA_DIR, DEFAULT_MODEL, Settings


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("ANTHROPIC_API_KEY", "GEOFORA_SCORER", "GEOFORA_DATA_DIR", "GEOFORA_PER_ITEM_CAP"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.model == DEFAULT_MODEL
        assert settings.per_item_cap == 3
        assert settings.data_dir == DEFAULT_DATA_DIR
        assert settings.resolved_scorer == "keyword"

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("GEOFORA_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("GEOFORA_PER_ITEM_CAP", "5")
        monkeypatch.setenv("GEOFORA_SCORING_TIMEOUT", "2.5")
        monkeypatch.setenv("GEOFORA_CONTENT_API_URL", "https://forum.example.com/")
        monkeypatch.setenv("GEOFORA_CORS_ORIGINS", "https://a.example, https://b.example")
        settings = Settings.from_env()
        assert settings.resolved_scorer == "anthropic"
        assert settings.registry_path == tmp_path / "interlinks.json"
        assert settings.plans_path == tmp_path / "sessions.json"
        assert settings.per_item_cap == 5
        assert settings.scoring_timeout == 2.5
        assert settings.content_api_url == "https://forum.example.com"
        assert settings.cors_origins == ["https://a.example", "https://b.example"]

    def test_bad_integer(self, monkeypatch):
        monkeypatch.setenv("GEOFORA_PER_ITEM_CAP", "three")
        with pytest.raises(ValueError, match="GEOFORA_PER_ITEM_CAP"):
            Settings.from_env()

    def test_unknown_scorer(self):
        with pytest.raises(ValueError):
            Settings(scorer="magic")

    def test_in_memory_paths(self):
        settings = Settings(data_dir=None)
        assert settings.registry_path is None
        assert settings.plans_path is None
        assert isinstance(DEFAULT_DATA_DIR, Path)
