"""
Shared fixtures for the GEOFORA test suite.

Provides sample forum and main-site content, an in-memory registry and cache
sink, and a deterministic relevance scorer so that every test runs without
network access or an Anthropic key.
"""

from __future__ import annotations

from typing import List

import pytest

from geofora.config import Settings
from geofora.content import InMemoryContentProvider
from geofora.invalidation import InMemoryCacheSink
from geofora.models import ContentItem
from geofora.registry import LinkRegistry
from geofora.service import InterlinkingService
from tests.helpers import FORUM_ID, StubRelevanceScorer, make_item


# ---------------------------------------------------------------------------
# Content fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def forum_items() -> List[ContentItem]:
    return [
        make_item(1, "question", "How do I improve my SEO rankings?",
                  "Looking for an SEO guide that covers keyword research.", FORUM_ID),
        make_item(2, "question", "What does the pricing include?",
                  "Is support included in the pricing plans?", FORUM_ID),
        make_item(3, "question", "How to connect a custom domain",
                  "Need help with domain setup and DNS records.", FORUM_ID),
        make_item(10, "answer", "Keyword research basics",
                  "Start with keyword research before writing any content.", FORUM_ID),
        make_item(11, "answer", "Answer to question 2",
                  "All pricing plans include email support.", FORUM_ID),
        make_item(50, "question", "Unrelated thread in another forum", "", 8),
    ]


@pytest.fixture
def site_items() -> List[ContentItem]:
    return [
        make_item(1, "main_page", "SEO Guide", "Complete SEO guide with keyword research tips."),
        make_item(2, "main_page", "Pricing", "Pricing plans for every team, with support."),
        make_item(3, "main_page", "Custom domain setup", "Connect a custom domain and configure DNS."),
        make_item(4, "main_page", "About us", "Our company story."),
    ]


@pytest.fixture
def content_provider(forum_items, site_items) -> InMemoryContentProvider:
    return InMemoryContentProvider(forum_items + site_items)


@pytest.fixture
def registry() -> LinkRegistry:
    return LinkRegistry()


@pytest.fixture
def sink() -> InMemoryCacheSink:
    return InMemoryCacheSink()


@pytest.fixture
def stub_relevance() -> StubRelevanceScorer:
    return StubRelevanceScorer(default=0.6)


@pytest.fixture
def settings() -> Settings:
    return Settings(data_dir=None, scorer="keyword")


@pytest.fixture
def service(content_provider, stub_relevance, registry, sink, settings) -> InterlinkingService:
    return InterlinkingService(
        content=content_provider,
        relevance=stub_relevance,
        registry=registry,
        sink=sink,
        settings=settings,
    )
