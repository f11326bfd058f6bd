from __future__ import annotations

from typing import Any

import pytest

from pressroom.collaborators.registry import Collaborators
from pressroom.collaborators.types import ContentSnapshot, FeedItem, GeneratedContent, Image, PublishResult
from pressroom.infrastructure.config import TimeoutConfig
from pressroom.infrastructure.database import AppDatabase

METADATA_JSON = (
    '```json\n{"categories": ["News"], "tags": ["alpha", "beta"], '
    '"seoDescription": "A short description", "seoKeywords": ["skyline", "harbor"]}\n```'
)


class FakeContentGenerator:
    def __init__(self) -> None:
        self.topics: list[str] = []
        self.fail_topics: set[str] = set()

    async def generate(self, topic: str) -> GeneratedContent:
        self.topics.append(topic)
        if topic in self.fail_topics:
            raise RuntimeError("quota exceeded")
        return GeneratedContent(
            title=f"Article: {topic}",
            excerpt=f"About {topic}",
            body_html="<p>One</p><p>Two</p><p>Three</p><p>Four</p>",
        )


class FakeMetadataGenerator:
    def __init__(self) -> None:
        self.metadata_payload = METADATA_JSON
        self.phrases_payload = '["sunrise", "harbor"]'
        self.fail_titles: set[str] = set()
        self.fail_phrases = False

    async def generate_metadata(self, title: str, body: str) -> str:
        if title in self.fail_titles:
            raise RuntimeError("metadata provider unavailable")
        return self.metadata_payload

    async def generate_image_phrases(self, title: str, body: str) -> str:
        if self.fail_phrases:
            raise RuntimeError("phrase provider unavailable")
        return self.phrases_payload


class FakeImageProvider:
    def __init__(self) -> None:
        self.searches: list[str] = []
        self.fail_phrases: set[str] = set()
        self.empty = False
        self.fail_fetch = False

    async def search(self, phrase: str, count: int) -> list[Image]:
        self.searches.append(phrase)
        if phrase in self.fail_phrases:
            raise RuntimeError("image search down")
        if self.empty:
            return []
        return [
            Image(url=f"https://img.test/{phrase}-{i}.jpg", width=800, height=600, title=f"{phrase} {i}", source_provider="fake")
            for i in range(count)
        ]

    async def fetch(self, url: str) -> bytes:
        if self.fail_fetch:
            raise RuntimeError("download failed")
        return b"\x89PNG"


class FakePublisher:
    def __init__(self) -> None:
        self.published: list[tuple[ContentSnapshot, str]] = []
        self.updates: list[tuple[int, dict[str, Any], str]] = []
        self.deleted: list[int] = []
        self.uploads: list[str] = []
        self.terms: list[tuple[str, list[str]]] = []
        self.fail_targets: set[int] = set()
        self.publish_failures = 0
        self.fail_upload = False
        self._next_id = 100

    async def publish(self, content: ContentSnapshot, target_state: str) -> PublishResult:
        if self.publish_failures > 0:
            self.publish_failures -= 1
            raise RuntimeError("remote returned 502")
        self._next_id += 1
        self.published.append((content, target_state))
        return PublishResult(remote_id=self._next_id, remote_url=f"https://site.test/?p={self._next_id}")

    async def upload_media(self, data: bytes, filename: str) -> int:
        if self.fail_upload:
            raise RuntimeError("upload rejected")
        self.uploads.append(filename)
        return 555

    async def ensure_taxonomy_terms(self, taxonomy: str, names: list[str]) -> list[int]:
        self.terms.append((taxonomy, names))
        return [i + 1 for i in range(len(names))]

    async def update_post(self, remote_id: int, fields: dict[str, Any], target_type: str = "POST") -> None:
        if remote_id in self.fail_targets:
            raise RuntimeError(f"post {remote_id} not found")
        self.updates.append((remote_id, fields, target_type))

    async def delete_post(self, remote_id: int, target_type: str = "POST") -> None:
        if remote_id in self.fail_targets:
            raise RuntimeError(f"post {remote_id} not found")
        self.deleted.append(remote_id)


class FakeFeedReader:
    def __init__(self) -> None:
        self.items: list[FeedItem] = []
        self.error: Exception | None = None

    async def fetch_items(self, feed_url: str) -> list[FeedItem]:
        if self.error:
            raise self.error
        return list(self.items)


@pytest.fixture
def db() -> AppDatabase:
    """Create an in-memory database for testing."""
    app_db = AppDatabase()
    app_db._init_test()
    return app_db


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def collaborators(publisher: FakePublisher) -> Collaborators:
    collabs = Collaborators(
        content=FakeContentGenerator(),
        metadata=FakeMetadataGenerator(),
        images=FakeImageProvider(),
        feeds=FakeFeedReader(),
        timeouts=TimeoutConfig.uniform(2.0),
    )
    collabs.register_publisher("site-1", publisher)
    return collabs
