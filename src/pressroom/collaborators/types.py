"""Collaborator payload models and capability protocols."""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

PublishState = Literal["publish", "draft", "pending", "private"]


class GeneratedContent(BaseModel):
    title: str
    excerpt: str = ""
    body_html: str


class ArticleMetadata(BaseModel):
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    seo_description: str = ""
    seo_keywords: list[str] = Field(default_factory=list)


class Image(BaseModel):
    url: str
    width: int = 0
    height: int = 0
    title: str = ""
    source_provider: str = ""


class FeedItem(BaseModel):
    title: str
    link: str | None = None
    published_at: str | None = None


class ContentSnapshot(BaseModel):
    """Everything the publisher needs, independent of any draft record."""

    title: str
    body_html: str
    excerpt: str = ""
    categories: list[int] = Field(default_factory=list)  # remote term ids
    tags: list[int] = Field(default_factory=list)
    featured_media_id: int | None = None
    seo_description: str = ""


class PublishResult(BaseModel):
    remote_id: int
    remote_url: str = ""


@runtime_checkable
class ContentGenerator(Protocol):
    async def generate(self, topic: str) -> GeneratedContent: ...


@runtime_checkable
class MetadataGenerator(Protocol):
    # Both return the provider's raw text; callers unwrap and parse it.
    async def generate_metadata(self, title: str, body: str) -> str: ...
    async def generate_image_phrases(self, title: str, body: str) -> str: ...


@runtime_checkable
class ImageProvider(Protocol):
    async def search(self, phrase: str, count: int) -> list[Image]: ...
    async def fetch(self, url: str) -> bytes: ...


@runtime_checkable
class Publisher(Protocol):
    async def publish(self, content: ContentSnapshot, target_state: str) -> PublishResult: ...
    async def upload_media(self, data: bytes, filename: str) -> int: ...
    async def ensure_taxonomy_terms(self, taxonomy: str, names: list[str]) -> list[int]: ...
    async def update_post(self, remote_id: int, fields: dict[str, Any], target_type: str = "POST") -> None: ...
    async def delete_post(self, remote_id: int, target_type: str = "POST") -> None: ...


@runtime_checkable
class FeedReader(Protocol):
    async def fetch_items(self, feed_url: str) -> list[FeedItem]: ...
