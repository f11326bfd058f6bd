"""Scheduled post domain types."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from pressroom.collaborators.types import ContentSnapshot

PostStatus = Literal["PENDING", "PUBLISHING", "PUBLISHED", "FAILED", "CANCELLED"]


class ScheduledPost(BaseModel):
    id: str
    owner: str
    site_id: str
    draft_id: str | None = None
    content: ContentSnapshot
    due_at: str  # UTC
    timezone: str  # author's display zone
    status: PostStatus = "PENDING"
    remote_id: int | None = None
    remote_url: str | None = None
    published_at: str | None = None
    attempts: int = 0
    last_error: str | None = None
    created_at: str = ""


class SweepResult(BaseModel):
    due: int = 0
    claimed: int = 0
    published: int = 0
    retrying: int = 0
    failed: int = 0
