"""Scheduled post management for owners."""

from __future__ import annotations

from datetime import datetime

from pressroom.collaborators.registry import Collaborators
from pressroom.collaborators.types import ContentSnapshot
from pressroom.infrastructure.clock import get_zone, localize, make_id, now_iso, to_iso
from pressroom.infrastructure.config import TIMEZONE
from pressroom.infrastructure.errors import NotFoundError, ValidationError
from pressroom.infrastructure.logger import logger
from pressroom.posts.publisher import DuePostPublisher
from pressroom.posts.repository import ScheduledPostRepository
from pressroom.posts.types import ScheduledPost


class ScheduledPostService:
    def __init__(
        self,
        repo: ScheduledPostRepository,
        publisher: DuePostPublisher,
        collaborators: Collaborators,
    ) -> None:
        self._repo = repo
        self._publisher = publisher
        self._collaborators = collaborators

    # --- CRUD ---

    def schedule(
        self,
        owner: str,
        site_id: str,
        content: ContentSnapshot,
        due: datetime | str,
        timezone: str = TIMEZONE,
        draft_id: str | None = None,
    ) -> ScheduledPost:
        """Queue ``content`` for publication at ``due``, read as wall time in ``timezone`` when naive."""
        if not self._collaborators.has_site(site_id):
            raise ValidationError(f"Site not found: {site_id}", {"site_id": site_id})
        if not content.title.strip():
            raise ValidationError("Title is required")
        get_zone(timezone)

        post = ScheduledPost(
            id=make_id("post"),
            owner=owner,
            site_id=site_id,
            draft_id=draft_id,
            content=content,
            due_at=to_iso(localize(due, timezone)),
            timezone=timezone,
            created_at=now_iso(),
        )
        self._repo.create(post)
        logger.info("Post scheduled", post_id=post.id, site_id=site_id, due_at=post.due_at)
        return post

    def get(self, owner: str, post_id: str) -> ScheduledPost:
        post = self._repo.get_by_id(post_id)
        if not post or post.owner != owner:
            raise NotFoundError(f"Scheduled post not found: {post_id}")
        return post

    def list_for_owner(
        self,
        owner: str,
        site_id: str | None = None,
        status: str | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[ScheduledPost], int]:
        page = max(1, page)
        per_page = max(1, per_page)
        return self._repo.list_for_owner(owner, site_id, status, limit=per_page, offset=(page - 1) * per_page)

    def update(
        self,
        owner: str,
        post_id: str,
        content: ContentSnapshot | None = None,
        due: datetime | str | None = None,
        timezone: str | None = None,
    ) -> ScheduledPost:
        post = self.get(owner, post_id)
        self._require_pending(post, "edited")

        due_at: str | None = None
        if due is not None or timezone is not None:
            zone = timezone or post.timezone
            get_zone(zone)
            if due is not None:
                due_at = to_iso(localize(due, zone))
        if content is not None and not content.title.strip():
            raise ValidationError("Title is required")

        if not self._repo.update_pending(post_id, content, due_at, timezone):
            # Claimed by a sweep between the read and the write.
            raise ValidationError("Only pending posts can be edited", {"post_id": post_id})
        return self.get(owner, post_id)

    def reschedule(
        self,
        owner: str,
        post_id: str,
        due: datetime | str,
        timezone: str | None = None,
    ) -> ScheduledPost:
        post = self.update(owner, post_id, due=due, timezone=timezone)
        logger.info("Post rescheduled", post_id=post_id, due_at=post.due_at)
        return post

    def cancel(self, owner: str, post_id: str) -> ScheduledPost:
        post = self.get(owner, post_id)
        self._require_pending(post, "cancelled")
        if not self._repo.cancel(post_id):
            raise ValidationError("Only pending posts can be cancelled", {"post_id": post_id})
        logger.info("Scheduled post cancelled", post_id=post_id)
        return self.get(owner, post_id)

    def delete(self, owner: str, post_id: str) -> None:
        post = self.get(owner, post_id)
        if post.status == "PUBLISHING" or not self._repo.delete(post_id):
            raise ValidationError("Cannot delete a post while it is publishing", {"post_id": post_id})
        logger.info("Scheduled post deleted", post_id=post_id)

    # --- Publishing ---

    async def publish_now(self, owner: str, post_id: str) -> ScheduledPost:
        """Publish immediately through the same claim the sweep uses."""
        post = self.get(owner, post_id)
        self._require_pending(post, "published now")
        if not self._repo.claim(post_id):
            raise ValidationError("Post is already being published", {"post_id": post_id})
        await self._publisher.publish_claimed(post)
        return self.get(owner, post_id)

    @staticmethod
    def _require_pending(post: ScheduledPost, action: str) -> None:
        if post.status != "PENDING":
            raise ValidationError(
                f"Only pending posts can be {action} (status: {post.status})",
                {"post_id": post.id, "status": post.status},
            )
