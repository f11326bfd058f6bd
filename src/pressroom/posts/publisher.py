"""Periodic sweep that publishes scheduled posts whose time has come."""

from __future__ import annotations

import asyncio
from datetime import datetime

from pressroom.collaborators.calls import call_collaborator
from pressroom.collaborators.registry import Collaborators
from pressroom.infrastructure.clock import to_iso, utcnow
from pressroom.infrastructure.config import DUE_POST_POLL_INTERVAL, SCHEDULED_POST_MAX_ATTEMPTS
from pressroom.infrastructure.logger import logger
from pressroom.infrastructure.poll_loop import PollLoop, start_poll_loop
from pressroom.posts.repository import ScheduledPostRepository
from pressroom.posts.types import ScheduledPost, SweepResult


class DuePostPublisher:
    """Publishes PENDING posts at or past their due time.

    Retries are bounded by re-selection: a failed attempt puts the row back to
    PENDING until ``max_attempts`` is reached, then it is FAILED for good.
    """

    def __init__(
        self,
        repo: ScheduledPostRepository,
        collaborators: Collaborators,
        max_attempts: int = SCHEDULED_POST_MAX_ATTEMPTS,
    ) -> None:
        self._repo = repo
        self._collaborators = collaborators
        self._max_attempts = max(1, max_attempts)

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        result = SweepResult()
        due_posts = self._repo.get_due(to_iso(now or utcnow()))
        result.due = len(due_posts)
        if due_posts:
            logger.info("Found due scheduled posts", count=len(due_posts))

        for post in due_posts:
            if not self._repo.claim(post.id):
                # Another sweep or a publish-now got there first.
                continue
            result.claimed += 1
            try:
                outcome = await self.publish_claimed(post)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error publishing scheduled post", post_id=post.id)
                continue
            if outcome == "PUBLISHED":
                result.published += 1
            elif outcome == "PENDING":
                result.retrying += 1
            elif outcome == "FAILED":
                result.failed += 1
        return result

    async def publish_claimed(self, post: ScheduledPost) -> str | None:
        """Publish a post the caller has already claimed (status PUBLISHING)."""
        log = logger.bind(post_id=post.id, site_id=post.site_id)
        publisher = self._collaborators.publisher_for(post.site_id)
        try:
            if publisher is None:
                raise LookupError(f"Site not found: {post.site_id}")
            published = await call_collaborator(
                "publisher",
                publisher.publish(post.content, "publish"),
                self._collaborators.timeouts.for_collaborator("publisher"),
            )
        except asyncio.CancelledError:
            raise
        except Exception as err:
            error = str(err) or type(err).__name__
            status = self._repo.record_failure(post.id, error, self._max_attempts)
            log.warning("Scheduled post publish failed", error=error, attempt=post.attempts + 1, status=status)
            return status

        self._repo.mark_published(post.id, published.remote_id, published.remote_url)
        log.info("Scheduled post published", title=post.content.title, remote_id=published.remote_id)
        return "PUBLISHED"

    def recover(self) -> int:
        released = self._repo.release_stale_claims(self._max_attempts)
        if released:
            logger.warning("Released scheduled posts stuck in PUBLISHING", count=released)
        return released

    def start(self, interval_s: float = DUE_POST_POLL_INTERVAL) -> PollLoop:
        async def tick() -> None:
            await self.sweep()

        return start_poll_loop("Due post publisher", interval_s, tick)
