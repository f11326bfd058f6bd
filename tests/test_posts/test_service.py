"""Tests for scheduled post management."""

from datetime import datetime, timezone

import pytest

from pressroom.collaborators.types import ContentSnapshot
from pressroom.infrastructure.errors import NotFoundError, ValidationError
from pressroom.posts.publisher import DuePostPublisher
from pressroom.posts.service import ScheduledPostService


@pytest.fixture
def service(db, collaborators):
    publisher = DuePostPublisher(db.post_repo, collaborators, max_attempts=3)
    return ScheduledPostService(db.post_repo, publisher, collaborators)


def _content(title: str = "Launch day") -> ContentSnapshot:
    return ContentSnapshot(title=title, body_html="<p>We launched.</p>", excerpt="Launch")


class TestSchedule:
    def test_due_time_normalized_to_utc(self, service):
        post = service.schedule("u1", "site-1", _content(), "2024-03-05T09:00:00", "America/New_York")
        assert post.due_at == "2024-03-05T14:00:00.000000+00:00"
        assert post.timezone == "America/New_York"
        assert post.status == "PENDING"

    def test_aware_due_time(self, service):
        due = datetime(2024, 3, 5, 9, 0, tzinfo=timezone.utc)
        post = service.schedule("u1", "site-1", _content(), due, "Asia/Tokyo")
        assert post.due_at == "2024-03-05T09:00:00.000000+00:00"

    @pytest.mark.parametrize(
        "site,tz,title",
        [("nope", "UTC", "t"), ("site-1", "Not/AZone", "t"), ("site-1", "UTC", "   ")],
    )
    def test_rejections(self, service, db, site, tz, title):
        with pytest.raises(ValidationError):
            service.schedule("u1", site, _content(title), "2024-03-05T09:00:00", tz)
        assert db.post_repo.list_for_owner("u1")[1] == 0


class TestLifecycle:
    def test_reschedule_while_pending(self, service):
        post = service.schedule("u1", "site-1", _content(), "2024-03-05T09:00:00", "UTC")
        moved = service.reschedule("u1", post.id, "2024-03-06T10:30:00", "Europe/London")
        assert moved.due_at == "2024-03-06T10:30:00.000000+00:00"
        assert moved.timezone == "Europe/London"

    def test_update_content(self, service):
        post = service.schedule("u1", "site-1", _content(), "2024-03-05T09:00:00", "UTC")
        updated = service.update("u1", post.id, content=_content("New title"))
        assert updated.content.title == "New title"
        assert updated.due_at == post.due_at

    def test_cancel_then_no_changes(self, service):
        post = service.schedule("u1", "site-1", _content(), "2024-03-05T09:00:00", "UTC")
        assert service.cancel("u1", post.id).status == "CANCELLED"
        with pytest.raises(ValidationError):
            service.reschedule("u1", post.id, "2024-03-07T09:00:00")
        with pytest.raises(ValidationError):
            service.cancel("u1", post.id)

    def test_delete(self, service):
        post = service.schedule("u1", "site-1", _content(), "2024-03-05T09:00:00", "UTC")
        service.delete("u1", post.id)
        with pytest.raises(NotFoundError):
            service.get("u1", post.id)

    def test_ownership(self, service):
        post = service.schedule("u1", "site-1", _content(), "2024-03-05T09:00:00", "UTC")
        with pytest.raises(NotFoundError):
            service.get("u2", post.id)
        with pytest.raises(NotFoundError):
            service.cancel("u2", post.id)

    def test_list_filters_by_status(self, service):
        a = service.schedule("u1", "site-1", _content("a"), "2024-03-05T09:00:00", "UTC")
        service.schedule("u1", "site-1", _content("b"), "2024-03-06T09:00:00", "UTC")
        service.cancel("u1", a.id)
        pending, total = service.list_for_owner("u1", status="PENDING")
        assert total == 1
        assert pending[0].content.title == "b"


class TestPublishNow:
    @pytest.mark.asyncio
    async def test_publish_now(self, service, publisher):
        post = service.schedule("u1", "site-1", _content(), "2099-01-01T00:00:00", "UTC")
        result = await service.publish_now("u1", post.id)
        assert result.status == "PUBLISHED"
        assert len(publisher.published) == 1

    @pytest.mark.asyncio
    async def test_publish_now_after_publish_rejected(self, service, publisher):
        post = service.schedule("u1", "site-1", _content(), "2099-01-01T00:00:00", "UTC")
        await service.publish_now("u1", post.id)
        with pytest.raises(ValidationError):
            await service.publish_now("u1", post.id)
        assert len(publisher.published) == 1

    @pytest.mark.asyncio
    async def test_publish_now_failure_counts_attempt(self, service, publisher):
        publisher.publish_failures = 1
        post = service.schedule("u1", "site-1", _content(), "2099-01-01T00:00:00", "UTC")
        result = await service.publish_now("u1", post.id)
        assert result.status == "PENDING"
        assert result.attempts == 1
