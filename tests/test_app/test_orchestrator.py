"""Tests for orchestrator startup recovery and shutdown."""

import asyncio

import pytest

from pressroom.app import Orchestrator
from pressroom.automation.types import AutomationExecution, AutomationSchedule
from pressroom.bulk.types import BulkOperation
from pressroom.collaborators.types import ContentSnapshot
from pressroom.infrastructure.clock import now_iso
from pressroom.posts.types import ScheduledPost


def _seed(db):
    db.schedule_repo.create(
        AutomationSchedule(
            id="sched-1",
            owner="u1",
            site_id="site-1",
            name="Hourly",
            kind="HOURLY",
            recurrence="0 * * * *",
            topic="news",
            created_at=now_iso(),
        )
    )
    db.execution_repo.open(AutomationExecution(id="exec-old", schedule_id="sched-1", started_at=now_iso()))

    db.post_repo.create(
        ScheduledPost(
            id="post-1",
            owner="u1",
            site_id="site-1",
            content=ContentSnapshot(title="Stuck", body_html="<p>x</p>"),
            due_at="2024-01-01T00:00:00.000000+00:00",
            timezone="UTC",
            created_at=now_iso(),
        )
    )
    db.post_repo.claim("post-1")

    db.bulk_repo.create(
        BulkOperation(
            id="bulk-1",
            owner="u1",
            site_id="site-1",
            kind="DELETE",
            target_ids=[7, 8],
            total_items=2,
            created_at=now_iso(),
        )
    )


class TestOrchestrator:
    @pytest.mark.asyncio
    async def test_start_recovers_interrupted_work(self, db, collaborators, publisher):
        _seed(db)
        orch = Orchestrator(collaborators, database=db, poll_interval_s=0.01, bulk_item_delay_s=0)

        await orch.start()
        try:
            assert orch.running
            assert db.execution_repo.get_by_id("exec-old").status == "FAILED"
            assert orch.registry.registered_ids() == {"sched-1"}

            await orch._queue.wait_idle()
            await asyncio.sleep(0.05)

            assert db.bulk_repo.get_by_id("bulk-1").status == "COMPLETED"
            assert publisher.deleted == [7, 8]
            post = db.post_repo.get_by_id("post-1")
            assert post.status == "PUBLISHED"
            assert post.attempts == 1
        finally:
            await orch.shutdown()

        assert not orch.running
        assert orch.registry.registered_ids() == set()

    @pytest.mark.asyncio
    async def test_services_available_after_start(self, db, collaborators):
        orch = Orchestrator(collaborators, database=db, poll_interval_s=60, bulk_item_delay_s=0)
        await orch.start()
        try:
            schedule = await orch.automation.create(
                "u1", "site-1", "Digest", "DAILY", "07:00", timezone="UTC", topic="news"
            )
            assert orch.registry.is_registered(schedule.id)

            op_id = orch.bulk.submit("u1", "site-1", "UNPUBLISH", [3])
            await orch._queue.wait_idle()
            assert orch.bulk.status("u1", op_id).status == "COMPLETED"

            post = orch.posts.schedule(
                "u1", "site-1", ContentSnapshot(title="Later", body_html="<p>x</p>"), "2099-01-01T00:00:00", "UTC"
            )
            assert orch.posts.get("u1", post.id).status == "PENDING"
        finally:
            await orch.shutdown()

    @pytest.mark.asyncio
    async def test_injected_database_stays_open(self, db, collaborators):
        orch = Orchestrator(collaborators, database=db, poll_interval_s=60, bulk_item_delay_s=0)
        await orch.start()
        await orch.shutdown()
        assert db.schedule_repo.get_active() == []

    @pytest.mark.asyncio
    async def test_job_worker_runs_submitted_jobs(self, db, collaborators):
        orch = Orchestrator(collaborators, database=db, poll_interval_s=60, bulk_item_delay_s=0, job_interval_s=0.01)
        await orch.start()
        try:
            job = orch.automation.submit_job("u1", "site-1", "solar power")
            await asyncio.sleep(0.1)
            assert orch.automation.get_job("u1", job.id).status == "GENERATED"
        finally:
            await orch.shutdown()
