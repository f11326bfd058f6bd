"""Tests for automation schedule management."""

import sqlite3

import pytest

from pressroom.automation.pipeline import ExecutionPipeline
from pressroom.automation.registry import ScheduleRegistry
from pressroom.automation.service import AutomationService
from pressroom.automation.types import AutomationExecution
from pressroom.infrastructure.clock import now_iso
from pressroom.infrastructure.errors import NotFoundError, ScheduleBusyError, ValidationError


@pytest.fixture
def registry(db):
    return ScheduleRegistry(db.schedule_repo)


@pytest.fixture
def service(db, collaborators, registry):
    pipeline = ExecutionPipeline(db.schedule_repo, db.execution_repo, db.job_repo, collaborators)
    return AutomationService(db.schedule_repo, db.execution_repo, db.job_repo, pipeline, registry, collaborators)


async def _daily(service, **overrides):
    kwargs = dict(
        owner="u1",
        site_id="site-1",
        name="Morning digest",
        kind="DAILY",
        recurrence="09:30",
        timezone="Europe/Berlin",
        topic="markets",
    )
    kwargs.update(overrides)
    return await service.create(**kwargs)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_registers_timer(self, service, registry):
        schedule = await _daily(service)
        assert schedule.recurrence == "30 9 * * *"
        assert schedule.next_run is not None
        assert schedule.is_active
        assert registry.is_registered(schedule.id)
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_create_inactive_is_not_registered(self, service, registry):
        schedule = await _daily(service, is_active=False)
        assert schedule.next_run is None
        assert not registry.is_registered(schedule.id)

    @pytest.mark.asyncio
    async def test_one_shot_due_time_localized(self, service, registry):
        schedule = await service.create(
            "u1", "site-1", "Launch", "ONE_SHOT", due="2099-03-05T09:00:00", timezone="America/New_York", topic="launch"
        )
        assert schedule.due_at == "2099-03-05T14:00:00.000000+00:00"
        assert schedule.next_run == schedule.due_at
        assert schedule.recurrence is None
        await registry.shutdown()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"site_id": "unknown-site"},
            {"name": "  "},
            {"topic": None},
            {"publish_state": "scheduled"},
            {"timezone": "Mars/Olympus"},
            {"kind": "CUSTOM", "recurrence": "every day"},
            {"kind": "ONE_SHOT", "recurrence": None},
            {"max_items_per_run": -1},
        ],
    )
    async def test_rejections_write_nothing(self, db, service, registry, overrides):
        with pytest.raises(ValidationError):
            await _daily(service, **overrides)
        assert db.schedule_repo.list_for_owner("u1")[1] == 0
        assert registry.registered_ids() == set()

    @pytest.mark.asyncio
    async def test_feed_schedule(self, service, registry):
        schedule = await _daily(service, topic=None, feed_url=" https://feed.test/rss ", kind="HOURLY")
        assert schedule.feed_url == "https://feed.test/rss"
        assert schedule.recurrence == "0 * * * *"
        await registry.shutdown()


class TestManage:
    @pytest.mark.asyncio
    async def test_pause_and_resume(self, service, registry):
        schedule = await _daily(service)

        paused = await service.pause("u1", schedule.id)
        assert not paused.is_active
        assert paused.next_run is None
        assert not registry.is_registered(schedule.id)

        resumed = await service.resume("u1", schedule.id)
        assert resumed.is_active
        assert resumed.next_run is not None
        assert registry.is_registered(schedule.id)
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_update_replaces_timing(self, service, registry):
        schedule = await _daily(service)
        old_timer = registry._timers[schedule.id]

        updated = await service.update("u1", schedule.id, recurrence="10:00", name="Later digest")

        assert updated.recurrence == "0 10 * * *"
        assert updated.name == "Later digest"
        assert updated.topic == "markets"
        assert registry._timers[schedule.id] is not old_timer
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_update_kind_drops_old_recurrence(self, service, registry):
        schedule = await _daily(service)
        updated = await service.update("u1", schedule.id, kind="EVERY_30_MIN")
        assert updated.recurrence == "*/30 * * * *"
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_update_rejects_invalid(self, service, registry):
        schedule = await _daily(service)
        with pytest.raises(ValidationError):
            await service.update("u1", schedule.id, owner="u2")
        with pytest.raises(ValidationError):
            await service.update("u1", schedule.id, kind="ONE_SHOT")
        assert service.get("u1", schedule.id).kind == "DAILY"
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_delete_removes_schedule_and_history(self, db, service, registry):
        schedule = await _daily(service, auto_publish=False)
        execution = await service.run_now("u1", schedule.id)

        await service.delete("u1", schedule.id)

        assert not registry.is_registered(schedule.id)
        with pytest.raises(NotFoundError):
            service.get("u1", schedule.id)
        assert db.execution_repo.get_by_id(execution.id) is None
        assert db.job_repo.list_for_execution(execution.id) == []

    @pytest.mark.asyncio
    async def test_other_owner_cannot_see_or_change(self, service, registry):
        schedule = await _daily(service)
        with pytest.raises(NotFoundError):
            service.get("u2", schedule.id)
        with pytest.raises(NotFoundError):
            await service.pause("u2", schedule.id)
        assert registry.is_registered(schedule.id)
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_list_filters_active(self, service, registry):
        a = await _daily(service, name="a")
        await _daily(service, name="b")
        await service.pause("u1", a.id)
        active, total = service.list_for_owner("u1", is_active=True)
        assert total == 1
        assert active[0].name == "b"
        await registry.shutdown()


class TestRuns:
    @pytest.mark.asyncio
    async def test_run_now(self, service, registry):
        schedule = await _daily(service, auto_publish=False)
        execution = await service.run_now("u1", schedule.id)
        assert execution.status == "COMPLETED"
        assert execution.trigger == "manual"
        assert execution.generated_count == 1

        jobs = service.list_jobs("u1", execution.id)
        assert [j.status for j in jobs] == ["GENERATED"]
        executions, total = service.list_executions("u1", schedule.id)
        assert total == 1
        assert executions[0].id == execution.id
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_run_now_while_running(self, db, service, registry):
        schedule = await _daily(service)
        db.execution_repo.open(AutomationExecution(id="exec-held", schedule_id=schedule.id, started_at=now_iso()))
        with pytest.raises(ScheduleBusyError):
            await service.run_now("u1", schedule.id)
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_run_now_one_shot_retires_it(self, service, registry):
        schedule = await service.create(
            "u1", "site-1", "Launch", "ONE_SHOT", due="2099-01-01T00:00:00", timezone="UTC", topic="launch"
        )
        assert registry.is_registered(schedule.id)

        await service.run_now("u1", schedule.id)

        assert not registry.is_registered(schedule.id)
        assert not service.get("u1", schedule.id).is_active

    @pytest.mark.asyncio
    async def test_fire_skips_inactive(self, db, service):
        schedule = await _daily(service, is_active=False)
        await service.fire(schedule.id)
        assert db.execution_repo.list_for_schedule(schedule.id)[1] == 0

    @pytest.mark.asyncio
    async def test_fire_runs_pipeline(self, db, service, registry):
        schedule = await _daily(service, auto_publish=False)
        await service.fire(schedule.id)
        executions, total = db.execution_repo.list_for_schedule(schedule.id)
        assert total == 1
        assert executions[0].trigger == "timer"
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_record_fire_failure(self, service, registry):
        schedule = await _daily(service)
        service.record_fire_failure(schedule.id, "boom")

        executions, _ = service.list_executions("u1", schedule.id)
        assert executions[0].status == "FAILED"
        assert executions[0].error == "boom"
        stored = service.get("u1", schedule.id)
        assert (stored.total_runs, stored.failed_runs) == (1, 1)
        assert stored.is_active
        assert stored.next_run is not None
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_record_fire_failure_closes_running_execution(self, db, service, registry):
        schedule = await _daily(service)
        db.execution_repo.open(AutomationExecution(id="exec-1", schedule_id=schedule.id, started_at=now_iso()))

        service.record_fire_failure(schedule.id, "boom")

        executions, total = service.list_executions("u1", schedule.id)
        assert total == 1
        assert executions[0].id == "exec-1"
        assert executions[0].status == "FAILED"
        assert executions[0].error == "boom"
        assert db.execution_repo.get_running(schedule.id) is None
        assert service.get("u1", schedule.id).failed_runs == 1
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_fire_with_failing_close_records_one_execution(self, db, service, registry, monkeypatch):
        schedule = await _daily(service, auto_publish=False)
        real_close = db.execution_repo.close
        calls = []

        def flaky_close(id, status, error=None):
            calls.append(status)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return real_close(id, status, error)

        monkeypatch.setattr(db.execution_repo, "close", flaky_close)

        await service.fire(schedule.id)
        executions, total = service.list_executions("u1", schedule.id)
        assert total == 1
        assert executions[0].status == "FAILED"

        await service.fire(schedule.id)
        executions, total = service.list_executions("u1", schedule.id)
        assert total == 2
        assert sorted(e.status for e in executions) == ["COMPLETED", "FAILED"]
        stored = service.get("u1", schedule.id)
        assert (stored.total_runs, stored.successful_runs, stored.failed_runs) == (2, 1, 1)
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_recover_closes_interrupted(self, db, service, registry):
        schedule = await _daily(service)
        db.execution_repo.open(AutomationExecution(id="exec-old", schedule_id=schedule.id, started_at=now_iso()))

        assert service.recover() == 1

        execution = service.get_execution("u1", "exec-old")
        assert execution.status == "FAILED"
        assert execution.error == "Interrupted"
        assert db.execution_repo.get_running(schedule.id) is None
        await registry.shutdown()

    @pytest.mark.asyncio
    async def test_stats(self, collaborators, service, registry):
        good = await _daily(service, name="good", auto_publish=False)
        bad = await _daily(service, name="bad", topic="doomed", auto_publish=False)
        collaborators.content.fail_topics = {"doomed"}

        await service.run_now("u1", good.id)
        await service.run_now("u1", bad.id)

        stats = service.get_stats("u1")
        assert stats.total_schedules == 2
        assert stats.active_schedules == 2
        assert (stats.total_runs, stats.successful_runs, stats.failed_runs) == (2, 1, 1)
        assert stats.success_rate == 50
        assert service.get_stats("u2").total_schedules == 0
        await registry.shutdown()
